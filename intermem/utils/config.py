"""
Configuration management for graph, vector and embedding backends and application settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class NeptuneConfig:
    """Configuration for the Gremlin graph database (Amazon Neptune or Gremlin Server)."""
    endpoint: str
    port: int
    region: str
    use_ssl: bool
    iam_auth: bool


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    service: str
    index_prefix: str
    dimension: int
    index_sync_seconds: float


@dataclass
class MemoryConfig:
    """Configuration for interaction and semantic memory behaviour."""
    default_collection: str
    source_tag: str
    recall_window_days: int
    recall_limit: int
    insights_window_days: int


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_embed: BedrockEmbedConfig
    neptune: NeptuneConfig
    opensearch: OpenSearchConfig
    memory: MemoryConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')))

    # Graph configuration
    neptune_config = NeptuneConfig(endpoint=os.getenv('NEPTUNE_ENDPOINT', 'localhost'),
                                   port=int(os.getenv('NEPTUNE_PORT', '8182')),
                                   region=os.getenv('NEPTUNE_AWS_REGION', 'us-east-1'),
                                   use_ssl=_env_bool('NEPTUNE_USE_SSL', 'true'),
                                   iam_auth=_env_bool('NEPTUNE_IAM_AUTH', 'true'))

    # Vector search configuration
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         service=os.getenv('OPENSEARCH_SERVICE', 'aoss'),
                                         index_prefix=os.getenv('OPENSEARCH_INDEX_PREFIX', 'intermem'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')),
                                         index_sync_seconds=float(os.getenv('OPENSEARCH_INDEX_SYNC_SECONDS', '15')))

    # Memory configuration
    memory_config = MemoryConfig(default_collection=os.getenv('MEMORY_DEFAULT_COLLECTION', 'intermem_memories'),
                                 source_tag=os.getenv('MEMORY_SOURCE_TAG', 'intermem'),
                                 recall_window_days=int(os.getenv('RECALL_WINDOW_DAYS', '7')),
                                 recall_limit=int(os.getenv('RECALL_LIMIT', '5')),
                                 insights_window_days=int(os.getenv('INSIGHTS_WINDOW_DAYS', '30')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_embed=bedrock_embed_config,
                     neptune=neptune_config,
                     opensearch=opensearch_config,
                     memory=memory_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
