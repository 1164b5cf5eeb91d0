"""
Health check utilities for the application.
"""

from typing import Any, Dict, Optional

from .bedrock_embed import BedrockEmbed
from .config import AppConfig, config
from .logging_config import get_logger
from .neptune_client import NeptuneClient
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def get_health_status(neptune: Optional[NeptuneClient],
                      opensearch: Optional[OpenSearchClient],
                      embed: Optional[BedrockEmbed],
                      app_config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get detailed health status of all backends.

    A missing client is reported as unhealthy instead of raising.

    Returns:
        Dictionary with health status of each component
    """
    app_config = app_config or config
    health_status = {}

    try:
        if neptune is None:
            raise RuntimeError('graph client not initialised')
        health_status['graph'] = {
            'healthy': neptune.health_check(),
            'service': 'Gremlin graph database',
            'endpoint': app_config.neptune.endpoint
        }
    except Exception as e:
        health_status['graph'] = {'healthy': False, 'service': 'Gremlin graph database', 'error': str(e)}

    try:
        if opensearch is None:
            raise RuntimeError('vector client not initialised')
        health_status['vector'] = {
            'healthy': opensearch.health_check(),
            'service': 'Amazon OpenSearch',
            'endpoint': app_config.opensearch.endpoint
        }
    except Exception as e:
        health_status['vector'] = {'healthy': False, 'service': 'Amazon OpenSearch', 'error': str(e)}

    try:
        if embed is None:
            raise RuntimeError('embedding client not initialised')
        health_status['embedding'] = {
            'healthy': embed.health_check(),
            'service': 'Amazon Bedrock Embed',
            'model': app_config.bedrock_embed.model_id
        }
    except Exception as e:
        health_status['embedding'] = {'healthy': False, 'service': 'Amazon Bedrock Embed', 'error': str(e)}

    if all(status.get('healthy', False) for status in health_status.values()):
        logger.info('All system components are healthy')
    else:
        logger.warning('Some system components are unhealthy')

    return health_status
