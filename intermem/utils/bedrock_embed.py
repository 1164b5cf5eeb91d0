"""
Amazon Bedrock embedding client: the default embedding function for semantic memories.
"""

import json
import random
import time
from typing import Any, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..models.errors import BackendError
from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)

SEARCH_DOCUMENT = 'search_document'
SEARCH_QUERY = 'search_query'


class BedrockEmbedError(BackendError):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbed:
    """Amazon Bedrock embedding client with retry logic and error handling."""

    def __init__(self, config: BedrockEmbedConfig, client: Optional[Any] = None):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
            client: Pre-built bedrock-runtime client (built on first use when omitted)
        """
        self.config = config
        self.model_id = config.model_id
        self.dimension = config.dimension
        self._bedrock = client

    @property
    def bedrock(self) -> Any:
        if self._bedrock is None:
            try:
                self._bedrock = boto3.client(service_name='bedrock-runtime', region_name=self.config.region)
            except BotoCoreError as e:
                raise BedrockEmbedError(f'Failed to create Bedrock client: {e}')
            logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')
        return self._bedrock

    def _call_with_retry(self, data: dict) -> dict:
        """
        Make a Bedrock API call with retry logic.

        Raises:
            BedrockEmbedError: If all retry attempts fail
        """
        body = json.dumps(data)

        for attempt in range(self.config.retry_attempts):
            try:
                response = self.bedrock.invoke_model(body=body,
                                                     modelId=self.model_id,
                                                     accept='application/json',
                                                     contentType='application/json')
                return json.loads(response.get('body').read())

            except BedrockEmbedError:
                raise

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock Embed: {e}')
                raise BedrockEmbedError(f'Unexpected Bedrock Embed error: {e}')

        raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts')

    def _embed(self, text: str, input_type: str) -> List[float]:
        if not text or not text.strip():
            logger.warning(f'Empty text provided for {input_type} embedding')
            return [0.0] * self.dimension

        model = self.model_id.lower()
        if 'titan' in model:
            response = self._call_with_retry({'inputText': text, 'dimensions': self.dimension})
            embedding = response.get('embedding')
        elif 'cohere' in model:
            if self.dimension != 1024:
                raise BedrockEmbedError(f'Cohere models only support 1024 dimensions, got {self.dimension}')
            response = self._call_with_retry({'input_type': input_type, 'texts': [text]})
            embeddings = response.get('embeddings') or []
            embedding = embeddings[0] if embeddings else None
        else:
            raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')

        if not embedding:
            raise BedrockEmbedError(f'{self.model_id} returned no embedding')
        return embedding

    def embed_document(self, text: str) -> List[float]:
        return self._embed(text, SEARCH_DOCUMENT)

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [self._embed(text, SEARCH_DOCUMENT) for text in texts]

    def embed_query(self, text: str) -> List[float]:
        return self._embed(text, SEARCH_QUERY)

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            return len(self.embed_document('health check')) == self.dimension

        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
