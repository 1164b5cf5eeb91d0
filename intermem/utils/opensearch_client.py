"""
OpenSearch client wrapper for vector similarity search over named memory collections.

Each collection is one k-NN index named ``<index_prefix>_<collection>``, created on
first reference.
"""

import threading
import time
from typing import Any, Dict, List, Optional, Set

from boto3 import Session
from opensearchpy import OpenSearch, RequestsHttpConnection, helpers
from opensearchpy.exceptions import OpenSearchException
from requests_aws4auth import AWS4Auth

from ..models.errors import BackendError
from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class OpenSearchError(BackendError):
    """Custom exception for OpenSearch errors."""
    pass


def score_to_distance(score: float) -> float:
    """Invert the cosinesimil k-NN score ``1 / (1 + d)`` back to the distance ``d``."""
    if not score or score <= 0:
        return float('inf')
    return max(0.0, 1.0 / score - 1.0)


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling.

    The underlying connection is built on first use, so a missing credential
    surfaces as an OpenSearchError from the operation that needed it.
    """

    def __init__(self, config: OpenSearchConfig, client: Optional[OpenSearch] = None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Pre-built OpenSearch client (skips credential lookup)
        """
        self.config = config
        self._client = client
        self._known_indices: Set[str] = set()
        self._lock = threading.Lock()

    @property
    def client(self) -> OpenSearch:
        if self._client is None:
            self._client = self._build_client()
        return self._client

    def _build_client(self) -> OpenSearch:
        # Get AWS credentials and create auth
        credentials = Session().get_credentials()
        if credentials is None:
            raise OpenSearchError('No AWS credentials found')
        auth = AWS4Auth(region=self.config.region, service=self.config.service, refreshable_credentials=credentials)
        # Parse endpoint to get host and port
        endpoint = self.config.endpoint
        if '://' in endpoint:
            # Remove protocol if present
            endpoint = endpoint.split('://', 1)[1]

        client = OpenSearch(hosts=[{
            'host': endpoint,
            'port': self.config.port
        }],
                            http_auth=auth,
                            use_ssl=True,
                            verify_certs=True,
                            connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch client for endpoint: {self.config.endpoint}')
        return client

    def index_name(self, collection: str) -> str:
        return f'{self.config.index_prefix}_{collection}'

    def _index_body(self) -> Dict[str, Any]:
        return {
            'mappings': {
                'properties': {
                    'id': {
                        'type': 'keyword'
                    },
                    'content': {
                        'type': 'text'
                    },
                    'embedding': {
                        'type': 'knn_vector',
                        'dimension': self.config.dimension,
                        'method': {
                            'name': 'hnsw',
                            'space_type': 'cosinesimil',
                            'engine': 'nmslib'
                        }
                    },
                    'metadata': {
                        'properties': {
                            'type': {
                                'type': 'keyword'
                            },
                            'user': {
                                'type': 'keyword'
                            },
                            'confidence': {
                                'type': 'float'
                            },
                            'importance': {
                                'type': 'float'
                            },
                            'tags': {
                                'type': 'text'
                            },
                            'emotion': {
                                'type': 'keyword'
                            },
                            'source': {
                                'type': 'keyword'
                            },
                            'source_interaction_id': {
                                'type': 'keyword'
                            },
                            'timestamp': {
                                'type': 'date'
                            }
                        }
                    }
                }
            },
            'settings': {
                'index': {
                    'knn': True,
                    'knn.algo_param.ef_search': 100
                }
            }
        }

    def ensure_collection(self, collection: str) -> str:
        """
        Create the collection's index if it doesn't exist.

        Args:
            collection: Collection name

        Returns:
            'cached', 'exists' or 'created'
        """
        index_name = self.index_name(collection)
        if index_name in self._known_indices:
            return 'cached'

        with self._lock:
            if index_name in self._known_indices:
                return 'cached'

            try:
                if self.client.indices.exists(index=index_name):
                    logger.debug(f'Index {index_name} already exists')
                    self._known_indices.add(index_name)
                    return 'exists'

                response = self.client.indices.create(index=index_name, body=self._index_body())
                if not response.get('acknowledged', False):
                    raise OpenSearchError(f'Index {index_name} creation was not acknowledged')
                logger.info(f'Created index {index_name}')
            except OpenSearchError:
                raise
            except OpenSearchException as e:
                # Concurrent first use of the same collection
                if 'resource_already_exists_exception' in str(e):
                    self._known_indices.add(index_name)
                    return 'exists'
                logger.error(f'Error creating index {index_name}: {e}')
                raise OpenSearchError(f'Failed to create index: {e}')
            except Exception as e:
                logger.error(f'Unexpected error creating index {index_name}: {e}')
                raise OpenSearchError(f'Unexpected error creating index: {e}')

        # Other collections stay usable while the new index syncs
        if self.config.index_sync_seconds > 0:
            logger.info(f'Waiting {self.config.index_sync_seconds}s for index {index_name} sync-up...')
            time.sleep(self.config.index_sync_seconds)
        self._known_indices.add(index_name)
        return 'created'

    def index_documents(self, collection: str, documents: List[Dict[str, Any]]) -> int:
        """
        Bulk index documents into a collection.

        Args:
            collection: Collection name
            documents: Documents carrying id, content, embedding and metadata

        Returns:
            Number of documents indexed
        """
        index_name = self.index_name(collection)
        actions = [{'_index': index_name, '_source': document} for document in documents]

        try:
            success, errors = helpers.bulk(self.client, actions, raise_on_error=False)
        except OpenSearchError:
            raise
        except OpenSearchException as e:
            logger.error(f'Error indexing documents into {index_name}: {e}')
            raise OpenSearchError(f'Failed to index documents: {e}')
        except Exception as e:
            logger.error(f'Unexpected error indexing documents: {e}')
            raise OpenSearchError(f'Unexpected error indexing documents: {e}')

        if errors:
            logger.error(f'{len(errors)} documents failed to index into {index_name}: {errors[:3]}')
            raise OpenSearchError(f'Failed to index {len(errors)} of {len(documents)} documents')

        logger.debug(f'Indexed {success} documents in {index_name}')
        return success

    def knn_search(self,
                   collection: str,
                   query_vector: List[float],
                   top_k: int,
                   filters: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
        """
        Perform vector similarity search.

        Args:
            collection: Collection name
            query_vector: Query vector for similarity search
            top_k: Number of results to return
            filters: OpenSearch filter clauses applied to the k-NN query

        Returns:
            Results ordered by ascending distance, each with id, distance and document
        """
        index_name = self.index_name(collection)
        search_body = {
            'size': top_k,
            'query': {
                'bool': {
                    'must': [{
                        'knn': {
                            'embedding': {
                                'vector': query_vector,
                                'k': top_k
                            }
                        }
                    }],
                    'filter': filters or []
                }
            },
            '_source': {
                'excludes': ['embedding']  # Don't return embedding in results
            }
        }

        try:
            response = self.client.search(index=index_name, body=search_body)
        except OpenSearchError:
            raise
        except OpenSearchException as e:
            logger.error(f'Error performing vector search: {e}')
            raise OpenSearchError(f'Vector search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in vector search: {e}')
            raise OpenSearchError(f'Unexpected error in vector search: {e}')

        results = []
        for hit in response['hits']['hits']:
            source = hit.get('_source', {})
            results.append({
                'id': source.get('id', hit['_id']),
                'distance': score_to_distance(hit.get('_score') or 0.0),
                'document': source,
            })

        results.sort(key=lambda result: result['distance'])
        logger.debug(f'Vector search returned {len(results)} results from {index_name}')
        return results[:top_k]

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name('health_check'))

            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
