"""
Semantic Memory Store: free-text memories in named vector collections, recalled by similarity.
"""

from typing import Any, Dict, List, Optional, Sequence, Union

from ..models.core import Emotion, MemoryHit, MemoryMetadata, MemoryType
from ..models.errors import BackendError, ValidationError
from ..models.validation import (optional_text, parse_enum, parse_optional_enum, require_collection_name,
                                 require_int_range, require_matching_lengths, require_scalar_mapping, require_str_list,
                                 require_text, require_unit_interval)
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import MemoryConfig, config
from ..utils.id_utils import DOCUMENT_PREFIX, generate_id, generate_memory_id
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient
from ..utils.timestamp_utils import to_iso

logger = get_logger(__name__)

MAX_RESULTS = 50
METADATA_KEYS = {'type', 'user', 'confidence', 'importance', 'tags', 'emotion', 'source_interaction_id'}
FILTER_KEYS = {'type', 'user', 'min_importance'}


class SemanticMemoryError(BackendError):
    """Custom exception for semantic memory errors."""
    pass


def parse_metadata(metadata: Union[MemoryMetadata, Dict[str, Any], None]) -> MemoryMetadata:
    """Validate caller metadata for a memory document. Raises ValidationError."""
    if metadata is None:
        raise ValidationError('metadata with a memory type is required')
    if isinstance(metadata, MemoryMetadata):
        metadata = {
            'type': metadata.type,
            'user': metadata.user,
            'confidence': metadata.confidence,
            'importance': metadata.importance,
            'tags': metadata.tags,
            'emotion': metadata.emotion,
            'source_interaction_id': metadata.source_interaction_id,
        }
    if not isinstance(metadata, dict):
        raise ValidationError('metadata must be a mapping')

    unknown = set(metadata) - METADATA_KEYS
    if unknown:
        raise ValidationError(f'Unknown metadata fields: {", ".join(sorted(unknown))}')

    confidence = metadata.get('confidence')
    importance = metadata.get('importance')
    return MemoryMetadata(type=parse_enum(MemoryType, metadata.get('type'), 'memory type'),
                          user=optional_text(metadata.get('user'), 'user'),
                          confidence=0.8 if confidence is None else require_unit_interval(confidence, 'confidence'),
                          importance=0.5 if importance is None else require_unit_interval(importance, 'importance'),
                          tags=optional_text(metadata.get('tags'), 'tags'),
                          emotion=parse_optional_enum(Emotion, metadata.get('emotion'), 'emotion'),
                          source_interaction_id=optional_text(metadata.get('source_interaction_id'),
                                                              'source_interaction_id'))


def build_filter_clauses(metadata_filter: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Translate a {type, user, min_importance} filter into OpenSearch filter clauses."""
    if not metadata_filter:
        return []
    if not isinstance(metadata_filter, dict):
        raise ValidationError('filter must be a mapping')

    unknown = set(metadata_filter) - FILTER_KEYS
    if unknown:
        raise ValidationError(f'Unknown filter fields: {", ".join(sorted(unknown))}')

    clauses = []
    if metadata_filter.get('type') is not None:
        memory_type = parse_enum(MemoryType, metadata_filter['type'], 'memory type')
        clauses.append({'term': {'metadata.type': memory_type.value}})
    if metadata_filter.get('user') is not None:
        clauses.append({'term': {'metadata.user': require_text(metadata_filter['user'], 'user')}})
    if metadata_filter.get('min_importance') is not None:
        minimum = require_unit_interval(metadata_filter['min_importance'], 'min_importance')
        clauses.append({'range': {'metadata.importance': {'gte': minimum}}})
    return clauses


class SemanticMemoryStore:
    """Embeds memory documents and stores them in similarity-searchable collections."""

    def __init__(self,
                 index: Optional[OpenSearchClient] = None,
                 embed: Optional[BedrockEmbed] = None,
                 memory_config: Optional[MemoryConfig] = None):
        self.index = index or OpenSearchClient(config.opensearch)
        self.embed = embed or BedrockEmbed(config.bedrock_embed)
        self.memory_config = memory_config or config.memory
        logger.info('Initialized SemanticMemoryStore')

    def _collection(self, collection: Optional[str]) -> str:
        return require_collection_name(collection or self.memory_config.default_collection)

    def store(self, collection: Optional[str], content: str, metadata: Union[MemoryMetadata, Dict[str, Any]]) -> str:
        """
        Embed and store one memory document.

        Args:
            collection: Collection name (default collection if None)
            content: Text body; the unit that gets embedded
            metadata: Memory type plus optional user, confidence, importance, tags, emotion

        Returns:
            Generated memory id (``mem_`` prefix)
        """
        collection = self._collection(collection)
        content = require_text(content, 'content')
        fields = parse_metadata(metadata).to_fields()

        memory_id = generate_memory_id()
        fields['timestamp'] = to_iso()
        fields['source'] = self.memory_config.source_tag

        try:
            document = {'id': memory_id, 'content': content, 'embedding': self.embed.embed_document(content), 'metadata': fields}
            self.index.ensure_collection(collection)
            self.index.index_documents(collection, [document])
        except BackendError as e:
            logger.error(f'Failed to store memory in {collection}: {e}')
            raise SemanticMemoryError(f'Memory store failed: {e}')

        logger.debug(f'Stored memory {memory_id} ({fields["type"]}) in {collection}')
        return memory_id

    def query(self,
              collection: Optional[str],
              query_texts: Union[str, Sequence[str]],
              k: int = 5,
              metadata_filter: Optional[Dict[str, Any]] = None) -> List[List[MemoryHit]]:
        """
        Nearest-neighbour search, one ranked list per query text.

        Args:
            collection: Collection name (created empty if missing)
            query_texts: One or more query strings
            k: Maximum results per query text (1..50)
            metadata_filter: Optional {type, user, min_importance}

        Returns:
            For each query text, up to k hits ordered by ascending distance
        """
        collection = self._collection(collection)
        if isinstance(query_texts, str):
            query_texts = [query_texts]
        query_texts = require_str_list(query_texts, 'query_texts')
        if not query_texts:
            raise ValidationError('At least one query text is required')
        for text in query_texts:
            require_text(text, 'query text')
        k = require_int_range(k, 'k', 1, MAX_RESULTS)
        filters = build_filter_clauses(metadata_filter)

        results = []
        try:
            self.index.ensure_collection(collection)
            for text in query_texts:
                hits = self.index.knn_search(collection, self.embed.embed_query(text), k, filters)
                results.append([self._to_hit(hit) for hit in hits[:k]])
        except BackendError as e:
            logger.error(f'Failed to query {collection}: {e}')
            raise SemanticMemoryError(f'Memory search failed: {e}')

        return results

    def add_documents(self,
                      collection: str,
                      documents: Sequence[str],
                      metadatas: Optional[Sequence[Dict[str, Any]]] = None,
                      ids: Optional[Sequence[str]] = None) -> List[str]:
        """
        Bulk insert documents with optional per-document metadata and ids.

        Returns:
            Ids of the inserted documents, generated with a ``doc_`` prefix where not supplied
        """
        collection = self._collection(collection)
        documents = require_str_list(documents, 'documents')
        if not documents:
            raise ValidationError('At least one document is required')
        for document in documents:
            require_text(document, 'document')
        require_matching_lengths('metadatas', len(documents), metadatas)
        require_matching_lengths('ids', len(documents), ids)

        metadatas = [
            require_scalar_mapping(meta, 'metadata', allow_none=True) for meta in (metadatas or [None] * len(documents))
        ]
        if ids is not None:
            ids = [require_text(doc_id, 'id') for doc_id in ids]
            if len(set(ids)) != len(ids):
                raise ValidationError('ids must be unique')
        else:
            ids = [generate_id(DOCUMENT_PREFIX) for _ in documents]

        try:
            embeddings = self.embed.embed_documents(list(documents))
            records = [{
                'id': doc_id,
                'content': text,
                'embedding': embedding,
                'metadata': meta
            } for doc_id, text, embedding, meta in zip(ids, documents, embeddings, metadatas)]
            self.index.ensure_collection(collection)
            self.index.index_documents(collection, records)
        except BackendError as e:
            logger.error(f'Failed to add documents to {collection}: {e}')
            raise SemanticMemoryError(f'Document add failed: {e}')

        logger.debug(f'Added {len(ids)} documents to {collection}')
        return list(ids)

    @staticmethod
    def _to_hit(hit: Dict[str, Any]) -> MemoryHit:
        document = hit.get('document', {})
        return MemoryHit(id=hit['id'],
                         distance=float(hit['distance']),
                         document=document.get('content', ''),
                         metadata=dict(document.get('metadata') or {}))
