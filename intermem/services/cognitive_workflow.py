"""
Cognitive Workflow: the recall -> persist -> validate protocol an agent follows for every turn.

The workflow holds no per-turn state. Recall and validate are safe to retry;
persist creates a new interaction on every call.
"""

from typing import Iterable, Optional

from ..models.core import (InteractionDraft, InteractionValidation, MemoryMetadata, MemoryType, PersistResult,
                           RecallContext)
from ..models.errors import BackendError, ValidationError
from ..models.validation import (parse_enum, require_collection_name, require_int_range, require_text,
                                 require_unit_interval)
from ..utils.config import MemoryConfig, config
from ..utils.id_utils import INTERACTION_PREFIX, has_prefix
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import to_iso
from .interaction_store import MAX_LIMIT, MAX_WINDOW_DAYS, InteractionStore, validate_draft
from .semantic_memory import SemanticMemoryStore
from .topic_extraction import extract_topics

logger = get_logger(__name__)


class CognitiveWorkflowError(BackendError):
    """Custom exception for cognitive workflow errors."""

    def __init__(self, message: str, interaction_id: Optional[str] = None):
        super().__init__(message)
        self.interaction_id = interaction_id


class CognitiveWorkflow:
    """Composes the interaction store, semantic memory store and topic extractor."""

    def __init__(self,
                 interactions: InteractionStore,
                 memories: Optional[SemanticMemoryStore] = None,
                 memory_config: Optional[MemoryConfig] = None):
        self.interactions = interactions
        self.memories = memories
        self.memory_config = memory_config or config.memory

    def think(self,
              user: str,
              user_input: str,
              extract: bool = True,
              window_days: Optional[int] = None,
              limit: Optional[int] = None) -> RecallContext:
        """
        Recall step: gather context before the agent answers.

        Upserts the user, then reads recent interactions and the last interaction id.
        Never creates an interaction.

        Args:
            user: User name
            user_input: The new message from the user
            extract: Suggest topics extracted from the input
            window_days: Recency window (configured default if None)
            limit: Maximum recent interactions (configured default if None)

        Returns:
            RecallContext for the turn
        """
        user = require_text(user, 'user')
        user_input = require_text(user_input, 'input')
        window_days = require_int_range(self.memory_config.recall_window_days if window_days is None else window_days,
                                        'window_days', 1, MAX_WINDOW_DAYS)
        limit = require_int_range(self.memory_config.recall_limit if limit is None else limit, 'limit', 1, MAX_LIMIT)

        profile = self.interactions.get_or_create_user_profile(user)
        recent = self.interactions.get_recent_interactions(user, window_days, limit)
        last_id = self.interactions.get_last_interaction_id(user)
        topics = extract_topics(user_input) if extract else []

        logger.debug(f'Recalled {len(recent)} interactions for {user} (total {profile.interaction_count})')
        return RecallContext(user=user,
                             interaction_count=profile.interaction_count,
                             is_new_user=profile.interaction_count == 0,
                             last_interaction_id=last_id,
                             suggested_topics=topics,
                             recent_interactions=recent,
                             timestamp=to_iso())

    def respond(self,
                user: str,
                user_input: str,
                output: str,
                intent: Optional[str] = None,
                sentiment: Optional[str] = None,
                entities: Optional[Iterable[str]] = None,
                topics: Optional[Iterable[str]] = None,
                previous_interaction_id: Optional[str] = None,
                store_memory: bool = False,
                memory_content: Optional[str] = None,
                memory_type: str = MemoryType.INSIGHT.value,
                memory_importance: Optional[float] = None,
                collection: Optional[str] = None,
                atomic: bool = False) -> PersistResult:
        """
        Persist step: record the exchange and optionally a semantic memory.

        When topics is None they are extracted from the input; pass an empty list
        to store the interaction without topics.

        Returns:
            PersistResult with the new interaction id and the memory id if one was stored
        """
        if topics is None:
            topics = extract_topics(user_input) if isinstance(user_input, str) else []
        draft = validate_draft(InteractionDraft(user=user,
                                                input=user_input,
                                                output=output,
                                                intent=intent,
                                                sentiment=sentiment,
                                                entities=list(entities or []),
                                                topics=list(topics)))

        metadata = None
        if store_memory:
            memory_content = require_text(memory_content, 'memory_content')
            collection = require_collection_name(collection or self.memory_config.default_collection)
            if self.memories is None:
                raise ValidationError('Semantic memory store is not configured')
            metadata = MemoryMetadata(type=parse_enum(MemoryType, memory_type, 'memory type'), user=draft.user)
            if memory_importance is not None:
                metadata.importance = require_unit_interval(memory_importance, 'memory_importance')

        if atomic:
            interaction_id = self.interactions.create_interaction_atomic(draft, previous_interaction_id)
        else:
            interaction_id = self.interactions.create_interaction(draft, previous_interaction_id)

        if metadata is None:
            return PersistResult(interaction_id=interaction_id, memory_stored=False)

        metadata.source_interaction_id = interaction_id
        try:
            memory_id = self.memories.store(collection, memory_content, metadata)
        except BackendError as e:
            logger.error(f'Interaction {interaction_id} stored but memory write failed: {e}')
            raise CognitiveWorkflowError(f'Interaction {interaction_id} stored but memory write failed: {e}', interaction_id)

        return PersistResult(interaction_id=interaction_id, memory_stored=True, memory_id=memory_id)

    def validate(self, interaction_id: Optional[str]) -> InteractionValidation:
        """
        Validate step: confirm the persisted interaction is structurally complete.

        An absent id, or one that is not an interaction id, is reported invalid
        without contacting the graph.
        """
        if not isinstance(interaction_id, str) or not interaction_id.strip():
            return InteractionValidation(interaction_id=None,
                                         exists=False,
                                         has_owning_user=False,
                                         has_at_least_one_topic=False,
                                         reason='missing interaction id')
        if not has_prefix(interaction_id, INTERACTION_PREFIX):
            return InteractionValidation(interaction_id=interaction_id,
                                         exists=False,
                                         has_owning_user=False,
                                         has_at_least_one_topic=False,
                                         reason='not an interaction id')

        result = self.interactions.validate_interaction(interaction_id)
        if not result.valid:
            logger.warning(f'Interaction {interaction_id} failed validation: {result.to_dict()}')
        return result
