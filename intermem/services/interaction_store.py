"""
Interaction Store: graph reads and the multi-step interaction write.
"""

from typing import Any, Dict, Iterable, List, Optional

from ..models.core import EdgeWrite, Interaction, InteractionDraft, InteractionValidation, Sentiment, UserProfile
from ..models.errors import BackendError, PartialWriteError, ValidationError
from ..models.validation import (optional_text, parse_optional_enum, require_int_range, require_scalar_mapping,
                                 require_str_list, require_text)
from ..utils.config import config
from ..utils.graph_queries import FOLLOWS, GraphQuerySet, resolve_relationship_label
from ..utils.id_utils import generate_interaction_id
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient
from ..utils.timestamp_utils import days_ago_ms, next_timestamp_ms

logger = get_logger(__name__)

STEP_NODE = 'create_interaction'
STEP_FOLLOWS = 'link_previous'
STEP_INITIATED = 'link_user'
STEP_TOPICS = 'link_topics'

MAX_LIMIT = 100
MAX_WINDOW_DAYS = 3650


class InteractionStoreError(BackendError):
    """Custom exception for interaction store errors."""
    pass


def unique_in_order(values: Iterable[str]) -> List[str]:
    """Drop blanks and repeats, keeping the first occurrence of each value."""
    return [value for value in dict.fromkeys(values) if value and value.strip()]


def validate_draft(draft: InteractionDraft) -> InteractionDraft:
    """Normalise and validate an unsaved interaction. Raises ValidationError."""
    sentiment = parse_optional_enum(Sentiment, draft.sentiment, 'sentiment')
    return InteractionDraft(user=require_text(draft.user, 'user'),
                            input=require_text(draft.input, 'input'),
                            output=require_text(draft.output, 'output'),
                            intent=optional_text(draft.intent, 'intent'),
                            sentiment=sentiment,
                            entities=require_str_list(draft.entities, 'entities'),
                            topics=unique_in_order(require_str_list(draft.topics, 'topics')))


class InteractionStore:
    """Reads and writes interactions through scoped graph sessions."""

    def __init__(self, neptune: Optional[NeptuneClient] = None, queries: Optional[GraphQuerySet] = None):
        self.neptune = neptune or NeptuneClient(config.neptune, connect=False)
        self.queries = queries or GraphQuerySet()
        logger.info('Initialized InteractionStore')

    def get_or_create_user_profile(self, user: str) -> UserProfile:
        """Upsert the User vertex and count its interactions.

        Args:
            user: User name (identity key)

        Returns:
            UserProfile with interaction_count and created_if_missing
        """
        user = require_text(user, 'user')
        try:
            created = self.neptune.execute(self.queries.upsert_user, user, next_timestamp_ms())
            count = self.neptune.execute(self.queries.count_user_interactions, user)
        except BackendError as e:
            logger.error(f'Failed to load profile for {user}: {e}')
            raise InteractionStoreError(f'User profile lookup failed: {e}')

        if created:
            logger.info(f'Created user {user}')
        return UserProfile(user=user, interaction_count=count, created_if_missing=created)

    def get_user_profile(self, user: str, topic_limit: int = 10) -> UserProfile:
        """Profile plus the user's most frequent topics."""
        profile = self.get_or_create_user_profile(user)
        topic_limit = require_int_range(topic_limit, 'topic_limit', 1, MAX_LIMIT)
        if profile.interaction_count == 0:
            return profile
        try:
            profile.favorite_topics = self.neptune.execute(self.queries.favorite_topics, profile.user, topic_limit)
        except BackendError as e:
            raise InteractionStoreError(f'Favourite topic lookup failed: {e}')
        return profile

    def get_recent_interactions(self,
                                user: str,
                                window_days: int = 7,
                                limit: int = 5,
                                topics: Optional[Iterable[str]] = None) -> List[Interaction]:
        """
        Newest-first interactions of a user inside a day window.

        Args:
            user: User name
            window_days: Size of the window in whole days
            limit: Maximum number of interactions
            topics: When given, keep only interactions tagged with at least one of them

        Returns:
            List of Interaction objects, empty when nothing matches
        """
        user = require_text(user, 'user')
        window_days = require_int_range(window_days, 'window_days', 1, MAX_WINDOW_DAYS)
        limit = require_int_range(limit, 'limit', 1, MAX_LIMIT)
        topics = unique_in_order(require_str_list(topics, 'topics'))

        try:
            return self.neptune.execute(self.queries.recent_interactions, user, days_ago_ms(window_days), limit, topics)
        except BackendError as e:
            raise InteractionStoreError(f'Recent interaction lookup failed: {e}')

    def get_last_interaction_id(self, user: str) -> Optional[str]:
        user = require_text(user, 'user')
        try:
            return self.neptune.execute(self.queries.last_interaction_id, user)
        except BackendError as e:
            raise InteractionStoreError(f'Last interaction lookup failed: {e}')

    def create_interaction(self, draft: InteractionDraft, previous_interaction_id: Optional[str] = None) -> str:
        """
        Persist an interaction in four ordered, independent steps.

        1. create the Interaction vertex
        2. FOLLOWS edge from previous_interaction_id (no-op if it does not resolve)
        3. upsert the User and add the INITIATED edge
        4. upsert each topic and add an ABOUT edge

        A failure in step 1 persists nothing. A later failure leaves earlier steps
        in place and raises PartialWriteError.

        Returns:
            The new interaction id

        Raises:
            ValidationError: If the draft is malformed
            InteractionStoreError: If the vertex could not be created
            PartialWriteError: If a step after vertex creation failed
        """
        draft = validate_draft(draft)
        previous_interaction_id = optional_text(previous_interaction_id, 'previous_interaction_id')
        interaction = self._materialize(draft)

        try:
            self.neptune.execute(self.queries.create_interaction_vertex, interaction)
        except BackendError as e:
            logger.error(f'Failed to create interaction {interaction.id}: {e}')
            raise InteractionStoreError(f'Interaction create failed: {e}')

        completed = [STEP_NODE]
        step = STEP_FOLLOWS
        try:
            if previous_interaction_id:
                chained = self.neptune.execute(self.queries.link_follows, previous_interaction_id, interaction.id)
                if not chained:
                    logger.warning(f'Previous interaction {previous_interaction_id} not found; {interaction.id} is unchained')
                completed.append(STEP_FOLLOWS)

            step = STEP_INITIATED
            self.neptune.execute(self.queries.link_initiated, interaction.user, interaction.id, interaction.timestamp)
            completed.append(STEP_INITIATED)

            step = STEP_TOPICS
            for topic in interaction.topics:
                self.neptune.execute(self.queries.link_topic, interaction.id, topic)
            if interaction.topics:
                completed.append(STEP_TOPICS)
        except BackendError as e:
            logger.error(f'Interaction {interaction.id} partially written, step {step} failed: {e}')
            raise PartialWriteError(interaction.id, step, completed, e)

        logger.debug(f'Stored interaction {interaction.id} for {interaction.user} with {len(interaction.topics)} topics')
        return interaction.id

    def create_interaction_atomic(self, draft: InteractionDraft, previous_interaction_id: Optional[str] = None) -> str:
        """Same steps as create_interaction inside one backend transaction; all or nothing."""
        draft = validate_draft(draft)
        previous_interaction_id = optional_text(previous_interaction_id, 'previous_interaction_id')
        interaction = self._materialize(draft)

        try:
            self.neptune.execute_atomic(self._write_all_steps, interaction, previous_interaction_id)
        except BackendError as e:
            logger.error(f'Atomic interaction write rolled back for {interaction.id}: {e}')
            raise InteractionStoreError(f'Atomic interaction create failed: {e}')
        return interaction.id

    def _write_all_steps(self, gtx, interaction: Interaction, previous_interaction_id: Optional[str]) -> None:
        self.queries.create_interaction_vertex(gtx, interaction)
        if previous_interaction_id:
            self.queries.link_follows(gtx, previous_interaction_id, interaction.id)
        self.queries.link_initiated(gtx, interaction.user, interaction.id, interaction.timestamp)
        for topic in interaction.topics:
            self.queries.link_topic(gtx, interaction.id, topic)

    def _materialize(self, draft: InteractionDraft) -> Interaction:
        return Interaction(id=generate_interaction_id(),
                           user=draft.user,
                           input=draft.input,
                           output=draft.output,
                           timestamp=next_timestamp_ms(),
                           intent=draft.intent,
                           sentiment=draft.sentiment.value if draft.sentiment else None,
                           entities=list(draft.entities),
                           topics=list(draft.topics))

    def link_follows(self, previous_id: str, interaction_id: str) -> EdgeWrite:
        """Chain two existing interactions; created is False if either does not resolve."""
        previous_id = require_text(previous_id, 'previous_id')
        interaction_id = require_text(interaction_id, 'interaction_id')
        try:
            created = self.neptune.execute(self.queries.link_follows, previous_id, interaction_id)
        except BackendError as e:
            raise InteractionStoreError(f'Follows link failed: {e}')
        return EdgeWrite(from_id=previous_id, to_id=interaction_id, label=FOLLOWS, created=created)

    def create_cross_link(self,
                          from_id: str,
                          to_id: str,
                          relationship_type: Any,
                          properties: Optional[Dict[str, Any]] = None) -> EdgeWrite:
        """
        Create a typed edge between two interactions.

        Raises:
            ValidationError: If relationship_type is outside the fixed set or properties are not scalars
        """
        from_id = require_text(from_id, 'from_id')
        to_id = require_text(to_id, 'to_id')
        label = resolve_relationship_label(relationship_type)
        properties = require_scalar_mapping(properties, 'properties')

        try:
            created = self.neptune.execute(self.queries.create_cross_link, from_id, to_id, label, properties)
        except BackendError as e:
            raise InteractionStoreError(f'Relationship create failed: {e}')

        if not created:
            logger.debug(f'No {label} edge created: {from_id} or {to_id} not found')
        return EdgeWrite(from_id=from_id, to_id=to_id, label=label, created=created)

    def find_related(self,
                     topics: Optional[Iterable[str]] = None,
                     entities: Optional[Iterable[str]] = None,
                     user: Optional[str] = None,
                     limit: int = 5,
                     window_days: Optional[int] = None) -> List[Interaction]:
        """
        Interactions matching every supplied filter dimension, newest first.

        Within one dimension any listed value matches; across dimensions all must hold.
        """
        topics = unique_in_order(require_str_list(topics, 'topics'))
        entities = unique_in_order(require_str_list(entities, 'entities'))
        user = optional_text(user, 'user') or None
        limit = require_int_range(limit, 'limit', 1, MAX_LIMIT)
        since = None
        if window_days is not None:
            since = days_ago_ms(require_int_range(window_days, 'window_days', 1, MAX_WINDOW_DAYS))

        try:
            return self.neptune.execute(self.queries.find_related, topics, entities, user, limit, since)
        except BackendError as e:
            raise InteractionStoreError(f'Related interaction search failed: {e}')

    def validate_interaction(self, interaction_id: str) -> InteractionValidation:
        """Post-write structural check of one interaction."""
        if not isinstance(interaction_id, str) or not interaction_id.strip():
            raise ValidationError('interaction_id must be a non-empty string')

        try:
            structure = self.neptune.execute(self.queries.interaction_structure, interaction_id)
        except BackendError as e:
            raise InteractionStoreError(f'Interaction validation failed: {e}')

        if structure is None:
            return InteractionValidation(interaction_id=interaction_id,
                                         exists=False,
                                         has_owning_user=False,
                                         has_at_least_one_topic=False,
                                         reason='interaction not found')

        owners, topics = structure
        return InteractionValidation(interaction_id=interaction_id,
                                     exists=True,
                                     has_owning_user=owners > 0,
                                     has_at_least_one_topic=topics > 0)
