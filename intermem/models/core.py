"""
Core data models for the interaction memory engine.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..utils.timestamp_utils import to_iso


class RelationshipType(str, Enum):
    """Closed set of cross-link labels between two interactions."""
    RELATED_TO = 'RELATED_TO'
    CONTRADICTS = 'CONTRADICTS'
    BUILDS_ON = 'BUILDS_ON'
    REFERENCES = 'REFERENCES'
    SIMILAR_TO = 'SIMILAR_TO'


class Sentiment(str, Enum):
    POSITIVE = 'positive'
    NEGATIVE = 'negative'
    NEUTRAL = 'neutral'
    MIXED = 'mixed'


class MemoryType(str, Enum):
    INSIGHT = 'insight'
    FACT = 'fact'
    PREFERENCE = 'preference'
    PATTERN = 'pattern'
    CONNECTION = 'connection'


class Emotion(str, Enum):
    CURIOSITY = 'curiosity'
    SATISFACTION = 'satisfaction'
    CONCERN = 'concern'
    NEUTRAL = 'neutral'
    EXCITEMENT = 'excitement'


@dataclass
class InteractionDraft:
    """An exchange that has not been persisted yet."""
    user: str
    input: str
    output: str
    intent: Optional[str] = None
    sentiment: Optional[Sentiment] = None
    entities: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)


@dataclass
class Interaction:
    """A recorded exchange between a user and the agent. Immutable once written."""
    id: str
    user: str
    input: str
    output: str
    timestamp: int  # epoch milliseconds
    intent: Optional[str] = None
    sentiment: Optional[str] = None
    entities: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['time'] = to_iso(self.timestamp)
        return data


@dataclass
class TopicCount:
    topic: str
    count: int


@dataclass
class UserProfile:
    user: str
    interaction_count: int
    created_if_missing: bool
    favorite_topics: List[TopicCount] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EdgeWrite:
    """Outcome of a pattern-matched edge write; created is False when an endpoint did not resolve."""
    from_id: str
    to_id: str
    label: str
    created: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class InteractionValidation:
    interaction_id: Optional[str]
    exists: bool
    has_owning_user: bool
    has_at_least_one_topic: bool
    reason: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.exists and self.has_owning_user

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['valid'] = self.valid
        return data


@dataclass
class MemoryMetadata:
    """Structured metadata attached to a semantic memory document."""
    type: MemoryType
    user: Optional[str] = None
    confidence: float = 0.8
    importance: float = 0.5
    tags: Optional[str] = None
    emotion: Optional[Emotion] = None
    source_interaction_id: Optional[str] = None

    def to_fields(self) -> Dict[str, Any]:
        """Flatten to stored metadata, dropping unset optional fields."""
        fields = {
            'type': self.type.value,
            'confidence': self.confidence,
            'importance': self.importance,
            'user': self.user,
            'tags': self.tags,
            'emotion': self.emotion.value if self.emotion else None,
            'source_interaction_id': self.source_interaction_id,
        }
        return {key: value for key, value in fields.items() if value is not None}


@dataclass
class MemoryHit:
    """One nearest-neighbour result; smaller distance means closer."""
    id: str
    distance: float
    document: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RecallContext:
    """Consolidated context returned by the recall step of the cognitive workflow."""
    user: str
    interaction_count: int
    is_new_user: bool
    last_interaction_id: Optional[str]
    suggested_topics: List[str]
    recent_interactions: List[Interaction]
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['recent_interactions'] = [interaction.to_dict() for interaction in self.recent_interactions]
        return data


@dataclass
class PersistResult:
    interaction_id: str
    memory_stored: bool
    memory_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Insights:
    period_days: int
    user: Optional[str]
    total_interactions: int
    intents: List[str]
    sentiments: List[str]
    unique_topic_sets: int
    trending_topics: List[TopicCount] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
