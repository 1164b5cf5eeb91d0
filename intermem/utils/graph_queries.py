"""
Graph schema vocabulary and the parameterized Gremlin operations over it.

Vertex labels:  User {name, createdAt}, Interaction {id, user, input, output, timestamp,
                intent?, sentiment?, entities, topics, entity_tag*, topic_tag*}, Topic {name}
Edge labels:    INITIATED (User -> Interaction), FOLLOWS (Interaction -> Interaction),
                ABOUT (Interaction -> Topic), plus the RelationshipType cross-links.

Every caller-supplied value travels as a bytecode argument. Labels only ever come
from the constants below or from a validated RelationshipType member.
"""

import json
from typing import Any, Dict, Iterable, List, Optional, Tuple

from gremlin_python.process.graph_traversal import GraphTraversal, GraphTraversalSource, __
from gremlin_python.process.traversal import Cardinality, Column, Order, P, Scope

from ..models.core import Interaction, RelationshipType, TopicCount
from ..models.validation import parse_enum, require_scalar_mapping
from .logging_config import get_logger

logger = get_logger(__name__)

USER = 'User'
INTERACTION = 'Interaction'
TOPIC = 'Topic'

INITIATED = 'INITIATED'
FOLLOWS = 'FOLLOWS'
ABOUT = 'ABOUT'

INTERACTION_FIELDS = ('id', 'user', 'input', 'output', 'timestamp', 'intent', 'sentiment', 'entities', 'topics')


def resolve_relationship_label(relationship_type: Any) -> str:
    """Map a caller-supplied relationship type onto its edge label, rejecting anything outside the closed set."""
    return parse_enum(RelationshipType, relationship_type, 'relationship type').value


def _first(data: Dict[Any, Any], key: str, default: Any = None) -> Any:
    value = data.get(key, default)
    if isinstance(value, list):
        return value[0] if value else default
    return value


def _decode_list(raw: Any) -> List[str]:
    if not raw:
        return []
    if isinstance(raw, list):
        return [str(item) for item in raw]
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f'Undecodable list property: {raw!r}')
        return []
    return [str(item) for item in decoded] if isinstance(decoded, list) else []


def interaction_from_value_map(data: Dict[Any, Any]) -> Interaction:
    """Build an Interaction from a value_map() row."""
    return Interaction(id=_first(data, 'id', ''),
                       user=_first(data, 'user', ''),
                       input=_first(data, 'input', ''),
                       output=_first(data, 'output', ''),
                       timestamp=int(_first(data, 'timestamp', 0) or 0),
                       intent=_first(data, 'intent'),
                       sentiment=_first(data, 'sentiment'),
                       entities=_decode_list(_first(data, 'entities')),
                       topics=_decode_list(_first(data, 'topics')))


def _sorted_counts(counts: Dict[Any, Any], limit: int) -> List[TopicCount]:
    ranked = sorted(((str(name), int(count)) for name, count in (counts or {}).items()), key=lambda item: (-item[1], item[0]))
    return [TopicCount(topic=name, count=count) for name, count in ranked[:limit]]


class GraphQuerySet:
    """Parameterized reads and writes against the interaction graph.

    build_* methods return unexecuted traversals; the remaining methods execute
    them and translate results into model objects. Each method takes the
    session-scoped traversal source as its first argument.
    """

    # Users

    def build_user_upsert_flag(self, g: GraphTraversalSource, user: str, created_at: int) -> GraphTraversal:
        return g.V().has(USER, 'name', user).fold().coalesce(
            __.unfold().constant(False),
            __.add_v(USER).property('name', user).property('createdAt', created_at).constant(True))

    def upsert_user(self, g: GraphTraversalSource, user: str, created_at: int) -> bool:
        """Create the User if absent. Returns True when this call created it."""
        return bool(self.build_user_upsert_flag(g, user, created_at).next())

    def count_user_interactions(self, g: GraphTraversalSource, user: str) -> int:
        return int(g.V().has(USER, 'name', user).out(INITIATED).has_label(INTERACTION).count().next())

    def favorite_topics(self, g: GraphTraversalSource, user: str, limit: int = 10) -> List[TopicCount]:
        counts = g.V().has(USER, 'name', user).out(INITIATED).has_label(INTERACTION)\
            .out(ABOUT).has_label(TOPIC).group_count().by('name').next()
        return _sorted_counts(counts, limit)

    # Interaction reads

    def build_recent_interactions(self,
                                  g: GraphTraversalSource,
                                  user: str,
                                  since_ms: int,
                                  limit: int,
                                  topics: Optional[Iterable[str]] = None) -> GraphTraversal:
        traversal = g.V().has(INTERACTION, 'user', user).has('timestamp', P.gt(since_ms))
        topics = list(topics or [])
        if topics:
            traversal = traversal.has('topic_tag', P.within(topics))
        return traversal.order().by('timestamp', Order.desc).limit(limit).value_map(*INTERACTION_FIELDS)

    def recent_interactions(self,
                            g: GraphTraversalSource,
                            user: str,
                            since_ms: int,
                            limit: int,
                            topics: Optional[Iterable[str]] = None) -> List[Interaction]:
        rows = self.build_recent_interactions(g, user, since_ms, limit, topics).to_list()
        return [interaction_from_value_map(row) for row in rows]

    def last_interaction_id(self, g: GraphTraversalSource, user: str) -> Optional[str]:
        ids = g.V().has(INTERACTION, 'user', user).order().by('timestamp', Order.desc).limit(1).values('id').to_list()
        return ids[0] if ids else None

    def build_find_related(self,
                           g: GraphTraversalSource,
                           topics: List[str],
                           entities: List[str],
                           user: Optional[str],
                           limit: int,
                           since_ms: Optional[int] = None) -> GraphTraversal:
        traversal = g.V().has_label(INTERACTION)
        if user:
            traversal = traversal.has('user', user)
        if since_ms is not None:
            traversal = traversal.has('timestamp', P.gt(since_ms))
        if entities:
            traversal = traversal.has('entity_tag', P.within(entities))
        if topics:
            traversal = traversal.where(__.out(ABOUT).has(TOPIC, 'name', P.within(topics)))
        return traversal.dedup().order().by('timestamp', Order.desc).limit(limit).value_map(*INTERACTION_FIELDS)

    def find_related(self,
                     g: GraphTraversalSource,
                     topics: List[str],
                     entities: List[str],
                     user: Optional[str],
                     limit: int,
                     since_ms: Optional[int] = None) -> List[Interaction]:
        rows = self.build_find_related(g, topics, entities, user, limit, since_ms).to_list()
        return [interaction_from_value_map(row) for row in rows]

    def interaction_structure(self, g: GraphTraversalSource, interaction_id: str) -> Optional[Tuple[int, int]]:
        """Count owning users and topics of an interaction; None when it does not exist."""
        rows = g.V().has(INTERACTION, 'id', interaction_id)\
            .project('owners', 'topics')\
            .by(__.in_(INITIATED).has_label(USER).count())\
            .by(__.out(ABOUT).has_label(TOPIC).count())\
            .to_list()
        if not rows:
            return None
        return int(rows[0]['owners']), int(rows[0]['topics'])

    # Interaction writes

    def build_create_interaction(self, g: GraphTraversalSource, interaction: Interaction) -> GraphTraversal:
        traversal = g.add_v(INTERACTION).property('id', interaction.id)\
            .property('user', interaction.user)\
            .property('input', interaction.input)\
            .property('output', interaction.output)\
            .property('timestamp', interaction.timestamp)\
            .property('entities', json.dumps(interaction.entities))\
            .property('topics', json.dumps(interaction.topics))

        if interaction.intent is not None:
            traversal = traversal.property('intent', interaction.intent)

        if interaction.sentiment is not None:
            traversal = traversal.property('sentiment', interaction.sentiment)

        for entity in dict.fromkeys(interaction.entities):
            traversal = traversal.property(Cardinality.set_, 'entity_tag', entity)

        for topic in dict.fromkeys(interaction.topics):
            traversal = traversal.property(Cardinality.set_, 'topic_tag', topic)

        return traversal

    def create_interaction_vertex(self, g: GraphTraversalSource, interaction: Interaction) -> bool:
        self.build_create_interaction(g, interaction).next()
        logger.debug(f'Created interaction vertex: {interaction.id}')
        return True

    def build_link_follows(self, g: GraphTraversalSource, previous_id: str, interaction_id: str) -> GraphTraversal:
        return g.V().has(INTERACTION, 'id', previous_id).as_('previous')\
            .V().has(INTERACTION, 'id', interaction_id)\
            .add_e(FOLLOWS).from_('previous')

    def link_follows(self, g: GraphTraversalSource, previous_id: str, interaction_id: str) -> bool:
        return bool(self.build_link_follows(g, previous_id, interaction_id).to_list())

    def build_link_initiated(self, g: GraphTraversalSource, user: str, interaction_id: str, created_at: int) -> GraphTraversal:
        return g.V().has(USER, 'name', user).fold().coalesce(
            __.unfold(),
            __.add_v(USER).property('name', user).property('createdAt', created_at)).as_('owner')\
            .V().has(INTERACTION, 'id', interaction_id)\
            .add_e(INITIATED).from_('owner')

    def link_initiated(self, g: GraphTraversalSource, user: str, interaction_id: str, created_at: int) -> bool:
        return bool(self.build_link_initiated(g, user, interaction_id, created_at).to_list())

    def build_link_topic(self, g: GraphTraversalSource, interaction_id: str, topic: str) -> GraphTraversal:
        return g.V().has(TOPIC, 'name', topic).fold().coalesce(
            __.unfold(),
            __.add_v(TOPIC).property('name', topic)).as_('topic')\
            .V().has(INTERACTION, 'id', interaction_id)\
            .add_e(ABOUT).to('topic')

    def link_topic(self, g: GraphTraversalSource, interaction_id: str, topic: str) -> bool:
        return bool(self.build_link_topic(g, interaction_id, topic).to_list())

    def build_cross_link(self,
                         g: GraphTraversalSource,
                         from_id: str,
                         to_id: str,
                         relationship_type: Any,
                         properties: Optional[Dict[str, Any]] = None) -> GraphTraversal:
        label = resolve_relationship_label(relationship_type)
        properties = require_scalar_mapping(properties, 'properties')

        traversal = g.V().has(INTERACTION, 'id', from_id).as_('source')\
            .V().has(INTERACTION, 'id', to_id)\
            .add_e(label).from_('source')
        for key, value in properties.items():
            traversal = traversal.property(key, value)
        return traversal

    def create_cross_link(self,
                          g: GraphTraversalSource,
                          from_id: str,
                          to_id: str,
                          relationship_type: Any,
                          properties: Optional[Dict[str, Any]] = None) -> bool:
        return bool(self.build_cross_link(g, from_id, to_id, relationship_type, properties).to_list())

    # Analytics

    def _window(self, g: GraphTraversalSource, since_ms: int, user: Optional[str]) -> GraphTraversal:
        traversal = g.V().has_label(INTERACTION)
        if user:
            traversal = traversal.has('user', user)
        return traversal.has('timestamp', P.gt(since_ms))

    def build_insights(self, g: GraphTraversalSource, since_ms: int, user: Optional[str] = None) -> GraphTraversal:
        return self._window(g, since_ms, user).fold()\
            .project('total', 'intents', 'sentiments', 'topic_sets')\
            .by(__.count(Scope.local))\
            .by(__.unfold().values('intent').dedup().fold())\
            .by(__.unfold().values('sentiment').dedup().fold())\
            .by(__.unfold().values('topics').dedup().count())

    def insights_summary(self, g: GraphTraversalSource, since_ms: int, user: Optional[str] = None) -> Dict[str, Any]:
        row = self.build_insights(g, since_ms, user).next()
        return {
            'total': int(row.get('total', 0)),
            'intents': sorted(str(intent) for intent in row.get('intents', [])),
            'sentiments': sorted(str(sentiment) for sentiment in row.get('sentiments', [])),
            'topic_sets': int(row.get('topic_sets', 0)),
        }

    def build_topic_trends(self, g: GraphTraversalSource, since_ms: int, user: Optional[str], limit: int) -> GraphTraversal:
        return self._window(g, since_ms, user).out(ABOUT).has_label(TOPIC)\
            .group_count().by('name')\
            .order(Scope.local).by(Column.values, Order.desc).by(Column.keys, Order.asc)\
            .limit(Scope.local, limit)

    def topic_trends(self, g: GraphTraversalSource, since_ms: int, user: Optional[str], limit: int) -> List[TopicCount]:
        counts = self.build_topic_trends(g, since_ms, user, limit).next()
        return _sorted_counts(counts, limit)
