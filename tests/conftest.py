"""
In-memory stand-ins for the graph, vector and embedding backends.
"""

import copy
import math
import re
import zlib
from collections import Counter
from typing import Any, Dict, List

import pytest

from intermem.models.core import Interaction, InteractionDraft, TopicCount
from intermem.models.errors import BackendError, ValidationError
from intermem.services.analytics import AnalyticsAggregator
from intermem.services.cognitive_workflow import CognitiveWorkflow
from intermem.services.interaction_store import InteractionStore
from intermem.services.operations import MemoryOperations
from intermem.services.semantic_memory import SemanticMemoryStore
from intermem.utils.config import MemoryConfig, config
from intermem.utils.graph_queries import resolve_relationship_label
from intermem.utils.neptune_client import NeptuneError
from intermem.utils.opensearch_client import OpenSearchError


class FakeGraphQuerySet:
    """Implements the GraphQuerySet surface over plain dicts. The traversal source argument is ignored."""

    def __init__(self):
        self.users: Dict[str, int] = {}
        self.interactions: Dict[str, Interaction] = {}
        self.initiated: Dict[str, str] = {}
        self.about: Dict[str, List[str]] = {}
        self.topics: set = set()
        self.edges: List[Dict[str, Any]] = []
        self.fail_on: Dict[str, Exception] = {}

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise self.fail_on[name]

    def _snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy({key: value for key, value in self.__dict__.items() if key != 'fail_on'})

    def _restore(self, state: Dict[str, Any]) -> None:
        self.__dict__.update(state)

    # Users

    def upsert_user(self, g, user, created_at):
        self._maybe_fail('upsert_user')
        if user in self.users:
            return False
        self.users[user] = created_at
        return True

    def count_user_interactions(self, g, user):
        return sum(1 for owner in self.initiated.values() if owner == user)

    def favorite_topics(self, g, user, limit=10):
        counts = Counter(topic for interaction_id, owner in self.initiated.items() if owner == user
                         for topic in self.about.get(interaction_id, []))
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [TopicCount(topic=name, count=count) for name, count in ranked[:limit]]

    # Reads

    def _newest_first(self, interactions):
        return sorted(interactions, key=lambda interaction: interaction.timestamp, reverse=True)

    def recent_interactions(self, g, user, since_ms, limit, topics=None):
        self._maybe_fail('recent_interactions')
        topics = set(topics or [])
        rows = [
            interaction for interaction in self.interactions.values()
            if interaction.user == user and interaction.timestamp > since_ms and (not topics or topics & set(interaction.topics))
        ]
        return self._newest_first(rows)[:limit]

    def last_interaction_id(self, g, user):
        rows = self._newest_first(interaction for interaction in self.interactions.values() if interaction.user == user)
        return rows[0].id if rows else None

    def find_related(self, g, topics, entities, user, limit, since_ms=None):
        rows = []
        for interaction in self.interactions.values():
            if user and interaction.user != user:
                continue
            if since_ms is not None and interaction.timestamp <= since_ms:
                continue
            if entities and not set(entities) & set(interaction.entities):
                continue
            if topics and not set(topics) & set(self.about.get(interaction.id, [])):
                continue
            rows.append(interaction)
        return self._newest_first(rows)[:limit]

    def interaction_structure(self, g, interaction_id):
        if interaction_id not in self.interactions:
            return None
        return (1 if interaction_id in self.initiated else 0), len(self.about.get(interaction_id, []))

    # Writes

    def create_interaction_vertex(self, g, interaction):
        self._maybe_fail('create_interaction_vertex')
        self.interactions[interaction.id] = copy.deepcopy(interaction)
        return True

    def _add_edge(self, from_id, to_id, label, properties=None):
        if from_id not in self.interactions or to_id not in self.interactions:
            return False
        self.edges.append({'from': from_id, 'to': to_id, 'label': label, 'properties': dict(properties or {})})
        return True

    def link_follows(self, g, previous_id, interaction_id):
        self._maybe_fail('link_follows')
        return self._add_edge(previous_id, interaction_id, 'FOLLOWS')

    def link_initiated(self, g, user, interaction_id, created_at):
        self._maybe_fail('link_initiated')
        self.users.setdefault(user, created_at)
        if interaction_id not in self.interactions:
            return False
        self.initiated[interaction_id] = user
        return True

    def link_topic(self, g, interaction_id, topic):
        self._maybe_fail('link_topic')
        self.topics.add(topic)
        if interaction_id not in self.interactions:
            return False
        self.about.setdefault(interaction_id, []).append(topic)
        return True

    def create_cross_link(self, g, from_id, to_id, relationship_type, properties=None):
        return self._add_edge(from_id, to_id, resolve_relationship_label(relationship_type), properties)

    # Analytics

    def _window(self, since_ms, user):
        return [
            interaction for interaction in self.interactions.values()
            if interaction.timestamp > since_ms and (not user or interaction.user == user)
        ]

    def insights_summary(self, g, since_ms, user=None):
        rows = self._window(since_ms, user)
        return {
            'total': len(rows),
            'intents': sorted({row.intent for row in rows if row.intent}),
            'sentiments': sorted({row.sentiment for row in rows if row.sentiment}),
            'topic_sets': len({tuple(row.topics) for row in rows}),
        }

    def topic_trends(self, g, since_ms, user, limit):
        counts = Counter(topic for row in self._window(since_ms, user) for topic in self.about.get(row.id, []))
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [TopicCount(topic=name, count=count) for name, count in ranked[:limit]]

    def edges_labelled(self, label):
        return [edge for edge in self.edges if edge['label'] == label]


class FakeNeptune:
    """Mirrors NeptuneClient.execute and execute_atomic over a FakeGraphQuerySet."""

    def __init__(self, graph: FakeGraphQuerySet):
        self.graph = graph
        self.calls: List[str] = []
        self.closed = False

    def _wrap(self, name, call):
        try:
            return call()
        except (ValidationError, BackendError):
            raise
        except Exception as e:
            raise NeptuneError(f'Failed to {name}: {e}')

    def execute(self, query, *args, **kwargs):
        self.calls.append(query.__name__)
        return self._wrap(query.__name__, lambda: query(None, *args, **kwargs))

    def execute_atomic(self, unit, *args, **kwargs):
        self.calls.append(unit.__name__)
        state = self.graph._snapshot()
        try:
            return self._wrap(unit.__name__, lambda: unit(None, *args, **kwargs))
        except BaseException:
            self.graph._restore(state)
            raise

    def health_check(self):
        return True

    def close(self):
        self.closed = True


class FakeVectorIndex:
    """Cosine-distance nearest-neighbour search over in-memory collections."""

    def __init__(self):
        self.collections: Dict[str, List[Dict[str, Any]]] = {}
        self.fail_search = False

    def ensure_collection(self, collection):
        if collection in self.collections:
            return 'cached'
        self.collections[collection] = []
        return 'created'

    def index_documents(self, collection, documents):
        self.collections[collection].extend(copy.deepcopy(documents))
        return len(documents)

    @staticmethod
    def _matches(document, filters):
        metadata = document.get('metadata') or {}
        for clause in filters or []:
            if 'term' in clause:
                (key, value), = clause['term'].items()
                if metadata.get(key.split('.', 1)[1]) != value:
                    return False
            if 'range' in clause:
                (key, bounds), = clause['range'].items()
                current = metadata.get(key.split('.', 1)[1])
                if current is None or current < bounds['gte']:
                    return False
        return True

    def knn_search(self, collection, query_vector, top_k, filters=None):
        if self.fail_search:
            raise OpenSearchError('vector backend unavailable')
        results = []
        for document in self.collections.get(collection, []):
            if not self._matches(document, filters):
                continue
            source = {key: value for key, value in document.items() if key != 'embedding'}
            results.append({'id': document['id'], 'distance': cosine_distance(query_vector, document['embedding']),
                            'document': source})
        results.sort(key=lambda result: result['distance'])
        return results[:top_k]

    def health_check(self):
        return True


def cosine_distance(a, b):
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if not norm:
        return 1.0
    return 1.0 - dot / norm


class FakeEmbed:
    """Deterministic bag-of-words embedding."""

    dimension = 1024

    def __init__(self):
        self.calls = 0

    def _vector(self, text):
        self.calls += 1
        vector = [0.0] * self.dimension
        for word in re.findall(r'\w+', text.lower()):
            vector[zlib.crc32(word.encode('utf-8')) % self.dimension] += 1.0
        return vector

    def embed_document(self, text):
        return self._vector(text)

    def embed_documents(self, texts):
        return [self._vector(text) for text in texts]

    def embed_query(self, text):
        return self._vector(text)

    def health_check(self):
        return True


def memory_config(**overrides) -> MemoryConfig:
    values = dict(default_collection='test_memories',
                  source_tag='intermem',
                  recall_window_days=7,
                  recall_limit=5,
                  insights_window_days=30)
    values.update(overrides)
    return MemoryConfig(**values)


@pytest.fixture
def graph():
    return FakeGraphQuerySet()


@pytest.fixture
def neptune(graph):
    return FakeNeptune(graph)


@pytest.fixture
def store(neptune, graph):
    return InteractionStore(neptune, graph)


@pytest.fixture
def vector_index():
    return FakeVectorIndex()


@pytest.fixture
def embed():
    return FakeEmbed()


@pytest.fixture
def memories(vector_index, embed):
    return SemanticMemoryStore(vector_index, embed, memory_config())


@pytest.fixture
def workflow(store, memories):
    return CognitiveWorkflow(store, memories, memory_config())


@pytest.fixture
def analytics(neptune, graph):
    return AnalyticsAggregator(neptune, graph)


@pytest.fixture
def operations(store, memories, workflow, analytics):
    app_config = copy.copy(config)
    app_config.memory = memory_config()
    return MemoryOperations(store, memories, workflow, analytics, app_config)


@pytest.fixture
def make_draft():

    def factory(user='alice', user_input='Tell me about graph databases', output='Graphs store vertices and edges', **fields):
        return InteractionDraft(user=user, input=user_input, output=output, **fields)

    return factory
