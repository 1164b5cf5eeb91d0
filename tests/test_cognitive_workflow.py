import pytest

from intermem.models.errors import ValidationError
from intermem.services.cognitive_workflow import CognitiveWorkflowError
from intermem.utils.opensearch_client import OpenSearchError


def test_recall_for_new_user(workflow, graph):
    context = workflow.think('newcomer', 'How do graph databases work?')

    assert context.interaction_count == 0
    assert context.is_new_user
    assert context.last_interaction_id is None
    assert context.recent_interactions == []
    assert 'graph' in context.suggested_topics
    assert 'newcomer' in graph.users
    assert graph.interactions == {}


def test_recall_without_extraction(workflow):
    assert workflow.think('alice', 'graph databases', extract=False).suggested_topics == []


def test_persist_chains_from_recall(workflow, graph):
    first = workflow.respond('alice', 'What is Neptune?', 'A graph database service', topics=['neptune'])
    context = workflow.think('alice', 'And OpenSearch?')

    assert context.interaction_count == 1
    assert not context.is_new_user
    assert context.last_interaction_id == first.interaction_id

    second = workflow.respond('alice',
                              'And OpenSearch?',
                              'A search engine',
                              previous_interaction_id=context.last_interaction_id)

    assert (first.interaction_id, second.interaction_id) in {
        (edge['from'], edge['to']) for edge in graph.edges_labelled('FOLLOWS')
    }
    assert graph.about[second.interaction_id] == ['opensearch']


def test_persist_with_explicit_empty_topics(workflow, graph):
    result = workflow.respond('alice', 'Something about graphs', 'ok', topics=[])

    assert result.interaction_id not in graph.about
    assert not workflow.validate(result.interaction_id).has_at_least_one_topic


def test_persist_with_memory_links_source_interaction(workflow, memories):
    result = workflow.respond('alice',
                              'I always drink oat milk',
                              'Noted',
                              store_memory=True,
                              memory_content='Alice drinks oat milk',
                              memory_type='preference',
                              memory_importance=0.9)

    assert result.memory_stored
    assert result.memory_id.startswith('mem_')
    hit = memories.query(None, 'oat milk')[0][0]
    assert hit.id == result.memory_id
    assert hit.metadata['source_interaction_id'] == result.interaction_id
    assert hit.metadata['user'] == 'alice'
    assert hit.metadata['importance'] == 0.9


def test_persist_memory_requires_content(workflow, neptune):
    with pytest.raises(ValidationError):
        workflow.respond('alice', 'hello there', 'hi', store_memory=True)
    assert neptune.calls == []


@pytest.mark.parametrize('collection', ['Bad Name', 'a/b', 5])
def test_persist_memory_rejects_bad_collection_before_writing(workflow, graph, neptune, vector_index, collection):
    with pytest.raises(ValidationError):
        workflow.respond('alice',
                         'hello there',
                         'hi',
                         store_memory=True,
                         memory_content='Alice says hi',
                         collection=collection)

    assert graph.interactions == {}
    assert neptune.calls == []
    assert vector_index.collections == {}


@pytest.mark.parametrize('bounds', [{'window_days': 5000}, {'limit': 101}, {'window_days': 0}])
def test_recall_rejects_out_of_range_bounds_before_upserting(workflow, graph, neptune, bounds):
    with pytest.raises(ValidationError):
        workflow.think('bob', 'hello graphs', **bounds)

    assert neptune.calls == []
    assert 'bob' not in graph.users


def test_memory_failure_reports_stored_interaction(workflow, graph, vector_index, monkeypatch):

    def broken(collection, documents):
        raise OpenSearchError('index unavailable')

    monkeypatch.setattr(vector_index, 'index_documents', broken)

    with pytest.raises(CognitiveWorkflowError) as excinfo:
        workflow.respond('alice', 'remember this', 'ok', store_memory=True, memory_content='a fact')

    assert excinfo.value.interaction_id in graph.interactions


def test_validate_after_persist(workflow):
    result = workflow.respond('alice', 'Tell me about vectors', 'Vectors are arrays')

    validation = workflow.validate(result.interaction_id)
    assert validation.valid
    assert validation.has_owning_user


@pytest.mark.parametrize('interaction_id', [None, '', '   ', 'mem_123', 'garbage'])
def test_validate_rejects_bad_ids_without_backend_call(workflow, neptune, interaction_id):
    result = workflow.validate(interaction_id)

    assert not result.valid
    assert result.reason
    assert neptune.calls == []


def test_validate_unknown_interaction(workflow):
    result = workflow.validate('int_doesnotexist')

    assert not result.exists
    assert result.reason == 'interaction not found'
