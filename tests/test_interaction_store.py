import pytest

from intermem.models.errors import PartialWriteError, ValidationError
from intermem.services.interaction_store import InteractionStoreError
from intermem.utils.neptune_client import NeptuneError


def test_create_runs_steps_in_order(store, neptune, graph, make_draft):
    first = store.create_interaction(make_draft(topics=['graphs']))
    neptune.calls.clear()

    second = store.create_interaction(make_draft(topics=['graphs', 'memory']), previous_interaction_id=first)

    assert neptune.calls == ['create_interaction_vertex', 'link_follows', 'link_initiated', 'link_topic', 'link_topic']
    assert graph.initiated[second] == 'alice'
    assert graph.about[second] == ['graphs', 'memory']
    assert graph.interactions[second].timestamp > graph.interactions[first].timestamp


def test_follows_chain_and_branching(store, graph, make_draft):
    root = store.create_interaction(make_draft())
    left = store.create_interaction(make_draft(), previous_interaction_id=root)
    right = store.create_interaction(make_draft(), previous_interaction_id=root)

    follows = {(edge['from'], edge['to']) for edge in graph.edges_labelled('FOLLOWS')}
    assert follows == {(root, left), (root, right)}


def test_unknown_previous_id_leaves_interaction_unchained(store, graph, make_draft):
    interaction_id = store.create_interaction(make_draft(topics=['graphs']), previous_interaction_id='int_missing')

    assert interaction_id in graph.interactions
    assert graph.edges_labelled('FOLLOWS') == []
    assert graph.initiated[interaction_id] == 'alice'


def test_topics_are_deduplicated(store, graph, make_draft):
    interaction_id = store.create_interaction(make_draft(topics=['graphs', 'graphs', 'memory']))

    assert graph.about[interaction_id] == ['graphs', 'memory']
    assert graph.interactions[interaction_id].topics == ['graphs', 'memory']


def test_failure_creating_vertex_persists_nothing(store, graph, make_draft):
    graph.fail_on['create_interaction_vertex'] = NeptuneError('boom')

    with pytest.raises(InteractionStoreError):
        store.create_interaction(make_draft(topics=['graphs']))

    assert graph.interactions == {}
    assert graph.initiated == {}


def test_later_step_failure_reports_partial_write(store, graph, make_draft):
    graph.fail_on['link_topic'] = NeptuneError('topic upsert failed')

    with pytest.raises(PartialWriteError) as excinfo:
        store.create_interaction(make_draft(topics=['graphs']))

    error = excinfo.value
    assert error.failed_step == 'link_topics'
    assert error.completed_steps == ('create_interaction', 'link_user')
    assert error.interaction_id in graph.interactions
    assert graph.initiated[error.interaction_id] == 'alice'


def test_atomic_create_rolls_back_everything(store, graph, make_draft):
    graph.fail_on['link_topic'] = NeptuneError('topic upsert failed')

    with pytest.raises(InteractionStoreError):
        store.create_interaction_atomic(make_draft(topics=['graphs']))

    assert graph.interactions == {}
    assert graph.initiated == {}


def test_atomic_create_writes_all_steps(store, graph, neptune, make_draft):
    first = store.create_interaction(make_draft())
    second = store.create_interaction_atomic(make_draft(topics=['graphs']), previous_interaction_id=first)

    assert neptune.calls[-1] == '_write_all_steps'
    assert graph.about[second] == ['graphs']
    assert (first, second) in {(edge['from'], edge['to']) for edge in graph.edges_labelled('FOLLOWS')}


@pytest.mark.parametrize('fields', [
    {'user': ''},
    {'user_input': '   '},
    {'output': None},
    {'sentiment': 'furious'},
    {'topics': 'graphs'},
    {'entities': [1, 2]},
])
def test_invalid_draft_makes_no_backend_call(store, neptune, make_draft, fields):
    with pytest.raises(ValidationError):
        store.create_interaction(make_draft(**fields))

    assert neptune.calls == []


def test_recent_interactions_newest_first_and_limited(store, make_draft):
    ids = [store.create_interaction(make_draft(user_input=f'question {n}')) for n in range(4)]

    recent = store.get_recent_interactions('alice', window_days=7, limit=3)

    assert [interaction.id for interaction in recent] == list(reversed(ids))[:3]


def test_recent_interactions_topic_filter(store, make_draft):
    store.create_interaction(make_draft(topics=['cooking']))
    wanted = store.create_interaction(make_draft(topics=['graphs']))

    recent = store.get_recent_interactions('alice', topics=['graphs', 'databases'])

    assert [interaction.id for interaction in recent] == [wanted]


def test_recent_interactions_rejects_bad_window(store, neptune):
    with pytest.raises(ValidationError):
        store.get_recent_interactions('alice', window_days=0)
    with pytest.raises(ValidationError):
        store.get_recent_interactions('alice', limit=True)
    assert neptune.calls == []


def test_user_profile_counts_and_favourites(store, make_draft):
    profile = store.get_or_create_user_profile('bob')
    assert profile.created_if_missing
    assert profile.interaction_count == 0

    store.create_interaction(make_draft(user='bob', topics=['graphs', 'memory']))
    store.create_interaction(make_draft(user='bob', topics=['graphs']))

    profile = store.get_user_profile('bob')
    assert not profile.created_if_missing
    assert profile.interaction_count == 2
    assert [(item.topic, item.count) for item in profile.favorite_topics] == [('graphs', 2), ('memory', 1)]


def test_last_interaction_id(store, make_draft):
    assert store.get_last_interaction_id('alice') is None
    store.create_interaction(make_draft())
    latest = store.create_interaction(make_draft())

    assert store.get_last_interaction_id('alice') == latest


def test_cross_link_between_existing_interactions(store, graph, make_draft):
    a = store.create_interaction(make_draft())
    b = store.create_interaction(make_draft())

    result = store.create_cross_link(a, b, 'BUILDS_ON', {'confidence': 0.9})

    assert result.created
    assert graph.edges_labelled('BUILDS_ON') == [{'from': a, 'to': b, 'label': 'BUILDS_ON', 'properties': {'confidence': 0.9}}]


def test_cross_link_with_missing_endpoint_is_noop(store, graph, make_draft):
    a = store.create_interaction(make_draft())

    result = store.create_cross_link(a, 'int_missing', 'RELATED_TO')

    assert not result.created
    assert graph.edges_labelled('RELATED_TO') == []


def test_cross_link_validates_before_backend(store, neptune):
    with pytest.raises(ValidationError):
        store.create_cross_link('int_a', 'int_b', 'DELETES')
    with pytest.raises(ValidationError):
        store.create_cross_link('int_a', 'int_b', 'RELATED_TO', {'nested': ['x']})
    assert neptune.calls == []


def test_find_related_and_across_or_within(store, make_draft):
    both = store.create_interaction(make_draft(topics=['graphs'], entities=['Neptune']))
    store.create_interaction(make_draft(topics=['graphs'], entities=['Postgres']))
    other_topic = store.create_interaction(make_draft(topics=['memory'], entities=['Neptune']))

    assert [i.id for i in store.find_related(topics=['graphs'], entities=['Neptune'])] == [both]
    related = store.find_related(topics=['graphs', 'memory'], entities=['Neptune'])
    assert [i.id for i in related] == [other_topic, both]


def test_find_related_filters_user(store, make_draft):
    store.create_interaction(make_draft(user='alice', topics=['graphs']))
    bobs = store.create_interaction(make_draft(user='bob', topics=['graphs']))

    assert [i.id for i in store.find_related(topics=['graphs'], user='bob')] == [bobs]


def test_validate_interaction(store, make_draft):
    interaction_id = store.create_interaction(make_draft(topics=['graphs']))

    result = store.validate_interaction(interaction_id)
    assert result.valid
    assert result.has_at_least_one_topic

    missing = store.validate_interaction('int_missing')
    assert not missing.exists
    assert not missing.valid


def test_link_follows_between_existing_interactions(store, make_draft):
    first = store.create_interaction(make_draft())
    second = store.create_interaction(make_draft())

    assert store.link_follows(first, second).created
    assert not store.link_follows(first, 'int_missing').created
