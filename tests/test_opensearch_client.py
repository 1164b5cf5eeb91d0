import dataclasses
from unittest.mock import MagicMock, patch

import pytest
from opensearchpy.exceptions import RequestError

from intermem.utils.config import OpenSearchConfig
from intermem.utils.opensearch_client import OpenSearchClient, OpenSearchError, score_to_distance


@pytest.fixture
def os_config():
    return OpenSearchConfig(endpoint='https://search.example.com',
                            port=443,
                            region='us-east-1',
                            service='aoss',
                            index_prefix='intermem',
                            dimension=8,
                            index_sync_seconds=0)


@pytest.fixture
def raw_client():
    client = MagicMock()
    client.indices.exists.return_value = False
    client.indices.create.return_value = {'acknowledged': True}
    return client


def test_score_to_distance():
    assert score_to_distance(1.0) == 0.0
    assert score_to_distance(0.5) == pytest.approx(1.0)
    assert score_to_distance(0) == float('inf')


def test_collection_index_created_once(os_config, raw_client):
    client = OpenSearchClient(os_config, client=raw_client)

    assert client.ensure_collection('memories') == 'created'
    assert client.ensure_collection('memories') == 'cached'

    raw_client.indices.create.assert_called_once()
    kwargs = raw_client.indices.create.call_args.kwargs
    assert kwargs['index'] == 'intermem_memories'
    assert kwargs['body']['mappings']['properties']['embedding']['dimension'] == 8


def test_existing_index_is_not_recreated(os_config, raw_client):
    raw_client.indices.exists.return_value = True
    client = OpenSearchClient(os_config, client=raw_client)

    assert client.ensure_collection('memories') == 'exists'
    raw_client.indices.create.assert_not_called()


def test_concurrent_creation_is_tolerated(os_config, raw_client):
    raw_client.indices.create.side_effect = RequestError(400, 'resource_already_exists_exception', {})
    client = OpenSearchClient(os_config, client=raw_client)

    assert client.ensure_collection('memories') == 'exists'


def test_knn_search_orders_by_distance_and_applies_filters(os_config, raw_client):
    raw_client.search.return_value = {
        'hits': {
            'hits': [
                {'_id': 'x', '_score': 0.5, '_source': {'id': 'mem_far', 'content': 'far'}},
                {'_id': 'y', '_score': 1.0, '_source': {'id': 'mem_near', 'content': 'near'}},
            ]
        }
    }
    client = OpenSearchClient(os_config, client=raw_client)
    filters = [{'term': {'metadata.user': 'alice'}}]

    results = client.knn_search('memories', [0.1] * 8, 2, filters)

    assert [result['id'] for result in results] == ['mem_near', 'mem_far']
    body = raw_client.search.call_args.kwargs['body']
    assert body['query']['bool']['filter'] == filters
    assert body['query']['bool']['must'][0]['knn']['embedding']['k'] == 2


def test_knn_search_wraps_backend_errors(os_config, raw_client):
    raw_client.search.side_effect = RequestError(400, 'bad query', {})
    client = OpenSearchClient(os_config, client=raw_client)

    with pytest.raises(OpenSearchError):
        client.knn_search('memories', [0.1] * 8, 2)


def test_index_documents_reports_failures(os_config, raw_client):
    client = OpenSearchClient(os_config, client=raw_client)

    with patch('intermem.utils.opensearch_client.helpers.bulk', return_value=(1, [{'index': {'error': 'x'}}])):
        with pytest.raises(OpenSearchError):
            client.index_documents('memories', [{'id': 'a'}, {'id': 'b'}])

    with patch('intermem.utils.opensearch_client.helpers.bulk', return_value=(2, [])) as bulk:
        assert client.index_documents('memories', [{'id': 'a'}, {'id': 'b'}]) == 2
    actions = bulk.call_args.args[1]
    assert actions[0] == {'_index': 'intermem_memories', '_source': {'id': 'a'}}


def test_index_sync_wait_does_not_hold_the_lock(os_config, raw_client):
    client = OpenSearchClient(dataclasses.replace(os_config, index_sync_seconds=5), client=raw_client)

    def sleep(seconds):
        assert seconds == 5
        assert client._lock.acquire(blocking=False)
        client._lock.release()

    with patch('intermem.utils.opensearch_client.time.sleep', side_effect=sleep) as waited:
        assert client.ensure_collection('memories') == 'created'

    waited.assert_called_once()
    assert client.ensure_collection('memories') == 'cached'


def test_missing_credentials_raise_opensearch_error(os_config):
    with patch('intermem.utils.opensearch_client.Session') as session:
        session.return_value.get_credentials.return_value = None
        client = OpenSearchClient(os_config)

        with pytest.raises(OpenSearchError, match='No AWS credentials found'):
            client.ensure_collection('memories')
        with pytest.raises(OpenSearchError, match='No AWS credentials found'):
            client.knn_search('memories', [0.1] * 8, 2)
