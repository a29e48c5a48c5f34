from unittest.mock import MagicMock

import pytest
from opensearchpy.exceptions import ConnectionError as OpenSearchConnectionError
from opensearchpy.exceptions import RequestError

from chat_memory.models.core import MemoryType
from chat_memory.services.memory_store import build_filters
from chat_memory.utils.config import OpenSearchConfig
from chat_memory.utils.opensearch_client import OpenSearchClient, OpenSearchError, memory_index_body, score_to_cosine


@pytest.fixture
def raw_client():
    return MagicMock()


@pytest.fixture
def client(raw_client):
    config = OpenSearchConfig(endpoint='https://example.aoss.amazonaws.com',
                              port=443,
                              region='us-east-1',
                              service='aoss',
                              index_name='memories',
                              dimension=8)
    return OpenSearchClient(config, client=raw_client, sync_wait_seconds=0)


def test_score_to_cosine():
    assert score_to_cosine(1.0) == pytest.approx(1.0)
    assert score_to_cosine(0.5) == pytest.approx(0.0)
    assert score_to_cosine(0.0) == pytest.approx(-1.0)


def test_index_body_uses_configured_dimension():
    body = memory_index_body(8)
    assert body['mappings']['properties']['embedding']['dimension'] == 8
    assert body['mappings']['properties']['embedding']['method']['space_type'] == 'cosinesimil'
    assert body['mappings']['properties']['embedding']['method']['engine'] == 'lucene'
    assert body['settings']['index']['knn'] is True


class TestCreateIndex:

    def test_existing(self, client, raw_client):
        raw_client.indices.exists.return_value = True
        assert client.create_index_if_not_exists() == 'exists'
        raw_client.indices.create.assert_not_called()

    def test_created(self, client, raw_client):
        raw_client.indices.exists.return_value = False
        raw_client.indices.create.return_value = {'acknowledged': True}
        assert client.create_index_if_not_exists() == 'created'

    def test_concurrent_creation_counts_as_success(self, client, raw_client):
        raw_client.indices.exists.return_value = False
        raw_client.indices.create.side_effect = RequestError(400, 'resource_already_exists_exception', {})
        assert client.create_index_if_not_exists() == 'exists'

    def test_other_errors_raise(self, client, raw_client):
        raw_client.indices.exists.return_value = False
        raw_client.indices.create.side_effect = RequestError(400, 'mapper_parsing_exception', {})
        with pytest.raises(OpenSearchError):
            client.create_index_if_not_exists()


def test_vector_search_applies_threshold_to_similarity(client, raw_client):
    raw_client.search.return_value = {
        'hits': {
            'hits': [
                {'_id': 'a', '_score': (1 + 0.9) / 2, '_source': {'id': 'r1', 'content': 'close'}},
                {'_id': 'b', '_score': (1 + 0.3) / 2, '_source': {'id': 'r2', 'content': 'far'}},
            ]
        }
    }

    results = client.vector_search([0.1] * 8, filters=[{'term': {'type': 'user_fact'}}], top_k=4, score_threshold=0.5)

    assert [r['document']['content'] for r in results] == ['close']
    assert results[0]['similarity'] == pytest.approx(0.9)
    body = raw_client.search.call_args.kwargs['body']
    knn = body['query']['knn']['embedding']
    assert knn['k'] == 4
    assert knn['filter'] == {'bool': {'filter': [{'term': {'type': 'user_fact'}}]}}


def test_vector_search_filters_inside_knn_clause(client, raw_client):
    raw_client.search.return_value = {'hits': {'hits': []}}

    client.vector_search([0.1] * 8, filters=build_filters(user_id='42', memory_type=MemoryType.USER_FACT), top_k=10)

    query = raw_client.search.call_args.kwargs['body']['query']
    assert set(query) == {'knn'}
    assert query['knn']['embedding']['filter'] == {
        'bool': {
            'filter': [{'term': {'user_id': '42'}}, {'term': {'type': 'user_fact'}}]
        }
    }


def test_vector_search_without_filters_is_plain_knn(client, raw_client):
    raw_client.search.return_value = {'hits': {'hits': []}}

    client.vector_search([0.1] * 8, top_k=3)

    assert 'filter' not in raw_client.search.call_args.kwargs['body']['query']['knn']['embedding']


def test_scroll_returns_cursor_only_for_full_pages(client, raw_client):
    raw_client.search.return_value = {
        'hits': {
            'hits': [
                {'_id': 'a', '_source': {'id': 'r1'}, 'sort': [200, 'r1']},
                {'_id': 'b', '_source': {'id': 'r2'}, 'sort': [100, 'r2']},
            ]
        }
    }

    hits, cursor = client.scroll(limit=2)
    assert cursor == [100, 'r2']
    assert 'search_after' not in raw_client.search.call_args.kwargs['body']

    client.scroll(limit=2, cursor=cursor)
    assert raw_client.search.call_args.kwargs['body']['search_after'] == [100, 'r2']

    hits, cursor = client.scroll(limit=5)
    assert len(hits) == 2
    assert cursor is None


def test_bulk_index_omits_engine_ids(client, raw_client):
    raw_client.bulk.return_value = {'errors': False, 'items': [{'index': {'result': 'created'}}]}

    assert client.bulk_index([{'id': 'r1', 'content': 'x'}]) == 1

    body = raw_client.bulk.call_args.kwargs['body']
    assert body == [{'index': {'_index': 'memories'}}, {'id': 'r1', 'content': 'x'}]


def test_delete_documents_resolves_record_ids(client, raw_client):
    raw_client.search.return_value = {'hits': {'hits': [{'_id': 'engine-1'}, {'_id': 'engine-2'}]}}
    raw_client.bulk.return_value = {'items': [{'delete': {'result': 'deleted'}}, {'delete': {'result': 'not_found'}}]}

    assert client.delete_documents(['r1', 'r2']) == 1
    assert raw_client.bulk.call_args.kwargs['body'] == [
        {'delete': {'_index': 'memories', '_id': 'engine-1'}},
        {'delete': {'_index': 'memories', '_id': 'engine-2'}},
    ]


def test_errors_are_wrapped(client, raw_client):
    raw_client.search.side_effect = OpenSearchConnectionError('N/A', 'connection refused', None)
    with pytest.raises(OpenSearchError):
        client.get_document('r1')
