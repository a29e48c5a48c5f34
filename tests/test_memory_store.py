import pytest

from chat_memory.models.core import ExtractedMemory, MemoryType
from chat_memory.services.memory_store import MemoryStore, MemoryStoreError, build_filters


def _memory(content, importance=5, user_id=None, memory_type=MemoryType.SERVER_LORE):
    return ExtractedMemory(content=content, type=memory_type, importance=importance, user_id=user_id, tags=['t'])


@pytest.fixture
def store(fake_opensearch, fake_embed):
    return MemoryStore(opensearch=fake_opensearch, embed=fake_embed)


def test_build_filters():
    assert build_filters() == []
    assert build_filters('42', MemoryType.USER_FACT, 7) == [
        {'term': {'user_id': '42'}},
        {'term': {'type': 'user_fact'}},
        {'range': {'importance': {'gte': 7}}},
    ]


def test_initialize_is_idempotent(store, fake_opensearch):
    store.initialize()
    store.initialize()
    assert fake_opensearch.create_calls == 2
    assert fake_opensearch.index_exists


def test_store_batch_embeds_once_and_shares_timestamp(store, fake_embed, fake_opensearch):
    stored = store.store_batch([_memory('a'), _memory('b', user_id='7', memory_type=MemoryType.USER_FACT), _memory('c')])

    assert len(fake_embed.batch_calls) == 1
    assert fake_embed.batch_calls[0] == ['a', 'b', 'c']
    assert fake_opensearch.bulk_calls == 1
    assert len({m.id for m in stored}) == 3
    assert len({m.timestamp for m in stored}) == 1
    assert stored[0].created_at.endswith('Z')


def test_store_batch_empty_does_nothing(store, fake_embed, fake_opensearch):
    assert store.store_batch([]) == []
    assert fake_embed.batch_calls == []
    assert fake_opensearch.bulk_calls == 0


def test_store_batch_embedding_failure(store, fake_embed, fake_opensearch):
    fake_embed.fail = True
    with pytest.raises(MemoryStoreError):
        store.store_batch([_memory('a')])
    assert fake_opensearch.documents == {}


def test_get_round_trip(store):
    stored = store.store_batch([_memory('Alice likes tea', importance=8, user_id='1', memory_type=MemoryType.USER_FACT)])
    fetched = store.get(stored[0].id)

    assert fetched == stored[0]
    assert store.get('missing') is None


def test_search_filters_by_user(store, fake_embed):
    store.store_batch([
        _memory('Alice likes tea', user_id='1', memory_type=MemoryType.USER_FACT),
        _memory('Bob likes coffee', user_id='2', memory_type=MemoryType.USER_FACT),
    ])

    results = store.search(fake_embed.embed_query('tea'), user_id='1', memory_type=MemoryType.USER_FACT, score_threshold=0.0)

    assert [m.content for m, _ in results] == ['Alice likes tea']
    assert 0.0 <= results[0][1] <= 1.0


def test_scroll_pages_until_exhausted(store):
    store.store_batch([_memory(f'm{i}') for i in range(5)])

    seen = []
    cursor = None
    while True:
        page, cursor = store.scroll(limit=2, cursor=cursor)
        seen.extend(m.id for m in page)
        if cursor is None:
            break

    assert len(seen) == 5
    assert len(set(seen)) == 5


def test_get_important_memories(store):
    store.store_batch([_memory('low', importance=2), _memory('high', importance=9), _memory('mid', importance=7)])
    assert [m.content for m in store.get_important_memories(min_importance=7)] == ['high', 'mid']


def test_delete(store, fake_opensearch):
    stored = store.store_batch([_memory('a'), _memory('b')])

    assert store.delete([]) == 0
    assert store.delete([stored[0].id]) == 1
    assert list(fake_opensearch.documents) == [stored[1].id]


def test_get_user_memories_ranks_by_importance(store):
    store.store_batch([
        _memory('Alice likes tea', importance=4, user_id='1', memory_type=MemoryType.USER_FACT),
        _memory('Alice is a nurse', importance=9, user_id='1', memory_type=MemoryType.USER_FACT),
        _memory('Bob likes coffee', importance=10, user_id='2', memory_type=MemoryType.USER_FACT),
    ])

    assert [m.content for m in store.get_user_memories('1')] == ['Alice is a nurse', 'Alice likes tea']


def test_get_recent_memories_newest_first(store, fake_opensearch):
    store.store_batch([_memory('older')])
    store.store_batch([_memory('newer')])
    # both batches can land in the same millisecond
    older = next(d for d in fake_opensearch.documents.values() if d['content'] == 'older')
    older['timestamp'] -= 1000

    assert [m.content for m in store.get_recent_memories(limit=1)] == ['newer']
    assert len(store.get_recent_memories()) == 2
