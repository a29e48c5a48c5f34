"""
Shared fakes and fixtures. Nothing here talks to AWS.
"""

import math
from typing import Any, Dict, List, Optional

import pytest

from chat_memory.utils.config import BedrockLLMConfig, BufferConfig, RelationshipsConfig, RetentionConfig, RetrievalConfig
from chat_memory.utils.opensearch_client import OpenSearchError


class FakeEmbed:
    """Deterministic embeddings: each text maps to a fixed 4-dim vector."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None):
        self.vectors = vectors or {}
        self.batch_calls: List[List[str]] = []
        self.query_calls: List[str] = []
        self.fail = False

    def _vector(self, text: str) -> List[float]:
        if text in self.vectors:
            return self.vectors[text]
        h = sum(ord(c) for c in text)
        return [1.0, (h % 7) / 7.0, (h % 11) / 11.0, (h % 13) / 13.0]

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        from chat_memory.utils.bedrock_embed import BedrockEmbedError
        if self.fail:
            raise BedrockEmbedError('embedding unavailable')
        self.batch_calls.append(list(texts))
        return [self._vector(t) for t in texts]

    def embed_document(self, text: str) -> List[float]:
        return self.embed_documents([text])[0]

    def embed_query(self, text: str) -> List[float]:
        from chat_memory.utils.bedrock_embed import BedrockEmbedError
        if self.fail:
            raise BedrockEmbedError('embedding unavailable')
        self.query_calls.append(text)
        return self._vector(text)


def _cosine(a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def _matches(document: Dict[str, Any], filters: Optional[List[Dict[str, Any]]]) -> bool:
    for clause in filters or []:
        if 'term' in clause:
            (field, value), = clause['term'].items()
            if document.get(field) != value:
                return False
        elif 'range' in clause:
            (field, bounds), = clause['range'].items()
            if 'gte' in bounds and (document.get(field) is None or document[field] < bounds['gte']):
                return False
    return True


class FakeOpenSearch:
    """In-memory stand-in for ``OpenSearchClient`` with the same method surface."""

    def __init__(self):
        self.index_name = 'test_memories'
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.create_calls = 0
        self.index_exists = False
        self.bulk_calls = 0
        self.delete_calls: List[List[str]] = []
        self.fail_search = False
        self.fail_delete_pages: set = set()
        self.fail_scroll_pages: set = set()
        self._scroll_page = 0

    def create_index_if_not_exists(self, index_name=None):
        self.create_calls += 1
        if self.index_exists:
            return 'exists'
        self.index_exists = True
        return 'created'

    def delete_index(self, index_name=None):
        existed = self.index_exists
        self.index_exists = False
        self.documents.clear()
        return existed

    def bulk_index(self, documents, index_name=None):
        self.bulk_calls += 1
        for document in documents:
            self.documents[document['id']] = dict(document)
        return len(documents)

    def vector_search(self, query_vector, filters=None, top_k=10, score_threshold=None, index_name=None):
        if self.fail_search:
            raise OpenSearchError('search unavailable')
        hits = []
        for doc in self.documents.values():
            if not _matches(doc, filters):
                continue
            similarity = _cosine(query_vector, doc['embedding'])
            if score_threshold is not None and similarity < score_threshold:
                continue
            source = {k: v for k, v in doc.items() if k != 'embedding'}
            hits.append({'id': doc['id'], 'score': (1 + similarity) / 2, 'similarity': similarity, 'document': source})
        hits.sort(key=lambda h: h['similarity'], reverse=True)
        return hits[:top_k]

    def scroll(self, filters=None, limit=100, cursor=None, sort=None, index_name=None):
        self._scroll_page += 1
        if self._scroll_page in self.fail_scroll_pages:
            raise OpenSearchError('scroll unavailable')
        docs = sorted((d for d in self.documents.values() if _matches(d, filters)), key=lambda d: (-d['timestamp'], d['id']))
        if cursor:
            docs = [d for d in docs if (-d['timestamp'], d['id']) > (-cursor[0], cursor[1])]
        page = docs[:limit]
        hits = [{'id': d['id'], 'document': {k: v for k, v in d.items() if k != 'embedding'}, 'sort': [d['timestamp'], d['id']]} for d in page]
        next_cursor = hits[-1]['sort'] if len(hits) == limit else None
        return hits, next_cursor

    def get_document(self, info_id, index_name=None):
        doc = self.documents.get(info_id)
        if doc is None:
            return None
        return {'id': info_id, 'document': {k: v for k, v in doc.items() if k != 'embedding'}}

    def delete_documents(self, ids, index_name=None):
        self.delete_calls.append(list(ids))
        if len(self.delete_calls) in self.fail_delete_pages:
            raise OpenSearchError('delete failed')
        deleted = 0
        for record_id in ids:
            if self.documents.pop(record_id, None) is not None:
                deleted += 1
        return deleted

    def health_check(self):
        return True


class FakeLLM:
    """Returns a canned response and records every request."""

    def __init__(self, response: str = '{"memories": [], "relationship_updates": []}'):
        self.response = response
        self.calls: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None

    def chat_completion(self, messages, temperature=None, model_id=None, max_tokens=None):
        self.calls.append({'messages': messages, 'temperature': temperature, 'model_id': model_id})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def fake_embed():
    return FakeEmbed()


@pytest.fixture
def fake_opensearch():
    return FakeOpenSearch()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def buffer_config():
    return BufferConfig(enabled=True, silence_timeout_seconds=60, volume_threshold=3, token_cap=10_000)


@pytest.fixture
def retrieval_config():
    return RetrievalConfig(enabled=True,
                           user_fact_count=2,
                           server_lore_count=2,
                           score_threshold=0.0,
                           similarity_weight=0.55,
                           importance_weight=0.25,
                           recency_weight=0.20,
                           recency_window_days=30,
                           forgetting_penalty=0.1,
                           forgetting_min_importance=5,
                           forgetting_max_importance=6,
                           forgetting_age_days=3)


@pytest.fixture
def retention_config():
    return RetentionConfig(low_importance_hours=24,
                           med_importance_hours=168,
                           high_importance_hours=504,
                           cleanup_interval_hours=6,
                           page_size=2)


@pytest.fixture
def llm_config():
    return BedrockLLMConfig(region='us-east-1',
                            model_id='test-chat-model',
                            memory_manager_model_id='test-memory-model',
                            max_tokens=512,
                            temperature=0.7,
                            extraction_temperature=0.3,
                            retry_attempts=1,
                            retry_delay=0.0)


@pytest.fixture
def relationships_config(tmp_path):
    return RelationshipsConfig(data_dir=str(tmp_path / 'data'))
