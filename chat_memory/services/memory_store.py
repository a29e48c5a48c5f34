"""
Memory Store: embeds extracted memories and persists them in OpenSearch.
"""

import uuid
from typing import Any, Dict, List, Optional, Tuple

from ..models.core import ExtractedMemory, MemoryType, StoredMemory
from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.config import config as app_config
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from ..utils.timestamp_utils import now_ms, to_iso

logger = get_logger(__name__)


class MemoryStoreError(Exception):
    """Custom exception for memory store errors."""
    pass


def build_filters(user_id: Optional[str] = None,
                  memory_type: Optional[MemoryType] = None,
                  min_importance: Optional[int] = None) -> List[Dict[str, Any]]:
    """Translate optional metadata constraints into OpenSearch filter clauses."""
    filters: List[Dict[str, Any]] = []
    if user_id:
        filters.append({'term': {'user_id': user_id}})
    if memory_type is not None:
        filters.append({'term': {'type': MemoryType(memory_type).value}})
    if min_importance is not None:
        filters.append({'range': {'importance': {'gte': min_importance}}})
    return filters


class MemoryStore:
    """Vector storage for extracted memories."""

    def __init__(self, opensearch: Optional[OpenSearchClient] = None, embed: Optional[BedrockEmbed] = None):
        self.opensearch = opensearch or OpenSearchClient(app_config.opensearch)
        self.embed = embed or BedrockEmbed(app_config.bedrock_embed)

    def initialize(self) -> None:
        """Create the memory index if needed. Safe to call repeatedly."""
        try:
            status = self.opensearch.create_index_if_not_exists()
        except OpenSearchError as e:
            logger.error(f'Error initializing memory index: {e}')
            raise MemoryStoreError(f'Memory index initialization failed: {e}')
        logger.info(f'Memory index {self.opensearch.index_name}: {status}')

    def recreate(self) -> None:
        """Delete and recreate the index (use when the embedding dimension changes)."""
        try:
            self.opensearch.delete_index()
        except OpenSearchError as e:
            logger.warning(f'Index could not be deleted: {e}')
        self.initialize()

    def store_batch(self, memories: List[ExtractedMemory]) -> List[StoredMemory]:
        """
        Embed and persist the memories of one extraction cycle.

        All contents are embedded in a single batch call; every record of the
        batch shares the same timestamp.

        Args:
            memories: Memories produced by one extraction cycle

        Returns:
            The stored records, in input order

        Raises:
            MemoryStoreError: If embedding or indexing fails
        """
        if not memories:
            logger.debug('No memories to store')
            return []

        try:
            logger.info(f'Generating embeddings for {len(memories)} memories')
            embeddings = self.embed.embed_documents([m.content for m in memories])
        except BedrockEmbedError as e:
            logger.error(f'Embedding error while storing memories: {e}')
            raise MemoryStoreError(f'Memory embedding failed: {e}')

        if len(embeddings) != len(memories):
            raise MemoryStoreError(f'Expected {len(memories)} embeddings, got {len(embeddings)}')

        timestamp = now_ms()
        created_at = to_iso(timestamp)

        stored: List[StoredMemory] = []
        documents: List[Dict[str, Any]] = []
        for memory, embedding in zip(memories, embeddings):
            record = StoredMemory(id=str(uuid.uuid4()),
                                  content=memory.content,
                                  type=memory.type,
                                  importance=memory.importance,
                                  user_id=memory.user_id,
                                  tags=list(memory.tags),
                                  timestamp=timestamp,
                                  created_at=created_at)
            document = record.to_payload()
            document['embedding'] = embedding
            stored.append(record)
            documents.append(document)
            logger.debug(f'Storing memory {record.id}: [{record.type.value}] (importance: {record.importance}) {record.content}')

        try:
            self.opensearch.bulk_index(documents)
        except OpenSearchError as e:
            logger.error(f'Error storing memories: {e}')
            raise MemoryStoreError(f'Memory storage failed: {e}')

        logger.info(f'Stored {len(stored)} memories')
        return stored

    def search(self,
               query_vector: List[float],
               user_id: Optional[str] = None,
               memory_type: Optional[MemoryType] = None,
               min_importance: Optional[int] = None,
               limit: int = 10,
               score_threshold: float = 0.5) -> List[Tuple[StoredMemory, float]]:
        """
        Filtered semantic search.

        Returns:
            List of (memory, cosine similarity), best first

        Raises:
            MemoryStoreError: If the search fails
        """
        try:
            results = self.opensearch.vector_search(query_vector,
                                                    filters=build_filters(user_id, memory_type, min_importance),
                                                    top_k=limit,
                                                    score_threshold=score_threshold)
        except OpenSearchError as e:
            raise MemoryStoreError(f'Memory search failed: {e}')

        return [(StoredMemory.from_payload(r['document'], fallback_id=r['id']), r['similarity']) for r in results]

    def scroll(self,
               user_id: Optional[str] = None,
               memory_type: Optional[MemoryType] = None,
               min_importance: Optional[int] = None,
               limit: int = 100,
               cursor: Optional[List[Any]] = None) -> Tuple[List[StoredMemory], Optional[List[Any]]]:
        """
        One page of memories by metadata, newest first.

        Returns:
            Tuple of (memories, next_cursor); next_cursor is None on the last page

        Raises:
            MemoryStoreError: If the page cannot be read
        """
        try:
            hits, next_cursor = self.opensearch.scroll(filters=build_filters(user_id, memory_type, min_importance),
                                                       limit=limit,
                                                       cursor=cursor)
        except OpenSearchError as e:
            raise MemoryStoreError(f'Memory scroll failed: {e}')

        return [StoredMemory.from_payload(h['document'], fallback_id=h['id']) for h in hits], next_cursor

    def get(self, memory_id: str) -> Optional[StoredMemory]:
        try:
            result = self.opensearch.get_document(memory_id)
        except OpenSearchError as e:
            raise MemoryStoreError(f'Memory lookup failed: {e}')
        if result is None:
            return None
        return StoredMemory.from_payload(result['document'], fallback_id=result['id'])

    def get_user_memories(self, user_id: str, limit: int = 20) -> List[StoredMemory]:
        """Memories about one user, most important first, then newest."""
        memories, _ = self.scroll(user_id=user_id, limit=limit)
        return sorted(memories, key=lambda m: (m.importance, m.timestamp), reverse=True)

    def get_recent_memories(self, limit: int = 20) -> List[StoredMemory]:
        memories, _ = self.scroll(limit=limit)
        return memories

    def get_important_memories(self, min_importance: int = 7, limit: int = 20) -> List[StoredMemory]:
        memories, _ = self.scroll(min_importance=min_importance, limit=limit)
        return sorted(memories, key=lambda m: m.importance, reverse=True)

    def delete(self, ids: List[str]) -> int:
        """
        Batch delete by record id.

        Raises:
            MemoryStoreError: If the delete request fails
        """
        if not ids:
            return 0
        try:
            return self.opensearch.delete_documents(ids)
        except OpenSearchError as e:
            raise MemoryStoreError(f'Memory deletion failed: {e}')
