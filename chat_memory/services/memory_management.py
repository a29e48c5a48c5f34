"""
Memory Management Service for unified memory operations.

Wires the ingestion buffer, extraction, storage, retrieval, relationships and
retention together on one asyncio event loop. Blocking SDK calls run in worker
threads via ``asyncio.to_thread``.
"""

import asyncio
from typing import List, Optional

from ..models.core import BufferedEvent, BufferStats, EventOrigin, RelationshipEntry, SweepReport, TriggerReason
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import AppConfig
from ..utils.config import config as default_config
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient
from .memory_buffer import MemoryBuffer
from .memory_extraction import MemoryExtractionError, MemoryExtractionService
from .memory_store import MemoryStore, MemoryStoreError
from .relationships import RelationshipStore
from .retention import RetentionManager
from .retrieval import RetrievalService

logger = get_logger(__name__)


class MemoryManagementError(Exception):
    """Custom exception for memory management errors."""
    pass


class MemoryManagementService:
    """Unified service for memory capture, extraction, retrieval and expiration."""

    def __init__(self,
                 config: Optional[AppConfig] = None,
                 store: Optional[MemoryStore] = None,
                 extraction: Optional[MemoryExtractionService] = None,
                 relationships: Optional[RelationshipStore] = None):
        """Initialize the memory management service."""
        self.config = config or default_config

        if store is None:
            store = MemoryStore(opensearch=OpenSearchClient(self.config.opensearch), embed=BedrockEmbed(self.config.bedrock_embed))
        if extraction is None:
            extraction = MemoryExtractionService(llm=BedrockLLM(self.config.bedrock_llm), llm_config=self.config.bedrock_llm)

        self.store = store
        self.extraction = extraction
        self.relationships = relationships or RelationshipStore(self.config.relationships)
        self.retrieval = RetrievalService(self.store, self.relationships, config=self.config.retrieval)
        self.retention = RetentionManager(self.store, self.config.retention)
        self.buffer = MemoryBuffer(self._process_snapshot, self.config.buffer)

        logger.info('Initialized MemoryManagementService')

    async def start(self, run_retention: bool = True) -> None:
        """Create the memory index and start the retention scheduler."""
        try:
            await asyncio.to_thread(self.store.initialize)
        except MemoryStoreError as e:
            logger.warning(f'Failed to initialize memory index: {e}')

        if run_retention:
            self.retention.start()

    async def shutdown(self, flush: bool = True) -> None:
        """Stop timers, optionally extract what is still buffered, and wait for in-flight cycles."""
        self.buffer.close()
        if flush:
            self.buffer.flush(TriggerReason.MANUAL)
        await self.buffer.drain()
        await self.retention.stop()
        logger.info('MemoryManagementService stopped')

    def record_event(self,
                     content: str,
                     user_id: str,
                     username: str,
                     channel_id: str,
                     origin: EventOrigin = EventOrigin.INCOMING,
                     is_bot: bool = False) -> Optional[TriggerReason]:
        """Buffer a conversation event. Must be called from the event loop."""
        if not content or not content.strip():
            return None
        return self.buffer.add(content, user_id, username, channel_id, origin, is_bot=is_bot)

    def flush(self) -> int:
        """Force extraction of whatever is buffered now."""
        return self.buffer.flush(TriggerReason.MANUAL)

    def buffer_stats(self) -> BufferStats:
        return self.buffer.stats()

    async def get_context(self, message: str, user_id: str) -> str:
        """
        Memory context block for a reply to ``message`` from ``user_id``.

        Returns an empty string when retrieval is disabled, finds nothing, or
        fails.
        """
        if not self.config.retrieval.enabled:
            return ''
        try:
            return await asyncio.to_thread(self.retrieval.build_context, message, user_id)
        except Exception as e:
            logger.error(f'Unexpected error building memory context: {e}')
            return ''

    def get_relationship(self, user_id: str) -> Optional[RelationshipEntry]:
        return self.relationships.get(user_id)

    async def run_cleanup(self) -> SweepReport:
        """Run one retention sweep outside the schedule."""
        return await asyncio.to_thread(self.retention.sweep)

    async def _process_snapshot(self, events: List[BufferedEvent], reason: TriggerReason) -> None:
        """Extraction handler for one flushed snapshot.

        Memories are written before relationship deltas; an unparseable
        response writes nothing.

        Raises:
            MemoryManagementError: If extraction or storage fails
        """
        try:
            result = await asyncio.to_thread(self.extraction.extract, events)
            if result is None:
                logger.warning(f'Extraction cycle ({reason.value}, {len(events)} messages) dropped')
                return

            if result.memories:
                await asyncio.to_thread(self.store.store_batch, result.memories)

            if result.relationship_updates:
                usernames = {e.user_id: e.username for e in events}
                await asyncio.to_thread(self.relationships.apply_updates, result.relationship_updates, usernames)

            logger.debug(f'Processed {len(result.memories)} memories and {len(result.relationship_updates)} relationship updates')

        except (MemoryExtractionError, MemoryStoreError) as e:
            logger.error(f'Error processing memory snapshot: {e}')
            raise MemoryManagementError(f'Memory add failed: {e}')
