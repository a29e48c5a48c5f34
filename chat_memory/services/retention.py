"""
Retention Manager: expires memories according to importance-tiered TTLs.

Retention tiers:
- Importance 1-4: low window (default 24h)
- Importance 5-7: medium window (default 168h)
- Importance 8-9: high window (default 504h)
- Importance 10: permanent, never swept
"""

import asyncio
from typing import Optional

from ..models.core import MAX_IMPORTANCE, StoredMemory, SweepReport
from ..utils.config import RetentionConfig
from ..utils.config import config as app_config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import MS_PER_HOUR, age_hours, now_ms
from .memory_store import MemoryStore, MemoryStoreError

logger = get_logger(__name__)

PAGE_READ_ATTEMPTS = 2


def retention_window_hours(importance: int, config: RetentionConfig) -> Optional[float]:
    """Retention window for an importance value, or None for permanent memories."""
    if importance >= MAX_IMPORTANCE:
        return None
    elif importance >= 8:
        return config.high_importance_hours
    elif importance >= 5:
        return config.med_importance_hours
    else:
        return config.low_importance_hours


def is_expired(memory: StoredMemory, now: int, config: RetentionConfig) -> bool:
    window = retention_window_hours(memory.importance, config)
    if window is None:
        return False
    return now - memory.timestamp > window * MS_PER_HOUR


class RetentionManager:
    """Periodic sweep that deletes expired memories page by page."""

    def __init__(self, store: MemoryStore, config: Optional[RetentionConfig] = None):
        self.store = store
        self.config = config or app_config.retention
        self._task: Optional[asyncio.Task] = None

    def sweep(self, now: Optional[int] = None) -> SweepReport:
        """
        Delete every expired memory.

        A page whose delete fails is logged and skipped; its records are not
        counted. A page read is retried once with the same cursor; a page that
        still cannot be read ends the sweep, since the next cursor is unknown.

        Args:
            now: Reference time in epoch milliseconds (defaults to now)

        Returns:
            SweepReport with deleted/kept counts for completed pages
        """
        now = now_ms() if now is None else now
        report = SweepReport()
        cursor = None
        page = 0

        logger.info(f'Starting memory cleanup (retention: low {self.config.low_importance_hours}h, '
                    f'med {self.config.med_importance_hours}h, high {self.config.high_importance_hours}h, 10 permanent)')

        while True:
            page += 1
            try:
                memories, cursor = self._read_page(page, cursor)
            except MemoryStoreError as e:
                logger.error(f'Cleanup could not read page {page}, stopping: {e}')
                report.failed_pages += 1
                break

            expired = [m for m in memories if is_expired(m, now, self.config)]
            for memory in expired:
                logger.debug(f'Expired: [imp:{memory.importance}] "{memory.content[:50]}" '
                             f'({round(age_hours(memory.timestamp, now))}h old)')

            try:
                if expired:
                    self.store.delete([m.id for m in expired])
            except MemoryStoreError as e:
                logger.error(f'Cleanup failed to delete page {page} ({len(expired)} expired), skipping: {e}')
                report.failed_pages += 1
            else:
                report.deleted += len(expired)
                report.kept += len(memories) - len(expired)

            if cursor is None:
                break

        logger.info(f'Memory cleanup finished: deleted {report.deleted}, kept {report.kept}, failed pages {report.failed_pages}')
        return report

    def _read_page(self, page: int, cursor):
        for attempt in range(PAGE_READ_ATTEMPTS):
            try:
                return self.store.scroll(limit=self.config.page_size, cursor=cursor)
            except MemoryStoreError as e:
                if attempt == PAGE_READ_ATTEMPTS - 1:
                    raise
                logger.warning(f'Cleanup could not read page {page}, retrying: {e}')

    async def _run_periodically(self) -> None:
        interval = self.config.cleanup_interval_hours * 3600
        while True:
            try:
                await asyncio.to_thread(self.sweep)
            except Exception as e:
                logger.error(f'Cleanup error: {e}')
            await asyncio.sleep(interval)

    def start(self) -> asyncio.Task:
        """Run a sweep now and then every ``cleanup_interval_hours``."""
        if self._task is None or self._task.done():
            logger.info(f'Memory cleanup scheduler started (runs every {self.config.cleanup_interval_hours}h)')
            self._task = asyncio.get_running_loop().create_task(self._run_periodically(), name='memory-retention')
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
