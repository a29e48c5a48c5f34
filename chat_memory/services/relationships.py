"""
Relationship Store: JSON ledger of the assistant's sentiment toward users.

Sentiment only ever changes by deltas. The whole table is loaded on first use
and rewritten after every mutation.
"""

import json
import os
import threading
from typing import Dict, Iterable, List, Mapping, Optional

from ..models.core import RelationshipDelta, RelationshipEntry
from ..utils.config import RelationshipsConfig
from ..utils.config import config as app_config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import to_iso

logger = get_logger(__name__)

RELATIONSHIPS_FILE = 'relationships.json'


class RelationshipStore:
    """Durable per-user affinity ledger."""

    def __init__(self, config: Optional[RelationshipsConfig] = None):
        self.config = config or app_config.relationships
        self.path = os.path.join(self.config.data_dir, RELATIONSHIPS_FILE)
        self._entries: Dict[str, RelationshipEntry] = {}
        self._loaded = False
        self._lock = threading.RLock()

    def _ensure_data_dir(self) -> None:
        if not os.path.isdir(self.config.data_dir):
            os.makedirs(self.config.data_dir, exist_ok=True)
            logger.info(f'Created data directory: {self.config.data_dir}')

    def _load(self) -> None:
        if self._loaded:
            return

        self._ensure_data_dir()
        entries: Dict[str, RelationshipEntry] = {}
        if os.path.exists(self.path):
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    parsed = json.load(f)

                if isinstance(parsed, list):
                    records = parsed
                elif isinstance(parsed, dict):
                    records = [{'user_id': user_id, **value} for user_id, value in parsed.items()]
                else:
                    raise ValueError(f'unexpected top-level {type(parsed).__name__}')

                for record in records:
                    entry = RelationshipEntry.from_dict(record)
                    entries[entry.user_id] = entry
                logger.info(f'Loaded {len(entries)} relationships from {self.path}')
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.error(f'Error loading relationships, starting with an empty table: {e}')
                entries = {}
        else:
            logger.info('No relationships file found, starting fresh')

        self._entries = entries
        self._loaded = True

    def _save(self) -> None:
        self._ensure_data_dir()
        data = [entry.to_dict() for entry in self._entries.values()]
        tmp_path = f'{self.path}.tmp'
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.path)
        logger.debug(f'Saved {len(data)} relationships to {self.path}')

    def update_sentiment(self, user_id: str, username: str, sentiment_delta: int) -> int:
        """
        Apply a sentiment delta to one user and persist the table.

        Args:
            user_id: User id
            username: Current display name
            sentiment_delta: Signed change in affinity

        Returns:
            New affinity score
        """
        with self._lock:
            self._load()
            now = to_iso()
            existing = self._entries.get(user_id)

            if existing:
                previous = existing.affinity_score
                existing.affinity_score += sentiment_delta
                existing.username = username
                existing.last_interaction = now
                existing.interaction_count += 1
                logger.info(f'Updated relationship {username} ({user_id}): {previous} -> {existing.affinity_score} '
                            f'(delta: {sentiment_delta:+d})')
            else:
                existing = RelationshipEntry(user_id=user_id,
                                             username=username,
                                             affinity_score=sentiment_delta,
                                             last_interaction=now,
                                             interaction_count=1)
                self._entries[user_id] = existing
                logger.info(f'New relationship with {username} ({user_id}): {sentiment_delta}')

            try:
                self._save()
            except OSError as e:
                logger.error(f'Error saving relationships: {e}')

            return existing.affinity_score

    def apply_updates(self, updates: Iterable[RelationshipDelta], usernames: Optional[Mapping[str, str]] = None) -> None:
        """
        Apply every delta from one extraction cycle.

        Display names come from ``usernames`` (typically the snapshot's
        authors), then from the existing entry, then ``Unknown``.
        """
        usernames = usernames or {}
        with self._lock:
            self._load()
            for update in updates:
                existing = self._entries.get(update.user_id)
                username = usernames.get(update.user_id) or (existing.username if existing else None) or 'Unknown'
                self.update_sentiment(update.user_id, username, update.sentiment_delta)

    def get(self, user_id: str) -> Optional[RelationshipEntry]:
        with self._lock:
            self._load()
            return self._entries.get(user_id)

    def get_affinity(self, user_id: str) -> int:
        entry = self.get(user_id)
        return entry.affinity_score if entry else 0

    def all(self) -> List[RelationshipEntry]:
        with self._lock:
            self._load()
            return list(self._entries.values())

    def top(self, limit: int = 10) -> List[RelationshipEntry]:
        """Highest affinity first."""
        return sorted(self.all(), key=lambda e: e.affinity_score, reverse=True)[:limit]

    def bottom(self, limit: int = 10) -> List[RelationshipEntry]:
        """Lowest affinity first."""
        return sorted(self.all(), key=lambda e: e.affinity_score)[:limit]
