"""
Core data models for the long-term memory system.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

MIN_IMPORTANCE = 1
MAX_IMPORTANCE = 10


class EventOrigin(str, Enum):
    """Where a buffered conversation event came from."""
    INCOMING = 'incoming'  # message the agent responds to
    OUTGOING = 'outgoing'  # the agent's own reply
    OBSERVED = 'observed'  # message seen but not addressed to the agent


class MemoryType(str, Enum):
    USER_FACT = 'user_fact'
    SERVER_LORE = 'server_lore'


class TriggerReason(str, Enum):
    SILENCE = 'silence'
    VOLUME = 'volume'
    TOKEN_CAP = 'token_cap'
    MANUAL = 'manual'


@dataclass
class BufferedEvent:
    """A single conversation event waiting in the ingestion buffer."""
    content: str
    user_id: str
    username: str  # display name at the time of the event
    channel_id: str
    timestamp: datetime
    origin: EventOrigin
    is_bot: bool = False


@dataclass(frozen=True)
class ExtractedMemory:
    """A memory distilled from a buffer snapshot by the extraction LLM."""
    content: str
    type: MemoryType
    importance: int
    user_id: Optional[str]  # subject user, None for server lore
    tags: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RelationshipDelta:
    """A sentiment change toward one user produced by the same extraction cycle."""
    user_id: str
    sentiment_delta: int
    reasoning: str = ''


@dataclass
class ExtractionResult:
    memories: List[ExtractedMemory] = field(default_factory=list)
    relationship_updates: List[RelationshipDelta] = field(default_factory=list)


@dataclass
class StoredMemory:
    """A memory as persisted in the vector index (embedding excluded)."""
    id: str
    content: str
    type: MemoryType
    importance: int
    user_id: Optional[str]
    tags: List[str]
    timestamp: int  # epoch milliseconds
    created_at: str  # ISO-8601

    def to_payload(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload['type'] = self.type.value
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], fallback_id: str = '') -> 'StoredMemory':
        raw_type = payload.get('type') or MemoryType.SERVER_LORE.value
        try:
            memory_type = MemoryType(raw_type)
        except ValueError:
            memory_type = MemoryType.SERVER_LORE
        return cls(id=payload.get('id') or fallback_id,
                   content=payload.get('content') or '',
                   type=memory_type,
                   importance=int(payload.get('importance') or 0),
                   user_id=payload.get('user_id'),
                   tags=list(payload.get('tags') or []),
                   timestamp=int(payload.get('timestamp') or 0),
                   created_at=payload.get('created_at') or '')


@dataclass
class ScoredMemory:
    """A search hit after re-ranking."""
    memory: StoredMemory
    similarity: float
    score: float


@dataclass
class RelationshipEntry:
    """Accumulated sentiment toward one user."""
    user_id: str
    username: str
    affinity_score: int
    last_interaction: str  # ISO-8601
    interaction_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RelationshipEntry':
        return cls(user_id=str(data['user_id']),
                   username=data.get('username') or 'Unknown',
                   affinity_score=int(data.get('affinity_score') or 0),
                   last_interaction=str(data.get('last_interaction') or ''),
                   interaction_count=int(data.get('interaction_count') or 0))


@dataclass
class BufferStats:
    message_count: int
    token_count: int
    oldest_message: Optional[datetime]
    newest_message: Optional[datetime]
    unique_channels: List[str]


@dataclass
class SweepReport:
    """Outcome of one retention sweep. Counts cover completed pages only."""
    deleted: int = 0
    kept: int = 0
    failed_pages: int = 0
