"""
Flush trigger policy for the ingestion buffer.

Silence is timer driven and owned by ``MemoryBuffer``; volume and token cap
are evaluated here after every append.
"""

import math
from typing import Iterable, Optional

from ..models.core import BufferedEvent, TriggerReason
from ..utils.config import BufferConfig

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token estimation (~4 chars per token for English text)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def event_tokens(event: BufferedEvent) -> int:
    return estimate_tokens(f'{event.username}: {event.content}')


def count_tokens(events: Iterable[BufferedEvent]) -> int:
    """Estimated token count of a buffer, speaker names included."""
    return sum(event_tokens(event) for event in events)


def evaluate_triggers(message_count: int, token_count: int, config: BufferConfig) -> Optional[TriggerReason]:
    """Decide whether the buffer must flush now.

    Returns:
        VOLUME or TOKEN_CAP when a threshold is reached, otherwise None
    """
    if message_count >= config.volume_threshold:
        return TriggerReason.VOLUME
    if token_count >= config.token_cap:
        return TriggerReason.TOKEN_CAP
    return None
