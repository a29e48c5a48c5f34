"""
Memory Extraction Service: distills a buffer snapshot into memories and
relationship updates with one LLM call.
"""

import math
from typing import Any, Dict, List, Optional

from ..models.core import (MAX_IMPORTANCE, MIN_IMPORTANCE, BufferedEvent, ExtractedMemory, ExtractionResult, MemoryType,
                           RelationshipDelta)
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import BedrockLLMConfig
from ..utils.config import config as app_config
from ..utils.json_utils import JSONRepairError, parse_json_response
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import format_event_time

logger = get_logger(__name__)

EXTRACTION_SYSTEM_PROMPT = """
You are the memory manager of a chat assistant that lives in a group chat server.
You read raw chat logs and decide what is worth remembering long term.

Each log line looks like:
[timestamp] display name (ID: user id) [BOT]: message
The [BOT] tag marks messages written by bots, including the assistant itself.

Extract two kinds of memories:
- user_fact: a durable fact about one specific user (preferences, life events, skills, running jokes about them).
  Set "user_id" to that user's ID.
- server_lore: something about the server or group as a whole (shared events, inside jokes, rules, recurring topics).
  Set "user_id" to null.

Rate each memory's importance from 1 to 10:
- 1-4: trivia that may matter for a day
- 5-7: useful context for about a week
- 8-9: significant facts worth keeping for weeks
- 10: core identity facts that must never be forgotten

Also judge how the assistant's sentiment toward each human participant should change based on how they treated it
and others. Use small signed integers written as strings, for example "+2", "-3" or "0".

Ignore greetings, filler and anything already obvious from a single message. Do not invent facts.

Return ONLY a JSON object with this exact format:
```json
{
  "memories": [
    {
      "content": "concise third-person statement",
      "type": "user_fact|server_lore",
      "importance": 5,
      "user_id": "user id or null",
      "tags": ["short", "keywords"]
    }
  ],
  "relationship_updates": [
    {
      "user_id": "user id",
      "sentiment_delta": "+1",
      "reasoning": "why the sentiment changed"
    }
  ]
}
```

Return {"memories": [], "relationship_updates": []} if nothing is worth remembering."""


class MemoryExtractionError(Exception):
    """Custom exception for memory extraction errors."""
    pass


def format_transcript(events: List[BufferedEvent]) -> str:
    """Format buffered events as a chronological chat log, one line per event."""
    lines = []
    for event in events:
        bot_tag = ' [BOT]' if event.is_bot else ''
        lines.append(f'[{format_event_time(event.timestamp)}] {event.username} (ID: {event.user_id}){bot_tag}: {event.content}')
    return '\n'.join(lines)


def parse_sentiment_delta(value: Any) -> int:
    """Parse a delta such as ``"+5"``, ``"-3"`` or ``2``; anything else is 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    try:
        return int(str(value).strip().replace('+', '', 1))
    except (TypeError, ValueError):
        return 0


def _coerce_importance(value: Any) -> Optional[int]:
    try:
        importance = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(importance):
        return None
    importance = int(round(importance))
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, importance))


def _coerce_tags(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    tags: List[str] = []
    for tag in value:
        tag = str(tag).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def build_memory(data: Dict[str, Any]) -> Optional[ExtractedMemory]:
    """Validate one memory object from the LLM, or None to skip it."""
    if not isinstance(data, dict):
        return None

    content = str(data.get('content') or '').strip()
    if not content:
        return None

    try:
        memory_type = MemoryType(str(data.get('type', '')).strip().lower())
    except ValueError:
        logger.debug(f'Skip memory with unknown type: {data.get("type")}')
        return None

    importance = _coerce_importance(data.get('importance'))
    if importance is None:
        logger.debug(f'Skip memory with invalid importance: {data.get("importance")}')
        return None

    user_id = data.get('user_id')
    user_id = str(user_id).strip() if user_id not in (None, '', 'null') else None

    return ExtractedMemory(content=content, type=memory_type, importance=importance, user_id=user_id, tags=_coerce_tags(data.get('tags')))


def build_relationship_delta(data: Dict[str, Any]) -> Optional[RelationshipDelta]:
    if not isinstance(data, dict):
        return None
    user_id = data.get('user_id')
    if user_id in (None, '', 'null'):
        return None
    return RelationshipDelta(user_id=str(user_id).strip(),
                             sentiment_delta=parse_sentiment_delta(data.get('sentiment_delta')),
                             reasoning=str(data.get('reasoning') or ''))


def parse_extraction_response(response: str) -> ExtractionResult:
    """
    Turn a raw LLM response into an ExtractionResult.

    Raises:
        JSONRepairError: If the response is not JSON even after repair, or is not an object
    """
    data = parse_json_response(response)
    if not isinstance(data, dict):
        raise JSONRepairError(f'Expected JSON object, got {type(data).__name__}', raw=response)

    raw_memories = data.get('memories')
    raw_updates = data.get('relationship_updates')
    if not isinstance(raw_memories, list):
        raw_memories = []
    if not isinstance(raw_updates, list):
        raw_updates = []

    memories = [m for m in map(build_memory, raw_memories) if m is not None]
    updates = [u for u in map(build_relationship_delta, raw_updates) if u is not None]
    return ExtractionResult(memories=memories, relationship_updates=updates)


class MemoryExtractionService:
    """Extract memories and relationship updates from chat logs using Bedrock LLMs."""

    def __init__(self, llm: Optional[BedrockLLM] = None, llm_config: Optional[BedrockLLMConfig] = None):
        """Initialize the memory extraction service."""
        self.llm_config = llm_config or app_config.bedrock_llm
        self.llm = llm or BedrockLLM(self.llm_config)

        logger.info('Initialized MemoryExtractionService')

    def extract(self, events: List[BufferedEvent]) -> Optional[ExtractionResult]:
        """Run one extraction cycle over a buffer snapshot.

        Args:
            events: Snapshot of buffered events in arrival order

        Returns:
            ExtractionResult, or None when the response could not be parsed
            (the whole cycle is dropped)

        Raises:
            MemoryExtractionError: If the LLM call fails
        """
        if not events:
            logger.warning('Empty snapshot provided for memory extraction')
            return ExtractionResult()

        chat_logs = format_transcript(events)
        messages = [
            {
                'role': 'system',
                'content': EXTRACTION_SYSTEM_PROMPT
            },
            {
                'role': 'user',
                'content': f'Analyze these chat logs and extract memories:\n\n{chat_logs}'
            },
        ]

        try:
            response = self.llm.chat_completion(messages=messages,
                                                temperature=self.llm_config.extraction_temperature,
                                                model_id=self.llm_config.memory_manager_model_id)
        except BedrockLLMError as e:
            logger.error(f'LLM error during memory extraction: {e}')
            raise MemoryExtractionError(f'Memory extraction failed: {e}')

        if not response or not response.strip():
            logger.error('No response from LLM for memory extraction')
            return None

        try:
            result = parse_extraction_response(response)
        except JSONRepairError as e:
            logger.error(f'Failed to parse memory extraction response, dropping cycle: {e}')
            logger.error(f'Raw response: {e.raw}')
            return None

        logger.info(f'Extracted {len(result.memories)} memories and {len(result.relationship_updates)} relationship updates')
        for memory in result.memories:
            logger.debug(f'[{memory.type.value}] (importance: {memory.importance}) {memory.content} '
                         f'| tags: {", ".join(memory.tags)} | user: {memory.user_id or "N/A"}')
        return result
