"""
Retrieval Ranker: finds memories relevant to an incoming message and formats
them, with the sender's relationship entry, into a context block.
"""

from typing import List, Optional

from ..models.core import MAX_IMPORTANCE, MemoryType, RelationshipEntry, ScoredMemory, StoredMemory
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import RetrievalConfig
from ..utils.config import config as app_config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import age_days, now_ms, parse_iso
from .memory_store import MemoryStore
from .relationships import RelationshipStore

logger = get_logger(__name__)


def forgetting_penalty(importance: int, days: float, config: RetrievalConfig) -> float:
    """Soft-forgetting step: mid-importance memories fade after a few days."""
    if config.forgetting_min_importance <= importance <= config.forgetting_max_importance and days >= config.forgetting_age_days:
        return config.forgetting_penalty
    return 1.0


def weighted_score(similarity: float, importance: int, days: float, config: RetrievalConfig) -> float:
    """Blend of similarity, importance and recency, before soft-forgetting.

    Recency falls linearly from 1 to 0 over the recency window.
    """
    normalized_importance = importance / MAX_IMPORTANCE
    recency = max(0.0, 1.0 - days / config.recency_window_days)
    return (similarity * config.similarity_weight + normalized_importance * config.importance_weight +
            recency * config.recency_weight)


def score_memory(similarity: float, importance: int, days: float, config: RetrievalConfig) -> float:
    """Final re-ranking score: ``weighted_score * forgetting_penalty``."""
    return weighted_score(similarity, importance, days, config) * forgetting_penalty(importance, days, config)


def rank_hits(hits, config: RetrievalConfig, limit: int, now: Optional[int] = None) -> List[ScoredMemory]:
    """Re-score (memory, similarity) hits, best first, truncated to ``limit``."""
    now = now_ms() if now is None else now
    scored = []
    for memory, similarity in hits:
        days = max(0.0, age_days(memory.timestamp, now))
        scored.append(ScoredMemory(memory=memory, similarity=similarity, score=score_memory(similarity, memory.importance, days, config)))
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored[:limit]


def _describe_elapsed(iso_value: str, now: Optional[int] = None) -> str:
    last = parse_iso(iso_value)
    if last is None:
        return 'unknown'
    hours = max(0.0, ((now_ms() if now is None else now) - last.timestamp() * 1000) / 3_600_000)
    if hours < 1:
        return 'less than an hour ago'
    if hours < 48:
        return f'{int(hours)} hours ago'
    return f'{int(hours // 24)} days ago'


def format_relationship(entry: RelationshipEntry, now: Optional[int] = None) -> str:
    return '\n'.join([
        f'## Relationship with {entry.username}',
        f'- Affinity score: {entry.affinity_score}',
        f'- Interactions: {entry.interaction_count}',
        f'- Last interaction: {_describe_elapsed(entry.last_interaction, now)}',
    ])


def _format_memory(memory: StoredMemory) -> str:
    tags = f' [{", ".join(memory.tags)}]' if memory.tags else ''
    return f'- {memory.content} (importance: {memory.importance}){tags}'


def format_context(relationship: Optional[RelationshipEntry],
                   user_facts: List[ScoredMemory],
                   server_lore: List[ScoredMemory],
                   now: Optional[int] = None) -> str:
    """Join the non-empty sections; an empty string when nothing qualifies."""
    sections = []
    if relationship is not None:
        sections.append(format_relationship(relationship, now))
    if user_facts:
        sections.append('\n'.join(['## What you remember about this user'] + [_format_memory(s.memory) for s in user_facts]))
    if server_lore:
        sections.append('\n'.join(['## Server lore'] + [_format_memory(s.memory) for s in server_lore]))
    if not sections:
        return ''
    return '# Long-term memory\n\n' + '\n\n'.join(sections)


class RetrievalService:
    """Builds the memory context block for a live reply."""

    def __init__(self,
                 store: MemoryStore,
                 relationships: RelationshipStore,
                 embed: Optional[BedrockEmbed] = None,
                 config: Optional[RetrievalConfig] = None):
        self.store = store
        self.relationships = relationships
        self.embed = embed or store.embed
        self.config = config or app_config.retrieval

    def retrieve(self, message: str, user_id: str):
        """
        Search and re-rank memories for a message.

        Returns:
            Tuple of (user_facts, server_lore) as ScoredMemory lists

        Raises:
            BedrockEmbedError, MemoryStoreError: On service failures
        """
        if not message or not message.strip():
            return [], []

        query_vector = self.embed.embed_query(message)
        fact_hits = self.store.search(query_vector,
                                      user_id=user_id,
                                      memory_type=MemoryType.USER_FACT,
                                      limit=self.config.user_fact_count * 2,
                                      score_threshold=self.config.score_threshold)
        lore_hits = self.store.search(query_vector,
                                      memory_type=MemoryType.SERVER_LORE,
                                      limit=self.config.server_lore_count * 2,
                                      score_threshold=self.config.score_threshold)

        now = now_ms()
        user_facts = rank_hits(fact_hits, self.config, self.config.user_fact_count, now)
        server_lore = rank_hits(lore_hits, self.config, self.config.server_lore_count, now)
        logger.debug(f'Retrieved {len(user_facts)}/{len(fact_hits)} user facts and {len(server_lore)}/{len(lore_hits)} lore items')
        return user_facts, server_lore

    def build_context(self, message: str, user_id: str) -> str:
        """
        Produce the context block for a reply. Never raises: any failure is
        logged and yields an empty string.
        """
        try:
            user_facts, server_lore = self.retrieve(message, user_id)
            relationship = self.relationships.get(user_id)
            return format_context(relationship, user_facts, server_lore)
        except Exception as e:
            logger.error(f'Memory retrieval failed, continuing without context: {e}')
            return ''
