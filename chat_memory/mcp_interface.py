"""
MCP Interface Layer using fastmcp for agent orchestration.
"""
import asyncio
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from chat_memory.models.core import EventOrigin
from chat_memory.services.memory_management import MemoryManagementService
from chat_memory.utils.config import config
from chat_memory.utils.health_check import get_health_status, get_system_info
from chat_memory.utils.logging_config import get_logger

logger = get_logger(__name__)

memory_service = MemoryManagementService()


@asynccontextmanager
async def lifespan(server):
    await memory_service.start()
    try:
        yield
    finally:
        await memory_service.shutdown()


# Initialize FastMCP application
mcp = FastMCP('Chat Memory', lifespan=lifespan)


@mcp.tool()
async def record_message(content: str,
                         user_id: str,
                         username: str,
                         channel_id: str,
                         origin: str = 'incoming',
                         is_bot: bool = False) -> Dict[str, Any]:
    """Add a conversation message to the memory buffer.

    Args:
        content: Message text
        user_id: Author ID
        username: Author display name
        channel_id: Channel the message was seen in
        origin: 'incoming' (addressed to the agent), 'outgoing' (the agent's reply) or 'observed'
        is_bot: Whether the author is a bot

    Returns:
        Buffer size after the append and the flush trigger that fired, if any
    """
    try:
        event_origin = EventOrigin(origin)
    except ValueError:
        raise ValueError(f"origin must be one of: {', '.join(o.value for o in EventOrigin)}")

    trigger = memory_service.record_event(content, user_id, username, channel_id, event_origin, is_bot=is_bot)
    return {'buffered': len(memory_service.buffer), 'trigger': trigger.value if trigger else None}


@mcp.tool()
async def get_memory_context(message: str, user_id: str) -> str:
    """Get long-term memory context for replying to a message.

    Args:
        message: The incoming message
        user_id: ID of the user who sent it

    Returns:
        Formatted context block, or an empty string when nothing relevant is remembered
    """
    context = await memory_service.get_context(message, user_id)
    logger.debug(f'MCP context for user {user_id}: {len(context)} chars')
    return context


@mcp.tool()
async def flush_memory_buffer() -> int:
    """Extract memories from the buffer now.

    Returns:
        Number of buffered messages handed to extraction
    """
    return memory_service.flush()


@mcp.tool()
async def get_buffer_stats() -> Dict[str, Any]:
    """Current memory buffer statistics."""
    stats = memory_service.buffer_stats()
    result = asdict(stats)
    result['oldest_message'] = stats.oldest_message.isoformat() if stats.oldest_message else None
    result['newest_message'] = stats.newest_message.isoformat() if stats.newest_message else None
    return result


@mcp.tool()
async def get_relationship(user_id: str) -> Optional[Dict[str, Any]]:
    """Relationship entry for a user, or null if there is none."""
    entry = memory_service.get_relationship(user_id)
    return entry.to_dict() if entry else None


@mcp.tool()
async def get_top_relationships(limit: int = 10, lowest: bool = False) -> List[Dict[str, Any]]:
    """Users ordered by affinity (highest first, or lowest first when ``lowest`` is set)."""
    ledger = memory_service.relationships
    entries = ledger.bottom(limit) if lowest else ledger.top(limit)
    return [entry.to_dict() for entry in entries]


@mcp.tool()
async def get_user_memories(user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
    """Stored memories about one user, most important first."""
    memories = await asyncio.to_thread(memory_service.store.get_user_memories, user_id, limit)
    return [memory.to_payload() for memory in memories]


@mcp.tool()
async def get_recent_memories(limit: int = 20) -> List[Dict[str, Any]]:
    """Most recently stored memories."""
    memories = await asyncio.to_thread(memory_service.store.get_recent_memories, limit)
    return [memory.to_payload() for memory in memories]


@mcp.tool()
async def run_memory_cleanup() -> Dict[str, int]:
    """Run a retention sweep now."""
    return asdict(await memory_service.run_cleanup())


@mcp.tool()
async def health() -> Dict[str, Any]:
    """Health status of the LLM, embedding, vector store and relationship ledger."""
    return await asyncio.to_thread(get_health_status)


@mcp.tool()
async def system_info() -> Dict[str, Any]:
    """Service configuration and component health."""
    return await asyncio.to_thread(get_system_info)


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
