"""
Redis pub/sub for session notifications OR silent no-op.
Controlled by FF_USE_REDIS flag.

Channels (namespaced by REDIS_CHANNEL_PREFIX):
    {prefix}:sessions              session opened / closed / archived
    {prefix}:session:{session_id}  in-session updates (data, tools, errors)

Messages are JSON: {"type": event_type, "session_id": ..., "timestamp": ..., "data": {...}}
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)

_redis_client = None


async def _get_redis():
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis

        settings = get_settings()
        _redis_client = aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
        )
    return _redis_client


def channel(*parts: str) -> str:
    return ":".join((get_settings().redis_channel_prefix, *parts))


def encode(event_type: str, data: Any = None, session_id: Optional[str] = None) -> str:
    return json.dumps(
        {
            "type": event_type,
            "session_id": session_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": data,
        },
        default=str,
    )


async def publish(channel_name: str, event_type: str, data: Any = None, session_id: Optional[str] = None) -> bool:
    """
    Publish a notification. Returns False when Redis is disabled or the
    publish failed; callers never depend on delivery.
    """
    if not get_flags().use_redis:
        return False

    try:
        client = await _get_redis()
        await client.publish(channel_name, encode(event_type, data, session_id))
        return True
    except Exception as e:
        logger.warning("Redis publish failed (channel=%s, type=%s): %s", channel_name, event_type, e)
        return False


async def notify_session(session_id: str, event_type: str, data: Any = None) -> bool:
    return await publish(channel("session", session_id), event_type, data, session_id)


async def notify_sessions(event_type: str, data: Any = None, session_id: Optional[str] = None) -> bool:
    return await publish(channel("sessions"), event_type, data, session_id)


async def ping() -> Optional[bool]:
    """Redis reachability for /health. None when the flag is off."""
    if not get_flags().use_redis:
        return None
    try:
        client = await _get_redis()
        return bool(await client.ping())
    except Exception as e:
        logger.warning("Redis ping failed: %s", e)
        return False


async def close_redis() -> None:
    global _redis_client
    if _redis_client:
        await _redis_client.close()
        _redis_client = None
        logger.info("Redis connection closed")
