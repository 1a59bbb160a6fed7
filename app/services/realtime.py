"""
Realtime notifications. Thin wrapper around core.redis.
Provides typed event helpers for the voice session pipeline.
"""

from ..core import redis as _redis


# ── Session lifecycle ────────────────────────────────────────────────

async def session_started(session_id: str, data: dict = None):
    await _redis.notify_sessions("session.started", data or {}, session_id)


async def session_ended(session_id: str, reason: str, data: dict = None):
    await _redis.notify_sessions("session.ended", {"reason": reason, **(data or {})}, session_id)


# ── In-session events ────────────────────────────────────────────────

async def data_updated(session_id: str, completion: dict):
    await _redis.notify_session(session_id, "session.data_updated", {"completion": completion})


async def tool_invoked(session_id: str, tool_name: str):
    await _redis.notify_session(session_id, "session.tool_invoked", {"tool": tool_name})


async def session_error(session_id: str, message: str):
    await _redis.notify_session(session_id, "session.error", {"error": message})


# ── Archive ──────────────────────────────────────────────────────────

async def conversation_archived(session_id: str, conversation_id: str):
    await _redis.notify_sessions("conversation.archived", {"conversation_id": conversation_id}, session_id)
