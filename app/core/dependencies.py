"""
FastAPI dependencies. Injected into route handlers.
"""

from functools import lru_cache
from typing import Callable

from ..services.conversation_archive import ConversationArchiver, get_archiver
from ..services.conversation_store import ConversationStore, get_conversation_store
from ..services.realtime_engine import OpenAIRealtimeEngine, RealtimeEngine
from ..services.session_manager import SessionManager, get_session_manager
from ..services.vehicle_collector import VehicleCollector

EngineFactory = Callable[[], RealtimeEngine]


def get_sessions() -> SessionManager:
    """The process-wide live-session table."""
    return get_session_manager()


def get_archiver_dep() -> ConversationArchiver:
    return get_archiver()


def get_conversations() -> ConversationStore:
    """Read side of the conversation archive."""
    return get_conversation_store()


@lru_cache
def get_vehicles() -> VehicleCollector:
    return VehicleCollector(get_session_manager())


def _openai_engine() -> RealtimeEngine:
    from ..agents.insurance.handler import build_session_config

    return OpenAIRealtimeEngine(build_session_config())


def get_engine_factory() -> EngineFactory:
    """Creates one engine connection per voice session."""
    return _openai_engine

