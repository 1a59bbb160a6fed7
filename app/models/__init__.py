"""
Domain models: application schema, live sessions, domain events, archive records.
"""

from .application import Application, merge_application
from .session import ConversationEntry, EntryRole, Session, SessionStatus
from .conversation import ArchiveResult, ArchiveState, ConversationRecord

__all__ = [
    "Application", "merge_application",
    "ConversationEntry", "EntryRole", "Session", "SessionStatus",
    "ArchiveResult", "ArchiveState", "ConversationRecord",
]
