"""
Archive-side conversation records. Owned exclusively by the ConversationArchiver.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .session import utcnow


class ArchiveState(str, Enum):
    NOT_STARTED = "not_started"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    ARCHIVED = "archived"


@dataclass
class ArchivedEvent:
    type: str
    data: dict
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type,
            "data": self.data,
        }


@dataclass
class HistorySnapshot:
    event_type: str
    history: list[dict]
    conversation_state: dict
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def history_length(self) -> int:
        return len(self.history)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "history_length": self.history_length,
            "history": self.history,
            "conversation_state": self.conversation_state,
        }


@dataclass
class ConversationRecord:
    session_id: str
    start_time: datetime
    conversation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    metadata: dict[str, Any] = field(default_factory=dict)
    end_time: Optional[datetime] = None
    history_snapshots: list[HistorySnapshot] = field(default_factory=list)
    events: list[ArchivedEvent] = field(default_factory=list)
    audio_chunks: list[bytes] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "session_id": self.session_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "metadata": self.metadata,
            "history_snapshots": [s.to_dict() for s in self.history_snapshots],
            "events": [e.to_dict() for e in self.events],
        }


@dataclass
class ArchiveResult:
    """Where a finalized conversation was written."""

    conversation_id: str
    session_id: str
    conversation_key: str
    summary_key: str
    summary: dict
    extracted_data_key: Optional[str] = None
    audio_key: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "session_id": self.session_id,
            "conversation_key": self.conversation_key,
            "summary_key": self.summary_key,
            "extracted_data_key": self.extracted_data_key,
            "audio_key": self.audio_key,
            "summary": self.summary,
        }
