"""
Live voice session state. Held in memory by the SessionManager.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .application import Application


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


class EntryRole(str, Enum):
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


@dataclass
class ConversationEntry:
    """One line of the session transcript. Never mutated after append."""

    role: EntryRole
    content: str
    metadata: dict = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


@dataclass
class Session:
    id: str
    agent_id: str
    created_at: datetime
    last_activity: datetime
    expires_at: datetime
    user_id: Optional[str] = None
    status: SessionStatus = SessionStatus.ACTIVE
    data: Application = field(default_factory=Application)
    conversation_history: list[ConversationEntry] = field(default_factory=list)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    @property
    def is_live(self) -> bool:
        return self.status in (SessionStatus.ACTIVE, SessionStatus.PAUSED)

    def history_dicts(self) -> list[dict]:
        return [e.to_dict() for e in self.conversation_history]

    def to_dict(self, include_history: bool = True) -> dict:
        out = {
            "id": self.id,
            "user_id": self.user_id,
            "agent_id": self.agent_id,
            "status": self.status.value,
            "data": self.data.model_dump(mode="json"),
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }
        if include_history:
            out["conversation_history"] = self.history_dicts()
        return out
