"""
Domain events. The closed set the orchestrator works with after the raw
engine vocabulary has been normalized.

Each event carries a `kind` tag (archive log) and a `client_type`
(WebSocket message type sent to the browser).
"""

import base64
from dataclasses import asdict, dataclass, field
from typing import ClassVar, Optional, Union


@dataclass(frozen=True)
class _Event:
    kind: ClassVar[str] = ""
    client_type: ClassVar[str] = ""

    def to_dict(self) -> dict:
        return {"kind": self.kind, **asdict(self)}


@dataclass(frozen=True)
class UserTranscriptCompleted(_Event):
    kind: ClassVar[str] = "user_transcript_completed"
    client_type: ClassVar[str] = "user:transcript"

    item_id: str
    text: str


@dataclass(frozen=True)
class AssistantResponseCompleted(_Event):
    kind: ClassVar[str] = "assistant_response_completed"
    client_type: ClassVar[str] = "agent:response"

    item_id: str
    text: str
    response_id: Optional[str] = None


@dataclass(frozen=True)
class ToolInvoked(_Event):
    kind: ClassVar[str] = "tool_invoked"
    client_type: ClassVar[str] = "tool:invoked"

    call_id: str
    name: str
    arguments: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult(_Event):
    kind: ClassVar[str] = "tool_result"
    client_type: ClassVar[str] = "tool:result"

    call_id: str
    output: str
    name: Optional[str] = None


@dataclass(frozen=True)
class AudioSegment(_Event):
    kind: ClassVar[str] = "audio_segment"
    client_type: ClassVar[str] = "audio:output"

    response_id: str
    audio: bytes

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "response_id": self.response_id,
            "audio": base64.b64encode(self.audio).decode("ascii"),
            "bytes": len(self.audio),
        }


@dataclass(frozen=True)
class ConnectionStateChanged(_Event):
    kind: ClassVar[str] = "connection_state_changed"
    client_type: ClassVar[str] = "connection:state"

    state: str
    reason: Optional[str] = None

    @property
    def is_disconnect(self) -> bool:
        return self.state in ("disconnected", "closed")


@dataclass(frozen=True)
class GuardrailTripped(_Event):
    kind: ClassVar[str] = "guardrail_tripped"
    client_type: ClassVar[str] = "guardrail:tripped"

    guardrail: str
    message: str = ""


@dataclass(frozen=True)
class EngineError(_Event):
    kind: ClassVar[str] = "error"
    client_type: ClassVar[str] = "session:error"

    message: str
    code: Optional[str] = None


DomainEvent = Union[
    UserTranscriptCompleted,
    AssistantResponseCompleted,
    ToolInvoked,
    ToolResult,
    AudioSegment,
    ConnectionStateChanged,
    GuardrailTripped,
    EngineError,
]
