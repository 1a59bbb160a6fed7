"""
Engine event normalization.

Maps the raw realtime engine vocabulary (plain dict events, transport_event
wrappers, full item objects, incremental deltas, whole audio blocks) onto the closed set of domain
events in models/events.py.

The same occurrence often arrives several times (item created, output item
done, response done). Each occurrence is emitted once, keyed by item id or
call id.
"""

import json
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

from ..core.errors import UpstreamMalformedEvent
from ..models.events import (
    AssistantResponseCompleted,
    ConnectionStateChanged,
    DomainEvent,
    EngineError,
    GuardrailTripped,
    ToolInvoked,
    ToolResult,
    UserTranscriptCompleted,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioDelta:
    response_id: str
    delta: str


@dataclass(frozen=True)
class AudioDone:
    response_id: str


Normalized = Union[DomainEvent, AudioDelta, AudioDone]

# Engine chatter with no domain meaning
IGNORED_TYPES = frozenset({
    "session.created",
    "session.updated",
    "transcription_session.updated",
    "conversation.created",
    "conversation.item.truncated",
    "conversation.item.deleted",
    "conversation.item.input_audio_transcription.delta",
    "conversation.item.input_audio_transcription.failed",
    "conversation.item.retrieved",
    "input_audio_buffer.committed",
    "input_audio_buffer.cleared",
    "input_audio_buffer.speech_started",
    "input_audio_buffer.speech_stopped",
    "output_audio_buffer.started",
    "output_audio_buffer.stopped",
    "output_audio_buffer.cleared",
    "response.created",
    "response.output_item.added",
    "response.content_part.added",
    "response.content_part.done",
    "response.text.delta",
    "response.output_text.delta",
    "response.audio_transcript.delta",
    "response.output_audio_transcript.delta",
    "response.function_call_arguments.delta",
    "rate_limits.updated",
})


def _require(raw: dict, key: str, kind: type = str):
    value = raw.get(key)
    if not isinstance(value, kind):
        raise UpstreamMalformedEvent(f"{raw.get('type')}: missing {key}", raw)
    return value


def parse_arguments(raw_args) -> dict:
    if isinstance(raw_args, dict):
        return raw_args
    if not raw_args:
        return {}
    try:
        parsed = json.loads(raw_args)
    except (TypeError, ValueError):
        logger.warning("Tool call arguments are not valid JSON: %.200s", raw_args)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _content_text(item: dict) -> str:
    parts = []
    for part in item.get("content") or []:
        if not isinstance(part, dict):
            continue
        ptype = part.get("type")
        if ptype in ("text", "input_text", "output_text") and part.get("text"):
            parts.append(part["text"])
        elif ptype in ("audio", "input_audio", "output_audio") and part.get("transcript"):
            parts.append(part["transcript"])
    return " ".join(p.strip() for p in parts if p.strip())


class EventNormalizer:
    """Per-session normalizer. Holds the de-duplication set for that session."""

    def __init__(self):
        self._seen: set[str] = set()
        self._blocks = 0
        self._handlers: dict[str, Callable[[dict], list[Normalized]]] = {
            "conversation.item.input_audio_transcription.completed": self._on_input_transcript,
            "conversation.item.created": self._on_item,
            "conversation.item.added": self._on_item,
            "conversation.item.done": self._on_item,
            "response.output_item.done": self._on_item,
            "response.audio_transcript.done": self._on_output_transcript,
            "response.output_audio_transcript.done": self._on_output_transcript,
            "response.text.done": self._on_output_text,
            "response.output_text.done": self._on_output_text,
            "response.done": self._on_response_done,
            "response.function_call_arguments.done": self._on_function_call_done,
            "response.audio.delta": self._on_audio_delta,
            "response.output_audio.delta": self._on_audio_delta,
            "response.audio.done": self._on_audio_done,
            "response.output_audio.done": self._on_audio_done,
            "audio": self._on_audio_block,
            "audio_output": self._on_audio_block,
            "error": self._on_error,
            "guardrail_tripped": self._on_guardrail,
            "connection.state": self._on_connection_state,
        }

    # ── Dedup ────────────────────────────────────────────────────────

    def _first(self, key: str) -> bool:
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

    def mark_seen(self, key: str) -> None:
        self._seen.add(key)

    @staticmethod
    def result_key(call_id: str) -> str:
        return f"result:{call_id}"

    # ── Entry point ──────────────────────────────────────────────────

    def normalize(self, raw) -> list[Normalized]:
        """
        Raw engine event → zero or more normalized events.
        Raises UpstreamMalformedEvent for shapes that cannot be interpreted.
        """
        if not isinstance(raw, dict):
            raise UpstreamMalformedEvent("event is not an object")
        etype = raw.get("type")
        if not isinstance(etype, str):
            raise UpstreamMalformedEvent("event has no type", raw)

        if etype == "transport_event":
            inner = raw.get("event")
            if not isinstance(inner, dict):
                raise UpstreamMalformedEvent("transport_event without nested event", raw)
            return self.normalize(inner)

        handler = self._handlers.get(etype)
        if handler is None:
            if etype in IGNORED_TYPES:
                return []
            if isinstance(raw.get("audio"), str):
                logger.debug("Treating %s as an audio block", etype)
                return self._on_audio_block(raw)
            raise UpstreamMalformedEvent(f"unknown event type: {etype}", raw)
        return handler(raw)

    # ── Items ────────────────────────────────────────────────────────

    def _from_item(self, item: dict, response_id: Optional[str] = None) -> list[Normalized]:
        itype = item.get("type")
        item_id = item.get("id")

        if itype == "message":
            if not isinstance(item_id, str):
                raise UpstreamMalformedEvent("message item without id", item)
            text = _content_text(item)
            if not text:
                return []
            role = item.get("role")
            if role == "user" and self._first(f"user:{item_id}"):
                return [UserTranscriptCompleted(item_id=item_id, text=text)]
            if role == "assistant" and self._first(f"assistant:{item_id}"):
                return [AssistantResponseCompleted(item_id=item_id, text=text, response_id=response_id)]
            return []

        if itype == "function_call":
            if item.get("status") not in (None, "completed"):
                return []
            call_id = item.get("call_id")
            name = item.get("name")
            if not isinstance(call_id, str) or not isinstance(name, str):
                raise UpstreamMalformedEvent("function_call item without call_id/name", item)
            if not self._first(f"call:{call_id}"):
                return []
            return [ToolInvoked(call_id=call_id, name=name, arguments=parse_arguments(item.get("arguments")))]

        if itype == "function_call_output":
            call_id = item.get("call_id")
            if not isinstance(call_id, str):
                raise UpstreamMalformedEvent("function_call_output item without call_id", item)
            if not self._first(self.result_key(call_id)):
                return []
            return [ToolResult(call_id=call_id, output=str(item.get("output", "")))]

        return []

    def _on_item(self, raw: dict) -> list[Normalized]:
        item = _require(raw, "item", dict)
        return self._from_item(item, raw.get("response_id"))

    def _on_input_transcript(self, raw: dict) -> list[Normalized]:
        item_id = _require(raw, "item_id")
        text = _require(raw, "transcript").strip()
        if not text or not self._first(f"user:{item_id}"):
            return []
        return [UserTranscriptCompleted(item_id=item_id, text=text)]

    def _assistant_text(self, raw: dict, key: str) -> list[Normalized]:
        item_id = _require(raw, "item_id")
        text = _require(raw, key).strip()
        if not text or not self._first(f"assistant:{item_id}"):
            return []
        return [AssistantResponseCompleted(item_id=item_id, text=text, response_id=raw.get("response_id"))]

    def _on_output_transcript(self, raw: dict) -> list[Normalized]:
        return self._assistant_text(raw, "transcript")

    def _on_output_text(self, raw: dict) -> list[Normalized]:
        return self._assistant_text(raw, "text")

    def _on_response_done(self, raw: dict) -> list[Normalized]:
        response = _require(raw, "response", dict)
        out: list[Normalized] = []
        for item in response.get("output") or []:
            if isinstance(item, dict):
                out.extend(self._from_item(item, response.get("id")))

        if response.get("status") == "failed":
            error = ((response.get("status_details") or {}).get("error")) or {}
            out.append(EngineError(
                message=error.get("message") or "Response failed",
                code=error.get("code") or error.get("type"),
            ))
        return out

    def _on_function_call_done(self, raw: dict) -> list[Normalized]:
        call_id = _require(raw, "call_id")
        name = _require(raw, "name")
        if not self._first(f"call:{call_id}"):
            return []
        return [ToolInvoked(call_id=call_id, name=name, arguments=parse_arguments(raw.get("arguments")))]

    # ── Audio ────────────────────────────────────────────────────────

    def _on_audio_delta(self, raw: dict) -> list[Normalized]:
        return [AudioDelta(response_id=_require(raw, "response_id"), delta=_require(raw, "delta"))]

    def _on_audio_done(self, raw: dict) -> list[Normalized]:
        response_id = _require(raw, "response_id")
        out: list[Normalized] = []
        if isinstance(raw.get("audio"), str):
            out.append(AudioDelta(response_id=response_id, delta=raw["audio"]))
        out.append(AudioDone(response_id=response_id))
        return out

    def _on_audio_block(self, raw: dict) -> list[Normalized]:
        """A whole clip in one event. Released as one segment."""
        audio = _require(raw, "audio")
        response_id = raw.get("response_id")
        if not isinstance(response_id, str):
            self._blocks += 1
            response_id = f"block-{self._blocks}"
        return [AudioDelta(response_id=response_id, delta=audio), AudioDone(response_id=response_id)]

    # ── Control ──────────────────────────────────────────────────────

    def _on_error(self, raw: dict) -> list[Normalized]:
        error = raw.get("error")
        if isinstance(error, dict):
            return [EngineError(
                message=str(error.get("message") or "Unknown engine error"),
                code=error.get("code") or error.get("type"),
            )]
        return [EngineError(message=str(error or raw.get("message") or "Unknown engine error"))]

    def _on_guardrail(self, raw: dict) -> list[Normalized]:
        name = raw.get("guardrail") or raw.get("name") or "unknown"
        return [GuardrailTripped(guardrail=str(name), message=str(raw.get("message") or ""))]

    def _on_connection_state(self, raw: dict) -> list[Normalized]:
        return [ConnectionStateChanged(state=_require(raw, "state"), reason=raw.get("reason"))]
