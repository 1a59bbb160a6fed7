"""
Conversation archiver.

Buffers each session's events, history snapshots and (optionally) audio in
memory while the call is live, then writes the archive exactly once:

    {YYYY-MM-DD}/{session_id}/{conversation_id}_conversation.json
    {YYYY-MM-DD}/{session_id}/{conversation_id}_summary.json
    {YYYY-MM-DD}/{session_id}/{conversation_id}_extracted_data.json   (FF_SAVE_EXTRACTED_DATA)
    {YYYY-MM-DD}/{session_id}/{conversation_id}_audio.wav             (FF_RECORD_AUDIO)

Per session: NOT_STARTED → RECORDING → FINALIZING → ARCHIVED.
A failed write returns the record to RECORDING so finalize can be retried.
"""

import asyncio
import json
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Any, Callable, Optional

from ..core.errors import ArchiveWriteFailure
from ..core.flags import get_flags
from ..core.storage import StorageBackend, get_storage
from ..models.conversation import (
    ArchivedEvent,
    ArchiveResult,
    ArchiveState,
    ConversationRecord,
    HistorySnapshot,
)
from ..models.session import utcnow
from ..orchestrator.audio import encode_wav
from .extraction import aggregate, merge_patches

logger = logging.getLogger(__name__)

ARCHIVE_VERSION = "1.0"

_PHONE_RE = re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")
_EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")


# ── Sanitization ─────────────────────────────────────────────────────

def sanitize_text(text: str) -> str:
    text = _PHONE_RE.sub("XXX-XXX-XXXX", text)
    return _EMAIL_RE.sub("user@example.com", text)


def sanitize(value: Any) -> Any:
    """Mask phone numbers and emails in every string inside value."""
    if isinstance(value, str):
        return sanitize_text(value)
    if isinstance(value, dict):
        return {k: sanitize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [sanitize(v) for v in value]
    return value


# ── Digests ──────────────────────────────────────────────────────────

def _dialogue_turns(history: list[dict]) -> list[tuple[str, str]]:
    turns = []
    for entry in history:
        if entry.get("type") == "user":
            turns.append(("user", entry.get("content") or ""))
        elif entry.get("type") == "agent":
            turns.append(("assistant", entry.get("content") or ""))
    return turns


def conversation_state(history: list[dict]) -> dict:
    """Digest stored with every history snapshot."""
    user = sum(1 for e in history if e.get("type") == "user")
    agent = sum(1 for e in history if e.get("type") == "agent")
    tools = sum(
        1 for e in history
        if e.get("type") == "system" and (e.get("metadata") or {}).get("event") == "tool_invoked"
    )
    return {
        "total_messages": user + agent,
        "user_messages": user,
        "assistant_messages": agent,
        "tool_calls": tools,
        "last_activity": history[-1].get("timestamp") if history else None,
        "extracted_data": aggregate(_dialogue_turns(history)),
    }


def format_duration(start: datetime, end: datetime) -> dict:
    ms = max(0, int((end - start).total_seconds() * 1000))
    seconds = ms // 1000
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    return {"milliseconds": ms, "seconds": seconds, "formatted": f"{h:02d}:{m:02d}:{s:02d}"}


def build_summary(record: ConversationRecord) -> dict:
    last = record.history_snapshots[-1].conversation_state if record.history_snapshots else {}
    end = record.end_time or utcnow()
    return {
        "conversation_id": record.conversation_id,
        "session_id": record.session_id,
        "start_time": record.start_time.isoformat(),
        "end_time": end.isoformat(),
        "duration": format_duration(record.start_time, end),
        "statistics": {
            "total_messages": last.get("total_messages", 0),
            "user_messages": last.get("user_messages", 0),
            "assistant_messages": last.get("assistant_messages", 0),
            "tool_calls": last.get("tool_calls", 0),
            "history_snapshots": len(record.history_snapshots),
            "events": len(record.events),
        },
        "last_activity": last.get("last_activity"),
        "metadata": {k: v for k, v in record.metadata.items() if k != "application"},
    }


def build_extracted_data(record: ConversationRecord) -> dict:
    """Reduce every snapshot's extracted data, in order, into one patch."""
    acc: dict = {}
    for snapshot in record.history_snapshots:
        acc = merge_patches(acc, snapshot.conversation_state.get("extracted_data") or {})
    out = {
        "conversation_id": record.conversation_id,
        "session_id": record.session_id,
        "extracted": acc,
    }
    if record.metadata.get("application"):
        out["application"] = record.metadata["application"]
    return out


# ── Archiver ─────────────────────────────────────────────────────────

@dataclass
class _Recording:
    record: ConversationRecord
    state: ArchiveState = ArchiveState.RECORDING
    task: Optional[asyncio.Task] = None


class ConversationArchiver:
    def __init__(
        self,
        storage: Optional[StorageBackend] = None,
        record_audio: Optional[bool] = None,
        mask_pii: Optional[bool] = None,
        save_extracted_data: Optional[bool] = None,
        clock: Callable[[], datetime] = utcnow,
        archived_cache_size: int = 256,
    ):
        flags = get_flags()
        self.storage = storage if storage is not None else get_storage()
        self.record_audio = flags.record_audio if record_audio is None else record_audio
        self.mask_pii = flags.mask_pii if mask_pii is None else mask_pii
        self.save_extracted_data = (
            flags.save_extracted_data if save_extracted_data is None else save_extracted_data
        )
        self._clock = clock
        self._recordings: dict[str, _Recording] = {}
        self._archived: OrderedDict[str, ArchiveResult] = OrderedDict()
        self._archived_cache_size = archived_cache_size

    # ── Recording ────────────────────────────────────────────────────

    def start(self, session_id: str, metadata: Optional[dict] = None) -> ConversationRecord:
        existing = self._recordings.get(session_id)
        if existing is not None:
            return existing.record

        record = ConversationRecord(
            session_id=session_id,
            start_time=self._clock(),
            metadata=dict(metadata or {}),
        )
        self._recordings[session_id] = _Recording(record=record)
        logger.info("Recording conversation %s for session %s", record.conversation_id, session_id)
        return record

    def discard(self, session_id: str) -> bool:
        """Drop a recording that never got going. Only while still recording."""
        rec = self._recordings.get(session_id)
        if rec is None or rec.state is not ArchiveState.RECORDING:
            return False
        del self._recordings[session_id]
        logger.info("Discarded conversation %s for session %s", rec.record.conversation_id, session_id)
        return True

    def status(self, session_id: str) -> ArchiveState:
        rec = self._recordings.get(session_id)
        if rec is not None:
            return rec.state
        if session_id in self._archived:
            return ArchiveState.ARCHIVED
        return ArchiveState.NOT_STARTED

    def get_record(self, session_id: str) -> Optional[ConversationRecord]:
        rec = self._recordings.get(session_id)
        return rec.record if rec else None

    def _recording(self, session_id: str) -> Optional[ConversationRecord]:
        rec = self._recordings.get(session_id)
        if rec is None or rec.state is not ArchiveState.RECORDING:
            return None
        return rec.record

    def log_event(self, session_id: str, event_type: str, data: Optional[dict] = None) -> Optional[ArchivedEvent]:
        record = self._recording(session_id)
        if record is None:
            logger.debug("Event %s for session %s ignored: not recording", event_type, session_id)
            return None
        event = ArchivedEvent(type=event_type, data=data or {}, timestamp=self._clock())
        record.events.append(event)
        return event

    def log_history_snapshot(
        self, session_id: str, history: list[dict], event_type: str = "history_updated"
    ) -> Optional[HistorySnapshot]:
        record = self._recording(session_id)
        if record is None:
            return None
        snapshot = HistorySnapshot(
            event_type=event_type,
            history=[dict(e) for e in history],
            conversation_state=conversation_state(history),
            timestamp=self._clock(),
        )
        record.history_snapshots.append(snapshot)
        return snapshot

    def add_audio(self, session_id: str, pcm: bytes) -> bool:
        if not self.record_audio:
            return False
        record = self._recording(session_id)
        if record is None or not pcm:
            return False
        record.audio_chunks.append(pcm)
        return True

    def active(self) -> list[dict]:
        return [
            {
                "session_id": sid,
                "conversation_id": rec.record.conversation_id,
                "state": rec.state.value,
                "start_time": rec.record.start_time.isoformat(),
                "events": len(rec.record.events),
                "history_snapshots": len(rec.record.history_snapshots),
            }
            for sid, rec in self._recordings.items()
        ]

    # ── Finalize ─────────────────────────────────────────────────────

    async def finalize(self, session_id: str, metadata: Optional[dict] = None) -> Optional[ArchiveResult]:
        """
        Persist the session's conversation. Exactly one write per session:
        concurrent callers share the in-flight write, later callers get the
        cached result. None if nothing was ever recorded for session_id.
        Raises ArchiveWriteFailure; the record stays in memory for a retry.
        """
        if session_id in self._archived:
            return self._archived[session_id]

        rec = self._recordings.get(session_id)
        if rec is None:
            return None

        if rec.task is None:
            rec.state = ArchiveState.FINALIZING
            rec.task = asyncio.create_task(self._finalize(rec, metadata or {}))
        # Cancelling a caller must not abort the write
        return await asyncio.shield(rec.task)

    async def _finalize(self, rec: _Recording, metadata: dict) -> ArchiveResult:
        record = rec.record
        prior_end, prior_meta = record.end_time, dict(record.metadata)
        try:
            result = await self._persist(record, metadata)
        except Exception as e:
            record.end_time, record.metadata = prior_end, prior_meta
            rec.state = ArchiveState.RECORDING
            rec.task = None
            logger.error("Archive write failed for session %s: %s", record.session_id, e)
            raise ArchiveWriteFailure(record.session_id, e) from e

        rec.state = ArchiveState.ARCHIVED
        self._recordings.pop(record.session_id, None)
        self._archived[record.session_id] = result
        while len(self._archived) > self._archived_cache_size:
            self._archived.popitem(last=False)
        return result

    async def _persist(self, record: ConversationRecord, metadata: dict) -> ArchiveResult:
        end = self._clock()
        record.end_time = end
        record.metadata.update(metadata)
        duration = format_duration(record.start_time, end)
        record.metadata.update({
            "duration": duration,
            "total_events": len(record.events),
            "total_snapshots": len(record.history_snapshots),
        })

        base = f"{record.start_time.strftime('%Y-%m-%d')}/{record.session_id}/{record.conversation_id}"

        conversation = record.to_dict()
        conversation["metadata"] = {k: v for k, v in record.metadata.items() if k != "application"}
        if self.mask_pii:
            conversation["history_snapshots"] = sanitize(conversation["history_snapshots"])
            conversation["events"] = sanitize(conversation["events"])
        conversation["exported_at"] = end.isoformat()
        conversation["version"] = ARCHIVE_VERSION

        summary = build_summary(record)

        conversation_key = f"{base}_conversation.json"
        summary_key = f"{base}_summary.json"
        await self.storage.write(conversation_key, _json_bytes(conversation))
        await self.storage.write(summary_key, _json_bytes(summary))

        result = ArchiveResult(
            conversation_id=record.conversation_id,
            session_id=record.session_id,
            conversation_key=conversation_key,
            summary_key=summary_key,
            summary=summary,
        )

        if self.save_extracted_data:
            extracted = build_extracted_data(record)
            if extracted["extracted"] or extracted.get("application"):
                result.extracted_data_key = f"{base}_extracted_data.json"
                await self.storage.write(result.extracted_data_key, _json_bytes(extracted))

        if record.audio_chunks:
            result.audio_key = f"{base}_audio.wav"
            await self.storage.write(
                result.audio_key, encode_wav(b"".join(record.audio_chunks)), content_type="audio/wav"
            )

        logger.info(
            "Archived conversation %s (session=%s, events=%d, snapshots=%d, duration=%s)",
            record.conversation_id, record.session_id, len(record.events),
            len(record.history_snapshots), duration["formatted"],
        )
        return result


def _json_bytes(data: dict) -> bytes:
    return json.dumps(data, indent=2, default=str).encode("utf-8")


@lru_cache
def get_archiver() -> ConversationArchiver:
    return ConversationArchiver()
