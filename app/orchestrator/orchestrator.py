"""
Realtime event orchestrator. One instance per voice session.

Engine event → normalize → de-duplicate → dispatch:
  - dialogue turns: transcript append → extraction → session merge
  - tool calls:     run tool → result back to engine
  - audio:          reassemble fragments → client (+ archive)
  - every event:    archive log + client socket

Errors while handling one event are logged and contained. Ending the session
(explicit, client disconnect or engine disconnect) always goes through end().
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ..core.config import get_settings
from ..core.errors import ArchiveWriteFailure, InvalidPatch, SessionNotFound, UpstreamMalformedEvent
from ..core.guardrails import check_input, check_output
from ..models.conversation import ArchiveResult
from ..models.events import (
    AssistantResponseCompleted,
    AudioSegment,
    ConnectionStateChanged,
    DomainEvent,
    EngineError,
    GuardrailTripped,
    ToolInvoked,
    ToolResult,
    UserTranscriptCompleted,
)
from ..models.session import EntryRole, SessionStatus
from ..services import realtime
from ..services.conversation_archive import ConversationArchiver
from ..services.extraction import extract, merge_patches
from ..services.realtime_engine import RealtimeEngine
from ..services.session_manager import SessionManager
from ..services.vehicle_collector import VehicleCollector
from ..tools.registry import ToolRisk, filter_arguments, get_tool_category, get_tool_handler, get_tool_risk
from .audio import AudioAssembler
from .events import AudioDelta, AudioDone, EventNormalizer, Normalized

logger = logging.getLogger(__name__)

ClientEmitter = Callable[[dict], Awaitable[None]]


class RealtimeEventOrchestrator:
    def __init__(
        self,
        session_id: str,
        engine: RealtimeEngine,
        sessions: SessionManager,
        archiver: ConversationArchiver,
        vehicles: Optional[VehicleCollector] = None,
        emit: Optional[ClientEmitter] = None,
        debounce_ms: Optional[int] = None,
        poll_interval_ms: Optional[int] = None,
    ):
        settings = get_settings()
        self.session_id = session_id
        self.engine = engine
        self.sessions = sessions
        self.archiver = archiver
        self.vehicles = vehicles or VehicleCollector(sessions)
        self._emit = emit
        self.normalizer = EventNormalizer()
        self.audio = AudioAssembler(self._on_audio_segment, debounce_ms)
        self.poll_interval = (
            poll_interval_ms if poll_interval_ms is not None else settings.history_poll_interval_ms
        ) / 1000

        self.extracted: dict = {}
        self._reader: Optional[asyncio.Task] = None
        self._poller: Optional[asyncio.Task] = None
        self._end_task: Optional[asyncio.Task] = None
        self._end_metadata: dict = {}
        self._last_snapshot_len = -1

    @property
    def ended(self) -> bool:
        return self._end_task is not None

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self, metadata: Optional[dict] = None) -> None:
        """
        Connect the engine and begin recording. If any step fails, whatever
        was already set up is torn down and the error is re-raised.
        """
        self.sessions.require_session(self.session_id)
        fresh = self.archiver.get_record(self.session_id) is None
        try:
            await self.engine.connect()
            self.archiver.start(self.session_id, metadata)
            self._reader = asyncio.create_task(self._read_loop())
            self._poller = asyncio.create_task(self._poll_history())
            await realtime.session_started(self.session_id, metadata)
        except Exception:
            await self._abort_start(discard=fresh)
            raise
        logger.info("Voice session %s started", self.session_id)

    async def _abort_start(self, discard: bool) -> None:
        await self._stop_tasks()
        self._reader = self._poller = None
        self.audio.close()
        if discard:
            self.archiver.discard(self.session_id)
        try:
            await self.engine.disconnect()
        except Exception as e:
            logger.warning("Engine disconnect failed for session %s: %s", self.session_id, e)

    async def _stop_tasks(self) -> None:
        current = asyncio.current_task()
        for task in (self._poller, self._reader):
            if task is not None and task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    async def end(self, reason: str = "user_ended") -> Optional[ArchiveResult]:
        """
        Idempotent. Concurrent and repeated calls share one shutdown.
        Raises ArchiveWriteFailure if the archive could not be written; calling
        end() again retries the write.
        """
        if self._end_task is None:
            self._end_task = asyncio.create_task(self._shutdown(reason))
        elif self._end_task.done() and not self._end_task.cancelled() and isinstance(
            self._end_task.exception(), ArchiveWriteFailure
        ):
            result = await self.archiver.finalize(self.session_id, self._end_metadata)
            if result is not None:
                await realtime.conversation_archived(self.session_id, result.conversation_id)
            return result
        return await asyncio.shield(self._end_task)

    async def _shutdown(self, reason: str) -> Optional[ArchiveResult]:
        await self._stop_tasks()

        await self.audio.flush_all()
        self.snapshot("session_end", force=True)

        session = self.sessions.peek_session(self.session_id)
        metadata = {"end_reason": reason}
        if session is not None:
            metadata["application"] = session.data.model_dump(mode="json")
            metadata["completion"] = session.data.completion_status.model_dump()
        self._end_metadata = dict(metadata)

        result: Optional[ArchiveResult] = None
        failure: Optional[ArchiveWriteFailure] = None
        try:
            result = await self.archiver.finalize(self.session_id, metadata)
        except ArchiveWriteFailure as e:
            failure = e
        else:
            if result is not None:
                await realtime.conversation_archived(self.session_id, result.conversation_id)

        try:
            await self.engine.disconnect()
        except Exception as e:
            logger.warning("Engine disconnect failed for session %s: %s", self.session_id, e)

        self.audio.close()
        self.sessions.complete_session(
            self.session_id,
            SessionStatus.ERROR if failure else SessionStatus.COMPLETED,
        )
        await realtime.session_ended(
            self.session_id, reason,
            {"conversation_id": result.conversation_id} if result else None,
        )
        await self._forward({
            "type": "session:ended",
            "session_id": self.session_id,
            "data": {
                "reason": reason,
                "conversation_id": result.conversation_id if result else None,
                "summary": result.summary if result else None,
                "archive_error": str(failure) if failure else None,
            },
        })
        logger.info("Voice session %s ended (%s)", self.session_id, reason)

        if failure:
            raise failure
        return result

    # ── Engine → session ─────────────────────────────────────────────

    async def _read_loop(self) -> None:
        try:
            async for raw in self.engine.events():
                await self.handle_raw(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Engine stream failed for session %s: %s", self.session_id, e)

        if not self.ended:
            try:
                await self.end("connection_closed")
            except ArchiveWriteFailure as e:
                logger.error("Session %s ended without archive: %s", self.session_id, e)

    async def handle_raw(self, raw) -> None:
        try:
            items = self.normalizer.normalize(raw)
        except UpstreamMalformedEvent as e:
            logger.warning("Dropped engine event (session=%s): %s", self.session_id, e)
            return

        for item in items:
            try:
                await self.dispatch(item)
            except Exception as e:
                logger.exception(
                    "Event handling failed (session=%s, event=%s): %s",
                    self.session_id, type(item).__name__, e,
                )

    async def dispatch(self, item: Normalized) -> None:
        if isinstance(item, AudioDelta):
            self.audio.add(item.response_id, item.delta)
        elif isinstance(item, AudioDone):
            await self.audio.done(item.response_id)
        elif isinstance(item, UserTranscriptCompleted):
            await self._on_turn(EntryRole.USER, item)
        elif isinstance(item, AssistantResponseCompleted):
            await self._on_turn(EntryRole.AGENT, item)
            guard = check_output(item.text)
            if not guard.allowed:
                await self.dispatch(GuardrailTripped(guardrail=guard.guardrail, message=guard.reason))
        elif isinstance(item, ToolInvoked):
            await self._on_tool_invoked(item)
        elif isinstance(item, EngineError):
            self._system_entry(f"Engine error: {item.message}", {"event": "error", "code": item.code})
            await self._publish(item)
            await realtime.session_error(self.session_id, item.message)
        elif isinstance(item, GuardrailTripped):
            self._system_entry(
                f"Guardrail tripped: {item.guardrail}",
                {"event": "guardrail_tripped", "guardrail": item.guardrail},
            )
            await self._publish(item)
        elif isinstance(item, ConnectionStateChanged):
            await self._publish(item)
            if item.is_disconnect and not self.ended:
                await self.end("connection_closed")
        else:
            await self._publish(item)

    async def _on_turn(self, role: EntryRole, event) -> None:
        try:
            self.sessions.add_conversation_item(
                self.session_id, role, event.text, {"item_id": event.item_id}
            )
        except SessionNotFound:
            logger.warning("Turn for missing session %s not recorded", self.session_id)
            await self._publish(event)
            return

        turn_patch = extract(event.text, role="user" if role is EntryRole.USER else "assistant")
        if turn_patch:
            self.extracted = merge_patches(self.extracted, turn_patch)
            mentioned = (self.extracted.get("vehicle_info") or {}).get("mentioned_vehicles")
            if mentioned and "vehicle_info" in turn_patch:
                turn_patch["vehicle_info"]["mentioned_vehicles"] = mentioned
            self._apply_patch(turn_patch)

        await self._publish(event)
        if turn_patch:
            await self._data_updated()

    def _apply_patch(self, patch: dict) -> None:
        try:
            self.sessions.update_session_data(self.session_id, patch)
        except InvalidPatch as e:
            logger.info("Extracted patch rejected (session=%s): %s", self.session_id, e)
        except SessionNotFound:
            logger.warning("Extracted patch for missing session %s dropped", self.session_id)

    async def _on_tool_invoked(self, event: ToolInvoked) -> None:
        self._system_entry(
            f"Tool invoked: {event.name}",
            {
                "event": "tool_invoked",
                "tool": event.name,
                "call_id": event.call_id,
                "arguments": event.arguments,
                "risk": get_tool_risk(event.name),
                "category": get_tool_category(event.name),
            },
        )
        await self._publish(event)
        await realtime.tool_invoked(self.session_id, event.name)

        output = await self.run_tool(event.name, event.arguments)

        self.normalizer.mark_seen(self.normalizer.result_key(event.call_id))
        await self.engine.send_tool_result(event.call_id, output)
        await self._publish(ToolResult(call_id=event.call_id, output=output, name=event.name))
        await self._data_updated()

    async def run_tool(self, name: str, arguments: dict) -> str:
        handler = get_tool_handler(name)
        if handler is None:
            logger.warning("Engine called unknown tool %s (session=%s)", name, self.session_id)
            return f'{{"success": false, "error": "Unknown tool: {name}"}}'
        risk = get_tool_risk(name)
        if risk != ToolRisk.READ.value:
            logger.info("Running %s tool %s (session=%s)", risk, name, self.session_id)
        try:
            return await handler(
                session_id=self.session_id,
                sessions=self.sessions,
                vehicles=self.vehicles,
                **filter_arguments(name, arguments),
            )
        except Exception as e:
            logger.exception("Tool %s failed (session=%s): %s", name, self.session_id, e)
            return '{"success": false, "error": "The tool failed. Please try again."}'

    async def _on_audio_segment(self, response_id: str, pcm: bytes) -> None:
        self.archiver.add_audio(self.session_id, pcm)
        event = AudioSegment(response_id=response_id, audio=pcm)
        self.archiver.log_event(self.session_id, event.kind, {"response_id": response_id, "bytes": len(pcm)})
        await self._forward({"type": event.client_type, "session_id": self.session_id, "data": event.to_dict()})

    # ── Client → engine ──────────────────────────────────────────────

    async def send_audio(self, pcm: bytes) -> None:
        if self.ended or not pcm:
            return
        await self.engine.send_audio(pcm)

    async def send_text(self, text: str) -> bool:
        if self.ended:
            return False
        guard = check_input(text, self.session_id)
        if not guard.allowed:
            await self.dispatch(GuardrailTripped(guardrail=guard.guardrail or "input", message=guard.reason or ""))
            return False
        await self.engine.send_text(text)
        return True

    # ── History snapshots ────────────────────────────────────────────

    def snapshot(self, event_type: str = "history_updated", force: bool = False) -> bool:
        session = self.sessions.peek_session(self.session_id)
        if session is None:
            return False
        history = session.history_dicts()
        if not force and len(history) == self._last_snapshot_len:
            return False
        if self.archiver.log_history_snapshot(self.session_id, history, event_type) is None:
            return False
        self._last_snapshot_len = len(history)
        return True

    async def _poll_history(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                self.snapshot()
            except Exception as e:
                logger.exception("History snapshot failed (session=%s): %s", self.session_id, e)

    # ── Outbound ─────────────────────────────────────────────────────

    def _system_entry(self, content: str, metadata: dict) -> None:
        try:
            self.sessions.add_conversation_item(self.session_id, EntryRole.SYSTEM, content, metadata)
        except SessionNotFound:
            pass

    async def _publish(self, event: DomainEvent) -> None:
        payload = event.to_dict()
        self.archiver.log_event(self.session_id, event.kind, payload)
        await self._forward({"type": event.client_type, "session_id": self.session_id, "data": payload})

    async def _data_updated(self) -> None:
        session = self.sessions.peek_session(self.session_id)
        if session is None:
            return
        data = session.data.model_dump(mode="json")
        await self._forward({"type": "data:updated", "session_id": self.session_id, "data": data})
        await realtime.data_updated(self.session_id, data["completion_status"])

    async def _forward(self, message: dict) -> None:
        if self._emit is None:
            return
        try:
            await self._emit(message)
        except Exception as e:
            logger.debug("Client emit failed (session=%s): %s", self.session_id, e)
