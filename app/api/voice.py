"""
Voice WebSocket.

WS /v1/voice — one socket, at most one voice session at a time.

Client → server  {"type": ..., "data": {...}}
  session:start   {session_id?, user_id?, metadata?}
  audio:input     {audio: base64 PCM16}
  text:input      {text}
  session:status
  session:end

Server → client  {"type": ..., "session_id": ..., "data": {...}}
  connection:established, session:started, session:status, session:ended, error,
  data:updated, and every session event (user:transcript, agent:response,
  tool:invoked, tool:result, audio:output, connection:state,
  guardrail:tripped, session:error).
"""

import base64
import binascii
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ..core.dependencies import (
    EngineFactory,
    get_archiver_dep,
    get_engine_factory,
    get_sessions,
    get_vehicles,
)
from ..core.errors import ArchiveWriteFailure, CapacityExceeded, SessionNotFound
from ..models.session import SessionStatus, utcnow
from ..orchestrator.orchestrator import RealtimeEventOrchestrator
from ..services.conversation_archive import ConversationArchiver
from ..services.session_manager import SessionManager
from ..services.vehicle_collector import VehicleCollector

logger = logging.getLogger(__name__)

voice_router = APIRouter(tags=["voice"])


class VoiceConnection:
    """Binds one client socket to at most one orchestrator."""

    def __init__(
        self,
        websocket: WebSocket,
        sessions: SessionManager,
        archiver: ConversationArchiver,
        vehicles: VehicleCollector,
        engine_factory: EngineFactory,
    ):
        self.websocket = websocket
        self.sessions = sessions
        self.archiver = archiver
        self.vehicles = vehicles
        self.engine_factory = engine_factory
        self.connection_id = str(uuid.uuid4())
        self.orchestrator: Optional[RealtimeEventOrchestrator] = None
        self._open = True

    async def send(self, message: dict) -> None:
        if self._open:
            await self.websocket.send_json(message)

    async def error(self, message: str, code: Optional[str] = None) -> None:
        await self.send({
            "type": "error",
            "data": {"error": message, "code": code, "timestamp": utcnow().isoformat()},
        })

    @property
    def _live(self) -> bool:
        return self.orchestrator is not None and not self.orchestrator.ended

    # ── Commands ─────────────────────────────────────────────────────

    async def handle(self, message: dict) -> None:
        mtype = message.get("type")
        data = message.get("data") or message.get("payload") or {}
        if not isinstance(data, dict):
            data = {}

        if mtype == "session:start":
            await self.start(data)
        elif mtype == "audio:input":
            await self.audio_input(data)
        elif mtype == "text:input":
            await self.text_input(data)
        elif mtype == "session:status":
            await self.status()
        elif mtype == "session:end":
            await self.end()
        else:
            logger.warning("Unknown voice message type: %s", mtype)
            await self.error(f"Unknown message type: {mtype}", "unknown_type")

    async def start(self, data: dict) -> None:
        if self._live:
            await self.error("A session is already active on this connection.", "session_active")
            return

        try:
            if data.get("session_id"):
                session = self.sessions.require_session(data["session_id"])
            else:
                session = self.sessions.create_session(user_id=data.get("user_id"))
        except SessionNotFound as e:
            await self.error(str(e), "session_not_found")
            return
        except CapacityExceeded as e:
            await self.error(str(e), "capacity_exceeded")
            return

        metadata = {"connection_id": self.connection_id, **(data.get("metadata") or {})}
        orchestrator = RealtimeEventOrchestrator(
            session_id=session.id,
            engine=self.engine_factory(),
            sessions=self.sessions,
            archiver=self.archiver,
            vehicles=self.vehicles,
            emit=self.send,
        )
        try:
            await orchestrator.start(metadata)
        except Exception as e:
            logger.exception("Voice session %s failed to start: %s", session.id, e)
            self.sessions.complete_session(session.id, status=SessionStatus.ERROR)
            await self.error(f"Failed to start voice session: {e}", "engine_unavailable")
            return

        self.orchestrator = orchestrator
        await self.send({
            "type": "session:started",
            "session_id": session.id,
            "data": {
                "session_id": session.id,
                "status": "connected",
                "application": session.data.model_dump(mode="json"),
            },
        })

    async def audio_input(self, data: dict) -> None:
        if not self._live:
            await self.error("No active session found", "no_session")
            return
        try:
            pcm = base64.b64decode(data.get("audio") or "", validate=True)
        except (binascii.Error, ValueError):
            await self.error("audio must be base64 encoded PCM16", "bad_audio")
            return
        await self.orchestrator.send_audio(pcm)

    async def text_input(self, data: dict) -> None:
        if not self._live:
            await self.error("No active session found", "no_session")
            return
        await self.orchestrator.send_text(str(data.get("text") or ""))

    async def status(self) -> None:
        if self.orchestrator is None:
            await self.error("No active session found", "no_session")
            return
        session_id = self.orchestrator.session_id
        session = self.sessions.get_session(session_id)
        if session is None:
            await self.error("Session not found", "session_not_found")
            return
        await self.send({
            "type": "session:status",
            "session_id": session_id,
            "data": {
                "status": session.status.value,
                "application": session.data.model_dump(mode="json"),
                "completion_status": session.data.completion_status.model_dump(),
                "last_activity": session.last_activity.isoformat(),
                "archive": self.archiver.status(session_id).value,
            },
        })

    async def end(self, reason: str = "user_ended") -> None:
        if self.orchestrator is None:
            if reason == "user_ended":
                await self.error("No active session found", "no_session")
            return
        try:
            await self.orchestrator.end(reason)
        except ArchiveWriteFailure as e:
            logger.error("Session %s archive failed: %s", self.orchestrator.session_id, e)
            await self.error(str(e), "archive_write_failed")

    async def close(self) -> None:
        """Client went away: end the session and stop sending."""
        self._open = False
        await self.end("client_disconnected")


@voice_router.websocket("/voice")
async def voice(
    websocket: WebSocket,
    sessions: SessionManager = Depends(get_sessions),
    archiver: ConversationArchiver = Depends(get_archiver_dep),
    vehicles: VehicleCollector = Depends(get_vehicles),
    engine_factory: EngineFactory = Depends(get_engine_factory),
):
    await websocket.accept()
    conn = VoiceConnection(websocket, sessions, archiver, vehicles, engine_factory)
    logger.info("Voice connection %s opened", conn.connection_id)
    await conn.send({
        "type": "connection:established",
        "data": {"connection_id": conn.connection_id, "timestamp": utcnow().isoformat()},
    })

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await conn.error("Messages must be JSON objects", "bad_message")
                continue
            if not isinstance(message, dict):
                await conn.error("Messages must be JSON objects", "bad_message")
                continue
            try:
                await conn.handle(message)
            except WebSocketDisconnect:
                raise
            except Exception as e:
                logger.exception("Error handling %s: %s", message.get("type"), e)
                await conn.error(f"Error processing {message.get('type')}: {e}")
    except WebSocketDisconnect:
        logger.info("Voice connection %s closed by client", conn.connection_id)
    finally:
        await conn.close()
