"""
Sessions API.

POST   /v1/sessions                              — Create a session
GET    /v1/sessions/{session_id}                 — Session with application data
PATCH  /v1/sessions/{session_id}                 — Merge a partial application
DELETE /v1/sessions/{session_id}                 — Delete a session
GET    /v1/sessions/{session_id}/history         — Conversation history
POST   /v1/sessions/{session_id}/extend          — Push out the expiry
POST   /v1/sessions/{session_id}/vehicles/{n}/{step} — Stepwise vehicle collection
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from ..core.dependencies import get_sessions, get_vehicles
from ..core.errors import CapacityExceeded, InvalidPatch, SessionNotFound
from ..services.completion import missing_fields
from ..services.session_manager import SessionManager
from ..services.vehicle_collector import STEPS, VehicleCollector

logger = logging.getLogger(__name__)

sessions_router = APIRouter(prefix="/sessions", tags=["sessions"])


class CreateSessionRequest(BaseModel):
    user_id: Optional[str] = None


class ExtendRequest(BaseModel):
    additional_ms: Optional[int] = None


class VehicleStepRequest(BaseModel):
    value: Any


def _not_found(e: SessionNotFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@sessions_router.post("", status_code=status.HTTP_201_CREATED)
async def create_session(
    request: Optional[CreateSessionRequest] = None,
    sessions: SessionManager = Depends(get_sessions),
):
    """Create a session with an empty application."""
    try:
        session = sessions.create_session(user_id=request.user_id if request else None)
    except CapacityExceeded as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return session.to_dict(include_history=False)


@sessions_router.get("/{session_id}")
async def get_session(session_id: str, sessions: SessionManager = Depends(get_sessions)):
    session = sessions.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found or expired")
    out = session.to_dict(include_history=False)
    out["missing_fields"] = missing_fields(session.data)
    return out


@sessions_router.patch("/{session_id}")
async def update_session(
    session_id: str,
    patch: dict,
    sessions: SessionManager = Depends(get_sessions),
):
    """Deep-merge a partial application. Empty values never overwrite."""
    try:
        session = sessions.update_session_data(session_id, patch)
    except SessionNotFound as e:
        raise _not_found(e)
    except InvalidPatch as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return session.to_dict(include_history=False)


@sessions_router.delete("/{session_id}")
async def delete_session(session_id: str, sessions: SessionManager = Depends(get_sessions)):
    return {"deleted": sessions.delete_session(session_id)}


@sessions_router.get("/{session_id}/history")
async def get_history(session_id: str, sessions: SessionManager = Depends(get_sessions)):
    try:
        session = sessions.require_session(session_id)
    except SessionNotFound as e:
        raise _not_found(e)
    return {"session_id": session_id, "history": session.history_dicts()}


@sessions_router.post("/{session_id}/extend")
async def extend_session(
    session_id: str,
    request: Optional[ExtendRequest] = None,
    sessions: SessionManager = Depends(get_sessions),
):
    try:
        session = sessions.extend_session(session_id, request.additional_ms if request else None)
    except SessionNotFound as e:
        raise _not_found(e)
    return {"session_id": session_id, "expires_at": session.expires_at.isoformat()}


@sessions_router.post("/{session_id}/vehicles/{vehicle_number}/{step}")
async def collect_vehicle_step(
    session_id: str,
    vehicle_number: int,
    step: str,
    request: VehicleStepRequest,
    vehicles: VehicleCollector = Depends(get_vehicles),
):
    """Validate one step (year, make, model, trim) for vehicle slot 1 or 2."""
    if step not in STEPS:
        raise HTTPException(status_code=404, detail=f"Unknown step. Use one of: {', '.join(STEPS)}")
    try:
        result = await vehicles.collect(session_id, vehicle_number, step, request.value)
    except SessionNotFound as e:
        raise _not_found(e)
    return result.to_dict()
