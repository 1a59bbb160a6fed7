"""
Admin API. Operational views of live state.

GET /v1/admin/sessions — Live sessions
GET /v1/admin/archives — Conversations currently recording
"""

from fastapi import APIRouter, Depends

from ..core.dependencies import get_archiver_dep, get_sessions
from ..services.conversation_archive import ConversationArchiver
from ..services.session_manager import SessionManager

admin_router = APIRouter(prefix="/admin", tags=["admin"])


@admin_router.get("/sessions")
async def list_sessions(sessions: SessionManager = Depends(get_sessions)):
    live = sessions.list_sessions()
    return {
        "count": len(live),
        "max": sessions.max_sessions,
        "sessions": [
            {
                "id": s.id,
                "status": s.status.value,
                "created_at": s.created_at.isoformat(),
                "last_activity": s.last_activity.isoformat(),
                "expires_at": s.expires_at.isoformat(),
                "history_length": len(s.conversation_history),
                "completion": s.data.completion_status.model_dump(),
            }
            for s in live
        ],
    }


@admin_router.get("/archives")
async def list_archives(archiver: ConversationArchiver = Depends(get_archiver_dep)):
    active = archiver.active()
    return {"count": len(active), "archives": active}
