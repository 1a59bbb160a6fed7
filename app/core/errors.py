"""
Domain errors. API routers map these to HTTP status codes.
"""

from typing import Optional


class VoiceIntakeError(Exception):
    """Base class for every error raised by the intake pipeline."""


class SessionNotFound(VoiceIntakeError):
    def __init__(self, session_id: str):
        super().__init__(f"Session not found or expired: {session_id}")
        self.session_id = session_id


class CapacityExceeded(VoiceIntakeError):
    def __init__(self, limit: int):
        super().__init__(f"Maximum concurrent sessions reached ({limit})")
        self.limit = limit


class InvalidPatch(VoiceIntakeError):
    """An application patch failed schema validation. Nothing was merged."""


class ConversationNotFound(VoiceIntakeError):
    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class ArchiveWriteFailure(VoiceIntakeError):
    def __init__(self, session_id: str, cause: Optional[Exception] = None):
        super().__init__(f"Failed to persist conversation for session {session_id}: {cause}")
        self.session_id = session_id
        self.cause = cause


class CatalogUnavailable(VoiceIntakeError):
    """Vehicle/zip reference lookup could not be reached."""


class UpstreamMalformedEvent(VoiceIntakeError):
    """Raw engine event that cannot be normalized. Logged and dropped."""

    def __init__(self, reason: str, raw: Optional[dict] = None):
        super().__init__(reason)
        self.raw = raw or {}
