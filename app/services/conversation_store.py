"""
Read side of the conversation archive. Backs the /conversations API.
"""

import json
import logging
from functools import lru_cache
from typing import Optional

from ..core.errors import ConversationNotFound
from ..core.storage import StorageBackend, get_storage

logger = logging.getLogger(__name__)


class ConversationStore:
    def __init__(self, storage: Optional[StorageBackend] = None):
        self.storage = storage if storage is not None else get_storage()

    async def _load(self, key: str) -> Optional[dict]:
        raw = await self.storage.read(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Unreadable archive object: %s", key)
            return None

    async def _find(self, conversation_id: str, suffix: str) -> dict:
        keys = await self.storage.list_keys(f"/{conversation_id}_{suffix}")
        if not keys:
            raise ConversationNotFound(conversation_id)
        data = await self._load(keys[0])
        if data is None:
            raise ConversationNotFound(conversation_id)
        return data

    async def list_conversations(self, limit: Optional[int] = None) -> list[dict]:
        """Summaries of every archived conversation, newest first."""
        summaries = []
        for key in await self.storage.list_keys("_summary.json"):
            data = await self._load(key)
            if data is None:
                continue
            summaries.append({
                "conversation_id": data.get("conversation_id"),
                "session_id": data.get("session_id"),
                "start_time": data.get("start_time"),
                "end_time": data.get("end_time"),
                "duration": data.get("duration"),
                "statistics": data.get("statistics", {}),
                "end_reason": (data.get("metadata") or {}).get("end_reason"),
            })

        summaries.sort(key=lambda s: s.get("start_time") or "", reverse=True)
        return summaries[:limit] if limit else summaries

    async def get_conversation(self, conversation_id: str) -> dict:
        return await self._find(conversation_id, "conversation.json")

    async def get_summary(self, conversation_id: str) -> dict:
        return await self._find(conversation_id, "summary.json")

    async def get_extracted_data(self, conversation_id: str) -> dict:
        return await self._find(conversation_id, "extracted_data.json")


@lru_cache
def get_conversation_store() -> ConversationStore:
    return ConversationStore()
