"""
Remote conversational engine adapter.

RealtimeEngine is the narrow interface the orchestrator depends on.
OpenAIRealtimeEngine implements it over the OpenAI Realtime API (websocket).
Raw server events are yielded as plain dicts; connection changes are
yielded as synthetic {"type": "connection.state", ...} events.
"""

import base64
import logging
from typing import AsyncIterator, Optional, Protocol

from openai import AsyncOpenAI

from ..core.config import get_settings

logger = logging.getLogger(__name__)


class RealtimeEngine(Protocol):
    async def connect(self) -> None: ...
    async def disconnect(self) -> None: ...
    async def send_audio(self, pcm: bytes) -> None: ...
    async def send_text(self, text: str) -> None: ...
    async def send_tool_result(self, call_id: str, output: str) -> None: ...
    def events(self) -> AsyncIterator[dict]: ...


class OpenAIRealtimeEngine:
    def __init__(self, session_config: dict, model: Optional[str] = None, api_key: Optional[str] = None):
        settings = get_settings()
        self.session_config = session_config
        self.model = model or settings.realtime_model
        self._api_key = api_key or settings.openai_api_key
        self._client: Optional[AsyncOpenAI] = None
        self._manager = None
        self._conn = None

    async def connect(self) -> None:
        if not self._api_key:
            raise RuntimeError("OPENAI_API_KEY is not configured")
        self._client = AsyncOpenAI(api_key=self._api_key)
        self._manager = self._client.beta.realtime.connect(model=self.model)
        try:
            self._conn = await self._manager.enter()
            await self._conn.session.update(session=self.session_config)
        except Exception:
            self._manager = None
            try:
                await self.disconnect()
            except Exception as e:
                logger.warning("Realtime engine cleanup after failed connect: %s", e)
            raise
        logger.info("Realtime engine connected (model=%s)", self.model)

    async def disconnect(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            await conn.close()
        if self._client is not None:
            await self._client.close()
            self._client = None
        logger.info("Realtime engine disconnected")

    async def send_audio(self, pcm: bytes) -> None:
        if self._conn is None:
            return
        await self._conn.input_audio_buffer.append(audio=base64.b64encode(pcm).decode("ascii"))

    async def send_text(self, text: str) -> None:
        if self._conn is None:
            return
        await self._conn.conversation.item.create(item={
            "type": "message",
            "role": "user",
            "content": [{"type": "input_text", "text": text}],
        })
        await self._conn.response.create()

    async def send_tool_result(self, call_id: str, output: str) -> None:
        if self._conn is None:
            return
        await self._conn.conversation.item.create(item={
            "type": "function_call_output",
            "call_id": call_id,
            "output": output,
        })
        await self._conn.response.create()

    async def events(self) -> AsyncIterator[dict]:
        conn = self._conn
        if conn is None:
            return
        yield {"type": "connection.state", "state": "connected"}

        reason = "closed"
        try:
            async for event in conn:
                yield event.model_dump(exclude_none=True)
        except Exception as e:
            # websocket closed underneath us
            reason = str(e) or e.__class__.__name__
            logger.warning("Realtime engine stream ended: %s", reason)
        yield {"type": "connection.state", "state": "disconnected", "reason": reason}
