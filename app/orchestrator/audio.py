"""
Assistant audio reassembly.

The engine streams base64 PCM16 fragments per response. Fragments are
buffered per response id and released as one segment once the stream has been
quiet for the debounce window, or immediately on the response's done signal.
"""

import asyncio
import base64
import binascii
import io
import logging
import wave
from typing import Awaitable, Callable, Optional

from ..core.config import get_settings

logger = logging.getLogger(__name__)

SegmentHandler = Callable[[str, bytes], Awaitable[None]]


def decode_pcm16(fragment: str) -> Optional[bytes]:
    """Base64 → PCM16 bytes. None for anything that is not whole 16-bit samples."""
    if not isinstance(fragment, str) or not fragment:
        return None
    try:
        data = base64.b64decode(fragment, validate=True)
    except (binascii.Error, ValueError):
        return None
    if not data or len(data) % 2:
        return None
    return data


def encode_wav(pcm: bytes, sample_rate: Optional[int] = None, channels: int = 1) -> bytes:
    """Wrap raw PCM16 in a WAV container."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as w:
        w.setnchannels(channels)
        w.setsampwidth(2)
        w.setframerate(sample_rate or get_settings().audio_sample_rate)
        w.writeframes(pcm)
    return buf.getvalue()


class AudioAssembler:
    def __init__(self, on_segment: SegmentHandler, debounce_ms: Optional[int] = None):
        self._on_segment = on_segment
        ms = debounce_ms if debounce_ms is not None else get_settings().audio_debounce_ms
        self.debounce = ms / 1000
        self._buffers: dict[str, list[bytes]] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self.dropped = 0

    def add(self, response_id: str, fragment: str) -> bool:
        chunk = decode_pcm16(fragment)
        if chunk is None:
            self.dropped += 1
            logger.debug("Dropped undecodable audio fragment (response=%s)", response_id)
            return False

        self._buffers.setdefault(response_id, []).append(chunk)
        self._schedule(response_id)
        return True

    def pending(self, response_id: str) -> int:
        return sum(len(c) for c in self._buffers.get(response_id, []))

    def _schedule(self, response_id: str) -> None:
        timer = self._timers.pop(response_id, None)
        if timer is not None:
            timer.cancel()
        self._timers[response_id] = asyncio.create_task(self._flush_after_quiet(response_id))

    async def _flush_after_quiet(self, response_id: str) -> None:
        await asyncio.sleep(self.debounce)
        # Detach before emitting so done() cannot cancel a segment in flight
        self._timers.pop(response_id, None)
        await self._emit(response_id)

    async def done(self, response_id: str) -> None:
        timer = self._timers.pop(response_id, None)
        if timer is not None:
            timer.cancel()
        await self._emit(response_id)

    async def flush_all(self) -> None:
        for response_id in list(self._buffers):
            await self.done(response_id)

    def close(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._buffers.clear()

    async def _emit(self, response_id: str) -> None:
        chunks = self._buffers.pop(response_id, None)
        if not chunks:
            return
        try:
            await self._on_segment(response_id, b"".join(chunks))
        except Exception as e:
            logger.exception("Audio segment handler failed (response=%s): %s", response_id, e)
