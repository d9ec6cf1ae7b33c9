from __future__ import annotations

"""
Live session transcription over a growing raw PCM buffer.

Design intent:
- Ingestion never waits on recognition: appends only write + flush, and a
  throttled background pass re-transcribes the whole buffer at most once per
  update interval.
- Passes are serialized by one lock per session. Background triggers skip when
  the lock is held; the final pass waits for it, so its result is authoritative.
- Background failures are reported to the listener and never end the session.
"""

import asyncio
import contextlib
import enum
import logging
import os
import tempfile
import time
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from backend.internal_core.audio_utils import CANONICAL_SAMPWIDTH, pcm_to_wav
from backend.internal_core.asr.controller import SpeechTranscriber
from backend.internal_core.contracts import TranscriptionResult
from backend.internal_core.errors import TranscriptionCancelled
from backend.internal_core.temp_files import TempFileScope, safe_unlink

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_INTERVAL_SEC = 4.0

Listener = Callable[[str, Dict[str, Any]], Awaitable[None]]


class CancelSignal(Protocol):
    def is_set(self) -> bool: ...


class LiveSessionState(str, enum.Enum):
    CREATED = "created"
    BUFFERING = "buffering"
    TRANSCRIBING = "transcribing"
    COMPLETING = "completing"
    FINISHED = "finished"


def _is_cancelled(cancel_event: Optional[CancelSignal]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


class LiveTranscriptionSession:
    def __init__(
        self,
        session_id: str,
        transcriber: SpeechTranscriber,
        listener: Listener,
        *,
        tmp_dir: Optional[Path] = None,
        update_interval_sec: float = DEFAULT_UPDATE_INTERVAL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_id = session_id
        self._transcriber = transcriber
        self._listener = listener
        self._tmp_dir = Path(tmp_dir) if tmp_dir is not None else None
        self._update_interval_sec = float(update_interval_sec)
        self._clock = clock

        raw_dir = self._tmp_dir or Path(tempfile.gettempdir())
        raw_dir.mkdir(parents=True, exist_ok=True)
        self._raw_path = raw_dir / f"scribe-live-{uuid.uuid4().hex}.pcm"
        self._raw = open(self._raw_path, "ab")

        self._pass_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._background: Optional[asyncio.Task[None]] = None
        self._last_attempt: Optional[float] = None
        self._latest: Optional[TranscriptionResult] = None
        self._bytes_received = 0
        self._passes_started = 0
        self._state = LiveSessionState.CREATED
        self._disposed = False

    @property
    def state(self) -> LiveSessionState:
        return self._state

    @property
    def raw_path(self) -> Path:
        return self._raw_path

    @property
    def bytes_received(self) -> int:
        return self._bytes_received

    @property
    def passes_started(self) -> int:
        return self._passes_started

    @property
    def latest_result(self) -> Optional[TranscriptionResult]:
        return self._latest

    @property
    def background_task(self) -> Optional[asyncio.Task[None]]:
        return self._background

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def start(self) -> None:
        await self._listener("status", {"status": "started"})
        self._state = LiveSessionState.BUFFERING

    async def append_audio(self, data: bytes, cancel_event: Optional[CancelSignal] = None) -> None:
        if _is_cancelled(cancel_event):
            logger.debug("Dropped audio chunk for session %s: cancellation requested", self.session_id)
            return
        if self._disposed or self._state in (LiveSessionState.COMPLETING, LiveSessionState.FINISHED):
            logger.debug("Dropped audio chunk for session %s: state=%s", self.session_id, self._state.value)
            return
        if not data:
            return

        async with self._write_lock:
            if self._disposed:
                return
            await asyncio.to_thread(self._write_chunk, data)
        first_chunk = self._bytes_received == 0
        self._bytes_received += len(data)
        logger.debug("Appended %d audio bytes for session %s", len(data), self.session_id)

        if first_chunk:
            await self._listener("status", {"status": "recording"})

        if self._disposed:
            return
        if self._interval_elapsed() and not self._pass_lock.locked():
            # Lock is free, so this acquire completes without yielding.
            await self._pass_lock.acquire()
            self._background = asyncio.create_task(
                self._run_background_pass(),
                name=f"live-transcription-{self.session_id}",
            )
            # Released on completion, including cancellation before the first step.
            self._background.add_done_callback(lambda _task: self._pass_lock.release())

    async def complete(self, cancel_event: Optional[CancelSignal] = None) -> TranscriptionResult:
        if _is_cancelled(cancel_event):
            raise TranscriptionCancelled(f"Completion of live session {self.session_id} was cancelled.")
        if self._disposed:
            raise RuntimeError(f"Live session {self.session_id} is already disposed.")

        self._state = LiveSessionState.COMPLETING
        try:
            await self._listener("status", {"status": "stopping"})
            logger.debug("Forcing final transcription for session %s", self.session_id)
            async with self._pass_lock:
                if _is_cancelled(cancel_event):
                    raise TranscriptionCancelled(f"Completion of live session {self.session_id} was cancelled.")
                await self._transcribe_buffer(force=True)
        finally:
            self._state = LiveSessionState.FINISHED
        return self._latest or TranscriptionResult.empty()

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True

        task = self._background
        if task is not None and not task.done():
            logger.debug("Cancelling in-flight transcription for session %s", self.session_id)
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        async with self._write_lock:
            self._raw.close()
        safe_unlink(self._raw_path)
        self._state = LiveSessionState.FINISHED
        logger.debug("Disposed live session %s", self.session_id)

    async def __aenter__(self) -> "LiveTranscriptionSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()

    def _write_chunk(self, data: bytes) -> None:
        self._raw.write(data)
        self._raw.flush()
        os.fsync(self._raw.fileno())

    def _interval_elapsed(self) -> bool:
        if self._last_attempt is None:
            return True
        return self._clock() - self._last_attempt >= self._update_interval_sec

    async def _run_background_pass(self) -> None:
        try:
            await self._transcribe_buffer(force=False)
        except asyncio.CancelledError:
            logger.debug("Background transcription cancelled for session %s", self.session_id)
            raise
        except Exception as exc:
            logger.exception("Live transcription update failed for session %s", self.session_id)
            try:
                await self._listener("status", {"status": "error", "message": str(exc)})
            except Exception:
                logger.warning("Could not deliver error status for session %s", self.session_id)

    async def _transcribe_buffer(self, *, force: bool) -> None:
        if not force and not self._interval_elapsed():
            logger.debug("Update interval not elapsed for session %s, skipping", self.session_id)
            return

        if self._state is LiveSessionState.BUFFERING:
            self._state = LiveSessionState.TRANSCRIBING
        self._passes_started += 1
        try:
            size = self._raw_path.stat().st_size
            size -= size % CANONICAL_SAMPWIDTH
            logger.debug("Raw PCM buffer for session %s: %d bytes", self.session_id, size)
            if size == 0:
                self._latest = TranscriptionResult.empty()
                return

            with TempFileScope(self._tmp_dir, prefix="scribe-live") as scope:
                wav_path = scope.new_path(".wav")
                await asyncio.to_thread(pcm_to_wav, self._raw_path, wav_path, size)
                result = await self._transcriber.transcribe(wav_path)

            self._latest = result
            logger.info(
                "Live transcription for session %s: %d segments, %d chars",
                self.session_id,
                len(result.segments),
                len(result.transcript),
            )
            await self._listener("update", result.update_payload())
        finally:
            self._last_attempt = self._clock()
            if self._state is LiveSessionState.TRANSCRIBING:
                self._state = LiveSessionState.BUFFERING
