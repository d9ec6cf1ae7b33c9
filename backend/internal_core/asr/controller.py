from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from backend.asr.formatting import build_grouped_transcript

from ..audio_utils import AudioNormalizer
from ..contracts import Segment, TranscriptionResult
from ..temp_files import TempFileScope
from .base import RecognitionBackend, RecognizedUtterance

logger = logging.getLogger(__name__)


class SpeechTranscriber:
    """Run canonical WAV files through a recognition backend and shape the result."""

    def __init__(
        self,
        backend: RecognitionBackend,
        normalizer: Optional[AudioNormalizer] = None,
        *,
        tmp_dir: Optional[Path] = None,
    ) -> None:
        self._backend = backend
        self._normalizer = normalizer or AudioNormalizer()
        self._tmp_dir = tmp_dir

    @property
    def backend(self) -> RecognitionBackend:
        return self._backend

    async def transcribe(self, wav_path: Path | str) -> TranscriptionResult:
        lines: List[str] = []
        segments: List[Segment] = []

        def _collect(utterance: RecognizedUtterance) -> None:
            text = utterance.text.strip()
            if not text:
                return
            lines.append(text)
            segments.append(
                Segment(
                    speaker_tag=utterance.speaker_id.strip() or "Speaker",
                    start_offset=utterance.offset_sec,
                    end_offset=utterance.offset_sec + max(0.0, utterance.duration_sec),
                    text=text,
                )
            )

        logger.debug("Transcribing WAV %s with %s", wav_path, self._backend.name())
        await self._backend.recognize(str(wav_path), _collect)

        result = TranscriptionResult(
            transcript="\n".join(lines).strip(),
            segments=sorted(segments, key=lambda seg: seg.start_offset),
        )
        logger.info(
            "Transcription finished: %d segments, %d chars",
            len(result.segments),
            len(result.transcript),
        )
        return result

    async def transcribe_audio(self, path: Path | str, content_type: Optional[str]) -> TranscriptionResult:
        return await self._transcribe_file(path, content_type, mode="stream")

    async def transcribe_batch(self, path: Path | str, content_type: Optional[str]) -> TranscriptionResult:
        return await self._transcribe_file(path, content_type, mode="batch")

    async def transcribe_video(self, path: Path | str, content_type: Optional[str]) -> TranscriptionResult:
        return await self._transcribe_file(path, content_type, mode="video")

    async def _transcribe_file(self, path: Path | str, content_type: Optional[str], *, mode: str) -> TranscriptionResult:
        logger.debug("Audio transcription mode: %s", mode)
        try:
            with TempFileScope(self._tmp_dir, prefix=f"scribe-{mode}") as scope:
                wav_path = await self._normalizer.normalize(path, content_type, scope)
                result = await self.transcribe(wav_path)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Transcription failed (%s) for %s", mode, path)
            raise

        if mode == "batch":
            return TranscriptionResult(
                transcript=build_grouped_transcript(result.segments, result.transcript),
                segments=result.segments,
            )
        return result
