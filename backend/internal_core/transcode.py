from __future__ import annotations

"""
Video audio-track extraction through an external ffmpeg executable.

Design intent:
- Keep the subprocess behind a small capability interface so an in-process
  decoder can replace it without touching the live-session or adapter code.
- Produce canonical WAV (mono, 16-bit PCM, 16 kHz) in a single pass.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from .config import default_ffmpeg_executable
from .errors import TranscodeFailed

logger = logging.getLogger(__name__)

CANONICAL_SAMPLE_RATE = 16000


class AudioTrackExtractor(ABC):
    @abstractmethod
    async def extract_audio_track(self, video_path: Path, output_path: Path) -> Path: ...


def build_ffmpeg_command(executable: str, video_path: Path, output_path: Path) -> List[str]:
    return [
        executable,
        "-y",
        "-i",
        str(video_path),
        "-vn",
        "-acodec",
        "pcm_s16le",
        "-ar",
        str(CANONICAL_SAMPLE_RATE),
        "-ac",
        "1",
        str(output_path),
    ]


class FFmpegAudioTrackExtractor(AudioTrackExtractor):
    def __init__(self, executable: Optional[str] = None):
        self._executable = (executable or "").strip() or default_ffmpeg_executable()

    @property
    def executable(self) -> str:
        return self._executable

    async def extract_audio_track(self, video_path: Path, output_path: Path) -> Path:
        cmd = build_ffmpeg_command(self._executable, video_path, output_path)
        logger.info("Extracting audio track: %s", " ".join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TranscodeFailed(
                f"Could not start ffmpeg ({self._executable}): {exc}. "
                "Install ffmpeg and add it to PATH or set FFMPEG_PATH."
            ) from exc

        try:
            _, stderr_raw = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        stderr = (stderr_raw or b"").decode("utf-8", "ignore").strip()
        if proc.returncode != 0:
            logger.error("ffmpeg exited with code %s: %s", proc.returncode, stderr)
            raise TranscodeFailed(
                f"ffmpeg exited with code {proc.returncode}. Details: {stderr or 'unknown error'}",
                stderr=stderr,
                exit_code=proc.returncode,
            )
        return output_path
