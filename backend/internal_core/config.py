from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def default_ffmpeg_executable() -> str:
    return "ffmpeg.exe" if os.name == "nt" else "ffmpeg"


@dataclass(frozen=True)
class TranscriptionConfig:
    SCRIBE_ASR_PROVIDER: str
    AZURE_SPEECH_KEY: str
    AZURE_SPEECH_REGION: str
    AZURE_SPEECH_ENDPOINT: str
    AZURE_SPEECH_LANGUAGE: str
    AZURE_SPEECH_MAX_SPEAKERS: int
    FFMPEG_PATH: str
    SCRIBE_TMP_DIR: str
    SCRIBE_LIVE_UPDATE_INTERVAL_SEC: float
    SCRIBE_MAX_UPLOAD_BYTES: int
    SCRIBE_LOG_LEVEL: str

    def tmp_dir_path(self) -> Path:
        path = Path(self.SCRIBE_TMP_DIR).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path


def load_config() -> TranscriptionConfig:
    ffmpeg_path = _getenv_str("FFMPEG_PATH", "").strip() or default_ffmpeg_executable()
    return TranscriptionConfig(
        SCRIBE_ASR_PROVIDER=_getenv_str("SCRIBE_ASR_PROVIDER", "azure").strip().lower(),
        AZURE_SPEECH_KEY=_getenv_str("AZURE_SPEECH_KEY", ""),
        AZURE_SPEECH_REGION=_getenv_str("AZURE_SPEECH_REGION", ""),
        AZURE_SPEECH_ENDPOINT=_getenv_str("AZURE_SPEECH_ENDPOINT", "").strip(),
        AZURE_SPEECH_LANGUAGE=_getenv_str("AZURE_SPEECH_LANGUAGE", "pl-PL").strip() or "pl-PL",
        AZURE_SPEECH_MAX_SPEAKERS=_getenv_int("AZURE_SPEECH_MAX_SPEAKERS", 3),
        FFMPEG_PATH=ffmpeg_path,
        SCRIBE_TMP_DIR=_getenv_str("SCRIBE_TMP_DIR", "").strip() or tempfile.gettempdir(),
        SCRIBE_LIVE_UPDATE_INTERVAL_SEC=_getenv_float("SCRIBE_LIVE_UPDATE_INTERVAL_SEC", 4.0),
        SCRIBE_MAX_UPLOAD_BYTES=_getenv_int("SCRIBE_MAX_UPLOAD_BYTES", 200 * 1024 * 1024),
        SCRIBE_LOG_LEVEL=_getenv_str("SCRIBE_LOG_LEVEL", "INFO"),
    )
