from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import UnsupportedFormat

NormalizationPath = Literal["wav", "mp3", "video"]
LiveStatus = Literal["started", "recording", "stopping", "stopped", "error"]

_WAV_CONTENT_TYPES = {"audio/wav", "audio/x-wav", "audio/wave", "audio/vnd.wave"}
_MP3_CONTENT_TYPES = {"audio/mpeg", "audio/mp3"}
_VIDEO_EXTENSIONS = {".mp4", ".mov", ".mkv", ".avi", ".webm", ".m4v", ".wmv", ".mpeg", ".mpg"}


class Segment(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    speaker_tag: str
    start_offset: float = Field(ge=0.0)
    end_offset: float = Field(ge=0.0)
    text: str

    @field_validator("text")
    @classmethod
    def _validate_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Segment.text must not be empty")
        return value

    @model_validator(mode="after")
    def _validate_window(self) -> "Segment":
        if self.end_offset < self.start_offset:
            raise ValueError("Segment.end_offset must be >= Segment.start_offset")
        return self


class TranscriptionResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    transcript: str = ""
    segments: List[Segment] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_order(self) -> "TranscriptionResult":
        starts = [seg.start_offset for seg in self.segments]
        if starts != sorted(starts):
            raise ValueError("TranscriptionResult.segments must be sorted by start_offset")
        return self

    @classmethod
    def empty(cls) -> "TranscriptionResult":
        return cls(transcript="", segments=[])

    def update_payload(self) -> Dict[str, Any]:
        return {
            "transcript": self.transcript,
            "segments": [seg.model_dump() for seg in self.segments],
        }


class AudioSourceDescriptor(BaseModel):
    """Input metadata used only to pick a normalization path."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    content_type: str = ""
    extension: str = ""

    @classmethod
    def from_path(cls, path: Path, content_type: str | None = None) -> "AudioSourceDescriptor":
        return cls(
            content_type=(content_type or "").split(";", 1)[0].strip().lower(),
            extension=Path(path).suffix.lower(),
        )

    def normalization_path(self) -> NormalizationPath:
        ct = self.content_type
        if ct in _WAV_CONTENT_TYPES:
            return "wav"
        if ct in _MP3_CONTENT_TYPES:
            return "mp3"
        if ct.startswith("video/"):
            return "video"
        if self.extension == ".wav":
            return "wav"
        if self.extension == ".mp3":
            return "mp3"
        if self.extension in _VIDEO_EXTENSIONS:
            return "video"
        raise UnsupportedFormat(f"Unsupported audio format: {ct or self.extension or 'unknown'}")
