from __future__ import annotations

from ..config import TranscriptionConfig
from .azure_speech import AzureSpeechBackend, clamp_max_speakers, normalize_endpoint
from .base import RecognitionBackend, RecognitionFailed, RecognizedUtterance
from .controller import SpeechTranscriber
from .mock import MockRecognitionBackend


def build_backend(cfg: TranscriptionConfig) -> RecognitionBackend:
    if cfg.SCRIBE_ASR_PROVIDER == "mock":
        return MockRecognitionBackend()
    if cfg.SCRIBE_ASR_PROVIDER == "azure":
        return AzureSpeechBackend.from_config(cfg)
    raise ValueError(f"Unknown SCRIBE_ASR_PROVIDER: {cfg.SCRIBE_ASR_PROVIDER!r}. Valid options: azure, mock")


__all__ = [
    "AzureSpeechBackend",
    "MockRecognitionBackend",
    "RecognitionBackend",
    "RecognitionFailed",
    "RecognizedUtterance",
    "SpeechTranscriber",
    "build_backend",
    "clamp_max_speakers",
    "normalize_endpoint",
]
