from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from ..errors import RecognitionFailed


@dataclass(frozen=True)
class RecognizedUtterance:
    speaker_id: str
    offset_sec: float
    duration_sec: float
    text: str


UtteranceCallback = Callable[[RecognizedUtterance], None]


class RecognitionBackend(ABC):
    """
    Diarization-capable recognizer over a canonical WAV file.

    `recognize` reports each utterance through `on_utterance` as it arrives and
    returns once the service signals a normal end of stream. Any other
    terminal condition raises RecognitionFailed.
    """

    @abstractmethod
    async def recognize(self, wav_path: str, on_utterance: UtteranceCallback) -> None: ...

    @abstractmethod
    def name(self) -> str: ...


__all__ = ["RecognitionBackend", "RecognitionFailed", "RecognizedUtterance", "UtteranceCallback"]
