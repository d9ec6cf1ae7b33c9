from __future__ import annotations

from typing import List, Optional, Sequence

from .base import RecognitionBackend, RecognizedUtterance, UtteranceCallback


class MockRecognitionBackend(RecognitionBackend):
    def __init__(self, utterances: Optional[Sequence[RecognizedUtterance]] = None) -> None:
        self._utterances: List[RecognizedUtterance] = list(
            utterances
            if utterances is not None
            else [RecognizedUtterance("Guest-1", 0.0, 1.0, "(mock) simulated transcript.")]
        )
        self.calls: List[str] = []

    async def recognize(self, wav_path: str, on_utterance: UtteranceCallback) -> None:
        self.calls.append(wav_path)
        for utterance in self._utterances:
            on_utterance(utterance)

    def name(self) -> str:
        return "mock"
