from __future__ import annotations

"""
Azure Speech conversation-transcription backend.

Design intent:
- Bridge the SDK's event callbacks (fired on SDK threads) into one asyncio
  future that resolves on end-of-stream and rejects on a real error.
- Keep configuration mapping and cancellation classification in pure
  functions so they can be checked without network access.
"""

import asyncio
import logging
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

from ..config import TranscriptionConfig
from .base import RecognitionBackend, RecognitionFailed, RecognizedUtterance, UtteranceCallback

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "pl-PL"
MIN_SPEAKERS = 2
MAX_SPEAKERS = 10
_CONVERSATION_PATH = "speech/recognition/conversation/cognitiveservices/v1"
_TICKS_PER_SECOND = 10_000_000


def clamp_max_speakers(value: int) -> int:
    return max(MIN_SPEAKERS, min(MAX_SPEAKERS, int(value)))


def normalize_endpoint(endpoint: str) -> str:
    """Rewrite an http(s) Speech endpoint into the conversation-transcription wss URL."""
    parts = urlsplit(endpoint.strip())
    scheme = parts.scheme.lower()
    if not parts.netloc:
        raise ValueError(f"Invalid Azure Speech endpoint: {endpoint}")
    if scheme in {"ws", "wss"}:
        return endpoint.strip()
    if scheme not in {"http", "https"}:
        raise ValueError(f"Unsupported Azure Speech endpoint scheme: {endpoint}")

    path = parts.path.strip("/")
    if not path or path.lower() == "speech":
        path = _CONVERSATION_PATH
    elif "conversation" not in path.lower():
        path = f"{path}/{_CONVERSATION_PATH}"
    return urlunsplit(("wss", parts.hostname or parts.netloc, f"/{path}", parts.query, ""))


def cancellation_error(reason: str, code: str, details: str) -> Optional[RecognitionFailed]:
    """
    Map a canceled notice to a failure, or None for a normal end of stream.

    `reason` / `code` are SDK enum member names (CancellationReason,
    CancellationErrorCode).
    """
    if code == "NoError" or reason == "EndOfStream":
        return None

    message = f"Azure Speech canceled transcription (code {code}): {details}"
    if code == "ConnectionFailure":
        return RecognitionFailed(
            message + " | Check the subscription key, region and network connectivity.",
            reason="connection_failure",
            provider_name="azure",
        )
    if code == "ServiceError":
        return RecognitionFailed(
            message + " | Azure Speech service error. Make sure a dedicated Speech resource is used.",
            reason="service_error",
            provider_name="azure",
        )
    return RecognitionFailed(message, reason="error", provider_name="azure")


def utterance_from_result(result: Any) -> Optional[RecognizedUtterance]:
    text = (getattr(result, "text", "") or "").strip()
    if not text:
        return None
    speaker = (getattr(result, "speaker_id", "") or "").strip() or "Speaker"
    offset_sec = float(getattr(result, "offset", 0) or 0) / _TICKS_PER_SECOND
    duration_sec = float(getattr(result, "duration", 0) or 0) / _TICKS_PER_SECOND
    return RecognizedUtterance(
        speaker_id=speaker,
        offset_sec=offset_sec,
        duration_sec=max(0.0, duration_sec),
        text=text,
    )


class AzureSpeechBackend(RecognitionBackend):
    def __init__(
        self,
        subscription_key: str,
        *,
        region: str = "",
        endpoint: str = "",
        language: str = DEFAULT_LANGUAGE,
        max_speakers: int = 3,
    ) -> None:
        self._subscription_key = subscription_key
        self._region = region
        self._endpoint = endpoint
        self.language = (language or "").strip() or DEFAULT_LANGUAGE
        self.max_speakers = clamp_max_speakers(max_speakers)

    @classmethod
    def from_config(cls, cfg: TranscriptionConfig) -> "AzureSpeechBackend":
        return cls(
            cfg.AZURE_SPEECH_KEY,
            region=cfg.AZURE_SPEECH_REGION,
            endpoint=cfg.AZURE_SPEECH_ENDPOINT,
            language=cfg.AZURE_SPEECH_LANGUAGE,
            max_speakers=cfg.AZURE_SPEECH_MAX_SPEAKERS,
        )

    def name(self) -> str:
        return "azure"

    def _speech_config(self):
        import azure.cognitiveservices.speech as speechsdk  # type: ignore

        if self._endpoint:
            endpoint = normalize_endpoint(self._endpoint)
            logger.info("Using custom Azure Speech endpoint: %s", endpoint)
            config = speechsdk.SpeechConfig(endpoint=endpoint, subscription=self._subscription_key)
        else:
            logger.info("Using Azure Speech region: %s", self._region)
            config = speechsdk.SpeechConfig(subscription=self._subscription_key, region=self._region)

        config.speech_recognition_language = self.language
        config.set_property_by_name("ConversationTranscription_DiarizationEnabled", "true")
        config.set_property_by_name("ConversationTranscription_MaxSpeakerCount", str(self.max_speakers))
        config.set_property(speechsdk.PropertyId.SpeechServiceResponse_OutputFormatOption, "detailed")
        config.set_property(speechsdk.PropertyId.SpeechServiceResponse_RequestWordLevelTimestamps, "true")
        logger.debug(
            "Azure Speech config ready: language=%s diarization=true max_speakers=%s",
            self.language,
            self.max_speakers,
        )
        return config

    async def recognize(self, wav_path: str, on_utterance: UtteranceCallback) -> None:
        import azure.cognitiveservices.speech as speechsdk  # type: ignore

        loop = asyncio.get_running_loop()
        done: asyncio.Future[None] = loop.create_future()

        def _resolve(error: Optional[Exception]) -> None:
            if done.done():
                return
            if error is None:
                done.set_result(None)
            else:
                done.set_exception(error)

        def _on_transcribed(evt: Any) -> None:
            if evt.result.reason != speechsdk.ResultReason.RecognizedSpeech:
                return
            utterance = utterance_from_result(evt.result)
            if utterance is not None:
                loop.call_soon_threadsafe(on_utterance, utterance)

        def _on_canceled(evt: Any) -> None:
            details = evt.cancellation_details
            reason = getattr(details.reason, "name", str(details.reason))
            code = getattr(details.code, "name", str(details.code))
            logger.warning(
                "Azure Speech canceled notice: reason=%s code=%s details=%s",
                reason,
                code,
                details.error_details,
            )
            loop.call_soon_threadsafe(_resolve, cancellation_error(reason, code, details.error_details or ""))

        def _on_session_stopped(evt: Any) -> None:
            logger.debug("Azure Speech session stopped: %s", evt.session_id)
            loop.call_soon_threadsafe(_resolve, None)

        audio_config = speechsdk.audio.AudioConfig(filename=str(wav_path))
        transcriber = speechsdk.transcription.ConversationTranscriber(
            speech_config=self._speech_config(),
            audio_config=audio_config,
        )
        transcriber.transcribed.connect(_on_transcribed)
        transcriber.canceled.connect(_on_canceled)
        transcriber.session_stopped.connect(_on_session_stopped)
        transcriber.session_started.connect(
            lambda evt: logger.debug("Azure Speech session started: %s", evt.session_id)
        )

        try:
            await asyncio.to_thread(lambda: transcriber.start_transcribing_async().get())
            await done
        finally:
            try:
                await asyncio.to_thread(lambda: transcriber.stop_transcribing_async().get())
            except Exception as exc:
                logger.warning("Stopping Azure Speech transcriber failed: %s", exc)
            transcriber.transcribed.disconnect_all()
            transcriber.canceled.disconnect_all()
            transcriber.session_stopped.disconnect_all()
            transcriber.session_started.disconnect_all()
