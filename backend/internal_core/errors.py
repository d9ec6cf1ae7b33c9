from __future__ import annotations

from typing import Optional


class TranscriptionError(RuntimeError):
    code = "TRANSCRIPTION_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnsupportedFormat(TranscriptionError):
    code = "UNSUPPORTED_FORMAT"


class TranscodeFailed(TranscriptionError):
    code = "TRANSCODE_FAILED"

    def __init__(self, message: str, *, stderr: str = "", exit_code: Optional[int] = None):
        super().__init__(message)
        self.stderr = stderr
        self.exit_code = exit_code


class RecognitionFailed(TranscriptionError):
    """Recognition service unreachable or returned a processing error."""

    code = "RECOGNITION_FAILED"

    def __init__(self, message: str, *, reason: str = "error", provider_name: str = ""):
        super().__init__(message)
        self.reason = reason
        self.provider_name = provider_name


class TranscriptionCancelled(TranscriptionError):
    code = "CANCELLED"
