"""
ASR module boundary for the transcription backend.

Design intent:
- Live session orchestration and transcript formatting sit above the
  recognition backends in internal_core.
- Keep provider-specific complexity out of API handlers.
"""
