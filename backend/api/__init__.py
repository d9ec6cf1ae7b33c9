"""
API orchestration boundary for the transcription backend.

Design intent:
- Expose thin endpoints for live and uploaded transcription.
- Keep request validation explicit and failure modes predictable.
"""
