"""
Session transcription backend package.

Design intent:
- Turn session audio (live capture, uploaded audio, uploaded video) into a
  speaker-tagged transcript.
- Keep the pipeline modules (internal_core, asr) independent from the API layer.
"""
