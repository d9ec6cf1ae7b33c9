from __future__ import annotations

"""
Format speaker-tagged segments into paragraph-style transcript lines.

Design intent:
- One line per uninterrupted speaker turn, for reading a batch transcript.
- Keep the raw per-utterance transcript as the fallback when nothing usable
  was diarized.
"""

from typing import Optional, Sequence

from backend.internal_core.contracts import Segment

_DEFAULT_SPEAKER = "Speaker"


def _speaker_label(segment: Segment) -> str:
    return (segment.speaker_tag or "").strip() or _DEFAULT_SPEAKER


def build_grouped_transcript(
    segments: Sequence[Segment],
    fallback_transcript: Optional[str] = "",
) -> str:
    fallback = (fallback_transcript or "").strip()
    ordered = sorted(
        (seg for seg in segments if seg.text.strip()),
        key=lambda seg: seg.start_offset,
    )
    if not ordered:
        return fallback

    lines: list[str] = []
    current_speaker: Optional[str] = None
    buffer: list[str] = []

    def _flush() -> None:
        if buffer and current_speaker:
            lines.append(f"{current_speaker}: {' '.join(buffer)}")
        buffer.clear()

    for segment in ordered:
        speaker = _speaker_label(segment)
        if current_speaker is None or speaker.lower() != current_speaker.lower():
            _flush()
            current_speaker = speaker
        buffer.append(segment.text.strip())

    _flush()
    return "\n".join(lines).strip() or fallback
