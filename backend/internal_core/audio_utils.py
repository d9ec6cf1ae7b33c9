from __future__ import annotations

import asyncio
import logging
import math
import wave
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
from scipy.signal import resample_poly

from .contracts import AudioSourceDescriptor
from .temp_files import TempFileScope
from .transcode import AudioTrackExtractor, FFmpegAudioTrackExtractor

logger = logging.getLogger(__name__)

CANONICAL_SAMPLE_RATE = 16000
CANONICAL_CHANNELS = 1
CANONICAL_SAMPWIDTH = 2
_COPY_BLOCK_BYTES = 1024 * 1024


def load_wav_info(path: Path) -> Tuple[float, int, int, int]:
    with wave.open(str(path), "rb") as wf:
        frames = wf.getnframes()
        rate = wf.getframerate()
        channels = wf.getnchannels()
        width = wf.getsampwidth()
        duration = frames / float(rate) if rate else 0.0
        return duration, rate, channels, width


def is_canonical_wav(path: Path) -> bool:
    try:
        _, rate, channels, width = load_wav_info(path)
    except (wave.Error, EOFError):
        # Float / extensible / truncated headers are not canonical by definition.
        return False
    return (
        rate == CANONICAL_SAMPLE_RATE
        and channels == CANONICAL_CHANNELS
        and width == CANONICAL_SAMPWIDTH
    )


def write_wav16k_mono_pcm16(path: Path, pcm_bytes: bytes) -> None:
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(CANONICAL_CHANNELS)
        wf.setsampwidth(CANONICAL_SAMPWIDTH)
        wf.setframerate(CANONICAL_SAMPLE_RATE)
        wf.writeframes(pcm_bytes)


def pcm_to_wav(raw_path: Path, wav_path: Path, max_bytes: Optional[int] = None) -> int:
    """
    Wrap a prefix of a raw canonical PCM buffer in a WAV container.

    Only whole 16-bit frames are copied. Returns the number of PCM bytes written.
    """
    size = raw_path.stat().st_size if max_bytes is None else int(max_bytes)
    size -= size % CANONICAL_SAMPWIDTH
    remaining = size
    with open(raw_path, "rb") as src, wave.open(str(wav_path), "wb") as wf:
        wf.setnchannels(CANONICAL_CHANNELS)
        wf.setsampwidth(CANONICAL_SAMPWIDTH)
        wf.setframerate(CANONICAL_SAMPLE_RATE)
        while remaining > 0:
            block = src.read(min(_COPY_BLOCK_BYTES, remaining))
            if not block:
                break
            wf.writeframesraw(block)
            remaining -= len(block)
    return size - remaining


def to_canonical_pcm16(audio: np.ndarray, sample_rate: int) -> bytes:
    """Down-mix (frames, channels) float audio to mono and resample to 16 kHz."""
    audio = np.asarray(audio, dtype=np.float32)
    if audio.ndim == 2:
        audio = audio.mean(axis=1) if audio.shape[1] > 1 else audio[:, 0]
    if sample_rate != CANONICAL_SAMPLE_RATE and audio.size:
        g = math.gcd(int(sample_rate), CANONICAL_SAMPLE_RATE)
        audio = resample_poly(audio, CANONICAL_SAMPLE_RATE // g, int(sample_rate) // g)
    audio = np.clip(audio, -1.0, 1.0)
    return (audio * 32767.0).round().astype("<i2").tobytes()


def decode_to_canonical_wav(input_path: Path, output_path: Path) -> Path:
    import miniaudio  # type: ignore

    try:
        info = miniaudio.get_file_info(str(input_path))
        decoded = miniaudio.decode_file(
            str(input_path),
            output_format=miniaudio.SampleFormat.FLOAT32,
            nchannels=info.nchannels,
            sample_rate=info.sample_rate,
        )
    except miniaudio.DecodeError as exc:
        raise ValueError(f"Audio decode failed for {input_path.name}: {exc}") from exc

    samples = np.frombuffer(decoded.samples, dtype=np.float32)
    channels = max(1, int(decoded.nchannels))
    frames = samples.reshape(-1, channels) if samples.size else samples.reshape(0, channels)
    write_wav16k_mono_pcm16(output_path, to_canonical_pcm16(frames, int(decoded.sample_rate)))
    return output_path


class AudioNormalizer:
    """
    Convert arbitrary session audio/video into canonical 16 kHz mono PCM WAV.

    Intermediate files are registered on the caller's TempFileScope; the
    caller decides when they go away.
    """

    def __init__(self, extractor: Optional[AudioTrackExtractor] = None):
        self._extractor = extractor or FFmpegAudioTrackExtractor()

    async def normalize(
        self,
        input_path: Path | str,
        content_type: Optional[str],
        scope: TempFileScope,
    ) -> Path:
        input_path = _validate_input_file(input_path)
        kind = AudioSourceDescriptor.from_path(input_path, content_type).normalization_path()
        logger.debug("Normalizing %s via %s path", input_path.name, kind)

        if kind == "video":
            extracted = scope.new_path(".wav")
            await self._extractor.extract_audio_track(input_path, extracted)
            if await asyncio.to_thread(is_canonical_wav, extracted):
                return extracted
            return await self._resample(extracted, scope)

        if kind == "wav" and await asyncio.to_thread(is_canonical_wav, input_path):
            return input_path

        return await self._resample(input_path, scope)

    async def _resample(self, source: Path, scope: TempFileScope) -> Path:
        target = scope.new_path(".wav")
        await asyncio.to_thread(decode_to_canonical_wav, source, target)
        return target


def _validate_input_file(input_path: Path | str) -> Path:
    if input_path is None or not str(input_path).strip():
        raise ValueError("Audio file path must not be empty.")
    path = Path(input_path)
    if not path.is_file():
        raise FileNotFoundError(f"Audio file not found: {path}")
    return path

