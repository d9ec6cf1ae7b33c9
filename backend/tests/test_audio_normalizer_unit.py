import asyncio
import wave
from pathlib import Path
from types import SimpleNamespace

import numpy as np
import pytest

from backend.internal_core.audio_utils import (
    AudioNormalizer,
    is_canonical_wav,
    load_wav_info,
    pcm_to_wav,
    write_wav16k_mono_pcm16,
)
from backend.internal_core.errors import TranscodeFailed, UnsupportedFormat
from backend.internal_core.temp_files import TempFileScope
from backend.internal_core.transcode import FFmpegAudioTrackExtractor, build_ffmpeg_command


def _write_tone(path: Path, *, rate: int, channels: int, seconds: float = 0.5) -> Path:
    t = np.arange(int(rate * seconds)) / float(rate)
    mono = 0.25 * np.sin(2 * np.pi * 440.0 * t)
    frames = np.repeat(mono[:, None], channels, axis=1)
    pcm = (frames * 32767.0).astype("<i2").tobytes()
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(rate)
        wf.writeframes(pcm)
    return path


class FakeExtractor:
    def __init__(self, *, rate: int = 16000, fail: bool = False) -> None:
        self.rate = rate
        self.fail = fail
        self.calls: list[tuple[Path, Path]] = []

    async def extract_audio_track(self, video_path: Path, output_path: Path) -> Path:
        self.calls.append((video_path, output_path))
        if self.fail:
            raise TranscodeFailed("ffmpeg exited with code 1", stderr="moov atom not found", exit_code=1)
        _write_tone(output_path, rate=self.rate, channels=1)
        return output_path


@pytest.mark.asyncio
async def test_canonical_wav_is_returned_unchanged(tmp_path) -> None:
    source = _write_tone(tmp_path / "in.wav", rate=16000, channels=1)
    scratch = tmp_path / "scratch"
    with TempFileScope(scratch) as scope:
        out = await AudioNormalizer(FakeExtractor()).normalize(source, "audio/wav", scope)
        assert out == source
        assert scope.paths == []
    assert not scratch.exists() or list(scratch.iterdir()) == []


@pytest.mark.asyncio
async def test_stereo_44k_wav_is_resampled_to_canonical(tmp_path) -> None:
    source = _write_tone(tmp_path / "in.wav", rate=44100, channels=2)
    scratch = tmp_path / "scratch"
    with TempFileScope(scratch) as scope:
        out = await AudioNormalizer(FakeExtractor()).normalize(source, "audio/wav", scope)
        assert out != source
        assert out in scope.paths
        duration, rate, channels, width = load_wav_info(out)
        assert (rate, channels, width) == (16000, 1, 2)
        assert duration == pytest.approx(0.5, abs=0.01)
    assert not out.exists()
    assert source.exists()


@pytest.mark.asyncio
async def test_unsupported_format_raises_before_creating_temp_files(tmp_path) -> None:
    source = tmp_path / "notes.xyz"
    source.write_bytes(b"not audio")
    scratch = tmp_path / "scratch"
    with TempFileScope(scratch) as scope:
        with pytest.raises(UnsupportedFormat):
            await AudioNormalizer(FakeExtractor()).normalize(source, "application/octet-stream", scope)
        assert scope.paths == []
    assert not scratch.exists() or list(scratch.iterdir()) == []


@pytest.mark.asyncio
async def test_missing_or_empty_input_path_is_rejected(tmp_path) -> None:
    normalizer = AudioNormalizer(FakeExtractor())
    with TempFileScope(tmp_path) as scope:
        with pytest.raises(FileNotFoundError):
            await normalizer.normalize(tmp_path / "missing.wav", "audio/wav", scope)
        with pytest.raises(ValueError):
            await normalizer.normalize("", "audio/wav", scope)


@pytest.mark.asyncio
async def test_video_goes_through_extractor(tmp_path) -> None:
    source = tmp_path / "session.mp4"
    source.write_bytes(b"\x00" * 64)
    extractor = FakeExtractor()
    with TempFileScope(tmp_path / "scratch") as scope:
        out = await AudioNormalizer(extractor).normalize(source, "video/mp4", scope)
        assert extractor.calls == [(source, out)]
        assert is_canonical_wav(out)
    assert not out.exists()


@pytest.mark.asyncio
async def test_non_canonical_extracted_track_is_resampled(tmp_path) -> None:
    source = tmp_path / "session.mov"
    source.write_bytes(b"\x00" * 64)
    extractor = FakeExtractor(rate=8000)
    with TempFileScope(tmp_path / "scratch") as scope:
        out = await AudioNormalizer(extractor).normalize(source, None, scope)
        extracted = extractor.calls[0][1]
        assert out != extracted
        assert is_canonical_wav(out)
        assert len(scope.paths) == 2
    assert not extracted.exists()
    assert not out.exists()


@pytest.mark.asyncio
async def test_transcode_failure_propagates_and_cleans_up(tmp_path) -> None:
    source = tmp_path / "broken.mp4"
    source.write_bytes(b"\x00" * 64)
    scratch = tmp_path / "scratch"
    with pytest.raises(TranscodeFailed) as info:
        with TempFileScope(scratch) as scope:
            await AudioNormalizer(FakeExtractor(fail=True)).normalize(source, "video/mp4", scope)
    assert info.value.stderr == "moov atom not found"
    assert list(scratch.iterdir()) == []


def test_pcm_to_wav_copies_whole_frames_only(tmp_path) -> None:
    raw = tmp_path / "buffer.pcm"
    raw.write_bytes(bytes(range(7)))
    wav_path = tmp_path / "buffer.wav"

    written = pcm_to_wav(raw, wav_path)

    assert written == 6
    with wave.open(str(wav_path), "rb") as wf:
        assert wf.getnframes() == 3
        assert wf.readframes(3) == bytes(range(6))
    assert is_canonical_wav(wav_path)


def test_pcm_to_wav_respects_size_snapshot(tmp_path) -> None:
    raw = tmp_path / "buffer.pcm"
    raw.write_bytes(b"\x01\x02" * 100)
    wav_path = tmp_path / "buffer.wav"
    assert pcm_to_wav(raw, wav_path, max_bytes=41) == 40
    assert load_wav_info(wav_path)[0] == pytest.approx(20 / 16000)


def test_is_canonical_wav_false_for_garbage(tmp_path) -> None:
    junk = tmp_path / "junk.wav"
    junk.write_bytes(b"RIFF0000")
    assert is_canonical_wav(junk) is False
    ok = tmp_path / "ok.wav"
    write_wav16k_mono_pcm16(ok, b"\x00\x00" * 16)
    assert is_canonical_wav(ok) is True


def test_build_ffmpeg_command_requests_canonical_pcm(tmp_path) -> None:
    cmd = build_ffmpeg_command("ffmpeg", tmp_path / "in.mp4", tmp_path / "out.wav")
    assert cmd == [
        "ffmpeg",
        "-y",
        "-i",
        str(tmp_path / "in.mp4"),
        "-vn",
        "-acodec",
        "pcm_s16le",
        "-ar",
        "16000",
        "-ac",
        "1",
        str(tmp_path / "out.wav"),
    ]


@pytest.mark.asyncio
async def test_ffmpeg_missing_executable_raises_transcode_failed(tmp_path) -> None:
    extractor = FFmpegAudioTrackExtractor(str(tmp_path / "no-such-ffmpeg"))
    with pytest.raises(TranscodeFailed) as info:
        await extractor.extract_audio_track(tmp_path / "in.mp4", tmp_path / "out.wav")
    assert "FFMPEG_PATH" in str(info.value)


@pytest.mark.asyncio
async def test_ffmpeg_non_zero_exit_carries_stderr(monkeypatch, tmp_path) -> None:
    class FakeProcess:
        returncode = 1

        async def communicate(self):
            return b"", b"Invalid data found when processing input\n"

    async def fake_exec(*cmd, **kwargs):
        _ = (cmd, kwargs)
        return FakeProcess()

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
    extractor = FFmpegAudioTrackExtractor("ffmpeg")
    with pytest.raises(TranscodeFailed) as info:
        await extractor.extract_audio_track(tmp_path / "in.mp4", tmp_path / "out.wav")
    assert info.value.exit_code == 1
    assert info.value.stderr == "Invalid data found when processing input"
    assert "Invalid data found" in str(info.value)


@pytest.mark.asyncio
@pytest.mark.parametrize("sampwidth", [1, 3, 4])
async def test_non_16_bit_wav_is_converted_to_pcm16(tmp_path, sampwidth: int) -> None:
    source = tmp_path / f"in_{sampwidth * 8}bit.wav"
    frames = 8000
    silence = (b"\x80" if sampwidth == 1 else b"\x00" * sampwidth) * frames
    with wave.open(str(source), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(sampwidth)
        wf.setframerate(16000)
        wf.writeframes(silence)

    with TempFileScope(tmp_path / "scratch") as scope:
        out = await AudioNormalizer(FakeExtractor()).normalize(source, "audio/wav", scope)
        assert out != source
        duration, rate, channels, width = load_wav_info(out)
        assert (rate, channels, width) == (16000, 1, 2)
        assert duration == pytest.approx(0.5, abs=0.01)


@pytest.mark.asyncio
async def test_mp3_is_decoded_through_miniaudio(monkeypatch, tmp_path) -> None:
    import miniaudio

    source = tmp_path / "session.mp3"
    source.write_bytes(b"ID3" + b"\x00" * 64)
    rate = 44100
    t = np.arange(rate // 2) / float(rate)
    mono = (0.25 * np.sin(2 * np.pi * 440.0 * t)).astype(np.float32)
    stereo = np.repeat(mono[:, None], 2, axis=1).reshape(-1)
    requested: dict = {}

    def fake_get_file_info(filename):
        assert filename == str(source)
        return SimpleNamespace(nchannels=2, sample_rate=rate)

    def fake_decode_file(filename, output_format, nchannels, sample_rate):
        requested.update(format=output_format, nchannels=nchannels, sample_rate=sample_rate)
        return SimpleNamespace(samples=stereo.tobytes(), nchannels=nchannels, sample_rate=sample_rate)

    monkeypatch.setattr(miniaudio, "get_file_info", fake_get_file_info)
    monkeypatch.setattr(miniaudio, "decode_file", fake_decode_file)

    with TempFileScope(tmp_path / "scratch") as scope:
        out = await AudioNormalizer(FakeExtractor()).normalize(source, "audio/mpeg", scope)
        assert out in scope.paths
        duration, out_rate, channels, width = load_wav_info(out)
        assert (out_rate, channels, width) == (16000, 1, 2)
        assert duration == pytest.approx(0.5, abs=0.01)
    assert requested == {"format": miniaudio.SampleFormat.FLOAT32, "nchannels": 2, "sample_rate": rate}
    assert not out.exists()


@pytest.mark.asyncio
async def test_undecodable_mp3_raises_value_error(monkeypatch, tmp_path) -> None:
    import miniaudio

    source = tmp_path / "broken.mp3"
    source.write_bytes(b"\x00" * 16)

    def fake_get_file_info(filename):
        raise miniaudio.DecodeError("failed to open file")

    monkeypatch.setattr(miniaudio, "get_file_info", fake_get_file_info)
    scratch = tmp_path / "scratch"
    with pytest.raises(ValueError):
        with TempFileScope(scratch) as scope:
            await AudioNormalizer(FakeExtractor()).normalize(source, None, scope)
    assert list(scratch.iterdir()) == []
