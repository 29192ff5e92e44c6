"""
Tests for audio extraction.
"""

import asyncio
import os
from unittest.mock import patch

import pytest

from capsync.audio_extractor import AudioExtractor
from capsync.exceptions import ExtractionError
from capsync.models import AudioFormat

from conftest import FakeExec


def _output_path(args):
    return next(a for a in args if a.endswith((".wav", ".pcm")))


def _write_output(data: bytes):
    def on_run(args):
        with open(_output_path(args), "wb") as f:
            f.write(data)
    return on_run


class TestBuildCommand:
    """Tests for the compiled ffmpeg command."""

    def test_pcm(self, tmp_path):
        extractor = AudioExtractor(temp_dir=str(tmp_path), ffmpeg_path="/opt/ffmpeg")

        args = extractor.build_command("in.mp4", "out.pcm", AudioFormat.PCM)

        assert args[0] == "/opt/ffmpeg"
        assert "-vn" in args
        assert args[args.index("-f") + 1] == "s16le"
        assert args[args.index("-acodec") + 1] == "pcm_s16le"
        assert args[args.index("-ar") + 1] == "16000"
        assert args[args.index("-ac") + 1] == "1"
        assert "-y" in args

    def test_wav(self, tmp_path):
        args = AudioExtractor(temp_dir=str(tmp_path)).build_command("in.mp4", "out.wav", AudioFormat.WAV)

        assert args[0] == "ffmpeg"
        assert args[args.index("-f") + 1] == "wav"


class TestExtractAudio:
    """Tests for running the extraction."""

    def test_success(self, tmp_path, video_file):
        extractor = AudioExtractor(temp_dir=str(tmp_path / "temp"))
        fake_exec = FakeExec(on_run=_write_output(b"\x01\x00" * 100))

        with patch("capsync.audio_extractor.asyncio.create_subprocess_exec", fake_exec):
            track = asyncio.run(extractor.extract_audio(video_file, AudioFormat.PCM))

        assert track.audio_format is AudioFormat.PCM
        assert track.path.endswith(".pcm")
        assert os.path.getsize(track.path) == 200
        assert track.sample_rate == 16000
        assert track.channels == 1

    def test_unique_paths(self, tmp_path, video_file):
        extractor = AudioExtractor(temp_dir=str(tmp_path))
        fake_exec = FakeExec(on_run=_write_output(b"data"))

        async def run_twice():
            return await asyncio.gather(extractor.extract_audio(video_file), extractor.extract_audio(video_file))

        with patch("capsync.audio_extractor.asyncio.create_subprocess_exec", fake_exec):
            first, second = asyncio.run(run_twice())

        assert first.path != second.path

    def test_missing_video(self, tmp_path):
        extractor = AudioExtractor(temp_dir=str(tmp_path))

        with pytest.raises(FileNotFoundError):
            asyncio.run(extractor.extract_audio(str(tmp_path / "missing.mp4")))

    def test_nonzero_exit(self, tmp_path, video_file):
        temp_dir = tmp_path / "temp"
        extractor = AudioExtractor(temp_dir=str(temp_dir))
        fake_exec = FakeExec(exit_code=1, stderr=b"Invalid data found", on_run=_write_output(b"partial"))

        with patch("capsync.audio_extractor.asyncio.create_subprocess_exec", fake_exec):
            with pytest.raises(ExtractionError):
                asyncio.run(extractor.extract_audio(video_file))

        assert os.listdir(temp_dir) == []

    def test_zero_byte_output_is_failure(self, tmp_path, video_file):
        temp_dir = tmp_path / "temp"
        extractor = AudioExtractor(temp_dir=str(temp_dir))
        fake_exec = FakeExec(on_run=_write_output(b""))

        with patch("capsync.audio_extractor.asyncio.create_subprocess_exec", fake_exec):
            with pytest.raises(ExtractionError):
                asyncio.run(extractor.extract_audio(video_file))

        assert os.listdir(temp_dir) == []

    def test_ffmpeg_not_installed(self, tmp_path, video_file):
        extractor = AudioExtractor(temp_dir=str(tmp_path))

        async def missing_binary(*args, **kwargs):
            raise FileNotFoundError("ffmpeg")

        with patch("capsync.audio_extractor.asyncio.create_subprocess_exec", missing_binary):
            with pytest.raises(ExtractionError):
                asyncio.run(extractor.extract_audio(video_file))


class TestAudioTrackContext:
    """Tests for scoped cleanup of extracted audio."""

    def test_deleted_after_block(self, tmp_path, video_file):
        extractor = AudioExtractor(temp_dir=str(tmp_path))
        fake_exec = FakeExec(on_run=_write_output(b"data"))

        async def use_track():
            async with extractor.audio_track(video_file) as track:
                assert os.path.exists(track.path)
                return track.path

        with patch("capsync.audio_extractor.asyncio.create_subprocess_exec", fake_exec):
            path = asyncio.run(use_track())

        assert not os.path.exists(path)

    def test_deleted_when_block_raises(self, tmp_path, video_file):
        extractor = AudioExtractor(temp_dir=str(tmp_path))
        fake_exec = FakeExec(on_run=_write_output(b"data"))
        seen = []

        async def fail_inside():
            async with extractor.audio_track(video_file) as track:
                seen.append(track.path)
                raise RuntimeError("downstream failure")

        with patch("capsync.audio_extractor.asyncio.create_subprocess_exec", fake_exec):
            with pytest.raises(RuntimeError):
                asyncio.run(fail_inside())

        assert not os.path.exists(seen[0])

    def test_timeout_stops_ffmpeg_and_cleans_up(self, tmp_path, video_file):
        temp_dir = tmp_path / "temp"
        extractor = AudioExtractor(temp_dir=str(temp_dir))
        fake_exec = FakeExec(hang=True, on_run=_write_output(b"partial"))

        async def use_track():
            async with extractor.audio_track(video_file, timeout=0.05):
                pass

        with patch("capsync.audio_extractor.asyncio.create_subprocess_exec", fake_exec):
            with pytest.raises(ExtractionError):
                asyncio.run(use_track())

        assert fake_exec.processes[0].terminated
        assert os.listdir(temp_dir) == []
