"""
Pytest configuration and fixtures for CapSync tests.
"""

import asyncio
import logging
from logging.handlers import RotatingFileHandler
from typing import Callable, List, Optional

import pytest

from capsync.models import AudioFormat, CaptionSegment, TranscriptChunk, TranscriptionResult
from capsync.transcriber import Transcriber


class FakeStream:
    """Minimal asyncio.StreamReader stand-in over a fixed byte string."""

    def __init__(self, data: bytes = b"", process: "FakeProcess" = None):
        self._buffer = data
        self._process = process

    async def _wait_if_hanging(self):
        while self._process is not None and self._process.hang and not self._process.terminated:
            await asyncio.sleep(0.01)

    async def readline(self) -> bytes:
        if not self._buffer:
            await self._wait_if_hanging()
            return b""
        line, sep, rest = self._buffer.partition(b"\n")
        self._buffer = rest
        return line + sep

    async def read(self, n: int = -1) -> bytes:
        if not self._buffer:
            await self._wait_if_hanging()
            return b""
        if n < 0:
            n = len(self._buffer)
        chunk, self._buffer = self._buffer[:n], self._buffer[n:]
        return chunk


class FakeProcess:
    """Stands in for asyncio.subprocess.Process."""

    pid = 4242

    def __init__(self, args: List[str], exit_code: int = 0, stdout: bytes = b"", stderr: bytes = b"",
                 hang: bool = False, on_run: Optional[Callable[[List[str]], None]] = None):
        self.args = args
        self.exit_code = exit_code
        self.hang = hang
        self.terminated = False
        self.returncode = None
        self.stdout = FakeStream(stdout, self)
        self.stderr = FakeStream(stderr, self)
        self._stdout_bytes = stdout
        self._stderr_bytes = stderr
        if on_run:
            on_run(args)

    async def _finish(self):
        while self.hang and not self.terminated:
            await asyncio.sleep(0.01)
        if self.returncode is None:
            self.returncode = self.exit_code

    async def communicate(self):
        await self._finish()
        return self._stdout_bytes, self._stderr_bytes

    async def wait(self):
        await self._finish()
        return self.returncode

    def terminate(self):
        self.terminated = True
        self.returncode = -15

    def kill(self):
        self.terminated = True
        self.returncode = -9


class FakeExec:
    """Replacement for asyncio.create_subprocess_exec that records the processes it starts."""

    def __init__(self, **process_kwargs):
        self.process_kwargs = process_kwargs
        self.processes: List[FakeProcess] = []

    async def __call__(self, *args, **kwargs):
        process = FakeProcess(list(args), **self.process_kwargs)
        self.processes.append(process)
        return process


class FakeTranscriber(Transcriber):
    """Deterministic transcriber returning a preset result."""

    name = "fake"

    def __init__(self, result: Optional[TranscriptionResult] = None, error: Optional[Exception] = None,
                 delay: float = 0.0, audio_format: AudioFormat = AudioFormat.WAV):
        self.result = result or TranscriptionResult()
        self.error = error
        self.delay = delay
        self.audio_format = audio_format
        self.opened = False
        self.closed = False
        self.seen_paths: List[str] = []

    async def open(self):
        self.opened = True

    async def close(self):
        self.closed = True

    async def transcribe(self, audio):
        self.seen_paths.append(audio.path)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


@pytest.fixture(autouse=True)
def restore_root_logging():
    """Removes the console and file handlers setup_logging installs during a test."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in root.handlers[:]:
        if type(handler) in (logging.StreamHandler, RotatingFileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture
def two_segments():
    return [
        CaptionSegment(text="A", start=0.0, end=3.0),
        CaptionSegment(text="B", start=3.0, end=6.0),
    ]


@pytest.fixture
def timed_result():
    return TranscriptionResult(
        full_text="Hello world. How are you today?",
        chunks=[
            TranscriptChunk("Hello", 0.0, 0.4),
            TranscriptChunk("world.", 0.4, 0.9),
            TranscriptChunk("How", 1.2, 1.4),
            TranscriptChunk("are", 1.4, 1.6),
            TranscriptChunk("you", 1.6, 1.8),
            TranscriptChunk("today?", 1.8, 2.3),
        ],
        provider="fake",
    )


@pytest.fixture
def video_file(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42")
    return str(path)
