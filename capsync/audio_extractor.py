"""Handles audio extraction from video files using ffmpeg."""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

import ffmpeg

from .exceptions import ExtractionError
from .models import SAMPLE_RATE, AudioFormat, AudioTrack
from .utils import remove_file, terminate_process, truncate_tail, unique_path

logger = logging.getLogger(__name__)

_OUTPUT_OPTIONS = {
    AudioFormat.PCM: {"format": "s16le", "extension": "pcm"},
    AudioFormat.WAV: {"format": "wav", "extension": "wav"},
}


class AudioExtractor:
    """Extracts a mono 16 kHz audio track from video files."""

    def __init__(self, temp_dir: str = "temp", ffmpeg_path: Optional[str] = None):
        """
        Initializes the AudioExtractor.

        Args:
            temp_dir: Scratch directory for extracted audio files.
            ffmpeg_path: Optional path to the ffmpeg executable.
                         If None, assumes ffmpeg is in the system PATH.
        """
        self.temp_dir = temp_dir
        self.ffmpeg_cmd = ffmpeg_path or 'ffmpeg'
        logger.info(f"Using ffmpeg command: {self.ffmpeg_cmd}")

    def build_command(self, video_filepath: str, output_audio_path: str, audio_format: AudioFormat) -> List[str]:
        """Compiles the ffmpeg argv for one extraction."""
        options = _OUTPUT_OPTIONS[AudioFormat(audio_format)]
        return (
            ffmpeg
            .input(video_filepath)
            .output(
                output_audio_path,
                vn=None,
                format=options["format"],
                acodec='pcm_s16le',
                ar=SAMPLE_RATE,
                ac=1,
            )
            .global_args('-hide_banner', '-loglevel', 'error')
            .overwrite_output()
            .compile(cmd=self.ffmpeg_cmd)
        )

    async def extract_audio(self, video_filepath: str, audio_format: AudioFormat = AudioFormat.WAV) -> AudioTrack:
        """
        Extracts the audio stream from a video file.

        The caller owns the returned file and must delete it; prefer
        `audio_track()` which does so on every exit path.

        Args:
            video_filepath: Path to the input video file.
            audio_format: AudioFormat.PCM for raw s16le, AudioFormat.WAV for a WAV container.

        Returns:
            The extracted AudioTrack.

        Raises:
            FileNotFoundError: If the input video file does not exist.
            ExtractionError: If ffmpeg fails or produces an empty file.
        """
        logger.info(f"Starting audio extraction for: {video_filepath}")
        if not os.path.exists(video_filepath):
            raise FileNotFoundError(f"Input video file not found: {video_filepath}")

        audio_format = AudioFormat(audio_format)
        output_audio_path = unique_path(self.temp_dir, "audio", _OUTPUT_OPTIONS[audio_format]["extension"])
        args = self.build_command(video_filepath, output_audio_path, audio_format)
        logger.debug(f"ffmpeg command: {' '.join(args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Could not start ffmpeg ({self.ffmpeg_cmd}): {e}")
            raise ExtractionError(f"Could not start ffmpeg: {e}") from e

        try:
            _, stderr = await process.communicate()
        except asyncio.CancelledError:
            logger.warning(f"Audio extraction cancelled for {video_filepath}, stopping ffmpeg.")
            await terminate_process(process)
            remove_file(output_audio_path)
            raise

        if process.returncode != 0:
            stderr_output = stderr.decode('utf-8', errors='replace') if stderr else "No stderr output"
            logger.error(f"ffmpeg exited with code {process.returncode} for {video_filepath}")
            logger.error(f"ffmpeg stderr: {truncate_tail(stderr_output, 2000)}")
            remove_file(output_audio_path)
            raise ExtractionError(f"ffmpeg exited with code {process.returncode}")

        size = os.path.getsize(output_audio_path) if os.path.exists(output_audio_path) else 0
        if size == 0:
            logger.error(f"Audio extraction produced an empty file for {video_filepath}")
            remove_file(output_audio_path)
            raise ExtractionError("Audio extraction produced an empty file")

        logger.info(f"Successfully extracted audio to: {output_audio_path} ({size} bytes, {audio_format.value})")
        return AudioTrack(path=output_audio_path, audio_format=audio_format)

    @asynccontextmanager
    async def audio_track(
        self,
        video_filepath: str,
        audio_format: AudioFormat = AudioFormat.WAV,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[AudioTrack]:
        """
        Extracts audio and deletes the file when the block exits, however it exits.

        Raises:
            ExtractionError: Also when extraction takes longer than `timeout` seconds.
        """
        try:
            track = await asyncio.wait_for(self.extract_audio(video_filepath, audio_format), timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Audio extraction timed out after {timeout}s for {video_filepath}")
            raise ExtractionError("Audio extraction timed out") from e
        try:
            yield track
        finally:
            remove_file(track.path)
