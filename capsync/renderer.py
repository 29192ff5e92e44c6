"""Burns caption segments into a video with ffmpeg."""

import asyncio
import logging
import os
from typing import Callable, List, Optional, Sequence, Tuple

import ffmpeg

from .exceptions import CaptionValidationError, RenderError
from .models import CaptionSegment, StyleParameters
from .playback_sync import expand_for_burn_in
from .styles import accent_bar_filter, resolve_style, to_force_style
from .subtitle_formatter import SRTFormatter
from .utils import remove_file, terminate_process, truncate_tail, unique_path

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

_STDERR_READ_SIZE = 4096


def parse_progress_line(line: str) -> Optional[float]:
    """Returns the encoded position in seconds from an ffmpeg `-progress` line, if it carries one."""
    key, sep, value = line.strip().partition("=")
    if not sep or key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        # Both keys are reported in microseconds
        return int(value) / 1_000_000
    except ValueError:
        return None


def active_time_expression(segments: Sequence[CaptionSegment]) -> str:
    """ffmpeg `enable` expression that is true while any caption is on screen."""
    return "+".join(f"between(t,{s.start:.3f},{s.end:.3f})" for s in segments)


class RenderOrchestrator:
    """Drives ffmpeg to produce a new video with captions burned in."""

    def __init__(
        self,
        output_dir: str = "outputs",
        temp_dir: str = "temp",
        ffmpeg_path: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
        video_codec: str = "libx264",
        preset: str = "fast",
        crf: int = 23,
        audio_codec: str = "aac",
        audio_bitrate: str = "128k",
        max_diagnostic_chars: int = 2000,
    ):
        self.output_dir = output_dir
        self.temp_dir = temp_dir
        self.ffmpeg_cmd = ffmpeg_path or "ffmpeg"
        self.ffprobe_cmd = ffprobe_path or "ffprobe"
        self.video_codec = video_codec
        self.preset = preset
        self.crf = crf
        self.audio_codec = audio_codec
        self.audio_bitrate = audio_bitrate
        self.max_diagnostic_chars = max_diagnostic_chars
        self.formatter = SRTFormatter()

    @classmethod
    def from_config(cls, config: dict) -> "RenderOrchestrator":
        render = config.get("render", {})
        return cls(
            output_dir=config.get("output_dir", "outputs"),
            temp_dir=config.get("temp_dir", "temp"),
            ffmpeg_path=config.get("ffmpeg_path"),
            ffprobe_path=config.get("ffprobe_path"),
            video_codec=render.get("video_codec", "libx264"),
            preset=render.get("preset", "fast"),
            crf=int(render.get("crf", 23)),
            audio_codec=render.get("audio_codec", "aac"),
            audio_bitrate=str(render.get("audio_bitrate", "128k")),
            max_diagnostic_chars=int(render.get("max_diagnostic_chars", 2000)),
        )

    @staticmethod
    def validate_segments(segments: Sequence[CaptionSegment]) -> List[CaptionSegment]:
        """
        Checks edited captions before rendering. Overlaps are allowed; they
        are an authored choice.

        Raises:
            CaptionValidationError: If there are no captions or one has unusable timing.
        """
        segments = list(segments)
        if not segments:
            raise CaptionValidationError("No captions to render")
        for i, segment in enumerate(segments, start=1):
            if segment.start < 0:
                raise CaptionValidationError(f"Caption {i} starts before 0 ({segment.start})")
            if segment.end <= segment.start:
                raise CaptionValidationError(f"Caption {i} ends at or before its start ({segment.start} -> {segment.end})")
        return segments

    def build_command(
        self,
        video_path: str,
        subtitle_path: str,
        output_path: str,
        params: StyleParameters,
        segments: Sequence[CaptionSegment],
        has_audio: bool = True,
    ) -> List[str]:
        """Compiles the ffmpeg argv for one burn-in render."""
        source = ffmpeg.input(video_path)
        video = source.video
        accent = accent_bar_filter(params)
        if accent:
            video = video.filter("drawbox", enable=active_time_expression(segments), **accent)
        video = video.filter("subtitles", filename=subtitle_path, force_style=to_force_style(params))

        streams = [video, source.audio] if has_audio else [video]
        output_options = {
            "vcodec": self.video_codec,
            "preset": self.preset,
            "crf": self.crf,
            "movflags": "+faststart",
        }
        if has_audio:
            output_options.update(acodec=self.audio_codec, audio_bitrate=self.audio_bitrate)

        return (
            ffmpeg
            .output(*streams, output_path, **output_options)
            .global_args("-hide_banner", "-loglevel", "error", "-nostats", "-progress", "pipe:1")
            .overwrite_output()
            .compile(cmd=self.ffmpeg_cmd)
        )

    async def probe(self, video_path: str) -> Tuple[Optional[float], bool]:
        """Returns (duration in seconds or None, whether the file has an audio stream)."""
        loop = asyncio.get_running_loop()
        try:
            info = await loop.run_in_executor(None, lambda: ffmpeg.probe(video_path, cmd=self.ffprobe_cmd))
        except ffmpeg.Error as e:
            stderr_output = e.stderr.decode("utf-8", errors="replace") if e.stderr else ""
            raise RenderError("Could not read the source video",
                              diagnostic=truncate_tail(stderr_output, self.max_diagnostic_chars)) from e
        except OSError as e:
            raise RenderError("Could not start ffprobe", diagnostic=str(e)) from e

        duration = info.get("format", {}).get("duration")
        has_audio = any(s.get("codec_type") == "audio" for s in info.get("streams", []))
        try:
            return (float(duration) if duration else None), has_audio
        except ValueError:
            return None, has_audio

    async def render(
        self,
        video_path: str,
        segments: Sequence[CaptionSegment],
        style_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Renders `video_path` with `segments` burned in using the given style.

        The temporary subtitle file is removed on every exit path, including
        cancellation; a partial output file is removed on failure. The caller
        owns the returned output file (see `cleanup_output`).

        Args:
            video_path: Source video.
            segments: Caption segments, used as given (never re-segmented).
            style_id: Caption style identifier; unknown values fall back to bottom-centered.
            on_progress: Called with the percentage complete (0-100) as ffmpeg reports it.

        Returns:
            Path of the rendered video.

        Raises:
            FileNotFoundError: If the source video does not exist.
            CaptionValidationError: If the captions cannot be rendered.
            RenderError: If ffmpeg/ffprobe fail.
        """
        if not os.path.exists(video_path):
            raise FileNotFoundError(f"Input video file not found: {video_path}")
        segments = self.validate_segments(segments)
        params = resolve_style(style_id)

        subtitle_path = unique_path(self.temp_dir, "captions", "srt")
        output_path = unique_path(self.output_dir, "captioned", "mp4")
        succeeded = False
        logger.info(f"Rendering {len(segments)} captions onto {video_path} with style '{params.style.value}'")
        try:
            self.formatter.write(expand_for_burn_in(segments, params), subtitle_path)
            duration, has_audio = await self.probe(video_path)
            args = self.build_command(video_path, subtitle_path, output_path, params, segments, has_audio)
            logger.debug(f"ffmpeg command: {' '.join(args)}")
            await self._run(args, duration, on_progress)
            succeeded = True
            logger.info(f"Render complete: {output_path}")
            return output_path
        finally:
            remove_file(subtitle_path)
            if not succeeded:
                remove_file(output_path)

    async def _run(self, args: List[str], duration: Optional[float], on_progress: Optional[ProgressCallback]) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Could not start ffmpeg ({self.ffmpeg_cmd}): {e}")
            raise RenderError("Could not start ffmpeg", diagnostic=str(e)) from e

        stderr_task = asyncio.ensure_future(self._drain(process.stderr))
        try:
            await self._follow_progress(process.stdout, duration, on_progress)
            returncode = await process.wait()
            stderr_output = await stderr_task
        except BaseException:
            logger.warning("Render interrupted, stopping ffmpeg.")
            stderr_task.cancel()
            await terminate_process(process)
            raise

        if returncode != 0:
            diagnostic = truncate_tail(stderr_output, self.max_diagnostic_chars)
            logger.error(f"ffmpeg exited with code {returncode}: {diagnostic}")
            raise RenderError(f"ffmpeg exited with code {returncode}", diagnostic=diagnostic, returncode=returncode)
        if on_progress:
            on_progress(100.0)

    async def _drain(self, stream) -> str:
        """Reads a stream to EOF, keeping only a bounded tail."""
        keep = max(self.max_diagnostic_chars, 1) * 4
        buffer = bytearray()
        while True:
            data = await stream.read(_STDERR_READ_SIZE)
            if not data:
                break
            buffer.extend(data)
            if len(buffer) > keep:
                del buffer[:-keep]
        return buffer.decode("utf-8", errors="replace")

    async def _follow_progress(self, stream, duration: Optional[float], on_progress: Optional[ProgressCallback]) -> None:
        last_reported = -1
        while True:
            line = await stream.readline()
            if not line:
                break
            position = parse_progress_line(line.decode("utf-8", errors="replace"))
            if position is None or not duration or not on_progress:
                continue
            percent = max(0.0, min(100.0, position / duration * 100))
            if int(percent) > last_reported:
                last_reported = int(percent)
                on_progress(percent)

    @staticmethod
    def cleanup_output(output_path: str) -> bool:
        """Deletes a rendered file once it has been delivered downstream."""
        return remove_file(output_path)
