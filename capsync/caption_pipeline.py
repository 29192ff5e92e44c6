"""Orchestrates caption generation, rendering and export for a video."""

import asyncio
import logging
import os
import time
from typing import List, Optional, Sequence

from .audio_extractor import AudioExtractor
from .exceptions import ProviderUnavailableError, RenderError
from .models import CaptionSegment, StyleParameters, SyncState, TranscriptionResult
from .playback_sync import sync_caption
from .renderer import ProgressCallback, RenderOrchestrator
from .segmenter import segment_with_config
from .styles import resolve_style
from .subtitle_formatter import SRTFormatter, SubtitleFormatter
from .transcriber import Transcriber, create_transcriber

logger = logging.getLogger(__name__)


class CaptionPipeline:
    """
    Manages the end-to-end process of captioning a video file.

    The pipeline owns the transcriber's lifetime: `open()` loads models or
    network clients, `close()` releases them. Use it as an async context
    manager. Each stage is bounded by the timeouts in the `timeouts` config
    section.
    """

    def __init__(
        self,
        config: dict,
        audio_extractor: AudioExtractor,
        transcriber: Optional[Transcriber],
        renderer: RenderOrchestrator,
        subtitle_formatter: Optional[SubtitleFormatter] = None,
    ):
        """
        Initializes the CaptionPipeline.

        Args:
            config: A dictionary containing configuration settings.
            audio_extractor: An instance of AudioExtractor.
            transcriber: The transcription backend to use, or None for a
                pipeline that only renders and exports.
            renderer: An instance of RenderOrchestrator.
            subtitle_formatter: Formatter for exported subtitle files (SRT by default).
        """
        self.config = config
        self.audio_extractor = audio_extractor
        self.transcriber = transcriber
        self.renderer = renderer
        self.subtitle_formatter = subtitle_formatter or SRTFormatter()

        timeouts = config.get("timeouts", {})
        self.extraction_timeout = _timeout(timeouts.get("extraction_seconds"))
        self.transcription_timeout = _timeout(timeouts.get("transcription_seconds"))
        self.render_timeout = _timeout(timeouts.get("render_seconds"))
        self._opened = False

    @classmethod
    def from_config(cls, config: dict, transcriber: Optional[Transcriber] = None) -> "CaptionPipeline":
        """Builds a pipeline with every component configured from `config`."""
        audio_extractor = AudioExtractor(
            temp_dir=config.get("temp_dir", "temp"),
            ffmpeg_path=config.get("ffmpeg_path"),
        )
        return cls(
            config=config,
            audio_extractor=audio_extractor,
            transcriber=transcriber or create_transcriber(config),
            renderer=RenderOrchestrator.from_config(config),
        )

    @classmethod
    def for_rendering(cls, config: dict) -> "CaptionPipeline":
        """Builds a pipeline without a transcriber, so no model or provider settings are touched."""
        return cls(
            config=config,
            audio_extractor=AudioExtractor(temp_dir=config.get("temp_dir", "temp"), ffmpeg_path=config.get("ffmpeg_path")),
            transcriber=None,
            renderer=RenderOrchestrator.from_config(config),
        )

    async def open(self) -> None:
        if self.transcriber is None:
            raise ProviderUnavailableError("Caption pipeline has no transcriber")
        if not self._opened:
            logger.info(f"Opening transcriber '{self.transcriber.name}'")
            await self.transcriber.open()
            self._opened = True

    async def close(self) -> None:
        if self._opened:
            await self.transcriber.close()
            self._opened = False
            logger.info(f"Closed transcriber '{self.transcriber.name}'")

    async def __aenter__(self) -> "CaptionPipeline":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def generate_captions(self, video_path: str) -> TranscriptionResult:
        """
        Extracts the audio track of `video_path` and transcribes it.

        The extracted audio file is deleted before this returns, whatever the
        outcome.

        Raises:
            FileNotFoundError: If the video does not exist.
            ExtractionError: If the audio cannot be extracted in time.
            TranscriptionError: One of AuthenticationError, InvalidInputError
                or ProviderUnavailableError (timeouts are reported as the latter).
        """
        if not self._opened:
            raise ProviderUnavailableError("Caption pipeline used before open()")

        start_time = time.time()
        logger.info(f"--- Generating captions for: {video_path} ---")

        logger.info("Step 1: Extracting audio...")
        async with self.audio_extractor.audio_track(
            video_path, self.transcriber.audio_format, timeout=self.extraction_timeout
        ) as track:
            logger.info(f"Step 2: Transcribing audio with '{self.transcriber.name}'...")
            try:
                result = await asyncio.wait_for(self.transcriber.transcribe(track), self.transcription_timeout)
            except asyncio.TimeoutError as e:
                logger.error(f"Transcription timed out after {self.transcription_timeout}s for {video_path}")
                raise ProviderUnavailableError("Transcription timed out") from e

        logger.info(f"--- Captions generated in {time.time() - start_time:.2f} seconds "
                    f"({len(result.chunks)} chunks) ---")
        return result

    async def caption_video(self, video_path: str) -> List[CaptionSegment]:
        """Generates captions for `video_path` and segments them for display."""
        result = await self.generate_captions(video_path)
        logger.info("Step 3: Segmenting transcription...")
        segments = segment_with_config(result, self.config)
        logger.info(f"Produced {len(segments)} caption segments")
        return segments

    async def render_with_captions(
        self,
        video_path: str,
        segments: Sequence[CaptionSegment],
        style_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Burns `segments` into `video_path` with the chosen style.

        Raises:
            CaptionValidationError: If the segments cannot be rendered.
            RenderError: If ffmpeg fails or the render exceeds its timeout.
        """
        try:
            return await asyncio.wait_for(
                self.renderer.render(video_path, segments, style_id, on_progress),
                self.render_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Render timed out after {self.render_timeout}s for {video_path}")
            raise RenderError("Render timed out") from e

    def export_subtitles(self, segments: Sequence[CaptionSegment], output_path: str) -> str:
        """Writes `segments` as a subtitle file and returns its path."""
        return self.subtitle_formatter.write(segments, output_path)

    def default_export_path(self, video_path: str, output_dir: Optional[str] = None) -> str:
        """`<output_dir>/<video name>.<ext>` for the configured formatter."""
        base_name = os.path.splitext(os.path.basename(video_path))[0]
        output_dir = output_dir or self.config.get("output_dir", "outputs")
        return os.path.join(output_dir, f"{base_name}.{self.subtitle_formatter.extension}")

    @staticmethod
    def resolve_style(style_id: Optional[str]) -> StyleParameters:
        return resolve_style(style_id)

    @staticmethod
    def sync_caption(segments: Sequence[CaptionSegment], t: float, style_id: Optional[str] = None) -> SyncState:
        return sync_caption(segments, t, style_id)


def _timeout(value) -> Optional[float]:
    """Config timeout to seconds; missing or non-positive means no limit."""
    if value is None:
        return None
    seconds = float(value)
    return seconds if seconds > 0 else None

