"""Command-Line Interface handler for CapSync."""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import List, Optional

from tqdm import tqdm

from .caption_pipeline import CaptionPipeline
from .config_loader import ConfigLoader
from .exceptions import CapSyncError, RenderError
from .log_setup import secrets_from_config, setup_logging
from .models import CaptionStyle
from .playback_sync import sync_caption
from .styles import to_display_properties
from .utils import load_segments, save_segments
from .video_store import LocalVideoStore

logger = logging.getLogger(__name__)

STYLE_CHOICES = [style.value for style in CaptionStyle]


class CLIHandler:
    """Parses arguments and runs the requested CapSync command."""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Creates the argument parser for the CLI."""
        common = argparse.ArgumentParser(add_help=False)
        common.add_argument(
            "-c", "--config",
            default=None,
            help="Path to the configuration YAML file. Built-in defaults are used when omitted."
        )
        common.add_argument(
            "--log-level",
            default="INFO",
            choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            help="Set the logging level for console and file output."
        )
        common.add_argument(
            "--temp-dir",
            default=None,
            help="Override the temporary directory specified in the config file."
        )
        common.add_argument(
            "-o", "--output-dir",
            default=None,
            help="Override the output directory specified in the config file."
        )

        parser = argparse.ArgumentParser(
            description="CapSync: Generate, preview and burn in synchronized captions for videos.",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter
        )
        subparsers = parser.add_subparsers(dest="command", required=True)

        generate = subparsers.add_parser(
            "generate", parents=[common],
            help="Transcribe a video and write its captions as SRT and JSON.",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter
        )
        generate.add_argument("video", help="Path to the video, or a filename in the upload directory.")
        generate.add_argument(
            "--provider",
            default=None,
            help="Override the transcription provider (local, whisper, assemblyai, huggingface)."
        )
        generate.add_argument(
            "--device",
            default=None,
            choices=["cuda", "cpu"],
            help="Override the processing device for local models."
        )

        render = subparsers.add_parser(
            "render", parents=[common],
            help="Burn captions into a video.",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter
        )
        render.add_argument("video", help="Path to the video, or a filename in the upload directory.")
        render.add_argument("--captions", required=True, help="Captions file (.json or .srt).")
        render.add_argument("--style", default=CaptionStyle.BOTTOM_CENTERED.value, choices=STYLE_CHOICES)
        render.add_argument("--no-progress", action="store_true", help="Do not show a progress bar.")

        sync = subparsers.add_parser(
            "sync", parents=[common],
            help="Show which caption is displayed at a playback time.",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter
        )
        sync.add_argument("--captions", required=True, help="Captions file (.json or .srt).")
        sync.add_argument("-t", "--time", type=float, required=True, help="Playback time in seconds.")
        sync.add_argument("--style", default=CaptionStyle.BOTTOM_CENTERED.value, choices=STYLE_CHOICES)
        sync.add_argument("--video-height", type=int, default=1080, help="Preview height used for pixel sizes.")

        return parser

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Parses arguments, sets up logging, loads config, and runs the command."""
        args = self.parser.parse_args(argv)

        log_level = getattr(logging, args.log_level.upper(), logging.INFO)
        # Basic logging until the config says where log files go
        setup_logging(log_level=log_level, log_dir='logs', log_file='capsync_init.log')

        try:
            config = ConfigLoader().load_config(args.config)
        except (CapSyncError, FileNotFoundError) as e:
            logger.critical(f"Failed to load configuration from {args.config}: {e}")
            sys.exit(1)

        setup_logging(
            log_level=log_level,
            log_dir=config.get('log_dir', 'logs'),
            log_file=config.get('log_file', 'capsync.log'),
            secrets=secrets_from_config(config),
        )
        self._apply_overrides(args, config)

        try:
            if args.command == "generate":
                asyncio.run(self.generate(args, config))
            elif args.command == "render":
                asyncio.run(self.render(args, config))
            else:
                self.sync(args)
            sys.exit(0)
        except CapSyncError as e:
            logger.error(f"A CapSync error occurred: {type(e).__name__}: {e}")
            if isinstance(e, RenderError) and e.diagnostic:
                logger.debug(f"Render diagnostic: {e.diagnostic}")
            sys.stderr.write(f"{e.user_message}\n")
            sys.exit(1)
        except FileNotFoundError as e:
            logger.error(str(e))
            sys.stderr.write(f"{e}\n")
            sys.exit(1)
        except KeyboardInterrupt:
            logger.warning("Process interrupted by user (Ctrl+C). Exiting.")
            sys.exit(1)
        except Exception as e:
            logger.critical(f"An unexpected critical error occurred at the top level: {e}", exc_info=True)
            sys.exit(2)

    @staticmethod
    def _apply_overrides(args: argparse.Namespace, config: dict) -> None:
        if args.temp_dir:
            logger.info(f"Overriding temp_dir from config with CLI argument: {args.temp_dir}")
            config['temp_dir'] = args.temp_dir
        if args.output_dir:
            logger.info(f"Overriding output_dir from config with CLI argument: {args.output_dir}")
            config['output_dir'] = args.output_dir
        if getattr(args, "device", None):
            logger.info(f"Overriding device from config with CLI argument: {args.device}")
            config['device'] = args.device
        if getattr(args, "provider", None):
            logger.info(f"Overriding transcription provider with CLI argument: {args.provider}")
            config.setdefault('transcription', {})['provider'] = args.provider

    @staticmethod
    def _resolve_video(video: str, config: dict) -> str:
        """Accepts a path, or a bare filename looked up in the upload directory."""
        if os.path.isfile(video):
            return video
        store = LocalVideoStore(config.get('upload_dir', 'uploads'))
        if store.exists(video):
            return store.path_for(video)
        raise FileNotFoundError(f"Input video file not found: {video}")

    async def generate(self, args: argparse.Namespace, config: dict) -> None:
        video_path = self._resolve_video(args.video, config)
        async with CaptionPipeline.from_config(config) as pipeline:
            segments = await pipeline.caption_video(video_path)

        if not segments:
            logger.warning("No speech was transcribed; writing empty caption files.")
        srt_path = pipeline.export_subtitles(segments, pipeline.default_export_path(video_path))
        json_path = os.path.splitext(srt_path)[0] + ".json"
        save_segments(segments, json_path)
        print(srt_path)
        print(json_path)

    async def render(self, args: argparse.Namespace, config: dict) -> None:
        video_path = self._resolve_video(args.video, config)
        segments = load_segments(args.captions)
        pipeline = CaptionPipeline.for_rendering(config)

        if args.no_progress:
            output_path = await pipeline.render_with_captions(video_path, segments, args.style)
        else:
            with tqdm(total=100, desc="Rendering", unit="%", bar_format="{l_bar}{bar}| {n:.0f}/{total:.0f}%") as bar:
                def on_progress(percent: float) -> None:
                    bar.update(percent - bar.n)

                output_path = await pipeline.render_with_captions(video_path, segments, args.style, on_progress)
        print(output_path)

    def sync(self, args: argparse.Namespace) -> None:
        segments = load_segments(args.captions)
        state = sync_caption(segments, args.time, args.style)
        report = {
            "time": args.time,
            "style": state.style.style.value,
            "active_segment": state.active_segment.to_dict() if state.active_segment else None,
            "highlight_fraction": state.highlight_fraction,
            "words": state.words,
            "highlighted_words": state.highlighted_words,
            "display": to_display_properties(state.style, args.video_height),
        }
        print(json.dumps(report, ensure_ascii=False, indent=2))


def main(argv: Optional[List[str]] = None) -> None:
    CLIHandler().run(argv)
