"""Utility functions for CapSync."""

import asyncio
import json
import logging
import os
import uuid
from typing import List, Optional

import numpy as np

from .exceptions import FileSystemError, FormattingError
from .models import CaptionSegment

logger = logging.getLogger(__name__)

PCM16_SCALE = 32768.0


def ensure_dir_exists(dir_path: str) -> None:
    """
    Ensures that a directory exists. Creates it if it doesn't.

    Args:
        dir_path: The path to the directory.

    Raises:
        FileSystemError: If the directory cannot be created due to permissions
                         or if the path exists but is not a directory.
    """
    if not dir_path:
        raise ValueError("Directory path cannot be empty.")
    try:
        if not os.path.exists(dir_path):
            os.makedirs(dir_path, exist_ok=True)
            logger.info(f"Created directory: {dir_path}")
        elif not os.path.isdir(dir_path):
            raise FileSystemError(f"Path exists but is not a directory: {dir_path}")
    except OSError as e:
        logger.error(f"Error creating or accessing directory {dir_path}: {e}", exc_info=True)
        raise FileSystemError(f"Could not create or access directory {dir_path}: {e}") from e


def unique_path(directory: str, prefix: str, extension: str) -> str:
    """Returns a collision-free file path inside `directory` (which is created if needed)."""
    ensure_dir_exists(directory)
    return os.path.join(directory, f"{prefix}_{uuid.uuid4().hex}.{extension.lstrip('.')}")


def remove_file(file_path: Optional[str]) -> bool:
    """Removes a file if it exists. Returns True if something was deleted."""
    if not file_path or not os.path.exists(file_path):
        return False
    try:
        os.remove(file_path)
        logger.info(f"Cleaned up temporary file: {file_path}")
        return True
    except OSError as e:
        logger.warning(f"Could not remove temporary file {file_path}: {e}")
        return False


def pcm16_to_float32(data: bytes) -> np.ndarray:
    """Decodes little-endian signed 16-bit PCM into float32 samples in [-1, 1]."""
    usable = len(data) - (len(data) % 2)
    samples = np.frombuffer(data[:usable], dtype="<i2")
    return samples.astype(np.float32) / PCM16_SCALE


def truncate_tail(text: str, limit: int) -> str:
    """Keeps the last `limit` characters of a diagnostic stream."""
    if limit <= 0 or len(text) <= limit:
        return text
    return "..." + text[-limit:]


def load_segments(path: str) -> List[CaptionSegment]:
    """
    Loads caption segments from a JSON list or an SRT file.

    Raises:
        FileNotFoundError: If the file does not exist.
        FormattingError: If the content cannot be parsed.
    """
    from .subtitle_formatter import parse_subtitles

    if not os.path.isfile(path):
        raise FileNotFoundError(f"Captions file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        content = f.read()

    if path.lower().endswith(".srt"):
        return parse_subtitles(content)
    try:
        data = json.loads(content)
        if isinstance(data, dict):
            data = data.get("captions", [])
        return [CaptionSegment.from_dict(item) for item in data]
    except (ValueError, KeyError, TypeError) as e:
        raise FormattingError(f"Invalid captions JSON in {path}: {e}") from e


def save_segments(segments: List[CaptionSegment], path: str) -> None:
    """Writes caption segments as a JSON list of {text, start, end}."""
    parent = os.path.dirname(path)
    if parent:
        ensure_dir_exists(parent)
    with open(path, "w", encoding="utf-8") as f:
        json.dump([s.to_dict() for s in segments], f, ensure_ascii=False, indent=2)
    logger.info(f"Saved {len(segments)} captions to {path}")


async def terminate_process(process, grace_seconds: float = 5.0) -> None:
    """Terminates a still-running subprocess, killing it if it ignores SIGTERM."""
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
    except asyncio.TimeoutError:
        logger.warning(f"Process {getattr(process, 'pid', '?')} did not exit after SIGTERM, killing it.")
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()
