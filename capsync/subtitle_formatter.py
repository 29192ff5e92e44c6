"""Serializes caption segments to SubRip (SRT) text and parses it back."""

import logging
import math
import os
import re
from abc import ABC, abstractmethod
from typing import Iterable, List

from .exceptions import FormattingError
from .models import CaptionSegment
from .utils import ensure_dir_exists

logger = logging.getLogger(__name__)

_TIMESTAMP_RE = re.compile(r"^\s*(\d+):(\d{1,2}):(\d{1,2})[,.](\d{1,3})\s*$")
_TIMING_LINE_RE = re.compile(r"^\s*(\S+)\s*-->\s*(\S+)")
_BLANK_LINES_RE = re.compile(r"\n\s*\n")

# Float noise allowance when flooring to whole milliseconds
_MS_EPSILON = 1e-6


def format_timestamp(seconds: float) -> str:
    """
    Formats seconds as HH:MM:SS,mmm, truncating (not rounding) to the millisecond.

    The whole millisecond count is floored with a 1e-6 ms allowance, rather
    than flooring `(seconds % 1) * 1000`. The two differ only where float
    noise sits just below a millisecond: 4.35 gives ",350" here, but the
    fractional-part formula gives ",349". Formatting a parsed timestamp
    reproduces it exactly.

    Negative input is clamped to zero. Hours are not wrapped at 24.
    """
    if seconds < 0:
        seconds = 0.0
    total_ms = int(math.floor(seconds * 1000 + _MS_EPSILON))
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, ms = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{ms:03d}"


def parse_timestamp(value: str) -> float:
    """Parses HH:MM:SS,mmm (a '.' separator is accepted too) into seconds."""
    match = _TIMESTAMP_RE.match(value)
    if not match:
        raise FormattingError(f"Invalid subtitle timestamp: {value!r}")
    hours, minutes, secs, ms = match.groups()
    total_ms = ((int(hours) * 60 + int(minutes)) * 60 + int(secs)) * 1000 + int(ms.ljust(3, "0"))
    return total_ms / 1000


def _clean_text(text: str) -> str:
    # A blank line inside a cue would end the cue early
    return _BLANK_LINES_RE.sub("\n", text.strip().replace("\r\n", "\n"))


def serialize_subtitles(segments: Iterable[CaptionSegment]) -> str:
    """
    Renders segments as SRT text: "{index}\\n{start} --> {end}\\n{text}\\n\\n" per cue.

    Indices are 1-based positional order. This is the only SRT writer in the
    package; burn-in input and user-facing export both go through it.
    """
    parts = []
    for index, segment in enumerate(segments, start=1):
        parts.append(
            f"{index}\n"
            f"{format_timestamp(segment.start)} --> {format_timestamp(segment.end)}\n"
            f"{_clean_text(segment.text)}\n\n"
        )
    return "".join(parts)


def parse_subtitles(content: str) -> List[CaptionSegment]:
    """
    Parses SRT text into segments, in file order.

    Raises:
        FormattingError: If a cue has no valid timing line.
    """
    content = content.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
    segments = []
    for block_number, block in enumerate(_BLANK_LINES_RE.split(content.strip()), start=1):
        lines = block.split("\n")
        if not block.strip():
            continue
        timing_index = next((i for i, line in enumerate(lines[:2]) if "-->" in line), None)
        if timing_index is None:
            raise FormattingError(f"Subtitle block {block_number} has no timing line")
        match = _TIMING_LINE_RE.match(lines[timing_index])
        if not match:
            raise FormattingError(f"Subtitle block {block_number} has a malformed timing line: {lines[timing_index]!r}")
        segments.append(CaptionSegment(
            text="\n".join(lines[timing_index + 1:]).strip(),
            start=parse_timestamp(match.group(1)),
            end=parse_timestamp(match.group(2)),
        ))
    logger.debug(f"Parsed {len(segments)} subtitle cues")
    return segments


class SubtitleFormatter(ABC):
    """Abstract base class for subtitle formatters."""

    extension = ""

    @abstractmethod
    def format_subtitles(self, segments: Iterable[CaptionSegment]) -> str:
        """Returns the subtitle document for `segments`."""

    @abstractmethod
    def parse_subtitles(self, content: str) -> List[CaptionSegment]:
        """Parses a subtitle document back into segments."""

    def write(self, segments: Iterable[CaptionSegment], output_path: str) -> str:
        """
        Writes the formatted subtitles to `output_path`.

        Raises:
            FormattingError: If file writing fails.
            FileSystemError: If the output directory cannot be created.
        """
        segments = list(segments)
        parent = os.path.dirname(output_path)
        if parent:
            ensure_dir_exists(parent)
        try:
            with open(output_path, 'w', encoding='utf-8') as f:
                f.write(self.format_subtitles(segments))
        except OSError as e:
            logger.error(f"Failed to write subtitle file to {output_path}: {e}", exc_info=True)
            raise FormattingError(f"Could not write subtitle file: {e}") from e
        logger.info(f"Wrote {len(segments)} subtitle blocks to {output_path}")
        return output_path


class SRTFormatter(SubtitleFormatter):
    """Formats subtitles into the SRT (SubRip Text) format."""

    extension = "srt"

    def format_subtitles(self, segments: Iterable[CaptionSegment]) -> str:
        return serialize_subtitles(segments)

    def parse_subtitles(self, content: str) -> List[CaptionSegment]:
        return parse_subtitles(content)
