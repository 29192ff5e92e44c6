"""Data models for CapSync."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

SAMPLE_RATE = 16000


class AudioFormat(str, Enum):
    """Container of an extracted audio track."""
    PCM = "pcm"  # raw s16le, for in-process numeric backends
    WAV = "wav"  # for backends that take a file or bytes


@dataclass
class AudioTrack:
    """A transient, mono 16 kHz audio file extracted for one transcription request."""
    path: str
    audio_format: AudioFormat
    sample_rate: int = SAMPLE_RATE
    channels: int = 1


@dataclass
class TranscriptChunk:
    """
    Smallest unit of transcribed text as returned by a backend.

    A chunk with start == end == 0 carries no timing. Providers use this
    sentinel when they omit timestamps; it is never real timing.
    """
    text: str
    start: float = 0.0
    end: float = 0.0

    @property
    def has_timing(self) -> bool:
        return not (self.start == 0 and self.end == 0)


@dataclass
class CaptionSegment:
    """Represents a single display-ready caption with its time span."""
    text: str
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaptionSegment":
        return cls(text=str(data["text"]), start=float(data["start"]), end=float(data["end"]))


@dataclass
class TranscriptionResult:
    """Holds the normalized output of any transcription backend."""
    full_text: str = ""
    chunks: List[TranscriptChunk] = field(default_factory=list)
    language: Optional[str] = None
    provider: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.full_text.strip() and not self.chunks


class CaptionStyle(str, Enum):
    BOTTOM_CENTERED = "bottom-centered"
    TOP_BAR = "top-bar"
    KARAOKE = "karaoke"


@dataclass(frozen=True)
class StyleParameters:
    """
    Concrete rendering parameters for a caption style.

    Sizes and margins are in ASS script units (288 lines tall), which is what
    libass uses for SRT input. Colors are "#RRGGBB".
    """
    style: CaptionStyle
    font_family: str
    font_size: int
    primary_color: str
    outline_color: str
    shadow_color: str
    outline_width: int
    shadow_depth: int
    box_color: str
    box_opacity: float
    anchor: str  # "top" or "bottom"
    margin_v: int
    accent_color: Optional[str] = None
    accent_thickness: int = 0
    highlight_color: Optional[str] = None
    progressive_highlight: bool = False


@dataclass
class SyncState:
    """What the preview should show at a given playback time."""
    active_segment: Optional[CaptionSegment]
    style: StyleParameters
    highlight_fraction: Optional[float] = None
    words: List[str] = field(default_factory=list)
    highlighted_count: int = 0

    @property
    def highlighted_words(self) -> List[str]:
        return self.words[:self.highlighted_count]
