"""Selects the caption to display at a playback time and computes karaoke progress."""

import math
from typing import List, Optional, Sequence, Union

from .models import CaptionSegment, CaptionStyle, StyleParameters, SyncState
from .styles import resolve_style

_EPSILON = 1e-9


def find_active_segment(segments: Sequence[CaptionSegment], t: float) -> Optional[CaptionSegment]:
    """First segment with start <= t <= end. List order breaks ties between overlapping edits."""
    for segment in segments:
        if segment.start <= t <= segment.end:
            return segment
    return None


def segment_progress(segment: CaptionSegment, t: float) -> float:
    """Elapsed fraction of `segment` at time `t`, clamped to [0, 1]."""
    duration = segment.end - segment.start
    if duration <= 0:
        return 1.0
    return max(0.0, min(1.0, (t - segment.start) / duration))


def highlighted_word_count(progress: float, word_count: int) -> int:
    """
    Number of leading words to highlight.

    Word k (0-based) lights up once progress passes k / word_count, and the
    first word is lit from the moment the segment appears.
    """
    if word_count <= 0:
        return 0
    return min(word_count, max(1, math.ceil(progress * word_count - _EPSILON)))


def sync_caption(
    segments: Sequence[CaptionSegment],
    t: float,
    style_id: Optional[Union[str, CaptionStyle]] = None,
) -> SyncState:
    """
    Computes what the preview shows at playback time `t`.

    Pure function of its inputs. `highlight_fraction` is only set for styles
    with progressive highlighting.
    """
    params = resolve_style(style_id)
    active = find_active_segment(segments, t)
    if active is None:
        return SyncState(active_segment=None, style=params)

    words = active.text.split()
    if not params.progressive_highlight:
        return SyncState(active_segment=active, style=params, words=words)

    progress = segment_progress(active, t)
    return SyncState(
        active_segment=active,
        style=params,
        highlight_fraction=progress,
        words=words,
        highlighted_count=highlighted_word_count(progress, len(words)),
    )


def karaoke_cues(segment: CaptionSegment, params: StyleParameters) -> List[CaptionSegment]:
    """
    Splits a segment into one cue per highlight step for burn-in.

    Cue k spans the k-th equal slice of the segment and shows the first k+1
    words in the highlight color, which is exactly what `sync_caption` reports
    for any time inside that slice.
    """
    words = segment.text.split()
    if not words or not params.highlight_color:
        return [segment]

    step = (segment.end - segment.start) / len(words)
    cues = []
    for k in range(len(words)):
        lit = " ".join(words[:k + 1])
        rest = " ".join(words[k + 1:])
        text = f'<font color="{params.highlight_color}">{lit}</font>'
        if rest:
            text = f"{text} {rest}"
        start = segment.start + k * step
        end = segment.end if k == len(words) - 1 else segment.start + (k + 1) * step
        cues.append(CaptionSegment(text=text, start=start, end=end))
    return cues


def expand_for_burn_in(segments: Sequence[CaptionSegment], params: StyleParameters) -> List[CaptionSegment]:
    """Cue list handed to the subtitle serializer for burn-in in the given style."""
    if not params.progressive_highlight:
        return list(segments)
    cues: List[CaptionSegment] = []
    for segment in segments:
        cues.extend(karaoke_cues(segment, params))
    return cues
