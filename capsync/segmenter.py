"""Groups transcript chunks into caption segments, or estimates timing when none is given."""

import logging
from typing import Iterable, List, Optional, Sequence

from .models import CaptionSegment, TranscriptChunk, TranscriptionResult

logger = logging.getLogger(__name__)

# Latin terminals plus Devanagari danda/double danda and CJK full-width forms
DEFAULT_TERMINAL_PUNCTUATION = (".", "!", "?", "…", "।", "॥", "。", "！", "？")

# Readable-sentence granularity for end-user captions
SENTENCE_CHUNK_LIMIT = 2
# Word granularity used when timing has to be estimated
ESTIMATION_WORD_LIMIT = 5
WORDS_PER_SECOND = 2.5


def ends_sentence(text: str, terminal_punctuation: Sequence[str] = DEFAULT_TERMINAL_PUNCTUATION) -> bool:
    """True if `text` ends in one of the terminal punctuation marks (closing quotes ignored)."""
    stripped = text.rstrip().rstrip("\"'”’)»")
    return bool(stripped) and stripped.endswith(tuple(terminal_punctuation))


def _split_groups(items: Sequence[str], limit: int, terminal_punctuation: Sequence[str]) -> List[List[int]]:
    """
    Shared closing rule: close a group on terminal punctuation, on reaching
    `limit` items, or at the last item. Returns index groups.
    """
    if limit < 1:
        raise ValueError(f"Group limit must be at least 1, got {limit}")
    groups: List[List[int]] = []
    current: List[int] = []
    last_index = len(items) - 1
    for i, text in enumerate(items):
        current.append(i)
        if ends_sentence(text, terminal_punctuation) or len(current) >= limit or i == last_index:
            groups.append(current)
            current = []
    return groups


def _repair_timing(chunks: List[TranscriptChunk], words_per_second: float) -> List[TranscriptChunk]:
    """
    Fills in chunks whose timing is missing (the 0/0 sentinel) or inverted,
    using neighbouring chunks, and makes starts non-decreasing. Every
    repaired chunk ends strictly after it starts.
    """
    repaired: List[TranscriptChunk] = []
    previous_end = 0.0
    for i, chunk in enumerate(chunks):
        start, end = chunk.start, chunk.end
        spoken = max(len(chunk.text.split()), 1) / words_per_second
        if not chunk.has_timing:
            start = previous_end
            following = next((c for c in chunks[i + 1:] if c.has_timing), None)
            estimate = start + spoken
            end = min(estimate, following.start) if following and following.start > start else estimate
        start = max(start, previous_end)
        if end <= start:
            # Open-ended, inverted or zero-length chunk, e.g. a final chunk with no end time
            end = start + spoken
        if (start, end) != (chunk.start, chunk.end):
            logger.debug(f"Repaired timing of chunk {i} ('{chunk.text[:20]}'): {chunk.start}-{chunk.end} -> {start}-{end}")
        repaired.append(TranscriptChunk(text=chunk.text, start=start, end=end))
        previous_end = end
    return repaired


def group_into_segments(
    chunks: Iterable[TranscriptChunk],
    max_chunks: int = SENTENCE_CHUNK_LIMIT,
    terminal_punctuation: Sequence[str] = DEFAULT_TERMINAL_PUNCTUATION,
    words_per_second: float = WORDS_PER_SECOND,
) -> List[CaptionSegment]:
    """
    Groups timed chunks into caption segments.

    A segment closes when the chunk just added ends a sentence, when it holds
    `max_chunks` chunks, or at the last chunk. Its start is the first chunk's
    start and its end the last chunk's end. Empty chunks are dropped first.

    Args:
        chunks: Chunks in transcript order.
        max_chunks: Count threshold for closing a segment.
        terminal_punctuation: Marks that end a sentence.
        words_per_second: Speaking rate used to repair chunks without timing.

    Returns:
        Segments ordered by start, with start[i+1] >= end[i].
    """
    cleaned = [
        TranscriptChunk(text=c.text.strip(), start=float(c.start), end=float(c.end))
        for c in chunks
        if c.text and c.text.strip()
    ]
    if not cleaned:
        logger.info("No chunks to group into segments")
        return []

    cleaned = _repair_timing(cleaned, words_per_second)
    segments = []
    for group in _split_groups([c.text for c in cleaned], max_chunks, terminal_punctuation):
        members = [cleaned[i] for i in group]
        segments.append(CaptionSegment(
            text=" ".join(c.text for c in members),
            start=members[0].start,
            end=members[-1].end,
        ))

    logger.info(f"Grouped {len(cleaned)} chunks into {len(segments)} segments")
    return segments


def estimate_segments(
    text: str,
    max_words: int = ESTIMATION_WORD_LIMIT,
    words_per_second: float = WORDS_PER_SECOND,
    terminal_punctuation: Sequence[str] = DEFAULT_TERMINAL_PUNCTUATION,
) -> List[CaptionSegment]:
    """
    Builds segments with synthetic timing from plain text.

    This is an approximation for backends that return no usable timestamps,
    not measured timing: each segment lasts word_count / words_per_second and
    segments are chained from 0 with no gaps (start[i+1] == end[i]). Rendering
    and preview treat the result exactly like measured timing.
    """
    words = text.split() if text else []
    if not words:
        return []
    if words_per_second <= 0:
        raise ValueError(f"words_per_second must be positive, got {words_per_second}")

    segments = []
    cursor = 0.0
    for group in _split_groups(words, max_words, terminal_punctuation):
        end = cursor + len(group) / words_per_second
        segments.append(CaptionSegment(text=" ".join(words[i] for i in group), start=cursor, end=end))
        cursor = end

    logger.info(f"Estimated timing for {len(words)} words across {len(segments)} segments")
    return segments


def segment_transcription(
    result: TranscriptionResult,
    sentence_chunk_limit: int = SENTENCE_CHUNK_LIMIT,
    estimation_word_limit: int = ESTIMATION_WORD_LIMIT,
    words_per_second: float = WORDS_PER_SECOND,
    terminal_punctuation: Optional[Sequence[str]] = None,
) -> List[CaptionSegment]:
    """Picks grouping when any chunk carries timing, estimation otherwise."""
    punctuation = tuple(terminal_punctuation) if terminal_punctuation else DEFAULT_TERMINAL_PUNCTUATION
    timed = [c for c in result.chunks if c.text.strip()]

    if any(c.has_timing for c in timed):
        return group_into_segments(timed, sentence_chunk_limit, punctuation, words_per_second)

    text = result.full_text.strip() or " ".join(c.text.strip() for c in timed)
    if not text:
        logger.warning("Transcription returned empty text, no captions produced")
        return []

    logger.info("No usable timestamps from provider, estimating caption timing")
    return estimate_segments(text, estimation_word_limit, words_per_second, punctuation)


def segment_with_config(result: TranscriptionResult, config: dict) -> List[CaptionSegment]:
    """`segment_transcription` with thresholds from the `segmentation` config section."""
    settings = config.get("segmentation", {}) if config else {}
    return segment_transcription(
        result,
        sentence_chunk_limit=int(settings.get("sentence_chunk_limit", SENTENCE_CHUNK_LIMIT)),
        estimation_word_limit=int(settings.get("estimation_word_limit", ESTIMATION_WORD_LIMIT)),
        words_per_second=float(settings.get("words_per_second", WORDS_PER_SECOND)),
        terminal_punctuation=settings.get("terminal_punctuation"),
    )
