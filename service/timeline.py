"""Synthetic one-subtitle-per-frame timeline for the render pass."""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Sequence, Tuple

from domain.vobsub_index import (
    INVALID_CONFIG_CODE,
    INVALID_PARAGRAPH_CODE,
    Paragraph,
    ParsedIndex,
    VideoSize,
    VobsubValidationError,
    color_to_hex,
    format_timestamp,
)

IDX_HEADER_LINE = "# VobSub index file, v7 (do not modify this line!)"
SYNTHETIC_LANGUAGE_LINES = ("langidx: 0", "id: en, index: 0")
FILEPOS_DIGITS = 9
RENDER_SLACK_SECONDS = 1
DISCARDED_FRAME_NUMBER = 0


@dataclass(frozen=True)
class SyntheticEntry:
    """A subtitle entry moved onto its own frame."""

    timestamp_ms: int
    file_offset: int

    def __post_init__(self) -> None:
        if self.timestamp_ms < 0:
            raise VobsubValidationError(
                INVALID_PARAGRAPH_CODE, "synthetic timestamp must be non-negative"
            )


def validate_fps(fps: int) -> None:
    """Reject non-positive frame rates."""
    if fps <= 0:
        raise VobsubValidationError(INVALID_CONFIG_CODE, "fps must be positive")


def frame_timestamp_ms(frame_number: int, fps: int) -> int:
    """Return the millisecond time at which a frame starts."""
    validate_fps(fps)
    return (frame_number * 1000) // fps


def synthesize_timeline(
    paragraphs: Sequence[Paragraph], fps: int
) -> Tuple[SyntheticEntry, ...]:
    """Assign each paragraph to its own frame, starting at frame 1.

    The renderer drops the overlay on its very first frame, so entry ``i``
    lands on frame ``i + 1``. File offsets are carried over untouched.
    """
    validate_fps(fps)
    return tuple(
        SyntheticEntry(
            timestamp_ms=frame_timestamp_ms(index + 1, fps),
            file_offset=paragraph.file_offset,
        )
        for index, paragraph in enumerate(paragraphs)
    )


def format_palette_line(palette: Sequence[int]) -> str:
    """Serialize a palette in normalized six-digit form."""
    return "palette: " + ", ".join(color_to_hex(color) for color in palette)


def format_timecode_line(entry: SyntheticEntry) -> str:
    """Serialize a synthetic entry as an idx timestamp line."""
    return (
        f"timestamp: {format_timestamp(entry.timestamp_ms, ':')}, "
        f"filepos: {entry.file_offset:0{FILEPOS_DIGITS}x}"
    )


def build_synthetic_idx(index: ParsedIndex, size: VideoSize, fps: int) -> str:
    """Build the replacement idx text that drives the render pass."""
    entries = synthesize_timeline(index.paragraphs, fps)
    lines = [
        IDX_HEADER_LINE,
        f"size: {size}",
        format_palette_line(index.palette),
        *SYNTHETIC_LANGUAGE_LINES,
    ]
    lines.extend(format_timecode_line(entry) for entry in entries)
    return "\n".join(lines)


def render_frame_count(paragraph_count: int) -> int:
    """Frames to request, including the discarded leading frame."""
    return paragraph_count + 1


def render_duration_seconds(paragraph_count: int, fps: int) -> int:
    """Whole seconds of canvas to render, with slack for the last frame."""
    validate_fps(fps)
    duration = max(paragraph_count * (1 / fps), 0) + RENDER_SLACK_SECONDS
    return int(math.ceil(duration))
