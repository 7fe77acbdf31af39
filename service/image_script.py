"""Encore image script generation from idx paragraphs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

from domain.vobsub_index import (
    Paragraph,
    VideoSize,
    VobsubValidationError,
    format_timestamp,
)

MAX_DURATION_MS = 6000
MIN_GAP_MS = 500
MIN_WINDOW_MS = 1
SCRIPT_TIMESTAMP_DELIMITER = ";"
FRAME_LABEL_PREFIX = "IMAGE"
FRAME_LABEL_DIGITS = 3
FRAME_EXTENSION = ".png"
SCRIPT_FILE_NAME = "Fab_Image_script.txt"
FRAME_LABELS_CODE = "vobsub_to_encore.script.invalid_frame_labels"


@dataclass(frozen=True)
class DisplayWindow:
    """One line of the image script."""

    frame_label: str
    start_timestamp: str
    end_timestamp: str
    x: int
    y: int
    width: int
    height: int

    def __post_init__(self) -> None:
        if not self.frame_label:
            raise VobsubValidationError(
                FRAME_LABELS_CODE, "frame label must be non-empty"
            )

    def to_line(self) -> str:
        """Render the window as a script line."""
        return (
            f"{self.frame_label}{FRAME_EXTENSION} {self.start_timestamp} "
            f"{self.end_timestamp} {self.x} {self.y} {self.width} {self.height}"
        )


def frame_label(frame_number: int) -> str:
    """Return the renderer's label for a 1-based frame number."""
    return f"{FRAME_LABEL_PREFIX}{frame_number:0{FRAME_LABEL_DIGITS}d}"


def frame_file_name(frame_number: int) -> str:
    """Return the PNG file name the renderer writes for a frame."""
    return f"{frame_label(frame_number)}{FRAME_EXTENSION}"


def rendered_frame_labels(paragraph_count: int) -> Tuple[str, ...]:
    """Labels of the kept frames, skipping the blank frame 0."""
    return tuple(frame_label(number) for number in range(1, paragraph_count + 1))


def compute_end_ms(start_ms: int, next_start_ms: int | None) -> int:
    """Guess an end time for a subtitle.

    Idx files carry no end times. Durations are capped at MAX_DURATION_MS and
    end MIN_GAP_MS before the next subtitle; the result never precedes
    start_ms + MIN_WINDOW_MS.
    """
    if next_start_ms is None:
        end_ms = start_ms + MAX_DURATION_MS
    else:
        end_ms = min(start_ms + MAX_DURATION_MS, next_start_ms - MIN_GAP_MS)
    return max(end_ms, start_ms + MIN_WINDOW_MS)


def build_display_windows(
    paragraphs: Sequence[Paragraph],
    size: VideoSize,
    frame_labels: Sequence[str],
) -> Tuple[DisplayWindow, ...]:
    """Build one full-frame display window per paragraph."""
    if len(frame_labels) < len(paragraphs):
        raise VobsubValidationError(
            FRAME_LABELS_CODE,
            f"expected {len(paragraphs)} frame labels, got {len(frame_labels)}",
        )

    windows: list[DisplayWindow] = []
    for index, paragraph in enumerate(paragraphs):
        next_start_ms = (
            paragraphs[index + 1].start_ms if index + 1 < len(paragraphs) else None
        )
        end_ms = compute_end_ms(paragraph.start_ms, next_start_ms)
        windows.append(
            DisplayWindow(
                frame_label=frame_labels[index],
                start_timestamp=format_timestamp(
                    paragraph.start_ms, SCRIPT_TIMESTAMP_DELIMITER
                ),
                end_timestamp=format_timestamp(end_ms, SCRIPT_TIMESTAMP_DELIMITER),
                x=0,
                y=0,
                width=size.width,
                height=size.height,
            )
        )
    return tuple(windows)


def format_image_script(windows: Sequence[DisplayWindow]) -> str:
    """Join display windows into script text."""
    return "\n".join(window.to_line() for window in windows)
