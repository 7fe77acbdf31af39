"""Domain types and parsing for VobSub idx files."""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Iterable, Tuple

INPUT_FILE_CODE = "vobsub_to_encore.input.file_error"
INVALID_CONFIG_CODE = "vobsub_to_encore.input.invalid_config"
INVALID_SIZE_CODE = "vobsub_to_encore.input.invalid_size"
MISSING_SIZE_CODE = "vobsub_to_encore.input.missing_size"
INVALID_PARAGRAPH_CODE = "vobsub_to_encore.input.invalid_paragraph"

TIMECODE_LINE_PATTERN = re.compile(
    r"^timestamp: (?P<timestamp>\d+:\d+:\d+:\d+), filepos: (?P<filepos>[0-9a-fA-F]+)$",
    re.ASCII,
)
VIDEO_SIZE_PATTERN = re.compile(r"^(?P<width>\d+)x(?P<height>\d+)$", re.ASCII)
INTEGER_PATTERN = re.compile(r"^[+-]?\d+$", re.ASCII)
HEX_PATTERN = re.compile(r"^[0-9a-fA-F]+$")
PALETTE_SPLIT_PATTERN = re.compile(r"[, ]")
LANGUAGE_SPLIT_PATTERN = re.compile(r"[:, ]")

SIZE_PREFIX = "size:"
PALETTE_PREFIX = "palette:"
LANGUAGE_PREFIX = "id:"
SIZE_MIN_LINE_LENGTH = 8
PALETTE_MIN_LINE_LENGTH = 11
LANGUAGE_MIN_LINE_LENGTH = 5
LANGUAGE_INDEX_KEYWORD = "index"
LANGUAGE_TAG_BASE = 32
LEFT_TO_RIGHT_MARK = "\u200e"

MS_PER_HOUR = 3_600_000
MS_PER_MINUTE = 60_000
MS_PER_SECOND = 1_000


class VobsubValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class Paragraph:
    """One subtitle appearance in the index."""

    start_ms: int
    file_offset: int

    def __post_init__(self) -> None:
        if self.start_ms < 0:
            raise VobsubValidationError(
                INVALID_PARAGRAPH_CODE, "paragraph start time must be non-negative"
            )
        if self.file_offset < 0:
            raise VobsubValidationError(
                INVALID_PARAGRAPH_CODE, "paragraph file offset must be non-negative"
            )


@dataclass(frozen=True)
class LanguageEntry:
    """Language id paired with its synthesized numeric tag."""

    language_id: str
    display_index: int

    @property
    def label(self) -> str:
        """Render the label the authoring tool expects."""
        return (
            f"{self.language_id} {LEFT_TO_RIGHT_MARK}"
            f"(0x{self.display_index + LANGUAGE_TAG_BASE})"
        )


@dataclass(frozen=True)
class ParsedIndex:
    """Structured contents of an idx file."""

    paragraphs: Tuple[Paragraph, ...]
    palette: Tuple[int, ...]
    languages: Tuple[LanguageEntry, ...]
    declared_size: str | None


@dataclass(frozen=True)
class VideoSize:
    """Canvas dimensions in pixels."""

    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise VobsubValidationError(
                INVALID_SIZE_CODE, "video width and height must be positive"
            )

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


def parse_integer(token: str | None) -> int | None:
    """Parse a decimal integer token, returning None when it is not one."""
    if token is None:
        return None
    stripped = token.strip()
    if not INTEGER_PATTERN.fullmatch(stripped):
        return None
    return int(stripped)


def parse_timestamp_ms(timestamp_value: str) -> int | None:
    """Parse an idx H:MM:SS:mmm timestamp into milliseconds."""
    parts = timestamp_value.split(":")
    if len(parts) != 4:
        return None
    numbers = [parse_integer(part) for part in parts]
    if any(number is None for number in numbers):
        return None
    hours, minutes, seconds, millis = numbers
    return (
        hours * MS_PER_HOUR
        + minutes * MS_PER_MINUTE
        + seconds * MS_PER_SECOND
        + millis
    )


def format_timestamp(milliseconds: int, delimiter: str = ":") -> str:
    """Format milliseconds as HH:MM:SS:mmm joined by the delimiter."""
    if milliseconds < 0:
        raise VobsubValidationError(
            INVALID_PARAGRAPH_CODE, "timestamp must be non-negative"
        )
    hours, remainder = divmod(milliseconds, MS_PER_HOUR)
    minutes, remainder = divmod(remainder, MS_PER_MINUTE)
    seconds, millis = divmod(remainder, MS_PER_SECOND)
    return delimiter.join(
        (f"{hours:02d}", f"{minutes:02d}", f"{seconds:02d}", f"{millis:03d}")
    )


def hex_to_color(hex_value: str) -> int:
    """Convert a palette token into a 24-bit RGB integer.

    Six digits are read as RGB, eight digits as ARGB with the alpha byte
    dropped. Anything else yields black.
    """
    normalized = hex_value.strip().removeprefix("#").strip()
    if not HEX_PATTERN.fullmatch(normalized):
        return 0
    if len(normalized) == 6:
        return int(normalized, 16)
    if len(normalized) == 8:
        return int(normalized[2:], 16)
    return 0


def color_to_hex(color: int) -> str:
    """Format a palette color as six lowercase hex digits."""
    return f"{color & 0xFFFFFF:06x}"


def parse_timecode_line(line: str) -> Paragraph | None:
    """Parse a timestamp/filepos line into a paragraph."""
    match = TIMECODE_LINE_PATTERN.fullmatch(line)
    if not match:
        return None
    start_ms = parse_timestamp_ms(match.group("timestamp"))
    if start_ms is None:
        return None
    return Paragraph(
        start_ms=start_ms, file_offset=int(match.group("filepos").strip(), 16)
    )


def parse_palette_line(line: str) -> Tuple[int, ...]:
    """Parse the colors of a palette line."""
    remainder = line.replace(PALETTE_PREFIX, "", 1)
    tokens = [token for token in PALETTE_SPLIT_PATTERN.split(remainder) if token]
    return tuple(hex_to_color(token) for token in tokens)


def parse_idx_lines(lines: Iterable[str]) -> ParsedIndex:
    """Parse idx lines into a ParsedIndex.

    Unrecognized and malformed lines are skipped; parsing never fails.
    """
    paragraphs: list[Paragraph] = []
    palette: list[int] = []
    languages: list[LanguageEntry] = []
    declared_size: str | None = None
    language_index = 0

    for raw_line in lines:
        line = raw_line.rstrip("\r\n")

        paragraph = parse_timecode_line(line)
        if paragraph is not None:
            paragraphs.append(paragraph)
        elif line.startswith(SIZE_PREFIX) and len(line) >= SIZE_MIN_LINE_LENGTH:
            size_value = line.replace(SIZE_PREFIX, "", 1).strip()
            if size_value:
                declared_size = size_value
        elif (
            line.startswith(PALETTE_PREFIX)
            and len(line) >= PALETTE_MIN_LINE_LENGTH
        ):
            palette.extend(parse_palette_line(line))
        elif (
            line.startswith(LANGUAGE_PREFIX)
            and len(line) >= LANGUAGE_MIN_LINE_LENGTH
        ):
            parts = [part for part in LANGUAGE_SPLIT_PATTERN.split(line) if part]
            if len(parts) < 2:
                continue
            if len(parts) > 3 and parts[2] == LANGUAGE_INDEX_KEYWORD:
                override = parse_integer(parts[3])
                if override is not None:
                    language_index = override
            languages.append(
                LanguageEntry(language_id=parts[1], display_index=language_index)
            )
            language_index += 1

    return ParsedIndex(
        paragraphs=tuple(paragraphs),
        palette=tuple(palette),
        languages=tuple(languages),
        declared_size=declared_size,
    )


def parse_idx_text(text_value: str) -> ParsedIndex:
    """Parse idx file contents."""
    return parse_idx_lines(text_value.replace("\ufeff", "").split("\n"))


def parse_video_size(size_value: str) -> VideoSize:
    """Parse a WxH size string into a VideoSize."""
    match = VIDEO_SIZE_PATTERN.fullmatch(size_value.strip())
    if not match:
        raise VobsubValidationError(
            INVALID_SIZE_CODE, f"invalid video size: {size_value!r} (expected WxH)"
        )
    return VideoSize(
        width=int(match.group("width")), height=int(match.group("height"))
    )


def resolve_video_size(
    override_size: str | None, index: ParsedIndex
) -> VideoSize:
    """Pick the override size or the declared one, failing when neither exists."""
    size_value = override_size if override_size else index.declared_size
    if not size_value:
        raise VobsubValidationError(
            MISSING_SIZE_CODE,
            "Video size is required to accurately render subtitles. Please add a "
            "`size:` line to the source `.idx` file or specify the size with "
            "`--size 1920x1080`.",
        )
    return parse_video_size(size_value)
