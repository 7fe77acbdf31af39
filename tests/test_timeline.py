"""Unit tests for the synthetic render timeline."""

from __future__ import annotations

import pytest

from domain.vobsub_index import (
    INVALID_CONFIG_CODE,
    Paragraph,
    ParsedIndex,
    VideoSize,
    VobsubValidationError,
    parse_idx_text,
)
from service.timeline import (
    SyntheticEntry,
    build_synthetic_idx,
    format_palette_line,
    render_duration_seconds,
    render_frame_count,
    synthesize_timeline,
)


def build_index(
    paragraphs: tuple[Paragraph, ...], palette: tuple[int, ...] = ()
) -> ParsedIndex:
    """Build a ParsedIndex for tests."""
    return ParsedIndex(
        paragraphs=paragraphs, palette=palette, languages=(), declared_size=None
    )


def test_entries_start_at_frame_one() -> None:
    """Shift every entry forward by one frame."""
    paragraphs = (
        Paragraph(start_ms=1000, file_offset=0x10),
        Paragraph(start_ms=9000, file_offset=0x20),
        Paragraph(start_ms=2000, file_offset=0x30),
    )
    entries = synthesize_timeline(paragraphs, 30)

    assert [entry.timestamp_ms for entry in entries] == [33, 66, 100]
    assert [round(entry.timestamp_ms * 30 / 1000) for entry in entries] == [1, 2, 3]
    assert [entry.file_offset for entry in entries] == [0x10, 0x20, 0x30]


def test_synthesize_empty_timeline() -> None:
    """Return no entries for no paragraphs."""
    assert synthesize_timeline((), 30) == ()


def test_synthesize_rejects_bad_fps() -> None:
    """Refuse non-positive frame rates."""
    with pytest.raises(VobsubValidationError) as exc_info:
        synthesize_timeline((Paragraph(start_ms=0, file_offset=0),), 0)
    assert exc_info.value.code == INVALID_CONFIG_CODE


def test_synthetic_idx_text() -> None:
    """Emit the fixed header followed by frame-aligned timestamp lines."""
    index = build_index(
        (
            Paragraph(start_ms=1000, file_offset=0x10),
            Paragraph(start_ms=5000, file_offset=0x800),
        ),
        palette=(0xFF0080, 0x000000),
    )
    text = build_synthetic_idx(index, VideoSize(width=720, height=480), 30)

    assert text.split("\n") == [
        "# VobSub index file, v7 (do not modify this line!)",
        "size: 720x480",
        "palette: ff0080, 000000",
        "langidx: 0",
        "id: en, index: 0",
        "timestamp: 00:00:00:033, filepos: 000000010",
        "timestamp: 00:00:00:066, filepos: 000000800",
    ]
    assert not text.endswith("\n")


def test_synthetic_idx_keeps_english_only() -> None:
    """Replace source languages with a single English entry."""
    source = parse_idx_text(
        "size: 720x480\nid: de, index: 4\nid: fr\n"
        "timestamp: 00:00:01:000, filepos: 000000000\n"
    )
    text = build_synthetic_idx(source, VideoSize(width=720, height=480), 30)
    reparsed = parse_idx_text(text)
    assert [entry.language_id for entry in reparsed.languages] == ["en"]
    assert reparsed.languages[0].display_index == 0


def test_palette_survives_reparse() -> None:
    """Re-parse the normalized palette into the same colors."""
    source = parse_idx_text(
        "size: 720x480\npalette: 000000, FFFFFF, 80FF0080, #1A2B3C, ZZ\n"
    )
    text = build_synthetic_idx(source, VideoSize(width=720, height=480), 30)
    assert "palette: 000000, ffffff, ff0080, 1a2b3c, 000000" in text
    assert parse_idx_text(text).palette == source.palette


def test_synthetic_idx_preserves_offsets_on_reparse() -> None:
    """Carry file offsets through to the synthetic file unchanged."""
    source = parse_idx_text(
        "size: 720x480\n"
        "timestamp: 00:10:00:000, filepos: 00001f800\n"
        "timestamp: 00:20:00:000, filepos: 000abc000\n"
    )
    reparsed = parse_idx_text(
        build_synthetic_idx(source, VideoSize(width=720, height=480), 25)
    )
    assert [paragraph.file_offset for paragraph in reparsed.paragraphs] == [
        0x1F800,
        0xABC000,
    ]
    assert [paragraph.start_ms for paragraph in reparsed.paragraphs] == [40, 80]


def test_palette_line_format() -> None:
    """Join six-digit lowercase colors with comma and space."""
    assert format_palette_line((0xABCDEF, 0x1)) == "palette: abcdef, 000001"


def test_render_frame_count_adds_leading_frame() -> None:
    """Request one extra frame for the discarded blank frame."""
    assert render_frame_count(0) == 1
    assert render_frame_count(3) == 4


def test_render_duration_rounds_up_with_slack() -> None:
    """Add a second of slack and round up to whole seconds."""
    assert render_duration_seconds(0, 30) == 1
    assert render_duration_seconds(3, 30) == 2
    assert render_duration_seconds(45, 30) == 3


def test_synthetic_entry_rejects_negative_timestamp() -> None:
    """Refuse negative synthetic timestamps."""
    with pytest.raises(VobsubValidationError):
        SyntheticEntry(timestamp_ms=-1, file_offset=0)
