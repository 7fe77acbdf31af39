"""Input classification and subtitle stream selection."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import mimetypes
import os
from typing import Mapping, Sequence, Tuple

from domain.vobsub_index import VobsubValidationError

UNSUPPORTED_INPUT_CODE = "vobsub_to_encore.input.unsupported_format"
PLAINTEXT_SUB_CODE = "vobsub_to_encore.input.plaintext_sub"
STREAM_MISSING_CODE = "vobsub_to_encore.stream.missing_index"
STREAM_CODEC_CODE = "vobsub_to_encore.stream.wrong_codec"
NO_DVD_STREAM_CODE = "vobsub_to_encore.stream.no_dvd_subtitle"
PROBE_OUTPUT_CODE = "vobsub_to_encore.stream.invalid_probe_output"

DVD_SUBTITLE_CODEC = "dvd_subtitle"
IDX_EXTENSION = ".idx"
SUB_EXTENSION = ".sub"
MATROSKA_EXTENSIONS = (".mkv", ".mka", ".mks", ".mk3d")
VIDEO_EXTENSIONS = MATROSKA_EXTENSIONS + (
    ".mp4",
    ".m4v",
    ".mov",
    ".avi",
    ".vob",
    ".mpg",
    ".mpeg",
    ".ts",
    ".m2ts",
    ".webm",
    ".ogm",
)


class InputKind(str, Enum):
    """Kinds of input the converter accepts."""

    IDX = "idx"
    VIDEO = "video"


@dataclass(frozen=True)
class ProbeStream:
    """Stream entry reported by ffprobe."""

    index: int
    codec_name: str
    codec_type: str
    language: str | None


def classify_input(file_path: str) -> InputKind:
    """Decide whether a path is an idx file or a video container."""
    extension = os.path.splitext(file_path)[1].lower()
    if extension == IDX_EXTENSION:
        return InputKind.IDX
    if extension == SUB_EXTENSION:
        raise VobsubValidationError(
            PLAINTEXT_SUB_CODE,
            "Please pass a video or .idx file, not a .sub file. "
            "Plaintext .sub files are not supported.",
        )
    if extension in VIDEO_EXTENSIONS:
        return InputKind.VIDEO
    mime_type, _ = mimetypes.guess_type(file_path)
    if mime_type and mime_type.startswith("video/"):
        return InputKind.VIDEO
    raise VobsubValidationError(
        UNSUPPORTED_INPUT_CODE,
        "Unrecognized file format provided. Please use a video or .idx file.",
    )


def is_matroska(file_path: str) -> bool:
    """Return True when the container is Matroska."""
    return os.path.splitext(file_path)[1].lower() in MATROSKA_EXTENSIONS


def parse_probe_streams(payload: Mapping[str, object]) -> Tuple[ProbeStream, ...]:
    """Convert ffprobe -show_streams JSON into ProbeStream entries."""
    raw_streams = payload.get("streams", [])
    if not isinstance(raw_streams, list):
        raise VobsubValidationError(
            PROBE_OUTPUT_CODE, "ffprobe output has no stream list"
        )

    streams: list[ProbeStream] = []
    for raw_stream in raw_streams:
        if not isinstance(raw_stream, dict):
            continue
        index = raw_stream.get("index")
        if not isinstance(index, int):
            continue
        tags = raw_stream.get("tags")
        language = tags.get("language") if isinstance(tags, dict) else None
        streams.append(
            ProbeStream(
                index=index,
                codec_name=str(raw_stream.get("codec_name", "")),
                codec_type=str(raw_stream.get("codec_type", "")),
                language=language if isinstance(language, str) and language else None,
            )
        )
    return tuple(streams)


def select_subtitle_stream(
    streams: Sequence[ProbeStream], track: int | None
) -> ProbeStream:
    """Pick the requested stream, or the first dvd_subtitle stream."""
    if track is not None:
        stream = next((entry for entry in streams if entry.index == track), None)
        if stream is None:
            raise VobsubValidationError(
                STREAM_MISSING_CODE, f"There was no stream at index {track}."
            )
        if stream.codec_name != DVD_SUBTITLE_CODEC:
            raise VobsubValidationError(
                STREAM_CODEC_CODE,
                f"There was no {DVD_SUBTITLE_CODEC} stream at index {track}.",
            )
        return stream

    stream = next(
        (entry for entry in streams if entry.codec_name == DVD_SUBTITLE_CODEC), None
    )
    if stream is None:
        raise VobsubValidationError(
            NO_DVD_STREAM_CODE, f"The video has no {DVD_SUBTITLE_CODEC} tracks."
        )
    return stream


def extracted_idx_path(video_path: str, stream: ProbeStream) -> str:
    """Return the idx path mkvextract should write for a stream."""
    base, _ = os.path.splitext(video_path)
    suffix = stream.language if stream.language else str(stream.index)
    return f"{base}.{suffix}{IDX_EXTENSION}"
