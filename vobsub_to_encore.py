#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10"
# ]
# ///
"""Convert VobSub idx/sub subtitles into an Encore image script."""

from __future__ import annotations

import argparse
import json
import logging
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from typing import Mapping, Sequence, Tuple

from PIL import Image

from domain.media_streams import (
    InputKind,
    ProbeStream,
    classify_input,
    extracted_idx_path,
    is_matroska,
    parse_probe_streams,
    select_subtitle_stream,
)
from domain.vobsub_index import (
    INPUT_FILE_CODE,
    INVALID_CONFIG_CODE,
    VideoSize,
    VobsubValidationError,
    parse_idx_text,
    resolve_video_size,
)
from service.image_script import (
    SCRIPT_FILE_NAME,
    build_display_windows,
    format_image_script,
    frame_file_name,
    rendered_frame_labels,
)
from service.timeline import (
    DISCARDED_FRAME_NUMBER,
    build_synthetic_idx,
    render_duration_seconds,
    render_frame_count,
    validate_fps,
)

__version__ = "1.0.0"

LOGGER = logging.getLogger("vobsub_to_encore")

TOOL_NOT_FOUND_CODE = "vobsub_to_encore.tool.not_found"
TOOL_EXEC_CODE = "vobsub_to_encore.tool.exec_error"
TOOL_TIMEOUT_CODE = "vobsub_to_encore.tool.timeout"
FFPROBE_CODE = "vobsub_to_encore.ffprobe.failed"
MUX_CODE = "vobsub_to_encore.ffmpeg.mux_failed"
RENDER_CODE = "vobsub_to_encore.ffmpeg.render_failed"
EXTRACT_CODE = "vobsub_to_encore.mkvextract.failed"
FRAMES_CODE = "vobsub_to_encore.render.invalid_frames"
OUTPUT_FILE_CODE = "vobsub_to_encore.output.file_error"

FFMPEG_ENV = "VOBSUB_TO_ENCORE_FFMPEG"
FFPROBE_ENV = "VOBSUB_TO_ENCORE_FFPROBE"
MKVEXTRACT_ENV = "VOBSUB_TO_ENCORE_MKVEXTRACT"
DEFAULT_FFMPEG = "ffmpeg"
DEFAULT_FFPROBE = "ffprobe"
DEFAULT_MKVEXTRACT = "mkvextract"
DEFAULT_FPS = 30
OUTPUT_DIR_NAME = "fabscript"
SYNTHETIC_SUFFIX = ".rw"
FRAME_PATTERN = "IMAGE%03d.png"
SUB_EXTENSIONS = (".sub", ".SUB")
CANVAS_COLOR = "black@0.0"
OVERLAY_FILTER = "[0:v][1:s]overlay[v]"


class VobsubPipelineError(RuntimeError):
    """Runtime error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class ToolPaths:
    """Locations of the external binaries the pipeline calls."""

    ffmpeg: str = DEFAULT_FFMPEG
    ffprobe: str = DEFAULT_FFPROBE
    mkvextract: str = DEFAULT_MKVEXTRACT
    render_timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        for name, value in (
            ("ffmpeg", self.ffmpeg),
            ("ffprobe", self.ffprobe),
            ("mkvextract", self.mkvextract),
        ):
            if not value.strip():
                raise VobsubValidationError(
                    INVALID_CONFIG_CODE, f"{name} path must be non-empty"
                )
        if self.render_timeout_seconds is not None and self.render_timeout_seconds <= 0:
            raise VobsubValidationError(
                INVALID_CONFIG_CODE, "render timeout must be positive"
            )


@dataclass(frozen=True)
class ProcessOptions:
    """Options for converting one idx file."""

    size: str | None = None
    fps: int = DEFAULT_FPS
    output_dir: str | None = None

    def __post_init__(self) -> None:
        validate_fps(self.fps)
        if self.output_dir is not None and not self.output_dir.strip():
            raise VobsubValidationError(
                INVALID_CONFIG_CODE, "output directory must be non-empty"
            )


@dataclass(frozen=True)
class ConvertRequest:
    """Parsed CLI request."""

    input_path: str
    track: int | None
    options: ProcessOptions
    tools: ToolPaths


def configure_logging() -> None:
    """Configure logging for CLI output."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def load_tool_paths(
    environ: Mapping[str, str], render_timeout_seconds: float | None = None
) -> ToolPaths:
    """Build tool paths from environment overrides."""
    return ToolPaths(
        ffmpeg=environ.get(FFMPEG_ENV) or DEFAULT_FFMPEG,
        ffprobe=environ.get(FFPROBE_ENV) or DEFAULT_FFPROBE,
        mkvextract=environ.get(MKVEXTRACT_ENV) or DEFAULT_MKVEXTRACT,
        render_timeout_seconds=render_timeout_seconds,
    )


def run_tool(
    command: Sequence[str],
    failure_code: str,
    description: str,
    timeout_seconds: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run an external tool and raise on a non-zero exit."""
    try:
        result = subprocess.run(
            list(command),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            check=False,
            timeout=timeout_seconds,
        )
    except FileNotFoundError as exc:
        raise VobsubPipelineError(
            TOOL_NOT_FOUND_CODE, f"{command[0]} not found"
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise VobsubPipelineError(
            TOOL_TIMEOUT_CODE,
            f"{description} did not finish within {timeout_seconds} seconds",
        ) from exc
    except OSError as exc:
        raise VobsubPipelineError(
            TOOL_EXEC_CODE, f"{command[0]} could not be executed: {exc}"
        ) from exc

    if result.returncode != 0:
        stderr_text = result.stderr.strip()
        raise VobsubPipelineError(
            failure_code,
            f"{description} failed with exit code {result.returncode}. {stderr_text}",
        )
    return result


def ensure_tool_available(
    tool_path: str, probe_args: Tuple[str, ...], remediation: str
) -> None:
    """Ensure a binary is installed and answers a harmless invocation."""
    resolved_path = shutil.which(tool_path)
    if not resolved_path:
        raise VobsubPipelineError(
            TOOL_NOT_FOUND_CODE, f"{tool_path} was not found. {remediation}"
        )
    try:
        subprocess.run(
            [resolved_path, *probe_args],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise VobsubPipelineError(
            TOOL_NOT_FOUND_CODE,
            f"{tool_path} exists but could not be executed. {remediation}",
        ) from exc


def ensure_ffmpeg_available(tools: ToolPaths) -> None:
    """Ensure the renderer is usable."""
    ensure_tool_available(
        tools.ffmpeg,
        ("-version",),
        f"Install ffmpeg or point --ffmpeg / {FFMPEG_ENV} at it.",
    )


def ensure_mkvextract_available(tools: ToolPaths) -> None:
    """Ensure mkvextract is usable."""
    ensure_tool_available(
        tools.mkvextract,
        ("-h",),
        f"Install MKVToolNix or point --mkvextract / {MKVEXTRACT_ENV} at it.",
    )


def read_idx_file(file_path: str) -> str:
    """Read an idx file, replacing undecodable bytes."""
    try:
        with open(file_path, "rb") as file_handle:
            file_bytes = file_handle.read()
    except FileNotFoundError as exc:
        raise VobsubValidationError(
            INPUT_FILE_CODE, f"idx file not found: {file_path}"
        ) from exc
    except OSError as exc:
        raise VobsubValidationError(
            INPUT_FILE_CODE, f"idx file error: {file_path}"
        ) from exc
    return file_bytes.decode("utf-8", errors="replace")


def write_text_file(file_path: str, content: str) -> None:
    """Write UTF-8 text to disk."""
    try:
        with open(file_path, "w", encoding="utf-8", newline="") as file_handle:
            file_handle.write(content)
    except OSError as exc:
        raise VobsubPipelineError(
            OUTPUT_FILE_CODE, f"failed to write {file_path}: {exc}"
        ) from exc


def find_sub_file(idx_path: str) -> str:
    """Locate the .sub file that pairs with an idx file."""
    base, _ = os.path.splitext(idx_path)
    for extension in SUB_EXTENSIONS:
        candidate = base + extension
        if os.path.isfile(candidate):
            return candidate
    raise VobsubValidationError(
        INPUT_FILE_CODE, f"sub file not found next to idx: {base}.sub"
    )


def probe_streams(video_path: str, tools: ToolPaths) -> Tuple[ProbeStream, ...]:
    """List the streams of a video with ffprobe."""
    result = run_tool(
        [tools.ffprobe, "-v", "quiet", "-of", "json", "-show_streams", video_path],
        FFPROBE_CODE,
        "ffprobe",
    )
    try:
        payload = json.loads(result.stdout)
    except json.JSONDecodeError as exc:
        raise VobsubPipelineError(
            FFPROBE_CODE, f"ffprobe returned invalid JSON for {video_path}"
        ) from exc
    if not isinstance(payload, dict):
        raise VobsubPipelineError(
            FFPROBE_CODE, f"ffprobe returned unexpected output for {video_path}"
        )
    return parse_probe_streams(payload)


def extract_subtitles(video_path: str, track: int | None, tools: ToolPaths) -> str:
    """Extract an idx/sub pair from a video and return the idx path."""
    if not os.path.isfile(video_path):
        raise VobsubValidationError(
            INPUT_FILE_CODE, f"video file not found: {video_path}"
        )
    ensure_mkvextract_available(tools)
    stream = select_subtitle_stream(probe_streams(video_path, tools), track)
    idx_path = extracted_idx_path(video_path, stream)

    muxed_path: str | None = None
    source_path = video_path
    track_id = stream.index
    if not is_matroska(video_path):
        LOGGER.info(
            "vobsub_to_encore.extract.muxing: video is not matroska, "
            "muxing stream %d",
            stream.index,
        )
        ensure_ffmpeg_available(tools)
        muxed_path = f"{os.path.splitext(video_path)[0]}.{stream.index}.mux.mkv"
        run_tool(
            [
                tools.ffmpeg,
                "-hide_banner",
                "-loglevel",
                "error",
                "-y",
                "-i",
                video_path,
                "-map",
                f"0:{stream.index}",
                "-c:s",
                "copy",
                "-f",
                "matroska",
                muxed_path,
            ],
            MUX_CODE,
            "ffmpeg mux",
        )
        source_path = muxed_path
        track_id = 0

    try:
        run_tool(
            [tools.mkvextract, source_path, "tracks", f"{track_id}:{idx_path}"],
            EXTRACT_CODE,
            "mkvextract",
        )
    finally:
        if muxed_path is not None and os.path.exists(muxed_path):
            os.remove(muxed_path)

    LOGGER.info("vobsub_to_encore.extract.written: %s", idx_path)
    return idx_path


def build_render_command(
    synthetic_idx_path: str,
    output_dir: str,
    size: VideoSize,
    paragraph_count: int,
    fps: int,
    tools: ToolPaths,
) -> list[str]:
    """Build the ffmpeg command that burns one subtitle into each frame."""
    duration = render_duration_seconds(paragraph_count, fps)
    canvas = (
        f"color=size={size}:duration={duration}:rate={fps}:"
        f"color={CANVAS_COLOR},format=rgba"
    )
    return [
        tools.ffmpeg,
        "-hide_banner",
        "-loglevel",
        "error",
        "-f",
        "lavfi",
        "-i",
        canvas,
        "-i",
        synthetic_idx_path,
        "-filter_complex",
        OVERLAY_FILTER,
        "-map",
        "[v]",
        "-f",
        "image2",
        "-frame_pts",
        "true",
        "-c:v",
        "png",
        "-fps_mode",
        "passthrough",
        "-frames:v",
        str(render_frame_count(paragraph_count)),
        os.path.join(output_dir, FRAME_PATTERN),
        "-y",
    ]


def render_subtitle_frames(
    synthetic_idx_path: str,
    output_dir: str,
    size: VideoSize,
    paragraph_count: int,
    fps: int,
    tools: ToolPaths,
) -> None:
    """Render the synthetic idx into numbered PNG frames."""
    command = build_render_command(
        synthetic_idx_path, output_dir, size, paragraph_count, fps, tools
    )
    LOGGER.info(
        "vobsub_to_encore.render.started: %d frames at %s, %d fps",
        render_frame_count(paragraph_count),
        size,
        fps,
    )
    run_tool(command, RENDER_CODE, "ffmpeg render", tools.render_timeout_seconds)


def verify_rendered_frames(
    output_dir: str, paragraph_count: int, size: VideoSize
) -> None:
    """Check that every kept frame exists at the canvas size."""
    expected_size = (size.width, size.height)
    for frame_number in range(1, paragraph_count + 1):
        frame_path = os.path.join(output_dir, frame_file_name(frame_number))
        try:
            with Image.open(frame_path) as frame_image:
                frame_size = frame_image.size
        except FileNotFoundError as exc:
            raise VobsubPipelineError(
                FRAMES_CODE, f"renderer did not produce {frame_path}"
            ) from exc
        except OSError as exc:
            raise VobsubPipelineError(
                FRAMES_CODE, f"rendered frame is unreadable: {frame_path}"
            ) from exc
        if frame_size != expected_size:
            raise VobsubPipelineError(
                FRAMES_CODE,
                f"rendered frame {frame_path} is {frame_size[0]}x{frame_size[1]}, "
                f"expected {size}",
            )


def process_idx(idx_path: str, options: ProcessOptions, tools: ToolPaths) -> str:
    """Convert an idx/sub pair into an image script and return its path."""
    index = parse_idx_text(read_idx_file(idx_path))
    LOGGER.info(
        "vobsub_to_encore.idx.parsed: %d paragraphs, %d palette colors, "
        "%d languages",
        len(index.paragraphs),
        len(index.palette),
        len(index.languages),
    )
    size = resolve_video_size(options.size, index)
    ensure_ffmpeg_available(tools)
    sub_path = find_sub_file(idx_path)

    idx_dir = os.path.dirname(os.path.abspath(idx_path))
    output_dir = options.output_dir or os.path.join(idx_dir, OUTPUT_DIR_NAME)
    synthetic_idx_path = f"{idx_path}{SYNTHETIC_SUFFIX}.idx"
    synthetic_sub_path = f"{idx_path}{SYNTHETIC_SUFFIX}.sub"
    paragraph_count = len(index.paragraphs)

    write_text_file(
        synthetic_idx_path, build_synthetic_idx(index, size, options.fps)
    )
    try:
        shutil.copyfile(sub_path, synthetic_sub_path)
        os.makedirs(output_dir, exist_ok=True)
    except OSError as exc:
        raise VobsubPipelineError(
            OUTPUT_FILE_CODE, f"failed to stage render inputs: {exc}"
        ) from exc

    render_subtitle_frames(
        synthetic_idx_path, output_dir, size, paragraph_count, options.fps, tools
    )
    os.remove(synthetic_idx_path)
    os.remove(synthetic_sub_path)
    discarded_frame = os.path.join(output_dir, frame_file_name(DISCARDED_FRAME_NUMBER))
    if os.path.exists(discarded_frame):
        os.remove(discarded_frame)
    verify_rendered_frames(output_dir, paragraph_count, size)

    windows = build_display_windows(
        index.paragraphs, size, rendered_frame_labels(paragraph_count)
    )
    script_path = os.path.join(output_dir, SCRIPT_FILE_NAME)
    write_text_file(script_path, format_image_script(windows))
    return script_path


def convert(request: ConvertRequest) -> str:
    """Run the full conversion for a video or idx input."""
    kind = classify_input(request.input_path)
    if kind == InputKind.VIDEO:
        idx_path = extract_subtitles(request.input_path, request.track, request.tools)
    else:
        if request.track is not None:
            LOGGER.warning(
                "vobsub_to_encore.input.track_ignored: --track only applies to "
                "video input"
            )
        idx_path = request.input_path
    return process_idx(idx_path, request.options, request.tools)


def parse_args(argv: Sequence[str]) -> ConvertRequest:
    """Parse CLI arguments into a ConvertRequest."""
    parser = argparse.ArgumentParser(
        prog="vobsub_to_encore.py",
        description="Convert dvd subtitles to Adobe Encore image scripts",
    )
    parser.add_argument("file", help="the idx or video file to parse")
    parser.add_argument(
        "-v", "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--size", help="for idx files without a size value: specify video size (WxH)"
    )
    parser.add_argument(
        "--track",
        type=int,
        help="for video files: specify a stream (by index) to extract",
    )
    parser.add_argument(
        "--fps",
        type=int,
        default=DEFAULT_FPS,
        help=f"frame rate of the render pass (default: {DEFAULT_FPS})",
    )
    parser.add_argument(
        "--output-dir",
        default=None,
        help=f"where frames and the script go (default: <idx dir>/{OUTPUT_DIR_NAME})",
    )
    parser.add_argument(
        "--ffmpeg", default=None, help=f"ffmpeg binary (env: {FFMPEG_ENV})"
    )
    parser.add_argument(
        "--ffprobe", default=None, help=f"ffprobe binary (env: {FFPROBE_ENV})"
    )
    parser.add_argument(
        "--mkvextract",
        default=None,
        help=f"mkvextract binary (env: {MKVEXTRACT_ENV})",
    )
    parser.add_argument(
        "--render-timeout",
        type=float,
        default=None,
        help="seconds to wait for the render pass before giving up",
    )

    parsed = parser.parse_args(argv)
    env_tools = load_tool_paths(os.environ, parsed.render_timeout)
    tools = ToolPaths(
        ffmpeg=parsed.ffmpeg or env_tools.ffmpeg,
        ffprobe=parsed.ffprobe or env_tools.ffprobe,
        mkvextract=parsed.mkvextract or env_tools.mkvextract,
        render_timeout_seconds=env_tools.render_timeout_seconds,
    )
    options = ProcessOptions(
        size=parsed.size, fps=parsed.fps, output_dir=parsed.output_dir
    )
    return ConvertRequest(
        input_path=parsed.file, track=parsed.track, options=options, tools=tools
    )


def main() -> int:
    """CLI entrypoint."""
    configure_logging()

    try:
        request = parse_args(sys.argv[1:])
        script_path = convert(request)
        LOGGER.info("vobsub_to_encore.output.script_written: %s", script_path)
        print(script_path)
        return 0
    except VobsubValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except VobsubPipelineError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except Exception as exc:
        LOGGER.error("vobsub_to_encore.unhandled_error: %s", str(exc).strip())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
