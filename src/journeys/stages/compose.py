"""Chunked video composition: render a segment plan into one video file.

Long plans are split into chunks that are rendered independently by ffmpeg
and then merged left to right with crossfades, so the renderer never has to
hold more than one chunk's inputs at a time. Chunk size drops when any
input is very large.

Within a chunk every segment becomes a clip of ``hold + transition``
seconds; consecutive clips crossfade at ``hold``-spaced offsets, so a chunk
of n segments lasts ``hold * n + transition`` seconds.
"""

from __future__ import annotations

import logging
import math
import re
import shutil
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from tqdm import tqdm

from journeys.config import Orientation, VideoOptions
from journeys.models.schema import RenderResult
from journeys.stages.music import MusicProvider
from journeys.stages.segments import Motion, RenderSegment, Stack, Still, probe_image_size
from journeys.stages.title import DEFAULT_FONT, prepare_title
from journeys.store.base import FileStorage
from journeys.utils.ffmpeg import FFmpegRunner, OutputObserver

logger = logging.getLogger(__name__)

LARGE_INPUT_PIXELS = 13_000_000
LARGE_INPUT_CHUNK_SIZE = 10
MIN_CHUNK_SIZE = 4
MAX_CHUNK_SIZE = 60

MIN_HOLD = 0.5
MIN_TRANSITION = 0.2
MAX_TRANSITION = 0.8
TRANSITION_SHARE = 0.3

KEN_BURNS_ZOOM_START = 1.0
KEN_BURNS_ZOOM_END = 1.1

STACK_ROWS = 3
STACK_MAX_CENTER_HOLD = 2.0
STACK_MIN_SLIDE = 0.8
STACK_MIN_SLIDE_HALF = 0.4

MOTION_MIN_DURATION = 0.1
MOTION_MAX_DURATION = 30.0
MOTION_MIN_SPEED = 0.5
MOTION_MAX_SPEED = 2.0

AUDIO_FADE_SHARE = 0.08
AUDIO_MIN_FADE = 0.5
AUDIO_MAX_FADE = 5.0

MANAGED_FOLDER = "Documents/Journeys Movies"

ENCODE_ARGS = ["-c:v", "libx264", "-preset", "veryfast", "-crf", "20", "-pix_fmt", "yuv420p"]


class CompositionError(Exception):
    """Error composing a journey video."""

    pass


def _create_render_progress(total_steps: int, disable: bool) -> tqdm:
    """Create a progress bar for render steps."""
    return tqdm(
        total=total_steps,
        desc="Rendering",
        unit="step",
        bar_format="{desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt} steps [{elapsed}<{remaining}]",
        leave=False,
        disable=disable,
    )


def _fmt(value: float) -> str:
    return f"{value:.6f}"


def _even(value: float) -> int:
    return max(2, int(value) - int(value) % 2)


@dataclass(frozen=True)
class Timing:
    """Per-segment timing derived from the configured image duration."""

    hold: float
    transition: float

    @property
    def clip(self) -> float:
        return self.hold + self.transition

    def chunk_duration(self, segment_count: int) -> float:
        return self.hold * segment_count + self.transition


def compute_timing(duration_per_image: float) -> Timing:
    """Derive hold and crossfade durations from the seconds per image."""
    hold = max(MIN_HOLD, duration_per_image)
    transition = min(MAX_TRANSITION, max(MIN_TRANSITION, hold * TRANSITION_SHARE))
    return Timing(hold=hold, transition=transition)


def determine_chunk_size(segment_count: int, max_input_pixels: int) -> int:
    """Segments per chunk: 10 when any input exceeds 13 MP, else all, within [4, 60]."""
    if max_input_pixels > LARGE_INPUT_PIXELS:
        size = LARGE_INPUT_CHUNK_SIZE
    else:
        size = segment_count
    return max(MIN_CHUNK_SIZE, min(MAX_CHUNK_SIZE, size))


@dataclass
class RenderChunk:
    """A contiguous run of segments rendered in one renderer invocation."""

    index: int
    segments: list[RenderSegment]
    first_segment_index: int = 0


def split_into_chunks(segments: Sequence[RenderSegment], chunk_size: int) -> list[RenderChunk]:
    """Split a plan into consecutive chunks of at most ``chunk_size`` segments."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be positive")
    return [
        RenderChunk(index=i, segments=list(segments[start : start + chunk_size]), first_segment_index=start)
        for i, start in enumerate(range(0, len(segments), chunk_size))
    ]


def merged_duration(chunk_durations: Sequence[float], transition: float) -> float:
    """Duration after crossfading all chunks together."""
    if not chunk_durations:
        return 0.0
    return sum(chunk_durations) - (len(chunk_durations) - 1) * transition


def segment_image_paths(segment: RenderSegment) -> list[Path]:
    """Still images a segment reads; motion clips have none."""
    if isinstance(segment, Still):
        return [segment.image_path]
    if isinstance(segment, Stack):
        return list(segment.image_paths)
    if isinstance(segment, Motion):
        return []
    raise TypeError(f"Unknown segment type: {type(segment).__name__}")


def determine_canvas(
    segments: Sequence[RenderSegment],
    sizes: dict[Path, tuple[int, int]],
    long_edge: int,
    orientation: Orientation,
) -> tuple[int, int]:
    """Pick the output frame size.

    Landscape videos are 16:9. Portrait videos follow the aspect ratio of
    the first still, falling back to 9:16; ``long_edge`` sets the longer side.
    """
    long_edge = max(320, long_edge)
    if orientation == Orientation.LANDSCAPE:
        return _even(long_edge), _even(round(long_edge * 9 / 16))

    for segment in segments:
        if isinstance(segment, Still):
            width, height = sizes.get(segment.image_path, (0, 0))
            if width > 0 and height > 0:
                ratio = width / height
                if ratio >= 1:
                    return _even(long_edge), _even(max(320, round(long_edge / ratio)))
                return _even(max(320, round(long_edge * ratio))), _even(long_edge)
            break

    return _even(round(long_edge * 9 / 16)), _even(long_edge)


def _smooth(progress: str) -> str:
    """Smoothstep easing of a 0..1 expression."""
    p = f"min(1,max(0,{progress}))"
    return f"({p}*{p}*(3-2*{p}))"


def ken_burns_filter(
    input_label: str,
    output_label: str,
    direction_index: int,
    timing: Timing,
    width: int,
    height: int,
    fps: int,
) -> str:
    """Pan/zoom a single-frame image input into a clip of ``timing.clip`` seconds.

    Direction cycles by index: left-to-right, right-to-left, top-to-bottom,
    bottom-to-top, zooming from 1.0 to 1.1 throughout.
    """
    frames = max(2, round(timing.clip * fps))
    last = frames - 1
    zoom_step = (KEN_BURNS_ZOOM_END - KEN_BURNS_ZOOM_START) / last
    p = f"(on/{last})"

    direction = direction_index % 4
    if direction == 0:
        x, y = f"(iw-iw/zoom)*{p}", "(ih-ih/zoom)/2"
    elif direction == 1:
        x, y = f"(iw-iw/zoom)*(1-{p})", "(ih-ih/zoom)/2"
    elif direction == 2:
        x, y = "(iw-iw/zoom)/2", f"(ih-ih/zoom)*{p}"
    else:
        x, y = "(iw-iw/zoom)/2", f"(ih-ih/zoom)*(1-{p})"

    return (
        f"[{input_label}]scale={width}:{height}:force_original_aspect_ratio=increase,"
        f"crop={width}:{height},setsar=1,"
        f"zoompan=z='min({KEN_BURNS_ZOOM_START}+{zoom_step:.8f}*on,{KEN_BURNS_ZOOM_END})':"
        f"x='{x}':y='{y}':d={frames}:s={width}x{height}:fps={fps},"
        f"trim=duration={_fmt(timing.clip)},setpts=PTS-STARTPTS,format=yuv420p,settb=AVTB"
        f"[{output_label}]"
    )


def stack_timeline(hold: float) -> tuple[float, float, float]:
    """Slide-in, center pause and slide-out durations for a stack."""
    center_hold = min(STACK_MAX_CENTER_HOLD, max(0.0, hold - STACK_MIN_SLIDE))
    slide = max(STACK_MIN_SLIDE, hold - center_hold)
    slide_in = slide_out = max(STACK_MIN_SLIDE_HALF, slide / 2)
    return slide_in, center_hold, slide_out


def stack_filter(
    input_labels: Sequence[str],
    output_label: str,
    segment_key: str,
    timing: Timing,
    width: int,
    height: int,
    fps: int,
) -> str:
    """Composite three landscape images as rows sliding across the frame.

    The outer rows enter from the left and leave to the right; the middle
    row moves the opposite way.
    """
    row_height = _even(height // STACK_ROWS)
    top = (height - row_height * STACK_ROWS) // 2
    t_in, center, t_out = stack_timeline(timing.hold)
    pause_end = t_in + center

    enter = _smooth(f"t/{_fmt(t_in)}")
    leave = _smooth(f"(t-{_fmt(pause_end)})/{_fmt(t_out)}")
    centered = "(W-w)/2"
    left_to_right = (
        f"if(lt(t,{_fmt(t_in)}),-w+({centered}+w)*{enter},"
        f"if(lt(t,{_fmt(pause_end)}),{centered},{centered}+(W-{centered})*{leave}))"
    )
    right_to_left = (
        f"if(lt(t,{_fmt(t_in)}),W-(W-{centered})*{enter},"
        f"if(lt(t,{_fmt(pause_end)}),{centered},{centered}-({centered}+w)*{leave}))"
    )

    parts = [f"color=c=black:s={width}x{height}:d={_fmt(timing.clip)}:r={fps}[{segment_key}base]"]
    for row, label in enumerate(input_labels):
        parts.append(
            f"[{label}]scale={width}:{row_height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{row_height}:(ow-iw)/2:(oh-ih)/2:black,setsar=1,fps={fps}"
            f"[{segment_key}row{row}]"
        )

    previous = f"{segment_key}base"
    for row in range(STACK_ROWS):
        x = right_to_left if row == 1 else left_to_right
        y = top + row * row_height
        target = output_label if row == STACK_ROWS - 1 else f"{segment_key}ov{row}"
        tail = f",trim=duration={_fmt(timing.clip)},format=yuv420p,settb=AVTB" if row == STACK_ROWS - 1 else ""
        parts.append(
            f"[{previous}][{segment_key}row{row}]overlay=x='{x}':y={y}:shortest=1:eof_action=pass{tail}[{target}]"
        )
        previous = target

    return ";".join(parts)


def motion_filter(
    input_label: str,
    output_label: str,
    clip_duration: float,
    timing: Timing,
    width: int,
    height: int,
    fps: int,
) -> str:
    """Fit a motion clip to the segment length.

    The clip is time-stretched toward ``hold`` (between 0.5x and 2x speed)
    and its last frame frozen to fill the rest of the segment.
    """
    duration = min(MOTION_MAX_DURATION, max(MOTION_MIN_DURATION, clip_duration))
    factor = min(MOTION_MAX_SPEED, max(MOTION_MIN_SPEED, timing.hold / duration))
    stretched = duration * factor
    pad_frames = max(0, math.ceil((timing.clip - stretched) * fps))

    return (
        f"[{input_label}]trim=duration={_fmt(duration)},setpts={factor:.6f}*(PTS-STARTPTS),"
        f"scale={width}:{height}:force_original_aspect_ratio=increase,crop={width}:{height},"
        f"setsar=1,fps={fps},tpad=stop_mode=clone:stop={pad_frames},"
        f"trim=duration={_fmt(timing.clip)},setpts=PTS-STARTPTS,format=yuv420p,settb=AVTB"
        f"[{output_label}]"
    )


@dataclass
class ChunkGraph:
    """Inputs and filter graph for one chunk render."""

    input_args: list[str] = field(default_factory=list)
    filters: list[str] = field(default_factory=list)
    duration: float = 0.0

    @property
    def filter_complex(self) -> str:
        return ";".join(self.filters)

    def render_args(self, output: Path, fps: int) -> list[str]:
        return [
            *self.input_args,
            "-filter_complex", self.filter_complex,
            "-map", "[vout]",
            "-an",
            *ENCODE_ARGS,
            "-r", str(fps),
            "-movflags", "+faststart",
            str(output),
        ]


def build_chunk_graph(
    chunk: RenderChunk,
    timing: Timing,
    width: int,
    height: int,
    fps: int,
    motion_durations: dict[Path, float] | None = None,
    title_filter: str | None = None,
) -> ChunkGraph:
    """Describe one chunk as ffmpeg inputs plus a filter graph ending in ``[vout]``.

    Args:
        chunk: The chunk to render.
        timing: Segment timing.
        width: Output width.
        height: Output height.
        fps: Output frame rate.
        motion_durations: Probed durations of motion clips.
        title_filter: drawtext filter for the very first segment, if any.

    Returns:
        The chunk's graph.
    """
    motion_durations = motion_durations or {}
    graph = ChunkGraph(duration=timing.chunk_duration(len(chunk.segments)))
    labels: list[str] = []
    input_index = 0

    for position, segment in enumerate(chunk.segments):
        key = f"s{position}"
        global_index = chunk.first_segment_index + position

        if isinstance(segment, Still):
            graph.input_args += ["-i", str(segment.image_path)]
            graph.filters.append(
                ken_burns_filter(f"{input_index}:v", key, global_index, timing, width, height, fps)
            )
            input_index += 1
        elif isinstance(segment, Stack):
            row_labels = []
            for path in segment.image_paths:
                graph.input_args += [
                    "-loop", "1",
                    "-framerate", str(fps),
                    "-t", _fmt(timing.clip),
                    "-i", str(path),
                ]
                row_labels.append(f"{input_index}:v")
                input_index += 1
            graph.filters.append(stack_filter(row_labels, key, key, timing, width, height, fps))
        elif isinstance(segment, Motion):
            graph.input_args += ["-i", str(segment.video_path)]
            clip_duration = motion_durations.get(segment.video_path, 0.0) or timing.hold
            graph.filters.append(
                motion_filter(f"{input_index}:v", key, clip_duration, timing, width, height, fps)
            )
            input_index += 1
        else:
            raise TypeError(f"Unknown segment type: {type(segment).__name__}")

        labels.append(key)

    if title_filter and chunk.index == 0 and labels:
        graph.filters.append(f"[{labels[0]}]{title_filter}[{labels[0]}t]")
        labels[0] = f"{labels[0]}t"

    previous = labels[0]
    for position in range(1, len(labels)):
        out = f"x{position}"
        graph.filters.append(
            f"[{previous}][{labels[position]}]xfade=transition=fade:"
            f"duration={_fmt(timing.transition)}:offset={_fmt(timing.hold * position)}[{out}]"
        )
        previous = out

    graph.filters.append(f"[{previous}]trim=duration={_fmt(graph.duration)},format=yuv420p[vout]")
    return graph


def sanitize_file_name(name: str) -> str:
    """Reduce a journey name to a safe file name."""
    cleaned = re.sub(r"[^A-Za-z0-9.\-_ ()]", "", name)
    cleaned = re.sub(r"\s+", " ", cleaned).strip(" .")
    return cleaned


def build_output_file_name(preferred: str | None, now: datetime | None = None) -> str:
    """``"<sanitized name> YYYYMMDD-HHMMSS.mp4"``, defaulting the name to ``Journey``."""
    now = now or datetime.now()
    base = sanitize_file_name(preferred or "") or "Journey"
    return f"{base} {now:%Y%m%d-%H%M%S}.mp4"


class ChunkedVideoComposer:
    """Renders segment plans to video with ffmpeg.

    Example:
        >>> composer = ChunkedVideoComposer(FFmpegRunner(), music=MusicProvider("music/"))
        >>> result = composer.compose(segments, working_dir, VideoOptions(), output_path=Path("trip.mp4"))
    """

    def __init__(
        self,
        runner: FFmpegRunner | None = None,
        music: MusicProvider | None = None,
        storage: FileStorage | None = None,
        title_font: str | None = DEFAULT_FONT,
        show_progress: bool = True,
    ) -> None:
        self.runner = runner or FFmpegRunner()
        self.music = music
        self.storage = storage
        self.title_font = title_font
        self.show_progress = show_progress

    def compose(
        self,
        segments: Sequence[RenderSegment],
        working_dir: Path,
        options: VideoOptions | None = None,
        title: str | None = None,
        output_path: Path | None = None,
        user_id: str | None = None,
        preferred_file_name: str | None = None,
        on_output: OutputObserver | None = None,
    ) -> RenderResult:
        """Render segments into a single video.

        Args:
            segments: Planned segments in display order.
            working_dir: Private temporary directory for intermediate clips.
            options: Render options.
            title: Journey name for the title overlay.
            output_path: Explicit output file; otherwise the video is stored
                in the user's managed storage.
            user_id: Owner, required when storing in managed storage.
            preferred_file_name: Base of the stored file name.
            on_output: Observer for renderer progress and diagnostics.

        Returns:
            RenderResult describing the written video.

        Raises:
            CompositionError: If there is nothing to render or nowhere to put it.
            RenderError: If an ffmpeg invocation fails.
        """
        options = options or VideoOptions()
        if not segments:
            raise CompositionError("No segments to render")
        if output_path is None and (self.storage is None or user_id is None):
            raise CompositionError("An output path or a user's managed storage is required")

        working_dir.mkdir(parents=True, exist_ok=True)
        timing = compute_timing(options.duration_per_image)

        sizes: dict[Path, tuple[int, int]] = {}
        for segment in segments:
            for path in segment_image_paths(segment):
                if path not in sizes:
                    sizes[path] = probe_image_size(path)
        max_pixels = max((w * h for w, h in sizes.values()), default=0)

        width, height = determine_canvas(segments, sizes, options.width, options.orientation)
        chunk_size = determine_chunk_size(len(segments), max_pixels)
        chunks = split_into_chunks(segments, chunk_size)

        motion_durations = {
            segment.video_path: self.runner.probe_duration(segment.video_path)
            for segment in segments
            if isinstance(segment, Motion)
        }

        title_filter = None
        if title and options.show_title:
            title_filter = prepare_title(title, width, working_dir, font_file=self.title_font)

        logger.info(
            f"Composing {len(segments)} segments at {width}x{height}@{options.fps}fps "
            f"in {len(chunks)} chunk(s) of up to {chunk_size} (largest input {max_pixels / 1e6:.1f} MP)"
        )

        temp_files: list[Path] = []
        pbar = _create_render_progress(len(chunks) * 2, disable=not self.show_progress)

        try:
            clips: list[tuple[Path, float]] = []
            for chunk in chunks:
                pbar.set_description(f"Rendering chunk {chunk.index + 1}/{len(chunks)}")
                out = working_dir / f"chunk_{chunk.index:03d}.mp4"
                temp_files.append(out)
                graph = build_chunk_graph(
                    chunk, timing, width, height, options.fps, motion_durations, title_filter
                )
                self.runner.run(
                    graph.render_args(out, options.fps),
                    total_duration=graph.duration,
                    on_output=on_output,
                    description=f"chunk {chunk.index + 1}/{len(chunks)}",
                    verbose=options.renderer_verbose,
                )
                clips.append((out, graph.duration))
                pbar.update(1)

            video, duration = self._merge_clips(
                clips, timing, working_dir, options.fps, temp_files, on_output, pbar, options.renderer_verbose
            )

            pbar.set_description("Mixing audio")
            final = working_dir / "journey_final.mp4"
            temp_files.append(final)
            track = self.music.pick_random_track() if (options.include_audio and self.music) else None
            if track is not None:
                self._mux_audio(video, track, duration, final, on_output, options.renderer_verbose)
            else:
                shutil.move(str(video), final)
            pbar.update(pbar.total - pbar.n)

            path, stored = self._place_output(final, output_path, user_id, preferred_file_name)
        finally:
            pbar.close()
            for temp in temp_files:
                temp.unlink(missing_ok=True)

        logger.info(f"Journey video written to {path} ({duration:.1f}s)")
        return RenderResult(
            path=path,
            stored_in_user_files=stored,
            duration=duration,
            segment_count=len(segments),
            chunk_count=len(chunks),
            width=width,
            height=height,
            audio_track=str(track) if track is not None else None,
        )

    def _merge_clips(
        self,
        clips: list[tuple[Path, float]],
        timing: Timing,
        working_dir: Path,
        fps: int,
        temp_files: list[Path],
        on_output: OutputObserver | None,
        pbar: tqdm,
        verbose: bool = False,
    ) -> tuple[Path, float]:
        """Crossfade clips together left to right, deleting consumed clips."""
        acc_path, acc_duration = clips[0]

        for index, (path, duration) in enumerate(clips[1:], start=1):
            pbar.set_description(f"Merging chunk {index + 1}/{len(clips)}")
            out = working_dir / f"chunk_merge_{index:03d}.mp4"
            temp_files.append(out)
            offset = acc_duration - timing.transition
            new_duration = acc_duration + duration - timing.transition

            self.runner.run(
                [
                    "-i", str(acc_path),
                    "-i", str(path),
                    "-filter_complex",
                    "[0:v]settb=AVTB[a];[1:v]settb=AVTB[b];"
                    f"[a][b]xfade=transition=fade:duration={_fmt(timing.transition)}:"
                    f"offset={_fmt(offset)},format=yuv420p[vout]",
                    "-map", "[vout]",
                    "-an",
                    *ENCODE_ARGS,
                    "-r", str(fps),
                    "-movflags", "+faststart",
                    str(out),
                ],
                total_duration=new_duration,
                on_output=on_output,
                description=f"merge {index}/{len(clips) - 1}",
                verbose=verbose,
            )

            acc_path.unlink(missing_ok=True)
            path.unlink(missing_ok=True)
            acc_path, acc_duration = out, new_duration
            pbar.update(1)

        return acc_path, acc_duration

    def _mux_audio(
        self,
        video: Path,
        track: Path,
        duration: float,
        output: Path,
        on_output: OutputObserver | None,
        verbose: bool = False,
    ) -> None:
        """Loop, trim and fade a track under the video, copying the video stream."""
        fade = min(AUDIO_MAX_FADE, max(AUDIO_MIN_FADE, duration * AUDIO_FADE_SHARE))
        fade_start = max(0.0, duration - fade)
        self.runner.run(
            [
                "-i", str(video),
                "-stream_loop", "-1",
                "-i", str(track),
                "-filter_complex",
                f"[1:a]atrim=0:{_fmt(duration)},asetpts=PTS-STARTPTS,"
                f"afade=t=out:st={_fmt(fade_start)}:d={_fmt(fade)}[aout]",
                "-map", "0:v:0",
                "-map", "[aout]",
                "-c:v", "copy",
                "-c:a", "aac",
                "-b:a", "192k",
                "-shortest",
                "-movflags", "+faststart",
                str(output),
            ],
            total_duration=duration,
            on_output=on_output,
            description="audio mux",
            verbose=verbose,
        )

    def _place_output(
        self,
        final: Path,
        output_path: Path | None,
        user_id: str | None,
        preferred_file_name: str | None,
    ) -> tuple[str, bool]:
        if output_path is not None:
            output_path = Path(output_path)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(final), output_path)
            return str(output_path), False

        if self.storage is None or user_id is None:
            raise CompositionError("An output path or a user's managed storage is required")
        file_name = build_output_file_name(preferred_file_name)
        stem = file_name[: -len(".mp4")]
        attempt = 2
        while self.storage.exists(user_id, f"{MANAGED_FOLDER}/{file_name}"):
            file_name = f"{stem}-{attempt}.mp4"
            attempt += 1

        virtual_path = self.storage.store_file(user_id, MANAGED_FOLDER, file_name, final)
        return virtual_path, True
