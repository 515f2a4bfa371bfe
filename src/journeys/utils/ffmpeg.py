"""External renderer invocation: ffmpeg/ffprobe process management.

Renders are long-running, so the runner streams the renderer's progress and
diagnostic output to an observer as it arrives instead of buffering it, and
runs every invocation in its own process group so a job can be cancelled by
terminating the whole group.
"""

from __future__ import annotations

import json
import logging
import os
import signal
import subprocess
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

OutputObserver = Callable[[str, str], None]
"""Observer called with ``(stream, line)``; ``stream`` is ``"progress"`` or ``"stderr"``."""

INSTALL_HINT = (
    "ffmpeg not found. Please install FFmpeg:\n"
    "  Ubuntu/Debian: sudo apt install ffmpeg\n"
    "  macOS: brew install ffmpeg\n"
    "  Windows: choco install ffmpeg"
)

# Progress keys that carry no information for an observer
SUPPRESSED_PROGRESS_KEYS = {
    "frame",
    "fps",
    "stream_0_0_q",
    "bitrate",
    "total_size",
    "out_time",
    "out_time_us",
    "dup_frames",
    "drop_frames",
    "speed",
}

SUPPRESSED_STDERR_FRAGMENTS = (
    "deprecated pixel format used",
    "Past duration",
)

MISSING_RENDERER_PATTERNS = (
    "ffmpeg: not found",
    "ffmpeg: command not found",
    "ffprobe: not found",
    "ffprobe: command not found",
    "No such file or directory: 'ffmpeg'",
    "No such file or directory: 'ffprobe'",
)


class RenderError(Exception):
    """External renderer invocation failed."""

    def __init__(self, message: str, diagnostics: str = "") -> None:
        super().__init__(message)
        self.diagnostics = diagnostics

    def __str__(self) -> str:
        message = super().__str__()
        if self.diagnostics:
            return f"{message}\n{self.diagnostics.strip()}"
        return message


class RendererNotInstalledError(RenderError):
    """The renderer binary is missing from this system."""

    pass


@dataclass
class ProgressState:
    """Parsed state of an ffmpeg ``-progress`` stream."""

    total_duration: float | None = None
    percent: float = 0.0
    finished: bool = False
    extra: dict[str, str] = field(default_factory=dict)

    def feed(self, line: str) -> str | None:
        """Consume one ``key=value`` progress line.

        Args:
            line: Raw line from the renderer's stdout.

        Returns:
            A human-readable progress line to forward, or None if the line
            should be suppressed.
        """
        line = line.strip()
        if "=" not in line:
            return line or None

        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip()

        if key == "out_time_ms":
            try:
                # Despite its name ffmpeg reports microseconds here
                seconds = int(value) / 1_000_000
            except ValueError:
                return None
            if self.total_duration and self.total_duration > 0:
                self.percent = min(100.0, max(0.0, seconds / self.total_duration * 100))
                return f"progress {self.percent:5.1f}%"
            return f"progress {seconds:.1f}s"

        if key == "progress":
            if value == "end":
                self.finished = True
                self.percent = 100.0
                return "progress 100.0%"
            return None

        if key in SUPPRESSED_PROGRESS_KEYS:
            return None

        self.extra[key] = value
        return line


def is_suppressed_stderr(line: str) -> bool:
    """Check whether a diagnostic line is known renderer noise."""
    return any(fragment in line for fragment in SUPPRESSED_STDERR_FRAGMENTS)


def looks_like_missing_renderer(diagnostics: str) -> bool:
    """Check whether diagnostic text reports a missing renderer binary."""
    return any(pattern in diagnostics for pattern in MISSING_RENDERER_PATTERNS)


class FFmpegRunner:
    """Runs ffmpeg and ffprobe as child processes.

    Example:
        >>> runner = FFmpegRunner()
        >>> runner.run(["-i", "in.mp4", "out.mp4"], total_duration=12.0)
    """

    def __init__(
        self,
        ffmpeg: str = "ffmpeg",
        ffprobe: str = "ffprobe",
        verbose: bool = False,
    ) -> None:
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.verbose = verbose
        self._process: subprocess.Popen | None = None
        self._lock = threading.Lock()

    def build_command(self, args: Sequence[str], verbose: bool | None = None) -> list[str]:
        """Prefix renderer arguments with the binary and the common flags.

        ``verbose`` overrides the runner default for this command only.
        """
        if verbose is None:
            verbose = self.verbose
        cmd = [self.ffmpeg, "-y", "-hide_banner"]
        if verbose:
            cmd += ["-loglevel", "info"]
        else:
            cmd += ["-nostats", "-loglevel", "error"]
        cmd += ["-progress", "pipe:1"]
        return cmd + [str(a) for a in args]

    def run(
        self,
        args: Sequence[str],
        total_duration: float | None = None,
        on_output: OutputObserver | None = None,
        description: str = "ffmpeg",
        verbose: bool | None = None,
    ) -> None:
        """Run ffmpeg with the given arguments.

        Args:
            args: Arguments following the common flags (inputs, graph, output).
            total_duration: Expected output duration, for progress percentages.
            on_output: Observer for progress and diagnostic lines.
            description: Short label used in logs and error messages.
            verbose: Pass renderer log output through; None uses the runner default.

        Raises:
            RendererNotInstalledError: If ffmpeg is not installed.
            RenderError: If ffmpeg exits non-zero.
        """
        self.run_command(
            self.build_command(args, verbose=verbose),
            total_duration=total_duration,
            on_output=on_output,
            description=description,
        )

    def run_command(
        self,
        cmd: Sequence[str],
        total_duration: float | None = None,
        on_output: OutputObserver | None = None,
        description: str = "ffmpeg",
    ) -> None:
        """Run a full renderer command line, streaming its output.

        Stdout is parsed as an ffmpeg ``-progress`` stream; stderr is
        collected as diagnostics. Both are forwarded line by line to
        ``on_output`` while the process runs.

        Raises:
            RendererNotInstalledError: If the binary cannot be executed or
                the diagnostics report it missing.
            RenderError: If the process exits non-zero.
        """
        logger.debug(f"Running {description}: {' '.join(str(c) for c in cmd)}")

        try:
            process = subprocess.Popen(
                [str(c) for c in cmd],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise RendererNotInstalledError(INSTALL_HINT) from e

        with self._lock:
            self._process = process

        stderr_lines: list[str] = []

        def _drain_stderr() -> None:
            assert process.stderr is not None
            for raw in process.stderr:
                line = raw.rstrip("\n")
                stderr_lines.append(raw)
                if on_output is not None and line and not is_suppressed_stderr(line):
                    on_output("stderr", line)

        reader = threading.Thread(target=_drain_stderr, daemon=True)
        reader.start()

        progress = ProgressState(total_duration=total_duration)
        try:
            assert process.stdout is not None
            for raw in process.stdout:
                forwarded = progress.feed(raw)
                if on_output is not None and forwarded:
                    on_output("progress", forwarded)
            returncode = process.wait()
        except BaseException:
            self._kill_group(process)
            raise
        finally:
            reader.join(timeout=5)
            with self._lock:
                self._process = None

        diagnostics = "".join(stderr_lines)
        if returncode != 0:
            if looks_like_missing_renderer(diagnostics):
                raise RendererNotInstalledError(INSTALL_HINT, diagnostics=diagnostics)
            raise RenderError(f"{description} failed (exit code {returncode})", diagnostics=diagnostics)

    def terminate(self) -> None:
        """Terminate the running renderer process group, if any."""
        with self._lock:
            process = self._process
        if process is not None:
            self._kill_group(process)

    @staticmethod
    def _kill_group(process: subprocess.Popen) -> None:
        if process.poll() is not None:
            return
        try:
            os.killpg(process.pid, signal.SIGTERM)
            process.wait(timeout=5)
        except ProcessLookupError:
            return
        except subprocess.TimeoutExpired:
            logger.warning("Renderer did not exit after SIGTERM, killing process group")
            try:
                os.killpg(process.pid, signal.SIGKILL)
            except ProcessLookupError:
                return
            process.wait()

    def probe_duration(self, source: str | Path) -> float:
        """Read a media file's duration with ffprobe.

        Returns:
            Duration in seconds, or 0.0 if it cannot be determined.
        """
        cmd = [
            self.ffprobe,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "json",
            str(source),
        ]

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=5,
            )
        except FileNotFoundError as e:
            raise RendererNotInstalledError(INSTALL_HINT.replace("ffmpeg not", "ffprobe not")) from e
        except subprocess.TimeoutExpired:
            logger.warning(f"ffprobe timed out reading: {source}")
            return 0.0

        if result.returncode != 0:
            logger.warning(f"ffprobe failed for {source}: {result.stderr.strip()}")
            return 0.0

        try:
            data = json.loads(result.stdout)
            return float(data.get("format", {}).get("duration", 0.0))
        except (json.JSONDecodeError, TypeError, ValueError):
            return 0.0

    def version(self, binary: str | None = None) -> str | None:
        """Return the first line of ``<binary> -version``, or None if unavailable."""
        binary = binary or self.ffmpeg
        try:
            result = subprocess.run(
                [binary, "-version"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired):
            return None
        if result.returncode != 0 or not result.stdout:
            return None
        return result.stdout.splitlines()[0].strip()
