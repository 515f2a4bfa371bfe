"""Title overlay formatting for journey videos."""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path

DEFAULT_FONT = "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"
TITLE_DURATION = 4.0
FADE_DURATION = 0.5
SHADOW_OFFSET = 3


@dataclass
class TextMetrics:
    """Font size and wrap width for a title."""

    font_size: int
    max_chars_per_line: int


def calculate_text_metrics(video_width: int, target_width_percent: float = 0.8) -> TextMetrics:
    """Size a title to fit within a share of the frame width.

    The font is 5% of the frame width (at least 32px); characters are
    estimated at 60% of the font size for a bold face.
    """
    font_size = max(32, int(video_width * 0.05))
    avg_char_width = font_size * 0.6
    max_chars = max(10, math.floor(video_width * target_width_percent / avg_char_width))
    return TextMetrics(font_size=font_size, max_chars_per_line=max_chars)


def wrap_text(text: str, max_chars_per_line: int = 25) -> str:
    """Wrap a title at word boundaries, always breaking after ``" - "``."""
    if len(text) <= max_chars_per_line:
        return text

    segments = text.split(" - ")
    lines: list[str] = []

    for index, segment in enumerate(segments):
        current = ""
        for word in segment.split():
            candidate = word if not current else f"{current} {word}"
            if len(candidate) <= max_chars_per_line:
                current = candidate
            else:
                if current:
                    lines.append(current)
                current = word

        if index < len(segments) - 1:
            current += " -"
        if current:
            lines.append(current)

    return "\n".join(lines)


def escape_filter_value(value: str) -> str:
    """Escape a value for use as a filter option inside a filtergraph."""
    for char in ("\\", ":", "'", ",", ";", "[", "]"):
        value = value.replace(char, "\\" + char)
    return value


def _fmt(value: float) -> str:
    return f"{value:.6f}"


def build_drawtext_filter(
    text_file: Path,
    font_size: int,
    duration: float = TITLE_DURATION,
    shadow_offset: int = SHADOW_OFFSET,
    font_file: str | None = DEFAULT_FONT,
) -> str:
    """Build a centered drawtext filter that fades in and out.

    The title is read from ``text_file`` with expansion disabled, so the
    journey name needs no escaping.

    Args:
        text_file: File holding the (already wrapped) title text.
        font_size: Font size in pixels.
        duration: Seconds the title is visible, including fades.
        shadow_offset: Drop shadow offset in pixels.
        font_file: TrueType font; falls back to fontconfig's Sans if missing.

    Returns:
        A drawtext filter without input/output labels.
    """
    if font_file and Path(font_file).exists():
        font = f"fontfile={escape_filter_value(str(font_file))}"
    else:
        font = "font=Sans"

    fade_out_start = duration - FADE_DURATION
    d = _fmt(duration)
    fade = _fmt(FADE_DURATION)
    alpha = (
        f"if(lt(t,{fade}),t/{fade},if(lt(t,{_fmt(fade_out_start)}),1,"
        f"if(lt(t,{d}),({d}-t)/{fade},0)))"
    )

    return (
        f"drawtext={font}:textfile={escape_filter_value(str(text_file))}:expansion=none:"
        f"fontcolor=white:fontsize={font_size}:line_spacing={font_size // 4}:"
        f"x=(w-text_w)/2:y=(h-text_h)/2:"
        f"shadowcolor=black:shadowx={shadow_offset}:shadowy={shadow_offset}:"
        f"enable='between(t,0,{d})':alpha='{alpha}'"
    )


def prepare_title(title: str, video_width: int, working_dir: Path, font_file: str | None = DEFAULT_FONT) -> str:
    """Wrap a title, write it to the working dir and return its drawtext filter."""
    metrics = calculate_text_metrics(video_width)
    wrapped = wrap_text(title, metrics.max_chars_per_line)
    text_file = working_dir / "title.txt"
    text_file.write_text(wrapped, encoding="utf-8")
    return build_drawtext_filter(text_file, metrics.font_size, font_file=font_file)
