"""Utility functions for Journeys."""

from journeys.utils.ffmpeg import FFmpegRunner, RenderError, RendererNotInstalledError
from journeys.utils.logging import get_logger
from journeys.utils.tools import detect_renderer

__all__ = [
    "FFmpegRunner",
    "RenderError",
    "RendererNotInstalledError",
    "detect_renderer",
    "get_logger",
]
