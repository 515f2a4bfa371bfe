"""Background music selection for journey videos."""

from __future__ import annotations

import hashlib
import logging
import random
from pathlib import Path
from urllib.parse import unquote, urlparse

import requests

logger = logging.getLogger(__name__)

AUDIO_FORMATS = {".mp3", ".m4a", ".aac", ".ogg", ".opus", ".wav", ".flac"}
MIN_TRACK_BYTES = 100 * 1024
DOWNLOAD_TIMEOUT = 30
USER_AGENT = "Journeys/0.1 (+https://github.com/journeys)"


class MusicProvider:
    """Picks a background track at random from local files and remote URLs.

    Remote tracks are downloaded once into a cache directory and reused.

    Example:
        >>> provider = MusicProvider(music_dir="~/Music/journeys")
        >>> track = provider.pick_random_track()
    """

    def __init__(
        self,
        music_dir: str | Path | None = None,
        urls: list[str] | None = None,
        cache_dir: str | Path | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.music_dir = Path(music_dir).expanduser() if music_dir else None
        self.urls = [u for u in (urls or []) if u]
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self._rng = rng or random.Random()

    def pool(self) -> list[str]:
        """All candidate tracks: local file paths and remote URLs."""
        tracks: list[str] = []
        if self.music_dir is not None and self.music_dir.is_dir():
            tracks.extend(
                str(p) for p in sorted(self.music_dir.iterdir())
                if p.is_file() and p.suffix.lower() in AUDIO_FORMATS
            )
        tracks.extend(self.urls)
        return tracks

    def pick_random_track(self) -> Path | None:
        """Choose a track uniformly at random.

        Returns:
            A local audio file, or None if the pool is empty or the chosen
            remote track could not be downloaded.
        """
        tracks = self.pool()
        if not tracks:
            logger.info("No background tracks configured")
            return None

        choice = self._rng.choice(tracks)
        if choice.startswith(("http://", "https://")):
            return self._ensure_cached(choice)
        return Path(choice)

    def _cache_path(self, url: str) -> Path:
        name = Path(unquote(urlparse(url).path)).name
        if not name or Path(name).suffix.lower() not in AUDIO_FORMATS:
            name = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16] + ".mp3"
        cache_dir = self.cache_dir or Path.home() / ".cache" / "journeys" / "audio"
        return cache_dir / name

    def _ensure_cached(self, url: str) -> Path | None:
        dest = self._cache_path(url)
        if dest.is_file() and dest.stat().st_size > MIN_TRACK_BYTES:
            return dest

        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = dest.with_name(dest.name + ".part")
        logger.info(f"Downloading audio: {url}")

        try:
            with requests.get(
                url,
                stream=True,
                timeout=DOWNLOAD_TIMEOUT,
                headers={"User-Agent": USER_AGENT, "Accept": "audio/mpeg,audio/*;q=0.9,*/*;q=0.1"},
            ) as response:
                content_type = response.headers.get("Content-Type", "")
                expected = response.headers.get("Content-Length")
                if response.status_code != 200:
                    logger.warning(f"Audio download failed: HTTP {response.status_code} for {url}")
                    return None
                if content_type and not content_type.startswith(("audio/", "application/octet-stream")):
                    logger.warning(f"Audio download rejected: content type {content_type!r}")
                    return None

                written = 0
                with open(tmp, "wb") as f:
                    for chunk in response.iter_content(chunk_size=64 * 1024):
                        f.write(chunk)
                        written += len(chunk)
        except (requests.RequestException, OSError) as e:
            logger.warning(f"Audio download failed for {url}: {e}")
            tmp.unlink(missing_ok=True)
            return None

        if written <= MIN_TRACK_BYTES or (expected and expected.isdigit() and written != int(expected)):
            logger.warning(f"Audio download validation failed ({written} bytes) for {url}")
            tmp.unlink(missing_ok=True)
            return None

        tmp.replace(dest)
        logger.info(f"Saved audio cache: {dest} ({written} bytes)")
        return dest
