"""Base image cache for tonynv-image."""

from __future__ import annotations

from pathlib import Path

from imagegen.constants import CACHE_DIR
from imagegen.exceptions import DownloadError
from imagegen.models import Distro
from imagegen.utils import download_file, ensure_directory, log


class ImageCache:
    """Map a distro to a locally cached vendor cloud image.

    Entries are keyed by the basename of the distro's source URL and are
    never refreshed unless explicitly asked; an upstream image replaced at
    the same URL keeps being served from the cache.
    """

    def __init__(self, cache_dir: Path = CACHE_DIR) -> None:
        self.cache_dir = cache_dir

    def path_for(self, distro: Distro) -> Path:
        return self.cache_dir / distro.image_filename

    def is_cached(self, distro: Distro) -> bool:
        path = self.path_for(distro)
        return path.is_file() and path.stat().st_size > 0

    def ensure(self, distro: Distro, refresh: bool = False) -> Path:
        """Return the cached base image for ``distro``, downloading it if needed.

        A refresh downloads over the existing entry; the old image stays in
        place until the new one is complete.
        """
        cached = self.path_for(distro)
        try:
            ensure_directory(self.cache_dir)
            if not refresh and self.is_cached(distro):
                log("INFO", f"Using cached image: {cached.name}")
                return cached
            if cached.exists() and cached.stat().st_size == 0:
                log("WARN", f"Discarding empty cached image {cached.name}")
                cached.unlink()
        except OSError as exc:
            raise DownloadError(f"Cannot use cache directory {self.cache_dir}: {exc}") from exc
        if refresh and cached.exists():
            log("INFO", f"Refreshing cached image {cached.name}")
        download_file(distro.url, cached, label=f"Downloading {distro.label} cloud image")
        return cached
