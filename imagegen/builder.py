"""Image build pipeline for tonynv-image."""

from __future__ import annotations

import signal
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from imagegen.cache import ImageCache
from imagegen.cloudconfig import write_documents
from imagegen.constants import CACHE_DIR, OUTPUT_DIR
from imagegen.customize import customize_image
from imagegen.models import BuildRequest
from imagegen.utils import log


@contextmanager
def scoped_workdir() -> Iterator[Path]:
    """Yield a private temporary directory removed on every exit path.

    SIGTERM is converted into SystemExit while the directory is alive so the
    cleanup runs for ``kill`` as well as for Ctrl+C and ordinary errors.
    """

    def _terminate(signum, frame):
        log("WARN", "SIGTERM received, aborting build")
        raise SystemExit(128 + signum)

    prev_sigterm = signal.signal(signal.SIGTERM, _terminate)
    try:
        with tempfile.TemporaryDirectory(prefix="tonynv-image-") as tmpdir:
            yield Path(tmpdir)
    finally:
        signal.signal(signal.SIGTERM, prev_sigterm)


def build_image(
    request: BuildRequest,
    cache_dir: Path = CACHE_DIR,
    output_dir: Path = OUTPUT_DIR,
    refresh: bool = False,
    cache: Optional[ImageCache] = None,
) -> Path:
    """Run download, render and customize for ``request``; return the output image."""
    cache = cache or ImageCache(cache_dir)

    log("INFO", "[1/3] Downloading base image...")
    base_image = cache.ensure(request.distro, refresh=refresh)

    with scoped_workdir() as workdir:
        log("INFO", "[2/3] Building cloud-init config...")
        user_data, meta_data = write_documents(request, workdir)

        log("INFO", "[3/3] Customizing image...")
        output_image = customize_image(request.distro, base_image, user_data, meta_data, output_dir)

    log("SUCCESS", f"Image ready: {output_image}")
    return output_image
