"""Utility functions for tonynv-image."""

from __future__ import annotations

import base64
import os
import secrets
import shutil
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Iterable, List

try:
    import requests  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("requests is required but not installed") from exc

from imagegen.constants import (
    _LOG_VERBOSE,
    ANSI_ESCAPE_RE,
    PASSWORD_BYTES,
)
from imagegen.exceptions import DownloadError

USER_AGENT = "tonynv-image/1.0"
DOWNLOAD_TIMEOUT = 60


def log(level: str, message: str) -> None:
    """Lightweight structured logging with coloured level prefixes."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def generate_password() -> str:
    """Return a random password equivalent to ``openssl rand -base64 12``."""
    return base64.b64encode(secrets.token_bytes(PASSWORD_BYTES)).decode("ascii")


def missing_tools(tools: Iterable[str]) -> List[str]:
    return [tool for tool in tools if shutil.which(tool) is None]


def kvm_available() -> bool:
    """Return True if /dev/kvm exists and can be opened."""
    kvm_path = Path("/dev/kvm")
    if not kvm_path.exists():
        return False
    try:
        fd = os.open(kvm_path, os.O_RDONLY)
    except OSError:
        return False
    else:
        os.close(fd)
        return True


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE_RE.sub("", text)


def download_file(url: str, destination: Path, label: str = "Downloading") -> None:
    """Stream ``url`` into ``destination`` with a progress line.

    The payload lands in a temporary file next to the destination and is
    renamed into place only once complete, so an interrupted transfer never
    leaves a truncated file at ``destination``.
    """
    log("INFO", f"{label}: {url}")
    try:
        response = requests.get(
            url,
            stream=True,
            timeout=DOWNLOAD_TIMEOUT,
            headers={"User-Agent": USER_AGENT},
        )
        response.raise_for_status()
    except requests.HTTPError as exc:
        status = exc.response.status_code if exc.response is not None else "?"
        raise DownloadError(f"HTTP error downloading {url}: {status}") from exc
    except requests.RequestException as exc:
        raise DownloadError(f"Failed to download {url}: {exc}") from exc

    total = response.headers.get("Content-Length")
    total_bytes = int(total) if total else None
    downloaded = 0
    start_time = time.time()

    try:
        tmp = tempfile.NamedTemporaryFile(delete=False, dir=destination.parent, prefix=".part-")
    except OSError as exc:
        response.close()
        raise DownloadError(f"Cannot write to {destination.parent}: {exc}") from exc
    tmp_path = Path(tmp.name)
    try:
        with tmp, response:
            for chunk in response.iter_content(chunk_size=1024 * 256):
                if not chunk:
                    continue
                tmp.write(chunk)
                downloaded += len(chunk)

                elapsed = time.time() - start_time
                speed = downloaded / elapsed if elapsed > 0 else 0
                downloaded_mb = downloaded / (1024 * 1024)
                if total_bytes:
                    total_mb = total_bytes / (1024 * 1024)
                    pct = downloaded * 100 / total_bytes
                    bar_len = 30
                    filled = int(bar_len * downloaded / total_bytes)
                    bar = "#" * filled + "-" * (bar_len - filled)
                    print(
                        f"\r  [{bar}] {pct:5.1f}% {downloaded_mb:.1f}/{total_mb:.1f} MiB "
                        f"({speed / (1024 * 1024):.1f} MiB/s)",
                        end="", flush=True,
                    )
                else:
                    print(
                        f"\r  {downloaded_mb:.1f} MiB downloaded ({speed / (1024 * 1024):.1f} MiB/s)",
                        end="", flush=True,
                    )
        print(flush=True)  # newline after progress
        if total_bytes is not None and downloaded != total_bytes:
            raise DownloadError(f"Incomplete download of {url}: got {downloaded} of {total_bytes} bytes")
        tmp_path.replace(destination)
    except requests.RequestException as exc:
        tmp_path.unlink(missing_ok=True)
        raise DownloadError(f"Failed to download {url}: {exc}") from exc
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise DownloadError(f"Failed to write {destination}: {exc}") from exc
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    elapsed = time.time() - start_time
    log("SUCCESS", f"Downloaded {downloaded / (1024 * 1024):.1f} MiB in {elapsed:.1f}s")


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result
