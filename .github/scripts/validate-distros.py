#!/usr/bin/env python3
"""Validate the built-in distro table: descriptor sanity and URL reachability."""

from __future__ import annotations

import re
import sys
from pathlib import Path

import requests

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from imagegen.models import Distro  # noqa: E402

URL_RE = re.compile(r"^https?://")
REQUEST_TIMEOUT = 30
USER_AGENT = "tonynv-image/distro-validator (GitHub Actions)"


# ── Phase 1: Descriptor validation (fail-fast) ──────────────────────


def validate_table() -> list[str]:
    errors: list[str] = []
    seen_files: dict[str, str] = {}

    for distro in Distro:
        if not distro.label:
            errors.append(f"[{distro.key}] empty label")
        if not URL_RE.match(distro.url):
            errors.append(f"[{distro.key}] url must start with http:// or https://")
            continue
        filename = distro.image_filename
        if not filename:
            errors.append(f"[{distro.key}] url has no file name to cache under")
        elif filename in seen_files:
            errors.append(f"[{distro.key}] cache file {filename} collides with {seen_files[filename]}")
        else:
            seen_files[filename] = distro.key

    return errors


# ── Phase 2: URL reachability (collect-all) ──────────────────────────


def check_url(key: str, url: str) -> str | None:
    """Return an error string if the URL is unreachable, else None."""
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT

    try:
        resp = session.head(url, timeout=REQUEST_TIMEOUT, allow_redirects=True)
        if resp.status_code < 400:
            return None
        # Some mirrors reject HEAD; fall back to GET with streaming
        if resp.status_code in (403, 405):
            resp = session.get(url, timeout=REQUEST_TIMEOUT, allow_redirects=True, stream=True)
            resp.close()
            if resp.status_code < 400:
                return None
        return f"[{key}] HTTP {resp.status_code} for {url}"
    except requests.RequestException as exc:
        return f"[{key}] {exc.__class__.__name__}: {exc} for {url}"


def validate_urls() -> list[str]:
    errors: list[str] = []
    for distro in Distro:
        err = check_url(distro.key, distro.url)
        if err:
            errors.append(err)
    return errors


# ── Main ─────────────────────────────────────────────────────────────


def main() -> int:
    distro_count = len(Distro)

    print("=== Phase 1: Descriptor validation ===")
    table_errors = validate_table()
    if table_errors:
        for e in table_errors:
            print(f"  ERROR: {e}")
        print(f"\nDescriptor validation failed with {len(table_errors)} error(s)")
        return 1
    print(f"  OK: {distro_count} distributions, all descriptors valid")

    print("\n=== Phase 2: URL reachability ===")
    url_errors = validate_urls()
    if url_errors:
        for e in url_errors:
            print(f"  ERROR: {e}")
        print(f"\nURL validation failed: {len(url_errors)}/{distro_count} unreachable")
        return 1
    print(f"  OK: all {distro_count} URLs reachable")

    print("\nAll checks passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
