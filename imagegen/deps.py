"""Host tool detection and installation for tonynv-image."""

from __future__ import annotations

import shutil
import subprocess
from typing import Iterable, Optional

from imagegen.constants import BUILD_TOOLS, PACKAGE_MANAGERS
from imagegen.exceptions import DependencyError
from imagegen.utils import log, missing_tools, run


def detect_package_manager() -> Optional[str]:
    for name in PACKAGE_MANAGERS:
        if shutil.which(name) is not None:
            return name
    return None


def install_deps() -> None:
    """Install libguestfs tooling through the host package manager."""
    log("INFO", "Detecting package manager...")
    manager = detect_package_manager()
    if manager is None:
        raise DependencyError("Unsupported package manager. Install manually: virt-customize (libguestfs tools)")

    profile = PACKAGE_MANAGERS[manager]
    log("INFO", f"Installing dependencies via {manager}...")
    try:
        if profile["refresh"]:
            run(list(profile["refresh"]))
        run(list(profile["install"]) + list(profile["packages"]))
    except (subprocess.CalledProcessError, OSError) as exc:
        raise DependencyError(f"Dependency installation via {manager} failed: {exc}") from exc


def check_deps(tools: Iterable[str] = BUILD_TOOLS, auto_install: bool = True) -> None:
    """Ensure every tool in ``tools`` is on PATH, installing them if allowed."""
    tools = tuple(tools)
    missing = missing_tools(tools)
    if not missing:
        return
    log("WARN", f"Missing tools: {' '.join(missing)}")
    if not auto_install:
        raise DependencyError(f"{', '.join(missing)} not found. Install libguestfs-tools and qemu.")

    install_deps()

    still_missing = missing_tools(tools)
    if still_missing:
        raise DependencyError(f"Failed to install {', '.join(still_missing)}")
    log("SUCCESS", "All dependencies installed successfully.")
