"""Build request resolution and validation for tonynv-image."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from imagegen.constants import BOOTSTRAP_FILE, CLOUD_CONFIG_HEADER, DEFAULT_DISTRO
from imagegen.exceptions import MissingInputError, UsageError
from imagegen.models import BuildRequest, Distro
from imagegen.utils import generate_password, log


def check_bootstrap_file(path: Path) -> None:
    """Fail early if a requested bootstrap file is missing or malformed."""
    if not path.exists():
        raise MissingInputError(f"--bootstrap specified but {path.name} not found in {path.resolve().parent}")
    if not path.is_file():
        raise MissingInputError(f"Bootstrap file must be a regular file: {path}")
    try:
        content = path.read_text(encoding="utf-8", errors="surrogateescape")
    except OSError as exc:
        raise MissingInputError(f"Cannot read bootstrap file {path}: {exc}") from exc

    first_line = content.split("\n", 1)[0].strip()
    if not first_line.startswith(CLOUD_CONFIG_HEADER):
        log("DEBUG", f"{path.name} has no {CLOUD_CONFIG_HEADER} header; it will run as a runcmd script")
        return
    try:
        parsed = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise UsageError(f"{path.name} contains invalid YAML: {exc}") from exc
    if parsed is not None and not isinstance(parsed, dict):
        log(
            "WARN",
            f"{path.name}: {CLOUD_CONFIG_HEADER} should contain a YAML mapping, got {type(parsed).__name__}",
        )


def build_request(
    distro: Optional[str] = None,
    password: Optional[str] = None,
    bootstrap: bool = False,
    bootstrap_path: Optional[Path] = None,
) -> BuildRequest:
    """Validate invocation parameters and return a finalized BuildRequest."""
    key = (distro or DEFAULT_DISTRO).strip()
    if not key:
        raise UsageError("--distro requires a value")
    resolved = Distro.from_key(key)

    if password is not None and not password:
        raise UsageError("--passwd requires a value")
    generated = False
    if password is None:
        password = generate_password()
        generated = True
        log("INFO", "No password supplied; generated a random one")

    path: Optional[Path] = None
    if bootstrap:
        path = bootstrap_path if bootstrap_path is not None else BOOTSTRAP_FILE
        check_bootstrap_file(path)

    return BuildRequest(
        distro=resolved,
        password=password,
        bootstrap=bootstrap,
        bootstrap_path=path,
        password_generated=generated,
    )
