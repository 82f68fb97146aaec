"""Data models for tonynv-image."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import NamedTuple, Optional, Union
from urllib.parse import urlparse

from imagegen.exceptions import UsageError


@dataclass(frozen=True)
class DistroInfo:
    label: str
    url: str
    selinux_relabel: bool = False


class Distro(Enum):
    DEBIAN13 = DistroInfo(
        label="Debian 13 (Trixie)",
        url="https://cloud.debian.org/images/cloud/trixie/latest/debian-13-generic-amd64.qcow2",
    )
    UBUNTU2404 = DistroInfo(
        label="Ubuntu 24.04 LTS (Noble)",
        url="https://cloud-images.ubuntu.com/noble/current/noble-server-cloudimg-amd64.img",
    )
    FEDORA43 = DistroInfo(
        label="Fedora 43",
        url=(
            "https://download.fedoraproject.org/pub/fedora/linux/releases/43/Cloud/x86_64/images/"
            "Fedora-Cloud-Base-Generic-43-1.6.x86_64.qcow2"
        ),
        selinux_relabel=True,
    )

    @property
    def key(self) -> str:
        return self.name.lower()

    @property
    def label(self) -> str:
        return self.value.label

    @property
    def url(self) -> str:
        return self.value.url

    @property
    def image_filename(self) -> str:
        """Cache file name, taken from the last path component of the source URL."""
        return Path(urlparse(self.value.url).path).name

    @classmethod
    def keys(cls) -> list:
        return [member.key for member in cls]

    @classmethod
    def from_key(cls, key: str) -> "Distro":
        for member in cls:
            if member.key == key:
                return member
        raise UsageError(f"Unsupported distro '{key}'. Supported: {', '.join(cls.keys())}")


@dataclass
class BuildRequest:
    distro: Distro
    password: str
    bootstrap: bool = False
    bootstrap_path: Optional[Path] = None
    password_generated: bool = False


class MergedTop(NamedTuple):
    """Bootstrap cloud-config body appended as top-level directives."""

    body: str


class NestedBlock(NamedTuple):
    """Bootstrap script nested inside an extra runcmd block."""

    body: str


BootstrapMerge = Union[MergedTop, NestedBlock]
