"""Global constants and path configuration for tonynv-image."""

from __future__ import annotations

import os
import re
from pathlib import Path

# Build artefacts default to the invoking directory, next to tonynv.userdata.
OUTPUT_DIR = Path(os.environ.get("OUTPUT_DIR", "output"))
CACHE_DIR = Path(os.environ.get("CACHE_DIR", ".cache"))
BOOTSTRAP_FILE = Path(os.environ.get("BOOTSTRAP_FILE", "tonynv.userdata"))
LIBVIRT_URI = os.environ.get("LIBVIRT_URI", "qemu:///system")
TRUTHY = {"1", "true", "yes", "on"}

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY

DEFAULT_DISTRO = "debian13"
OUTPUT_PREFIX = "tonynv"

# Guest accounts and first-boot provisioning
MANAGED_USER = "tonynv"
BANNER_MARKER = "tonynv/image"
BANNER_URL = f"https://github.com/{BANNER_MARKER}"
DOTFILES_URL = "https://github.com/tonynv/dotfiles.git"
SETUP_SCRIPT = "tonynv_setup.sh"
CLOUD_CONFIG_HEADER = "#cloud-config"
PASSWORD_BYTES = 12

# NoCloud seed consumed by cloud-init inside the guest
SEED_DIR = "/var/lib/cloud/seed/nocloud"
INSTANCE_ID = "iid-tonynv-template"
LOCAL_HOSTNAME = "tonynv"

BUILD_TOOLS = ("virt-customize",)
TEST_TOOLS = ("virt-customize", "virt-cat", "qemu-system-x86_64", "qemu-img")
PACKAGE_MANAGERS = {
    "apt-get": {
        "refresh": ["sudo", "apt-get", "update", "-qq"],
        "install": ["sudo", "apt-get", "install", "-y"],
        "packages": ["libguestfs-tools"],
    },
    "dnf": {
        "refresh": None,
        "install": ["sudo", "dnf", "install", "-y"],
        "packages": ["guestfs-tools"],
    },
}

# Lab network
DEFAULT_BRIDGE = os.environ.get("TEST_BRIDGE", "br-vlan200")
DEFAULT_NETWORK_NAME = "default"
# Leading octets of the address the guest is expected to lease on the bridge
DEFAULT_SUBNET = os.environ.get("TEST_SUBNET", "10.200")

# Harness timing (seconds)
BOOT_TIMEOUT = 180
# Ceiling for the whole boot, login and address query of the network check
NETWORK_TIMEOUT = 240
LOGIN_WAIT = 200
POLL_INTERVAL = 5
TEST_PASSWORD = "testpass123"

ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;]*m")
