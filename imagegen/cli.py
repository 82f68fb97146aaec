"""CLI entry points for tonynv-image."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from imagegen.builder import build_image
from imagegen.config import build_request
from imagegen.constants import (
    BOOTSTRAP_FILE,
    CACHE_DIR,
    DEFAULT_BRIDGE,
    DEFAULT_DISTRO,
    DEFAULT_NETWORK_NAME,
    LIBVIRT_URI,
    MANAGED_USER,
    OUTPUT_DIR,
)
from imagegen.deps import check_deps
from imagegen.exceptions import ImageGenError
from imagegen.models import BuildRequest, Distro
from imagegen.utils import log

BANNER_COLOUR = "\033[0;36m"
RESET = "\033[0m"


def _print_block(lines: List[str]) -> None:
    border_len = max(len(line) for line in lines) + 2
    print(f"{BANNER_COLOUR}{'=' * border_len}{RESET}", flush=True)
    for line in lines:
        print(f"{BANNER_COLOUR}{line}{RESET}", flush=True)
    print(f"{BANNER_COLOUR}{'=' * border_len}{RESET}", flush=True)


def list_distros() -> None:
    """Print supported distributions."""
    width = max(len(key) for key in Distro.keys())
    for distro in Distro:
        print(f"  {distro.key:<{width}}  {distro.label}")


def print_build_header(request: BuildRequest, output_dir: Path) -> None:
    _print_block(
        [
            " tonynv-image",
            f"  Distro:    {request.distro.label}",
            f"  Bootstrap: {'true' if request.bootstrap else 'false'}",
            f"  Output:    {output_dir}/",
        ]
    )


def print_summary(request: BuildRequest, output_image: Path) -> None:
    """Print the finished image location, credentials and boot hints."""
    _print_block([f" Image ready: {output_image}"])
    print("")
    print(f" Password: {request.password}")
    if request.password_generated:
        print(" (randomly generated; it is not stored anywhere else)")
    print(f" (applies to both root and {MANAGED_USER} users)")
    print("")
    print(" Boot with QEMU:")
    print("   qemu-system-x86_64 -machine q35 -m 1024 -smp 2 \\")
    print("     -enable-kvm -cpu host -nographic \\")
    print(f"     -drive file={output_image},format=qcow2,if=virtio \\")
    print(f"     -nic bridge,br={DEFAULT_BRIDGE},model=virtio \\")
    print("     -object rng-random,filename=/dev/urandom,id=rng0 \\")
    print("     -device virtio-rng-pci,rng=rng0")
    print("")
    print(" Import to libvirt:")
    print(f"   virt-install --name {MANAGED_USER}-vm --ram 1024 --vcpus 2 \\")
    print("     --machine q35 \\")
    print(f"     --disk path={output_image},format=qcow2,bus=virtio \\")
    print(f"     --network bridge={DEFAULT_BRIDGE},model=virtio \\")
    print("     --graphics none \\")
    print("     --console pty,target_type=serial \\")
    print("     --rng /dev/urandom \\")
    print("     --tpm default \\")
    print("     --import --os-variant detect=on", flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=f"Generate a customized cloud image with the {MANAGED_USER} user and dotfiles setup.",
        epilog="Example: tonynv-image --distro ubuntu2404 --passwd mypassword",
    )
    parser.add_argument(
        "--distro",
        default=DEFAULT_DISTRO,
        help=f"Target distro (default: {DEFAULT_DISTRO}). Supported: {', '.join(Distro.keys())}",
    )
    parser.add_argument(
        "--passwd",
        "--credential",
        dest="password",
        default=None,
        help=(
            f"Password for root and {MANAGED_USER} (generated randomly if omitted). "
            "Use --passwd=VALUE for a value starting with '-'"
        ),
    )
    parser.add_argument(
        "--bootstrap",
        action="store_true",
        help=f"Include {BOOTSTRAP_FILE.name} as additional cloud-init content",
    )
    parser.add_argument("--output-dir", type=Path, default=OUTPUT_DIR, help="Directory for finished images")
    parser.add_argument("--cache-dir", type=Path, default=CACHE_DIR, help="Directory for downloaded base images")
    parser.add_argument("--refresh", action="store_true", help="Re-download the base image even if cached")
    parser.add_argument("--list-distros", action="store_true", help="List supported distributions and exit")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.list_distros:
        list_distros()
        return 0

    try:
        request = build_request(
            distro=args.distro,
            password=args.password,
            bootstrap=args.bootstrap,
        )
        check_deps()
        print_build_header(request, args.output_dir)
        output_image = build_image(
            request,
            cache_dir=args.cache_dir,
            output_dir=args.output_dir,
            refresh=args.refresh,
        )
    except ImageGenError as exc:
        log("ERROR", str(exc))
        return 1
    except KeyboardInterrupt:
        log("WARN", "Interrupted")
        return 130

    print_summary(request, output_image)
    return 0


def setup_network_main(argv: Optional[List[str]] = None) -> int:
    """Rebind a libvirt network onto an existing host bridge."""
    parser = argparse.ArgumentParser(description="Point a libvirt network at an existing host bridge")
    parser.add_argument("--bridge", default=DEFAULT_BRIDGE, help=f"Host bridge (default: {DEFAULT_BRIDGE})")
    parser.add_argument(
        "--network",
        default=DEFAULT_NETWORK_NAME,
        help=f"libvirt network to replace (default: {DEFAULT_NETWORK_NAME})",
    )
    parser.add_argument("--uri", default=LIBVIRT_URI, help=f"libvirt connection URI (default: {LIBVIRT_URI})")
    args = parser.parse_args(argv)

    from imagegen.network import setup_bridge_network

    try:
        setup_bridge_network(bridge=args.bridge, name=args.network, uri=args.uri)
    except ImageGenError as exc:
        log("ERROR", str(exc))
        return 1
    log("INFO", f"VMs using '--network {args.network}' will bridge to {args.bridge}")
    return 0
