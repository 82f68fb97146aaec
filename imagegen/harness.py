"""End-to-end verification of built images.

For each distro the suite builds an image, reads the injected cloud-init
seed back out with virt-cat, boots a throwaway overlay under QEMU to look
for the login banner, and finally logs in over the serial console to check
that the guest leased an address on the lab bridge.
"""

from __future__ import annotations

import argparse
import json
import re
import subprocess
import sys
import tempfile
import time
from pathlib import Path
from typing import Iterable, List, Optional, Pattern, Tuple

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from imagegen.constants import (
    BANNER_MARKER,
    BOOT_TIMEOUT,
    DEFAULT_BRIDGE,
    DEFAULT_SUBNET,
    LOGIN_WAIT,
    MANAGED_USER,
    NETWORK_TIMEOUT,
    OUTPUT_DIR,
    POLL_INTERVAL,
    SEED_DIR,
    SETUP_SCRIPT,
    TEST_PASSWORD,
    TEST_TOOLS,
)
from imagegen.customize import output_image_path
from imagegen.deps import check_deps
from imagegen.exceptions import DependencyError
from imagegen.models import Distro
from imagegen.utils import kvm_available, log, run, strip_ansi

GREEN = "\033[0;32m"
RED = "\033[0;31m"
RESET = "\033[0m"


def expected_user_data(password: str) -> List[Tuple[str, str]]:
    """Substrings every generated user-data must contain, with check labels."""
    return [
        (f"name: {MANAGED_USER}", f"{MANAGED_USER} user defined"),
        ("NOPASSWD:ALL", f"{MANAGED_USER} has sudo"),
        (f"{MANAGED_USER}/dotfiles", "dotfiles clone present"),
        (SETUP_SCRIPT, f"{SETUP_SCRIPT} present"),
        ("cd /root", "setup runs for root"),
        (f"su - {MANAGED_USER}", f"setup runs for {MANAGED_USER}"),
        ("/etc/issue", "/etc/issue write_files entry"),
        ("/etc/motd", "/etc/motd write_files entry"),
        (BANNER_MARKER, "banner URL in user-data"),
        (f"root:{password}", "root password set"),
        (f"{MANAGED_USER}:{password}", f"{MANAGED_USER} password set"),
        ("console=ttyS0", "serial console kernel parameter"),
        ("serial-getty@ttyS0", "serial-getty service enabled"),
    ]


def has_login_prompt(text: str) -> bool:
    return "login:" in text or "login :" in text


def subnet_address_re(prefix: str) -> Pattern[str]:
    """Match an IPv4 address (optionally with /len) whose leading octets are ``prefix``."""
    remaining = 3 - prefix.count(".")
    return re.compile(re.escape(prefix) + r"\.[0-9]+" * remaining + r"(?:/[0-9]+)?")


def find_bridge_address(text: str, prefix: str = DEFAULT_SUBNET) -> Optional[str]:
    match = subnet_address_re(prefix).search(strip_ansi(text))
    return match.group(0) if match else None


def qemu_command(overlay: Path, bridge: str, kvm: bool) -> List[str]:
    cmd = [
        "qemu-system-x86_64",
        "-machine",
        "q35",
        "-m",
        "1024",
        "-smp",
        "2",
        "-nographic",
        "-no-reboot",
        "-drive",
        f"file={overlay},format=qcow2,if=virtio",
        "-nic",
        f"bridge,br={bridge},model=virtio",
        "-object",
        "rng-random,filename=/dev/urandom,id=rng0",
        "-device",
        "virtio-rng-pci,rng=rng0",
    ]
    if kvm:
        cmd.extend(["-enable-kvm", "-cpu", "host"])
    return cmd


class Reporter:
    """Pass/fail bookkeeping with coloured console output."""

    def __init__(self) -> None:
        self.run = 0
        self.passed = 0
        self.failed = 0

    def ok(self, message: str) -> None:
        self.run += 1
        self.passed += 1
        print(f"  {GREEN}PASS{RESET} {message}", flush=True)

    def fail(self, message: str, detail: Optional[str] = None) -> None:
        self.run += 1
        self.failed += 1
        print(f"  {RED}FAIL{RESET} {message}", flush=True)
        if detail:
            print(f"       {detail}", flush=True)

    @property
    def succeeded(self) -> bool:
        return self.failed == 0


class ImageTestSuite:
    def __init__(
        self,
        distros: Iterable[Distro],
        password: str = TEST_PASSWORD,
        output_dir: Path = OUTPUT_DIR,
        bridge: str = DEFAULT_BRIDGE,
        subnet: str = DEFAULT_SUBNET,
        log_dir: Optional[Path] = None,
        boot: bool = True,
        reporter: Optional[Reporter] = None,
    ) -> None:
        self.distros = list(distros)
        self.password = password
        self.output_dir = output_dir
        self.bridge = bridge
        self.subnet = subnet
        self.log_dir = log_dir or Path(tempfile.gettempdir())
        self.boot = boot
        self.reporter = reporter or Reporter()
        self._kvm = kvm_available()

    def image_path(self, distro: Distro) -> Path:
        return output_image_path(distro, self.output_dir)

    def _log_path(self, distro: Distro, suffix: str) -> Path:
        return self.log_dir / f"test-{distro.key}-{suffix}"

    # -- build ---------------------------------------------------------

    def test_build(self, distro: Distro) -> bool:
        r = self.reporter
        output = self.image_path(distro)
        build_log = self._log_path(distro, "build.log")

        log("INFO", f"Building {distro.key} image...")
        cmd = [
            sys.executable,
            "-m",
            "imagegen",
            "--distro",
            distro.key,
            f"--passwd={self.password}",
            "--output-dir",
            str(self.output_dir),
        ]
        with open(build_log, "w") as fh:
            result = subprocess.run(cmd, stdout=fh, stderr=subprocess.STDOUT, check=False)
        if result.returncode == 0:
            r.ok(f"{distro.key}: image build succeeded")
        else:
            r.fail(f"{distro.key}: image build failed", f"see {build_log}")
            return False

        if output.is_file():
            r.ok(f"{distro.key}: output file exists")
        else:
            r.fail(f"{distro.key}: output file missing")
            return False

        info = subprocess.run(
            ["qemu-img", "info", "--output=json", str(output)],
            capture_output=True,
            text=True,
            check=False,
        )
        image_format = None
        if info.returncode == 0:
            try:
                image_format = json.loads(info.stdout).get("format")
            except ValueError:
                log("DEBUG", f"qemu-img returned non-JSON output for {output}")
        if image_format == "qcow2":
            r.ok(f"{distro.key}: valid qcow2 format")
        else:
            r.fail(f"{distro.key}: not a valid qcow2")
            return False
        return True

    # -- inspect -------------------------------------------------------

    def _virt_cat(self, image: Path, guest_path: str) -> Optional[str]:
        result = subprocess.run(
            ["virt-cat", "-a", str(image), guest_path],
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            return None
        return result.stdout

    def test_inspect(self, distro: Distro) -> bool:
        r = self.reporter
        image = self.image_path(distro)
        if not image.is_file():
            r.fail(f"{distro.key}: no image to inspect")
            return False

        user_data = self._virt_cat(image, f"{SEED_DIR}/user-data")
        if user_data is None:
            r.fail(f"{distro.key}: could not read user-data from image")
            return False
        r.ok(f"{distro.key}: cloud-init user-data present")

        if self._virt_cat(image, f"{SEED_DIR}/meta-data") is not None:
            r.ok(f"{distro.key}: cloud-init meta-data present")
        else:
            r.fail(f"{distro.key}: cloud-init meta-data missing")

        all_found = True
        for needle, label in expected_user_data(self.password):
            if needle in user_data:
                r.ok(f"{distro.key}: {label}")
            else:
                r.fail(f"{distro.key}: {label} (missing)")
                all_found = False

        try:
            parsed = yaml.safe_load(user_data)
        except yaml.YAMLError as exc:
            r.fail(f"{distro.key}: user-data is not valid YAML", str(exc))
            return False
        if isinstance(parsed, dict):
            r.ok(f"{distro.key}: user-data parses as a cloud-config mapping")
        else:
            r.fail(f"{distro.key}: user-data is not a YAML mapping")
            return False
        return all_found

    # -- boot ----------------------------------------------------------

    def _create_overlay(self, image: Path, overlay: Path) -> None:
        overlay.unlink(missing_ok=True)
        run(
            ["qemu-img", "create", "-f", "qcow2", "-b", str(image), "-F", "qcow2", str(overlay)],
            capture_output=True,
        )

    def test_boot(self, distro: Distro) -> bool:
        r = self.reporter
        image = self.image_path(distro)
        if not image.is_file():
            r.fail(f"{distro.key}: no image to boot")
            return False

        overlay = self._log_path(distro, "overlay.qcow2")
        boot_log = self._log_path(distro, "boot.log")
        boot_log.unlink(missing_ok=True)
        try:
            self._create_overlay(image, overlay)
        except subprocess.CalledProcessError as exc:
            r.fail(f"{distro.key}: could not create overlay", str(exc))
            return False

        try:
            log("INFO", f"Booting {distro.key} (timeout {BOOT_TIMEOUT}s)...")
            with open(boot_log, "w") as fh:
                try:
                    subprocess.run(
                        qemu_command(overlay, self.bridge, self._kvm),
                        stdin=subprocess.DEVNULL,
                        stdout=fh,
                        stderr=subprocess.STDOUT,
                        timeout=BOOT_TIMEOUT,
                        check=False,
                    )
                except subprocess.TimeoutExpired:
                    log("DEBUG", f"{distro.key}: boot window of {BOOT_TIMEOUT}s elapsed; emulator stopped")
        finally:
            overlay.unlink(missing_ok=True)

        console = boot_log.read_text(errors="replace")
        ok = True
        if has_login_prompt(console):
            r.ok(f"{distro.key}: boots to login prompt")
        else:
            r.fail(f"{distro.key}: did not reach login prompt", f"see {boot_log}")
            ok = False
        if BANNER_MARKER in console:
            r.ok(f"{distro.key}: login banner shows {BANNER_MARKER}")
        else:
            r.fail(f"{distro.key}: login banner missing", f"see {boot_log}")
            ok = False
        return ok

    # -- network -------------------------------------------------------

    @staticmethod
    def _send(proc: subprocess.Popen, line: str, pause: float) -> bool:
        try:
            proc.stdin.write(line + "\n")
            proc.stdin.flush()
        except (BrokenPipeError, ValueError):
            log("DEBUG", "Emulator console closed before input was sent")
            return False
        time.sleep(pause)
        return True

    @staticmethod
    def _stop(proc: subprocess.Popen) -> None:
        if proc.stdin is not None and not proc.stdin.closed:
            try:
                proc.stdin.close()
            except BrokenPipeError:
                log("DEBUG", "Emulator console already closed")
        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=10)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()

    def test_network(self, distro: Distro) -> bool:
        r = self.reporter
        image = self.image_path(distro)
        if not image.is_file():
            r.fail(f"{distro.key}: no image for network test")
            return False

        overlay = self._log_path(distro, "net-overlay.qcow2")
        net_log = self._log_path(distro, "net.log")
        net_log.unlink(missing_ok=True)
        try:
            self._create_overlay(image, overlay)
        except subprocess.CalledProcessError as exc:
            r.fail(f"{distro.key}: could not create overlay", str(exc))
            return False

        log("INFO", f"Booting {distro.key} with networking (timeout {NETWORK_TIMEOUT}s)...")
        fh = open(net_log, "w")
        proc = None
        try:
            proc = subprocess.Popen(
                qemu_command(overlay, self.bridge, self._kvm),
                stdin=subprocess.PIPE,
                stdout=fh,
                stderr=subprocess.STDOUT,
                text=True,
            )
            deadline = time.monotonic() + NETWORK_TIMEOUT
            waited = 0
            while waited < LOGIN_WAIT and time.monotonic() < deadline:
                if proc.poll() is not None:
                    break
                if has_login_prompt(net_log.read_text(errors="replace")):
                    break
                time.sleep(POLL_INTERVAL)
                waited += POLL_INTERVAL
            else:
                r.fail(f"{distro.key}: network test timed out waiting for login")
                return False

            time.sleep(2)
            script = [
                (MANAGED_USER, 3),
                (self.password, 5),
                ("ip -4 addr show", 5),
                ("sudo poweroff", 5),
            ]
            for line, pause in script:
                if time.monotonic() >= deadline:
                    log("WARN", f"{distro.key}: network check passed {NETWORK_TIMEOUT}s, stopping the guest")
                    break
                if not self._send(proc, line, pause):
                    break
        finally:
            if proc is not None:
                self._stop(proc)
            fh.close()
            overlay.unlink(missing_ok=True)

        address = find_bridge_address(net_log.read_text(errors="replace"), self.subnet)
        if address:
            r.ok(f"{distro.key}: VM obtained IP address ({address}) from {self.bridge}")
            return True
        r.fail(f"{distro.key}: no {self.subnet}.* IP address from {self.bridge}", f"see {net_log}")
        return False

    # -- driver --------------------------------------------------------

    def run_distro(self, distro: Distro) -> None:
        print(f"\n=== {distro.key} ===", flush=True)
        print("\n[Build]", flush=True)
        if not self.test_build(distro):
            log("WARN", f"Skipping remaining tests for {distro.key}")
            return
        print("\n[Inspect]", flush=True)
        self.test_inspect(distro)
        if not self.boot:
            return
        print("\n[Boot]", flush=True)
        self.test_boot(distro)
        print("\n[Network]", flush=True)
        self.test_network(distro)

    def run(self) -> bool:
        for distro in self.distros:
            self.run_distro(distro)
        r = self.reporter
        print("", flush=True)
        print("=" * 43, flush=True)
        print(f" Results: {r.passed}/{r.run} passed, {r.failed} failed", flush=True)
        print("=" * 43, flush=True)
        return r.succeeded


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Build, inspect and boot tonynv images for each distro")
    parser.add_argument(
        "--distro",
        action="append",
        choices=Distro.keys(),
        help="Distro to test (repeatable; default: all)",
    )
    parser.add_argument("--passwd", default=TEST_PASSWORD, help="Password baked into the test images")
    parser.add_argument("--output-dir", type=Path, default=OUTPUT_DIR, help="Directory the builds write to")
    parser.add_argument("--bridge", default=DEFAULT_BRIDGE, help="Host bridge the test VMs attach to")
    parser.add_argument(
        "--subnet",
        default=DEFAULT_SUBNET,
        help=f"Leading octets of the address expected on the bridge (default: {DEFAULT_SUBNET})",
    )
    parser.add_argument("--skip-boot", action="store_true", help="Only build and inspect; do not boot")
    args = parser.parse_args(argv)

    try:
        check_deps(TEST_TOOLS, auto_install=False)
    except DependencyError as exc:
        log("ERROR", str(exc))
        return 1

    distros = [Distro.from_key(key) for key in args.distro] if args.distro else list(Distro)
    suite = ImageTestSuite(
        distros,
        password=args.passwd,
        output_dir=args.output_dir,
        bridge=args.bridge,
        subnet=args.subnet,
        boot=not args.skip_boot,
    )
    print("=" * 43, flush=True)
    print(" tonynv-image - Test Suite", flush=True)
    print("=" * 43, flush=True)
    return 0 if suite.run() else 1


if __name__ == "__main__":
    sys.exit(main())
