"""Cloud-init injection into disk images via virt-customize."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import List

from imagegen.constants import OUTPUT_DIR, OUTPUT_PREFIX, SEED_DIR
from imagegen.exceptions import CustomizeError
from imagegen.models import Distro
from imagegen.utils import ensure_directory, log, run


def output_image_path(distro: Distro, output_dir: Path = OUTPUT_DIR) -> Path:
    return output_dir / f"{OUTPUT_PREFIX}-{distro.key}.qcow2"


def virt_customize_args(distro: Distro, image: Path, user_data: Path, meta_data: Path) -> List[str]:
    cmd = [
        "virt-customize",
        "-a",
        str(image),
        "--mkdir",
        SEED_DIR,
        "--upload",
        f"{user_data}:{SEED_DIR}/user-data",
        "--upload",
        f"{meta_data}:{SEED_DIR}/meta-data",
        # Drop first-boot state so an already-customized base re-runs cloud-init
        "--run-command",
        "cloud-init clean --logs",
    ]
    if distro.value.selinux_relabel:
        cmd.append("--selinux-relabel")
    return cmd


def customize_image(
    distro: Distro,
    base_image: Path,
    user_data: Path,
    meta_data: Path,
    output_dir: Path = OUTPUT_DIR,
) -> Path:
    """Copy ``base_image`` to the output location and inject the seed documents.

    On failure the half-written output image is removed.
    """
    output_image = output_image_path(distro, output_dir)
    try:
        try:
            ensure_directory(output_dir)
        except OSError as exc:
            raise CustomizeError(f"Cannot create output directory {output_dir}: {exc}") from exc
        log("INFO", "Copying base image...")
        try:
            shutil.copyfile(base_image, output_image)
        except OSError as exc:
            raise CustomizeError(f"Failed to copy {base_image} to {output_image}: {exc}") from exc

        log("INFO", "Injecting cloud-init configuration...")
        cmd = virt_customize_args(distro, output_image, user_data, meta_data)
        try:
            run(cmd)
        except FileNotFoundError as exc:
            raise CustomizeError("virt-customize not found on PATH") from exc
        except subprocess.CalledProcessError as exc:
            raise CustomizeError(f"virt-customize failed with exit status {exc.returncode}") from exc
    except BaseException:
        if output_image.exists():
            log("WARN", f"Removing incomplete output image {output_image}")
            output_image.unlink(missing_ok=True)
        raise
    return output_image
