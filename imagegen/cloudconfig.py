"""cloud-init document rendering for tonynv-image.

The user-data layout below is consumed verbatim by cloud-init inside the
guest and by the inspection checks in ``imagegen.harness``; keep it stable.
"""

from __future__ import annotations

from pathlib import Path
from typing import Tuple

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from imagegen.constants import (
    BANNER_URL,
    CLOUD_CONFIG_HEADER,
    DOTFILES_URL,
    INSTANCE_ID,
    LOCAL_HOSTNAME,
    MANAGED_USER,
    SETUP_SCRIPT,
)
from imagegen.exceptions import MissingInputError
from imagegen.models import BootstrapMerge, BuildRequest, MergedTop, NestedBlock
from imagegen.utils import log

RUNCMD_INDENT = "    "

USER_DATA_TEMPLATE = r"""#cloud-config
users:
  - default
  - name: {user}
    sudo: ALL=(ALL) NOPASSWD:ALL
    shell: /bin/bash
    lock_passwd: false

chpasswd:
  expire: false
  list: |
    root:{password}
    {user}:{password}

ssh_pwauth: true

package_update: true

packages:
  - git
  - curl
  - zsh

write_files:
  - path: /etc/issue
    content: |
      Built with {banner_url}
      \S \r (\l)

  - path: /etc/motd
    content: |
      =========================================
       Built with {banner_url}
      =========================================

runcmd:
  - |
    # Enable serial console (grub + getty)
    if command -v grub2-mkconfig >/dev/null 2>&1; then
      GRUB_CFG="/etc/default/grub"
      sed -i 's/^GRUB_TERMINAL_OUTPUT=.*/GRUB_TERMINAL="serial console"/' "$GRUB_CFG"
      grep -q '^GRUB_TERMINAL=' "$GRUB_CFG" || echo 'GRUB_TERMINAL="serial console"' >> "$GRUB_CFG"
      grep -q '^GRUB_SERIAL_COMMAND=' "$GRUB_CFG" || echo 'GRUB_SERIAL_COMMAND="serial --speed=115200 --unit=0 --word=8 --parity=no --stop=1"' >> "$GRUB_CFG"
      sed -i 's/^GRUB_CMDLINE_LINUX="\(.*\)"/GRUB_CMDLINE_LINUX="\1 console=tty0 console=ttyS0,115200n8"/' "$GRUB_CFG"
      grub2-mkconfig -o /boot/grub2/grub.cfg
    elif command -v update-grub >/dev/null 2>&1; then
      GRUB_CFG="/etc/default/grub"
      sed -i 's/^GRUB_CMDLINE_LINUX_DEFAULT=.*/GRUB_CMDLINE_LINUX_DEFAULT="console=tty0 console=ttyS0,115200n8"/' "$GRUB_CFG"
      grep -q '^GRUB_TERMINAL=' "$GRUB_CFG" || echo 'GRUB_TERMINAL="serial console"' >> "$GRUB_CFG"
      grep -q '^GRUB_SERIAL_COMMAND=' "$GRUB_CFG" || echo 'GRUB_SERIAL_COMMAND="serial --speed=115200 --unit=0 --word=8 --parity=no --stop=1"' >> "$GRUB_CFG"
      update-grub
    fi
    systemctl enable serial-getty@ttyS0.service
    systemctl start serial-getty@ttyS0.service || true
  - |
    # Clone dotfiles and run setup for root
    cd /root
    git clone {dotfiles_url}
    cd dotfiles
    bash ./{setup_script}
  - |
    # Clone dotfiles and run setup for {user}
    su - {user} -c '
      cd ~
      git clone {dotfiles_url}
      cd dotfiles
      bash ./{setup_script}
    '
"""


def classify_bootstrap(content: str) -> BootstrapMerge:
    """Pick how supplemental content joins the generated document.

    A ``#cloud-config`` header means the remaining lines are extra top-level
    directives; anything else is treated as a shell script and nested in
    its own runcmd block.
    """
    first_line, _, rest = content.partition("\n")
    if first_line.startswith(CLOUD_CONFIG_HEADER):
        return MergedTop(rest)
    return NestedBlock(content)


def _ensure_newline(text: str) -> str:
    if text and not text.endswith("\n"):
        return text + "\n"
    return text


def render_bootstrap(merge: BootstrapMerge, source_name: str) -> str:
    if isinstance(merge, MergedTop):
        return _ensure_newline(merge.body)
    lines = ["  - |\n", f"{RUNCMD_INDENT}# --- {source_name} ---\n"]
    for line in merge.body.splitlines(keepends=True):
        lines.append(RUNCMD_INDENT + _ensure_newline(line))
    return "".join(lines)


def render_base_user_data(password: str) -> str:
    return USER_DATA_TEMPLATE.format(
        user=MANAGED_USER,
        password=password,
        banner_url=BANNER_URL,
        dotfiles_url=DOTFILES_URL,
        setup_script=SETUP_SCRIPT,
    )


def render_user_data(request: BuildRequest) -> str:
    """Return the complete user-data document for ``request``."""
    document = render_base_user_data(request.password)
    if not request.bootstrap:
        return document

    path = request.bootstrap_path
    if path is None or not Path(path).is_file():
        raise MissingInputError(f"--bootstrap specified but bootstrap file not found: {path}")
    # Bytes that are not UTF-8 round-trip unchanged into user-data
    merge = classify_bootstrap(Path(path).read_text(encoding="utf-8", errors="surrogateescape"))
    kind = "top-level directives" if isinstance(merge, MergedTop) else "runcmd script"
    log("INFO", f"Merging {Path(path).name} as {kind}")
    document += render_bootstrap(merge, Path(path).name)

    try:
        parsed = yaml.safe_load(document)
    except yaml.YAMLError as exc:
        log("WARN", f"Merged user-data is not valid YAML; cloud-init may reject it: {exc}")
    else:
        if not isinstance(parsed, dict):
            log("WARN", "Merged user-data is not a YAML mapping; cloud-init may reject it")
    return document


def render_meta_data() -> str:
    return f"instance-id: {INSTANCE_ID}\nlocal-hostname: {LOCAL_HOSTNAME}\n"


def write_documents(request: BuildRequest, workdir: Path) -> Tuple[Path, Path]:
    """Write user-data and meta-data into ``workdir`` and return their paths."""
    user_data = workdir / "user-data"
    meta_data = workdir / "meta-data"
    user_data.write_text(render_user_data(request), encoding="utf-8", errors="surrogateescape")
    meta_data.write_text(render_meta_data(), encoding="utf-8")
    return user_data, meta_data
