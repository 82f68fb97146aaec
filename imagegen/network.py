"""Rebind the libvirt default network to an existing host bridge."""

from __future__ import annotations

import subprocess
from xml.etree.ElementTree import Element, SubElement, tostring

try:
    import libvirt  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit(f"libvirt python bindings not available: {exc}")

from imagegen.constants import DEFAULT_BRIDGE, DEFAULT_NETWORK_NAME, LIBVIRT_URI
from imagegen.exceptions import NetworkSetupError
from imagegen.utils import log


def _element_to_str(root: Element) -> str:
    """Serialize an ElementTree element to a pretty-printed XML string without declaration."""
    from xml.dom.minidom import parseString

    raw = tostring(root, encoding="unicode")
    return parseString(raw).documentElement.toprettyxml(indent="  ").strip()


def render_bridge_network_xml(name: str, bridge: str) -> str:
    """Render a libvirt network that forwards straight onto ``bridge``."""
    network = Element("network")
    SubElement(network, "name").text = name
    SubElement(network, "forward", mode="bridge")
    SubElement(network, "bridge", name=bridge)
    return _element_to_str(network)


def bridge_exists(bridge: str) -> bool:
    result = subprocess.run(
        ["ip", "link", "show", bridge],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        check=False,
    )
    return result.returncode == 0


def _remove_network(conn, name: str) -> None:
    try:
        existing = conn.networkLookupByName(name)
    except libvirt.libvirtError:
        return
    log("INFO", f"Removing existing '{name}' network...")
    try:
        if existing.isActive():
            existing.destroy()
    except libvirt.libvirtError as exc:
        log("DEBUG", f"Could not stop network {name}: {exc}")
    existing.undefine()


def setup_bridge_network(
    bridge: str = DEFAULT_BRIDGE,
    name: str = DEFAULT_NETWORK_NAME,
    uri: str = LIBVIRT_URI,
) -> None:
    """Replace libvirt network ``name`` with an autostarted bridge to ``bridge``."""
    if not bridge_exists(bridge):
        raise NetworkSetupError(f"Bridge {bridge} does not exist on this host.")

    try:
        conn = libvirt.open(uri)
    except libvirt.libvirtError as exc:
        raise NetworkSetupError(f"Failed to open libvirt connection to {uri}: {exc}") from exc
    if conn is None:
        raise NetworkSetupError(f"Failed to open libvirt connection to {uri}")

    try:
        _remove_network(conn, name)
        log("INFO", f"Defining '{name}' network (bridge -> {bridge})...")
        network = conn.networkDefineXML(render_bridge_network_xml(name, bridge))
        if network is None:
            raise NetworkSetupError(f"libvirt refused to define network {name}")
        network.create()
        network.setAutostart(1)
    except libvirt.libvirtError as exc:
        raise NetworkSetupError(f"Failed to configure network {name}: {exc}") from exc
    finally:
        conn.close()
    log("SUCCESS", f"'{name}' network is active and set to autostart.")
