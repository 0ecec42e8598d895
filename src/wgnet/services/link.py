"""WireGuard device creation, configuration and deletion operations."""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile

from wgnet.services.config_resolver import render_engine_config
from wgnet.utils.logger import get_logger

logger = get_logger(__name__)

IFF_UP = 0x1


def find_link(ipr, device_name: str):
    """Return the netlink message for a device, or None if absent."""
    for link in ipr.get_links():
        if link.get_attr("IFLA_IFNAME") == device_name:
            return link
    return None


def get_link_index(ipr, device_name: str) -> int:
    """Return a device's index, raising if it does not exist."""
    link = find_link(ipr, device_name)
    if link is None:
        raise RuntimeError(f"Device {device_name} does not exist")
    return link["index"]


def create_wireguard_sync(ipr, device_name: str) -> None:
    """Create a WireGuard link device."""
    logger.info(f"Creating WireGuard device: {device_name}")
    ipr.link("add", ifname=device_name, kind="wireguard")


def load_engine_config_sync(wg_path: str, device_name: str, config_path: str) -> None:
    """
    Load keys and peers into the device with ``wg setconf``.

    The config is written to a private temporary file with the wg-quick keys
    (Address, DNS, ...) commented out, since ``wg`` rejects them.
    """
    content = render_engine_config(config_path)

    fd, tmp_path = tempfile.mkstemp(prefix="wgnet-", suffix=".conf")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.chmod(tmp_path, 0o600)

        logger.info(f"Loading peer configuration into {device_name}")
        subprocess.run(
            [wg_path, "setconf", device_name, tmp_path],
            check=True,
            capture_output=True,
            text=True,
            timeout=10,
        )
    finally:
        os.unlink(tmp_path)


def assign_address_sync(ipr, device_name: str, address: str, prefixlen: int) -> None:
    """Assign an IPv4 address to the device."""
    idx = get_link_index(ipr, device_name)
    logger.info(f"Adding IP {address}/{prefixlen} to {device_name}")
    ipr.addr("add", index=idx, address=address, prefixlen=prefixlen)


def set_mtu_sync(ipr, device_name: str, mtu: int) -> None:
    idx = get_link_index(ipr, device_name)
    logger.info(f"Setting MTU {mtu} on {device_name}")
    ipr.link("set", index=idx, mtu=mtu)


def set_up_sync(ipr, device_name: str) -> None:
    idx = get_link_index(ipr, device_name)
    logger.info(f"Bringing up {device_name}")
    ipr.link("set", index=idx, state="up")


def delete_link_sync(ipr, device_name: str) -> None:
    """Bring a device down and delete it."""
    link = find_link(ipr, device_name)
    if link is None:
        logger.debug(f"Device {device_name} not found for deletion")
        return

    if link["flags"] & IFF_UP:
        ipr.link("set", index=link["index"], state="down")
    ipr.link("del", index=link["index"])
    logger.info(f"Deleted device: {device_name}")


def _firewalld_running() -> bool:
    """Check whether firewalld is installed and running."""
    if shutil.which("firewall-cmd") is None:
        logger.debug("firewall-cmd not found, skipping firewalld configuration")
        return False

    try:
        result = subprocess.run(
            ["firewall-cmd", "--state"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError):
        logger.debug("Could not check firewalld state, skipping")
        return False

    if result.returncode != 0 or "running" not in result.stdout:
        logger.debug("firewalld is not running, skipping firewalld configuration")
        return False
    return True


def set_trusted_zone(interface_name: str, trusted: bool) -> None:
    """
    Add or remove an interface from the firewalld trusted zone.

    Does nothing when firewalld is not running. Changes are runtime-only and
    are re-applied by the next ``up``.
    """
    if not _firewalld_running():
        return

    op = "add" if trusted else "remove"
    try:
        result = subprocess.run(
            ["firewall-cmd", "--zone=trusted", f"--{op}-interface={interface_name}"],
            capture_output=True,
            text=True,
            timeout=10,
        )
        if result.returncode == 0:
            logger.info(f"firewalld trusted zone: {op} {interface_name}")
        else:
            # Already in (or not in) the zone
            logger.debug(f"firewall-cmd output: {result.stderr.strip()}")
    except subprocess.TimeoutExpired:
        logger.warning(f"Timeout updating firewalld trusted zone for {interface_name}")
