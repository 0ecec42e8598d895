"""
WireGuard configuration file handling.

The file uses the wg-quick ``Key = value`` section format. ``Address`` is
read here and assigned at the IP layer; ``wg setconf`` only understands the
engine keys, so the wg-quick keys are commented out before hand-off.
"""

from __future__ import annotations

import ipaddress
import os

from wgnet.exceptions import ConfigMalformed, ConfigNotFound
from wgnet.models.tunnel import EngineSettings, TunnelConfig
from wgnet.utils.logger import get_logger

logger = get_logger(__name__)

# Keys handled by wg-quick, not by the kernel engine
WG_QUICK_KEYS = frozenset(
    {
        "address",
        "dns",
        "mtu",
        "table",
        "preup",
        "postup",
        "predown",
        "postdown",
        "saveconfig",
    }
)


def _split_line(line: str) -> tuple[str, str] | None:
    """Split a 'Key = value' line, returning None for anything else."""
    stripped = line.split("#", 1)[0].strip()
    if not stripped or stripped.startswith("[") or "=" not in stripped:
        return None
    key, value = stripped.split("=", 1)
    return key.strip().lower(), value.strip()


def _read(path: str) -> str:
    if not os.path.isfile(path):
        raise ConfigNotFound(path)
    with open(path) as f:
        return f.read()


def read_engine_settings(content: str, path: str) -> EngineSettings:
    """
    Collect the engine keys ``wg show <dev> dump`` reports once loaded.

    Raises:
        ConfigMalformed: If ListenPort is not a number.
    """
    section = ""
    private_key = None
    listen_port = None
    peers = []
    for line in content.splitlines():
        stripped = line.split("#", 1)[0].strip()
        if stripped.startswith("["):
            section = stripped.strip("[]").strip().lower()
            continue
        parsed = _split_line(line)
        if parsed is None:
            continue
        key, value = parsed
        if section == "interface" and key == "privatekey":
            private_key = value
        elif section == "interface" and key == "listenport":
            try:
                listen_port = int(value)
            except ValueError:
                raise ConfigMalformed(f"ListenPort '{value}' is not a number", path)
        elif section == "peer" and key == "publickey":
            peers.append(value)
    return EngineSettings(
        private_key=private_key, listen_port=listen_port, peers=tuple(peers)
    )


def resolve_config(path: str) -> TunnelConfig:
    """
    Parse the tunnel address from a WireGuard configuration file.

    When ``Address`` lists several addresses, the first IPv4 one is used.

    Raises:
        ConfigNotFound: If the file does not exist.
        ConfigMalformed: If there is no Address line or it is not ip/prefix.
    """
    content = _read(path)

    values = []
    for line in content.splitlines():
        parsed = _split_line(line)
        if parsed and parsed[0] == "address":
            values.extend(v.strip() for v in parsed[1].split(",") if v.strip())

    if not values:
        raise ConfigMalformed("no Address line", path)

    for value in values:
        if "/" not in value:
            raise ConfigMalformed(f"Address '{value}' is not ip/prefix", path)
        try:
            iface = ipaddress.ip_interface(value)
        except ValueError as e:
            raise ConfigMalformed(f"Address '{value}' does not parse: {e}", path)
        if iface.version == 4:
            logger.debug(f"Resolved tunnel address {iface} from {path}")
            return TunnelConfig(
                local_address=iface.ip,
                prefix_length=iface.network.prefixlen,
                raw_config_path=path,
                engine=read_engine_settings(content, path),
            )

    raise ConfigMalformed(f"no IPv4 address in Address {values}", path)


def render_engine_config(path: str) -> str:
    """
    Return the file content with wg-quick-only keys commented out.

    The result is suitable for ``wg setconf``.
    """
    content = _read(path)
    lines = []
    for line in content.splitlines():
        parsed = _split_line(line)
        if parsed and parsed[0] in WG_QUICK_KEYS:
            lines.append(f"# {line}")
        else:
            lines.append(line)
    return "\n".join(lines) + "\n"
