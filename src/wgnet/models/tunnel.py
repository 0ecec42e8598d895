"""
Data models for the tunnel network.

TunnelConfig and NetworkDescriptor are built fresh for every invocation.
InterfaceState, RoutingPolicy and FirewallRule describe host-global kernel
state: they are snapshots or assertions about that state, never a cache of it.

Addressing example (defaults):
- Docker network wg0-net: 10.20.0.0/16 on bridge br-wg0-net
- WireGuard device wg0-docker: 10.20.0.2/24
- Routing table 100:
    default dev wg0-docker src 10.20.0.2 metric 100
    blackhole default metric 200
- Rules:
    9100: from 10.20.0.0/16 lookup main suppress_prefixlength 0
    10100: from 10.20.0.0/16 lookup 100
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field

from wgnet.exceptions import InvalidNetworkConfig

# Linux interface names are limited to 15 characters
IFNAMSIZ = 15

# WireGuard adds up to 80 bytes of headers (IPv6 outer + UDP + WG)
WIREGUARD_OVERHEAD = 80
LINK_MTU = 1500
MAX_TUNNEL_MTU = LINK_MTU - WIREGUARD_OVERHEAD

MAIN_TABLE = 254


@dataclass(frozen=True)
class EngineSettings:
    """Engine keys a loaded device is expected to report back."""

    private_key: str | None = None
    listen_port: int | None = None
    peers: tuple[str, ...] = ()


@dataclass(frozen=True)
class TunnelConfig:
    """
    Tunnel addressing resolved from a WireGuard configuration file.

    Attributes:
        local_address: Address assigned to the tunnel device.
        prefix_length: Prefix length of the tunnel address.
        raw_config_path: Path of the file it was read from.
        engine: Key, port and peers the file hands to ``wg setconf``.
    """

    local_address: ipaddress.IPv4Address
    prefix_length: int
    raw_config_path: str
    engine: EngineSettings = field(default_factory=EngineSettings)

    @property
    def interface(self) -> ipaddress.IPv4Interface:
        return ipaddress.IPv4Interface(f"{self.local_address}/{self.prefix_length}")


@dataclass(frozen=True)
class NetworkDescriptor:
    """
    Docker network bound to the tunnel.

    Attributes:
        name: Docker network name.
        subnet: IPv4 subnet of the network.
        mtu: MTU for the network and the tunnel device.
        bridge_name: Linux bridge backing the network.
    """

    name: str
    subnet: ipaddress.IPv4Network
    mtu: int
    bridge_name: str

    @classmethod
    def create(
        cls, name: str, subnet_cidr: str, mtu: int, bridge_name: str = ""
    ) -> NetworkDescriptor:
        """
        Validate and build a network descriptor.

        Raises:
            InvalidNetworkConfig: If the subnet is not a valid IPv4 CIDR or the
                MTU does not fit inside the tunnel.
        """
        if not name:
            raise InvalidNetworkConfig("Network name must not be empty")

        try:
            subnet = ipaddress.IPv4Network(subnet_cidr, strict=True)
        except ValueError as e:
            raise InvalidNetworkConfig(f"Invalid subnet CIDR '{subnet_cidr}': {e}")

        if mtu < 1 or mtu > MAX_TUNNEL_MTU:
            raise InvalidNetworkConfig(
                f"Invalid MTU {mtu}: must be between 1 and {MAX_TUNNEL_MTU} "
                f"({LINK_MTU} minus {WIREGUARD_OVERHEAD} bytes of WireGuard overhead)"
            )

        if not bridge_name:
            bridge_name = f"br-{name}"[:IFNAMSIZ]
        if len(bridge_name) > IFNAMSIZ:
            raise InvalidNetworkConfig(
                f"Bridge name '{bridge_name}' exceeds {IFNAMSIZ} characters"
            )

        return cls(name=name, subnet=subnet, mtu=mtu, bridge_name=bridge_name)

    @property
    def gateway(self) -> ipaddress.IPv4Address:
        """First usable address, used as the bridge gateway."""
        return self.subnet.network_address + 1


@dataclass(frozen=True)
class RoutingPolicy:
    """
    Policy routing binding a source subnet to egress through the tunnel.

    The primary route and the blackhole share the table; the blackhole has a
    higher metric so it only matches once the primary route is gone.
    """

    table: int
    source: ipaddress.IPv4Network
    via_address: ipaddress.IPv4Address

    PRIMARY_METRIC = 100
    BLACKHOLE_METRIC = 200
    SUPPRESS_PRIORITY_BASE = 9000
    TABLE_PRIORITY_BASE = 10000

    def __post_init__(self):
        if self.table < 1 or self.table > 252:
            raise InvalidNetworkConfig(
                f"Invalid routing table {self.table}: must be between 1 and 252"
            )

    @property
    def suppress_priority(self) -> int:
        """Priority of the main-table suppress rule, evaluated first."""
        return self.SUPPRESS_PRIORITY_BASE + self.table

    @property
    def table_priority(self) -> int:
        return self.TABLE_PRIORITY_BASE + self.table


@dataclass
class InterfaceState:
    """Snapshot of one network interface, read fresh from the kernel."""

    name: str
    exists: bool = False
    admin_up: bool = False
    carrier_up: bool = False
    assigned_address: ipaddress.IPv4Address | None = None
    index: int | None = None
    mtu: int | None = None

    @property
    def operational(self) -> bool:
        return self.exists and self.admin_up and self.carrier_up


@dataclass(frozen=True)
class FirewallRule:
    """
    One iptables rule, expressed as the arguments after the chain name.

    The same match is used with -C (check), -A (append) and -D (delete), so
    presence is tested on the rule itself and not on its position.
    """

    description: str
    chain: str
    match: tuple[str, ...]
    table: str = "filter"

    def _args(self, op: str) -> list[str]:
        return ["-t", self.table, op, self.chain, *self.match]

    def check_args(self) -> list[str]:
        return self._args("-C")

    def add_args(self) -> list[str]:
        return self._args("-A")

    def delete_args(self) -> list[str]:
        return self._args("-D")


@dataclass(frozen=True)
class FirewallRuleSet:
    """NAT and forward rules binding a Docker bridge to the tunnel device."""

    subnet: ipaddress.IPv4Network
    device: str
    bridge: str
    rules: tuple[FirewallRule, ...] = field(init=False)

    def __post_init__(self):
        object.__setattr__(
            self,
            "rules",
            (
                FirewallRule(
                    description=f"masquerade {self.subnet} out {self.device}",
                    table="nat",
                    chain="POSTROUTING",
                    match=(
                        "-s", str(self.subnet),
                        "-o", self.device,
                        "-j", "MASQUERADE",
                    ),
                ),
                FirewallRule(
                    description=f"forward {self.bridge} -> {self.device}",
                    chain="FORWARD",
                    match=("-i", self.bridge, "-o", self.device, "-j", "ACCEPT"),
                ),
                FirewallRule(
                    description=f"forward {self.device} -> {self.bridge}",
                    chain="FORWARD",
                    match=("-i", self.device, "-o", self.bridge, "-j", "ACCEPT"),
                ),
            ),
        )

    def __iter__(self):
        return iter(self.rules)
