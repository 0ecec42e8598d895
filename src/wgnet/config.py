"""
wgnet configuration.

A global Config instance populated by the CLI from options and WGNET_*
environment variables before any operation runs.

Usage:
    from wgnet.config import config

    config.NETWORK_NAME = "vpn-net"
    config.ROUTING_TABLE = 101
"""

import ipaddress
import os
from dataclasses import dataclass

from wgnet.models.enums import LogLevel
from wgnet.models.tunnel import NetworkDescriptor, RoutingPolicy


@dataclass
class TunnelNetConfig:
    """Tunnel network configuration."""

    # Docker Network Configuration
    NETWORK_NAME: str = "wg0-net"
    NETWORK_SUBNET: str = "10.20.0.0/16"
    BRIDGE_NAME: str = ""  # Defaults to br-<NETWORK_NAME>

    # Tunnel Configuration
    DEVICE_NAME: str = "wg0-docker"
    CONFIG_PATH: str = "/etc/wireguard/wg0.conf"
    MTU: int = 1420
    ROUTING_TABLE: int = 100
    WG_PATH: str = "wg"
    IPTABLES_PATH: str = "iptables"

    # Step Polling Configuration
    POLL_INTERVAL_SECONDS: float = 1.0
    MAX_ATTEMPTS: int = 30

    # Locking Configuration
    LOCK_DIR: str = "/run/lock"
    LOCK_TIMEOUT_SECONDS: float = 10.0

    # Health Probe Configuration
    PROBE_IMAGE: str = "curlimages/curl:latest"
    PROBE_URL: str = "https://api.ipify.org"
    PROBE_TIMEOUT_SECONDS: float = 5.0
    HOST_PROBE_TIMEOUT_SECONDS: float = 10.0

    # Logging Configuration
    LOG_LEVEL: LogLevel = LogLevel.INFO
    LOG_FILE: str = ""

    def get_network_descriptor(self) -> NetworkDescriptor:
        """Build and validate the Docker network descriptor."""
        return NetworkDescriptor.create(
            name=self.NETWORK_NAME,
            subnet_cidr=self.NETWORK_SUBNET,
            mtu=self.MTU,
            bridge_name=self.BRIDGE_NAME,
        )

    def get_routing_policy(
        self, local_address: ipaddress.IPv4Address
    ) -> RoutingPolicy:
        """Routing policy steering the network's subnet through the tunnel."""
        return RoutingPolicy(
            table=self.ROUTING_TABLE,
            source=self.get_network_descriptor().subnet,
            via_address=local_address,
        )

    def get_lock_path(self) -> str:
        """Get the lock file path for this network identity."""
        return os.path.join(self.LOCK_DIR, f"wgnet-{self.NETWORK_NAME}.lock")


# Global config instance
config = TunnelNetConfig()
