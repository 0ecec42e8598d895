"""External-observation health check for the tunnel network."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass

from wgnet.models.enums import HealthStatus
from wgnet.models.tunnel import NetworkDescriptor
from wgnet.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class HealthReport:
    """Apparent public addresses seen from the host and from the network."""

    status: HealthStatus
    host_address: ipaddress.IPv4Address | None
    network_address: ipaddress.IPv4Address | None


def evaluate(
    host_address: ipaddress.IPv4Address | None,
    network_address: ipaddress.IPv4Address | None,
) -> HealthStatus:
    """Up iff the network-scoped address is present and differs from the host's."""
    if network_address is not None and network_address != host_address:
        return HealthStatus.UP
    return HealthStatus.DOWN


class HealthProbe:
    """
    Compares the host's apparent address with the network's.

    Traffic from the network egressing through the tunnel shows up with the
    tunnel endpoint's address, so differing addresses mean the tunnel carries
    the network's traffic.
    """

    def __init__(self, probe, network_timeout: float = 5.0, host_timeout: float = 10.0):
        self.probe = probe
        self.network_timeout = network_timeout
        self.host_timeout = host_timeout

    def check(self, network: NetworkDescriptor) -> HealthReport:
        host_address = self.probe.external_address(None, self.host_timeout)
        network_address = self.probe.external_address(
            network.name, self.network_timeout
        )
        status = evaluate(host_address, network_address)
        logger.info(
            f"Health: {status.value} (host={host_address}, "
            f"{network.name}={network_address})"
        )
        return HealthReport(
            status=status,
            host_address=host_address,
            network_address=network_address,
        )
