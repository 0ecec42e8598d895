"""
Read-only queries of host networking state.

Every query reads the kernel (through netlink), the Docker daemon or
iptables at call time; nothing is cached between calls. "Not present" is
always a normal return value, never an exception.
"""

from __future__ import annotations

import ipaddress
import socket
import subprocess

import docker
import httpx

from wgnet.models.tunnel import EngineSettings, FirewallRule, InterfaceState
from wgnet.services import docker_network, firewall
from wgnet.services.link import IFF_UP, find_link
from wgnet.services.routing import IP_FORWARD_PATH
from wgnet.utils.logger import get_logger

logger = get_logger(__name__)

RTN_UNICAST = 1
RTN_BLACKHOLE = 6


def parse_address(text: str) -> ipaddress.IPv4Address | None:
    """Parse an IPv4 address out of a probe response body."""
    try:
        address = ipaddress.ip_address(text.strip())
    except ValueError:
        return None
    if address.version != 4:
        return None
    return address


def _rule_table(rule) -> int:
    return rule.get_attr("FRA_TABLE") or rule["table"]


def _route_table(route) -> int:
    return route.get_attr("RTA_TABLE") or route["table"]


def _rule_source(rule) -> str:
    src = rule.get_attr("FRA_SRC")
    if src is None:
        return "all"
    return f"{src}/{rule['src_len']}"


class StateProbe:
    """
    Typed queries of interface, routing, firewall and Docker state.

    Args:
        ipr: pyroute2 IPRoute handle.
        docker_client_fn: Callable returning a Docker client.
        iptables: iptables executable.
        wg: wg executable.
        ip_forward_path: sysctl file mirroring net.ipv4.ip_forward.
    """

    def __init__(
        self,
        ipr,
        docker_client_fn,
        iptables: str = "iptables",
        wg: str = "wg",
        ip_forward_path: str = IP_FORWARD_PATH,
        probe_image: str = "curlimages/curl:latest",
        probe_url: str = "https://api.ipify.org",
    ):
        self.ipr = ipr
        self._docker_client_fn = docker_client_fn
        self.iptables = iptables
        self.wg = wg
        self.ip_forward_path = ip_forward_path
        self.probe_image = probe_image
        self.probe_url = probe_url

    # -------------------------------------------------------------------------
    # Link layer
    # -------------------------------------------------------------------------

    def interface_state(self, name: str) -> InterfaceState:
        link = find_link(self.ipr, name)
        if link is None:
            return InterfaceState(name=name)

        idx = link["index"]
        address = None
        for addr in self.ipr.get_addr(index=idx):
            parsed = parse_address(addr.get_attr("IFA_ADDRESS") or "")
            if parsed is not None:
                address = parsed
                break

        return InterfaceState(
            name=name,
            exists=True,
            admin_up=bool(link["flags"] & IFF_UP),
            carrier_up=link.get_attr("IFLA_CARRIER") == 1,
            assigned_address=address,
            index=idx,
            mtu=link.get_attr("IFLA_MTU"),
        )

    def address_assigned(self, name: str, address: ipaddress.IPv4Address) -> bool:
        link = find_link(self.ipr, name)
        if link is None:
            return False
        return any(
            addr.get_attr("IFA_ADDRESS") == str(address)
            for addr in self.ipr.get_addr(index=link["index"])
        )

    def device_mtu(self, name: str) -> int | None:
        return self.interface_state(name).mtu

    def engine_matches(self, name: str, settings: EngineSettings) -> bool:
        """
        Whether the device reports the configured key, port and peers.

        ``wg show <dev> dump`` prints the interface line (private key, public
        key, listen port, fwmark) followed by one line per peer, starting
        with its public key. Keys the config leaves out are not compared, so
        a config without peers or a fixed port matches a bare device.
        """
        try:
            result = subprocess.run(
                [self.wg, "show", name, "dump"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            logger.warning(f"Could not query {name} with {self.wg}: {e}")
            return False
        if result.returncode != 0:
            return False

        lines = result.stdout.strip().splitlines()
        if not lines:
            return False
        interface = lines[0].split("\t")
        if settings.private_key is not None and interface[0] != settings.private_key:
            return False
        if settings.listen_port is not None and (
            len(interface) < 3 or interface[2] != str(settings.listen_port)
        ):
            return False

        loaded_peers = {line.split("\t", 1)[0] for line in lines[1:]}
        return set(settings.peers) <= loaded_peers

    def ip_forward_enabled(self) -> bool:
        try:
            with open(self.ip_forward_path) as f:
                return f.read().strip() == "1"
        except OSError:
            return False

    # -------------------------------------------------------------------------
    # Policy routing
    # -------------------------------------------------------------------------

    def _rules_in_table(self, table: int) -> list:
        return [
            rule
            for rule in self.ipr.get_rules(family=socket.AF_INET)
            if _rule_table(rule) == table
        ]

    def _routes_in_table(self, table: int) -> list:
        return [
            route
            for route in self.ipr.get_routes(family=socket.AF_INET, table=table)
            if _route_table(route) == table
        ]

    def routing_table_in_use(self, table: int) -> bool:
        return bool(self._rules_in_table(table) or self._routes_in_table(table))

    def routing_table_foreign(self, table: int, source) -> bool:
        return bool(self.routing_table_foreign_owners(table, source))

    def routing_table_foreign_owners(self, table: int, source) -> list[str]:
        """
        Describe users of a table other than rules from ``source``.

        A table holding only this subnet's rule (left over from an earlier
        partial run) is not foreign. Routes with no rule pointing at the
        table are reported as foreign.
        """
        ours = str(source)
        rules = self._rules_in_table(table)
        owners = [
            f"rule from {_rule_source(rule)}"
            for rule in rules
            if _rule_source(rule) != ours
        ]
        if not rules:
            routes = self._routes_in_table(table)
            if routes:
                owners.append(f"{len(routes)} route(s) with no rule")
        return owners

    def rule_exists(self, table: int, priority: int, source) -> bool:
        src = str(source)
        return any(
            rule.get_attr("FRA_PRIORITY") == priority and _rule_source(rule) == src
            for rule in self._rules_in_table(table)
        )

    def route_exists(self, table: int, metric: int, blackhole: bool = False) -> bool:
        """Whether the table holds a default route with the given metric."""
        route_type = RTN_BLACKHOLE if blackhole else RTN_UNICAST
        return any(
            route["dst_len"] == 0
            and route["type"] == route_type
            and route.get_attr("RTA_PRIORITY") == metric
            for route in self._routes_in_table(table)
        )

    # -------------------------------------------------------------------------
    # Packet filtering
    # -------------------------------------------------------------------------

    def firewall_rule_exists(self, rule: FirewallRule) -> bool:
        return firewall.rule_present(self.iptables, rule)

    # -------------------------------------------------------------------------
    # Docker networks
    # -------------------------------------------------------------------------

    def _network(self, name: str):
        return docker_network.get_network(self._docker_client_fn(), name)

    def network_exists(self, name: str) -> bool:
        return self._network(name) is not None

    def network_active_connections(self, name: str) -> int:
        """Count containers attached to a network (0 if it does not exist)."""
        network = self._network(name)
        if network is None:
            return 0
        network.reload()
        return len(network.attrs.get("Containers") or {})

    def network_bridge(self, name: str) -> str | None:
        network = self._network(name)
        if network is None:
            return None
        return docker_network.network_bridge_name(network)

    # -------------------------------------------------------------------------
    # External address
    # -------------------------------------------------------------------------

    def external_address(
        self, via: str | None = None, timeout: float = 5.0
    ) -> ipaddress.IPv4Address | None:
        """
        Resolve the apparent public address.

        Args:
            via: None to ask from the host itself, or a Docker network name to
                ask from a throwaway container attached to that network.
            timeout: Seconds before giving up; a timeout returns None.
        """
        if via is None:
            return self._host_external_address(timeout)
        return self._network_external_address(via, timeout)

    def _host_external_address(self, timeout: float) -> ipaddress.IPv4Address | None:
        try:
            response = httpx.get(self.probe_url, timeout=timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Host external address lookup failed: {e}")
            return None
        return parse_address(response.text)

    def _network_external_address(
        self, network: str, timeout: float
    ) -> ipaddress.IPv4Address | None:
        container = None
        try:
            client = self._docker_client_fn()
            container = client.containers.run(
                self.probe_image,
                ["-s", "--max-time", str(int(timeout)), self.probe_url],
                network=network,
                detach=True,
            )
            container.wait(timeout=timeout)
            output = container.logs(stdout=True, stderr=False)
        except Exception as e:
            # Covers daemon errors and the HTTP read timeout of wait()
            logger.warning(f"External address lookup via {network} failed: {e}")
            return None
        finally:
            if container is not None:
                try:
                    container.remove(force=True)
                except docker.errors.APIError as e:
                    logger.debug(f"Failed to remove probe container: {e}")

        if isinstance(output, bytes):
            output = output.decode(errors="replace")
        return parse_address(output)
