"""
Tunnel network orchestrator.

This module drives the host between "down" and "up" for one Docker network
bound to one WireGuard device.

Up sequence:
=============
1. Docker network exists (created with subnet, MTU and a fixed bridge name)
2. Device already admin-up with carrier -> established, skip to 12
3. Routing table used by someone else -> warn (RoutingTableCollision), proceed
4. WireGuard device exists
5. Keys/peers loaded with ``wg setconf`` (Address/DNS commented out)
6. Local address assigned
7. net.ipv4.ip_forward = 1
8. Device MTU set
9. Device admin-up, carrier up
10. Policy routing:
    - from <subnet> lookup <table>
    - default dev <device> src <local> metric 100   (table)
    - blackhole default metric 200                  (table)
    - from <subnet> lookup main suppress_prefixlength 0
11. iptables: MASQUERADE out the device, FORWARD bridge <-> device
12. Health probe (reported only)

Every step is guarded by a predicate, so a second ``up`` on a converged host
performs no mutation. A failing step leaves the host partially configured;
the next ``up`` or ``down`` converges it.

Step 2 judges the tunnel by the device alone. If a routing or firewall step
failed after the device came up, a later ``up`` sees an operational device
and skips steps 3-11, leaving the subnet on the main table without its
blackhole. Only ``down`` followed by ``up`` repairs that state.

Down sequence:
==============
Device, rules, routes and iptables rules are removed when present, each
independently and without aborting on failure. The Docker network is removed
only when no container is attached to it.
"""

from __future__ import annotations

from wgnet.config import TunnelNetConfig
from wgnet.exceptions import (
    DockerConnectionError,
    NetworkStillInUse,
    RoutingTableCollision,
    StepFailed,
)
from wgnet.models.enums import TunnelState
from wgnet.models.results import DownResult, StatusReport, UpResult
from wgnet.models.tunnel import (
    MAIN_TABLE,
    FirewallRuleSet,
    NetworkDescriptor,
    RoutingPolicy,
    TunnelConfig,
)
from wgnet.services import docker_network, firewall, link, routing
from wgnet.services.config_resolver import resolve_config
from wgnet.services.health import HealthProbe
from wgnet.services.lock import NamedLock
from wgnet.services.state_probe import StateProbe
from wgnet.services.step_executor import StepExecutor
from wgnet.utils.logger import get_logger

logger = get_logger(__name__)


class TunnelNetworkOrchestrator:
    """
    Drives one network/tunnel binding between DOWN and UP.

    Host state is the source of truth: nothing is remembered between
    invocations, every decision is taken on a fresh StateProbe read.
    """

    def __init__(
        self,
        config: TunnelNetConfig,
        ipr=None,
        docker_client=None,
        executor: StepExecutor | None = None,
        ip_forward_path: str = routing.IP_FORWARD_PATH,
    ):
        self.config = config
        self.state = TunnelState.DOWN
        self.ip_forward_path = ip_forward_path

        self._ipr = ipr
        self._owns_ipr = ipr is None
        self._docker = docker_client

        self.executor = executor or StepExecutor(
            poll_interval=config.POLL_INTERVAL_SECONDS,
            max_attempts=config.MAX_ATTEMPTS,
        )
        self.probe = StateProbe(
            ipr=self._get_ipr(),
            docker_client_fn=self._get_docker,
            iptables=config.IPTABLES_PATH,
            wg=config.WG_PATH,
            ip_forward_path=ip_forward_path,
            probe_image=config.PROBE_IMAGE,
            probe_url=config.PROBE_URL,
        )
        self.health = HealthProbe(
            self.probe,
            network_timeout=config.PROBE_TIMEOUT_SECONDS,
            host_timeout=config.HOST_PROBE_TIMEOUT_SECONDS,
        )

    def _get_ipr(self):
        """Get or create IPRoute instance."""
        if self._ipr is None:
            from pyroute2 import IPRoute

            self._ipr = IPRoute()
        return self._ipr

    def _get_docker(self):
        """Get or create the Docker client."""
        if self._docker is None:
            self._docker = docker_network.connect_docker()
        return self._docker

    def _lock(self) -> NamedLock:
        return NamedLock(
            self.config.get_lock_path(), timeout=self.config.LOCK_TIMEOUT_SECONDS
        )

    def _resolve(self) -> tuple[TunnelConfig, NetworkDescriptor, RoutingPolicy]:
        """Resolve everything an invocation needs before touching the host."""
        tunnel = resolve_config(self.config.CONFIG_PATH)
        network = self.config.get_network_descriptor()
        policy = self.config.get_routing_policy(tunnel.local_address)
        return tunnel, network, policy

    def _bridge_for(self, network: NetworkDescriptor) -> str:
        return self.probe.network_bridge(network.name) or network.bridge_name

    # =========================================================================
    # Up
    # =========================================================================

    def up(self) -> UpResult:
        """
        Bring the tunnel network up.

        Raises:
            ConfigNotFound, ConfigMalformed, InvalidNetworkConfig: Before any
                host change.
            LockTimeout: Another invocation holds the lock.
        """
        tunnel, network, policy = self._resolve()

        with self._lock():
            logger.info(
                f"Bringing up {self.config.DEVICE_NAME} for network {network.name} "
                f"({network.subnet}, table {policy.table})"
            )
            self.state = TunnelState.TRANSITIONING
            warnings: list[Warning] = []
            already_established = False

            try:
                self._ensure_network(network)

                if self.probe.interface_state(self.config.DEVICE_NAME).operational:
                    logger.info(
                        f"{self.config.DEVICE_NAME} is already up with carrier, "
                        f"tunnel considered established"
                    )
                    already_established = True
                else:
                    collision = self._check_table(policy)
                    if collision is not None:
                        warnings.append(collision)
                    self._ensure_device(tunnel, network)
                    self._ensure_routing(policy)
                    self._ensure_firewall(network)
            except StepFailed as e:
                self.state = TunnelState.FAILED
                logger.error(f"Up sequence aborted at step '{e.step}'")
                return UpResult(
                    state=self.state,
                    warnings=warnings,
                    failed_step=e.step,
                    last_observed_state=e.last_observed_state,
                )

            self.state = TunnelState.UP

        report = self.health.check(network)
        return UpResult(
            state=self.state,
            health=report,
            warnings=warnings,
            already_established=already_established,
        )

    def _ensure_network(self, network: NetworkDescriptor) -> None:
        self.executor.apply(
            "create docker network",
            action=lambda: docker_network.create_network_sync(
                self._get_docker(), network
            ),
            verify=lambda: self.probe.network_exists(network.name),
        )

    def _check_table(self, policy: RoutingPolicy) -> RoutingTableCollision | None:
        owners = self.probe.routing_table_foreign_owners(
            policy.table, policy.source
        )
        if not owners:
            return None
        collision = RoutingTableCollision(policy.table, owners)
        logger.warning(str(collision))
        return collision

    def _ensure_device(self, tunnel: TunnelConfig, network: NetworkDescriptor) -> None:
        ipr = self._get_ipr()
        device = self.config.DEVICE_NAME

        self.executor.apply(
            "create tunnel device",
            action=lambda: link.create_wireguard_sync(ipr, device),
            verify=lambda: self.probe.interface_state(device).exists,
        )
        self.executor.apply(
            "load peer configuration",
            action=lambda: link.load_engine_config_sync(
                self.config.WG_PATH, device, tunnel.raw_config_path
            ),
            verify=lambda: self.probe.engine_matches(device, tunnel.engine),
        )
        self.executor.apply(
            "assign tunnel address",
            action=lambda: link.assign_address_sync(
                ipr, device, str(tunnel.local_address), tunnel.prefix_length
            ),
            verify=lambda: self.probe.address_assigned(device, tunnel.local_address),
            observe=lambda: self.probe.interface_state(device),
        )
        self.executor.apply(
            "enable ip forwarding",
            action=lambda: routing.enable_ip_forward_sync(self.ip_forward_path),
            verify=self.probe.ip_forward_enabled,
        )
        self.executor.apply(
            "set device mtu",
            action=lambda: link.set_mtu_sync(ipr, device, network.mtu),
            verify=lambda: self.probe.device_mtu(device) == network.mtu,
            observe=lambda: self.probe.interface_state(device),
        )
        self.executor.apply(
            "bring device up",
            action=lambda: link.set_up_sync(ipr, device),
            verify=lambda: self.probe.interface_state(device).operational,
            observe=lambda: self.probe.interface_state(device),
        )

    def _ensure_routing(self, policy: RoutingPolicy) -> None:
        ipr = self._get_ipr()
        device = self.config.DEVICE_NAME

        self.executor.apply(
            "add source rule",
            action=lambda: routing.add_table_rule_sync(ipr, policy),
            verify=lambda: self.probe.rule_exists(
                policy.table, policy.table_priority, policy.source
            ),
        )
        self.executor.apply(
            "add table default route",
            action=lambda: routing.add_default_route_sync(
                ipr, policy, link.get_link_index(ipr, device)
            ),
            verify=lambda: self.probe.route_exists(policy.table, policy.PRIMARY_METRIC),
        )
        self.executor.apply(
            "add table blackhole route",
            action=lambda: routing.add_blackhole_route_sync(ipr, policy),
            verify=lambda: self.probe.route_exists(
                policy.table, policy.BLACKHOLE_METRIC, blackhole=True
            ),
        )
        self.executor.apply(
            "add main suppress rule",
            action=lambda: routing.add_suppress_rule_sync(ipr, policy),
            verify=lambda: self.probe.rule_exists(
                MAIN_TABLE, policy.suppress_priority, policy.source
            ),
        )

    def _ensure_firewall(self, network: NetworkDescriptor) -> None:
        iptables = self.config.IPTABLES_PATH
        rule_set = FirewallRuleSet(
            subnet=network.subnet,
            device=self.config.DEVICE_NAME,
            bridge=self._bridge_for(network),
        )
        for rule in rule_set:
            self.executor.apply(
                f"add firewall rule ({rule.description})",
                action=lambda rule=rule: firewall.add_rule_sync(iptables, rule),
                verify=lambda rule=rule: self.probe.firewall_rule_exists(rule),
            )

        link.set_trusted_zone(self.config.DEVICE_NAME, trusted=True)

    # =========================================================================
    # Down
    # =========================================================================

    def down(self) -> DownResult:
        """
        Tear the tunnel network down.

        Raises:
            ConfigNotFound, ConfigMalformed, InvalidNetworkConfig: Before any
                host change.
            LockTimeout: Another invocation holds the lock.
        """
        tunnel, network, policy = self._resolve()
        ipr = self._get_ipr()
        device = self.config.DEVICE_NAME
        iptables = self.config.IPTABLES_PATH
        result = DownResult(state=TunnelState.TRANSITIONING)

        with self._lock():
            logger.info(f"Bringing down {device} for network {network.name}")
            self.state = TunnelState.TRANSITIONING

            def remove(step, action, present):
                if self.executor.remove(step, action, present):
                    result.removed.append(step)

            if self.probe.interface_state(device).exists:
                link.set_trusted_zone(device, trusted=False)
            remove(
                "delete tunnel device",
                lambda: link.delete_link_sync(ipr, device),
                lambda: self.probe.interface_state(device).exists,
            )
            remove(
                "remove source rule",
                lambda: routing.del_table_rule_sync(ipr, policy),
                lambda: self.probe.rule_exists(
                    policy.table, policy.table_priority, policy.source
                ),
            )
            remove(
                "remove table default route",
                lambda: routing.del_default_route_sync(ipr, policy),
                lambda: self.probe.route_exists(policy.table, policy.PRIMARY_METRIC),
            )
            remove(
                "remove table blackhole route",
                lambda: routing.del_blackhole_route_sync(ipr, policy),
                lambda: self.probe.route_exists(
                    policy.table, policy.BLACKHOLE_METRIC, blackhole=True
                ),
            )
            remove(
                "remove main suppress rule",
                lambda: routing.del_suppress_rule_sync(ipr, policy),
                lambda: self.probe.rule_exists(
                    MAIN_TABLE, policy.suppress_priority, policy.source
                ),
            )

            try:
                bridge = self._bridge_for(network)
                docker_available = True
            except DockerConnectionError as e:
                logger.warning(f"Docker unavailable, assuming default bridge: {e}")
                bridge = network.bridge_name
                docker_available = False

            rule_set = FirewallRuleSet(
                subnet=network.subnet, device=device, bridge=bridge
            )
            for rule in rule_set:
                remove(
                    f"remove firewall rule ({rule.description})",
                    lambda rule=rule: firewall.delete_rule_sync(iptables, rule),
                    lambda rule=rule: self.probe.firewall_rule_exists(rule),
                )

            connections = (
                self.probe.network_active_connections(network.name)
                if docker_available
                else 0
            )
            if not docker_available:
                logger.warning(f"Leaving Docker network {network.name} in place")
            elif connections > 0:
                in_use = NetworkStillInUse(network.name, connections)
                logger.warning(str(in_use))
                result.warnings.append(in_use)
            else:
                result.network_removed = self.executor.remove(
                    "remove docker network",
                    lambda: docker_network.remove_network_sync(
                        self._get_docker(), network.name
                    ),
                    lambda: self.probe.network_exists(network.name),
                )

            self.state = TunnelState.DOWN

        logger.info(
            f"Tunnel network down: removed {len(result.removed)} item(s)"
            + (", docker network removed" if result.network_removed else "")
        )
        result.state = self.state
        return result

    # =========================================================================
    # Status
    # =========================================================================

    def status(self) -> StatusReport:
        """Read-only snapshot of the binding plus a health probe."""
        network = self.config.get_network_descriptor()
        try:
            exists = self.probe.network_exists(network.name)
            connections = (
                self.probe.network_active_connections(network.name) if exists else 0
            )
        except DockerConnectionError as e:
            logger.warning(f"Docker unavailable, reporting {network.name} as absent: {e}")
            exists, connections = False, 0

        return StatusReport(
            interface=self.probe.interface_state(self.config.DEVICE_NAME),
            routing_table_in_use=self.probe.routing_table_in_use(
                self.config.ROUTING_TABLE
            ),
            network_exists=exists,
            network_connections=connections,
            health=self.health.check(network),
        )

    def close(self) -> None:
        """Close the IPRoute connection if this orchestrator opened it."""
        if self._ipr is not None and self._owns_ipr:
            self._ipr.close()
            self._ipr = None
