"""Host routing setup: IP forwarding, policy rules and per-table routes."""

from __future__ import annotations

import socket

from wgnet.models.tunnel import MAIN_TABLE, RoutingPolicy
from wgnet.utils.logger import get_logger

logger = get_logger(__name__)

IP_FORWARD_PATH = "/proc/sys/net/ipv4/ip_forward"

DEFAULT_DST = "0.0.0.0"


def enable_ip_forward_sync(path: str = IP_FORWARD_PATH) -> None:
    """Enable IPv4 forwarding (net.ipv4.ip_forward=1)."""
    with open(path, "w") as f:
        f.write("1")
    logger.info("Enabled IPv4 forwarding")


def _source_kwargs(policy: RoutingPolicy) -> dict:
    return {
        "family": socket.AF_INET,
        "src": str(policy.source.network_address),
        "src_len": policy.source.prefixlen,
    }


def table_rule_kwargs(policy: RoutingPolicy) -> dict:
    """Rule: from <subnet> lookup <table>."""
    return {
        "table": policy.table,
        "priority": policy.table_priority,
        **_source_kwargs(policy),
    }


def suppress_rule_kwargs(policy: RoutingPolicy) -> dict:
    """
    Rule: from <subnet> lookup main suppress_prefixlength 0.

    Evaluated before the table rule. Specific main-table routes (the Docker
    bridge itself, local subnets) still match, but the main default route is
    suppressed so the subnet falls through to the private table.
    """
    return {
        "table": MAIN_TABLE,
        "priority": policy.suppress_priority,
        "suppress_prefixlen": 0,
        **_source_kwargs(policy),
    }


def default_route_kwargs(policy: RoutingPolicy, oif: int) -> dict:
    return {
        "family": socket.AF_INET,
        "dst": DEFAULT_DST,
        "dst_len": 0,
        "table": policy.table,
        "oif": oif,
        "prefsrc": str(policy.via_address),
        "priority": policy.PRIMARY_METRIC,
    }


def blackhole_route_kwargs(policy: RoutingPolicy) -> dict:
    return {
        "family": socket.AF_INET,
        "dst": DEFAULT_DST,
        "dst_len": 0,
        "table": policy.table,
        "type": "blackhole",
        "priority": policy.BLACKHOLE_METRIC,
    }


def add_table_rule_sync(ipr, policy: RoutingPolicy) -> None:
    logger.info(f"Adding rule: from {policy.source} lookup {policy.table}")
    ipr.rule("add", **table_rule_kwargs(policy))


def del_table_rule_sync(ipr, policy: RoutingPolicy) -> None:
    ipr.rule("del", **table_rule_kwargs(policy))
    logger.info(f"Removed rule: from {policy.source} lookup {policy.table}")


def add_suppress_rule_sync(ipr, policy: RoutingPolicy) -> None:
    logger.info(
        f"Adding rule: from {policy.source} lookup main suppress_prefixlength 0"
    )
    ipr.rule("add", **suppress_rule_kwargs(policy))


def del_suppress_rule_sync(ipr, policy: RoutingPolicy) -> None:
    ipr.rule("del", **suppress_rule_kwargs(policy))
    logger.info(f"Removed main-table suppress rule for {policy.source}")


def add_default_route_sync(ipr, policy: RoutingPolicy, oif: int) -> None:
    logger.info(
        f"Adding route: default via device {oif} src {policy.via_address} "
        f"table {policy.table} metric {policy.PRIMARY_METRIC}"
    )
    ipr.route("add", **default_route_kwargs(policy, oif))


def del_default_route_sync(ipr, policy: RoutingPolicy) -> None:
    ipr.route(
        "del",
        family=socket.AF_INET,
        dst=DEFAULT_DST,
        dst_len=0,
        table=policy.table,
        priority=policy.PRIMARY_METRIC,
    )
    logger.info(f"Removed default route from table {policy.table}")


def add_blackhole_route_sync(ipr, policy: RoutingPolicy) -> None:
    logger.info(
        f"Adding route: blackhole default table {policy.table} "
        f"metric {policy.BLACKHOLE_METRIC}"
    )
    ipr.route("add", **blackhole_route_kwargs(policy))


def del_blackhole_route_sync(ipr, policy: RoutingPolicy) -> None:
    ipr.route("del", **blackhole_route_kwargs(policy))
    logger.info(f"Removed blackhole route from table {policy.table}")
