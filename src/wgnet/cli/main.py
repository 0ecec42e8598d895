"""
wgnet CLI entry point.

Usage:
    wgnet [OPTIONS] COMMAND [ARGS]...

Commands:
    up         Bring the tunnel network up
    down       Tear the tunnel network down
    status     Report whether the network egresses through the tunnel
    install    Install a systemd timer re-asserting "up"
    uninstall  Remove the systemd timer
    version    Show version information

Command names are case-insensitive.
"""

import json
from typing import Annotated

import typer

from wgnet.cli.commands import service
from wgnet.cli.output import console, print_error, print_success, print_warning
from wgnet.config import config
from wgnet.exceptions import WgNetError
from wgnet.models.enums import HealthStatus, LogLevel, TunnelState
from wgnet.utils.logger import configure_logging

app = typer.Typer(
    name="wgnet",
    help="Route a Docker network through a WireGuard tunnel",
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"token_normalize_func": str.lower},
)

app.command("install")(service.install)
app.command("uninstall")(service.uninstall)


@app.callback()
def main(
    network_name: Annotated[
        str,
        typer.Option("--network-name", "-n", help="Docker network name", envvar="WGNET_NETWORK"),
    ] = config.NETWORK_NAME,
    subnet: Annotated[
        str,
        typer.Option("--subnet", "-s", help="Docker network subnet (CIDR)", envvar="WGNET_SUBNET"),
    ] = config.NETWORK_SUBNET,
    device: Annotated[
        str,
        typer.Option("--device", "-d", help="WireGuard device name", envvar="WGNET_DEVICE"),
    ] = config.DEVICE_NAME,
    config_path: Annotated[
        str,
        typer.Option("--config", "-c", help="WireGuard config file", envvar="WGNET_CONFIG"),
    ] = config.CONFIG_PATH,
    mtu: Annotated[
        int,
        typer.Option("--mtu", help="Tunnel and network MTU", envvar="WGNET_MTU"),
    ] = config.MTU,
    table: Annotated[
        int,
        typer.Option(
            "--table", "-t", help="Policy routing table (1-252)", min=1, max=252,
            envvar="WGNET_TABLE",
        ),
    ] = config.ROUTING_TABLE,
    lock_dir: Annotated[
        str,
        typer.Option("--lock-dir", help="Directory for lock files", envvar="WGNET_LOCK_DIR"),
    ] = config.LOCK_DIR,
    max_attempts: Annotated[
        int,
        typer.Option("--max-attempts", help="Verify attempts per step", min=1),
    ] = config.MAX_ATTEMPTS,
    log_level: Annotated[
        LogLevel,
        typer.Option("--log-level", "-l", help="Log verbosity", envvar="WGNET_LOG_LEVEL"),
    ] = config.LOG_LEVEL,
    log_file: Annotated[
        str,
        typer.Option("--log-file", help="Also log to this file", envvar="WGNET_LOG_FILE"),
    ] = config.LOG_FILE,
):
    """
    Route a Docker network's egress through a WireGuard tunnel.

    Only traffic from the network's subnet is policy-routed through the
    tunnel; if the tunnel drops, that traffic is blackholed.
    """
    config.NETWORK_NAME = network_name
    config.NETWORK_SUBNET = subnet
    config.DEVICE_NAME = device
    config.CONFIG_PATH = config_path
    config.MTU = mtu
    config.ROUTING_TABLE = table
    config.LOCK_DIR = lock_dir
    config.MAX_ATTEMPTS = max_attempts
    config.LOG_LEVEL = log_level
    config.LOG_FILE = log_file

    configure_logging(log_level, log_file)


def build_orchestrator():
    """Create the orchestrator for the current configuration."""
    from wgnet.services.orchestrator import TunnelNetworkOrchestrator

    return TunnelNetworkOrchestrator(config)


@app.command("up")
def up():
    """Bring the tunnel network up (idempotent)."""
    try:
        orchestrator = build_orchestrator()
        try:
            result = orchestrator.up()
        finally:
            orchestrator.close()
    except WgNetError as e:
        print_error(str(e))
        raise typer.Exit(1)

    for warning in result.warnings:
        print_warning(str(warning))

    if result.state == TunnelState.FAILED:
        print_error(
            f"Step '{result.failed_step}' failed. "
            f"Last observed state: {result.last_observed_state}"
        )
        raise typer.Exit(1)

    if result.already_established:
        console.print(f"{config.DEVICE_NAME} already established.")
    else:
        print_success(f"{config.DEVICE_NAME} is up for network {config.NETWORK_NAME}.")

    if result.health is not None and result.health.status == HealthStatus.DOWN:
        print_warning(
            "Tunnel is configured but traffic from the network does not appear "
            "to egress through it."
        )


@app.command("down")
def down():
    """Tear the tunnel network down (idempotent)."""
    try:
        orchestrator = build_orchestrator()
        try:
            result = orchestrator.down()
        finally:
            orchestrator.close()
    except WgNetError as e:
        print_error(str(e))
        raise typer.Exit(1)

    for warning in result.warnings:
        print_warning(str(warning))

    if result.removed or result.network_removed:
        print_success(f"{config.DEVICE_NAME} is down.")
    else:
        console.print("Nothing to remove, already down.")


def format_status_line(report) -> str:
    """The scriptable one-line status."""
    health = report.health
    if health.status == HealthStatus.UP:
        return f"VPN is UP. VPN IP: {health.network_address}"
    return f"VPN is DOWN. Host IP: {health.host_address or 'unknown'}"


@app.command("status")
def status(
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the full snapshot as JSON"),
    ] = False,
):
    """Report whether the network's traffic leaves through the tunnel."""
    try:
        orchestrator = build_orchestrator()
        try:
            report = orchestrator.status()
        finally:
            orchestrator.close()
    except WgNetError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if as_json:
        iface = report.interface
        console.print_json(
            json.dumps(
                {
                    "state": report.state.value,
                    "health": report.health.status.value,
                    "host_address": _str_or_none(report.health.host_address),
                    "network_address": _str_or_none(report.health.network_address),
                    "interface": {
                        "name": iface.name,
                        "exists": iface.exists,
                        "admin_up": iface.admin_up,
                        "carrier_up": iface.carrier_up,
                        "assigned_address": _str_or_none(iface.assigned_address),
                        "mtu": iface.mtu,
                    },
                    "routing_table": config.ROUTING_TABLE,
                    "routing_table_in_use": report.routing_table_in_use,
                    "network": config.NETWORK_NAME,
                    "network_exists": report.network_exists,
                    "network_connections": report.network_connections,
                }
            )
        )
        return

    typer.echo(format_status_line(report))


def _str_or_none(value):
    return None if value is None else str(value)


@app.command("version")
def version():
    """Show version information."""
    from wgnet import __version__

    console.print(f"wgnet v{__version__}")


def run():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
