"""
Periodic re-assertion through systemd.

Usage:
    wgnet install                  # service + timer, registered and enabled
    wgnet install --no-install     # only write the unit files
    wgnet uninstall

The timer runs ``wgnet up`` at boot and then every ``--interval``. Since
``up`` is idempotent, each run either does nothing or repairs what drifted.
"""

import os
import shlex
import subprocess
import sys
from typing import Annotated

import typer

from wgnet.cli.output import console, print_error, print_success
from wgnet.config import TunnelNetConfig, config

SYSTEMD_DIR = "/etc/systemd/system"


def unit_name(cfg: TunnelNetConfig) -> str:
    return f"wgnet-{cfg.NETWORK_NAME}"


def render_units(
    cfg: TunnelNetConfig, interval: str, python_path: str | None = None
) -> dict[str, str]:
    """Render the service and timer units for a configuration."""
    python_path = python_path or sys.executable
    name = unit_name(cfg)
    args = [
        python_path,
        "-m",
        "wgnet.cli.main",
        "--network-name", cfg.NETWORK_NAME,
        "--subnet", cfg.NETWORK_SUBNET,
        "--device", cfg.DEVICE_NAME,
        "--config", cfg.CONFIG_PATH,
        "--mtu", str(cfg.MTU),
        "--table", str(cfg.ROUTING_TABLE),
        "--lock-dir", cfg.LOCK_DIR,
        "--max-attempts", str(cfg.MAX_ATTEMPTS),
        "--log-level", cfg.LOG_LEVEL.value,
    ]
    if cfg.LOG_FILE:
        args += ["--log-file", cfg.LOG_FILE]

    service = f"""[Unit]
Description=wgnet tunnel network {cfg.NETWORK_NAME} via {cfg.DEVICE_NAME}
After=network-online.target docker.service
Wants=network-online.target docker.service

[Service]
Type=oneshot
ExecStart={shlex.join(args + ["up"])}
"""

    timer = f"""[Unit]
Description=Periodically re-assert wgnet tunnel network {cfg.NETWORK_NAME}

[Timer]
OnBootSec=30s
OnUnitActiveSec={interval}
Unit={name}.service

[Install]
WantedBy=timers.target
"""
    return {f"{name}.service": service, f"{name}.timer": timer}


def _run(cmd: list[str]) -> bool:
    result = subprocess.run(cmd)
    if result.returncode != 0:
        print_error(f"Command failed: {' '.join(cmd)}")
        return False
    return True


def install(
    interval: Annotated[
        str,
        typer.Option("--interval", help="Re-assertion interval (systemd time span)"),
    ] = "5min",
    no_install: Annotated[
        bool,
        typer.Option(
            "--no-install", help="Only generate files, don't register with systemd"
        ),
    ] = False,
    output_dir: Annotated[
        str,
        typer.Option("--output-dir", "-o", help="Where to write unit files"),
    ] = SYSTEMD_DIR,
):
    """Install a systemd service and timer that keep the tunnel network up."""
    if no_install and output_dir == SYSTEMD_DIR:
        output_dir = "."

    units = render_units(config, interval)
    os.makedirs(output_dir, exist_ok=True)

    for filename, content in units.items():
        path = os.path.join(output_dir, filename)
        try:
            with open(path, "w") as f:
                f.write(content)
        except PermissionError:
            print_error(f"Cannot write {path} (are you root?)")
            raise typer.Exit(1)
        console.print(f"  Created: {path}")

    timer = f"{unit_name(config)}.timer"
    if no_install:
        console.print()
        console.print("[bold]Unit files created.[/bold]")
        console.print(f"To install manually, copy to {SYSTEMD_DIR}/ and run:")
        console.print("  sudo systemctl daemon-reload")
        console.print(f"  sudo systemctl enable --now {timer}")
        return

    if not (
        _run(["systemctl", "daemon-reload"])
        and _run(["systemctl", "enable", "--now", timer])
    ):
        raise typer.Exit(1)

    print_success(f"Installed and started {timer}")
    console.print(f"[dim]View logs: journalctl -u {unit_name(config)}.service -f[/dim]")


def uninstall(
    output_dir: Annotated[
        str,
        typer.Option("--output-dir", "-o", help="Where the unit files live"),
    ] = SYSTEMD_DIR,
):
    """Disable and remove the systemd service and timer."""
    name = unit_name(config)
    is_systemd_dir = output_dir == SYSTEMD_DIR

    if is_systemd_dir:
        # Disabling an unknown timer is harmless; ignore its exit status
        subprocess.run(["systemctl", "disable", "--now", f"{name}.timer"])

    removed = 0
    for filename in (f"{name}.timer", f"{name}.service"):
        path = os.path.join(output_dir, filename)
        if os.path.exists(path):
            os.remove(path)
            console.print(f"  Removed: {path}")
            removed += 1

    if is_systemd_dir and removed:
        _run(["systemctl", "daemon-reload"])

    if removed:
        print_success(f"Uninstalled {name}")
    else:
        console.print(f"{name} is not installed.")
