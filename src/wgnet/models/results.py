"""Outcome records of orchestrator invocations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from wgnet.models.enums import TunnelState
from wgnet.models.tunnel import InterfaceState


@dataclass
class UpResult:
    """
    Outcome of an up invocation.

    ``state`` is the mechanical state; ``health`` (a HealthReport, None when
    the sequence failed) is reported separately and never turns UP into
    FAILED.
    """

    state: TunnelState
    health: Any = None
    warnings: list[Warning] = field(default_factory=list)
    failed_step: str | None = None
    last_observed_state: Any = None
    already_established: bool = False


@dataclass
class DownResult:
    state: TunnelState
    removed: list[str] = field(default_factory=list)
    warnings: list[Warning] = field(default_factory=list)
    network_removed: bool = False


@dataclass
class StatusReport:
    """Snapshot used by the status command."""

    interface: InterfaceState
    routing_table_in_use: bool
    network_exists: bool
    network_connections: int
    health: Any

    @property
    def state(self) -> TunnelState:
        return TunnelState.UP if self.interface.operational else TunnelState.DOWN
