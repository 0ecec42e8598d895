"""
Enumeration types for wgnet.

This module defines the enumeration types used for orchestration state,
health reporting and configuration options.
"""

from enum import Enum


# =============================================================================
# Orchestration Enums
# =============================================================================


class TunnelState(str, Enum):
    """
    Mechanical state of the tunnel network.

    State transitions:
        DOWN -> TRANSITIONING -> UP
        UP -> TRANSITIONING -> DOWN
        TRANSITIONING -> FAILED (a step exhausted its attempts)
    """

    DOWN = "down"
    TRANSITIONING = "transitioning"
    UP = "up"
    FAILED = "failed"  # Terminal for one invocation, no rollback


class HealthStatus(str, Enum):
    """Logical reachability of the tunnel as seen from outside."""

    UP = "up"
    DOWN = "down"


# =============================================================================
# Configuration Enums
# =============================================================================


class LogLevel(str, Enum):
    """
    Logging verbosity levels.

    Levels (from most to least verbose):
        - FULL: Complete trace with detailed stack information
        - DEBUG: Debug messages and above
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
