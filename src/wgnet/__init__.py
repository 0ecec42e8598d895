"""Route a Docker network's egress through a WireGuard tunnel with policy routing."""

__version__ = "0.1.0"
