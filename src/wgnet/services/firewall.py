"""iptables rule installation and removal for the tunnel binding."""

from __future__ import annotations

import subprocess

from wgnet.models.tunnel import FirewallRule
from wgnet.utils.logger import get_logger

logger = get_logger(__name__)


def rule_present(iptables: str, rule: FirewallRule) -> bool:
    """Check a rule with ``iptables -C``; a missing binary counts as absent."""
    try:
        result = subprocess.run(
            [iptables, *rule.check_args()], capture_output=True, timeout=10
        )
    except FileNotFoundError:
        logger.warning(f"{iptables} not found")
        return False
    return result.returncode == 0


def add_rule_sync(iptables: str, rule: FirewallRule) -> None:
    subprocess.run(
        [iptables, *rule.add_args()], check=True, capture_output=True, timeout=10
    )
    logger.info(f"Added iptables rule: {' '.join(rule.add_args())}")


def delete_rule_sync(iptables: str, rule: FirewallRule) -> None:
    subprocess.run(
        [iptables, *rule.delete_args()], check=True, capture_output=True, timeout=10
    )
    logger.info(f"Removed iptables rule: {' '.join(rule.delete_args())}")
