"""
Single-step application with bounded verification polling.

Some kernel state (link carrier, route propagation) converges after the
issuing call returns, so a step is judged by polling its verify predicate
rather than by the mutating call's own result.
"""

from __future__ import annotations

import time
from typing import Any, Callable

from wgnet.exceptions import StepFailed
from wgnet.utils.logger import get_logger

logger = get_logger(__name__)


class StepExecutor:
    """
    Applies idempotent mutations guarded by state predicates.

    Attributes:
        poll_interval: Seconds between verify attempts.
        max_attempts: Verify attempts before a step fails.
        mutations: Names of steps whose action actually ran.
    """

    def __init__(
        self,
        poll_interval: float = 1.0,
        max_attempts: int = 30,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._sleep = sleep
        self.mutations: list[str] = []

    def apply(
        self,
        step: str,
        action: Callable[[], None],
        verify: Callable[[], bool],
        observe: Callable[[], Any] | None = None,
        poll_interval: float | None = None,
        max_attempts: int | None = None,
    ) -> bool:
        """
        Ensure a step's post-state holds.

        If ``verify`` already holds nothing is done. Otherwise ``action`` runs
        once and ``verify`` is polled up to ``max_attempts`` times.

        Args:
            step: Step name used in logs and errors.
            action: The mutating call.
            verify: Predicate for the intended post-state.
            observe: Returns the state reported on failure; defaults to the
                last verify result.

        Returns:
            True if the action ran, False if the step was already satisfied.

        Raises:
            StepFailed: If the action raised and the post-state does not hold,
                or if verify never held within the attempt budget.
        """
        interval = self.poll_interval if poll_interval is None else poll_interval
        attempts = self.max_attempts if max_attempts is None else max_attempts
        observe = observe or verify

        if verify():
            logger.debug(f"[{step}] already satisfied, skipping")
            return False

        logger.info(f"[{step}] applying")
        self.mutations.append(step)
        try:
            action()
        except Exception as e:
            # The state may still be right (e.g. created concurrently)
            if verify():
                logger.warning(f"[{step}] action raised but state holds: {e}")
                return True
            raise StepFailed(step, f"{type(e).__name__}: {e}") from e

        for attempt in range(1, attempts + 1):
            if verify():
                logger.debug(f"[{step}] verified after {attempt} attempt(s)")
                return True
            if attempt < attempts:
                self._sleep(interval)

        last = observe()
        logger.error(f"[{step}] not verified after {attempts} attempts: {last}")
        raise StepFailed(step, last)

    def remove(
        self,
        step: str,
        action: Callable[[], None],
        present: Callable[[], bool],
    ) -> bool:
        """
        Best-effort removal.

        Absent targets are a no-op. Failures are logged and never raised so
        the remaining teardown steps still run.

        Returns:
            True if the target was removed.
        """
        if not present():
            logger.debug(f"[{step}] already absent, skipping")
            return False

        logger.info(f"[{step}] removing")
        self.mutations.append(step)
        try:
            action()
        except Exception as e:
            logger.warning(f"[{step}] removal failed: {e}")
            return False

        if present():
            logger.warning(f"[{step}] still present after removal")
            return False
        return True
