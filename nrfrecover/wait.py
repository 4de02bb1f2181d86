"""Bounded wait-for-condition.

This is the only looping construct that re-reads the target. It is a
wait-for-readiness loop, never an error retry: exceptions raised by ``poll``
propagate on the first failure, and nothing here re-issues a write.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

from .errors import WaitTimeoutError
from .interfaces import ClockInterface

logger = logging.getLogger(__name__)

T = TypeVar("T")


def wait_for(
    poll: Callable[[], T],
    done: Callable[[T], bool],
    *,
    attempts: int,
    interval_s: float,
    clock: ClockInterface,
    what: str,
    address: Optional[int] = None,
    expected: Optional[int] = None,
) -> T:
    """Call ``poll`` until ``done(value)`` holds or ``attempts`` run out.

    Polls are spaced ``interval_s`` apart, so the worst-case wait is
    ``(attempts - 1) * interval_s`` plus the poll time itself.

    Returns:
        The first polled value satisfying ``done``.

    Raises:
        WaitTimeoutError: With the last observed value when every attempt failed.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    value = None
    for attempt in range(1, attempts + 1):
        value = poll()
        if done(value):
            logger.debug("%s satisfied after %d attempt(s)", what, attempt)
            return value
        if attempt < attempts:
            clock.sleep(interval_s)

    observed = value if isinstance(value, int) and not isinstance(value, bool) else None
    raise WaitTimeoutError(
        f"{what}: not satisfied after {attempts} attempts "
        f"({(attempts - 1) * interval_s:.2f}s)",
        address=address,
        expected=expected,
        observed=observed,
    )
