"""Reset Controller.

Two reset kinds:

- ``SOFT``: pulse the CTRL-AP RESET register (system reset, no probe wiring needed)
- ``DEBUG_PORT_LINE``: pulse the probe's nRESET line

After a reset the debug link may be briefly unusable. The controller sleeps a
settle delay and can wait (bounded) until the DP IDR reads back again. It does
not check that the new firmware actually runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from .access_port import Connection
from .errors import AccessError, SettleTimeoutError, WaitTimeoutError
from .unlock import soft_reset_ctrl_ap
from .wait import wait_for

logger = logging.getLogger(__name__)


class ResetKind(Enum):
    SOFT = "soft"
    DEBUG_PORT_LINE = "line"


@dataclass(frozen=True)
class ResetTiming:
    pulse_s: float = 0.01
    settle_s: float = 0.1
    reconnect_interval_s: float = 0.05
    reconnect_attempts: int = 20


def reset(
    conn: Connection,
    kind: ResetKind = ResetKind.SOFT,
    *,
    wait_for_debug_port: bool = True,
    timing: ResetTiming = ResetTiming(),
) -> None:
    """Reset the target.

    Raises:
        AccessError: The reset request itself failed.
        SettleTimeoutError: The debug port did not answer within the settle window.
    """
    if kind is ResetKind.SOFT:
        soft_reset_ctrl_ap(conn, 0.0, timing.pulse_s)
    else:
        conn.set_reset_line(True)
        conn.clock.sleep(timing.pulse_s)
        conn.set_reset_line(False)
        conn.invalidate()
    logger.info("Issued %s reset", kind.value)

    conn.clock.sleep(timing.settle_s)
    if not wait_for_debug_port:
        return

    def _poll_idr() -> int:
        try:
            return conn.read_idr()
        except AccessError as e:
            logger.debug("DP not answering yet after reset: %s", e)
            return 0

    try:
        idr = wait_for(
            _poll_idr,
            lambda value: value not in (0, 0xFFFFFFFF),
            attempts=timing.reconnect_attempts,
            interval_s=timing.reconnect_interval_s,
            clock=conn.clock,
            what="DP IDR after reset",
        )
    except WaitTimeoutError as e:
        raise SettleTimeoutError(f"Debug port did not come back after reset: {e.message}") from e
    logger.debug("DP back after reset, IDR=0x%08X", idr)
