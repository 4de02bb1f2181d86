"""Unlock Operation: erase-all through the CTRL-AP and verify.

Sequence on the nRF91x1:

    1. skip if already Unlocked (unless forced)
    2. check the CTRL-AP IDR, then ERASEALL <- 1 and poll ERASEALLSTATUS == 0
    3. soft reset through CTRL-AP RESET (the part only leaves the locked
       state after a reset observes the cleared protection)
    4. re-read DbgStatus until Unlocked

The erase is issued exactly once per call. If verification fails the result
is :class:`UnlockFailedError`; a second blind erase could mask a hardware
fault, so nothing here retries it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .access_port import Connection
from .errors import AccessError, EraseTimeoutError, UnlockFailedError, WaitTimeoutError
from .lock_state import LockState, detect
from .registers import (
    CTRL_AP,
    CTRL_AP_ERASEALL,
    CTRL_AP_ERASEALLSTATUS,
    CTRL_AP_IDR,
    CTRL_AP_IDR_NRF,
    CTRL_AP_RESET,
    ERASEALL_START,
    ERASEALLSTATUS_READY,
    RESET_ASSERT,
    RESET_RELEASE,
)
from .wait import wait_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnlockTiming:
    """Bounded waits used by the unlock sequence."""
    erase_poll_interval_s: float = 0.5
    erase_poll_attempts: int = 30        # 15 s
    pre_reset_delay_s: float = 0.01
    post_reset_delay_s: float = 0.02
    verify_interval_s: float = 0.1
    verify_attempts: int = 10            # 1 s


@dataclass(frozen=True)
class UnlockResult:
    """What the unlock operation did."""
    erased: bool
    initial_state: LockState
    final_state: LockState
    erase_seconds: float = 0.0
    ctrl_ap_idr: Optional[int] = None


def unlock(
    conn: Connection,
    *,
    force: bool = False,
    soft_reset: bool = True,
    timing: Optional[UnlockTiming] = None,
) -> UnlockResult:
    """Make sure the device is Unlocked, erasing it if necessary.

    Args:
        conn: Open connection.
        force: Erase even if the device already reports Unlocked.
        soft_reset: Issue a CTRL-AP soft reset after the erase (nRF91x1).
        timing: Poll intervals and bounds.

    Returns:
        UnlockResult; ``final_state`` is verified UNLOCKED at return.

    Raises:
        UnlockFailedError: Bad CTRL-AP, register access failure, or the device
            is still Locked/Indeterminate after the erase.
        EraseTimeoutError: ERASEALLSTATUS never reported completion.
    """
    timing = timing or UnlockTiming()
    clock = conn.clock

    initial = detect(conn)
    if initial is LockState.UNLOCKED and not force:
        logger.info("Device already unlocked, skipping erase")
        return UnlockResult(erased=False, initial_state=initial, final_state=initial)

    try:
        idr = conn.read_ap_register(CTRL_AP, CTRL_AP_IDR)
    except AccessError as e:
        raise UnlockFailedError(
            f"CTRL-AP IDR read failed: {e.message}", reason="ctrl_ap_unreachable"
        ) from e
    logger.info("CTRL-AP IDR: 0x%08X", idr)
    if idr in (0, 0xFFFFFFFF):
        raise UnlockFailedError(
            "Invalid CTRL-AP IDR, check AP index",
            reason="bad_ctrl_ap",
            expected=CTRL_AP_IDR_NRF,
            observed=idr,
        )
    if idr != CTRL_AP_IDR_NRF:
        logger.warning("Unexpected CTRL-AP IDR 0x%08X (expected 0x%08X)", idr, CTRL_AP_IDR_NRF)

    started = clock.monotonic()
    try:
        conn.write_ap_register(CTRL_AP, CTRL_AP_ERASEALL, ERASEALL_START)
        logger.info("Started ERASEALL")
        wait_for(
            lambda: conn.read_ap_register(CTRL_AP, CTRL_AP_ERASEALLSTATUS),
            lambda status: status == ERASEALLSTATUS_READY,
            attempts=timing.erase_poll_attempts,
            interval_s=timing.erase_poll_interval_s,
            clock=clock,
            what="ERASEALLSTATUS",
            expected=ERASEALLSTATUS_READY,
        )
    except WaitTimeoutError as e:
        raise EraseTimeoutError(
            f"Erase did not complete: {e.message}",
            expected=ERASEALLSTATUS_READY,
            observed=e.observed,
        ) from e
    except AccessError as e:
        raise UnlockFailedError(f"Erase failed: {e.message}", reason="erase_access") from e
    erase_seconds = clock.monotonic() - started
    logger.info("Erase completed in %.2fs", erase_seconds)
    conn.invalidate()

    if soft_reset:
        try:
            soft_reset_ctrl_ap(conn, timing.pre_reset_delay_s, timing.post_reset_delay_s)
        except AccessError as e:
            raise UnlockFailedError(
                f"Soft reset after erase failed: {e.message}", reason="reset_access"
            ) from e
        logger.info("Issued soft reset")

    seen: list[LockState] = []

    def _poll_state() -> LockState:
        state = detect(conn)
        seen.append(state)
        return state

    try:
        final = wait_for(
            _poll_state,
            lambda state: state is LockState.UNLOCKED,
            attempts=timing.verify_attempts,
            interval_s=timing.verify_interval_s,
            clock=clock,
            what="DbgStatus after erase",
        )
    except WaitTimeoutError as e:
        last = seen[-1]
        raise UnlockFailedError(
            f"Debug status still {last.value} after erase, access port not enabled",
            reason=f"still_{last.value}",
        ) from e

    logger.info("Unlocked device")
    return UnlockResult(
        erased=True,
        initial_state=initial,
        final_state=final,
        erase_seconds=erase_seconds,
        ctrl_ap_idr=idr,
    )


def soft_reset_ctrl_ap(conn: Connection, pre_delay_s: float, post_delay_s: float) -> None:
    """Pulse CTRL-AP RESET (assert, release) with settling pauses around it."""
    conn.clock.sleep(pre_delay_s)
    conn.write_ap_register(CTRL_AP, CTRL_AP_RESET, RESET_ASSERT)
    conn.write_ap_register(CTRL_AP, CTRL_AP_RESET, RESET_RELEASE)
    conn.clock.sleep(post_delay_s)
    conn.invalidate()
