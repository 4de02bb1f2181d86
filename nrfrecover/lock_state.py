"""Lock State Detector.

The AHB-AP CSW ``DbgStatus`` bit (bit 6) reports whether debug access to the
memory bus is enabled. When access-port protection is active the bit reads 0.
"""

from __future__ import annotations

import logging
from enum import Enum

from .access_port import Connection
from .errors import AccessError
from .registers import AHB_AP, AP_CSW, CSW_DBGSTATUS

logger = logging.getLogger(__name__)

CSW_UNREADABLE = 0xFFFFFFFF


class LockState(Enum):
    """Protection state of the target's debug access."""
    UNLOCKED = "unlocked"
    LOCKED = "locked"
    INDETERMINATE = "indeterminate"


def classify_csw(csw: int) -> LockState:
    """Map a raw CSW value to a lock state (pure function of the value)."""
    if csw == CSW_UNREADABLE:
        return LockState.INDETERMINATE
    if csw & CSW_DBGSTATUS:
        return LockState.UNLOCKED
    return LockState.LOCKED


def detect(conn: Connection) -> LockState:
    """Read the Control/Status Word and classify the device.

    Never raises on a failed read: an unreadable register is
    ``INDETERMINATE``, which callers may act on by force-unlocking.
    """
    try:
        csw = conn.read_ap_register(AHB_AP, AP_CSW)
    except AccessError as e:
        logger.warning("CSW read failed, lock state indeterminate: %s", e)
        return LockState.INDETERMINATE

    state = classify_csw(csw)
    logger.info("CSW: 0x%08X, DbgStatus: %d -> %s", csw, bool(csw & CSW_DBGSTATUS), state.value)
    return state
