"""NVMC helpers shared by the firmware programmer and the configuration writer.

Flash and UICR are written one 32-bit word at a time with NVMC.CONFIG set to
write-enable, waiting for NVMC.READY after every change. NOR flash can only
clear bits, so a word is programmable only if it is erased or already has
every bit of the new value set.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from .access_port import Connection
from .errors import AccessError, WaitTimeoutError
from .registers import (
    ERASED_WORD,
    NVMC_CONFIG,
    NVMC_CONFIG_REN,
    NVMC_CONFIG_WEN,
    NVMC_READY,
    NVMC_READY_BIT,
)
from .wait import wait_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NvmcTiming:
    ready_interval_s: float = 0.001
    ready_attempts: int = 500


def is_programmable(current: int, value: int) -> bool:
    """True if ``value`` can be written over ``current`` without an erase."""
    return current == ERASED_WORD or (current & value) == value


def wait_ready(conn: Connection, timing: NvmcTiming) -> None:
    """Bounded wait for NVMC.READY. Raises WaitTimeoutError."""
    wait_for(
        lambda: conn.read_memory32(NVMC_READY),
        lambda ready: bool(ready & NVMC_READY_BIT),
        attempts=timing.ready_attempts,
        interval_s=timing.ready_interval_s,
        clock=conn.clock,
        what="NVMC.READY",
        address=NVMC_READY,
        expected=NVMC_READY_BIT,
    )


def set_config(conn: Connection, mode: int, timing: NvmcTiming) -> None:
    conn.write_memory32(NVMC_CONFIG, mode)
    wait_ready(conn, timing)


@contextmanager
def write_enabled(conn: Connection, timing: Optional[NvmcTiming] = None) -> Iterator[NvmcTiming]:
    """Hold NVMC.CONFIG at write-enable for the duration of the block.

    Write mode is switched back to read-only on exit, including on failure.
    A failure to restore read-only mode is logged so it does not hide the
    original error.
    """
    timing = timing or NvmcTiming()
    set_config(conn, NVMC_CONFIG_WEN, timing)
    ok = False
    try:
        yield timing
        ok = True
    finally:
        try:
            set_config(conn, NVMC_CONFIG_REN, timing)
        except (AccessError, WaitTimeoutError) as e:
            if ok:
                raise
            logger.error("Could not restore NVMC read-only mode: %s", e)


def program_word(conn: Connection, address: int, value: int, timing: NvmcTiming) -> None:
    """Write one word (NVMC must be write-enabled) and wait for completion."""
    conn.write_memory32(address, value)
    wait_ready(conn, timing)
