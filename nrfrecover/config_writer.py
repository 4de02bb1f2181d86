"""Configuration Register Writer: program the fixed UICR protection words.

Runs strictly after firmware programming and strictly before the final reset,
because UICR values are latched on reset. A word that does not take is fatal:
UICR is write-once until erased, so writing the same address again cannot
correct it.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .access_port import Connection
from .errors import AccessError, ConfigWriteFailedError, WaitTimeoutError
from .nvmc import NvmcTiming, is_programmable, program_word, write_enabled
from .registers import CONFIGURATION_WRITE_SET, ConfigurationWrite

logger = logging.getLogger(__name__)


def write_configuration(
    conn: Connection,
    writes: Iterable[ConfigurationWrite] = CONFIGURATION_WRITE_SET,
    *,
    timing: Optional[NvmcTiming] = None,
) -> list[ConfigurationWrite]:
    """Write and verify each configuration word.

    Returns:
        The verified writes, in the order written.

    Raises:
        ConfigWriteFailedError: Word needs an erase first, read-back mismatch,
            register access failure or NVMC timeout.
    """
    timing = timing or NvmcTiming()
    verified: list[ConfigurationWrite] = []
    for write in writes:
        _write_one(conn, write, timing)
        verified.append(write)
    return verified


def _write_one(conn: Connection, write: ConfigurationWrite, timing: NvmcTiming) -> None:
    try:
        current = conn.read_memory32(write.address)
        if not is_programmable(current, write.value):
            raise ConfigWriteFailedError(
                f"{write.name} write needs mass erase",
                reason="needs_erase",
                address=write.address,
                expected=write.value,
                observed=current,
            )

        with write_enabled(conn, timing):
            program_word(conn, write.address, write.value, timing)

        readback = conn.read_memory32(write.address)
    except AccessError as e:
        raise ConfigWriteFailedError(
            f"{write.name}: register access failed: {e.message}",
            reason="access_error",
            address=write.address,
            expected=write.value,
        ) from e
    except WaitTimeoutError as e:
        raise ConfigWriteFailedError(
            f"{write.name}: NVMC not ready: {e.message}",
            reason="nvmc_timeout",
            address=write.address,
            expected=write.value,
        ) from e

    if readback != write.value:
        raise ConfigWriteFailedError(
            f"{write.name} verify failed",
            reason="verify_mismatch",
            address=write.address,
            expected=write.value,
            observed=readback,
        )
    logger.info("Wrote %s: 0x%08X <- 0x%08X", write.name, write.address, write.value)
