"""Firmware Programmer: write image records to flash through the NVMC.

Records are written in ascending address order, one 32-bit word at a time.
Partial words are padded with 0xFF (erased flash), never partially written;
neighbouring records that share a word are coalesced into one write. Every
word is blank-checked, written and read back, and the first mismatch stops
programming with :class:`FlashFailedError` naming the address.

Overlapping records, and records outside flash and UICR, are rejected
before any write is issued.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .access_port import Connection
from .errors import AccessError, FlashFailedError, ImageOverlapError, ImageRangeError, WaitTimeoutError
from .firmware import FirmwareImage
from .nvmc import NvmcTiming, is_programmable, program_word, write_enabled
from .registers import (
    C_DEBUGEN,
    C_HALT,
    DBGKEY,
    DHCSR_ADDR,
    ERASED_BYTE,
    FLASH_END,
    FLASH_START,
    UICR_END,
    UICR_START,
    WORD_SIZE,
)

NVM_REGIONS = ((FLASH_START, FLASH_END), (UICR_START, UICR_END))

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class WordWrite:
    """One programming-granularity chunk."""
    address: int
    value: int
    record_index: int


@dataclass(frozen=True)
class ProgramResult:
    records: int
    words_written: int
    bytes_written: int


def plan_writes(image: FirmwareImage) -> list[WordWrite]:
    """Turn an image into word writes in ascending address order.

    Raises:
        ImageRangeError: A record is not wholly inside one NVM region.
        ImageOverlapError: Two records share a byte.
    """
    for record in image.sorted_records():
        if not any(start <= record.address and record.end <= end for start, end in NVM_REGIONS):
            raise ImageRangeError(
                f"{record!r} is outside flash (0x{FLASH_START:08X}-0x{FLASH_END:08X}) "
                f"and UICR (0x{UICR_START:08X}-0x{UICR_END:08X})",
                address=record.address,
            )

    overlap = image.find_overlap()
    if overlap is not None:
        first, second = overlap
        raise ImageOverlapError(
            f"Records {first!r} and {second!r} overlap",
            address=second.address,
        )

    words: dict[int, bytearray] = {}
    owner: dict[int, int] = {}
    for index, record in enumerate(image.sorted_records()):
        for offset, byte in enumerate(record.data):
            address = record.address + offset
            base = address - (address % WORD_SIZE)
            if base not in words:
                words[base] = bytearray([ERASED_BYTE] * WORD_SIZE)
                owner[base] = index
            words[base][address - base] = byte

    return [
        WordWrite(address=base, value=int.from_bytes(words[base], "little"), record_index=owner[base])
        for base in sorted(words)
    ]


def halt_core(conn: Connection) -> None:
    """Halt the CPU so running firmware cannot touch the NVMC meanwhile."""
    conn.write_memory32(DHCSR_ADDR, DBGKEY | C_HALT | C_DEBUGEN)


def program_firmware(
    conn: Connection,
    image: FirmwareImage,
    *,
    timing: Optional[NvmcTiming] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> ProgramResult:
    """Program and verify ``image``.

    Args:
        conn: Open connection to an unlocked device.
        image: Parsed firmware image.
        timing: NVMC ready-poll bounds.
        on_progress: Called with ``(words_done, words_total)`` after each word.

    Raises:
        ImageOverlapError: Before any write, if records overlap.
        ImageRangeError: Before any write, if a record is outside NVM.
        FlashFailedError: On blank-check failure, verify mismatch, register
            access failure or NVMC timeout. Programming stops at that word.
    """
    plan = plan_writes(image)
    total = len(plan)
    logger.info("Programming %d bytes as %d words", image.total_bytes, total)

    done = 0
    current_record = -1
    try:
        halt_core(conn)
        with write_enabled(conn, timing) as nvmc_timing:
            for word in plan:
                if word.record_index != current_record:
                    current_record = word.record_index
                    logger.info("Record %d at 0x%08X", current_record, word.address)
                _program_verified(conn, word, nvmc_timing)
                done += 1
                if on_progress:
                    on_progress(done, total)
    except AccessError as e:
        raise FlashFailedError(
            f"Register access failed after {done}/{total} words: {e.message}",
            reason="access_error",
            address=e.address,
        ) from e
    except WaitTimeoutError as e:
        raise FlashFailedError(
            f"NVMC not ready after {done}/{total} words: {e.message}",
            reason="nvmc_timeout",
            address=e.address,
        ) from e

    logger.info("Done flashing: %d words", done)
    return ProgramResult(
        records=len(image.records),
        words_written=done,
        bytes_written=done * WORD_SIZE,
    )


def _program_verified(conn: Connection, word: WordWrite, timing: NvmcTiming) -> None:
    current = conn.read_memory32(word.address)
    if not is_programmable(current, word.value):
        raise FlashFailedError(
            f"Flash at 0x{word.address:08X} is not erased",
            reason="needs_erase",
            address=word.address,
            expected=word.value,
            observed=current,
        )

    program_word(conn, word.address, word.value, timing)

    readback = conn.read_memory32(word.address)
    if readback != word.value:
        raise FlashFailedError(
            f"Verify failed at 0x{word.address:08X}",
            reason="verify_mismatch",
            address=word.address,
            expected=word.value,
            observed=readback,
        )
