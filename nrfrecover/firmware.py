"""Firmware image model and Intel HEX loader (intelhex).

An image is an ordered sequence of ``(address, bytes)`` records. The loader
turns each contiguous segment of a HEX file into one record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union

from intelhex import IntelHex, IntelHexError

from .errors import FirmwareParseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FirmwareRecord:
    """Contiguous bytes to be placed at ``address``."""
    address: int
    data: bytes

    @property
    def end(self) -> int:
        """First address past the record."""
        return self.address + len(self.data)

    def __repr__(self) -> str:
        return f"FirmwareRecord(0x{self.address:08X}, {len(self.data)} bytes)"


@dataclass(frozen=True)
class FirmwareImage:
    records: tuple[FirmwareRecord, ...]
    source: Optional[str] = None

    @classmethod
    def from_records(cls, records: Iterable[FirmwareRecord], source: Optional[str] = None) -> "FirmwareImage":
        return cls(records=tuple(records), source=source)

    @property
    def total_bytes(self) -> int:
        return sum(len(r.data) for r in self.records)

    def sorted_records(self) -> list[FirmwareRecord]:
        """Records in ascending address order (stable for equal addresses)."""
        return sorted(self.records, key=lambda r: r.address)

    def find_overlap(self) -> Optional[tuple[FirmwareRecord, FirmwareRecord]]:
        """Return the first pair of records sharing a byte, or None."""
        ordered = [r for r in self.sorted_records() if r.data]
        for prev, cur in zip(ordered, ordered[1:]):
            if cur.address < prev.end:
                return prev, cur
        return None


def load_image(path: Union[str, Path]) -> FirmwareImage:
    """Parse an Intel HEX file into a :class:`FirmwareImage`.

    Raises:
        FirmwareParseError: File missing, unreadable, or not valid Intel HEX
            (including records that overlap inside the file).
    """
    path = Path(path)
    if not path.is_file():
        raise FirmwareParseError(f"File not found: {path}", reason="file_not_found")

    ih = IntelHex()
    try:
        ih.loadhex(str(path))
    except (IntelHexError, UnicodeDecodeError) as e:
        raise FirmwareParseError(f"{path}: {e}") from e

    records = [
        FirmwareRecord(address=start, data=bytes(ih.gets(start, end - start)))
        for start, end in ih.segments()
    ]
    if not records:
        raise FirmwareParseError(f"{path}: image contains no data", reason="empty_image")

    image = FirmwareImage.from_records(records, source=str(path))
    logger.info("Loaded %s: %d segment(s), %d bytes", path, len(records), image.total_bytes)
    return image
