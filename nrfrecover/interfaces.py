"""
Interfaces for nRF Recover

Abstract base classes that define contracts for the pluggable collaborators:
the debug probe transport and the clock. This enables dependency injection and
mock-based testing without hardware.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ProbeSelector:
    """Identifies exactly one debug probe."""
    vendor_id: int
    product_id: int
    serial: Optional[str] = None

    def __str__(self) -> str:
        text = f"{self.vendor_id:04x}:{self.product_id:04x}"
        if self.serial:
            text += f":{self.serial}"
        return text


class ProbeTransport(ABC):
    """
    Abstract interface for raw SWD debug port / access port transfers.

    Register offsets are the 4-byte-aligned offsets within the currently
    selected bank (0x0, 0x4, 0x8, 0xC). Bank and AP selection is done by the
    caller through DP SELECT.

    Implementations:
    - JLinkTransport: Wraps pylink-square for SEGGER J-Link probes
    - CmsisDapTransport: Wraps pyocd for CMSIS-DAP probes
    - SimulatedTarget: In-memory nRF91 for unit testing without hardware
    """

    @abstractmethod
    def open(self, speed_khz: int) -> None:
        """Open the probe and bring up the SWD link. Raises ConnectionFailedError."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the probe. Safe to call more than once."""
        pass

    @abstractmethod
    def read_dp(self, offset: int) -> int:
        """Read a debug port register."""
        pass

    @abstractmethod
    def write_dp(self, offset: int, value: int) -> None:
        """Write a debug port register."""
        pass

    @abstractmethod
    def read_ap(self, offset: int) -> int:
        """Read a register of the selected access port bank."""
        pass

    @abstractmethod
    def write_ap(self, offset: int, value: int) -> None:
        """Write a register of the selected access port bank."""
        pass

    @abstractmethod
    def set_reset_line(self, asserted: bool) -> None:
        """Drive the probe's nRESET line."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable probe name (e.g. 'J-Link', 'CMSIS-DAP')."""


class ClockInterface(ABC):
    """
    Abstract interface for time operations.

    Enables deterministic testing of time-dependent logic.
    """

    @abstractmethod
    def monotonic(self) -> float:
        """Get a monotonic timestamp in seconds."""
        pass

    @abstractmethod
    def sleep(self, seconds: float) -> None:
        """Sleep for specified duration."""
        pass
