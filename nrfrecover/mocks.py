"""
Mock implementations for testing.

These classes implement the abstract interfaces with in-memory behavior
suitable for unit testing without hardware.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import AccessError, ConnectionFailedError
from .interfaces import ClockInterface, ProbeSelector, ProbeTransport
from .registers import (
    AHB_AP,
    AP_CSW,
    AP_DRW,
    AP_IDR,
    AP_TAR,
    CSW_DBGSTATUS,
    CTRL_AP,
    CTRL_AP_ERASEALL,
    CTRL_AP_ERASEALLSTATUS,
    CTRL_AP_IDR,
    CTRL_AP_IDR_NRF,
    CTRL_AP_RESET,
    DHCSR_ADDR,
    DP_CTRL_STAT,
    DP_IDR,
    DP_SELECT,
    ERASED_WORD,
    FLASH_END,
    FLASH_START,
    NVMC_CONFIG,
    NVMC_CONFIG_WEN,
    NVMC_READY,
    NVMC_READY_BIT,
    POWER_UP_ACK,
    POWER_UP_REQUEST,
    UICR_END,
    UICR_START,
)
from .transports import PROBE_NOT_FOUND


class MockClock(ClockInterface):
    """
    Controllable clock for testing.

    sleep() does not block; it advances virtual time, so bounded waits run
    instantly and their total duration can still be asserted on.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._sleep_calls: List[float] = []

    def monotonic(self) -> float:
        return self._now

    def sleep(self, seconds: float) -> None:
        self._sleep_calls.append(seconds)
        self._now += seconds

    # Test helper methods

    def advance(self, seconds: float) -> None:
        """Advance time by specified seconds."""
        self._now += seconds

    def get_sleep_calls(self) -> List[float]:
        """Get list of all sleep() calls made."""
        return self._sleep_calls.copy()

    def clear_sleep_calls(self) -> None:
        """Clear recorded sleep calls."""
        self._sleep_calls.clear()


@dataclass(frozen=True)
class Transaction:
    """One recorded operation on the simulated target.

    kind is one of dp_read, dp_write, ap_read, ap_write, mem_read, mem_write,
    soft_reset, line_reset. For AP kinds ``address`` is the register offset
    (bank included); for memory kinds it is the bus address.
    """
    kind: str
    ap: Optional[int]
    address: int
    value: int


class SimulatedTarget(ProbeTransport):
    """
    In-memory nRF91x1 behind an SWD probe.

    Decodes DP SELECT, the AHB-AP (CSW/TAR/DRW) and the CTRL-AP, and models
    flash/UICR behind the NVMC with NOR semantics (writes only clear bits and
    only while NVMC.CONFIG is write-enabled). Every operation is appended to
    ``transactions``.

    Fault injection:
    - locked: APPROTECT active; AHB-AP memory access faults
    - probe_present / appear_after_opens: probe missing, or late to enumerate
    - power_up_fails: CTRL/STAT never acknowledges
    - csw_read_error: AHB-AP CSW read faults
    - ctrl_ap_idr: wrong value simulates a bad CTRL-AP index
    - erase_polls_until_done / erase_stuck: ERASEALLSTATUS busy reads
    - unlock_needs_reset: erase only takes effect after a reset (nRF91x1)
    - stay_locked_after_erase: erase completes but protection stays on
    - corrupt_addresses: NVM writes there read back wrong
    - fail_memory_writes_at: memory writes there fault
    - nvmc_stuck: NVMC.READY never sets
    - dp_dead_after_reset: DP IDR reads 0 once the target has been reset
    """

    DP_IDR_VALUE = 0x6BA02477
    AHB_AP_IDR_VALUE = 0x84770001
    CSW_RESET_VALUE = 0x03000040

    def __init__(
        self,
        *,
        locked: bool = False,
        probe_present: bool = True,
        appear_after_opens: int = 0,
        power_up_fails: bool = False,
        csw_read_error: bool = False,
        ctrl_ap_idr: int = CTRL_AP_IDR_NRF,
        erase_polls_until_done: int = 2,
        erase_stuck: bool = False,
        unlock_needs_reset: bool = True,
        stay_locked_after_erase: bool = False,
        corrupt_addresses: Iterable[int] = (),
        fail_memory_writes_at: Iterable[int] = (),
        nvmc_stuck: bool = False,
        dp_dead_after_reset: bool = False,
        memory: Optional[Dict[int, int]] = None,
    ):
        self.locked = locked
        self.probe_present = probe_present
        self.appear_after_opens = appear_after_opens
        self.power_up_fails = power_up_fails
        self.csw_read_error = csw_read_error
        self.ctrl_ap_idr = ctrl_ap_idr
        self.erase_polls_until_done = erase_polls_until_done
        self.erase_stuck = erase_stuck
        self.unlock_needs_reset = unlock_needs_reset
        self.stay_locked_after_erase = stay_locked_after_erase
        self.corrupt_addresses = set(corrupt_addresses)
        self.fail_memory_writes_at = set(fail_memory_writes_at)
        self.nvmc_stuck = nvmc_stuck
        self.dp_dead_after_reset = dp_dead_after_reset
        self.memory: Dict[int, int] = dict(memory or {})

        self.transactions: List[Transaction] = []
        self.is_open = False
        self.open_attempts = 0
        self.close_count = 0
        self.speed_khz: Optional[int] = None
        self.erase_count = 0
        self.soft_reset_count = 0
        self.line_reset_count = 0

        self._select = 0
        self._ctrl_stat = 0
        self._csw = self.CSW_RESET_VALUE
        self._tar = 0
        self._nvmc_config = 0
        self._erase_busy_reads = 0
        self._unlock_pending = False
        self._ctrl_reset_asserted = False
        self._line_asserted = False
        self._resets = 0

    # ------------------------------------------------------------------
    # ProbeTransport
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return "Simulated"

    def factory(self, selector: ProbeSelector) -> "SimulatedTarget":
        """Transport factory handing out this target for any selector."""
        return self

    def open(self, speed_khz: int) -> None:
        self.open_attempts += 1
        if not self.probe_present or self.open_attempts <= self.appear_after_opens:
            raise ConnectionFailedError("Simulated probe not present", reason=PROBE_NOT_FOUND)
        self.is_open = True
        self.speed_khz = speed_khz

    def close(self) -> None:
        if self.is_open:
            self.is_open = False
            self.close_count += 1

    def read_dp(self, offset: int) -> int:
        self._check_open()
        if offset == DP_IDR:
            value = 0 if (self.dp_dead_after_reset and self._resets) else self.DP_IDR_VALUE
        elif offset == DP_CTRL_STAT:
            value = self._ctrl_stat
            if not self.power_up_fails and (value & POWER_UP_REQUEST) == POWER_UP_REQUEST:
                value |= POWER_UP_ACK
        elif offset == DP_SELECT:
            value = self._select
        else:
            value = 0
        self._log("dp_read", None, offset, value)
        return value

    def write_dp(self, offset: int, value: int) -> None:
        self._check_open()
        self._log("dp_write", None, offset, value)
        if offset == DP_SELECT:
            self._select = value
        elif offset == DP_CTRL_STAT:
            self._ctrl_stat = value

    def read_ap(self, offset: int) -> int:
        self._check_open()
        ap, reg = self._decode(offset)
        if ap == AHB_AP:
            value = self._read_ahb_ap(reg)
        elif ap == CTRL_AP:
            value = self._read_ctrl_ap(reg)
        else:
            value = 0
        self._log("ap_read", ap, reg, value)
        return value

    def write_ap(self, offset: int, value: int) -> None:
        self._check_open()
        ap, reg = self._decode(offset)
        self._log("ap_write", ap, reg, value)
        if ap == AHB_AP:
            self._write_ahb_ap(reg, value)
        elif ap == CTRL_AP:
            self._write_ctrl_ap(reg, value)

    def set_reset_line(self, asserted: bool) -> None:
        self._check_open()
        if asserted:
            self._line_asserted = True
        elif self._line_asserted:
            self._line_asserted = False
            self.line_reset_count += 1
            self._on_reset("line_reset")

    # ------------------------------------------------------------------
    # Register models
    # ------------------------------------------------------------------

    def _decode(self, offset: int) -> Tuple[int, int]:
        return self._select >> 24, (self._select & 0xF0) | (offset & 0xC)

    def _read_ahb_ap(self, reg: int) -> int:
        if reg == AP_CSW:
            if self.csw_read_error:
                raise AccessError("Simulated CSW read fault", address=reg)
            return (self._csw & ~CSW_DBGSTATUS) | (0 if self.locked else CSW_DBGSTATUS)
        if reg == AP_TAR:
            return self._tar
        if reg == AP_DRW:
            self._check_unlocked(self._tar)
            value = self._read_mem(self._tar)
            self._log("mem_read", AHB_AP, self._tar, value)
            return value
        if reg == AP_IDR:
            return self.AHB_AP_IDR_VALUE
        return 0

    def _write_ahb_ap(self, reg: int, value: int) -> None:
        if reg == AP_CSW:
            self._csw = value & ~CSW_DBGSTATUS
        elif reg == AP_TAR:
            self._tar = value
        elif reg == AP_DRW:
            self._check_unlocked(self._tar)
            self._log("mem_write", AHB_AP, self._tar, value)
            self._write_mem(self._tar, value)

    def _read_ctrl_ap(self, reg: int) -> int:
        if reg == CTRL_AP_RESET:
            return int(self._ctrl_reset_asserted)
        if reg == CTRL_AP_ERASEALLSTATUS:
            if self.erase_stuck:
                return 1
            if self._erase_busy_reads > 0:
                self._erase_busy_reads -= 1
                return 1
            return 0
        if reg == CTRL_AP_IDR:
            return self.ctrl_ap_idr
        return 0

    def _write_ctrl_ap(self, reg: int, value: int) -> None:
        if reg == CTRL_AP_ERASEALL and value == 1:
            self.erase_count += 1
            self._erase_nvm()
            self._erase_busy_reads = self.erase_polls_until_done
            if not self.stay_locked_after_erase:
                if self.unlock_needs_reset:
                    self._unlock_pending = True
                else:
                    self.locked = False
        elif reg == CTRL_AP_RESET:
            if value:
                self._ctrl_reset_asserted = True
            elif self._ctrl_reset_asserted:
                self._ctrl_reset_asserted = False
                self.soft_reset_count += 1
                self._on_reset("soft_reset")

    def _on_reset(self, kind: str) -> None:
        self._resets += 1
        if self._unlock_pending:
            self.locked = False
            self._unlock_pending = False
        self._nvmc_config = 0
        self.memory.pop(DHCSR_ADDR, None)
        self._log(kind, None, 0, 0)

    def _erase_nvm(self) -> None:
        for address in [a for a in self.memory if self.is_nvm(a)]:
            del self.memory[address]

    def _read_mem(self, address: int) -> int:
        if address == NVMC_READY:
            return 0 if self.nvmc_stuck else NVMC_READY_BIT
        if address == NVMC_CONFIG:
            return self._nvmc_config
        return self.memory.get(address, ERASED_WORD if self.is_nvm(address) else 0)

    def _write_mem(self, address: int, value: int) -> None:
        if address in self.fail_memory_writes_at:
            raise AccessError("Simulated bus fault", address=address)
        if address == NVMC_CONFIG:
            self._nvmc_config = value
        elif self.is_nvm(address):
            if self._nvmc_config != NVMC_CONFIG_WEN:
                return
            stored = self._read_mem(address) & value
            if address in self.corrupt_addresses:
                stored ^= 0x1
            self.memory[address] = stored
        else:
            self.memory[address] = value

    def _check_unlocked(self, address: int) -> None:
        if self.locked:
            raise AccessError("AHB-AP access denied (APPROTECT)", address=address)

    def _check_open(self) -> None:
        if not self.is_open:
            raise AccessError("Simulated probe is not open")

    def _log(self, kind: str, ap: Optional[int], address: int, value: int) -> None:
        self.transactions.append(Transaction(kind, ap, address, value))

    @staticmethod
    def is_nvm(address: int) -> bool:
        return FLASH_START <= address < FLASH_END or UICR_START <= address < UICR_END

    # ------------------------------------------------------------------
    # Test helper methods
    # ------------------------------------------------------------------

    def clear_transactions(self) -> None:
        self.transactions.clear()

    def of_kind(self, *kinds: str) -> List[Transaction]:
        return [t for t in self.transactions if t.kind in kinds]

    def writes(self) -> List[Transaction]:
        """Every register-changing operation (DP, AP and memory writes)."""
        return self.of_kind("dp_write", "ap_write", "mem_write")

    def ap_writes(self, ap: int) -> List[Transaction]:
        return [t for t in self.of_kind("ap_write") if t.ap == ap]

    def memory_writes(self, start: int = 0, end: int = 1 << 32) -> List[Tuple[int, int]]:
        return [(t.address, t.value) for t in self.of_kind("mem_write") if start <= t.address < end]

    def flash_writes(self) -> List[Tuple[int, int]]:
        return self.memory_writes(FLASH_START, FLASH_END)

    def uicr_writes(self) -> List[Tuple[int, int]]:
        return self.memory_writes(UICR_START, UICR_END)

    def index_of(self, kind: str, address: Optional[int] = None, *, last: bool = False) -> int:
        """Position of the first (or last) matching transaction, -1 if none."""
        indices = [
            i for i, t in enumerate(self.transactions)
            if t.kind == kind and (address is None or t.address == address)
        ]
        if not indices:
            return -1
        return indices[-1] if last else indices[0]
