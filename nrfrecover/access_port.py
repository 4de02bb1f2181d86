"""Access Port Client: 32-bit register access over a connected debug probe.

A :class:`Connection` is an opened probe bound to one target. It exposes
Control-AP registers (``read_ap_register``/``write_ap_register``) and
memory-mapped words through the AHB-AP (``read_memory32``/``write_memory32``).

All operations are synchronous and blocking. No retries happen at this layer:
a failed transaction raises :class:`AccessError` immediately and retry policy
(if any) belongs to the caller.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .errors import AccessError, ConnectionFailedError, WaitTimeoutError
from .implementations import RealClock
from .interfaces import ClockInterface, ProbeSelector, ProbeTransport
from .registers import (
    AHB_AP,
    AP_CSW,
    AP_DRW,
    AP_TAR,
    CSW_ADDRINC_MASK,
    CSW_SIZE32,
    ABORT_CLEAR_STICKY,
    CSW_SIZE_MASK,
    DP_ABORT,
    DP_CTRL_STAT,
    DP_IDR,
    DP_SELECT,
    POWER_UP_ACK,
    POWER_UP_REQUEST,
    WORD_SIZE,
    select_value,
)
from .transports import PROBE_NOT_FOUND, create_transport
from .wait import wait_for

logger = logging.getLogger(__name__)

DEFAULT_SPEED_KHZ = 12000
PROBE_RETRY_INTERVAL_S = 0.1
POWER_UP_ATTEMPTS = 10
POWER_UP_INTERVAL_S = 0.01

TransportFactory = Callable[[ProbeSelector], ProbeTransport]


class Connection:
    """Exclusive handle to one target through one probe.

    Owned by a single recovery run; never share it between threads. After
    :meth:`close` (or any unrecoverable transport error) it must not be used.

    Usage::

        with connect(selector, timeout_ms=2000) as conn:
            csw = conn.read_ap_register(AHB_AP, AP_CSW)
    """

    def __init__(self, transport: ProbeTransport, selector: ProbeSelector, clock: ClockInterface):
        self._transport = transport
        self._selector = selector
        self._clock = clock
        self._select: Optional[int] = None
        self._csw: Optional[int] = None
        self._closed = False

    @property
    def selector(self) -> ProbeSelector:
        return self._selector

    @property
    def clock(self) -> ClockInterface:
        return self._clock

    @property
    def probe_name(self) -> str:
        return self._transport.name

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Debug port
    # ------------------------------------------------------------------

    def read_dp(self, offset: int) -> int:
        self._check_open()
        return self._transport.read_dp(offset)

    def write_dp(self, offset: int, value: int) -> None:
        self._check_open()
        self._transport.write_dp(offset, value)

    def read_idr(self) -> int:
        """Read the DP identification register."""
        return self.read_dp(DP_IDR)

    def power_up(self) -> None:
        """Request debug and system power-up and wait for both acknowledges.

        Sticky errors left by an earlier session are cleared through ABORT
        first; a set STICKYERR makes the DP reject every AP transfer.

        Raises:
            ConnectionFailedError: If the DP never acknowledges.
        """
        self.write_dp(DP_ABORT, ABORT_CLEAR_STICKY)
        self.write_dp(DP_CTRL_STAT, POWER_UP_REQUEST)
        try:
            ctrl_stat = wait_for(
                lambda: self.read_dp(DP_CTRL_STAT),
                lambda v: (v & POWER_UP_ACK) == POWER_UP_ACK,
                attempts=POWER_UP_ATTEMPTS,
                interval_s=POWER_UP_INTERVAL_S,
                clock=self._clock,
                what="DP power-up acknowledge",
                expected=POWER_UP_ACK,
            )
        except WaitTimeoutError as e:
            raise ConnectionFailedError(
                f"Debug port did not power up: {e}",
                reason="power_up_failed",
                expected=POWER_UP_ACK,
                observed=e.observed,
            ) from e
        logger.debug("DP powered up, CTRL/STAT=0x%08X", ctrl_stat)

    def invalidate(self) -> None:
        """Forget cached SELECT/CSW state (the target was reset or erased)."""
        self._select = None
        self._csw = None

    # ------------------------------------------------------------------
    # Access ports
    # ------------------------------------------------------------------

    def read_ap_register(self, ap: int, offset: int) -> int:
        self._check_open()
        self._select_bank(ap, offset)
        value = self._transport.read_ap(offset & 0xC)
        logger.debug("AP%d[0x%03X] -> 0x%08X", ap, offset, value)
        return value

    def write_ap_register(self, ap: int, offset: int, value: int) -> None:
        self._check_open()
        self._select_bank(ap, offset)
        logger.debug("AP%d[0x%03X] <- 0x%08X", ap, offset, value)
        self._transport.write_ap(offset & 0xC, value & 0xFFFFFFFF)

    def _select_bank(self, ap: int, offset: int) -> None:
        select = select_value(ap, offset)
        if select != self._select:
            self._transport.write_dp(DP_SELECT, select)
            self._select = select

    # ------------------------------------------------------------------
    # Memory (through the AHB-AP)
    # ------------------------------------------------------------------

    def read_memory32(self, address: int) -> int:
        self._check_aligned(address)
        try:
            self._prepare_memory_ap()
            self.write_ap_register(AHB_AP, AP_TAR, address)
            return self.read_ap_register(AHB_AP, AP_DRW)
        except AccessError as e:
            raise AccessError(
                f"Memory read 0x{address:08X} failed: {e.message}", address=address
            ) from e

    def write_memory32(self, address: int, value: int) -> None:
        self._check_aligned(address)
        try:
            self._prepare_memory_ap()
            self.write_ap_register(AHB_AP, AP_TAR, address)
            self.write_ap_register(AHB_AP, AP_DRW, value)
        except AccessError as e:
            raise AccessError(
                f"Memory write 0x{address:08X} failed: {e.message}",
                address=address,
                expected=value,
            ) from e

    def _prepare_memory_ap(self) -> None:
        """Configure CSW for single 32-bit transfers without auto-increment."""
        if self._csw is not None:
            return
        csw = self.read_ap_register(AHB_AP, AP_CSW)
        csw = (csw & ~(CSW_SIZE_MASK | CSW_ADDRINC_MASK)) | CSW_SIZE32
        self.write_ap_register(AHB_AP, AP_CSW, csw)
        self._csw = csw

    @staticmethod
    def _check_aligned(address: int) -> None:
        if address % WORD_SIZE:
            raise ValueError(f"Unaligned word address 0x{address:08X}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def set_reset_line(self, asserted: bool) -> None:
        self._check_open()
        self._transport.set_reset_line(asserted)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._transport.close()
            logger.debug("Connection to %s closed", self._selector)

    def _check_open(self) -> None:
        if self._closed:
            raise AccessError("Connection is closed")

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def connect(
    selector: ProbeSelector,
    timeout_ms: int,
    *,
    transport_factory: Optional[TransportFactory] = None,
    clock: Optional[ClockInterface] = None,
    speed_khz: int = DEFAULT_SPEED_KHZ,
) -> Connection:
    """Open the selected probe and power up the target's debug port.

    Keeps trying to open the probe every 100 ms until ``timeout_ms`` elapses,
    so a probe that is still enumerating is picked up.

    Raises:
        ConnectionFailedError: ``reason="timeout"`` when the probe never
            appeared; other reasons for bring-up failures.
    """
    factory = transport_factory or create_transport
    clock = clock or RealClock()
    deadline = clock.monotonic() + timeout_ms / 1000.0
    attempt = 0

    while True:
        attempt += 1
        transport = factory(selector)
        try:
            transport.open(speed_khz)
            break
        except ConnectionFailedError as e:
            transport.close()
            if e.reason != PROBE_NOT_FOUND:
                raise
            if clock.monotonic() >= deadline:
                raise ConnectionFailedError(
                    f"Timeout connecting to probe {selector} after {timeout_ms}ms "
                    f"({attempt} attempts): {e.message}",
                    reason="timeout",
                ) from e
            logger.debug("Probe %s not available yet (attempt %d)", selector, attempt)
            clock.sleep(PROBE_RETRY_INTERVAL_S)

    logger.info("Got probe %s via %s", selector, transport.name)
    conn = Connection(transport, selector, clock)
    try:
        conn.power_up()
    except AccessError as e:
        conn.close()
        raise ConnectionFailedError(f"Debug port unreachable: {e.message}") from e
    except ConnectionFailedError:
        conn.close()
        raise
    return conn
