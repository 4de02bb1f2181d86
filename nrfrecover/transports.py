"""Debug probe transport backends.

Provides concrete :class:`~nrfrecover.interfaces.ProbeTransport` backends for
raw SWD DP/AP transfers:

- ``JLinkTransport``: SEGGER J-Link via pylink-square (CoreSight API).
- ``CmsisDapTransport``: CMSIS-DAP probes (e.g. Raspberry Pi Debug Probe) via
  pyocd, located on the USB bus by VID:PID with pyusb.

Neither backend needs to know the target: all access goes through raw
CoreSight registers, which keeps working while the target's AHB-AP is locked.
Library exceptions are wrapped into :class:`AccessError` /
:class:`ConnectionFailedError` at this boundary.
"""

from __future__ import annotations

import logging
from typing import Optional

from .errors import AccessError, ConnectionFailedError
from .interfaces import ProbeSelector, ProbeTransport
from .registers import DP_IDR, SEGGER_VENDOR_ID

logger = logging.getLogger(__name__)

# Import probe libraries optionally; a missing one only matters for the
# backend that needs it.
try:
    import pylink
except ImportError:
    pylink = None  # type: ignore

try:
    import usb.core
except ImportError:
    usb = None  # type: ignore

try:
    from pyocd.core import exceptions as pyocd_exceptions
    from pyocd.probe.aggregator import DebugProbeAggregator
    from pyocd.probe.debug_probe import DebugProbe as PyOCDDebugProbe
    from pyocd.probe.swj import SWJSequenceSender
except ImportError:
    pyocd_exceptions = None  # type: ignore
    DebugProbeAggregator = None  # type: ignore
    PyOCDDebugProbe = None  # type: ignore
    SWJSequenceSender = None  # type: ignore

PROBE_NOT_FOUND = "probe_not_found"

# SWJ sequence + DP IDR read attempts, as pyocd's DP connector does.
SWJ_ATTEMPTS = 4


# =============================================================================
# J-Link (pylink-square)
# =============================================================================

class JLinkTransport(ProbeTransport):
    """Raw CoreSight transport using pylink-square (SEGGER J-Link).

    Deliberately never calls ``JLink.connect()``: that attaches to a core and
    fails on a locked chip. ``coresight_configure()`` only brings up SWD.

    Requires: ``pip install pylink-square``
    """

    def __init__(self, serial: Optional[str] = None):
        self._serial = serial
        self._jlink = None

    @property
    def name(self) -> str:
        return "J-Link"

    def open(self, speed_khz: int) -> None:
        self._ensure_pylink()
        open_kwargs: dict = {}
        if self._serial:
            open_kwargs["serial_no"] = self._serial_number()
        jlink = pylink.JLink()
        try:
            jlink.open(**open_kwargs)
        except pylink.errors.JLinkException as e:
            raise ConnectionFailedError(
                f"J-Link (S/N {self._serial or 'any'}) not available: {e}",
                reason=PROBE_NOT_FOUND,
            ) from e

        try:
            jlink.set_tif(pylink.enums.JLinkInterfaces.SWD)
            jlink.set_speed(speed_khz)
            jlink.coresight_configure()
        except pylink.errors.JLinkException as e:
            jlink.close()
            raise ConnectionFailedError(f"J-Link SWD bring-up failed: {e}") from e

        self._jlink = jlink
        logger.info("J-Link opened (S/N %s) at %d kHz", self._serial or "any", speed_khz)

    def close(self) -> None:
        if self._jlink is not None:
            try:
                self._jlink.close()
            except pylink.errors.JLinkException as e:
                logger.warning("J-Link close failed: %s", e)
            self._jlink = None

    def read_dp(self, offset: int) -> int:
        return self._read(offset, ap=False)

    def write_dp(self, offset: int, value: int) -> None:
        self._write(offset, value, ap=False)

    def read_ap(self, offset: int) -> int:
        return self._read(offset, ap=True)

    def write_ap(self, offset: int, value: int) -> None:
        self._write(offset, value, ap=True)

    def set_reset_line(self, asserted: bool) -> None:
        jlink = self._require_open()
        try:
            if asserted:
                jlink.set_reset_pin_low()
            else:
                jlink.set_reset_pin_high()
        except pylink.errors.JLinkException as e:
            raise AccessError(f"nRESET {'assert' if asserted else 'release'} failed: {e}") from e

    def _read(self, offset: int, ap: bool) -> int:
        jlink = self._require_open()
        try:
            return jlink.coresight_read(reg=offset >> 2, ap=ap) & 0xFFFFFFFF
        except pylink.errors.JLinkException as e:
            raise AccessError(
                f"{'AP' if ap else 'DP'} read 0x{offset:X} failed: {e}", address=offset
            ) from e

    def _write(self, offset: int, value: int, ap: bool) -> None:
        jlink = self._require_open()
        try:
            jlink.coresight_write(reg=offset >> 2, data=value, ap=ap)
        except pylink.errors.JLinkException as e:
            raise AccessError(
                f"{'AP' if ap else 'DP'} write 0x{offset:X} failed: {e}",
                address=offset,
                expected=value,
            ) from e

    def _serial_number(self) -> int:
        """J-Link serial numbers are decimal integers (e.g. 683000000)."""
        try:
            return int(self._serial, 10)
        except ValueError as e:
            raise ConnectionFailedError(
                f"J-Link serial must be a decimal number, got {self._serial!r}",
                reason="bad_serial",
            ) from e

    def _require_open(self):
        if self._jlink is None:
            raise AccessError("J-Link transport is not open")
        return self._jlink

    def _ensure_pylink(self) -> None:
        """Raise helpful ImportError if pylink is not installed."""
        if pylink is None:
            raise ImportError(
                "pylink module not found. Install with: pip install pylink-square"
            )


# =============================================================================
# CMSIS-DAP (pyocd + pyusb)
# =============================================================================

def find_usb_serials(vendor_id: int, product_id: int) -> list[Optional[str]]:
    """Return the USB serial strings of all devices matching VID:PID.

    A device whose serial descriptor cannot be read (typically missing udev
    permissions) is reported as ``None``.
    """
    if usb is None:
        raise ImportError("pyusb not installed (pip install pyusb)")

    serials: list[Optional[str]] = []
    try:
        devices = list(usb.core.find(find_all=True, idVendor=vendor_id, idProduct=product_id))
    except usb.core.NoBackendError as e:
        raise ConnectionFailedError(f"No libusb backend available: {e}") from e
    except usb.core.USBError as e:
        raise ConnectionFailedError(
            f"USB enumeration of {vendor_id:04x}:{product_id:04x} failed: {e}"
        ) from e

    for dev in devices:
        try:
            serials.append(dev.serial_number)
        except (ValueError, usb.core.USBError) as e:
            logger.warning(
                "Cannot read serial of %04x:%04x at bus=%s addr=%s: %s",
                vendor_id, product_id, dev.bus, dev.address, e,
            )
            serials.append(None)
    return serials


class CmsisDapTransport(ProbeTransport):
    """Raw DP/AP transport for CMSIS-DAP probes using pyocd's probe layer.

    Only the probe layer is used (no pyocd session or target): the DP is
    brought up with an SWJ sequence and registers are accessed directly.

    Requires: ``pip install pyocd pyusb``
    """

    def __init__(self, selector: ProbeSelector):
        self._selector = selector
        self._probe = None

    @property
    def name(self) -> str:
        return "CMSIS-DAP"

    def open(self, speed_khz: int) -> None:
        self._ensure_pyocd()
        unique_id = self._resolve_unique_id()

        try:
            probes = DebugProbeAggregator.get_all_connected_probes(
                unique_id=unique_id, is_explicit=unique_id is not None
            )
        except pyocd_exceptions.Error as e:
            raise ConnectionFailedError(f"Probe scan failed: {e}", reason=PROBE_NOT_FOUND) from e
        if not probes:
            raise ConnectionFailedError(
                f"CMSIS-DAP probe {self._selector} not visible to pyocd",
                reason=PROBE_NOT_FOUND,
            )

        probe = probes[0]
        try:
            probe.open()
            probe.set_clock(speed_khz * 1000)
            probe.connect(PyOCDDebugProbe.Protocol.SWD)
            dp_idr = self._select_swd(probe)
        except pyocd_exceptions.Error as e:
            try:
                probe.close()
            except pyocd_exceptions.Error:
                logger.debug("Ignoring close error after failed open", exc_info=True)
            raise ConnectionFailedError(f"CMSIS-DAP SWD bring-up failed: {e}") from e

        self._probe = probe
        logger.info(
            "CMSIS-DAP opened: %s (%s) at %d kHz, DPIDR=0x%08X",
            probe.product_name, probe.unique_id, speed_khz, dp_idr,
        )

    def _select_swd(self, probe) -> int:
        """Send the JTAG-to-SWD sequence and read DPIDR.

        After a line reset the DP ignores every transfer until IDR has been
        read, so the read belongs to the sequence. A failed read resends it.
        """
        swj = SWJSequenceSender(probe, False)
        for attempt in range(1, SWJ_ATTEMPTS):
            swj.select_protocol(PyOCDDebugProbe.Protocol.SWD)
            try:
                return probe.read_dp(DP_IDR, now=True)
            except pyocd_exceptions.TransferError:
                logger.debug("DP IDR read failed; resending SWJ sequence (attempt %d)", attempt)
        swj.select_protocol(PyOCDDebugProbe.Protocol.SWD)
        return probe.read_dp(DP_IDR, now=True)

    def close(self) -> None:
        if self._probe is not None:
            try:
                self._probe.disconnect()
                self._probe.close()
            except pyocd_exceptions.Error as e:
                logger.warning("CMSIS-DAP close failed: %s", e)
            self._probe = None

    def read_dp(self, offset: int) -> int:
        probe = self._require_open()
        try:
            return probe.read_dp(offset, now=True)
        except pyocd_exceptions.Error as e:
            raise AccessError(f"DP read 0x{offset:X} failed: {e}", address=offset) from e

    def write_dp(self, offset: int, value: int) -> None:
        probe = self._require_open()
        try:
            probe.write_dp(offset, value)
        except pyocd_exceptions.Error as e:
            raise AccessError(
                f"DP write 0x{offset:X} failed: {e}", address=offset, expected=value
            ) from e

    def read_ap(self, offset: int) -> int:
        probe = self._require_open()
        try:
            return probe.read_ap(offset, now=True)
        except pyocd_exceptions.Error as e:
            raise AccessError(f"AP read 0x{offset:X} failed: {e}", address=offset) from e

    def write_ap(self, offset: int, value: int) -> None:
        probe = self._require_open()
        try:
            probe.write_ap(offset, value)
        except pyocd_exceptions.Error as e:
            raise AccessError(
                f"AP write 0x{offset:X} failed: {e}", address=offset, expected=value
            ) from e

    def set_reset_line(self, asserted: bool) -> None:
        probe = self._require_open()
        try:
            probe.assert_reset(asserted)
        except pyocd_exceptions.Error as e:
            raise AccessError(f"nRESET {'assert' if asserted else 'release'} failed: {e}") from e

    def _resolve_unique_id(self) -> Optional[str]:
        """Map the VID:PID[:serial] selector to a pyocd probe unique ID."""
        sel = self._selector
        serials = find_usb_serials(sel.vendor_id, sel.product_id)
        if sel.serial is not None:
            if sel.serial not in serials:
                raise ConnectionFailedError(
                    f"No USB device {sel}", reason=PROBE_NOT_FOUND
                )
            return sel.serial
        if not serials:
            raise ConnectionFailedError(f"No USB device {sel}", reason=PROBE_NOT_FOUND)
        if len(serials) > 1:
            raise ConnectionFailedError(
                f"{len(serials)} probes match {sel}; pass --serial to pick one",
                reason="ambiguous_probe",
            )
        return serials[0]

    def _require_open(self):
        if self._probe is None:
            raise AccessError("CMSIS-DAP transport is not open")
        return self._probe

    def _ensure_pyocd(self) -> None:
        if DebugProbeAggregator is None:
            raise ImportError("pyocd module not found. Install with: pip install pyocd")


# =============================================================================
# Registry
# =============================================================================

def create_transport(selector: ProbeSelector) -> ProbeTransport:
    """Pick the transport backend for a probe selector.

    SEGGER's vendor ID selects the J-Link backend; every other VID:PID is
    treated as a CMSIS-DAP probe.
    """
    if selector.vendor_id == SEGGER_VENDOR_ID:
        return JLinkTransport(serial=selector.serial)
    return CmsisDapTransport(selector)
