"""Tests for the J-Link and CMSIS-DAP transport backends with mocked probe libraries."""

from unittest.mock import MagicMock, PropertyMock, patch

import pytest

from nrfrecover.access_port import connect
from nrfrecover.config import RecoveryConfig
from nrfrecover.errors import AccessError, ConnectionFailedError
from nrfrecover.firmware import FirmwareImage, FirmwareRecord
from nrfrecover.interfaces import ProbeSelector
from nrfrecover.mocks import MockClock
from nrfrecover.registers import ABORT_CLEAR_STICKY, DP_ABORT, DP_CTRL_STAT, DP_IDR, POWER_UP_REQUEST
from nrfrecover.session import OutcomeKind, run_recovery
from nrfrecover.transports import (
    PROBE_NOT_FOUND,
    SWJ_ATTEMPTS,
    CmsisDapTransport,
    JLinkTransport,
    create_transport,
    find_usb_serials,
)


class FakeJLinkException(Exception):
    pass


class FakePyocdError(Exception):
    pass


class FakeTransferError(FakePyocdError):
    pass


class FakeUSBError(Exception):
    pass


class FakeNoBackendError(Exception):
    pass


@pytest.fixture
def mock_pylink():
    pylink = MagicMock()
    pylink.errors.JLinkException = FakeJLinkException
    jlink = pylink.JLink.return_value
    with patch("nrfrecover.transports.pylink", pylink):
        yield pylink, jlink


@pytest.fixture
def mock_pyocd():
    probe = MagicMock(unsafe=True)
    probe.product_name = "Debugprobe on Pico (CMSIS-DAP)"
    probe.unique_id = "E6614C311B4E"
    probe.read_dp.return_value = 0x6BA02477
    aggregator = MagicMock()
    aggregator.get_all_connected_probes.return_value = [probe]
    exceptions = MagicMock()
    exceptions.Error = FakePyocdError
    exceptions.TransferError = FakeTransferError
    swj = MagicMock()
    with patch("nrfrecover.transports.DebugProbeAggregator", aggregator), \
         patch("nrfrecover.transports.pyocd_exceptions", exceptions), \
         patch("nrfrecover.transports.PyOCDDebugProbe", MagicMock()), \
         patch("nrfrecover.transports.SWJSequenceSender", swj), \
         patch("nrfrecover.transports.find_usb_serials", return_value=["E6614C311B4E"]) as serials:
        yield probe, aggregator, swj, serials


# =============================================================================
# Registry
# =============================================================================

def test_segger_vid_selects_jlink():
    transport = create_transport(ProbeSelector(0x1366, 0x1051, "683000000"))
    assert isinstance(transport, JLinkTransport)
    assert transport.name == "J-Link"


def test_other_vid_selects_cmsis_dap():
    transport = create_transport(ProbeSelector(0x2E8A, 0x000C))
    assert isinstance(transport, CmsisDapTransport)


# =============================================================================
# J-Link
# =============================================================================

class TestJLinkTransport:

    def test_open_configures_swd_without_core_connect(self, mock_pylink):
        pylink, jlink = mock_pylink

        JLinkTransport(serial="683000000").open(4000)

        jlink.open.assert_called_once_with(serial_no=683000000)
        jlink.set_tif.assert_called_once_with(pylink.enums.JLinkInterfaces.SWD)
        jlink.set_speed.assert_called_once_with(4000)
        jlink.coresight_configure.assert_called_once()
        jlink.connect.assert_not_called()

    def test_open_failure_is_probe_not_found(self, mock_pylink):
        _, jlink = mock_pylink
        jlink.open.side_effect = FakeJLinkException("No emulator")

        with pytest.raises(ConnectionFailedError) as exc_info:
            JLinkTransport().open(4000)

        assert exc_info.value.reason == PROBE_NOT_FOUND

    def test_swd_bringup_failure_closes(self, mock_pylink):
        _, jlink = mock_pylink
        jlink.coresight_configure.side_effect = FakeJLinkException("no target")

        with pytest.raises(ConnectionFailedError) as exc_info:
            JLinkTransport().open(4000)

        assert exc_info.value.reason == "connection_failed"
        jlink.close.assert_called_once()

    def test_register_access_uses_word_index(self, mock_pylink):
        _, jlink = mock_pylink
        jlink.coresight_read.return_value = 0x6BA02477
        transport = JLinkTransport()
        transport.open(4000)

        assert transport.read_dp(0x0) == 0x6BA02477
        transport.write_ap(0x4, 0x00FF8000)

        jlink.coresight_read.assert_called_once_with(reg=0, ap=False)
        jlink.coresight_write.assert_called_once_with(reg=1, data=0x00FF8000, ap=True)

    def test_access_fault_wrapped(self, mock_pylink):
        _, jlink = mock_pylink
        jlink.coresight_read.side_effect = FakeJLinkException("FAULT")
        transport = JLinkTransport()
        transport.open(4000)

        with pytest.raises(AccessError) as exc_info:
            transport.read_ap(0xC)

        assert exc_info.value.address == 0xC

    def test_reset_line(self, mock_pylink):
        _, jlink = mock_pylink
        transport = JLinkTransport()
        transport.open(4000)

        transport.set_reset_line(True)
        transport.set_reset_line(False)

        jlink.set_reset_pin_low.assert_called_once()
        jlink.set_reset_pin_high.assert_called_once()

    def test_access_before_open(self, mock_pylink):
        with pytest.raises(AccessError):
            JLinkTransport().read_dp(0)

    def test_close_is_idempotent(self, mock_pylink):
        _, jlink = mock_pylink
        transport = JLinkTransport()
        transport.open(4000)

        transport.close()
        transport.close()

        jlink.close.assert_called_once()

    def test_missing_pylink(self):
        with patch("nrfrecover.transports.pylink", None):
            with pytest.raises(ImportError, match="pylink-square"):
                JLinkTransport().open(4000)

    def test_non_numeric_serial(self, mock_pylink):
        pylink, _ = mock_pylink

        with pytest.raises(ConnectionFailedError) as exc_info:
            JLinkTransport(serial="ABC123").open(4000)

        assert exc_info.value.reason == "bad_serial"
        pylink.JLink.assert_not_called()

    def test_non_numeric_serial_is_connection_outcome(self, mock_pylink):
        _, jlink = mock_pylink
        config = RecoveryConfig(image_path="app.hex", vendor_id=0x1366, product_id=0x1051, serial="ABC123")
        image = FirmwareImage.from_records([FirmwareRecord(0x0, bytes(4))])

        outcome = run_recovery(config, clock=MockClock(), image_loader=lambda path: image)

        assert outcome.kind is OutcomeKind.CONNECTION_FAILED
        assert outcome.reason == "bad_serial"
        assert outcome.step == "connect"
        jlink.open.assert_not_called()


# =============================================================================
# CMSIS-DAP
# =============================================================================

class TestCmsisDapTransport:

    def test_open_selects_swd(self, mock_pyocd):
        probe, aggregator, swj, _ = mock_pyocd

        CmsisDapTransport(ProbeSelector(0x2E8A, 0x000C)).open(12000)

        aggregator.get_all_connected_probes.assert_called_once_with(
            unique_id="E6614C311B4E", is_explicit=True
        )
        probe.open.assert_called_once()
        probe.set_clock.assert_called_once_with(12_000_000)
        swj.return_value.select_protocol.assert_called_once()

    def test_no_usb_device(self, mock_pyocd):
        _, aggregator, _, serials = mock_pyocd
        serials.return_value = []

        with pytest.raises(ConnectionFailedError) as exc_info:
            CmsisDapTransport(ProbeSelector(0x2E8A, 0x000C)).open(12000)

        assert exc_info.value.reason == PROBE_NOT_FOUND
        aggregator.get_all_connected_probes.assert_not_called()

    def test_ambiguous_probes_need_serial(self, mock_pyocd):
        _, _, _, serials = mock_pyocd
        serials.return_value = ["A", "B"]

        with pytest.raises(ConnectionFailedError) as exc_info:
            CmsisDapTransport(ProbeSelector(0x2E8A, 0x000C)).open(12000)

        assert exc_info.value.reason == "ambiguous_probe"

    def test_serial_picks_one_of_several(self, mock_pyocd):
        _, aggregator, _, serials = mock_pyocd
        serials.return_value = ["A", "B"]

        CmsisDapTransport(ProbeSelector(0x2E8A, 0x000C, "B")).open(12000)

        aggregator.get_all_connected_probes.assert_called_once_with(unique_id="B", is_explicit=True)

    def test_unknown_serial(self, mock_pyocd):
        with pytest.raises(ConnectionFailedError) as exc_info:
            CmsisDapTransport(ProbeSelector(0x2E8A, 0x000C, "nope")).open(12000)
        assert exc_info.value.reason == PROBE_NOT_FOUND

    def test_probe_not_visible_to_pyocd(self, mock_pyocd):
        _, aggregator, _, _ = mock_pyocd
        aggregator.get_all_connected_probes.return_value = []

        with pytest.raises(ConnectionFailedError) as exc_info:
            CmsisDapTransport(ProbeSelector(0x2E8A, 0x000C)).open(12000)

        assert exc_info.value.reason == PROBE_NOT_FOUND

    def test_bringup_failure_closes_probe(self, mock_pyocd):
        probe, _, _, _ = mock_pyocd
        probe.connect.side_effect = FakePyocdError("SWD error")

        with pytest.raises(ConnectionFailedError):
            CmsisDapTransport(ProbeSelector(0x2E8A, 0x000C)).open(12000)

        probe.close.assert_called_once()

    def test_dp_idr_read_first_after_line_reset(self, mock_pyocd):
        probe, _, swj, _ = mock_pyocd
        calls = []

        def read_dp(offset, now=True):
            calls.append(("read_dp", offset))
            return 0x6BA02477 if offset == DP_IDR else 0xF0000000

        swj.return_value.select_protocol.side_effect = lambda protocol: calls.append("swj")
        probe.read_dp.side_effect = read_dp
        probe.write_dp.side_effect = lambda offset, value: calls.append(("write_dp", offset, value))

        conn = connect(
            ProbeSelector(0x2E8A, 0x000C), 2000, transport_factory=CmsisDapTransport, clock=MockClock()
        )
        conn.close()

        assert calls[:4] == [
            "swj",
            ("read_dp", DP_IDR),
            ("write_dp", DP_ABORT, ABORT_CLEAR_STICKY),
            ("write_dp", DP_CTRL_STAT, POWER_UP_REQUEST),
        ]

    def test_failed_idr_read_resends_swj_sequence(self, mock_pyocd):
        probe, _, swj, _ = mock_pyocd
        probe.read_dp.side_effect = [FakeTransferError("no ack"), 0x6BA02477]

        CmsisDapTransport(ProbeSelector(0x2E8A, 0x000C)).open(12000)

        assert swj.return_value.select_protocol.call_count == 2
        assert probe.read_dp.call_count == 2

    def test_dp_never_answers(self, mock_pyocd):
        probe, _, swj, _ = mock_pyocd
        probe.read_dp.side_effect = FakeTransferError("no ack")

        with pytest.raises(ConnectionFailedError) as exc_info:
            CmsisDapTransport(ProbeSelector(0x2E8A, 0x000C)).open(12000)

        assert exc_info.value.reason == "connection_failed"
        assert swj.return_value.select_protocol.call_count == SWJ_ATTEMPTS
        probe.close.assert_called_once()

    def test_register_access(self, mock_pyocd):
        probe, _, _, _ = mock_pyocd
        probe.read_ap.return_value = 0x03000040
        transport = CmsisDapTransport(ProbeSelector(0x2E8A, 0x000C))
        transport.open(12000)

        assert transport.read_ap(0x0) == 0x03000040
        transport.write_dp(0x8, 0x04000000)
        transport.set_reset_line(True)

        probe.read_ap.assert_called_once_with(0x0, now=True)
        probe.write_dp.assert_called_once_with(0x8, 0x04000000)
        probe.assert_reset.assert_called_once_with(True)

    def test_transfer_fault_wrapped(self, mock_pyocd):
        probe, _, _, _ = mock_pyocd
        probe.write_ap.side_effect = FakePyocdError("FAULT ack")
        transport = CmsisDapTransport(ProbeSelector(0x2E8A, 0x000C))
        transport.open(12000)

        with pytest.raises(AccessError) as exc_info:
            transport.write_ap(0xC, 0x1)

        assert exc_info.value.address == 0xC
        assert exc_info.value.expected == 0x1


# =============================================================================
# USB lookup
# =============================================================================

class TestFindUsbSerials:

    @pytest.fixture
    def mock_usb(self):
        usb = MagicMock()
        usb.core.USBError = FakeUSBError
        usb.core.NoBackendError = FakeNoBackendError
        with patch("nrfrecover.transports.usb", usb):
            yield usb

    def test_lists_serials(self, mock_usb):
        mock_usb.core.find.return_value = [MagicMock(serial_number="A"), MagicMock(serial_number="B")]

        assert find_usb_serials(0x2E8A, 0x000C) == ["A", "B"]
        mock_usb.core.find.assert_called_once_with(find_all=True, idVendor=0x2E8A, idProduct=0x000C)

    def test_unreadable_serial_is_none(self, mock_usb):
        dev = MagicMock()
        type(dev).serial_number = PropertyMock(side_effect=FakeUSBError("denied"))
        mock_usb.core.find.return_value = [dev]

        assert find_usb_serials(0x2E8A, 0x000C) == [None]

    def test_no_backend(self, mock_usb):
        mock_usb.core.find.side_effect = FakeNoBackendError("no libusb")

        with pytest.raises(ConnectionFailedError):
            find_usb_serials(0x2E8A, 0x000C)

    def test_enumeration_error(self, mock_usb):
        mock_usb.core.find.side_effect = FakeUSBError("bus error")

        with pytest.raises(ConnectionFailedError) as exc_info:
            find_usb_serials(0x2E8A, 0x000C)

        assert isinstance(exc_info.value.__cause__, FakeUSBError)
