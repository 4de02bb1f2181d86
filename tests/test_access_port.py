"""Tests for the Access Port Client (Connection + connect)."""

from unittest.mock import MagicMock

import pytest

from nrfrecover.access_port import Connection, connect
from nrfrecover.errors import AccessError, ConnectionFailedError
from nrfrecover.interfaces import ProbeSelector, ProbeTransport
from nrfrecover.mocks import MockClock, SimulatedTarget
from nrfrecover.registers import (
    ABORT_CLEAR_STICKY,
    AHB_AP,
    AP_CSW,
    CTRL_AP,
    CTRL_AP_IDR,
    CTRL_AP_IDR_NRF,
    DP_ABORT,
    DP_CTRL_STAT,
    DP_SELECT,
    POWER_UP_REQUEST,
)

SELECTOR = ProbeSelector(0x2E8A, 0x000C)


# =============================================================================
# connect()
# =============================================================================

class TestConnect:

    def test_opens_probe_and_powers_up_debug_port(self, clock):
        target = SimulatedTarget()
        conn = connect(SELECTOR, 2000, transport_factory=target.factory, clock=clock)

        assert isinstance(conn, Connection)
        assert target.is_open
        assert target.speed_khz == 12000
        assert ("dp_write", DP_CTRL_STAT, POWER_UP_REQUEST) in [
            (t.kind, t.address, t.value) for t in target.transactions
        ]
        assert conn.probe_name == "Simulated"
        conn.close()

    def test_sticky_errors_cleared_before_power_up(self, clock):
        target = SimulatedTarget()
        conn = connect(SELECTOR, 2000, transport_factory=target.factory, clock=clock)

        assert [(t.address, t.value) for t in target.of_kind("dp_write")][:2] == [
            (DP_ABORT, ABORT_CLEAR_STICKY),
            (DP_CTRL_STAT, POWER_UP_REQUEST),
        ]
        conn.close()

    def test_custom_speed(self, clock):
        target = SimulatedTarget()
        conn = connect(SELECTOR, 2000, transport_factory=target.factory, clock=clock, speed_khz=1000)
        assert target.speed_khz == 1000
        conn.close()

    def test_retries_until_probe_appears(self, clock):
        target = SimulatedTarget(appear_after_opens=3)
        conn = connect(SELECTOR, 2000, transport_factory=target.factory, clock=clock)

        assert target.open_attempts == 4
        assert clock.get_sleep_calls() == [0.1, 0.1, 0.1]
        conn.close()

    def test_times_out_when_probe_never_appears(self, clock):
        target = SimulatedTarget(probe_present=False)

        with pytest.raises(ConnectionFailedError) as exc_info:
            connect(SELECTOR, 2000, transport_factory=target.factory, clock=clock)

        assert exc_info.value.reason == "timeout"
        assert clock.monotonic() >= 2.0
        assert target.transactions == []

    def test_other_open_errors_are_not_retried(self, clock):
        transport = MagicMock(spec=ProbeTransport)
        transport.open.side_effect = ConnectionFailedError("SWD bring-up failed")

        with pytest.raises(ConnectionFailedError) as exc_info:
            connect(SELECTOR, 2000, transport_factory=lambda sel: transport, clock=clock)

        assert exc_info.value.reason == "connection_failed"
        transport.open.assert_called_once()
        transport.close.assert_called_once()

    def test_power_up_failure_closes_probe(self, clock):
        target = SimulatedTarget(power_up_fails=True)

        with pytest.raises(ConnectionFailedError) as exc_info:
            connect(SELECTOR, 2000, transport_factory=target.factory, clock=clock)

        assert exc_info.value.reason == "power_up_failed"
        assert not target.is_open
        assert target.close_count == 1


# =============================================================================
# Register access
# =============================================================================

class TestRegisterAccess:

    def test_reads_ctrl_ap_register(self, conn, target):
        assert conn.read_ap_register(CTRL_AP, CTRL_AP_IDR) == CTRL_AP_IDR_NRF

    def test_select_written_once_per_bank(self, conn, target):
        target.clear_transactions()
        conn.read_ap_register(CTRL_AP, CTRL_AP_IDR)
        conn.read_ap_register(CTRL_AP, CTRL_AP_IDR)

        selects = [t for t in target.of_kind("dp_write") if t.address == DP_SELECT]
        assert [t.value for t in selects] == [0x040000F0]

    def test_invalidate_forces_reselect(self, conn, target):
        conn.read_ap_register(CTRL_AP, CTRL_AP_IDR)
        conn.invalidate()
        target.clear_transactions()
        conn.read_ap_register(CTRL_AP, CTRL_AP_IDR)

        assert len([t for t in target.of_kind("dp_write") if t.address == DP_SELECT]) == 1

    def test_memory_write_then_read(self, conn, target):
        conn.write_memory32(0x20000000, 0xDEADBEEF)
        assert target.memory[0x20000000] == 0xDEADBEEF
        assert conn.read_memory32(0x20000000) == 0xDEADBEEF

    def test_csw_configured_once(self, conn, target):
        conn.write_memory32(0x20000000, 1)
        conn.read_memory32(0x20000000)

        csw_writes = [t for t in target.ap_writes(AHB_AP) if t.address == AP_CSW]
        assert len(csw_writes) == 1
        assert csw_writes[0].value & 0x7 == 0x2

    def test_unaligned_address_rejected(self, conn):
        with pytest.raises(ValueError):
            conn.read_memory32(0x20000002)

    def test_memory_access_on_locked_device_fails_with_address(self, make_conn):
        target = SimulatedTarget(locked=True)
        conn = make_conn(target)

        with pytest.raises(AccessError) as exc_info:
            conn.read_memory32(0x00001000)
        assert exc_info.value.address == 0x00001000


# =============================================================================
# Lifecycle
# =============================================================================

class TestLifecycle:

    def test_close_is_idempotent(self, conn, target):
        conn.close()
        conn.close()
        assert conn.closed
        assert target.close_count == 1

    def test_closed_connection_rejects_access(self, conn):
        conn.close()
        with pytest.raises(AccessError):
            conn.read_ap_register(CTRL_AP, CTRL_AP_IDR)

    def test_context_manager_closes(self):
        target = SimulatedTarget()
        with connect(SELECTOR, 2000, transport_factory=target.factory, clock=MockClock()) as conn:
            conn.read_idr()
        assert not target.is_open
