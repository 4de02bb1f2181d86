"""Shared pytest configuration for nrfrecover tests."""

import pytest

from nrfrecover.access_port import connect
from nrfrecover.interfaces import ProbeSelector
from nrfrecover.mocks import MockClock, SimulatedTarget

DEFAULT_SELECTOR = ProbeSelector(0x2E8A, 0x000C)


def pytest_addoption(parser):
    parser.addoption(
        "--hw",
        action="store_true",
        default=False,
        help="Run hardware-in-the-loop tests (requires debug probe and nRF91 connected)",
    )


@pytest.fixture
def clock():
    return MockClock()


@pytest.fixture
def target():
    """Unlocked, erased nRF91."""
    return SimulatedTarget()


@pytest.fixture
def locked_target():
    return SimulatedTarget(locked=True)


@pytest.fixture
def make_conn(clock):
    """Open a Connection to a SimulatedTarget; closed at teardown."""
    opened = []

    def _make(sim):
        conn = connect(DEFAULT_SELECTOR, 2000, transport_factory=sim.factory, clock=clock)
        opened.append(conn)
        return conn

    yield _make
    for conn in opened:
        conn.close()


@pytest.fixture
def conn(make_conn, target):
    return make_conn(target)
