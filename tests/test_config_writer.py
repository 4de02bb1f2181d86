"""Tests for the Configuration Register Writer."""

import pytest

from nrfrecover.config_writer import write_configuration
from nrfrecover.errors import ConfigWriteFailedError
from nrfrecover.mocks import SimulatedTarget
from nrfrecover.nvmc import NvmcTiming
from nrfrecover.registers import CONFIGURATION_WRITE_SET, NVMC_CONFIG, ConfigurationWrite

APPROTECT = 0x00FF8000
SECUREAPPROTECT = 0x00FF802C
HW_UNPROTECTED = 0x50FA50FA


def test_write_set_constants():
    assert [(w.address, w.value) for w in CONFIGURATION_WRITE_SET] == [
        (APPROTECT, HW_UNPROTECTED),
        (SECUREAPPROTECT, HW_UNPROTECTED),
    ]


def test_writes_and_verifies_both_words(conn, target):
    written = write_configuration(conn)

    assert written == list(CONFIGURATION_WRITE_SET)
    assert target.uicr_writes() == [(APPROTECT, HW_UNPROTECTED), (SECUREAPPROTECT, HW_UNPROTECTED)]
    assert target.memory[APPROTECT] == HW_UNPROTECTED
    assert target.memory[SECUREAPPROTECT] == HW_UNPROTECTED
    for address in (APPROTECT, SECUREAPPROTECT):
        assert target.index_of("mem_read", address, last=True) > target.index_of("mem_write", address)


def test_write_enable_bracketed_per_word(conn, target):
    write_configuration(conn)
    assert [v for a, v in target.memory_writes() if a == NVMC_CONFIG] == [1, 0, 1, 0]


def test_verify_mismatch_is_fatal(make_conn):
    target = SimulatedTarget(corrupt_addresses={APPROTECT})
    conn = make_conn(target)

    with pytest.raises(ConfigWriteFailedError) as exc_info:
        write_configuration(conn)

    err = exc_info.value
    assert err.reason == "verify_mismatch"
    assert err.address == APPROTECT
    assert err.expected == HW_UNPROTECTED
    assert err.observed == HW_UNPROTECTED ^ 1
    # not retried, and the second word is not attempted
    assert target.uicr_writes() == [(APPROTECT, HW_UNPROTECTED)]


def test_programmed_word_needs_mass_erase(make_conn):
    target = SimulatedTarget(memory={SECUREAPPROTECT: 0x00000000})
    conn = make_conn(target)

    with pytest.raises(ConfigWriteFailedError) as exc_info:
        write_configuration(conn)

    assert exc_info.value.reason == "needs_erase"
    assert exc_info.value.address == SECUREAPPROTECT
    assert target.uicr_writes() == [(APPROTECT, HW_UNPROTECTED)]


def test_word_already_unprotected_is_accepted(make_conn):
    target = SimulatedTarget(memory={APPROTECT: HW_UNPROTECTED})
    conn = make_conn(target)

    write_configuration(conn)

    assert target.memory[APPROTECT] == HW_UNPROTECTED


def test_nvmc_timeout(make_conn):
    conn = make_conn(SimulatedTarget(nvmc_stuck=True))

    with pytest.raises(ConfigWriteFailedError) as exc_info:
        write_configuration(conn, timing=NvmcTiming(ready_attempts=2))

    assert exc_info.value.reason == "nvmc_timeout"
    assert exc_info.value.address == APPROTECT


def test_access_error(make_conn):
    conn = make_conn(SimulatedTarget(locked=True))

    with pytest.raises(ConfigWriteFailedError) as exc_info:
        write_configuration(conn)

    assert exc_info.value.reason == "access_error"


def test_custom_write_set(conn, target):
    writes = [ConfigurationWrite("TEST", 0x00FF8100, 0x12345678)]
    write_configuration(conn, writes)
    assert target.memory[0x00FF8100] == 0x12345678
