"""
nRF Recover - debug-port recovery for locked nRF91 devices.

Detects access-port protection, erase-unlocks through the CTRL-AP, programs
an Intel HEX image through the NVMC, writes the UICR protection words and
resets the target.
"""

__version__ = "0.1.0"

from .interfaces import ClockInterface, ProbeSelector, ProbeTransport
from .errors import (
    AccessError,
    ConfigWriteFailedError,
    ConnectionFailedError,
    FirmwareParseError,
    FlashFailedError,
    RecoveryCancelled,
    RecoveryError,
    SessionOrderError,
    UnlockFailedError,
)
from .access_port import Connection, connect
from .lock_state import LockState, detect
from .unlock import unlock
from .firmware import FirmwareImage, FirmwareRecord, load_image
from .programmer import program_firmware
from .config_writer import write_configuration
from .reset import ResetKind, reset
from .config import RecoveryConfig
from .session import (
    OutcomeKind,
    RecoveryOutcome,
    RecoverySession,
    SessionState,
    read_status,
    run_recovery,
)

__all__ = [
    "__version__",
    "ClockInterface",
    "ProbeSelector",
    "ProbeTransport",
    "AccessError",
    "ConfigWriteFailedError",
    "ConnectionFailedError",
    "FirmwareParseError",
    "FlashFailedError",
    "RecoveryCancelled",
    "RecoveryError",
    "SessionOrderError",
    "UnlockFailedError",
    "Connection",
    "connect",
    "LockState",
    "detect",
    "unlock",
    "FirmwareImage",
    "FirmwareRecord",
    "load_image",
    "program_firmware",
    "write_configuration",
    "ResetKind",
    "reset",
    "RecoveryConfig",
    "OutcomeKind",
    "RecoveryOutcome",
    "RecoverySession",
    "SessionState",
    "read_status",
    "run_recovery",
]
