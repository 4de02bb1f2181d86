"""Error taxonomy for nRF91 recovery.

Every component raises one of these; only :class:`~nrfrecover.session.RecoverySession`
turns them into a :class:`~nrfrecover.session.RecoveryOutcome`.  Each error carries
enough context (reason code, address, expected vs. observed value) to diagnose a
failed run without re-running it with verbose tracing.
"""

from __future__ import annotations

from typing import Any, Optional


class RecoveryError(Exception):
    """Base class for all recovery failures."""

    default_reason = "error"

    def __init__(
        self,
        message: str,
        *,
        reason: Optional[str] = None,
        address: Optional[int] = None,
        expected: Optional[int] = None,
        observed: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason
        self.address = address
        self.expected = expected
        self.observed = observed

    def context(self) -> dict[str, Any]:
        """Structured diagnostic context (hex-formatted where numeric)."""
        ctx: dict[str, Any] = {"reason": self.reason, "message": self.message}
        for key in ("address", "expected", "observed"):
            value = getattr(self, key)
            if value is not None:
                ctx[key] = f"0x{value:08X}"
        return ctx


class ConnectionFailedError(RecoveryError):
    """Probe not found, DP did not power up, or the transport became unusable."""

    default_reason = "connection_failed"


class SettleTimeoutError(ConnectionFailedError):
    """The debug port did not come back after a reset within the settle window."""

    default_reason = "settle_timeout"


class AccessError(RecoveryError):
    """A single register transaction failed (bus fault, timeout, malformed response)."""

    default_reason = "access_error"


class WaitTimeoutError(RecoveryError):
    """A bounded wait-for-condition ran out of attempts."""

    default_reason = "wait_timeout"


class UnlockFailedError(RecoveryError):
    """Erase-unlock did not leave the device verified Unlocked."""

    default_reason = "unlock_failed"


class EraseTimeoutError(UnlockFailedError):
    """ERASEALLSTATUS never reported completion."""

    default_reason = "erase_timeout"


class FlashFailedError(RecoveryError):
    """Firmware programming failed; the target is in an unspecified state."""

    default_reason = "flash_failed"


class ImageOverlapError(FlashFailedError):
    """Two firmware records cover the same byte."""

    default_reason = "overlapping_records"


class ImageRangeError(FlashFailedError):
    """A firmware record lies outside flash and UICR."""

    default_reason = "outside_nvm"


class ConfigWriteFailedError(RecoveryError):
    """A configuration (UICR) word did not take."""

    default_reason = "config_write_failed"


class FirmwareParseError(RecoveryError):
    """The firmware image is missing or malformed."""

    default_reason = "parse_error"


class RecoveryCancelled(RecoveryError):
    """A cancel request was honored between two session steps."""

    default_reason = "cancelled"


class SessionOrderError(RuntimeError):
    """A session step was invoked out of order (programming error)."""
