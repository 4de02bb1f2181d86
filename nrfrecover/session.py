"""Recovery Session: the top-level recovery state machine.

States::

    DISCONNECTED -> CONNECTED -> LOCK_CHECKED -> [UNLOCKING] -> UNLOCKED
        -> FLASHED -> CONFIG_WRITTEN -> RESET -> DONE

    UNLOCKING -> LOCKED_FATAL when the erase does not unlock the device
    any step -> FAILED (absorbing)

UNLOCKING is skipped when the device already reports Unlocked and ``force``
is not set. Every step runs strictly after the previous one has completed;
the first failure ends the run and no later step executes. There is no
resume: a failed run starts again from DISCONNECTED.

The session owns its :class:`~nrfrecover.access_port.Connection` for the
whole run and closes it on every exit path. Cancellation is honored only
between steps, never in the middle of an erase or a flash.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from .access_port import Connection, TransportFactory, connect
from .config import RecoveryConfig
from .config_writer import write_configuration
from .errors import (
    AccessError,
    ConfigWriteFailedError,
    ConnectionFailedError,
    FlashFailedError,
    RecoveryCancelled,
    RecoveryError,
    SessionOrderError,
    UnlockFailedError,
)
from .firmware import FirmwareImage, load_image
from .implementations import RealClock
from .interfaces import ClockInterface, ProbeSelector
from .lock_state import LockState, detect
from .nvmc import NvmcTiming
from .programmer import ProgramResult, program_firmware
from .registers import CONFIGURATION_WRITE_SET, CTRL_AP, CTRL_AP_IDR
from .reset import ResetTiming, reset
from .unlock import UnlockResult, UnlockTiming, unlock

logger = logging.getLogger(__name__)


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    LOCK_CHECKED = "lock_checked"
    UNLOCKING = "unlocking"
    UNLOCKED = "unlocked"
    LOCKED_FATAL = "locked_fatal"
    FLASHED = "flashed"
    CONFIG_WRITTEN = "config_written"
    RESET = "reset"
    DONE = "done"
    FAILED = "failed"


class OutcomeKind(Enum):
    SUCCESS = "success"
    CONNECTION_FAILED = "connection_failed"
    UNLOCK_FAILED = "unlock_failed"
    FLASH_FAILED = "flash_failed"
    CONFIG_WRITE_FAILED = "config_write_failed"
    CANCELLED = "cancelled"


# Exception type -> outcome, most specific first. Anything else is attributed
# to the step that was running (see _STEP_OUTCOMES).
_ERROR_OUTCOMES: tuple[tuple[type, OutcomeKind], ...] = (
    (RecoveryCancelled, OutcomeKind.CANCELLED),
    (ConnectionFailedError, OutcomeKind.CONNECTION_FAILED),
    (UnlockFailedError, OutcomeKind.UNLOCK_FAILED),
    (FlashFailedError, OutcomeKind.FLASH_FAILED),
    (ConfigWriteFailedError, OutcomeKind.CONFIG_WRITE_FAILED),
)

_STEP_OUTCOMES = {
    "connect": OutcomeKind.CONNECTION_FAILED,
    "check_lock": OutcomeKind.CONNECTION_FAILED,
    "unlock": OutcomeKind.UNLOCK_FAILED,
    "flash": OutcomeKind.FLASH_FAILED,
    "write_config": OutcomeKind.CONFIG_WRITE_FAILED,
    "reset": OutcomeKind.CONNECTION_FAILED,
}


@dataclass
class RecoveryOutcome:
    """Terminal result of a recovery run."""
    kind: OutcomeKind
    step: Optional[str] = None
    reason: Optional[str] = None
    message: str = ""
    address: Optional[int] = None
    expected: Optional[int] = None
    observed: Optional[int] = None
    lock_state: Optional[LockState] = None
    erased: bool = False
    words_written: int = 0
    config_words_written: int = 0
    elapsed_s: float = 0.0
    states: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view (hex strings for register values)."""
        data: dict[str, Any] = {
            "outcome": self.kind.value,
            "success": self.succeeded,
            "erased": self.erased,
            "words_written": self.words_written,
            "config_words_written": self.config_words_written,
            "elapsed_s": round(self.elapsed_s, 3),
            "states": list(self.states),
        }
        if self.lock_state is not None:
            data["lock_state"] = self.lock_state.value
        if not self.succeeded:
            data["step"] = self.step
            data["reason"] = self.reason
            data["message"] = self.message
            for key in ("address", "expected", "observed"):
                value = getattr(self, key)
                if value is not None:
                    data[key] = f"0x{value:08X}"
        return data


StateCallback = Callable[[SessionState, SessionState], None]


class RecoverySession:
    """
    Drives one recovery run against one target.

    Features:
    - Strict step ordering (out-of-order calls raise SessionOrderError)
    - Failure absorbs: once FAILED, no further step runs
    - Cancellation between steps via cancel() (thread-safe)
    - Connection closed on every exit path

    Usage:
        session = RecoverySession(config)
        outcome = session.run()

        # or step by step
        session.load_image()
        session.connect()
        session.check_lock()
        ...
        session.close()
    """

    def __init__(
        self,
        config: RecoveryConfig,
        *,
        transport_factory: Optional[TransportFactory] = None,
        clock: Optional[ClockInterface] = None,
        image_loader: Callable[[str], FirmwareImage] = load_image,
        on_state_change: Optional[StateCallback] = None,
        unlock_timing: Optional[UnlockTiming] = None,
        nvmc_timing: Optional[NvmcTiming] = None,
    ):
        self._config = config
        self._transport_factory = transport_factory
        self._clock = clock or RealClock()
        self._image_loader = image_loader
        self._on_state_change = on_state_change
        self._unlock_timing = unlock_timing
        self._nvmc_timing = nvmc_timing
        self._reset_timing = ResetTiming(settle_s=config.settle_ms / 1000.0)

        self._state = SessionState.DISCONNECTED
        self._trail: list[SessionState] = [self._state]
        self._cancel = threading.Event()
        self._conn: Optional[Connection] = None
        self._image: Optional[FirmwareImage] = None
        self._lock_state: Optional[LockState] = None
        self._unlock_result: Optional[UnlockResult] = None
        self._program_result: Optional[ProgramResult] = None
        self._config_words = 0
        self._started = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def trail(self) -> list[SessionState]:
        """Every state visited so far, in order."""
        return list(self._trail)

    @property
    def connection(self) -> Optional[Connection]:
        return self._conn

    @property
    def lock_state(self) -> Optional[LockState]:
        return self._lock_state

    def cancel(self) -> None:
        """Request a stop at the next step boundary. Safe from any thread."""
        if not self._cancel.is_set():
            logger.warning("Cancel requested, stopping before the next step")
        self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def _set_state(self, new_state: SessionState) -> None:
        """Update state and call callback if changed."""
        if new_state != self._state:
            old_state = self._state
            self._state = new_state
            self._trail.append(new_state)
            logger.info("State: %s -> %s", old_state.value, new_state.value)
            if self._on_state_change:
                self._on_state_change(old_state, new_state)

    def _require(self, step: str, *allowed: SessionState) -> None:
        if self._state not in allowed:
            expected = " or ".join(s.value for s in allowed)
            raise SessionOrderError(f"{step}() needs state {expected}, session is {self._state.value}")

    def _require_conn(self) -> Connection:
        if self._conn is None:
            raise SessionOrderError("No connection")
        return self._conn

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def load_image(self) -> FirmwareImage:
        """Parse the firmware image. Runs before any probe access.

        Raises:
            FirmwareParseError: Propagated unchanged.
        """
        self._require("load_image", SessionState.DISCONNECTED)
        self._image = self._image_loader(self._config.image_path)
        return self._image

    def connect(self) -> Connection:
        self._require("connect", SessionState.DISCONNECTED)
        cfg = self._config
        self._conn = connect(
            cfg.selector,
            cfg.timeout_ms,
            transport_factory=self._transport_factory,
            clock=self._clock,
            speed_khz=cfg.speed_khz,
        )
        self._set_state(SessionState.CONNECTED)
        return self._conn

    def check_lock(self) -> LockState:
        self._require("check_lock", SessionState.CONNECTED)
        self._lock_state = detect(self._require_conn())
        self._set_state(SessionState.LOCK_CHECKED)
        return self._lock_state

    def unlock(self) -> UnlockResult:
        self._require("unlock", SessionState.LOCK_CHECKED)
        conn = self._require_conn()

        if self._lock_state is LockState.UNLOCKED and not self._config.force:
            logger.info("Device already unlocked, no erase needed")
            self._unlock_result = UnlockResult(
                erased=False, initial_state=self._lock_state, final_state=self._lock_state
            )
            self._set_state(SessionState.UNLOCKED)
            return self._unlock_result

        self._set_state(SessionState.UNLOCKING)
        try:
            self._unlock_result = unlock(
                conn,
                force=self._config.force,
                soft_reset=self._config.soft_reset_after_erase,
                timing=self._unlock_timing,
            )
        except UnlockFailedError:
            self._set_state(SessionState.LOCKED_FATAL)
            raise
        self._set_state(SessionState.UNLOCKED)
        return self._unlock_result

    def flash(self) -> ProgramResult:
        self._require("flash", SessionState.UNLOCKED)
        if self._image is None:
            raise SessionOrderError("flash() needs a loaded image")
        self._program_result = program_firmware(
            self._require_conn(), self._image, timing=self._nvmc_timing
        )
        self._set_state(SessionState.FLASHED)
        return self._program_result

    def write_config(self) -> None:
        self._require("write_config", SessionState.FLASHED)
        written = write_configuration(
            self._require_conn(), CONFIGURATION_WRITE_SET, timing=self._nvmc_timing
        )
        self._config_words = len(written)
        self._set_state(SessionState.CONFIG_WRITTEN)

    def reset(self) -> None:
        self._require("reset", SessionState.CONFIG_WRITTEN)
        try:
            reset(
                self._require_conn(),
                self._config.final_reset,
                wait_for_debug_port=self._config.wait_after_reset,
                timing=self._reset_timing,
            )
        except AccessError as e:
            raise ConnectionFailedError(f"Final reset failed: {e.message}", reason="reset_access") from e
        self._set_state(SessionState.RESET)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def run(self) -> RecoveryOutcome:
        """Run every step in order and return the outcome.

        Only a firmware parse error escapes as an exception; every other
        failure is reported in the returned outcome.
        """
        if self._started:
            raise SessionOrderError("A session runs once; create a new one to retry")
        self._started = True
        started = self._clock.monotonic()

        self.load_image()

        steps: list[tuple[str, Callable[[], Any]]] = [
            ("connect", self.connect),
            ("check_lock", self.check_lock),
            ("unlock", self.unlock),
            ("flash", self.flash),
            ("write_config", self.write_config),
            ("reset", self.reset),
        ]
        current = steps[0][0]
        try:
            for current, step in steps:
                if self._cancel.is_set():
                    raise RecoveryCancelled(f"Cancelled before {current}")
                step()
            self._set_state(SessionState.DONE)
            logger.info("Recovery complete")
            return self._outcome(OutcomeKind.SUCCESS, started)
        except RecoveryError as e:
            kind = _classify(e, current)
            logger.error("Recovery failed at %s (%s): %s", current, e.reason, e.message)
            self._set_state(SessionState.FAILED)
            return self._outcome(kind, started, step=current, error=e)
        finally:
            self.close()

    def _outcome(
        self,
        kind: OutcomeKind,
        started: float,
        *,
        step: Optional[str] = None,
        error: Optional[RecoveryError] = None,
    ) -> RecoveryOutcome:
        outcome = RecoveryOutcome(
            kind=kind,
            step=step,
            lock_state=self._lock_state,
            erased=bool(self._unlock_result and self._unlock_result.erased),
            words_written=self._program_result.words_written if self._program_result else 0,
            config_words_written=self._config_words,
            elapsed_s=self._clock.monotonic() - started,
            states=[s.value for s in self._trail],
        )
        if error is not None:
            outcome.reason = error.reason
            outcome.message = error.message
            outcome.address = error.address
            outcome.expected = error.expected
            outcome.observed = error.observed
        return outcome


def _classify(error: RecoveryError, step: str) -> OutcomeKind:
    for exc_type, kind in _ERROR_OUTCOMES:
        if isinstance(error, exc_type):
            return kind
    return _STEP_OUTCOMES[step]


def run_recovery(config: RecoveryConfig, **kwargs) -> RecoveryOutcome:
    """Single entry point: run a full recovery for ``config``.

    Keyword arguments are passed to :class:`RecoverySession` (test doubles,
    timing overrides, state callback).

    Raises:
        FirmwareParseError: The image is missing or malformed (before any
            probe access).
    """
    return RecoverySession(config, **kwargs).run()


# =============================================================================
# Read-only status
# =============================================================================

@dataclass
class ProbeStatus:
    probe: str
    selector: str
    lock_state: LockState
    dp_idr: int
    ctrl_ap_idr: Optional[int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "probe": self.probe,
            "selector": self.selector,
            "lock_state": self.lock_state.value,
            "dp_idr": f"0x{self.dp_idr:08X}",
            "ctrl_ap_idr": None if self.ctrl_ap_idr is None else f"0x{self.ctrl_ap_idr:08X}",
        }


def read_status(
    selector: ProbeSelector,
    timeout_ms: int,
    *,
    transport_factory: Optional[TransportFactory] = None,
    clock: Optional[ClockInterface] = None,
    speed_khz: Optional[int] = None,
) -> ProbeStatus:
    """Connect and report the lock state without modifying the device.

    Raises:
        ConnectionFailedError: Probe not found or DP unreachable.
    """
    kwargs: dict[str, Any] = {"transport_factory": transport_factory, "clock": clock}
    if speed_khz is not None:
        kwargs["speed_khz"] = speed_khz
    with connect(selector, timeout_ms, **kwargs) as conn:
        dp_idr = conn.read_idr()
        state = detect(conn)
        try:
            ctrl_ap_idr: Optional[int] = conn.read_ap_register(CTRL_AP, CTRL_AP_IDR)
        except AccessError as e:
            logger.warning("CTRL-AP IDR unreadable: %s", e)
            ctrl_ap_idr = None
        return ProbeStatus(
            probe=conn.probe_name,
            selector=str(selector),
            lock_state=state,
            dp_idr=dp_idr,
            ctrl_ap_idr=ctrl_ap_idr,
        )
