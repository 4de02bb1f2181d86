"""Recover command: the full unlock / flash / UICR / reset run."""

from __future__ import annotations

import logging
import signal
from typing import Any, Callable

from nrfrecover.cli.helpers import EXIT_CODES, EXIT_PARSE_ERROR, _now_iso, _print
from nrfrecover.config import RecoveryConfig
from nrfrecover.errors import FirmwareParseError
from nrfrecover.session import RecoveryOutcome, RecoverySession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[RecoveryConfig], RecoverySession]


def cmd_recover(
    *,
    config: RecoveryConfig,
    json_mode: bool,
    session_factory: SessionFactory = RecoverySession,
) -> int:
    """
    Run a full recovery.

    The first Ctrl-C asks the session to stop at the next step boundary;
    a second one interrupts immediately.

    Returns:
        Exit code: 0 on success, the outcome's exit code otherwise
    """
    session = session_factory(config)

    previous = signal.getsignal(signal.SIGINT)

    def _on_sigint(signum, frame):
        session.cancel()
        signal.signal(signal.SIGINT, previous)

    signal.signal(signal.SIGINT, _on_sigint)
    try:
        outcome = session.run()
    except FirmwareParseError as e:
        _print(
            {"error": e.message, "reason": e.reason, "image": config.image_path, "timestamp": _now_iso()},
            json_mode=json_mode,
        )
        return EXIT_PARSE_ERROR
    finally:
        signal.signal(signal.SIGINT, previous)

    if json_mode:
        result: dict[str, Any] = outcome.to_dict()
        result["image"] = config.image_path
        result["probe"] = str(config.selector)
        result["timestamp"] = _now_iso()
        _print(result, json_mode=True)
    else:
        _print(_describe(outcome), json_mode=False)
    return EXIT_CODES[outcome.kind]


def _describe(outcome: RecoveryOutcome) -> str:
    if outcome.succeeded:
        erase = "erased and unlocked" if outcome.erased else "already unlocked"
        return (
            f"Recovery complete: {erase}, {outcome.words_written} words programmed, "
            f"{outcome.config_words_written} UICR words written, reset "
            f"({outcome.elapsed_s:.2f}s)"
        )

    lines = [f"Recovery failed at {outcome.step}: {outcome.kind.value} ({outcome.reason})"]
    if outcome.message:
        lines.append(f"  {outcome.message}")
    details = [
        f"{key}=0x{value:08X}"
        for key, value in (
            ("address", outcome.address),
            ("expected", outcome.expected),
            ("observed", outcome.observed),
        )
        if value is not None
    ]
    if details:
        lines.append("  " + " ".join(details))
    lines.append(f"  states: {' -> '.join(outcome.states)}")
    return "\n".join(lines)
