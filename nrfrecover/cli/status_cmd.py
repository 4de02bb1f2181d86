"""Status command: read-only lock state report."""

from __future__ import annotations

from nrfrecover.cli.helpers import EXIT_CODES, EXIT_OK, _now_iso, _print
from nrfrecover.config import RecoveryConfig
from nrfrecover.errors import RecoveryError
from nrfrecover.session import OutcomeKind, read_status


def cmd_status(*, config: RecoveryConfig, json_mode: bool) -> int:
    """
    Connect to the probe and report the target's lock state.

    Nothing on the target is written apart from DP power-up and bank select.

    Returns:
        Exit code (0 = success, 3 = probe or target unreachable)
    """
    try:
        status = read_status(config.selector, config.timeout_ms, speed_khz=config.speed_khz)
    except RecoveryError as e:
        error = {"error": e.message, "timestamp": _now_iso()}
        error.update(e.context())
        _print(error, json_mode=json_mode)
        return EXIT_CODES[OutcomeKind.CONNECTION_FAILED]

    if json_mode:
        result = status.to_dict()
        result["timestamp"] = _now_iso()
        _print(result, json_mode=True)
        return EXIT_OK

    ctrl = "unreadable" if status.ctrl_ap_idr is None else f"0x{status.ctrl_ap_idr:08X}"
    print(f"Probe:       {status.probe} ({status.selector})")
    print(f"DP IDR:      0x{status.dp_idr:08X}")
    print(f"CTRL-AP IDR: {ctrl}")
    print(f"Lock state:  {status.lock_state.value}")
    return EXIT_OK
