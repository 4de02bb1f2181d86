"""Shared utilities for nrfrecover CLI commands."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional

from nrfrecover.config import load_config_file
from nrfrecover.session import OutcomeKind

# Process exit status per outcome. 2 is argparse's own usage-error status.
EXIT_OK = 0
EXIT_USAGE = 2
EXIT_PARSE_ERROR = 7

EXIT_CODES = {
    OutcomeKind.SUCCESS: EXIT_OK,
    OutcomeKind.CONNECTION_FAILED: 3,
    OutcomeKind.UNLOCK_FAILED: 4,
    OutcomeKind.FLASH_FAILED: 5,
    OutcomeKind.CONFIG_WRITE_FAILED: 6,
    OutcomeKind.CANCELLED: 8,
}


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime())


def _print(obj: Any, *, json_mode: bool) -> None:
    if json_mode:
        print(json.dumps(obj, indent=2, sort_keys=True))
    else:
        if isinstance(obj, str):
            print(obj)
        else:
            print(json.dumps(obj, indent=2, sort_keys=True))


def _setup_logging(verbosity: int) -> None:
    """-v shows progress (INFO), -vv every register transaction (DEBUG)."""
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _parse_hex(value: Optional[str]) -> Optional[int]:
    """argparse type for USB IDs, always hex as lsusb prints them (``2e8a`` or ``0x2E8A``)."""
    if value is None:
        return None
    text = value.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    return int(text, 16)


# argparse dest -> RecoveryConfig field, for flags that override --config values
_OVERRIDABLE = (
    "vendor_id",
    "product_id",
    "serial",
    "timeout_ms",
    "speed_khz",
    "force",
    "final_reset",
    "soft_reset_after_erase",
    "wait_after_reset",
)


def _settings_from_args(args: Any) -> dict[str, Any]:
    """Merge ``--config`` file values with command-line flags (flags win)."""
    data: dict[str, Any] = load_config_file(args.config) if getattr(args, "config", None) else {}
    for key in _OVERRIDABLE:
        value = getattr(args, key, None)
        if value is not None:
            data[key] = value
    image = getattr(args, "image", None)
    if image:
        data.pop("image", None)
        data["image_path"] = image
    return data
