"""Argument parser for the nrfrecover CLI."""

from __future__ import annotations

import argparse

from nrfrecover import __version__
from nrfrecover.cli.helpers import _parse_hex
from nrfrecover.registers import DEFAULT_PRODUCT_ID, DEFAULT_TIMEOUT_MS, DEFAULT_VENDOR_ID
from nrfrecover.reset import ResetKind

# Flags that may appear before or after the subcommand.
_GLOBAL_FLAGS = ("--json",)


def _preprocess_argv(argv: list[str]) -> list[str]:
    """Move global flags (``--json``, ``-v``) in front of the subcommand.

    argparse subparsers only accept parent flags before the subcommand, but
    ``nrfrecover recover fw.hex --json -vv`` reads naturally, so allow both.
    """
    global_args: list[str] = []
    rest: list[str] = []
    for token in argv:
        if token in _GLOBAL_FLAGS or token == "--verbose" or (
            token.startswith("-v") and not token.startswith("--") and set(token[1:]) == {"v"}
        ):
            global_args.append(token)
        else:
            rest.append(token)
    return global_args + rest


def _add_probe_args(p: argparse.ArgumentParser) -> None:
    # Defaults are None so values from --config are not overridden.
    p.add_argument(
        "--vendor-id",
        type=_parse_hex,
        default=None,
        help=f"Probe USB vendor ID in hex (default: {DEFAULT_VENDOR_ID:04x}; 1366 = J-Link)",
    )
    p.add_argument(
        "--product-id",
        type=_parse_hex,
        default=None,
        help=f"Probe USB product ID in hex (default: {DEFAULT_PRODUCT_ID:04x})",
    )
    p.add_argument("--serial", default=None, help="Probe serial number when several are attached")
    p.add_argument(
        "--timeout",
        type=int,
        default=None,
        dest="timeout_ms",
        help=f"Probe connection timeout in ms (default: {DEFAULT_TIMEOUT_MS})",
    )
    p.add_argument("--speed", type=int, default=None, dest="speed_khz", help="SWD clock in kHz")
    p.add_argument("--config", default=None, help="YAML file with recovery settings")


def _build_parser() -> argparse.ArgumentParser:
    """Build the full argparse parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="nrfrecover",
        description="Recover a locked nRF91: erase-unlock, flash, write UICR, reset",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument("--json", action="store_true", help="Output machine-parseable JSON")
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="More logging (-v progress, -vv register transactions)",
    )

    sub = parser.add_subparsers(dest="cmd", required=True)

    p_recover = sub.add_parser("recover", help="Unlock, flash IMAGE, write UICR and reset")
    p_recover.add_argument("image", nargs="?", default=None, help="Intel HEX firmware image")
    _add_probe_args(p_recover)
    p_recover.add_argument(
        "--force",
        action="store_true",
        default=None,
        help="Erase-unlock even if the device reports unlocked",
    )
    p_recover.add_argument(
        "--reset",
        choices=[k.value for k in ResetKind],
        default=None,
        dest="final_reset",
        help="Final reset kind: soft (CTRL-AP) or line (nRESET pin) (default: soft)",
    )
    p_recover.add_argument(
        "--no-soft-reset",
        action="store_false",
        default=None,
        dest="soft_reset_after_erase",
        help="Skip the CTRL-AP soft reset after the erase",
    )
    p_recover.add_argument(
        "--no-wait",
        action="store_false",
        default=None,
        dest="wait_after_reset",
        help="Do not wait for the debug port to come back after the final reset",
    )

    p_status = sub.add_parser("status", help="Report lock state without changing the device")
    _add_probe_args(p_status)

    return parser
