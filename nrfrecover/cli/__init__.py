"""
nrfrecover: command-line front end for nRF91 debug-port recovery.

Main commands:
- recover: erase-unlock if needed, program an Intel HEX image, write the
  UICR protection words and reset
- status: report the lock state without touching the device

Every outcome maps to its own exit code so scripts can tell a missing probe
from a device that would not unlock. ``--json`` gives machine-parseable
output.

Entry points:
- nrfrecover: Main CLI entry point (installed via pip)
- Can also be imported and called programmatically via main(argv)
"""

from __future__ import annotations

from nrfrecover.cli.helpers import EXIT_CODES, _print
from nrfrecover.cli.recover_cmd import cmd_recover
from nrfrecover.cli.status_cmd import cmd_status
from nrfrecover.cli.dispatch import main

__all__ = [
    "EXIT_CODES",
    "_print",
    "cmd_recover",
    "cmd_status",
    "main",
]
