"""Command dispatch for the nrfrecover CLI."""

from __future__ import annotations

import sys
from typing import Optional

import yaml

from nrfrecover.cli.helpers import EXIT_USAGE, _print, _settings_from_args, _setup_logging
from nrfrecover.cli.parser import _build_parser, _preprocess_argv
from nrfrecover.config import RecoveryConfig


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the ``nrfrecover`` CLI.

    Parses arguments, merges the optional YAML config with command-line
    flags, and dispatches to the command handler.

    Args:
        argv: Argument list to parse.  Defaults to ``sys.argv[1:]``.

    Returns:
        Exit code: 0 on success, non-zero on error.
    """
    if argv is None:
        argv = sys.argv[1:]

    argv = _preprocess_argv(argv)

    # Late import to allow tests to monkeypatch nrfrecover.cli.cmd_xxx
    import nrfrecover.cli as cli

    parser = _build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    try:
        settings = _settings_from_args(args)
        config = RecoveryConfig.from_mapping(settings, require_image=args.cmd == "recover")
    except (OSError, ValueError, yaml.YAMLError) as e:
        _print({"error": f"Invalid configuration: {e}"}, json_mode=args.json)
        return EXIT_USAGE

    if args.cmd == "recover":
        return cli.cmd_recover(config=config, json_mode=args.json)
    if args.cmd == "status":
        return cli.cmd_status(config=config, json_mode=args.json)

    parser.error(f"Unknown command: {args.cmd}")
    return EXIT_USAGE
