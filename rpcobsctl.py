#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from rpcobs.config import ObservabilityConfig
from rpcobs.errors import (
    ConfigIOError,
    MalformedConfigError,
    ObservabilityConfigError,
    SchemaViolationError,
    SourceUnavailableError,
)
from rpcobs.runtime.source import load_config_from_environment, load_config_from_file


def _exit_code_for(e: ObservabilityConfigError) -> int:
    if isinstance(e, SourceUnavailableError):
        return 64
    if isinstance(e, MalformedConfigError):
        return 65
    if isinstance(e, ConfigIOError):
        return 66
    if isinstance(e, SchemaViolationError):
        return 60
    return 1


def _load(args: argparse.Namespace) -> ObservabilityConfig:
    if args.file:
        return load_config_from_file(Path(args.file))
    return load_config_from_environment()


def cmd_config_validate(args: argparse.Namespace) -> int:
    try:
        _load(args)
    except ObservabilityConfigError as e:
        print(f"CONFIG_VALIDATE_FAILED: {e}")
        return _exit_code_for(e)
    print("CONFIG_VALIDATE_OK")
    return 0


def cmd_config_show(args: argparse.Namespace) -> int:
    try:
        cfg = _load(args)
    except ObservabilityConfigError as e:
        print(f"CONFIG_SHOW_FAILED: {e}")
        return _exit_code_for(e)
    print(json.dumps(cfg.to_dict(), ensure_ascii=False, sort_keys=True, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="rpcobsctl")
    parser.add_argument("--log-level", default="WARNING", help="Python logging level.")
    sub = parser.add_subparsers(dest="command", required=True)

    config = sub.add_parser("config")
    config_sub = config.add_subparsers(dest="config_command", required=True)

    cfg_validate = config_sub.add_parser("validate")
    cfg_validate.add_argument(
        "--file",
        default=None,
        help="Config file to validate (defaults to the GRPC_CONFIG_OBSERVABILITY* env vars).",
    )
    cfg_validate.set_defaults(func=cmd_config_validate)

    cfg_show = config_sub.add_parser("show")
    cfg_show.add_argument(
        "--file",
        default=None,
        help="Config file to show (defaults to the GRPC_CONFIG_OBSERVABILITY* env vars).",
    )
    cfg_show.set_defaults(func=cmd_config_show)

    args = parser.parse_args(argv)
    logging.basicConfig(level=str(args.log_level).upper())
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
