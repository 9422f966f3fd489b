"""Command-line entry point: xero-cli <command> [--option value ...] [--no-cache]."""

import argparse
import asyncio
import json
import sys
import typing
from typing import Any, Optional, Sequence

from dotenv import load_dotenv
load_dotenv()  # Load .env so LOG_* variables are visible before logging is configured

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from xero_accounting.cache import create_cache_manager
from xero_accounting.commands import (
    COMMANDS,
    execute_command,
    format_validation_error,
    parse_args,
)
from xero_accounting.config.settings import Settings, settings
from xero_accounting.logging import LogTimer, configure_logging
from xero_accounting.xero.client import XeroClient
from xero_accounting.xero.errors import XeroError

logger = structlog.get_logger()

_NOT_ARGUMENTS = {"command", "no_cache"}


def _is_flag(annotation: Any) -> bool:
    return annotation is bool or (
        typing.get_origin(annotation) is typing.Union and bool in typing.get_args(annotation)
    )


def _add_model_options(parser: argparse.ArgumentParser, model: type[BaseModel]) -> None:
    """Expose each model field as --field-name.

    Values stay strings and are coerced by the model, so validation errors
    are reported the same way for the CLI and the HTTP service.
    """
    for name, field in model.model_fields.items():
        flag = "--" + name.replace("_", "-")
        help_text = field.description
        if field.is_required():
            help_text = f"{help_text} (required)"
        if _is_flag(field.annotation):
            parser.add_argument(flag, dest=name, action="store_true", default=argparse.SUPPRESS, help=help_text)
        else:
            parser.add_argument(flag, dest=name, default=argparse.SUPPRESS, metavar=name.upper(), help=help_text)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xero-cli",
        description="Xero accounting command-line client with response caching",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    for cmd in COMMANDS.values():
        sub = subparsers.add_parser(cmd.name, help=cmd.description, description=cmd.description)
        _add_model_options(sub, cmd.args_model)
        sub.add_argument(
            "--no-cache",
            dest="no_cache",
            action="store_true",
            help="Bypass the cache for this invocation",
        )

    return parser


async def run_command(
    name: str,
    raw_args: dict[str, Any],
    no_cache: bool = False,
    app_settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Any:
    """Build the cache and client, run one command and close the client."""
    app_settings = app_settings or settings
    cache = create_cache_manager(app_settings)

    async with XeroClient(app_settings, cache, transport=transport) as client:
        return await execute_command(client, name, raw_args, bypass_cache=no_cache)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging()

    raw_args = {k: v for k, v in vars(args).items() if k not in _NOT_ARGUMENTS}

    try:
        # Fail on bad arguments before any network or cache setup
        parse_args(args.command, raw_args)
        with LogTimer("command_executed", command=args.command):
            result = asyncio.run(run_command(args.command, raw_args, no_cache=args.no_cache))
    except ValidationError as e:
        _print_json({"error": f"Invalid arguments for {args.command}: {format_validation_error(e)}"})
        return 1
    except (XeroError, httpx.HTTPError, ValueError) as e:
        _print_json({"error": str(e)})
        return 1

    _print_json(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
