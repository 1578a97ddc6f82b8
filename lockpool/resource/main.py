"""Command line entry points - JSON request on stdin, JSON response on stdout."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable

import pydantic
import structlog

from lockpool.coordination.errors import LockPoolError, ValidationError

from .config import Settings
from .dispatcher import PoolResource
from .models import CheckRequest, InRequest, OutRequest


def configure_logging(settings: Settings) -> None:
    """Send structured logs to stderr; stdout is reserved for the response."""
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    processors = [
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=lambda *args: structlog.PrintLogger(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def parse_request(model: type[pydantic.BaseModel], raw: str) -> Any:
    """Validate a JSON request, turning pydantic errors into ValidationError."""
    try:
        return model.model_validate_json(raw or "{}")
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        )
        raise ValidationError(f"invalid payload ({problems})") from e


def run(handler: Callable[[Settings], Awaitable[str]]) -> int:
    """Run one command, mapping failures to a message on stderr and exit 1."""
    settings = Settings()
    configure_logging(settings)

    try:
        output = asyncio.run(handler(settings))
    except LockPoolError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("interrupted", file=sys.stderr)
        return 130

    sys.stdout.write(output + "\n")
    sys.stdout.flush()
    return 0


def _directory_arg(prog: str, argv: list[str] | None) -> Path:
    parser = argparse.ArgumentParser(prog=prog)
    parser.add_argument("directory", type=Path)
    return parser.parse_args(argv).directory


def out_cli(argv: list[str] | None = None) -> int:
    """lockpool-out <sources-dir>"""
    sources_dir = _directory_arg("lockpool-out", argv)

    async def handle(settings: Settings) -> str:
        request = parse_request(OutRequest, sys.stdin.read())
        response = await PoolResource(settings).out(request, sources_dir)
        return response.model_dump_json()

    return run(handle)


def in_cli(argv: list[str] | None = None) -> int:
    """lockpool-in <dest-dir>"""
    dest = _directory_arg("lockpool-in", argv)

    async def handle(settings: Settings) -> str:
        request = parse_request(InRequest, sys.stdin.read())
        response = await PoolResource(settings).get(request, dest)
        return response.model_dump_json()

    return run(handle)


def check_cli(argv: list[str] | None = None) -> int:
    """lockpool-check"""
    argparse.ArgumentParser(prog="lockpool-check").parse_args(argv)

    async def handle(settings: Settings) -> str:
        request = parse_request(CheckRequest, sys.stdin.read())
        versions = await PoolResource(settings).check(request)
        return json.dumps([version.model_dump() for version in versions])

    return run(handle)


def cli() -> None:
    """Dispatch on the program name, so one binary can be linked as out/in/check."""
    commands = {"out": out_cli, "in": in_cli, "check": check_cli}
    name = Path(sys.argv[0]).name.removeprefix("lockpool-")
    if name in commands:
        sys.exit(commands[name](sys.argv[1:]))

    if len(sys.argv) < 2 or sys.argv[1] not in commands:
        print("usage: lockpool {out,in,check} [directory]", file=sys.stderr)
        sys.exit(2)
    sys.exit(commands[sys.argv[1]](sys.argv[2:]))


if __name__ == "__main__":
    cli()
