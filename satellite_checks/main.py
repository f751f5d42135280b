from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Sequence

import structlog

from satellite_checks.config import ConfigurationError, DispatcherConfig, load_config
from satellite_checks.emitter import emit
from satellite_checks.models import Status, Strategy, Verdict
from satellite_checks.strategies import run_strategy
from satellite_checks.transport import SatelliteClient


logger = structlog.get_logger(__name__)


def configure_logging(level: str) -> None:
    # stdout carries the verdict document; logs go to stderr.
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, str(level).upper(), logging.WARNING)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def parse_command(raw: str | None) -> Any:
    if raw is None:
        return None
    text = raw
    if raw.startswith("@"):
        try:
            text = Path(raw[1:]).read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"cannot read command file {raw[1:]}: {exc}") from exc
    try:
        return json.loads(text)
    except ValueError as exc:
        raise ConfigurationError(f"command is not valid JSON: {exc}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a check on remote satellites and combine the answers")
    parser.add_argument("--config", default=None, help="Path to YAML config (default: $SATELLITE_CONFIG)")
    parser.add_argument("--strategy", choices=[s.value for s in Strategy], default=None)
    parser.add_argument("--concurrency", type=int, default=None, help="Parallel requests for 'multiple'")
    parser.add_argument("--service", default=None, help="Service identifier (keys the rotation cache)")
    parser.add_argument("--command", default=None, help="Command payload as JSON, or @file")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "WARNING"),
        help="Logging level (DEBUG, INFO, WARNING, ...)",
    )
    return parser


def prepare(args: argparse.Namespace) -> tuple[DispatcherConfig, Any, SatelliteClient]:
    config = load_config(
        args.config,
        strategy=args.strategy,
        concurrency=args.concurrency,
        service=args.service,
    )
    command = parse_command(args.command)
    config.validate_for_dispatch(command)
    return config, command, SatelliteClient(config)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        config, command, client = prepare(args)
    except ConfigurationError as exc:
        logger.error("configuration error", error=str(exc))
        return emit(Verdict(status=Status.UNKNOWN, message=f"configuration error: {exc}"))

    try:
        verdict = asyncio.run(run_strategy(config, command, client.call))
    except Exception as exc:
        logger.exception("dispatch failed", strategy=config.strategy.value)
        verdict = Verdict(status=Status.UNKNOWN, message=f"dispatch failed: {type(exc).__name__}: {exc}")
    return emit(verdict)


if __name__ == "__main__":
    raise SystemExit(main())
