"""Command-line entry point for ci-tunnel."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Any

from . import __version__
from .config import TunnelSettings, load_settings
from .errors import ConfigError, TunnelError
from .supervisor import SessionSupervisor

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Configure root logging for the supervisor."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def report_failure(message: str) -> None:
    """Emit a GitHub Actions error annotation, marking the step as failed."""

    print(f"::error::{message}", flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ci-tunnel",
        description="Provision a Border0 SSH socket for this CI job and tear it down exactly once.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--clean-up",
        dest="clean_up_mode",
        action="store_true",
        default=None,
        help="Only delete the socket (post-job step)",
    )
    parser.add_argument(
        "--background",
        dest="background_mode",
        action="store_true",
        default=None,
        help="Detach the connector and return immediately",
    )
    parser.add_argument(
        "--wait-for",
        dest="wait_for",
        type=int,
        default=None,
        metavar="MINUTES",
        help="Foreground wait budget in minutes (0 waits for the connector to exit)",
    )
    parser.add_argument("--connector-path", type=Path, default=None, help="Path to the border0 binary")
    parser.add_argument("--log-level", default=None, help="Override CI_TUNNEL_LOG_LEVEL")
    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    fields = ("clean_up_mode", "background_mode", "wait_for", "connector_path", "log_level")
    return {name: getattr(args, name) for name in fields if getattr(args, name, None) is not None}


def run(settings: TunnelSettings) -> int:
    settings.require_identity()
    supervisor = SessionSupervisor.from_settings(settings)
    logger.info(
        "Starting session supervisor",
        extra={
            "version": __version__,
            "session": settings.session_name,
            "background": settings.background_mode,
            "clean_up": settings.clean_up_mode,
            "wait_for": settings.wait_for,
        },
    )
    result = asyncio.run(supervisor.run())
    logger.info(
        "Session supervisor finished",
        extra={
            "phase": result.phase.value,
            "trigger": result.trigger.value if result.trigger else None,
            "cleaned_up": result.cleaned_up,
        },
    )
    return result.exit_code


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(**_overrides(args))
    except ConfigError as exc:
        configure_logging("INFO")
        logger.error("%s", exc)
        report_failure(str(exc))
        raise SystemExit(1)

    configure_logging(settings.log_level)
    try:
        exit_code = run(settings)
    except TunnelError as exc:
        logger.error("%s", exc)
        report_failure(str(exc))
        raise SystemExit(1)
    except Exception as exc:
        logger.exception("Session supervisor failed unexpectedly")
        report_failure(f"Unexpected failure: {exc}")
        raise SystemExit(1)
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
