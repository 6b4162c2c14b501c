"""ci-tunnel diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from ci_tunnel.config import TunnelSettings, load_settings
from ci_tunnel.errors import ConfigError, PersistenceError
from ci_tunnel.storage import FlagStore, SessionState


def load_state(settings: TunnelSettings) -> SessionState:
    try:
        return SessionState(settings.session_name, FlagStore(settings.action_path))
    except ConfigError as exc:
        print(f"Configuration unavailable: {exc}")
        raise SystemExit(1)


def cmd_status(args: argparse.Namespace) -> None:
    settings = load_settings()
    state = load_state(settings)
    payload = {
        "session_name": state.session_name,
        "marker_dir": str(state.store.directory),
        "created": state.created,
        "cleaned_up": state.cleaned_up,
        "background_mode": settings.background_mode,
        "wait_for": settings.wait_for,
    }
    print(json.dumps(payload, indent=2))


def cmd_markers(args: argparse.Namespace) -> None:
    settings = load_settings()
    store = FlagStore(settings.action_path)
    markers = store.markers()
    if args.session:
        markers = [marker for marker in markers if marker.name.startswith(f"{args.session}.")]
    print(
        json.dumps(
            [{"name": marker.name, "path": str(marker.path), "note": marker.note} for marker in markers],
            indent=2,
        )
    )


def cmd_reset(args: argparse.Namespace) -> None:
    settings = load_settings()
    state = load_state(settings)
    try:
        removed = state.reset()
    except PersistenceError as exc:
        print(f"Unable to reset markers: {exc}")
        raise SystemExit(1)
    print(json.dumps({"session_name": state.session_name, "removed": removed}, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ci-tunnel diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_status = sub.add_parser("status", help="Show the current session name and marker state")
    p_status.set_defaults(func=cmd_status)

    p_markers = sub.add_parser("markers", help="List marker files in the marker directory")
    p_markers.add_argument("--session", help="Only show markers for this session name")
    p_markers.set_defaults(func=cmd_markers)

    p_reset = sub.add_parser("reset", help="Remove the current session's markers")
    p_reset.set_defaults(func=cmd_reset)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    try:
        args.func(args)
    except ConfigError as exc:
        print(f"Configuration unavailable: {exc}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
