"""Persistence of per-run idempotency markers."""

from .flags import FlagStore, Marker, SessionState

__all__ = [
    "FlagStore",
    "Marker",
    "SessionState",
]
