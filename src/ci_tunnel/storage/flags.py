"""File-backed idempotency markers for a single CI run."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from ..errors import PersistenceError

logger = logging.getLogger(__name__)

MARKER_PREFIX = "border0."


@dataclass(slots=True)
class Marker:
    """A persisted marker found on disk."""

    name: str
    path: Path
    note: str


class FlagStore:
    """Create and query plain-text markers in a run-scoped directory."""

    def __init__(
        self,
        directory: Path,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._directory = Path(directory)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, name: str) -> Path:
        return self._directory / f"{MARKER_PREFIX}{name}"

    def has_flag(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def set_flag(self, name: str, timestamp: datetime | None = None, *, label: str = "Marked") -> Path:
        """Write the marker, raising PersistenceError when the location is not writable."""

        path = self.path_for(name)
        moment = timestamp or self._clock()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(f"{label} on {moment.isoformat()}", encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Unable to write marker {path}: {exc}") from exc
        return path

    def clear_flag(self, name: str) -> bool:
        path = self.path_for(name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise PersistenceError(f"Unable to remove marker {path}: {exc}") from exc
        return True

    def markers(self) -> list[Marker]:
        if not self._directory.is_dir():
            return []
        found: list[Marker] = []
        for path in sorted(self._directory.glob(f"{MARKER_PREFIX}*")):
            if not path.is_file():
                continue
            found.append(
                Marker(
                    name=path.name[len(MARKER_PREFIX) :],
                    path=path,
                    note=path.read_text(encoding="utf-8", errors="replace").strip(),
                )
            )
        return found


class SessionState:
    """Creation and cleanup state for one session, shared by every component that needs it.

    Marker names are keyed by session name so markers left behind by another
    run (a different run id or attempt) never gate this one.
    """

    CREATED = "socket-created"
    CLEANED_UP = "cleaned-up"

    def __init__(self, session_name: str, store: FlagStore) -> None:
        self._session_name = session_name
        self._store = store
        self._lock = threading.Lock()
        self._cleanup_claimed = False

    @property
    def session_name(self) -> str:
        return self._session_name

    @property
    def store(self) -> FlagStore:
        return self._store

    def _flag(self, suffix: str) -> str:
        return f"{self._session_name}.{suffix}"

    @property
    def created_flag(self) -> str:
        return self._flag(self.CREATED)

    @property
    def cleaned_up_flag(self) -> str:
        return self._flag(self.CLEANED_UP)

    @property
    def created(self) -> bool:
        return self._store.has_flag(self.created_flag)

    @property
    def cleaned_up(self) -> bool:
        return self._store.has_flag(self.cleaned_up_flag)

    def mark_created(self) -> Path:
        return self._store.set_flag(self.created_flag, label="Socket created")

    def mark_cleaned_up(self) -> Path:
        return self._store.set_flag(self.cleaned_up_flag, label="Cleanup completed")

    def try_claim_cleanup(self) -> bool:
        """Atomically claim the single cleanup slot for this session.

        Returns False when cleanup already ran in a previous invocation (the
        marker exists) or was already claimed in this process.
        """

        with self._lock:
            if self._cleanup_claimed:
                return False
            if self.cleaned_up:
                self._cleanup_claimed = True
                return False
            self._cleanup_claimed = True
            return True

    def reset(self) -> list[str]:
        """Remove this session's markers and return the names that existed."""

        removed: list[str] = []
        for name in (self.created_flag, self.cleaned_up_flag):
            if self._store.clear_flag(name):
                removed.append(name)
        with self._lock:
            self._cleanup_claimed = False
        if removed:
            logger.info("Cleared session markers", extra={"session": self._session_name, "markers": removed})
        return removed


__all__ = ["FlagStore", "Marker", "SessionState", "MARKER_PREFIX"]
