"""Point-in-time process probes and a polling wrapper around them."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Callable, Iterable

import psutil

logger = logging.getLogger(__name__)

Probe = Callable[[str], bool]


def is_running(pattern: str, *, exclude_pids: Iterable[int] | None = None) -> bool:
    """Return True when any process command line contains ``pattern``.

    The current process is never considered a match.
    """

    excluded = {os.getpid(), *(exclude_pids or ())}
    for proc in psutil.process_iter(["pid", "cmdline"]):
        try:
            if proc.info["pid"] in excluded:
                continue
            cmdline = proc.info.get("cmdline") or []
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
        if pattern in " ".join(cmdline):
            return True
    return False


class LivenessPoller:
    """Periodically probe for a process pattern until it disappears."""

    def __init__(self, probe: Probe | None = None, *, interval: float = 10.0) -> None:
        self._probe = probe or is_running
        self._interval = interval

    @property
    def interval(self) -> float:
        return self._interval

    def check(self, pattern: str) -> bool:
        return self._probe(pattern)

    async def wait_until_stopped(self, pattern: str) -> None:
        """Return once the probe no longer finds ``pattern``; checks immediately first."""

        while self._probe(pattern):
            await asyncio.sleep(self._interval)
        logger.warning("Connector is no longer running", extra={"pattern": pattern})


__all__ = ["LivenessPoller", "Probe", "is_running"]
