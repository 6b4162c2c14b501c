"""Handle over a running connector process."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class ConnectorMode(str, Enum):
    FOREGROUND = "foreground"
    BACKGROUND = "background"


class ProcessHandle(Protocol):
    """The subset of asyncio.subprocess.Process the supervisor relies on."""

    pid: int

    @property
    def returncode(self) -> int | None:
        ...

    async def wait(self) -> int:
        ...

    def terminate(self) -> None:
        ...


class ConnectorProcess:
    """Live handle to the connector child process.

    The exit status is terminal: it is recorded the first time the process is
    observed to exit and never changes afterwards.
    """

    def __init__(self, handle: ProcessHandle, *, mode: ConnectorMode, args: tuple[str, ...] = ()) -> None:
        self._handle = handle
        self._mode = mode
        self._args = args
        self._returncode: int | None = None

    @property
    def pid(self) -> int:
        return self._handle.pid

    @property
    def mode(self) -> ConnectorMode:
        return self._mode

    @property
    def args(self) -> tuple[str, ...]:
        return self._args

    @property
    def returncode(self) -> int | None:
        if self._returncode is None and self._handle.returncode is not None:
            self._returncode = self._handle.returncode
        return self._returncode

    def is_alive(self) -> bool:
        return self.returncode is None

    async def wait(self) -> int:
        code = await self._handle.wait()
        if self._returncode is None:
            self._returncode = code
            logger.info("Connector exited", extra={"pid": self.pid, "returncode": code})
        return self._returncode

    def terminate(self) -> bool:
        """Send SIGTERM if the process is still running; return whether a signal was sent."""

        if not self.is_alive():
            return False
        try:
            self._handle.terminate()
        except ProcessLookupError:
            logger.warning(
                "Could not signal connector; it may still be running",
                extra={"pid": self.pid, "command": list(self._args)},
            )
            return False
        logger.info("Terminated connector", extra={"pid": self.pid})
        return True


__all__ = ["ConnectorMode", "ConnectorProcess", "ProcessHandle"]
