"""Bridge OS signals, host exit and connector exit onto cleanup."""

from __future__ import annotations

import asyncio
import atexit
import logging
import signal
from contextlib import contextmanager
from typing import Coroutine, Iterator

from ..connector.process import ConnectorProcess
from .cleanup import CleanupCoordinator, CleanupTrigger

logger = logging.getLogger(__name__)


class SignalBridge:
    """Route SIGINT/SIGTERM, interpreter exit and detached-connector exit to cleanup.

    While the supervisor is creating, launching or waiting, a signal only sets
    :attr:`event` and the supervisor runs cleanup once the in-flight call
    returns. Otherwise, as after a background launch, the bridge schedules
    cleanup itself.
    """

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self, coordinator: CleanupCoordinator) -> None:
        self._coordinator = coordinator
        self._loop: asyncio.AbstractEventLoop | None = None
        self._event: asyncio.Event | None = None
        self._installed: list[int] = []
        self._received: int | None = None
        self._waiting = False
        self._exit_hook = False
        self._cleanups: set[asyncio.Task] = set()
        self._watchers: set[asyncio.Task] = set()

    @property
    def armed(self) -> bool:
        return bool(self._installed)

    @property
    def exit_hook_armed(self) -> bool:
        return self._exit_hook

    @property
    def received(self) -> int | None:
        return self._received

    @property
    def event(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
        return self._event

    def arm(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        _ = self.event
        for signum in self.SIGNALS:
            try:
                self._loop.add_signal_handler(signum, self.notify, signum)
            except (NotImplementedError, RuntimeError, ValueError) as exc:
                logger.warning("Cannot install handler for %s: %s", signal.Signals(signum).name, exc)
                continue
            self._installed.append(signum)

    def notify(self, signum: int) -> None:
        """Record a signal and make sure cleanup follows."""

        self._received = signum
        logger.warning("Received %s", signal.Signals(signum).name)
        self.event.set()
        if not self._waiting:
            self._spawn(self._coordinator.cleanup(CleanupTrigger.SIGNAL), self._cleanups)

    @contextmanager
    def waiting(self) -> Iterator[asyncio.Event]:
        """Mark a foreground wait as the consumer of signal notifications."""

        self._waiting = True
        try:
            yield self.event
        finally:
            self._waiting = False

    def arm_exit_hook(self) -> None:
        if not self._exit_hook:
            atexit.register(self._on_host_exit)
            self._exit_hook = True

    def release_exit_hook(self) -> None:
        if self._exit_hook:
            atexit.unregister(self._on_host_exit)
            self._exit_hook = False

    def _on_host_exit(self) -> None:
        self._coordinator.cleanup_blocking(CleanupTrigger.HOST_EXIT)

    def watch_connector(self, process: ConnectorProcess) -> None:
        """Clean up when a detached connector exits, for as long as this loop runs."""

        self._spawn(self._cleanup_on_exit(process), self._watchers)

    async def _cleanup_on_exit(self, process: ConnectorProcess) -> None:
        code = await process.wait()
        logger.warning("Subprocess exited with code %s", code)
        await self._coordinator.cleanup(CleanupTrigger.CONNECTOR_EXIT)

    def _spawn(self, coro: Coroutine, bucket: set[asyncio.Task]) -> None:
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(coro)
        bucket.add(task)
        task.add_done_callback(bucket.discard)

    async def drain(self) -> None:
        """Wait for cleanups scheduled from signal handlers to finish."""

        if self._cleanups:
            await asyncio.gather(*list(self._cleanups), return_exceptions=True)

    def disarm(self) -> None:
        if self._loop is not None:
            for signum in self._installed:
                self._loop.remove_signal_handler(signum)
        self._installed.clear()
        for task in list(self._watchers):
            task.cancel()


__all__ = ["SignalBridge"]
