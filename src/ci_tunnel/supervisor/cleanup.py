"""Idempotent teardown of the remote socket."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from ..connector.process import ConnectorMode, ConnectorProcess
from ..connector.runner import ConnectorRunner, serialize_result
from ..errors import PersistenceError
from ..storage import SessionState

logger = logging.getLogger(__name__)


class CleanupTrigger(str, Enum):
    DEADLINE = "time limit reached"
    CONNECTOR_EXIT = "process exited unexpectedly"
    LIVENESS = "connector no longer running"
    SIGNAL = "signal received"
    HOST_EXIT = "host process exiting"
    REQUESTED = "cleanup requested"


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class CleanupCoordinator:
    """Single entry point for deleting the socket, at most once per session.

    Every trigger path funnels through :meth:`cleanup`. The method never
    raises: it frequently runs from a signal handler or an exit hook.
    """

    def __init__(
        self,
        state: SessionState,
        runner: ConnectorRunner,
        *,
        connector: ConnectorProcess | None = None,
    ) -> None:
        self._state = state
        self._runner = runner
        self._connector = connector
        self._trigger: CleanupTrigger | None = None

    @property
    def trigger(self) -> CleanupTrigger | None:
        """The trigger that performed cleanup in this process, if any."""

        return self._trigger

    @property
    def performed(self) -> bool:
        return self._trigger is not None

    def attach(self, connector: ConnectorProcess | None) -> None:
        self._connector = connector

    async def cleanup(self, trigger: CleanupTrigger) -> bool:
        """Delete the socket and write the cleanup marker; return False if it already ran."""

        session = self._state.session_name
        if not self._state.try_claim_cleanup():
            logger.info(
                "Cleanup has already ran. Skipping...",
                extra={"session": session, "trigger": trigger.value},
            )
            self._stop_connector()
            return False

        self._trigger = trigger
        logger.info("Running cleanup", extra={"session": session, "trigger": trigger.value})

        try:
            result = await self._runner.delete_session(session)
        except Exception as exc:  # cleanup must never raise
            logger.error("Failed to delete socket %s: %s", session, exc)
        else:
            if result.ok:
                logger.info("Socket %s deleted", session)
            else:
                logger.error("Failed to delete socket %s: %s", session, result.error_text)
                logger.debug("Delete result: %s", serialize_result(result))

        # Written even after a failed delete so later triggers do not retry it.
        try:
            self._state.mark_cleaned_up()
        except PersistenceError as exc:
            logger.error("Failed to write cleanup marker: %s", exc)

        self._stop_connector()
        return True

    def _stop_connector(self) -> None:
        # Also reached when the claim was taken before this connector was attached.
        connector = self._connector
        if connector is not None and connector.mode is ConnectorMode.FOREGROUND:
            connector.terminate()

    def cleanup_blocking(self, trigger: CleanupTrigger) -> bool:
        """Run :meth:`cleanup` to completion outside of any running event loop."""

        return _run_sync(self.cleanup(trigger))


__all__ = ["CleanupCoordinator", "CleanupTrigger"]
