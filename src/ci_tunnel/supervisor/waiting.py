"""Race the wait budget against connector termination and signals."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from ..connector.liveness import LivenessPoller
from ..connector.process import ConnectorProcess
from .cleanup import CleanupTrigger

logger = logging.getLogger(__name__)

# Order used when several sources complete in the same loop iteration.
_PRIORITY = (
    CleanupTrigger.SIGNAL,
    CleanupTrigger.CONNECTOR_EXIT,
    CleanupTrigger.LIVENESS,
    CleanupTrigger.DEADLINE,
)

_MESSAGES = {
    CleanupTrigger.SIGNAL: "Interrupted. Running cleanup...",
    CleanupTrigger.CONNECTOR_EXIT: "Connector exited. Running cleanup...",
    CleanupTrigger.LIVENESS: "Process has exited early. Running cleanup...",
    CleanupTrigger.DEADLINE: "Time is UP! Running cleanup...",
}


@dataclass(slots=True)
class WaitOutcome:
    trigger: CleanupTrigger
    returncode: int | None = None


class WaitController:
    """Resolve to whichever termination source fires first.

    Sources: the deadline (bounded waits only), the connector's own exit, the
    liveness poller (bounded waits, or when no process handle exists), and the
    signal event. The losers are cancelled before returning.
    """

    def __init__(self, poller: LivenessPoller) -> None:
        self._poller = poller

    async def wait(
        self,
        process: ConnectorProcess | None,
        *,
        budget: float,
        stop_event: asyncio.Event,
        pattern: str,
    ) -> WaitOutcome:
        if process is None and not stop_event.is_set() and not self._poller.check(pattern):
            # Nothing to wait on: the connector we were meant to monitor is gone.
            logger.info(_MESSAGES[CleanupTrigger.LIVENESS])
            return WaitOutcome(CleanupTrigger.LIVENESS)

        sources: dict[asyncio.Task, CleanupTrigger] = {
            asyncio.ensure_future(stop_event.wait()): CleanupTrigger.SIGNAL,
        }
        if process is not None:
            sources[asyncio.ensure_future(process.wait())] = CleanupTrigger.CONNECTOR_EXIT
        if budget > 0 or process is None:
            sources[asyncio.ensure_future(self._poller.wait_until_stopped(pattern))] = CleanupTrigger.LIVENESS
        if budget > 0:
            sources[asyncio.ensure_future(asyncio.sleep(budget))] = CleanupTrigger.DEADLINE

        try:
            done, _ = await asyncio.wait(sources, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in sources:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*sources, return_exceptions=True)

        for task in done:
            task.result()

        fired = {sources[task] for task in done}
        trigger = next(candidate for candidate in _PRIORITY if candidate in fired)
        logger.info(_MESSAGES[trigger])
        return WaitOutcome(trigger, process.returncode if process is not None else None)


__all__ = ["WaitController", "WaitOutcome"]
