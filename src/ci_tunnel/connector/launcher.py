"""Start the connector unless one is already running."""

from __future__ import annotations

import logging

from .liveness import LivenessPoller
from .process import ConnectorMode, ConnectorProcess
from .runner import ConnectorRunner

logger = logging.getLogger(__name__)


class ConnectorLauncher:
    """Launch ``socket connect`` once, in attached or detached mode."""

    def __init__(self, runner: ConnectorRunner, poller: LivenessPoller) -> None:
        self._runner = runner
        self._poller = poller

    @property
    def signature(self) -> str:
        return self._runner.connect_signature

    async def launch(
        self,
        session_name: str,
        mode: ConnectorMode,
        *,
        upstream_username: str,
    ) -> ConnectorProcess | None:
        """Start the connector, or return None when one is already running.

        ProcessLaunchError from the runner propagates: a connector that cannot
        be started at all is fatal.
        """

        if self._poller.check(self.signature):
            logger.info(
                "Connector already running, monitoring only",
                extra={"session": session_name, "signature": self.signature},
            )
            return None

        process = await self._runner.connect_session(session_name, upstream_username=upstream_username, mode=mode)
        logger.info(
            "Started connector",
            extra={"session": session_name, "pid": process.pid, "mode": mode.value},
        )
        return process


__all__ = ["ConnectorLauncher"]
