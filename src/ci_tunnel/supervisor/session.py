"""Session lifecycle supervisor: create once, connect, wait, clean up once."""

from __future__ import annotations

import asyncio
import getpass
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from ..config import TunnelSettings
from ..connector import ConnectorLauncher, ConnectorMode, ConnectorProcess, ConnectorRunner, LivenessPoller
from ..control_plane import ControlPlaneClient, SocketRecord, ci_tags
from ..errors import PersistenceError, RemoteAPIError
from ..notify import SessionInfo, extract_org_name, publish
from ..storage import FlagStore, SessionState
from .cleanup import CleanupCoordinator, CleanupTrigger
from .signals import SignalBridge
from .waiting import WaitController

logger = logging.getLogger(__name__)

Notifier = Callable[..., Awaitable[None]]


class SessionPhase(str, Enum):
    IDLE = "idle"
    CREATING = "creating"
    CREATED = "created"
    FOREGROUND_WAITING = "foreground_waiting"
    BACKGROUNDED = "backgrounded"
    CLEANING_UP = "cleaning_up"
    TERMINATED = "terminated"


@dataclass(slots=True)
class SupervisorResult:
    exit_code: int
    phase: SessionPhase
    trigger: CleanupTrigger | None = None
    cleaned_up: bool = False
    process: ConnectorProcess | None = None


class SessionSupervisor:
    """Drive one CI session through its lifecycle."""

    def __init__(
        self,
        settings: TunnelSettings,
        *,
        state: SessionState,
        runner: ConnectorRunner,
        control_plane: ControlPlaneClient,
        poller: LivenessPoller | None = None,
        notifier: Notifier | None = None,
        upstream_username: str | None = None,
        wait_budget: float | None = None,
    ) -> None:
        self._settings = settings
        self._state = state
        self._runner = runner
        self._control_plane = control_plane
        self._poller = poller or LivenessPoller(interval=settings.liveness_interval)
        self._notifier = notifier or publish
        self._username = upstream_username or getpass.getuser()
        self._wait_budget = settings.wait_budget if wait_budget is None else wait_budget
        self._launcher = ConnectorLauncher(runner, self._poller)
        self._waiter = WaitController(self._poller)
        self.coordinator = CleanupCoordinator(state, runner)
        self.bridge = SignalBridge(self.coordinator)
        self._phase = SessionPhase.IDLE

    @classmethod
    def from_settings(cls, settings: TunnelSettings) -> "SessionSupervisor":
        state = SessionState(settings.session_name, FlagStore(settings.action_path))
        runner = ConnectorRunner(settings.connector_path, token=settings.token)
        control_plane = ControlPlaneClient(settings.token or "", base_url=settings.api_base_url)
        return cls(settings, state=state, runner=runner, control_plane=control_plane)

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def mode(self) -> ConnectorMode:
        return ConnectorMode.BACKGROUND if self._settings.background_mode else ConnectorMode.FOREGROUND

    def _transition(self, phase: SessionPhase) -> None:
        logger.debug("Session phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase

    async def create_if_needed(self) -> SocketRecord | None:
        """Create, tag and announce the socket unless this run already did."""

        session = self._state.session_name
        if self._state.created:
            logger.info("Socket already created. Skipping creation...", extra={"session": session})
            self._transition(SessionPhase.CREATED)
            return None

        self._transition(SessionPhase.CREATING)
        result = await self._runner.create_session(session, upstream_username=self._username)
        if not result.ok:
            raise RemoteAPIError(f"Failed to create socket {session}: {result.error_text}")
        try:
            self._state.mark_created()
        except PersistenceError as exc:
            logger.error("Failed to write creation marker: %s", exc)

        record = await self._control_plane.fetch_socket(session)
        settings = self._settings
        try:
            record = await self._control_plane.tag_socket(
                record,
                ci_tags(
                    repository=settings.repository or "",
                    workflow=settings.workflow_name,
                    run_id=settings.run_id or "",
                ),
            )
        except RemoteAPIError as exc:
            logger.error("Failed to update tags: %s", exc)

        info = SessionInfo(
            job_status=settings.job_status,
            workflow_name=settings.workflow_name,
            workflow_run_url=settings.run_url,
            actor_name=settings.actor_name,
            dns_name=record.dnsname,
            org_name=extract_org_name(record.dnsname, session),
            ssh_username=self._username,
        )
        await self._notifier(info, settings.slack_webhook_url)
        self._transition(SessionPhase.CREATED)
        return record

    async def _finish(self, trigger: CleanupTrigger, process: ConnectorProcess | None) -> SupervisorResult:
        self._transition(SessionPhase.CLEANING_UP)
        await self.coordinator.cleanup(trigger)
        await self.bridge.drain()
        self._transition(SessionPhase.TERMINATED)
        return SupervisorResult(
            exit_code=0,
            phase=self._phase,
            trigger=trigger,
            cleaned_up=self.coordinator.performed,
            process=process,
        )

    async def run(self) -> SupervisorResult:
        if self._settings.clean_up_mode:
            logger.info("Running cleanup...")
            return await self._finish(CleanupTrigger.REQUESTED, None)

        self.bridge.arm(asyncio.get_running_loop())
        background = self.mode is ConnectorMode.BACKGROUND
        try:
            # Signals only set the event until the wait ends; in-flight remote
            # and process calls finish before cleanup runs.
            with self.bridge.waiting() as stop_event:
                await self.create_if_needed()
                if self.bridge.received is not None:
                    return await self._finish(CleanupTrigger.SIGNAL, None)

                process = await self._launcher.launch(
                    self._state.session_name, self.mode, upstream_username=self._username
                )
                self.coordinator.attach(process)
                if self.bridge.received is not None:
                    result = await self._finish(CleanupTrigger.SIGNAL, process)
                    if process is not None:
                        process.terminate()
                    return result

                if not background:
                    self.bridge.arm_exit_hook()
                    self._transition(SessionPhase.FOREGROUND_WAITING)
                    if self._wait_budget > 0:
                        logger.info("Waiting for %s minute(s) before proceeding...", self._settings.wait_for)
                    else:
                        logger.info("Starting Border0 in the foreground until the connector exits...")
                    outcome = await self._waiter.wait(
                        process,
                        budget=self._wait_budget,
                        stop_event=stop_event,
                        pattern=self._launcher.signature,
                    )

            if background:
                if process is not None:
                    self.bridge.watch_connector(process)
                self._transition(SessionPhase.BACKGROUNDED)
                return SupervisorResult(exit_code=0, phase=self._phase, process=process)

            result = await self._finish(outcome.trigger, process)
            self.bridge.release_exit_hook()
            return result
        finally:
            if not background or self._phase is SessionPhase.TERMINATED:
                self.bridge.disarm()


__all__ = ["SessionPhase", "SessionSupervisor", "SupervisorResult"]
