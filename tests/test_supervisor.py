from __future__ import annotations

import asyncio
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from ci_tunnel.connector import LivenessPoller
from ci_tunnel.connector.runner import ConnectorExecutionResult, FakeConnectorHandle, FakeConnectorRunner
from ci_tunnel.control_plane import SocketRecord
from ci_tunnel.errors import RemoteAPIError
from ci_tunnel.notify import SessionInfo
from ci_tunnel.storage import FlagStore, SessionState
from ci_tunnel.supervisor import CleanupTrigger, SessionPhase, SessionSupervisor
from ci_tunnel.supervisor import signals

SESSION = "acme-widgets-42-1"


@pytest.fixture(autouse=True)
def exit_hooks(monkeypatch: pytest.MonkeyPatch) -> list:
    hooks: list = []
    monkeypatch.setattr(signals.atexit, "register", hooks.append)
    monkeypatch.setattr(signals.atexit, "unregister", lambda fn: hooks.remove(fn) if fn in hooks else None)
    return hooks


class StubControlPlane:
    def __init__(self, *, fail_fetch: bool = False, fail_tags: bool = False) -> None:
        self.fail_fetch = fail_fetch
        self.fail_tags = fail_tags
        self.fetched: list[str] = []
        self.tagged: list[dict[str, str]] = []

    async def fetch_socket(self, name: str) -> SocketRecord:
        self.fetched.append(name)
        if self.fail_fetch:
            raise RemoteAPIError("fetch failed", status_code=500)
        return SocketRecord(name=name, dnsname=f"{name}.myorg.border0.io")

    async def tag_socket(self, record: SocketRecord, tags: dict[str, str]) -> SocketRecord:
        self.tagged.append(tags)
        if self.fail_tags:
            raise RemoteAPIError("tags failed", status_code=403)
        return record.with_tags(tags)


class RecordingNotifier:
    def __init__(self) -> None:
        self.calls: list[tuple[SessionInfo, str | None]] = []

    async def __call__(self, info: SessionInfo, webhook_url: str | None) -> None:
        self.calls.append((info, webhook_url))


@dataclass
class Harness:
    supervisor: SessionSupervisor
    runner: FakeConnectorRunner
    control_plane: StubControlPlane
    notifier: RecordingNotifier
    state: SessionState
    probe_calls: list[str] = field(default_factory=list)


def build(
    make_settings,
    *,
    probe=None,
    wait_budget: float | None = None,
    responses: list[ConnectorExecutionResult] | None = None,
    control_plane: StubControlPlane | None = None,
    notifier: RecordingNotifier | None = None,
    runner: FakeConnectorRunner | None = None,
    **overrides: Any,
) -> Harness:
    settings = make_settings(**overrides)
    if runner is None:
        runner = FakeConnectorRunner(responses)
    state = SessionState(settings.session_name, FlagStore(settings.action_path))
    control_plane = control_plane or StubControlPlane()
    notifier = notifier or RecordingNotifier()
    probe_calls: list[str] = []

    def alive(pattern: str) -> bool:
        probe_calls.append(pattern)
        return any(handle.returncode is None for handle in runner.spawned)

    supervisor = SessionSupervisor(
        settings,
        state=state,
        runner=runner,
        control_plane=control_plane,  # type: ignore[arg-type]
        poller=LivenessPoller(probe or alive, interval=0.01),
        notifier=notifier,
        upstream_username="runner",
        wait_budget=wait_budget,
    )
    return Harness(supervisor, runner, control_plane, notifier, state, probe_calls)


async def _until_spawned(runner: FakeConnectorRunner) -> FakeConnectorHandle:
    while not runner.spawned:
        await asyncio.sleep(0.005)
    return runner.spawned[0]


def test_unbounded_foreground_waits_for_connector_exit(make_settings) -> None:
    h = build(make_settings, wait_for=0)

    async def scenario():
        task = asyncio.create_task(h.supervisor.run())
        handle = await _until_spawned(h.runner)
        await asyncio.sleep(0.05)
        still_waiting = not task.done()
        phase = h.supervisor.phase
        handle.exit(0)
        return await task, still_waiting, phase

    result, still_waiting, phase = asyncio.run(scenario())

    assert still_waiting
    assert phase is SessionPhase.FOREGROUND_WAITING
    assert result.exit_code == 0
    assert result.phase is SessionPhase.TERMINATED
    assert result.trigger is CleanupTrigger.CONNECTOR_EXIT
    assert result.cleaned_up
    assert len(h.runner.calls("create")) == 1
    assert len(h.runner.calls("connect")) == 1
    assert h.runner.calls("delete") == [("socket", "delete", SESSION)]
    assert h.state.created and h.state.cleaned_up
    assert h.control_plane.fetched == [SESSION]
    assert h.control_plane.tagged[0]["border0_client_icon_text"] == "CI action #42"
    info, webhook = h.notifier.calls[0]
    assert info.org_name == "myorg"
    assert info.dns_name == f"{SESSION}.myorg.border0.io"
    assert webhook is None
    assert not h.supervisor.bridge.armed
    assert not h.supervisor.bridge.exit_hook_armed


def test_deadline_cleans_up_and_stops_connector(make_settings, exit_hooks: list) -> None:
    h = build(make_settings, wait_for=5, wait_budget=0.05)

    result = asyncio.run(h.supervisor.run())

    assert result.trigger is CleanupTrigger.DEADLINE
    assert result.exit_code == 0
    assert len(h.runner.calls("delete")) == 1
    assert h.runner.spawned[0].terminated
    assert h.probe_calls
    assert exit_hooks == []


def test_connector_exit_before_deadline_is_reported(make_settings) -> None:
    h = build(make_settings, wait_for=5, wait_budget=2)

    async def scenario():
        task = asyncio.create_task(h.supervisor.run())
        handle = await _until_spawned(h.runner)
        handle.exit(1)
        return await task

    result = asyncio.run(scenario())

    assert result.trigger is CleanupTrigger.CONNECTOR_EXIT
    assert result.process is not None and result.process.returncode == 1
    assert len(h.runner.calls("delete")) == 1


def test_clean_up_mode_with_existing_marker_is_a_no_op(make_settings) -> None:
    h = build(make_settings, clean_up_mode=True)
    h.state.mark_cleaned_up()

    result = asyncio.run(h.supervisor.run())

    assert result.exit_code == 0
    assert result.phase is SessionPhase.TERMINATED
    assert result.trigger is CleanupTrigger.REQUESTED
    assert result.cleaned_up is False
    assert h.runner.invocations == []
    assert h.control_plane.fetched == []


def test_clean_up_mode_deletes_once(make_settings) -> None:
    h = build(make_settings, clean_up_mode=True)

    first = asyncio.run(h.supervisor.run())
    second = asyncio.run(build(make_settings, clean_up_mode=True).supervisor.run())

    assert first.cleaned_up is True
    assert second.cleaned_up is False
    assert len(h.runner.calls("delete")) == 1
    assert h.runner.calls("create") == []


def test_interrupt_mid_wait_cleans_up_once(make_settings) -> None:
    h = build(make_settings, wait_for=5, wait_budget=5)

    async def scenario():
        task = asyncio.create_task(h.supervisor.run())
        await _until_spawned(h.runner)
        await asyncio.sleep(0.02)
        h.supervisor.bridge.notify(signal.SIGINT)
        h.supervisor.bridge.notify(signal.SIGTERM)
        return await task

    result = asyncio.run(scenario())

    assert result.exit_code == 0
    assert result.trigger is CleanupTrigger.SIGNAL
    assert len(h.runner.calls("delete")) == 1
    assert h.runner.spawned[0].terminated
    assert h.state.cleaned_up


def test_creation_is_skipped_when_marker_exists(make_settings) -> None:
    h = build(make_settings)
    h.state.mark_created()

    record = asyncio.run(h.supervisor.create_if_needed())

    assert record is None
    assert h.runner.invocations == []
    assert h.control_plane.fetched == []
    assert h.notifier.calls == []


@pytest.mark.parametrize("wait_for", [0, 5])
def test_background_mode_returns_immediately_with_bridge_armed(make_settings, wait_for: int) -> None:
    h = build(make_settings, background_mode=True, wait_for=wait_for)

    async def scenario():
        result = await asyncio.wait_for(h.supervisor.run(), timeout=1)
        armed = h.supervisor.bridge.armed
        deletes_before_exit = len(h.runner.calls("delete"))
        h.runner.spawned[0].exit(1)
        for _ in range(100):
            if h.runner.calls("delete"):
                break
            await asyncio.sleep(0.01)
        h.supervisor.bridge.disarm()
        return result, armed, deletes_before_exit

    result, armed, deletes_before_exit = asyncio.run(scenario())

    assert result.exit_code == 0
    assert result.phase is SessionPhase.BACKGROUNDED
    assert result.trigger is None
    assert armed
    assert not h.supervisor.bridge.exit_hook_armed
    assert h.runner.spawned[0].detached is True
    assert deletes_before_exit == 0
    assert len(h.runner.calls("delete")) == 1
    assert h.supervisor.coordinator.trigger is CleanupTrigger.CONNECTOR_EXIT


def test_existing_connector_is_monitored_not_relaunched(make_settings) -> None:
    answers = iter([True, True, False])
    h = build(make_settings, probe=lambda _pattern: next(answers), wait_for=0)

    result = asyncio.run(h.supervisor.run())

    assert h.runner.spawned == []
    assert h.runner.calls("connect") == []
    assert result.trigger is CleanupTrigger.LIVENESS
    assert result.process is None
    assert len(h.runner.calls("delete")) == 1


def test_failed_creation_is_fatal(make_settings) -> None:
    h = build(
        make_settings,
        responses=[ConnectorExecutionResult(args=("socket", "create"), returncode=1, stdout="", stderr="quota exceeded")],
    )

    with pytest.raises(RemoteAPIError, match="quota exceeded"):
        asyncio.run(h.supervisor.run())

    assert h.runner.spawned == []
    assert not h.state.created
    assert not h.supervisor.bridge.armed


def test_failed_socket_lookup_is_fatal(make_settings) -> None:
    h = build(make_settings, control_plane=StubControlPlane(fail_fetch=True))

    with pytest.raises(RemoteAPIError):
        asyncio.run(h.supervisor.create_if_needed())

    assert h.state.created
    assert h.notifier.calls == []


def test_tag_failure_is_not_fatal(make_settings) -> None:
    h = build(make_settings, control_plane=StubControlPlane(fail_tags=True), slack_webhook_url="https://hooks.example")

    record = asyncio.run(h.supervisor.create_if_needed())

    assert record is not None
    assert h.supervisor.phase is SessionPhase.CREATED
    assert h.notifier.calls[0][1] == "https://hooks.example"


def test_unwritable_marker_directory_does_not_block_creation(make_settings, tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    h = build(make_settings, action_path=blocker / "markers")

    record = asyncio.run(h.supervisor.create_if_needed())

    assert record is not None
    assert not h.state.created
    assert len(h.notifier.calls) == 1


def test_signal_during_creation_skips_launch(make_settings) -> None:
    holder: dict[str, SessionSupervisor] = {}

    class InterruptingNotifier(RecordingNotifier):
        async def __call__(self, info: SessionInfo, webhook_url: str | None) -> None:
            await super().__call__(info, webhook_url)
            holder["supervisor"].bridge.notify(signal.SIGTERM)

    h = build(make_settings, notifier=InterruptingNotifier(), wait_for=0)
    holder["supervisor"] = h.supervisor

    result = asyncio.run(h.supervisor.run())

    assert result.trigger is CleanupTrigger.SIGNAL
    assert h.runner.spawned == []
    assert len(h.runner.calls("delete")) == 1
    assert h.state.cleaned_up


class SlowConnectorRunner(FakeConnectorRunner):
    """Fake whose socket exists only once ``socket create`` has returned."""

    def __init__(self, *, create_delay: float = 0.0, spawn_delay: float = 0.0) -> None:
        super().__init__()
        self.create_delay = create_delay
        self.spawn_delay = spawn_delay
        self.socket_exists = False

    async def _invoke(self, *args: str) -> ConnectorExecutionResult:  # type: ignore[override]
        if args[:2] == ("socket", "create"):
            await asyncio.sleep(self.create_delay)
            self.socket_exists = True
        elif args[:2] == ("socket", "delete"):
            self.socket_exists = False
        return await super()._invoke(*args)

    async def _spawn(self, *args: str, detached: bool) -> FakeConnectorHandle:  # type: ignore[override]
        await asyncio.sleep(self.spawn_delay)
        return await super()._spawn(*args, detached=detached)


def test_signal_while_socket_is_being_created_deletes_it_afterwards(make_settings) -> None:
    runner = SlowConnectorRunner(create_delay=0.1)
    h = build(make_settings, runner=runner, wait_for=0)

    async def scenario():
        task = asyncio.create_task(h.supervisor.run())
        await asyncio.sleep(0.02)
        h.supervisor.bridge.notify(signal.SIGTERM)
        return await task

    result = asyncio.run(scenario())

    assert result.trigger is CleanupTrigger.SIGNAL
    assert [args[1] for args in runner.invocations] == ["create", "delete"]
    assert runner.socket_exists is False
    assert runner.spawned == []
    assert h.state.created and h.state.cleaned_up
    assert not h.supervisor.bridge.armed


@pytest.mark.parametrize("background", [False, True])
def test_signal_while_connector_is_starting_stops_it(make_settings, background: bool) -> None:
    runner = SlowConnectorRunner(spawn_delay=0.1)
    h = build(make_settings, runner=runner, wait_for=0, background_mode=background)

    async def scenario():
        task = asyncio.create_task(h.supervisor.run())
        await asyncio.sleep(0.03)
        h.supervisor.bridge.notify(signal.SIGINT)
        return await task

    result = asyncio.run(scenario())

    assert result.trigger is CleanupTrigger.SIGNAL
    assert result.phase is SessionPhase.TERMINATED
    assert runner.socket_exists is False
    assert len(runner.calls("delete")) == 1
    assert len(runner.spawned) == 1
    assert runner.spawned[0].terminated
    assert runner.spawned[0].returncode is not None
    assert not h.supervisor.bridge.armed
