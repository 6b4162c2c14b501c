"""Async runner for the Border0 connector binary."""

from __future__ import annotations

import asyncio
import json
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from ..errors import ConnectorNotFoundError, ProcessLaunchError
from .process import ConnectorMode, ConnectorProcess, ProcessHandle
from .utils import connector_environment

BINARY_NAME = "border0"


@dataclass(slots=True)
class ConnectorExecutionResult:
    """Holds the outcome of a one-shot connector subcommand."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def error_text(self) -> str:
        return self.stderr.strip() or self.stdout.strip() or f"exit code {self.returncode}"


class ConnectorRunner:
    """Execute connector subcommands (socket create, connect, delete)."""

    def __init__(self, executable: Path | None = None, *, token: str | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._token = token

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise ConnectorNotFoundError(f"Connector executable not found at {candidate}")

        local = Path.cwd() / BINARY_NAME
        if local.is_file():
            return local

        binary = shutil.which(BINARY_NAME)
        if binary is None:
            raise ConnectorNotFoundError("Connector executable not found in working directory or on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    @property
    def connect_signature(self) -> str:
        """Command-line fragment identifying a running connect process."""

        return f"{self._executable_path.name} socket connect"

    async def create_session(self, name: str, *, upstream_username: str) -> ConnectorExecutionResult:
        return await self._invoke(
            "socket", "create", "--type", "ssh", "--name", name, "--upstream_username", upstream_username
        )

    async def delete_session(self, name: str) -> ConnectorExecutionResult:
        return await self._invoke("socket", "delete", name)

    async def connect_session(
        self,
        name: str,
        *,
        upstream_username: str,
        mode: ConnectorMode = ConnectorMode.FOREGROUND,
    ) -> ConnectorProcess:
        args = ("socket", "connect", name, "--sshserver", "--upstream_username", upstream_username)
        handle = await self._spawn(*args, detached=mode is ConnectorMode.BACKGROUND)
        return ConnectorProcess(handle, mode=mode, args=(str(self._executable_path), *args))

    async def _invoke(self, *args: str) -> ConnectorExecutionResult:
        cmd = [str(self._executable_path), *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=connector_environment(self._token),
            )
        except OSError as exc:
            raise ProcessLaunchError(f"Unable to run {cmd[0]}: {exc}") from exc
        stdout_bytes, stderr_bytes = await process.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return ConnectorExecutionResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)

    async def _spawn(self, *args: str, detached: bool) -> ProcessHandle:
        cmd = [str(self._executable_path), *args]
        try:
            return await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                env=connector_environment(self._token),
                start_new_session=detached,
            )
        except OSError as exc:
            raise ProcessLaunchError(f"Unable to start connector {cmd[0]}: {exc}") from exc


class FakeConnectorHandle:
    """Process handle whose exit is driven by the test."""

    def __init__(self, pid: int = 4242) -> None:
        self.pid = pid
        self.returncode: int | None = None
        self.terminated = False
        self.detached = False
        self._exited = asyncio.Event()

    def exit(self, code: int = 0) -> None:
        if self.returncode is None:
            self.returncode = code
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self.exit(-15)


class FakeConnectorRunner(ConnectorRunner):
    """Test double that simulates connector subcommands without starting processes."""

    def __init__(  # type: ignore[override]
        self,
        responses: Iterable[ConnectorExecutionResult] | None = None,
        *,
        delete_error: BaseException | None = None,
    ) -> None:
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []
        self._spawned: list[FakeConnectorHandle] = []
        self._delete_error = delete_error
        self._executable_path = Path("/tmp/fake-border0/border0")
        self._token = None

    async def _invoke(self, *args: str) -> ConnectorExecutionResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        if self._delete_error is not None and args[:2] == ("socket", "delete"):
            raise self._delete_error
        if self._responses:
            return self._responses.pop(0)
        return ConnectorExecutionResult(args=tuple(args), returncode=0, stdout="", stderr="")

    async def _spawn(self, *args: str, detached: bool) -> FakeConnectorHandle:  # type: ignore[override]
        self._invocations.append(tuple(args))
        handle = FakeConnectorHandle(pid=4242 + len(self._spawned))
        handle.detached = detached
        self._spawned.append(handle)
        return handle

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations

    @property
    def spawned(self) -> list[FakeConnectorHandle]:
        return self._spawned

    def calls(self, subcommand: str) -> list[tuple[str, ...]]:
        return [args for args in self._invocations if args[:2] == ("socket", subcommand)]


def serialize_result(result: ConnectorExecutionResult) -> str:
    """Serialize a command result for structured log output."""

    return json.dumps(
        {
            "args": list(result.args),
            "returncode": result.returncode,
            "stdout": result.stdout,
            "stderr": result.stderr,
        }
    )
