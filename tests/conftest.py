from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable

import pytest

from ci_tunnel.config import TunnelSettings

_CI_PREFIXES = ("INPUT_", "GITHUB_", "CI_TUNNEL_", "BORDER0_")


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep the host CI environment (and any .env or ./border0) out of the tests."""

    for key in list(os.environ):
        if key.startswith(_CI_PREFIXES):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., TunnelSettings]:
    def factory(**overrides: Any) -> TunnelSettings:
        values: dict[str, Any] = {
            "token": "secret-token",
            "repository": "acme/widgets",
            "run_id": "42",
            "run_attempt": "1",
            "workflow": "CI",
            "actor": "octocat",
            "action_path": tmp_path / "markers",
        }
        values.update(overrides)
        return TunnelSettings(**values)

    return factory
