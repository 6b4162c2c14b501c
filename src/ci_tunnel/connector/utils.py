"""Environment helpers for connector subprocesses."""

from __future__ import annotations

import os
from typing import Mapping

TOKEN_VARIABLE = "BORDER0_ADMIN_TOKEN"

# Action inputs the connector never reads; keep secrets out of its environment.
_STRIPPED_VARS = {
    "INPUT_TOKEN",
    "INPUT_SLACK-WEBHOOK-URL",
    "INPUT_SLACK_WEBHOOK_URL",
}


def connector_environment(
    token: str | None = None,
    additional: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return the environment a connector subcommand runs with."""

    env = dict(os.environ)
    for key in _STRIPPED_VARS:
        env.pop(key, None)
    if token:
        env[TOKEN_VARIABLE] = token
    if additional:
        env.update(additional)
    return env
