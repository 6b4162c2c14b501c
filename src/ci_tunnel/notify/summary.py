"""Human-facing notifications once the socket is up."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DNS_SUFFIX = ".border0.io"
CLIENT_URL = "https://client.border0.com/#/ssh"


@dataclass(slots=True)
class SessionInfo:
    """Everything the notification sinks render."""

    job_status: str
    workflow_name: str
    workflow_run_url: str
    actor_name: str
    dns_name: str
    org_name: str
    ssh_username: str

    @property
    def login_url(self) -> str:
        return f"{CLIENT_URL}/{self.dns_name}?org={self.org_name}"


def extract_org_name(dns_name: str, session_name: str, suffix: str = DNS_SUFFIX) -> str:
    """Return the organisation part of ``<session>.<org><suffix>``."""

    remainder = dns_name[len(session_name) + 1 :]
    if suffix and remainder.endswith(suffix):
        remainder = remainder[: -len(suffix)]
    return remainder


def build_summary(info: SessionInfo) -> str:
    return (
        f"\n  GitHub Workflow Run {info.job_status}: {info.workflow_name} ({info.workflow_run_url})\n\n"
        f"Hey, {info.actor_name}. Your github workflow is running Border0 Socket. "
        "You can click the link below to log in and troubleshoot:\n"
        f"{info.login_url}\n\n"
        "Alternatively, use the following command to ssh into this GitHub VM:\n"
        f"$> border0 client ssh {info.ssh_username}@{info.dns_name}\n"
    )


def _section(text: str) -> dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def build_slack_blocks(info: SessionInfo) -> list[dict[str, Any]]:
    return [
        _section(f"Border0 for GitHub Workflow Run <{info.workflow_run_url}|{info.workflow_name}>"),
        _section(
            f"Hey, {info.actor_name}. Your github workflow is running Border0 Socket. "
            "You can click the link below to log in and troubleshoot:"
        ),
        _section(info.login_url),
    ]


async def send_slack_message(
    webhook_url: str,
    blocks: list[dict[str, Any]],
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Post blocks to a Slack incoming webhook. Failures are logged, never raised."""

    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(15.0), transport=transport) as client:
            response = await client.post(webhook_url, json={"blocks": blocks})
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("Failed to send message to Slack: %s", exc)
        return False
    logger.info("Message sent to Slack successfully.")
    return True


async def publish(
    info: SessionInfo,
    webhook_url: str | None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    print(build_summary(info), flush=True)
    if not webhook_url:
        logger.info("Slack webhook URL not provided. Skipping Slack notification...")
        return
    await send_slack_message(webhook_url, build_slack_blocks(info), transport=transport)


__all__ = [
    "SessionInfo",
    "build_slack_blocks",
    "build_summary",
    "extract_org_name",
    "publish",
    "send_slack_message",
]
