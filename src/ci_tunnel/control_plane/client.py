"""HTTP client for the Border0 control-plane API."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..errors import RemoteAPIError
from .models import SocketRecord

logger = logging.getLogger(__name__)


class ControlPlaneClient:
    """Fetch and update named sockets."""

    def __init__(
        self,
        token: str,
        *,
        base_url: str = "https://api.border0.com/api/v1",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "accept": "application/json",
            "x-access-token": token,
        }
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=httpx.Timeout(self._timeout),
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, *, json: Any | None = None) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            raise RemoteAPIError(f"{method} {path} failed: {exc}") from exc
        if not response.is_success:
            raise RemoteAPIError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    async def fetch_socket(self, name: str) -> SocketRecord:
        response = await self._request("GET", f"/socket/{name}")
        try:
            return SocketRecord.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise RemoteAPIError(f"Unexpected socket payload for {name}: {exc}") from exc

    async def update_socket(self, record: SocketRecord) -> None:
        await self._request("PUT", f"/socket/{record.name}", json=record.model_dump(mode="json"))

    async def tag_socket(self, record: SocketRecord, tags: dict[str, Any]) -> SocketRecord:
        """Merge ``tags`` over the record's existing tags and store the result."""

        updated = record.with_tags(tags)
        await self.update_socket(updated)
        logger.info("Updated socket tags", extra={"socket": record.name, "tags": sorted(tags)})
        return updated


def ci_tags(*, repository: str, workflow: str, run_id: str) -> dict[str, str]:
    """Tags that make the socket recognisable as a CI session in the Border0 portal."""

    return {
        "border0_client_category": "GitHub Actions",
        "border0_client_subcategory": repository,
        "border0_client_icon": "devicon-plain:githubactions",
        "provider_type": "azure",
        "border0_client_icon_text": f"{workflow} action #{run_id}",
    }


__all__ = ["ControlPlaneClient", "ci_tags"]
