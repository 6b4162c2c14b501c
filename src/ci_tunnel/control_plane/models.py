"""Control-plane payload models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SocketRecord(BaseModel):
    """A Border0 socket as returned by ``GET /socket/{name}``.

    Unknown fields are preserved so an update can send the record back whole.
    """

    model_config = ConfigDict(extra="allow")

    name: str = Field(..., description="Socket name, equal to the session name.")
    dnsname: str = Field(default="", description="Public DNS name assigned to the socket.")
    tags: dict[str, str] = Field(default_factory=dict, description="Free-form socket tags.")

    def with_tags(self, tags: dict[str, Any]) -> "SocketRecord":
        merged = {**self.tags, **{key: str(value) for key, value in tags.items()}}
        return self.model_copy(update={"tags": merged})


__all__ = ["SocketRecord"]
