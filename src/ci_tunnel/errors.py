"""Error taxonomy for ci-tunnel."""

from __future__ import annotations


class TunnelError(RuntimeError):
    """Base class for all ci-tunnel errors."""


class ConfigError(TunnelError):
    """Raised when a required input or CI environment value is missing or invalid."""


class RemoteAPIError(TunnelError):
    """Raised when the control plane (or the binary acting for it) rejects a request."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProcessLaunchError(TunnelError):
    """Raised when the connector process cannot be started."""


class ConnectorNotFoundError(ProcessLaunchError):
    """Raised when the connector executable cannot be located."""


class PersistenceError(TunnelError):
    """Raised when an idempotency marker cannot be written."""


__all__ = [
    "TunnelError",
    "ConfigError",
    "RemoteAPIError",
    "ProcessLaunchError",
    "ConnectorNotFoundError",
    "PersistenceError",
]
