"""Border0 connector binary orchestration."""

from .launcher import ConnectorLauncher
from .liveness import LivenessPoller, is_running
from .process import ConnectorMode, ConnectorProcess
from .runner import ConnectorExecutionResult, ConnectorRunner

__all__ = [
    "ConnectorExecutionResult",
    "ConnectorLauncher",
    "ConnectorMode",
    "ConnectorProcess",
    "ConnectorRunner",
    "LivenessPoller",
    "is_running",
]
