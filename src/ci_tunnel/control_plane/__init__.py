"""Control-plane API access."""

from .client import ControlPlaneClient, ci_tags
from .models import SocketRecord

__all__ = [
    "ControlPlaneClient",
    "SocketRecord",
    "ci_tags",
]
