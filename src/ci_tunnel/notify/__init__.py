"""Console and chat notifications."""

from .summary import SessionInfo, build_slack_blocks, build_summary, extract_org_name, publish

__all__ = [
    "SessionInfo",
    "build_slack_blocks",
    "build_summary",
    "extract_org_name",
    "publish",
]
