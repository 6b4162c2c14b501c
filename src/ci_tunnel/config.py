"""Configuration management for ci-tunnel."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

PLACEHOLDER_IDENTITY = "GitHubRunner"
DEFAULT_API_URL = "https://api.border0.com/api/v1"


def _input(name: str, *extra: str) -> AliasChoices:
    """Accept a GitHub Actions input in both its hyphenated and underscored form."""

    upper = name.upper()
    return AliasChoices(f"INPUT_{upper}", f"INPUT_{upper.replace('-', '_')}", *extra)


class TunnelSettings(BaseSettings):
    """Runtime configuration sourced from action inputs, CI environment and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    token: str | None = Field(default=None, validation_alias=_input("token", "BORDER0_ADMIN_TOKEN"))
    slack_webhook_url: str | None = Field(default=None, validation_alias=_input("slack-webhook-url"))
    background_mode: bool = Field(default=False, validation_alias=_input("background-mode"))
    clean_up_mode: bool = Field(default=False, validation_alias=_input("clean-up-mode"))
    wait_for: int = Field(default=0, validation_alias=_input("wait-for"))

    repository: str | None = Field(default=None, validation_alias="GITHUB_REPOSITORY")
    run_id: str | None = Field(default=None, validation_alias="GITHUB_RUN_ID")
    run_attempt: str = Field(default="1", validation_alias="GITHUB_RUN_ATTEMPT")
    action_path: Path = Field(default=Path("/tmp"), validation_alias="GITHUB_ACTION_PATH")
    workflow: str | None = Field(default=None, validation_alias="GITHUB_WORKFLOW")
    actor: str | None = Field(default=None, validation_alias="GITHUB_ACTOR")
    server_url: str = Field(default="https://github.com", validation_alias="GITHUB_SERVER_URL")
    job_status: str = Field(default="Success", validation_alias="GITHUB_JOB_STATUS")

    api_base_url: str = Field(default=DEFAULT_API_URL, validation_alias="CI_TUNNEL_API_URL")
    connector_path: Path | None = Field(default=None, validation_alias="CI_TUNNEL_CONNECTOR_PATH")
    liveness_interval: float = Field(default=10.0, validation_alias="CI_TUNNEL_LIVENESS_INTERVAL")
    local_mode: bool = Field(default=False, validation_alias="CI_TUNNEL_LOCAL_MODE")
    log_level: str = Field(default="INFO", validation_alias="CI_TUNNEL_LOG_LEVEL")

    @field_validator(
        "token",
        "slack_webhook_url",
        "repository",
        "run_id",
        "workflow",
        "actor",
        "connector_path",
        mode="before",
    )
    @classmethod
    def _blank_as_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("background_mode", "clean_up_mode", "local_mode", mode="before")
    @classmethod
    def _blank_as_false(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return False
        return value

    @field_validator("wait_for", mode="before")
    @classmethod
    def _blank_as_zero(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return 0
        return value

    @field_validator("run_attempt", mode="before")
    @classmethod
    def _default_attempt(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "1"
        return str(value)

    @field_validator("action_path", mode="before")
    @classmethod
    def _default_action_path(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return Path("/tmp")
        return value

    @field_validator("wait_for")
    @classmethod
    def _validate_wait_for(cls, value: int) -> int:
        if value < 0:
            raise ValueError("INPUT_WAIT-FOR must be >= 0 minutes")
        return value

    @field_validator("liveness_interval")
    @classmethod
    def _validate_liveness_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("CI_TUNNEL_LIVENESS_INTERVAL must be > 0 seconds")
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "CI_TUNNEL_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @property
    def session_name(self) -> str:
        """Deterministic socket name, unique per repository, run and run attempt."""

        if not self.repository or not self.run_id:
            raise ConfigError("GITHUB_REPOSITORY and GITHUB_RUN_ID are required to name the session")
        return f"{self.repository.replace('/', '-')}-{self.run_id}-{self.run_attempt}"

    @property
    def wait_budget(self) -> float:
        """Foreground wait budget in seconds; 0 means unbounded."""

        return float(self.wait_for * 60)

    @property
    def workflow_name(self) -> str:
        return self.workflow or PLACEHOLDER_IDENTITY

    @property
    def actor_name(self) -> str:
        return self.actor or PLACEHOLDER_IDENTITY

    @property
    def run_url(self) -> str:
        return f"{self.server_url.rstrip('/')}/{self.repository}/actions/runs/{self.run_id}"

    def require_identity(self) -> None:
        """Raise ConfigError naming every required value that is absent."""

        missing: list[str] = []
        if not self.token:
            missing.append("INPUT_TOKEN")
        if not self.repository:
            missing.append("GITHUB_REPOSITORY")
        if not self.run_id:
            missing.append("GITHUB_RUN_ID")
        if not self.local_mode:
            if not self.workflow:
                missing.append("GITHUB_WORKFLOW")
            if not self.actor:
                missing.append("GITHUB_ACTOR")
        if missing:
            raise ConfigError("Missing required configuration: " + ", ".join(missing))


def load_settings(**overrides: Any) -> TunnelSettings:
    """Build settings, converting validation failures into ConfigError."""

    try:
        return TunnelSettings(**overrides)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


__all__ = ["TunnelSettings", "load_settings", "PLACEHOLDER_IDENTITY"]
