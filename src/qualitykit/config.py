"""
Runtime configuration.

Settings are explicit pydantic objects handed to the engine and channels.
Each one can be built from environment variables with ``from_env()``;
anything not set falls back to the field default.
"""

import logging
import os
from typing import Optional

from pydantic import Field, SecretStr, field_validator

from qualitykit.models import BaseQualityModel, TriggerMode

logger = logging.getLogger(__name__)

ENV_PREFIX = "QUALITYKIT_"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid {name}='{value}', defaulting to {default}")
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid {name}='{value}', defaulting to {default}")
        return default


class MonitoringConfig(BaseQualityModel):
    """
    Engine settings.

    Attributes:
        evaluation_workers: Size of the evaluation worker pool
        evaluation_timeout_seconds: Ceiling for one evaluation
        heartbeat_seconds: Interval of the background tick when the engine is started
        default_alert_window_minutes: Trailing window for new alert rules loaded from manifests
        default_trigger_mode: Repeat behaviour for new alert rules loaded from manifests
    """
    evaluation_workers: int = Field(4, ge=1)
    evaluation_timeout_seconds: float = Field(300.0, gt=0)
    heartbeat_seconds: int = Field(30, ge=1)
    default_alert_window_minutes: int = Field(65, ge=1)
    default_trigger_mode: TriggerMode = Field(TriggerMode.LEVEL)

    @field_validator("default_trigger_mode", mode="before")
    @classmethod
    def convert_trigger_mode(cls, v):
        return v.upper() if isinstance(v, str) else v

    @classmethod
    def from_env(cls) -> "MonitoringConfig":
        """
        Build the config from QUALITYKIT_* environment variables.

        Variables:
            QUALITYKIT_EVALUATION_WORKERS, QUALITYKIT_EVALUATION_TIMEOUT_SECONDS,
            QUALITYKIT_HEARTBEAT_SECONDS, QUALITYKIT_ALERT_WINDOW_MINUTES,
            QUALITYKIT_TRIGGER_MODE
        """
        return cls(
            evaluation_workers=_env_int(f"{ENV_PREFIX}EVALUATION_WORKERS", 4),
            evaluation_timeout_seconds=_env_float(f"{ENV_PREFIX}EVALUATION_TIMEOUT_SECONDS", 300.0),
            heartbeat_seconds=_env_int(f"{ENV_PREFIX}HEARTBEAT_SECONDS", 30),
            default_alert_window_minutes=_env_int(f"{ENV_PREFIX}ALERT_WINDOW_MINUTES", 65),
            default_trigger_mode=os.getenv(f"{ENV_PREFIX}TRIGGER_MODE", "LEVEL"),
        )


class JiraSettings(BaseQualityModel):
    """Connection settings for the JIRA ticket channel."""
    base_url: str = Field("https://your-company.atlassian.net")
    project_key: str = Field("DQ", min_length=1, description="Data Quality project")
    user_email: str = Field("data-quality@example.com")
    api_token: SecretStr = Field(SecretStr(""))
    demo_mode: bool = Field(True, description="Simulate ticket creation without network I/O")
    timeout_seconds: float = Field(30.0, gt=0)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def issue_endpoint(self) -> str:
        return f"{self.base_url}/rest/api/3/issue"

    @classmethod
    def from_env(cls) -> "JiraSettings":
        """Build settings from JIRA_BASE_URL, JIRA_PROJECT_KEY, JIRA_USER_EMAIL, JIRA_API_TOKEN, JIRA_DEMO_MODE."""
        defaults = cls()
        return cls(
            base_url=os.getenv("JIRA_BASE_URL", defaults.base_url),
            project_key=os.getenv("JIRA_PROJECT_KEY", defaults.project_key),
            user_email=os.getenv("JIRA_USER_EMAIL", defaults.user_email),
            api_token=SecretStr(os.getenv("JIRA_API_TOKEN", "")),
            demo_mode=_env_bool("JIRA_DEMO_MODE", defaults.demo_mode),
        )


class SmtpSettings(BaseQualityModel):
    """Connection settings for the email channel."""
    host: str = Field("localhost")
    port: int = Field(587, ge=1, le=65535)
    sender: str = Field("data-quality@example.com")
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    use_starttls: bool = True
    timeout_seconds: float = Field(15.0, gt=0)

    @classmethod
    def from_env(cls) -> "SmtpSettings":
        """Build settings from SMTP_HOST, SMTP_PORT, SMTP_SENDER, SMTP_USERNAME, SMTP_PASSWORD, SMTP_STARTTLS."""
        password = os.getenv("SMTP_PASSWORD")
        return cls(
            host=os.getenv("SMTP_HOST", "localhost"),
            port=_env_int("SMTP_PORT", 587),
            sender=os.getenv("SMTP_SENDER", "data-quality@example.com"),
            username=os.getenv("SMTP_USERNAME"),
            password=SecretStr(password) if password else None,
            use_starttls=_env_bool("SMTP_STARTTLS", True),
        )
