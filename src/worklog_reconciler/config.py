"""Configuration management for worklog reconciler."""

from datetime import time
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from worklog_reconciler.utils.storage import StorageManager

DEFAULT_ISSUE_KEY_PATTERN = r"\b([A-Za-z][A-Za-z0-9]+-\d+)\b"
DEFAULT_ISSUE_QUERY = "assignee = currentUser() AND resolution = Unresolved ORDER BY key"


class JiraConfig(BaseModel):
    """Remote ledger connection settings. The API token lives in tokens.json."""

    base_url: str = ""
    username: str = ""
    timeout: float = 30.0
    issue_query: str = DEFAULT_ISSUE_QUERY

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.username)


class ReconcilerConfig(BaseModel):
    """Push and revert behaviour."""

    daily_hours_limit: float | None = Field(default=None, gt=0)
    treat_missing_as_deleted: bool = False


class LinkerConfig(BaseModel):
    """Meeting to issue matching."""

    model_config = ConfigDict(frozen=True)

    issue_key_patterns: tuple[str, ...] = (DEFAULT_ISSUE_KEY_PATTERN,)
    fuzzy_threshold: float = Field(default=0.8, ge=0.0, le=1.0)


class GapFillConfig(BaseModel):
    """Working-day window used to find uncovered time."""

    model_config = ConfigDict(frozen=True)

    work_start: time = time(9, 0)
    work_end: time = time(17, 0)
    timezone: str = "UTC"
    granularity_minutes: int = Field(default=15, gt=0)
    daily_hours_limit: float | None = Field(default=8.0, gt=0)
    skip_weekends: bool = True
    sprint_days: int = Field(default=14, gt=0)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value

    @field_validator("work_end")
    @classmethod
    def _end_after_start(cls, value: time, info: ValidationInfo) -> time:
        start = info.data.get("work_start")
        if start is not None and value <= start:
            raise ValueError("work_end must be after work_start")
        return value

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class RecoveryConfig(BaseModel):
    """Grouping of recovered history batches."""

    model_config = ConfigDict(frozen=True)

    window_minutes: int = Field(default=10, gt=0)


class AppConfig(BaseModel):
    """Complete application configuration as stored in config.yaml."""

    jira: JiraConfig = Field(default_factory=JiraConfig)
    worklog: ReconcilerConfig = Field(default_factory=ReconcilerConfig)
    linker: LinkerConfig = Field(default_factory=LinkerConfig)
    gaps: GapFillConfig = Field(default_factory=GapFillConfig)
    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)


class Config:
    """Manages application configuration."""

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize configuration.

        Args:
            config_dir: Directory for storing configuration.

        Raises:
            pydantic.ValidationError: If config.yaml holds invalid values.
        """
        self.storage = StorageManager(config_dir)
        self.app = AppConfig.model_validate(self.storage.load_config())

    @property
    def jira(self) -> JiraConfig:
        return self.app.jira

    @property
    def worklog(self) -> ReconcilerConfig:
        return self.app.worklog

    @property
    def linker(self) -> LinkerConfig:
        return self.app.linker

    @property
    def gaps(self) -> GapFillConfig:
        return self.app.gaps

    @property
    def recovery(self) -> RecoveryConfig:
        return self.app.recovery

    def update_section(self, section: str, values: dict[str, Any]) -> None:
        """Update one configuration section and save it.

        Args:
            section: Section name (e.g., "jira", "gaps").
            values: Values to merge into the section.

        Raises:
            KeyError: If the section does not exist.
        """
        if section not in AppConfig.model_fields:
            raise KeyError(f"Unknown configuration section: {section}")

        data = self.app.model_dump(mode="json")
        data[section] = {**data[section], **values}
        self.app = AppConfig.model_validate(data)
        self.storage.save_config(self.app.model_dump(mode="json"))

    def get_api_token(self) -> str | None:
        """Get the Jira API token."""
        return self.storage.get_token("jira")
