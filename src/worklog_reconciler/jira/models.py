"""Pydantic models for Jira API payloads."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from worklog_reconciler.ledger.models import Issue

JIRA_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S.000%z"


class JiraWorklog(BaseModel):
    """Jira worklog model."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    issue_id: str | None = Field(default=None, alias="issueId")
    time_spent_seconds: int = Field(alias="timeSpentSeconds")
    started: str | None = None
    comment: Any = None


class JiraWorklogCreate(BaseModel):
    """Payload for creating a worklog."""

    model_config = ConfigDict(populate_by_name=True)

    time_spent_seconds: int = Field(alias="timeSpentSeconds")
    started: datetime
    comment: str = ""

    def to_api_dict(self) -> dict[str, Any]:
        """Convert to API-compatible dictionary.

        Returns:
            Dictionary for API submission.
        """
        return {
            "timeSpentSeconds": self.time_spent_seconds,
            "started": self.started.strftime(JIRA_DATETIME_FORMAT),
            "comment": self.comment,
        }


class JiraIssue(BaseModel):
    """Jira issue model, reduced to the fields linking needs."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    key: str
    fields: dict[str, Any] = Field(default_factory=dict)

    @property
    def summary(self) -> str:
        return self.fields.get("summary") or ""

    def to_issue(self) -> Issue:
        return Issue(key=self.key, summary=self.summary)
