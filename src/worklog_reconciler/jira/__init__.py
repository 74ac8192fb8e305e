"""Jira API integration."""

from worklog_reconciler.jira.client import JiraClient
from worklog_reconciler.jira.models import JiraIssue, JiraWorklog, JiraWorklogCreate

__all__ = [
    "JiraClient",
    "JiraIssue",
    "JiraWorklog",
    "JiraWorklogCreate",
]
