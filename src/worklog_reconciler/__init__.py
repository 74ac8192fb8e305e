"""Worklog lifecycle and reconciliation engine for Jira time tracking."""

__version__ = "0.1.0"
