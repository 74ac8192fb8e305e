"""Jira API client acting as the remote worklog ledger."""

import logging
from datetime import datetime
from typing import Any

import httpx

from worklog_reconciler.errors import RemoteError
from worklog_reconciler.jira.models import JiraIssue, JiraWorklog, JiraWorklogCreate

logger = logging.getLogger(__name__)


def _remote_error(action: str, error: httpx.HTTPError) -> RemoteError:
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        body = error.response.text[:200]
        return RemoteError(
            f"{action} failed with status {status}: {body}",
            status_code=status,
            not_found=status == 404,
        )
    return RemoteError(f"{action} failed: {error}")


class JiraClient:
    """Client for the Jira worklog API."""

    API_PATH = "/rest/api/2"

    def __init__(
        self,
        base_url: str,
        username: str,
        api_token: str,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize Jira client.

        Args:
            base_url: Jira site URL (e.g., 'https://mycompany.atlassian.net').
            username: Account email used for basic auth.
            api_token: Jira API token.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, mainly for tests.

        Raises:
            ValueError: If credentials are missing.
        """
        if not base_url or not username or not api_token:
            raise ValueError("Jira base URL, username and API token are required")

        self.client = httpx.Client(
            base_url=base_url.rstrip("/") + self.API_PATH,
            auth=(username, api_token),
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def create_worklog(
        self,
        issue_key: str,
        duration_seconds: int,
        started_at: datetime,
        comment: str,
    ) -> str:
        """Create a worklog on an issue.

        Args:
            issue_key: Issue key.
            duration_seconds: Logged time.
            started_at: Start of the logged interval.
            comment: Worklog comment.

        Returns:
            Remote worklog id.

        Raises:
            RemoteError: If the request fails or the issue does not exist.
        """
        payload = JiraWorklogCreate(
            time_spent_seconds=duration_seconds,
            started=started_at,
            comment=comment,
        )
        try:
            response = self.client.post(
                f"/issue/{issue_key}/worklog",
                json=payload.to_api_dict(),
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise _remote_error(f"Creating worklog on {issue_key}", e) from e

        worklog = JiraWorklog(**response.json())
        logger.debug(f"Created Jira worklog {worklog.id} on {issue_key}")
        return worklog.id

    def delete_worklog(self, issue_key: str, remote_id: str) -> None:
        """Delete a worklog.

        Args:
            issue_key: Issue key the worklog belongs to.
            remote_id: Remote worklog id.

        Raises:
            RemoteError: If the request fails or the worklog does not exist.
        """
        try:
            response = self.client.delete(f"/issue/{issue_key}/worklog/{remote_id}")
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise _remote_error(f"Deleting worklog {remote_id} on {issue_key}", e) from e
        logger.debug(f"Deleted Jira worklog {remote_id} on {issue_key}")

    def search_issues(self, jql: str, max_results: int = 100) -> list[JiraIssue]:
        """Search issues with JQL, following pagination.

        Args:
            jql: JQL query.
            max_results: Page size.

        Returns:
            Matching issues.

        Raises:
            RemoteError: If a request fails.
        """
        issues: list[JiraIssue] = []
        start_at = 0
        while True:
            params: dict[str, Any] = {
                "jql": jql,
                "fields": "summary",
                "startAt": start_at,
                "maxResults": max_results,
            }
            try:
                response = self.client.get("/search", params=params)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise _remote_error("Searching issues", e) from e

            data = response.json()
            page = [JiraIssue(**item) for item in data.get("issues", [])]
            issues.extend(page)
            start_at += len(page)
            if not page or start_at >= data.get("total", 0):
                return issues

    def myself(self) -> dict[str, Any]:
        """Get the authenticated user, mainly to verify credentials.

        Raises:
            RemoteError: If the request fails.
        """
        try:
            response = self.client.get("/myself")
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise _remote_error("Fetching current user", e) from e
        return response.json()

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> "JiraClient":
        """Context manager entry."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.close()
