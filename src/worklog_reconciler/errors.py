"""Error taxonomy for worklog reconciliation.

None of these errors is fatal to the process. Operation-level errors are
raised before any mutation happens; per-entry failures are collected into
result objects instead of being raised.
"""


class WorklogError(Exception):
    """Base class for all worklog reconciliation errors."""


class ValidationError(WorklogError):
    """Malformed input, rejected before any persistence or remote call."""


class InvalidTransition(WorklogError):
    """Operation attempted on an entry or batch in an incompatible status."""


class RemoteError(WorklogError):
    """Transport, auth or remote-side failure for a single remote call."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        not_found: bool = False,
    ) -> None:
        """Initialize remote error.

        Args:
            message: Human readable failure reason.
            status_code: HTTP status code, if the remote answered.
            not_found: True if the remote reported the resource as missing.
        """
        super().__init__(message)
        self.status_code = status_code
        self.not_found = not_found


class ConsistencyError(WorklogError):
    """Confirmation mismatch or internally detected invariant violation."""
