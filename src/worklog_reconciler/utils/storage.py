"""Storage of configuration, worklogs, history and tokens."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from worklog_reconciler.ledger.models import HistoryBatch, WorklogEntry

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".worklog-reconciler"


def atomic_write(path: Path, content: str) -> None:
    """Write a file so readers see either the old or the new content.

    The content goes to a temporary file in the same directory, is flushed
    to disk and then renamed over the target.

    Args:
        path: Target file.
        content: Text to write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class StorageManager:
    """Manages configuration, worklog, history and token storage."""

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize storage manager.

        Args:
            config_dir: Directory to store data. Defaults to ~/.worklog-reconciler/
        """
        self.config_dir = config_dir or DEFAULT_CONFIG_DIR
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.config_file = self.config_dir / "config.yaml"
        self.worklogs_file = self.config_dir / "worklogs.json"
        self.history_file = self.config_dir / "history.json"
        self.tokens_file = self.config_dir / "tokens.json"

    def load_config(self) -> dict[str, Any]:
        """Load application configuration.

        Returns:
            Configuration dictionary.
        """
        if self.config_file.exists():
            with open(self.config_file) as f:
                return yaml.safe_load(f) or {}
        return {}

    def save_config(self, config: dict[str, Any]) -> None:
        """Save application configuration.

        Args:
            config: Configuration to save.
        """
        atomic_write(
            self.config_file,
            yaml.dump(config, default_flow_style=False, sort_keys=False),
        )

    def load_worklogs(self) -> list[WorklogEntry]:
        """Load all worklog entries.

        Returns:
            Worklog entries in stored order.
        """
        if not self.worklogs_file.exists():
            return []
        with open(self.worklogs_file) as f:
            data = json.load(f)
        return [WorklogEntry.model_validate(item) for item in data.get("worklogs", [])]

    def save_worklogs(self, entries: list[WorklogEntry]) -> None:
        """Save all worklog entries.

        Args:
            entries: Entries to save.
        """
        data = {"worklogs": [entry.model_dump(mode="json") for entry in entries]}
        atomic_write(self.worklogs_file, json.dumps(data, indent=2))
        logger.debug(f"Saved {len(entries)} worklogs to {self.worklogs_file}")

    def load_history(self) -> list[HistoryBatch]:
        """Load all history batches.

        Returns:
            History batches in stored order.
        """
        if not self.history_file.exists():
            return []
        with open(self.history_file) as f:
            data = json.load(f)
        return [HistoryBatch.model_validate(item) for item in data.get("batches", [])]

    def save_history(self, batches: list[HistoryBatch]) -> None:
        """Save all history batches.

        Args:
            batches: Batches to save.
        """
        data = {"batches": [batch.model_dump(mode="json") for batch in batches]}
        atomic_write(self.history_file, json.dumps(data, indent=2))
        logger.debug(f"Saved {len(batches)} history batches to {self.history_file}")

    def load_tokens(self) -> dict[str, str]:
        """Load cached authentication tokens.

        Returns:
            Dictionary of service names to tokens.
        """
        if self.tokens_file.exists():
            with open(self.tokens_file) as f:
                return json.load(f)
        return {}

    def save_tokens(self, tokens: dict[str, str]) -> None:
        """Save authentication tokens readable by the current user only.

        Args:
            tokens: Dictionary of service names to tokens.
        """
        atomic_write(self.tokens_file, json.dumps(tokens))
        self.tokens_file.chmod(0o600)

    def get_token(self, service: str) -> str | None:
        """Get cached token for a service.

        Args:
            service: Service name (e.g., "jira").

        Returns:
            Token if available, None otherwise.
        """
        return self.load_tokens().get(service)

    def set_token(self, service: str, token: str) -> None:
        """Save token for a service.

        Args:
            service: Service name.
            token: Authentication token.
        """
        tokens = self.load_tokens()
        tokens[service] = token
        self.save_tokens(tokens)
