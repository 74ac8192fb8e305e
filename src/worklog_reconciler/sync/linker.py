"""Automatic linking of meetings to issues."""

import logging
import re
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Iterable, Protocol

from worklog_reconciler.config import LinkerConfig
from worklog_reconciler.ledger.models import Issue, MeetingRecord

logger = logging.getLogger(__name__)


class IssueResolver(Protocol):
    """Strategy that picks an issue key for a piece of text."""

    name: str

    def resolve(self, text: str, issues: list[Issue]) -> str | None:
        """Return the matching issue key, or None if nothing matches."""
        ...


class PatternResolver:
    """Finds explicit issue keys such as PROJ-123 in text."""

    name = "pattern"

    def __init__(self, patterns: Iterable[str]) -> None:
        self.patterns = [re.compile(pattern) for pattern in patterns]

    def resolve(self, text: str, issues: list[Issue]) -> str | None:
        if not text:
            return None
        known = {issue.key.upper() for issue in issues}
        for pattern in self.patterns:
            for match in pattern.finditer(text):
                key = (match.group(1) if pattern.groups else match.group(0)).upper()
                if key in known:
                    return key
        return None


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def similarity(left: str, right: str) -> float:
    """Similarity ratio between two strings, ignoring case and spacing."""
    return SequenceMatcher(None, _normalize(left), _normalize(right)).ratio()


class FuzzyResolver:
    """Matches text against issue summaries by similarity score."""

    name = "fuzzy"

    def __init__(self, threshold: float) -> None:
        self.threshold = threshold

    def resolve(self, text: str, issues: list[Issue]) -> str | None:
        if not text.strip():
            return None

        best_key: str | None = None
        best_score = -1.0
        # Sorted so that equal scores keep the lowest key
        for issue in sorted(issues, key=lambda i: i.key):
            if not issue.summary:
                continue
            score = similarity(text, issue.summary)
            if score > best_score:
                best_key, best_score = issue.key, score

        if best_key is not None and best_score >= self.threshold:
            return best_key
        return None


@dataclass
class LinkReport:
    """Outcome of a linking run."""

    linked: dict[str, str] = field(default_factory=dict)
    strategies: dict[str, str] = field(default_factory=dict)
    unchanged: list[str] = field(default_factory=list)
    unlinked: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"Linked: {len(self.linked)}, "
            f"Unchanged: {len(self.unchanged)}, "
            f"Unlinked: {len(self.unlinked)}"
        )


LinkStep = tuple[str, IssueResolver]


class AutoLinker:
    """Links meeting records to issue keys.

    Steps run in order and the first match wins. The default order is an
    explicit key in the title, then in the description, then a fuzzy match of
    the title against issue summaries.
    """

    def __init__(self, config: LinkerConfig, steps: list[LinkStep] | None = None) -> None:
        self.config = config
        if steps is None:
            pattern = PatternResolver(config.issue_key_patterns)
            steps = [
                ("title", pattern),
                ("description", pattern),
                ("title", FuzzyResolver(config.fuzzy_threshold)),
            ]
        self.steps = steps

    def link(
        self,
        records: Iterable[MeetingRecord],
        known_issues: Iterable[Issue],
        force: bool = False,
    ) -> list[MeetingRecord]:
        """Link records to issues.

        Args:
            records: Meeting records to link.
            known_issues: Issues that may be linked.
            force: Re-link records that already carry a link.

        Returns:
            Records in input order, with links set where a step matched.
        """
        linked, _ = self.link_with_report(records, known_issues, force=force)
        return linked

    def link_with_report(
        self,
        records: Iterable[MeetingRecord],
        known_issues: Iterable[Issue],
        force: bool = False,
    ) -> tuple[list[MeetingRecord], LinkReport]:
        """Link records and describe what happened to each one."""
        issues = list(known_issues)
        report = LinkReport()
        result: list[MeetingRecord] = []

        for record in records:
            if record.linked_issue_key and not force:
                report.unchanged.append(record.id)
                result.append(record)
                continue

            match = self._resolve(record, issues)
            if match is None:
                # A forced run never drops an existing link it cannot replace
                if record.linked_issue_key:
                    report.unchanged.append(record.id)
                else:
                    report.unlinked.append(record.id)
                result.append(record)
                continue

            key, strategy = match
            report.linked[record.id] = key
            report.strategies[record.id] = strategy
            result.append(record.model_copy(update={"linked_issue_key": key}))
            logger.debug(f"Linked meeting '{record.title}' to {key} ({strategy})")

        logger.info(f"Auto-link complete: {report}")
        return result, report

    def _resolve(self, record: MeetingRecord, issues: list[Issue]) -> tuple[str, str] | None:
        for field_name, resolver in self.steps:
            text = getattr(record, field_name) or ""
            key = resolver.resolve(text, issues)
            if key is not None:
                return key, f"{resolver.name}:{field_name}"
        return None
