"""Proposal of draft worklogs for uncovered working time."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable

from worklog_reconciler.config import GapFillConfig
from worklog_reconciler.errors import ConsistencyError
from worklog_reconciler.ledger.models import EntrySource, EntryStatus, Issue, WorklogEntry
from worklog_reconciler.ledger.store import new_entry

logger = logging.getLogger(__name__)

GAP_FILL_COMMENT = "Gap fill"


@dataclass(frozen=True)
class Interval:
    """Committed time on a day, optionally tied to an issue."""

    start: datetime
    end: datetime
    issue_key: str | None = None

    @classmethod
    def from_entry(cls, entry: WorklogEntry) -> "Interval":
        return cls(entry.started_at, entry.ended_at, entry.issue_key)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end


@dataclass(frozen=True)
class Gap:
    """Uncovered time within the working window."""

    start: datetime
    end: datetime

    @property
    def duration_seconds(self) -> int:
        return int((self.end - self.start).total_seconds())


@dataclass
class GapFillResult:
    """Proposed drafts and the gaps they came from."""

    day: date
    entries: list[WorklogEntry] = field(default_factory=list)
    gaps: list[Gap] = field(default_factory=list)
    unassigned: list[Gap] = field(default_factory=list)
    over_limit: list[Gap] = field(default_factory=list)

    @property
    def proposed_seconds(self) -> int:
        return sum(entry.duration_seconds for entry in self.entries)


def intervals_from_entries(entries: Iterable[WorklogEntry]) -> list[Interval]:
    """Committed intervals for every entry that still counts as logged time."""
    return [
        Interval.from_entry(entry)
        for entry in entries
        if entry.status != EntryStatus.REVERTED
    ]


def sprint_totals(entries: Iterable[WorklogEntry], since: datetime) -> list[Issue]:
    """Accumulated logged time per issue since the given moment."""
    totals: dict[str, int] = {}
    for entry in entries:
        if entry.status == EntryStatus.REVERTED or entry.started_at < since:
            continue
        totals[entry.issue_key] = totals.get(entry.issue_key, 0) + entry.duration_seconds
    return [Issue(key=key, sprint_seconds=seconds) for key, seconds in sorted(totals.items())]


def _merge(intervals: Iterable[Interval], lower: datetime, upper: datetime) -> list[tuple[datetime, datetime]]:
    merged: list[tuple[datetime, datetime]] = []
    for interval in sorted(intervals, key=lambda i: (i.start, i.end)):
        start = max(interval.start, lower)
        end = min(interval.end, upper)
        if start >= end:
            continue
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


class GapFiller:
    """Finds uncovered working time on a day and proposes drafts for it."""

    def __init__(self, config: GapFillConfig) -> None:
        self.config = config

    def window(self, day: date) -> tuple[datetime, datetime]:
        """Working window of a day as UTC datetimes."""
        tz = self.config.tz
        start = datetime.combine(day, self.config.work_start, tzinfo=tz)
        end = datetime.combine(day, self.config.work_end, tzinfo=tz)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    def find_gaps(self, day: date, committed: Iterable[Interval]) -> list[Gap]:
        """Uncovered parts of the working window at least one granularity long."""
        window_start, window_end = self.window(day)
        granularity = self.config.granularity_minutes * 60

        gaps: list[Gap] = []
        cursor = window_start
        for start, end in _merge(committed, window_start, window_end):
            if start > cursor:
                gaps.append(Gap(cursor, start))
            cursor = max(cursor, end)
        if cursor < window_end:
            gaps.append(Gap(cursor, window_end))

        return [gap for gap in gaps if gap.duration_seconds >= granularity]

    def fill(
        self,
        day: date,
        committed_intervals: Iterable[Interval],
        candidate_issues: Iterable[Issue],
    ) -> GapFillResult:
        """Propose Draft entries for the gaps of a day.

        Each gap takes the issue of the closest committed interval ending at
        or before the gap start, if that interval has one; failing that, the
        candidate with the most time logged this sprint. Gaps with neither are
        reported as unassigned.

        Args:
            day: Day to fill, in the configured timezone.
            committed_intervals: Meetings and existing worklogs.
            candidate_issues: Issues with their accumulated sprint time.

        Returns:
            Proposed drafts and the gaps found.
        """
        result = GapFillResult(day=day)
        if self.config.skip_weekends and day.weekday() >= 5:
            logger.debug(f"Skipping weekend day {day}")
            return result

        committed = [i for i in committed_intervals if i.end > i.start]
        result.gaps = self.find_gaps(day, committed)
        fallback = self._top_sprint_issue(candidate_issues)
        granularity = self.config.granularity_minutes * 60
        remaining = self._remaining_budget(day, committed)

        for gap in result.gaps:
            issue_key = self._preceding_issue(gap, committed) or fallback
            if issue_key is None:
                result.unassigned.append(gap)
                continue

            duration = gap.duration_seconds
            if remaining is not None:
                duration = min(duration, remaining)
                if duration < granularity:
                    result.over_limit.append(gap)
                    continue
                remaining -= duration

            result.entries.append(
                new_entry(
                    issue_key=issue_key,
                    duration_seconds=duration,
                    started_at=gap.start,
                    comment=GAP_FILL_COMMENT,
                    source=EntrySource.MANUAL,
                )
            )

        self._check_no_overlap(result.entries, committed)
        logger.info(
            f"Gap fill for {day}: {len(result.entries)} drafts, "
            f"{len(result.unassigned)} unassigned gaps"
        )
        return result

    def fill_range(
        self,
        start_day: date,
        end_day: date,
        committed_intervals: Iterable[Interval],
        candidate_issues: Iterable[Issue],
    ) -> list[GapFillResult]:
        """Run fill for every day from start_day to end_day inclusive."""
        committed = list(committed_intervals)
        issues = list(candidate_issues)
        results = []
        day = start_day
        while day <= end_day:
            results.append(self.fill(day, committed, issues))
            day += timedelta(days=1)
        return results

    def _remaining_budget(self, day: date, committed: list[Interval]) -> int | None:
        if self.config.daily_hours_limit is None:
            return None
        tz = self.config.tz
        day_start = datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)
        day_end = day_start + timedelta(days=1)
        logged = sum(
            int((end - start).total_seconds()) for start, end in _merge(committed, day_start, day_end)
        )
        return max(int(self.config.daily_hours_limit * 3600) - logged, 0)

    @staticmethod
    def _preceding_issue(gap: Gap, committed: list[Interval]) -> str | None:
        before = [i for i in committed if i.end <= gap.start]
        if not before:
            return None
        closest = min(before, key=lambda i: (-i.end.timestamp(), -i.start.timestamp(), i.issue_key or ""))
        return closest.issue_key

    @staticmethod
    def _top_sprint_issue(issues: Iterable[Issue]) -> str | None:
        best: Issue | None = None
        for issue in sorted(issues, key=lambda i: i.key):
            if issue.sprint_seconds <= 0:
                continue
            if best is None or issue.sprint_seconds > best.sprint_seconds:
                best = issue
        return best.key if best else None

    @staticmethod
    def _check_no_overlap(entries: list[WorklogEntry], committed: list[Interval]) -> None:
        for entry in entries:
            for interval in committed:
                if interval.overlaps(entry.started_at, entry.ended_at):
                    raise ConsistencyError(
                        f"Proposed draft {entry.id} overlaps committed time "
                        f"{interval.start.isoformat()}-{interval.end.isoformat()}"
                    )
