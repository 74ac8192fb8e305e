"""Guided reconciliation flow: sync, link, draft, fill, review, then commit."""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable

from worklog_reconciler.errors import ValidationError
from worklog_reconciler.ledger.models import CodingSession, Issue, MeetingRecord, WorklogEntry
from worklog_reconciler.ledger.staging import StagingManager, TransitionReport
from worklog_reconciler.ledger.store import WorklogStore
from worklog_reconciler.sources import MeetingSource, SessionSource, drafts_from_records
from worklog_reconciler.sync.gaps import GapFiller, GapFillResult, Interval, intervals_from_entries, sprint_totals
from worklog_reconciler.sync.linker import AutoLinker, LinkReport
from worklog_reconciler.sync.reconciler import ProgressCallback, PushReconciler, PushResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineState:
    """Snapshot of the guided flow. Each step returns a new state."""

    start_day: date
    end_day: date
    issues: tuple[Issue, ...] = ()
    meetings: tuple[MeetingRecord, ...] = ()
    sessions: tuple[CodingSession, ...] = ()
    link_report: LinkReport | None = None
    drafts: tuple[WorklogEntry, ...] = ()
    fills: tuple[GapFillResult, ...] = ()
    excluded_days: frozenset[date] = field(default_factory=frozenset)
    proposals: tuple[WorklogEntry, ...] = ()

    @property
    def proposed_seconds(self) -> int:
        return sum(entry.duration_seconds for entry in self.proposals)


@dataclass
class CommitResult:
    """Outcome of committing a reviewed pipeline state."""

    added: list[str] = field(default_factory=list)
    staging: TransitionReport | None = None
    push: PushResult | None = None


class GuidedPipeline:
    """Ordered steps that turn calendar and coding activity into drafts.

    None of the steps touches the store; they only read it to avoid
    proposing time that is already logged. Changes happen in ``commit``.
    """

    def __init__(
        self,
        store: WorklogStore,
        linker: AutoLinker,
        filler: GapFiller,
        meeting_source: MeetingSource | None = None,
        session_source: SessionSource | None = None,
    ) -> None:
        self.store = store
        self.linker = linker
        self.filler = filler
        self.meeting_source = meeting_source
        self.session_source = session_source

    def start(self, start_day: date, end_day: date, issues: Iterable[Issue] = ()) -> PipelineState:
        """Initial state for a date range.

        Raises:
            ValidationError: If the range is reversed.
        """
        if end_day < start_day:
            raise ValidationError(f"End day {end_day} is before start day {start_day}")
        return PipelineState(start_day=start_day, end_day=end_day, issues=tuple(issues))

    def sync(self, state: PipelineState) -> PipelineState:
        """Read meetings and coding sessions for the state's date range."""
        range_start = datetime.combine(state.start_day, time.min, tzinfo=self.filler.config.tz)
        range_end = datetime.combine(
            state.end_day + timedelta(days=1), time.min, tzinfo=self.filler.config.tz
        )
        meetings: tuple[MeetingRecord, ...] = ()
        sessions: tuple[CodingSession, ...] = ()
        if self.meeting_source is not None:
            meetings = tuple(self.meeting_source.meetings_between(range_start, range_end))
        if self.session_source is not None:
            sessions = tuple(self.session_source.sessions_between(range_start, range_end))
        logger.info(f"Synced {len(meetings)} meetings and {len(sessions)} coding sessions")
        return replace(state, meetings=meetings, sessions=sessions)

    def link(self, state: PipelineState, force: bool = False) -> PipelineState:
        """Link meetings to the state's known issues."""
        meetings, report = self.linker.link_with_report(state.meetings, state.issues, force=force)
        return replace(state, meetings=tuple(meetings), link_report=report)

    def draft(self, state: PipelineState) -> PipelineState:
        """Propose drafts for linked meetings and coding sessions."""
        drafts = drafts_from_records(state.meetings, state.sessions, store=self.store)
        return replace(state, drafts=tuple(drafts))

    def fill(self, state: PipelineState) -> PipelineState:
        """Propose gap-fill drafts around meetings, drafts and logged time."""
        committed = intervals_from_entries(self.store.all())
        committed += [Interval(m.start, m.end, m.linked_issue_key) for m in state.meetings]
        committed += [Interval.from_entry(entry) for entry in state.drafts]

        since = datetime.combine(
            state.start_day - timedelta(days=self.filler.config.sprint_days),
            time.min,
            tzinfo=timezone.utc,
        )
        candidates = sprint_totals([*self.store.all(), *state.drafts], since)
        fills = self.filler.fill_range(state.start_day, state.end_day, committed, candidates)
        return replace(state, fills=tuple(fills))

    def review(self, state: PipelineState, excluded_days: Iterable[date] = ()) -> PipelineState:
        """Collect the proposals to commit, leaving out excluded days."""
        excluded = frozenset(excluded_days)
        tz = self.filler.config.tz
        proposals: dict[str, WorklogEntry] = {}
        for entry in [*state.drafts, *(e for result in state.fills for e in result.entries)]:
            if entry.started_at.astimezone(tz).date() in excluded:
                continue
            if entry.id in self.store:
                continue
            proposals.setdefault(entry.id, entry)

        ordered = sorted(proposals.values(), key=lambda e: (e.started_at, e.id))
        return replace(state, excluded_days=excluded, proposals=tuple(ordered))

    def run(
        self,
        start_day: date,
        end_day: date,
        issues: Iterable[Issue] = (),
        excluded_days: Iterable[date] = (),
    ) -> PipelineState:
        """Run every step up to review."""
        state = self.start(start_day, end_day, issues)
        state = self.sync(state)
        state = self.link(state)
        state = self.draft(state)
        state = self.fill(state)
        state = self.review(state, excluded_days)
        logger.info(
            f"Pipeline proposes {len(state.proposals)} drafts for "
            f"{state.start_day} to {state.end_day}"
        )
        return state

    def commit(
        self,
        state: PipelineState,
        staging: StagingManager,
        reconciler: PushReconciler | None = None,
        cancel: threading.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> CommitResult:
        """Store the reviewed proposals as drafts, stage them and optionally push.

        Args:
            state: Reviewed state.
            staging: Staging manager of the target store.
            reconciler: When given, the staged proposals are pushed.
            cancel: Push cancellation event.
            progress: Push progress callback.

        Returns:
            Ids added, the staging report and the push result.

        Raises:
            ValidationError: If a proposal is malformed or already stored.
                Nothing is added in that case.
        """
        result = CommitResult()
        added = staging.add_drafts(state.proposals)
        result.added = [entry.id for entry in added]
        result.staging = staging.stage(result.added)

        if reconciler is not None and result.staging.changed:
            result.push = reconciler.push(result.staging.changed, cancel=cancel, progress=progress)
        return result
