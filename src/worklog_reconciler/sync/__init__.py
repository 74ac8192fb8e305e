"""Reconciliation engine for worklogs."""

from worklog_reconciler.sync.gaps import GapFiller, GapFillResult
from worklog_reconciler.sync.linker import AutoLinker, LinkReport
from worklog_reconciler.sync.pipeline import GuidedPipeline, PipelineState
from worklog_reconciler.sync.reconciler import PushReconciler, PushResult, RevertResult
from worklog_reconciler.sync.recovery import RecoveryReconstructor
from worklog_reconciler.sync.worker import Notification, ReconciliationWorker

__all__ = [
    "AutoLinker",
    "GapFiller",
    "GapFillResult",
    "GuidedPipeline",
    "LinkReport",
    "Notification",
    "PipelineState",
    "PushReconciler",
    "PushResult",
    "ReconciliationWorker",
    "RecoveryReconstructor",
    "RevertResult",
]
