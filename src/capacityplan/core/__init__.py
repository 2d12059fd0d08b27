"""Core package.

Domain models, the reconciliation merge, capacity aggregation and manual
moves. Storage is reached through the job store and resource registry
passed in by the caller.
"""

from capacityplan.core.capacity import CapacityAggregator, build_gantt_segments, build_machine_summaries
from capacityplan.core.errors import CapacityError, ConflictingWrite, InvalidInput, NotFound, StoreUnavailable
from capacityplan.core.models import (
    CapacitySnapshot,
    Department,
    GanttSegment,
    Job,
    JobRow,
    Machine,
    MachineSummary,
    MergeResult,
    OrphanPolicy,
    RowIssue,
)
from capacityplan.core.moves import MoveEngine
from capacityplan.core.orchestrator import DepartmentUpload, UploadOrchestrator, UploadSummary
from capacityplan.core.reconcile import ReconciliationEngine, plan_merge

__all__ = [
    "CapacityAggregator",
    "CapacityError",
    "CapacitySnapshot",
    "ConflictingWrite",
    "Department",
    "DepartmentUpload",
    "GanttSegment",
    "InvalidInput",
    "Job",
    "JobRow",
    "Machine",
    "MachineSummary",
    "MergeResult",
    "MoveEngine",
    "NotFound",
    "OrphanPolicy",
    "ReconciliationEngine",
    "RowIssue",
    "StoreUnavailable",
    "UploadOrchestrator",
    "UploadSummary",
    "build_gantt_segments",
    "build_machine_summaries",
    "plan_merge",
]
