"""Reconciliation of an uploaded schedule against the known jobs.

The merge is split in two: :func:`plan_merge` is pure (current jobs + rows
in, a :class:`MergePlan` out) and :class:`ReconciliationEngine` applies the
plan to the job store inside one department-scoped transaction.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Iterable
from uuid import uuid4

from capacityplan.core.errors import InvalidInput
from capacityplan.core.models import (
    DESCRIPTIVE_FIELDS,
    Department,
    Job,
    JobRow,
    MergeResult,
    OrphanPolicy,
    RowIssue,
    UploadRecord,
    normalize_department,
)

if TYPE_CHECKING:
    from capacityplan.data.job_store import JobStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def validate_row(row: JobRow) -> str | None:
    """Return the reason a row cannot be used, or None when it is valid."""
    if not str(row.process_order or "").strip():
        return "missing process order"
    if not str(row.machine or "").strip():
        return "missing machine"
    if row.start_datetime is None:
        return "missing start date"
    if not isinstance(row.start_datetime, datetime):
        return f"invalid start date {row.start_datetime!r}"
    # Schedule times are naive plant time
    if row.start_datetime.tzinfo is not None:
        return f"start date carries a timezone {row.start_datetime.isoformat()}"
    for name in ("priority", "qty", "days_from_today"):
        value = getattr(row, name)
        if _as_int(value) is None:
            return f"invalid {name} {value!r}"
    try:
        duration = float(row.duration_hours)
    except (TypeError, ValueError):
        return f"invalid duration {row.duration_hours!r}"
    if math.isnan(duration) or math.isinf(duration) or duration <= 0:
        return f"non-positive duration {row.duration_hours!r}"
    return None


def clean_rows(rows: Iterable[JobRow]) -> tuple[dict[str, JobRow], list[RowIssue]]:
    """Validate rows and key them by process order.

    Duplicate process orders: the last occurrence wins, earlier ones are
    reported as issues.
    """
    if rows is None or isinstance(rows, (str, bytes)):
        raise InvalidInput("uploaded rows are unreadable")
    try:
        items = list(rows)
    except TypeError as exc:
        raise InvalidInput(f"uploaded rows are unreadable: {exc}") from exc

    keyed: dict[str, JobRow] = {}
    issues: list[RowIssue] = []
    for row in items:
        if not isinstance(row, JobRow):
            raise InvalidInput(f"unexpected row type {type(row).__name__}")
        reason = validate_row(row)
        po = str(row.process_order or "").strip()
        if reason is not None:
            issues.append(RowIssue(process_order=po or None, reason=reason, source_row=row.source_row))
            continue
        prev = keyed.get(po)
        if prev is not None:
            issues.append(
                RowIssue(
                    process_order=po,
                    reason="duplicate process order, superseded by a later row",
                    source_row=prev.source_row,
                )
            )
        keyed[po] = replace(
            row,
            process_order=po,
            machine=str(row.machine).strip(),
            duration_hours=float(row.duration_hours),
            priority=int(row.priority),
            qty=int(row.qty),
            days_from_today=int(row.days_from_today),
        )
    return keyed, issues


def _descriptive_values(row: JobRow) -> dict:
    return {f: getattr(row, f) for f in DESCRIPTIVE_FIELDS}


def _new_job(department: Department, row: JobRow, *, uploaded_by: str, uploaded_at: datetime) -> Job:
    return Job(
        job_id=f"job_{uuid4().hex}",
        department=department,
        process_order=row.process_order,
        machine=row.machine,
        start_datetime=row.start_datetime,
        duration_hours=row.duration_hours,
        priority=int(row.priority),
        original_machine=row.machine,
        original_duration_hours=row.duration_hours,
        manual_override=False,
        uploaded_by=uploaded_by,
        uploaded_at=uploaded_at,
        **_descriptive_values(row),
    )


def _refresh_job(job: Job, row: JobRow) -> Job:
    """Apply an upload row to a job, honoring its manual override."""
    updates = _descriptive_values(row)
    updates["original_machine"] = row.machine
    updates["original_duration_hours"] = row.duration_hours
    if not job.manual_override:
        updates.update(
            machine=row.machine,
            start_datetime=row.start_datetime,
            duration_hours=row.duration_hours,
            priority=int(row.priority),
        )
    return replace(job, **updates)


@dataclass
class MergePlan:
    department: Department
    inserts: list[Job] = field(default_factory=list)
    updates: list[Job] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)
    preserved: int = 0
    retained: int = 0
    issues: list[RowIssue] = field(default_factory=list)

    def to_result(self) -> MergeResult:
        return MergeResult(
            department=self.department,
            added=len(self.inserts),
            removed=len(self.deletes),
            preserved=self.preserved,
            refreshed=sum(1 for j in self.updates if not j.manual_override),
            retained=self.retained,
            skipped=len(self.issues),
            issues=list(self.issues),
        )


def plan_merge(
    department: Department,
    existing: Iterable[Job],
    rows: dict[str, JobRow],
    *,
    uploaded_by: str,
    uploaded_at: datetime,
    orphan_policy: OrphanPolicy = OrphanPolicy.REMOVE,
    issues: list[RowIssue] | None = None,
) -> MergePlan:
    """Three-way merge of validated rows against the current jobs."""
    plan = MergePlan(department=department, issues=list(issues or []))
    current = {j.process_order: j for j in existing}

    for po in sorted(rows):
        row = rows[po]
        job = current.get(po)
        if job is None:
            plan.inserts.append(_new_job(department, row, uploaded_by=uploaded_by, uploaded_at=uploaded_at))
            continue
        if job.manual_override:
            plan.preserved += 1
        refreshed = _refresh_job(job, row)
        if refreshed != job:
            plan.updates.append(refreshed)

    for po in sorted(current):
        if po in rows:
            continue
        if current[po].manual_override and orphan_policy is OrphanPolicy.RETAIN_MANUAL:
            plan.retained += 1
            continue
        plan.deletes.append(po)

    return plan


class ReconciliationEngine:
    def __init__(
        self,
        store: JobStore,
        *,
        orphan_policy: OrphanPolicy | Callable[[], OrphanPolicy] = OrphanPolicy.REMOVE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self._orphan_policy = orphan_policy
        self.clock = clock

    @property
    def orphan_policy(self) -> OrphanPolicy:
        p = self._orphan_policy
        return p() if callable(p) else p

    def reconcile(
        self,
        department: Department | str,
        rows: Iterable[JobRow],
        *,
        uploaded_by: str,
        source_file_name: str,
        orphan_policy: OrphanPolicy | str | None = None,
        extra_issues: Iterable[RowIssue] = (),
    ) -> MergeResult:
        """Merge one department's uploaded rows into the job store.

        Invalid rows are skipped and reported on the result; store failures
        roll the whole department back and propagate.
        """
        dept = normalize_department(department)
        policy = OrphanPolicy.parse(orphan_policy) if orphan_policy is not None else self.orphan_policy
        keyed, issues = clean_rows(rows)
        issues = list(extra_issues) + issues
        uploaded_at = self.clock()

        with self.store.transaction(dept) as session:
            plan = plan_merge(
                dept,
                session.list_jobs(),
                keyed,
                uploaded_by=uploaded_by,
                uploaded_at=uploaded_at,
                orphan_policy=policy,
                issues=issues,
            )
            session.delete_jobs(plan.deletes)
            session.upsert_jobs(plan.inserts + plan.updates)
            result = plan.to_result()
            session.record_upload(
                UploadRecord(
                    department=dept,
                    file_name=source_file_name,
                    uploaded_by=uploaded_by,
                    uploaded_at=uploaded_at,
                    added=result.added,
                    removed=result.removed,
                    preserved=result.preserved,
                    skipped=result.skipped,
                )
            )
            session.log_audit(
                "CAPACITY_UPLOAD",
                f"{dept.value}: {result.summary()}",
                f"file={source_file_name} by={uploaded_by} refreshed={result.refreshed} "
                f"retained={result.retained} skipped={result.skipped}",
            )

        logger.info(
            "%s: %s (%d refreshed, %d retained, %d skipped) from %s",
            dept.value,
            result.summary(),
            result.refreshed,
            result.retained,
            result.skipped,
            source_file_name,
        )
        for issue in result.issues:
            logger.warning("%s upload %s: %s", dept.value, source_file_name, issue.describe())
        return result
