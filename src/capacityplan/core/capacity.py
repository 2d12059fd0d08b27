from __future__ import annotations

import math
from collections import defaultdict
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Iterable

from capacityplan.core.models import (
    CapacitySnapshot,
    Department,
    GanttSegment,
    Job,
    Machine,
    MachineSummary,
    normalize_department,
    week_start,
)
from capacityplan.core.reconcile import utcnow

if TYPE_CHECKING:
    from capacityplan.data.job_store import JobStore
    from capacityplan.data.resource_registry import ResourceRegistry


def _gantt_key(job: Job) -> tuple:
    return (job.start_datetime, job.priority, job.process_order)


def build_gantt_segments(jobs: Iterable[Job]) -> list[GanttSegment]:
    """Timeline segments ordered by start, then priority, then process order."""
    out: list[GanttSegment] = []
    for job in sorted(jobs, key=_gantt_key):
        label = f"{job.process_order} - {job.end_product}" if job.end_product else job.process_order
        out.append(
            GanttSegment(
                machine=job.machine,
                process_order=job.process_order,
                start=job.start_datetime,
                end=job.end_datetime,
                priority=job.priority,
                label=label,
                qty=job.qty,
                manual_override=job.manual_override,
            )
        )
    return out


def summarize_machine(
    name: str,
    jobs: list[Job],
    *,
    registered: bool,
    working_hours_per_day: float = 24.0,
) -> MachineSummary:
    """Load figures for one machine.

    Utilization compares scheduled hours with the hours available between the
    first start and the last end (whole days, inclusive), capped at 100.
    """
    if not jobs:
        return MachineSummary(
            machine=name,
            registered=registered,
            total_hours=0.0,
            job_count=0,
            next_free=None,
            working_hours_per_day=working_hours_per_day,
        )

    ordered = sorted(jobs, key=_gantt_key)
    total = math.fsum(j.duration_hours for j in ordered)

    per_day: dict[str, float] = defaultdict(float)
    per_week: dict[str, float] = defaultdict(float)
    for j in ordered:
        d = j.start_datetime.date()
        per_day[d.isoformat()] += j.duration_hours
        per_week[week_start(d).isoformat()] += j.duration_hours

    first_start = ordered[0].start_datetime
    last_end = max(j.end_datetime for j in ordered)
    period_days = max(1, (last_end.date() - first_start.date()).days + 1)
    available = period_days * working_hours_per_day
    utilization = min(100.0, total / available * 100.0) if available > 0 else 0.0

    return MachineSummary(
        machine=name,
        registered=registered,
        total_hours=total,
        job_count=len(ordered),
        next_free=last_end,
        hours_per_day=dict(sorted(per_day.items())),
        hours_per_week=dict(sorted(per_week.items())),
        utilization_pct=round(utilization, 2),
        working_hours_per_day=working_hours_per_day,
    )


def build_machine_summaries(
    jobs: Iterable[Job],
    machines: Iterable[Machine],
    *,
    default_working_hours: float = 24.0,
) -> list[MachineSummary]:
    """Summaries for registered machines (idle ones included) then unregistered ones.

    Registered machines keep registry order; machines that only appear on
    jobs follow, sorted by name.
    """
    by_machine: dict[str, list[Job]] = defaultdict(list)
    for job in jobs:
        by_machine[job.machine].append(job)

    out: list[MachineSummary] = []
    seen: set[str] = set()
    for m in machines:
        if m.name in seen:
            continue
        seen.add(m.name)
        out.append(
            summarize_machine(
                m.name,
                by_machine.get(m.name, []),
                registered=True,
                working_hours_per_day=m.working_hours_per_day,
            )
        )
    for name in sorted(set(by_machine) - seen):
        out.append(
            summarize_machine(
                name,
                by_machine[name],
                registered=False,
                working_hours_per_day=default_working_hours,
            )
        )
    return out


class CapacityAggregator:
    """Read-side view of a department's schedule. Never writes."""

    def __init__(
        self,
        store: JobStore,
        registry: ResourceRegistry,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.registry = registry
        self.clock = clock

    def get_capacity_snapshot(self, department: Department | str) -> CapacitySnapshot:
        dept = normalize_department(department)
        # Jobs, machines and provenance from one read transaction
        with self.store.db.read() as con:
            jobs = self.store.list_jobs_in(con, dept)
            upload = self.store.get_upload_record_in(con, dept)
            machines = self.registry.list_machines_in(con, dept)

        jobs = sorted(jobs, key=_gantt_key)
        return CapacitySnapshot(
            department=dept,
            machines=build_machine_summaries(jobs, machines, default_working_hours=self.registry.default_working_hours),
            jobs=jobs,
            segments=build_gantt_segments(jobs),
            file_name=upload.file_name if upload else None,
            uploaded_at=upload.uploaded_at if upload else None,
            uploaded_by=upload.uploaded_by if upload else None,
            generated_at=self.clock(),
        )
