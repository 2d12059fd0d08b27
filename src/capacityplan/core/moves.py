from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from capacityplan.core.errors import InvalidInput, NotFound
from capacityplan.core.models import Department, Job, MoveRecord, normalize_department
from capacityplan.core.reconcile import utcnow

if TYPE_CHECKING:
    from capacityplan.data.job_store import JobStore
    from capacityplan.data.resource_registry import ResourceRegistry

logger = logging.getLogger(__name__)


def _validate_duration(value) -> float:
    try:
        duration = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"duration must be a number, got {value!r}") from None
    if math.isnan(duration) or math.isinf(duration) or duration <= 0:
        raise InvalidInput(f"duration must be positive, got {value!r}")
    return duration


class MoveEngine:
    """Manual reassignment of a single job.

    A moved job is flagged ``manual_override`` so later uploads refresh only
    its descriptive fields. Overlaps on the destination machine are not
    checked; they show up on the timeline for the planner to resolve.
    """

    def __init__(
        self,
        store: JobStore,
        registry: ResourceRegistry,
        *,
        strict_registry: bool | Callable[[], bool] = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.registry = registry
        self._strict_registry = strict_registry
        self.clock = clock

    @property
    def strict_registry(self) -> bool:
        s = self._strict_registry
        return bool(s() if callable(s) else s)

    def move_job(
        self,
        department: Department | str,
        process_order: str,
        *,
        to_machine: str,
        new_duration: float,
        new_start: datetime | None = None,
        new_priority: int | None = None,
        moved_by: str,
        reason: str | None = None,
    ) -> Job:
        """Move one job; ``new_start``/``new_priority`` of None keep the current value."""
        dept = normalize_department(department)
        po = str(process_order or "").strip()
        to_machine = str(to_machine or "").strip()
        moved_by = str(moved_by or "").strip()
        if not po:
            raise InvalidInput("process order empty")
        if not to_machine:
            raise InvalidInput("destination machine empty")
        if not moved_by:
            raise InvalidInput("moved_by empty")
        duration = _validate_duration(new_duration)
        if new_start is not None:
            if not isinstance(new_start, datetime):
                raise InvalidInput(f"start must be a datetime, got {new_start!r}")
            # Jobs are scheduled in naive plant time
            if new_start.tzinfo is not None:
                raise InvalidInput(f"start must not carry a timezone, got {new_start.isoformat()}")
        if new_priority is not None:
            try:
                new_priority = int(new_priority)
            except (TypeError, ValueError):
                raise InvalidInput(f"priority must be an integer, got {new_priority!r}") from None

        if not self.registry.is_registered(dept, to_machine):
            if self.strict_registry:
                raise InvalidInput(f"machine {to_machine!r} is not configured for {dept.value}")
            logger.warning("Moving %s/%s to unregistered machine %r", dept.value, po, to_machine)

        with self.store.job_lock(dept, po):
            with self.store.transaction(dept) as session:
                job = session.get_job(po)
                if job is None:
                    raise NotFound(f"job with process order {po} not found in {dept.value}")

                moved_at = self.clock()
                moved = replace(
                    job,
                    machine=to_machine,
                    duration_hours=duration,
                    start_datetime=new_start if new_start is not None else job.start_datetime,
                    priority=new_priority if new_priority is not None else job.priority,
                    manual_override=True,
                    override_reason=reason,
                    moved_by=moved_by,
                    moved_at=moved_at,
                )
                session.upsert_jobs([moved])
                session.record_move(before=job, after=moved, moved_by=moved_by, moved_at=moved_at, reason=reason)
                session.log_audit(
                    "CAPACITY_MOVE",
                    f"{dept.value}: {po} moved {job.machine} -> {to_machine}",
                    f"by={moved_by} duration={job.duration_hours}->{duration} reason={reason or ''}",
                )

        logger.info("%s: job %s moved %s -> %s by %s", dept.value, po, job.machine, to_machine, moved_by)
        return moved

    def release_override(self, department: Department | str, process_order: str, *, released_by: str) -> Job:
        """Hand a moved job back to the uploads; scheduling fields stay as moved until the next one."""
        dept = normalize_department(department)
        po = str(process_order or "").strip()
        with self.store.job_lock(dept, po):
            with self.store.transaction(dept) as session:
                job = session.get_job(po)
                if job is None:
                    raise NotFound(f"job with process order {po} not found in {dept.value}")
                if not job.manual_override:
                    return job
                released = replace(job, manual_override=False, override_reason=None)
                session.upsert_jobs([released])
                session.log_audit("CAPACITY_MOVE", f"{dept.value}: {po} override released", f"by={released_by}")
        logger.info("%s: override on %s released by %s", dept.value, po, released_by)
        return released

    def get_move_history(self, department: Department | str, process_order: str) -> list[MoveRecord]:
        dept = normalize_department(department)
        if self.store.get_job(dept, process_order) is None:
            raise NotFound(f"job with process order {process_order} not found in {dept.value}")
        return self.store.get_move_history(dept, process_order)
