from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Mapping

from capacityplan.core.errors import CapacityError
from capacityplan.core.models import Department, JobRow, MergeResult, OrphanPolicy, RowIssue, normalize_department

if TYPE_CHECKING:
    from capacityplan.core.reconcile import ReconciliationEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DepartmentUpload:
    rows: list[JobRow]
    file_name: str
    issues: list[RowIssue] = field(default_factory=list)


@dataclass
class UploadSummary:
    results: dict[Department, MergeResult] = field(default_factory=dict)
    failures: dict[Department, Exception] = field(default_factory=dict)

    @property
    def added(self) -> int:
        return sum(r.added for r in self.results.values())

    @property
    def removed(self) -> int:
        return sum(r.removed for r in self.results.values())

    @property
    def preserved(self) -> int:
        return sum(r.preserved for r in self.results.values())

    @property
    def skipped(self) -> int:
        return sum(r.skipped for r in self.results.values())

    @property
    def ok(self) -> bool:
        return not self.failures

    def message(self) -> str:
        msg = f"{self.added} added, {self.removed} removed, {self.preserved} manual moves preserved"
        if self.skipped:
            msg += f", {self.skipped} rows skipped"
        if self.failures:
            failed = ", ".join(f"{d.value} ({exc})" for d, exc in self.failures.items())
            msg += f"; failed: {failed}"
        return msg


class UploadOrchestrator:
    """Runs one reconciliation per department concurrently.

    Departments never share keys, so each gets its own worker thread and its
    own transaction; a failing department does not stop the others.
    """

    def __init__(self, engine: ReconciliationEngine):
        self.engine = engine

    async def reconcile_uploads(
        self,
        uploads: Mapping[Department | str, DepartmentUpload],
        *,
        uploaded_by: str,
        orphan_policy: OrphanPolicy | str | None = None,
    ) -> UploadSummary:
        depts = [normalize_department(d) for d in uploads]
        if len(set(depts)) != len(depts):
            raise ValueError("each department may appear only once per upload")
        items = list(zip(depts, uploads.values()))

        # Reconciliation blocks on SQLite; keep the event loop free.
        outcomes = await asyncio.gather(
            *(
                asyncio.to_thread(
                    self.engine.reconcile,
                    dept,
                    up.rows,
                    uploaded_by=uploaded_by,
                    source_file_name=up.file_name,
                    orphan_policy=orphan_policy,
                    extra_issues=up.issues,
                )
                for dept, up in items
            ),
            return_exceptions=True,
        )

        summary = UploadSummary()
        for (dept, up), outcome in zip(items, outcomes):
            if isinstance(outcome, CapacityError):
                logger.error("%s: reconciliation of %s failed: %s", dept.value, up.file_name, outcome)
                summary.failures[dept] = outcome
            elif isinstance(outcome, Exception):
                logger.error("%s: reconciliation of %s crashed", dept.value, up.file_name, exc_info=outcome)
                summary.failures[dept] = outcome
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                summary.results[dept] = outcome
        logger.info("Upload by %s: %s", uploaded_by, summary.message())
        return summary

    def reconcile_uploads_sync(
        self,
        uploads: Mapping[Department | str, DepartmentUpload],
        *,
        uploaded_by: str,
        orphan_policy: OrphanPolicy | str | None = None,
    ) -> UploadSummary:
        return asyncio.run(self.reconcile_uploads(uploads, uploaded_by=uploaded_by, orphan_policy=orphan_policy))


def uploads_from_rows(rows_by_department: Mapping[Department | str, Iterable[JobRow]], *, file_name: str) -> dict[Department, DepartmentUpload]:
    """Wrap already-typed rows (one file for all departments) as uploads."""
    return {
        normalize_department(d): DepartmentUpload(rows=list(rows), file_name=file_name)
        for d, rows in rows_by_department.items()
    }
