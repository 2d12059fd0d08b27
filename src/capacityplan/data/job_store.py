"""SQLite-backed job store.

Jobs are keyed by ``(department, process_order)``. All writes for one
department go through :meth:`JobStore.transaction`, which hands out a
:class:`JobStoreSession` bound to a single immediate transaction so that a
reconciliation or a move is committed or rolled back as one unit.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator

from capacityplan.core.models import (
    Department,
    Job,
    MoveRecord,
    UploadRecord,
    normalize_department,
)
from capacityplan.data.db import Db

logger = logging.getLogger(__name__)

_JOB_COLUMNS = (
    "job_id",
    "department",
    "process_order",
    "machine",
    "start_datetime",
    "duration_hours",
    "priority",
    "end_product",
    "production_order",
    "operation_no",
    "item_name",
    "customer",
    "qty",
    "days_from_today",
    "status",
    "comments",
    "original_machine",
    "original_duration_hours",
    "manual_override",
    "override_reason",
    "moved_by",
    "moved_at",
    "uploaded_by",
    "uploaded_at",
)

_UPSERT_SQL = """
INSERT INTO production_job ({cols}, updated_at)
VALUES ({marks}, CURRENT_TIMESTAMP)
ON CONFLICT(department, process_order) DO UPDATE SET
    {updates},
    updated_at = CURRENT_TIMESTAMP
""".format(
    cols=", ".join(_JOB_COLUMNS),
    marks=", ".join("?" for _ in _JOB_COLUMNS),
    updates=",\n    ".join(f"{c} = excluded.{c}" for c in _JOB_COLUMNS if c not in {"job_id", "department", "process_order"}),
)


def _dt_to_db(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt_from_db(value) -> datetime | None:
    if value is None or value == "":
        return None
    return datetime.fromisoformat(str(value))


def _row_to_job(r: sqlite3.Row) -> Job:
    return Job(
        job_id=str(r["job_id"]),
        department=Department(r["department"]),
        process_order=str(r["process_order"]),
        machine=str(r["machine"]),
        start_datetime=datetime.fromisoformat(str(r["start_datetime"])),
        duration_hours=float(r["duration_hours"]),
        priority=int(r["priority"] or 0),
        end_product=r["end_product"],
        production_order=r["production_order"],
        operation_no=r["operation_no"],
        item_name=r["item_name"],
        customer=r["customer"],
        qty=int(r["qty"] or 0),
        days_from_today=int(r["days_from_today"] or 0),
        status=r["status"],
        comments=r["comments"],
        original_machine=r["original_machine"],
        original_duration_hours=(float(r["original_duration_hours"]) if r["original_duration_hours"] is not None else None),
        manual_override=bool(int(r["manual_override"] or 0)),
        override_reason=r["override_reason"],
        moved_by=r["moved_by"],
        moved_at=_dt_from_db(r["moved_at"]),
        uploaded_by=r["uploaded_by"],
        uploaded_at=_dt_from_db(r["uploaded_at"]),
    )


def _job_params(job: Job) -> tuple:
    return (
        job.job_id,
        job.department.value,
        job.process_order,
        job.machine,
        _dt_to_db(job.start_datetime),
        float(job.duration_hours),
        int(job.priority),
        job.end_product,
        job.production_order,
        job.operation_no,
        job.item_name,
        job.customer,
        int(job.qty),
        int(job.days_from_today),
        job.status,
        job.comments,
        job.original_machine,
        job.original_duration_hours,
        1 if job.manual_override else 0,
        job.override_reason,
        job.moved_by,
        _dt_to_db(job.moved_at),
        job.uploaded_by,
        _dt_to_db(job.uploaded_at),
    )


def _row_to_upload(r: sqlite3.Row) -> UploadRecord:
    return UploadRecord(
        department=Department(r["department"]),
        file_name=str(r["file_name"]),
        uploaded_by=str(r["uploaded_by"]),
        uploaded_at=datetime.fromisoformat(str(r["uploaded_at"])),
        added=int(r["added"]),
        removed=int(r["removed"]),
        preserved=int(r["preserved"]),
        skipped=int(r["skipped"]),
    )


def _row_to_move(r: sqlite3.Row) -> MoveRecord:
    return MoveRecord(
        id=int(r["id"]),
        job_id=str(r["job_id"]),
        from_machine=str(r["from_machine"]),
        to_machine=str(r["to_machine"]),
        old_duration_hours=float(r["old_duration_hours"]),
        new_duration_hours=float(r["new_duration_hours"]),
        old_start_datetime=_dt_from_db(r["old_start_datetime"]),
        new_start_datetime=_dt_from_db(r["new_start_datetime"]),
        old_priority=r["old_priority"],
        new_priority=r["new_priority"],
        moved_by=str(r["moved_by"]),
        moved_at=datetime.fromisoformat(str(r["moved_at"])),
        reason=r["reason"],
    )


class _KeyedLocks:
    """One lock per key, created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple, threading.Lock] = {}

    def get(self, key: tuple) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


class JobStoreSession:
    """Department-scoped view over one open write transaction."""

    def __init__(self, con: sqlite3.Connection, department: Department) -> None:
        self.con = con
        self.department = department

    def list_jobs(self) -> list[Job]:
        rows = self.con.execute(
            "SELECT * FROM production_job WHERE department = ? ORDER BY process_order",
            (self.department.value,),
        ).fetchall()
        return [_row_to_job(r) for r in rows]

    def get_job(self, process_order: str) -> Job | None:
        r = self.con.execute(
            "SELECT * FROM production_job WHERE department = ? AND process_order = ?",
            (self.department.value, str(process_order)),
        ).fetchone()
        return _row_to_job(r) if r is not None else None

    def upsert_jobs(self, jobs: Iterable[Job]) -> int:
        params = []
        for job in jobs:
            if job.department != self.department:
                raise ValueError(f"job {job.process_order} belongs to {job.department.value}, not {self.department.value}")
            params.append(_job_params(job))
        if params:
            self.con.executemany(_UPSERT_SQL, params)
        return len(params)

    def delete_jobs(self, process_orders: Iterable[str]) -> int:
        keys = [(self.department.value, str(po)) for po in process_orders]
        if keys:
            self.con.executemany(
                "DELETE FROM production_job WHERE department = ? AND process_order = ?",
                keys,
            )
        return len(keys)

    def record_move(
        self,
        *,
        before: Job,
        after: Job,
        moved_by: str,
        moved_at: datetime,
        reason: str | None,
    ) -> None:
        self.con.execute(
            """
            INSERT INTO job_move_history (
                job_id, from_machine, to_machine,
                old_duration_hours, new_duration_hours,
                old_start_datetime, new_start_datetime,
                old_priority, new_priority,
                moved_by, moved_at, reason
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                before.job_id,
                before.machine,
                after.machine,
                before.duration_hours,
                after.duration_hours,
                _dt_to_db(before.start_datetime),
                _dt_to_db(after.start_datetime),
                before.priority,
                after.priority,
                moved_by,
                _dt_to_db(moved_at),
                reason,
            ),
        )

    def record_upload(self, record: UploadRecord) -> None:
        self.con.execute(
            """
            INSERT INTO capacity_upload (department, file_name, uploaded_by, uploaded_at, added, removed, preserved, skipped)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(department) DO UPDATE SET
                file_name = excluded.file_name,
                uploaded_by = excluded.uploaded_by,
                uploaded_at = excluded.uploaded_at,
                added = excluded.added,
                removed = excluded.removed,
                preserved = excluded.preserved,
                skipped = excluded.skipped
            """,
            (
                record.department.value,
                record.file_name,
                record.uploaded_by,
                _dt_to_db(record.uploaded_at),
                record.added,
                record.removed,
                record.preserved,
                record.skipped,
            ),
        )

    def log_audit(self, category: str, message: str, details: str | None = None) -> None:
        """Audit entry committed (or rolled back) together with the change it describes."""
        self.con.execute(
            "INSERT INTO audit_log (category, message, details) VALUES (?, ?, ?)",
            (category, message, details),
        )


class JobStore:
    def __init__(self, db: Db) -> None:
        self.db = db
        self._department_locks = _KeyedLocks()
        self._job_locks = _KeyedLocks()

    @contextmanager
    def transaction(self, department: Department | str) -> Iterator[JobStoreSession]:
        """Exclusive, all-or-nothing write unit for one department."""
        dept = normalize_department(department)
        with self._department_locks.get((dept.value,)):
            with self.db.transaction() as con:
                yield JobStoreSession(con, dept)

    @contextmanager
    def job_lock(self, department: Department | str, process_order: str) -> Iterator[None]:
        """Serialize writers of a single job (e.g. two planners moving it)."""
        dept = normalize_department(department)
        with self._job_locks.get((dept.value, str(process_order))):
            yield

    # ---------- Reads ----------

    def list_jobs(self, department: Department | str) -> list[Job]:
        dept = normalize_department(department)
        with self.db.read() as con:
            return JobStoreSession(con, dept).list_jobs()

    def get_job(self, department: Department | str, process_order: str) -> Job | None:
        dept = normalize_department(department)
        with self.db.read() as con:
            return JobStoreSession(con, dept).get_job(process_order)

    def list_job_machines(self, department: Department | str) -> list[str]:
        dept = normalize_department(department)
        with self.db.read() as con:
            rows = con.execute(
                "SELECT DISTINCT machine FROM production_job WHERE department = ? ORDER BY machine",
                (dept.value,),
            ).fetchall()
        return [str(r[0]) for r in rows]

    def count_jobs(self, department: Department | str | None = None) -> int:
        with self.db.read() as con:
            if department is None:
                return int(con.execute("SELECT COUNT(*) FROM production_job").fetchone()[0])
            dept = normalize_department(department)
            return int(
                con.execute("SELECT COUNT(*) FROM production_job WHERE department = ?", (dept.value,)).fetchone()[0]
            )

    @staticmethod
    def list_jobs_in(con: sqlite3.Connection, department: Department) -> list[Job]:
        """Jobs of a department on a caller-owned connection (snapshot reads)."""
        return JobStoreSession(con, department).list_jobs()

    @staticmethod
    def get_upload_record_in(con: sqlite3.Connection, department: Department) -> UploadRecord | None:
        r = con.execute("SELECT * FROM capacity_upload WHERE department = ?", (department.value,)).fetchone()
        return _row_to_upload(r) if r is not None else None

    def get_upload_record(self, department: Department | str) -> UploadRecord | None:
        dept = normalize_department(department)
        with self.db.read() as con:
            return self.get_upload_record_in(con, dept)

    def get_move_history(self, department: Department | str, process_order: str) -> list[MoveRecord]:
        dept = normalize_department(department)
        with self.db.read() as con:
            rows = con.execute(
                """
                SELECT h.*
                FROM job_move_history h
                JOIN production_job j ON j.job_id = h.job_id
                WHERE j.department = ? AND j.process_order = ?
                ORDER BY h.id
                """,
                (dept.value, str(process_order)),
            ).fetchall()
        return [_row_to_move(r) for r in rows]

    # ---------- Maintenance ----------

    def clear_department(self, department: Department | str) -> int:
        """Delete every job, move record and upload record of a department."""
        with self.transaction(department) as session:
            dept = session.department.value
            session.con.execute(
                "DELETE FROM job_move_history WHERE job_id IN (SELECT job_id FROM production_job WHERE department = ?)",
                (dept,),
            )
            n = session.con.execute("DELETE FROM production_job WHERE department = ?", (dept,)).rowcount
            session.con.execute("DELETE FROM capacity_upload WHERE department = ?", (dept,))
            session.log_audit("CAPACITY", f"Cleared {dept}", f"{n} jobs deleted")
        logger.info("Cleared %d jobs from %s", n, dept)
        return int(n)


