from __future__ import annotations

import logging
from datetime import datetime

from capacityplan.core.capacity import CapacityAggregator
from capacityplan.core.errors import InvalidInput
from capacityplan.core.models import (
    AuditEntry,
    CapacitySnapshot,
    Department,
    Job,
    JobRow,
    Machine,
    MergeResult,
    MoveRecord,
    OrphanPolicy,
    UploadRecord,
    normalize_department,
)
from capacityplan.core.moves import MoveEngine
from capacityplan.core.orchestrator import DepartmentUpload, UploadOrchestrator, UploadSummary
from capacityplan.core.reconcile import ReconciliationEngine, utcnow
from capacityplan.data.db import Db
from capacityplan.data.job_store import JobStore
from capacityplan.data.resource_registry import ResourceRegistry
from capacityplan.data.schedule_parser import ParsedSchedule, parse_schedule_bytes
from capacityplan.settings import (
    CONFIG_DEFAULT_WORKING_HOURS,
    CONFIG_DEFAULTS,
    CONFIG_ORPHAN_POLICY,
    CONFIG_STRICT_MACHINE_REGISTRY,
)

logger = logging.getLogger(__name__)


class Repository:
    """Entry point for callers: wires storage, registry, engines and config."""

    def __init__(self, db: Db, *, clock=utcnow):
        self.db = db
        self.store = JobStore(db)
        self.registry = ResourceRegistry(db, default_working_hours=self._default_working_hours())
        self.reconciler = ReconciliationEngine(self.store, orphan_policy=self._orphan_policy, clock=clock)
        self.aggregator = CapacityAggregator(self.store, self.registry, clock=clock)
        self.mover = MoveEngine(self.store, self.registry, strict_registry=self._strict_registry, clock=clock)
        self.orchestrator = UploadOrchestrator(self.reconciler)

    # ---------- Audit & Config ----------

    def log_audit(self, category: str, message: str, details: str | None = None) -> None:
        """Record a business event in the audit log."""
        try:
            with self.db.connect() as con:
                con.execute(
                    "INSERT INTO audit_log (category, message, details) VALUES (?, ?, ?)",
                    (category, message, details),
                )
        except Exception:
            logger.exception("Failed to write audit log")

    def get_recent_audit_entries(self, limit: int = 100) -> list[AuditEntry]:
        with self.db.connect() as con:
            rows = con.execute("SELECT * FROM audit_log ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
            return [
                AuditEntry(
                    id=row["id"],
                    timestamp=row["timestamp"],
                    category=row["category"],
                    message=row["message"],
                    details=row["details"],
                )
                for row in rows
            ]

    def get_config(self, *, key: str, default: str | None = None) -> str | None:
        key = str(key).strip()
        if not key:
            raise ValueError("config key empty")
        with self.db.connect() as con:
            row = con.execute("SELECT config_value FROM app_config WHERE config_key = ?", (key,)).fetchone()
        if row is None:
            return default if default is not None else CONFIG_DEFAULTS.get(key)
        return str(row[0])

    def set_config(self, *, key: str, value: str) -> None:
        key = str(key).strip()
        if not key:
            raise ValueError("config key empty")
        value = str(value).strip()

        if key == CONFIG_ORPHAN_POLICY:
            value = OrphanPolicy.parse(value).value
        elif key == CONFIG_STRICT_MACHINE_REGISTRY:
            if value.lower() not in {"0", "1", "true", "false", "yes", "no"}:
                raise InvalidInput(f"{key} must be a boolean, got {value!r}")
        elif key == CONFIG_DEFAULT_WORKING_HOURS:
            try:
                hours = float(value)
            except ValueError:
                raise InvalidInput(f"{key} must be a number, got {value!r}") from None
            if not 0 < hours <= 24:
                raise InvalidInput(f"{key} must be in (0, 24], got {value!r}")

        old_val = self.get_config(key=key) or "(none)"
        with self.db.connect() as con:
            con.execute(
                """
                INSERT INTO app_config (config_key, config_value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(config_key) DO UPDATE SET
                    config_value = excluded.config_value,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )
        self.log_audit("CONFIG", f"Updated '{key}'", f"From '{old_val}' to '{value}'")

        if key == CONFIG_DEFAULT_WORKING_HOURS:
            self.registry.default_working_hours = float(value)

    def _orphan_policy(self) -> OrphanPolicy:
        return OrphanPolicy.parse(self.get_config(key=CONFIG_ORPHAN_POLICY))

    def _strict_registry(self) -> bool:
        raw = str(self.get_config(key=CONFIG_STRICT_MACHINE_REGISTRY) or "0").strip().lower()
        return raw in {"1", "true", "yes"}

    def _default_working_hours(self) -> float:
        try:
            return float(self.get_config(key=CONFIG_DEFAULT_WORKING_HOURS) or 24)
        except ValueError:
            logger.warning("Invalid %s in config, using 24", CONFIG_DEFAULT_WORKING_HOURS)
            return 24.0

    # ---------- Uploads ----------

    def parse_schedule(self, *, content: bytes, file_name: str) -> ParsedSchedule:
        return parse_schedule_bytes(content, file_name=file_name)

    def reconcile(
        self,
        department: Department | str,
        rows: list[JobRow],
        *,
        uploaded_by: str,
        source_file_name: str,
        orphan_policy: OrphanPolicy | str | None = None,
    ) -> MergeResult:
        return self.reconciler.reconcile(
            department,
            rows,
            uploaded_by=uploaded_by,
            source_file_name=source_file_name,
            orphan_policy=orphan_policy,
        )

    def import_schedule_bytes(
        self,
        department: Department | str,
        *,
        content: bytes,
        file_name: str,
        uploaded_by: str,
        register_machines: bool = True,
    ) -> MergeResult:
        """Parse one department's workbook and reconcile it."""
        dept = normalize_department(department)
        parsed = self.parse_schedule(content=content, file_name=file_name)
        if register_machines:
            self.registry.register_missing(dept, parsed.machines)
        return self.reconciler.reconcile(
            dept,
            parsed.rows,
            uploaded_by=uploaded_by,
            source_file_name=file_name,
            extra_issues=parsed.issues,
        )

    async def import_schedules(
        self,
        files: dict[Department | str, tuple[str, bytes]],
        *,
        uploaded_by: str,
        register_machines: bool = True,
    ) -> UploadSummary:
        """Parse and reconcile several departments' workbooks concurrently.

        ``files`` maps department -> (file name, workbook bytes). A workbook
        that cannot be parsed fails only its own department.
        """
        uploads: dict[Department, DepartmentUpload] = {}
        parse_failures: dict[Department, Exception] = {}
        for d, (file_name, content) in files.items():
            dept = normalize_department(d)
            try:
                parsed = self.parse_schedule(content=content, file_name=file_name)
            except InvalidInput as exc:
                logger.error("%s: %s", dept.value, exc)
                parse_failures[dept] = exc
                continue
            if register_machines:
                self.registry.register_missing(dept, parsed.machines)
            uploads[dept] = DepartmentUpload(rows=parsed.rows, file_name=file_name, issues=parsed.issues)

        summary = await self.orchestrator.reconcile_uploads(uploads, uploaded_by=uploaded_by)
        summary.failures.update(parse_failures)
        return summary

    # ---------- Capacity ----------

    def get_capacity_snapshot(self, department: Department | str) -> CapacitySnapshot:
        return self.aggregator.get_capacity_snapshot(department)

    def get_upload_record(self, department: Department | str) -> UploadRecord | None:
        return self.store.get_upload_record(department)

    # ---------- Jobs ----------

    def find_job(self, department: Department | str, process_order: str) -> Job | None:
        return self.store.get_job(department, process_order)

    def list_jobs(self, department: Department | str) -> list[Job]:
        return self.store.list_jobs(department)

    def list_job_machines(self, department: Department | str) -> list[str]:
        return self.store.list_job_machines(department)

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
        return self.mover.move_job(
            department,
            process_order,
            to_machine=to_machine,
            new_duration=new_duration,
            new_start=new_start,
            new_priority=new_priority,
            moved_by=moved_by,
            reason=reason,
        )

    def release_override(self, department: Department | str, process_order: str, *, released_by: str) -> Job:
        return self.mover.release_override(department, process_order, released_by=released_by)

    def get_move_history(self, department: Department | str, process_order: str) -> list[MoveRecord]:
        return self.mover.get_move_history(department, process_order)

    def clear_department(self, department: Department | str) -> int:
        return self.store.clear_department(department)

    def clear_all(self) -> int:
        return sum(self.store.clear_department(d) for d in Department)

    # ---------- Machines ----------

    def list_machines(self, department: Department | str, *, include_inactive: bool = False) -> list[Machine]:
        return self.registry.list_machines(department, include_inactive=include_inactive)

    def upsert_machine(
        self,
        department: Department | str,
        name: str,
        *,
        working_hours_per_day: float | None = None,
        sort_order: int | None = None,
        is_active: bool = True,
    ) -> Machine:
        machine = self.registry.upsert_machine(
            department,
            name,
            working_hours_per_day=working_hours_per_day,
            sort_order=sort_order,
            is_active=is_active,
        )
        self.log_audit(
            "MACHINE",
            f"Saved {machine.department.value}/{machine.name}",
            f"hours/day={machine.working_hours_per_day} active={machine.is_active}",
        )
        return machine

    def delete_machine(self, department: Department | str, name: str) -> bool:
        deleted = self.registry.delete_machine(department, name)
        if deleted:
            self.log_audit("MACHINE", f"Deleted {normalize_department(department).value}/{name}")
        return deleted
