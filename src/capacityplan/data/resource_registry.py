from __future__ import annotations

import logging
import math
from typing import Iterable

from capacityplan.core.errors import InvalidInput
from capacityplan.core.models import Department, Machine, normalize_department
from capacityplan.data.db import Db

logger = logging.getLogger(__name__)

DEFAULT_WORKING_HOURS_PER_DAY = 24.0


def _row_to_machine(r) -> Machine:
    return Machine(
        name=str(r["resource_name"]),
        department=Department(r["department"]),
        is_active=bool(int(r["is_active"] if r["is_active"] is not None else 1)),
        working_hours_per_day=float(r["working_hours_per_day"]),
        sort_order=(int(r["sort_order"]) if r["sort_order"] is not None else None),
    )


class ResourceRegistry:
    """Configured machines per department.

    Used for aggregation completeness (idle machines still show up) and as
    advisory validation of move destinations.
    """

    def __init__(self, db: Db, *, default_working_hours: float = DEFAULT_WORKING_HOURS_PER_DAY) -> None:
        self.db = db
        self.default_working_hours = float(default_working_hours)

    def list_machines(self, department: Department | str, *, include_inactive: bool = False) -> list[Machine]:
        dept = normalize_department(department)
        with self.db.read() as con:
            return self.list_machines_in(con, dept, include_inactive=include_inactive)

    @staticmethod
    def list_machines_in(con, dept: Department, *, include_inactive: bool = False) -> list[Machine]:
        sql = """
            SELECT department, resource_name, working_hours_per_day, sort_order, is_active
            FROM resource_configuration
            WHERE department = ?
        """
        if not include_inactive:
            sql += " AND COALESCE(is_active, 1) = 1"
        sql += " ORDER BY COALESCE(sort_order, 9999), resource_name"
        rows = con.execute(sql, (dept.value,)).fetchall()
        return [_row_to_machine(r) for r in rows]

    def get_machine(self, department: Department | str, name: str) -> Machine | None:
        dept = normalize_department(department)
        with self.db.read() as con:
            r = con.execute(
                """
                SELECT department, resource_name, working_hours_per_day, sort_order, is_active
                FROM resource_configuration
                WHERE department = ? AND resource_name = ?
                """,
                (dept.value, str(name).strip()),
            ).fetchone()
        return _row_to_machine(r) if r is not None else None

    def is_registered(self, department: Department | str, name: str) -> bool:
        m = self.get_machine(department, name)
        return m is not None and m.is_active

    def get_working_hours(self, department: Department | str, name: str) -> float:
        m = self.get_machine(department, name)
        return m.working_hours_per_day if m is not None else self.default_working_hours

    def upsert_machine(
        self,
        department: Department | str,
        name: str,
        *,
        working_hours_per_day: float | None = None,
        sort_order: int | None = None,
        is_active: bool = True,
    ) -> Machine:
        dept = normalize_department(department)
        name = str(name or "").strip()
        if not name:
            raise InvalidInput("machine name empty")
        hours = self.default_working_hours if working_hours_per_day is None else float(working_hours_per_day)
        if math.isnan(hours) or hours <= 0 or hours > 24:
            raise InvalidInput(f"working_hours_per_day must be in (0, 24], got {working_hours_per_day!r}")

        with self.db.connect() as con:
            con.execute(
                """
                INSERT INTO resource_configuration (department, resource_name, working_hours_per_day, sort_order, is_active)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(department, resource_name) DO UPDATE SET
                    working_hours_per_day = excluded.working_hours_per_day,
                    sort_order = excluded.sort_order,
                    is_active = excluded.is_active,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (dept.value, name, hours, sort_order, 1 if is_active else 0),
            )
        logger.info("Registered machine %s/%s (%.1f h/day)", dept.value, name, hours)
        return Machine(name=name, department=dept, is_active=is_active, working_hours_per_day=hours, sort_order=sort_order)

    def delete_machine(self, department: Department | str, name: str) -> bool:
        dept = normalize_department(department)
        with self.db.connect() as con:
            n = con.execute(
                "DELETE FROM resource_configuration WHERE department = ? AND resource_name = ?",
                (dept.value, str(name).strip()),
            ).rowcount
        return n > 0

    def register_missing(self, department: Department | str, names: Iterable[str]) -> list[str]:
        """Register machines seen in an upload that the registry does not know yet.

        Existing entries (including inactive ones) are left untouched.
        """
        dept = normalize_department(department)
        wanted = sorted({str(n).strip() for n in names if str(n or "").strip()})
        if not wanted:
            return []
        with self.db.connect() as con:
            known = {
                str(r[0])
                for r in con.execute(
                    "SELECT resource_name FROM resource_configuration WHERE department = ?",
                    (dept.value,),
                ).fetchall()
            }
            new = [n for n in wanted if n not in known]
            con.executemany(
                """
                INSERT OR IGNORE INTO resource_configuration (department, resource_name, working_hours_per_day)
                VALUES (?, ?, ?)
                """,
                [(dept.value, n, self.default_working_hours) for n in new],
            )
        if new:
            logger.info("Registered %d new machines for %s: %s", len(new), dept.value, ", ".join(new))
        return new
