from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum

from capacityplan.core.errors import InvalidInput


class Department(str, Enum):
    MILLING = "milling"
    TURNING = "turning"
    SLIDING_HEAD = "sliding_head"
    MISC = "misc"

    @property
    def label(self) -> str:
        return _DEPARTMENT_LABELS[self]


_DEPARTMENT_LABELS = {
    Department.MILLING: "Milling",
    Department.TURNING: "Turning",
    Department.SLIDING_HEAD: "Sliding Heads",
    Department.MISC: "Misc",
}

_DEPARTMENT_ALIASES = {
    "sliding-head": "sliding_head",
    "sliding head": "sliding_head",
    "sliding heads": "sliding_head",
    "sliding_heads": "sliding_head",
    "slidinghead": "sliding_head",
    "miscellaneous": "misc",
}


def normalize_department(value: Department | str | None) -> Department:
    """Map free-form department input to the canonical enum member."""
    if isinstance(value, Department):
        return value
    d = str(value or "").strip().lower()
    d = _DEPARTMENT_ALIASES.get(d, d)
    try:
        return Department(d)
    except ValueError:
        raise InvalidInput(f"department not supported: {value!r}") from None


class OrphanPolicy(str, Enum):
    """What reconciliation does with jobs that vanished from an upload."""

    REMOVE = "remove"
    RETAIN_MANUAL = "retain_manual"

    @classmethod
    def parse(cls, value: OrphanPolicy | str | None) -> OrphanPolicy:
        if isinstance(value, OrphanPolicy):
            return value
        p = str(value or cls.REMOVE.value).strip().lower().replace("-", "_")
        try:
            return cls(p)
        except ValueError:
            raise InvalidInput(f"orphan policy not supported: {value!r}") from None


# Fields a manual override protects from being overwritten by an upload.
SCHEDULING_FIELDS = ("machine", "start_datetime", "duration_hours", "priority")

# Fields that always follow the latest upload.
DESCRIPTIVE_FIELDS = (
    "end_product",
    "production_order",
    "operation_no",
    "item_name",
    "customer",
    "qty",
    "days_from_today",
    "status",
    "comments",
)


@dataclass(frozen=True)
class JobRow:
    """One job as produced by the schedule row source."""

    process_order: str
    machine: str
    start_datetime: datetime | None
    duration_hours: float
    priority: int = 0
    end_product: str | None = None
    production_order: str | None = None
    operation_no: str | None = None
    item_name: str | None = None
    customer: str | None = None
    qty: int = 0
    days_from_today: int = 0
    status: str | None = None
    comments: str | None = None

    # Spreadsheet row number (1-based) for issue reporting
    source_row: int | None = None


@dataclass(frozen=True)
class Job:
    job_id: str
    department: Department
    process_order: str
    machine: str
    start_datetime: datetime
    duration_hours: float
    priority: int = 0

    # Descriptive info (refreshed by every upload)
    end_product: str | None = None
    production_order: str | None = None
    operation_no: str | None = None
    item_name: str | None = None
    customer: str | None = None
    qty: int = 0
    days_from_today: int = 0
    status: str | None = None
    comments: str | None = None

    # Values last supplied by an upload, kept even after a manual move
    original_machine: str | None = None
    original_duration_hours: float | None = None

    # Manual override / provenance
    manual_override: bool = False
    override_reason: str | None = None
    moved_by: str | None = None
    moved_at: datetime | None = None
    uploaded_by: str | None = None
    uploaded_at: datetime | None = None

    @property
    def end_datetime(self) -> datetime:
        return self.start_datetime + timedelta(hours=self.duration_hours)


@dataclass(frozen=True)
class Machine:
    name: str
    department: Department
    is_active: bool = True
    working_hours_per_day: float = 24.0
    sort_order: int | None = None


@dataclass(frozen=True)
class GanttSegment:
    machine: str
    process_order: str
    start: datetime
    end: datetime
    priority: int = 0
    label: str = ""
    qty: int = 0
    manual_override: bool = False

    @property
    def duration_hours(self) -> float:
        return (self.end - self.start).total_seconds() / 3600.0


@dataclass(frozen=True)
class MachineSummary:
    machine: str
    registered: bool
    total_hours: float
    job_count: int
    next_free: datetime | None
    hours_per_day: dict[str, float] = field(default_factory=dict)
    hours_per_week: dict[str, float] = field(default_factory=dict)
    utilization_pct: float = 0.0
    working_hours_per_day: float = 24.0


@dataclass(frozen=True)
class CapacitySnapshot:
    department: Department
    machines: list[MachineSummary]
    jobs: list[Job]
    segments: list[GanttSegment]
    file_name: str | None = None
    uploaded_at: datetime | None = None
    uploaded_by: str | None = None
    generated_at: datetime | None = None

    @property
    def total_hours(self) -> float:
        return sum(m.total_hours for m in self.machines)

    def machine(self, name: str) -> MachineSummary | None:
        for m in self.machines:
            if m.machine == name:
                return m
        return None

    def bottlenecks(self) -> list[MachineSummary]:
        """Machines by scheduled load, heaviest first."""
        return sorted(self.machines, key=lambda m: (-m.total_hours, m.machine))


@dataclass(frozen=True)
class RowIssue:
    process_order: str | None
    reason: str
    source_row: int | None = None

    def describe(self) -> str:
        where = f"row {self.source_row}" if self.source_row is not None else "row ?"
        po = self.process_order or "(no process order)"
        return f"{where} {po}: {self.reason}"


@dataclass
class MergeResult:
    department: Department
    added: int = 0
    removed: int = 0
    preserved: int = 0
    refreshed: int = 0
    retained: int = 0
    skipped: int = 0
    issues: list[RowIssue] = field(default_factory=list)

    def summary(self) -> str:
        return f"{self.added} added, {self.removed} removed, {self.preserved} manual moves preserved"


@dataclass(frozen=True)
class MoveRecord:
    id: int
    job_id: str
    from_machine: str
    to_machine: str
    old_duration_hours: float
    new_duration_hours: float
    old_start_datetime: datetime | None
    new_start_datetime: datetime | None
    old_priority: int | None
    new_priority: int | None
    moved_by: str
    moved_at: datetime
    reason: str | None = None


@dataclass(frozen=True)
class UploadRecord:
    department: Department
    file_name: str
    uploaded_by: str
    uploaded_at: datetime
    added: int = 0
    removed: int = 0
    preserved: int = 0
    skipped: int = 0


@dataclass
class AuditEntry:
    id: int
    timestamp: str
    category: str
    message: str
    details: str | None = None


def week_start(d: date) -> date:
    """Monday of the week containing ``d``."""
    return d - timedelta(days=d.weekday())
