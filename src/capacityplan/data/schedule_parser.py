"""Schedule row source for the hierarchical capacity spreadsheet.

The planner export is laid out machine by machine::

    DMU 65                          <- resource row (machine name)
    Process Order | Production Order | ... | Start Date | Time | ...   <- header row
    100234        | 5501             | ... | 02/01/2024 | 4.5  | ...   <- job rows
    ...
    Mazak VTC                       <- next resource row
    Process Order | ...

Header rows may repeat under every machine and their column order may differ,
so the header map is rebuilt each time one is seen.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from capacityplan.core.errors import InvalidInput
from capacityplan.core.models import JobRow, RowIssue
from capacityplan.data.excel_io import (
    clean_str,
    coerce_datetime,
    coerce_float,
    coerce_int,
    is_blank,
    is_numeric_value,
    read_excel_sheet_bytes,
)

logger = logging.getLogger(__name__)

# Header labels that are never machine names
IGNORED_RESOURCE_VALUES = frozenset(
    {
        "process order",
        "production plan",
        "product status",
        "days from today",
        "production order",
        "op no.",
        "endproduct",
        "itemname",
        "sales order",
        "customer code",
        "start date",
        "time",
        "qty",
        "fg commit date",
        "priority",
        "comments",
    }
)

COL_PROCESS_ORDER = "Process Order"
COL_PRODUCTION_ORDER = "Production Order"
COL_OPERATION_NO = "Op No."
COL_END_PRODUCT = "EndProduct"
COL_ITEM_NAME = "ItemName"
COL_CUSTOMER = "Customer Code"
COL_START_DATE = "Start Date"
COL_TIME = "Time"
COL_QTY = "Qty"
COL_DAYS_FROM_TODAY = "Days From Today"
COL_STATUS = "Product Status"
COL_PRIORITY = "Priority"
COL_COMMENTS = "Comments"


@dataclass
class ParsedSchedule:
    rows: list[JobRow] = field(default_factory=list)
    issues: list[RowIssue] = field(default_factory=list)
    machines: list[str] = field(default_factory=list)
    file_name: str | None = None


def _is_header_row(cells: list) -> bool:
    return clean_str(cells[0]).lower() == COL_PROCESS_ORDER.lower() if cells else False


def _is_resource_cell(value) -> bool:
    s = clean_str(value)
    if not s:
        return False
    if s.lower() in IGNORED_RESOURCE_VALUES:
        return False
    return not is_numeric_value(value)


def _build_header_map(cells: list) -> dict[str, int]:
    header_map: dict[str, int] = {}
    for idx, cell in enumerate(cells):
        name = clean_str(cell)
        if name and name not in header_map:
            header_map[name] = idx
    return header_map


def parse_schedule_grid(grid: list[list], *, file_name: str | None = None) -> ParsedSchedule:
    """Turn a raw cell grid into typed job rows.

    Job rows without a parseable start date are reported and dropped here;
    every other validation (duration, machine) belongs to reconciliation.
    """
    out = ParsedSchedule(file_name=file_name)
    current_machine: str | None = None
    header_map: dict[str, int] | None = None
    found_header = False

    for row_idx, cells in enumerate(grid, start=1):
        cells = list(cells)
        if all(is_blank(c) for c in cells):
            continue

        if _is_header_row(cells):
            header_map = _build_header_map(cells)
            found_header = True
            continue

        first = cells[0]
        if header_map is not None and current_machine and is_numeric_value(first):

            def get(col: str, _cells=cells, _header=header_map):
                i = _header.get(col)
                return _cells[i] if i is not None and i < len(_cells) else None

            process_order = clean_str(get(COL_PROCESS_ORDER))
            start = coerce_datetime(get(COL_START_DATE))
            if start is None:
                out.issues.append(
                    RowIssue(process_order=process_order or None, reason="missing or invalid start date", source_row=row_idx)
                )
                continue

            out.rows.append(
                JobRow(
                    process_order=process_order,
                    machine=current_machine,
                    start_datetime=start,
                    duration_hours=coerce_float(get(COL_TIME)) or 0.0,
                    priority=coerce_int(get(COL_PRIORITY)),
                    end_product=clean_str(get(COL_END_PRODUCT)) or None,
                    production_order=clean_str(get(COL_PRODUCTION_ORDER)) or None,
                    operation_no=clean_str(get(COL_OPERATION_NO)) or None,
                    item_name=clean_str(get(COL_ITEM_NAME)) or None,
                    customer=clean_str(get(COL_CUSTOMER)) or None,
                    qty=coerce_int(get(COL_QTY)),
                    days_from_today=coerce_int(get(COL_DAYS_FROM_TODAY)),
                    status=clean_str(get(COL_STATUS)) or None,
                    comments=clean_str(get(COL_COMMENTS)) or None,
                    source_row=row_idx,
                )
            )
            continue

        if _is_resource_cell(first):
            current_machine = clean_str(first)
            if current_machine not in out.machines:
                out.machines.append(current_machine)

    if not found_header:
        raise InvalidInput(
            'Invalid file structure: no "Process Order" header row found. '
            "The sheet must list a machine name followed by a header row starting with \"Process Order\"."
        )
    if not out.rows:
        raise InvalidInput(
            "No valid jobs found in the file. "
            "Job rows need a numeric Process Order and a valid Start Date."
        )

    logger.info(
        "Parsed %s: %d job rows on %d machines (%d issues)",
        file_name or "schedule",
        len(out.rows),
        len(out.machines),
        len(out.issues),
    )
    return out


def parse_schedule_bytes(content: bytes, *, file_name: str | None = None, sheet_name: str = "Sheet1") -> ParsedSchedule:
    """Parse an uploaded .xlsx capacity schedule."""
    try:
        df = read_excel_sheet_bytes(content, sheet_name=sheet_name)
    except Exception as exc:
        raise InvalidInput(f"Failed to read {file_name or 'workbook'}: {exc}") from exc
    return parse_schedule_grid(df.values.tolist(), file_name=file_name)
