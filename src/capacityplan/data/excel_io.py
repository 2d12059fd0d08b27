from __future__ import annotations

import io
import math
import re
from datetime import date, datetime

import pandas as pd

# Excel's day zero for serial dates (1900 date system, including the leap-year bug)
_EXCEL_EPOCH = "1899-12-30"


def read_excel_sheet_bytes(content: bytes, *, sheet_name: str | None = "Sheet1") -> pd.DataFrame:
    """Read one sheet of .xlsx bytes as a raw grid (no header row).

    Falls back to the first sheet when ``sheet_name`` is missing.
    """
    bio = io.BytesIO(content)
    with pd.ExcelFile(bio, engine="openpyxl") as book:
        names = list(book.sheet_names)
        if not names:
            raise ValueError("workbook has no sheets")
        target = sheet_name if sheet_name in names else names[0]
        df = book.parse(target, header=None, dtype=object)
    return df


def is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def clean_str(value) -> str:
    """Cell value as a trimmed string ('' for empty cells)."""
    if is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        # Excel turns 100234 into 100234.0
        return str(int(value))
    return str(value).replace("\u00a0", " ").strip()


def is_numeric_value(value) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return False
        try:
            float(s)
        except ValueError:
            return False
        return True
    return False


_DIGITS_RE = re.compile(r"^\d+$")


def parse_int_strict(value, *, field: str) -> int:
    """Parse an integer value from planner exports.

    Accepts ints, floats like 123.0, and digit-only strings.
    Raises ValueError otherwise.
    """
    if value is None:
        raise ValueError(f"{field} empty")

    if isinstance(value, bool):
        raise ValueError(f"{field} invalid: {value!r}")

    if isinstance(value, int):
        return int(value)

    if isinstance(value, float):
        if math.isnan(value):
            raise ValueError(f"{field} empty")
        if float(value).is_integer():
            return int(value)
        raise ValueError(f"{field} invalid (not an integer): {value!r}")

    s = str(value).strip()
    if not s:
        raise ValueError(f"{field} empty")
    if _DIGITS_RE.match(s):
        return int(s)

    raise ValueError(f"{field} invalid: {value!r}")


def coerce_float(value) -> float | None:
    """Coerce common Excel/Pandas numeric representations to float.

    Returns None when value is empty/NaN.
    Strips units and thousands separators ("4.5 h", "1,234.5").
    """
    if is_blank(value):
        return None

    if isinstance(value, bool):
        return float(value)

    if isinstance(value, (int, float)):
        return float(value)

    s = str(value).strip()
    if s.lower() == "nan":
        return None

    s = re.sub(r"[^\d.,\-]", "", s)
    if "," in s and "." in s:
        s = s.replace(",", "")
    elif "," in s:
        s = s.replace(",", ".")

    try:
        return float(s)
    except ValueError:
        return None


def coerce_int(value, *, default: int = 0) -> int:
    f = coerce_float(value)
    if f is None or math.isnan(f) or math.isinf(f):
        return default
    return int(round(f))


def coerce_datetime(value) -> datetime | None:
    """Coerce Excel/Pandas date representations to a naive datetime.

    Accepts datetime/Timestamp cells, Excel serial numbers, ISO strings and
    DD/MM/YYYY or DD-MM-YYYY strings. Returns None when nothing parses.
    """
    if is_blank(value):
        return None

    # pandas Timestamp
    if hasattr(value, "to_pydatetime"):
        return value.to_pydatetime().replace(tzinfo=None)

    if isinstance(value, datetime):
        return value.replace(tzinfo=None)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value <= 0:
            return None
        ts = pd.to_datetime(float(value), unit="D", origin=_EXCEL_EPOCH)
        return ts.round("s").to_pydatetime()

    s = str(value).strip()
    try:
        return datetime.fromisoformat(s).replace(tzinfo=None)
    except ValueError:
        pass

    for fmt in ("%d/%m/%Y %H:%M", "%d/%m/%Y", "%d-%m-%Y %H:%M", "%d-%m-%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue

    return None
