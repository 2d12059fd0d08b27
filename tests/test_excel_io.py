from datetime import date, datetime

import pandas as pd
import pytest

from capacityplan.data.excel_io import (
    clean_str,
    coerce_datetime,
    coerce_float,
    coerce_int,
    is_blank,
    is_numeric_value,
    parse_int_strict,
)


@pytest.mark.parametrize("value", [None, "", "   ", float("nan"), pd.NaT])
def test_is_blank(value):
    assert is_blank(value)


def test_clean_str():
    assert clean_str(100234.0) == "100234"
    assert clean_str(" DMU 65 ") == "DMU 65"
    assert clean_str(None) == ""
    assert clean_str(2.5) == "2.5"


def test_is_numeric_value():
    assert is_numeric_value(100234)
    assert is_numeric_value("100234")
    assert not is_numeric_value("DMU 65")
    assert not is_numeric_value(float("nan"))
    assert not is_numeric_value(True)


@pytest.mark.parametrize(
    "value, expected",
    [
        (4.5, 4.5),
        (3, 3.0),
        ("4.5 h", 4.5),
        ("2,5", 2.5),
        ("1,234.5", 1234.5),
        ("", None),
        ("n/a", None),
        (None, None),
    ],
)
def test_coerce_float(value, expected):
    assert coerce_float(value) == expected


def test_coerce_int():
    assert coerce_int("7") == 7
    assert coerce_int(2.6) == 3
    assert coerce_int(None) == 0
    assert coerce_int("x", default=-1) == -1


def test_parse_int_strict():
    assert parse_int_strict(12.0, field="qty") == 12
    assert parse_int_strict("0042", field="qty") == 42
    with pytest.raises(ValueError):
        parse_int_strict(1.5, field="qty")
    with pytest.raises(ValueError):
        parse_int_strict("12a", field="qty")


@pytest.mark.parametrize(
    "value, expected",
    [
        (datetime(2024, 1, 2, 8, 30), datetime(2024, 1, 2, 8, 30)),
        (pd.Timestamp("2024-01-02 08:30"), datetime(2024, 1, 2, 8, 30)),
        (date(2024, 1, 2), datetime(2024, 1, 2)),
        (45293, datetime(2024, 1, 2)),
        (45293.5, datetime(2024, 1, 2, 12, 0)),
        ("2024-01-02T08:30:00", datetime(2024, 1, 2, 8, 30)),
        ("02/01/2024", datetime(2024, 1, 2)),
        ("02/01/2024 14:15", datetime(2024, 1, 2, 14, 15)),
        ("02-01-2024", datetime(2024, 1, 2)),
        ("someday", None),
        (None, None),
        (0, None),
    ],
)
def test_coerce_datetime(value, expected):
    assert coerce_datetime(value) == expected
