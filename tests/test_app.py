import io
import json
from datetime import datetime

import openpyxl
import pytest

from capacityplan import app


def write_workbook(path) -> None:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Sheet1"
    ws.append(["DMU 65"])
    ws.append(["Process Order", "EndProduct", "Start Date", "Time"])
    ws.append([100, "EP-1", datetime(2024, 1, 2, 8), 4.0])
    ws.append([101, "EP-2", datetime(2024, 1, 2, 12), 2.0])
    bio = io.BytesIO()
    wb.save(bio)
    path.write_bytes(bio.getvalue())


@pytest.fixture()
def cli(tmp_path, monkeypatch):
    monkeypatch.setattr(app, "configure_logging", lambda level="INFO": None)
    db_path = tmp_path / "cli.db"

    def run(*argv: str) -> int:
        return app.main(["--db", str(db_path), *argv])

    return run


def test_upload_snapshot_and_move(cli, tmp_path, capsys):
    book = tmp_path / "mill.xlsx"
    write_workbook(book)

    assert cli("upload", f"milling={book}", "--by", "ana") == 0
    assert "2 added, 0 removed, 0 manual moves preserved" in capsys.readouterr().out

    assert cli("move", "milling", "100", "--to", "Hermle", "--duration", "5", "--by", "ben") == 0
    assert "moved to Hermle" in capsys.readouterr().out

    assert cli("snapshot", "milling", "--json") == 0
    snap = json.loads(capsys.readouterr().out)
    assert snap["file_name"] == "mill.xlsx"
    assert [m["machine"] for m in snap["machines"]] == ["DMU 65", "Hermle"]
    assert [s["label"] for s in snap["segments"]] == ["100 - EP-1", "101 - EP-2"]

    assert cli("history", "milling", "100") == 0
    assert "DMU 65 -> Hermle" in capsys.readouterr().out


def test_invalid_move_returns_error_code(cli, tmp_path, capsys):
    book = tmp_path / "mill.xlsx"
    write_workbook(book)
    cli("upload", f"milling={book}", "--by", "ana")

    assert cli("move", "milling", "100", "--to", "Hermle", "--duration", "0", "--by", "ben") == 2
    assert "error:" in capsys.readouterr().err
    assert cli("move", "milling", "999", "--to", "Hermle", "--duration", "1", "--by", "ben") == 2


def test_failed_upload_returns_nonzero(cli, tmp_path, capsys):
    bad = tmp_path / "bad.xlsx"
    bad.write_bytes(b"nope")

    assert cli("upload", f"turning={bad}", "--by", "ana") == 1
    assert "turning: FAILED" in capsys.readouterr().out


def test_config_and_machines(cli, capsys):
    assert cli("config", "orphan_policy") == 0
    assert "orphan_policy = remove" in capsys.readouterr().out

    assert cli("config", "orphan_policy", "retain_manual") == 0
    assert "orphan_policy = retain_manual" in capsys.readouterr().out

    assert cli("add-machine", "turning", "Nakamura", "--hours", "16") == 0
    assert cli("machines", "turning") == 0
    assert "Nakamura" in capsys.readouterr().out


def test_clear(cli, tmp_path, capsys):
    book = tmp_path / "mill.xlsx"
    write_workbook(book)
    cli("upload", f"milling={book}", "--by", "ana")
    capsys.readouterr()

    assert cli("clear", "milling") == 0
    assert "Deleted 2 jobs" in capsys.readouterr().out


def test_move_with_utc_offset_is_rejected(cli, tmp_path, capsys):
    book = tmp_path / "mill.xlsx"
    write_workbook(book)
    cli("upload", f"milling={book}", "--by", "ana")

    code = cli("move", "milling", "100", "--to", "Hermle", "--duration", "1", "--start", "2024-01-03T08:00+00:00", "--by", "ben")

    assert code == 2
    assert cli("snapshot", "milling") == 0
