from datetime import datetime
from pathlib import Path

import pytest

from capacityplan.core.errors import InvalidInput
from capacityplan.core.models import Department, JobRow, OrphanPolicy, normalize_department
from capacityplan.data.db import Db
from capacityplan.data.repository import Repository


@pytest.fixture()
def repo(tmp_path) -> Repository:
    db = Db(Path(tmp_path) / "test.db")
    db.ensure_schema()
    return Repository(db)


def seed(repo: Repository, dept: str, *pos: str) -> None:
    repo.reconcile(
        dept,
        [JobRow(po, "M1", datetime(2024, 1, 2, 8), 1.0) for po in pos],
        uploaded_by="ana",
        source_file_name=f"{dept}.xlsx",
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("milling", Department.MILLING),
        (" Turning ", Department.TURNING),
        ("sliding-head", Department.SLIDING_HEAD),
        ("Sliding Heads", Department.SLIDING_HEAD),
        ("MISC", Department.MISC),
        (Department.MISC, Department.MISC),
    ],
)
def test_normalize_department(raw, expected):
    assert normalize_department(raw) is expected


@pytest.mark.parametrize("raw", ["", None, "welding"])
def test_normalize_department_rejects_unknown(raw):
    with pytest.raises(InvalidInput):
        normalize_department(raw)


def test_orphan_policy_parse():
    assert OrphanPolicy.parse(None) is OrphanPolicy.REMOVE
    assert OrphanPolicy.parse("retain-manual") is OrphanPolicy.RETAIN_MANUAL
    with pytest.raises(InvalidInput):
        OrphanPolicy.parse("keep_everything")


def test_config_defaults(repo):
    assert repo.get_config(key="orphan_policy") == "remove"
    assert repo.get_config(key="strict_machine_registry") == "0"
    assert repo.get_config(key="default_working_hours_per_day") == "24"
    assert repo.get_config(key="unknown") is None
    assert repo.get_config(key="unknown", default="x") == "x"


def test_set_config_roundtrip_and_audit(repo):
    repo.set_config(key="orphan_policy", value="Retain-Manual")

    assert repo.get_config(key="orphan_policy") == "retain_manual"
    entry = repo.get_recent_audit_entries(limit=1)[0]
    assert entry.category == "CONFIG"
    assert entry.details == "From 'remove' to 'retain_manual'"


@pytest.mark.parametrize(
    "key, value",
    [
        ("orphan_policy", "sometimes"),
        ("strict_machine_registry", "maybe"),
        ("default_working_hours_per_day", "abc"),
        ("default_working_hours_per_day", "30"),
        ("default_working_hours_per_day", "0"),
    ],
)
def test_set_config_rejects_invalid_values(repo, key, value):
    with pytest.raises(InvalidInput):
        repo.set_config(key=key, value=value)


def test_set_config_empty_key(repo):
    with pytest.raises(ValueError):
        repo.set_config(key=" ", value="1")


def test_default_working_hours_applies_to_new_machines(repo):
    repo.set_config(key="default_working_hours_per_day", value="16")

    machine = repo.upsert_machine("milling", "Hermle")

    assert machine.working_hours_per_day == 16.0
    # A fresh facade on the same database reads the stored default
    assert Repository(repo.db).registry.default_working_hours == 16.0


def test_machine_registry_ordering_and_update(repo):
    repo.upsert_machine("milling", "Zeta")
    repo.upsert_machine("milling", "Alpha")
    repo.upsert_machine("milling", "Last", sort_order=5)
    repo.upsert_machine("milling", "First", sort_order=1, working_hours_per_day=8)

    assert [m.name for m in repo.list_machines("milling")] == ["First", "Last", "Alpha", "Zeta"]

    repo.upsert_machine("milling", "Alpha", working_hours_per_day=12, is_active=False)
    assert [m.name for m in repo.list_machines("milling")] == ["First", "Last", "Zeta"]
    inactive = [m for m in repo.list_machines("milling", include_inactive=True) if m.name == "Alpha"]
    assert inactive[0].working_hours_per_day == 12.0
    assert inactive[0].is_active is False


@pytest.mark.parametrize("hours", [0, -1, 25, float("nan")])
def test_machine_working_hours_validated(repo, hours):
    with pytest.raises(InvalidInput):
        repo.upsert_machine("milling", "Hermle", working_hours_per_day=hours)


def test_machine_name_required(repo):
    with pytest.raises(InvalidInput):
        repo.upsert_machine("milling", "  ")


def test_delete_machine(repo):
    repo.upsert_machine("turning", "Nakamura")

    assert repo.delete_machine("turning", "Nakamura") is True
    assert repo.delete_machine("turning", "Nakamura") is False
    assert repo.list_machines("turning") == []


def test_register_missing_keeps_existing_entries(repo):
    repo.upsert_machine("milling", "DMU 65", working_hours_per_day=8, is_active=False)

    new = repo.registry.register_missing("milling", ["DMU 65", "Hermle", " Hermle ", ""])

    assert new == ["Hermle"]
    machines = {m.name: m for m in repo.list_machines("milling", include_inactive=True)}
    assert machines["DMU 65"].working_hours_per_day == 8.0
    assert machines["DMU 65"].is_active is False
    assert machines["Hermle"].working_hours_per_day == 24.0


def test_clear_department_only_touches_that_department(repo):
    seed(repo, "milling", "1", "2")
    seed(repo, "turning", "1")
    repo.move_job("milling", "1", to_machine="M2", new_duration=2.0, moved_by="ben")

    assert repo.clear_department("milling") == 2

    assert repo.list_jobs("milling") == []
    assert repo.get_upload_record("milling") is None
    assert len(repo.list_jobs("turning")) == 1
    with repo.db.connect() as con:
        assert con.execute("SELECT COUNT(*) FROM job_move_history").fetchone()[0] == 0


def test_clear_all(repo):
    seed(repo, "milling", "1", "2")
    seed(repo, "misc", "3")

    assert repo.clear_all() == 3
    assert repo.store.count_jobs() == 0


def test_audit_failure_does_not_raise(repo):
    with repo.db.connect() as con:
        con.execute("DROP TABLE audit_log")

    repo.log_audit("TEST", "message")
