import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path

import pytest

from capacityplan.core.errors import InvalidInput, NotFound
from capacityplan.core.models import JobRow
from capacityplan.data.db import Db
from capacityplan.data.repository import Repository

NOW = datetime(2024, 1, 1, 6, 0, tzinfo=timezone.utc)
START = datetime(2024, 1, 2, 8, 0)


@pytest.fixture()
def repo(tmp_path) -> Repository:
    db = Db(Path(tmp_path) / "test.db")
    db.ensure_schema()
    repo = Repository(db, clock=lambda: NOW)
    repo.reconcile(
        "milling",
        [
            JobRow("PO-100", "M1", START, 4.0, priority=3, end_product="EP-1"),
            JobRow("PO-200", "M1", START, 2.0),
        ],
        uploaded_by="ana",
        source_file_name="mill.xlsx",
    )
    return repo


def test_move_sets_override_and_keeps_start_and_priority(repo):
    moved = repo.move_job("milling", "PO-100", to_machine="M2", new_duration=6.0, moved_by="ben", reason="M1 down")

    assert (moved.machine, moved.duration_hours) == ("M2", 6.0)
    assert moved.start_datetime == START
    assert moved.priority == 3
    assert moved.manual_override is True
    assert moved.override_reason == "M1 down"
    assert (moved.moved_by, moved.moved_at) == ("ben", NOW)
    assert repo.find_job("milling", "PO-100") == moved


def test_move_with_new_start_and_priority(repo):
    new_start = datetime(2024, 1, 3, 14, 0)

    moved = repo.move_job(
        "milling", "PO-100", to_machine="M1", new_duration=4.0, new_start=new_start, new_priority=0, moved_by="ben"
    )

    assert moved.start_datetime == new_start
    assert moved.priority == 0
    assert moved.end_datetime == datetime(2024, 1, 3, 18, 0)


@pytest.mark.parametrize("duration", [0, -2.0, float("nan"), "abc", None])
def test_move_with_invalid_duration_leaves_job_unchanged(repo, duration):
    before = repo.find_job("milling", "PO-100")

    with pytest.raises(InvalidInput):
        repo.move_job("milling", "PO-100", to_machine="M2", new_duration=duration, moved_by="ben")

    assert repo.find_job("milling", "PO-100") == before
    assert repo.get_move_history("milling", "PO-100") == []


def test_move_requires_user_and_machine(repo):
    with pytest.raises(InvalidInput):
        repo.move_job("milling", "PO-100", to_machine="M2", new_duration=1.0, moved_by="")
    with pytest.raises(InvalidInput):
        repo.move_job("milling", "PO-100", to_machine=" ", new_duration=1.0, moved_by="ben")


def test_move_of_unknown_job_raises_not_found(repo):
    with pytest.raises(NotFound):
        repo.move_job("milling", "PO-999", to_machine="M2", new_duration=1.0, moved_by="ben")
    # Same process order in another department is a different job
    with pytest.raises(NotFound):
        repo.move_job("turning", "PO-100", to_machine="M2", new_duration=1.0, moved_by="ben")


def test_move_history_is_recorded_in_order(repo):
    repo.move_job("milling", "PO-100", to_machine="M2", new_duration=6.0, moved_by="ben")
    repo.move_job("milling", "PO-100", to_machine="M3", new_duration=5.0, moved_by="cy", reason="rebalance")

    history = repo.get_move_history("milling", "PO-100")

    assert [(h.from_machine, h.to_machine) for h in history] == [("M1", "M2"), ("M2", "M3")]
    assert [(h.old_duration_hours, h.new_duration_hours) for h in history] == [(4.0, 6.0), (6.0, 5.0)]
    assert history[1].moved_by == "cy"
    assert history[1].reason == "rebalance"
    assert history[0].old_start_datetime == START


def test_move_history_of_unknown_job_raises_not_found(repo):
    with pytest.raises(NotFound):
        repo.get_move_history("milling", "PO-999")


def test_move_to_unregistered_machine_warns(repo, caplog):
    with caplog.at_level(logging.WARNING, logger="capacityplan.core.moves"):
        repo.move_job("milling", "PO-100", to_machine="Nowhere", new_duration=1.0, moved_by="ben")

    assert any("unregistered machine" in r.getMessage() for r in caplog.records)
    assert repo.find_job("milling", "PO-100").machine == "Nowhere"


def test_strict_registry_rejects_unknown_destination(repo):
    repo.set_config(key="strict_machine_registry", value="1")

    with pytest.raises(InvalidInput):
        repo.move_job("milling", "PO-100", to_machine="Nowhere", new_duration=1.0, moved_by="ben")

    repo.upsert_machine("milling", "M2")
    moved = repo.move_job("milling", "PO-100", to_machine="M2", new_duration=1.0, moved_by="ben")
    assert moved.machine == "M2"


def test_strict_registry_rejects_inactive_destination(repo):
    repo.set_config(key="strict_machine_registry", value="true")
    repo.upsert_machine("milling", "M2", is_active=False)

    with pytest.raises(InvalidInput):
        repo.move_job("milling", "PO-100", to_machine="M2", new_duration=1.0, moved_by="ben")


def test_release_override_hands_job_back_to_uploads(repo):
    repo.move_job("milling", "PO-100", to_machine="M2", new_duration=6.0, moved_by="ben")

    released = repo.release_override("milling", "PO-100", released_by="ben")
    assert released.manual_override is False
    assert released.machine == "M2"

    repo.reconcile(
        "milling",
        [JobRow("PO-100", "M1", START, 4.0), JobRow("PO-200", "M1", START, 2.0)],
        uploaded_by="ana",
        source_file_name="mill.xlsx",
    )
    assert repo.find_job("milling", "PO-100").machine == "M1"


def test_concurrent_moves_of_same_job_both_land_in_history(repo):
    def move(target):
        return repo.move_job("milling", "PO-100", to_machine=target, new_duration=2.0, moved_by="ben")

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(move, ["M2", "M3"]))

    history = repo.get_move_history("milling", "PO-100")
    assert len(history) == 2
    # Each move starts from the state the previous one left
    assert history[1].from_machine == history[0].to_machine
    assert repo.find_job("milling", "PO-100").machine == history[1].to_machine
    assert {r.machine for r in results} == {"M2", "M3"}


def test_move_is_audited(repo):
    repo.move_job("milling", "PO-100", to_machine="M2", new_duration=6.0, moved_by="ben")

    entry = repo.get_recent_audit_entries(limit=1)[0]
    assert entry.category == "CAPACITY_MOVE"
    assert entry.message == "milling: PO-100 moved M1 -> M2"


@pytest.mark.parametrize("new_start", [datetime(2024, 1, 3, 8, 0, tzinfo=timezone.utc), "2024-01-03T08:00"])
def test_move_rejects_start_that_is_not_plant_time(repo, new_start):
    before = repo.find_job("milling", "PO-100")

    with pytest.raises(InvalidInput):
        repo.move_job("milling", "PO-100", to_machine="M2", new_duration=1.0, new_start=new_start, moved_by="ben")

    assert repo.find_job("milling", "PO-100") == before
    snap = repo.get_capacity_snapshot("milling")
    assert [s.process_order for s in snap.segments] == ["PO-200", "PO-100"]
