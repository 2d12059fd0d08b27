from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from datetime import datetime
from pathlib import Path

from capacityplan.core.errors import CapacityError
from capacityplan.core.models import CapacitySnapshot
from capacityplan.data.db import Db
from capacityplan.data.repository import Repository
from capacityplan.logging_conf import configure_logging
from capacityplan.settings import Settings, default_db_path

logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="capacityplan", description="Production capacity planning")
    parser.add_argument("--db", type=Path, default=None, help="SQLite database path")
    parser.add_argument("--log-level", type=str, default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("upload", help="Reconcile capacity workbooks (DEPT=FILE, departments run in parallel)")
    p.add_argument("files", nargs="+", metavar="DEPT=FILE")
    p.add_argument("--by", required=True, help="User performing the upload")
    p.add_argument("--no-register", action="store_true", help="Do not add unknown machines to the registry")

    p = sub.add_parser("snapshot", help="Show per-machine load and timeline for a department")
    p.add_argument("department")
    p.add_argument("--json", action="store_true")

    p = sub.add_parser("move", help="Manually move a job")
    p.add_argument("department")
    p.add_argument("process_order")
    p.add_argument("--to", required=True, dest="to_machine")
    p.add_argument("--duration", required=True, type=float)
    p.add_argument("--start", type=datetime.fromisoformat, default=None, help="ISO start in plant time without offset, e.g. 2024-01-02T08:00")
    p.add_argument("--priority", type=int, default=None)
    p.add_argument("--by", required=True)
    p.add_argument("--reason", default=None)

    p = sub.add_parser("release", help="Clear the manual override of a job")
    p.add_argument("department")
    p.add_argument("process_order")
    p.add_argument("--by", required=True)

    p = sub.add_parser("history", help="Move history of a job")
    p.add_argument("department")
    p.add_argument("process_order")

    p = sub.add_parser("machines", help="List configured machines")
    p.add_argument("department")
    p.add_argument("--all", action="store_true", help="Include inactive machines")

    p = sub.add_parser("add-machine", help="Create or update a machine")
    p.add_argument("department")
    p.add_argument("name")
    p.add_argument("--hours", type=float, default=None, help="Working hours per day")
    p.add_argument("--sort-order", type=int, default=None)
    p.add_argument("--inactive", action="store_true")

    p = sub.add_parser("clear", help="Delete all jobs of a department")
    p.add_argument("department")

    p = sub.add_parser("config", help="Read or set a config value")
    p.add_argument("key")
    p.add_argument("value", nargs="?")

    return parser


def _parse_upload_args(items: list[str]) -> dict[str, tuple[str, bytes]]:
    files: dict[str, tuple[str, bytes]] = {}
    for item in items:
        dept, sep, path = item.partition("=")
        if not sep or not path:
            raise SystemExit(f"expected DEPT=FILE, got {item!r}")
        p = Path(path)
        files[dept] = (p.name, p.read_bytes())
    return files


def _snapshot_to_dict(snap: CapacitySnapshot) -> dict:
    return {
        "department": snap.department.value,
        "file_name": snap.file_name,
        "uploaded_at": snap.uploaded_at,
        "uploaded_by": snap.uploaded_by,
        "generated_at": snap.generated_at,
        "machines": [asdict(m) for m in snap.machines],
        "segments": [asdict(s) for s in snap.segments],
    }


def _print_snapshot(snap: CapacitySnapshot) -> None:
    source = f"{snap.file_name} ({snap.uploaded_at:%Y-%m-%d %H:%M} by {snap.uploaded_by})" if snap.file_name else "no upload yet"
    print(f"{snap.department.label}: {len(snap.jobs)} jobs, {snap.total_hours:.1f} h scheduled, source: {source}")
    for m in snap.machines:
        free = f"{m.next_free:%Y-%m-%d %H:%M}" if m.next_free else "-"
        flag = "" if m.registered else " (unregistered)"
        print(f"  {m.machine:<24} {m.job_count:>4} jobs {m.total_hours:>8.1f} h  {m.utilization_pct:>5.1f}%  free {free}{flag}")


def run(args: argparse.Namespace, repo: Repository) -> int:
    cmd = args.command
    if cmd == "upload":
        files = _parse_upload_args(args.files)
        summary = asyncio.run(repo.import_schedules(files, uploaded_by=args.by, register_machines=not args.no_register))
        for dept, result in summary.results.items():
            print(f"{dept.value}: {result.summary()}")
            for issue in result.issues:
                print(f"  skipped {issue.describe()}")
        for dept, exc in summary.failures.items():
            print(f"{dept.value}: FAILED ({exc})")
        print(summary.message())
        return 0 if summary.ok else 1

    if cmd == "snapshot":
        snap = repo.get_capacity_snapshot(args.department)
        if args.json:
            print(json.dumps(_snapshot_to_dict(snap), default=str, indent=2))
        else:
            _print_snapshot(snap)
        return 0

    if cmd == "move":
        job = repo.move_job(
            args.department,
            args.process_order,
            to_machine=args.to_machine,
            new_duration=args.duration,
            new_start=args.start,
            new_priority=args.priority,
            moved_by=args.by,
            reason=args.reason,
        )
        print(f"Job {job.process_order} moved to {job.machine} ({job.start_datetime:%Y-%m-%d %H:%M}, {job.duration_hours} h)")
        return 0

    if cmd == "release":
        job = repo.release_override(args.department, args.process_order, released_by=args.by)
        print(f"Job {job.process_order} follows uploads again")
        return 0

    if cmd == "history":
        for rec in repo.get_move_history(args.department, args.process_order):
            print(
                f"{rec.moved_at:%Y-%m-%d %H:%M} {rec.moved_by}: {rec.from_machine} -> {rec.to_machine} "
                f"({rec.old_duration_hours} h -> {rec.new_duration_hours} h) {rec.reason or ''}".rstrip()
            )
        return 0

    if cmd == "machines":
        for m in repo.list_machines(args.department, include_inactive=args.all):
            state = "" if m.is_active else " (inactive)"
            print(f"{m.name:<24} {m.working_hours_per_day:>5.1f} h/day{state}")
        return 0

    if cmd == "add-machine":
        m = repo.upsert_machine(
            args.department,
            args.name,
            working_hours_per_day=args.hours,
            sort_order=args.sort_order,
            is_active=not args.inactive,
        )
        print(f"Saved {m.department.value}/{m.name}")
        return 0

    if cmd == "clear":
        n = repo.clear_department(args.department)
        print(f"Deleted {n} jobs")
        return 0

    if cmd == "config":
        if args.value is not None:
            repo.set_config(key=args.key, value=args.value)
        print(f"{args.key} = {repo.get_config(key=args.key)}")
        return 0

    raise SystemExit(f"unknown command {cmd!r}")


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    settings = Settings(db_path=args.db or default_db_path(), log_level=args.log_level)
    configure_logging(settings.log_level)

    db = Db(settings.db_path)
    db.ensure_schema()
    repo = Repository(db)

    try:
        return run(args, repo)
    except CapacityError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
