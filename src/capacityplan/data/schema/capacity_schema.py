from __future__ import annotations

import sqlite3


def ensure_schema(con: sqlite3.Connection) -> None:
    con.executescript(
        """
        CREATE TABLE IF NOT EXISTS production_job (
            job_id TEXT PRIMARY KEY,
            department TEXT NOT NULL,
            process_order TEXT NOT NULL,
            machine TEXT NOT NULL,
            start_datetime TEXT NOT NULL,
            duration_hours REAL NOT NULL CHECK (duration_hours > 0),
            priority INTEGER NOT NULL DEFAULT 0,
            end_product TEXT,
            production_order TEXT,
            operation_no TEXT,
            item_name TEXT,
            customer TEXT,
            qty INTEGER NOT NULL DEFAULT 0,
            days_from_today INTEGER NOT NULL DEFAULT 0,
            status TEXT,
            comments TEXT,
            original_machine TEXT,
            original_duration_hours REAL,
            manual_override INTEGER NOT NULL DEFAULT 0,
            override_reason TEXT,
            moved_by TEXT,
            moved_at TEXT,
            uploaded_by TEXT,
            uploaded_at TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (department, process_order)
        );

        CREATE INDEX IF NOT EXISTS idx_production_job_machine
            ON production_job (department, machine);

        CREATE TABLE IF NOT EXISTS job_move_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            job_id TEXT NOT NULL,
            from_machine TEXT NOT NULL,
            to_machine TEXT NOT NULL,
            old_duration_hours REAL NOT NULL,
            new_duration_hours REAL NOT NULL,
            old_start_datetime TEXT,
            new_start_datetime TEXT,
            old_priority INTEGER,
            new_priority INTEGER,
            moved_by TEXT NOT NULL,
            moved_at TEXT NOT NULL,
            reason TEXT,
            FOREIGN KEY(job_id) REFERENCES production_job(job_id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS capacity_upload (
            department TEXT PRIMARY KEY,
            file_name TEXT NOT NULL,
            uploaded_by TEXT NOT NULL,
            uploaded_at TEXT NOT NULL,
            added INTEGER NOT NULL DEFAULT 0,
            removed INTEGER NOT NULL DEFAULT 0,
            preserved INTEGER NOT NULL DEFAULT 0,
            skipped INTEGER NOT NULL DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS resource_configuration (
            department TEXT NOT NULL,
            resource_name TEXT NOT NULL,
            working_hours_per_day REAL NOT NULL DEFAULT 24,
            sort_order INTEGER,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (department, resource_name)
        );
        """
    )
