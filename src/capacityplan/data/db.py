from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from capacityplan.core.errors import ConflictingWrite, StoreUnavailable
from capacityplan.data.schema import ensure_capacity_schema, ensure_core_schema

logger = logging.getLogger(__name__)


def translate_sqlite_error(exc: sqlite3.Error) -> Exception:
    """Map a driver error onto the store error kinds."""
    if isinstance(exc, sqlite3.IntegrityError):
        return ConflictingWrite(f"write rejected: {exc}")
    msg = str(exc).lower()
    if isinstance(exc, sqlite3.OperationalError) and ("locked" in msg or "busy" in msg):
        return ConflictingWrite(f"store busy: {exc}")
    return StoreUnavailable(f"store error: {exc}")


class Db:
    def __init__(self, path: Path, *, timeout: float = 20.0):
        self.path = Path(path)
        self.timeout = timeout
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _open(self, *, autocommit: bool = False) -> sqlite3.Connection:
        con = sqlite3.connect(
            self.path,
            timeout=self.timeout,
            isolation_level=None if autocommit else "",
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA foreign_keys=ON;")
        return con

    @contextmanager
    def connect(self):
        con = self._open()
        try:
            yield con
            con.commit()
        except Exception:
            con.rollback()
            raise
        finally:
            con.close()

    @contextmanager
    def transaction(self):
        """Immediate write transaction: the write lock is taken before any read."""
        try:
            con = self._open(autocommit=True)
        except sqlite3.Error as exc:
            raise translate_sqlite_error(exc) from exc
        try:
            con.execute("BEGIN IMMEDIATE")
            yield con
            con.execute("COMMIT")
        except sqlite3.Error as exc:
            self._rollback_quietly(con)
            raise translate_sqlite_error(exc) from exc
        except BaseException:
            self._rollback_quietly(con)
            raise
        finally:
            con.close()

    @contextmanager
    def read(self):
        """Deferred read transaction; every SELECT inside sees one snapshot."""
        try:
            con = self._open(autocommit=True)
        except sqlite3.Error as exc:
            raise translate_sqlite_error(exc) from exc
        try:
            con.execute("BEGIN")
            yield con
            con.execute("COMMIT")
        except sqlite3.Error as exc:
            self._rollback_quietly(con)
            raise translate_sqlite_error(exc) from exc
        except BaseException:
            self._rollback_quietly(con)
            raise
        finally:
            con.close()

    @staticmethod
    def _rollback_quietly(con: sqlite3.Connection) -> None:
        if not con.in_transaction:
            return
        try:
            con.execute("ROLLBACK")
        except sqlite3.Error:
            logger.exception("Rollback failed")

    def ensure_schema(self) -> None:
        con = sqlite3.connect(self.path, timeout=10.0)
        try:
            con.execute("PRAGMA journal_mode=WAL;")
            con.execute("PRAGMA foreign_keys=ON;")
            ensure_core_schema(con)
            ensure_capacity_schema(con)
            con.commit()
        finally:
            con.close()
