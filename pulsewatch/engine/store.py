"""
Check Store

Persistence layer for check definitions, probe results and the cached
per-check status. Provides an in-memory store and an SQLite store.
"""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import aiosqlite
import structlog

from pulsewatch.engine.models import Check, CheckStatus, ProbeResult
from pulsewatch.errors import StoreError, StoreUnavailableError, StoreWriteError

logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS checks (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  url TEXT NOT NULL,
  interval_seconds INTEGER NOT NULL,
  alert_email TEXT,
  is_active INTEGER NOT NULL DEFAULT 1,
  last_status TEXT,
  last_checked_at TEXT
);

CREATE TABLE IF NOT EXISTS check_results (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  check_id TEXT NOT NULL,
  checked_at TEXT NOT NULL,
  status TEXT NOT NULL,
  http_status INTEGER,
  latency_ms INTEGER,
  error TEXT,
  FOREIGN KEY(check_id) REFERENCES checks(id)
);

CREATE INDEX IF NOT EXISTS idx_results_check_time ON check_results(check_id, checked_at);
"""


class CheckSource(Protocol):
    """Read side of the check definitions."""

    async def list_checks(self) -> list[Check]: ...


class ResultStore(Protocol):
    """Write/read side of probe results and cached status."""

    async def ping(self) -> None: ...

    async def append_result(self, result: ProbeResult) -> ProbeResult: ...

    async def update_check_status(
        self,
        check_id: str,
        status: CheckStatus,
        checked_at: datetime,
    ) -> None: ...

    async def list_results(self, check_id: str, limit: int = 50) -> list[ProbeResult]: ...


def _format_ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class MemoryCheckStore:
    """
    In-memory check and result store.

    Implements both CheckSource and ResultStore. Nothing survives the process;
    useful for tests and throwaway runs.
    """

    def __init__(self, checks: list[Check] | None = None) -> None:
        self._checks: dict[str, Check] = {}
        self._results: dict[str, list[ProbeResult]] = {}  # check_id -> results
        self._next_result_id = 1
        self._lock = asyncio.Lock()

        for check in checks or []:
            self._checks[check.id] = check.model_copy()

    async def ping(self) -> None:
        return None

    # Check operations

    async def create_check(self, check: Check) -> Check:
        """Insert or replace a check definition."""
        async with self._lock:
            self._checks[check.id] = check.model_copy()
        return check

    async def get_check(self, check_id: str) -> Check | None:
        check = self._checks.get(check_id)
        return check.model_copy() if check else None

    async def list_checks(self, active_only: bool = False) -> list[Check]:
        checks = [c.model_copy() for c in self._checks.values()]
        if active_only:
            checks = [c for c in checks if c.is_active]
        return checks

    async def set_active(self, check_id: str, is_active: bool) -> bool:
        async with self._lock:
            check = self._checks.get(check_id)
            if check is None:
                return False
            self._checks[check_id] = check.model_copy(update={"is_active": is_active})
            return True

    async def delete_check(self, check_id: str) -> bool:
        """Delete a check and its results."""
        async with self._lock:
            if check_id not in self._checks:
                return False
            del self._checks[check_id]
            self._results.pop(check_id, None)
            return True

    # Result operations

    async def append_result(self, result: ProbeResult) -> ProbeResult:
        async with self._lock:
            stored = result.model_copy(update={"id": self._next_result_id})
            self._next_result_id += 1
            self._results.setdefault(result.check_id, []).append(stored)
        return stored

    async def update_check_status(
        self,
        check_id: str,
        status: CheckStatus,
        checked_at: datetime,
    ) -> None:
        async with self._lock:
            check = self._checks.get(check_id)
            if check is None:
                logger.debug("Status update for unknown check", check_id=check_id)
                return
            self._checks[check_id] = check.model_copy(
                update={"last_status": status, "last_checked_at": checked_at}
            )

    async def list_results(self, check_id: str, limit: int = 50) -> list[ProbeResult]:
        """Get results for a check, newest first."""
        results = sorted(
            self._results.get(check_id, []),
            key=lambda r: (r.checked_at, r.id or 0),
            reverse=True,
        )
        return results[:limit]


class SqliteCheckStore:
    """
    SQLite-backed check and result store.

    One shared connection in WAL mode. Writes are serialized by a lock and
    each append or status update commits on its own; there is no cross-check
    transaction.
    """

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = str(db_path)
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def open(self) -> None:
        """Open the connection and apply the schema."""
        if self._conn is not None:
            return

        try:
            if self._db_path != ":memory:":
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = await aiosqlite.connect(self._db_path)
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA synchronous=NORMAL")
            await conn.executescript(SCHEMA)
            await conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailableError(f"Cannot open database {self._db_path}: {e}") from e

        self._conn = conn
        logger.info("Opened check store", path=self._db_path)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> "SqliteCheckStore":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreUnavailableError("Check store is not open")
        return self._conn

    async def ping(self) -> None:
        """Raise StoreUnavailableError unless the database answers."""
        try:
            await self.open()
            async with self._connection().execute("SELECT 1") as cursor:
                await cursor.fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Database {self._db_path} unreachable: {e}") from e

    async def _execute(self, sql: str, params: tuple[Any, ...]) -> aiosqlite.Cursor:
        """Execute a single write and commit it."""
        conn = self._connection()
        async with self._lock:
            try:
                cursor = await conn.execute(sql, params)
                await conn.commit()
            except sqlite3.Error as e:
                raise StoreWriteError(str(e)) from e
        return cursor

    # Check operations

    async def create_check(self, check: Check) -> Check:
        await self._execute(
            """
            INSERT INTO checks (id, name, url, interval_seconds, alert_email, is_active)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                check.id,
                check.name,
                check.url,
                check.interval_seconds,
                check.alert_email,
                int(check.is_active),
            ),
        )
        return check

    async def get_check(self, check_id: str) -> Check | None:
        async with self._connection().execute(
            "SELECT * FROM checks WHERE id = ?", (check_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_check(row) if row else None

    async def list_checks(self, active_only: bool = False) -> list[Check]:
        sql = "SELECT * FROM checks"
        if active_only:
            sql += " WHERE is_active = 1"
        try:
            async with self._connection().execute(sql) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to list checks: {e}") from e
        return [_row_to_check(row) for row in rows]

    async def set_active(self, check_id: str, is_active: bool) -> bool:
        cursor = await self._execute(
            "UPDATE checks SET is_active = ? WHERE id = ?",
            (int(is_active), check_id),
        )
        return cursor.rowcount > 0

    async def delete_check(self, check_id: str) -> bool:
        """Delete a check and its results."""
        await self._execute("DELETE FROM check_results WHERE check_id = ?", (check_id,))
        cursor = await self._execute("DELETE FROM checks WHERE id = ?", (check_id,))
        return cursor.rowcount > 0

    # Result operations

    async def append_result(self, result: ProbeResult) -> ProbeResult:
        cursor = await self._execute(
            """
            INSERT INTO check_results (check_id, checked_at, status, http_status, latency_ms, error)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                result.check_id,
                _format_ts(result.checked_at),
                result.status.value,
                result.http_status,
                result.latency_ms,
                result.error,
            ),
        )
        return result.model_copy(update={"id": cursor.lastrowid})

    async def update_check_status(
        self,
        check_id: str,
        status: CheckStatus,
        checked_at: datetime,
    ) -> None:
        await self._execute(
            "UPDATE checks SET last_status = ?, last_checked_at = ? WHERE id = ?",
            (status.value, _format_ts(checked_at), check_id),
        )

    async def list_results(self, check_id: str, limit: int = 50) -> list[ProbeResult]:
        """Get results for a check, newest first."""
        async with self._connection().execute(
            """
            SELECT * FROM check_results
            WHERE check_id = ?
            ORDER BY checked_at DESC, id DESC
            LIMIT ?
            """,
            (check_id, limit),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_result(row) for row in rows]


def _row_to_check(row: aiosqlite.Row) -> Check:
    return Check(
        id=row["id"],
        name=row["name"],
        url=row["url"],
        interval_seconds=row["interval_seconds"],
        alert_email=row["alert_email"],
        is_active=bool(row["is_active"]),
        last_status=CheckStatus(row["last_status"]) if row["last_status"] else None,
        last_checked_at=_parse_ts(row["last_checked_at"]),
    )


def _row_to_result(row: aiosqlite.Row) -> ProbeResult:
    return ProbeResult(
        id=row["id"],
        check_id=row["check_id"],
        checked_at=_parse_ts(row["checked_at"]),
        status=CheckStatus(row["status"]),
        http_status=row["http_status"],
        latency_ms=row["latency_ms"],
        error=row["error"],
    )
