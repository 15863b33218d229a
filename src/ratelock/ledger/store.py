# src/ratelock/ledger/store.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    # Do not coerce unknown types (no default=str); non-JSON values in ledger
    # state are a bug and must fail here.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


class SqliteDB:
    """SQLite file holding ledger snapshots.

    Connections are never shared across threads; each operation opens its own.
    Writers use BEGIN IMMEDIATE with a bounded retry loop because SQLite
    allows one writer at a time.
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    def _connect(self) -> sqlite3.Connection:
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        timeout_s = float(_env_int("RATELOCK_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0
        con = sqlite3.connect(self.path, timeout=timeout_s, isolation_level=None, check_same_thread=False)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA journal_mode=WAL;")
        con.execute("PRAGMA synchronous=FULL;")
        con.execute(f"PRAGMA busy_timeout={int(timeout_s * 1000)};")
        return con

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return "database is locked" in msg or "database is busy" in msg

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        deadline_ts = _now_ms() + max(250, _env_int("RATELOCK_SQLITE_WRITE_DEADLINE_MS", 30_000))
        base_sleep, max_sleep = 0.005, 0.25

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
                    time.sleep(sleep_s * (0.5 + random.random()))
                    attempt += 1

            try:
                yield con
                con.execute("COMMIT;")
            except BaseException:
                con.execute("ROLLBACK;")
                raise

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute("CREATE TABLE IF NOT EXISTS meta (key TEXT PRIMARY KEY, value TEXT NOT NULL);")
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger_state (
                  ledger_id TEXT PRIMARY KEY,
                  state_json TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )
            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            elif str(row["value"]) != str(self.SCHEMA_VERSION):
                raise RuntimeError(
                    f"sqlite schema_version mismatch: have={row['value']} want={self.SCHEMA_VERSION}. "
                    "Refuse to start to avoid corrupting data."
                )


class SqliteLedgerStore:
    """One ledger snapshot per ledger_id.

    - read(ledger_id): latest snapshot (FileNotFoundError if absent)
    - write(state): overwrite the snapshot keyed by state["ledger_id"]
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def exists(self, ledger_id: str) -> bool:
        with self._db.connection() as con:
            row = con.execute("SELECT 1 FROM ledger_state WHERE ledger_id=?;", (str(ledger_id),)).fetchone()
            return row is not None

    def ledger_ids(self) -> List[str]:
        with self._db.connection() as con:
            rows = con.execute("SELECT ledger_id FROM ledger_state ORDER BY ledger_id;").fetchall()
            return [str(r["ledger_id"]) for r in rows]

    def read(self, ledger_id: str) -> Json:
        with self._db.connection() as con:
            row = con.execute("SELECT state_json FROM ledger_state WHERE ledger_id=?;", (str(ledger_id),)).fetchone()
        if row is None:
            raise FileNotFoundError(f"no ledger snapshot for {ledger_id!r}")
        st = json.loads(str(row["state_json"]))
        if not isinstance(st, dict):
            raise ValueError("ledger_state is not a JSON object")
        return st

    def write(self, st: Json) -> None:
        if not isinstance(st, dict):
            raise ValueError("ledger write expects dict")
        ledger_id = str(st.get("ledger_id") or "").strip()
        if not ledger_id:
            raise ValueError("ledger state has no ledger_id")
        payload = _canon_json(st)
        with self._db.write_tx() as con:
            con.execute(
                """
                INSERT INTO ledger_state(ledger_id, state_json, updated_ts_ms)
                VALUES(?, ?, ?)
                ON CONFLICT(ledger_id) DO UPDATE SET
                  state_json=excluded.state_json,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                (ledger_id, payload, _now_ms()),
            )


__all__ = ["SqliteDB", "SqliteLedgerStore"]
