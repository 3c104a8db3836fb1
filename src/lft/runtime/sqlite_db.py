# src/lft/runtime/sqlite_db.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    """Canonical JSON encoding. Unknown types fail instead of being coerced."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


class SqliteDB:
    """SQLite manager for the run checkpoint.

    Design goals:
      - single durable DB file per genesis run
      - every confirmed step is committed before the next one starts
      - never share connections across threads

    Only one orchestrator may write at a time (see single_writer.RunLock), but
    read-only consumers (status CLI, audit API) may open the file concurrently,
    so BEGIN IMMEDIATE is retried with bounded backoff in write_tx().
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """Return a safe PRAGMA synchronous value.

        Defaults:
          - prod        -> FULL
          - dev/testnet -> NORMAL

        Override with LFT_SQLITE_SYNCHRONOUS in {NORMAL,FULL,EXTRA}.
        """
        mode = (os.environ.get("LFT_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("LFT_SQLITE_SYNCHRONOUS") or default).strip().upper()

        # OFF is never accepted: a lost commit means a lost confirmation receipt.
        if raw not in {"NORMAL", "FULL", "EXTRA"}:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        connect_timeout_s = float(_env_int("LFT_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0

        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        row = con.execute("PRAGMA journal_mode=WAL;").fetchone()
        mode = str(row[0]).strip().lower() if row is not None else ""
        if mode != "wal":
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{mode}', expected 'wal'")

        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")

        busy_ms = max(0, _env_int("LFT_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")

        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS credentials (
                  name TEXT PRIMARY KEY,
                  pubkey TEXT NOT NULL,
                  seed_hex TEXT NOT NULL,
                  created_ts_ms INTEGER NOT NULL
                );
                """
            )

            # Amounts are decimal TEXT: u64 quantities overflow SQLite's signed INTEGER.
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS asset (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  asset_id TEXT NOT NULL,
                  decimals INTEGER NOT NULL,
                  total_supply TEXT NOT NULL,
                  controlling_key TEXT NOT NULL,
                  status TEXT NOT NULL,
                  signature TEXT,
                  slot INTEGER,
                  confirmed_ts_ms INTEGER,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS recipients (
                  category TEXT PRIMARY KEY,
                  ordinal INTEGER NOT NULL,
                  pubkey TEXT NOT NULL UNIQUE,
                  holding_account TEXT NOT NULL UNIQUE,
                  signature TEXT,
                  slot INTEGER,
                  created_ts_ms INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS issuances (
                  category TEXT PRIMARY KEY REFERENCES recipients(category),
                  quantity TEXT NOT NULL,
                  destination TEXT NOT NULL,
                  status TEXT NOT NULL,
                  signature TEXT,
                  slot INTEGER,
                  confirmed_ts_ms INTEGER,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS finalization (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  state TEXT NOT NULL,
                  signature TEXT,
                  slot INTEGER,
                  confirmed_ts_ms INTEGER,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS release_schedules (
                  category TEXT PRIMARY KEY REFERENCES recipients(category),
                  schedule_json TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS manifest (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  path TEXT NOT NULL,
                  sha256 TEXT NOT NULL,
                  written_ts_ms INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS sink_publications (
                  sink TEXT NOT NULL,
                  sha256 TEXT NOT NULL,
                  published_ts_ms INTEGER NOT NULL,
                  PRIMARY KEY (sink, sha256)
                );
                """
            )

            con.execute(
                "INSERT OR IGNORE INTO finalization(id, state, updated_ts_ms) VALUES(1, 'open', ?);",
                (_now_ms(),),
            )

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except ValueError:
                    v = 0
                if v != self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"checkpoint schema_version mismatch: have={v} want={self.SCHEMA_VERSION}. "
                        "Refuse to start to avoid corrupting run state."
                    )

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
        return ("database is locked" in msg) or ("database is busy" in msg)

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction with bounded retry on writer-lock contention.

        Policy:
          - retry BEGIN IMMEDIATE until a deadline
          - exponential backoff with jitter
          - then raise (fail closed) if we cannot acquire within deadline
        """
        deadline_ms = max(250, _env_int("LFT_SQLITE_WRITE_DEADLINE_MS", 30_000))
        deadline_ts = _now_ms() + deadline_ms

        base_sleep = max(0.001, float(_env_int("LFT_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(_env_int("LFT_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)

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
                if con.in_transaction:
                    con.execute("ROLLBACK;")
                raise
