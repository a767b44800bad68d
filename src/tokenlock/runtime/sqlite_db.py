# src/tokenlock/runtime/sqlite_db.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

Json = Dict[str, Any]

# Open write transactions of the current thread, keyed by absolute DB path.
_tx_local = threading.local()


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    """Canonical JSON encoding.

    Unknown types are not coerced (no default=str): anything non-JSON leaking
    into persisted ledger state must fail fast.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except Exception:
        return int(default)


class SqliteDB:
    """SQLite manager for the ledger service.

    Design goals:
      - single durable DB file for ledger snapshot, receipts and asset balances
      - cross-thread safe by never sharing connections across threads
      - bounded retry on writer-lock contention in write_tx()
      - write_tx() nests: inside an open transaction on the same file (any
        SqliteDB instance, same thread) it runs as a SAVEPOINT on that
        connection, so several stores commit or roll back as one unit
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)
        self._key = os.path.abspath(self.path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """FULL in prod, NORMAL otherwise; TOKENLOCK_SQLITE_SYNCHRONOUS overrides."""
        mode = (os.environ.get("TOKENLOCK_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("TOKENLOCK_SQLITE_SYNCHRONOUS") or default).strip().upper()
        if raw not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        connect_timeout_s = float(_env_int("TOKENLOCK_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0
        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        con.execute("PRAGMA journal_mode=WAL;")
        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA temp_store=MEMORY;")

        busy_ms = max(0, _env_int("TOKENLOCK_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
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
                CREATE TABLE IF NOT EXISTS ledger_state (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  ledger_id TEXT NOT NULL,
                  phase TEXT NOT NULL,
                  state_json TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            # Append-only audit history; rows are never updated or deleted.
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS receipts (
                  seq INTEGER PRIMARY KEY AUTOINCREMENT,
                  tx_type TEXT NOT NULL,
                  requested_by TEXT NOT NULL,
                  receipt_json TEXT NOT NULL,
                  created_ts_ms INTEGER NOT NULL
                );
                """
            )

            # Amounts are uint256; stored as decimal TEXT since INTEGER is 64-bit.
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS asset_balances (
                  asset TEXT NOT NULL,
                  holder TEXT NOT NULL,
                  amount TEXT NOT NULL,
                  PRIMARY KEY (asset, holder)
                );
                """
            )

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except Exception:
                    v = 0
                if v != self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"sqlite schema_version mismatch: have={v} want={self.SCHEMA_VERSION}. "
                        "Refuse to start to avoid corrupting data."
                    )

    def _active(self) -> Optional[sqlite3.Connection]:
        cons = getattr(_tx_local, "cons", None)
        return None if cons is None else cons.get(self._key)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        # Reads inside an open write transaction must see its uncommitted rows.
        active = self._active()
        if active is not None:
            yield active
            return
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
    def _nested_tx(self, con: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
        depth = int(getattr(_tx_local, "depth", 0)) + 1
        _tx_local.depth = depth
        name = f"sp_{depth}"
        con.execute(f"SAVEPOINT {name};")
        try:
            yield con
            con.execute(f"RELEASE {name};")
        except BaseException:
            con.execute(f"ROLLBACK TO {name};")
            con.execute(f"RELEASE {name};")
            raise
        finally:
            _tx_local.depth = depth - 1

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a BEGIN IMMEDIATE transaction with bounded, jittered retry.

        Nested calls on the same file and thread join the open transaction as
        a SAVEPOINT. Nothing is durable until the outermost block commits.

        Raises (fail closed) if the write lock cannot be acquired before the deadline.
        """
        active = self._active()
        if active is not None:
            with self._nested_tx(active) as con:
                yield con
            return

        deadline_ms = max(250, _env_int("TOKENLOCK_SQLITE_WRITE_DEADLINE_MS", 30_000))
        deadline_ts = _now_ms() + deadline_ms
        base_sleep = max(0.001, float(_env_int("TOKENLOCK_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(_env_int("TOKENLOCK_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)

        con = self._connect()
        try:
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

            cons = getattr(_tx_local, "cons", None)
            if cons is None:
                cons = _tx_local.cons = {}
            cons[self._key] = con
            try:
                yield con
                con.execute("COMMIT;")
            except BaseException:
                try:
                    con.execute("ROLLBACK;")
                except sqlite3.Error:
                    pass
                raise
            finally:
                cons.pop(self._key, None)
        finally:
            con.close()


class SqliteLedgerStore:
    """Ledger snapshot + receipt log persisted in SQLite.

    - read(): load the latest snapshot
    - commit(st, receipt): overwrite the snapshot and append a receipt atomically
    - receipts(limit): audit log tail, oldest first
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM ledger_state WHERE id=1;").fetchone() is not None

    def read(self) -> Json:
        with self._db.connection() as con:
            row = con.execute("SELECT state_json FROM ledger_state WHERE id=1;").fetchone()
            if row is None:
                raise FileNotFoundError("sqlite ledger_state is missing")
            st = json.loads(str(row["state_json"]))
            if not isinstance(st, dict):
                raise ValueError("ledger_state is not a JSON object")
            return st

    @staticmethod
    def _upsert_state(con: sqlite3.Connection, st: Json) -> None:
        con.execute(
            """
            INSERT INTO ledger_state(id, ledger_id, phase, state_json, updated_ts_ms)
            VALUES(1, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              ledger_id=excluded.ledger_id,
              phase=excluded.phase,
              state_json=excluded.state_json,
              updated_ts_ms=excluded.updated_ts_ms;
            """,
            (str(st.get("ledger_id") or ""), str(st.get("phase") or ""), _canon_json(st), _now_ms()),
        )

    def write(self, st: Json) -> None:
        if not isinstance(st, dict):
            raise ValueError("ledger write expects dict")
        with self._db.write_tx() as con:
            self._upsert_state(con, st)

    def commit(self, st: Json, receipt: Json) -> int:
        """Returns the receipt sequence number."""
        if not isinstance(st, dict):
            raise ValueError("ledger commit expects dict")
        payload = _canon_json(receipt)
        with self._db.write_tx() as con:
            self._upsert_state(con, st)
            cur = con.execute(
                "INSERT INTO receipts(tx_type, requested_by, receipt_json, created_ts_ms) VALUES(?,?,?,?);",
                (str(receipt.get("applied") or ""), str(receipt.get("requested_by") or ""), payload, _now_ms()),
            )
        return int(cur.lastrowid)

    def receipts(self, *, limit: int = 100) -> List[Json]:
        lim = max(1, min(int(limit), 10_000))
        with self._db.connection() as con:
            rows = con.execute(
                "SELECT seq, receipt_json FROM receipts ORDER BY seq DESC LIMIT ?;",
                (lim,),
            ).fetchall()
        out: List[Json] = []
        for row in reversed(rows):
            rec = json.loads(str(row["receipt_json"]))
            if isinstance(rec, dict):
                rec["seq"] = int(row["seq"])
                out.append(rec)
        return out


class _SqliteToken:
    def __init__(self, book: "SqliteAssetBook", address: str) -> None:
        self._book = book
        self.address = str(address)

    def balance_of(self, holder: str) -> int:
        return self._book.balance_of(self.address, holder)

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        return self._book.transfer(self.address, sender, to, amount)


class SqliteAssetBook:
    """Multi-asset balance book stored in the service DB (asset_balances table)."""

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def token(self, address: str) -> _SqliteToken:
        return _SqliteToken(self, address)

    @staticmethod
    def _read(con: sqlite3.Connection, asset: str, holder: str) -> int:
        row = con.execute(
            "SELECT amount FROM asset_balances WHERE asset=? AND holder=?;",
            (str(asset), str(holder)),
        ).fetchone()
        return int(str(row["amount"])) if row is not None else 0

    @staticmethod
    def _write(con: sqlite3.Connection, asset: str, holder: str, amount: int) -> None:
        con.execute(
            """
            INSERT INTO asset_balances(asset, holder, amount) VALUES(?,?,?)
            ON CONFLICT(asset, holder) DO UPDATE SET amount=excluded.amount;
            """,
            (str(asset), str(holder), str(int(amount))),
        )

    def balance_of(self, asset: str, holder: str) -> int:
        with self._db.connection() as con:
            return self._read(con, asset, holder)

    def mint(self, asset: str, holder: str, amount: int) -> None:
        a = int(amount)
        if a < 0:
            raise ValueError("mint amount must be >= 0")
        with self._db.write_tx() as con:
            self._write(con, asset, holder, self._read(con, asset, holder) + a)

    def transfer(self, asset: str, sender: str, to: str, amount: int) -> bool:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            return False
        with self._db.write_tx() as con:
            have = self._read(con, asset, sender)
            if have < amount:
                return False
            self._write(con, asset, sender, have - amount)
            self._write(con, asset, to, self._read(con, asset, to) + amount)
        return True

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """Hold one write transaction open for the block.

        Transfers and any SqliteLedgerStore commit on the same file made inside
        the block join it, so balances and the ledger snapshot become durable
        together or not at all. Other threads only ever read committed rows.
        """
        with self._db.write_tx():
            yield

    def holders(self, asset: str) -> Dict[str, int]:
        with self._db.connection() as con:
            rows = con.execute("SELECT holder, amount FROM asset_balances WHERE asset=?;", (str(asset),)).fetchall()
        return {str(r["holder"]): int(str(r["amount"])) for r in rows}


def open_ledger_db(path: Optional[str]) -> Optional[SqliteDB]:
    if not path:
        return None
    db = SqliteDB(path=path)
    db.init_schema()
    return db
