from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from tokenlock.runtime.collaborators import AdministratorCapability, ManualClock
from tokenlock.runtime.errors import TransferFailed
from tokenlock.runtime.executor import ExecutorError, VestingExecutor
from tokenlock.runtime.single_writer import SingleWriterLock, WriterLockHeld
from tokenlock.runtime.sqlite_db import SqliteAssetBook, SqliteDB, SqliteLedgerStore
from tokenlock.testing.ledger import ADMIN, ASSET, CUSTODY, make_ledger


def _pragma(con: sqlite3.Connection, name: str) -> int | str:
    row = con.execute(f"PRAGMA {name};").fetchone()
    if row is None:
        raise AssertionError(f"missing pragma: {name}")
    return row[0]


def test_sqlite_operational_pragmas_are_applied(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOKENLOCK_MODE", "prod")
    monkeypatch.delenv("TOKENLOCK_SQLITE_SYNCHRONOUS", raising=False)
    monkeypatch.setenv("TOKENLOCK_SQLITE_BUSY_TIMEOUT_MS", "1234")

    db = SqliteDB(path=str(tmp_path / "tokenlock.db"))
    db.init_schema()

    with db.connection() as con:
        assert str(_pragma(con, "journal_mode")).lower() == "wal"
        # FULL is the prod default.
        assert int(_pragma(con, "synchronous")) == 2
        assert int(_pragma(con, "busy_timeout")) == 1234


def test_ledger_survives_restart(tmp_path: Path) -> None:
    db_path = str(tmp_path / "ledger.db")
    h = make_ledger(db_path=db_path)
    h.ex.register_schedule("alice", [0, 100], [10, 20], requested_by=ADMIN)
    h.fund_custody(30)
    h.ex.activate(requested_by=ADMIN)
    h.ex.withdraw("alice", 10, requested_by="alice")

    ex2 = VestingExecutor(
        book=h.book,
        asset=ASSET,
        custody=CUSTODY,
        authority=AdministratorCapability(ADMIN),
        clock=h.clock,
        db_path=db_path,
    )
    assert ex2.is_activated() is True
    assert ex2.activation_timestamp() == h.ex.activation_timestamp()
    assert ex2.withdrawn_total("alice") == 10
    assert ex2.remaining_balance("alice") == 20
    assert [r["applied"] for r in ex2.receipts()] == [
        "VESTING_SCHEDULE_SET",
        "VESTING_LOCKUP",
        "VESTING_WITHDRAW",
    ]


def test_failed_operation_leaves_persisted_snapshot_untouched(tmp_path: Path) -> None:
    db_path = str(tmp_path / "ledger.db")
    h = make_ledger(db_path=db_path)
    h.ex.register_schedule("alice", [0], [10], requested_by=ADMIN)
    h.fund_custody(10)
    h.ex.activate(requested_by=ADMIN)

    store = SqliteLedgerStore(db=SqliteDB(path=db_path))
    before = store.read()

    h.book.fail_to.add("alice")
    with pytest.raises(TransferFailed):
        h.ex.withdraw("alice", 10, requested_by="alice")

    assert store.read() == before
    assert len(store.receipts()) == 2


def test_restart_refuses_mismatched_ledger_parameters(tmp_path: Path) -> None:
    db_path = str(tmp_path / "ledger.db")
    make_ledger(db_path=db_path)

    with pytest.raises(ExecutorError):
        VestingExecutor(
            book=make_ledger().book,
            asset="some-other-token",
            custody=CUSTODY,
            authority=AdministratorCapability(ADMIN),
            db_path=db_path,
        )
    with pytest.raises(ExecutorError):
        VestingExecutor(
            book=make_ledger().book,
            asset=ASSET,
            custody=CUSTODY,
            authority=AdministratorCapability(ADMIN),
            ledger_id="another-ledger",
            db_path=db_path,
        )


def test_sqlite_asset_book_transfers_and_rolls_back(tmp_path: Path) -> None:
    db = SqliteDB(path=str(tmp_path / "book.db"))
    book = SqliteAssetBook(db=db)
    book.mint(ASSET, ADMIN, 2**200)

    tok = book.token(ASSET)
    assert tok.transfer(ADMIN, "alice", 2**199) is True
    assert tok.transfer("alice", "bob", 2**199 + 1) is False
    assert tok.balance_of("alice") == 2**199

    with pytest.raises(RuntimeError):
        with book.savepoint():
            assert tok.transfer("alice", "bob", 5)
            raise RuntimeError("abort")
    assert tok.balance_of("bob") == 0
    assert tok.balance_of("alice") == 2**199


def test_executor_over_sqlite_book_rolls_back_external_transfer(tmp_path: Path) -> None:
    db_path = str(tmp_path / "ledger.db")
    book = SqliteAssetBook(db=SqliteDB(path=db_path))
    book.mint(ASSET, ADMIN, 100)
    ex = VestingExecutor(
        book=book,
        asset=ASSET,
        custody=CUSTODY,
        authority=AdministratorCapability(ADMIN),
        clock=ManualClock(),
        db_path=db_path,
    )
    ex.register_schedule("alice", [0], [10], requested_by=ADMIN)
    ex.transfer_asset(ASSET, CUSTODY, 10, requested_by=ADMIN)
    ex.activate(requested_by=ADMIN)
    ex.withdraw("alice", 10, requested_by="alice")

    assert book.balance_of(ASSET, "alice") == 10
    assert book.balance_of(ASSET, CUSTODY) == 0
    assert ex.custody_balance() == 0


def test_single_writer_lock_is_exclusive(tmp_path: Path) -> None:
    db_path = str(tmp_path / "ledger.db")
    a = SingleWriterLock.for_db(db_path)
    b = SingleWriterLock.for_db(db_path)
    a.acquire()
    try:
        with pytest.raises(WriterLockHeld):
            b.acquire()
    finally:
        a.release()
    with b:
        assert b.held
    assert not b.held
