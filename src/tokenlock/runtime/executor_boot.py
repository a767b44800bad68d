# src/tokenlock/runtime/executor_boot.py

from __future__ import annotations

import logging
from typing import Optional

from tokenlock.runtime.collaborators import AdministratorCapability, Authority, NoAdministrator
from tokenlock.runtime.executor import VestingExecutor
from tokenlock.runtime.ledger_config import LedgerConfig, load_ledger_config
from tokenlock.runtime.sqlite_db import SqliteAssetBook, SqliteDB

logger = logging.getLogger("tokenlock.boot")


def _authority(cfg: LedgerConfig) -> Authority:
    if cfg.admin_identity:
        return AdministratorCapability(cfg.admin_identity)
    logger.warning("no admin_identity configured; administrator operations are disabled")
    return NoAdministrator()


def seed_genesis(book: SqliteAssetBook, cfg: LedgerConfig) -> bool:
    """Mint genesis_supply of the vesting asset once, into an empty book."""
    if int(cfg.genesis_supply) <= 0:
        return False
    if book.holders(cfg.asset_address):
        return False
    book.mint(cfg.asset_address, cfg.genesis_holder, int(cfg.genesis_supply))
    logger.info("genesis supply minted asset=%s holder=%s", cfg.asset_address, cfg.genesis_holder)
    return True


def build_executor(cfg: Optional[LedgerConfig] = None) -> VestingExecutor:
    """
    Build a VestingExecutor from an explicit config or, if omitted, from
    TOKENLOCK_CONFIG_PATH / TOKENLOCK_* environment variables.

    Ledger snapshot, receipts and asset balances share one SQLite file.
    """
    c = cfg or load_ledger_config()

    db = SqliteDB(path=c.db_path)
    db.init_schema()
    book = SqliteAssetBook(db=db)
    seed_genesis(book, c)

    return VestingExecutor(
        book=book,
        asset=c.asset_address,
        custody=c.custody_address,
        native=c.native_address,
        authority=_authority(c),
        ledger_id=c.ledger_id,
        db_path=c.db_path,
    )
