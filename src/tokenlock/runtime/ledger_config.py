# src/tokenlock/runtime/ledger_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from tokenlock.ledger.types import is_null_identity
from tokenlock.runtime.collaborators import NATIVE_ASSET

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    if v is None or (isinstance(v, str) and not v.strip()):
        return int(default)
    try:
        return int(v)
    except (TypeError, ValueError):
        raise ValueError(f"expected an integer, got {v!r}") from None


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v).strip()
    return s if s else str(default)


@dataclass(frozen=True)
class LedgerConfig:
    ledger_id: str
    mode: str  # "dev" | "testnet" | "prod"

    # Single SQLite DB file for snapshot, receipts and asset balances.
    db_path: str

    asset_address: str
    custody_address: str
    native_address: str

    admin_identity: str

    # Minted once into genesis_holder when the asset book is empty.
    genesis_supply: int
    genesis_holder: str

    api_host: str
    api_port: int

    log_level: str


_ALLOWED_MODES = {"dev", "testnet", "prod"}

# Keys accepted in a config file, and the env var each one falls back to.
_ENV_KEYS: Dict[str, str] = {
    "ledger_id": "TOKENLOCK_LEDGER_ID",
    "mode": "TOKENLOCK_MODE",
    "db_path": "TOKENLOCK_DB_PATH",
    "asset_address": "TOKENLOCK_ASSET_ADDRESS",
    "custody_address": "TOKENLOCK_CUSTODY_ADDRESS",
    "native_address": "TOKENLOCK_NATIVE_ADDRESS",
    "admin_identity": "TOKENLOCK_ADMIN_IDENTITY",
    "genesis_supply": "TOKENLOCK_GENESIS_SUPPLY",
    "genesis_holder": "TOKENLOCK_GENESIS_HOLDER",
    "api_host": "TOKENLOCK_API_HOST",
    "api_port": "TOKENLOCK_API_PORT",
    "log_level": "TOKENLOCK_LOG_LEVEL",
}


def validate_ledger_config(cfg: LedgerConfig) -> None:
    """Fail-fast validation for operator config."""

    if not cfg.ledger_id.strip():
        raise ValueError("ledger_id must be a non-empty string")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {sorted(_ALLOWED_MODES)}; got: {cfg.mode!r}")

    if not cfg.db_path.strip():
        raise ValueError("db_path must be a non-empty string")

    for name in ("asset_address", "custody_address", "native_address"):
        if not str(getattr(cfg, name) or "").strip():
            raise ValueError(f"{name} must be a non-empty string")

    if is_null_identity(cfg.custody_address):
        raise ValueError("custody_address must not be the zero address")

    if cfg.asset_address == cfg.native_address:
        raise ValueError("asset_address and native_address must differ")

    if mode == "prod" and not cfg.admin_identity:
        raise ValueError("prod mode requires an explicit admin_identity")
    if cfg.admin_identity and is_null_identity(cfg.admin_identity):
        raise ValueError("admin_identity must not be the zero address")

    if int(cfg.genesis_supply) < 0:
        raise ValueError(f"genesis_supply must be >= 0; got: {cfg.genesis_supply}")
    if int(cfg.genesis_supply) > 0 and not cfg.genesis_holder:
        raise ValueError("genesis_supply requires genesis_holder (or admin_identity)")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")


def default_ledger_config() -> LedgerConfig:
    return LedgerConfig(
        ledger_id="tokenlock-dev",
        # Without an explicit config we do not fall into a permissive posture.
        mode="prod",
        db_path="./data/tokenlock.db",
        asset_address="vest-token",
        custody_address="tokenlock-custody",
        native_address=NATIVE_ASSET,
        admin_identity="",
        genesis_supply=0,
        genesis_holder="",
        api_host="127.0.0.1",
        api_port=8000,
        log_level="INFO",
    )


def _build(raw: Mapping[str, Any]) -> LedgerConfig:
    d = default_ledger_config()
    admin = _as_str(raw.get("admin_identity"), d.admin_identity)
    cfg = LedgerConfig(
        ledger_id=_as_str(raw.get("ledger_id"), d.ledger_id),
        mode=_as_str(raw.get("mode"), d.mode).lower(),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        asset_address=_as_str(raw.get("asset_address"), d.asset_address),
        custody_address=_as_str(raw.get("custody_address"), d.custody_address),
        native_address=_as_str(raw.get("native_address"), d.native_address),
        admin_identity=admin,
        genesis_supply=_as_int(raw.get("genesis_supply"), d.genesis_supply),
        genesis_holder=_as_str(raw.get("genesis_holder"), admin),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        log_level=_as_str(raw.get("log_level"), d.log_level).upper(),
    )
    validate_ledger_config(cfg)
    return cfg


def read_ledger_config_file(path: str) -> LedgerConfig:
    """Load a JSON or YAML config file (by suffix; .yaml/.yml parse as YAML)."""
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("ledger config must be a mapping")

    unknown = sorted(set(raw.keys()) - set(_ENV_KEYS.keys()))
    if unknown:
        raise ValueError(f"unknown ledger config keys: {unknown}")
    return _build(raw)


def ledger_config_from_env(environ: Optional[Mapping[str, str]] = None) -> LedgerConfig:
    env = os.environ if environ is None else environ
    return _build({key: env.get(var) for key, var in _ENV_KEYS.items()})


def load_ledger_config(*, config_path: Optional[str] = None) -> LedgerConfig:
    p = config_path or os.environ.get("TOKENLOCK_CONFIG_PATH")
    if p:
        return read_ledger_config_file(p)
    return ledger_config_from_env()


__all__ = [
    "LedgerConfig",
    "validate_ledger_config",
    "default_ledger_config",
    "read_ledger_config_file",
    "ledger_config_from_env",
    "load_ledger_config",
]
