from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional


def _is_truthy(v: str | None) -> bool:
    if v is None:
        return False
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class ApiConfig:
    mode: str  # "dev" | "testnet" | "prod"
    max_request_bytes: int
    receipts_page_max: int
    cors_origins: List[str]


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError:
        return int(default)


def parse_cors_origins(raw: str | None, *, mode: str) -> List[str]:
    """Parse CORS origins with production-safe defaults.

    Policy:
      - unset/empty -> CORS disabled
      - wildcard "*" is rejected in prod
    """
    s = (raw or "").strip()
    if not s:
        return []

    origins = [o.strip() for o in s.split(",") if o.strip()]
    if "*" in origins:
        if mode == "prod":
            raise RuntimeError(
                "Unsafe CORS configuration: wildcard '*' not allowed in production. "
                "Set explicit origins in TOKENLOCK_CORS_ORIGINS."
            )
        return ["*"]
    return origins


def load_api_config(mode: Optional[str] = None) -> ApiConfig:
    """API settings from env. An explicit mode (the booted ledger's) wins over TOKENLOCK_MODE."""
    mode = (mode or os.getenv("TOKENLOCK_MODE") or "prod").strip().lower()
    return ApiConfig(
        mode=mode,
        max_request_bytes=max(1, _env_int("TOKENLOCK_MAX_REQUEST_BYTES", 256_000)),
        receipts_page_max=max(1, _env_int("TOKENLOCK_RECEIPTS_PAGE_MAX", 500)),
        cors_origins=parse_cors_origins(os.getenv("TOKENLOCK_CORS_ORIGINS"), mode=mode),
    )


def log_requests_enabled() -> bool:
    raw = os.environ.get("TOKENLOCK_LOG_REQUESTS")
    if raw is None:
        return True
    return _is_truthy(raw)
