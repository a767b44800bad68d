from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tokenlock.api.config import load_api_config
from tokenlock.api.errors import ApiError, api_error_handler, ledger_error_handler
from tokenlock.api.routes_public import public_router
from tokenlock.api.security import RequestSizeLimitMiddleware
from tokenlock.api.structured_logging import RequestLogMiddleware
from tokenlock.runtime.errors import LedgerError
from tokenlock.runtime.event_log import configure_structured_logging
from tokenlock.runtime.executor import VestingExecutor
from tokenlock.runtime.executor_boot import build_executor as _build_executor
from tokenlock.runtime.ledger_config import LedgerConfig, load_ledger_config
from tokenlock.runtime.single_writer import SingleWriterLock

logger = logging.getLogger("tokenlock.api")


def build_executor(cfg: LedgerConfig) -> VestingExecutor:
    """Build a VestingExecutor for API runtime.

    This wrapper exists so tests can monkeypatch `tokenlock.api.app.build_executor`
    without reaching into runtime modules.
    """
    return _build_executor(cfg)


def create_app(
    *,
    boot_runtime: bool = True,
    ledger_config: Optional[LedgerConfig] = None,
    executor: Optional[VestingExecutor] = None,
) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): load ledger config, take the single-writer lock on the
        DB and attach an executor via build_executor()
      - False: attach `executor` as given (None for lightweight tests)
    """
    cfg: Optional[LedgerConfig] = ledger_config
    if boot_runtime and cfg is None:
        cfg = load_ledger_config()
    api_cfg = load_api_config(mode=cfg.mode if cfg is not None else None)

    writer_lock: Optional[SingleWriterLock] = None
    if boot_runtime and cfg is not None:
        configure_structured_logging(cfg.log_level)
        writer_lock = SingleWriterLock.for_db(cfg.db_path)
        writer_lock.acquire()
        try:
            executor = build_executor(cfg)
        except BaseException:
            writer_lock.release()
            raise
        logger.info("executor booted ledger_id=%s db=%s", cfg.ledger_id, cfg.db_path)

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        yield
        lock = getattr(app.state, "writer_lock", None)
        if lock is not None:
            lock.release()

    # Disable docs in production.
    if api_cfg.mode == "prod":
        app = FastAPI(
            title="Tokenlock Vesting Ledger API",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
            lifespan=_lifespan,
        )
    else:
        app = FastAPI(title="Tokenlock Vesting Ledger API", lifespan=_lifespan)

    app.state.cfg = api_cfg
    app.state.executor = executor
    app.state.writer_lock = writer_lock

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(LedgerError, ledger_error_handler)

    # --- Middleware ---
    # Request size limiter should be early to fail fast.
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=api_cfg.max_request_bytes)

    if api_cfg.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=api_cfg.cors_origins,
            allow_credentials=api_cfg.cors_origins != ["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "X-Request-Id"],
        )

    # Outermost: logs every request, including ones rejected by the limiter.
    app.add_middleware(RequestLogMiddleware)

    # --- Routers ---
    app.include_router(public_router)

    return app
