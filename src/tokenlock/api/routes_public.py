# src/tokenlock/api/routes_public.py
from __future__ import annotations

from fastapi import APIRouter

from tokenlock.api.routes_public_parts.health import router as health_router
from tokenlock.api.routes_public_parts.ledger import router as ledger_router
from tokenlock.api.routes_public_parts.metrics import router as metrics_router
from tokenlock.api.routes_public_parts.receipts import router as receipts_router
from tokenlock.api.routes_public_parts.tx import router as tx_router

public_router = APIRouter()

# health routes carry their own /v1 and /healthz paths
public_router.include_router(health_router, prefix="", tags=["health"])
public_router.include_router(ledger_router, prefix="/v1", tags=["ledger"])
public_router.include_router(tx_router, prefix="/v1", tags=["tx"])
public_router.include_router(receipts_router, prefix="/v1", tags=["receipts"])

# Ops
public_router.include_router(metrics_router, prefix="/v1", tags=["metrics"])
