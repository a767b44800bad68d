from __future__ import annotations

import time
from typing import Any

from fastapi import APIRouter, Request

router = APIRouter()


def _now_ms() -> int:
    return int(time.time() * 1000)


def _health_payload(request: Request) -> dict[str, Any]:
    # health must never crash; executor fields are best-effort
    ex = getattr(request.app.state, "executor", None)
    ledger_id = None
    phase = None
    if ex is not None:
        try:
            st = ex.read_state()
            ledger_id = str(st.get("ledger_id") or "") or None
            phase = str(st.get("phase") or "") or None
        except Exception:
            ledger_id = None
            phase = None

    return {
        "ok": True,
        "service": "tokenlock",
        "version": "v1",
        "ts_ms": _now_ms(),
        "executor_attached": ex is not None,
        "ledger_id": ledger_id,
        "phase": phase,
    }


@router.get("/v1/health")
def v1_health(request: Request) -> dict[str, Any]:
    return _health_payload(request)


@router.get("/healthz")
def healthz(request: Request) -> dict[str, Any]:
    # Kubernetes-style alias
    return _health_payload(request)
