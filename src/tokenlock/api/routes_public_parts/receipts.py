from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from tokenlock.api.routes_public_parts.common import _executor, _int_param

router = APIRouter()

Json = Dict[str, Any]


@router.get("/receipts")
def receipts_tail(request: Request) -> Json:
    """Audit log tail, oldest first."""
    ex = _executor(request)
    cap = request.app.state.cfg.receipts_page_max
    limit = max(1, min(_int_param(request.query_params.get("limit"), 50), cap))
    items = ex.receipts(limit=limit)
    return {"ok": True, "count": len(items), "receipts": items}
