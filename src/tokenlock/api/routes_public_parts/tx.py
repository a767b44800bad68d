from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from tokenlock.api.routes_public_parts.common import _executor
from tokenlock.api.schemas import TxEnvelopeIn

router = APIRouter()

Json = Dict[str, Any]


@router.post("/tx/submit")
def tx_submit(body: TxEnvelopeIn, request: Request) -> Json:
    """Apply a signed tx envelope.

    The signer's public key is the requesting identity; ledger errors are
    mapped to HTTP statuses by the app's exception handlers.

    Returns:
      { ok, receipt }
    """
    ex = _executor(request)
    receipt = ex.submit_tx(body.model_dump())
    return {"ok": True, "receipt": receipt}
