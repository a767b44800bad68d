from __future__ import annotations

"""Pydantic request/response schemas for the public API.

Only HTTP input validation lives here; tx payload semantics are enforced by
the apply modules.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TxEnvelopeIn(BaseModel):
    tx_type: str = Field(..., min_length=1, description="e.g. VESTING_WITHDRAW")
    signer: str = Field(..., min_length=1, description="Hex Ed25519 public key of the requester")
    nonce: int = Field(..., ge=1, description="Next per-signer nonce")
    payload: Dict[str, Any] = Field(default_factory=dict)
    sig: str = Field(..., min_length=1, description="Signature over the canonical tx message")

    model_config = {"extra": "forbid"}


class ScheduleEntryOut(BaseModel):
    index: int
    amount: int
    delay_s: int
    matures_at: Optional[int] = None


class RecipientOut(BaseModel):
    ok: bool = True
    recipient: str
    remaining: int
    withdrawn: int
    unlocked: int
    withdrawable: int
    schedule_length: int
    entries: List[ScheduleEntryOut]


class LedgerOut(BaseModel):
    ok: bool = True
    ledger_id: str
    phase: str
    activated: bool
    activation_ts: Optional[int] = None
    total_outstanding: int
    custody_balance: int
    excess_custody: int
    deposited_native: int
    recipient_count: int
    asset: str
    custody: str
    native: str
