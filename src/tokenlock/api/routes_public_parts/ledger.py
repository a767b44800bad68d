from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Request

from tokenlock.api.errors import ApiError
from tokenlock.api.routes_public_parts.common import _executor, _int_param
from tokenlock.api.schemas import LedgerOut, RecipientOut, ScheduleEntryOut

router = APIRouter()

Json = Dict[str, Any]


def _entry_out(index: int, amount: int, delay_s: int, activation_ts: Optional[int]) -> ScheduleEntryOut:
    return ScheduleEntryOut(
        index=index,
        amount=amount,
        delay_s=delay_s,
        matures_at=None if activation_ts is None else activation_ts + delay_s,
    )


@router.get("/ledger", response_model=LedgerOut)
def ledger_summary(request: Request) -> LedgerOut:
    ex = _executor(request)
    st = ex.read_state()
    custody = ex.custody_balance()
    outstanding = ex.total_outstanding()
    return LedgerOut(
        ledger_id=str(st.get("ledger_id") or ""),
        phase=str(st.get("phase") or ""),
        activated=ex.is_activated(),
        activation_ts=ex.activation_timestamp(),
        total_outstanding=outstanding,
        custody_balance=custody,
        excess_custody=max(0, custody - outstanding),
        deposited_native=ex.deposited_native_value(),
        recipient_count=len(ex.recipients()),
        asset=ex.params.asset,
        custody=ex.params.custody,
        native=ex.params.native,
    )


@router.get("/recipients")
def recipients_list(request: Request) -> Json:
    ex = _executor(request)
    rs = ex.recipients()
    return {"ok": True, "count": len(rs), "recipients": rs}


@router.get("/recipients/{recipient}", response_model=RecipientOut)
def recipient_detail(recipient: str, request: Request) -> RecipientOut:
    ex = _executor(request)
    at = _int_param(request.query_params.get("at"), ex.now())
    act = ex.activation_timestamp()
    entries = []
    for i in range(ex.schedule_length(recipient)):
        e = ex.schedule_entry(recipient, i)
        entries.append(_entry_out(i, e.amount, e.delay_s, act))
    return RecipientOut(
        recipient=recipient,
        remaining=ex.remaining_balance(recipient),
        withdrawn=ex.withdrawn_total(recipient),
        unlocked=ex.unlocked_balance(recipient, at),
        withdrawable=ex.withdrawable(recipient, at),
        schedule_length=len(entries),
        entries=entries,
    )


@router.get("/recipients/{recipient}/schedule/{index}", response_model=ScheduleEntryOut)
def recipient_schedule_entry(recipient: str, index: int, request: Request) -> ScheduleEntryOut:
    ex = _executor(request)
    try:
        e = ex.schedule_entry(recipient, index)
    except IndexError:
        raise ApiError.not_found(
            "schedule_entry_not_found",
            "schedule index out of range",
            {"recipient": recipient, "index": index, "length": ex.schedule_length(recipient)},
        ) from None
    return _entry_out(index, e.amount, e.delay_s, ex.activation_timestamp())


@router.get("/assets/{asset}/balances/{holder}")
def asset_balance(asset: str, holder: str, request: Request) -> Json:
    ex = _executor(request)
    return {"ok": True, "asset": asset, "holder": holder, "balance": ex.asset_balance(asset, holder)}


@router.get("/signers/{signer}/nonce")
def signer_next_nonce(signer: str, request: Request) -> Json:
    ex = _executor(request)
    return {"ok": True, "signer": signer, "next_nonce": ex.next_nonce(signer)}
