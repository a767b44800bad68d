# src/tokenlock/runtime/apply/settlement.py
from __future__ import annotations

"""Vesting ledger & settlement engine.

unlocked(r, t)     = sum(e.amount for e in entries(r) if activation_ts + e.delay_s <= t)
withdrawable(r, t) = unlocked(r, t) - withdrawn(r)

Both are zero while the ledger is open. Settlement order inside withdraw():

  1. phase         -> NotActivated
  2. caller        -> Unauthorized (recipient itself or administrator)
  3. custody       -> InsufficientCustodyBalance
  4. allocation    -> InsufficientAllocation
  5. maturity      -> ExceedsUnlockedBalance
  6. effects on the working state, then the external transfer
"""

from typing import Any, Dict, List

from tokenlock.ledger.types import as_uint, checked_add, checked_sub
from tokenlock.runtime.apply.context import ApplyContext, transfer_or_fail
from tokenlock.runtime.errors import (
    ExceedsUnlockedBalance,
    InsufficientAllocation,
    InsufficientCustodyBalance,
    PartialSettlementFailure,
    TransferFailed,
    Unauthorized,
)
from tokenlock.runtime.lock_phase import activation_time, deny_if_not_activated, require_administrator

Json = Dict[str, Any]


def _record(state: Json, recipient: str) -> Json:
    rec = (state.get("recipients") or {}).get(str(recipient))
    return rec if isinstance(rec, dict) else {}


def unlocked_balance(state: Json, recipient: str, at_time: int) -> int:
    ts = activation_time(state)
    if ts is None:
        return 0
    t = int(at_time)
    total = 0
    for e in _record(state, recipient).get("entries") or []:
        if ts + int(e.get("delay_s", 0)) <= t:
            total += int(e.get("amount", 0))
    return total


def withdrawable(state: Json, recipient: str, at_time: int) -> int:
    withdrawn = int(_record(state, recipient).get("withdrawn", 0))
    return max(0, unlocked_balance(state, recipient, at_time) - withdrawn)


def _settle(state: Json, ctx: ApplyContext, recipient: str, amount: int, *, op: str) -> None:
    rec = state["recipients"][recipient]
    rec["withdrawn"] = checked_add(rec.get("withdrawn", 0), amount, field="withdrawn")
    rec["remaining"] = checked_sub(rec.get("remaining", 0), amount, field="remaining")
    state["total_outstanding"] = checked_sub(state.get("total_outstanding", 0), amount, field="total_outstanding")

    # Ledger effects above are already applied to the working copy.
    transfer_or_fail(ctx.vesting_token(), sender=ctx.custody, to=recipient, amount=amount, op=op)


def withdraw(state: Json, ctx: ApplyContext, recipient: Any, amount: Any) -> Json:
    deny_if_not_activated(state, op="withdraw")

    addr = str(recipient or "").strip()
    if ctx.requested_by != addr:
        try:
            require_administrator(ctx.authority, ctx.requested_by, op="withdraw")
        except Unauthorized as e:
            raise Unauthorized("recipient_or_administrator_required", {**e.details, "recipient": addr}) from None

    amt = as_uint(amount, field="amount")

    custody_balance = int(ctx.vesting_token().balance_of(ctx.custody))
    if custody_balance < amt:
        raise InsufficientCustodyBalance(
            "custody_balance_below_amount",
            {"custody_balance": custody_balance, "amount": amt},
        )

    rec = _record(state, addr)
    remaining = int(rec.get("remaining", 0))
    if remaining < amt:
        raise InsufficientAllocation(
            "amount_exceeds_remaining_allocation",
            {"recipient": addr, "remaining": remaining, "amount": amt},
        )

    available = withdrawable(state, addr, ctx.now)
    if amt > available:
        raise ExceedsUnlockedBalance(
            "some_tokens_still_locked",
            {"recipient": addr, "withdrawable": available, "amount": amt, "at": int(ctx.now)},
        )

    if amt > 0:
        _settle(state, ctx, addr, amt, op="withdraw")

    rec = _record(state, addr)
    return {
        "applied": "VESTING_WITHDRAW",
        "recipient": addr,
        "amount": amt,
        "requested_by": ctx.requested_by,
        "withdrawn": int(rec.get("withdrawn", 0)),
        "remaining": int(rec.get("remaining", 0)),
        "total_outstanding": int(state.get("total_outstanding", 0)),
    }


def withdraw_all_matured(state: Json, ctx: ApplyContext) -> Json:
    """Pay every recipient its full withdrawable amount; all or nothing."""
    require_administrator(ctx.authority, ctx.requested_by, op="withdraw_all_matured")
    deny_if_not_activated(state, op="withdraw_all_matured")

    due: List[tuple[str, int]] = []
    for addr in list(state.get("recipient_order") or []):
        w = withdrawable(state, addr, ctx.now)
        if w > 0:
            due.append((addr, w))

    total_due = sum(w for _, w in due)
    custody_balance = int(ctx.vesting_token().balance_of(ctx.custody))
    if custody_balance < total_due:
        raise InsufficientCustodyBalance(
            "custody_balance_below_matured_total",
            {"custody_balance": custody_balance, "amount": total_due},
        )

    payouts: List[Json] = []
    for addr, w in due:
        try:
            _settle(state, ctx, addr, w, op="withdraw_all_matured")
        except TransferFailed as e:
            raise PartialSettlementFailure(
                "settlement_aborted",
                {"failed_recipient": addr, "amount": w, "settled_before_failure": len(payouts), "cause": e.to_json()},
            ) from e
        payouts.append({"recipient": addr, "amount": w})

    return {
        "applied": "VESTING_WITHDRAW_ALL",
        "payouts": payouts,
        "total_paid": total_due,
        "total_outstanding": int(state.get("total_outstanding", 0)),
    }
