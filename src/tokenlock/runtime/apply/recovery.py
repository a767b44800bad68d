# src/tokenlock/runtime/apply/recovery.py
from __future__ import annotations

from typing import Any, Dict

from tokenlock.ledger.types import as_uint, checked_add
from tokenlock.runtime.apply.context import ApplyContext, transfer_or_fail
from tokenlock.runtime.errors import ExceedsExcessBalance, ForbiddenAsset, InsufficientCustodyBalance, InvalidRecipient
from tokenlock.runtime.lock_phase import deny_if_activated, deny_if_not_activated, require_administrator

Json = Dict[str, Any]


def _require_custody(balance: int, amount: int, *, asset: str) -> None:
    if balance < amount:
        raise InsufficientCustodyBalance(
            "custody_balance_below_amount",
            {"asset": asset, "custody_balance": int(balance), "amount": int(amount)},
        )


def reclaim_pre_activation_deposit(state: Json, ctx: ApplyContext, amount: Any) -> Json:
    """Return vesting tokens to the administrator before any obligation is frozen."""
    require_administrator(ctx.authority, ctx.requested_by, op="reclaim_pre_activation_deposit")
    deny_if_activated(state, op="reclaim_pre_activation_deposit")

    amt = as_uint(amount, field="amount")
    token = ctx.vesting_token()
    _require_custody(int(token.balance_of(ctx.custody)), amt, asset=ctx.asset)

    transfer_or_fail(token, sender=ctx.custody, to=ctx.requested_by, amount=amt, op="reclaim_pre_activation_deposit")
    return {"applied": "RECLAIM_PRE_ACTIVATION", "asset": ctx.asset, "amount": amt, "to": ctx.requested_by}


def excess_custody(state: Json, ctx: ApplyContext) -> int:
    balance = int(ctx.vesting_token().balance_of(ctx.custody))
    return max(0, balance - int(state.get("total_outstanding", 0)))


def reclaim_excess_custody(state: Json, ctx: ApplyContext, amount: Any) -> Json:
    """Withdraw vesting tokens above total_outstanding; solvency is never reduced."""
    require_administrator(ctx.authority, ctx.requested_by, op="reclaim_excess_custody")
    deny_if_not_activated(state, op="reclaim_excess_custody")

    amt = as_uint(amount, field="amount")
    excess = excess_custody(state, ctx)
    if amt > excess:
        raise ExceedsExcessBalance(
            "amount_exceeds_excess_custody",
            {"excess": excess, "amount": amt, "total_outstanding": int(state.get("total_outstanding", 0))},
        )

    transfer_or_fail(ctx.vesting_token(), sender=ctx.custody, to=ctx.requested_by, amount=amt, op="reclaim_excess_custody")
    return {"applied": "RECLAIM_EXCESS_CUSTODY", "asset": ctx.asset, "amount": amt, "to": ctx.requested_by}


def reclaim_foreign_asset(state: Json, ctx: ApplyContext, asset: Any, amount: Any) -> Json:
    """Forward any non-vesting asset held by custody to the administrator."""
    require_administrator(ctx.authority, ctx.requested_by, op="reclaim_foreign_asset")

    addr = str(asset or "").strip()
    if not addr:
        raise ForbiddenAsset("missing_asset_address", {})
    if addr == ctx.asset:
        raise ForbiddenAsset("vesting_asset_uses_excess_custody_path", {"asset": addr})
    if addr == ctx.native:
        # Forwarded through the native path so deposited_native stays in step.
        receipt = reclaim_stray_native_value(state, ctx, amount)
        receipt["redirected_from"] = "RECLAIM_FOREIGN_ASSET"
        return receipt

    amt = as_uint(amount, field="amount")
    token = ctx.book.token(addr)
    _require_custody(int(token.balance_of(ctx.custody)), amt, asset=addr)

    transfer_or_fail(token, sender=ctx.custody, to=ctx.requested_by, amount=amt, op="reclaim_foreign_asset")
    return {"applied": "RECLAIM_FOREIGN_ASSET", "asset": addr, "amount": amt, "to": ctx.requested_by}


def reclaim_stray_native_value(state: Json, ctx: ApplyContext, amount: Any) -> Json:
    require_administrator(ctx.authority, ctx.requested_by, op="reclaim_stray_native_value")

    amt = as_uint(amount, field="amount")
    token = ctx.native_token()
    _require_custody(int(token.balance_of(ctx.custody)), amt, asset=ctx.native)

    deposited = int(state.get("deposited_native", 0))
    state["deposited_native"] = deposited - min(deposited, amt)

    transfer_or_fail(token, sender=ctx.custody, to=ctx.requested_by, amount=amt, op="reclaim_stray_native_value")
    return {
        "applied": "RECLAIM_NATIVE",
        "asset": ctx.native,
        "amount": amt,
        "to": ctx.requested_by,
        "deposited_native": int(state["deposited_native"]),
    }


def receive_native(state: Json, ctx: ApplyContext, amount: Any) -> Json:
    """Passive native-value receipt. Accepted only while the ledger is open."""
    deny_if_activated(state, op="receive_native")

    amt = as_uint(amount, field="amount")
    state["deposited_native"] = checked_add(state.get("deposited_native", 0), amt, field="deposited_native")

    if amt > 0:
        transfer_or_fail(ctx.native_token(), sender=ctx.requested_by, to=ctx.custody, amount=amt, op="receive_native")
    return {
        "applied": "NATIVE_DEPOSIT",
        "from": ctx.requested_by,
        "amount": amt,
        "deposited_native": int(state["deposited_native"]),
    }


def asset_transfer(state: Json, ctx: ApplyContext, asset: Any, to: Any, amount: Any) -> Json:
    """Plain collaborator transfer between holders (e.g. funding custody).

    Does not touch vesting accounting. Moving funds out of custody this way is
    refused: custody only pays out through settlement and recovery.
    """
    addr = str(asset or ctx.asset).strip()
    dest = str(to or "").strip()
    if ctx.requested_by == ctx.custody:
        raise ForbiddenAsset("custody_cannot_send_directly", {"asset": addr})
    if not dest:
        raise InvalidRecipient("missing_destination", {"asset": addr})

    amt = as_uint(amount, field="amount")
    if addr == ctx.native and dest == ctx.custody:
        return receive_native(state, ctx, amt)

    transfer_or_fail(ctx.book.token(addr), sender=ctx.requested_by, to=dest, amount=amt, op="asset_transfer")
    return {"applied": "ASSET_TRANSFER", "asset": addr, "from": ctx.requested_by, "to": dest, "amount": amt}
