# src/tokenlock/runtime/apply/lockup.py
from __future__ import annotations

from typing import Any, Dict

from tokenlock.runtime.apply.context import ApplyContext
from tokenlock.runtime.errors import InsufficientCustodyBalance
from tokenlock.runtime.lock_phase import deny_if_activated, mark_activated, require_administrator

Json = Dict[str, Any]


def activate(state: Json, ctx: ApplyContext) -> Json:
    """Freeze the registry and start the vesting clock.

    Custody must already back every outstanding obligation; partial backing is refused.
    """
    require_administrator(ctx.authority, ctx.requested_by, op="activate")
    deny_if_activated(state, op="activate")

    outstanding = int(state.get("total_outstanding", 0))
    custody_balance = int(ctx.vesting_token().balance_of(ctx.custody))
    if custody_balance < outstanding:
        raise InsufficientCustodyBalance(
            "custody_does_not_cover_outstanding",
            {"custody_balance": custody_balance, "total_outstanding": outstanding},
        )

    mark_activated(state, now_s=ctx.now)

    return {
        "applied": "VESTING_LOCKUP",
        "activation_ts": int(state["activation_ts"]),
        "total_outstanding": outstanding,
        "custody_balance": custody_balance,
    }
