# src/tokenlock/runtime/domain_dispatch.py

from __future__ import annotations

from typing import Any, Callable, Dict

from tokenlock.runtime.apply.context import ApplyContext
from tokenlock.runtime.apply.lockup import activate
from tokenlock.runtime.apply.recovery import (
    asset_transfer,
    receive_native,
    reclaim_excess_custody,
    reclaim_foreign_asset,
    reclaim_pre_activation_deposit,
    reclaim_stray_native_value,
)
from tokenlock.runtime.apply.schedule import register_schedule, register_schedules_bulk
from tokenlock.runtime.apply.settlement import withdraw, withdraw_all_matured
from tokenlock.runtime.errors import UnknownTxType
from tokenlock.runtime.state_invariants import ensure_state
from tokenlock.runtime.tx_types import TxEnvelope

Json = Dict[str, Any]
Handler = Callable[[Json, ApplyContext, Json], Json]


def _schedule_set(st: Json, ctx: ApplyContext, p: Json) -> Json:
    return register_schedule(st, ctx, p.get("recipient"), p.get("delays"), p.get("amounts"))


def _schedule_bulk_set(st: Json, ctx: ApplyContext, p: Json) -> Json:
    return register_schedules_bulk(st, ctx, p.get("recipients"), p.get("delays"), p.get("amounts"))


def _lockup(st: Json, ctx: ApplyContext, p: Json) -> Json:
    return activate(st, ctx)


def _withdraw(st: Json, ctx: ApplyContext, p: Json) -> Json:
    # Omitted recipient means "withdraw my own unlocked tokens".
    recipient = p.get("recipient") or ctx.requested_by
    return withdraw(st, ctx, recipient, p.get("amount"))


def _withdraw_all(st: Json, ctx: ApplyContext, p: Json) -> Json:
    return withdraw_all_matured(st, ctx)


def _reclaim_pre(st: Json, ctx: ApplyContext, p: Json) -> Json:
    return reclaim_pre_activation_deposit(st, ctx, p.get("amount"))


def _reclaim_excess(st: Json, ctx: ApplyContext, p: Json) -> Json:
    return reclaim_excess_custody(st, ctx, p.get("amount"))


def _reclaim_foreign(st: Json, ctx: ApplyContext, p: Json) -> Json:
    return reclaim_foreign_asset(st, ctx, p.get("asset"), p.get("amount"))


def _reclaim_native(st: Json, ctx: ApplyContext, p: Json) -> Json:
    return reclaim_stray_native_value(st, ctx, p.get("amount"))


def _native_deposit(st: Json, ctx: ApplyContext, p: Json) -> Json:
    return receive_native(st, ctx, p.get("amount"))


def _asset_transfer(st: Json, ctx: ApplyContext, p: Json) -> Json:
    return asset_transfer(st, ctx, p.get("asset"), p.get("to"), p.get("amount"))


HANDLERS: Dict[str, Handler] = {
    "VESTING_SCHEDULE_SET": _schedule_set,
    "VESTING_SCHEDULE_BULK_SET": _schedule_bulk_set,
    "VESTING_LOCKUP": _lockup,
    "VESTING_WITHDRAW": _withdraw,
    "VESTING_WITHDRAW_ALL": _withdraw_all,
    "RECLAIM_PRE_ACTIVATION": _reclaim_pre,
    "RECLAIM_EXCESS_CUSTODY": _reclaim_excess,
    "RECLAIM_FOREIGN_ASSET": _reclaim_foreign,
    "RECLAIM_NATIVE": _reclaim_native,
    "NATIVE_DEPOSIT": _native_deposit,
    "ASSET_TRANSFER": _asset_transfer,
}

SUPPORTED_TX_TYPES = frozenset(HANDLERS)


def apply_tx(state: Json, ctx: ApplyContext, env: Any) -> Json:
    """Dispatch a TxEnvelope (or raw dict) to its apply function."""

    ensure_state(state)

    env_norm = TxEnvelope.from_json(env)
    t = env_norm.tx_type
    fn = HANDLERS.get(t)
    if fn is None:
        raise UnknownTxType("tx_type_not_implemented", {"tx_type": t})

    return fn(state, ctx, dict(env_norm.payload or {}))
