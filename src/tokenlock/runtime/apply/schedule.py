# src/tokenlock/runtime/apply/schedule.py
from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple

from tokenlock.ledger.types import as_uint, checked_add, is_null_identity
from tokenlock.runtime.apply.context import ApplyContext
from tokenlock.runtime.errors import BulkLengthMismatch, InvalidAmount, InvalidRecipient, ScheduleMismatch
from tokenlock.runtime.lock_phase import deny_if_activated, require_administrator

Json = Dict[str, Any]
Pair = Tuple[int, int]  # (delay_s, amount)


def _as_seq(v: Any, *, field: str) -> List[Any]:
    if isinstance(v, (list, tuple)):
        return list(v)
    raise InvalidAmount("not_a_sequence", {"field": field, "type": type(v).__name__})


def _validate_schedule(recipient: Any, delays: Any, amounts: Any, *, index: int | None = None) -> Tuple[str, List[Pair]]:
    where: Json = {} if index is None else {"index": int(index)}

    ds = _as_seq(delays, field="delays")
    am = _as_seq(amounts, field="amounts")
    if len(ds) != len(am):
        raise ScheduleMismatch(
            "delays_and_amounts_must_be_same_length",
            {**where, "delays": len(ds), "amounts": len(am)},
        )

    if is_null_identity(recipient):
        raise InvalidRecipient("null_recipient", {**where, "recipient": "" if recipient is None else str(recipient)})

    pairs = [(as_uint(d, field="delay_s"), as_uint(a, field="amount")) for d, a in zip(ds, am)]
    return str(recipient).strip(), pairs


def _recipient_record(state: Json, recipient: str) -> Json:
    recipients = state["recipients"]
    rec = recipients.get(recipient)
    if not isinstance(rec, dict):
        rec = {"entries": [], "remaining": 0, "withdrawn": 0}
        recipients[recipient] = rec
        state["recipient_order"].append(recipient)
    return rec


def _append_entries(state: Json, recipient: str, pairs: Sequence[Pair]) -> int:
    if not pairs:
        return 0

    rec = _recipient_record(state, recipient)
    added = 0
    for delay_s, amount in pairs:
        rec["remaining"] = checked_add(rec.get("remaining", 0), amount, field="remaining")
        state["total_outstanding"] = checked_add(state.get("total_outstanding", 0), amount, field="total_outstanding")
        rec["entries"].append({"amount": int(amount), "delay_s": int(delay_s)})
        added += 1
    return added


def register_schedule(state: Json, ctx: ApplyContext, recipient: Any, delays: Any, amounts: Any) -> Json:
    """Append (delay, amount) vesting entries for one recipient. Bookkeeping only, no transfer."""
    require_administrator(ctx.authority, ctx.requested_by, op="register_schedule")
    deny_if_activated(state, op="register_schedule")

    addr, pairs = _validate_schedule(recipient, delays, amounts)
    added = _append_entries(state, addr, pairs)

    return {
        "applied": "VESTING_SCHEDULE_SET",
        "recipient": addr,
        "entries_added": added,
        "amount_added": sum(a for _, a in pairs),
        "total_outstanding": int(state["total_outstanding"]),
    }


def register_schedules_bulk(
    state: Json,
    ctx: ApplyContext,
    recipients: Any,
    delays_per_recipient: Any,
    amounts_per_recipient: Any,
) -> Json:
    require_administrator(ctx.authority, ctx.requested_by, op="register_schedules_bulk")
    deny_if_activated(state, op="register_schedules_bulk")

    rs = _as_seq(recipients, field="recipients")
    dss = _as_seq(delays_per_recipient, field="delays_per_recipient")
    ams = _as_seq(amounts_per_recipient, field="amounts_per_recipient")
    if not (len(rs) == len(dss) == len(ams)):
        raise BulkLengthMismatch(
            "recipients_delays_amounts_must_be_same_length",
            {"recipients": len(rs), "delays": len(dss), "amounts": len(ams)},
        )

    # Validate every row before touching state.
    rows = [_validate_schedule(r, d, a, index=i) for i, (r, d, a) in enumerate(zip(rs, dss, ams))]

    added = 0
    amount = 0
    for addr, pairs in rows:
        added += _append_entries(state, addr, pairs)
        amount += sum(a for _, a in pairs)

    return {
        "applied": "VESTING_SCHEDULE_BULK_SET",
        "recipients": [addr for addr, _ in rows],
        "entries_added": added,
        "amount_added": amount,
        "total_outstanding": int(state["total_outstanding"]),
    }
