# src/tokenlock/runtime/lock_phase.py

from __future__ import annotations

"""Lockup phase gates.

A ledger starts OPEN (schedules may be registered, nothing vests) and moves to
ACTIVE exactly once through VESTING_LOCKUP. The transition is terminal:

  open  --activate()-->  active

Registry writes and pre-activation recovery require OPEN; settlement and
excess-custody recovery require ACTIVE. Every apply module goes through these
helpers rather than reading state["phase"] directly.

State assumptions:
  state["phase"]: "open" | "active"
  state["activation_ts"]: unix seconds (int), written once by activate()
"""

from typing import Any, Dict, Optional

from tokenlock.ledger.types import LedgerPhase
from tokenlock.runtime.errors import AlreadyActivated, NotActivated, Unauthorized

Json = Dict[str, Any]


def is_activated(state: Json) -> bool:
    return str(state.get("phase") or "") == LedgerPhase.ACTIVE.value


def activation_time(state: Json) -> Optional[int]:
    ts = state.get("activation_ts")
    if ts is None or not is_activated(state):
        return None
    try:
        return int(ts)
    except (TypeError, ValueError):
        return None


def deny_if_activated(state: Json, *, op: str) -> None:
    """Raise AlreadyActivated once the lockup has happened."""

    if is_activated(state):
        raise AlreadyActivated("ledger_already_activated", {"op": op, "activation_ts": state.get("activation_ts")})


def deny_if_not_activated(state: Json, *, op: str) -> None:
    """Raise NotActivated while the ledger is still open for scheduling."""

    if not is_activated(state):
        raise NotActivated("ledger_not_activated", {"op": op})


def require_administrator(authority: Any, identity: str, *, op: str) -> None:
    """Guard for every administrator-only operation."""

    try:
        ok = bool(authority.is_administrator(identity))
    except Exception:
        # Fail closed: an authority that cannot answer grants nothing.
        ok = False
    if not ok:
        raise Unauthorized("administrator_required", {"op": op, "requested_by": identity})


def mark_activated(state: Json, *, now_s: int) -> None:
    """The only writer of activation_ts."""

    deny_if_activated(state, op="activate")
    state["phase"] = LedgerPhase.ACTIVE.value
    state["activation_ts"] = int(now_s)
