# src/tokenlock/runtime/state_invariants.py
from __future__ import annotations

"""State normalization and accounting invariants.

Ledger state is a JSON-like dict mutated only by the apply_* modules:

  {
    "ledger_id": str,
    "phase": "open" | "active",
    "activation_ts": int | None,
    "total_outstanding": int,
    "deposited_native": int,
    "recipients": {addr: {"entries": [{"amount", "delay_s"}], "remaining", "withdrawn"}},
    "recipient_order": [addr, ...],      # first-registration order
    "nonces": {signer: int},
    "params": {"asset": str, "custody": str, "native": str},
  }

`ensure_state` creates missing containers; `check_ledger_invariants` is run by
the executor on the working copy before every commit.
"""

from collections.abc import MutableMapping
from typing import Any, Dict

from tokenlock.ledger.types import LedgerPhase

Json = Dict[str, Any]


class InvariantViolation(RuntimeError):
    pass


def initial_state(*, ledger_id: str, asset: str, custody: str, native: str) -> Json:
    return {
        "ledger_id": str(ledger_id),
        "phase": LedgerPhase.OPEN.value,
        "activation_ts": None,
        "total_outstanding": 0,
        "deposited_native": 0,
        "recipients": {},
        "recipient_order": [],
        "nonces": {},
        "params": {"asset": str(asset), "custody": str(custody), "native": str(native)},
    }


def ensure_state(st: Any) -> Json:
    """Ensure `st` is a dict and contains the core containers.

    Raises:
        TypeError: if st (or a core container) has the wrong type
    """
    if not isinstance(st, MutableMapping):
        raise TypeError(f"state must be MutableMapping, got {type(st)}")

    for key, kind in (("recipients", dict), ("nonces", dict), ("params", dict), ("recipient_order", list)):
        cur = st.get(key)
        if cur is None:
            st[key] = kind()
        elif not isinstance(cur, kind):
            # Fail closed: do not attempt to coerce arbitrary types.
            raise TypeError(f"state[{key!r}] must be {kind.__name__}, got {type(cur)}")

    st.setdefault("phase", LedgerPhase.OPEN.value)
    st.setdefault("activation_ts", None)
    st.setdefault("total_outstanding", 0)
    st.setdefault("deposited_native", 0)

    return st  # type: ignore[return-value]


def check_ledger_invariants(st: Json) -> None:
    """Raise InvariantViolation if the accounting identities do not hold."""
    recipients = st.get("recipients") or {}
    total = 0
    for addr, rec in recipients.items():
        entries = rec.get("entries") or []
        scheduled = sum(int(e.get("amount", 0)) for e in entries)
        remaining = int(rec.get("remaining", 0))
        withdrawn = int(rec.get("withdrawn", 0))
        if remaining < 0 or withdrawn < 0:
            raise InvariantViolation(f"negative balance for {addr!r}")
        if remaining != scheduled - withdrawn:
            raise InvariantViolation(
                f"remaining mismatch for {addr!r}: remaining={remaining} scheduled={scheduled} withdrawn={withdrawn}"
            )
        total += remaining

    if total != int(st.get("total_outstanding", 0)):
        raise InvariantViolation(f"total_outstanding={st.get('total_outstanding')} but recipients sum to {total}")

    order = st.get("recipient_order") or []
    if set(order) != set(recipients.keys()) or len(order) != len(set(order)):
        raise InvariantViolation("recipient_order does not match recipients")

    phase = str(st.get("phase") or "")
    if phase == LedgerPhase.ACTIVE.value and st.get("activation_ts") is None:
        raise InvariantViolation("active ledger without activation_ts")
    if phase == LedgerPhase.OPEN.value and st.get("activation_ts") is not None:
        raise InvariantViolation("open ledger with activation_ts")


__all__ = ["InvariantViolation", "initial_state", "ensure_state", "check_ledger_invariants"]
