"""tokenlock.ledger.types

Value types for the vesting ledger.

The persisted ledger is a JSON-compatible dict (see runtime/state_invariants.py);
these frozen dataclasses are the typed views handed to callers. Amounts and
delays are unsigned integers bounded by MAX_UINT256, the width of the asset
ledger the schedules are settled against.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple

from tokenlock.runtime.errors import ArithmeticOverflow, InvalidAmount

Json = Dict[str, Any]

MAX_UINT256: int = 2**256 - 1

ZERO_ADDRESS: str = "0x0000000000000000000000000000000000000000"


class LedgerPhase(str, Enum):
    """Open accepts schedule writes; Active accepts settlements. Open -> Active only."""

    OPEN = "open"
    ACTIVE = "active"


def is_null_identity(identity: Any) -> bool:
    if identity is None:
        return True
    s = str(identity).strip()
    if not s:
        return True
    if s.lower().startswith("0x") and set(s[2:]) <= {"0"}:
        return True
    return False


def as_uint(v: Any, *, field: str) -> int:
    """Coerce to an unsigned 256-bit int or raise InvalidAmount."""
    # bool is an int subclass; disallow it explicitly
    if isinstance(v, bool) or not isinstance(v, int):
        raise InvalidAmount("not_an_integer", {"field": field, "type": type(v).__name__})
    if v < 0:
        raise InvalidAmount("negative_value", {"field": field, "value": v})
    if v > MAX_UINT256:
        raise ArithmeticOverflow("value_exceeds_uint256", {"field": field})
    return int(v)


def checked_add(a: int, b: int, *, field: str) -> int:
    out = int(a) + int(b)
    if out > MAX_UINT256:
        raise ArithmeticOverflow("addition_overflow", {"field": field})
    return out


def checked_sub(a: int, b: int, *, field: str) -> int:
    out = int(a) - int(b)
    if out < 0:
        raise ArithmeticOverflow("subtraction_underflow", {"field": field})
    return out


@dataclass(frozen=True, slots=True)
class VestingEntry:
    amount: int
    delay_s: int

    @staticmethod
    def from_json(j: Any) -> "VestingEntry":
        d = j if isinstance(j, dict) else {}
        return VestingEntry(amount=int(d.get("amount", 0) or 0), delay_s=int(d.get("delay_s", 0) or 0))

    def to_json(self) -> Json:
        return {"amount": int(self.amount), "delay_s": int(self.delay_s)}

    def matures_at(self, activation_ts: int) -> int:
        return int(activation_ts) + int(self.delay_s)


@dataclass(frozen=True, slots=True)
class RecipientAccount:
    recipient: str
    entries: Tuple[VestingEntry, ...] = field(default_factory=tuple)
    remaining: int = 0
    withdrawn: int = 0

    @staticmethod
    def from_json(recipient: str, j: Any) -> "RecipientAccount":
        d = j if isinstance(j, dict) else {}
        raw = d.get("entries")
        entries = tuple(VestingEntry.from_json(e) for e in raw) if isinstance(raw, list) else tuple()
        return RecipientAccount(
            recipient=str(recipient),
            entries=entries,
            remaining=int(d.get("remaining", 0) or 0),
            withdrawn=int(d.get("withdrawn", 0) or 0),
        )

    @property
    def scheduled_total(self) -> int:
        return sum(e.amount for e in self.entries)

    def to_json(self) -> Json:
        return {
            "recipient": self.recipient,
            "entries": [e.to_json() for e in self.entries],
            "remaining": int(self.remaining),
            "withdrawn": int(self.withdrawn),
        }
