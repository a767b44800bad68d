from __future__ import annotations

from dataclasses import dataclass, field
import copy
from typing import Any, Dict, List, Optional

from tokenlock.ledger.types import LedgerPhase, RecipientAccount, VestingEntry


Json = Dict[str, Any]


@dataclass(frozen=True, slots=True)
class LedgerView:
    """
    Immutable read-only ledger view used by the API and read operations.
    """

    recipients: Dict[str, Any] = field(default_factory=dict)
    recipient_order: List[str] = field(default_factory=list)
    params: Dict[str, Any] = field(default_factory=dict)

    phase: str = LedgerPhase.OPEN.value
    activation_ts: Optional[int] = None
    total_outstanding: int = 0
    deposited_native: int = 0

    @classmethod
    def from_ledger(cls, state: Dict[str, Any]) -> "LedgerView":
        ts = state.get("activation_ts")
        return cls(
            recipients=copy.deepcopy(state.get("recipients", {})),
            recipient_order=list(state.get("recipient_order", []) or []),
            params=copy.deepcopy(state.get("params", {})) if isinstance(state.get("params"), dict) else {},
            phase=str(state.get("phase") or LedgerPhase.OPEN.value),
            activation_ts=None if ts is None else int(ts),
            total_outstanding=int(state.get("total_outstanding", 0) or 0),
            deposited_native=int(state.get("deposited_native", 0) or 0),
        )

    @property
    def activated(self) -> bool:
        return self.phase == LedgerPhase.ACTIVE.value

    def account(self, recipient: str) -> RecipientAccount:
        return RecipientAccount.from_json(recipient, self.recipients.get(recipient))

    def remaining(self, recipient: str) -> int:
        return self.account(recipient).remaining

    def withdrawn(self, recipient: str) -> int:
        return self.account(recipient).withdrawn

    def schedule_length(self, recipient: str) -> int:
        return len(self.account(recipient).entries)

    def schedule_entry(self, recipient: str, index: int) -> VestingEntry:
        entries = self.account(recipient).entries
        i = int(index)
        if i < 0 or i >= len(entries):
            raise IndexError(f"schedule index {i} out of range for {recipient!r} (length {len(entries)})")
        return entries[i]

    def unlocked(self, recipient: str, at_time: int) -> int:
        """Sum of entries whose delay has elapsed since activation; 0 while open."""
        if not self.activated or self.activation_ts is None:
            return 0
        t = int(at_time)
        return sum(e.amount for e in self.account(recipient).entries if e.matures_at(self.activation_ts) <= t)

    def withdrawable(self, recipient: str, at_time: int) -> int:
        # withdrawn only ever grows by amounts proven withdrawable, so this never goes negative
        return max(0, self.unlocked(recipient, at_time) - self.withdrawn(recipient))

    def get_param(self, key: str, default: Any = None) -> Any:
        try:
            return self.params.get(key, default)
        except Exception:
            return default
