from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from tokenlock.runtime.collaborators import AssetBook, AssetToken, Authority
from tokenlock.runtime.errors import TransferFailed

Json = Dict[str, Any]


@dataclass(frozen=True)
class ApplyContext:
    requested_by: str
    now: int
    authority: Authority
    book: AssetBook
    asset: str
    custody: str
    native: str

    def vesting_token(self) -> AssetToken:
        return self.book.token(self.asset)

    def native_token(self) -> AssetToken:
        return self.book.token(self.native)


def transfer_or_fail(token: AssetToken, *, sender: str, to: str, amount: int, op: str) -> None:
    """Call the asset collaborator; any refusal or exception aborts the operation."""
    details: Json = {"op": op, "asset": getattr(token, "address", ""), "to": to, "amount": int(amount)}
    try:
        ok = token.transfer(sender, to, int(amount))
    except Exception as e:
        details["error"] = f"{type(e).__name__}: {e}"
        raise TransferFailed("transfer_raised", details) from e
    if not ok:
        raise TransferFailed("transfer_refused", details)
