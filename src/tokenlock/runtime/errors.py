# src/tokenlock/runtime/errors.py
from __future__ import annotations

"""Canonical failure kinds for the vesting ledger.

Every mutating operation either commits fully or raises one of these. The
executor never retries; callers decide. `code` is stable and is what receipts,
logs and the HTTP layer report.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict

Json = Dict[str, Any]


@dataclass(eq=False)
class LedgerError(Exception):
    """Base error for registry, lockup, settlement and recovery failures."""

    code: ClassVar[str] = "ledger_error"

    reason: str = ""
    details: Json = field(default_factory=dict)

    def __str__(self) -> str:
        if self.reason:
            return f"{self.code}:{self.reason}"
        return self.code

    def to_json(self) -> Json:
        return {"code": self.code, "reason": self.reason, "details": dict(self.details or {})}


class InvalidRecipient(LedgerError):
    code = "invalid_recipient"


class ScheduleMismatch(LedgerError):
    code = "schedule_mismatch"


class BulkLengthMismatch(LedgerError):
    code = "bulk_length_mismatch"


class AlreadyActivated(LedgerError):
    code = "already_activated"


class NotActivated(LedgerError):
    code = "not_activated"


class Unauthorized(LedgerError):
    code = "unauthorized"


class InsufficientCustodyBalance(LedgerError):
    code = "insufficient_custody_balance"


class InsufficientAllocation(LedgerError):
    code = "insufficient_allocation"


class ExceedsUnlockedBalance(LedgerError):
    code = "exceeds_unlocked_balance"


class ExceedsExcessBalance(LedgerError):
    code = "exceeds_excess_balance"


class ForbiddenAsset(LedgerError):
    code = "forbidden_asset"


class ArithmeticOverflow(LedgerError):
    code = "arithmetic_overflow"


class PartialSettlementFailure(LedgerError):
    code = "partial_settlement_failure"


class InvalidAmount(LedgerError):
    code = "invalid_amount"


class TransferFailed(LedgerError):
    code = "transfer_failed"


class ReentrantCall(LedgerError):
    code = "reentrant_call"


# Signed-envelope path


class InvalidSignature(LedgerError):
    code = "invalid_signature"


class BadNonce(LedgerError):
    code = "bad_nonce"


class UnknownTxType(LedgerError):
    code = "tx_unimplemented"


__all__ = [
    "LedgerError",
    "InvalidRecipient",
    "ScheduleMismatch",
    "BulkLengthMismatch",
    "AlreadyActivated",
    "NotActivated",
    "Unauthorized",
    "InsufficientCustodyBalance",
    "InsufficientAllocation",
    "ExceedsUnlockedBalance",
    "ExceedsExcessBalance",
    "ForbiddenAsset",
    "ArithmeticOverflow",
    "PartialSettlementFailure",
    "InvalidAmount",
    "TransferFailed",
    "ReentrantCall",
    "InvalidSignature",
    "BadNonce",
    "UnknownTxType",
]
