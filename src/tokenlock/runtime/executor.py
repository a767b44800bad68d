from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from tokenlock.crypto.sig import verify_tx_envelope
from tokenlock.ledger.state import LedgerView
from tokenlock.ledger.types import VestingEntry
from tokenlock.runtime.apply import lockup, recovery, schedule, settlement
from tokenlock.runtime.apply.context import ApplyContext
from tokenlock.runtime.collaborators import NATIVE_ASSET, AssetBook, Authority, Clock, SystemClock
from tokenlock.runtime.domain_dispatch import apply_tx
from tokenlock.runtime.errors import BadNonce, InvalidSignature, LedgerError, ReentrantCall
from tokenlock.runtime.event_log import log_event
from tokenlock.runtime.metrics import inc_counter, set_gauge
from tokenlock.runtime.sqlite_db import SqliteLedgerStore, open_ledger_db
from tokenlock.runtime.state_invariants import check_ledger_invariants, ensure_state, initial_state
from tokenlock.runtime.tx_types import TxEnvelope

Json = Dict[str, Any]
ApplyFn = Callable[[Json, ApplyContext], Json]

logger = logging.getLogger("tokenlock.executor")

_EVENTS: Dict[str, str] = {
    "VESTING_SCHEDULE_SET": "schedule_registered",
    "VESTING_SCHEDULE_BULK_SET": "schedule_registered",
    "VESTING_LOCKUP": "ledger_activated",
    "VESTING_WITHDRAW": "withdrawal_settled",
    "VESTING_WITHDRAW_ALL": "withdrawal_settled",
    "RECLAIM_PRE_ACTIVATION": "custody_reclaimed",
    "RECLAIM_EXCESS_CUSTODY": "custody_reclaimed",
    "RECLAIM_FOREIGN_ASSET": "custody_reclaimed",
    "RECLAIM_NATIVE": "custody_reclaimed",
    "NATIVE_DEPOSIT": "native_received",
    "ASSET_TRANSFER": "asset_transferred",
}


class ExecutorError(RuntimeError):
    pass


@dataclass(frozen=True)
class ExecutorParams:
    ledger_id: str
    asset: str
    custody: str
    native: str


class VestingExecutor:
    """Single-writer owner of one vesting ledger.

    Every mutation runs on a deep copy of state inside an asset-book savepoint;
    the copy replaces the live state only after invariants pass and the
    snapshot + receipt are persisted. Any exception leaves ledger state, the
    persisted snapshot and collaborator balances as they were.

    With a SqliteAssetBook on the same file as db_path, the savepoint is one
    SQLite write transaction: transfers, snapshot and receipt commit together,
    so a crash mid-operation loses the whole operation and nothing else.
    """

    def __init__(
        self,
        *,
        book: AssetBook,
        asset: str,
        custody: str,
        authority: Authority,
        ledger_id: str = "tokenlock-dev",
        native: str = NATIVE_ASSET,
        clock: Optional[Clock] = None,
        db_path: Optional[str] = None,
    ) -> None:
        self.params = ExecutorParams(
            ledger_id=str(ledger_id),
            asset=str(asset),
            custody=str(custody),
            native=str(native or NATIVE_ASSET),
        )
        if not self.params.asset or not self.params.custody:
            raise ExecutorError("asset and custody addresses are required")

        self._book = book
        self._authority = authority
        self._clock: Clock = clock or SystemClock()

        self._lock = threading.RLock()
        self._in_call = False
        self._receipts: List[Json] = []

        db = open_ledger_db(db_path)
        self._store: Optional[SqliteLedgerStore] = SqliteLedgerStore(db=db) if db is not None else None

        if self._store is not None and self._store.exists():
            self.state = ensure_state(self._store.read())
            self._check_params_fail_closed()
        else:
            self.state = initial_state(
                ledger_id=self.params.ledger_id,
                asset=self.params.asset,
                custody=self.params.custody,
                native=self.params.native,
            )
            if self._store is not None:
                self._store.write(self.state)

        check_ledger_invariants(self.state)
        self._update_gauges()

    def _check_params_fail_closed(self) -> None:
        st_ledger = str(self.state.get("ledger_id") or "")
        if st_ledger and st_ledger != self.params.ledger_id:
            raise ExecutorError(
                f"ledger_id mismatch: db={st_ledger!r} executor={self.params.ledger_id!r}. Refuse to start."
            )
        p = self.state.get("params") or {}
        for key in ("asset", "custody", "native"):
            have = str(p.get(key) or "")
            want = str(getattr(self.params, key))
            if have and have != want:
                raise ExecutorError(f"{key} mismatch: db={have!r} executor={want!r}. Refuse to start.")

    # ----------------------------
    # Mutation plumbing
    # ----------------------------

    def _ctx(self, requested_by: str) -> ApplyContext:
        return ApplyContext(
            requested_by=str(requested_by or "").strip(),
            now=int(self._clock.now()),
            authority=self._authority,
            book=self._book,
            asset=self.params.asset,
            custody=self.params.custody,
            native=self.params.native,
        )

    def _persist(self, st: Json, receipt: Json) -> Json:
        rec = dict(receipt)
        if self._store is not None:
            rec["seq"] = self._store.commit(st, receipt)
        else:
            rec["seq"] = len(self._receipts) + 1
        return rec

    def _execute(self, op: str, requested_by: str, fn: ApplyFn) -> Json:
        with self._lock:
            if self._in_call:
                inc_counter("ops_reentrant_rejected_total")
                raise ReentrantCall("mutation_in_flight", {"op": op, "requested_by": str(requested_by or "")})
            self._in_call = True
            try:
                return self._execute_locked(op, requested_by, fn)
            finally:
                self._in_call = False

    def _execute_locked(self, op: str, requested_by: str, fn: ApplyFn) -> Json:
        ctx = self._ctx(requested_by)
        working: Json = copy.deepcopy(self.state)
        try:
            with self._book.savepoint():
                receipt = dict(fn(working, ctx))
                check_ledger_invariants(working)
                receipt.setdefault("requested_by", ctx.requested_by)
                receipt["ts"] = ctx.now
                stored = self._persist(working, receipt)
        except LedgerError as e:
            inc_counter("ops_rejected_total")
            inc_counter(f"ops_rejected_{e.code}_total")
            log_event(
                logger,
                "operation_rejected",
                level=logging.WARNING,
                op=op,
                code=e.code,
                reason=e.reason,
                requested_by=ctx.requested_by,
            )
            raise

        self.state = working
        if self._store is None:
            self._receipts.append(stored)

        applied = str(stored.get("applied") or op)
        inc_counter("ops_applied_total")
        inc_counter(f"tx_{applied}_total")
        self._update_gauges()
        log_event(logger, _EVENTS.get(applied, "operation_applied"), **stored)
        return stored

    def _update_gauges(self) -> None:
        set_gauge("total_outstanding", int(self.state.get("total_outstanding", 0)))
        set_gauge("recipients", len(self.state.get("recipient_order") or []))
        set_gauge("activated", 1 if self.is_activated() else 0)

    # ----------------------------
    # Schedule registry + lockup
    # ----------------------------

    def register_schedule(
        self, recipient: str, delays: Sequence[int], amounts: Sequence[int], *, requested_by: str
    ) -> Json:
        return self._execute(
            "register_schedule",
            requested_by,
            lambda st, ctx: schedule.register_schedule(st, ctx, recipient, delays, amounts),
        )

    def register_schedules_bulk(
        self,
        recipients: Sequence[str],
        delays_per_recipient: Sequence[Sequence[int]],
        amounts_per_recipient: Sequence[Sequence[int]],
        *,
        requested_by: str,
    ) -> Json:
        return self._execute(
            "register_schedules_bulk",
            requested_by,
            lambda st, ctx: schedule.register_schedules_bulk(
                st, ctx, recipients, delays_per_recipient, amounts_per_recipient
            ),
        )

    def activate(self, *, requested_by: str) -> Json:
        return self._execute("activate", requested_by, lockup.activate)

    # ----------------------------
    # Settlement
    # ----------------------------

    def withdraw(self, recipient: str, amount: int, *, requested_by: str) -> Json:
        return self._execute(
            "withdraw",
            requested_by,
            lambda st, ctx: settlement.withdraw(st, ctx, recipient, amount),
        )

    def withdraw_self(self, amount: int, *, requested_by: str) -> Json:
        return self.withdraw(requested_by, amount, requested_by=requested_by)

    def withdraw_all_matured(self, *, requested_by: str) -> Json:
        return self._execute("withdraw_all_matured", requested_by, settlement.withdraw_all_matured)

    # ----------------------------
    # Administrative recovery
    # ----------------------------

    def reclaim_pre_activation_deposit(self, amount: int, *, requested_by: str) -> Json:
        return self._execute(
            "reclaim_pre_activation_deposit",
            requested_by,
            lambda st, ctx: recovery.reclaim_pre_activation_deposit(st, ctx, amount),
        )

    def reclaim_excess_custody(self, amount: int, *, requested_by: str) -> Json:
        return self._execute(
            "reclaim_excess_custody",
            requested_by,
            lambda st, ctx: recovery.reclaim_excess_custody(st, ctx, amount),
        )

    def reclaim_foreign_asset(self, asset: str, amount: int, *, requested_by: str) -> Json:
        return self._execute(
            "reclaim_foreign_asset",
            requested_by,
            lambda st, ctx: recovery.reclaim_foreign_asset(st, ctx, asset, amount),
        )

    def reclaim_stray_native_value(self, amount: int, *, requested_by: str) -> Json:
        return self._execute(
            "reclaim_stray_native_value",
            requested_by,
            lambda st, ctx: recovery.reclaim_stray_native_value(st, ctx, amount),
        )

    def receive_native(self, amount: int, *, requested_by: str) -> Json:
        return self._execute(
            "receive_native",
            requested_by,
            lambda st, ctx: recovery.receive_native(st, ctx, amount),
        )

    def transfer_asset(self, asset: str, to: str, amount: int, *, requested_by: str) -> Json:
        return self._execute(
            "asset_transfer",
            requested_by,
            lambda st, ctx: recovery.asset_transfer(st, ctx, asset, to, amount),
        )

    # ----------------------------
    # Signed envelopes
    # ----------------------------

    def submit_tx(self, env: Any) -> Json:
        """Verify, nonce-check and apply one signed envelope.

        The signer's hex public key is the requesting identity. A nonce is
        consumed only when the operation commits.
        """
        if not isinstance(env, (dict, TxEnvelope)):
            raise InvalidSignature("bad_env:not_object", {})
        try:
            tx = TxEnvelope.from_json(env)
        except (TypeError, ValueError) as e:
            raise BadNonce("bad_env:nonce_not_int", {"error": str(e)}) from None

        ok = verify_tx_envelope(
            ledger_id=self.params.ledger_id,
            tx_type=tx.tx_type,
            signer=tx.signer,
            nonce=tx.nonce,
            payload=tx.payload,
            sig=tx.sig,
        )
        if not ok:
            inc_counter("tx_bad_sig_total")
            raise InvalidSignature("bad_sig", {"tx_type": tx.tx_type, "signer": tx.signer})

        def _apply(st: Json, ctx: ApplyContext) -> Json:
            nonces = st["nonces"]
            last = int(nonces.get(tx.signer, 0))
            if tx.nonce != last + 1:
                raise BadNonce("nonce_not_next", {"signer": tx.signer, "expected": last + 1, "got": tx.nonce})
            receipt = apply_tx(st, ctx, tx)
            nonces[tx.signer] = tx.nonce
            return receipt

        return self._execute(tx.tx_type.lower() or "submit_tx", tx.signer, _apply)

    def next_nonce(self, signer: str) -> int:
        with self._lock:
            return int((self.state.get("nonces") or {}).get(str(signer), 0)) + 1

    # ----------------------------
    # Read operations
    # ----------------------------

    def _view(self) -> LedgerView:
        with self._lock:
            return LedgerView.from_ledger(self.state)

    def now(self) -> int:
        return int(self._clock.now())

    def _at(self, at_time: Optional[int]) -> int:
        return self.now() if at_time is None else int(at_time)

    def read_state(self) -> Json:
        with self._lock:
            return copy.deepcopy(self.state)

    def is_activated(self) -> bool:
        return self._view().activated

    def activation_timestamp(self) -> Optional[int]:
        return self._view().activation_ts

    def remaining_balance(self, recipient: str) -> int:
        return self._view().remaining(recipient)

    def withdrawn_total(self, recipient: str) -> int:
        return self._view().withdrawn(recipient)

    def total_outstanding(self) -> int:
        return self._view().total_outstanding

    def unlocked_balance(self, recipient: str, at_time: Optional[int] = None) -> int:
        return self._view().unlocked(recipient, self._at(at_time))

    def withdrawable(self, recipient: str, at_time: Optional[int] = None) -> int:
        return self._view().withdrawable(recipient, self._at(at_time))

    def schedule_length(self, recipient: str) -> int:
        return self._view().schedule_length(recipient)

    def schedule_entry(self, recipient: str, index: int) -> VestingEntry:
        return self._view().schedule_entry(recipient, index)

    def recipients(self) -> List[str]:
        return list(self._view().recipient_order)

    def custody_balance(self, asset: Optional[str] = None) -> int:
        with self._lock:
            return int(self._book.token(asset or self.params.asset).balance_of(self.params.custody))

    def asset_balance(self, asset: str, holder: str) -> int:
        with self._lock:
            return int(self._book.token(asset).balance_of(holder))

    def deposited_native_value(self) -> int:
        return self._view().deposited_native

    def receipts(self, *, limit: int = 100) -> List[Json]:
        lim = max(1, int(limit))
        if self._store is not None:
            return self._store.receipts(limit=lim)
        with self._lock:
            return [dict(r) for r in self._receipts[-lim:]]
