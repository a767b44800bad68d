from __future__ import annotations

import pytest

from tokenlock.runtime.errors import (
    InsufficientCustodyBalance,
    NotActivated,
    PartialSettlementFailure,
    Unauthorized,
)
from tokenlock.testing.ledger import ADMIN, make_ledger


def _ledger():
    h = make_ledger()
    h.ex.register_schedules_bulk(
        ["alice", "bob", "carol"],
        [[0, 100], [50], [0]],
        [[10, 20], [30], [5]],
        requested_by=ADMIN,
    )
    h.fund_custody(65)
    h.ex.activate(requested_by=ADMIN)
    return h


def test_pays_every_matured_recipient_in_registration_order() -> None:
    h = _ledger()
    r = h.ex.withdraw_all_matured(requested_by=ADMIN)

    assert r["payouts"] == [{"recipient": "alice", "amount": 10}, {"recipient": "carol", "amount": 5}]
    assert r["total_paid"] == 15
    assert h.balance("alice") == 10
    assert h.balance("bob") == 0
    assert h.balance("carol") == 5
    assert h.ex.total_outstanding() == 50


def test_second_call_without_elapsed_time_transfers_nothing() -> None:
    h = _ledger()
    h.ex.withdraw_all_matured(requested_by=ADMIN)
    n = len(h.book.transfers)

    r = h.ex.withdraw_all_matured(requested_by=ADMIN)
    assert r["payouts"] == []
    assert len(h.book.transfers) == n


def test_later_call_pays_newly_matured_entries() -> None:
    h = _ledger()
    h.ex.withdraw_all_matured(requested_by=ADMIN)
    h.advance(100)
    r = h.ex.withdraw_all_matured(requested_by=ADMIN)
    assert r["payouts"] == [{"recipient": "alice", "amount": 20}, {"recipient": "bob", "amount": 30}]
    assert h.ex.total_outstanding() == 0


def test_single_failed_transfer_rolls_back_everything() -> None:
    h = _ledger()
    h.advance(100)
    h.book.fail_to.add("bob")
    before = h.ex.read_state()
    balances_before = {who: h.balance(who) for who in ("alice", "bob", "carol")}

    with pytest.raises(PartialSettlementFailure) as e:
        h.ex.withdraw_all_matured(requested_by=ADMIN)

    assert e.value.details["failed_recipient"] == "bob"
    assert e.value.details["cause"]["code"] == "transfer_failed"
    # alice was settled before bob in the aborted call; her transfer is undone.
    assert e.value.details["settled_before_failure"] == 1
    assert h.ex.read_state() == before
    assert {who: h.balance(who) for who in ("alice", "bob", "carol")} == balances_before
    assert h.custody() == 65


def test_raising_collaborator_is_also_a_partial_settlement_failure() -> None:
    h = _ledger()
    h.book.raise_to.add("carol")
    with pytest.raises(PartialSettlementFailure):
        h.ex.withdraw_all_matured(requested_by=ADMIN)
    assert h.ex.withdrawn_total("alice") == 0
    assert h.balance("alice") == 0


def test_requires_administrator_and_activation() -> None:
    h = make_ledger()
    with pytest.raises(Unauthorized):
        h.ex.withdraw_all_matured(requested_by="alice")
    with pytest.raises(NotActivated):
        h.ex.withdraw_all_matured(requested_by=ADMIN)


def test_custody_shortfall_is_reported_before_any_transfer() -> None:
    h = _ledger()
    h.book.balances["vest-token"]["tokenlock-custody"] = 14
    with pytest.raises(InsufficientCustodyBalance):
        h.ex.withdraw_all_matured(requested_by=ADMIN)
    assert h.book.transfers[-1][2] == "tokenlock-custody"
