from __future__ import annotations

import pytest

from tokenlock.runtime.errors import (
    ExceedsUnlockedBalance,
    InsufficientAllocation,
    InsufficientCustodyBalance,
    InvalidAmount,
    NotActivated,
    Unauthorized,
)
from tokenlock.testing.ledger import ADMIN, CUSTODY, T0, make_ledger


def _active(entries: dict[str, tuple[list[int], list[int]]], *, fund: int | None = None):
    h = make_ledger()
    total = 0
    for r, (delays, amounts) in entries.items():
        h.ex.register_schedule(r, delays, amounts, requested_by=ADMIN)
        total += sum(amounts)
    h.fund_custody(total if fund is None else fund)
    h.ex.activate(requested_by=ADMIN)
    return h


def test_nothing_unlocks_before_activation(h) -> None:
    h.ex.register_schedule("alice", [0], [100], requested_by=ADMIN)
    h.fund_custody(100)

    assert h.ex.unlocked_balance("alice") == 0
    assert h.ex.withdrawable("alice", at_time=T0 + 10**9) == 0
    with pytest.raises(NotActivated):
        h.ex.withdraw("alice", 1, requested_by="alice")


def test_unlocked_is_monotonic_in_time() -> None:
    h = _active({"alice": ([0, 10, 10, 1000], [1, 2, 3, 4])})
    points = [T0 - 1, T0, T0 + 9, T0 + 10, T0 + 999, T0 + 1000, T0 + 10**6]
    values = [h.ex.unlocked_balance("alice", t) for t in points]
    assert values == [0, 1, 1, 6, 6, 10, 10]
    assert values == sorted(values)


def test_partial_withdrawals_accumulate() -> None:
    h = _active({"alice": ([0, 100], [50, 50])})

    h.ex.withdraw("alice", 20, requested_by="alice")
    h.ex.withdraw("alice", 30, requested_by="alice")
    with pytest.raises(ExceedsUnlockedBalance):
        h.ex.withdraw("alice", 1, requested_by="alice")

    h.advance(100)
    assert h.ex.withdrawable("alice") == 50
    h.ex.withdraw("alice", 25, requested_by="alice")
    assert h.ex.withdrawn_total("alice") == 75
    assert h.ex.remaining_balance("alice") == 25
    assert h.balance("alice") == 75
    assert h.custody() == 25


def test_multi_recipient_timelines_are_independent() -> None:
    h = _active({"alice": ([0, 60], [10, 10]), "bob": ([30], [40])})

    assert h.ex.withdrawable("alice") == 10
    assert h.ex.withdrawable("bob") == 0

    h.advance(30)
    h.ex.withdraw("bob", 40, requested_by="bob")
    assert h.ex.remaining_balance("alice") == 20
    assert h.ex.total_outstanding() == 20

    h.advance(30)
    h.ex.withdraw("alice", 20, requested_by="alice")
    assert h.ex.total_outstanding() == 0
    assert h.custody() == 0


def test_administrator_may_withdraw_on_behalf_of_recipient() -> None:
    h = _active({"alice": ([0], [10])})
    r = h.ex.withdraw("alice", 10, requested_by=ADMIN)
    assert r["recipient"] == "alice"
    assert r["requested_by"] == ADMIN
    # Tokens always go to the recipient, never to the caller.
    assert h.balance("alice") == 10


def test_third_party_cannot_withdraw_for_recipient() -> None:
    h = _active({"alice": ([0], [10])})
    with pytest.raises(Unauthorized) as e:
        h.ex.withdraw("alice", 10, requested_by="mallory")
    assert e.value.reason == "recipient_or_administrator_required"
    assert h.ex.withdrawn_total("alice") == 0


def test_withdraw_self_uses_requester_as_recipient() -> None:
    h = _active({"alice": ([0], [10])})
    h.ex.withdraw_self(4, requested_by="alice")
    assert h.ex.withdrawn_total("alice") == 4


def test_check_order_custody_before_allocation_before_maturity() -> None:
    # remaining=10, nothing matured, custody short: custody check fires first.
    h = _active({"alice": ([100], [10])})
    h.book.balances["vest-token"][CUSTODY] = 5

    with pytest.raises(InsufficientCustodyBalance):
        h.ex.withdraw("alice", 6, requested_by="alice")

    # Custody fine, amount above remaining allocation.
    h.book.balances["vest-token"][CUSTODY] = 1000
    with pytest.raises(InsufficientAllocation):
        h.ex.withdraw("alice", 11, requested_by="alice")

    # Within allocation but not yet matured.
    with pytest.raises(ExceedsUnlockedBalance):
        h.ex.withdraw("alice", 10, requested_by="alice")


def test_unknown_recipient_fails_allocation() -> None:
    h = _active({"alice": ([0], [10])})
    with pytest.raises(InsufficientAllocation):
        h.ex.withdraw("ghost", 1, requested_by=ADMIN)


def test_zero_amount_withdraw_succeeds_without_transfer() -> None:
    h = _active({"alice": ([0], [10])})
    n = len(h.book.transfers)
    r = h.ex.withdraw("alice", 0, requested_by="alice")
    assert r["amount"] == 0
    assert len(h.book.transfers) == n
    assert h.ex.withdrawn_total("alice") == 0


@pytest.mark.parametrize("bad", [-5, "5", 2.0])
def test_invalid_amount_rejected(bad) -> None:
    h = _active({"alice": ([0], [10])})
    with pytest.raises(InvalidAmount):
        h.ex.withdraw("alice", bad, requested_by="alice")


def test_solvency_holds_after_every_settlement() -> None:
    h = _active({"alice": ([0, 50], [7, 13]), "bob": ([0, 25, 75], [1, 2, 3])}, fund=40)
    steps = [
        ("alice", 7),
        ("bob", 1),
    ]
    for who, amt in steps:
        h.ex.withdraw(who, amt, requested_by=who)
        assert h.custody() >= h.ex.total_outstanding()

    h.advance(80)
    h.ex.withdraw_all_matured(requested_by=ADMIN)
    assert h.ex.total_outstanding() == 0
    assert h.custody() == 40 - 26
