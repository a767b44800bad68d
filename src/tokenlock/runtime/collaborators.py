# src/tokenlock/runtime/collaborators.py
from __future__ import annotations

"""Consumed interfaces and their in-process implementations.

The ledger never owns asset balances; it asks an AssetBook. A book hands out
per-asset AssetToken views and offers savepoint(), which the executor wraps
around every mutation so that external transfers are rolled back together with
ledger state when an operation aborts.
"""

import copy
import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Protocol

logger = logging.getLogger("tokenlock.collaborators")

NATIVE_ASSET = "native"


class AssetToken(Protocol):
    address: str

    def balance_of(self, holder: str) -> int: ...

    def transfer(self, sender: str, to: str, amount: int) -> bool: ...


class AssetBook(Protocol):
    def token(self, address: str) -> AssetToken: ...

    def savepoint(self) -> Any: ...


class Authority(Protocol):
    def is_administrator(self, identity: str) -> bool: ...


class Clock(Protocol):
    def now(self) -> int: ...


class AdministratorCapability:
    """Single-administrator authority: exactly one identity holds the capability."""

    def __init__(self, admin: str) -> None:
        a = str(admin or "").strip()
        if not a:
            raise ValueError("administrator identity must be non-empty")
        self.admin = a

    def is_administrator(self, identity: str) -> bool:
        return str(identity or "").strip() == self.admin

    def __repr__(self) -> str:
        return f"AdministratorCapability(admin={self.admin[:12]!r}...)"


class NoAdministrator:
    """Authority that grants nothing; a ledger booted without an admin is read-only."""

    def is_administrator(self, identity: str) -> bool:
        return False


class SystemClock:
    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Settable clock for tests and simulations."""

    def __init__(self, now: int = 1_700_000_000) -> None:
        self._now = int(now)

    def now(self) -> int:
        return self._now

    def set(self, now: int) -> None:
        self._now = int(now)

    def advance(self, seconds: int) -> int:
        self._now += int(seconds)
        return self._now


class _BookToken:
    """AssetToken view over one asset of an AssetBook."""

    def __init__(self, book: Any, address: str) -> None:
        self._book = book
        self.address = str(address)

    def balance_of(self, holder: str) -> int:
        return int(self._book.balance_of(self.address, holder))

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        return bool(self._book.transfer(self.address, sender, to, amount))

    def __repr__(self) -> str:
        return f"AssetToken({self.address!r})"


class MemoryAssetBook:
    """Dict-backed multi-asset balance book.

    balances[asset][holder] = int. transfer() returns False on insufficient
    funds or a negative/non-integer amount; it never goes negative.
    """

    def __init__(self) -> None:
        self.balances: Dict[str, Dict[str, int]] = {}
        self._lock = threading.RLock()

    def token(self, address: str) -> _BookToken:
        return _BookToken(self, address)

    def balance_of(self, asset: str, holder: str) -> int:
        with self._lock:
            return int(self.balances.get(str(asset), {}).get(str(holder), 0))

    def mint(self, asset: str, holder: str, amount: int) -> None:
        a = int(amount)
        if a < 0:
            raise ValueError("mint amount must be >= 0")
        with self._lock:
            book = self.balances.setdefault(str(asset), {})
            book[str(holder)] = int(book.get(str(holder), 0)) + a

    def transfer(self, asset: str, sender: str, to: str, amount: int) -> bool:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            return False
        with self._lock:
            book = self.balances.setdefault(str(asset), {})
            have = int(book.get(str(sender), 0))
            if have < amount:
                logger.debug("transfer refused: %s %s->%s amount=%s have=%s", asset, sender, to, amount, have)
                return False
            book[str(sender)] = have - amount
            book[str(to)] = int(book.get(str(to), 0)) + amount
            return True

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        with self._lock:
            saved = copy.deepcopy(self.balances)
        try:
            yield
        except BaseException:
            with self._lock:
                self.balances = saved
            raise
