from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional, Set, Tuple

from tokenlock.runtime.collaborators import MemoryAssetBook


class RecordingAssetBook(MemoryAssetBook):
    """MemoryAssetBook that records transfers and can be told to fail or call back.

    TEST ONLY. Used for transfer-failure and re-entrancy scenarios.
    """

    def __init__(self) -> None:
        super().__init__()
        self.transfers: List[Tuple[str, str, str, int]] = []
        self.fail_to: Set[str] = set()
        self.raise_to: Set[str] = set()
        self.on_transfer: Optional[Callable[[str, str, str, int], Any]] = None

    def transfer(self, asset: str, sender: str, to: str, amount: int) -> bool:
        if self.on_transfer is not None:
            self.on_transfer(asset, sender, to, amount)
        if str(to) in self.raise_to:
            raise RuntimeError(f"transfer to {to} blew up")
        if str(to) in self.fail_to:
            return False
        ok = super().transfer(asset, sender, to, amount)
        if ok:
            self.transfers.append((str(asset), str(sender), str(to), int(amount)))
        return ok

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        saved = list(self.transfers)
        try:
            with super().savepoint():
                yield
        except BaseException:
            self.transfers = saved
            raise
