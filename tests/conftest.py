from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "tokenlock" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)


@pytest.fixture
def h():
    from tokenlock.testing.ledger import make_ledger

    return make_ledger()


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Operator env must not leak into tests.
    for name in list(os.environ):
        if name.startswith("TOKENLOCK_"):
            monkeypatch.delenv(name, raising=False)
