# src/tokenlock/runtime/apply/__init__.py
from __future__ import annotations

"""Domain apply modules.

Each apply function takes (state, ctx, ...) where `state` is the executor's
working copy and `ctx` an ApplyContext. Functions validate first, mutate the
working copy second, and only then call out to the asset book, so a re-entrant
caller can never observe pre-settlement balances.
"""

from tokenlock.runtime.apply.context import ApplyContext

__all__ = ["ApplyContext"]
