#!/usr/bin/env python3

"""Production-ish smoke test for the vesting ledger.

It verifies:
  - executor boots on a fresh SQLite db with a genesis supply
  - FastAPI app boots and serves /v1/health + /v1/ledger
  - a signed schedule -> fund -> lockup -> withdraw round trip settles

Usage:
  python3 scripts/prod_smoke.py

Needs the test extra (httpx) for the in-process client.
"""

from __future__ import annotations

import os
import tempfile

from fastapi.testclient import TestClient

from tokenlock.api.app import create_app
from tokenlock.runtime.ledger_config import ledger_config_from_env
from tokenlock.testing.sigtools import identity, signed_tx

LEDGER_ID = "smoke-ledger"


def _submit(c: TestClient, label: str, tx_type: str, nonce: int, **payload) -> dict:
    env = signed_tx(label=label, ledger_id=LEDGER_ID, tx_type=tx_type, nonce=nonce, payload=payload)
    r = c.post("/v1/tx/submit", json=env)
    assert r.status_code == 200, r.text
    return r.json()["receipt"]


def main() -> int:
    admin = identity("smoke-admin")
    alice = identity("smoke-alice")

    with tempfile.TemporaryDirectory(prefix="tokenlock-smoke-") as td:
        cfg = ledger_config_from_env(
            {
                "TOKENLOCK_MODE": os.environ.get("TOKENLOCK_MODE", "prod"),
                "TOKENLOCK_LEDGER_ID": LEDGER_ID,
                "TOKENLOCK_DB_PATH": os.path.join(td, "tokenlock.db"),
                "TOKENLOCK_ADMIN_IDENTITY": admin,
                "TOKENLOCK_GENESIS_SUPPLY": "1000000",
            }
        )

        with TestClient(create_app(ledger_config=cfg)) as c:
            r = c.get("/v1/health")
            assert r.status_code == 200, r.text
            assert r.json().get("phase") == "open"

            _submit(c, "smoke-admin", "VESTING_SCHEDULE_SET", 1, recipient=alice, delays=[0], amounts=[250])
            _submit(c, "smoke-admin", "ASSET_TRANSFER", 2, asset=cfg.asset_address, to=cfg.custody_address, amount=250)
            _submit(c, "smoke-admin", "VESTING_LOCKUP", 3)
            rec = _submit(c, "smoke-alice", "VESTING_WITHDRAW", 1, amount=250)

            j = c.get("/v1/ledger").json()
            if j.get("total_outstanding") != 0 or j.get("custody_balance") != 0:
                raise RuntimeError(f"ledger did not settle: {j}")

        print("OK: health + signed vesting round trip", {"withdraw_seq": rec.get("seq")})
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
