from __future__ import annotations

import json
import logging

import pytest

from tokenlock.runtime.errors import NotActivated
from tokenlock.runtime.event_log import log_event
from tokenlock.testing.ledger import ADMIN


def _events(caplog):
    out = []
    for rec in caplog.records:
        if rec.name != "tokenlock.executor":
            continue
        out.append(json.loads(rec.getMessage()))
    return out


def test_applied_operations_emit_json_events(h, caplog):
    caplog.set_level(logging.INFO, logger="tokenlock.executor")

    h.ex.register_schedule("alice", [0], [10], requested_by=ADMIN)
    h.fund_custody(10)
    h.ex.activate(requested_by=ADMIN)
    h.ex.withdraw("alice", 10, requested_by="alice")

    names = [e["event"] for e in _events(caplog)]
    assert names == ["schedule_registered", "ledger_activated", "withdrawal_settled"]

    settled = _events(caplog)[-1]
    assert settled["recipient"] == "alice"
    assert settled["amount"] == 10
    assert isinstance(settled["seq"], int)


def test_rejected_operation_is_logged_at_warning(h, caplog):
    caplog.set_level(logging.INFO, logger="tokenlock.executor")
    h.ex.register_schedule("alice", [0], [10], requested_by=ADMIN)

    with pytest.raises(NotActivated):
        h.ex.withdraw("alice", 1, requested_by="alice")

    rejected = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(rejected) == 1
    j = json.loads(rejected[0].getMessage())
    assert j["event"] == "operation_rejected"
    assert j["code"] == "not_activated"


def test_log_event_falls_back_for_unserializable_fields(caplog):
    caplog.set_level(logging.INFO, logger="tokenlock.test")
    log_event(logging.getLogger("tokenlock.test"), "odd", blob=object())

    msg = caplog.records[-1].getMessage()
    assert msg.startswith("event=odd ")
    assert "blob=" in msg
