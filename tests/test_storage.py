"""
Tests for tierstake_core.storage — the SQLite audit store.
"""

import sqlite3

import pytest

from conftest import ALICE, BOB, OWNER, T0
from tierstake_core.errors import ExternalTransferError
from tierstake_core.events import AuditEvent, EventType
from tierstake_core.precision import UINT256_MAX, to_units
from tierstake_core.storage import AuditStore


@pytest.fixture
def store():
    s = AuditStore(":memory:")
    yield s
    s.close()


def _event(seq, event_type=EventType.STAKED, actor=ALICE, **data):
    return AuditEvent(event_type, T0 + seq, actor, data, seq=seq)


class TestAuditStore:
    def test_append_and_load(self, store):
        rowid = store.append(_event(1, amount=to_units(10_000), tier=2))
        assert rowid == 1
        rows = store.load_events()
        assert rows == [{
            "id": 1, "seq": 1, "event": "Staked", "timestamp": T0 + 1,
            "actor": ALICE, "data": {"amount": to_units(10_000), "tier": 2},
        }]

    def test_large_amounts_exact(self, store):
        store.append(_event(1, amount=UINT256_MAX))
        assert store.load_events()[0]["data"]["amount"] == UINT256_MAX

    def test_filters(self, store):
        store.append(_event(1))
        store.append(_event(2, EventType.PAUSED, OWNER))
        store.append(_event(3, actor=BOB))
        assert [r["seq"] for r in store.load_events(event="Staked")] == [1, 3]
        assert [r["seq"] for r in store.load_events(actor=OWNER)] == [2]
        assert [r["seq"] for r in store.load_events(since_id=1)] == [2, 3]
        assert len(store.load_events(limit=2)) == 2
        assert store.count() == 3

    def test_callable_sink(self, store):
        store(_event(1))
        assert store.count() == 1

    def test_persists_across_reopen(self, tmp_path):
        path = str(tmp_path / "sub" / "audit.db")
        with AuditStore(path) as s:
            s.append(_event(1))
        with AuditStore(path) as s:
            s.append(_event(1, actor=BOB))
            rows = s.load_events()
        assert [r["id"] for r in rows] == [1, 2]
        assert [r["actor"] for r in rows] == [ALICE, BOB]

    def test_newer_schema_rejected(self, tmp_path):
        path = str(tmp_path / "audit.db")
        AuditStore(path).close()
        conn = sqlite3.connect(path)
        conn.execute("UPDATE schema_version SET version = 99 WHERE id = 1")
        conn.commit()
        conn.close()
        with pytest.raises(RuntimeError):
            AuditStore(path)


class TestStoreAsSink:
    def test_only_committed_operations_persist(self, engine, controller, store, token):
        engine.attach_store(store)
        controller.stake(ALICE, to_units(1_000), 1)
        token.fail_next(BOB)
        with pytest.raises(ExternalTransferError):
            controller.stake(BOB, to_units(1_000), 1)
        rows = store.load_events()
        assert [(r["event"], r["actor"]) for r in rows] == [("Staked", ALICE)]
