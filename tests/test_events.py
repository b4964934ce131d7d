"""
Tests for tierstake_core.events — staged and committed audit records.
"""

import logging

from conftest import ALICE, DAY, OWNER, T0
from tierstake_core.events import AuditEvent, AuditLog, EventType
from tierstake_core.precision import to_units


class TestAuditLog:
    def test_staged_until_commit(self):
        log = AuditLog()
        log.emit(EventType.STAKED, T0, ALICE, index=0)
        assert len(log) == 0
        committed = log.commit()
        assert len(log) == 1
        assert committed[0].seq == 1

    def test_discard(self):
        log = AuditLog()
        log.emit(EventType.STAKED, T0, ALICE)
        log.discard()
        assert log.commit() == []
        assert len(log) == 0

    def test_sequence_numbers(self):
        log = AuditLog()
        for i in range(3):
            log.emit(EventType.REWARDS_CLAIMED, T0 + i, ALICE, amount=i)
            log.commit()
        assert [e.seq for e in log.events] == [1, 2, 3]

    def test_to_dict(self):
        ev = AuditEvent(EventType.EMERGENCY_WITHDRAW, T0, ALICE, {"fee": 5}, seq=4)
        assert ev.to_dict() == {
            "seq": 4, "event": "EmergencyWithdraw", "timestamp": T0,
            "actor": ALICE, "data": {"fee": 5},
        }

    def test_filter(self):
        log = AuditLog()
        log.emit(EventType.STAKED, T0, ALICE)
        log.emit(EventType.PAUSED, T0, OWNER)
        log.emit(EventType.STAKED, T0, OWNER)
        log.commit()
        assert len(log.filter(EventType.STAKED)) == 2
        assert len(log.filter(actor=OWNER)) == 2
        assert [e.seq for e in log.filter(since_seq=2)] == [3]

    def test_sinks_receive_committed_only(self):
        log = AuditLog()
        seen = []
        log.add_sink(seen.append)
        log.emit(EventType.STAKED, T0, ALICE)
        log.discard()
        log.emit(EventType.PAUSED, T0, OWNER)
        log.commit()
        assert [e.event_type for e in seen] == [EventType.PAUSED]

    def test_failing_sink_does_not_undo_commit(self, caplog):
        log = AuditLog()

        def broken(event):
            raise OSError("disk full")

        log.add_sink(broken)
        log.emit(EventType.PAUSED, T0, OWNER)
        with caplog.at_level(logging.WARNING, logger="tierstake_audit"):
            log.commit()
        assert len(log) == 1
        assert "Audit sink failed" in caplog.text

    def test_commit_logs_audit_extra(self, caplog):
        log = AuditLog()
        log.emit(EventType.STAKED, T0, ALICE, amount=7)
        with caplog.at_level(logging.INFO, logger="tierstake_audit"):
            log.commit()
        record = caplog.records[-1]
        assert record.audit["event"] == "Staked"
        assert record.audit["data"] == {"amount": 7}


class TestOperationEvents:
    def test_full_lifecycle_trail(self, engine, controller, admin):
        controller.stake(ALICE, to_units(10_000), 1)
        controller.toggle_auto_compound(ALICE, 0)
        controller.claim(ALICE, 0, now=T0 + DAY)
        admin.pause(OWNER, now=T0 + DAY)
        admin.unpause(OWNER, now=T0 + DAY)
        controller.unstake(ALICE, 0, now=T0 + 31 * DAY)
        assert [e.event_type for e in engine.audit.events] == [
            EventType.STAKED,
            EventType.AUTO_COMPOUND_TOGGLED,
            EventType.REWARDS_CLAIMED,
            EventType.PAUSED,
            EventType.UNPAUSED,
            EventType.UNSTAKED,
        ]
        claimed = engine.audit.events[2]
        assert claimed.data["compounded"] is True
        assert claimed.data["fee"] > 0

    def test_ownership_events(self, engine, admin):
        admin.transfer_ownership(OWNER, ALICE)
        admin.accept_ownership(ALICE)
        started, done = engine.audit.events
        assert started.event_type is EventType.OWNERSHIP_TRANSFER_STARTED
        assert done.data == {"previous_owner": OWNER, "new_owner": ALICE}
