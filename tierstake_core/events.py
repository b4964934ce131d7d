"""
Append-only audit log for TierStake.

One record is appended per committed mutation.  Records are first staged
by the running transaction; ``commit`` publishes them (sequence numbers,
sinks, log lines) and ``discard`` drops them when the transaction aborts,
so an aborted operation leaves no trace in the log.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger("tierstake_audit")


class EventType(Enum):
    STAKED = "Staked"
    UNSTAKED = "Unstaked"
    REWARDS_CLAIMED = "RewardsClaimed"
    EMERGENCY_WITHDRAW = "EmergencyWithdraw"
    AUTO_COMPOUND_TOGGLED = "AutoCompoundToggled"
    TIER_UPDATED = "TierUpdated"
    TIER_ADDED = "TierAdded"
    PREMIUM_BONUS_UPDATED = "PremiumBonusUpdated"
    REWARD_POOL_UPDATED = "RewardPoolUpdated"
    PREMIUM_STATUS_UPDATED = "PremiumStatusUpdated"
    PARAMETER_UPDATED = "ParameterUpdated"
    PAUSED = "Paused"
    UNPAUSED = "Unpaused"
    REWARDS_WITHDRAWN = "RewardsWithdrawn"
    OWNERSHIP_TRANSFER_STARTED = "OwnershipTransferStarted"
    OWNERSHIP_TRANSFERRED = "OwnershipTransferred"


@dataclass
class AuditEvent:
    event_type: EventType
    timestamp: int
    actor: str
    data: dict[str, Any] = field(default_factory=dict)
    seq: int = 0

    def to_dict(self) -> dict:
        return {
            "seq": self.seq,
            "event": self.event_type.value,
            "timestamp": self.timestamp,
            "actor": self.actor,
            "data": dict(self.data),
        }


AuditSink = Callable[[AuditEvent], None]


class AuditLog:
    """Committed audit records plus the staging area of the open transaction."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []
        self._pending: list[AuditEvent] = []
        self._sinks: list[AuditSink] = []

    def add_sink(self, sink: AuditSink) -> None:
        self._sinks.append(sink)

    def emit(self, event_type: EventType, timestamp: int, actor: str, **data: Any) -> AuditEvent:
        event = AuditEvent(event_type, timestamp, actor, data)
        self._pending.append(event)
        return event

    def commit(self) -> list[AuditEvent]:
        committed, self._pending = self._pending, []
        for event in committed:
            event.seq = len(self.events) + 1
            self.events.append(event)
            logger.info(
                f"{event.event_type.value} by {event.actor}",
                extra={"audit": event.to_dict()},
            )
            for sink in self._sinks:
                # the mutation is already committed; a sink cannot undo it
                try:
                    sink(event)
                except Exception as e:
                    logger.warning(f"Audit sink failed for event {event.seq}: {e}")
        return committed

    def discard(self) -> None:
        self._pending.clear()

    # ── queries ─────────────────────────────────────────────────────

    def filter(
        self,
        event_type: EventType | None = None,
        actor: str | None = None,
        since_seq: int = 0,
    ) -> list[AuditEvent]:
        return [
            e for e in self.events
            if e.seq > since_seq
            and (event_type is None or e.event_type is event_type)
            and (actor is None or e.actor == actor)
        ]

    def __len__(self) -> int:
        return len(self.events)
