"""
Transaction boundary for TierStake.

Every mutating operation runs inside ``TransactionBoundary.begin()``:

  1. take the ledger lock (single writer; a nested ``begin`` is rejected)
  2. resolve the clock and refuse to go backwards
  3. checkpoint ``LedgerState`` and capture the invariant baseline
  4. run the operation; token transfers go through the ``Transaction``
     handle, which journals them
  5. verify invariants, then commit the staged audit records

If step 4 or 5 raises, the checkpoint is rolled back in place, every journalled
transfer is reversed (newest first) and the staged audit records are
dropped.  A later operation can never observe a partial result, and
queries take the same lock through ``read()`` so they never see one either.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from typing import Callable, Iterator

from tierstake_core.errors import (
    ClockRegression,
    ExternalTransferError,
    InvariantViolation,
    StateError,
)
from tierstake_core.events import AuditLog
from tierstake_core.invariants import InvariantChecker
from tierstake_core.state import LedgerState
from tierstake_core.token import TokenCollaborator

logger = logging.getLogger("tierstake_atomic")

Clock = Callable[[], float]


def system_clock() -> float:
    return time.time()


class Transaction:
    """Handle given to a running operation: its clock and journalled transfers."""

    def __init__(self, token: TokenCollaborator, now: int, operation: str = "") -> None:
        self.token = token
        self.now = now
        self.operation = operation
        self.journal: list[tuple[str, str, int]] = []

    def pull(self, account: str, amount: int) -> None:
        if amount == 0:
            return
        if not self.token.pull(account, amount):
            raise ExternalTransferError("pull", account, amount)
        self.journal.append(("pull", account, amount))

    def push(self, account: str, amount: int) -> None:
        if amount == 0:
            return
        if not self.token.push(account, amount):
            raise ExternalTransferError("push", account, amount)
        self.journal.append(("push", account, amount))

    def compensate(self) -> None:
        """Reverse every completed transfer, newest first."""
        while self.journal:
            direction, account, amount = self.journal.pop()
            undo = self.token.push if direction == "pull" else self.token.pull
            if not undo(account, amount):
                logger.error(
                    f"{self.operation}: could not reverse {direction} of "
                    f"{amount} for {account}; manual reconciliation required"
                )


class TransactionBoundary:
    """Serialises operations over one ``LedgerState``."""

    def __init__(
        self,
        state: LedgerState,
        token: TokenCollaborator,
        audit: AuditLog,
        clock: Clock = system_clock,
        checker: InvariantChecker | None = None,
    ) -> None:
        self.state = state
        self.token = token
        self.audit = audit
        self.clock = clock
        self.checker = checker or InvariantChecker()
        self._lock = threading.RLock()
        self._active = False

    def now(self, now: int | None = None) -> int:
        return int(self.clock()) if now is None else int(now)

    @contextlib.contextmanager
    def read(self) -> Iterator[LedgerState]:
        """Hold the ledger lock for a consistent read between transactions."""
        with self._lock:
            yield self.state

    @contextlib.contextmanager
    def begin(self, now: int | None = None, operation: str = "") -> Iterator[Transaction]:
        with self._lock:
            if self._active:
                raise StateError("re-entrant call into the ledger", operation=operation)
            ts = self.now(now)
            if ts < self.state.last_time:
                raise ClockRegression(ts, self.state.last_time)

            self._active = True
            checkpoint = self.state.checkpoint()
            self.checker.capture(self.state)
            tx = Transaction(self.token, ts, operation)
            try:
                yield tx
                ok, msg = self.checker.verify(self.state, ts, self.token)
                if not ok:
                    logger.error(f"{operation}: invariant check failed: {msg}")
                    raise InvariantViolation(msg.split("; "))
            except BaseException:
                self.state.rollback(checkpoint)
                tx.compensate()
                self.audit.discard()
                raise
            finally:
                self._active = False

            self.state.commit()
            self.state.last_time = ts
            self.audit.commit()
