"""
Token transfer collaborator for TierStake.

The staking ledger never holds balances itself; it asks an external token
ledger to move value in and out of a *custody* account.  Any object that
provides ``pull`` / ``push`` / ``balance_of`` will do.  Both transfer calls
report success with a boolean, and the caller must check it.

``InMemoryToken`` is the reference implementation used by the server and
the test-suite.  It supports failure injection so tests can exercise the
abort paths.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger("tierstake_token")

DEFAULT_CUSTODY = "tsStakingCustody"


@runtime_checkable
class TokenCollaborator(Protocol):
    custody: str

    def pull(self, account: str, amount: int) -> bool:
        """Move *amount* from *account* into custody."""
        ...

    def push(self, account: str, amount: int) -> bool:
        """Move *amount* from custody to *account*."""
        ...

    def balance_of(self, account: str) -> int:
        ...


class InMemoryToken:
    """Dict-backed token ledger with a single custody account."""

    def __init__(
        self,
        balances: dict[str, int] | None = None,
        custody: str = DEFAULT_CUSTODY,
    ) -> None:
        self.custody = custody
        self.balances: dict[str, int] = dict(balances or {})
        self.balances.setdefault(custody, 0)
        self.transfers: list[tuple[str, str, int]] = []
        # account -> number of upcoming transfers touching it that will fail
        self._fail_accounts: dict[str, int] = {}
        self._fail_all = False

    # ── collaborator interface ──────────────────────────────────────

    def pull(self, account: str, amount: int) -> bool:
        return self._move(account, self.custody, amount)

    def push(self, account: str, amount: int) -> bool:
        return self._move(self.custody, account, amount)

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    # ── helpers ─────────────────────────────────────────────────────

    def mint(self, account: str, amount: int) -> None:
        self.balances[account] = self.balances.get(account, 0) + amount

    def fail_next(self, account: str, times: int = 1) -> None:
        """Make the next *times* transfers touching *account* fail."""
        self._fail_accounts[account] = self._fail_accounts.get(account, 0) + times

    def set_offline(self, offline: bool = True) -> None:
        self._fail_all = offline

    def _should_fail(self, src: str, dst: str) -> bool:
        if self._fail_all:
            return True
        for acct in (src, dst):
            if acct != self.custody and self._fail_accounts.get(acct, 0) > 0:
                self._fail_accounts[acct] -= 1
                return True
        return False

    def _move(self, src: str, dst: str, amount: int) -> bool:
        if amount < 0:
            return False
        if self._should_fail(src, dst):
            logger.warning(f"Transfer {src} -> {dst} of {amount} declined")
            return False
        if self.balances.get(src, 0) < amount:
            logger.warning(f"Transfer {src} -> {dst} of {amount}: insufficient balance")
            return False
        self.balances[src] = self.balances.get(src, 0) - amount
        self.balances[dst] = self.balances.get(dst, 0) + amount
        self.transfers.append((src, dst, amount))
        return True
