"""Points ledger and the spend-to-unlock gate.

The profile store is the authority. ``UnlockGate`` keeps a cached copy of the
learner's ledger for cheap affordability checks. A spend re-reads the store,
decides against that fresh state, and writes with a compare-and-set on the
balance it read, so several gates for one profile never double spend.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Literal

from .errors import StoreError
from .store import LedgerState, ProfileStore

logger = logging.getLogger(__name__)

SpendOutcome = Literal["unlocked", "already_unlocked", "insufficient_funds", "store_error"]

UNLOCKED: SpendOutcome = "unlocked"
ALREADY_UNLOCKED: SpendOutcome = "already_unlocked"
INSUFFICIENT_FUNDS: SpendOutcome = "insufficient_funds"
STORE_ERROR: SpendOutcome = "store_error"

DIFFICULTY_MULTIPLIERS = {"Beginner": 2, "Intermediate": 3, "Advanced": 4}


def unlock_cost(base_points: int, difficulty: str) -> int:
    """Return ``base * 2 * multiplier / 2``: base x2, x3 or x4 by difficulty."""
    if base_points < 0:
        raise ValueError("Base points cannot be negative.")
    multiplier = DIFFICULTY_MULTIPLIERS.get(difficulty, DIFFICULTY_MULTIPLIERS["Beginner"])
    return (base_points * 2 * multiplier) // 2


@dataclass(frozen=True)
class SpendResult:
    """Outcome of one spend request with the ledger as it stands afterwards."""

    outcome: SpendOutcome
    content_id: str
    cost: int
    state: LedgerState
    error: StoreError | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in (UNLOCKED, ALREADY_UNLOCKED)

    @property
    def shortfall(self) -> int:
        """Points still missing when the outcome is ``insufficient_funds``."""
        return max(0, self.cost - self.state.point_balance)


class UnlockGate:
    """Spend points to unlock content for one learner."""

    def __init__(self, store: ProfileStore, user_id: int, state: LedgerState | None = None) -> None:
        self._store = store
        self.user_id = user_id
        self._state = state if state is not None else store.read(user_id)
        self._guard = threading.Lock()
        self._in_flight: dict[str, threading.Lock] = {}

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def balance(self) -> int:
        return self._state.point_balance

    def is_unlocked(self, content_id: str) -> bool:
        return self._state.is_unlocked(content_id)

    def can_afford(self, cost: int) -> bool:
        """Check the cached balance; never touches the store."""
        return self._state.point_balance >= cost

    def refresh(self) -> LedgerState:
        """Reload the cached ledger from the store."""
        self._state = self._store.read(self.user_id)
        return self._state

    def spend(self, content_id: str, cost: int) -> SpendResult:
        """Unlock ``content_id`` for ``cost`` points if the learner can pay."""
        if cost < 0:
            raise ValueError("Unlock cost cannot be negative.")
        with self._content_lock(content_id):
            return self._spend_locked(content_id, cost)

    def _content_lock(self, content_id: str) -> threading.Lock:
        with self._guard:
            lock = self._in_flight.get(content_id)
            if lock is None:
                lock = threading.Lock()
                self._in_flight[content_id] = lock
            return lock

    def _spend_locked(self, content_id: str, cost: int) -> SpendResult:
        # Another gate for the same profile may have spent since the cache was filled.
        try:
            current = self._store.read(self.user_id)
        except StoreError as exc:
            logger.error("Reading ledger of profile %s before unlocking %s failed: %s", self.user_id, content_id, exc)
            return SpendResult(outcome=STORE_ERROR, content_id=content_id, cost=cost, state=self._state, error=exc)
        self._state = current

        if current.is_unlocked(content_id):
            logger.info("Content %s already unlocked for profile %s", content_id, self.user_id)
            return SpendResult(outcome=ALREADY_UNLOCKED, content_id=content_id, cost=cost, state=current)
        if current.point_balance < cost:
            logger.info(
                "Profile %s cannot afford %s (%s < %s)",
                self.user_id,
                content_id,
                current.point_balance,
                cost,
            )
            return SpendResult(outcome=INSUFFICIENT_FUNDS, content_id=content_id, cost=cost, state=current)

        updated = LedgerState(
            point_balance=current.point_balance - cost,
            unlocked_ids=current.unlocked_ids | {content_id},
        )
        try:
            self._store.write(self.user_id, updated, expected_balance=current.point_balance)
        except StoreError as exc:
            logger.error("Unlock of %s for profile %s failed: %s", content_id, self.user_id, exc)
            return SpendResult(outcome=STORE_ERROR, content_id=content_id, cost=cost, state=current, error=exc)

        self._state = updated
        logger.info("Profile %s unlocked %s for %s points", self.user_id, content_id, cost)
        return SpendResult(outcome=UNLOCKED, content_id=content_id, cost=cost, state=updated)
