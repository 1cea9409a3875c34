import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional
from uuid import UUID


class InMemoryStorage:
    """Document store for wallets, wagers and the Aura transaction log.

    Each collection maps an id to a plain dict. Callers that read-check-then-write
    must hold ``lock()`` on every aggregate involved in the decision.
    """

    def __init__(self):
        self.users: dict[str, dict] = {}
        self.bets: dict[UUID, dict] = {}
        self.bet_participants: dict[UUID, dict] = {}
        self.bet_proofs: dict[UUID, dict] = {}
        self.bet_resolutions: dict[UUID, dict] = {}
        self.aura_transactions: dict[UUID, dict] = {}
        # unique on (bet_id, user_id)
        self.participant_index: dict[tuple[UUID, str], UUID] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()
        # guards inserts, removals and scans of every collection
        self._collections_lock = threading.RLock()
        self._sequence = 0

    def _lock_for(self, key: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def lock(
        self,
        bet_ids: Iterable[UUID] = (),
        user_ids: Iterable[Optional[str]] = (),
    ) -> Iterator[None]:
        # Fixed acquisition order (bets, then users, each sorted) keeps overlapping
        # callers from deadlocking.
        keys = [f"bet:{b}" for b in sorted({str(b) for b in bet_ids})]
        keys += [f"user:{u}" for u in sorted({u for u in user_ids if u is not None})]
        acquired = []
        try:
            for key in keys:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def insert(self, collection: dict, key, row):
        with self._collections_lock:
            collection[key] = row
        return row

    def remove(self, collection: dict, key) -> Optional[dict]:
        with self._collections_lock:
            return collection.pop(key, None)

    def snapshot(self, collection: dict) -> list[dict]:
        """Rows of ``collection`` as a list, safe to iterate while other threads insert."""
        with self._collections_lock:
            return list(collection.values())

    def insert_user(self, user_id: str, initial_balance: int, display_name: str = "") -> dict:
        user = {
            "user_id": user_id,
            "display_name": display_name,
            "aura_balance": initial_balance,
            "initial_grant": initial_balance,
            "aura_escrowed": 0,
            "lifetime_aura_earned": 0,
            "lifetime_aura_spent": 0,
            "last_daily_bonus": None,
            "bets_created": 0,
            "bets_completed": 0,
            "bets_failed": 0,
            "callouts_received": 0,
            "callouts_ignored": 0,
            "vibe_score": 100,
            "created_at": datetime.now(timezone.utc),
        }
        return self.insert(self.users, user_id, user)

    def participants_for_bet(self, bet_id: UUID) -> list[dict]:
        rows = [p for p in self.snapshot(self.bet_participants) if p["bet_id"] == bet_id]
        rows.sort(key=lambda p: p["created_at"])
        return rows

    def transactions_for_user(self, user_id: str) -> list[dict]:
        return [t for t in self.snapshot(self.aura_transactions) if t["user_id"] == user_id]

    def next_sequence(self) -> int:
        with self._registry_lock:
            self._sequence += 1
            return self._sequence
