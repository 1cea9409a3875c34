import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import UUID, uuid4

from .config import Settings, get_settings
from .errors import (
    InvalidInputError,
    InsufficientAuraError,
    UserNotFoundError,
)
from .models import (
    AuraStats,
    AuraTransaction,
    LeaderboardEntry,
    LeaderboardSort,
    LoginUpdate,
    TransactionHistoryResponse,
    TransactionType,
    UserWallet,
)
from .reputation import calculate_duck_rate, calculate_vibe_score, calculate_win_rate
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

EARNING_TYPES = {TransactionType.DAILY_BONUS, TransactionType.BET_WIN}
SPENDING_TYPES = {
    TransactionType.BET_CREATION,
    TransactionType.BET_STAKE,
    TransactionType.FAILURE_PENALTY,
}

LEADERBOARD_SORT_FIELDS = {
    LeaderboardSort.AURA_BALANCE: "aura_balance",
    LeaderboardSort.VIBE_SCORE: "vibe_score",
    LeaderboardSort.LIFETIME_EARNED: "lifetime_aura_earned",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LedgerService:
    """Owns every mutation of a wallet's balance, escrow and stat counters.

    The ``debit``/``credit``/``hold_stake``/``release_stake`` primitives expect the
    caller to hold ``storage.lock(user_ids=[...])`` for the affected user; the public
    read-modify-write operations here take that lock themselves.
    """

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage or InMemoryStorage()
        self.settings = settings or get_settings()
        self.clock = clock

    @property
    def bonus_cooldown(self) -> timedelta:
        return timedelta(hours=self.settings.daily_bonus_cooldown_hours)

    def register_user(self, user_id: str, display_name: str = "") -> UserWallet:
        if not user_id:
            raise InvalidInputError("User id is required")
        with self.storage.lock(user_ids=[user_id]):
            user = self.storage.users.get(user_id)
            if user is None:
                user = self.storage.insert_user(
                    user_id, self.settings.initial_balance, display_name
                )
                logger.info("Registered wallet for %s with %d Aura", user_id, user["aura_balance"])
            return UserWallet(**user)

    def get_wallet(self, user_id: str) -> UserWallet:
        return UserWallet(**self._get_user(user_id))

    def process_login_updates(self, user_id: str) -> LoginUpdate:
        with self.storage.lock(user_ids=[user_id]):
            user = self.storage.users.get(user_id)
            if user is None:
                # Unknown profile is a no-op for the login flow, not an error.
                return LoginUpdate(
                    aura_balance=self.settings.initial_balance,
                    vibe_score=100,
                    daily_bonus_claimed=False,
                )

            now = self.clock()
            claimed = False
            last_bonus = user["last_daily_bonus"]
            if last_bonus is None or now - last_bonus >= self.bonus_cooldown:
                amount = self.settings.daily_bonus_amount
                self.credit(user_id, amount, TransactionType.DAILY_BONUS, "Daily login bonus")
                user["last_daily_bonus"] = now
                claimed = True
                logger.info("Daily bonus of %d Aura issued to %s", amount, user_id)

            vibe_score = self.recompute_vibe_score(user_id)
            return LoginUpdate(
                aura_balance=user["aura_balance"],
                vibe_score=vibe_score,
                daily_bonus_claimed=claimed,
            )

    def can_afford(self, user_id: str, amount: int) -> bool:
        user = self.storage.users.get(user_id)
        if not user:
            return False
        return user["aura_balance"] >= amount

    def is_bankrupt(self, user_id: str) -> bool:
        user = self.storage.users.get(user_id)
        if not user:
            return True
        return user["aura_balance"] <= 0

    def get_aura_stats(self, user_id: str) -> AuraStats:
        user = self._get_user(user_id)
        now = self.clock()

        available = True
        next_bonus_at = None
        last_bonus = user["last_daily_bonus"]
        if last_bonus is not None and now - last_bonus < self.bonus_cooldown:
            available = False
            next_bonus_at = last_bonus + self.bonus_cooldown

        balance = user["aura_balance"]
        return AuraStats(
            user_id=user_id,
            balance=balance,
            escrowed=user["aura_escrowed"],
            lifetime_earned=user["lifetime_aura_earned"],
            lifetime_spent=user["lifetime_aura_spent"],
            can_bet=balance > 0,
            daily_bonus_available=available,
            next_bonus_at=next_bonus_at,
        )

    def get_transaction_history(
        self, user_id: str, limit: Optional[int] = None
    ) -> TransactionHistoryResponse:
        if limit is None or limit < 1:
            limit = self.settings.transaction_history_limit
        limit = min(limit, self.settings.transaction_history_max_limit)
        entries = [AuraTransaction(**t) for t in self.storage.transactions_for_user(user_id)]
        entries.sort(key=lambda t: (t.created_at, t.sequence), reverse=True)
        page = entries[:limit]
        return TransactionHistoryResponse(user_id=user_id, transactions=page, count=len(page))

    def get_transactions_for_bet(self, bet_id: UUID) -> list[AuraTransaction]:
        entries = [
            AuraTransaction(**t) for t in self.storage.snapshot(self.storage.aura_transactions)
            if t["reference_id"] == bet_id
        ]
        entries.sort(key=lambda t: t.sequence)
        return entries

    def get_leaderboard(
        self,
        limit: Optional[int] = None,
        sort_by: LeaderboardSort = LeaderboardSort.AURA_BALANCE,
    ) -> list[LeaderboardEntry]:
        if limit is None or limit < 1:
            limit = self.settings.leaderboard_default_limit
        limit = min(limit, self.settings.leaderboard_max_limit)

        field = LEADERBOARD_SORT_FIELDS[sort_by]
        users = sorted(self.storage.snapshot(self.storage.users), key=lambda u: u[field], reverse=True)
        return [
            LeaderboardEntry(
                rank=index + 1,
                user_id=u["user_id"],
                display_name=u["display_name"] or "Anonymous",
                aura_balance=u["aura_balance"],
                vibe_score=u["vibe_score"],
                win_rate=calculate_win_rate(u["bets_completed"], u["bets_created"]),
                duck_rate=calculate_duck_rate(u["callouts_ignored"], u["callouts_received"]),
            )
            for index, u in enumerate(users[:limit])
        ]

    def verify_balance(self, user_id: str) -> bool:
        """True when the live balance matches the initial grant plus the transaction log."""
        user = self._get_user(user_id)
        logged = sum(t["amount"] for t in self.storage.transactions_for_user(user_id))
        return user["aura_balance"] == user["initial_grant"] + logged

    def recompute_vibe_score(self, user_id: str) -> int:
        user = self._get_user(user_id)
        user["vibe_score"] = calculate_vibe_score(
            user["bets_completed"], user["bets_failed"], user["callouts_ignored"]
        )
        return user["vibe_score"]

    def increment_stats(self, user_id: str, **counters: int) -> None:
        user = self._get_user(user_id)
        for name, delta in counters.items():
            if name not in ("bets_created", "bets_completed", "bets_failed",
                            "callouts_received", "callouts_ignored"):
                raise InvalidInputError(f"Unknown stat counter: {name}")
            user[name] += delta

    def debit(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str,
        reference_id: Optional[UUID] = None,
    ) -> AuraTransaction:
        return self._apply(user_id, -amount, transaction_type, description, reference_id)

    def credit(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str,
        reference_id: Optional[UUID] = None,
    ) -> AuraTransaction:
        return self._apply(user_id, amount, transaction_type, description, reference_id)

    def hold_stake(self, user_id: str, amount: int, bet_id: UUID, description: str) -> AuraTransaction:
        entry = self.debit(user_id, amount, TransactionType.BET_STAKE, description, bet_id)
        self.storage.users[user_id]["aura_escrowed"] += amount
        return entry

    def release_stake(self, user_id: str, amount: int) -> None:
        user = self._get_user(user_id)
        if user["aura_escrowed"] < amount:
            raise InsufficientAuraError(amount, user["aura_escrowed"], "Escrow underflow")
        user["aura_escrowed"] -= amount

    def _apply(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str,
        reference_id: Optional[UUID],
    ) -> AuraTransaction:
        if amount == 0:
            raise InvalidInputError("Transaction amount must be non-zero")
        # re-entrant: callers already holding the wallet lock pass straight through
        with self.storage.lock(user_ids=[user_id]):
            user = self._get_user(user_id)
            new_balance = user["aura_balance"] + amount
            if new_balance < 0:
                raise InsufficientAuraError(-amount, user["aura_balance"])

            user["aura_balance"] = new_balance
            if transaction_type in EARNING_TYPES:
                user["lifetime_aura_earned"] += amount
            elif transaction_type in SPENDING_TYPES:
                user["lifetime_aura_spent"] += -amount

            entry_id = uuid4()
            entry_data = {
                "id": entry_id,
                "sequence": self.storage.next_sequence(),
                "user_id": user_id,
                "amount": amount,
                "balance_after": new_balance,
                "transaction_type": transaction_type,
                "reference_id": reference_id,
                "description": description,
                "created_at": self.clock(),
            }
            self.storage.insert(self.storage.aura_transactions, entry_id, entry_data)
        return AuraTransaction(**entry_data)

    def _get_user(self, user_id: str) -> dict:
        user = self.storage.users.get(user_id)
        if not user:
            raise UserNotFoundError(f"User {user_id} not found")
        return user
