from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class TransactionType(str, Enum):
    DAILY_BONUS = "daily_bonus"
    BET_CREATION = "bet_creation"
    BET_STAKE = "bet_stake"
    BET_WIN = "bet_win"
    BET_REFUND = "bet_refund"
    FAILURE_PENALTY = "failure_penalty"


class LeaderboardSort(str, Enum):
    AURA_BALANCE = "aura_balance"
    VIBE_SCORE = "vibe_score"
    LIFETIME_EARNED = "lifetime_earned"


class UserWallet(BaseModel):
    user_id: str
    display_name: str = ""
    aura_balance: int = Field(..., ge=0)
    initial_grant: int = 0
    aura_escrowed: int = Field(default=0, ge=0)
    lifetime_aura_earned: int = 0
    lifetime_aura_spent: int = 0
    last_daily_bonus: Optional[datetime] = None
    bets_created: int = 0
    bets_completed: int = 0
    bets_failed: int = 0
    callouts_received: int = 0
    callouts_ignored: int = 0
    vibe_score: int = 100
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuraTransaction(BaseModel):
    id: UUID
    sequence: int
    user_id: str
    amount: int
    balance_after: int
    transaction_type: TransactionType
    reference_id: Optional[UUID] = None
    description: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LoginUpdate(BaseModel):
    aura_balance: int
    vibe_score: int
    daily_bonus_claimed: bool


class AuraStats(BaseModel):
    user_id: str
    balance: int
    escrowed: int
    lifetime_earned: int
    lifetime_spent: int
    can_bet: bool
    daily_bonus_available: bool
    next_bonus_at: Optional[datetime] = None


class TransactionHistoryResponse(BaseModel):
    user_id: str
    transactions: list[AuraTransaction]
    count: int


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    display_name: str
    aura_balance: int
    vibe_score: int
    win_rate: int
    duck_rate: int
