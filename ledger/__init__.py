"""
Aura ledger for the group chat wager economy

This module provides:
- Wallets with a running balance, escrow and lifetime counters
- An append-only transaction log recording the balance after every entry
- Daily login bonus and vibe score recomputation
- Read-only stats, history and leaderboard projections
"""

from .models import (
    TransactionType,
    AuraTransaction,
    UserWallet,
    AuraStats,
)
from .service import LedgerService

__all__ = [
    "TransactionType",
    "AuraTransaction",
    "UserWallet",
    "AuraStats",
    "LedgerService",
]
