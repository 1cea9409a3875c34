"""
Wagers on group chat propositions, settled in Aura

This module provides:
- Bet creation for self bets, callouts and dares
- Escrowed staking on yes/no sides
- Proof submission by the creator or target
- Pari-mutuel settlement with refunds and failure penalties
- Periodic auto-expiry of overdue bets
"""

from .models import (
    SYSTEM_ACTOR,
    Actor,
    Bet,
    BetOutcome,
    BetParticipant,
    BetProof,
    BetResolution,
    BetSide,
    BetStatus,
    BetType,
)
from .service import WagerService

__all__ = [
    "SYSTEM_ACTOR",
    "Actor",
    "Bet",
    "BetOutcome",
    "BetParticipant",
    "BetProof",
    "BetResolution",
    "BetSide",
    "BetStatus",
    "BetType",
    "WagerService",
]
