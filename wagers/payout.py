from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from ledger.config import DustPolicy
from ledger.models import TransactionType

from .models import BetOutcome, BetParticipant, BetSide


class PayoutKind(str, Enum):
    WIN = "win"
    REFUND = "refund"

    @property
    def transaction_type(self) -> TransactionType:
        return TransactionType.BET_WIN if self is PayoutKind.WIN else TransactionType.BET_REFUND


@dataclass
class Payout:
    user_id: str
    amount: int
    kind: PayoutKind


@dataclass
class PayoutPlan:
    outcome: BetOutcome
    total_yes: int
    total_no: int
    payouts: list[Payout] = field(default_factory=list)

    @property
    def total_pot(self) -> int:
        return self.total_yes + self.total_no

    @property
    def total_paid(self) -> int:
        return sum(p.amount for p in self.payouts)

    @property
    def unallocated(self) -> int:
        return self.total_pot - self.total_paid

    def amount_for(self, user_id: str) -> int:
        return sum(p.amount for p in self.payouts if p.user_id == user_id)


def _refund(stakes: Iterable[BetParticipant]) -> list[Payout]:
    return [Payout(user_id=s.user_id, amount=s.amount, kind=PayoutKind.REFUND) for s in stakes]


def calculate_payouts(
    participants: list[BetParticipant],
    outcome: BetOutcome,
    dust_policy: DustPolicy = DustPolicy.BURN,
) -> PayoutPlan:
    """Pari-mutuel split of the pot, no house fee.

    Winners receive floor(stake * pot / winning_total). With no stake on the
    winning side the opposite side is refunded; EXPIRED and DUCKED refund everyone.
    ``participants`` must be in stake order; dust ties go to the earliest stake.
    """
    yes = [p for p in participants if p.side == BetSide.YES]
    no = [p for p in participants if p.side == BetSide.NO]
    plan = PayoutPlan(
        outcome=outcome,
        total_yes=sum(p.amount for p in yes),
        total_no=sum(p.amount for p in no),
    )

    if outcome in (BetOutcome.EXPIRED, BetOutcome.DUCKED):
        plan.payouts = _refund(participants)
        return plan

    winners, losers = (yes, no) if outcome == BetOutcome.YES else (no, yes)
    winning_total = sum(p.amount for p in winners)
    if winning_total == 0:
        plan.payouts = _refund(losers)
        return plan

    pot = plan.total_pot
    plan.payouts = [
        Payout(user_id=w.user_id, amount=w.amount * pot // winning_total, kind=PayoutKind.WIN)
        for w in winners
    ]

    dust = plan.unallocated
    if dust and dust_policy == DustPolicy.LARGEST_WINNER:
        largest = max(range(len(winners)), key=lambda i: (winners[i].amount, -i))
        plan.payouts[largest].amount += dust
    return plan
