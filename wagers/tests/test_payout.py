"""
Unit Tests for pari-mutuel payout planning

Tests cover:
1. Proportional split among winners
2. Refunds when the winning side is empty
3. Full refunds for expired and ducked outcomes
4. Floor-rounding dust under each policy
"""

import pytest
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from ledger.config import DustPolicy
from ledger.models import TransactionType
from wagers.models import BetOutcome, BetParticipant, BetSide
from wagers.payout import PayoutKind, calculate_payouts


BET_ID = uuid4()
T0 = datetime(2026, 3, 1, tzinfo=timezone.utc)


def stake(user_id: str, side: BetSide, amount: int, order: int = 0) -> BetParticipant:
    return BetParticipant(
        id=uuid4(), bet_id=BET_ID, user_id=user_id, side=side, amount=amount,
        created_at=T0 + timedelta(seconds=order),
    )


class TestWinningSplit:
    """Tests for the proportional split."""

    def test_yes_outcome_split(self):
        """Test the canonical 30/10 vs 40 split."""
        participants = [
            stake("a", BetSide.YES, 30, 0),
            stake("b", BetSide.YES, 10, 1),
            stake("c", BetSide.NO, 40, 2),
        ]

        plan = calculate_payouts(participants, BetOutcome.YES)

        assert plan.total_yes == 40
        assert plan.total_no == 40
        assert plan.total_pot == 80
        assert plan.amount_for("a") == 60
        assert plan.amount_for("b") == 20
        assert plan.amount_for("c") == 0
        assert plan.total_paid == 80
        assert all(p.kind == PayoutKind.WIN for p in plan.payouts)

    def test_no_outcome_is_symmetric(self):
        """Test that NO pays the no side from the whole pot."""
        participants = [
            stake("a", BetSide.YES, 50, 0),
            stake("b", BetSide.NO, 25, 1),
            stake("c", BetSide.NO, 25, 2),
        ]

        plan = calculate_payouts(participants, BetOutcome.NO)

        assert plan.amount_for("a") == 0
        assert plan.amount_for("b") == 50
        assert plan.amount_for("c") == 50
        assert plan.unallocated == 0

    def test_winners_only_get_stakes_back(self):
        """Test that with no losing stake winners just recover their stake."""
        participants = [stake("a", BetSide.YES, 10), stake("b", BetSide.YES, 20, 1)]

        plan = calculate_payouts(participants, BetOutcome.YES)

        assert plan.amount_for("a") == 10
        assert plan.amount_for("b") == 20
        assert all(p.kind == PayoutKind.WIN for p in plan.payouts)


class TestRefunds:
    """Tests for refund outcomes."""

    def test_yes_with_no_yes_stakes_refunds_no_side(self):
        """Test that an empty winning side refunds the other side exactly."""
        participants = [stake("a", BetSide.NO, 15), stake("b", BetSide.NO, 35, 1)]

        plan = calculate_payouts(participants, BetOutcome.YES)

        assert plan.amount_for("a") == 15
        assert plan.amount_for("b") == 35
        assert all(p.kind == PayoutKind.REFUND for p in plan.payouts)
        assert all(p.kind.transaction_type == TransactionType.BET_REFUND for p in plan.payouts)

    def test_no_with_no_no_stakes_refunds_yes_side(self):
        """Test the symmetric empty-side refund."""
        plan = calculate_payouts([stake("a", BetSide.YES, 20)], BetOutcome.NO)

        assert plan.amount_for("a") == 20
        assert plan.payouts[0].kind == PayoutKind.REFUND

    @pytest.mark.parametrize("outcome", [BetOutcome.EXPIRED, BetOutcome.DUCKED])
    def test_refund_everyone(self, outcome):
        """Test that expired and ducked outcomes refund both sides in full."""
        participants = [stake("a", BetSide.YES, 30), stake("b", BetSide.NO, 12, 1)]

        plan = calculate_payouts(participants, outcome)

        assert plan.amount_for("a") == 30
        assert plan.amount_for("b") == 12
        assert plan.unallocated == 0
        assert all(p.kind == PayoutKind.REFUND for p in plan.payouts)

    def test_empty_bet(self):
        """Test that a bet with no stakes produces no payouts."""
        plan = calculate_payouts([], BetOutcome.YES)

        assert plan.payouts == []
        assert plan.total_pot == 0


class TestDust:
    """Tests for floor-rounding remainders."""

    def uneven(self):
        return [
            stake("a", BetSide.YES, 10, 0),
            stake("b", BetSide.YES, 10, 1),
            stake("c", BetSide.YES, 10, 2),
            stake("d", BetSide.NO, 11, 3),
        ]

    def test_burn_leaves_remainder_unallocated(self):
        """Test that the default policy records the dust without paying it."""
        plan = calculate_payouts(self.uneven(), BetOutcome.YES)

        # 41 * 10 // 30 = 13 each
        assert [p.amount for p in plan.payouts] == [13, 13, 13]
        assert plan.unallocated == 2
        assert plan.total_paid <= plan.total_pot

    def test_largest_winner_takes_remainder(self):
        """Test that the dust goes to the earliest of the largest winning stakes."""
        plan = calculate_payouts(self.uneven(), BetOutcome.YES, DustPolicy.LARGEST_WINNER)

        assert plan.amount_for("a") == 15
        assert plan.amount_for("b") == 13
        assert plan.amount_for("c") == 13
        assert plan.unallocated == 0

    def test_largest_winner_prefers_bigger_stake(self):
        """Test that a larger later stake beats an earlier smaller one."""
        participants = [
            stake("a", BetSide.YES, 10, 0),
            stake("b", BetSide.YES, 20, 1),
            stake("c", BetSide.NO, 11, 2),
        ]

        plan = calculate_payouts(participants, BetOutcome.YES, DustPolicy.LARGEST_WINNER)

        # 10 * 41 // 30 = 13, 20 * 41 // 30 = 27, dust 1
        assert plan.amount_for("a") == 13
        assert plan.amount_for("b") == 28
        assert plan.total_paid == plan.total_pot
