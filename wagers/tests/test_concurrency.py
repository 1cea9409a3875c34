"""
Concurrency tests: racing stakes, resolutions and debits must serialize per aggregate.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from ledger.errors import AuraServiceError, InvalidStateTransitionError
from ledger.models import TransactionType
from wagers.models import (
    Actor,
    BetOutcome,
    BetSide,
    BetType,
    CreateBetRequest,
    PlaceStakeRequest,
    ResolveBetRequest,
)


CHAT_ID = "chat-squad"
CREATOR = "user-cam"
PLAYER = "user-pat"
WORKERS = 8


def race(fn, count: int = WORKERS) -> list:
    """Run fn(i) on ``count`` threads released together; return results or exceptions."""
    barrier = threading.Barrier(count)

    def call(i):
        barrier.wait()
        try:
            return fn(i)
        except AuraServiceError as e:
            return e

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(call, range(count)))


def new_bet(wagers, clock):
    return wagers.create_bet(CreateBetRequest(
        chat_id=CHAT_ID,
        creator_id=CREATOR,
        bet_type=BetType.SELF,
        description="Race condition bet",
        deadline=clock() + timedelta(hours=2),
    ))


class TestConcurrentStakes:
    """Tests for racing stakes."""

    def test_same_user_same_bet_stakes_once(self, wagers, ledger, members, clock):
        """Test that only one of many simultaneous stakes by a user lands."""
        members(CREATOR, PLAYER)
        bet = new_bet(wagers, clock)

        results = race(lambda i: wagers.place_bet_stake(
            bet.id, PlaceStakeRequest(user_id=PLAYER, side=BetSide.YES, amount=10 + i)
        ))

        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 1
        assert all(isinstance(r, InvalidStateTransitionError) for r in results if isinstance(r, Exception))
        wallet = ledger.get_wallet(PLAYER)
        assert wallet.aura_balance == 1000 - successes[0].amount
        assert wallet.aura_escrowed == successes[0].amount
        assert ledger.verify_balance(PLAYER)

    def test_no_double_spend_across_bets(self, wagers, ledger, members, clock):
        """Test that parallel stakes on different bets never overdraw the wallet."""
        members(CREATOR, PLAYER)
        bets = [new_bet(wagers, clock) for _ in range(WORKERS)]
        ledger.debit(PLAYER, 950, TransactionType.BET_STAKE, "drain")

        results = race(lambda i: wagers.place_bet_stake(
            bets[i].id, PlaceStakeRequest(user_id=PLAYER, side=BetSide.NO, amount=10)
        ))

        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 5
        wallet = ledger.get_wallet(PLAYER)
        assert wallet.aura_balance == 0
        assert wallet.aura_escrowed == 50
        assert ledger.verify_balance(PLAYER)


class TestConcurrentResolution:
    """Tests for racing resolutions."""

    def test_resolution_happens_once(self, wagers, ledger, storage, members, clock):
        """Test that a user resolution racing the expiry sweep settles exactly once."""
        members(CREATOR, PLAYER)
        bet = new_bet(wagers, clock)
        wagers.place_bet_stake(bet.id, PlaceStakeRequest(user_id=PLAYER, side=BetSide.YES, amount=40))
        clock.advance(hours=3)

        def act(i):
            if i % 2:
                return wagers.auto_expire_bets()
            return wagers.resolve_bet(
                bet.id, ResolveBetRequest(resolved_by=Actor.user(CREATOR), outcome=BetOutcome.YES)
            )

        results = race(act)

        user_wins = [r for r in results if not isinstance(r, (Exception, int))]
        sweep_wins = sum(r for r in results if isinstance(r, int))
        assert len(user_wins) + sweep_wins == 1
        assert len(storage.bet_resolutions) == 1

        # Either way the single staker gets exactly the 40 back.
        wallet = ledger.get_wallet(PLAYER)
        assert wallet.aura_balance == 1000
        assert wallet.aura_escrowed == 0
        assert len([t for t in ledger.get_transactions_for_bet(bet.id) if t.user_id == PLAYER]) == 2
        assert ledger.verify_balance(PLAYER)
        assert ledger.verify_balance(CREATOR)


class TestSweepAlongsideWriters:
    """Tests for the expiry sweep and read paths running while other threads insert."""

    def test_sweep_survives_concurrent_inserts(self, wagers, ledger, members, clock):
        """Test that scans never fail while bets, stakes and transactions are being added."""
        writers = [f"user-w{i}" for i in range(3)]
        members(CREATOR, PLAYER, *writers)
        overdue = [new_bet(wagers, clock) for _ in range(3)]
        clock.advance(hours=3)

        errors = []

        def write(creator_id):
            try:
                for _ in range(40):
                    bet = wagers.create_bet(CreateBetRequest(
                        chat_id=CHAT_ID,
                        creator_id=creator_id,
                        bet_type=BetType.SELF,
                        description="Written during a sweep",
                        deadline=clock() + timedelta(hours=2),
                    ))
                    wagers.place_bet_stake(
                        bet.id, PlaceStakeRequest(user_id=PLAYER, side=BetSide.NO, amount=10)
                    )
                    ledger.credit(PLAYER, 10, TransactionType.DAILY_BONUS, "top up")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=write, args=(w,)) for w in writers]
        for thread in threads:
            thread.start()

        expired = 0
        try:
            while any(thread.is_alive() for thread in threads):
                expired += wagers.auto_expire_bets()
                wagers.get_bets_by_chat(CHAT_ID)
                ledger.get_transaction_history(PLAYER)
                ledger.get_leaderboard()
        finally:
            for thread in threads:
                thread.join()

        assert errors == []
        expired += wagers.auto_expire_bets()
        assert expired == len(overdue)
        assert len(wagers.get_bets_by_chat(CHAT_ID, limit=1000)) == len(overdue) + 120
        assert ledger.verify_balance(PLAYER)
