import math

BASE_VIBE_SCORE = 100
COMPLETED_WEIGHT = 10
FAILED_WEIGHT = 20
IGNORED_WEIGHT = 10


def calculate_vibe_score(bets_completed: int, bets_failed: int, callouts_ignored: int) -> int:
    """Reputation derived from wager history, floored at zero."""
    score = (
        BASE_VIBE_SCORE
        + bets_completed * COMPLETED_WEIGHT
        - bets_failed * FAILED_WEIGHT
        - callouts_ignored * IGNORED_WEIGHT
    )
    return max(0, score)


def _percent(numerator: int, denominator: int) -> int:
    if denominator == 0:
        return 0
    # half-up, not banker's rounding
    return math.floor(numerator * 100 / denominator + 0.5)


def calculate_win_rate(bets_completed: int, bets_created: int) -> int:
    return _percent(bets_completed, bets_created)


def calculate_duck_rate(callouts_ignored: int, callouts_received: int) -> int:
    return _percent(callouts_ignored, callouts_received)
