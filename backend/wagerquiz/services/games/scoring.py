from typing import Dict, Iterable, List, Optional

from wagerquiz.models import Number, Player, Question, RoundResult

# Answers at most this far below the correct one (relative) get the stake back.
NEAR_MISS_RATIO = 0.25


def closest_below(answers: Iterable[Optional[Number]], correct_answer: Number) -> Optional[Number]:
    """Largest answer strictly under the correct one, or None.

    Overshooting never counts as close; an exact hit is paid on its own tier.
    """
    below = [a for a in answers if a is not None and a < correct_answer]
    return max(below) if below else None


def wager_payout(value: Number, correct_answer: Number, closest: Optional[Number], stake: int) -> int:
    """Token delta for one wager of ``stake`` on an answer of ``value``."""
    if value == correct_answer:
        return 2 * stake
    if closest is not None and value == closest:
        return stake * 3 // 2
    # A zero correct answer has no relative distance; such wagers fall through to a loss.
    if correct_answer != 0:
        distance = (correct_answer - value) / correct_answer
        if 0 < distance <= NEAR_MISS_RATIO:
            return stake
    return -stake


def calculate_tokens(players: List[Player], question: Question, round_index: int,
                     default_tokens: int, minimum_tokens: int) -> RoundResult:
    """Settle every player's wagers for the round and apply the deltas in place.

    Wagers on players no longer in the room are dropped without payout.
    Balances are floored at ``minimum_tokens`` after all deltas are applied.
    """
    correct = question.correct_answer
    by_id = {p.id: p for p in players}
    closest = closest_below((p.answer for p in players), correct)

    deltas: Dict[str, int] = {}
    for staker in players:
        staker.ensure_tokens(default_tokens)
        delta = 0
        for wager in staker.wagers:
            target = by_id.get(wager.target_id)
            if target is None or target.answer is None:
                continue
            delta += wager_payout(target.answer, correct, closest, wager.stake)
        staker.tokens = max(minimum_tokens, staker.tokens + delta)
        deltas[staker.id] = delta

    return RoundResult(
        round_index=round_index,
        correct_answer=correct,
        closest_below=closest,
        unit=question.unit,
        deltas=deltas,
    )


def rankings(players: Iterable[Player], default_tokens: int) -> List[dict]:
    """Players by token balance, richest first; ties keep join order."""
    rows = [
        {
            'id': p.id,
            'username': p.username,
            'tokens': p.tokens if p.tokens >= 0 else default_tokens,
        }
        for p in players
    ]
    return sorted(rows, key=lambda row: row['tokens'], reverse=True)
