# truco_arena/rules.py
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .cards import Card, Suit
from .state import BetType, TableEntry, Team

WINNING_SCORE = 30

ENVIDO_LADDER: Tuple[BetType, ...] = (
    BetType.ENVIDO,
    BetType.REAL_ENVIDO,
    BetType.FALTA_ENVIDO,
)
TRUCO_LADDER: Tuple[BetType, ...] = (
    BetType.TRUCO,
    BetType.RETRUCO,
    BetType.VALE4,
)


def is_envido_bet(bet: BetType) -> bool:
    return bet in ENVIDO_LADDER


def is_truco_bet(bet: BetType) -> bool:
    return bet in TRUCO_LADDER


def truco_predecessor(bet: BetType) -> Optional[BetType]:
    """The truco level a raise to `bet` must start from (None for plain truco)."""
    idx = TRUCO_LADDER.index(bet)
    return TRUCO_LADDER[idx - 1] if idx > 0 else None


def counting_value(card: Card) -> int:
    """Envido value of a single card: face value, with 10/11/12 counting zero."""
    return 0 if card.rank >= 10 else card.rank


def hand_value(cards: Iterable[Card]) -> int:
    """
    Compute the envido strength of a hand.

    For each suit with two or more cards: 20 + the two highest counting
    values. For a suit with a single card: that card's counting value.
    The result is the best candidate over all suits (0 for an empty hand).
    """
    by_suit: Dict[Suit, List[int]] = {}
    for card in cards:
        by_suit.setdefault(card.suit, []).append(counting_value(card))

    best = 0
    for values in by_suit.values():
        if len(values) >= 2:
            top_two = sorted(values, reverse=True)[:2]
            candidate = 20 + sum(top_two)
        else:
            candidate = values[0]
        best = max(best, candidate)
    return best


def winner_of_trick(
    table: Sequence[TableEntry],
    mano_seat_id: str,
) -> Tuple[TableEntry, bool]:
    """
    Determine the winner of a completed trick.

    Returns (winning_entry, parda). The highest power wins; a tie at the
    highest power ("parda") goes to the entry of the deal's mano, regardless
    of who played first.
    """
    if not table:
        raise ValueError("Cannot determine winner of an empty trick")

    best_power = max(entry.card.power for entry in table)
    leaders = [entry for entry in table if entry.card.power == best_power]
    if len(leaders) == 1:
        return leaders[0], False

    for entry in leaders:
        if entry.seat_id == mano_seat_id:
            return entry, True
    # Mano is not among the tied cards; keep the earliest tied play.
    return leaders[0], True


def bet_value(
    bet: BetType,
    accepted: bool,
    score: Dict[Team, int],
    winning_score: int = WINNING_SCORE,
) -> int:
    """
    Points for a bet, accepted vs rejected:

    - envido 2/1, real-envido 3/1, falta-envido (winning - leader's score)/1
    - truco 2/1, retruco 3/2, vale4 4/3
    """
    if bet is BetType.FALTA_ENVIDO:
        return winning_score - max(score.values()) if accepted else 1

    values = {
        BetType.ENVIDO: (2, 1),
        BetType.REAL_ENVIDO: (3, 1),
        BetType.TRUCO: (2, 1),
        BetType.RETRUCO: (3, 2),
        BetType.VALE4: (4, 3),
    }
    accept_points, reject_points = values[bet]
    return accept_points if accepted else reject_points


def deal_points(truco_state: Optional[BetType]) -> int:
    """Points for winning the tricks of a deal given the highest accepted truco level."""
    if truco_state is None:
        return 1
    return {BetType.TRUCO: 2, BetType.RETRUCO: 3, BetType.VALE4: 4}[truco_state]
