# truco_arena/cards.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import enum
import random


class Suit(enum.Enum):
    ESPADAS = "espadas"
    BASTOS = "bastos"
    OROS = "oros"
    COPAS = "copas"


RANKS: Tuple[int, ...] = (1, 2, 3, 4, 5, 6, 7, 10, 11, 12)

# Trick power, highest first. Cards sharing a level tie ("parda").
_POWER_LEVELS: List[Tuple[int, List[Tuple[int, Optional[Suit]]]]] = [
    (14, [(1, Suit.ESPADAS)]),
    (13, [(1, Suit.BASTOS)]),
    (12, [(7, Suit.ESPADAS)]),
    (11, [(7, Suit.OROS)]),
    (10, [(3, None)]),
    (9, [(2, None)]),
    (8, [(1, Suit.OROS), (1, Suit.COPAS)]),
    (7, [(12, None)]),
    (6, [(11, None)]),
    (5, [(10, None)]),
    (4, [(7, Suit.COPAS), (7, Suit.BASTOS)]),
    (3, [(6, None)]),
    (2, [(5, None)]),
    (1, [(4, None)]),
]


def _build_power_table() -> Dict[Tuple[int, Suit], int]:
    table: Dict[Tuple[int, Suit], int] = {}
    for power, entries in _POWER_LEVELS:
        for rank, suit in entries:
            suits = list(Suit) if suit is None else [suit]
            for s in suits:
                table[(rank, s)] = power
    if len(table) != 40:
        raise RuntimeError("Power table must cover all 40 cards")
    return table


CARD_POWER: Dict[Tuple[int, Suit], int] = _build_power_table()


@dataclass(frozen=True)
class Card:
    """
    A Spanish-deck card as used in Truco.

    Ranks are 1–7 and 10–12 (no 8s or 9s). `id` is "rank-suit", e.g.
    "1-espadas"; `power` is the fixed trick ranking (14 = highest).
    """
    rank: int
    suit: Suit

    def __post_init__(self) -> None:
        if self.rank not in RANKS:
            raise ValueError(f"Invalid Truco rank: {self.rank}")
        if not isinstance(self.suit, Suit):
            raise ValueError(f"Invalid suit: {self.suit!r}")

    @property
    def id(self) -> str:
        return f"{self.rank}-{self.suit.value}"

    @property
    def power(self) -> int:
        return CARD_POWER[(self.rank, self.suit)]

    @classmethod
    def from_id(cls, card_id: str) -> "Card":
        """Parse an id such as '7-oros'."""
        try:
            rank_text, suit_text = card_id.strip().lower().split("-", 1)
            return cls(rank=int(rank_text), suit=Suit(suit_text))
        except (AttributeError, ValueError) as exc:
            raise ValueError(f"Unknown card id: {card_id!r}") from exc

    def __str__(self) -> str:
        return self.id


def card_to_dict(card: Card) -> Dict[str, Any]:
    """Convert a Card to a JSON-serializable dict."""
    return {
        "id": card.id,
        "rank": card.rank,
        "suit": card.suit.value,
        "power": card.power,
    }


class Deck:
    """
    The 40-card Spanish deck: 4 suits × ranks 1–7, 10–12.
    """

    def __init__(self) -> None:
        self.cards: List[Card] = [
            Card(rank, suit) for suit in Suit for rank in RANKS
        ]

        if len(self.cards) != 40:
            raise RuntimeError("Deck must contain exactly 40 cards")

    def shuffle(self, rng: Optional[random.Random] = None) -> None:
        """Shuffle the deck in place. Uses provided RNG if given."""
        if rng is None:
            random.shuffle(self.cards)
        else:
            rng.shuffle(self.cards)

    def deal(
        self,
        num_players: int,
        cards_per_player: int = 3,
    ) -> Tuple[List[List[Card]], List[Card]]:
        """
        Deal cards round-robin from the top of the deck.

        Returns (hands, remaining_cards); the remainder is not used in Truco.
        """
        total_needed = num_players * cards_per_player
        if total_needed > len(self.cards):
            raise ValueError("Not enough cards in deck to deal")

        hands: List[List[Card]] = [[] for _ in range(num_players)]
        idx = 0
        for _ in range(cards_per_player):
            for p in range(num_players):
                hands[p].append(self.cards[idx])
                idx += 1

        remaining = self.cards[idx:]
        return hands, remaining
