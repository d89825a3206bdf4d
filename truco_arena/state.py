# truco_arena/state.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import enum
import time

from .cards import Card, card_to_dict


class Team(enum.Enum):
    TEAM1 = "team1"
    TEAM2 = "team2"

    @property
    def opponent(self) -> "Team":
        return Team.TEAM2 if self is Team.TEAM1 else Team.TEAM1


class BetType(enum.Enum):
    ENVIDO = "envido"
    REAL_ENVIDO = "real-envido"
    FALTA_ENVIDO = "falta-envido"
    TRUCO = "truco"
    RETRUCO = "retruco"
    VALE4 = "vale4"


class Reply(enum.Enum):
    QUIERO = "quiero"
    NO_QUIERO = "no-quiero"


class Phase(enum.Enum):
    AWAITING_LEAD = "awaiting_lead"
    AWAITING_FOLLOW = "awaiting_follow"
    AWAITING_BID_RESPONSE = "awaiting_bid_response"
    DEAL_ENDED = "deal_ended"
    MATCH_ENDED = "match_ended"


class EventType(enum.Enum):
    DEAL = "DEAL"
    PRIVATE_THOUGHT = "PRIVATE_THOUGHT"
    CARD_PLAYED = "CARD_PLAYED"
    ROUND_WON = "ROUND_WON"
    CANTO = "CANTO"
    RESPONSE = "RESPONSE"
    ENVIDO_RESOLVED = "ENVIDO_RESOLVED"
    HAND_END = "HAND_END"
    GAME_END = "GAME_END"


@dataclass(frozen=True)
class AgentBinding:
    """Which decision backend drives a seat, e.g. provider='openai', model='gpt-4o'."""
    provider: str
    model: str = ""

    @property
    def label(self) -> str:
        return f"{self.provider}:{self.model}" if self.model else self.provider


@dataclass
class Seat:
    id: str
    team: Team
    binding: Optional[AgentBinding] = None
    personality: str = "normal"
    hand: List[Card] = field(default_factory=list)
    played_cards: List[Card] = field(default_factory=list)


@dataclass(frozen=True)
class TableEntry:
    seat_id: str
    card: Card
    team: Team

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seat_id": self.seat_id,
            "card": card_to_dict(self.card),
            "team": self.team.value,
        }


@dataclass(frozen=True)
class PendingBet:
    type: BetType
    proposer: str
    waiting_for: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "proposer": self.proposer,
            "waiting_for": self.waiting_for,
        }


@dataclass(frozen=True)
class Event:
    type: EventType
    data: Dict[str, Any]
    public: bool
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "data": dict(self.data),
            "public": self.public,
            "timestamp": self.timestamp,
        }


def _team_counter() -> Dict[Team, int]:
    return {Team.TEAM1: 0, Team.TEAM2: 0}


@dataclass
class MatchState:
    seats: List[Seat] = field(default_factory=list)
    current_turn: int = 0
    mano: int = 0
    hand_number: int = 0
    score: Dict[Team, int] = field(default_factory=_team_counter)
    table: List[TableEntry] = field(default_factory=list)
    truco_state: Optional[BetType] = None
    envido_state: Optional[BetType] = None
    current_bet: Optional[PendingBet] = None
    round_wins: Dict[Team, int] = field(default_factory=_team_counter)
    tricks_played: int = 0
    # Every bet type raised this deal, accepted or not.
    bets_called: List[BetType] = field(default_factory=list)
    history: List[Event] = field(default_factory=list)
    winner: Optional[Team] = None

    @property
    def num_seats(self) -> int:
        return len(self.seats)

    def reset_deal(self) -> None:
        """Clear everything scoped to a single deal."""
        self.table = []
        self.truco_state = None
        self.envido_state = None
        self.current_bet = None
        self.round_wins = _team_counter()
        self.tricks_played = 0
        self.bets_called = []
