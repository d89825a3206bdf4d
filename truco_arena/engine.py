# truco_arena/engine.py
from __future__ import annotations

import enum
import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from .actions import (
    ACTION_KEY,
    Action,
    PlayCard,
    Raise,
    Respond,
    action_to_dict,
    describe_action,
)
from .cards import Deck, card_to_dict
from .rules import (
    ENVIDO_LADDER,
    WINNING_SCORE,
    bet_value,
    deal_points,
    hand_value,
    is_envido_bet,
    is_truco_bet,
    truco_predecessor,
    winner_of_trick,
)
from .state import (
    AgentBinding,
    BetType,
    Event,
    EventType,
    MatchState,
    PendingBet,
    Phase,
    Reply,
    Seat,
    TableEntry,
    Team,
)

logger = logging.getLogger(__name__)

CARDS_PER_SEAT = 3
TRICKS_PER_DEAL = 3
NUM_SEATS = 2


class EnginePreconditionError(RuntimeError):
    """Raised when the engine is driven in a way no well-behaved caller would attempt."""


class DecisionKind(enum.Enum):
    TURN = "turn"
    RESPONSE = "response"


@dataclass(frozen=True)
class PendingDecision:
    seat_id: str
    kind: DecisionKind


@dataclass(frozen=True)
class ActionResult:
    success: bool
    error: Optional[str] = None
    waiting_for: Optional[str] = None


class TrucoEngine:
    """
    Authoritative rules engine for a two-seat Truco match.

    The engine owns all match state and applies one action at a time. It
    never talks to agents: the orchestrator asks `pending_decision()` who
    must act, builds that seat's view with `get_game_state_for_player()`,
    and feeds the decision back through `process_action()`.
    """

    def __init__(
        self,
        rng_seed: Optional[int] = None,
        *,
        rng: Optional[random.Random] = None,
        winning_score: int = WINNING_SCORE,
        match_label: Optional[str] = None,
    ) -> None:
        self.rng = rng if rng is not None else random.Random(rng_seed)
        self.winning_score = winning_score
        self.match_label = match_label
        self.state = MatchState()

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def reset(self) -> None:
        """Forget seats, scores and history; used before the first deal."""
        self.state = MatchState()

    def add_player(
        self,
        seat_id: str,
        team: Union[Team, str],
        binding: Optional[AgentBinding] = None,
        personality: str = "normal",
    ) -> Seat:
        team = Team(team)
        if self.state.num_seats >= NUM_SEATS:
            raise EnginePreconditionError("Truco matches take exactly two seats")
        if self._find_seat(seat_id) is not None:
            raise EnginePreconditionError(f"Seat {seat_id!r} is already registered")
        if any(s.team is team for s in self.state.seats):
            raise EnginePreconditionError(f"Team {team.value} already has a seat")

        seat = Seat(
            id=seat_id,
            team=team,
            binding=binding,
            personality=personality,
        )
        self.state.seats.append(seat)
        return seat

    def deal_cards(self) -> None:
        """Shuffle a fresh deck and give each seat three cards; mano leads."""
        self._require_seats()
        if self.is_match_over:
            raise EnginePreconditionError("Cannot deal after the match has ended")

        deck = Deck()
        deck.shuffle(self.rng)
        hands, _ = deck.deal(self.state.num_seats, CARDS_PER_SEAT)
        for seat, hand in zip(self.state.seats, hands):
            seat.hand = hand
            seat.played_cards = []

        self.state.current_turn = self.state.mano
        self.state.hand_number += 1
        self._log_event(
            EventType.DEAL,
            {
                "mano": self.state.seats[self.state.mano].id,
                "hand_number": self.state.hand_number,
            },
            public=False,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def is_match_over(self) -> bool:
        return self.state.winner is not None

    @property
    def winner(self) -> Optional[Team]:
        return self.state.winner

    @property
    def hand_number(self) -> int:
        return self.state.hand_number

    @property
    def phase(self) -> Phase:
        state = self.state
        if state.winner is not None:
            return Phase.MATCH_ENDED
        if state.current_bet is not None:
            return Phase.AWAITING_BID_RESPONSE
        if not state.table and not any(s.hand for s in state.seats):
            return Phase.DEAL_ENDED
        if not state.table:
            return Phase.AWAITING_LEAD
        return Phase.AWAITING_FOLLOW

    def current_player(self) -> Seat:
        self._require_seats()
        return self.state.seats[self.state.current_turn]

    def priority_seat_id(self) -> str:
        """The seat whose decision the engine is waiting on."""
        if self.state.current_bet is not None:
            return self.state.current_bet.waiting_for
        return self.current_player().id

    def pending_decision(self) -> Optional[PendingDecision]:
        """Who must decide next, and whether it is a normal turn or a bid response."""
        if self.phase in (Phase.MATCH_ENDED, Phase.DEAL_ENDED):
            return None
        if self.state.current_bet is not None:
            return PendingDecision(
                seat_id=self.state.current_bet.waiting_for,
                kind=DecisionKind.RESPONSE,
            )
        return PendingDecision(seat_id=self.current_player().id, kind=DecisionKind.TURN)

    def seat(self, seat_id: str) -> Seat:
        seat = self._find_seat(seat_id)
        if seat is None:
            raise EnginePreconditionError(f"Unknown seat {seat_id!r}")
        return seat

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate_action(self, seat_id: str, action: Action) -> bool:
        """Return True if `seat_id` may take `action` right now. Never mutates."""
        seat = self._find_seat(seat_id)
        if seat is None or self.state.num_seats != NUM_SEATS:
            return False
        if self.phase in (Phase.MATCH_ENDED, Phase.DEAL_ENDED):
            return False
        if seat_id != self.priority_seat_id():
            return False

        bet = self.state.current_bet
        if isinstance(action, PlayCard):
            return bet is None and any(c.id == action.card_id for c in seat.hand)
        if isinstance(action, Raise):
            return self._can_raise(action.bet)
        if isinstance(action, Respond):
            if bet is None:
                return False
            if isinstance(action.answer, Reply):
                return True
            return self._can_raise(action.answer, pending=bet)
        return False

    def legal_actions(self, seat_id: str) -> List[Action]:
        """Every action `seat_id` could legally take now, built from the same checks as validate_action."""
        seat = self._find_seat(seat_id)
        if seat is None or self.phase in (Phase.MATCH_ENDED, Phase.DEAL_ENDED):
            return []
        if seat_id != self.priority_seat_id():
            return []

        bet = self.state.current_bet
        if bet is not None:
            options: List[Action] = [Respond(Reply.QUIERO), Respond(Reply.NO_QUIERO)]
            options.extend(
                Respond(b) for b in BetType if self._can_raise(b, pending=bet)
            )
            return options

        options = [PlayCard(c.id) for c in seat.hand]
        options.extend(Raise(b) for b in BetType if self._can_raise(b))
        return options

    def _final_trick_under_way(self) -> bool:
        return sum(self.state.round_wins.values()) == 2 and bool(self.state.table)

    def _can_raise(self, bet: BetType, pending: Optional[PendingBet] = None) -> bool:
        """
        Shared legality check for raises and counter-raises.

        With no pending bet this is a top-level raise. With a pending bet the
        raise answers it: truco-family counters must be the next step above
        the pending bet, envido-family counters must outrank it, and the two
        families never answer each other.
        """
        state = self.state
        if self._final_trick_under_way():
            return False

        if pending is None:
            if state.current_bet is not None:
                return False
            if is_envido_bet(bet):
                return (
                    not any(is_envido_bet(b) for b in state.bets_called)
                    and not any(is_truco_bet(b) for b in state.bets_called)
                    and state.envido_state is None
                    and state.truco_state is None
                    and not state.table
                    and all(not s.played_cards for s in state.seats)
                )
            return state.truco_state == truco_predecessor(bet)

        if is_truco_bet(pending.type):
            return is_truco_bet(bet) and truco_predecessor(bet) == pending.type
        return (
            is_envido_bet(bet)
            and ENVIDO_LADDER.index(bet) > ENVIDO_LADDER.index(pending.type)
        )

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def process_action(self, seat_id: str, action: Action) -> ActionResult:
        """Validate and apply one action."""
        self._require_seats()
        if self.state.hand_number == 0:
            raise EnginePreconditionError("deal_cards() must run before process_action()")
        if self.is_match_over:
            raise EnginePreconditionError("The match has ended; no further actions")

        if action.thought:
            self._log_event(
                EventType.PRIVATE_THOUGHT,
                {
                    "player": seat_id,
                    "thought": action.thought,
                    "action": action_to_dict(action)[ACTION_KEY],
                },
                public=False,
            )

        if not self.validate_action(seat_id, action):
            logger.debug(
                "Rejected %s from %s in phase %s",
                describe_action(action),
                seat_id,
                self.phase.value,
            )
            return ActionResult(success=False, error="Invalid action")

        seat = self.seat(seat_id)
        if isinstance(action, PlayCard):
            return self._play_card(seat, action)
        if isinstance(action, Raise):
            return self._raise(seat, action.bet, action)
        return self._respond(seat, action)

    def _play_card(self, seat: Seat, action: PlayCard) -> ActionResult:
        idx = next(i for i, c in enumerate(seat.hand) if c.id == action.card_id)
        card = seat.hand.pop(idx)
        seat.played_cards.append(card)
        self.state.table.append(TableEntry(seat_id=seat.id, card=card, team=seat.team))

        self._log_event(
            EventType.CARD_PLAYED,
            {
                "player": seat.id,
                "card": card.id,
                "reason": action.reason,
                "frase": action.phrase,
            },
        )

        if len(self.state.table) == self.state.num_seats:
            self._resolve_trick()
        else:
            self.state.current_turn = (self.state.current_turn + 1) % self.state.num_seats
        return ActionResult(success=True)

    def _resolve_trick(self) -> None:
        state = self.state
        mano_id = state.seats[state.mano].id
        entry, parda = winner_of_trick(state.table, mano_id)

        state.round_wins[entry.team] += 1
        state.tricks_played += 1
        self._log_event(
            EventType.ROUND_WON,
            {
                "team": entry.team.value,
                "player": entry.seat_id,
                "card": entry.card.id,
                "parda": parda,
                "trick": state.tricks_played,
            },
        )
        state.table = []

        if max(state.round_wins.values()) >= 2 or state.tricks_played >= TRICKS_PER_DEAL:
            self._end_deal()
        else:
            # Winner leads the next trick.
            state.current_turn = self._seat_index(entry.seat_id)

    def _raise(self, seat: Seat, bet: BetType, action: Action) -> ActionResult:
        opponent = self._seat_for_team(seat.team.opponent)
        self.state.current_bet = PendingBet(
            type=bet,
            proposer=seat.id,
            waiting_for=opponent.id,
        )
        self.state.bets_called.append(bet)

        self._log_event(
            EventType.CANTO,
            {
                "player": seat.id,
                "canto": bet.value,
                "reason": action.reason,
                "frase": action.phrase,
            },
        )
        return ActionResult(success=True, waiting_for=opponent.id)

    def _respond(self, seat: Seat, action: Respond) -> ActionResult:
        state = self.state
        bet = state.current_bet
        assert bet is not None

        self._log_event(
            EventType.RESPONSE,
            {
                "player": seat.id,
                "response": action.answer.value,
                "to": bet.type.value,
                "reason": action.reason,
                "frase": action.phrase,
            },
        )

        if action.answer is Reply.QUIERO:
            state.current_bet = None
            if is_envido_bet(bet.type):
                self._resolve_envido(bet.type)
            else:
                state.truco_state = bet.type
            return ActionResult(success=True)

        if action.answer is Reply.NO_QUIERO:
            state.current_bet = None
            points = bet_value(bet.type, False, state.score, self.winning_score)
            proposer_team = self.seat(bet.proposer).team
            state.score[proposer_team] += points

            if is_truco_bet(bet.type):
                # Rejected truco ends the deal; no further tricks are scored.
                self._log_event(
                    EventType.HAND_END,
                    {
                        "winner": proposer_team.value,
                        "points": points,
                        "reason": "rejected",
                        "rejected": bet.type.value,
                        "final_score": self._score_dict(),
                    },
                )
                logger.info(
                    "Hand %d%s: %s rejected, %s +%d",
                    state.hand_number,
                    self._label_suffix(),
                    bet.type.value,
                    proposer_team.value,
                    points,
                )
                if not self._check_match_end(proposer_team):
                    self._next_deal()
            else:
                self._check_match_end(proposer_team)
            return ActionResult(success=True)

        # Counter-raise. Raising a truco-family bet accepts the pending level.
        if is_truco_bet(bet.type):
            state.truco_state = bet.type
        state.current_bet = None
        return self._raise(seat, action.answer, action)

    def _resolve_envido(self, bet_type: BetType) -> None:
        state = self.state
        values = {
            team: max(hand_value(s.hand) for s in state.seats if s.team is team)
            for team in Team
        }
        tie = values[Team.TEAM1] == values[Team.TEAM2]
        if tie:
            winner = state.seats[state.mano].team
        else:
            winner = max(values, key=values.__getitem__)

        points = bet_value(bet_type, True, state.score, self.winning_score)
        state.score[winner] += points
        state.envido_state = bet_type

        self._log_event(
            EventType.ENVIDO_RESOLVED,
            {
                "winner": winner.value,
                Team.TEAM1.value: values[Team.TEAM1],
                Team.TEAM2.value: values[Team.TEAM2],
                "tie": tie,
                "points": points,
            },
        )
        self._check_match_end(winner)

    def _end_deal(self) -> None:
        state = self.state
        wins = state.round_wins
        if wins[Team.TEAM1] != wins[Team.TEAM2]:
            winner = max(wins, key=wins.__getitem__)
        else:
            winner = state.seats[state.mano].team

        points = deal_points(state.truco_state)
        state.score[winner] += points

        self._log_event(
            EventType.HAND_END,
            {
                "winner": winner.value,
                "points": points,
                "reason": "tricks",
                "round_wins": {t.value: n for t, n in wins.items()},
                "final_score": self._score_dict(),
            },
        )
        logger.info(
            "Hand %d%s won by %s (+%d); score %s",
            state.hand_number,
            self._label_suffix(),
            winner.value,
            points,
            self._score_dict(),
        )

        if not self._check_match_end(winner):
            self._next_deal()

    def _next_deal(self) -> None:
        self.state.mano = (self.state.mano + 1) % self.state.num_seats
        self.state.reset_deal()
        self.deal_cards()

    def _check_match_end(self, team: Team) -> bool:
        if self.state.score[team] < self.winning_score:
            return False
        self.state.winner = team
        self._log_event(
            EventType.GAME_END,
            {"winner": team.value, "final_score": self._score_dict()},
        )
        logger.info(
            "Match%s won by %s; final score %s",
            self._label_suffix(),
            team.value,
            self._score_dict(),
        )
        return True

    # -------------------------------------------------------------------------
    # Projections
    # -------------------------------------------------------------------------

    def get_game_state_for_player(self, seat_id: str) -> Dict[str, Any]:
        """Everything `seat_id` is allowed to see. Never includes the opponent's hand."""
        seat = self.seat(seat_id)
        state = self.state
        opponent = next((s for s in state.seats if s.id != seat_id), None)
        return {
            "seat_id": seat.id,
            "my_team": seat.team.value,
            "my_cards": [card_to_dict(c) for c in seat.hand],
            "my_hand_value": hand_value(seat.hand),
            "opponent_cards_count": len(opponent.hand) if opponent else 0,
            "table": [e.to_dict() for e in state.table],
            "score": self._score_dict(),
            "truco_state": state.truco_state.value if state.truco_state else None,
            "envido_state": state.envido_state.value if state.envido_state else None,
            "current_bet": state.current_bet.to_dict() if state.current_bet else None,
            "round_wins": {t.value: n for t, n in state.round_wins.items()},
            "tricks_played": state.tricks_played,
            "mano": state.seats[state.mano].id if state.seats else None,
            "hand_number": state.hand_number,
            "phase": self.phase.value,
            "history": [e.to_dict() for e in state.history if e.public],
            "is_my_turn": (
                not self.is_match_over
                and self.state.num_seats == NUM_SEATS
                and self.priority_seat_id() == seat_id
            ),
        }

    def get_public_state(self, include_private: bool = False) -> Dict[str, Any]:
        """
        Projection for observers and the transport layer.

        Card counts and played cards are always present; hands, hand values
        and private thoughts only with `include_private`.
        """
        state = self.state
        players = []
        for s in state.seats:
            players.append(
                {
                    "id": s.id,
                    "team": s.team.value,
                    "binding": s.binding.label if s.binding else None,
                    "personality": s.personality,
                    "cards_count": len(s.hand),
                    "played_cards": [card_to_dict(c) for c in s.played_cards],
                    "cards": [card_to_dict(c) for c in s.hand] if include_private else [],
                    "hand_value": hand_value(s.hand) if include_private else None,
                }
            )

        if include_private:
            history = [e.to_dict() for e in state.history]
            thoughts = [
                e.to_dict()
                for e in state.history
                if e.type is EventType.PRIVATE_THOUGHT
            ]
        else:
            history = [e.to_dict() for e in state.history if e.public]
            thoughts = []

        return {
            "match": self.match_label,
            "players": players,
            "table": [e.to_dict() for e in state.table],
            "score": self._score_dict(),
            "truco_state": state.truco_state.value if state.truco_state else None,
            "envido_state": state.envido_state.value if state.envido_state else None,
            "current_bet": state.current_bet.to_dict() if state.current_bet else None,
            "round_wins": {t.value: n for t, n in state.round_wins.items()},
            "current_turn": state.current_turn,
            "mano": state.mano,
            "hand_number": state.hand_number,
            "phase": self.phase.value,
            "winner": state.winner.value if state.winner else None,
            "history": history,
            "private_thoughts": thoughts,
        }

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_seats(self) -> None:
        if self.state.num_seats != NUM_SEATS:
            raise EnginePreconditionError(
                f"Exactly {NUM_SEATS} seats must be registered; have {self.state.num_seats}"
            )

    def _find_seat(self, seat_id: str) -> Optional[Seat]:
        return next((s for s in self.state.seats if s.id == seat_id), None)

    def _seat_index(self, seat_id: str) -> int:
        return next(i for i, s in enumerate(self.state.seats) if s.id == seat_id)

    def _seat_for_team(self, team: Team) -> Seat:
        return next(s for s in self.state.seats if s.team is team)

    def _score_dict(self) -> Dict[str, int]:
        return {t.value: n for t, n in self.state.score.items()}

    def _label_suffix(self) -> str:
        return f" for {self.match_label}" if self.match_label else ""

    def _log_event(self, event_type: EventType, data: Dict[str, Any], public: bool = True) -> None:
        self.state.history.append(Event(type=event_type, data=data, public=public))
        logger.debug("%s %s", event_type.value, data)
