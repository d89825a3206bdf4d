# tests/test_engine.py
import json
import random

import pytest

from truco_arena.actions import PlayCard, Raise, Respond, normalize_action
from truco_arena.agents.base import SeatContext, DecisionOptions
from truco_arena.agents.random_agent import RandomTrucoAgent
from truco_arena.cards import Card
from truco_arena.engine import (
    DecisionKind,
    EnginePreconditionError,
    TrucoEngine,
)
from truco_arena.state import BetType, EventType, Phase, Reply, Team


def _cards(*ids):
    return [Card.from_id(i) for i in ids]


def _engine(hand_a, hand_b, seed=1):
    engine = TrucoEngine(rng_seed=seed)
    engine.add_player("A", Team.TEAM1)
    engine.add_player("B", Team.TEAM2)
    engine.deal_cards()
    engine.seat("A").hand = _cards(*hand_a)
    engine.seat("B").hand = _cards(*hand_b)
    return engine


def _ok(engine, seat_id, action):
    result = engine.process_action(seat_id, action)
    assert result.success, result.error
    return result


def _events(engine, event_type):
    return [e for e in engine.state.history if e.type is event_type]


# --------------------------------------------------------------------------- #
# Setup and preconditions                                                     #
# --------------------------------------------------------------------------- #


def test_deal_gives_three_cards_and_mano_leads():
    engine = TrucoEngine(rng_seed=3)
    engine.add_player("A", Team.TEAM1)
    engine.add_player("B", Team.TEAM2)
    assert engine.phase is Phase.DEAL_ENDED
    assert engine.pending_decision() is None

    engine.deal_cards()
    a, b = engine.seat("A"), engine.seat("B")
    assert len(a.hand) == 3 and len(b.hand) == 3
    assert not set(a.hand) & set(b.hand)
    assert engine.hand_number == 1
    assert engine.phase is Phase.AWAITING_LEAD
    assert engine.pending_decision().seat_id == "A"
    assert engine.pending_decision().kind is DecisionKind.TURN


def test_seat_registration_limits():
    engine = TrucoEngine()
    engine.add_player("A", "team1")
    with pytest.raises(EnginePreconditionError):
        engine.add_player("A", Team.TEAM2)
    with pytest.raises(EnginePreconditionError):
        engine.add_player("C", Team.TEAM1)
    engine.add_player("B", Team.TEAM2)
    with pytest.raises(EnginePreconditionError):
        engine.add_player("C", Team.TEAM2)
    with pytest.raises(EnginePreconditionError):
        engine.seat("Z")


def test_process_action_preconditions():
    engine = TrucoEngine()
    engine.add_player("A", Team.TEAM1)
    with pytest.raises(EnginePreconditionError):
        engine.process_action("A", PlayCard("1-espadas"))
    with pytest.raises(EnginePreconditionError):
        engine.deal_cards()

    engine.add_player("B", Team.TEAM2)
    with pytest.raises(EnginePreconditionError):
        engine.process_action("A", PlayCard("1-espadas"))


def test_invalid_actions_are_results_and_do_not_mutate():
    engine = _engine(["4-copas", "3-espadas", "5-oros"], ["1-espadas", "3-copas", "6-oros"])
    before = engine.get_public_state(include_private=True)

    for seat_id, action in [
        ("B", PlayCard("1-espadas")),  # not B's turn
        ("A", PlayCard("1-espadas")),  # not in A's hand
        ("A", Respond(Reply.QUIERO)),  # nothing to answer
        ("A", Raise(BetType.RETRUCO)),  # truco not accepted yet
        ("Z", PlayCard("4-copas")),  # unknown seat
    ]:
        result = engine.process_action(seat_id, action)
        assert not result.success
        assert result.error == "Invalid action"

    assert engine.get_public_state(include_private=True) == before


# --------------------------------------------------------------------------- #
# Tricks                                                                      #
# --------------------------------------------------------------------------- #


def test_full_deal_with_parda_scores_and_rotates_mano():
    engine = _engine(["4-copas", "3-espadas", "5-oros"], ["1-espadas", "3-copas", "6-oros"])

    _ok(engine, "A", PlayCard("4-copas"))
    assert engine.phase is Phase.AWAITING_FOLLOW
    assert engine.current_player().id == "B"
    _ok(engine, "B", PlayCard("1-espadas"))
    assert engine.state.round_wins[Team.TEAM2] == 1
    # Trick winner leads.
    assert engine.current_player().id == "B"

    _ok(engine, "B", PlayCard("3-copas"))
    _ok(engine, "A", PlayCard("3-espadas"))
    rounds = _events(engine, EventType.ROUND_WON)
    assert rounds[-1].data["parda"] is True
    assert rounds[-1].data["player"] == "A"
    assert engine.state.round_wins == {Team.TEAM1: 1, Team.TEAM2: 1}
    assert engine.current_player().id == "A"

    _ok(engine, "A", PlayCard("5-oros"))
    _ok(engine, "B", PlayCard("6-oros"))

    hand_end = _events(engine, EventType.HAND_END)[-1]
    assert hand_end.data["winner"] == "team2"
    assert hand_end.data["points"] == 1
    assert hand_end.data["reason"] == "tricks"
    assert engine.state.score == {Team.TEAM1: 0, Team.TEAM2: 1}

    # Next deal started automatically with the other seat as mano.
    assert engine.hand_number == 2
    assert engine.state.mano == 1
    assert engine.current_player().id == "B"
    assert engine.state.round_wins == {Team.TEAM1: 0, Team.TEAM2: 0}
    assert engine.state.tricks_played == 0
    assert len(engine.seat("A").hand) == 3
    assert len(engine.seat("B").hand) == 3


def test_deal_ends_after_two_trick_wins():
    engine = _engine(["1-espadas", "1-bastos", "4-oros"], ["4-copas", "5-copas", "6-copas"])
    _ok(engine, "A", PlayCard("1-espadas"))
    _ok(engine, "B", PlayCard("4-copas"))
    _ok(engine, "A", PlayCard("1-bastos"))
    _ok(engine, "B", PlayCard("5-copas"))

    assert engine.state.score[Team.TEAM1] == 1
    assert engine.hand_number == 2


# --------------------------------------------------------------------------- #
# Envido                                                                      #
# --------------------------------------------------------------------------- #


def test_envido_accepted_higher_hand_wins():
    engine = _engine(["7-oros", "6-oros", "4-copas"], ["5-espadas", "4-espadas", "1-bastos"])

    result = _ok(engine, "A", Raise(BetType.ENVIDO))
    assert result.waiting_for == "B"
    assert engine.phase is Phase.AWAITING_BID_RESPONSE
    pending = engine.pending_decision()
    assert pending.seat_id == "B" and pending.kind is DecisionKind.RESPONSE

    _ok(engine, "B", Respond(Reply.QUIERO))
    resolved = _events(engine, EventType.ENVIDO_RESOLVED)[-1]
    assert resolved.data["team1"] == 33
    assert resolved.data["team2"] == 29
    assert resolved.data["winner"] == "team1"
    assert engine.state.score == {Team.TEAM1: 2, Team.TEAM2: 0}
    assert engine.state.envido_state is BetType.ENVIDO
    assert engine.state.current_bet is None

    # Play resumes with the same seat; envido cannot be called twice.
    assert engine.current_player().id == "A"
    assert not engine.validate_action("A", Raise(BetType.REAL_ENVIDO))
    assert engine.validate_action("A", Raise(BetType.TRUCO))


def test_envido_tie_goes_to_mano():
    engine = _engine(["7-oros", "6-oros", "4-copas"], ["7-copas", "6-copas", "1-bastos"])
    _ok(engine, "A", Raise(BetType.ENVIDO))
    _ok(engine, "B", Respond(Reply.QUIERO))

    resolved = _events(engine, EventType.ENVIDO_RESOLVED)[-1]
    assert resolved.data["tie"] is True
    assert resolved.data["winner"] == "team1"
    assert engine.state.score[Team.TEAM1] == 2


def test_envido_rejected_gives_caller_one_and_deal_continues():
    engine = _engine(["7-oros", "6-oros", "4-copas"], ["5-espadas", "4-espadas", "1-bastos"])
    _ok(engine, "A", Raise(BetType.REAL_ENVIDO))
    _ok(engine, "B", Respond(Reply.NO_QUIERO))

    assert engine.state.score == {Team.TEAM1: 1, Team.TEAM2: 0}
    assert engine.hand_number == 1
    assert engine.current_player().id == "A"
    assert not engine.validate_action("A", Raise(BetType.ENVIDO))
    _ok(engine, "A", PlayCard("7-oros"))


def test_envido_counter_raise_must_outrank():
    engine = _engine(["7-oros", "6-oros", "4-copas"], ["5-espadas", "4-espadas", "1-bastos"])
    _ok(engine, "A", Raise(BetType.ENVIDO))
    _ok(engine, "B", Respond(BetType.REAL_ENVIDO))

    bet = engine.state.current_bet
    assert bet.type is BetType.REAL_ENVIDO
    assert bet.proposer == "B" and bet.waiting_for == "A"

    assert not engine.validate_action("A", Respond(BetType.ENVIDO))
    assert not engine.validate_action("A", Respond(BetType.TRUCO))
    assert engine.validate_action("A", Respond(BetType.FALTA_ENVIDO))

    _ok(engine, "A", Respond(Reply.QUIERO))
    assert engine.state.score[Team.TEAM1] == 3
    assert engine.state.envido_state is BetType.REAL_ENVIDO
    assert engine.current_player().id == "A"
    assert not engine.validate_action("A", Raise(BetType.ENVIDO))
    assert engine.validate_action("A", Raise(BetType.TRUCO))


def test_envido_only_before_cards_and_truco():
    engine = _engine(["7-oros", "6-oros", "4-copas"], ["5-espadas", "4-espadas", "1-bastos"])
    _ok(engine, "A", PlayCard("4-copas"))
    assert not engine.validate_action("B", Raise(BetType.ENVIDO))

    engine = _engine(["7-oros", "6-oros", "4-copas"], ["5-espadas", "4-espadas", "1-bastos"])
    _ok(engine, "A", Raise(BetType.TRUCO))
    _ok(engine, "B", Respond(Reply.QUIERO))
    assert not engine.validate_action("A", Raise(BetType.ENVIDO))


def test_falta_envido_can_end_the_match():
    engine = _engine(["7-oros", "6-oros", "4-copas"], ["5-espadas", "4-espadas", "1-bastos"])
    engine.state.score = {Team.TEAM1: 28, Team.TEAM2: 10}

    _ok(engine, "A", Raise(BetType.FALTA_ENVIDO))
    _ok(engine, "B", Respond(Reply.QUIERO))

    assert engine.state.score == {Team.TEAM1: 30, Team.TEAM2: 10}
    assert engine.is_match_over
    assert engine.winner is Team.TEAM1
    assert engine.phase is Phase.MATCH_ENDED
    assert engine.pending_decision() is None
    assert _events(engine, EventType.GAME_END)[-1].data["winner"] == "team1"
    with pytest.raises(EnginePreconditionError):
        engine.process_action("A", PlayCard("7-oros"))


# --------------------------------------------------------------------------- #
# Truco                                                                       #
# --------------------------------------------------------------------------- #


def test_truco_rejected_ends_the_deal():
    engine = _engine(["4-copas", "3-espadas", "5-oros"], ["1-espadas", "3-copas", "6-oros"])
    _ok(engine, "A", Raise(BetType.TRUCO))
    _ok(engine, "B", Respond(Reply.NO_QUIERO))

    hand_end = _events(engine, EventType.HAND_END)[-1]
    assert hand_end.data["reason"] == "rejected"
    assert hand_end.data["winner"] == "team1"
    assert engine.state.score == {Team.TEAM1: 1, Team.TEAM2: 0}
    assert engine.hand_number == 2
    assert engine.state.mano == 1
    assert engine.state.truco_state is None


def test_retruco_counter_then_rejection():
    engine = _engine(["4-copas", "3-espadas", "5-oros"], ["1-espadas", "3-copas", "6-oros"])
    _ok(engine, "A", Raise(BetType.TRUCO))

    assert not engine.validate_action("B", Respond(BetType.VALE4))
    _ok(engine, "B", Respond(BetType.RETRUCO))
    assert engine.state.truco_state is BetType.TRUCO
    assert engine.state.current_bet.waiting_for == "A"

    _ok(engine, "A", Respond(Reply.NO_QUIERO))
    assert engine.state.score == {Team.TEAM1: 0, Team.TEAM2: 2}
    assert engine.hand_number == 2


def test_accepted_retruco_is_worth_three():
    engine = _engine(["4-copas", "4-oros", "5-oros"], ["1-espadas", "1-bastos", "7-espadas"])
    _ok(engine, "A", Raise(BetType.TRUCO))
    _ok(engine, "B", Respond(BetType.RETRUCO))
    _ok(engine, "A", Respond(Reply.QUIERO))
    assert engine.state.truco_state is BetType.RETRUCO
    assert engine.current_player().id == "A"

    _ok(engine, "A", PlayCard("4-copas"))
    _ok(engine, "B", PlayCard("1-espadas"))
    _ok(engine, "B", PlayCard("1-bastos"))
    _ok(engine, "A", PlayCard("4-oros"))

    assert engine.state.score == {Team.TEAM1: 0, Team.TEAM2: 3}


def test_pending_bet_blocks_card_play():
    engine = _engine(["4-copas", "3-espadas", "5-oros"], ["1-espadas", "3-copas", "6-oros"])
    _ok(engine, "A", Raise(BetType.TRUCO))

    assert engine.priority_seat_id() == "B"
    assert not engine.validate_action("A", PlayCard("4-copas"))
    assert not engine.validate_action("B", PlayCard("1-espadas"))
    assert not engine.validate_action("A", Respond(Reply.QUIERO))
    assert not engine.validate_action("B", Raise(BetType.RETRUCO))

    legal = engine.legal_actions("B")
    assert Respond(Reply.QUIERO) in legal
    assert Respond(Reply.NO_QUIERO) in legal
    assert Respond(BetType.RETRUCO) in legal
    assert not any(isinstance(a, PlayCard) for a in legal)
    assert engine.legal_actions("A") == []


def test_no_raises_once_the_final_trick_is_under_way():
    engine = _engine(["1-espadas", "4-copas", "7-oros"], ["3-copas", "1-bastos", "5-oros"])
    _ok(engine, "A", PlayCard("1-espadas"))
    _ok(engine, "B", PlayCard("3-copas"))
    _ok(engine, "A", PlayCard("4-copas"))
    _ok(engine, "B", PlayCard("1-bastos"))

    # Third trick not started: the leader may still call truco.
    assert engine.current_player().id == "B"
    assert engine.validate_action("B", Raise(BetType.TRUCO))
    _ok(engine, "B", PlayCard("5-oros"))

    assert not engine.validate_action("A", Raise(BetType.TRUCO))
    assert engine.legal_actions("A") == [PlayCard("7-oros")]
    assert not engine.process_action("A", Raise(BetType.TRUCO)).success


# --------------------------------------------------------------------------- #
# Projections                                                                 #
# --------------------------------------------------------------------------- #


def test_seat_view_hides_opponent_hand_and_thoughts():
    engine = _engine(["7-oros", "6-oros", "4-copas"], ["5-espadas", "4-espadas", "1-bastos"])
    _ok(engine, "A", PlayCard("4-copas", thought="saving the oros for envido"))

    view_b = engine.get_game_state_for_player("B")
    text = json.dumps(view_b)
    for card_id in ("7-oros", "6-oros"):
        assert card_id not in text
    assert "saving the oros" not in text
    assert view_b["opponent_cards_count"] == 2
    assert view_b["is_my_turn"] is True
    assert view_b["my_hand_value"] == 29
    assert [c["id"] for c in view_b["my_cards"]] == ["5-espadas", "4-espadas", "1-bastos"]

    view_a = engine.get_game_state_for_player("A")
    assert view_a["is_my_turn"] is False
    assert view_a["table"][0]["card"]["id"] == "4-copas"


def test_public_state_private_fields_are_opt_in():
    engine = _engine(["7-oros", "6-oros", "4-copas"], ["5-espadas", "4-espadas", "1-bastos"])
    _ok(engine, "A", Raise(BetType.ENVIDO, thought="33 is plenty"))

    public = engine.get_public_state()
    assert all(p["cards"] == [] for p in public["players"])
    assert all(p["hand_value"] is None for p in public["players"])
    assert public["private_thoughts"] == []
    assert all(e["public"] for e in public["history"])
    assert public["current_bet"] == {"type": "envido", "proposer": "A", "waiting_for": "B"}
    assert public["phase"] == "awaiting_bid_response"

    private = engine.get_public_state(include_private=True)
    assert private["players"][0]["hand_value"] == 33
    assert private["private_thoughts"][0]["data"]["thought"] == "33 is plenty"


def test_private_thought_logged_even_for_invalid_action():
    engine = _engine(["7-oros", "6-oros", "4-copas"], ["5-espadas", "4-espadas", "1-bastos"])
    result = engine.process_action("A", PlayCard("1-espadas", thought="bluff"))
    assert not result.success
    thoughts = _events(engine, EventType.PRIVATE_THOUGHT)
    assert len(thoughts) == 1 and not thoughts[0].public


# --------------------------------------------------------------------------- #
# Full match                                                                  #
# --------------------------------------------------------------------------- #


def test_random_match_runs_to_completion_with_monotonic_scores():
    engine = TrucoEngine(rng_seed=2024)
    engine.add_player("A", Team.TEAM1)
    engine.add_player("B", Team.TEAM2)
    engine.deal_cards()
    agents = {
        "A": RandomTrucoAgent(rng=random.Random(1)),
        "B": RandomTrucoAgent(rng=random.Random(2), raise_rate=0.9),
    }

    last = dict(engine.state.score)
    for _ in range(5000):
        if engine.is_match_over:
            break
        pending = engine.pending_decision()
        legal = engine.legal_actions(pending.seat_id)
        context = SeatContext(
            seat_id=pending.seat_id,
            team=engine.seat(pending.seat_id).team.value,
            kind=pending.kind,
            view=engine.get_game_state_for_player(pending.seat_id),
            legal_actions=legal,
        )
        raw = agents[pending.seat_id].decide(context, "", DecisionOptions())
        _ok(engine, pending.seat_id, normalize_action(raw))

        for team, points in engine.state.score.items():
            assert points >= last[team]
        last = dict(engine.state.score)
        assert sum(engine.state.round_wins.values()) <= 3
        assert all(len(s.hand) <= 3 for s in engine.state.seats)

    assert engine.is_match_over
    assert engine.state.score[engine.winner] >= 30
    assert _events(engine, EventType.GAME_END)
