# truco_arena/prompts.py
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .actions import (
    ACTION_KEY,
    PHRASE_KEY,
    REASON_KEY,
    THOUGHT_KEY,
    Action,
    PlayCard,
    Raise,
    Respond,
    action_to_dict,
)

ESSENTIAL_RULES = """
Essentials:
- 40-card Spanish deck: suits espadas/bastos/oros/copas, ranks 1-7 and 10-12. Card ids look like "7-oros".
- Each deal gives you 3 cards. Best of three tricks wins the deal; the highest card wins a trick.
- Card power, highest first: 1-espadas > 1-bastos > 7-espadas > 7-oros > 3s > 2s > 1-oros/1-copas > 12s > 11s > 10s > 7-copas/7-bastos > 6s > 5s > 4s.
- Ties ("parda") go to the mano, the seat that led the deal.
- Envido (before any card is played and before truco): hand value is 20 + the two highest cards of one suit (10/11/12 count 0), or the best single card. envido 2, real-envido 3, falta-envido = points the leader needs to reach 30; refusing gives the caller 1.
- Truco raises the deal: truco 2, retruco 3, vale4 4. Refusing gives the caller 1/2/3 and ends the deal.
- First team to 30 points wins the match.
""".strip()


@dataclass(frozen=True)
class Personality:
    name: str
    style: str
    temperature: float


PERSONALITIES: Dict[str, Personality] = {
    "normal": Personality("normal", "Play solid, balanced Truco.", 0.7),
    "aggressive": Personality("aggressive", "Aggressive: bet hard and raise often.", 0.9),
    "conservative": Personality("conservative", "Conservative: careful, only bet with strong cards.", 0.3),
    "bluffer": Personality("bluffer", "A liar: bluff freely to make the opponent fold.", 0.8),
    "mathematical": Personality("mathematical", "Calculate probabilities before every decision.", 0.2),
}


def get_personality(name: Optional[str]) -> Personality:
    """Look up a personality by name, falling back to 'normal' for unknown names."""
    return PERSONALITIES.get((name or "normal").lower(), PERSONALITIES["normal"])


def describe_hand_value(value: int) -> str:
    if value >= 31:
        return f"{value} (excellent)"
    if value >= 28:
        return f"{value} (very good)"
    if value >= 25:
        return f"{value} (good)"
    if value >= 20:
        return f"{value} (fair)"
    return f"{value} (low)"


def _example(action: Action) -> str:
    data = action_to_dict(action)
    data[REASON_KEY] = "..."
    data[THOUGHT_KEY] = "..."
    data[PHRASE_KEY] = "..."
    return json.dumps(data, ensure_ascii=False)


def format_action_menu(legal_actions: Sequence[Action]) -> str:
    """Group legal actions into one line per kind, each with a JSON template."""
    plays = [a for a in legal_actions if isinstance(a, PlayCard)]
    raises = [a for a in legal_actions if isinstance(a, Raise)]
    responses = [a for a in legal_actions if isinstance(a, Respond)]

    lines: List[str] = []
    if plays:
        ids = "|".join(a.card_id for a in plays)
        lines.append(f"- Play a card ({ids}): {_example(plays[0])}")
    for action in raises:
        lines.append(f"- Call {action.bet.value}: {_example(action)}")
    for action in responses:
        label = "Raise to" if action.is_counter else "Answer"
        lines.append(f"- {label} {action.answer.value}: {_example(action)}")
    if not lines:
        return "Available actions: <none>"
    return "Available actions:\n" + "\n".join(lines)


def _mine_theirs(pair: Dict[str, int], my_team: str) -> str:
    theirs = next((v for k, v in pair.items() if k != my_team), 0)
    return f"{pair.get(my_team, 0)}-{theirs}"


def state_digest(view: Dict[str, Any]) -> str:
    """Compact, seat-scoped summary of the state."""
    my_team = view["my_team"]
    bet = view.get("current_bet")
    lines = [
        f"Your cards: {json.dumps([c['id'] for c in view['my_cards']])}",
        f"Table: {json.dumps([e['card']['id'] for e in view['table']])}",
        f"Score (you-them): {_mine_theirs(view['score'], my_team)}",
        f"Tricks this deal (you-them): {_mine_theirs(view['round_wins'], my_team)}",
        f"Truco: {view.get('truco_state') or 'no'}",
        f"Envido: {view.get('envido_state') or 'no'}",
        f"You are mano: {'yes' if view.get('mano') == view['seat_id'] else 'no'}",
        f"Your envido value: {describe_hand_value(view['my_hand_value'])}",
    ]
    if bet:
        lines.append(f"Pending bet: {bet['type']} (called by {bet['proposer']})")
    return "\n".join(lines)


_ANSWER_FORMAT = (
    "Note: \"frase\" is optional, a short line you would say at the table. "
    "\"pensamiento\" is private and never shown to your opponent.\n"
    f"IMPORTANT: use exactly \"{ACTION_KEY}\" as the action key. "
    "You may include a rationale, then end with FINAL_JSON: followed by ONLY "
    "the JSON object, with nothing after the closing brace."
)


def build_turn_prompt(
    view: Dict[str, Any],
    legal_actions: Sequence[Action],
    personality: Optional[str] = None,
) -> str:
    """Prompt for a normal turn: play a card or call a bet."""
    profile = get_personality(personality)
    sections = [
        f"Argentine Truco. {profile.style}",
        ESSENTIAL_RULES,
        state_digest(view),
        format_action_menu(legal_actions),
        _ANSWER_FORMAT,
    ]
    return "\n\n".join(sections)


def build_response_prompt(
    view: Dict[str, Any],
    legal_actions: Sequence[Action],
    personality: Optional[str] = None,
) -> str:
    """Prompt for answering a pending bet: accept, refuse, or raise."""
    profile = get_personality(personality)
    bet = view.get("current_bet") or {}
    sections = [
        f"Argentine Truco. {profile.style}",
        f"Your opponent called {bet.get('type', '?')}.",
        ESSENTIAL_RULES,
        state_digest(view),
        format_action_menu(legal_actions),
        _ANSWER_FORMAT,
    ]
    return "\n\n".join(sections)
