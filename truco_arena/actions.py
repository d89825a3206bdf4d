# truco_arena/actions.py
"""
Agent actions and the normalization step that turns untrusted agent output
(raw model text or a loosely-shaped mapping) into one of three typed variants:
PlayCard, Raise or Respond.

Wire format (what agents are asked to produce):

    {"accion": "tirar" | "cantar" | "responder",
     "valor": <card id | bet type | reply>,
     "razon": "...", "pensamiento": "...", "frase": "..."}

Models sometimes write "respuesta" instead of "accion"; that key is accepted
as a synonym here and nowhere else.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from .cards import Card
from .state import BetType, Reply

ACTION_KEY = "accion"
ACTION_KEY_SYNONYMS = ("respuesta",)
VALUE_KEY = "valor"
REASON_KEY = "razon"
THOUGHT_KEY = "pensamiento"
PHRASE_KEY = "frase"

PLAY = "tirar"
RAISE = "cantar"
RESPOND = "responder"

_TOKEN_ALIASES = {
    "vale-4": "vale4",
    "vale-cuatro": "vale4",
    "realenvido": "real-envido",
    "faltaenvido": "falta-envido",
    "noquiero": "no-quiero",
}


class ActionParseError(ValueError):
    """Raised when agent output cannot be turned into an action."""


@dataclass(frozen=True)
class PlayCard:
    card_id: str
    reason: Optional[str] = None
    thought: Optional[str] = None
    phrase: Optional[str] = None


@dataclass(frozen=True)
class Raise:
    bet: BetType
    reason: Optional[str] = None
    thought: Optional[str] = None
    phrase: Optional[str] = None


@dataclass(frozen=True)
class Respond:
    answer: Union[Reply, BetType]
    reason: Optional[str] = None
    thought: Optional[str] = None
    phrase: Optional[str] = None

    @property
    def is_counter(self) -> bool:
        return isinstance(self.answer, BetType)


Action = Union[PlayCard, Raise, Respond]


@dataclass
class ParsedModelResponse:
    data: Dict[str, Any]
    rationale: str
    final_json_text: str


def _decode_json_object(text: str) -> tuple[Dict[str, Any], str]:
    """Decode the first JSON object found in text."""
    decoder = json.JSONDecoder()
    last_error: Optional[Exception] = None
    start = text.find("{")
    while start != -1:
        try:
            obj, end_idx = decoder.raw_decode(text[start:])
        except json.JSONDecodeError as exc:
            last_error = exc
            start = text.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj, text[start:start + end_idx]
        start = text.find("{", start + 1)

    if last_error is not None:
        raise ActionParseError(f"Failed to decode JSON: {last_error}")
    raise ActionParseError("No JSON object found in model output")


def parse_model_response(text: str) -> ParsedModelResponse:
    """Extract rationale and JSON object, honouring an optional FINAL_JSON delimiter."""
    cleaned = text.strip()
    # Regex keeps us resilient to stray punctuation or spacing around the delimiter.
    match = re.search(r"FINAL_JSON\s*:?", cleaned, flags=re.IGNORECASE)
    if match:
        rationale = cleaned[: match.start()].strip()
        candidate = cleaned[match.end():].strip()
    else:
        rationale = ""
        candidate = cleaned

    obj, json_text = _decode_json_object(candidate)
    return ParsedModelResponse(
        data=obj,
        rationale=rationale,
        final_json_text=json_text.strip(),
    )


def _token(value: Any) -> str:
    text = str(value).strip().lower().replace("_", "-").replace(" ", "-")
    return _TOKEN_ALIASES.get(text, text)


def _optional_text(payload: Mapping[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_bet(value: Any) -> BetType:
    try:
        return BetType(_token(value))
    except ValueError as exc:
        raise ActionParseError(f"Unknown bet type: {value!r}") from exc


def _parse_answer(value: Any) -> Union[Reply, BetType]:
    token = _token(value)
    try:
        return Reply(token)
    except ValueError:
        pass
    try:
        return BetType(token)
    except ValueError as exc:
        raise ActionParseError(f"Unknown response: {value!r}") from exc


def normalize_action(raw: Any) -> Action:
    """
    Turn agent output into a typed action.

    Accepts an Action (returned unchanged), a mapping in the wire format, or
    raw text containing such a mapping. Raises ActionParseError otherwise.
    """
    if isinstance(raw, (PlayCard, Raise, Respond)):
        return raw
    if isinstance(raw, str):
        payload: Mapping[str, Any] = parse_model_response(raw).data
    elif isinstance(raw, Mapping):
        payload = raw
    else:
        raise ActionParseError(f"Unsupported agent output type: {type(raw).__name__}")

    kind = payload.get(ACTION_KEY)
    if kind is None:
        for synonym in ACTION_KEY_SYNONYMS:
            if payload.get(synonym) is not None:
                kind = payload[synonym]
                break
    if kind is None:
        raise ActionParseError(f"Missing '{ACTION_KEY}' in agent output")
    if VALUE_KEY not in payload or payload[VALUE_KEY] is None:
        raise ActionParseError(f"Missing '{VALUE_KEY}' in agent output")

    value = payload[VALUE_KEY]
    extras = dict(
        reason=_optional_text(payload, REASON_KEY),
        thought=_optional_text(payload, THOUGHT_KEY),
        phrase=_optional_text(payload, PHRASE_KEY),
    )

    kind_token = _token(kind)
    if kind_token == PLAY:
        try:
            card = Card.from_id(str(value))
        except ValueError as exc:
            raise ActionParseError(str(exc)) from exc
        return PlayCard(card_id=card.id, **extras)
    if kind_token == RAISE:
        return Raise(bet=_parse_bet(value), **extras)
    if kind_token == RESPOND:
        return Respond(answer=_parse_answer(value), **extras)
    raise ActionParseError(f"Unknown action type: {kind!r}")


def action_to_dict(action: Action) -> Dict[str, Any]:
    """Render an action in the wire format."""
    if isinstance(action, PlayCard):
        data: Dict[str, Any] = {ACTION_KEY: PLAY, VALUE_KEY: action.card_id}
    elif isinstance(action, Raise):
        data = {ACTION_KEY: RAISE, VALUE_KEY: action.bet.value}
    else:
        data = {ACTION_KEY: RESPOND, VALUE_KEY: action.answer.value}
    if action.reason:
        data[REASON_KEY] = action.reason
    if action.thought:
        data[THOUGHT_KEY] = action.thought
    if action.phrase:
        data[PHRASE_KEY] = action.phrase
    return data


def describe_action(action: Action) -> str:
    """Short label such as 'tirar 7-oros' for logs and prompts."""
    data = action_to_dict(action)
    return f"{data[ACTION_KEY]} {data[VALUE_KEY]}"
