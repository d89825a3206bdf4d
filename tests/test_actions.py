# tests/test_actions.py
import pytest

from truco_arena.actions import (
    ActionParseError,
    PlayCard,
    Raise,
    Respond,
    action_to_dict,
    describe_action,
    normalize_action,
    parse_model_response,
)
from truco_arena.state import BetType, Reply


def test_normalize_mapping_variants():
    assert normalize_action({"accion": "tirar", "valor": "7-oros"}) == PlayCard("7-oros")
    assert normalize_action({"accion": "cantar", "valor": "truco"}) == Raise(BetType.TRUCO)
    assert normalize_action({"accion": "responder", "valor": "quiero"}) == Respond(
        Reply.QUIERO
    )


def test_respuesta_is_a_synonym_for_accion():
    action = normalize_action({"respuesta": "responder", "valor": "no-quiero"})
    assert action == Respond(Reply.NO_QUIERO)


def test_token_aliases_and_spacing():
    assert normalize_action({"accion": "Cantar", "valor": "Vale 4"}) == Raise(BetType.VALE4)
    assert normalize_action({"accion": "responder", "valor": "No quiero"}) == Respond(
        Reply.NO_QUIERO
    )
    assert normalize_action({"accion": "cantar", "valor": "real_envido"}) == Raise(
        BetType.REAL_ENVIDO
    )


def test_counter_raise_response():
    action = normalize_action({"accion": "responder", "valor": "retruco"})
    assert isinstance(action, Respond)
    assert action.is_counter
    assert action.answer is BetType.RETRUCO
    assert not Respond(Reply.QUIERO).is_counter


def test_extras_are_carried():
    action = normalize_action(
        {
            "accion": "tirar",
            "valor": "1-espadas",
            "razon": "strongest card",
            "pensamiento": "they have nothing",
            "frase": "  ",
        }
    )
    assert action.reason == "strongest card"
    assert action.thought == "they have nothing"
    assert action.phrase is None


def test_raw_text_with_final_json():
    text = (
        "My hand is weak {not json} so I will fold.\n"
        'FINAL_JSON: {"accion": "responder", "valor": "no-quiero", "razon": "weak"}'
    )
    parsed = parse_model_response(text)
    assert parsed.rationale.startswith("My hand is weak")
    assert parsed.data["valor"] == "no-quiero"

    action = normalize_action(text)
    assert action == Respond(Reply.NO_QUIERO, reason="weak")


def test_raw_text_without_delimiter_uses_first_object():
    text = 'Sure! {"accion": "tirar", "valor": "3-copas"} hope that helps'
    assert normalize_action(text) == PlayCard("3-copas")


def test_action_instances_pass_through():
    action = Raise(BetType.ENVIDO)
    assert normalize_action(action) is action


@pytest.mark.parametrize(
    "raw",
    [
        "no json here",
        '{"accion": "tirar"}',
        '{"valor": "7-oros"}',
        {"accion": "bailar", "valor": "7-oros"},
        {"accion": "tirar", "valor": "9-oros"},
        {"accion": "cantar", "valor": "flor"},
        {"accion": "responder", "valor": "maybe"},
        42,
    ],
)
def test_malformed_output_raises(raw):
    with pytest.raises(ActionParseError):
        normalize_action(raw)


def test_action_to_dict_and_describe():
    action = PlayCard("7-oros", phrase="ahi va")
    assert action_to_dict(action) == {"accion": "tirar", "valor": "7-oros", "frase": "ahi va"}
    assert describe_action(Respond(BetType.VALE4)) == "responder vale4"
    assert describe_action(Raise(BetType.FALTA_ENVIDO)) == "cantar falta-envido"
