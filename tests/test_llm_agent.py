# tests/test_llm_agent.py
import time

import pytest

from truco_arena.agents.base import DecisionOptions, SeatContext
from truco_arena.agents.llm_agents import LLMCallFailed, LLMTrucoAgent
from truco_arena.engine import DecisionKind
from truco_arena.llm_clients import ModelSpec


class FakeRouter:
    def __init__(self, *outputs):
        self.outputs = list(outputs)
        self.calls = []

    def complete(
        self, model_spec, *, prompt, system_prompt, max_output_tokens, temperature, timeout=None
    ):
        self.calls.append(
            dict(
                model_spec=model_spec,
                prompt=prompt,
                system_prompt=system_prompt,
                max_output_tokens=max_output_tokens,
                temperature=temperature,
                timeout=timeout,
            )
        )
        item = self.outputs.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _seat():
    return SeatContext(seat_id="player1", team="team1", kind=DecisionKind.TURN)


def test_model_spec_parsing():
    spec = ModelSpec.parse("openai:gpt-4o-mini")
    assert (spec.provider, spec.model) == ("openai", "gpt-4o-mini")
    assert ModelSpec.parse("Claude:claude-3-5-haiku-latest").provider == "anthropic"
    assert ModelSpec.parse("xai:grok-4").provider == "grok"
    assert ModelSpec.parse("ollama:llama3:8b").model == "llama3:8b"

    random_spec = ModelSpec.parse("random")
    assert random_spec.is_offline
    assert random_spec.label == "random"

    for bad in ("gpt-4o", "mystery:model", "openai:"):
        with pytest.raises(ValueError):
            ModelSpec.parse(bad)


def test_decide_returns_raw_text_with_options():
    router = FakeRouter('FINAL_JSON: {"accion": "tirar", "valor": "7-oros"}')
    agent = LLMTrucoAgent("deepseek:deepseek-chat", router=router, max_output_tokens=128)

    out = agent.decide(_seat(), "prompt text", DecisionOptions(temperature=0.2))

    assert out.endswith('"valor": "7-oros"}')
    call = router.calls[0]
    assert call["model_spec"].provider == "deepseek"
    assert call["prompt"] == "prompt text"
    assert call["temperature"] == 0.2
    assert call["max_output_tokens"] == 128
    assert "Truco" in call["system_prompt"]


def test_option_max_tokens_overrides_agent_default():
    router = FakeRouter("{}")
    agent = LLMTrucoAgent("openai:gpt-4o-mini", router=router)
    agent.decide(_seat(), "p", DecisionOptions(max_output_tokens=64))
    assert router.calls[0]["max_output_tokens"] == 64


def test_retries_then_succeeds():
    router = FakeRouter(RuntimeError("429"), RuntimeError("503"), "ok")
    agent = LLMTrucoAgent(
        "gemini:gemini-2.0-flash", router=router, retry_delay_seconds=0
    )
    assert agent.decide(_seat(), "p", DecisionOptions()) == "ok"
    assert len(router.calls) == 3


def test_exhausted_retries_raise_llm_call_failed():
    router = FakeRouter(*(RuntimeError(f"boom {i}") for i in range(3)))
    agent = LLMTrucoAgent(
        "anthropic:claude-3-5-haiku-latest",
        router=router,
        max_api_retries=3,
        retry_delay_seconds=0,
    )
    with pytest.raises(LLMCallFailed) as excinfo:
        agent.decide(_seat(), "p", DecisionOptions())

    assert excinfo.value.attempts == 3
    assert excinfo.value.label == "anthropic:claude-3-5-haiku-latest"
    assert "boom 2" in str(excinfo.value)


def test_random_spec_is_not_an_llm():
    with pytest.raises(ValueError):
        LLMTrucoAgent("random", router=FakeRouter())


def test_decision_timeout_is_forwarded_to_the_router():
    router = FakeRouter("ok", "ok")
    agent = LLMTrucoAgent("openai:gpt-4o-mini", router=router)

    agent.decide(_seat(), "p", DecisionOptions(timeout=30))
    forwarded = router.calls[0]["timeout"]
    assert 0 < forwarded <= 30

    agent.decide(_seat(), "p", DecisionOptions())
    assert router.calls[1]["timeout"] is None


def test_retries_stop_at_the_decision_deadline():
    router = FakeRouter(*(RuntimeError("503") for _ in range(50)))
    agent = LLMTrucoAgent(
        "grok:grok-4",
        router=router,
        max_api_retries=50,
        retry_delay_seconds=0.05,
    )

    started = time.monotonic()
    with pytest.raises(LLMCallFailed) as excinfo:
        agent.decide(_seat(), "p", DecisionOptions(timeout=0.12))

    assert time.monotonic() - started < 1.0
    assert excinfo.value.attempts == len(router.calls)
    assert len(router.calls) < 10
