# truco_arena/agents/llm_agents.py
from __future__ import annotations

import logging
import time
from typing import Optional, Union

from .base import DecisionOptions, SeatContext, TrucoAgent
from ..llm_clients import DEFAULT_SYSTEM_PROMPT, LLMRouter, ModelSpec

logger = logging.getLogger(__name__)


class LLMCallFailed(RuntimeError):
    """Raised when an LLM call exhausts all retry attempts."""

    def __init__(self, *, label: str, purpose: str, attempts: int, error: Exception):
        message = (
            f"LLM {label} failed for {purpose} after {attempts} attempts: {error}"
        )
        super().__init__(message)
        self.label = label
        self.purpose = purpose
        self.attempts = attempts
        self.error = error


class LLMTrucoAgent(TrucoAgent):
    """Truco agent that delegates its decisions to an LLM.

    It uses an :class:`LLMRouter` to talk to the configured provider based on
    a ``ModelSpec`` such as ``openai:gpt-4o`` or ``claude:claude-sonnet-4``.

    The agent returns the model's raw text. Parsing, validation and the
    deterministic fallback are the orchestrator's job, so a chatty or
    malformed reply never stalls the match. Provider errors are retried up to
    ``max_api_retries`` times before :class:`LLMCallFailed` is raised.
    """

    def __init__(
        self,
        model: Union[str, ModelSpec],
        *,
        router: Optional[LLMRouter] = None,
        max_output_tokens: int = 256,
        system_prompt: Optional[str] = DEFAULT_SYSTEM_PROMPT,
        max_api_retries: int = 5,
        retry_delay_seconds: float = 2.0,
    ) -> None:
        if isinstance(model, ModelSpec):
            self.model_spec = model
        else:
            self.model_spec = ModelSpec.parse(model)
        if self.model_spec.is_offline:
            raise ValueError("The 'random' provider has no model to call")

        self.router = router or LLMRouter(max_output_tokens=max_output_tokens)
        self.max_output_tokens = int(max_output_tokens)
        self.system_prompt = system_prompt

        self._max_api_retries = max(1, int(max_api_retries))
        self._retry_delay_seconds = float(retry_delay_seconds)

    @property
    def label(self) -> str:
        return self.model_spec.label

    def decide(
        self,
        seat: SeatContext,
        prompt: str,
        options: DecisionOptions,
    ) -> str:
        purpose = f"{seat.kind.value} of {seat.seat_id}"
        max_tokens = options.max_output_tokens or self.max_output_tokens
        # Past the orchestrator's deadline the answer is discarded, so stop retrying.
        deadline = time.monotonic() + options.timeout if options.timeout else None
        last_error: Optional[Exception] = None
        attempts = 0

        for attempt in range(1, self._max_api_retries + 1):
            remaining: Optional[float] = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0 and attempt > 1:
                    logger.warning(
                        "LLM %s gave up on %s: decision deadline passed", self.label, purpose
                    )
                    break
            attempts = attempt
            try:
                raw_output = self.router.complete(
                    self.model_spec,
                    prompt=prompt,
                    system_prompt=self.system_prompt,
                    max_output_tokens=max_tokens,
                    temperature=options.temperature,
                    timeout=remaining,
                )
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                logger.warning(
                    "LLM %s failed for %s (attempt %d/%d): %s",
                    self.label,
                    purpose,
                    attempt,
                    self._max_api_retries,
                    exc,
                )
                if attempt < self._max_api_retries:
                    delay = self._retry_delay_seconds
                    if deadline is not None:
                        delay = min(delay, max(0.0, deadline - time.monotonic()))
                    time.sleep(delay)
                continue

            logger.debug("LLM %s (%s) raw output: %s", self.label, purpose, raw_output)
            return raw_output

        assert last_error is not None
        raise LLMCallFailed(
            label=self.label,
            purpose=purpose,
            attempts=attempts,
            error=last_error,
        )
