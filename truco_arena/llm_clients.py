# truco_arena/llm_clients.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from dotenv import load_dotenv

if TYPE_CHECKING:
    from .cost_tracker import CostTracker

logger = logging.getLogger(__name__)

# Load environment variables from a .env file if present.
load_dotenv()

PROVIDERS = {"openai", "anthropic", "gemini", "grok", "deepseek", "ollama", "random"}
PROVIDER_ALIASES = {"claude": "anthropic", "google": "gemini", "xai": "grok"}

# Providers that speak the OpenAI chat-completions protocol at another base URL.
OPENAI_COMPATIBLE_BASE_URLS = {
    "grok": "https://api.x.ai/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "ollama": "http://localhost:11434/v1",
}

DEFAULT_SYSTEM_PROMPT = (
    "You are playing Argentine Truco. Always respond in valid JSON format."
)


@dataclass(frozen=True)
class ModelSpec:
    """Parsed representation of a seat binding like 'openai:gpt-4o'.

    provider: one of PROVIDERS ("claude" is accepted for "anthropic").
    model: the provider-specific model name. The "random" provider is the
           offline baseline and needs no model name.
    """
    provider: str
    model: str

    @classmethod
    def parse(cls, raw: str) -> "ModelSpec":
        text = raw.strip()
        if text.lower() == "random":
            return cls(provider="random", model="")
        if ":" not in text:
            raise ValueError(
                f"Model string '{raw}' must be of the form '<provider>:<model_name>'"
            )
        provider, model = text.split(":", 1)
        provider = provider.strip().lower()
        provider = PROVIDER_ALIASES.get(provider, provider)
        model = model.strip()
        if provider not in PROVIDERS:
            raise ValueError(
                f"Unknown provider '{provider}'. Expected one of "
                f"{', '.join(sorted(PROVIDERS))}."
            )
        if not model and provider != "random":
            raise ValueError(f"Model name missing in '{raw}'")
        return cls(provider=provider, model=model)

    def __str__(self) -> str:
        return f"{self.provider}:{self.model}" if self.model else self.provider

    @property
    def label(self) -> str:
        """Human-readable label for logs and summaries."""
        return str(self)

    @property
    def is_offline(self) -> bool:
        return self.provider == "random"


class LLMRouter:
    """Thin wrapper around multiple LLM providers.

    - OpenAI via the official `openai` SDK and the Responses API.
    - Anthropic via the `anthropic` SDK and the Messages API.
    - Google Gemini via the `google-genai` SDK (`google.genai`).
    - Grok, DeepSeek and Ollama via the OpenAI SDK's chat completions,
      pointed at each provider's OpenAI-compatible base URL.

    `complete()` returns plain text; turning it into a Truco action is the
    caller's job.
    """

    def __init__(
        self,
        *,
        openai_api_key: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
        gemini_api_key: Optional[str] = None,
        xai_api_key: Optional[str] = None,
        deepseek_api_key: Optional[str] = None,
        ollama_base_url: Optional[str] = None,
        temperature: float = 0.7,
        max_output_tokens: int = 256,
        cost_tracker: Optional["CostTracker"] = None,
    ) -> None:
        self._openai_client = None
        self._anthropic_client = None
        self._gemini_client = None
        self._compatible_clients: Dict[str, Any] = {}

        # Explicit keys override environment variables.
        self.openai_api_key = openai_api_key or os.getenv("OPENAI_API_KEY")
        self.anthropic_api_key = anthropic_api_key or os.getenv("ANTHROPIC_API_KEY")
        self.gemini_api_key = (
            gemini_api_key
            or os.getenv("GEMINI_API_KEY")
            or os.getenv("GOOGLE_API_KEY")
        )
        self.compatible_api_keys = {
            "grok": xai_api_key or os.getenv("XAI_API_KEY"),
            "deepseek": deepseek_api_key or os.getenv("DEEPSEEK_API_KEY"),
            # Ollama ignores the key but the SDK insists on one.
            "ollama": "ollama",
        }
        self.compatible_base_urls = dict(OPENAI_COMPATIBLE_BASE_URLS)
        ollama_url = ollama_base_url or os.getenv("OLLAMA_BASE_URL")
        if ollama_url:
            self.compatible_base_urls["ollama"] = ollama_url

        self.temperature = float(temperature)
        self.max_output_tokens = int(max_output_tokens)
        self.cost_tracker = cost_tracker

    # --- Public API -----------------------------------------------------

    def complete(
        self,
        model_spec: ModelSpec,
        *,
        prompt: str,
        system_prompt: Optional[str] = DEFAULT_SYSTEM_PROMPT,
        max_output_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Generate a text completion from the given model.

        `timeout` (seconds) is passed to the provider SDK as a per-request
        limit; None keeps the SDK default.
        """
        provider = model_spec.provider
        model = model_spec.model
        max_tokens = max_output_tokens or self.max_output_tokens
        temp = self.temperature if temperature is None else float(temperature)

        logger.debug(
            "LLMRouter.complete provider=%s model=%s max_output_tokens=%s temperature=%s",
            provider,
            model,
            max_tokens,
            temp,
        )

        if provider == "openai":
            text = self._complete_openai(
                model, prompt, system_prompt, max_tokens, temp, timeout
            )
        elif provider == "anthropic":
            text = self._complete_anthropic(
                model, prompt, system_prompt, max_tokens, temp, timeout
            )
        elif provider == "gemini":
            text = self._complete_gemini(
                model, prompt, system_prompt, max_tokens, temp, timeout
            )
        elif provider in OPENAI_COMPATIBLE_BASE_URLS:
            text = self._complete_compatible(
                provider, model, prompt, system_prompt, max_tokens, temp, timeout
            )
        else:
            raise ValueError(f"Unsupported provider: {provider}")

        if self.cost_tracker is not None:
            self.cost_tracker.record_completion(
                model=model,
                model_label=model_spec.label,
                messages=_messages(prompt, system_prompt),
                output_text=text,
            )
        return text

    # OpenAI (Responses API)
    def _ensure_openai(self):
        if self._openai_client is not None:
            return
        from openai import OpenAI

        self._openai_client = OpenAI(api_key=self.openai_api_key)

    def _complete_openai(
        self,
        model: str,
        prompt: str,
        system_prompt: Optional[str],
        max_output_tokens: int,
        temperature: float,
        timeout: Optional[float] = None,
    ) -> str:
        self._ensure_openai()
        assert self._openai_client is not None

        input_payload = _messages(prompt, system_prompt) if system_prompt else prompt
        request_kwargs: Dict[str, Any] = {
            "model": model,
            "input": input_payload,
            "max_output_tokens": max_output_tokens,
            "temperature": temperature,
        }
        if timeout is not None:
            request_kwargs["timeout"] = timeout

        try:
            response = self._openai_client.responses.create(**request_kwargs)
        except Exception as exc:  # pragma: no cover - network/API specific
            if not _is_temperature_unsupported_error(exc):
                raise
            logger.info(
                "OpenAI model %s does not support temperature; retrying without it",
                model,
            )
            request_kwargs.pop("temperature", None)
            response = self._openai_client.responses.create(**request_kwargs)
        return str(response.output_text)

    # Anthropic (Messages API)
    def _ensure_anthropic(self):
        if self._anthropic_client is not None:
            return
        import anthropic

        self._anthropic_client = anthropic.Anthropic(api_key=self.anthropic_api_key)

    def _complete_anthropic(
        self,
        model: str,
        prompt: str,
        system_prompt: Optional[str],
        max_output_tokens: int,
        temperature: float,
        timeout: Optional[float] = None,
    ) -> str:
        self._ensure_anthropic()
        assert self._anthropic_client is not None

        kwargs: Dict[str, Any] = {
            "model": model,
            "max_tokens": max_output_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        if timeout is not None:
            kwargs["timeout"] = timeout
        message = self._anthropic_client.messages.create(**kwargs)
        return "".join(
            block.text for block in message.content if getattr(block, "text", None)
        )

    # Google Gemini via google-genai
    def _ensure_gemini(self):
        if self._gemini_client is not None:
            return
        from google import genai

        if self.gemini_api_key:
            self._gemini_client = genai.Client(api_key=self.gemini_api_key)
        else:
            self._gemini_client = genai.Client()

    def _complete_gemini(
        self,
        model: str,
        prompt: str,
        system_prompt: Optional[str],
        max_output_tokens: int,
        temperature: float,
        timeout: Optional[float] = None,
    ) -> str:
        self._ensure_gemini()
        assert self._gemini_client is not None
        from google.genai import types

        config_kwargs: Dict[str, Any] = {
            "system_instruction": system_prompt or None,
            "max_output_tokens": max_output_tokens,
            "temperature": temperature,
        }
        if timeout is not None:
            # google-genai takes the request timeout in milliseconds.
            config_kwargs["http_options"] = types.HttpOptions(timeout=int(timeout * 1000))
        config = types.GenerateContentConfig(**config_kwargs)
        response = self._gemini_client.models.generate_content(
            model=model,
            contents=prompt,
            config=config,
        )
        text = getattr(response, "text", None)
        return text if isinstance(text, str) else str(response)

    # Grok / DeepSeek / Ollama via the OpenAI SDK
    def _ensure_compatible(self, provider: str):
        if provider in self._compatible_clients:
            return self._compatible_clients[provider]
        from openai import OpenAI

        api_key = self.compatible_api_keys.get(provider)
        if not api_key:
            raise RuntimeError(
                f"An API key is required to use provider '{provider}'."
            )
        client = OpenAI(api_key=api_key, base_url=self.compatible_base_urls[provider])
        self._compatible_clients[provider] = client
        return client

    def _complete_compatible(
        self,
        provider: str,
        model: str,
        prompt: str,
        system_prompt: Optional[str],
        max_output_tokens: int,
        temperature: float,
        timeout: Optional[float] = None,
    ) -> str:
        client = self._ensure_compatible(provider)
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": _messages(prompt, system_prompt),
            "max_tokens": max_output_tokens,
            "temperature": temperature,
        }
        if timeout is not None:
            kwargs["timeout"] = timeout
        completion = client.chat.completions.create(**kwargs)
        content = completion.choices[0].message.content
        return content if isinstance(content, str) else str(content or "")


def _messages(prompt: str, system_prompt: Optional[str]) -> list[Dict[str, str]]:
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    return messages


def _is_temperature_unsupported_error(exc: Exception) -> bool:
    """Return True if an OpenAI error indicates temperature is unsupported."""
    message = getattr(exc, "message", None) or str(exc)
    lowered = message.lower()
    return "temperature" in lowered and "not supported" in lowered
