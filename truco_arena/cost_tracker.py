# truco_arena/cost_tracker.py
from __future__ import annotations

import json
import logging
import threading
from copy import deepcopy
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

from litellm import cost_per_token, token_counter

logger = logging.getLogger(__name__)


@dataclass
class TokenUsage:
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None

    @property
    def total_tokens(self) -> Optional[int]:
        if self.prompt_tokens is None or self.completion_tokens is None:
            return None
        return self.prompt_tokens + self.completion_tokens

    @property
    def complete(self) -> bool:
        return self.prompt_tokens is not None and self.completion_tokens is not None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "TokenUsage":
        def _grab(*keys: str) -> Optional[int]:
            for key in keys:
                if raw.get(key) is not None:
                    try:
                        return int(raw[key])
                    except (TypeError, ValueError):
                        continue
            return None

        return cls(
            prompt_tokens=_grab("prompt_tokens", "input_tokens"),
            completion_tokens=_grab("completion_tokens", "output_tokens"),
        )

    def merge_missing(self, other: "TokenUsage") -> "TokenUsage":
        """Fill in any None fields from another usage instance."""
        return TokenUsage(
            prompt_tokens=self.prompt_tokens
            if self.prompt_tokens is not None
            else other.prompt_tokens,
            completion_tokens=self.completion_tokens
            if self.completion_tokens is not None
            else other.completion_tokens,
        )


def _empty_totals() -> Dict[str, Any]:
    return {
        "calls": 0,
        "cost_usd": 0.0,
        "prompt_tokens": 0,
        "completion_tokens": 0,
        "per_model": {},
        "updated_at": None,
    }


def _empty_model_totals() -> Dict[str, Any]:
    return {
        "calls": 0,
        "cost_usd": 0.0,
        "prompt_tokens": 0,
        "completion_tokens": 0,
    }


class CostTracker:
    """
    Count decision calls and what they cost.

    - Token usage comes from the provider when known, otherwise it is
      estimated with LiteLLM's `token_counter`.
    - Prices come from LiteLLM's cost map (`cost_per_token`); unknown models
      are counted but not priced.
    - With a `persist_path`, cumulative totals are loaded at start-up and
      written back by `persist()`.
    """

    def __init__(self, persist_path: Optional[Path] = None) -> None:
        self.persist_path = Path(persist_path) if persist_path else None
        self._lock = threading.Lock()
        self._running_totals = self._load_totals()
        self._session_totals = _empty_totals()

    # ------------------------------------------------------------------ #
    # Persistence                                                        #
    # ------------------------------------------------------------------ #

    def _load_totals(self) -> Dict[str, Any]:
        if self.persist_path is None or not self.persist_path.exists():
            return _empty_totals()
        try:
            with open(self.persist_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                "Failed to load LLM cost totals from %s: %s; starting fresh",
                self.persist_path,
                exc,
            )
            return _empty_totals()

        merged = _empty_totals()
        if isinstance(data, dict):
            merged.update({k: v for k, v in data.items() if k in merged})
        return merged

    def persist(self) -> None:
        if self.persist_path is None:
            return
        with self._lock:
            self.persist_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.persist_path, "w", encoding="utf-8") as f:
                json.dump(self._running_totals, f, indent=2, sort_keys=True)

    # ------------------------------------------------------------------ #
    # Recording                                                          #
    # ------------------------------------------------------------------ #

    def record_completion(
        self,
        *,
        model: str,
        model_label: Optional[str] = None,
        messages: Optional[Iterable[Mapping[str, Any]]] = None,
        output_text: Optional[str] = None,
        raw_usage: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Record a single LLM call into cumulative and session totals."""
        usage = TokenUsage.from_mapping(raw_usage) if raw_usage else TokenUsage()
        if not usage.complete:
            usage = usage.merge_missing(
                self._estimate_usage(model, messages, output_text)
            )

        cost_usd: Optional[float] = None
        if usage.complete:
            try:
                prompt_cost, completion_cost = cost_per_token(
                    model=model,
                    prompt_tokens=usage.prompt_tokens,
                    completion_tokens=usage.completion_tokens,
                )
                cost_usd = float(prompt_cost) + float(completion_cost)
            except Exception:  # noqa: BLE001 - unknown models are simply unpriced
                logger.debug("LiteLLM has no price for %s", model, exc_info=True)

        key = model_label or model
        with self._lock:
            for totals in (self._running_totals, self._session_totals):
                self._apply_update(totals, key, usage, cost_usd)
            self._running_totals["updated_at"] = datetime.now(timezone.utc).isoformat()

    def _apply_update(
        self,
        totals: Dict[str, Any],
        model: str,
        usage: TokenUsage,
        cost_usd: Optional[float],
    ) -> None:
        per_model = totals.setdefault("per_model", {})
        model_totals = per_model.setdefault(model, _empty_model_totals())

        totals["calls"] += 1
        model_totals["calls"] += 1
        if cost_usd is not None:
            totals["cost_usd"] += cost_usd
            model_totals["cost_usd"] += cost_usd
        if usage.prompt_tokens is not None:
            totals["prompt_tokens"] += usage.prompt_tokens
            model_totals["prompt_tokens"] += usage.prompt_tokens
        if usage.completion_tokens is not None:
            totals["completion_tokens"] += usage.completion_tokens
            model_totals["completion_tokens"] += usage.completion_tokens

    def _estimate_usage(
        self,
        model: str,
        messages: Optional[Iterable[Mapping[str, Any]]],
        output_text: Optional[str],
    ) -> TokenUsage:
        prompt_tokens: Optional[int] = None
        completion_tokens: Optional[int] = None

        if messages:
            try:
                prompt_tokens = int(token_counter(model=model, messages=list(messages)))
            except Exception:  # noqa: BLE001
                logger.debug("Prompt token estimation failed for %s", model, exc_info=True)
        if output_text:
            try:
                completion_tokens = int(token_counter(model=model, text=output_text))
            except Exception:  # noqa: BLE001
                logger.debug("Completion token estimation failed for %s", model, exc_info=True)

        return TokenUsage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)

    # ------------------------------------------------------------------ #
    # Reporting                                                          #
    # ------------------------------------------------------------------ #

    def summarize_run(self) -> Dict[str, Any]:
        """Return this run's totals alongside the cumulative ones."""
        with self._lock:
            return {
                "run": deepcopy(self._session_totals),
                "cumulative": deepcopy(self._running_totals),
            }

    def log_run_summary(self) -> None:
        summary = self.summarize_run()
        run = summary["run"]
        if not run["per_model"]:
            logger.info("No LLM calls recorded for this run.")
            return

        logger.info(
            "LLM calls this run: %d, cost $%.6f (prompt_tokens=%d, completion_tokens=%d)",
            run["calls"],
            run["cost_usd"],
            run["prompt_tokens"],
            run["completion_tokens"],
        )
        for model, stats in sorted(run["per_model"].items()):
            logger.info(
                "  %s -> %d calls, cost $%.6f, prompt_tokens=%d, completion_tokens=%d",
                model,
                stats["calls"],
                stats["cost_usd"],
                stats["prompt_tokens"],
                stats["completion_tokens"],
            )
        if self.persist_path is not None:
            logger.info(
                "Cumulative LLM spend: $%.6f over %d calls",
                summary["cumulative"]["cost_usd"],
                summary["cumulative"]["calls"],
            )
