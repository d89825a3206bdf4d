# truco_arena/agents/base.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from ..actions import Action
from ..engine import DecisionKind


@dataclass(frozen=True)
class SeatContext:
    """Who is deciding and what they may see and do."""
    seat_id: str
    team: str
    kind: DecisionKind
    name: Optional[str] = None
    personality: str = "normal"
    view: Dict[str, Any] = field(default_factory=dict)
    legal_actions: List[Action] = field(default_factory=list)


@dataclass(frozen=True)
class DecisionOptions:
    temperature: float = 0.7
    max_output_tokens: Optional[int] = None
    # Seconds the orchestrator will wait for this decision; None means no limit.
    timeout: Optional[float] = None


@runtime_checkable
class TrucoAgent(Protocol):
    """
    Interface that every seat's decision backend implements.

    `seat.view` is the seat-scoped state from
    `TrucoEngine.get_game_state_for_player`, and `prompt` is the rendered
    text of the same information plus the legal-action menu.

    The return value may be an Action, a mapping in the wire format
    ({"accion": ..., "valor": ...}) or raw text containing such a mapping.
    The orchestrator normalizes and validates it; anything unusable is
    replaced by a deterministic fallback.
    """

    def decide(
        self,
        seat: SeatContext,
        prompt: str,
        options: DecisionOptions,
    ) -> Any:
        raise NotImplementedError
