# truco_arena/agents/random_agent.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict
import random

from ..actions import PlayCard, action_to_dict
from .base import DecisionOptions, SeatContext, TrucoAgent


@dataclass
class RandomTrucoAgent(TrucoAgent):
    """
    Offline baseline that never needs a model.

    - Picks uniformly among the legal actions supplied in the seat context.
    - `raise_rate` thins out raises on normal turns so matches are not all
      bluster; 1.0 keeps every legal raise in the draw.
    """

    rng: random.Random
    raise_rate: float = 0.5

    def decide(
        self,
        seat: SeatContext,
        prompt: str,
        options: DecisionOptions,
    ) -> Dict[str, Any]:
        legal = list(seat.legal_actions)
        if not legal:
            raise ValueError(f"No legal actions offered to {seat.seat_id}")

        plays = [a for a in legal if isinstance(a, PlayCard)]
        if plays and len(plays) < len(legal) and self.rng.random() >= self.raise_rate:
            legal = plays

        return action_to_dict(self.rng.choice(legal))
