from .base import DecisionOptions, SeatContext, TrucoAgent
from .random_agent import RandomTrucoAgent
from .llm_agents import LLMCallFailed, LLMTrucoAgent

__all__ = [
    "TrucoAgent",
    "SeatContext",
    "DecisionOptions",
    "RandomTrucoAgent",
    "LLMTrucoAgent",
    "LLMCallFailed",
]
