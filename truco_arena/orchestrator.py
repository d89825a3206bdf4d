# truco_arena/orchestrator.py
from __future__ import annotations

import asyncio
import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .actions import (
    Action,
    ActionParseError,
    PlayCard,
    Respond,
    action_to_dict,
    describe_action,
    normalize_action,
)
from .agents.base import DecisionOptions, SeatContext, TrucoAgent
from .engine import (
    DecisionKind,
    EnginePreconditionError,
    PendingDecision,
    TrucoEngine,
)
from .prompts import build_response_prompt, build_turn_prompt, get_personality
from .state import AgentBinding, Reply, Team

logger = logging.getLogger(__name__)

StateCallback = Callable[[Dict[str, Any]], None]
LogCallback = Callable[[str, Optional[Dict[str, Any]]], None]


@dataclass
class OrchestratorConfig:
    """Pacing and safety limits for one match. Zero delays disable pacing."""
    turn_delay: float = 15.0
    bid_response_delay: float = 1.0
    max_turns: int = 200
    decision_timeout: Optional[float] = 30.0
    max_output_tokens: Optional[int] = None


@dataclass
class SeatConfig:
    id: str
    team: Team
    agent: TrucoAgent
    name: Optional[str] = None
    binding: Optional[AgentBinding] = None
    personality: str = "normal"


class MatchStatus(enum.Enum):
    COMPLETED = "completed"
    STOPPED = "stopped"
    TURN_LIMIT = "turn_limit"


@dataclass
class MatchOutcome:
    status: MatchStatus
    winner: Optional[str]
    score: Dict[str, int]
    turns: int
    decisions: int
    fallbacks: int
    history: List[Dict[str, Any]] = field(default_factory=list)


class MatchOrchestrator:
    """
    Drives one match: asks the engine who must act, asks that seat's agent,
    applies the answer and republishes state.

    Exactly one decision is in flight at a time. The agent's synchronous
    `decide` runs in a worker thread under `decision_timeout`; any failure
    (exception, timeout, unparsable output or an action the engine rejects)
    is replaced by a deterministic fallback so the match always progresses.

    Each orchestrator owns its engine; several matches can share an event
    loop without sharing state.
    """

    def __init__(
        self,
        engine: Optional[TrucoEngine] = None,
        config: Optional[OrchestratorConfig] = None,
        *,
        on_state: Optional[StateCallback] = None,
        on_log: Optional[LogCallback] = None,
        match_label: Optional[str] = None,
    ) -> None:
        self.engine = engine or TrucoEngine(match_label=match_label)
        if match_label is not None:
            self.engine.match_label = match_label
        self.config = config or OrchestratorConfig()
        self.on_state = on_state
        self.on_log = on_log

        self.seats: Dict[str, SeatConfig] = {}
        self.turns = 0
        self.decisions = 0
        self.fallbacks = 0

        self._stop_requested = threading.Event()
        self._wakeup: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._in_flight: Optional[asyncio.Future] = None

    @property
    def label(self) -> str:
        return self.engine.match_label or "match"

    @property
    def stopped(self) -> bool:
        return self._stop_requested.is_set()

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #

    def setup_match(self, seats: Sequence[SeatConfig]) -> None:
        """Register both seats, deal the first hand and publish the opening state."""
        self.engine.reset()
        self.seats = {}
        self.turns = self.decisions = self.fallbacks = 0
        for seat in seats:
            self.engine.add_player(
                seat.id,
                seat.team,
                binding=seat.binding,
                personality=seat.personality,
            )
            self.seats[seat.id] = seat
        self.engine.deal_cards()

        logger.info(
            "Starting %s: %s",
            self.label,
            ", ".join(
                f"{s.id} ({s.binding.label if s.binding else 'agent'}, {s.personality})"
                for s in seats
            ),
        )
        self._log(
            "Match started",
            {
                "match": self.engine.match_label,
                "seats": [
                    {
                        "id": s.id,
                        "name": s.name,
                        "team": Team(s.team).value,
                        "binding": s.binding.label if s.binding else None,
                        "personality": s.personality,
                    }
                    for s in seats
                ],
            },
        )
        self._publish_state()

    def stop(self) -> None:
        """Ask the loop to stop before its next decision. Safe from any thread."""
        self._stop_requested.set()
        loop, wakeup = self._loop, self._wakeup
        if loop is not None and wakeup is not None and not loop.is_closed():
            loop.call_soon_threadsafe(wakeup.set)

    async def run(self) -> MatchOutcome:
        """Play until the match ends, a stop arrives, or the turn cap is hit."""
        if self.engine.hand_number == 0:
            raise EnginePreconditionError("setup_match() must run before run()")

        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        if self.stopped:
            self._wakeup.set()

        status = MatchStatus.COMPLETED
        try:
            while not self.engine.is_match_over:
                if self.stopped:
                    status = MatchStatus.STOPPED
                    break
                if self.turns >= self.config.max_turns:
                    status = MatchStatus.TURN_LIMIT
                    logger.error(
                        "%s hit the turn limit (%d) without a winner; score %s",
                        self.label,
                        self.config.max_turns,
                        self._score(),
                    )
                    self._log(
                        "Turn limit reached",
                        {"max_turns": self.config.max_turns, "score": self._score()},
                    )
                    break

                if not await self.play_turn():
                    if self.stopped:
                        continue
                    raise EnginePreconditionError(
                        f"{self.label}: engine has no pending decision"
                    )
                if self.engine.is_match_over:
                    break
                await self._pause(self.config.turn_delay)
        finally:
            await self._await_in_flight()
            self._wakeup = None
            self._loop = None

        if status is MatchStatus.STOPPED:
            logger.info("%s stopped after %d turns", self.label, self.turns)
            self._log("Match stopped", {"turns": self.turns, "score": self._score()})
        elif status is MatchStatus.COMPLETED:
            self._log(
                "Match finished",
                {
                    "winner": self.engine.winner.value if self.engine.winner else None,
                    "score": self._score(),
                    "turns": self.turns,
                },
            )

        return MatchOutcome(
            status=status,
            winner=self.engine.winner.value if self.engine.winner else None,
            score=self._score(),
            turns=self.turns,
            decisions=self.decisions,
            fallbacks=self.fallbacks,
            history=[e.to_dict() for e in self.engine.state.history if e.public],
        )

    # ------------------------------------------------------------------ #
    # One step                                                           #
    # ------------------------------------------------------------------ #

    async def play_turn(self) -> bool:
        """
        Request and apply exactly one decision.

        Returns False when nothing was applied: no decision is pending, or a
        stop arrived before or during the request.
        """
        pending = self.engine.pending_decision()
        if pending is None:
            return False

        if pending.kind is DecisionKind.RESPONSE:
            await self._pause(self.config.bid_response_delay)
        if self.stopped:
            return False

        seat_cfg = self.seats[pending.seat_id]
        context, prompt, options = self._build_request(seat_cfg, pending)
        self._log(
            "Requesting decision",
            {
                "player": pending.seat_id,
                "kind": pending.kind.value,
                "legal_actions": [describe_action(a) for a in context.legal_actions],
            },
        )

        self.decisions += 1
        action, error = await self._request_decision(seat_cfg.agent, context, prompt, options)

        if self.stopped:
            logger.info(
                "%s: discarding decision from %s after stop", self.label, pending.seat_id
            )
            return False

        if action is not None:
            self._log(
                "Decision received",
                {"player": pending.seat_id, "action": action_to_dict(action)},
            )
            result = self.engine.process_action(pending.seat_id, action)
            if result.success:
                self.turns += 1
                self._publish_state()
                return True
            error = result.error or "Invalid action"
            self._log(
                "Invalid action",
                {
                    "player": pending.seat_id,
                    "action": action_to_dict(action),
                    "error": error,
                },
            )

        self._apply_fallback(pending, error)
        self.turns += 1
        self._publish_state()
        return True

    def _build_request(
        self,
        seat_cfg: SeatConfig,
        pending: PendingDecision,
    ) -> Tuple[SeatContext, str, DecisionOptions]:
        view = self.engine.get_game_state_for_player(pending.seat_id)
        legal = self.engine.legal_actions(pending.seat_id)
        profile = get_personality(seat_cfg.personality)

        if pending.kind is DecisionKind.RESPONSE:
            prompt = build_response_prompt(view, legal, seat_cfg.personality)
        else:
            prompt = build_turn_prompt(view, legal, seat_cfg.personality)
        logger.debug("%s prompt for %s:\n%s", self.label, pending.seat_id, prompt)

        context = SeatContext(
            seat_id=pending.seat_id,
            team=Team(seat_cfg.team).value,
            kind=pending.kind,
            name=seat_cfg.name,
            personality=profile.name,
            view=view,
            legal_actions=legal,
        )
        options = DecisionOptions(
            temperature=profile.temperature,
            max_output_tokens=self.config.max_output_tokens,
            timeout=self.config.decision_timeout or None,
        )
        return context, prompt, options

    async def _request_decision(
        self,
        agent: TrucoAgent,
        context: SeatContext,
        prompt: str,
        options: DecisionOptions,
    ) -> Tuple[Optional[Action], Optional[str]]:
        """Run the agent off the event loop and normalize what comes back."""
        await self._await_in_flight()

        timeout = self.config.decision_timeout or None
        task = asyncio.ensure_future(
            asyncio.to_thread(agent.decide, context, prompt, options)
        )
        try:
            raw = await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            # The worker thread cannot be cancelled; it must finish before the next request.
            self._in_flight = task
            logger.warning(
                "%s: %s did not decide within %ss",
                self.label,
                context.seat_id,
                timeout,
            )
            return None, f"Decision timed out after {timeout}s"
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "%s: agent for %s raised %s: %s",
                self.label,
                context.seat_id,
                type(exc).__name__,
                exc,
            )
            return None, f"{type(exc).__name__}: {exc}"

        try:
            return normalize_action(raw), None
        except ActionParseError as exc:
            logger.warning(
                "%s: unusable output from %s: %s", self.label, context.seat_id, exc
            )
            return None, str(exc)

    async def _await_in_flight(self) -> None:
        """Wait out a decision that timed out earlier, discarding its result."""
        task, self._in_flight = self._in_flight, None
        if task is None:
            return
        if task.done():
            if not task.cancelled():
                task.exception()
            return
        logger.info("%s: waiting for a timed-out decision to finish", self.label)
        try:
            await task
        except Exception as exc:  # noqa: BLE001
            logger.debug("%s: discarded late decision failed: %s", self.label, exc)

    def _fallback_action(self, pending: PendingDecision) -> Action:
        if pending.kind is DecisionKind.RESPONSE:
            return Respond(Reply.NO_QUIERO, reason="fallback")
        seat = self.engine.seat(pending.seat_id)
        return PlayCard(seat.hand[0].id, reason="fallback")

    def _apply_fallback(self, pending: PendingDecision, error: Optional[str]) -> None:
        fallback = self._fallback_action(pending)
        result = self.engine.process_action(pending.seat_id, fallback)
        if not result.success:
            raise EnginePreconditionError(
                f"Fallback {describe_action(fallback)} rejected for {pending.seat_id}"
            )
        self.fallbacks += 1
        logger.warning(
            "%s: %s fell back to %s (%s)",
            self.label,
            pending.seat_id,
            describe_action(fallback),
            error,
        )
        self._log(
            "Fallback applied",
            {
                "player": pending.seat_id,
                "action": action_to_dict(fallback),
                "error": error,
            },
        )

    # ------------------------------------------------------------------ #
    # Helpers                                                            #
    # ------------------------------------------------------------------ #

    async def _pause(self, seconds: float) -> None:
        """Sleep for `seconds`, returning early if stop() is called."""
        if seconds <= 0 or self.stopped:
            return
        if self._wakeup is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(self._wakeup.wait(), seconds)
        except asyncio.TimeoutError:
            pass

    def _publish_state(self) -> None:
        if self.on_state is not None:
            self.on_state(self.engine.get_public_state(include_private=True))

    def _log(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        if self.on_log is None:
            return
        payload = dict(data or {})
        payload.setdefault("match", self.engine.match_label)
        self.on_log(message, payload)

    def _score(self) -> Dict[str, int]:
        return {t.value: n for t, n in self.engine.state.score.items()}
