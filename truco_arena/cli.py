# truco_arena/cli.py
from __future__ import annotations

import argparse
import asyncio
import logging
import random
import signal
from typing import List, Optional

from .agents import LLMTrucoAgent, RandomTrucoAgent, TrucoAgent
from .cost_tracker import CostTracker
from .engine import TrucoEngine
from .llm_clients import LLMRouter, ModelSpec
from .orchestrator import (
    MatchOrchestrator,
    MatchOutcome,
    MatchStatus,
    OrchestratorConfig,
    SeatConfig,
)
from .paths import resolve_logs_path, session_log_path
from .prompts import PERSONALITIES
from .session_log import SessionLogger, state_summary
from .state import AgentBinding, Team

SEAT_IDS = ("player1", "player2")
TEAMS = (Team.TEAM1, Team.TEAM2)


def parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run Argentine Truco matches between two LLM-driven seats."
    )

    parser.add_argument(
        "--seats",
        nargs=2,
        required=True,
        metavar="MODEL",
        help=(
            "The two seat bindings, '<provider>:<model_name>' or 'random'. "
            "For example: openai:gpt-4o-mini claude:claude-3-5-haiku-latest"
        ),
    )
    parser.add_argument(
        "--personalities",
        nargs="+",
        default=["normal"],
        choices=sorted(PERSONALITIES),
        help="Personality per seat; a single value applies to both (default: normal).",
    )
    parser.add_argument(
        "--names",
        nargs=2,
        default=None,
        help="Optional display names for the two seats.",
    )
    parser.add_argument(
        "--matches",
        type=int,
        default=1,
        help="Number of matches to play (default: 1).",
    )
    parser.add_argument(
        "--parallel-matches",
        type=int,
        default=1,
        help="Max number of matches to play concurrently (default: 1).",
    )
    parser.add_argument(
        "--turn-delay",
        type=float,
        default=15.0,
        help="Seconds to wait between decisions (default: %(default)s).",
    )
    parser.add_argument(
        "--bid-response-delay",
        type=float,
        default=1.0,
        help="Seconds to wait before asking for a bet response (default: %(default)s).",
    )
    parser.add_argument(
        "--max-turns",
        type=int,
        default=200,
        help="Safety cap on decisions per match (default: %(default)s).",
    )
    parser.add_argument(
        "--decision-timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for one agent decision; 0 disables (default: %(default)s).",
    )
    parser.add_argument(
        "--max-output-tokens",
        type=int,
        default=256,
        help="Max output tokens requested from each LLM call (default: 256).",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=0,
        help="Base random seed for deals and random seats.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ...). Default: INFO.",
    )
    parser.add_argument(
        "--session-log",
        type=str,
        default=None,
        help="Path for the JSON-lines session log (default: logs/game-<timestamp>.log).",
    )
    parser.add_argument(
        "--no-session-log",
        action="store_true",
        help="Do not write a session log.",
    )

    args = parser.parse_args(argv)
    if len(args.personalities) > 2:
        parser.error("--personalities takes one or two values")
    if args.matches < 1:
        parser.error("--matches must be at least 1")
    return args


def _build_agent(
    spec: ModelSpec,
    *,
    router: LLMRouter,
    seed: int,
    max_output_tokens: int,
) -> TrucoAgent:
    if spec.is_offline:
        return RandomTrucoAgent(rng=random.Random(seed))
    return LLMTrucoAgent(spec, router=router, max_output_tokens=max_output_tokens)


def _build_orchestrator(
    match_index: int,
    *,
    args: argparse.Namespace,
    router: LLMRouter,
    session_logger: Optional[SessionLogger],
) -> MatchOrchestrator:
    match_id = f"match-{match_index + 1}"
    specs = [ModelSpec.parse(s) for s in args.seats]
    personalities = list(args.personalities)
    if len(personalities) == 1:
        personalities *= 2
    names = args.names or [spec.label for spec in specs]

    # Alternate who sits first, and therefore who is mano in the opening deal.
    order = [0, 1] if match_index % 2 == 0 else [1, 0]

    seats: List[SeatConfig] = []
    for i in order:
        spec = specs[i]
        seats.append(
            SeatConfig(
                id=SEAT_IDS[i],
                team=TEAMS[i],
                agent=_build_agent(
                    spec,
                    router=router,
                    seed=args.seed + match_index * 1000 + i,
                    max_output_tokens=args.max_output_tokens,
                ),
                name=names[i],
                binding=AgentBinding(spec.provider, spec.model),
                personality=personalities[i],
            )
        )
    logging.info("Seating order for %s: %s", match_id, ", ".join(s.id for s in seats))

    config = OrchestratorConfig(
        turn_delay=args.turn_delay,
        bid_response_delay=args.bid_response_delay,
        max_turns=args.max_turns,
        decision_timeout=args.decision_timeout,
        max_output_tokens=args.max_output_tokens,
    )

    on_state = None
    if session_logger is not None:
        def on_state(state):
            session_logger.log("State update", state_summary(state))

    orchestrator = MatchOrchestrator(
        TrucoEngine(rng_seed=args.seed + match_index, match_label=match_id),
        config,
        on_state=on_state,
        on_log=session_logger,
        match_label=match_id,
    )
    orchestrator.setup_match(seats)
    return orchestrator


def _install_stop_handler(orchestrators: List[MatchOrchestrator]) -> None:
    def _stop_all() -> None:
        logging.warning("Interrupted; stopping %d match(es)", len(orchestrators))
        for orchestrator in orchestrators:
            orchestrator.stop()

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, _stop_all)
    except (NotImplementedError, RuntimeError):
        # Not available on this platform (e.g. Windows event loops).
        logging.debug("SIGINT handler not installed")


def _remove_stop_handler() -> None:
    try:
        asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
    except (NotImplementedError, RuntimeError):
        pass


async def async_main(argv: List[str] | None = None) -> List[MatchOutcome]:
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    session_logger: Optional[SessionLogger] = None
    if not args.no_session_log:
        path = (
            resolve_logs_path(args.session_log)
            if args.session_log
            else session_log_path()
        )
        session_logger = SessionLogger(path)
        logging.info("Session log: %s", path)

    cost_tracker = CostTracker(resolve_logs_path("llm_costs.json"))
    router = LLMRouter(
        max_output_tokens=args.max_output_tokens,
        cost_tracker=cost_tracker,
    )

    parallel = max(1, min(args.parallel_matches, args.matches))
    logging.info("Running up to %d match(es) concurrently", parallel)

    outcomes: List[MatchOutcome] = []
    early_stop = False

    for batch_start in range(0, args.matches, parallel):
        batch_end = min(batch_start + parallel, args.matches)
        orchestrators = [
            _build_orchestrator(
                i, args=args, router=router, session_logger=session_logger
            )
            for i in range(batch_start, batch_end)
        ]
        logging.info(
            "Starting matches %s",
            ", ".join(str(i + 1) for i in range(batch_start, batch_end)),
        )
        _install_stop_handler(orchestrators)
        try:
            results = await asyncio.gather(
                *(o.run() for o in orchestrators), return_exceptions=True
            )
        finally:
            _remove_stop_handler()

        for orchestrator, result in zip(orchestrators, results):
            if isinstance(result, Exception):
                logging.error("%s failed: %s", orchestrator.label, result)
                early_stop = True
                continue
            outcomes.append(result)
            logging.info(
                "%s %s: winner=%s score=%s turns=%d fallbacks=%d/%d",
                orchestrator.label,
                result.status.value,
                result.winner,
                result.score,
                result.turns,
                result.fallbacks,
                result.decisions,
            )
            if result.status is MatchStatus.STOPPED:
                early_stop = True

        if session_logger:
            session_logger.flush()
        if early_stop:
            break

    wins = {team.value: 0 for team in TEAMS}
    for outcome in outcomes:
        if outcome.winner in wins:
            wins[outcome.winner] += 1
    logging.info(
        "Played %d/%d matches; wins %s",
        len(outcomes),
        args.matches,
        ", ".join(f"{SEAT_IDS[i]} ({args.seats[i]}): {wins[TEAMS[i].value]}" for i in range(2)),
    )

    cost_tracker.persist()
    cost_tracker.log_run_summary()
    return outcomes


def main(argv: List[str] | None = None) -> None:
    asyncio.run(async_main(argv))


if __name__ == "__main__":
    main()
