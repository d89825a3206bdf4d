# truco_arena/session_log.py
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class SessionLogger:
    """
    Accumulates structured session records and writes them as JSON lines.

    An instance is callable with `(message, data)`, which is the shape of the
    orchestrator's log callback, so several concurrent matches can share one
    session file.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._entries: List[str] = []
        self._lock = Lock()

    def log(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message": message,
            "data": data,
        }
        line = json.dumps(entry, default=str, ensure_ascii=False)
        with self._lock:
            self._entries.append(line)

    __call__ = log

    def flush(self) -> None:
        with self._lock:
            if not self._entries:
                return
            to_write = "\n".join(self._entries) + "\n"
            self._entries.clear()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(to_write)
        logger.debug("Flushed session log to %s", self.path)


def state_summary(state: Dict[str, Any]) -> Dict[str, Any]:
    """The compact slice of a public state worth keeping in the session log."""
    history = state.get("history") or []
    return {
        "match": state.get("match"),
        "score": state.get("score"),
        "current_turn": state.get("current_turn"),
        "truco_state": state.get("truco_state"),
        "envido_state": state.get("envido_state"),
        "round_wins": state.get("round_wins"),
        "table_cards": len(state.get("table") or []),
        "last_action": history[-1] if history else None,
    }
