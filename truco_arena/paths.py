# truco_arena/paths.py
from __future__ import annotations

from datetime import datetime
from pathlib import Path

# Central location for generated session logs and cost totals.
LOGS_DIR = Path(__file__).resolve().parent.parent / "logs"


def ensure_logs_dir() -> Path:
    """Create the logs directory if it does not exist and return it."""
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    return LOGS_DIR


def resolve_logs_path(path_like: str | Path) -> Path:
    """
    Resolve a user-specified path into the logs directory.

    Absolute paths are returned unchanged. Relative paths are anchored inside
    LOGS_DIR so runs consistently write outputs under the logs folder.
    """
    path = Path(path_like)
    if path.is_absolute():
        return path
    ensure_logs_dir()
    return LOGS_DIR / path


def session_log_path(now: datetime | None = None) -> Path:
    """Default per-session log file, e.g. logs/game-2024-05-01T12-30-00.log."""
    stamp = (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")
    return resolve_logs_path(f"game-{stamp}.log")
