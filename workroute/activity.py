"""Run history for routing, merge and pipeline operations.

Each operation run is appended to a JSONL file so operators can see what the
last passes changed without digging through logs. Each line is a JSON object
with timestamp, operation name, arguments, result, error and duration.

The log file lives alongside workroute.db by default.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, is_dataclass
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)


def _resolve_log_path() -> Path:
    """Find the log file path, checking env var then defaulting next to the DB."""
    env_path = os.getenv("WORKROUTE_LOG_PATH")
    if env_path:
        return Path(env_path)

    db_path = os.getenv("WORKROUTE_DB_PATH", "workroute.db")
    return Path(db_path).parent / "workroute-runs.jsonl"


def _jsonable(value):
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


def log_run(
    operation: str,
    arguments: dict,
    result: object,
    error: str | None,
    duration_ms: int,
    log_path: Path | None = None,
) -> None:
    """Append a run entry to the run log. Failures to write are logged, not raised."""
    entry = {
        "timestamp": datetime.now().isoformat(),
        "operation": operation,
        "arguments": arguments,
        "result": _jsonable(result),
        "error": error,
        "duration_ms": duration_ms,
    }
    path = log_path or _resolve_log_path()
    try:
        with open(path, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")
    except OSError as e:
        logger.warning(f"Could not write run log {path}: {e}")


def read_run_log(
    limit: int = 20,
    operation: str | None = None,
    log_path: Path | None = None,
) -> list[dict]:
    """Read recent run log entries.

    Returns entries in reverse chronological order (most recent first).
    """
    path = log_path or _resolve_log_path()
    if not path.exists():
        return []

    entries: list[dict] = []
    for line in path.read_text().splitlines():
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue

        if operation and entry.get("operation") != operation:
            continue

        entries.append(entry)

    entries.reverse()
    return entries[:limit]
