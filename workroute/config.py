"""Configuration loading for workroute.

Config sources (in priority order):
1. Explicit arguments passed to functions / CLI options
2. Environment variables (WORKROUTE_DB_PATH, etc.)
3. .env file in current directory
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DB_PATH = Path("workroute.db")
DEFAULT_CACHE_TTL = 300.0  # seconds
DEFAULT_PIPELINE_INTERVAL = 30.0  # seconds


def _float_env(name: str, default: float, env_errors: list[str]) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        env_errors.append(f"{name} is not a number: {raw!r}")
        return default


@dataclass
class Config:
    db_path: Path = DEFAULT_DB_PATH
    cache_ttl: float = DEFAULT_CACHE_TTL
    pipeline_interval: float = DEFAULT_PIPELINE_INTERVAL
    patterns_file: Path | None = None  # extra routing rules, JSON
    log_path: Path | None = None  # run log; defaults next to the DB
    anthropic_api_key: str = ""
    env_errors: list[str] = field(default_factory=list)  # unparseable env values

    @classmethod
    def load(cls) -> Config:
        patterns_file = os.getenv("WORKROUTE_PATTERNS_FILE", "")
        log_path = os.getenv("WORKROUTE_LOG_PATH", "")
        env_errors: list[str] = []
        return cls(
            db_path=Path(os.getenv("WORKROUTE_DB_PATH", str(DEFAULT_DB_PATH))),
            cache_ttl=_float_env("WORKROUTE_CACHE_TTL", DEFAULT_CACHE_TTL, env_errors),
            pipeline_interval=_float_env("WORKROUTE_PIPELINE_INTERVAL", DEFAULT_PIPELINE_INTERVAL, env_errors),
            patterns_file=Path(patterns_file) if patterns_file else None,
            log_path=Path(log_path) if log_path else None,
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            env_errors=env_errors,
        )

    def run_log_path(self) -> Path:
        return self.log_path or self.db_path.parent / "workroute-runs.jsonl"

    def validate(self) -> list[str]:
        """Return a list of config issues."""
        issues = list(self.env_errors)
        if self.cache_ttl <= 0:
            issues.append("Cache TTL must be positive (WORKROUTE_CACHE_TTL)")
        if self.pipeline_interval <= 0:
            issues.append("Pipeline interval must be positive (WORKROUTE_PIPELINE_INTERVAL)")
        if self.patterns_file and not self.patterns_file.exists():
            issues.append(f"Patterns file not found: {self.patterns_file} (WORKROUTE_PATTERNS_FILE)")
        return issues

    def validate_organizer(self) -> list[str]:
        issues = self.validate()
        if not self.anthropic_api_key:
            issues.append("Anthropic API key not set (ANTHROPIC_API_KEY)")
        return issues
