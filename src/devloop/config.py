"""Runtime configuration for scheduling, watch mode and logging."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

LOGGER_TYPES = ("quiet", "basic", "json")
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


@dataclass(slots=True)
class SchedulerSettings:
    """Task graph settings."""

    concurrency: int = 6
    task_timeout_seconds: float = 0.0


@dataclass(slots=True)
class WatchSettings:
    """Watch loop settings."""

    debounce_seconds: float = 0.2
    drain_timeout_seconds: float = 30.0
    queue_size: int = 1_000


@dataclass(slots=True)
class LoggingSettings:
    """Progress logging settings."""

    level: str = "INFO"
    logger_type: str = "basic"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    project_path: Path = Path("devloop.yml")
    cache_path: Path = Path(".devloop/cache.db")
    sqlite_busy_timeout_ms: int = 5_000
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    watch: WatchSettings = field(default_factory=WatchSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_env(cls, project_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            project_path=project_path or Path(os.getenv("DEVLOOP_PROJECT_PATH", "devloop.yml")),
            cache_path=Path(os.getenv("DEVLOOP_CACHE_PATH", ".devloop/cache.db")),
            sqlite_busy_timeout_ms=_env_int("DEVLOOP_SQLITE_BUSY_TIMEOUT_MS", 5_000),
            scheduler=SchedulerSettings(
                concurrency=_env_int("DEVLOOP_CONCURRENCY", 6),
                task_timeout_seconds=_env_float("DEVLOOP_TASK_TIMEOUT_SECONDS", 0.0),
            ),
            watch=WatchSettings(
                debounce_seconds=_env_float("DEVLOOP_WATCH_DEBOUNCE_SECONDS", 0.2),
                drain_timeout_seconds=_env_float("DEVLOOP_WATCH_DRAIN_TIMEOUT_SECONDS", 30.0),
                queue_size=_env_int("DEVLOOP_WATCH_QUEUE_SIZE", 1_000),
            ),
            logging=LoggingSettings(
                level=os.getenv("DEVLOOP_LOG_LEVEL", "INFO").strip().upper(),
                logger_type=os.getenv("DEVLOOP_LOGGER_TYPE", "basic").strip().lower(),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any value is out of range."""

        if self.scheduler.concurrency <= 0:
            raise ValueError("DEVLOOP_CONCURRENCY must be > 0.")
        if self.scheduler.task_timeout_seconds < 0:
            raise ValueError("DEVLOOP_TASK_TIMEOUT_SECONDS must be >= 0.")
        if self.watch.debounce_seconds < 0:
            raise ValueError("DEVLOOP_WATCH_DEBOUNCE_SECONDS must be >= 0.")
        if self.watch.drain_timeout_seconds < 0:
            raise ValueError("DEVLOOP_WATCH_DRAIN_TIMEOUT_SECONDS must be >= 0.")
        if self.watch.queue_size <= 0:
            raise ValueError("DEVLOOP_WATCH_QUEUE_SIZE must be > 0.")
        if self.logging.level not in LOG_LEVELS:
            raise ValueError(
                f"Invalid DEVLOOP_LOG_LEVEL: {self.logging.level!r}. "
                f"Expected one of: {', '.join(LOG_LEVELS)}.",
            )
        if self.logging.logger_type not in LOGGER_TYPES:
            raise ValueError(
                f"Invalid DEVLOOP_LOGGER_TYPE: {self.logging.logger_type!r}. "
                f"Expected one of: {', '.join(LOGGER_TYPES)}.",
            )


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid numeric value for {name}: {value!r}") from error
