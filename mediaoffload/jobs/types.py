from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class RunStatus(str, Enum):
    NONE = ""
    READY = "ready"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TickOutcome(str, Enum):
    PROCESSED = "processed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ABANDONED = "abandoned"
    IDLE = "idle"


@dataclass(slots=True)
class JobState:
    total: int = 0
    processed: int = 0
    errors: int = 0
    oversized_skipped: int = 0
    status: RunStatus = RunStatus.NONE
    last_update: datetime | None = None

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return max(0.0, min(100.0, self.processed * 100.0 / self.total))


@dataclass(frozen=True)
class TickResult:
    outcome: TickOutcome
    run_id: str | None = None
    media_id: int | None = None
    succeeded: bool | None = None
    state: JobState | None = None


@dataclass(frozen=True)
class StartResult:
    run_id: str | None
    total: int
    oversized_skipped: int


@dataclass(frozen=True)
class StallCheckResult:
    recovered: bool
    run_id: str | None
    idle_seconds: float | None
