# Copyright (c) Syntropy Systems
"""Run configuration, per-scenario results and run statistics."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import Field

from .base import FrozenModel, RepriseBaseModel

DEFAULT_CONCURRENCY = 1
DEFAULT_SCENARIO_TIMEOUT_MS = 5 * 60 * 1000
DEFAULT_RETRY_ATTEMPTS = 2


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class RunConfiguration(FrozenModel):
    """Knobs for a single orchestrator run."""

    concurrency: int = Field(default=DEFAULT_CONCURRENCY, ge=1)
    scenario_timeout_ms: int = Field(default=DEFAULT_SCENARIO_TIMEOUT_MS, gt=0)
    retry_attempts: int = Field(default=DEFAULT_RETRY_ATTEMPTS, ge=1)
    continue_on_failure: bool = True
    verbose: bool = False


class ScenarioResult(FrozenModel):
    """Outcome of one scenario, as returned by its task."""

    tag: str
    passed: bool
    reason: Optional[str] = None
    duration_ms: int = 0


class RunStatistics(RepriseBaseModel):
    """Pass/fail counters for a run.

    Mutated only by the orchestrator once a chunk's results are in.
    """

    total: int = 0
    passed: int = 0
    failed_tags: list[str] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    duration_ms: Optional[int] = None

    @property
    def failed(self) -> int:
        """Number of failed scenarios."""
        return len(self.failed_tags)

    @property
    def success(self) -> bool:
        """True when nothing failed."""
        return not self.failed_tags

    def record(self, result: ScenarioResult) -> None:
        """Count one scenario result."""
        if result.passed:
            self.passed += 1
        else:
            self.failed_tags.append(result.tag)

    def finish(self) -> None:
        """Stamp end time and duration. Only the first call has an effect."""
        if self.end_time is not None:
            return
        self.end_time = utc_now()
        self.duration_ms = int(
            (self.end_time - self.start_time).total_seconds() * 1000
        )
