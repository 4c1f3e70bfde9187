# Copyright (c) Syntropy Systems
"""Exception types raised by reprise."""
from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reprise.models.stats import RunStatistics

ERROR_TEXT_LIMIT = 300


def truncate(text: str, limit: int = ERROR_TEXT_LIMIT) -> str:
    """Shorten text for log lines and error messages."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class RepriseError(Exception):
    """Base class for reprise errors."""


class OrchestrationErrorKind(str, Enum):
    """What made the orchestrator give up on a run."""

    CONFIGURATION = "configuration"
    ABORTED = "aborted"


class OrchestrationError(RepriseError):
    """A run could not be started or was stopped early.

    ``details`` is a human-readable payload (for example the list of valid
    configuration keys). ``statistics`` holds whatever was accumulated
    before the run stopped.
    """

    def __init__(
        self,
        message: str,
        details: str | None = None,
        *,
        kind: OrchestrationErrorKind = OrchestrationErrorKind.CONFIGURATION,
        tag: str | None = None,
        statistics: RunStatistics | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        self.kind = kind
        self.tag = tag
        self.statistics = statistics

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class ScenarioFailedError(RepriseError):
    """All attempts of a scenario failed."""

    def __init__(self, tag: str, attempts: int, last_error: BaseException) -> None:
        self.tag = tag
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Scenario {tag} failed after {attempts} attempt(s): "
            f"{truncate(str(last_error))}"
        )


class GenerationError(RepriseError):
    """The generator could not produce a usable artifact."""

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message if details is None else f"{message}: {details}")
        self.details = details


class ExecutionError(RepriseError):
    """An artifact ran but its checks did not pass."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        output: str = "",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class ActionError(RepriseError):
    """A retried interaction failed.

    ``target`` identifies what was acted on (usually a selector) and
    ``attempt`` the attempt count reached.
    """

    def __init__(
        self,
        message: str,
        target: str | None = None,
        attempt: int | None = None,
    ) -> None:
        super().__init__(message)
        self.target = target
        self.attempt = attempt
