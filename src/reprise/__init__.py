"""
reprise - Regenerate-and-retry test scenario orchestration.

Run generated tests in bounded chunks, retry what fails, get a summary.
"""

from reprise.actions import ActionOutcome, ActionRetrier, RetryOptions
from reprise.cancellation import CancellationToken
from reprise.errors import OrchestrationError, ScenarioFailedError
from reprise.orchestrator import ScenarioOrchestrator
from reprise.rerun import ScenarioRetryRunner

__version__ = "0.1.0"
__all__ = [
    "ActionOutcome",
    "ActionRetrier",
    "CancellationToken",
    "OrchestrationError",
    "RetryOptions",
    "ScenarioFailedError",
    "ScenarioOrchestrator",
    "ScenarioRetryRunner",
    "__version__",
]
