# Copyright (c) Syntropy Systems
"""Chunked, timeout-bounded scheduling of scenario runs."""
from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import TYPE_CHECKING, Protocol, TypeVar

from reprise.cancellation import CancellationToken
from reprise.errors import OrchestrationError, OrchestrationErrorKind, truncate
from reprise.models.stats import RunConfiguration, RunStatistics, ScenarioResult

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from reprise.models.scenario import Scenario

T = TypeVar("T")

PLACEHOLDER_PATTERN = re.compile(r"\$\{CONFIG\.([A-Z0-9_]+)\}")


class RetryRunner(Protocol):
    """What the orchestrator needs from a scenario retry runner."""

    async def run(
        self,
        prompt: str,
        tag: str,
        attempts: int = ...,
        cancel_token: CancellationToken | None = ...,
    ) -> None:
        ...


def resolve_placeholders(template: str, values: Mapping[str, str]) -> str:
    """Replace ``${CONFIG.KEY}`` with ``values[KEY]``.

    Raises OrchestrationError naming the available keys when a key is
    missing. Values are inserted verbatim.
    """

    def substitute(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in values:
            msg = f"Unknown configuration key: {key}"
            raise OrchestrationError(
                msg, f"Available keys: {', '.join(sorted(values))}"
            )
        return values[key] or ""

    return PLACEHOLDER_PATTERN.sub(substitute, template)


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """Split items into consecutive groups of ``size``; the last may be shorter."""
    if size < 1:
        msg = f"Chunk size must be at least 1, got {size}"
        raise ValueError(msg)
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class ScenarioOrchestrator:
    """Runs scenarios in fixed-size chunks, each raced against a timeout.

    Chunks run one after another; scenarios inside a chunk run as
    concurrent tasks. Only this object updates the run statistics, after
    each chunk has been gathered.
    """

    def __init__(
        self,
        runner: RetryRunner,
        config_map: Mapping[str, str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.runner = runner
        self.config_map: dict[str, str] = dict(config_map or {})
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self._abandoned: set[asyncio.Task[None]] = set()

    async def run(
        self,
        scenarios: Sequence[Scenario],
        config: RunConfiguration,
        filter_tag: str | None = None,
        abort_token: CancellationToken | None = None,
    ) -> RunStatistics:
        """Run the selected scenarios and return pass/fail statistics.

        Raises OrchestrationError when ``filter_tag`` matches nothing, when a
        prompt cannot be resolved, or (with ``continue_on_failure`` off)
        after the first failing chunk.
        """
        selected = self.select(scenarios, filter_tag)
        stats = RunStatistics(total=len(selected))
        self.logger.info(
            "Starting run of %d scenario(s) (tag=%s, concurrency=%d, timeout=%dms, attempts=%d)",
            len(selected), filter_tag or "ALL", config.concurrency,
            config.scenario_timeout_ms, config.retry_attempts,
        )

        for index, chunk in enumerate(chunked(selected, config.concurrency), start=1):
            self.logger.debug(
                "Chunk %d: %s", index, ", ".join(scenario.tag for scenario in chunk)
            )
            outcomes = await asyncio.gather(
                *(self._run_scenario(scenario, config, abort_token) for scenario in chunk),
                return_exceptions=True,
            )
            self._record_chunk(stats, chunk, outcomes, config)

        stats.finish()
        self.logger.info(
            "Run finished: %d passed, %d failed, %d total in %dms",
            stats.passed, stats.failed, stats.total, stats.duration_ms,
        )
        return stats

    def select(
        self,
        scenarios: Sequence[Scenario],
        filter_tag: str | None,
    ) -> list[Scenario]:
        """Return the scenarios to run, in catalog order."""
        if filter_tag is None:
            return list(scenarios)
        selected = [scenario for scenario in scenarios if scenario.tag == filter_tag]
        if not selected:
            msg = f"No scenarios found for tag: {filter_tag}"
            raise OrchestrationError(
                msg,
                f"Available tags: {', '.join(scenario.tag for scenario in scenarios)}",
                tag=filter_tag,
            )
        return selected

    def _record_chunk(
        self,
        stats: RunStatistics,
        chunk: Sequence[Scenario],
        outcomes: Sequence[ScenarioResult | BaseException],
        config: RunConfiguration,
    ) -> None:
        configuration_error: OrchestrationError | None = None
        unexpected: BaseException | None = None
        first_failure: str | None = None

        for scenario, outcome in zip(chunk, outcomes):
            if isinstance(outcome, ScenarioResult):
                stats.record(outcome)
                if not outcome.passed and first_failure is None:
                    first_failure = outcome.tag
                continue

            stats.failed_tags.append(scenario.tag)
            if isinstance(outcome, OrchestrationError):
                configuration_error = configuration_error or outcome
            else:
                unexpected = unexpected or outcome

        if configuration_error is not None:
            stats.finish()
            configuration_error.statistics = stats
            raise configuration_error
        if unexpected is not None:
            stats.finish()
            raise unexpected

        if first_failure is not None and not config.continue_on_failure:
            stats.finish()
            msg = "Test run aborted due to failure"
            raise OrchestrationError(
                msg,
                f"Failed scenario: {first_failure}",
                kind=OrchestrationErrorKind.ABORTED,
                tag=first_failure,
                statistics=stats,
            )

    async def _run_scenario(
        self,
        scenario: Scenario,
        config: RunConfiguration,
        abort_token: CancellationToken | None,
    ) -> ScenarioResult:
        tag = scenario.tag
        started = time.monotonic()

        def result(passed: bool, reason: str | None = None) -> ScenarioResult:
            return ScenarioResult(
                tag=tag,
                passed=passed,
                reason=reason,
                duration_ms=int((time.monotonic() - started) * 1000),
            )

        self.logger.info("Running scenario: %s - %s", tag, scenario.description)

        if abort_token is not None and abort_token.cancelled:
            self.logger.error("Scenario %s failed: aborted before start", tag)
            return result(passed=False, reason="aborted")

        if not scenario.prompt.strip():
            msg = "Empty prompt"
            raise OrchestrationError(msg, f"Scenario: {tag}", tag=tag)

        try:
            prompt = resolve_placeholders(scenario.prompt, self.config_map)
        except OrchestrationError as e:
            e.tag = tag
            raise

        token = CancellationToken()
        task = asyncio.ensure_future(
            self.runner.run(prompt, tag, config.retry_attempts, cancel_token=token)
        )
        try:
            done, _ = await asyncio.wait({task}, timeout=config.scenario_timeout_ms / 1000)
        except asyncio.CancelledError:
            token.cancel("orchestrator cancelled")
            _ = task.cancel()
            raise

        if task not in done:
            reason = f"Scenario timed out after {config.scenario_timeout_ms}ms"
            token.cancel("timed out")
            self._abandon(task)
            self.logger.error("Scenario %s failed: %s", tag, reason)
            return result(passed=False, reason=reason)

        if task.cancelled():
            self.logger.error("Scenario %s failed: cancelled", tag)
            return result(passed=False, reason="cancelled")

        error = task.exception()
        if error is not None:
            reason = truncate(str(error))
            self.logger.error("Scenario %s failed: %s", tag, reason)
            return result(passed=False, reason=reason)

        outcome = result(passed=True)
        self.logger.info("Scenario %s passed in %dms", tag, outcome.duration_ms)
        return outcome

    def _abandon(self, task: asyncio.Task[None]) -> None:
        """Cancel a timed-out attempt and keep a reference until it settles."""
        _ = task.cancel()
        self._abandoned.add(task)
        task.add_done_callback(self._settled)

    def _settled(self, task: asyncio.Task[None]) -> None:
        self._abandoned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.debug(
                "Abandoned attempt finished with: %s", truncate(str(task.exception()))
            )
