# Copyright (c) Syntropy Systems
"""Regenerate-and-rerun loop for a single scenario."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from reprise.errors import ScenarioFailedError, truncate

if TYPE_CHECKING:
    from reprise.cancellation import CancellationToken
    from reprise.executor import Executor
    from reprise.generator import Generator

PROMPT_PREVIEW_CHARS = 100


class ScenarioCancelledError(ScenarioFailedError):
    """The scenario's token was cancelled before all attempts were used."""


class ScenarioRetryRunner:
    """Runs generate-then-execute for a scenario until it passes.

    A fresh artifact is generated for every attempt: a failure may come
    from a bad generation, so earlier artifacts are never reused. There is
    no delay between attempts.
    """

    def __init__(
        self,
        generator: Generator,
        executor: Executor,
        logger: logging.Logger | None = None,
    ) -> None:
        self.generator = generator
        self.executor = executor
        self.logger = logger if logger is not None else logging.getLogger(__name__)

    async def run(
        self,
        prompt: str,
        tag: str,
        attempts: int = 2,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        """Run the scenario, raising ScenarioFailedError once attempts are used up."""
        if attempts < 1:
            msg = f"attempts must be at least 1, got {attempts}"
            raise ValueError(msg)

        for attempt in range(1, attempts + 1):
            self.logger.info(
                "[%s] attempt %d of %d: %s",
                tag, attempt, attempts, prompt[:PROMPT_PREVIEW_CHARS],
            )
            try:
                artifact = await self.generator.generate(
                    prompt, tag, cancel_token=cancel_token
                )
                self.logger.debug(
                    "[%s] generated %s (warnings: %d)",
                    tag, artifact.path, len(artifact.warnings),
                )
                await self.executor.execute(artifact, cancel_token=cancel_token)
            except Exception as exc:  # noqa: BLE001
                self.logger.error(
                    "[%s] attempt %d of %d failed: %s",
                    tag, attempt, attempts, truncate(str(exc)),
                )
                if attempt == attempts:
                    self.logger.error("[%s] all %d attempts exhausted", tag, attempts)
                    raise ScenarioFailedError(tag, attempt, exc) from exc
                if cancel_token is not None and cancel_token.cancelled:
                    self.logger.warning(
                        "[%s] %s, not starting attempt %d",
                        tag, cancel_token.reason, attempt + 1,
                    )
                    raise ScenarioCancelledError(tag, attempt, exc) from exc
                self.logger.info(
                    "[%s] regenerating test for attempt %d", tag, attempt + 1
                )
                continue

            self.logger.info("[%s] passed on attempt %d", tag, attempt)
            return

    async def aclose(self) -> None:
        """Release resources held by the generator and executor."""
        for collaborator in (self.generator, self.executor):
            close = getattr(collaborator, "aclose", None)
            if close is not None:
                await close()
