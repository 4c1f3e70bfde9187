# Copyright (c) Syntropy Systems
"""Bounded retry with exponential backoff for single fallible operations."""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Generic, Optional, TypeVar, Union

from reprise.errors import ActionError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from reprise.cancellation import CancellationToken

    ErrorCallback = Callable[[Exception, int], Union[None, Awaitable[None]]]
    RetryFilter = Callable[[Exception], bool]
    Sleep = Callable[[float], Awaitable[None]]

T = TypeVar("T")


@dataclass(frozen=True)
class RetryOptions:
    """How many times to try an action and how long to wait in between.

    ``timeout_ms`` is the per-attempt budget handed to browser calls by the
    interaction helpers; the retrier itself does not enforce it. When
    ``retry_if`` returns False for an error, no further attempts are made.
    """

    retries: int = 3
    timeout_ms: int = 5000
    delay_ms: int = 500
    verbose: bool = False
    force: bool = False
    scroll: bool = True
    on_error: Optional[ErrorCallback] = None
    retry_if: Optional[RetryFilter] = None
    cancel_token: Optional[CancellationToken] = None

    def __post_init__(self) -> None:
        if self.retries < 1:
            msg = f"retries must be at least 1, got {self.retries}"
            raise ValueError(msg)
        if self.delay_ms < 0:
            msg = f"delay_ms cannot be negative, got {self.delay_ms}"
            raise ValueError(msg)
        if self.timeout_ms <= 0:
            msg = f"timeout_ms must be positive, got {self.timeout_ms}"
            raise ValueError(msg)

    def with_overrides(self, **changes: object) -> RetryOptions:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)  # type: ignore[arg-type]


@dataclass
class ActionOutcome(Generic[T]):
    """Result of a retried action. Failures are reported here, not raised."""

    success: bool
    attempts: int
    duration_ms: int
    value: Optional[T] = None
    error: Optional[ActionError] = None

    def unwrap(self) -> T:
        """Return the value, raising the recorded error on failure."""
        if self.success:
            return self.value  # type: ignore[return-value]
        if self.error is None:
            msg = f"Failed outcome after {self.attempts} attempt(s) has no error"
            raise ActionError(msg, attempt=self.attempts)
        raise self.error


def backoff_delay(delay_ms: int, attempt: int) -> float:
    """Seconds to wait after the given (1-based) failed attempt."""
    return delay_ms * 2 ** (attempt - 1) / 1000


class ActionRetrier:
    """Runs an async action until it succeeds or the retries run out.

    Backoff doubles after every failure, starting at ``delay_ms``, with no
    jitter. A ``cancel_token`` in the options cuts the backoff short and
    ends the loop with a failed outcome.
    """

    def __init__(
        self,
        logger: logging.Logger | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self._sleep = sleep or asyncio.sleep

    async def execute(
        self,
        action: Callable[[], Awaitable[T]],
        options: RetryOptions | None = None,
        name: str = "CustomAction",
        target: str | None = None,
    ) -> ActionOutcome[T]:
        """Run ``action`` with retries and return its outcome."""
        opts = options or RetryOptions()
        started = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        attempt = 0
        while True:
            attempt += 1
            if opts.verbose:
                self.logger.info(
                    "%s attempt %d/%d (target=%s)", name, attempt, opts.retries, target
                )
            try:
                value = await action()
            except Exception as exc:  # noqa: BLE001
                last_attempt = attempt >= opts.retries or (
                    opts.retry_if is not None and not opts.retry_if(exc)
                )
                self.logger.warning(
                    "%s attempt %d failed (target=%s, last=%s): %s",
                    name, attempt, target, last_attempt, exc,
                )

                if opts.on_error is not None:
                    maybe_awaitable = opts.on_error(exc, attempt)
                    if inspect.isawaitable(maybe_awaitable):
                        await maybe_awaitable

                if last_attempt:
                    return self._failure(name, target, attempt, exc, elapsed_ms())

                if await self._backoff(opts, attempt):
                    self.logger.warning(
                        "%s cancelled after attempt %d (target=%s)", name, attempt, target
                    )
                    return self._failure(name, target, attempt, exc, elapsed_ms())
                continue

            duration = elapsed_ms()
            self.logger.debug(
                "%s succeeded (target=%s, attempts=%d, duration=%dms)",
                name, target, attempt, duration,
            )
            return ActionOutcome(
                success=True, value=value, attempts=attempt, duration_ms=duration
            )

    async def _backoff(self, opts: RetryOptions, attempt: int) -> bool:
        """Sleep before the next attempt. Returns True if cancelled."""
        delay = backoff_delay(opts.delay_ms, attempt)
        token = opts.cancel_token
        if token is None:
            await self._sleep(delay)
            return False
        if token.cancelled:
            return True

        sleeper = asyncio.ensure_future(self._sleep(delay))
        cancelled = asyncio.ensure_future(token.wait())
        try:
            _ = await asyncio.wait(
                {sleeper, cancelled}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in (sleeper, cancelled):
                _ = waiter.cancel()
        return token.cancelled

    def _failure(
        self,
        name: str,
        target: str | None,
        attempt: int,
        exc: Exception,
        duration: int,
    ) -> ActionOutcome[T]:
        error = ActionError(
            f"{name} failed after {attempt} attempt(s): {exc}",
            target=target,
            attempt=attempt,
        )
        error.__cause__ = exc
        self.logger.error(
            "%s failed permanently (target=%s, attempts=%d, duration=%dms): %s",
            name, target, attempt, duration, exc,
        )
        return ActionOutcome(
            success=False, error=error, attempts=attempt, duration_ms=duration
        )
