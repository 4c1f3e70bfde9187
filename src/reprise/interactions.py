# Copyright (c) Syntropy Systems
"""Retried browser interactions.

Every helper runs through one :class:`ActionRetrier` and differs only in
the checks wrapped around the browser call:

- ``ActionableCheck``: element is visible and enabled (skipped with
  ``force=True``)
- ``ScrollIntoView``: bring the element on screen (skipped with
  ``scroll=False``)
- ``WrittenValueCheck``: read back a filled value and fail the attempt if
  it differs

Browser objects are typed as protocols shaped like Playwright's async API,
so any compatible page or locator works.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Protocol, TypeVar, Union

from reprise.actions import ActionOutcome, ActionRetrier, RetryOptions
from reprise.errors import ActionError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

T = TypeVar("T")


class Locator(Protocol):
    """The part of a browser locator the helpers rely on."""

    async def wait_for(self, *, state: str = ..., timeout: float | None = ...) -> None:
        ...

    async def is_enabled(self, *, timeout: float | None = ...) -> bool:
        ...

    async def scroll_into_view_if_needed(self, *, timeout: float | None = ...) -> None:
        ...

    async def click(self, *, force: bool = ..., timeout: float | None = ...) -> None:
        ...

    async def fill(self, value: str, *, timeout: float | None = ...) -> None:
        ...

    async def input_value(self, *, timeout: float | None = ...) -> str:
        ...


class Response(Protocol):
    """A network response seen by the page."""

    @property
    def url(self) -> str:
        ...

    @property
    def status(self) -> int:
        ...


class Page(Protocol):
    """The part of a browser page the helpers rely on."""

    def locator(self, selector: str) -> Locator:
        ...

    async def wait_for_event(
        self,
        event: str,
        predicate: Callable[[Response], bool] | None = ...,
        timeout: float | None = ...,
    ) -> Response:
        ...


class Check(Protocol):
    """A condition evaluated around an interaction attempt."""

    async def __call__(self, locator: Locator, options: RetryOptions) -> None:
        ...


class ActionableCheck:
    """Fail the attempt unless the element is visible and enabled."""

    async def __call__(self, locator: Locator, options: RetryOptions) -> None:
        if options.force:
            return
        await locator.wait_for(state="visible", timeout=options.timeout_ms)
        if not await locator.is_enabled(timeout=options.timeout_ms):
            msg = "Element is not enabled"
            raise ActionError(msg)


class ScrollIntoView:
    """Scroll the element into view when the options ask for it."""

    async def __call__(self, locator: Locator, options: RetryOptions) -> None:
        if options.scroll:
            await locator.scroll_into_view_if_needed(timeout=options.timeout_ms)


@dataclass(frozen=True)
class WrittenValueCheck:
    """Fail the attempt if the element does not hold ``expected``."""

    expected: str

    async def __call__(self, locator: Locator, options: RetryOptions) -> None:
        actual = await locator.input_value(timeout=options.timeout_ms)
        if actual != self.expected:
            msg = (
                f'Text verification failed. Expected: "{self.expected}", '
                f'Got: "{actual}"'
            )
            raise ActionError(msg)


ACTIONABLE = ActionableCheck()
SCROLL = ScrollIntoView()


@dataclass(frozen=True)
class InteractionPolicy:
    """Checks to run before and after the interaction itself."""

    before: tuple[Check, ...] = ()
    after: tuple[Check, ...] = ()

    async def run(
        self,
        locator: Locator,
        options: RetryOptions,
        body: Callable[[], Awaitable[T]],
    ) -> T:
        for check in self.before:
            await check(locator, options)
        value = await body()
        for check in self.after:
            await check(locator, options)
        return value


@dataclass
class Interactions:
    """Retried interactions bound to one retrier and default options."""

    retrier: ActionRetrier
    defaults: RetryOptions = field(default_factory=RetryOptions)

    def _options(self, options: Optional[RetryOptions]) -> RetryOptions:
        return options if options is not None else self.defaults

    async def click(
        self,
        page: Page,
        selector: str,
        options: RetryOptions | None = None,
    ) -> ActionOutcome[None]:
        """Click an element after checking it can be interacted with."""
        opts = self._options(options)
        policy = InteractionPolicy(before=(ACTIONABLE, SCROLL))

        async def attempt() -> None:
            element = page.locator(selector)
            await policy.run(
                element,
                opts,
                lambda: element.click(force=opts.force, timeout=opts.timeout_ms),
            )

        return await self.retrier.execute(attempt, opts, "Click", selector)

    async def fill(
        self,
        page: Page,
        selector: str,
        text: str,
        options: RetryOptions | None = None,
    ) -> ActionOutcome[None]:
        """Fill a field and confirm the written value reads back unchanged."""
        opts = self._options(options)
        policy = InteractionPolicy(
            before=(ACTIONABLE, SCROLL),
            after=(WrittenValueCheck(text),),
        )

        async def attempt() -> None:
            element = page.locator(selector)
            await policy.run(
                element,
                opts,
                lambda: element.fill(text, timeout=opts.timeout_ms),
            )

        return await self.retrier.execute(attempt, opts, "Fill", selector)

    async def expect(
        self,
        locator: Locator,
        assertion: Callable[[Locator], Awaitable[T]],
        options: RetryOptions | None = None,
        checks: Sequence[Check] = (),
    ) -> ActionOutcome[T]:
        """Retry an assertion against a locator until it holds."""
        opts = self._options(options)
        policy = InteractionPolicy(before=(SCROLL, *checks))

        async def attempt() -> T:
            return await policy.run(locator, opts, lambda: assertion(locator))

        return await self.retrier.execute(attempt, opts, "Expect", str(locator))

    async def wait_for_response(
        self,
        page: Page,
        url_pattern: Union[str, re.Pattern[str]],
        options: RetryOptions | None = None,
    ) -> ActionOutcome[Response]:
        """Wait for a network response whose URL matches the pattern.

        A string pattern matches as a substring, a compiled pattern with
        ``search``.
        """
        opts = self._options(options)

        def matches(response: Response) -> bool:
            if isinstance(url_pattern, str):
                return url_pattern in response.url
            return url_pattern.search(response.url) is not None

        target = url_pattern if isinstance(url_pattern, str) else url_pattern.pattern

        async def attempt() -> Response:
            return await page.wait_for_event(
                "response", predicate=matches, timeout=opts.timeout_ms
            )

        return await self.retrier.execute(attempt, opts, "WaitForResponse", target)

    async def execute(
        self,
        action: Callable[[], Awaitable[T]],
        options: RetryOptions | None = None,
    ) -> ActionOutcome[T]:
        """Retry an arbitrary coroutine function."""
        return await self.retrier.execute(action, self._options(options), "CustomAction")


_default = Interactions(ActionRetrier())

click_safe = _default.click
fill_safe = _default.fill
expect_safe = _default.expect
wait_for_response_safe = _default.wait_for_response
execute_safe = _default.execute


def is_action_error(error: object) -> bool:
    """Return True for errors produced by a retried interaction."""
    return isinstance(error, ActionError)
