# Copyright (c) Syntropy Systems
"""Cooperative cancellation flag shared down the call chain."""
from __future__ import annotations

import asyncio
import contextlib


class CancellationToken:
    """A one-shot flag that suspension points can check or wait on.

    Unlike ``asyncio.Task.cancel`` the token is advisory: code holding it
    decides where to stop. The orchestrator sets it when a scenario times
    out, and the CLI sets the run-level token on SIGINT/SIGTERM.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        """Whether cancel() has been called."""
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """Set the flag. Later calls keep the first reason."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait until cancelled or until timeout elapses.

        Returns True if the token was cancelled.
        """
        if timeout is None:
            await self._event.wait()
            return True
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        return self._event.is_set()
