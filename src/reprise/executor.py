# Copyright (c) Syntropy Systems
"""Executor collaborator: runs a generated test with orphan prevention."""
from __future__ import annotations

import asyncio
import contextlib
import ctypes
import logging
import os
import signal
import sys
from typing import TYPE_CHECKING, Protocol

from reprise.errors import ExecutionError, truncate

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from reprise.cancellation import CancellationToken
    from reprise.models.artifact import Artifact

DEFAULT_TEST_COMMAND: tuple[str, ...] = (
    "npx",
    "playwright",
    "test",
    "{path}",
    "--reporter=list",
    "--workers=1",
    "--retries=0",
)

OUTPUT_TAIL_CHARS = 2000


class Executor(Protocol):
    """Runs an artifact; raises if its checks do not pass."""

    async def execute(
        self,
        artifact: Artifact,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        ...


def setup_pdeathsig() -> None:
    """Set PDEATHSIG so the test process dies with its parent.

    Only works on Linux.
    """
    if sys.platform != "linux":
        return
    try:
        libc = ctypes.CDLL("libc.so.6", use_errno=True)
        pr_set_pdeathsig = 1
        libc.prctl(pr_set_pdeathsig, signal.SIGKILL)
    except (AttributeError, OSError):
        # Can't set PDEATHSIG, continue without it
        return


def render_command(template: Sequence[str], artifact: Artifact) -> list[str]:
    """Substitute ``{path}`` and ``{tag}`` in each argv token."""
    return [
        token.replace("{path}", str(artifact.path)).replace("{tag}", artifact.tag)
        for token in template
    ]


class CommandExecutor:
    """Runs a test command for each artifact in its own process group.

    Features:
    - start_new_session=True so the whole test process tree can be signalled
    - PDEATHSIG on Linux to prevent orphans
    - output captured (stderr merged) and optionally saved to <log_dir>/<tag>.log
    - SIGTERM, then SIGKILL after a grace period, on timeout or cancellation
    """

    def __init__(
        self,
        command: Sequence[str] = DEFAULT_TEST_COMMAND,
        workdir: Path | None = None,
        log_dir: Path | None = None,
        timeout_s: float | None = None,
        kill_grace_period: float = 10.0,
        env: dict[str, str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize a command executor.

        Args:
            command: argv template; ``{path}`` becomes the artifact path
            workdir: Working directory for the test command
            log_dir: Directory for per-tag output logs
            timeout_s: Kill the test if it runs longer than this
            kill_grace_period: Seconds between SIGTERM and SIGKILL
            env: Additional environment variables

        """
        self.command = list(command)
        self.workdir = workdir
        self.log_dir = log_dir
        self.timeout_s = timeout_s
        self.kill_grace_period = kill_grace_period
        self.logger = logger if logger is not None else logging.getLogger(__name__)

        # Merge environment
        self.env = os.environ.copy()
        self.env["FORCE_COLOR"] = "1"
        if env:
            self.env.update(env)

    async def execute(
        self,
        artifact: Artifact,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        """Run the test for ``artifact``; raise ExecutionError on failure."""
        argv = render_command(self.command, artifact)
        self.logger.info("Running test command: %s", " ".join(argv))

        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=self.env,
            cwd=str(self.workdir) if self.workdir else None,
            start_new_session=True,  # Creates new process group
            preexec_fn=setup_pdeathsig if sys.platform == "linux" else None,  # noqa: PLW1509
        )

        communicate = asyncio.ensure_future(process.communicate())
        waiters: set[asyncio.Future[object]] = {communicate}
        cancel_wait: asyncio.Task[bool] | None = None
        if cancel_token is not None:
            cancel_wait = asyncio.ensure_future(cancel_token.wait())
            waiters.add(cancel_wait)

        reason: str | None = None
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=self.timeout_s, return_when=asyncio.FIRST_COMPLETED
            )
            if communicate not in done:
                reason = "cancelled" if cancel_wait in done else "timed out"
                self.logger.warning("Killing test for %s (%s)", artifact.tag, reason)
                await self._kill(process)
        except asyncio.CancelledError:
            await self._kill(process)
            _ = communicate.cancel()
            raise
        finally:
            if cancel_wait is not None:
                _ = cancel_wait.cancel()

        stdout, _ = await communicate
        output = (stdout or b"").decode(errors="replace")
        self._save_output(artifact.tag, output)

        if reason is not None:
            msg = f"Test {artifact.tag} {reason}"
            raise ExecutionError(msg, exit_code=process.returncode, output=output)

        if process.returncode != 0:
            tail = output[-OUTPUT_TAIL_CHARS:]
            msg = (
                f"Test {artifact.tag} failed with exit code {process.returncode}: "
                f"{truncate(tail.strip())}"
            )
            raise ExecutionError(msg, exit_code=process.returncode, output=tail)

        self.logger.info("Test passed: %s", artifact.tag)

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        """Terminate the process group: SIGTERM, then SIGKILL after the grace period."""
        if process.returncode is not None:
            return

        try:
            pgid = os.getpgid(process.pid)
        except (OSError, ProcessLookupError):
            # Process already gone
            return

        with contextlib.suppress(OSError, ProcessLookupError):
            os.killpg(pgid, signal.SIGTERM)

        try:
            _ = await asyncio.wait_for(process.wait(), timeout=self.kill_grace_period)
        except asyncio.TimeoutError:
            # Still alive - SIGKILL
            with contextlib.suppress(OSError, ProcessLookupError):
                os.killpg(pgid, signal.SIGKILL)
            _ = await process.wait()

    def _save_output(self, tag: str, output: str) -> None:
        if self.log_dir is None:
            return
        self.log_dir.mkdir(parents=True, exist_ok=True)
        _ = (self.log_dir / f"{tag}.log").write_text(output)
