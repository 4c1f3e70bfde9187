# Copyright (c) Syntropy Systems
"""Pytest fixtures and in-memory collaborators for reprise tests."""

from __future__ import annotations

import asyncio
import os
import tempfile
from collections.abc import Generator
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
import yaml

from reprise.errors import ExecutionError, GenerationError
from reprise.models.artifact import Artifact
from reprise.models.scenario import Scenario

if TYPE_CHECKING:
    from reprise.cancellation import CancellationToken

# Store original cwd at module load time
_original_cwd = Path.cwd()


class FakeGenerator:
    """Generator that records calls and fails for chosen tags."""

    def __init__(self, fail_tags: set[str] | None = None) -> None:
        self.fail_tags = fail_tags or set()
        self.calls: list[tuple[str, str]] = []
        self.artifacts: list[Artifact] = []

    async def generate(
        self,
        prompt: str,
        tag: str,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> Artifact:
        self.calls.append((prompt, tag))
        if tag in self.fail_tags:
            msg = "Generator returned empty content"
            raise GenerationError(msg, f"tag={tag}")
        artifact = Artifact(
            tag=tag,
            path=Path(f"generated/{tag}-{len(self.calls)}.spec.ts"),
            content=f"// attempt {len(self.calls)}\n{prompt}",
        )
        self.artifacts.append(artifact)
        return artifact


class FakeExecutor:
    """Executor whose result per tag is scripted.

    ``failures[tag]`` is how many executions of that tag fail before one
    passes; tags in ``hang`` never finish.
    """

    def __init__(
        self,
        failures: dict[str, int] | None = None,
        hang: set[str] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.failures = dict(failures or {})
        self.hang = hang or set()
        self.delay = delay
        self.executed: list[Artifact] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def execute(
        self,
        artifact: Artifact,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.executed.append(artifact)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if artifact.tag in self.hang:
                await asyncio.Event().wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            remaining = self.failures.get(artifact.tag, 0)
            if remaining:
                self.failures[artifact.tag] = remaining - 1
                msg = f"1 failed: {artifact.tag}"
                raise ExecutionError(msg, exit_code=1, output=msg)
        finally:
            self.in_flight -= 1


class FakeRunner:
    """Scenario runner recording start/finish order.

    Tags in ``fail_tags`` raise, tags in ``hang_tags`` never finish.
    """

    def __init__(
        self,
        fail_tags: set[str] | None = None,
        hang_tags: set[str] | None = None,
        delays: dict[str, float] | None = None,
    ) -> None:
        self.fail_tags = fail_tags or set()
        self.hang_tags = hang_tags or set()
        self.delays = delays or {}
        self.events: list[tuple[str, str]] = []
        self.prompts: dict[str, str] = {}
        self.tokens: dict[str, CancellationToken | None] = {}
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def started(self) -> list[str]:
        return [tag for event, tag in self.events if event == "start"]

    async def run(
        self,
        prompt: str,
        tag: str,
        attempts: int = 2,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.events.append(("start", tag))
        self.prompts[tag] = prompt
        self.tokens[tag] = cancel_token
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if tag in self.hang_tags:
                await asyncio.Event().wait()
            await asyncio.sleep(self.delays.get(tag, 0))
            if tag in self.fail_tags:
                msg = f"Scenario {tag} failed after {attempts} attempt(s)"
                raise RuntimeError(msg)
        finally:
            self.in_flight -= 1
            self.events.append(("finish", tag))


def make_scenarios(*tags: str, prompt: str = "open the home page") -> list[Scenario]:
    """Build scenarios with the given tags."""
    return [
        Scenario(tag=tag, description=f"scenario {tag}", prompt=prompt) for tag in tags
    ]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def reprise_project(temp_dir: Path) -> Generator[Path, None, None]:
    """Create a temporary reprise project with a three-scenario catalog."""
    reprise_dir = temp_dir / ".reprise"
    reprise_dir.mkdir()

    with (reprise_dir / "config.yaml").open("w") as f:
        yaml.dump({"catalog": "scenarios.yaml"}, f)

    catalog = [
        {"tag": "login", "description": "Sign in", "prompt": "log in at ${CONFIG.BASE_URL}"},
        {"tag": "search", "description": "Search", "prompt": "search for shoes"},
        {"tag": "checkout", "description": "Checkout", "prompt": "buy the shoes"},
    ]
    with (temp_dir / "scenarios.yaml").open("w") as f:
        yaml.dump(catalog, f)

    # Change to temp directory
    os.chdir(temp_dir)

    yield temp_dir

    # Always return to original cwd
    os.chdir(_original_cwd)
