# Copyright (c) Syntropy Systems
"""reprise run command."""
from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from reprise.cancellation import CancellationToken
from reprise.config import (
    build_config_map,
    find_reprise_dir,
    load_config,
    load_env_file,
    mask_config_map,
    run_configuration,
    validate_environment,
)
from reprise.errors import OrchestrationError, OrchestrationErrorKind
from reprise.executor import CommandExecutor
from reprise.generator import HttpGenerator
from reprise.models.scenario import CatalogError, load_catalog
from reprise.orchestrator import ScenarioOrchestrator
from reprise.rerun import ScenarioRetryRunner

if TYPE_CHECKING:
    from collections.abc import Sequence

    from reprise.config import RepriseConfig
    from reprise.models.scenario import Scenario
    from reprise.models.stats import RunConfiguration, RunStatistics

console = Console()
logger = logging.getLogger("reprise")


def project_root() -> Path:
    """Directory holding .reprise, or the current directory."""
    reprise_dir = find_reprise_dir()
    if reprise_dir is None:
        return Path.cwd()
    return reprise_dir.parent


def configure_logging(verbose: bool, log_file: Path | None = None) -> None:
    """Send reprise log records to the console and optionally a file."""
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    logger.addHandler(RichHandler(console=console, show_path=False, markup=False))

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)


def build_runner(config: RepriseConfig, root: Path) -> ScenarioRetryRunner:
    """Wire the HTTP generator and command executor into a retry runner."""
    generator = HttpGenerator(
        url=config.generator_url,
        output_dir=root / config.output_dir,
    )
    executor = CommandExecutor(
        command=config.test_command,
        workdir=root,
        log_dir=root / config.log_dir,
        timeout_s=config.execution_timeout,
        kill_grace_period=config.kill_grace_period,
    )
    return ScenarioRetryRunner(generator, executor)


class AbortOnSignal:
    """Cancel a token on the first SIGINT/SIGTERM.

    The handlers are removed as soon as one signal arrives, so a second
    signal gets the default behavior and stops the process.
    """

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        token: CancellationToken,
    ) -> None:
        self.loop = loop
        self.token = token
        self.installed: list[signal.Signals] = []

    def install(self) -> None:
        """Register the handlers where the platform allows it."""
        for signum in self.SIGNALS:
            with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
                self.loop.add_signal_handler(signum, self.handle, signum.name)
                self.installed.append(signum)

    def handle(self, name: str) -> None:
        logger.warning(
            "Received %s. Not starting any more scenarios; send it again to stop now",
            name,
        )
        self.token.cancel(name)
        self.remove()

    def remove(self) -> None:
        """Restore default handling for every signal this object installed."""
        while self.installed:
            _ = self.loop.remove_signal_handler(self.installed.pop())


async def _execute(
    orchestrator: ScenarioOrchestrator,
    scenarios: Sequence[Scenario],
    run_config: RunConfiguration,
    tag: str | None,
) -> RunStatistics:
    """Run the orchestrator with SIGINT/SIGTERM wired to the abort token."""
    abort_token = CancellationToken()
    signals = AbortOnSignal(asyncio.get_running_loop(), abort_token)
    signals.install()

    try:
        return await orchestrator.run(scenarios, run_config, tag, abort_token)
    finally:
        signals.remove()
        close = getattr(orchestrator.runner, "aclose", None)
        if close is not None:
            await close()


def print_summary(stats: RunStatistics) -> None:
    """Print the totals table and the failed tags."""
    table = Table(title="Test Run Summary")
    table.add_column("Total", justify="right")
    table.add_column("Passed", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Duration", justify="right")

    duration = stats.duration_ms or 0
    table.add_row(
        str(stats.total),
        str(stats.passed),
        str(stats.failed),
        f"{duration / 1000:.1f}s",
    )
    console.print(table)

    if stats.failed_tags:
        console.print(f"[red]Failed scenarios:[/red] {', '.join(stats.failed_tags)}")


def run(
    tag: Optional[str] = typer.Argument(
        None,
        help="Scenario tag to run (default: all scenarios)",
    ),
    env: Optional[str] = typer.Argument(
        None,
        help="Target environment: qa, uat or prod (default: $ENV or qa)",
    ),
    catalog: Optional[Path] = typer.Option(
        None,
        "--catalog", "-c",
        help="Scenario catalog file (JSON or YAML)",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Also write debug logs to this file",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Show debug logging",
    ),
) -> None:
    """Generate, run and retry test scenarios.

    Scenarios run in chunks of CONCURRENCY, each limited to SCENARIO_TIMEOUT
    milliseconds and RETRY_ATTEMPTS generate-and-run attempts. Exits with
    code 1 if any scenario fails.
    """
    root = project_root()
    _ = load_env_file(root)

    try:
        environment = validate_environment(env or os.environ.get("ENV"))
    except OrchestrationError as e:
        console.print(f"[red]Orchestration error:[/red] {e.message}")
        if e.details:
            console.print(f"  [dim]details:[/dim] {e.details}")
        raise typer.Exit(1) from e

    config = load_config(find_reprise_dir())
    run_config = run_configuration(config)
    if verbose and not run_config.verbose:
        run_config = run_config.model_copy(update={"verbose": True})
    configure_logging(run_config.verbose, log_file)

    catalog_path = catalog or root / config.catalog
    try:
        scenarios = load_catalog(catalog_path)
    except (OSError, CatalogError) as e:
        console.print(f"[red]Error loading scenarios:[/red] {e}")
        raise typer.Exit(1) from e

    config_map = build_config_map(environment, extra=config.placeholders)
    logger.info(
        "Starting test run in %s environment with tag %s", environment, tag or "ALL"
    )
    logger.debug("Using configuration: %s", mask_config_map(config_map))

    orchestrator = ScenarioOrchestrator(build_runner(config, root), config_map)

    try:
        stats = asyncio.run(_execute(orchestrator, scenarios, run_config, tag))
    except OrchestrationError as e:
        if e.statistics is not None:
            print_summary(e.statistics)
        label = "Run aborted" if e.kind is OrchestrationErrorKind.ABORTED else "Orchestration error"
        console.print(f"[red]{label}:[/red] {e.message}")
        if e.details:
            console.print(f"  [dim]details:[/dim] {e.details}")
        raise typer.Exit(1) from e
    except Exception as e:
        logger.exception("Unexpected error")
        console.print(f"[red]Unexpected error:[/red] {e}")
        raise typer.Exit(1) from e

    print_summary(stats)
    if not stats.success:
        raise typer.Exit(1)

    if stats.total == 0:
        console.print("[yellow]No scenarios to run[/yellow]")
    else:
        console.print("[green]Test run completed successfully[/green]")
