# Copyright (c) Syntropy Systems
"""reprise init command."""

from pathlib import Path

import typer
import yaml
from rich.console import Console

from reprise.config import RepriseConfig

console = Console()

EXAMPLE_SCENARIOS = [
    {
        "tag": "login",
        "description": "User can sign in",
        "prompt": (
            "Open ${CONFIG.BASE_URL}/login, sign in as ${CONFIG.USERNAME} "
            "with password ${CONFIG.PASSWORD} and check the dashboard is shown."
        ),
    },
]


def init(
    path: Path = typer.Argument(
        Path(),
        help="Directory to initialize (default: current directory)",
    ),
) -> None:
    """Initialize a new reprise project.

    Creates a .reprise directory with configuration and an example
    scenario catalog.
    """
    target = path.resolve()
    reprise_dir = target / ".reprise"

    if reprise_dir.exists():
        console.print(f"[yellow]Already initialized:[/yellow] {reprise_dir}")
        return

    defaults = RepriseConfig()
    reprise_dir.mkdir(parents=True)

    config = {
        "concurrency": defaults.concurrency,
        "scenario_timeout_ms": defaults.scenario_timeout_ms,
        "retry_attempts": defaults.retry_attempts,
        "continue_on_failure": defaults.continue_on_failure,
        "catalog": defaults.catalog,
        "output_dir": defaults.output_dir,
        "generator_url": defaults.generator_url,
        "test_command": defaults.test_command,
        "placeholders": {},
    }

    config_path = reprise_dir / "config.yaml"
    with config_path.open("w") as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)

    catalog_path = target / defaults.catalog
    if not catalog_path.exists():
        with catalog_path.open("w") as f:
            yaml.dump(EXAMPLE_SCENARIOS, f, default_flow_style=False, sort_keys=False)

    console.print(f"[green]Initialized reprise project:[/green] {reprise_dir}")
    console.print(f"  [dim]config:[/dim] {config_path}")
    console.print(f"  [dim]catalog:[/dim] {catalog_path}")
