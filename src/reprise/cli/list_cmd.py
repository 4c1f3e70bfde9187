# Copyright (c) Syntropy Systems
"""reprise list command."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from reprise.cli.run import project_root
from reprise.config import find_reprise_dir, load_config
from reprise.models.scenario import CatalogError, load_catalog

console = Console()

PROMPT_PREVIEW = 60


def list_scenarios(
    catalog: Optional[Path] = typer.Option(
        None,
        "--catalog", "-c",
        help="Scenario catalog file (JSON or YAML)",
    ),
) -> None:
    """Show the scenarios in the catalog."""
    config = load_config(find_reprise_dir())
    catalog_path = catalog or project_root() / config.catalog

    try:
        scenarios = load_catalog(catalog_path, allow_duplicates=True)
    except (OSError, CatalogError) as e:
        console.print(f"[red]Error loading scenarios:[/red] {e}")
        raise typer.Exit(1) from e

    if not scenarios:
        console.print("[yellow]No scenarios in catalog[/yellow]")
        return

    table = Table(title=f"Scenarios: {catalog_path.name}")
    table.add_column("#", style="dim")
    table.add_column("Tag", style="cyan")
    table.add_column("Description")
    table.add_column("Prompt", style="dim")

    seen: set[str] = set()
    for i, scenario in enumerate(scenarios, start=1):
        prompt = scenario.prompt.replace("\n", " ")
        if len(prompt) > PROMPT_PREVIEW:
            prompt = prompt[: PROMPT_PREVIEW - 3] + "..."
        tag = scenario.tag
        if tag in seen:
            tag = f"{tag} [red](duplicate)[/red]"
        seen.add(scenario.tag)
        table.add_row(str(i), tag, scenario.description, prompt)

    console.print(table)
