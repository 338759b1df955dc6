"""
Rich displays for CLI operations.

This module provides progress indicators and result tables for CLI commands
using the rich library. All output goes to stderr to preserve stdout for
machine-readable output.
"""

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from imgrouter import GenerationResult, ProviderSelection, SystemStatus

# Console for stderr output (preserves stdout for machine output)
console = Console(stderr=True)

_STATE_STYLES = {"healthy": "green", "degraded": "yellow", "unhealthy": "red"}
_OVERALL_STYLES = {"operational": "green", "degraded": "yellow", "error": "red"}


@contextmanager
def generation_progress(style: str, text_to_image: bool = False) -> Iterator[None]:
    """
    Display a spinner while providers are selected and tried.

    Args:
        style: The requested style
        text_to_image: Whether there is no source image

    Yields:
        None while generation is in progress
    """
    progress = Progress(
        SpinnerColumn(spinner_name="dots"),
        TextColumn("[green]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )
    mode = "text-to-image" if text_to_image else "image-to-image"
    with progress:
        task = progress.add_task(f"Generating [bold]{style}[/bold] [dim]({mode})[/dim]", total=None)
        yield
        progress.update(task, completed=True)


def print_success_result(result: GenerationResult, output_path: Path | None = None) -> None:
    """
    Print a rich formatted success message with generation details.

    Args:
        result: The successful generation result
        output_path: Where the image bytes were saved, if they were
    """
    table = Table.grid(padding=(0, 2))
    table.add_column(style="cyan", justify="right", vertical="top")
    table.add_column(style="white")

    if output_path is not None:
        table.add_row("Saved to", f"[bold green]{output_path}[/bold green]")
    if result.image_url:
        table.add_row("URL", result.image_url)
    table.add_row("Provider", result.provider)
    table.add_row("Model", result.model)
    table.add_row("Cost", f"${result.cost}")
    table.add_row("Time", f"{result.processing_time:.1f}s")
    if result.prompt_used:
        table.add_row("Prompt", f"[dim]{result.prompt_used}[/dim]")

    panel = Panel(
        table,
        title="[bold green]✓ Image Generated[/bold green]",
        border_style="green",
        padding=(1, 2),
    )
    console.print()
    console.print(panel)


def print_selection(selection: ProviderSelection) -> None:
    """Print the provider the manager would pick and why."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="cyan", justify="right")
    table.add_column(style="white")
    table.add_row("Provider", f"[bold]{selection.provider_name}[/bold]")
    table.add_row("Tier", selection.provider.tier.display_name)
    table.add_row("Score", f"{selection.score:g}")
    table.add_row("Est. cost", f"${selection.estimated_cost}")
    table.add_row("Est. time", f"{selection.estimated_time:g}s")
    table.add_row("Reason", f"[dim]{selection.reason}[/dim]")
    console.print(Panel(table, title="Provider selection", border_style="cyan"))


def print_system_status(status: SystemStatus) -> None:
    """Print one row per provider plus the overall verdict."""
    table = Table(title="Providers")
    table.add_column("Name", style="bold")
    table.add_column("Health")
    table.add_column("Circuit")
    table.add_column("Tier")
    table.add_column("Message", style="dim")
    for p in status.providers:
        color = _STATE_STYLES.get(p.status.value, "white")
        table.add_row(
            p.name, f"[{color}]{p.status.value}[/{color}]", p.circuit, p.tier, p.message or ""
        )
    console.print(table)
    color = _OVERALL_STYLES.get(status.overall, "white")
    console.print(
        f"Status: [{color}]{status.overall}[/{color}] "
        f"({status.healthy_providers}/{status.total_providers} healthy)"
    )
    if status.available_styles:
        console.print(f"Available styles: {', '.join(status.available_styles)}")


def print_styles(rows: Sequence[tuple[str, str, str]]) -> None:
    """Print (id, name, description) rows."""
    table = Table(title="Styles")
    table.add_column("Id", style="bold cyan")
    table.add_column("Name")
    table.add_column("Description", style="dim")
    for row in rows:
        table.add_row(*row)
    console.print(table)


def print_warning(message: str) -> None:
    """Print a warning message in yellow."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_error(message: str) -> None:
    """Print an error message in red."""
    console.print(f"[red]✗[/red] {message}")
