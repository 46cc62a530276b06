"""Rich terminal display for the non-interactive commands."""

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from diskdive.config import Settings
from diskdive.models import ScanResult, display_path, format_size

console = Console()

__all__ = [
    "console",
    "format_size",
    "show_scan_report",
    "show_scanning_progress",
    "show_settings",
]


def _percent(size: int, total: int) -> str:
    if total <= 0:
        return "-"
    return f"{size / total * 100:.1f}%"


def show_scan_report(result: ScanResult, path: str, top: int = 20) -> None:
    """Display the largest children and largest files of a scanned directory.

    Args:
        result: Completed scan
        path: Directory that was scanned
        top: Maximum rows per table
    """
    console.print(
        f"[bold]{display_path(path)}[/bold]  "
        f"[cyan]{format_size(result.total_size)}[/cyan] "
        f"[dim]in {result.total_files:,} files[/dim]"
    )
    console.print()

    if not result.entries:
        console.print("[dim]Nothing to report: the directory is empty or unreadable.[/dim]")
        return

    table = Table(title="Largest Items", show_header=True, header_style="bold")
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("Share", justify="right")

    for entry in result.entries[:top]:
        name = f"[bold]{entry.name}/[/bold]" if entry.is_dir else entry.name
        table.add_row(name, format_size(entry.size), _percent(entry.size, result.total_size))

    console.print(table)
    if len(result.entries) > top:
        console.print(f"[dim]...and {len(result.entries) - top} more[/dim]")

    if result.large_files:
        console.print()
        files = Table(title="Largest Files", show_header=True, header_style="bold yellow")
        files.add_column("File")
        files.add_column("Size", justify="right")
        for item in result.large_files[:top]:
            files.add_row(display_path(item.path), format_size(item.size))
        console.print(files)


def show_settings(settings: Settings) -> None:
    """Display the effective configuration."""
    table = Table(title="Configuration", show_header=True, header_style="bold")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    for name, value in settings.model_dump().items():
        table.add_row(name, "-" if value is None else str(value))
    table.add_row("log file (effective)", str(settings.resolved_log_file))

    console.print(table)


def show_scanning_progress() -> Progress:
    """Create a spinner for a scan whose size is not known in advance."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )
