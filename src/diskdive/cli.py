"""CLI interface for diskdive."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

import typer
from typer.core import TyperGroup

from diskdive import __version__
from diskdive.cache import ResultCache
from diskdive.config import ENV_ANALYZE_PATH, Settings, expand_path, load_settings
from diskdive.display import console, show_scan_report, show_scanning_progress, show_settings
from diskdive.errors import ScanError
from diskdive.models import display_path, format_size
from diskdive.overview import create_overview_entries, prefetch_overview_cache
from diskdive.scanner import ScanProgress, scan_path

logger = logging.getLogger(__name__)


class ExploreByDefault(TyperGroup):
    """Treat `diskdive PATH` and `diskdive --no-cache` as the explore command."""

    def parse_args(self, ctx, args):
        if args and args[0] not in self.commands and args[0] not in ("-v", "--version", "--help"):
            args = ["explore", *args]
        return super().parse_args(ctx, args)


# Create Typer app
app = typer.Typer(
    name="diskdive",
    cls=ExploreByDefault,
    help="Interactive disk usage explorer - find what fills your disk and move it to the Trash",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"diskdive version {__version__}")
        raise typer.Exit()


def setup_logging(settings: Settings) -> None:
    """Send log records to the log file; the terminal belongs to the UI."""
    level = getattr(logging, settings.log_level.upper(), logging.WARNING)
    log_file = settings.resolved_log_file
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file)
    except OSError:
        handler = logging.NullHandler()
    handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=[handler])


def _settings(no_cache: bool, log_level: Optional[str]) -> Settings:
    settings = load_settings()
    updates = {}
    if no_cache:
        updates["persist_cache"] = False
    if log_level:
        updates["log_level"] = log_level
    if updates:
        settings = settings.model_copy(update=updates)
    setup_logging(settings)
    return settings


def _make_cache(settings: Settings) -> ResultCache:
    return ResultCache(
        cache_dir=settings.cache_dir,
        persist=settings.persist_cache,
        overview_ttl=settings.overview_cache_ttl,
    )


def resolve_target(target: Optional[str]) -> Optional[str]:
    """Absolute directory for `target`, or None for the overview.

    Raises:
        typer.Exit: If the target does not name a readable directory
    """
    if not target:
        return None

    try:
        path = expand_path(target).resolve()
    except (OSError, RuntimeError) as e:
        console.print(f"[red]Cannot resolve {target!r}: {e}[/red]")
        raise typer.Exit(1)

    if not path.exists():
        console.print(f"[red]No such directory: {target}[/red]")
        raise typer.Exit(1)
    if not path.is_dir():
        console.print(f"[red]Not a directory: {target}[/red]")
        raise typer.Exit(1)
    return str(path)


def start_prefetch(cache: ResultCache, settings: Settings) -> Optional[ScanProgress]:
    """Warm the overview size cache on a background thread.

    Returns:
        Progress handle whose `cancel()` stops the warm pass, or None when
        nothing is persisted
    """
    if not cache.persist:
        return None

    progress = ScanProgress()
    entries = create_overview_entries(volumes_root=settings.volumes_root)
    thread = threading.Thread(
        target=prefetch_overview_cache,
        args=(cache,),
        kwargs={
            "entries": entries,
            "timeout": settings.prefetch_timeout,
            "limit": settings.overview_concurrency,
            "progress": progress,
        },
        name="overview-prefetch",
        daemon=True,
    )
    thread.start()
    return progress


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """diskdive - interactive disk usage explorer."""
    # If no command specified, open the overview
    if ctx.invoked_subcommand is None:
        ctx.invoke(explore, path=None, no_cache=False, log_level=None)


@app.command()
def explore(
    path: Optional[str] = typer.Argument(
        None,
        envvar=ENV_ANALYZE_PATH,
        help="Directory to explore (default: overview of top-level folders)",
        show_default=False,
    ),
    no_cache: bool = typer.Option(False, "--no-cache", help="Do not read or write persisted scans"),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Log level for the log file (DEBUG, INFO, WARNING...)"
    ),
) -> None:
    """Browse disk usage interactively (default)."""
    target = resolve_target(path)
    settings = _settings(no_cache, log_level)
    cache = _make_cache(settings)

    from diskdive.tui import run_tui

    prefetch = start_prefetch(cache, settings)
    logger.info("Starting explorer at %s", target or "overview")
    try:
        run_tui(target, settings=settings, cache=cache)
    finally:
        if prefetch is not None:
            prefetch.cancel()


@app.command()
def report(
    path: str = typer.Argument(..., help="Directory to scan"),
    top: int = typer.Option(20, "--top", "-n", min=1, help="Rows to show per table"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Always rescan, ignoring persisted results"),
) -> None:
    """Scan a directory once and print its largest items and files."""
    target = resolve_target(path)
    settings = _settings(no_cache, None)
    cache = _make_cache(settings)

    cached = cache.load_from_disk(target)
    if cached is not None:
        console.print("[dim]Using cached scan[/dim]")
        show_scan_report(cached.result, target, top=top)
        return

    progress = ScanProgress()
    started = time.monotonic()
    mod_time = Path(target).stat().st_mtime

    with show_scanning_progress() as bar:
        task = bar.add_task(f"Scanning {display_path(target)}...")
        with ThreadPoolExecutor(max_workers=1) as executor:
            future = executor.submit(
                scan_path,
                target,
                progress,
                large_file_count=settings.large_file_count,
                max_workers=settings.scan_workers,
            )
            while not future.done():
                files, dirs, size = progress.snapshot()
                bar.update(
                    task,
                    description=f"Scanning {display_path(target)}... "
                    f"{files:,} files, {dirs:,} dirs, {format_size(size)}",
                )
                time.sleep(0.1)

            try:
                result = future.result()
            except ScanError as e:
                console.print(f"[red]Scan failed: {e.reason}[/red]")
                raise typer.Exit(1)

    logger.info("Scanned %s in %.1fs", target, time.monotonic() - started)
    cache.save_to_disk(target, cache.put(target, result, mod_time))
    show_scan_report(result, target, top=top)


@app.command()
def warm(
    timeout: Optional[float] = typer.Option(
        None, "--timeout", min=1, help="Seconds to wait (default: prefetch_timeout setting)"
    ),
) -> None:
    """Measure the overview folders now so the next session starts with sizes."""
    settings = _settings(False, None)
    cache = _make_cache(settings)
    if not cache.persist:
        console.print("[yellow]Persistent cache is disabled; nothing to warm.[/yellow]")
        raise typer.Exit(1)

    entries = create_overview_entries(volumes_root=settings.volumes_root)
    with show_scanning_progress() as bar:
        bar.add_task(f"Measuring {len(entries)} folders...")
        written = prefetch_overview_cache(
            cache,
            entries=entries,
            timeout=timeout or settings.prefetch_timeout,
            limit=settings.overview_concurrency,
        )

    console.print(f"[green]Stored {written} folder sizes[/green]")
    for entry in entries:
        size = cache.load_overview_size(entry.path)
        shown = format_size(size) if size is not None else "[dim]not measured[/dim]"
        console.print(f"  {entry.name:<16} {shown}")


@app.command()
def config() -> None:
    """Show the effective configuration."""
    show_settings(load_settings())


if __name__ == "__main__":
    app()
