"""Main TUI application for diskdive."""

import logging
from functools import partial
from typing import Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.css.query import NoMatches
from textual.events import Resize as ResizeEvent
from textual.timer import Timer
from textual.widgets import Footer, Header

from diskdive.cache import ResultCache
from diskdive.config import Settings
from diskdive.explorer import Explorer
from diskdive.messages import Command, KeyPress, Message, QuitCommand, Resize, Tick, TickCommand
from diskdive.runtime import CommandRunner
from diskdive.tui.widgets import ExplorerView

logger = logging.getLogger(__name__)

TICK_INTERVAL = 0.08


class DiskDiveApp(App):
    """Interactive disk usage explorer."""

    TITLE = "diskdive"
    SUB_TITLE = "Disk Usage Explorer"

    CSS_PATH = "styles.tcss"

    BINDINGS = [
        Binding("up,k", "press('up')", "Up", show=False, priority=True),
        Binding("down,j", "press('down')", "Down", show=False, priority=True),
        Binding("enter,right,l", "press('enter')", "Open", priority=True),
        Binding("left,h,b", "press('left')", "Back", priority=True),
        Binding("space", "press('space')", "Select", priority=True),
        Binding("t,T", "press('t')", "Large files", priority=True),
        Binding("r", "press('r')", "Refresh", priority=True),
        Binding("o,O", "press('o')", "Open item", priority=True),
        Binding("f,F", "press('f')", "Reveal", priority=True),
        Binding("delete,backspace", "press('delete')", "Trash", priority=True),
        Binding("escape", "press('escape')", "Close", show=False, priority=True),
        Binding("q", "press('q')", "Quit", priority=True),
        Binding("ctrl+c", "press('ctrl+c')", "Quit", show=False, priority=True),
    ]

    def __init__(self, explorer: Explorer, runner: CommandRunner):
        super().__init__()
        self.explorer = explorer
        self.runner = runner
        self._tick_timer: Optional[Timer] = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield ExplorerView(self.explorer, id="explorer")
        yield Footer()

    def on_mount(self) -> None:
        """Seed the explorer with the terminal size and start the first scan."""
        self.explorer.handle(Resize(self.size.width, self.size.height))
        self._execute(self.explorer.start())
        self._redraw()

    def on_resize(self, event: ResizeEvent) -> None:
        self.deliver(Resize(event.size.width, event.size.height))

    def on_unmount(self) -> None:
        # Let walkers still running in worker threads stop promptly
        self.explorer.scan_progress.cancel()
        self.explorer.overview_progress.cancel()

    def action_press(self, key: str) -> None:
        self.deliver(KeyPress(key))

    def deliver(self, message: Message) -> None:
        """Feed one message through the explorer and run what it asks for."""
        self._execute(self.explorer.handle(message))
        self._redraw()

    def _redraw(self) -> None:
        try:
            view = self.query_one("#explorer", ExplorerView)
        except NoMatches:
            # Resize can arrive before compose
            return
        view.redraw()

    def _execute(self, commands: list[Command]) -> None:
        for command in commands:
            if isinstance(command, QuitCommand):
                self.exit()
            elif isinstance(command, TickCommand):
                self._arm_tick()
            elif self.runner.is_background(command):
                self.run_worker(
                    partial(self._run_in_background, command),
                    thread=True,
                    exit_on_error=False,
                )
            else:
                logger.debug("Dropping unhandled command %r", command)

    def _arm_tick(self) -> None:
        """Schedule one tick; a tick already pending absorbs further requests."""
        if self._tick_timer is not None:
            return
        self._tick_timer = self.set_timer(TICK_INTERVAL, self._on_tick_timer)

    def _on_tick_timer(self) -> None:
        self._tick_timer = None
        self.deliver(Tick())

    def _run_in_background(self, command: Command) -> None:
        """Execute a command on a worker thread and post its result back."""
        message = self.runner.run(command)
        if message is None:
            return
        try:
            self.call_from_thread(self.deliver, message)
        except RuntimeError:
            # App is shutting down
            logger.debug("Dropping %r after exit", message)


def run_tui(
    path: Optional[str],
    settings: Optional[Settings] = None,
    cache: Optional[ResultCache] = None,
) -> None:
    """Run the interactive explorer.

    Args:
        path: Directory to explore, or None for the overview of top-level folders
        settings: Loaded settings (defaults when omitted)
        cache: Result cache to share with other work, built from settings when omitted
    """
    settings = settings or Settings()
    cache = cache or ResultCache(
        cache_dir=settings.cache_dir,
        persist=settings.persist_cache,
        overview_ttl=settings.overview_cache_ttl,
    )
    explorer = Explorer(path, cache, settings=settings)
    runner = CommandRunner(cache, settings=settings)
    app = DiskDiveApp(explorer, runner)
    app.run()
