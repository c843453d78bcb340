"""TUI Dashboard for fanout."""

from __future__ import annotations

from rich.text import Text
from textual.app import App, ComposeResult
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Footer, Header, Label, RichLog, Static
from textual.worker import Worker

from .config import Settings
from .dispatch import CommandStatus
from .fleet import Fleet, FleetAborted, RunSummary
from .transport import RemoteExecutor


STATUS_ICONS = {
    CommandStatus.PENDING: ("…", "dim"),
    CommandStatus.TRYING: ("▶", "yellow"),
    CommandStatus.SUCCEEDED: ("✔", "green"),
    CommandStatus.EXHAUSTED: ("✘", "red"),
    CommandStatus.ABORTED: ("■", "red"),
}


def grid_columns(command_count: int) -> int:
    """Panel columns for a given number of commands."""
    if command_count <= 1:
        return 1
    if command_count <= 4:
        return 2
    return 3


class CommandPanel(Static):
    """Output and retry progress for a single command."""

    status: reactive[CommandStatus] = reactive(CommandStatus.PENDING)
    host: reactive[str] = reactive("")
    attempt: reactive[int] = reactive(0)

    def __init__(self, command_id: int, command: str, host_count: int, **kwargs) -> None:
        super().__init__(**kwargs)
        self.command_id = command_id
        self.command = command
        self.host_count = host_count

    def compose(self) -> ComposeResult:
        yield Label(self.header_text(), id=f"header-{self.command_id}")
        yield RichLog(
            id=f"log-{self.command_id}",
            markup=False,
            wrap=True,
            auto_scroll=True,
        )

    def header_text(self) -> Text:
        icon, color = STATUS_ICONS.get(self.status, ("?", "white"))
        text = Text.assemble(
            (f"{icon} ", color),
            (f"#{self.command_id} ", "bold"),
            (self.status.value, color),
        )
        if self.host:
            text.append(f" @ {self.host}")
        if self.attempt:
            text.append(f" (attempt {self.attempt}/{self.host_count})", "dim")
        return text

    def _refresh_header(self) -> None:
        if not self.is_mounted:
            return
        self.query_one(f"#header-{self.command_id}", Label).update(self.header_text())

    def watch_status(self, status: CommandStatus) -> None:
        self._refresh_header()

    def watch_host(self, host: str) -> None:
        self._refresh_header()

    def watch_attempt(self, attempt: int) -> None:
        self._refresh_header()

    def append_output(self, line: str) -> None:
        """Append a line of output to this panel."""
        log = self.query_one(f"#log-{self.command_id}", RichLog)
        if line.startswith("$ "):
            log.write(Text(line, style="bold cyan"))
        elif line.startswith("ERROR:"):
            log.write(Text(line, style="bold red"))
        else:
            log.write(Text(line))


class StatusBar(Static):
    """Bottom bar with succeeded/failed/total counts."""

    succeeded: reactive[int] = reactive(0)
    failed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    running: reactive[bool] = reactive(True)

    @property
    def completed(self) -> int:
        return self.succeeded + self.failed

    def render(self) -> str:
        state = "Running..." if self.running else "Complete"
        return (
            f"{self.completed}/{self.total} done | "
            f"succeeded={self.succeeded} failed={self.failed} | {state} | 'q' quits"
        )


class CommandOutput(Message):
    """A display line from a command."""

    def __init__(self, command_id: int, line: str) -> None:
        self.command_id = command_id
        self.line = line
        super().__init__()


class CommandStatusChange(Message):
    """A command moved to a new status."""

    def __init__(self, command_id: int, status: CommandStatus, host: str, attempt: int) -> None:
        self.command_id = command_id
        self.status = status
        self.host = host
        self.attempt = attempt
        super().__init__()


class Dashboard(App):
    """Live view of a dispatch run, one panel per command."""

    CSS = """
    Screen {
        layout: grid;
        grid-size: 2;
        grid-gutter: 1;
    }

    CommandPanel {
        border: round $primary;
        height: 100%;
        min-height: 8;
    }

    CommandPanel Label {
        dock: top;
        padding: 0 1;
        background: $surface;
    }

    CommandPanel RichLog {
        height: 1fr;
        padding: 0 1;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(
        self,
        commands: list[str],
        hosts: list[str],
        settings: Settings,
        executor: RemoteExecutor | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.commands = commands
        self.hosts = hosts
        self.settings = settings
        self.executor = executor
        self.panels: dict[int, CommandPanel] = {}
        self.fleet: Fleet | None = None
        self.summary: RunSummary | None = None
        self.aborted: FleetAborted | None = None
        self._worker: Worker | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        for cmd_id, command in enumerate(self.commands):
            panel = CommandPanel(cmd_id, command, len(self.hosts), id=f"panel-{cmd_id}")
            self.panels[cmd_id] = panel
            yield panel

        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start dispatching when the app mounts."""
        self.screen.styles.grid_size_columns = grid_columns(len(self.commands))
        self.query_one("#status-bar", StatusBar).total = len(self.commands)

        self.fleet = Fleet(
            self.commands,
            self.hosts,
            self.settings,
            executor=self.executor,
            on_output=self._on_output,
            on_status=self._on_status,
        )

        # The fleet gets its own event loop in a worker thread
        self._worker = self.run_worker(self._run_execution(), exclusive=True, thread=True)

    async def _run_execution(self) -> None:
        """Run the fleet and keep its result for the caller."""
        if self.fleet:
            try:
                self.summary = await self.fleet.run_all()
            except FleetAborted as e:
                self.aborted = e
                self.summary = e.summary

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        if event.worker == self._worker and event.state == event.worker.state.SUCCESS:
            self.query_one("#status-bar", StatusBar).running = False

    def _on_output(self, command_id: int, line: str) -> None:
        # Called from the worker thread; post_message is thread-safe
        self.post_message(CommandOutput(command_id, line))

    def _on_status(self, command_id: int, status: CommandStatus) -> None:
        host, attempt = "", 0
        if self.fleet:
            state = self.fleet.states[command_id]
            host, attempt = state.current_host, len(state.attempts)
        self.post_message(CommandStatusChange(command_id, status, host, attempt))

    def on_command_output(self, message: CommandOutput) -> None:
        if message.command_id in self.panels:
            self.panels[message.command_id].append_output(message.line)

    def on_command_status_change(self, message: CommandStatusChange) -> None:
        if message.command_id in self.panels:
            panel = self.panels[message.command_id]
            panel.host = message.host
            panel.attempt = message.attempt
            panel.status = message.status

        if message.status.is_terminal:
            status_bar = self.query_one("#status-bar", StatusBar)
            if message.status == CommandStatus.SUCCEEDED:
                status_bar.succeeded += 1
            else:
                status_bar.failed += 1

    async def action_quit(self) -> None:
        """Quit the application."""
        if self._worker and self._worker.is_running:
            self._worker.cancel()
        self.exit()
