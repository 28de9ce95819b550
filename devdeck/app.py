from __future__ import annotations

from pathlib import Path

from textual import on
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Header
from textual.worker import Worker, WorkerState

from devdeck import __version__
from devdeck.core.errors import format_error, wrap_error
from devdeck.core.logging import get_logger
from devdeck.core.messages import KillProcessRequest, RunCommandRequest
from devdeck.core.notify import NotifyTimeouts
from devdeck.core.services import AppServices, build_services
from devdeck.widgets.command_list import CommandListPanel
from devdeck.widgets.process_panel import ProcessListPanel

logger = get_logger(__name__)

RUN_COMMAND_GROUP = "run_command"
REFRESH_INTERVAL_S = 2.0


class DevdeckApp(App):
    TITLE = "devdeck"
    SUB_TITLE = f"v{__version__}"
    CSS_PATH = Path(__file__).parent / "styles" / "index.tcss"

    BINDINGS = [
        Binding("K", "kill_all", "Kill all", show=True),
        Binding("q", "quit", "Quit", show=True),
    ]

    def __init__(self, services: AppServices) -> None:
        super().__init__()
        self.services = services
        self.notify_timeouts = NotifyTimeouts()

    def compose(self) -> ComposeResult:
        yield Header()
        with Vertical(id="app_main_container"):
            yield Horizontal(
                CommandListPanel(self.services.store),
                ProcessListPanel(self.services.supervisor),
                id="main_pane",
            )
        yield Footer()

    def on_mount(self) -> None:
        supervisor = self.services.supervisor
        supervisor.start_polling()
        resumed = self.services.orchestrator.resume_auto_restart()
        if resumed:
            self.notify(
                f"Watching {resumed} auto-restart process(es).",
                timeout=self.notify_timeouts.normal,
            )
        self.set_interval(REFRESH_INTERVAL_S, self._refresh_processes)

    def on_unmount(self) -> None:
        self.services.supervisor.stop_polling()

    def _refresh_processes(self) -> None:
        self.query_one(ProcessListPanel).refresh_records()

    @on(RunCommandRequest)
    def handle_run_command(self, event: RunCommandRequest) -> None:
        self.notify(f"Starting {event.command.name}...", timeout=self.notify_timeouts.quick)
        self.run_worker(
            lambda: self.services.orchestrator.run(event.project, event.command, event.app),
            name=event.command.name,
            group=RUN_COMMAND_GROUP,
            exclusive=False,
            thread=True,
        )

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        worker = event.worker
        if worker.group != RUN_COMMAND_GROUP:
            return
        if event.state is WorkerState.SUCCESS:
            pid = worker.result
            if pid is None:
                self.notify(
                    f"{worker.name} did not start.",
                    severity="error",
                    timeout=self.notify_timeouts.long,
                )
            else:
                self.notify(f"{worker.name} started (PID: {pid})", timeout=self.notify_timeouts.normal)
            self._refresh_processes()
        elif event.state is WorkerState.ERROR:
            error = wrap_error(
                worker.error or RuntimeError("Command failed."),
                code="run_failed",
                message=f"Running {worker.name} failed.",
            )
            self.show_error(error)

    @on(KillProcessRequest)
    def handle_kill_process(self, event: KillProcessRequest) -> None:
        panel = self.query_one(ProcessListPanel)
        if self.services.supervisor.kill_process(event.pid):
            panel.set_status(f"Process {event.pid} killed.")
        else:
            panel.set_status(f"Process {event.pid} was already gone.")
        self.set_timer(0.2, self._refresh_processes)

    def action_kill_all(self) -> None:
        killed, total = self.services.supervisor.kill_all()
        self.query_one(ProcessListPanel).set_status(f"Killed {killed}/{total} process(es).")
        self.set_timer(0.2, self._refresh_processes)

    def show_error(self, error: BaseException) -> None:
        message, severity = format_error(error)
        logger.error(message)
        self.notify(message, severity=severity, timeout=self.notify_timeouts.long)


def main(services: AppServices | None = None) -> None:
    services = services or build_services()
    app = DevdeckApp(services)
    try:
        app.run()
    finally:
        services.supervisor.stop_polling()


__all__ = ["DevdeckApp", "main"]
