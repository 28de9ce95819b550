from __future__ import annotations

from rich.markup import escape
from textual.binding import Binding
from textual.containers import Vertical
from textual.widgets import ListItem, ListView, Static

from devdeck.core.messages import KillProcessRequest
from devdeck.process.registry import ProcessRecord
from devdeck.process.supervisor import ProcessSupervisor


class ProcessPanelListView(ListView):
    def on_focus(self) -> None:
        if self.index is not None:
            return
        for idx, child in enumerate(self.children):
            if isinstance(child, ListItem) and not child.disabled:
                self.index = idx
                break


class ProcessListPanel(Vertical):
    BINDINGS = [
        Binding("r", "refresh", "Refresh", show=True),
        Binding("k", "kill_selected", "Kill selected", show=True),
    ]

    def __init__(self, supervisor: ProcessSupervisor) -> None:
        super().__init__(id="process_panel")
        self._supervisor = supervisor
        self._status: Static | None = None

    def compose(self):
        yield ProcessPanelListView(id="process_panel_list")
        status = Static("", id="process_panel_status")
        self._status = status
        yield status

    def on_mount(self) -> None:
        self.border_title = "Processes"
        self.refresh_records()

    def action_refresh(self) -> None:
        self.refresh_records()

    def action_kill_selected(self) -> None:
        list_view = self.query_one(ListView)
        if list_view.index is None:
            self.set_status("Select a process first.")
            return
        try:
            item = list_view.children[list_view.index]
        except IndexError:
            self.set_status("No process selected.")
            return
        if not isinstance(item, ProcessPanelItem):
            self.set_status("Invalid selection.")
            return
        self.post_message(KillProcessRequest(item.record.pid))

    def refresh_records(self) -> None:
        list_view = self.query_one(ListView)
        previous = list_view.index
        list_view.clear()
        records = sorted(
            self._supervisor.list_active_processes(),
            key=lambda rec: rec.start_time,
            reverse=True,
        )
        if not records:
            placeholder = ListItem(
                Static("No tracked processes."),
                classes="process_row process_row--empty",
            )
            placeholder.disabled = True
            list_view.append(placeholder)
            return
        for record in records:
            list_view.append(ProcessPanelItem(record, self._supervisor.is_polling(record.pid)))
        if previous is not None:
            list_view.index = min(previous, len(records) - 1)

    def set_status(self, message: str) -> None:
        status = self._status
        if status is None:
            return
        status.update(message)
        if message:
            self.set_timer(1.2, lambda: self.set_status(""))


class ProcessPanelItem(ListItem):
    """Compact row for the embedded process panel."""

    def __init__(self, record: ProcessRecord, watched: bool) -> None:
        self.record = record
        body = Vertical(
            Static(self._render_title(record, watched), classes="process_row_title"),
            Static(self._render_meta(record), classes="process_row_meta"),
        )
        super().__init__(body, classes="process_row")

    @staticmethod
    def _render_title(record: ProcessRecord, watched: bool) -> str:
        kind = "[$accent]tunnel[/]" if record.kind == "tunnel" else "[$primary]command[/]"
        watch_label = " · [$success]auto-restart[/]" if watched else ""
        return f"{escape(record.name)} · {kind} · pid {record.pid}{watch_label}"

    @classmethod
    def _render_meta(cls, record: ProcessRecord) -> str:
        started = record.start_time.astimezone().strftime("%Y-%m-%d %H:%M:%S")
        polled = ""
        if record.last_polled_at is not None:
            polled = f" · polled {record.last_polled_at.astimezone().strftime('%H:%M:%S')}"
        children = f" · {len(record.child_pids)} child(ren)" if record.child_pids else ""
        return f"started {started}{polled}{children}"
