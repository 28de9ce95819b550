from __future__ import annotations

from rich.markup import escape
from textual import on
from textual.binding import Binding
from textual.containers import Vertical
from textual.widgets import ListItem, ListView, Static

from devdeck.core.config_store import ConfigStore
from devdeck.core.messages import RunCommandRequest
from devdeck.domain.projects import App, DirectCommand, Project, SequenceCommand


class CommandListItem(ListItem):
    def __init__(
        self,
        project: Project,
        app: App | None,
        command: DirectCommand | SequenceCommand,
    ) -> None:
        self.project = project
        self.owner_app = app
        self.command = command
        super().__init__(Static(self._render_label()), classes="command_row")

    def _render_label(self) -> str:
        scope = f"{self.project.name} › {self.owner_app.name}" if self.owner_app else self.project.name
        flags = []
        if isinstance(self.command, SequenceCommand):
            flags.append(f"{len(self.command.steps)} steps")
        elif self.command.auto_restart:
            flags.append("auto-restart")
        suffix = f" [dim]({', '.join(flags)})[/dim]" if flags else ""
        return f"{escape(scope)} › [b]{escape(self.command.name)}[/b]{suffix}"


class CommandListPanel(Vertical):
    """Every project and app command; Enter runs the highlighted one."""

    BINDINGS = [
        Binding("R", "reload", "Reload config", show=True),
    ]

    def __init__(self, store: ConfigStore) -> None:
        super().__init__(id="command_panel")
        self._store = store

    def compose(self):
        yield ListView(id="command_list")

    def on_mount(self) -> None:
        self.border_title = "Commands"
        self.load_commands()

    def action_reload(self) -> None:
        self.load_commands()

    def load_commands(self) -> None:
        list_view = self.query_one(ListView)
        list_view.clear()
        items = [
            CommandListItem(project, app, command)
            for project in self._store.get_all_projects()
            for app, command in project.iter_commands()
        ]
        if not items:
            placeholder = ListItem(Static("No commands configured."), classes="command_row--empty")
            placeholder.disabled = True
            list_view.append(placeholder)
            return
        list_view.extend(items)

    @on(ListView.Selected, "#command_list")
    def _run_selected(self, event: ListView.Selected) -> None:
        item = event.item
        if not isinstance(item, CommandListItem):
            return
        self.post_message(RunCommandRequest(item.project, item.owner_app, item.command))
