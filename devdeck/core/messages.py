from textual.message import Message

from devdeck.domain.projects import App, DirectCommand, Project, SequenceCommand


class RunCommandRequest(Message):
    def __init__(
        self,
        project: Project,
        app: App | None,
        command: DirectCommand | SequenceCommand,
    ) -> None:
        super().__init__()
        self.project = project
        self.app = app
        self.command = command


class KillProcessRequest(Message):
    def __init__(self, pid: int) -> None:
        super().__init__()
        self.pid = pid
