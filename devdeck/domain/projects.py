from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Iterator, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


AppType = Literal["nextjs", "expressjs", "database_tunnel", "custom"]


class DelayStep(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["delay"] = "delay"
    delay_ms: int = Field(default=0, ge=0)


class TunnelStep(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["tunnel"] = "tunnel"
    server_id: str
    tunnel_id: str


class AppCommandStep(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["app_command"] = "app_command"
    app_id: str
    command_id: str


class CustomStep(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["custom"] = "custom"
    custom_command: str
    custom_working_dir: str | None = None


Step = Annotated[
    Union[DelayStep, TunnelStep, AppCommandStep, CustomStep],
    Field(discriminator="type"),
]


class DirectCommand(BaseModel):
    """A single executable line run in the project (or app) directory.

    ``command`` is split on whitespace; shell quoting is not interpreted.
    """

    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=_new_id)
    name: str
    type: Literal["direct"] = "direct"
    command: str = ""
    working_dir: str | None = None
    auto_restart: bool = False
    poll_interval_ms: int | None = None


class SequenceCommand(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=_new_id)
    name: str
    type: Literal["sequence"] = "sequence"
    steps: list[Step] = Field(default_factory=list)


Command = Annotated[
    Union[DirectCommand, SequenceCommand],
    Field(discriminator="type"),
]


class App(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=_new_id)
    name: str
    type: AppType = "custom"
    relative_path: str = "."
    linked_server_id: str | None = None
    linked_tunnel_id: str | None = None
    commands: list[Command] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)

    def find_command(self, command_id: str) -> DirectCommand | SequenceCommand | None:
        for command in self.commands:
            if command.id == command_id:
                return command
        return None


class Project(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=_new_id)
    name: str
    base_path: str
    linked_server_id: str | None = None
    apps: list[App] = Field(default_factory=list)
    commands: list[Command] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)

    def find_app(self, app_id: str) -> App | None:
        for app in self.apps:
            if app.id == app_id:
                return app
        return None

    def find_command(
        self, command_id: str
    ) -> tuple[App | None, DirectCommand | SequenceCommand] | None:
        """Look up a command at project level first, then inside each app."""
        for app, command in self.iter_commands():
            if command.id == command_id:
                return app, command
        return None

    def iter_commands(self) -> Iterator[tuple[App | None, DirectCommand | SequenceCommand]]:
        for command in self.commands:
            yield None, command
        for app in self.apps:
            for command in app.commands:
                yield app, command
