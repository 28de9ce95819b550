from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from devdeck.domain.projects import Project
from devdeck.domain.servers import Server

SCHEMA_VERSION = 2


class ConfigModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    schemaVersion: int = SCHEMA_VERSION
    servers: list[Server] = Field(default_factory=list)
    projects: list[Project] = Field(default_factory=list)
    processes: list[dict[str, Any]] = Field(default_factory=list)
