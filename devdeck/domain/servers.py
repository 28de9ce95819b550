from __future__ import annotations

import uuid
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

TunnelType = Literal["custom", "rds", "redis", "service"]


class Tunnel(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    name: str
    type: TunnelType = "custom"
    local_port: int = Field(ge=1, le=65535)
    remote_host: str
    remote_port: int = Field(ge=1, le=65535)


class Server(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    name: str
    host: str
    username: str
    pem_path: str
    tunnels: list[Tunnel] = Field(default_factory=list)

    def find_tunnel(self, tunnel_id: str) -> Tunnel | None:
        for tunnel in self.tunnels:
            if tunnel.id == tunnel_id:
                return tunnel
        return None
