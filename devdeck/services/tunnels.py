from __future__ import annotations

from pathlib import Path

from devdeck.core.config_store import ConfigStore
from devdeck.core.logging import get_logger, log_event
from devdeck.domain.servers import Server, Tunnel
from devdeck.process.supervisor import ProcessMeta, ProcessSupervisor

logger = get_logger(__name__)


def build_tunnel_args(server: Server, tunnel: Tunnel) -> list[str]:
    return [
        "-i",
        str(Path(server.pem_path).expanduser()),
        "-N",
        "-L",
        f"{tunnel.local_port}:{tunnel.remote_host}:{tunnel.remote_port}",
        f"{server.username}@{server.host}",
        "-o",
        "ServerAliveInterval=60",
        "-o",
        "ServerAliveCountMax=3600",
    ]


class TunnelSpawner:
    """Starts SSH port-forwards as supervised background processes."""

    def __init__(self, store: ConfigStore, supervisor: ProcessSupervisor) -> None:
        self._store = store
        self._supervisor = supervisor

    def tunnel_command(self, server_id: str, tunnel_id: str) -> str | None:
        resolved = self._resolve(server_id, tunnel_id)
        if resolved is None:
            return None
        server, tunnel = resolved
        return " ".join(["ssh", *build_tunnel_args(server, tunnel)])

    def start_tunnel(self, server_id: str, tunnel_id: str) -> int | None:
        resolved = self._resolve(server_id, tunnel_id)
        if resolved is None:
            return None
        server, tunnel = resolved
        pid = self._supervisor.start_process(
            "ssh",
            build_tunnel_args(server, tunnel),
            Path.home(),
            ProcessMeta(
                kind="tunnel",
                name=f"Tunnel {server.name} -> {tunnel.name}",
                server_id=server.id,
                tunnel_id=tunnel.id,
            ),
        )
        if pid is not None:
            log_event(
                logger,
                "tunnel_started",
                pid=pid,
                mapping=f"localhost:{tunnel.local_port} -> {tunnel.remote_host}:{tunnel.remote_port}",
            )
        return pid

    def _resolve(self, server_id: str, tunnel_id: str) -> tuple[Server, Tunnel] | None:
        server = self._store.get_server(server_id)
        if server is None:
            logger.warning("Server %s not found", server_id)
            return None
        tunnel = server.find_tunnel(tunnel_id)
        if tunnel is None:
            logger.warning("Tunnel %s not found on server %s", tunnel_id, server.name)
            return None
        return server, tunnel
