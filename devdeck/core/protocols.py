from typing import Any, Protocol


class ProcessStore(Protocol):
    def get_all_processes(self) -> list[dict[str, Any]]: ...
    def save_process(self, payload: dict[str, Any]) -> None: ...
    def delete_process(self, pid: int) -> None: ...
    def touch_process(self, pid: int, polled_at: str) -> bool: ...


class TunnelStarter(Protocol):
    def start_tunnel(self, server_id: str, tunnel_id: str) -> int | None: ...
