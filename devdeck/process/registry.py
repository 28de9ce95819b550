from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from devdeck.core.protocols import ProcessStore

ProcessKind = Literal["tunnel", "command"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


@dataclass(slots=True)
class ProcessRecord:
    pid: int
    kind: ProcessKind
    name: str
    start_time: datetime = field(default_factory=_utcnow)
    last_polled_at: datetime | None = None
    server_id: str | None = None
    tunnel_id: str | None = None
    project_id: str | None = None
    app_id: str | None = None
    command_id: str | None = None
    child_pids: list[int] = field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "pid": self.pid,
            "kind": self.kind,
            "name": self.name,
            "startTime": self.start_time.isoformat(),
            "lastPolledAt": self.last_polled_at.isoformat()
            if self.last_polled_at
            else None,
            "childPids": list(self.child_pids),
        }
        refs = {
            "serverId": self.server_id,
            "tunnelId": self.tunnel_id,
            "projectId": self.project_id,
            "appId": self.app_id,
            "commandId": self.command_id,
        }
        payload.update({key: value for key, value in refs.items() if value})
        return payload

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> ProcessRecord:
        kind = payload.get("kind")
        child_pids = payload.get("childPids") or []
        return cls(
            pid=int(payload["pid"]),
            kind="tunnel" if kind == "tunnel" else "command",
            name=str(payload.get("name") or ""),
            start_time=_parse_timestamp(payload.get("startTime")) or _utcnow(),
            last_polled_at=_parse_timestamp(payload.get("lastPolledAt")),
            server_id=payload.get("serverId") or None,
            tunnel_id=payload.get("tunnelId") or None,
            project_id=payload.get("projectId") or None,
            app_id=payload.get("appId") or None,
            command_id=payload.get("commandId") or None,
            child_pids=[int(pid) for pid in child_pids if isinstance(pid, int)],
        )


class ProcessRegistry:
    """Persisted table of tracked processes, keyed by pid.

    Pure storage: a record here is only a claim that the process exists.
    """

    def __init__(self, store: ProcessStore) -> None:
        self._store = store

    def list_all(self) -> list[ProcessRecord]:
        records: list[ProcessRecord] = []
        for payload in self._store.get_all_processes():
            if isinstance(payload.get("pid"), int):
                records.append(ProcessRecord.from_json(payload))
        return records

    def get(self, pid: int) -> ProcessRecord | None:
        for record in self.list_all():
            if record.pid == pid:
                return record
        return None

    def save(self, record: ProcessRecord) -> None:
        self._store.save_process(record.to_json())

    def delete(self, pid: int) -> None:
        self._store.delete_process(pid)

    def touch(self, pid: int, polled_at: datetime) -> bool:
        """Update last_polled_at in place; never recreates a deleted record."""
        return self._store.touch_process(pid, polled_at.isoformat())


__all__ = [
    "ProcessKind",
    "ProcessRecord",
    "ProcessRegistry",
]
