"""Shared fixtures: isolated config store, real and fake supervisors."""

from __future__ import annotations

import itertools
import time
from pathlib import Path
from typing import Any, Callable, Sequence

import pytest

from devdeck.core.config import RuntimeConfig, get_runtime_config
from devdeck.core.config_store import ConfigStore
from devdeck.process.registry import ProcessRecord, ProcessRegistry
from devdeck.process.supervisor import ProcessMeta, ProcessSupervisor, RestartFn

# Above the default Linux pid_max, so never a live process.
UNUSED_PID = 4_194_304 + 4242


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DEVDECK_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.delenv("DEVDECK_LOG_DIR", raising=False)
    get_runtime_config.cache_clear()
    yield
    get_runtime_config.cache_clear()


@pytest.fixture
def runtime(tmp_path: Path) -> RuntimeConfig:
    return RuntimeConfig(config_dir=tmp_path / "config")


@pytest.fixture
def store(tmp_path: Path) -> ConfigStore:
    return ConfigStore(tmp_path / "config" / "config.json")


@pytest.fixture
def registry(store: ConfigStore) -> ProcessRegistry:
    return ProcessRegistry(store)


@pytest.fixture
def supervisor(registry: ProcessRegistry):
    sup = ProcessSupervisor(registry)
    yield sup
    sup.stop_polling()
    for record in registry.list_all():
        sup.kill_process(record.pid)


class FakeSupervisor:
    """Records spawns instead of touching the OS; pids are sequential."""

    def __init__(self, registry: ProcessRegistry, *, fail_commands: Sequence[str] = ()) -> None:
        self.registry = registry
        self.fail_commands = set(fail_commands)
        self.spawns: list[dict[str, Any]] = []
        self.polling: dict[int, tuple[int, RestartFn]] = {}
        self.alive: set[int] = set()
        self.killed: list[int] = []
        self._pids = itertools.count(5000)

    def start_process(self, command: str, args: Sequence[str], cwd: Path, meta: ProcessMeta) -> int | None:
        if command in self.fail_commands:
            return None
        pid = next(self._pids)
        self.spawns.append(
            {
                "pid": pid,
                "command": command,
                "args": list(args),
                "cwd": cwd,
                "meta": meta,
                "at": time.monotonic(),
            }
        )
        self.alive.add(pid)
        self.registry.save(
            ProcessRecord(
                pid=pid,
                kind=meta.kind,
                name=meta.name,
                project_id=meta.project_id,
                app_id=meta.app_id,
                command_id=meta.command_id,
                server_id=meta.server_id,
                tunnel_id=meta.tunnel_id,
            )
        )
        return pid

    def setup_polling_for_process(self, pid: int, interval_ms: int, restart_fn: RestartFn) -> None:
        self.polling[pid] = (interval_ms, restart_fn)

    def is_process_running(self, pid: int) -> bool:
        return pid in self.alive

    def kill_process(self, pid: int) -> bool:
        self.killed.append(pid)
        self.registry.delete(pid)
        if pid in self.alive:
            self.alive.discard(pid)
            return True
        return False

    def get_command_process(self, command_id: str) -> ProcessRecord | None:
        for record in self.registry.list_all():
            if record.command_id == command_id and record.pid in self.alive:
                return record
        return None


class FakeTunnels:
    def __init__(self, pid: int | None = 7000) -> None:
        self.pid = pid
        self.calls: list[tuple[str, str]] = []

    def start_tunnel(self, server_id: str, tunnel_id: str) -> int | None:
        self.calls.append((server_id, tunnel_id))
        return self.pid


@pytest.fixture
def fake_supervisor(registry: ProcessRegistry) -> FakeSupervisor:
    return FakeSupervisor(registry)


@pytest.fixture
def fake_tunnels() -> FakeTunnels:
    return FakeTunnels()
