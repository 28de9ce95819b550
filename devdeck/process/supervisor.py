from __future__ import annotations

import logging
import subprocess
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Callable, Sequence

from devdeck.core.logging import get_logger, log_event
from devdeck.process.os_process import pid_alive, spawn_detached, terminate_pid
from devdeck.process.registry import ProcessKind, ProcessRecord, ProcessRegistry

logger = get_logger(__name__)

RestartFn = Callable[[], "int | None"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProcessMeta:
    """Metadata attached to a record when a spawn succeeds."""

    kind: ProcessKind
    name: str
    server_id: str | None = None
    tunnel_id: str | None = None
    project_id: str | None = None
    app_id: str | None = None
    command_id: str | None = None
    child_pids: tuple[int, ...] = ()


class _PollTimer:
    """Recurring tick on a daemon thread until cancelled."""

    def __init__(
        self,
        pid: int,
        interval_ms: int,
        on_tick: Callable[["_PollTimer"], None],
    ) -> None:
        self.pid = pid
        self.interval_ms = interval_ms
        self._on_tick = on_tick
        self._cancelled = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"devdeck-poll-{pid}",
            daemon=True,
        )

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._cancelled.set()

    def _run(self) -> None:
        while not self._cancelled.wait(self.interval_ms / 1000):
            try:
                self._on_tick(self)
            except Exception:
                logger.exception("Polling tick for process %s failed", self.pid)


class ProcessSupervisor:
    """Spawns, probes, kills and auto-restarts detached processes.

    The supervisor is the only component that touches the OS process table.
    Auto-restart timers live in this object, so a polling chain only survives
    as long as the devdeck process hosting it.
    """

    def __init__(self, registry: ProcessRegistry) -> None:
        self._registry = registry
        self._timers: dict[int, _PollTimer] = {}
        self._lock = Lock()
        self._polling_active = False
        # Pids stopped through kill; polling refuses them until a spawn here reuses the pid.
        self._killed: set[int] = set()
        # Popen handles for children of this interpreter, reaped on probe.
        self._handles: dict[int, subprocess.Popen] = {}
        self._handles_lock = Lock()

    @property
    def registry(self) -> ProcessRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Spawn / probe / kill
    # ------------------------------------------------------------------
    def start_process(
        self,
        command: str,
        args: Sequence[str],
        cwd: Path,
        meta: ProcessMeta,
    ) -> int | None:
        try:
            handle = spawn_detached(command, args, cwd)
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            log_event(
                logger,
                "process_spawn_failed",
                level=logging.ERROR,
                command=command,
                cwd=str(cwd),
                error=str(exc),
            )
            return None

        pid = handle.pid
        if not pid:
            log_event(logger, "process_spawn_failed", level=logging.ERROR, command=command, error="no pid")
            return None

        with self._handles_lock:
            self._handles[pid] = handle
        with self._lock:
            self._killed.discard(pid)

        record = ProcessRecord(
            pid=pid,
            kind=meta.kind,
            name=meta.name,
            start_time=_utcnow(),
            server_id=meta.server_id,
            tunnel_id=meta.tunnel_id,
            project_id=meta.project_id,
            app_id=meta.app_id,
            command_id=meta.command_id,
            child_pids=list(meta.child_pids),
        )
        self._registry.save(record)
        log_event(logger, "process_started", pid=pid, kind=meta.kind, name=meta.name, cwd=str(cwd))
        return pid

    def is_process_running(self, pid: int) -> bool:
        self._reap()
        return pid_alive(pid)

    def list_active_processes(self) -> list[ProcessRecord]:
        """Return live records, deleting every dead one observed on the way."""
        self._reap()
        active: list[ProcessRecord] = []
        for record in self._registry.list_all():
            if self.is_process_running(record.pid):
                active.append(record)
                continue
            self._registry.delete(record.pid)
            logger.debug("Pruned stale process record %s (%s)", record.pid, record.name)
        return active

    def get_process(self, pid: int) -> ProcessRecord | None:
        return self._registry.get(pid)

    def get_processes_by_kind(self, kind: ProcessKind) -> list[ProcessRecord]:
        return [record for record in self.list_active_processes() if record.kind == kind]

    def get_command_process(self, command_id: str) -> ProcessRecord | None:
        for record in self.get_processes_by_kind("command"):
            if record.command_id == command_id:
                return record
        return None

    def get_project_processes(self, project_id: str) -> list[ProcessRecord]:
        return [
            record
            for record in self.get_processes_by_kind("command")
            if record.project_id == project_id
        ]

    def get_app_processes(self, app_id: str) -> list[ProcessRecord]:
        return [
            record
            for record in self.get_processes_by_kind("command")
            if record.app_id == app_id
        ]

    def kill_process(self, pid: int) -> bool:
        """Kill ``pid`` and its registered children, children first.

        The registry entry is removed whether or not a signal was delivered.
        Returns False when the process was already gone.
        """
        return self._kill(pid, set())

    def kill_all(self) -> tuple[int, int]:
        processes = self.list_active_processes()
        killed = 0
        for record in processes:
            if self.kill_process(record.pid):
                killed += 1
        return killed, len(processes)

    def _kill(self, pid: int, visited: set[int]) -> bool:
        if pid in visited:
            return False
        visited.add(pid)

        record = self._registry.get(pid)
        if record is not None and record.child_pids:
            logger.info("Stopping %d child process(es) of %s", len(record.child_pids), pid)
            for child_pid in record.child_pids:
                self._kill(child_pid, visited)

        # Must happen before the signal so a tick cannot restart what we stop.
        with self._lock:
            self._killed.add(pid)
        self.stop_polling_for_process(pid)

        delivered = self.is_process_running(pid) and terminate_pid(pid)
        self._registry.delete(pid)
        self._reap()
        if delivered:
            log_event(logger, "process_killed", pid=pid)
            return True
        logger.warning("Process %s not found (removed from registry)", pid)
        return False

    def _reap(self) -> None:
        """Collect exit status of every finished child spawned here."""
        with self._handles_lock:
            finished = [pid for pid, handle in self._handles.items() if handle.poll() is not None]
            for pid in finished:
                del self._handles[pid]

    # ------------------------------------------------------------------
    # Polling & auto-restart
    # ------------------------------------------------------------------
    @property
    def polling_active(self) -> bool:
        with self._lock:
            return self._polling_active

    def start_polling(self) -> None:
        with self._lock:
            if self._polling_active:
                return
            self._polling_active = True
        logger.debug("Process polling started")

    def stop_polling(self) -> None:
        with self._lock:
            self._polling_active = False
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        logger.debug("Process polling stopped (%d timer(s) cancelled)", len(timers))

    def setup_polling_for_process(
        self,
        pid: int,
        interval_ms: int,
        restart_fn: RestartFn,
    ) -> None:
        def on_tick(timer: _PollTimer) -> None:
            self._poll_tick(timer, restart_fn)

        timer = _PollTimer(pid, interval_ms, on_tick)
        with self._lock:
            if not self._polling_active:
                logger.debug("Polling inactive; not watching process %s", pid)
                return
            if pid in self._killed:
                logger.debug("Process %s was killed; not watching it", pid)
                return
            previous = self._timers.pop(pid, None)
            if previous is not None:
                previous.cancel()
            self._timers[pid] = timer
        timer.start()
        log_event(logger, "polling_started", pid=pid, interval_ms=interval_ms)

    def stop_polling_for_process(self, pid: int) -> bool:
        with self._lock:
            timer = self._timers.pop(pid, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def is_polling(self, pid: int) -> bool:
        with self._lock:
            return pid in self._timers

    def watched_pids(self) -> list[int]:
        with self._lock:
            return list(self._timers)

    def _poll_tick(self, timer: _PollTimer, restart_fn: RestartFn) -> None:
        pid = timer.pid
        if timer.cancelled:
            return
        self._registry.touch(pid, _utcnow())
        if self.is_process_running(pid):
            return

        with self._lock:
            # A kill or a newer timer for this pid takes precedence.
            if timer.cancelled or pid in self._killed or self._timers.get(pid) is not timer:
                return
            del self._timers[pid]
            timer.cancel()

        logger.warning("Process %s died, attempting restart...", pid)
        new_pid = restart_fn()
        if new_pid is None:
            logger.error("Restart after process %s died produced no process", pid)
            return
        log_event(logger, "process_restarted", previous_pid=pid, pid=new_pid)
        self.setup_polling_for_process(new_pid, timer.interval_ms, restart_fn)


__all__ = [
    "ProcessMeta",
    "ProcessSupervisor",
    "RestartFn",
]
