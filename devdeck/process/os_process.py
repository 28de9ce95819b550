"""Thin wrappers over the OS process table, kept separate for easy mocking."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Any, Sequence

import psutil


def _detach_kwargs() -> dict[str, Any]:
    if sys.platform == "win32":
        return {
            "creationflags": subprocess.DETACHED_PROCESS
            | subprocess.CREATE_NEW_PROCESS_GROUP
            | subprocess.CREATE_NO_WINDOW
        }
    return {"start_new_session": True}


def spawn_detached(command: str, args: Sequence[str], cwd: Path) -> subprocess.Popen:
    """Start ``command`` in its own session with all stdio discarded."""
    return subprocess.Popen(
        [command, *args],
        cwd=str(cwd),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        close_fds=True,
        **_detach_kwargs(),
    )


def pid_alive(pid: int) -> bool:
    """Probe ``pid`` without signalling it. Zombies count as dead."""
    if pid <= 0:
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        # Owned by another user, but it exists.
        return True


def terminate_pid(pid: int) -> bool:
    """Send the terminate signal. Returns False when there was nobody to signal."""
    if pid <= 0:
        return False
    try:
        psutil.Process(pid).terminate()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False
    return True
