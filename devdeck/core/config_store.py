from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Callable

from pydantic import ValidationError

from devdeck.core.config_model import SCHEMA_VERSION, ConfigModel
from devdeck.core.errors import DevdeckError
from devdeck.core.logging import get_logger
from devdeck.domain.projects import Project
from devdeck.domain.servers import Server

logger = get_logger(__name__)


class ConfigStore:
    """Load and persist the devdeck configuration document.

    Every accessor re-reads the file so that separate CLI invocations see each
    other's writes. Mutations run load-modify-save under a lock shared with
    the polling threads.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = RLock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> ConfigModel:
        """Read the document from disk, migrating older schema versions."""
        with self._lock:
            if not self._path.exists():
                return ConfigModel()
            try:
                raw = json.loads(self._path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                raise DevdeckError(
                    code="config_corrupt",
                    message=f"Config file is not valid JSON: {self._path}",
                    detail=str(exc),
                ) from exc
            if not isinstance(raw, dict):
                raise DevdeckError(
                    code="config_corrupt",
                    message=f"Config file must contain a JSON object: {self._path}",
                )
            migrated = self._migrate(raw)
            try:
                model = ConfigModel.model_validate(migrated)
            except ValidationError as exc:
                raise DevdeckError(
                    code="config_corrupt",
                    message=f"Config file failed validation: {self._path}",
                    detail=str(exc),
                ) from exc
            if raw.get("schemaVersion") != SCHEMA_VERSION:
                self._backup_raw_config()
                self.save(model)
            return model

    def save(self, model: ConfigModel) -> None:
        """Persist the document to disk."""
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            payload = model.model_dump(mode="json")
            tmp_path = self._path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(payload, indent=4), encoding="utf-8")
            tmp_path.replace(self._path)

    def update(self, mutate: Callable[[ConfigModel], None]) -> ConfigModel:
        with self._lock:
            model = self.load()
            mutate(model)
            self.save(model)
            return model

    # ------------------------------------------------------------------
    # Processes
    # ------------------------------------------------------------------
    def get_all_processes(self) -> list[dict[str, Any]]:
        return [dict(entry) for entry in self.load().processes]

    def save_process(self, payload: dict[str, Any]) -> None:
        pid = payload.get("pid")

        def mutate(model: ConfigModel) -> None:
            for index, entry in enumerate(model.processes):
                if entry.get("pid") == pid:
                    model.processes[index] = dict(payload)
                    return
            model.processes.append(dict(payload))

        self.update(mutate)

    def touch_process(self, pid: int, polled_at: str) -> bool:
        """Stamp an existing entry with its last poll time.

        Returns False without writing when the entry is gone.
        """
        with self._lock:
            model = self.load()
            for entry in model.processes:
                if entry.get("pid") == pid:
                    entry["lastPolledAt"] = polled_at
                    self.save(model)
                    return True
            return False

    def delete_process(self, pid: int) -> None:
        with self._lock:
            model = self.load()
            remaining = [entry for entry in model.processes if entry.get("pid") != pid]
            if len(remaining) == len(model.processes):
                return
            model.processes = remaining
            self.save(model)

    # ------------------------------------------------------------------
    # Projects and servers
    # ------------------------------------------------------------------
    def get_all_projects(self) -> list[Project]:
        return list(self.load().projects)

    def get_project(self, project_id: str) -> Project | None:
        for project in self.load().projects:
            if project.id == project_id:
                return project
        return None

    def find_project(self, ref: str) -> Project | None:
        """Resolve a project by id, falling back to a case-insensitive name."""
        projects = self.load().projects
        for project in projects:
            if project.id == ref:
                return project
        lowered = ref.strip().lower()
        for project in projects:
            if project.name.lower() == lowered:
                return project
        return None

    def save_project(self, project: Project) -> None:
        def mutate(model: ConfigModel) -> None:
            for index, existing in enumerate(model.projects):
                if existing.id == project.id:
                    model.projects[index] = project
                    return
            model.projects.append(project)

        self.update(mutate)

    def get_all_servers(self) -> list[Server]:
        return list(self.load().servers)

    def get_server(self, server_id: str) -> Server | None:
        for server in self.load().servers:
            if server.id == server_id:
                return server
        return None

    def find_server(self, ref: str) -> Server | None:
        servers = self.load().servers
        for server in servers:
            if server.id == ref:
                return server
        lowered = ref.strip().lower()
        for server in servers:
            if server.name.lower() == lowered:
                return server
        return None

    def save_server(self, server: Server) -> None:
        def mutate(model: ConfigModel) -> None:
            for index, existing in enumerate(model.servers):
                if existing.id == server.id:
                    model.servers[index] = server
                    return
            model.servers.append(server)

        self.update(mutate)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _migrate(self, data: dict[str, Any]) -> dict[str, Any]:
        version = data.get("schemaVersion")
        if not isinstance(version, int):
            version = 0
        data = dict(data)
        if version < 2:
            # Version 1 stored the process kind under "type".
            processes = []
            for entry in data.get("processes") or []:
                if not isinstance(entry, dict):
                    continue
                entry = dict(entry)
                if "kind" not in entry and "type" in entry:
                    entry["kind"] = entry.pop("type")
                processes.append(entry)
            data["processes"] = processes
        data["schemaVersion"] = SCHEMA_VERSION
        return data

    def _backup_raw_config(self) -> None:
        if not self._path.exists():
            return
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        backup_path = self._path.with_name(f"{self._path.stem}.bak-{timestamp}.json")
        try:
            backup_path.write_text(self._path.read_text(encoding="utf-8"), encoding="utf-8")
        except OSError as exc:
            logger.warning("Unable to back up %s before migration: %s", self._path, exc)
