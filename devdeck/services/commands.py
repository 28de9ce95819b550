from __future__ import annotations

import time
from pathlib import Path

from devdeck.core.config import RuntimeConfig, get_runtime_config
from devdeck.core.config_store import ConfigStore
from devdeck.core.logging import get_logger, log_event
from devdeck.core.protocols import TunnelStarter
from devdeck.domain.projects import (
    App,
    AppCommandStep,
    CustomStep,
    DelayStep,
    DirectCommand,
    Project,
    SequenceCommand,
    TunnelStep,
)
from devdeck.process.registry import ProcessRecord
from devdeck.process.supervisor import ProcessMeta, ProcessSupervisor, RestartFn

logger = get_logger(__name__)

StepModel = DelayStep | TunnelStep | AppCommandStep | CustomStep


def resolve_working_dir(project: Project, app: App | None, working_dir: str | None) -> Path:
    """Project root, then the app folder, then the command override.

    An absolute override wins outright; a relative one is joined onto the
    directory resolved so far.
    """
    cwd = Path(project.base_path).expanduser()
    if app is not None:
        cwd = cwd / app.relative_path
    if working_dir:
        override = Path(working_dir).expanduser()
        cwd = override if override.is_absolute() else cwd / override
    return cwd


def split_command(command: str) -> tuple[str, list[str]] | None:
    # Plain whitespace split; quoted arguments are not supported.
    parts = command.split()
    if not parts:
        return None
    return parts[0], parts[1:]


def process_label(project: Project, app: App | None, command: DirectCommand | SequenceCommand) -> str:
    app_part = f" > {app.name}" if app is not None else ""
    return f"{project.name}{app_part} > {command.name}"


class CommandOrchestrator:
    """Turns project commands into supervised processes."""

    def __init__(
        self,
        store: ConfigStore,
        supervisor: ProcessSupervisor,
        tunnels: TunnelStarter,
        runtime: RuntimeConfig | None = None,
    ) -> None:
        self._store = store
        self._supervisor = supervisor
        self._tunnels = tunnels
        self._runtime = runtime or get_runtime_config()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def run(
        self,
        project: Project,
        command: DirectCommand | SequenceCommand,
        app: App | None = None,
    ) -> int | None:
        match command:
            case DirectCommand():
                return self.run_direct(project, app, command)
            case SequenceCommand():
                return self.run_sequence(project, command, app)
        logger.warning("Unsupported command type for %s", command.name)
        return None

    def run_project_command(self, project_id: str, command_id: str) -> int | None:
        project = self._store.get_project(project_id)
        if project is None:
            logger.warning("Project %s not found", project_id)
            return None
        for command in project.commands:
            if command.id == command_id:
                return self.run(project, command)
        logger.warning("Command %s not found in project %s", command_id, project.name)
        return None

    def run_app_command(self, project_id: str, app_id: str, command_id: str) -> int | None:
        project = self._store.get_project(project_id)
        if project is None:
            logger.warning("Project %s not found", project_id)
            return None
        app = project.find_app(app_id)
        command = app.find_command(command_id) if app is not None else None
        if app is None or command is None:
            logger.warning("Command %s not found in app %s", command_id, app_id)
            return None
        return self.run(project, command, app)

    def stop_command(self, pid: int) -> bool:
        return self._supervisor.kill_process(pid)

    def get_command_process(self, command_id: str) -> ProcessRecord | None:
        return self._supervisor.get_command_process(command_id)

    def is_command_running(self, command_id: str) -> bool:
        return self.get_command_process(command_id) is not None

    # ------------------------------------------------------------------
    # Direct commands
    # ------------------------------------------------------------------
    def run_direct(
        self,
        project: Project,
        app: App | None,
        command: DirectCommand,
    ) -> int | None:
        pid = self._spawn_direct(project, app, command)
        if pid is not None and command.auto_restart:
            self._supervisor.setup_polling_for_process(
                pid,
                self._runtime.clamp_poll_interval(command.poll_interval_ms),
                self._restarter(project, app, command),
            )
        return pid

    def _spawn_direct(
        self,
        project: Project,
        app: App | None,
        command: DirectCommand,
    ) -> int | None:
        parsed = split_command(command.command)
        if parsed is None:
            logger.warning("Command %s has nothing to run", command.name)
            return None
        executable, args = parsed
        cwd = resolve_working_dir(project, app, command.working_dir)

        return self._supervisor.start_process(
            executable,
            args,
            cwd,
            ProcessMeta(
                kind="command",
                name=process_label(project, app, command),
                project_id=project.id,
                app_id=app.id if app is not None else None,
                command_id=command.id,
            ),
        )

    def _restarter(
        self,
        project: Project,
        app: App | None,
        command: DirectCommand,
    ) -> RestartFn:
        # The supervisor re-registers polling for the pid this returns.
        def restart() -> int | None:
            resolved = self._reload(project, app, command)
            if resolved is None:
                return None
            return self._spawn_direct(*resolved)

        return restart

    def _reload(
        self,
        project: Project,
        app: App | None,
        command: DirectCommand,
    ) -> tuple[Project, App | None, DirectCommand] | None:
        """Fetch the latest definition so a restart picks up edits."""
        current = self._store.get_project(project.id)
        if current is None:
            logger.warning("Project %s was removed; auto-restart stopped", project.name)
            return None
        current_app: App | None = None
        if app is not None:
            current_app = current.find_app(app.id)
            if current_app is None:
                logger.warning("App %s was removed; auto-restart stopped", app.name)
                return None
            found = current_app.find_command(command.id)
        else:
            found = next((item for item in current.commands if item.id == command.id), None)
        if not isinstance(found, DirectCommand):
            logger.warning("Command %s was removed; auto-restart stopped", command.name)
            return None
        if not found.auto_restart:
            logger.info("Auto-restart disabled for %s; not restarting", found.name)
            return None
        return current, current_app, found

    # ------------------------------------------------------------------
    # Sequences
    # ------------------------------------------------------------------
    def run_sequence(
        self,
        project: Project,
        command: SequenceCommand,
        context_app: App | None = None,
    ) -> int | None:
        """Run each step to completion before the next one starts.

        Steps that reference something missing are skipped. Only the first pid
        is returned; later processes are still tracked in the registry.
        """
        if not command.steps:
            logger.warning("Sequence %s has no steps", command.name)
            return None

        pids: list[int] = []
        for index, step in enumerate(command.steps):
            pid = self._execute_step(project, step, context_app)
            log_event(logger, "sequence_step", sequence=command.name, index=index, type=step.type, pid=pid)
            if pid is not None:
                pids.append(pid)
        return pids[0] if pids else None

    def _execute_step(
        self,
        project: Project,
        step: StepModel,
        context_app: App | None,
    ) -> int | None:
        match step:
            case DelayStep(delay_ms=delay_ms):
                if delay_ms > 0:
                    time.sleep(delay_ms / 1000)
                return None
            case TunnelStep(server_id=server_id, tunnel_id=tunnel_id):
                return self._tunnels.start_tunnel(server_id, tunnel_id)
            case AppCommandStep(app_id=app_id, command_id=command_id):
                app = project.find_app(app_id)
                found = app.find_command(command_id) if app is not None else None
                if app is None or not isinstance(found, DirectCommand):
                    logger.warning(
                        "Skipping step: command %s in app %s not found", command_id, app_id
                    )
                    return None
                return self.run_direct(project, app, found)
            case CustomStep(custom_command=custom_command, custom_working_dir=working_dir):
                if not custom_command.strip():
                    return None
                adhoc = DirectCommand(
                    name="custom",
                    command=custom_command,
                    working_dir=working_dir,
                )
                return self.run_direct(project, context_app, adhoc)
        return None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------
    def resume_auto_restart(self) -> int:
        """Re-attach polling to live processes of auto-restart commands.

        Returns the number of polling chains attached. Dead processes are only
        reported; they are restarted by whoever runs the command next.
        """
        attached = 0
        projects = {project.id: project for project in self._store.get_all_projects()}
        for record in self._supervisor.registry.list_all():
            if record.kind != "command" or not record.project_id or not record.command_id:
                continue
            project = projects.get(record.project_id)
            if project is None:
                continue
            found = project.find_command(record.command_id)
            if found is None:
                continue
            app, command = found
            if not isinstance(command, DirectCommand) or not command.auto_restart:
                continue
            if not self._supervisor.is_process_running(record.pid):
                logger.warning(
                    "Process %s for %s was found dead", record.pid, command.name
                )
                continue
            self._supervisor.setup_polling_for_process(
                record.pid,
                self._runtime.clamp_poll_interval(command.poll_interval_ms),
                self._restarter(project, app, command),
            )
            attached += 1
        return attached
