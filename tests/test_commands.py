from __future__ import annotations

import time
from pathlib import Path

import pytest

from conftest import FakeSupervisor, FakeTunnels
from devdeck.core.config import RuntimeConfig
from devdeck.core.config_store import ConfigStore
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
from devdeck.services.commands import CommandOrchestrator, resolve_working_dir, split_command


@pytest.fixture
def orchestrator(
    store: ConfigStore,
    fake_supervisor: FakeSupervisor,
    fake_tunnels: FakeTunnels,
    runtime: RuntimeConfig,
) -> CommandOrchestrator:
    return CommandOrchestrator(store, fake_supervisor, fake_tunnels, runtime)


@pytest.fixture
def project(store: ConfigStore, tmp_path: Path) -> Project:
    api = App(
        name="api",
        relative_path="services/api",
        commands=[
            DirectCommand(name="dev", command="npm  run   dev"),
            DirectCommand(name="worker", command="node worker.js", auto_restart=True, poll_interval_ms=20),
        ],
    )
    project = Project(
        name="shop",
        base_path=str(tmp_path / "shop"),
        apps=[api],
        commands=[DirectCommand(name="lint", command="make lint", working_dir="tools")],
    )
    store.save_project(project)
    return project


def test_resolve_working_dir_layers(tmp_path: Path):
    project = Project(name="p", base_path=str(tmp_path))
    app = App(name="web", relative_path="apps/web")

    assert resolve_working_dir(project, None, None) == tmp_path
    assert resolve_working_dir(project, app, None) == tmp_path / "apps" / "web"
    assert resolve_working_dir(project, app, "src") == tmp_path / "apps" / "web" / "src"
    assert resolve_working_dir(project, app, str(tmp_path / "elsewhere")) == tmp_path / "elsewhere"


def test_split_command_is_plain_whitespace():
    assert split_command("npm  run   dev") == ("npm", ["run", "dev"])
    assert split_command('echo "a b"') == ("echo", ['"a', 'b"'])
    assert split_command("   ") is None


def test_run_direct_tags_the_record(orchestrator, fake_supervisor, project):
    api = project.apps[0]

    pid = orchestrator.run(project, api.commands[0], api)

    spawn = fake_supervisor.spawns[0]
    assert spawn["pid"] == pid
    assert spawn["command"] == "npm"
    assert spawn["args"] == ["run", "dev"]
    assert spawn["cwd"] == Path(project.base_path) / "services" / "api"
    meta = spawn["meta"]
    assert (meta.kind, meta.project_id, meta.app_id, meta.command_id) == (
        "command",
        project.id,
        api.id,
        api.commands[0].id,
    )
    assert meta.name == "shop > api > dev"
    assert fake_supervisor.polling == {}


def test_run_direct_without_command_string_returns_none(orchestrator, fake_supervisor, project):
    assert orchestrator.run_direct(project, None, DirectCommand(name="empty", command="")) is None
    assert fake_supervisor.spawns == []


def test_spawn_failure_is_returned_as_none(store, registry, fake_tunnels, runtime, project):
    failing = FakeSupervisor(registry, fail_commands=["make"])
    orchestrator = CommandOrchestrator(store, failing, fake_tunnels, runtime)

    assert orchestrator.run_project_command(project.id, project.commands[0].id) is None


def test_auto_restart_wires_polling_with_clamped_interval(orchestrator, fake_supervisor, project):
    api = project.apps[0]

    pid = orchestrator.run(project, api.commands[1], api)

    interval, _restart = fake_supervisor.polling[pid]
    assert interval == 100


def test_restart_picks_up_edited_command(orchestrator, fake_supervisor, store, project):
    api = project.apps[0]
    pid = orchestrator.run(project, api.commands[1], api)
    _interval, restart = fake_supervisor.polling[pid]

    edited = store.get_project(project.id)
    edited.apps[0].commands[1].command = "node worker.js --verbose"
    store.save_project(edited)

    new_pid = restart()

    assert new_pid is not None and new_pid != pid
    assert new_pid not in fake_supervisor.polling
    assert fake_supervisor.spawns[-1]["args"] == ["worker.js", "--verbose"]
    assert fake_supervisor.spawns[-1]["meta"].command_id == api.commands[1].id


def test_restart_stops_when_command_removed_or_disabled(orchestrator, fake_supervisor, store, project):
    api = project.apps[0]
    pid = orchestrator.run(project, api.commands[1], api)
    _interval, restart = fake_supervisor.polling[pid]

    edited = store.get_project(project.id)
    edited.apps[0].commands[1].auto_restart = False
    store.save_project(edited)
    assert restart() is None

    edited.apps[0].commands = edited.apps[0].commands[:1]
    store.save_project(edited)
    assert restart() is None
    assert len(fake_supervisor.spawns) == 1


def test_sequence_waits_for_delay_before_next_step(orchestrator, fake_supervisor, project):
    sequence = SequenceCommand(
        name="echoes",
        steps=[DelayStep(delay_ms=100), CustomStep(custom_command="echo A"), CustomStep(custom_command="echo B")],
    )

    started = time.monotonic()
    pid = orchestrator.run(project, sequence)

    assert [spawn["args"] for spawn in fake_supervisor.spawns] == [["A"], ["B"]]
    assert fake_supervisor.spawns[0]["at"] - started >= 0.1
    assert fake_supervisor.spawns[0]["at"] <= fake_supervisor.spawns[1]["at"]
    assert pid == fake_supervisor.spawns[0]["pid"]


def test_sequence_skips_unresolvable_steps(orchestrator, fake_supervisor, project):
    api = project.apps[0]
    sequence = SequenceCommand(
        name="fail-open",
        steps=[
            AppCommandStep(app_id="no-such-app", command_id=api.commands[0].id),
            AppCommandStep(app_id=api.id, command_id="no-such-command"),
            CustomStep(custom_command="echo B"),
        ],
    )

    pid = orchestrator.run(project, sequence)

    assert [spawn["args"] for spawn in fake_supervisor.spawns] == [["B"]]
    assert pid == fake_supervisor.spawns[0]["pid"]


def test_sequence_returns_only_first_pid_but_tracks_all(orchestrator, fake_supervisor, registry, project):
    # Later pids are not surfaced to the caller; see DESIGN.md open questions.
    api = project.apps[0]
    sequence = SequenceCommand(
        name="all",
        steps=[
            AppCommandStep(app_id=api.id, command_id=api.commands[0].id),
            CustomStep(custom_command="echo B"),
        ],
    )

    pid = orchestrator.run(project, sequence)

    first, second = (spawn["pid"] for spawn in fake_supervisor.spawns)
    assert pid == first
    assert {record.pid for record in registry.list_all()} == {first, second}


def test_tunnel_step_delegates_to_spawner(orchestrator, fake_tunnels, project):
    sequence = SequenceCommand(name="db", steps=[TunnelStep(server_id="srv", tunnel_id="rds")])

    assert orchestrator.run(project, sequence) == 7000
    assert fake_tunnels.calls == [("srv", "rds")]


def test_custom_step_runs_in_context_app_directory(orchestrator, fake_supervisor, project):
    api = project.apps[0]
    sequence = SequenceCommand(
        name="build",
        steps=[
            CustomStep(custom_command="make build"),
            CustomStep(custom_command="make docs", custom_working_dir="docs"),
        ],
    )

    orchestrator.run(project, sequence, api)

    app_dir = Path(project.base_path) / "services" / "api"
    assert [spawn["cwd"] for spawn in fake_supervisor.spawns] == [app_dir, app_dir / "docs"]
    assert all(spawn["meta"].app_id == api.id for spawn in fake_supervisor.spawns)


def test_empty_sequence_returns_none(orchestrator, project):
    assert orchestrator.run(project, SequenceCommand(name="nothing")) is None


def test_id_based_entry_points(orchestrator, fake_supervisor, project):
    api = project.apps[0]

    assert orchestrator.run_project_command("missing", "x") is None
    assert orchestrator.run_app_command(project.id, api.id, "missing") is None

    pid = orchestrator.run_project_command(project.id, project.commands[0].id)
    assert fake_supervisor.spawns[-1]["cwd"] == Path(project.base_path) / "tools"
    assert orchestrator.is_command_running(project.commands[0].id)

    assert orchestrator.stop_command(pid) is True
    assert not orchestrator.is_command_running(project.commands[0].id)


def test_resume_attaches_polling_to_live_auto_restart_processes(orchestrator, fake_supervisor, project):
    api = project.apps[0]
    live = orchestrator.run(project, api.commands[1], api)
    dead = orchestrator.run(project, api.commands[1], api)
    orchestrator.run(project, api.commands[0], api)
    fake_supervisor.alive.discard(dead)
    fake_supervisor.polling.clear()

    assert orchestrator.resume_auto_restart() == 1
    assert list(fake_supervisor.polling) == [live]
