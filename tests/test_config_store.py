from __future__ import annotations

import json

import pytest

from devdeck.core.config_store import ConfigStore
from devdeck.core.errors import DevdeckError, format_error
from devdeck.domain.projects import (
    App,
    AppCommandStep,
    DelayStep,
    DirectCommand,
    Project,
    SequenceCommand,
)
from devdeck.domain.servers import Server, Tunnel


def test_missing_file_loads_empty_document(store: ConfigStore):
    model = store.load()

    assert model.projects == []
    assert model.processes == []
    assert not store.path.exists()


def test_projects_round_trip_with_tagged_commands(store: ConfigStore):
    web = App(name="web", relative_path="apps/web", commands=[DirectCommand(name="dev", command="npm run dev")])
    project = Project(
        name="Shop",
        base_path="/srv/shop",
        apps=[web],
        commands=[
            SequenceCommand(
                name="Start all",
                steps=[DelayStep(delay_ms=50), AppCommandStep(app_id=web.id, command_id=web.commands[0].id)],
            )
        ],
    )
    store.save_project(project)

    loaded = store.find_project("shop")

    assert loaded is not None and loaded.id == project.id
    sequence = loaded.commands[0]
    assert isinstance(sequence, SequenceCommand)
    assert isinstance(sequence.steps[0], DelayStep)
    assert isinstance(sequence.steps[1], AppCommandStep)
    owner, command = loaded.find_command(web.commands[0].id)
    assert owner.id == web.id
    assert isinstance(command, DirectCommand)


def test_unknown_step_type_is_rejected(store: ConfigStore):
    store.path.parent.mkdir(parents=True, exist_ok=True)
    store.path.write_text(
        json.dumps(
            {
                "schemaVersion": 2,
                "projects": [
                    {
                        "id": "p1",
                        "name": "p",
                        "base_path": "/tmp",
                        "commands": [
                            {"id": "c1", "name": "s", "type": "sequence", "steps": [{"type": "teleport"}]}
                        ],
                    }
                ],
            }
        ),
        encoding="utf-8",
    )

    with pytest.raises(DevdeckError) as excinfo:
        store.get_all_projects()

    message, severity = format_error(excinfo.value)
    assert message.startswith("[config_corrupt]")
    assert severity == "error"


def test_servers_resolve_by_id_or_name(store: ConfigStore):
    server = Server(
        name="Bastion",
        host="bastion.example.com",
        username="ec2-user",
        pem_path="~/.ssh/bastion.pem",
        tunnels=[Tunnel(name="rds", local_port=5433, remote_host="db.internal", remote_port=5432)],
    )
    store.save_server(server)

    assert store.find_server(server.id).name == "Bastion"
    assert store.find_server("bastion").id == server.id
    assert store.get_server("missing") is None
    assert store.get_server(server.id).find_tunnel(server.tunnels[0].id).remote_port == 5432
