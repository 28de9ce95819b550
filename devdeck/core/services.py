from __future__ import annotations

from dataclasses import dataclass

from devdeck.core.config import RuntimeConfig, get_runtime_config
from devdeck.core.config_store import ConfigStore
from devdeck.core.paths import resolve_config_file
from devdeck.process.registry import ProcessRegistry
from devdeck.process.supervisor import ProcessSupervisor
from devdeck.services.commands import CommandOrchestrator
from devdeck.services.tunnels import TunnelSpawner


@dataclass(frozen=True)
class AppServices:
    runtime: RuntimeConfig
    store: ConfigStore
    registry: ProcessRegistry
    supervisor: ProcessSupervisor
    tunnels: TunnelSpawner
    orchestrator: CommandOrchestrator


def build_services(runtime: RuntimeConfig | None = None) -> AppServices:
    runtime = runtime or get_runtime_config()
    store = ConfigStore(resolve_config_file(runtime.config_dir))
    registry = ProcessRegistry(store)
    supervisor = ProcessSupervisor(registry)
    tunnels = TunnelSpawner(store, supervisor)
    orchestrator = CommandOrchestrator(store, supervisor, tunnels, runtime)
    return AppServices(
        runtime=runtime,
        store=store,
        registry=registry,
        supervisor=supervisor,
        tunnels=tunnels,
        orchestrator=orchestrator,
    )
