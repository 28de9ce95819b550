from __future__ import annotations

import argparse
import json
import sys
import time
from typing import Sequence

from rich.console import Console
from rich.table import Table

from devdeck import __version__
from devdeck.core.config import get_runtime_config
from devdeck.core.errors import DevdeckError, format_error
from devdeck.core.logging import configure_logging
from devdeck.core.paths import CONFIG_FILENAME
from devdeck.core.services import AppServices, build_services
from devdeck.domain.projects import App, DirectCommand, Project, SequenceCommand


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devdeck",
        description="devdeck: tunnels, dev commands and the processes behind them",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
        help="Print version and exit.",
    )

    parser.add_argument(
        "--no-ui",
        action="store_true",
        help="Parse CLI arguments without launching the dashboard.",
    )

    subparsers = parser.add_subparsers(dest="command")

    ps_parser = subparsers.add_parser(
        "ps",
        aliases=["processes"],
        help="Manage background processes.",
    )
    ps_sub = ps_parser.add_subparsers(dest="ps_command", required=True)

    ps_list = ps_sub.add_parser("list", help="List all active processes.")
    ps_list.add_argument("--json", action="store_true", help="Print JSON instead of a table.")
    ps_list.set_defaults(handler=handle_ps_list)

    ps_kill = ps_sub.add_parser("kill", help="Kill a process (and its registered children) by PID.")
    ps_kill.add_argument("pid", type=int, help="Process id.")
    ps_kill.set_defaults(handler=handle_ps_kill)

    ps_kill_all = ps_sub.add_parser("kill-all", help="Kill every tracked background process.")
    ps_kill_all.set_defaults(handler=handle_ps_kill_all)

    run_parser = subparsers.add_parser(
        "run",
        help="Run a project or app command in the background.",
    )
    run_parser.add_argument("project", help="Project id or name.")
    run_parser.add_argument("target", metavar="command", help="Command id or name.")
    run_parser.add_argument("--app", help="App id or name that owns the command.")
    run_parser.add_argument(
        "--wait",
        action="store_true",
        help="Stay in the foreground to keep auto-restart polling alive (Ctrl-C to stop).",
    )
    run_parser.set_defaults(handler=handle_run)

    projects_parser = subparsers.add_parser("projects", help="Inspect configured projects.")
    projects_sub = projects_parser.add_subparsers(dest="projects_command", required=True)
    projects_list = projects_sub.add_parser("list", help="List projects, apps and commands.")
    projects_list.set_defaults(handler=handle_projects_list)

    tunnel_parser = subparsers.add_parser("tunnel", help="Start an SSH tunnel in the background.")
    tunnel_parser.add_argument("server", help="Server id or name.")
    tunnel_parser.add_argument("tunnel", help="Tunnel id or name.")
    tunnel_parser.add_argument(
        "--print",
        dest="print_only",
        action="store_true",
        help="Print the ssh command instead of starting it.",
    )
    tunnel_parser.set_defaults(handler=handle_tunnel)

    config_parser = subparsers.add_parser(
        "print-config",
        help=f"Print resolved runtime config and {CONFIG_FILENAME} to stdout.",
    )
    config_parser.set_defaults(handler=handle_print_config)

    return parser


def handle_ps_list(args: argparse.Namespace, services: AppServices) -> None:
    records = services.supervisor.list_active_processes()
    if args.json:
        print(json.dumps([record.to_json() for record in records], indent=2))
        return
    console = Console()
    if not records:
        console.print("No active processes.")
        return
    table = Table("PID", "Type", "Name", "Started")
    for record in records:
        table.add_row(
            str(record.pid),
            record.kind,
            record.name,
            record.start_time.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


def handle_ps_kill(args: argparse.Namespace, services: AppServices) -> None:
    if services.supervisor.kill_process(args.pid):
        print(f"Process {args.pid} killed")
        return
    raise SystemExit(f"Failed to kill process {args.pid} (may already be dead)")


def handle_ps_kill_all(_args: argparse.Namespace, services: AppServices) -> None:
    killed, total = services.supervisor.kill_all()
    print(f"Killed {killed}/{total} process(es)")


def handle_run(args: argparse.Namespace, services: AppServices) -> None:
    project = services.store.find_project(args.project)
    if project is None:
        raise DevdeckError(code="project_not_found", message=f"Project not found: {args.project}")
    app, command = _resolve_command(project, args.target, args.app)

    supervisor = services.supervisor
    if args.wait:
        supervisor.start_polling()
    try:
        pid = services.orchestrator.run(project, command, app)
        if pid is None:
            raise SystemExit(f"Failed to start {command.name}")
        print(f"Started {command.name} (PID: {pid})")
        if args.wait:
            _host_polling(services)
    finally:
        supervisor.stop_polling()


def _host_polling(services: AppServices) -> None:
    if not services.supervisor.watched_pids():
        print("No auto-restart processes to watch.")
        return
    print("Watching for crashes; press Ctrl-C to stop watching (processes keep running).")
    try:
        while services.supervisor.watched_pids():
            time.sleep(1)
    except KeyboardInterrupt:
        print()


def _resolve_command(
    project: Project,
    command_ref: str,
    app_ref: str | None,
) -> tuple[App | None, DirectCommand | SequenceCommand]:
    def matches(item_id: str, name: str, ref: str) -> bool:
        return item_id == ref or name.lower() == ref.strip().lower()

    if app_ref:
        app = next((item for item in project.apps if matches(item.id, item.name, app_ref)), None)
        if app is None:
            raise DevdeckError(code="command_not_found", message=f"App not found: {app_ref}")
        for command in app.commands:
            if matches(command.id, command.name, command_ref):
                return app, command
    else:
        for owner, command in project.iter_commands():
            if matches(command.id, command.name, command_ref):
                return owner, command
    raise DevdeckError(code="command_not_found", message=f"Command not found: {command_ref}")


def handle_projects_list(_args: argparse.Namespace, services: AppServices) -> None:
    console = Console()
    projects = services.store.get_all_projects()
    if not projects:
        console.print("No projects configured.")
        return
    table = Table("Project", "App", "Command", "Type", "Auto-restart", "Running")
    for project in projects:
        for app, command in project.iter_commands():
            running = services.supervisor.get_command_process(command.id)
            table.add_row(
                project.name,
                app.name if app is not None else "-",
                command.name,
                command.type,
                "yes" if isinstance(command, DirectCommand) and command.auto_restart else "",
                str(running.pid) if running is not None else "",
            )
    console.print(table)


def handle_tunnel(args: argparse.Namespace, services: AppServices) -> None:
    server = services.store.find_server(args.server)
    if server is None:
        raise DevdeckError(code="tunnel_not_found", message=f"Server not found: {args.server}")
    ref = args.tunnel.strip().lower()
    tunnel = next(
        (item for item in server.tunnels if item.id == args.tunnel or item.name.lower() == ref),
        None,
    )
    if tunnel is None:
        raise DevdeckError(code="tunnel_not_found", message=f"Tunnel not found: {args.tunnel}")
    if args.print_only:
        print(services.tunnels.tunnel_command(server.id, tunnel.id))
        return
    pid = services.tunnels.start_tunnel(server.id, tunnel.id)
    if pid is None:
        raise SystemExit(f"Failed to start tunnel {tunnel.name}")
    print(
        f"Tunnel started in background (PID: {pid}) "
        f"localhost:{tunnel.local_port} -> {tunnel.remote_host}:{tunnel.remote_port}"
    )


def _redact_secrets(value: object) -> object:
    if isinstance(value, dict):
        redacted: dict[object, object] = {}
        for key, item in value.items():
            key_text = str(key).lower()
            tokens = ("token", "secret", "password", "pem_path")
            if any(token in key_text for token in tokens):
                redacted[key] = "***"
            else:
                redacted[key] = _redact_secrets(item)
        return redacted
    if isinstance(value, list):
        return [_redact_secrets(item) for item in value]
    return value


def handle_print_config(_args: argparse.Namespace, services: AppServices) -> None:
    payload = {
        "runtime": services.runtime.model_dump(mode="json"),
        "config_path": str(services.store.path),
        "config": services.store.load().model_dump(mode="json"),
    }
    print(json.dumps(_redact_secrets(payload), indent=2))


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    runtime = get_runtime_config()
    configure_logging(
        level=runtime.log_level,
        format_name=runtime.log_format,
        log_dir=runtime.log_dir,
    )

    if args.no_ui and args.command is None:
        return

    services = build_services(runtime)
    try:
        if args.command is None:
            from devdeck.app import main as run_app

            run_app(services)
            return
        args.handler(args, services)
    except DevdeckError as exc:
        message, _severity = format_error(exc)
        print(message, file=sys.stderr)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
