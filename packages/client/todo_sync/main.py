"""
``todo-sync`` entry point.

Loads configuration, configures logging, signs in and runs one command
against the signed-in user's todos.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Sequence

import structlog

from todo_shared.schemas import Priority, StatusFilter, TodoRead

from .auth import AuthClient
from .change_feed import ChangeFeed
from .config import SyncConfig, load_config
from .errors import AuthenticationError, TodoSyncError
from .forms import DraftForm
from .gateway import TodoGateway, create_http_client
from .health import HealthServer
from .metrics import MetricsCollector
from .session import SessionContext
from .sync import TodoSync
from .uploads import AttachmentUploader
from .views import count_todos, filter_todos, has_active_filters

SHUTDOWN_TIMEOUT = 10.0


def configure_logging(level: str = "info", fmt: str = "text") -> None:
    """Configure structlog with the specified level and format."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            structlog.get_level_from_name(level)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


@dataclass
class Client:
    session_context: SessionContext
    auth: AuthClient
    sync: TodoSync
    uploader: AttachmentUploader


@asynccontextmanager
async def open_client(config: SyncConfig) -> AsyncIterator[Client]:
    """Sign in with the configured account and yield a ready client; sign out on exit."""
    password = config.account.password
    if not config.account.email or not password:
        raise AuthenticationError(
            f"Set account.email in the config and the {config.account.password_env} "
            "environment variable"
        )

    session_context = SessionContext()
    metrics = MetricsCollector()
    http = create_http_client(config.server)
    auth = AuthClient(http, session_context)

    def feed_factory() -> ChangeFeed:
        return ChangeFeed(
            config.server.url,
            session_context,
            heartbeat_timeout=config.server.feed_heartbeat_timeout_seconds,
            verify_tls=config.server.verify_tls,
        )

    sync = TodoSync(
        TodoGateway(http, session_context),
        session_context,
        feed_factory=feed_factory,
        coalesce_window=config.sync.coalesce_window_seconds,
        metrics=metrics,
    )
    try:
        await auth.sign_in_with_password(config.account.email, password)
        yield Client(session_context, auth, sync, AttachmentUploader(http, session_context))
    finally:
        await sync.close()
        await auth.sign_out()
        await http.aclose()


def format_todo(todo: TodoRead) -> str:
    mark = "x" if todo.is_completed else " "
    line = f"[{mark}] {str(todo.id)[:8]}  {todo.priority.value:<6}  {todo.task}"
    if todo.image_url:
        line += "  (image)"
    return line


def print_todos(todos: Sequence[TodoRead], status: str, priority: str) -> None:
    visible = filter_todos(todos, status=status, priority=priority)
    if not visible:
        if has_active_filters(status, priority):
            print("No todos match the current filters.")
        else:
            print("No todos yet.")
    for todo in visible:
        print(format_todo(todo))

    counts = count_todos(todos)
    print(
        f"\n{counts.total} total, {counts.active} active, {counts.completed} completed "
        f"({counts.completion_percentage}%), {counts.high_priority_active} high priority active"
    )


def resolve_id(todos: Sequence[TodoRead], prefix: str) -> str:
    """Match a full id or an unambiguous id prefix."""
    matches = [t for t in todos if str(t.id).startswith(prefix.lower())]
    if not matches:
        raise TodoSyncError(f"No todo with id {prefix}")
    if len(matches) > 1:
        raise TodoSyncError(f"Id prefix {prefix} is ambiguous")
    return str(matches[0].id)


async def cmd_list(client: Client, args: argparse.Namespace) -> None:
    todos = await client.sync.fetch_all()
    print_todos(todos, args.status, args.priority)


async def cmd_add(client: Client, args: argparse.Namespace) -> None:
    form = DraftForm(
        task=args.task,
        description=args.description or "",
        priority=Priority(args.priority),
    )
    if not form.can_submit:
        raise TodoSyncError("Task title cannot be empty")
    if args.image:
        image = Path(args.image)
        await form.attach_image(client.uploader, image.name, image.read_bytes())
    inserted = await form.submit(client.sync)
    for todo in inserted:
        print(f"Added {format_todo(todo)}")


async def cmd_done(client: Client, args: argparse.Namespace) -> None:
    todo_id = resolve_id(await client.sync.fetch_all(), args.id)
    await client.sync.update(todo_id, is_completed=not args.undo)
    print_todos(client.sync.todos, StatusFilter.ALL.value, "all")


async def cmd_rm(client: Client, args: argparse.Namespace) -> None:
    todo_id = resolve_id(await client.sync.fetch_all(), args.id)
    await client.sync.delete(todo_id)
    print_todos(client.sync.todos, StatusFilter.ALL.value, "all")


async def cmd_watch(client: Client, args: argparse.Namespace, config: SyncConfig) -> None:
    """Print the list on every change until interrupted or the session ends."""
    log = structlog.get_logger()
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    async def on_session_end() -> None:
        shutdown.set()

    client.session_context.on_end(on_session_end)

    def on_change(todos: tuple[TodoRead, ...]) -> None:
        print_todos(todos, args.status, args.priority)

    health = None
    if config.metrics.enabled:
        health = HealthServer(
            client.sync,
            client.session_context,
            host=config.metrics.host,
            port=config.metrics.port,
        )
        await health.start()
        log.info("todo_sync.health_started", port=config.metrics.port)

    try:
        on_change(await client.sync.fetch_all())
        if config.sync.subscribe_to_changes:
            await client.sync.subscribe_to_changes(on_change)
        await shutdown.wait()
    finally:
        if health is not None:
            await health.stop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
    log.info("todo_sync.watch_stopped", signed_in=client.session_context.active)


async def run_command(config: SyncConfig, args: argparse.Namespace) -> None:
    async with open_client(config) as client:
        if args.command == "watch":
            await cmd_watch(client, args, config)
        else:
            await COMMANDS[args.command](client, args)


COMMANDS = {
    "list": cmd_list,
    "add": cmd_add,
    "done": cmd_done,
    "rm": cmd_rm,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Todo list client with live sync")
    parser.add_argument(
        "-c", "--config",
        default="todo-sync.yaml",
        help="Path to configuration file (default: todo-sync.yaml)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    status_choices = [s.value for s in StatusFilter]
    priority_choices = ["all"] + [p.value for p in Priority]

    for name in ("list", "watch"):
        p = sub.add_parser(name, help=f"{name} todos")
        p.add_argument("--status", choices=status_choices, default="all")
        p.add_argument("--priority", choices=priority_choices, default="all")

    add = sub.add_parser("add", help="add a todo")
    add.add_argument("task")
    add.add_argument("-d", "--description")
    add.add_argument("-p", "--priority", choices=[p.value for p in Priority], default="medium")
    add.add_argument("--image", help="image file to attach")

    done = sub.add_parser("done", help="mark a todo completed")
    done.add_argument("id", help="todo id or unambiguous prefix")
    done.add_argument("--undo", action="store_true", help="mark it active again")

    rm = sub.add_parser("rm", help="delete a todo")
    rm.add_argument("id", help="todo id or unambiguous prefix")
    return parser


def run(argv: Sequence[str] | None = None) -> None:
    """CLI entry point for the sync client."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.logging.level, config.logging.format)
    log = structlog.get_logger()
    log.debug("todo_sync.config_loaded", config_path=args.config, server=config.server.url)

    try:
        asyncio.run(run_command(config, args))
    except (TodoSyncError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
