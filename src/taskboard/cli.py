"""
Command-line interface for the taskboard.

Runs the API server, manages the remote session, and drives the client core
(board, groups, workflow, snapshots) against local or remote storage.
"""

import logging
import socket
import sys
from contextlib import contextmanager
from typing import Dict, Optional

import click

from .application import BoardApplication
from .commands import (
    ClearConnections, CreateGroup, CreateTask, CreateWorkflowTask,
    DeleteGroup, DeleteTask, DeleteWorkflowTask, MoveTask, UpdateTask, UpdateWorkflowTask,
)
from .config import Settings
from .context import AppContext, Prompter, Session
from .errors import AuthenticationError, PortConflictError, TransportError
from .importer import dump_snapshot_file, load_snapshot_file
from .models import STATUS_ORDER, TaskStatus
from .remote import AuthClient, RemoteStorage
from .storage import KeyValueFile, LocalStorage
from .views import build_board_view

logger = logging.getLogger(__name__)

STATUS_CHOICE = click.Choice([s.value for s in STATUS_ORDER])


class ConsolePrompter(Prompter):
    """Prompts on the terminal; ``assume_yes`` skips confirmations."""

    def __init__(self, assume_yes: bool = False):
        self.assume_yes = assume_yes

    def confirm(self, message: str) -> bool:
        if self.assume_yes:
            return True
        return click.confirm(message, default=False)

    def alert(self, message: str) -> None:
        click.echo(message, err=True)


def check_port_available(host: str, port: int) -> bool:
    """Return True when nothing is listening on ``host:port``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _kv(ctx: click.Context) -> KeyValueFile:
    return KeyValueFile(_settings(ctx).state_path)


def _auth_client(ctx: click.Context) -> AuthClient:
    settings = _settings(ctx)
    return AuthClient(settings.api_url, client=ctx.obj.get("http_client"), timeout=settings.http_timeout)


@contextmanager
def open_application(ctx: click.Context, assume_yes: bool = False):
    """
    Build and load a BoardApplication for one CLI command.

    Exits non-zero when remote mode has no session or the initial load fails.
    """
    settings = _settings(ctx)
    kv = _kv(ctx)
    session = Session(kv)

    if settings.storage == "remote":
        if not session.is_authenticated:
            raise click.ClickException("Not logged in. Run 'taskboard login' first.")
        storage = RemoteStorage(settings.api_url, session=session,
                                client=ctx.obj.get("http_client"), timeout=settings.http_timeout)
    else:
        storage = LocalStorage(kv)

    context = AppContext(
        storage=storage,
        prompter=ConsolePrompter(assume_yes=assume_yes),
        session=session,
        on_logout=lambda: click.echo("Session expired. Please log in again.", err=True),
    )
    app = BoardApplication(context)
    try:
        if not app.load():
            ctx.exit(1)
        yield app
    finally:
        app.close()


def _require(result, ctx: click.Context):
    """Controllers return None/False after alerting; turn that into exit code 1."""
    if result is None or result is False:
        ctx.exit(1)
    return result


@click.group()
@click.option("--state", "state_path", type=click.Path(dir_okay=False),
              help="Client state file (local board and session)")
@click.option("--api-url", help="Base URL of the taskboard API, e.g. http://localhost:5000/api")
@click.option("--remote/--local", "remote", default=None, help="Use server-backed or local storage")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.pass_context
def main(ctx, state_path, api_url, remote, log_level):
    """Kanban task board with a workflow diagram."""
    if ctx.obj is None:
        ctx.obj = {}
    try:
        settings = Settings.from_env()
    except ValueError as e:
        raise click.ClickException(str(e))
    storage = None if remote is None else ("remote" if remote else "local")
    settings = settings.override(
        state_path=state_path,
        api_url=api_url,
        storage=storage,
        log_level=log_level.upper() if log_level else None,
    )
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    ctx.obj["settings"] = settings


# Server

@main.command()
@click.option("--host", help="Interface to bind")
@click.option("--port", type=int, help="Port to listen on")
@click.option("--db-path", help="SQLite database file")
@click.pass_context
def serve(ctx, host, port, db_path):
    """Run the taskboard API server."""
    import uvicorn

    from .api import create_app

    settings = _settings(ctx).override(host=host, port=port, database_path=db_path)
    try:
        if not check_port_available(settings.host, settings.port):
            raise PortConflictError(f"Port {settings.port} on {settings.host} is already in use")
    except PortConflictError as e:
        raise click.ClickException(str(e))

    click.echo(f"Taskboard API listening on http://{settings.host}:{settings.port}")
    click.echo(f"Database: {settings.database_path}")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port,
                log_level=settings.log_level.lower())


# Session

@main.command()
@click.argument("username")
@click.argument("email")
@click.password_option()
@click.pass_context
def register(ctx, username, email, password):
    """Create an account on the server and log in."""
    client = _auth_client(ctx)
    try:
        token, user = client.register(username, email, password)
    except TransportError as e:
        raise click.ClickException(str(e))
    finally:
        client.close()
    Session(_kv(ctx)).save(token, user)
    click.echo(f"Registered and logged in as {user['username']}")


@main.command()
@click.argument("username")
@click.option("--password", prompt=True, hide_input=True)
@click.pass_context
def login(ctx, username, password):
    """Log in and store the bearer token."""
    client = _auth_client(ctx)
    try:
        token, user = client.login(username, password)
    except TransportError as e:
        raise click.ClickException(str(e))
    finally:
        client.close()
    Session(_kv(ctx)).save(token, user)
    click.echo(f"Logged in as {user['username']}")


@main.command()
@click.pass_context
def logout(ctx):
    """Revoke the server session and forget the token."""
    session = Session(_kv(ctx))
    if not session.is_authenticated:
        click.echo("Not logged in")
        return
    client = _auth_client(ctx)
    try:
        client.logout(session.token)
    except TransportError as e:
        logger.warning(f"Server logout failed, clearing local session anyway: {e}")
    finally:
        client.close()
    session.clear()
    click.echo("Logged out")


@main.command()
@click.option("--offline", is_flag=True, help="Show the stored profile without asking the server")
@click.pass_context
def whoami(ctx, offline):
    """
    Show the user the stored token belongs to.

    Falls back to the profile saved at login when the server cannot be
    reached; a rejected token is still an error.
    """
    session = Session(_kv(ctx))
    if not session.is_authenticated:
        raise click.ClickException("Not logged in")
    if offline:
        user = session.user
    else:
        client = _auth_client(ctx)
        try:
            user = client.me(session.token)
        except AuthenticationError as e:
            raise click.ClickException(str(e))
        except TransportError as e:
            if not session.user:
                raise click.ClickException(str(e))
            logger.warning(f"Server unreachable, showing stored profile: {e}")
            user = session.user
        finally:
            client.close()
    if not user:
        raise click.ClickException("No stored profile; run whoami without --offline")
    click.echo(f"{user['username']} <{user['email']}>")


# Board

def _echo_card(card, indent: str) -> None:
    click.echo(f"{indent}{card.emoji} {card.text}  [{card.id}]")


@main.command()
@click.pass_context
def board(ctx):
    """Print the kanban columns."""
    with open_application(ctx) as app:
        for column in build_board_view(app.board.store):
            click.echo(f"{column.title} ({column.count})")
            for card in column.ungrouped:
                _echo_card(card, "  ")
            for section in column.groups:
                click.echo(f"  # {section.name}")
                for card in section.cards:
                    _echo_card(card, "    ")


@main.command()
@click.argument("text")
@click.option("--emoji", help="Card emoji (defaults to a memo)")
@click.option("--status", type=STATUS_CHOICE, default=TaskStatus.NOT_STARTED.value, show_default=True)
@click.option("--group", help="Group name")
@click.pass_context
def add(ctx, text, emoji, status, group):
    """Add a task."""
    with open_application(ctx) as app:
        task = _require(app.dispatch(CreateTask(text, emoji, TaskStatus(status), group)), ctx)
        click.echo(f"Created task {task.id}")


@main.command()
@click.argument("task_id")
@click.argument("status", type=STATUS_CHOICE)
@click.pass_context
def move(ctx, task_id, status):
    """Move a task to another column."""
    with open_application(ctx) as app:
        task = app.dispatch(MoveTask(task_id, TaskStatus(status)))
        if task is None:
            raise click.ClickException(f"Task {task_id} not found")
        click.echo(f"Moved task {task.id} to {task.status.value}")


@main.command()
@click.argument("task_id")
@click.option("--text")
@click.option("--emoji")
@click.option("--status", type=STATUS_CHOICE)
@click.option("--group")
@click.option("--ungroup", is_flag=True, help="Remove the task from its group")
@click.pass_context
def edit(ctx, task_id, text, emoji, status, group, ungroup):
    """Edit a task's fields."""
    changes: Dict[str, Optional[str]] = {}
    if text is not None:
        changes["text"] = text
    if emoji is not None:
        changes["emoji"] = emoji
    if status is not None:
        changes["status"] = TaskStatus(status)
    if ungroup:
        changes["group"] = None
    elif group is not None:
        changes["group"] = group
    with open_application(ctx) as app:
        if app.board.store.get(task_id) is None:
            raise click.ClickException(f"Task {task_id} not found")
        _require(app.dispatch(UpdateTask(task_id, **changes)), ctx)
        click.echo(f"Updated task {task_id}")


@main.command()
@click.argument("task_id")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def rm(ctx, task_id, yes):
    """Delete a task."""
    with open_application(ctx, assume_yes=yes) as app:
        if app.dispatch(DeleteTask(task_id)):
            click.echo(f"Deleted task {task_id}")


@main.group()
def group():
    """Manage task groups."""


@group.command("add")
@click.argument("name")
@click.pass_context
def group_add(ctx, name):
    with open_application(ctx) as app:
        name = _require(app.dispatch(CreateGroup(name)), ctx)
        click.echo(f"Created group {name}")


@group.command("rm")
@click.argument("name")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def group_rm(ctx, name, yes):
    """Delete a group; its tasks become ungrouped."""
    with open_application(ctx, assume_yes=yes) as app:
        if name not in app.board.store.groups:
            raise click.ClickException(f"Group '{name}' not found")
        if app.dispatch(DeleteGroup(name)):
            click.echo(f"Deleted group {name}")


# Workflow

@main.group()
def workflow():
    """Manage the workflow diagram."""


@workflow.command("show")
@click.pass_context
def workflow_show(ctx):
    with open_application(ctx) as app:
        store = app.workflow.store
        titles = {t.id: t.title for t in store.tasks}
        for node in store.tasks:
            label = f"{node.emoji} {node.title}".strip()
            click.echo(f"{label}  [{node.id}] at ({node.x:.0f}, {node.y:.0f})")
            if node.description:
                click.echo(f"    {node.description}")
        if store.connections:
            click.echo("Connections:")
            for conn in store.connections:
                click.echo(f"  {titles.get(conn.from_, conn.from_)} -> {titles.get(conn.to, conn.to)}")


@workflow.command("add")
@click.argument("title")
@click.option("--emoji", default="")
@click.option("--description", default="")
@click.pass_context
def workflow_add(ctx, title, emoji, description):
    with open_application(ctx) as app:
        node = _require(app.dispatch(CreateWorkflowTask(title, emoji, description)), ctx)
        click.echo(f"Created workflow task {node.id}")


@workflow.command("edit")
@click.argument("task_id")
@click.option("--title")
@click.option("--emoji")
@click.option("--description")
@click.pass_context
def workflow_edit(ctx, task_id, title, emoji, description):
    with open_application(ctx) as app:
        node = app.dispatch(UpdateWorkflowTask(task_id, title, emoji, description))
        if node is None:
            if app.workflow.store.get(task_id) is None:
                raise click.ClickException(f"Workflow task {task_id} not found")
            ctx.exit(1)
        click.echo(f"Updated workflow task {task_id}")


@workflow.command("rm")
@click.argument("task_id")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def workflow_rm(ctx, task_id, yes):
    """Delete a workflow task and its connections."""
    with open_application(ctx, assume_yes=yes) as app:
        if app.dispatch(DeleteWorkflowTask(task_id)):
            click.echo(f"Deleted workflow task {task_id}")


@workflow.command("connect")
@click.argument("from_id")
@click.argument("to_id")
@click.pass_context
def workflow_connect(ctx, from_id, to_id):
    """Connect FROM_ID -> TO_ID."""
    with open_application(ctx) as app:
        for task_id in (from_id, to_id):
            if app.workflow.store.get(task_id) is None:
                raise click.ClickException(f"Workflow task {task_id} not found")
        if app.workflow.connect(from_id, to_id) is None:
            click.echo("Connection already exists or is a self-selection; nothing added")
        else:
            click.echo(f"Connected {from_id} -> {to_id}")


@workflow.command("place")
@click.argument("task_id")
@click.argument("x", type=float)
@click.argument("y", type=float)
@click.pass_context
def workflow_place(ctx, task_id, x, y):
    """Move a workflow task to canvas position X, Y."""
    with open_application(ctx) as app:
        node = app.workflow.place(task_id, x, y)
        if node is None:
            raise click.ClickException(f"Workflow task {task_id} not found")
        click.echo(f"Placed {task_id} at ({node.x:g}, {node.y:g})")


@workflow.command("clear")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def workflow_clear(ctx, yes):
    """Remove every connection."""
    with open_application(ctx, assume_yes=yes) as app:
        if app.dispatch(ClearConnections()):
            click.echo("Cleared all connections")


# Snapshots

@main.command("export")
@click.argument("file_path", type=click.Path(dir_okay=False))
@click.pass_context
def export_snapshot(ctx, file_path):
    """Write the whole board to a YAML file."""
    with open_application(ctx) as app:
        snapshot = app.snapshot()
        dump_snapshot_file(snapshot, file_path)
        click.echo(f"Exported {len(snapshot.tasks)} tasks and "
                   f"{len(snapshot.workflow_tasks)} workflow tasks to {file_path}")


@main.command("import")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def import_snapshot_cmd(ctx, file_path, yes):
    """Replace the whole board with a YAML snapshot."""
    try:
        snapshot, stats = load_snapshot_file(file_path)
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(str(e))

    with open_application(ctx, assume_yes=yes) as app:
        if not app.context.confirm("Replace the current board with this snapshot?"):
            return
        try:
            app.context.storage.save_all(snapshot)
        except TransportError as e:
            raise click.ClickException(f"Import failed: {e}")

    click.echo(f"Imported {stats['tasks_created']} tasks, {stats['groups_created']} groups, "
               f"{stats['workflow_tasks_created']} workflow tasks, "
               f"{stats['connections_created']} connections")
    for error in stats["errors"]:
        click.echo(f"  skipped: {error}", err=True)


if __name__ == "__main__":
    main()
