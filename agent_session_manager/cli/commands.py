"""CLI commands for agent-session-manager."""

from __future__ import annotations

import sys
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from agent_session_manager import __version__
from agent_session_manager.errors import AsmError, NotFoundError
from agent_session_manager.session.instance import InstanceStatus

if TYPE_CHECKING:
    from agent_session_manager.config.schema import Config

app = typer.Typer(
    name="asmgr",
    help="agent-session-manager - run AI coding agents in tmux and keep an eye on them",
    invoke_without_command=True,
)
projects_app = typer.Typer(help="Manage projects (independent session registries).", no_args_is_help=True)
app.add_typer(projects_app, name="projects")
console = Console()

DEFAULT_PROJECT_ALIASES = {"", "default", "-"}


class _State:
    project: str = ""


_state = _State()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"agent-session-manager v{__version__}")
        raise typer.Exit()


def _setup_logging(config: "Config") -> None:
    """Log to a rotating file; the terminal belongs to the TUI and to tmux."""
    logger.remove()
    try:
        config.log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            config.log_path,
            level=config.log.level.upper(),
            rotation=config.log.rotation,
            enqueue=True,
        )
    except OSError as exc:
        logger.add(sys.stderr, level="WARNING")
        logger.warning(f"[cli] cannot open log file {config.log_path}: {exc}")


@contextmanager
def _errors() -> Iterator[None]:
    """Print core errors in red and exit 1."""
    try:
        yield
    except AsmError as exc:
        logger.debug(f"[cli] {type(exc).__name__}: {exc}")
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from None


def _config_root() -> Path:
    """Config root from config.json (``paths.config_dir``) or the environment."""
    from agent_session_manager.config.loader import load_config

    return load_config().config_root


def _project_id(raw: str, root: Path) -> str:
    """Map a project id or name (or ``default``) to a project id."""
    from agent_session_manager.session.project_store import ProjectStore

    value = (raw or "").strip()
    if value.lower() in DEFAULT_PROJECT_ALIASES:
        return ""
    return ProjectStore(root).find_project(value).id


def _open_storage(project: str | None = None):
    """Config, runtime and storage bound to the selected project."""
    from agent_session_manager.config.loader import load_config
    from agent_session_manager.session.instance import InstanceRuntime
    from agent_session_manager.session.storage import Storage

    config = load_config()
    runtime = InstanceRuntime.from_config(config)
    storage = Storage(config.config_root, runtime)
    storage.set_active_project(_project_id(_state.project if project is None else project, config.config_root))
    return config, runtime, storage


@contextmanager
def _locked(storage) -> Iterator[None]:
    from agent_session_manager.session.lock import ProjectLock

    with ProjectLock(storage.active_project, storage.root):
        yield


def _resolve(storage, key: str):
    """Find an instance by name, falling back to id."""
    try:
        return storage.get_by_name(key)
    except NotFoundError:
        return storage.get(key)


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
    ),
    project: str = typer.Option("", "--project", "-p", help="Project id or name (default project if omitted)."),
) -> None:
    """agent-session-manager entrypoint. Without a command, opens the TUI."""
    del version
    from agent_session_manager.config.loader import load_config

    _state.project = project
    with _errors():
        _setup_logging(load_config())
    if ctx.invoked_subcommand is None:
        tui(project=project)


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"agent-session-manager v{__version__}")


@app.command()
def tui(
    project: str = typer.Option("", "--project", "-p", help="Project id or name."),
) -> None:
    """Open the terminal UI."""
    from agent_session_manager.tui.app import SessionManagerApp

    with _errors():
        config, runtime, storage = _open_storage(project or _state.project)
        SessionManagerApp(config=config, storage=storage).run()


@app.command("list")
def list_cmd() -> None:
    """List instances of the active project."""
    from agent_session_manager.providers.marker_parser import Activity

    with _errors():
        _, _, storage = _open_storage()
        registry = storage.load()

    if not registry.instances:
        console.print("[dim]No sessions yet. Add one with [cyan]asmgr add NAME PATH[/cyan].[/dim]")
        return

    groups = {g.id: g.name for g in registry.groups}
    table = Table(show_header=True, header_style="bold")
    table.add_column("Name")
    table.add_column("Agent")
    table.add_column("Status")
    table.add_column("Activity")
    table.add_column("Group")
    table.add_column("Path", overflow="fold")
    styles = {Activity.IDLE: "dim", Activity.BUSY: "yellow", Activity.WAITING: "bold red"}
    for inst in registry.instances:
        running = inst.status is InstanceStatus.RUNNING
        activity = inst.detect_activity() if running else Activity.IDLE
        agent = inst.agent.value + (" [yellow]![/yellow]" if inst.auto_yes else "")
        table.add_row(
            inst.name,
            agent,
            "[green]running[/green]" if running else "[dim]stopped[/dim]",
            f"[{styles[activity]}]{activity.value}[/{styles[activity]}]" if running else "",
            groups.get(inst.group_id or "", ""),
            inst.path,
        )
    console.print(table)


@app.command()
def add(
    name: str = typer.Argument(..., help="Unique session name."),
    path: str = typer.Argument(".", help="Working directory."),
    agent: str = typer.Option("", "--agent", "-a", help="claude|gemini|aider|codex|amazonq|opencode|custom"),
    auto_yes: bool = typer.Option(False, "--auto-yes", "-y", help="Launch with the agent's skip-confirmation flag."),
    command: str = typer.Option("", "--command", "-c", help="Command line for --agent custom."),
    start: bool = typer.Option(False, "--start", help="Start the session right away."),
) -> None:
    """Register a new agent session."""
    from agent_session_manager.session.instance import Instance

    with _errors():
        config, runtime, storage = _open_storage()
        with _locked(storage):
            inst = Instance.create(
                name,
                path,
                agent=agent or config.tui.default_agent,
                auto_yes=auto_yes,
                custom_command=command,
                runtime=runtime,
            )
            storage.add(inst)
            if start:
                inst.start()
                storage.update(inst)
    console.print(f"[green]OK[/green] Added {inst.name} ({inst.agent.value}) at {inst.path}")


@app.command()
def start(
    name: str = typer.Argument(..., help="Session name or id."),
    resume: str = typer.Option("", "--resume", "-r", help="Resume token passed to the agent."),
) -> None:
    """Start a session in a detached tmux session."""
    with _errors():
        _, _, storage = _open_storage()
        with _locked(storage):
            inst = _resolve(storage, name)
            inst = storage.modify_instance(inst.id, lambda target: target.start(resume or None))
    console.print(f"[green]OK[/green] {inst.name} running as [cyan]{inst.tmux_session_name}[/cyan]")


@app.command()
def stop(name: str = typer.Argument(..., help="Session name or id.")) -> None:
    """Stop a session (kills its tmux session)."""
    with _errors():
        _, _, storage = _open_storage()
        with _locked(storage):
            inst = _resolve(storage, name)
            inst = storage.modify_instance(inst.id, lambda target: target.stop())
    console.print(f"[green]OK[/green] Stopped {inst.name}")


@app.command()
def attach(name: str = typer.Argument(..., help="Session name or id.")) -> None:
    """Attach this terminal to a running session (detach with Ctrl+Q)."""
    with _errors():
        _, _, storage = _open_storage()
        inst = _resolve(storage, name)
        inst.attach()


@app.command()
def send(
    name: str = typer.Argument(..., help="Session name or id."),
    text: str = typer.Argument(..., help="Text to type into the agent."),
    enter: bool = typer.Option(True, "--enter/--no-enter", help="Submit with Enter after typing."),
) -> None:
    """Type text into a running session without attaching."""
    with _errors():
        _, _, storage = _open_storage()
        inst = _resolve(storage, name)
        if enter:
            inst.send_prompt(text)
        else:
            inst.send_text(text)
    console.print(f"[green]OK[/green] Sent {len(text)} chars to {inst.name}")


@app.command()
def preview(
    name: str = typer.Argument(..., help="Session name or id."),
    lines: int = typer.Option(0, "--lines", "-n", help="Number of lines (default from config)."),
) -> None:
    """Print the cleaned tail of a session's pane."""
    with _errors():
        config, _, storage = _open_storage()
        inst = _resolve(storage, name)
        content = inst.capture_preview(lines or config.tui.preview_lines)
    console.print(Text.from_ansi(content))


@app.command()
def activity() -> None:
    """Show activity and last line of every running session."""
    with _errors():
        _, _, storage = _open_storage()
        registry = storage.load()
    for inst in registry.instances:
        if inst.status is not InstanceStatus.RUNNING:
            console.print(f"[dim]{inst.name}: stopped[/dim]")
            continue
        state = inst.detect_activity().value
        line = Text.from_ansi(inst.get_last_line())
        console.print(Text.assemble((f"{inst.name}", "bold"), f" [{state}] ", line))


@app.command()
def diff(
    name: str = typer.Argument(..., help="Session name or id."),
    full: bool = typer.Option(False, "--full", help="Diff against the index instead of the start commit."),
    show: bool = typer.Option(False, "--show", help="Print the diff text too."),
    reset: bool = typer.Option(False, "--reset", help="Record the current HEAD as the new start commit."),
) -> None:
    """Show lines added and removed in a session's working directory."""
    with _errors():
        _, _, storage = _open_storage()
        inst = _resolve(storage, name)
        if reset:
            with _locked(storage):
                inst.reset_base_commit()
                storage.update(inst)
        stats = inst.full_diff() if full else inst.session_diff()
    if stats.error:
        console.print(f"[yellow]{inst.name}: {escape(stats.error)}[/yellow]")
        raise typer.Exit(1)
    console.print(f"{inst.name}: [green]+{stats.added}[/green] [red]-{stats.removed}[/red]")
    if show and stats.content:
        console.print(Text(stats.content))


@app.command()
def remove(
    name: str = typer.Argument(..., help="Session name or id."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Stop and delete a session."""
    with _errors():
        _, _, storage = _open_storage()
        with _locked(storage):
            inst = _resolve(storage, name)
            if not yes and not typer.confirm(f"Remove {inst.name}?"):
                raise typer.Exit()
            storage.remove(inst.id)
    console.print(f"[green]OK[/green] Removed {inst.name}")


@app.command()
def rename(
    name: str = typer.Argument(..., help="Session name or id."),
    new_name: str = typer.Argument(..., help="New name."),
) -> None:
    """Rename a session."""
    with _errors():
        _, _, storage = _open_storage()
        with _locked(storage):
            inst = _resolve(storage, name)
            storage.rename(inst.id, new_name)
    console.print(f"[green]OK[/green] Renamed {name} to {new_name}")


@app.command("import")
def import_cmd(
    source: str = typer.Argument(..., help="Source project (id, name or 'default')."),
    target: str = typer.Argument(..., help="Destination project (id, name or 'default')."),
) -> None:
    """Move all sessions and groups from one project into another."""
    from agent_session_manager.session.lock import ProjectLock

    with _errors():
        _, _, storage = _open_storage()
        from_id, to_id = _project_id(source, storage.root), _project_id(target, storage.root)
        with ProjectLock(from_id, storage.root), ProjectLock(to_id, storage.root):
            moved = storage.import_sessions(from_id, to_id)
    console.print(f"[green]OK[/green] Imported {moved} session(s)")


@app.command("filters-init")
def filters_init(
    force: bool = typer.Option(False, "--force", help="Overwrite an existing filters.json."),
) -> None:
    """Write the built-in chrome filters to filters.json for editing."""
    from agent_session_manager.providers.signal_filter import get_filters_path, save_default_filters

    with _errors():
        root = _config_root()
    path = get_filters_path(root)
    if path.exists() and not force:
        console.print(f"[yellow]{path} already exists (use --force to overwrite).[/yellow]")
        raise typer.Exit()
    with _errors():
        try:
            save_default_filters(root)
        except OSError as exc:
            raise AsmError(f"cannot write {path}: {exc}") from exc
    console.print(f"[green]OK[/green] Wrote {path}")


@app.command()
def yolo(
    tmux_session: str = typer.Argument(..., help="tmux session name of a managed instance."),
) -> None:
    """Toggle auto-approve for the session running in TMUX_SESSION.

    Bound to Ctrl+Y inside managed tmux sessions. Does not take the project
    lock: it runs while the TUI holds it.
    """
    from agent_session_manager.session.project_store import ProjectStore

    with _errors():
        _, _, storage = _open_storage("")
        project_ids = [p.id for p in ProjectStore(storage.root).list_projects()]
        found = storage.find_by_session_name(tmux_session, project_ids)
        if found is None:
            raise NotFoundError(f"session not found: {tmux_session}")
        _, inst = found
        enabled = inst.toggle_auto_yes()
        storage.update(inst)
    console.print(f"{inst.name}: auto-yes {'on' if enabled else 'off'}")


# ------------------------------------------------------------------ #
# Projects                                                             #
# ------------------------------------------------------------------ #


@projects_app.command("list")
def projects_list() -> None:
    """List projects with their session counts."""
    from agent_session_manager.session.lock import is_locked
    from agent_session_manager.session.project_store import ProjectStore

    with _errors():
        _, _, storage = _open_storage("")
        store = ProjectStore(storage.root)
        projects = store.list_projects()
        last = store.last_project()

    table = Table(show_header=True, header_style="bold")
    table.add_column("Id")
    table.add_column("Name")
    table.add_column("Sessions", justify="right")
    table.add_column("Open")
    rows = [("", "(default)")] + [(p.id, p.name) for p in projects]
    for pid, pname in rows:
        locked, holder = is_locked(pid, storage.root)
        marker = " *" if pid and pid == last else ""
        table.add_row(
            pid or "-",
            pname + marker,
            str(storage.session_count(pid)),
            f"[yellow]pid {holder}[/yellow]" if locked else "",
        )
    console.print(table)


@projects_app.command("add")
def projects_add(
    name: str = typer.Argument(..., help="Project name."),
    path: Optional[str] = typer.Option(None, "--path", help="Optional project directory."),
) -> None:
    """Create a project."""
    from agent_session_manager.session.project_store import ProjectStore

    with _errors():
        project = ProjectStore(_config_root()).add_project(name, path or "")
    console.print(f"[green]OK[/green] Created project {project.name} ([cyan]{project.id}[/cyan])")


@projects_app.command("rename")
def projects_rename(
    project: str = typer.Argument(..., help="Project id or name."),
    name: str = typer.Argument(..., help="New name."),
) -> None:
    """Rename a project."""
    from agent_session_manager.session.project_store import ProjectStore

    with _errors():
        store = ProjectStore(_config_root())
        store.rename_project(store.find_project(project).id, name)
    console.print(f"[green]OK[/green] Renamed project to {name}")


@projects_app.command("remove")
def projects_remove(
    project: str = typer.Argument(..., help="Project id or name."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete a project, stopping its sessions first."""
    from agent_session_manager.session.lock import ProjectLock
    from agent_session_manager.session.project_store import ProjectStore

    with _errors():
        _, _, storage = _open_storage("")
        store = ProjectStore(storage.root)
        target = store.find_project(project)
        if not yes and not typer.confirm(f"Delete project {target.name} and its sessions?"):
            raise typer.Exit()
        with ProjectLock(target.id, storage.root):
            for inst in storage.load(target.id).instances:
                inst.stop()
        store.remove_project(target.id)
    console.print(f"[green]OK[/green] Removed project {target.name}")
