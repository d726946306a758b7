"""Textual session manager: instance list, live preview, attach."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from loguru import logger
from rich.markup import escape
from rich.text import Text
from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Label, OptionList, Static
from textual.widgets.option_list import Option

from agent_session_manager.errors import AsmError
from agent_session_manager.providers.marker_parser import Activity
from agent_session_manager.session.instance import Instance, InstanceStatus
from agent_session_manager.session.lock import ProjectLock
from agent_session_manager.session.models import Registry
from agent_session_manager.tui.dialogs import ConfirmModal, NewInstanceModal, PromptModal

if TYPE_CHECKING:
    from agent_session_manager.config.schema import Config
    from agent_session_manager.session.storage import Storage

_ACTIVITY_GLYPH = {
    Activity.IDLE: ("○", "#6b8f7a"),
    Activity.BUSY: ("●", "#ffd400"),
    Activity.WAITING: ("!", "bold #ff4444"),
}


@dataclass
class RowState:
    """What the refresh worker learned about one instance."""

    activity: Activity = Activity.IDLE
    alive: bool = False
    last_line: str = ""


class SessionManagerApp(App):
    CSS = """
    Screen {
        background: #050a08;
        color: #b7ffc8;
    }

    #main-row {
        height: 1fr;
        layout: horizontal;
    }

    #list-pane {
        width: 2fr;
        border: heavy #00ff66;
        background: #07160f;
    }

    #preview-pane {
        width: 3fr;
        border: heavy #00ff66;
        background: #07160f;
    }

    .pane-title {
        height: 1;
        width: 1fr;
        content-align: center middle;
        color: #ffd400;
        background: #153024;
        text-style: bold;
    }

    #sessions {
        height: 1fr;
        background: #07160f;
    }

    #preview {
        height: 1fr;
        padding: 0 1;
    }

    #status-bar {
        dock: bottom;
        height: 1;
        background: #18331f;
        color: #e2ff6d;
        padding: 0 1;
    }
    """

    BINDINGS = [
        Binding("n", "new_instance", "New"),
        Binding("s", "start", "Start"),
        Binding("x", "stop", "Stop"),
        Binding("enter", "attach", "Attach"),
        Binding("p", "send_prompt", "Prompt"),
        Binding("y", "toggle_yolo", "Yolo"),
        Binding("d", "delete", "Delete"),
        Binding("r", "refresh", "Refresh"),
        Binding("q", "quit", "Quit"),
    ]

    def __init__(self, config: "Config", storage: "Storage") -> None:
        super().__init__()
        self.app_config = config
        self.storage = storage
        self.registry = Registry()
        self.rows: dict[str, RowState] = {}
        self._project_lock = ProjectLock(storage.active_project, storage.root)
        self._status_note = "Ready"
        self._list_cursor: Optional[int] = None

    # ------------------------------------------------------------------ #
    # Layout                                                               #
    # ------------------------------------------------------------------ #

    def compose(self) -> ComposeResult:
        with Horizontal(id="main-row"):
            with Vertical(id="list-pane"):
                yield Label(self._title(), classes="pane-title")
                yield OptionList(id="sessions")
            with Vertical(id="preview-pane"):
                yield Label("PREVIEW", classes="pane-title", id="preview-title")
                yield Static("", id="preview")
        yield Static("", id="status-bar")

    def _title(self) -> str:
        project = self.storage.active_project or "default"
        return f"SESSIONS · {project}"

    def on_mount(self) -> None:
        try:
            self._project_lock.acquire()
        except AsmError as exc:
            self.exit(return_code=1, message=str(exc))
            return
        self.reload()
        option_list = self.query_one("#sessions", OptionList)
        cursor = self.registry.settings.cursor
        if cursor is not None and 0 <= cursor < len(self.registry.instances):
            option_list.highlighted = cursor
        option_list.focus()
        self.set_interval(self.app_config.tui.refresh_interval_s, self.refresh_activity)
        self.refresh_activity()

    def on_unmount(self) -> None:
        if self._project_lock.held:
            self._save_cursor()
        self._project_lock.release()

    def _save_cursor(self) -> None:
        settings = self.registry.settings
        settings.cursor = self._list_cursor
        try:
            self.storage.save_settings(settings)
        except AsmError as exc:
            logger.warning(f"[tui] could not save settings: {exc}")

    # ------------------------------------------------------------------ #
    # Data                                                                 #
    # ------------------------------------------------------------------ #

    def reload(self) -> None:
        """Re-read the registry from disk and redraw the list."""
        try:
            self.registry = self.storage.load()
        except AsmError as exc:
            self.set_status(f"[red]{escape(str(exc))}[/red]")
            return
        for inst in self.registry.instances:
            state = self.rows.setdefault(inst.id, RowState())
            state.alive = inst.status is InstanceStatus.RUNNING
        self.render_list()

    def selected(self) -> Optional[Instance]:
        option_list = self.query_one("#sessions", OptionList)
        idx = option_list.highlighted
        if idx is None or idx >= len(self.registry.instances):
            return None
        return self.registry.instances[idx]

    def render_list(self) -> None:
        option_list = self.query_one("#sessions", OptionList)
        keep = option_list.highlighted
        groups = {g.id: g.name for g in self.registry.groups}
        option_list.clear_options()
        for inst in self.registry.instances:
            option_list.add_option(Option(self._row_text(inst, groups), id=inst.id))
        if self.registry.instances:
            option_list.highlighted = min(keep or 0, len(self.registry.instances) - 1)
        self.refresh_status()

    def _row_text(self, inst: Instance, groups: dict[str, str]) -> Text:
        state = self.rows.get(inst.id, RowState())
        text = Text()
        if state.alive:
            glyph, style = _ACTIVITY_GLYPH[state.activity]
        else:
            glyph, style = "·", "#4a5a50"
        text.append(f"{glyph} ", style=style)
        text.append(inst.name, style=f"bold {inst.color}" if inst.color else "bold")
        text.append(f"  {inst.agent.value}", style="#6b8f7a")
        if inst.auto_yes:
            text.append(" !", style="#ff8800")
        if inst.group_id and inst.group_id in groups:
            text.append(f"  [{groups[inst.group_id]}]", style="#6b8f7a")
        if state.last_line:
            text.append("\n    ")
            line = Text.from_ansi(state.last_line)
            line.truncate(80)
            text.append_text(line)
        return text

    @work(thread=True, exclusive=True, group="refresh")
    def refresh_activity(self) -> None:
        """Poll tmux off the UI thread. Never writes the registry."""
        rows: dict[str, RowState] = {}
        for inst in list(self.registry.instances):
            try:
                alive = inst.is_alive()
                rows[inst.id] = RowState(
                    activity=inst.detect_activity() if alive else Activity.IDLE,
                    alive=alive,
                    last_line=inst.get_last_line() if alive else "",
                )
            except AsmError as exc:
                logger.debug(f"[tui] refresh failed for {inst.name}: {exc}")
                rows[inst.id] = RowState()
        preview = self._capture_selected()
        self.call_from_thread(self._apply_refresh, rows, preview)

    def _capture_selected(self) -> str:
        inst = self.call_from_thread(self.selected)
        if inst is None:
            return ""
        try:
            return inst.capture_preview(self.app_config.tui.preview_lines)
        except AsmError as exc:
            return f"(preview unavailable: {exc})"

    def _apply_refresh(self, rows: dict[str, RowState], preview: str) -> None:
        self.rows = rows
        for inst in self.registry.instances:
            state = rows.get(inst.id)
            if state is not None:
                inst.status = InstanceStatus.RUNNING if state.alive else InstanceStatus.STOPPED
        self.render_list()
        self.query_one("#preview", Static).update(Text.from_ansi(preview))
        inst = self.selected()
        self.query_one("#preview-title", Label).update(f"PREVIEW · {inst.name}" if inst else "PREVIEW")

    def on_option_list_option_highlighted(self, event: OptionList.OptionHighlighted) -> None:
        self._list_cursor = event.option_index
        self.refresh_status()

    def on_option_list_option_selected(self, _: OptionList.OptionSelected) -> None:
        self.action_attach()

    # ------------------------------------------------------------------ #
    # Actions                                                              #
    # ------------------------------------------------------------------ #

    def _run(self, label: str, fn) -> bool:
        try:
            fn()
        except AsmError as exc:
            self.set_status(f"[red]{label} failed:[/red] {escape(str(exc))}")
            return False
        return True

    def action_refresh(self) -> None:
        self.reload()
        self.refresh_activity()

    def action_new_instance(self) -> None:
        def created(result: Optional[dict]) -> None:
            if not result:
                return
            inst = None

            def build() -> None:
                nonlocal inst
                inst = Instance.create(
                    result["name"],
                    result["path"],
                    agent=result["agent"],
                    auto_yes=result["auto_yes"],
                    custom_command=result["custom_command"],
                    runtime=self.storage.runtime,
                )
                self.storage.add(inst)

            if self._run("Create", build):
                self.set_status(f"Created {inst.name}")
                self.reload()

        self.push_screen(NewInstanceModal(os.getcwd(), self.app_config.tui.default_agent), created)

    def action_start(self) -> None:
        inst = self.selected()
        if inst is None:
            return
        self.set_status(f"Starting {inst.name}...")
        self._start_worker(inst)

    @work(thread=True, group="lifecycle")
    def _start_worker(self, inst: Instance) -> None:
        try:
            self.storage.modify_instance(inst.id, Instance.start)
            note = f"Started {inst.name}"
        except AsmError as exc:
            note = f"[red]Start failed:[/red] {escape(str(exc))}"
        self.call_from_thread(self._after_lifecycle, note)

    def _after_lifecycle(self, note: str) -> None:
        self.set_status(note)
        self.reload()
        self.refresh_activity()

    def action_stop(self) -> None:
        inst = self.selected()
        if inst is None:
            return

        if self._run("Stop", lambda: self.storage.modify_instance(inst.id, Instance.stop)):
            self._after_lifecycle(f"Stopped {inst.name}")

    def action_attach(self) -> None:
        inst = self.selected()
        if inst is None:
            return
        if not inst.is_alive():
            self.set_status(f"{inst.name} is not running (press s to start)")
            return
        preview = self.query_one("#preview", Static)
        inst.update_detach_binding(preview.size.width, preview.size.height)
        try:
            with self.suspend():
                inst.attach()
        except AsmError as exc:
            self.set_status(f"[red]Attach failed:[/red] {escape(str(exc))}")
        self.refresh(layout=True)
        # Ctrl+Y inside the session may have changed the registry.
        self.reload()
        self.refresh_activity()

    def action_send_prompt(self) -> None:
        inst = self.selected()
        if inst is None:
            return

        def submitted(text: Optional[str]) -> None:
            if text and self._run("Send", lambda: inst.send_prompt(text)):
                self.set_status(f"Sent prompt to {inst.name}")

        self.push_screen(PromptModal(f"Send to {inst.name}", placeholder="prompt"), submitted)

    def action_toggle_yolo(self) -> None:
        inst = self.selected()
        if inst is None:
            return

        def toggle() -> None:
            enabled = False

            def flip(target: Instance) -> None:
                nonlocal enabled
                enabled = target.toggle_auto_yes()

            self.storage.modify_instance(inst.id, flip)
            self.set_status(f"{inst.name}: auto-yes {'on' if enabled else 'off'}")

        if self._run("Toggle", toggle):
            self.reload()

    def action_delete(self) -> None:
        inst = self.selected()
        if inst is None:
            return

        def confirmed(ok: bool) -> None:
            if ok and self._run("Delete", lambda: self.storage.remove(inst.id)):
                self.rows.pop(inst.id, None)
                self.set_status(f"Deleted {inst.name}")
                self.reload()

        self.push_screen(ConfirmModal(f"Delete {inst.name}? Its tmux session is killed."), confirmed)

    # ------------------------------------------------------------------ #
    # Status bar                                                           #
    # ------------------------------------------------------------------ #

    def set_status(self, note: str) -> None:
        self._status_note = note
        self.refresh_status()

    def refresh_status(self) -> None:
        inst = self.selected()
        target = f"{inst.name} ({inst.tmux_session_name})" if inst else "-"
        running = sum(1 for row in self.rows.values() if row.alive)
        waiting = sum(1 for row in self.rows.values() if row.alive and row.activity is Activity.WAITING)
        status = (
            f"Sessions: {len(self.registry.instances)} | Running: {running} | Waiting: {waiting} | "
            f"Selected: {target} | {self._status_note}"
        )
        self.query_one("#status-bar", Static).update(status)
