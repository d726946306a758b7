"""Modal dialogs used by the session manager TUI."""

from __future__ import annotations

from typing import Optional

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Checkbox, Input, Label, Select, Static

from agent_session_manager.providers.agent_registry import AGENT_DEFS, AgentKind

_MODAL_CSS = """
{name} {{
    align: center middle;
}}
{name} > Vertical {{
    width: 64;
    height: auto;
    border: heavy #00ff66;
    background: #07160f;
    padding: 1 2;
}}
{name} .dialog-title {{
    color: #ffd400;
    text-style: bold;
    margin-bottom: 1;
}}
{name} .dialog-buttons {{
    height: auto;
    margin-top: 1;
    align-horizontal: right;
}}
{name} Button {{
    margin-left: 1;
}}
"""


class NewInstanceModal(ModalScreen[Optional[dict]]):
    """Collect name, directory and agent for a new session."""

    DEFAULT_CSS = _MODAL_CSS.format(name="NewInstanceModal")
    BINDINGS = [Binding("escape", "cancel", "Cancel", show=False)]

    def __init__(self, default_path: str, default_agent: str = "claude") -> None:
        super().__init__()
        self.default_path = default_path
        self.default_agent = default_agent if default_agent in {k.value for k in AgentKind} else "claude"

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Label("New session", classes="dialog-title")
            yield Input(placeholder="name", id="name")
            yield Input(value=self.default_path, placeholder="working directory", id="path")
            yield Select(
                [(d.name, kind.value) for kind, d in AGENT_DEFS.items()],
                value=self.default_agent,
                allow_blank=False,
                id="agent",
            )
            yield Input(placeholder="custom command (custom agent only)", id="command")
            yield Checkbox("Auto-approve (skip confirmations)", id="auto_yes")
            yield Static("", id="error")
            with Horizontal(classes="dialog-buttons"):
                yield Button("Cancel", id="cancel")
                yield Button("Create", variant="primary", id="create")

    def on_mount(self) -> None:
        self.query_one("#name", Input).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "create":
            self._submit()
        else:
            self.dismiss(None)

    def on_input_submitted(self, _: Input.Submitted) -> None:
        self._submit()

    def _submit(self) -> None:
        name = self.query_one("#name", Input).value.strip()
        if not name:
            self.query_one("#error", Static).update("[red]Name is required[/red]")
            return
        self.dismiss(
            {
                "name": name,
                "path": self.query_one("#path", Input).value.strip(),
                "agent": str(self.query_one("#agent", Select).value),
                "custom_command": self.query_one("#command", Input).value.strip(),
                "auto_yes": self.query_one("#auto_yes", Checkbox).value,
            }
        )

    def action_cancel(self) -> None:
        self.dismiss(None)


class PromptModal(ModalScreen[Optional[str]]):
    """Single-line text input."""

    DEFAULT_CSS = _MODAL_CSS.format(name="PromptModal")
    BINDINGS = [Binding("escape", "cancel", "Cancel", show=False)]

    def __init__(self, title: str, value: str = "", placeholder: str = "") -> None:
        super().__init__()
        self.title_text = title
        self.initial = value
        self.placeholder = placeholder

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Label(self.title_text, classes="dialog-title")
            yield Input(value=self.initial, placeholder=self.placeholder, id="value")

    def on_mount(self) -> None:
        self.query_one("#value", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self.dismiss(event.value if event.value.strip() else None)

    def action_cancel(self) -> None:
        self.dismiss(None)


class ConfirmModal(ModalScreen[bool]):
    """Yes/No confirmation."""

    DEFAULT_CSS = _MODAL_CSS.format(name="ConfirmModal")
    BINDINGS = [
        Binding("y", "answer(True)", "Yes", show=False),
        Binding("n", "answer(False)", "No", show=False),
        Binding("escape", "answer(False)", "No", show=False),
    ]

    def __init__(self, message: str) -> None:
        super().__init__()
        self.message = message

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Label(self.message, classes="dialog-title")
            with Horizontal(classes="dialog-buttons"):
                yield Button("No (n)", id="no")
                yield Button("Yes (y)", variant="error", id="yes")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "yes")

    def action_answer(self, value: bool) -> None:
        self.dismiss(value)
