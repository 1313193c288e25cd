"""Textual host picker on top of ``HostBrowser``."""
import logging
from typing import List, Optional

from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import DataTable, Static

from sshm.shared.models import HostConfig
from sshm.ui.host_browser import ACTIONS, BrowserMode, HostBrowser, Selection

LOG = logging.getLogger(__name__)

HELP_TEXT = {
    BrowserMode.HOST_LIST: "↑/k ↓/j move • enter open/select • esc back • / search • q quit",
    BrowserMode.SEARCHING: "type to filter • ↑/↓ move • enter select • esc cancel search",
    BrowserMode.SELECT_ACTION: "↑/k ↓/j move • enter confirm • s ssh • f sftp • esc back",
}


class HostTable(DataTable):
    """Display-only table; keys are routed through the browser model."""

    can_focus = False


class HostPickerApp(App[Optional[Selection]]):
    """Full-screen host list. Exits with a ``Selection`` or None on quit."""

    CSS = """
    #banner { color: $accent; text-style: bold; padding: 0 1; }
    #status { color: $text-muted; padding: 0 1; }
    #help { color: $text-muted; padding: 0 1; }
    HostTable { height: 1fr; }
    """

    BINDINGS = [
        Binding("ctrl+c", "quit_picker", "Quit", show=False, priority=True),
    ]

    def __init__(self, hosts: List[HostConfig], **kwargs):
        super().__init__(**kwargs)
        self.browser = HostBrowser(hosts)

    def compose(self) -> ComposeResult:
        yield Static("sshm", id="banner")
        yield Static("", id="status")
        table = HostTable(id="hosts")
        table.cursor_type = "row"
        table.zebra_stripes = True
        yield table
        yield Static("", id="help")

    def on_mount(self) -> None:
        self.refresh_view()

    def action_quit_picker(self) -> None:
        self.browser.quitted = True
        self.exit(None)

    def on_key(self, event: events.Key) -> None:
        key = event.character if event.is_printable and event.character else event.key
        event.stop()
        event.prevent_default()
        if self.browser.handle_key(key):
            self.exit(self.browser.result)
            return
        self.refresh_view()

    def refresh_view(self) -> None:
        browser = self.browser
        table = self.query_one(HostTable)
        table.clear(columns=True)

        if browser.mode is BrowserMode.SELECT_ACTION:
            host = browser.selected
            self.query_one("#status", Static).update(f"Connect to {host.name} ({host.user}@{host.address})")
            table.add_columns("Action")
            for action in ACTIONS:
                table.add_row(action)
            table.move_cursor(row=browser.action_cursor)
        else:
            status = f"Path: {browser.breadcrumb}" if browser.path else ""
            if browser.mode is BrowserMode.SEARCHING:
                status = f"{status}  Search: {browser.query}_".strip()
            self.query_one("#status", Static).update(status)
            table.add_columns("Name", "Host", "User", "Port")
            for host in browser.visible:
                if host.is_group:
                    table.add_row(f"{host.name}/", f"{len(host.children)} hosts", "", "")
                else:
                    table.add_row(host.name, host.host, host.user, str(host.port))
            if browser.visible:
                table.move_cursor(row=browser.cursor)

        self.query_one("#help", Static).update(HELP_TEXT[browser.mode])


def pick_host(hosts: List[HostConfig]) -> Optional[Selection]:
    """Run the picker; returns None if the user quit."""
    app = HostPickerApp(hosts)
    result = app.run()
    LOG.debug(f"Host picker returned {result}")
    return result
