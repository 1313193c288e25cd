"""Host-selection state, independent of any widget toolkit."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from sshm.services.host_store import hosts_at_path
from sshm.shared.models import HostConfig

ACTIONS = ("ssh", "sftp")


class BrowserMode(Enum):
    HOST_LIST = "host_list"
    SEARCHING = "searching"
    SELECT_ACTION = "select_action"


@dataclass
class Selection:
    host: HostConfig
    mode: str  # "ssh" or "sftp"


@dataclass
class HostBrowser:
    """
    Navigates the host tree.

    Keys are the names textual uses (``up``, ``down``, ``enter``,
    ``escape``, ``backspace``, ``ctrl+c`` or a single printable character).
    ``handle_key`` returns True once a selection was made or the user quit.
    """

    roots: List[HostConfig]
    path: List[str] = field(default_factory=list)
    mode: BrowserMode = BrowserMode.HOST_LIST
    query: str = ""
    cursor: int = 0
    action_cursor: int = 0
    selected: Optional[HostConfig] = None
    result: Optional[Selection] = None
    quitted: bool = False

    @property
    def level(self) -> List[HostConfig]:
        """Hosts at the current group path."""
        return hosts_at_path(self.roots, self.path)

    @property
    def visible(self) -> List[HostConfig]:
        """Hosts at the current level matching the search query."""
        if not self.query:
            return self.level
        query = self.query.lower()
        return [
            h for h in self.level
            if query in h.name.lower() or query in h.host.lower() or query in h.user.lower()
        ]

    @property
    def breadcrumb(self) -> str:
        return " / ".join(self.path)

    @property
    def current(self) -> Optional[HostConfig]:
        visible = self.visible
        if not visible:
            return None
        return visible[min(self.cursor, len(visible) - 1)]

    @property
    def finished(self) -> bool:
        return self.quitted or self.result is not None

    def handle_key(self, key: str) -> bool:
        if key == "ctrl+c" or (key == "q" and self.mode is not BrowserMode.SEARCHING):
            self.quitted = True
        elif self.mode is BrowserMode.HOST_LIST:
            self._host_list_key(key)
        elif self.mode is BrowserMode.SEARCHING:
            self._search_key(key)
        else:
            self._action_key(key)
        return self.finished

    def move(self, delta: int) -> None:
        self.cursor = max(0, min(self.cursor + delta, len(self.visible) - 1))

    def activate(self) -> None:
        """Enter the group under the cursor or pick the host."""
        host = self.current
        if host is None:
            return
        if host.is_group:
            self.path.append(host.name)
            self.query = ""
            self.mode = BrowserMode.HOST_LIST
            self.cursor = 0
        else:
            self.selected = host
            self.action_cursor = 0
            self.mode = BrowserMode.SELECT_ACTION

    def back(self) -> None:
        if self.path:
            self.path.pop()
            self.cursor = 0

    def choose(self, action: str) -> None:
        if self.selected is not None:
            self.result = Selection(self.selected, action)

    def _host_list_key(self, key: str) -> None:
        if key in ("up", "k"):
            self.move(-1)
        elif key in ("down", "j"):
            self.move(1)
        elif key == "enter":
            self.activate()
        elif key == "escape":
            self.back()
        elif key == "/":
            self.mode = BrowserMode.SEARCHING
            self.query = ""
            self.cursor = 0

    def _search_key(self, key: str) -> None:
        if key == "escape":
            self.mode = BrowserMode.HOST_LIST
            self.query = ""
            self.cursor = 0
        elif key == "enter":
            self.activate()
        elif key == "up":
            self.move(-1)
        elif key == "down":
            self.move(1)
        elif key == "backspace":
            self.query = self.query[:-1]
            self.cursor = 0
        elif len(key) == 1 and key.isprintable():
            self.query += key
            self.cursor = 0

    def _action_key(self, key: str) -> None:
        if key in ("up", "k"):
            self.action_cursor = max(0, self.action_cursor - 1)
        elif key in ("down", "j"):
            self.action_cursor = min(len(ACTIONS) - 1, self.action_cursor + 1)
        elif key == "s":
            self.choose("ssh")
        elif key == "f":
            self.choose("sftp")
        elif key == "enter":
            self.choose(ACTIONS[self.action_cursor])
        elif key == "escape":
            self.mode = BrowserMode.HOST_LIST
            self.selected = None
            self.action_cursor = 0
