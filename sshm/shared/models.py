"""Data models for sshm."""
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sshm.shared.errors import ErrorCode
from sshm.shared.settings import DEFAULT_PORT


def _optional_str(value: Any) -> Optional[str]:
    """YAML scalars such as an all-digit password arrive as int."""
    if value is None or value == "":
        return None
    return str(value)


@dataclass
class HostConfig:
    """One entry of the host tree: a connectable host or a group of hosts."""

    name: str
    host: str = ""
    user: str = ""
    port: int = DEFAULT_PORT

    # Auth credentials
    password: Optional[str] = None
    key_path: Optional[str] = None

    # Intermediate hops, first hop first
    jump: List["HostConfig"] = field(default_factory=list)
    children: List["HostConfig"] = field(default_factory=list)
    callback_shells: List[str] = field(default_factory=list)

    @property
    def is_group(self) -> bool:
        """A host with children is a pure container and is never connected to."""
        return len(self.children) > 0

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def chain(self) -> List["HostConfig"]:
        """Hosts to connect in order: jump hops first, this host last."""
        return [*self.jump, self]

    def validate(self) -> List[str]:
        """
        Check required fields and normalize defaults.

        Returns:
            List of problems; empty when the entry is valid
        """
        errors = []
        if not self.name:
            errors.append("name is required")
        if not self.is_group:
            if not self.host:
                errors.append("host is required")
            if not self.user:
                errors.append("user is required")
        if not self.port:
            self.port = DEFAULT_PORT
        elif self.port < 0 or self.port > 65535:
            errors.append(f"invalid port: {self.port}")
        if self.key_path:
            self.key_path = os.path.expanduser(self.key_path)
        for hop in self.jump:
            errors.extend(f"jump {hop.name or '?'}: {e}" for e in hop.validate())
        for child in self.children:
            errors.extend(f"{child.name or '?'}: {e}" for e in child.validate())
        return errors

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HostConfig":
        if not isinstance(data, dict):
            raise ValueError(f"host entry must be a mapping, got {type(data).__name__}")
        return cls(
            name=str(data.get("name") or ""),
            host=str(data.get("host") or ""),
            user=str(data.get("user") or ""),
            port=int(data.get("port") or 0),
            password=_optional_str(data.get("password")),
            key_path=_optional_str(data.get("keypath")),
            jump=[cls.from_dict(item) for item in data.get("jump") or []],
            children=[cls.from_dict(item) for item in data.get("children") or []],
            callback_shells=list(data.get("callback-shells") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        item: Dict[str, Any] = {"name": self.name}
        if self.host:
            item["host"] = self.host
        if self.user:
            item["user"] = self.user
        if self.port and self.port != DEFAULT_PORT:
            item["port"] = self.port
        if self.password:
            item["password"] = self.password
        if self.key_path:
            item["keypath"] = self.key_path
        if self.jump:
            item["jump"] = [hop.to_dict() for hop in self.jump]
        if self.children:
            item["children"] = [child.to_dict() for child in self.children]
        if self.callback_shells:
            item["callback-shells"] = list(self.callback_shells)
        return item

    def __str__(self) -> str:
        if self.is_group:
            return f"{self.name}/ ({len(self.children)} hosts)"
        return f"{self.name} ({self.user}@{self.address})"


@dataclass
class FileEntry:
    """A regular file found by a directory pre-scan."""

    rel_path: str
    size: int


@dataclass
class TransferResult:
    """Outcome of a (folder) transfer."""

    files_total: int = 0
    files_done: int = 0
    bytes_total: int = 0
    bytes_done: int = 0
    failed: List[str] = field(default_factory=list)
    # rel_path -> error message, for every entry of `failed`
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class TransferTask:
    """Represents a single get/put command while it runs."""

    task_id: str
    kind: str  # "upload", "download", "folder_upload", "folder_download"
    src: str
    dst: str
    bytes_total: int = 0

    bytes_done: int = 0
    status: str = "pending"  # pending, running, done, failed, canceled
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None

    # Folder task fields
    files: List[FileEntry] = field(default_factory=list)

    @property
    def progress_percent(self) -> float:
        """Get progress as percentage (0-100)."""
        if self.bytes_total <= 0:
            return 0.0
        return (self.bytes_done / self.bytes_total) * 100.0

    def __str__(self) -> str:
        return (
            f"Task({self.task_id[:8]}, {self.kind}, {self.status}, "
            f"{self.progress_percent:.1f}%)"
        )
