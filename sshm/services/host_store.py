"""Host configuration storage (YAML)."""
import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence

import yaml

from sshm.shared.errors import (
    ConfigParseError,
    ConfigValidationError,
    NoConfigFoundError,
)
from sshm.shared.models import HostConfig
from sshm.shared.settings import CONFIG_ENV_VAR, DEFAULT_CONFIG_FILES

logger = logging.getLogger(__name__)


def _expand(path) -> Path:
    return Path(os.path.expanduser(str(path)))


def _validate(hosts: List[HostConfig]) -> None:
    for index, host in enumerate(hosts):
        problems = host.validate()
        if problems:
            raise ConfigValidationError(index, host.name, "; ".join(problems))


def load_file(path: Path) -> List[HostConfig]:
    """
    Parse one YAML file holding a list of host mappings.

    Raises:
        ConfigParseError: If the file cannot be read or is not a host list
        ConfigValidationError: If an entry is missing required fields
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigParseError(f"read config file {path}: {e}")

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigParseError(f"parse yaml {path}: {e}")

    if data is None:
        data = []
    if not isinstance(data, list):
        raise ConfigParseError(f"parse yaml {path}: expected a list of hosts")

    try:
        hosts = [HostConfig.from_dict(item) for item in data]
    except (TypeError, ValueError) as e:
        raise ConfigParseError(f"parse yaml {path}: {e}")

    _validate(hosts)
    return hosts


class HostStore:
    """
    Load / save the host tree.

    With an explicit path only that file is read. Otherwise every default
    file that exists is read and their host lists are concatenated; a file
    that fails to load is skipped with a warning.
    """

    def __init__(self, path: Optional[Path] = None, defaults: Optional[Sequence[str]] = None):
        if path is None and os.getenv(CONFIG_ENV_VAR):
            path = Path(os.environ[CONFIG_ENV_VAR])
        self.path = _expand(path) if path is not None else None
        self.defaults = list(defaults) if defaults is not None else list(DEFAULT_CONFIG_FILES)

    def load(self) -> List[HostConfig]:
        if self.path is not None:
            hosts = load_file(self.path)
            logger.info(f"Loaded {len(hosts)} hosts from {self.path}")
            return hosts
        return self._load_defaults()

    def _load_defaults(self) -> List[HostConfig]:
        hosts: List[HostConfig] = []
        loaded = 0
        for raw in self.defaults:
            path = _expand(raw)
            if not path.exists():
                continue
            try:
                hosts.extend(load_file(path))
            except (ConfigParseError, ConfigValidationError) as e:
                logger.warning(f"Failed to load {path}: {e.message}")
                continue
            loaded += 1

        if loaded == 0:
            raise NoConfigFoundError(f"no config files found (tried: {', '.join(self.defaults)})")

        _validate(hosts)
        logger.info(f"Loaded {len(hosts)} hosts from {loaded} file(s)")
        return hosts

    def save(self, hosts: List[HostConfig], path: Optional[Path] = None) -> Path:
        """Write *hosts* as YAML, readable by the owner only."""
        target = _expand(path) if path is not None else self.path or _expand(self.defaults[0])
        data = [host.to_dict() for host in hosts]
        target.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        os.chmod(target, 0o600)
        logger.info(f"Saved {len(hosts)} hosts to {target}")
        return target


def hosts_at_path(hosts: List[HostConfig], path: Sequence[str]) -> List[HostConfig]:
    """
    Return the hosts at a group path.

    Raises:
        KeyError: If a path element is not a group at that level
    """
    level = hosts
    for name in path:
        group = next((h for h in level if h.name == name and h.is_group), None)
        if group is None:
            raise KeyError(f"no group named {name!r}")
        level = group.children
    return level


def find_host(hosts: List[HostConfig], name: str) -> Optional[HostConfig]:
    """
    Look up a host by ``group/.../name``.

    A bare name is searched at the top level first, then depth-first.
    """
    parts = [p for p in name.split("/") if p]
    if not parts:
        return None
    try:
        level = hosts_at_path(hosts, parts[:-1])
    except KeyError:
        return None
    match = next((h for h in level if h.name == parts[-1]), None)
    if match is not None or len(parts) > 1:
        return match

    stack = list(reversed(hosts))
    while stack:
        host = stack.pop()
        if host.name == parts[-1]:
            return host
        stack.extend(reversed(host.children))
    return None
