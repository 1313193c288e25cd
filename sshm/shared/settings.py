"""Runtime tunables for sshm.

Values can be overridden with ``SSHM_*`` environment variables.
"""
import os


def _env_int(name: str, default: int, min_value: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
        return max(min_value, value)
    except ValueError:
        return default


def _env_float(name: str, default: float, min_value: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
        return max(min_value, value)
    except ValueError:
        return default


DEFAULT_PORT = 22
CONNECT_TIMEOUT = _env_float("SSHM_CONNECT_TIMEOUT", 30.0, 1.0)

# Tried in order when a host has no explicit keypath
DEFAULT_KEY_PATHS = [
    "~/.ssh/id_ed25519",
    "~/.ssh/id_rsa",
    "~/.ssh/id_ecdsa",
    "~/.ssh/id_dsa",
]

TERM_TYPE = os.getenv("SSHM_TERM", "xterm-256color")
DEFAULT_COLUMNS = 80
DEFAULT_LINES = 24

RESIZE_TIMEOUT = 0.1
INPUT_DRAIN_TIMEOUT = 0.1
SESSION_GRACE_TIMEOUT = _env_float("SSHM_SESSION_GRACE", 0.5, 0.0)

COPY_BUFFER_SIZE = _env_int("SSHM_COPY_BUFFER_BYTES", 1024 * 1024, 4096)
PROGRESS_BATCH_SIZE = 512 * 1024
INPUT_READ_SIZE = 4096

CONFIG_ENV_VAR = "SSHM_CONFIG"
DEFAULT_CONFIG_FILES = ["~/.sshm.yaml", "~/.sshw.yaml"]
