"""Remote path utilities for sshm.

Remote paths always use ``/`` regardless of the local OS, so nothing here
goes through ``os.path``.
"""
from typing import Optional


def normalize_remote_path(path: str) -> str:
    """
    Normalize a remote path by:
    - Resolving . and .. components (never above /)
    - Removing duplicate and trailing slashes
    - Ensuring absolute path

    Args:
        path: Remote path to normalize

    Returns:
        Normalized absolute path
    """
    cleaned: list[str] = []
    for part in path.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if cleaned:
                cleaned.pop()
            continue
        cleaned.append(part)
    return "/" + "/".join(cleaned)


def join_remote_path(base: str, *parts: str) -> str:
    """
    Join remote path components with ``/``.

    Unlike ``posixpath.join`` an absolute component does not discard what
    came before it; callers resolve absolute paths before joining.
    """
    result = base
    for part in parts:
        if not part:
            continue
        if result.endswith("/"):
            result = result + part.lstrip("/")
        else:
            result = result + "/" + part.lstrip("/")
    return result


def get_remote_parent(path: str) -> Optional[str]:
    """
    Get the parent directory of a remote path.

    Args:
        path: Remote path

    Returns:
        Parent directory or None if at root
    """
    normalized = normalize_remote_path(path)
    if normalized == "/":
        return None
    parent = normalized.rsplit("/", 1)[0]
    return parent if parent else "/"


def get_remote_basename(path: str) -> str:
    """Get the basename (filename) of a remote path."""
    return path.rstrip("/").rsplit("/", 1)[-1]
