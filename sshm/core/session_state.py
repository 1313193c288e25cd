"""State machines for interactive sessions and transfer tasks."""

# Interactive session lifecycle. Any live state may jump to "terminating"
# when a setup step fails.
SESSION_TRANSITIONS: dict[str, set[str]] = {
    "created":       {"pty_requested", "terminating"},
    "pty_requested": {"shell_started", "terminating"},
    "shell_started": {"running", "terminating"},
    "running":       {"terminating"},
    "terminating":   {"closed"},
    "closed":        set(),
}

# Transfer task lifecycle (one get/put command)
TASK_TRANSITIONS: dict[str, set[str]] = {
    "pending":  {"running", "canceled"},
    "running":  {"done", "failed", "canceled"},
    "done":     set(),
    "failed":   set(),
    "canceled": set(),
}


def is_valid_transition(table: dict[str, set[str]], current: str, target: str) -> bool:
    """Return True if *current -> target* is legal in *table*."""
    return target in table.get(current, set())


def assert_transition(table: dict[str, set[str]], current: str, target: str) -> None:
    """Raise ValueError if the transition is illegal."""
    if not is_valid_transition(table, current, target):
        raise ValueError(
            f"Illegal state transition: {current!r} -> {target!r}. "
            f"Allowed from {current!r}: {sorted(table.get(current, set()))}"
        )
