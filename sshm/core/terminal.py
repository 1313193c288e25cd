"""Terminal mode management.

``TerminalManager`` is the only object allowed to change the terminal
discipline. Raw mode is used only while an interactive remote shell runs;
the host picker and the file-transfer shell run in cooked mode.
"""
import logging
import os
import sys
from contextlib import contextmanager
from enum import Enum
from threading import Lock
from typing import Any, Callable, Optional

try:
    import termios
    import tty
except ImportError:  # Windows
    termios = None
    tty = None

from sshm.core.resize import ResizeForwarder
from sshm.shared.errors import AlreadyRawError, TerminalError


class TerminalMode(Enum):
    COOKED = "cooked"
    RAW = "raw"


def _stdin_fd() -> Optional[int]:
    try:
        return sys.stdin.fileno()
    except (AttributeError, OSError, ValueError):
        return None


class TerminalManager:
    """
    Owns the "is the terminal in raw mode" state.

    All state (raw flag, bound session, original attributes) is guarded by
    a single lock. The original attributes are captured once, on the first
    ``enter_raw``, and reused by every ``restore`` so repeated cycles always
    return to the true starting state.
    """

    def __init__(
        self,
        fd: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
        forwarder_factory: Optional[Callable[..., Any]] = None,
    ):
        self.fd = _stdin_fd() if fd is None else fd
        self.logger = logger or logging.getLogger(__name__)
        self._forwarder_factory = forwarder_factory or ResizeForwarder
        self._lock = Lock()
        self._original_attrs = None
        self._in_raw = False
        self._session = None
        self._forwarder = None

    def _is_tty(self) -> bool:
        if termios is None or self.fd is None:
            return False
        try:
            return os.isatty(self.fd)
        except OSError:
            return False

    def enter_raw(self, session) -> None:
        """
        Switch the terminal to raw mode and bind *session* to it.

        Must be paired with ``restore()``.

        Raises:
            AlreadyRawError: If a session is already bound
            TerminalError: If the terminal could not be switched
        """
        with self._lock:
            if self._in_raw:
                raise AlreadyRawError()

            if self._is_tty():
                try:
                    if self._original_attrs is None:
                        self._original_attrs = termios.tcgetattr(self.fd)
                    tty.setraw(self.fd)
                except termios.error as e:
                    raise TerminalError(f"make raw: {e}")

            self._in_raw = True
            self._session = session
            forwarder = self._forwarder_factory(self, fd=self.fd, logger=self.logger)
            self._forwarder = forwarder

        forwarder.start()
        self.logger.debug("Terminal entered raw mode")

    def restore(self) -> None:
        """
        Restore the terminal to cooked mode.

        Safe to call multiple times. The raw flag and bound session are
        cleared before the attributes are restored so a racing resize sees
        "not raw" and does nothing. The resize forwarder is signalled but
        not waited for.

        Raises:
            TerminalError: If the attributes could not be restored; the
                manager is nevertheless back in cooked mode
        """
        with self._lock:
            if not self._in_raw:
                return

            self._in_raw = False
            self._session = None
            forwarder, self._forwarder = self._forwarder, None

            if forwarder is not None:
                forwarder.stop()

            if self._original_attrs is not None and self._is_tty():
                try:
                    termios.tcsetattr(self.fd, termios.TCSADRAIN, self._original_attrs)
                except termios.error as e:
                    raise TerminalError(f"restore terminal: {e}")

        self.logger.debug("Terminal restored to cooked mode")

    def in_raw(self) -> bool:
        with self._lock:
            return self._in_raw

    @property
    def mode(self) -> TerminalMode:
        with self._lock:
            return TerminalMode.RAW if self._in_raw else TerminalMode.COOKED

    @property
    def session(self):
        """The session bound to raw mode, or None when cooked."""
        with self._lock:
            return self._session if self._in_raw else None

    def restore_quietly(self) -> bool:
        """Restore, downgrading a failure to a logged warning."""
        try:
            self.restore()
            return True
        except TerminalError as e:
            self.logger.warning(f"Failed to restore terminal: {e.message}")
            return False

    def cleanup(self) -> None:
        """Restore the terminal at application shutdown."""
        self.restore_quietly()

    @contextmanager
    def raw_session(self, session):
        """Hold raw mode for *session*; always restored, errors propagate."""
        self.enter_raw(session)
        try:
            yield self
        finally:
            self.restore_quietly()
