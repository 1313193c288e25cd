"""Window-resize forwarding for the raw-mode session."""
import logging
import os
import queue
import signal
import threading
from typing import Optional, Tuple

from sshm.shared.settings import DEFAULT_COLUMNS, DEFAULT_LINES, RESIZE_TIMEOUT

_RESIZE = object()
_STOP = object()


def get_terminal_size(fd: Optional[int] = None) -> Tuple[int, int]:
    """Return (columns, lines) of the terminal on *fd*, 80x24 if unknown."""
    try:
        if fd is None:
            size = os.get_terminal_size()
        else:
            size = os.get_terminal_size(fd)
        if size.columns > 0 and size.lines > 0:
            return size.columns, size.lines
    except (OSError, ValueError):
        pass
    return DEFAULT_COLUMNS, DEFAULT_LINES


def resize_supported() -> bool:
    return hasattr(signal, "SIGWINCH")


class ResizeForwarder:
    """
    Relays terminal size changes to the session bound to raw mode.

    The SIGWINCH handler only enqueues; a worker thread does the forwarding
    so the main thread is never blocked by the transport. Each forward is
    abandoned after ``timeout`` seconds because a closing channel can stall
    the window-change request indefinitely.

    Never takes the manager lock from the signal handler: the handler runs
    on the main thread, which may already hold it.
    """

    def __init__(
        self,
        manager,
        fd: Optional[int] = None,
        timeout: float = RESIZE_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ):
        self.manager = manager
        self.fd = fd
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._previous_handler = None
        self._installed = False
        self._stopped = False

    def start(self) -> None:
        """Start the worker, send the initial size and install the handler."""
        self._thread = threading.Thread(
            target=self._run, name="sshm-resize", daemon=True
        )
        self._thread.start()
        self._queue.put_nowait(_RESIZE)

        if not resize_supported():
            return
        if threading.current_thread() is not threading.main_thread():
            self.logger.debug("Resize handler not installed: not on main thread")
            return
        self._previous_handler = signal.signal(signal.SIGWINCH, self._on_signal)
        self._installed = True

    def stop(self) -> None:
        """Signal the worker to exit. Does not wait for it."""
        if self._stopped:
            return
        self._stopped = True
        if self._installed and threading.current_thread() is threading.main_thread():
            self._uninstall()
        self._queue.put_nowait(_STOP)

    @property
    def stopped(self) -> bool:
        return self._stopped

    def _uninstall(self) -> None:
        previous = self._previous_handler
        if previous is None:
            previous = signal.SIG_DFL
        signal.signal(signal.SIGWINCH, previous)
        self._installed = False

    def _on_signal(self, signum, frame) -> None:
        if self._stopped:
            # stop() ran off the main thread and could not uninstall
            if self._installed:
                self._uninstall()
            return
        self._queue.put_nowait(_RESIZE)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            self.forward()

    def forward(self) -> bool:
        """
        Send the current terminal size to the bound session.

        Returns:
            True if the session acknowledged within the timeout
        """
        session = self.manager.session
        if session is None or self._stopped:
            return False

        columns, lines = get_terminal_size(self.fd)
        done = threading.Event()

        def _send():
            try:
                # Shutdown may have raced us since the first check
                if self.manager.session is not session:
                    return
                session.resize_pty(width=columns, height=lines)
            except Exception as e:
                self.logger.debug(f"Window change failed: {e}")
            finally:
                done.set()

        threading.Thread(target=_send, name="sshm-resize-send", daemon=True).start()
        if not done.wait(self.timeout):
            self.logger.debug("Window change timed out, skipping update")
            return False
        return True
