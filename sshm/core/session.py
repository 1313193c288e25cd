"""Interactive remote shell: wires the local terminal to one SSH session."""
import logging
import os
import selectors
import sys
import threading
from dataclasses import dataclass
from typing import BinaryIO, Optional

from sshm.core.resize import get_terminal_size
from sshm.core.session_state import SESSION_TRANSITIONS, assert_transition
from sshm.core.terminal import TerminalManager
from sshm.shared.errors import SessionError, TerminalError
from sshm.shared.settings import (
    INPUT_DRAIN_TIMEOUT,
    INPUT_READ_SIZE,
    SESSION_GRACE_TIMEOUT,
    TERM_TYPE,
)


@dataclass
class SessionOutcome:
    """How an interactive session ended."""

    exit_status: Optional[int] = None
    # True when local input ended first and the channel had to be closed
    forced_close: bool = False
    input_exhausted_first: bool = False


def _binary_stream(stream) -> BinaryIO:
    return getattr(stream, "buffer", stream)


class InteractiveSession:
    """
    Runs a remote login shell on a PTY and relays the local terminal to it.

    Works on anything with an ``open_session()`` method returning a paramiko
    ``Channel``: a ``JumpChain`` or a bare ``Transport``.

    Two threads are started before the terminal goes raw:

    * the output watcher copies remote stdout/stderr to the local streams
      until EOF, then collects the exit status;
    * the input pump copies local stdin to the channel and half-closes the
      channel on local EOF.

    ``run()`` waits for whichever finishes first and tears down the other.
    """

    def __init__(
        self,
        target,
        terminal: TerminalManager,
        stdin_fd: Optional[int] = None,
        stdout: Optional[BinaryIO] = None,
        stderr: Optional[BinaryIO] = None,
        logger: Optional[logging.Logger] = None,
        term: str = TERM_TYPE,
        grace_timeout: float = SESSION_GRACE_TIMEOUT,
        drain_timeout: float = INPUT_DRAIN_TIMEOUT,
    ):
        self.target = target
        self.terminal = terminal
        self.stdin_fd = sys.stdin.fileno() if stdin_fd is None else stdin_fd
        self.stdout = stdout or _binary_stream(sys.stdout)
        self.stderr = stderr or _binary_stream(sys.stderr)
        self.logger = logger or logging.getLogger(__name__)
        self.term = term
        self.grace_timeout = grace_timeout
        self.drain_timeout = drain_timeout

        self.state = "created"
        self.channel = None
        self._exit_status: Optional[int] = None
        self._output_error: Optional[BaseException] = None

        # Set by whichever thread finishes first
        self._wakeup = threading.Event()
        self._completed = threading.Event()
        self._input_done = threading.Event()
        self._wake_r: Optional[int] = None
        self._wake_w: Optional[int] = None

    def _transition(self, target: str) -> None:
        assert_transition(SESSION_TRANSITIONS, self.state, target)
        self.logger.debug(f"Session {self.state} -> {target}")
        self.state = target

    def resize_pty(self, width: int, height: int) -> None:
        """Forward a window change; called by the resize forwarder."""
        channel = self.channel
        # The forwarder sends the initial size while raw mode is being entered
        if channel is not None and self.state in ("shell_started", "running"):
            channel.resize_pty(width=width, height=height)

    def run(self) -> SessionOutcome:
        """
        Run the session to completion.

        Returns:
            SessionOutcome with the remote exit status (not an error when
            nonzero)

        Raises:
            SessionError: If the session could not be set up, or the
                terminal could not be switched to raw mode
        """
        try:
            self._setup()
        except Exception as e:
            self._abort()
            if isinstance(e, SessionError):
                raise
            raise SessionError(f"start interactive shell: {e}") from e

        try:
            with self.terminal.raw_session(self):
                self._transition("running")
                return self._wait()
        except TerminalError as e:
            # Only entering raw mode raises this; restores are quiet
            self._transition("terminating")
            raise SessionError(f"enter raw mode: {e}") from e
        finally:
            self._finish()

    def _setup(self) -> None:
        self.channel = self.target.open_session()

        columns, lines = get_terminal_size(self.stdin_fd)
        self._transition("pty_requested")
        self.channel.get_pty(term=self.term, width=columns, height=lines)

        self.channel.invoke_shell()
        self._transition("shell_started")

        self._wake_r, self._wake_w = os.pipe()
        threading.Thread(target=self._watch_output, name="sshm-output", daemon=True).start()
        self._input_thread = threading.Thread(target=self._pump_input, name="sshm-input", daemon=True)
        self._input_thread.start()

    def _wait(self) -> SessionOutcome:
        outcome = SessionOutcome()
        self._wakeup.wait()

        if self._completed.is_set():
            # Restoring first unblocks a local read that would otherwise hang
            self.terminal.restore_quietly()
            self._close_input()
            self._input_thread.join(self.drain_timeout)
            if self._input_thread.is_alive():
                self.logger.debug("Input pump still blocked, leaving it behind")
        else:
            outcome.input_exhausted_first = True
            if not self._completed.wait(self.grace_timeout):
                self.logger.debug("Remote did not finish after local EOF, closing channel")
                outcome.forced_close = True
                self.channel.close()
                self._completed.wait()
            self.terminal.restore_quietly()

        if self._output_error is not None:
            raise SessionError(f"session output: {self._output_error}") from self._output_error

        outcome.exit_status = self._exit_status
        return outcome

    def _watch_output(self) -> None:
        channel = self.channel
        stderr_thread = threading.Thread(
            target=self._copy_stream,
            args=(channel.recv_stderr, self.stderr),
            name="sshm-stderr",
            daemon=True,
        )
        stderr_thread.start()
        try:
            self._copy_stream(channel.recv, self.stdout)
            stderr_thread.join()
            status = channel.recv_exit_status()
            # paramiko reports -1 when the channel closed without a status
            self._exit_status = status if status >= 0 else None
        except Exception as e:
            self._output_error = e
        finally:
            self._completed.set()
            self._wakeup.set()

    def _copy_stream(self, recv, stream: BinaryIO) -> None:
        while True:
            data = recv(INPUT_READ_SIZE)
            if not data:
                return
            stream.write(data)
            stream.flush()

    def _pump_input(self) -> None:
        selector = selectors.DefaultSelector()
        try:
            selector.register(self.stdin_fd, selectors.EVENT_READ)
            selector.register(self._wake_r, selectors.EVENT_READ)
            while True:
                ready = {key.fd for key, _ in selector.select()}
                if self._wake_r in ready:
                    return
                try:
                    data = os.read(self.stdin_fd, INPUT_READ_SIZE)
                except OSError as e:
                    self.logger.debug(f"Local input read failed: {e}")
                    data = b""
                if not data:
                    self.channel.shutdown_write()
                    self._input_done.set()
                    self._wakeup.set()
                    return
                self.channel.sendall(data)
        except Exception as e:
            # The channel closing under us ends input forwarding
            self.logger.debug(f"Input pump stopped: {e}")
        finally:
            selector.close()

    def _close_input(self) -> None:
        if self._wake_w is None:
            return
        try:
            os.write(self._wake_w, b"\0")
        except OSError as e:
            self.logger.debug(f"Wake pipe write failed: {e}")

    def _abort(self) -> None:
        if self.state not in ("terminating", "closed"):
            self._transition("terminating")
        self._finish()

    def _finish(self) -> None:
        if self.state == "running":
            self._transition("terminating")
        if self.channel is not None:
            try:
                self.channel.close()
            except Exception as e:
                self.logger.debug(f"Channel close failed: {e}")
        if self._wake_w is not None:
            os.close(self._wake_w)
            self._wake_w = None
        input_thread = getattr(self, "_input_thread", None)
        if self._wake_r is not None and (input_thread is None or not input_thread.is_alive()):
            os.close(self._wake_r)
            self._wake_r = None
        if self.state == "terminating":
            self._transition("closed")
        self.logger.info("Interactive session closed")
