"""Interactive file-transfer shell (cooked mode, line protocol)."""
import logging
import os
import stat
import sys
import threading
import time
import uuid
from typing import Callable, Dict, List, Optional

import paramiko
from rich import box
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table
from rich.text import Text

from sshm.core.path_state import PathState
from sshm.core.session_state import TASK_TRANSITIONS, assert_transition
from sshm.engines.sftp_engine import CancelToken, TransferEngine
from sshm.shared.errors import (
    CommandError,
    PathNotFoundError,
    SSHMError,
    TransferCancelled,
    TransferError,
)
from sshm.shared.logging_ import log_transfer_event
from sshm.shared.models import TransferResult, TransferTask
from sshm.shared.paths import get_remote_basename, join_remote_path

HELP_ROWS = [
    ("cd", "<path>", "Change remote directory"),
    ("lcd", "<path>", "Change local directory"),
    ("pwd", "", "Print remote working directory"),
    ("lpwd", "", "Print local working directory"),
    ("ls", "[path]", "List remote files"),
    ("lls", "[path]", "List local files"),
    ("get", "<remote> [local]", "Download file or directory"),
    ("put", "<local> [remote]", "Upload file or directory"),
    ("mkdir", "<path>", "Create remote directory"),
    ("lmkdir", "<path>", "Create local directory"),
    ("help", "", "Show this help"),
    ("exit", "", "Exit SFTP shell"),
    ("quit", "", "Exit SFTP shell (alias)"),
    ("bye", "", "Exit SFTP shell (alias)"),
]

EXIT_COMMANDS = ("exit", "quit", "bye")


def format_size(size: float) -> str:
    """Format file size in human-readable form."""
    if size < 1024:
        return f"{int(size)} B"
    for unit in ['KB', 'MB', 'GB', 'TB']:
        size /= 1024.0
        if size < 1024.0:
            return f"{size:.2f} {unit}"
    return f"{size:.2f} PB"


def _listing_line(mode: int, size: int, mtime: float, name: str) -> str:
    if stat.S_ISDIR(mode):
        name += "/"
    when = time.strftime("%b %d %H:%M", time.localtime(mtime))
    return f"{stat.filemode(mode)} {size:8d} {when} {name}"


class SftpShell:
    """
    Line-oriented SFTP shell.

    Commands run on the main thread except ``get``/``put``, which run on a
    worker thread so Ctrl-C (``KeyboardInterrupt`` on the main thread) can
    cancel them through a ``CancelToken``.
    """

    def __init__(
        self,
        sftp,
        paths: PathState,
        user: str,
        host: str,
        stdin=None,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.sftp = sftp
        self.paths = paths
        self.user = user
        self.host = host
        self.stdin = stdin or sys.stdin
        self.console = console or Console(highlight=False)
        self.err_console = err_console or Console(stderr=True, highlight=False)
        self.logger = logger or logging.getLogger(__name__)
        self.engine = TransferEngine(sftp, logger=self.logger)

        self._commands: Dict[str, Callable[[List[str]], None]] = {
            "cd": self.cmd_cd,
            "lcd": self.cmd_lcd,
            "pwd": self.cmd_pwd,
            "lpwd": self.cmd_lpwd,
            "ls": self.cmd_ls,
            "lls": self.cmd_lls,
            "mkdir": self.cmd_mkdir,
            "lmkdir": self.cmd_lmkdir,
            "help": self.cmd_help,
            "?": self.cmd_help,
        }

    # ---- output ---------------------------------------------------------

    def out(self, message: str = "") -> None:
        self.console.print(message, markup=False, highlight=False)

    def error(self, message: str) -> None:
        self.err_console.print(message, markup=False, highlight=False)

    @property
    def prompt(self) -> str:
        return f"sftp {self.user}@{self.host}:{self.paths.remote_cwd}> "

    def _show_prompt(self) -> None:
        self.console.print(Text(self.prompt, style="bold green"), end="")

    # ---- main loop ------------------------------------------------------

    def run(self) -> None:
        """Read and execute commands until EOF or an exit command."""
        self.out("SFTP shell started. Type 'help' for commands.")
        self.out("Press Ctrl+C to interrupt file transfers.")

        while True:
            try:
                self._show_prompt()
                line = self.stdin.readline()
                if not line:
                    self.out()
                    return
                if not self.handle_line(line):
                    return
            except KeyboardInterrupt:
                # Abandons the prompt or the running command, not the shell
                self.out()

    def handle_line(self, line: str) -> bool:
        """
        Execute one input line.

        Returns:
            False when the shell should exit
        """
        parts = line.split()
        if not parts:
            return True
        cmd, args = parts[0].lower(), parts[1:]

        if cmd in EXIT_COMMANDS:
            return False
        if cmd in ("get", "put"):
            self.run_transfer(cmd, args)
            return True

        handler = self._commands.get(cmd)
        try:
            if handler is None:
                raise CommandError(f"unknown command: {cmd}")
            handler(args)
        except SSHMError as e:
            self.error(f"Error: {e.message}")
        except (OSError, paramiko.SSHException) as e:
            self.error(f"Error: {e}")
        return True

    # ---- navigation -----------------------------------------------------

    def _remote_stat(self, path: str):
        try:
            return self.sftp.stat(path)
        except FileNotFoundError as e:
            raise PathNotFoundError(f"stat {path}: {e}")
        except (OSError, paramiko.SSHException) as e:
            raise CommandError(f"stat {path}: {e}")

    def cmd_cd(self, args: List[str]) -> None:
        resolved = self.paths.resolve_remote(args[0] if args else "~")
        attr = self._remote_stat(resolved)
        if not stat.S_ISDIR(attr.st_mode or 0):
            raise CommandError(f"{resolved} is not a directory")
        self.paths.update_remote_cwd(self.sftp, resolved)

    def cmd_lcd(self, args: List[str]) -> None:
        resolved = self.paths.resolve_local(args[0] if args else "~")
        if not os.path.exists(resolved):
            raise PathNotFoundError(f"stat {resolved}: no such file or directory")
        if not os.path.isdir(resolved):
            raise CommandError(f"{resolved} is not a directory")
        self.paths.update_local_cwd(resolved)

    def cmd_pwd(self, args: List[str]) -> None:
        self.out(f"Remote working directory: {self.paths.remote_cwd}")

    def cmd_lpwd(self, args: List[str]) -> None:
        self.out(f"Local working directory: {self.paths.local_cwd}")

    def cmd_ls(self, args: List[str]) -> None:
        resolved = self.paths.resolve_remote(args[0] if args else ".")
        try:
            entries = self.sftp.listdir_attr(resolved)
        except (OSError, paramiko.SSHException) as e:
            raise CommandError(f"read dir {resolved}: {e}")
        for attr in sorted(entries, key=lambda a: a.filename):
            self.out(_listing_line(attr.st_mode or 0, attr.st_size or 0, attr.st_mtime or 0, attr.filename))

    def cmd_lls(self, args: List[str]) -> None:
        resolved = self.paths.resolve_local(args[0] if args else ".")
        try:
            entries = sorted(os.scandir(resolved), key=lambda e: e.name)
        except OSError as e:
            raise CommandError(f"read dir {resolved}: {e}")
        for entry in entries:
            st = entry.stat(follow_symlinks=False)
            self.out(_listing_line(st.st_mode, st.st_size, st.st_mtime, entry.name))

    def cmd_mkdir(self, args: List[str]) -> None:
        if not args:
            raise CommandError("usage: mkdir <path>")
        resolved = self.paths.resolve_remote(args[0])
        self.engine.mkdir_p(resolved)
        self.out(f"Created remote directory: {resolved}")

    def cmd_lmkdir(self, args: List[str]) -> None:
        if not args:
            raise CommandError("usage: lmkdir <path>")
        resolved = self.paths.resolve_local(args[0])
        try:
            os.makedirs(resolved, exist_ok=True)
        except OSError as e:
            raise CommandError(f"mkdir {resolved}: {e}")
        self.out(f"Created local directory: {resolved}")

    def cmd_help(self, args: List[str]) -> None:
        table = Table(box=box.SQUARE, show_header=True, header_style="bold")
        table.add_column("Command")
        table.add_column("Arguments")
        table.add_column("Description")
        for row in HELP_ROWS:
            table.add_row(*row)
        self.console.print(table)

    # ---- transfers ------------------------------------------------------

    def prepare_transfer(self, cmd: str, args: List[str]) -> TransferTask:
        """Resolve paths and decide file vs folder transfer."""
        task_id = str(uuid.uuid4())
        if cmd == "get":
            if not args:
                raise CommandError("usage: get remote-path [local-path]")
            src = self.paths.resolve_remote(args[0])
            dst = self.paths.resolve_local(args[1] if len(args) > 1 else get_remote_basename(src))
            attr = self._remote_stat(src)
            if stat.S_ISDIR(attr.st_mode or 0):
                return TransferTask(task_id, "folder_download", src, dst)
            return TransferTask(task_id, "download", src, dst, bytes_total=attr.st_size or 0)

        if not args:
            raise CommandError("usage: put local-path [remote-path]")
        src = self.paths.resolve_local(args[0])
        if len(args) > 1:
            dst = self.paths.resolve_remote(args[1])
        else:
            dst = join_remote_path(self.paths.remote_cwd, os.path.basename(src.rstrip(os.sep)))
        if not os.path.exists(src):
            raise PathNotFoundError(f"stat local {src}: no such file or directory")
        if os.path.isdir(src):
            if self.engine.remote_exists(dst) and not self.engine.remote_is_dir(dst):
                raise CommandError(f"remote path '{dst}' already exists and is not a directory")
            return TransferTask(task_id, "folder_upload", src, dst)
        return TransferTask(task_id, "upload", src, dst, bytes_total=os.path.getsize(src))

    def _set_status(self, task: TransferTask, status: str, error: Optional[SSHMError] = None) -> None:
        assert_transition(TASK_TRANSITIONS, task.status, status)
        task.status = status
        if error is not None:
            task.error_code = error.code
            task.error_message = error.message
        log_transfer_event(
            self.logger, task.task_id, task.kind, status,
            src=task.src, dst=task.dst,
            bytes_done=task.bytes_done, bytes_total=task.bytes_total,
            error_code=task.error_code, message=task.error_message,
        )

    def execute_transfer(self, task: TransferTask, token: CancelToken) -> Optional[TransferResult]:
        """Run *task* to completion; called on the worker thread."""
        self._set_status(task, "running")
        progress = Progress(
            TextColumn("{task.description}"),
            BarColumn(),
            DownloadColumn(binary_units=True),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=self.console,
        )
        result = None
        try:
            if task.kind == "folder_download":
                task.files = self.engine.scan_remote_dir(task.src)
            elif task.kind == "folder_upload":
                task.files = self.engine.scan_local_dir(task.src)
            if task.files:
                task.bytes_total = sum(f.size for f in task.files)

            with progress:
                bar = progress.add_task(
                    get_remote_basename(task.src) or task.src,
                    total=task.bytes_total or None,
                )

                def _on_progress(done: int, total: int) -> None:
                    task.bytes_done = done
                    task.bytes_total = total
                    progress.update(bar, completed=done, total=total or None)

                if task.kind == "download":
                    self.engine.download_file(task.src, task.dst, _on_progress, token)
                elif task.kind == "upload":
                    self.engine.upload_file(task.src, task.dst, _on_progress, token)
                elif task.kind == "folder_download":
                    result = self.engine.download_dir(task.src, task.dst, _on_progress, token, files=task.files)
                else:
                    result = self.engine.upload_dir(task.src, task.dst, _on_progress, token, files=task.files)
        except TransferCancelled as e:
            self._set_status(task, "canceled", e)
            raise
        except TransferError as e:
            self._set_status(task, "failed", e)
            raise
        except Exception as e:
            task.error_message = str(e)
            self._set_status(task, "failed")
            raise
        self._set_status(task, "done")
        self.logger.debug(f"Finished {task}")
        return result

    def run_transfer(self, cmd: str, args: List[str]) -> None:
        """
        Run get/put on a worker thread and wait for it.

        Ctrl-C while waiting cancels the transfer and blocks until the
        worker has removed any partial file.
        """
        try:
            task = self.prepare_transfer(cmd, args)
        except SSHMError as e:
            self.error(f"Error: {e.message}")
            return
        except (OSError, paramiko.SSHException) as e:
            self.error(f"Error: {e}")
            return

        token = CancelToken()
        outcome: dict = {}

        def _worker() -> None:
            try:
                outcome["result"] = self.execute_transfer(task, token)
            except BaseException as e:
                outcome["error"] = e
            finally:
                token.finish()

        threading.Thread(target=_worker, name=f"sshm-{cmd}", daemon=True).start()

        try:
            token.wait_done()
        except KeyboardInterrupt:
            self.out("\n^C")
            token.cancel()
            self._drain(token)
            self.error("Transfer cancelled.")
            return

        self._report(task, outcome)

    def _drain(self, token: CancelToken) -> None:
        while True:
            try:
                token.wait_done()
                return
            except KeyboardInterrupt:
                continue

    def _report(self, task: TransferTask, outcome: dict) -> None:
        error = outcome.get("error")
        if isinstance(error, TransferCancelled):
            self.error("Transfer cancelled.")
            return

        verb = "Download" if "download" in task.kind else "Upload"
        result = outcome.get("result")
        if error is not None and isinstance(getattr(error, "result", None), TransferResult):
            result = error.result

        if task.kind in ("download", "upload"):
            if error is None:
                self.out(f"{verb} complete: {task.src} ({format_size(task.bytes_total)})")
        elif result is not None:
            if result.files_total == 0:
                self.out(f"{verb}ed empty directory: {task.src}")
            else:
                if result.failed:
                    self.out(f"\n{verb} completed with {len(result.failed)} failures:")
                    for rel in result.failed:
                        self.out(f"  - {rel}: {result.errors.get(rel, '')}")
                self.out(
                    f"{verb} complete: {result.files_done}/{result.files_total} files, "
                    f"{format_size(result.bytes_done)}/{format_size(result.bytes_total)} "
                    f"{verb.lower()}ed"
                )

        if error is not None:
            message = error.message if isinstance(error, SSHMError) else str(error)
            self.error(f"Error: {message}")
