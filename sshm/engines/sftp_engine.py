"""Cancellable file and folder transfers over a paramiko SFTP client."""
import logging
import os
import stat
import threading
from typing import Callable, List, Optional

import paramiko
from paramiko import SFTPClient

from sshm.shared.errors import SSHMError, TransferCancelled, TransferError
from sshm.shared.models import FileEntry, TransferResult
from sshm.shared.paths import get_remote_basename, get_remote_parent, join_remote_path
from sshm.shared.settings import COPY_BUFFER_SIZE, PROGRESS_BATCH_SIZE

# callback(bytes_transferred, bytes_total)
ProgressCallback = Callable[[int, int], None]


class CancelToken:
    """
    Cooperative cancellation for one transfer.

    The transfer checks the token between buffers; the canceller can then
    block on ``wait_done`` until the worker has cleaned up.
    """

    def __init__(self):
        self._cancelled = threading.Event()
        self._done = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def raise_if_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise TransferCancelled()

    def finish(self) -> None:
        """Mark the worker as finished (successfully or not)."""
        self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait_done(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)


class TransferEngine:
    """
    Transfers files between the local filesystem and one SFTP client.

    Single-file transfers are all-or-nothing: the destination is removed on
    any failure or cancellation. Folder transfers continue past per-file
    failures and report them in a ``TransferResult``.
    """

    def __init__(
        self,
        sftp: SFTPClient,
        logger: Optional[logging.Logger] = None,
        buffer_size: int = COPY_BUFFER_SIZE,
        batch_size: int = PROGRESS_BATCH_SIZE,
    ):
        self.sftp = sftp
        self.logger = logger or logging.getLogger(__name__)
        self.buffer_size = buffer_size
        self.batch_size = batch_size

    # ---- remote helpers -------------------------------------------------

    def remote_is_dir(self, remote_path: str) -> bool:
        try:
            attr = self.sftp.stat(remote_path)
        except (OSError, paramiko.SSHException):
            return False
        return attr.st_mode is not None and stat.S_ISDIR(attr.st_mode)

    def remote_exists(self, remote_path: str) -> bool:
        try:
            self.sftp.stat(remote_path)
            return True
        except FileNotFoundError:
            return False

    def mkdir_p(self, remote_path: str) -> None:
        """
        Create *remote_path* and any missing parents.

        Raises:
            TransferError: If a component exists and is not a directory
        """
        missing = []
        current = remote_path
        while current and current != "/":
            try:
                attr = self.sftp.stat(current)
            except FileNotFoundError:
                missing.append(current)
                current = get_remote_parent(current)
                continue
            except (OSError, paramiko.SSHException) as e:
                raise TransferError(f"stat {current}: {e}")
            if attr.st_mode is not None and not stat.S_ISDIR(attr.st_mode):
                raise TransferError(f"{current} exists and is not a directory")
            break

        for path in reversed(missing):
            try:
                self.sftp.mkdir(path)
            except (OSError, paramiko.SSHException) as e:
                raise TransferError(f"mkdir {path}: {e}")
            self.logger.debug(f"Created remote directory: {path}")

    # ---- copying --------------------------------------------------------

    def _copy(self, src, dst, total: int, callback: Optional[ProgressCallback],
              token: Optional[CancelToken]) -> int:
        copied = 0
        pending = 0
        while True:
            if token is not None:
                token.raise_if_cancelled()
            chunk = src.read(self.buffer_size)
            if not chunk:
                break
            dst.write(chunk)
            copied += len(chunk)
            pending += len(chunk)
            if callback and pending >= self.batch_size:
                callback(copied, total)
                pending = 0
        if callback and pending:
            callback(copied, total)
        return copied

    def download_file(
        self,
        remote_path: str,
        local_path: str,
        callback: Optional[ProgressCallback] = None,
        token: Optional[CancelToken] = None,
    ) -> int:
        """
        Download one file.

        Args:
            remote_path: Absolute remote source
            local_path: Local destination; an existing directory receives
                the source's basename
            callback: Optional progress callback(bytes_transferred, bytes_total)
            token: Optional cancellation token

        Returns:
            Bytes copied

        Raises:
            TransferError: On open/create/copy failure or size mismatch
            TransferCancelled: If the token was cancelled
        """
        if os.path.isdir(local_path):
            local_path = os.path.join(local_path, get_remote_basename(remote_path))

        try:
            src = self.sftp.open(remote_path, "rb")
        except (OSError, paramiko.SSHException) as e:
            raise TransferError(f"open remote file {remote_path}: {e}")

        with src:
            try:
                size = src.stat().st_size or 0
                dst = open(local_path, "wb")
            except (OSError, paramiko.SSHException) as e:
                raise TransferError(f"create local file {local_path}: {e}")

            try:
                with dst:
                    copied = self._copy(src, dst, size, callback, token)
                    if copied != size:
                        raise TransferError(
                            f"incomplete download: {copied}/{size} bytes of {remote_path}"
                        )
                    dst.flush()
                    os.fsync(dst.fileno())
            except BaseException as e:
                self._remove_local(local_path)
                if isinstance(e, (OSError, paramiko.SSHException)):
                    raise TransferError(f"download {remote_path}: {e}") from e
                raise

        self.logger.info(f"Downloaded {remote_path} -> {local_path} ({copied} bytes)")
        return copied

    def upload_file(
        self,
        local_path: str,
        remote_path: str,
        callback: Optional[ProgressCallback] = None,
        token: Optional[CancelToken] = None,
    ) -> int:
        """
        Upload one file.

        Args:
            local_path: Local source
            remote_path: Absolute remote destination; an existing directory
                receives the source's basename
            callback: Optional progress callback(bytes_transferred, bytes_total)
            token: Optional cancellation token

        Returns:
            Bytes copied
        """
        if self.remote_is_dir(remote_path):
            remote_path = join_remote_path(remote_path, os.path.basename(local_path))

        try:
            src = open(local_path, "rb")
        except OSError as e:
            raise TransferError(f"open local file {local_path}: {e}")

        with src:
            size = os.fstat(src.fileno()).st_size
            try:
                dst = self.sftp.open(remote_path, "wb")
            except (OSError, paramiko.SSHException) as e:
                raise TransferError(f"create remote file {remote_path}: {e}")

            try:
                with dst:
                    dst.set_pipelined(True)
                    copied = self._copy(src, dst, size, callback, token)
                    if copied != size:
                        raise TransferError(
                            f"incomplete upload: {copied}/{size} bytes of {local_path}"
                        )
                    dst.flush()
            except BaseException as e:
                self._remove_remote(remote_path)
                if isinstance(e, (OSError, paramiko.SSHException)):
                    raise TransferError(f"upload {local_path}: {e}") from e
                raise

        self.logger.info(f"Uploaded {local_path} -> {remote_path} ({copied} bytes)")
        return copied

    def _remove_local(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Could not remove partial file {path}: {e}")

    def _remove_remote(self, path: str) -> None:
        try:
            self.sftp.remove(path)
        except FileNotFoundError:
            pass
        except (OSError, paramiko.SSHException) as e:
            self.logger.warning(f"Could not remove partial remote file {path}: {e}")

    # ---- folders --------------------------------------------------------

    def scan_local_dir(self, root: str) -> List[FileEntry]:
        """List regular files under *root*; rel paths use ``/``."""
        entries = []
        for dirpath, _dirnames, filenames in os.walk(root):
            for name in filenames:
                full = os.path.join(dirpath, name)
                try:
                    st = os.lstat(full)
                except OSError as e:
                    self.logger.warning(f"Skipping {full}: {e}")
                    continue
                if not stat.S_ISREG(st.st_mode):
                    continue
                rel = os.path.relpath(full, root).replace(os.sep, "/")
                entries.append(FileEntry(rel_path=rel, size=st.st_size))
        entries.sort(key=lambda e: e.rel_path)
        return entries

    def scan_remote_dir(self, root: str) -> List[FileEntry]:
        """List regular files under remote *root*, skipping links and specials."""
        entries = []

        def _walk(path: str, prefix: str) -> None:
            try:
                attrs = self.sftp.listdir_attr(path)
            except (OSError, paramiko.SSHException) as e:
                raise TransferError(f"list remote directory {path}: {e}")
            for attr in attrs:
                mode = attr.st_mode or 0
                rel = f"{prefix}{attr.filename}"
                if stat.S_ISDIR(mode):
                    _walk(join_remote_path(path, attr.filename), rel + "/")
                elif stat.S_ISREG(mode):
                    entries.append(FileEntry(rel_path=rel, size=attr.st_size or 0))

        _walk(root, "")
        entries.sort(key=lambda e: e.rel_path)
        return entries

    def _aggregate(self, result: TransferResult, callback: Optional[ProgressCallback]):
        if callback is None:
            return None

        def _cb(transferred: int, _total: int) -> None:
            callback(result.bytes_done + transferred, result.bytes_total)

        return _cb

    def download_dir(
        self,
        remote_root: str,
        local_root: str,
        callback: Optional[ProgressCallback] = None,
        token: Optional[CancelToken] = None,
        files: Optional[List[FileEntry]] = None,
    ) -> TransferResult:
        """
        Download a remote directory tree into *local_root*.

        Returns:
            TransferResult when every file succeeded

        Raises:
            TransferError: Carrying the result if any file failed
            TransferCancelled: If the token was cancelled
        """
        if os.path.exists(local_root) and not os.path.isdir(local_root):
            raise TransferError(f"{local_root} exists and is not a directory")
        try:
            os.makedirs(local_root, exist_ok=True)
        except OSError as e:
            raise TransferError(f"create local directory {local_root}: {e}")

        if files is None:
            files = self.scan_remote_dir(remote_root)
        result = TransferResult(files_total=len(files), bytes_total=sum(f.size for f in files))
        progress = self._aggregate(result, callback)

        for entry in files:
            if token is not None:
                token.raise_if_cancelled()
            local_path = os.path.join(local_root, *entry.rel_path.split("/"))
            try:
                os.makedirs(os.path.dirname(local_path), exist_ok=True)
                copied = self.download_file(
                    join_remote_path(remote_root, entry.rel_path), local_path,
                    callback=progress, token=token,
                )
            except TransferCancelled:
                raise
            except (SSHMError, OSError) as e:
                self._record_failure(result, entry, e)
                continue
            result.files_done += 1
            result.bytes_done += copied

        self.logger.info(
            f"Download complete: {result.files_done}/{result.files_total} files from {remote_root}"
        )
        if result.failed:
            raise TransferError(f"{len(result.failed)} files failed to download", result=result)
        return result

    def upload_dir(
        self,
        local_root: str,
        remote_root: str,
        callback: Optional[ProgressCallback] = None,
        token: Optional[CancelToken] = None,
        files: Optional[List[FileEntry]] = None,
    ) -> TransferResult:
        """
        Upload a local directory tree into *remote_root*.

        Returns:
            TransferResult when every file succeeded

        Raises:
            TransferError: Carrying the result if any file failed
            TransferCancelled: If the token was cancelled
        """
        if not os.path.isdir(local_root):
            raise TransferError(f"{local_root} is not a directory")
        self.mkdir_p(remote_root)

        if files is None:
            files = self.scan_local_dir(local_root)
        result = TransferResult(files_total=len(files), bytes_total=sum(f.size for f in files))
        progress = self._aggregate(result, callback)
        created = {remote_root}

        for entry in files:
            if token is not None:
                token.raise_if_cancelled()
            remote_path = join_remote_path(remote_root, entry.rel_path)
            try:
                parent = get_remote_parent(remote_path)
                if parent and parent not in created:
                    self.mkdir_p(parent)
                    created.add(parent)
                copied = self.upload_file(
                    os.path.join(local_root, *entry.rel_path.split("/")), remote_path,
                    callback=progress, token=token,
                )
            except TransferCancelled:
                raise
            except (SSHMError, OSError) as e:
                self._record_failure(result, entry, e)
                continue
            result.files_done += 1
            result.bytes_done += copied

        self.logger.info(
            f"Upload complete: {result.files_done}/{result.files_total} files to {remote_root}"
        )
        if result.failed:
            raise TransferError(f"{len(result.failed)} files failed to upload", result=result)
        return result

    def _record_failure(self, result: TransferResult, entry: FileEntry, error: Exception) -> None:
        message = error.message if isinstance(error, SSHMError) else str(error)
        result.failed.append(entry.rel_path)
        result.errors[entry.rel_path] = message
        self.logger.warning(f"Failed to transfer {entry.rel_path}: {message}")
