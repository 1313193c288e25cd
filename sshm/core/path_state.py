"""Local and remote working directories for the file-transfer shell."""
import os
from dataclasses import dataclass

from sshm.shared.errors import UnsupportedPathFormError
from sshm.shared.paths import join_remote_path, normalize_remote_path


def _check_tilde(path: str) -> None:
    if path.startswith("~") and path != "~" and not path.startswith("~/"):
        raise UnsupportedPathFormError(path)


@dataclass
class PathState:
    """
    Tracks both current directories of a file-transfer session.

    ``remote_cwd`` is only ever assigned from the server's canonical path,
    so symlinks and ``..`` are resolved the way the server sees them.
    """

    local_cwd: str
    local_home: str
    remote_cwd: str
    remote_home: str

    @classmethod
    def from_sftp(cls, sftp) -> "PathState":
        """Start in the process CWD locally and the login directory remotely."""
        remote_home = sftp.normalize(".")
        return cls(
            local_cwd=os.getcwd(),
            local_home=os.path.expanduser("~"),
            remote_cwd=remote_home,
            remote_home=remote_home,
        )

    def resolve_local(self, path: str) -> str:
        """
        Resolve *path* against the local CWD.

        Raises:
            UnsupportedPathFormError: For ``~user`` paths
        """
        if path in ("", "."):
            return self.local_cwd
        _check_tilde(path)
        if path == "~":
            return self.local_home
        if path.startswith("~/"):
            return os.path.normpath(os.path.join(self.local_home, path[2:]))
        if os.path.isabs(path):
            return os.path.normpath(path)
        return os.path.normpath(os.path.join(self.local_cwd, path))

    def resolve_remote(self, path: str) -> str:
        """
        Resolve *path* against the remote CWD using ``/`` separators only.

        Raises:
            UnsupportedPathFormError: For ``~user`` paths
        """
        if path in ("", "."):
            return self.remote_cwd
        _check_tilde(path)
        if path == "~":
            return self.remote_home
        if path.startswith("~/"):
            return normalize_remote_path(join_remote_path(self.remote_home, path[2:]))
        if path.startswith("/"):
            return normalize_remote_path(path)
        return normalize_remote_path(join_remote_path(self.remote_cwd, path))

    def update_remote_cwd(self, sftp, path: str) -> str:
        """Set the remote CWD to the server's canonical form of *path*."""
        self.remote_cwd = sftp.normalize(path)
        return self.remote_cwd

    def update_local_cwd(self, path: str) -> str:
        self.local_cwd = os.path.abspath(path)
        return self.local_cwd
