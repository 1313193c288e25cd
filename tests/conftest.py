"""Shared fixtures: an SFTP client backed by a local directory."""
import os
from types import SimpleNamespace

import pytest

from sshm.shared.paths import normalize_remote_path


class FakeRemoteFile:
    """File object with the bits of paramiko.SFTPFile the engine uses."""

    def __init__(self, fileobj, reported_size=None):
        self._f = fileobj
        self._reported_size = reported_size

    def read(self, n):
        return self._f.read(n)

    def write(self, data):
        return self._f.write(data)

    def flush(self):
        self._f.flush()

    def set_pipelined(self, pipelined=True):
        pass

    def stat(self):
        st = os.fstat(self._f.fileno())
        size = st.st_size if self._reported_size is None else self._reported_size
        return SimpleNamespace(st_size=size, st_mode=st.st_mode)

    def close(self):
        self._f.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class FakeSFTP:
    """Maps remote absolute paths onto a local root directory."""

    def __init__(self, root):
        self.root = str(root)
        self.fail_open = set()
        self.reported_sizes = {}

    def local(self, remote_path: str) -> str:
        rel = normalize_remote_path(remote_path).lstrip("/")
        return os.path.join(self.root, *rel.split("/")) if rel else self.root

    def open(self, path, mode="r"):
        path = normalize_remote_path(path)
        if path in self.fail_open:
            raise PermissionError(13, "Permission denied", path)
        return FakeRemoteFile(open(self.local(path), mode), self.reported_sizes.get(path))

    def stat(self, path):
        # SFTP servers report ENOENT for a path below a regular file
        try:
            return os.stat(self.local(path))
        except NotADirectoryError as e:
            raise FileNotFoundError(2, "No such file", path) from e

    def listdir_attr(self, path):
        entries = []
        for name in sorted(os.listdir(self.local(path))):
            st = os.lstat(os.path.join(self.local(path), name))
            entries.append(SimpleNamespace(
                filename=name, st_mode=st.st_mode, st_size=st.st_size, st_mtime=st.st_mtime,
            ))
        return entries

    def mkdir(self, path):
        os.mkdir(self.local(path))

    def remove(self, path):
        os.remove(self.local(path))

    def normalize(self, path):
        rel = os.path.relpath(os.path.realpath(self.local(path)), os.path.realpath(self.root))
        return "/" if rel == "." else "/" + rel.replace(os.sep, "/")

    def close(self):
        pass


@pytest.fixture
def remote_root(tmp_path):
    root = tmp_path / "remote"
    root.mkdir()
    return root


@pytest.fixture
def local_root(tmp_path):
    root = tmp_path / "local"
    root.mkdir()
    return root


@pytest.fixture
def sftp(remote_root):
    return FakeSFTP(remote_root)
