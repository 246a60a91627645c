from __future__ import annotations

import io
import json
import stat
from datetime import UTC, datetime
from types import SimpleNamespace

from remotefm.dir_cache import RemoteDirectoryCache
from remotefm.errors import RemoteError
from remotefm.models import FileEntry, GrepMatch, OsFamily, Session

SESSION = Session(id="agent-1")
WINDOWS_SESSION = Session(id="agent-win", os_family=OsFamily.WINDOWS)


def mk_entry(
    name: str,
    *,
    is_dir: bool = False,
    size: int = 0,
    mode: str | None = None,
    link: str | None = None,
) -> FileEntry:
    return FileEntry(
        name=name,
        is_dir=is_dir,
        size=size,
        mod_time=datetime(2024, 1, 1, tzinfo=UTC),
        mode=mode or ("drwxr-xr-x" if is_dir else "-rw-r--r--"),
        link=link,
    )


class FakeLink:
    """In-memory RemoteLink recording every call it receives."""

    def __init__(self) -> None:
        self.listings: dict[str, list[FileEntry]] = {}
        self.files: dict[str, bytes] = {}
        self.uploaded: dict[str, bytes] = {}
        self.grep_results: list[GrepMatch] = []
        self.texts: dict[tuple[str, str], str] = {}
        self.failures: dict[tuple[str, str], Exception] = {}
        self.calls: list[tuple] = []
        self.os_family = OsFamily.POSIX

    def session(self, os_family: OsFamily | str = OsFamily.POSIX) -> Session:
        return Session(id="fake", os_family=OsFamily(os_family))

    def _record(self, method: str, path: str, *args: object) -> None:
        self.calls.append((method, path, *args))
        err = self.failures.get((method, path))
        if err is not None:
            raise err

    def calls_of(self, method: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == method]

    def list(self, session: Session, path: str) -> list[FileEntry]:
        self._record("list", path)
        return list(self.listings.get(path, []))

    def mkdir(self, session: Session, path: str) -> None:
        self._record("mkdir", path)

    def delete(self, session: Session, path: str) -> None:
        self._record("delete", path)

    def move(self, session: Session, src: str, dst: str) -> None:
        self._record("move", src, dst)

    def copy(self, session: Session, src: str, dst: str) -> None:
        self._record("copy", src, dst)

    def grep(self, session, path, pattern, *, recursive, case_insensitive):
        self._record("grep", path, pattern, recursive, case_insensitive)
        return list(self.grep_results)

    def head(self, session, path, line_count, byte_count=None):
        self._record("head", path, line_count, byte_count)
        return self.texts.get(("head", path), "")

    def tail(self, session, path, line_count, byte_count=None):
        self._record("tail", path, line_count, byte_count)
        return self.texts.get(("tail", path), "")

    def chmod(self, session, path, mode, *, recursive):
        self._record("chmod", path, mode, recursive)

    def chown(self, session, path, uid, gid, *, recursive):
        self._record("chown", path, uid, gid, recursive)

    def chtimes(self, session, path, access_time, modify_time):
        self._record("chtimes", path, access_time, modify_time)

    def upload(self, session: Session, dest_path: str, data: bytes) -> None:
        self._record("upload", dest_path)
        self.uploaded[dest_path] = data

    def download(self, session: Session, path: str) -> bytes:
        self._record("download", path)
        if path not in self.files:
            raise RemoteError("no such file", operation="download", path=path)
        return self.files[path]


class SpyCache(RemoteDirectoryCache):
    def __init__(self) -> None:
        super().__init__()
        self.invalidations: list[str] = []
        self.drops: list[tuple[tuple[str, ...], tuple[str, ...]]] = []

    def invalidate(self, session: Session, path: str) -> None:
        self.invalidations.append(path)
        super().invalidate(session, path)

    def drop(self, session, keys, *, descendants_of=()):
        keys = tuple(sorted(keys))
        descendants_of = tuple(sorted(descendants_of))
        self.drops.append((keys, descendants_of))
        return super().drop(session, keys, descendants_of=descendants_of)


def make_attrs(
    filename: str,
    *,
    mode: int = stat.S_IFREG | 0o644,
    size: int = 0,
    mtime: float = 1_700_000_000.0,
) -> SimpleNamespace:
    return SimpleNamespace(filename=filename, st_mode=mode, st_size=size, st_mtime=mtime)


class FakeSFTPClient:
    def __init__(self) -> None:
        self.dirs: dict[str, list[SimpleNamespace]] = {}
        self.files: dict[str, bytes] = {}
        self.stats: dict[str, SimpleNamespace] = {}
        self.links: dict[str, str] = {}
        self.failures: dict[tuple[str, str], Exception] = {}
        self.calls: list[tuple] = []
        self.closed = 0

    def _check(self, method: str, path: str, *args: object) -> None:
        self.calls.append((method, path, *args))
        err = self.failures.get((method, path))
        if err is not None:
            raise err

    def listdir_attr(self, path: str):
        self._check("listdir_attr", path)
        if path not in self.dirs:
            raise FileNotFoundError(2, "No such file", path)
        return list(self.dirs[path])

    def readlink(self, path: str) -> str:
        self._check("readlink", path)
        return self.links[path]

    def stat(self, path: str):
        self._check("stat", path)
        if path in self.stats:
            return self.stats[path]
        raise FileNotFoundError(2, "No such file", path)

    def lstat(self, path: str):
        self._check("lstat", path)
        if path in self.dirs:
            return make_attrs(path, mode=stat.S_IFDIR | 0o755)
        if path in self.files:
            return make_attrs(path)
        raise FileNotFoundError(2, "No such file", path)

    def mkdir(self, path: str) -> None:
        self._check("mkdir", path)
        self.dirs[path] = []

    def rmdir(self, path: str) -> None:
        self._check("rmdir", path)
        self.dirs.pop(path)

    def remove(self, path: str) -> None:
        self._check("remove", path)
        self.files.pop(path)

    def posix_rename(self, src: str, dst: str) -> None:
        self._check("posix_rename", src, dst)

    def chmod(self, path: str, mode: int) -> None:
        self._check("chmod", path, mode)

    def utime(self, path: str, times: tuple[int, int]) -> None:
        self._check("utime", path, times)

    def putfo(self, fl, remotepath: str, file_size: int = 0, callback=None, confirm=True):
        self._check("putfo", remotepath, file_size, confirm)
        self.files[remotepath] = fl.read()

    def getfo(self, remotepath: str, fl) -> int:
        self._check("getfo", remotepath)
        if remotepath not in self.files:
            raise FileNotFoundError(2, "No such file", remotepath)
        data = self.files[remotepath]
        fl.write(data)
        return len(data)

    def close(self) -> None:
        self.closed += 1


class _FakeChannel:
    def __init__(self, exit_status: int = 0) -> None:
        self.exit_status = exit_status
        self.write_shut = False

    def recv_exit_status(self) -> int:
        return self.exit_status

    def shutdown_write(self) -> None:
        self.write_shut = True


class _FakeStdin:
    def __init__(self, channel: _FakeChannel) -> None:
        self.channel = channel
        self.written: list[str] = []

    def write(self, data: str) -> None:
        self.written.append(data)


class _FakeStdout:
    def __init__(self, text: str, channel: _FakeChannel) -> None:
        self._stream = io.StringIO(text)
        self.channel = channel

    def readline(self) -> str:
        return self._stream.readline()


class _FakeStderr:
    def __init__(self, text: str) -> None:
        self._data = text.encode("utf-8")

    def read(self) -> bytes:
        return self._data


def helper_output(*events: dict[str, object]) -> str:
    return "".join(json.dumps(event) + "\n" for event in events)


class FakeSSHClient:
    def __init__(
        self,
        sftp: FakeSFTPClient | None = None,
        *,
        stdout: str = "",
        stderr: str = "",
        exit_status: int = 0,
    ) -> None:
        self.sftp = sftp or FakeSFTPClient()
        self.stdout = stdout
        self.stderr = stderr
        self.exit_status = exit_status
        self.connect_calls: list[dict[str, object]] = []
        self.commands: list[str] = []
        self.stdins: list[_FakeStdin] = []
        self.closed = False

    def load_system_host_keys(self) -> None:
        return None

    def set_missing_host_key_policy(self, policy: object) -> None:
        _ = policy

    def connect(self, **kwargs) -> None:
        self.connect_calls.append(kwargs)

    def exec_command(self, command: str):
        self.commands.append(command)
        channel = _FakeChannel(self.exit_status)
        stdin = _FakeStdin(channel)
        self.stdins.append(stdin)
        return stdin, _FakeStdout(self.stdout, channel), _FakeStderr(self.stderr)

    def open_sftp(self) -> FakeSFTPClient:
        return self.sftp

    def close(self) -> None:
        self.closed = True


class DummyAutoAddPolicy:
    pass
