from __future__ import annotations

import atexit
import io
import json
import logging
import shlex
import stat
import subprocess
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import paramiko

from . import paths
from .config import LinkConfig
from .errors import RemoteError
from .models import FileEntry, GrepMatch, OsFamily, Session, sort_entries

logger = logging.getLogger(__name__)

HELPER_PATH = Path(__file__).with_name("remote_helper.py")


class _ClientPool:
    """One connected SSHClient per link config, shared across threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clients: dict[LinkConfig, Any] = {}

    @staticmethod
    def _alive(client: Any) -> bool:
        get_transport = getattr(client, "get_transport", None)
        if get_transport is None:
            return True
        transport = get_transport()
        return transport is not None and bool(transport.is_active())

    def acquire(
        self,
        config: LinkConfig,
        client_factory: Callable[[], Any],
        policy_factory: Callable[[], Any],
    ) -> Any:
        with self._lock:
            client = self._clients.get(config)
            if client is not None and not self._alive(client):
                logger.info("connection to %s dropped, reconnecting", config.address)
                self._close(client)
                client = None
            if client is None:
                client = client_factory()
                client.load_system_host_keys()
                client.set_missing_host_key_policy(policy_factory())
                client.connect(
                    hostname=config.host,
                    username=config.user,
                    port=config.port,
                    look_for_keys=True,
                    allow_agent=True,
                    timeout=config.timeout,
                    compress=config.compress,
                )
                self._clients[config] = client
                logger.debug("connected to %s", config.address)
            return client

    def discard(self, config: LinkConfig) -> None:
        with self._lock:
            client = self._clients.pop(config, None)
        if client is not None:
            self._close(client)

    def close_all(self) -> None:
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            self._close(client)

    @staticmethod
    def _close(client: Any) -> None:
        try:
            client.close()
        except Exception:  # noqa: BLE001
            return


_POOL = _ClientPool()
atexit.register(_POOL.close_all)


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, OSError) and exc.strerror:
        return exc.strerror
    return str(exc) or type(exc).__name__


@contextmanager
def _remote_errors(operation: str, path: str | None = None) -> Iterator[None]:
    try:
        yield
    except RemoteError:
        raise
    except (OSError, EOFError, paramiko.SSHException) as exc:
        raise RemoteError(_error_message(exc), operation=operation, path=path) from exc


def _entry_from_attrs(attrs: paramiko.SFTPAttributes, link: str | None, is_dir: bool) -> FileEntry:
    mode = attrs.st_mode or 0
    return FileEntry(
        name=attrs.filename,
        is_dir=is_dir,
        size=int(attrs.st_size or 0),
        mod_time=datetime.fromtimestamp(float(attrs.st_mtime or 0), UTC),
        mode=stat.filemode(mode),
        link=link,
    )


class SshRemoteLink:
    """RemoteLink over SSH.

    SFTP covers the calls it can express directly. The rest (grep, head,
    tail, copy, recursive chmod, chown by name) run ``remote_helper.py`` on
    the agent and read its JSON-lines events back.
    """

    def __init__(
        self,
        config: LinkConfig,
        *,
        client_factory: Callable[[], Any] = paramiko.SSHClient,
        policy_factory: Callable[[], Any] = paramiko.AutoAddPolicy,
    ) -> None:
        self.config = config
        self.client_factory = client_factory
        self.policy_factory = policy_factory

    def session(self, os_family: OsFamily | str = OsFamily.POSIX) -> Session:
        return Session(id=self.config.address, os_family=OsFamily(os_family))

    def close(self) -> None:
        _POOL.discard(self.config)

    def _client(self) -> Any:
        with _remote_errors("connect", self.config.address):
            return _POOL.acquire(self.config, self.client_factory, self.policy_factory)

    @contextmanager
    def _sftp(self, operation: str, path: str | None = None) -> Iterator[paramiko.SFTPClient]:
        client = self._client()
        with _remote_errors(operation, path):
            sftp = client.open_sftp()
            try:
                yield sftp
            finally:
                sftp.close()

    def list(self, session: Session, path: str) -> list[FileEntry]:
        entries: list[FileEntry] = []
        with self._sftp("list", path) as sftp:
            for attrs in sftp.listdir_attr(path):
                mode = attrs.st_mode or 0
                link = None
                is_dir = stat.S_ISDIR(mode)
                if stat.S_ISLNK(mode):
                    full = paths.join(path, attrs.filename)
                    link = sftp.readlink(full)
                    try:
                        is_dir = stat.S_ISDIR(sftp.stat(full).st_mode or 0)
                    except OSError:
                        is_dir = False
                entries.append(_entry_from_attrs(attrs, link, is_dir))
        return list(sort_entries(entries))

    def mkdir(self, session: Session, path: str) -> None:
        with self._sftp("mkdir", path) as sftp:
            sftp.mkdir(path)

    def delete(self, session: Session, path: str) -> None:
        with self._sftp("delete", path) as sftp:
            st = sftp.lstat(path)
            if stat.S_ISDIR(st.st_mode or 0):
                sftp.rmdir(path)
            else:
                sftp.remove(path)

    def move(self, session: Session, src: str, dst: str) -> None:
        with self._sftp("move", src) as sftp:
            sftp.posix_rename(src, dst)

    def copy(self, session: Session, src: str, dst: str) -> None:
        self._run_helper(session, "copy", {"src": src, "dst": dst}, path=src)

    def grep(
        self,
        session: Session,
        path: str,
        pattern: str,
        *,
        recursive: bool,
        case_insensitive: bool,
    ) -> list[GrepMatch]:
        events = self._run_helper(
            session,
            "grep",
            {
                "path": path,
                "pattern": pattern,
                "recursive": recursive,
                "ignore-case": case_insensitive,
            },
            path=path,
        )
        return [
            GrepMatch(
                path=str(event["path"]),
                line_number=int(event["line_number"]),
                line=str(event.get("line", "")),
            )
            for event in events
            if event.get("event") == "match"
        ]

    def head(
        self,
        session: Session,
        path: str,
        line_count: int,
        byte_count: int | None = None,
    ) -> str:
        return self._text_command(session, "head", path, line_count, byte_count)

    def tail(
        self,
        session: Session,
        path: str,
        line_count: int,
        byte_count: int | None = None,
    ) -> str:
        return self._text_command(session, "tail", path, line_count, byte_count)

    def chmod(self, session: Session, path: str, mode: str, *, recursive: bool) -> None:
        if recursive:
            self._run_helper(
                session, "chmod", {"path": path, "mode": mode, "recursive": True}, path=path
            )
            return
        with self._sftp("chmod", path) as sftp:
            sftp.chmod(path, int(mode, 8))

    def chown(
        self,
        session: Session,
        path: str,
        uid: str,
        gid: str,
        *,
        recursive: bool,
    ) -> None:
        self._run_helper(
            session,
            "chown",
            {"path": path, "user": uid, "group": gid, "recursive": recursive},
            path=path,
        )

    def chtimes(
        self,
        session: Session,
        path: str,
        access_time: datetime,
        modify_time: datetime,
    ) -> None:
        with self._sftp("chtimes", path) as sftp:
            sftp.utime(path, (int(access_time.timestamp()), int(modify_time.timestamp())))

    def upload(self, session: Session, dest_path: str, data: bytes) -> None:
        with self._sftp("upload", dest_path) as sftp:
            sftp.putfo(io.BytesIO(data), dest_path, file_size=len(data), confirm=False)

    def download(self, session: Session, path: str) -> bytes:
        buffer = io.BytesIO()
        with self._sftp("download", path) as sftp:
            sftp.getfo(path, buffer)
        return buffer.getvalue()

    def _text_command(
        self,
        session: Session,
        command: str,
        path: str,
        line_count: int,
        byte_count: int | None,
    ) -> str:
        options: dict[str, object] = {"path": path, "lines": line_count}
        if byte_count is not None:
            options["bytes"] = byte_count
        events = self._run_helper(session, command, options, path=path)
        return "".join(
            str(event.get("data", "")) for event in events if event.get("event") == "text"
        )

    def _helper_command(self, session: Session, command: str, options: dict[str, object]) -> str:
        argv = [self.config.python, "-u", "-", command]
        for key, value in options.items():
            if value is True:
                argv.append(f"--{key}")
            elif value is False or value is None:
                continue
            else:
                argv.append(f"--{key}={value}")
        if session.is_windows:
            return subprocess.list2cmdline(argv)
        return " ".join(shlex.quote(part) for part in argv)

    def _run_helper(
        self,
        session: Session,
        command: str,
        options: dict[str, object],
        *,
        path: str | None = None,
    ) -> list[dict[str, Any]]:
        events: list[dict[str, Any]] = []
        error_messages: list[str] = []
        error_path: str | None = None
        client = self._client()

        with _remote_errors(command, path):
            stdin, stdout, stderr = client.exec_command(
                self._helper_command(session, command, options)
            )
            stdin.write(HELPER_PATH.read_text(encoding="utf-8"))
            stdin.channel.shutdown_write()

            for raw in iter(stdout.readline, ""):
                line = raw.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    error_messages.append(f"invalid_json_event: {line[:120]}")
                    continue

                kind = event.get("event")
                if kind == "error":
                    error_messages.append(str(event.get("message", "remote helper error")))
                    error_path = event.get("path") or error_path
                    continue
                if kind == "warning":
                    logger.info(
                        "%s on %s: %s (%s)",
                        command,
                        session.id,
                        event.get("message"),
                        event.get("path"),
                    )
                    continue
                events.append(event)

            exit_status = stdout.channel.recv_exit_status()
            stderr_output = stderr.read().decode("utf-8", errors="replace").strip()

        if exit_status != 0 or error_messages:
            if stderr_output:
                error_messages.append(stderr_output.splitlines()[-1])
            detail = "; ".join(error_messages[-5:]) if error_messages else "remote helper failed"
            raise RemoteError(detail, operation=command, path=error_path or path)
        return events
