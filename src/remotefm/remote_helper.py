from __future__ import annotations

# Piped into the agent's interpreter (`python3 -u - <command> ...`), so it
# must stay standard-library only and must not depend on the remotefm package.

import argparse
import collections
import json
import os
import re
import shutil
import stat
import sys


def emit(event: dict[str, object]) -> None:
    sys.stdout.write(json.dumps(event, ensure_ascii=True) + "\n")
    sys.stdout.flush()


def fail(message: str, path: str | None = None) -> int:
    emit({"event": "error", "message": message, "path": path})
    return 1


def _iter_grep_files(root: str, recursive: bool):
    if os.path.isfile(root):
        yield root
        return
    if not recursive:
        for name in sorted(os.listdir(root)):
            full = os.path.join(root, name)
            if os.path.isfile(full):
                yield full
        return
    for current_dir, dirs, files in os.walk(root, topdown=True, followlinks=False):
        dirs.sort()
        for name in sorted(files):
            yield os.path.join(current_dir, name)


def _looks_binary(path: str) -> bool:
    with open(path, "rb") as handle:
        return b"\0" in handle.read(8192)


def run_grep(path: str, pattern: str, recursive: bool, ignore_case: bool) -> int:
    if not os.path.exists(path):
        return fail("no such file or directory", path)
    try:
        regex = re.compile(pattern, re.IGNORECASE if ignore_case else 0)
    except re.error as exc:
        return fail(f"invalid pattern: {exc}", path)

    matches = 0
    try:
        files = list(_iter_grep_files(path, recursive))
    except OSError as exc:
        return fail(str(exc), path)

    for file_path in files:
        try:
            if _looks_binary(file_path):
                continue
            with open(file_path, encoding="utf-8", errors="replace") as handle:
                for line_number, line in enumerate(handle, start=1):
                    text = line.rstrip("\r\n")
                    if regex.search(text):
                        matches += 1
                        emit(
                            {
                                "event": "match",
                                "path": file_path.replace(os.sep, "/"),
                                "line_number": line_number,
                                "line": text,
                            }
                        )
        except OSError as exc:
            # Unreadable files inside a tree do not abort the search.
            emit({"event": "warning", "message": str(exc), "path": file_path})
    emit({"event": "done", "matches": matches})
    return 0


def _regular_file(path: str) -> str | None:
    try:
        st = os.stat(path)
    except OSError as exc:
        return str(exc)
    if not stat.S_ISREG(st.st_mode):
        return "not a regular file"
    return None


def run_head(path: str, lines: int, byte_count: int | None) -> int:
    problem = _regular_file(path)
    if problem:
        return fail(problem, path)
    try:
        with open(path, "rb") as handle:
            if byte_count is not None:
                data = handle.read(byte_count)
            else:
                chunks = []
                for _ in range(lines):
                    line = handle.readline()
                    if not line:
                        break
                    chunks.append(line)
                data = b"".join(chunks)
    except OSError as exc:
        return fail(str(exc), path)
    emit({"event": "text", "data": data.decode("utf-8", errors="replace")})
    emit({"event": "done"})
    return 0


def run_tail(path: str, lines: int, byte_count: int | None) -> int:
    problem = _regular_file(path)
    if problem:
        return fail(problem, path)
    try:
        with open(path, "rb") as handle:
            if byte_count is not None:
                size = os.fstat(handle.fileno()).st_size
                handle.seek(max(0, size - byte_count))
                data = handle.read()
            else:
                data = b"".join(collections.deque(handle, maxlen=lines))
    except OSError as exc:
        return fail(str(exc), path)
    emit({"event": "text", "data": data.decode("utf-8", errors="replace")})
    emit({"event": "done"})
    return 0


def run_copy(src: str, dst: str) -> int:
    if not os.path.lexists(src):
        return fail("no such file or directory", src)
    if os.path.lexists(dst):
        return fail("destination already exists", dst)
    try:
        if os.path.isdir(src) and not os.path.islink(src):
            shutil.copytree(src, dst, symlinks=True)
        else:
            shutil.copy2(src, dst, follow_symlinks=False)
    except (OSError, shutil.Error) as exc:
        return fail(str(exc), dst)
    emit({"event": "done"})
    return 0


def _walk_all(path: str):
    yield path
    if not os.path.isdir(path) or os.path.islink(path):
        return
    for current_dir, dirs, files in os.walk(path, topdown=True, followlinks=False):
        for name in sorted(dirs) + sorted(files):
            yield os.path.join(current_dir, name)


def run_chmod(path: str, mode: str, recursive: bool) -> int:
    try:
        bits = int(mode, 8)
    except ValueError:
        return fail(f"invalid mode: {mode}", path)
    targets = _walk_all(path) if recursive else iter([path])
    try:
        for target in targets:
            if os.path.islink(target):
                continue
            os.chmod(target, bits)
    except OSError as exc:
        return fail(str(exc), getattr(exc, "filename", None) or path)
    emit({"event": "done"})
    return 0


def _resolve_id(value: str, kind: str) -> int:
    if not value:
        return -1
    if value.isdigit():
        return int(value)
    if kind == "user":
        import pwd

        return pwd.getpwnam(value).pw_uid
    import grp

    return grp.getgrnam(value).gr_gid


def run_chown(path: str, user: str, group: str, recursive: bool) -> int:
    try:
        uid = _resolve_id(user, "user")
        gid = _resolve_id(group, "group")
    except KeyError:
        return fail(f"unknown principal: {user or '-'}:{group or '-'}", path)
    except ImportError:
        return fail("chown is not supported on this platform", path)
    targets = _walk_all(path) if recursive else iter([path])
    try:
        for target in targets:
            os.chown(target, uid, gid, follow_symlinks=False)
    except OSError as exc:
        return fail(str(exc), getattr(exc, "filename", None) or path)
    emit({"event": "done"})
    return 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Remote helper for remotefm")
    sub = parser.add_subparsers(dest="command", required=True)

    grep = sub.add_parser("grep")
    grep.add_argument("--path", required=True)
    grep.add_argument("--pattern", required=True)
    grep.add_argument("--recursive", action="store_true")
    grep.add_argument("--ignore-case", action="store_true")

    for name in ("head", "tail"):
        cmd = sub.add_parser(name)
        cmd.add_argument("--path", required=True)
        cmd.add_argument("--lines", type=int, default=10)
        cmd.add_argument("--bytes", type=int, default=None)

    copy = sub.add_parser("copy")
    copy.add_argument("--src", required=True)
    copy.add_argument("--dst", required=True)

    chmod = sub.add_parser("chmod")
    chmod.add_argument("--path", required=True)
    chmod.add_argument("--mode", required=True)
    chmod.add_argument("--recursive", action="store_true")

    chown = sub.add_parser("chown")
    chown.add_argument("--path", required=True)
    chown.add_argument("--user", default="")
    chown.add_argument("--group", default="")
    chown.add_argument("--recursive", action="store_true")

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if args.command == "grep":
        return run_grep(args.path, args.pattern, args.recursive, args.ignore_case)
    if args.command == "head":
        return run_head(args.path, args.lines, args.bytes)
    if args.command == "tail":
        return run_tail(args.path, args.lines, args.bytes)
    if args.command == "copy":
        return run_copy(args.src, args.dst)
    if args.command == "chmod":
        return run_chmod(args.path, args.mode, args.recursive)
    if args.command == "chown":
        return run_chown(args.path, args.user, args.group, args.recursive)
    return fail(f"unknown command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())
