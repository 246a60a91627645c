from __future__ import annotations

import ast
import json
import os
import stat
import sys
from pathlib import Path

import pytest

from remotefm import remote_helper
from remotefm.ssh_link import HELPER_PATH


def _events(capsys) -> list[dict]:
    out = capsys.readouterr().out
    return [json.loads(line) for line in out.splitlines() if line.strip()]


def test_helper_source_compiles_standalone() -> None:
    source = HELPER_PATH.read_text(encoding="utf-8")
    tree = ast.parse(source, "<stdin>")
    imported: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            imported.update(alias.name.split(".")[0] for alias in node.names)
        elif isinstance(node, ast.ImportFrom):
            assert node.level == 0
            imported.add((node.module or "").split(".")[0])

    assert "remotefm" not in imported
    assert imported <= set(sys.stdlib_module_names) | {"__future__"}
    compile(source, "<stdin>", "exec")


def test_grep_recursive_orders_by_file_then_line(tmp_path: Path, capsys) -> None:
    log_dir = tmp_path / "log"
    (log_dir / "sub").mkdir(parents=True)
    (log_dir / "a.log").write_text("ok\nERROR first\nERROR second\n")
    (log_dir / "sub" / "b.log").write_text("ERROR third\n")
    (log_dir / "blob.bin").write_bytes(b"ERROR\0binary")

    code = remote_helper.main(
        ["grep", f"--path={log_dir}", "--pattern=ERROR", "--recursive"]
    )

    events = _events(capsys)
    matches = [e for e in events if e["event"] == "match"]
    assert code == 0
    assert [(Path(m["path"]).name, m["line_number"]) for m in matches] == [
        ("a.log", 2),
        ("a.log", 3),
        ("b.log", 1),
    ]
    assert events[-1] == {"event": "done", "matches": 3}


def test_grep_non_recursive_and_ignore_case(tmp_path: Path, capsys) -> None:
    (tmp_path / "sub").mkdir()
    (tmp_path / "top.txt").write_text("Error here\n")
    (tmp_path / "sub" / "deep.txt").write_text("error deep\n")

    remote_helper.main(["grep", f"--path={tmp_path}", "--pattern=error", "--ignore-case"])

    matches = [e for e in _events(capsys) if e["event"] == "match"]
    assert [Path(m["path"]).name for m in matches] == ["top.txt"]


def test_grep_missing_path_fails(tmp_path: Path, capsys) -> None:
    code = remote_helper.main(["grep", f"--path={tmp_path / 'nope'}", "--pattern=x"])
    assert code == 1
    assert _events(capsys)[0]["event"] == "error"


def test_head_and_tail_lines_and_bytes(tmp_path: Path, capsys) -> None:
    target = tmp_path / "f.txt"
    target.write_text("".join(f"line {i}\n" for i in range(1, 21)))

    remote_helper.main(["head", f"--path={target}", "--lines=2"])
    assert _events(capsys)[0]["data"] == "line 1\nline 2\n"

    remote_helper.main(["tail", f"--path={target}", "--lines=2"])
    assert _events(capsys)[0]["data"] == "line 19\nline 20\n"

    remote_helper.main(["head", f"--path={target}", "--bytes=4"])
    assert _events(capsys)[0]["data"] == "line"

    remote_helper.main(["tail", f"--path={target}", "--bytes=3"])
    assert _events(capsys)[0]["data"] == "20\n"


def test_head_rejects_directory(tmp_path: Path, capsys) -> None:
    code = remote_helper.main(["head", f"--path={tmp_path}"])
    assert code == 1
    assert _events(capsys)[0]["message"] == "not a regular file"


def test_copy_file_and_tree_refuses_existing_destination(tmp_path: Path, capsys) -> None:
    src_dir = tmp_path / "src"
    src_dir.mkdir()
    (src_dir / "a.txt").write_text("a")

    assert remote_helper.main(["copy", f"--src={src_dir}", f"--dst={tmp_path / 'dst'}"]) == 0
    assert (tmp_path / "dst" / "a.txt").read_text() == "a"

    assert remote_helper.main(["copy", f"--src={src_dir}", f"--dst={tmp_path / 'dst'}"]) == 1
    events = _events(capsys)
    assert events[-1]["message"] == "destination already exists"


@pytest.mark.skipif(os.name != "posix", reason="posix permission bits")
def test_chmod_recursive(tmp_path: Path, capsys) -> None:
    tree = tmp_path / "tree"
    (tree / "inner").mkdir(parents=True)
    (tree / "inner" / "f").write_text("x")

    code = remote_helper.main(["chmod", f"--path={tree}", "--mode=750", "--recursive"])

    assert code == 0
    assert stat.S_IMODE((tree / "inner" / "f").stat().st_mode) == 0o750
    assert stat.S_IMODE((tree / "inner").stat().st_mode) == 0o750
    assert _events(capsys) == [{"event": "done"}]


@pytest.mark.skipif(os.name != "posix", reason="posix ownership")
def test_chown_to_current_owner_by_id(tmp_path: Path, capsys) -> None:
    target = tmp_path / "f"
    target.write_text("x")
    st = target.stat()

    code = remote_helper.main(
        ["chown", f"--path={target}", f"--user={st.st_uid}", f"--group={st.st_gid}"]
    )

    assert code == 0
    assert _events(capsys) == [{"event": "done"}]


def test_chown_unknown_user(tmp_path: Path, capsys) -> None:
    pytest.importorskip("pwd")
    code = remote_helper.main(
        ["chown", f"--path={tmp_path}", "--user=no-such-user-remotefm"]
    )
    assert code == 1
    assert _events(capsys)[0]["message"].startswith("unknown principal")
