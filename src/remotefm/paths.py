"""Current-directory arithmetic for the remote browser.

Paths are plain slash-separated strings. Nothing here touches the remote side
and nothing raises: malformed input degrades to ``/``. Access control is the
agent's job, not this module's.
"""

from __future__ import annotations

from dataclasses import dataclass

ROOT = "/"


@dataclass(frozen=True)
class Breadcrumb:
    name: str
    path: str


def _segments(path: str | None) -> list[str]:
    if not path or not str(path).strip():
        return []
    text = str(path).replace("\\", "/")
    return [part for part in text.split("/") if part]


def normalize(path: str | None) -> str:
    parts = _segments(path)
    if not parts:
        return ROOT
    return ROOT + "/".join(parts)


def enter(current: str, child_name: str) -> str:
    base = normalize(current)
    child = "/".join(_segments(child_name))
    if not child:
        return base
    if base == ROOT:
        return f"/{child}"
    return f"{base}/{child}"


join = enter


def up(current: str) -> str:
    parts = _segments(current)
    if not parts:
        return ROOT
    return normalize("/".join(parts[:-1]))


parent = up


def basename(path: str) -> str:
    parts = _segments(path)
    return parts[-1] if parts else ""


def breadcrumbs(current: str) -> list[Breadcrumb]:
    crumbs: list[Breadcrumb] = []
    cumulative = ""
    for part in _segments(current):
        cumulative = f"{cumulative}/{part}"
        crumbs.append(Breadcrumb(name=part, path=cumulative))
    return crumbs


def is_ancestor(ancestor: str, path: str) -> bool:
    """True when ``path`` lies strictly below ``ancestor``."""
    ancestor_parts = _segments(ancestor)
    path_parts = _segments(path)
    if len(path_parts) <= len(ancestor_parts):
        return False
    return path_parts[: len(ancestor_parts)] == ancestor_parts


def has_relative_segments(path: str | None) -> bool:
    """True when ``path`` contains ``.`` or ``..``, which are kept verbatim."""
    return any(part in (".", "..") for part in _segments(path))
