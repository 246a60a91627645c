from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path

DEFAULT_PORT = 22
DEFAULT_TIMEOUT = 10
DEFAULT_REMOTE_PYTHON = "python3"
DEFAULT_CONFIG_PATH = Path("~/.config/remotefm/config.toml")
LOG_LEVEL_ENV = "REMOTEFM_LOG_LEVEL"

DEFAULT_TICK_INTERVAL = 0.2
DEFAULT_TICK_STEP = 10
DEFAULT_TICK_CAP = 90
DEFAULT_INITIAL_PROGRESS = 10

_TARGET_RE = re.compile(r"^(?P<user>[^@\s]+)@(?P<host>[^:\s]+)(?::(?P<port>\d+))?$")


@dataclass(frozen=True)
class LinkConfig:
    host: str
    user: str
    port: int = DEFAULT_PORT
    timeout: int = DEFAULT_TIMEOUT
    compress: bool = False
    python: str = DEFAULT_REMOTE_PYTHON

    @property
    def address(self) -> str:
        return f"{self.user}@{self.host}:{self.port}"


@dataclass(frozen=True)
class UploadSettings:
    """Synthetic progress used while a transfer is outstanding.

    The link reports no byte-level progress, so the queue raises the active
    item by ``tick_step`` every ``tick_interval`` seconds, never past
    ``tick_cap``. The figure is an approximation, not measured throughput.
    """

    tick_interval: float = DEFAULT_TICK_INTERVAL
    tick_step: int = DEFAULT_TICK_STEP
    tick_cap: int = DEFAULT_TICK_CAP
    initial_progress: int = DEFAULT_INITIAL_PROGRESS

    def __post_init__(self) -> None:
        if self.tick_interval <= 0:
            raise ValueError("tick_interval must be positive")
        if self.tick_step <= 0:
            raise ValueError("tick_step must be positive")
        if not 0 <= self.initial_progress <= self.tick_cap < 100:
            raise ValueError("expected 0 <= initial_progress <= tick_cap < 100")


@dataclass(frozen=True)
class Settings:
    link: dict[str, object] = field(default_factory=dict)
    upload: UploadSettings = field(default_factory=UploadSettings)


def parse_target(target: str, **overrides: object) -> LinkConfig:
    match = _TARGET_RE.match(target.strip())
    if match is None:
        raise ValueError(f"Invalid target {target!r}, expected user@host[:port]")
    port = int(match.group("port")) if match.group("port") else DEFAULT_PORT
    values: dict[str, object] = {
        "host": match.group("host"),
        "user": match.group("user"),
        "port": port,
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return LinkConfig(**values)  # type: ignore[arg-type]


def load_settings(path: Path | None = None) -> Settings:
    resolved = (path or DEFAULT_CONFIG_PATH).expanduser()
    if not resolved.exists():
        return Settings()
    data = tomllib.loads(resolved.read_text(encoding="utf-8"))
    link = data.get("link", {})
    upload = data.get("upload", {})
    if not isinstance(link, dict) or not isinstance(upload, dict):
        raise ValueError(f"{resolved}: [link] and [upload] must be tables")
    allowed = {
        "link": {"timeout", "compress", "python"},
        "upload": {f.name for f in fields(UploadSettings)},
    }
    for table, values in (("link", link), ("upload", upload)):
        unknown = set(values) - allowed[table]
        if unknown:
            raise ValueError(f"{resolved}: unknown [{table}] keys: {', '.join(sorted(unknown))}")
    return Settings(link=dict(link), upload=UploadSettings(**upload))
