from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, TaskID, TextColumn
from rich.table import Table

from . import paths
from .browser import RemoteBrowser
from .config import LOG_LEVEL_ENV, Settings, load_settings, parse_target
from .errors import RemoteError, ValidationError
from .models import OsFamily, UploadItem, UploadStatus
from .operations import (
    ChmodRequest,
    ChownRequest,
    ChtimesRequest,
    CopyRequest,
    DeleteRequest,
    GrepRequest,
    HeadRequest,
    MkdirRequest,
    MoveRequest,
    TailRequest,
)
from .ssh_link import SshRemoteLink

app = typer.Typer(
    help="Browse and manage files on a remote agent over SSH",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

TARGET_ARG = typer.Argument(..., help="Remote agent as user@host[:port]")
OS_OPTION = typer.Option(OsFamily.POSIX, "--os", help="Operating system family of the agent")
CONFIG_OPTION = typer.Option(
    None, "--config", help="TOML settings file (default: ~/.config/remotefm/config.toml)"
)


def _configure_logging(verbose: bool) -> None:
    level_name = "DEBUG" if verbose else os.environ.get(LOG_LEVEL_ENV, "WARNING")
    logger = logging.getLogger("remotefm")
    logger.handlers.clear()
    logger.addHandler(RichHandler(console=err_console, show_path=False))
    level = logging.getLevelNamesMapping().get(level_name.upper(), logging.WARNING)
    logger.setLevel(level)
    logger.propagate = False


def _load(config: Path | None) -> Settings:
    try:
        return load_settings(config)
    except (OSError, ValueError) as exc:
        err_console.print(f"[red]Invalid settings:[/red] {exc}")
        raise typer.Exit(2)


def _open(target: str, os_family: OsFamily, config: Path | None) -> tuple[RemoteBrowser, Settings]:
    settings = _load(config)
    try:
        link_config = parse_target(target, **settings.link)
    except ValueError as exc:
        err_console.print(f"[red]Invalid target:[/red] {exc}")
        raise typer.Exit(2)
    link = SshRemoteLink(link_config)
    return RemoteBrowser(link, link.session(os_family)), settings


@contextmanager
def _reported_errors() -> Iterator[None]:
    try:
        yield
    except ValidationError as exc:
        err_console.print(f"[red]Invalid request:[/red] {exc}")
        raise typer.Exit(1)
    except RemoteError as exc:
        err_console.print(f"[red]Remote error:[/red] {exc}")
        raise typer.Exit(1)
    except OSError as exc:
        err_console.print(f"[red]Local error:[/red] {exc}")
        raise typer.Exit(1)


def _format_size(size: int) -> str:
    if size == 0:
        return "-"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"


def _parse_time(value: str, option: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        err_console.print(f"[red]Invalid {option}:[/red] {value!r} is not an ISO-8601 timestamp")
        raise typer.Exit(2)
    return parsed if parsed.tzinfo is not None else parsed.astimezone()


@app.callback()
def _main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output"),
) -> None:
    _configure_logging(verbose)


@app.command("ls")
def list_dir(
    target: str = TARGET_ARG,
    path: str = typer.Argument("/", help="Remote directory"),
    os_family: OsFamily = OS_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """List a remote directory."""
    browser, _settings = _open(target, os_family, config)
    with _reported_errors():
        browser.navigate(path)
        listing = browser.listing()

    table = Table(title=listing.path, title_justify="left")
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("Modified")
    table.add_column("Mode")
    for entry in listing.entries:
        name = f"[bold]{entry.name}/[/bold]" if entry.is_dir else entry.name
        if entry.link:
            name += f" -> {entry.link}"
        table.add_row(
            name,
            "-" if entry.is_dir else _format_size(entry.size),
            entry.mod_time.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
            entry.mode,
        )
    if not listing.entries:
        console.print(f"{listing.path}: empty directory")
        return
    console.print(table)


@app.command()
def mkdir(
    target: str = TARGET_ARG,
    path: str = typer.Argument(..., help="Remote directory to create"),
    os_family: OsFamily = OS_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Create a remote directory."""
    browser, _settings = _open(target, os_family, config)
    with _reported_errors():
        browser.dispatch(MkdirRequest(path=path))
    console.print(f"Created {paths.normalize(path)}")


@app.command("rm")
def remove(
    target: str = TARGET_ARG,
    path: str = typer.Argument(..., help="Remote file or empty directory"),
    os_family: OsFamily = OS_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Delete a remote file or empty directory."""
    browser, _settings = _open(target, os_family, config)
    with _reported_errors():
        browser.dispatch(DeleteRequest(path=path))
    console.print(f"Deleted {paths.normalize(path)}")


@app.command("mv")
def move(
    target: str = TARGET_ARG,
    src: str = typer.Argument(...),
    dst: str = typer.Argument(...),
    os_family: OsFamily = OS_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Move or rename a remote entry."""
    browser, _settings = _open(target, os_family, config)
    with _reported_errors():
        browser.dispatch(MoveRequest(src=src, dst=dst))
    console.print(f"Moved {paths.normalize(src)} -> {paths.normalize(dst)}")


@app.command("cp")
def copy(
    target: str = TARGET_ARG,
    src: str = typer.Argument(...),
    dst: str = typer.Argument(...),
    os_family: OsFamily = OS_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Copy a remote file or directory."""
    browser, _settings = _open(target, os_family, config)
    with _reported_errors():
        browser.dispatch(CopyRequest(src=src, dst=dst))
    console.print(f"Copied {paths.normalize(src)} -> {paths.normalize(dst)}")


@app.command()
def grep(
    target: str = TARGET_ARG,
    pattern: str = typer.Argument(..., help="Regular expression"),
    path: str = typer.Argument(..., help="Remote file or directory"),
    recursive: bool = typer.Option(False, "--recursive", "-r"),
    ignore_case: bool = typer.Option(False, "--ignore-case", "-i"),
    os_family: OsFamily = OS_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Search remote files for a pattern."""
    browser, _settings = _open(target, os_family, config)
    with _reported_errors():
        result = browser.dispatch(
            GrepRequest(
                path=path,
                pattern=pattern,
                recursive=recursive,
                case_insensitive=ignore_case,
            )
        )
    table = Table(show_header=True)
    table.add_column("Path")
    table.add_column("Line", justify="right")
    table.add_column("Text", overflow="fold")
    for match in result.matches:
        table.add_row(match.path, str(match.line_number), match.line)
    if result.matches:
        console.print(table)
    console.print(f"{len(result.matches)} matches")


def _print_text(text: str | None) -> None:
    console.out(text or "", end="", highlight=False)


@app.command()
def head(
    target: str = TARGET_ARG,
    path: str = typer.Argument(...),
    lines: int = typer.Option(10, "--lines", "-n"),
    byte_count: int | None = typer.Option(None, "--bytes", "-c"),
    os_family: OsFamily = OS_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Print the first lines (or bytes) of a remote file."""
    browser, _settings = _open(target, os_family, config)
    with _reported_errors():
        result = browser.dispatch(HeadRequest(path=path, line_count=lines, byte_count=byte_count))
    _print_text(result.text)


@app.command()
def tail(
    target: str = TARGET_ARG,
    path: str = typer.Argument(...),
    lines: int = typer.Option(10, "--lines", "-n"),
    byte_count: int | None = typer.Option(None, "--bytes", "-c"),
    os_family: OsFamily = OS_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Print the last lines (or bytes) of a remote file."""
    browser, _settings = _open(target, os_family, config)
    with _reported_errors():
        result = browser.dispatch(TailRequest(path=path, line_count=lines, byte_count=byte_count))
    _print_text(result.text)


@app.command()
def chmod(
    target: str = TARGET_ARG,
    mode: str = typer.Argument(..., help="Octal mode, e.g. 644"),
    path: str = typer.Argument(...),
    recursive: bool = typer.Option(False, "--recursive", "-R"),
    os_family: OsFamily = OS_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Change permission bits of a remote path."""
    browser, _settings = _open(target, os_family, config)
    with _reported_errors():
        browser.dispatch(ChmodRequest(path=path, mode=mode, recursive=recursive))
    console.print(f"Mode of {paths.normalize(path)} set to {mode}")


@app.command()
def chown(
    target: str = TARGET_ARG,
    owner: str = typer.Argument(..., help="user[:group], names or numeric ids"),
    path: str = typer.Argument(...),
    recursive: bool = typer.Option(False, "--recursive", "-R"),
    os_family: OsFamily = OS_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Change owner and group of a remote path."""
    user, _sep, group = owner.partition(":")
    browser, _settings = _open(target, os_family, config)
    with _reported_errors():
        browser.dispatch(ChownRequest(path=path, uid=user, gid=group, recursive=recursive))
    console.print(f"Owner of {paths.normalize(path)} set to {owner}")


@app.command()
def chtimes(
    target: str = TARGET_ARG,
    path: str = typer.Argument(...),
    atime: str = typer.Option(..., "--atime", help="Access time, ISO-8601"),
    mtime: str = typer.Option(..., "--mtime", help="Modification time, ISO-8601"),
    os_family: OsFamily = OS_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Overwrite access and modification times of a remote path."""
    access_time = _parse_time(atime, "--atime")
    modify_time = _parse_time(mtime, "--mtime")
    browser, _settings = _open(target, os_family, config)
    with _reported_errors():
        browser.dispatch(
            ChtimesRequest(path=path, access_time=access_time, modify_time=modify_time)
        )
    console.print(f"Timestamps of {paths.normalize(path)} updated")


@app.command()
def upload(
    target: str = TARGET_ARG,
    files: list[Path] = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    dest: str = typer.Option("/", "--dest", "-d", help="Remote directory"),
    os_family: OsFamily = OS_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Upload local files into a remote directory, one at a time."""
    browser, settings = _open(target, os_family, config)
    browser.navigate(dest)
    queue = browser.upload_queue(settings.upload)
    with _reported_errors():
        items = queue.stage(files, browser.current_path)
    for dest_path in queue.collisions():
        err_console.print(f"[yellow]Several files target {dest_path}; the last one wins[/yellow]")

    with Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        lock = threading.Lock()
        tasks: dict[int, TaskID] = {
            item.item_id: progress.add_task(item.name, total=100) for item in items
        }

        def on_update(item: UploadItem) -> None:
            description = item.name
            if item.status == UploadStatus.ERROR:
                description = f"[red]{item.name}: {item.error_message}[/red]"
            elif item.status == UploadStatus.DONE:
                description = f"[green]{item.name}[/green]"
            with lock:
                progress.update(
                    tasks[item.item_id], completed=item.progress, description=description
                )

        summary = queue.run(on_update=on_update)

    console.print(
        f"Uploaded to {browser.current_path}: {summary.succeeded} succeeded, {summary.failed} failed"
    )
    if summary.failed:
        raise typer.Exit(1)


@app.command()
def download(
    target: str = TARGET_ARG,
    path: str = typer.Argument(..., help="Remote file"),
    local_dest: Path = typer.Argument(Path("."), help="Local file or directory"),
    os_family: OsFamily = OS_OPTION,
    config: Path | None = CONFIG_OPTION,
) -> None:
    """Download a remote file."""
    browser, _settings = _open(target, os_family, config)
    with _reported_errors():
        written = browser.download(paths.normalize(path), local_dest)
    console.print(f"Saved {written}")


if __name__ == "__main__":
    app()
