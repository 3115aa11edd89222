"""
File CLI commands: ls, stat, get, put
"""
import os
import posixpath
import time
import typer
from pathlib import Path
from typing import Optional, Callable

from rich.progress import Progress, BarColumn, TextColumn, TransferSpeedColumn
from rich.table import Table

from ...core.exceptions import SSHMuxError
from ...core.logging import get_logger, get_stdout_console, get_stderr_console
from ...core.constants import SFTP_UGO_MASK
from ...domain.sftp import FileStat
from .connection import open_session

logger = get_logger(__name__)
stdout_console = get_stdout_console()
stderr_console = get_stderr_console()


def register_file_commands(app: typer.Typer) -> None:
    """Register file commands on the main app"""
    app.command(name="ls")(ls_command)
    app.command(name="stat")(stat_command)
    app.command(name="get")(get_command)
    app.command(name="put")(put_command)


def _format_mtime(mtime: Optional[int]) -> str:
    if mtime is None:
        return "-"
    return time.strftime("%Y-%m-%d %H:%M", time.localtime(mtime))


def _progress(total: int, description: str) -> Progress:
    show = stdout_console.is_terminal and total > 0
    return Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TransferSpeedColumn(),
        console=stdout_console,
        disable=not show,
        transient=True,
    )


def _counting(write: Callable[[bytes], object], progress: Progress, task) -> Callable[[bytes], None]:
    def sink(chunk: bytes) -> None:
        write(chunk)
        progress.advance(task, len(chunk))
    return sink


def ls_command(
    ctx: typer.Context,
    path: str = typer.Argument(".", help="Remote directory"),
    long: bool = typer.Option(False, "-l", help="Long listing with permissions, size and mtime"),
):
    """List a remote directory"""
    timeout_ms = ctx.obj["timeout_ms"]
    try:
        with open_session(ctx.obj) as session:
            sftp = session.sftp()
            if not long:
                for name in sftp.list(path, timeout_ms):
                    stdout_console.print(name, markup=False, highlight=False)
                return
            entries = sftp.list_full(path, timeout_ms)
    except SSHMuxError as e:
        stderr_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    table = Table(show_header=True, header_style="bold")
    table.add_column("Mode")
    table.add_column("Size", justify="right")
    table.add_column("Modified")
    table.add_column("Name")
    for entry in entries:
        name = f"[blue]{entry.name}[/blue]" if entry.is_dir else entry.name
        table.add_row(entry.perm, str(entry.size), _format_mtime(entry.mtime), name)
    stdout_console.print(table)


def stat_command(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Remote path"),
):
    """Show metadata of a remote path"""
    try:
        with open_session(ctx.obj) as session:
            file_stat = session.sftp().stat(path, ctx.obj["timeout_ms"])
    except SSHMuxError as e:
        stderr_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if file_stat is None:
        stderr_console.print(f"[red]Error:[/red] No such file: {path}")
        raise typer.Exit(1)

    table = Table(show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in file_stat.to_dict().items():
        table.add_row(key, "-" if value is None else str(value))
    stdout_console.print(table)


def get_command(
    ctx: typer.Context,
    remote: str = typer.Argument(..., help="Remote file"),
    local: Optional[Path] = typer.Argument(None, help="Local file or directory (default: .)"),
    scp: bool = typer.Option(False, "--scp", help="Use SCP instead of SFTP"),
):
    """
    Download a remote file.

    Examples:
        sshmux get /var/log/syslog ./syslog
        sshmux -c backup get --scp dump.sql.gz
    """
    target = local or Path(".")
    if target.is_dir():
        target = target / posixpath.basename(remote.rstrip("/"))
    timeout_ms = ctx.obj["timeout_ms"]

    try:
        with open_session(ctx.obj) as session, open(target, "wb") as f:
            if scp:
                size = session.scp_download(remote, f, timeout_ms).size
            else:
                sftp = session.sftp()
                remote_stat: Optional[FileStat] = sftp.stat(remote, timeout_ms)
                total = remote_stat.size if remote_stat else 0
                with _progress(total, remote) as progress:
                    task = progress.add_task(remote, total=total)
                    size = sftp.get(remote, _counting(f.write, progress, task), timeout_ms)
    except SSHMuxError as e:
        stderr_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    stdout_console.print(f"[green]✓[/green] {remote} → {target} ({size} bytes)")


def put_command(
    ctx: typer.Context,
    local: Path = typer.Argument(..., exists=True, dir_okay=False, help="Local file"),
    remote: str = typer.Argument(..., help="Remote file or directory"),
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="Octal permissions (default: local ones)"),
    scp: bool = typer.Option(False, "--scp", help="Use SCP instead of SFTP"),
):
    """
    Upload a local file.

    Examples:
        sshmux put ./build.tar.gz /tmp/build.tar.gz --mode 600
    """
    try:
        file_mode = int(mode, 8) if mode else os.stat(local).st_mode & SFTP_UGO_MASK
    except ValueError:
        stderr_console.print(f"[red]Error:[/red] Invalid mode: {mode}")
        raise typer.Exit(1)

    size = local.stat().st_size
    timeout_ms = ctx.obj["timeout_ms"]

    try:
        with open_session(ctx.obj) as session, open(local, "rb") as f:
            if remote.endswith("/"):
                remote = posixpath.join(remote, local.name)
            if scp:
                sent = session.scp_upload(f, remote, size, file_mode, timeout_ms=timeout_ms)
            else:
                sftp = session.sftp()
                existing = sftp.stat(remote, timeout_ms)
                if existing is not None and existing.is_dir:
                    remote = posixpath.join(remote, local.name)
                with _progress(size, str(local)) as progress:
                    task = progress.add_task(str(local), total=size)
                    sent = sftp.put(_ProgressReader(f, progress, task), remote, file_mode, timeout_ms)
    except SSHMuxError as e:
        stderr_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    stdout_console.print(f"[green]✓[/green] {local} → {remote} ({sent} bytes)")


class _ProgressReader:
    """Readable wrapper that advances a progress task"""

    def __init__(self, f, progress: Progress, task) -> None:
        self._f = f
        self._progress = progress
        self._task = task

    def read(self, size: int = -1) -> bytes:
        chunk = self._f.read(size)
        self._progress.advance(self._task, len(chunk))
        return chunk
