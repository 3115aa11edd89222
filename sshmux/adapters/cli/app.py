"""
Main CLI application
"""
import threading
import typer
from pathlib import Path
from typing import Optional

from ...core.exceptions import SSHMuxError, ConfigError
from ...core.logging import setup_logging, get_logger, get_stdout_console, get_stderr_console
from ...domain.poller import PollerConfig, PolledFile, SftpPoller
from ..config.loader import ConfigLoader
from .connection import RemoteConnectionFactory, open_session
from .files import register_file_commands

logger = get_logger(__name__)
stdout_console = get_stdout_console()
stderr_console = get_stderr_console()

# Create main app
app = typer.Typer(
    name="sshmux",
    add_completion=False,
    help="SSH sessions, commands and file transfer",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ls / stat / get / put
register_file_commands(app)


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Log file path",
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        help="TOML configuration file (default: ~/.config/sshmux/config.toml)",
    ),
    connection: str = typer.Option(
        "default",
        "--connection",
        "-c",
        help="Named connection from [connections.<name>]",
    ),
    host: Optional[str] = typer.Option(None, "--host", "-H", help="Remote host or ~/.ssh/config alias"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Login user"),
    port: Optional[int] = typer.Option(None, "--port", "-P", help="SSH port (default: 22)"),
    key: Optional[str] = typer.Option(None, "--key", "-i", help="Private key file"),
    password: Optional[str] = typer.Option(
        None, "--password", envvar="SSHMUX_PASSWORD", help="Login password"
    ),
    timeout: Optional[int] = typer.Option(None, "--timeout", help="Per-operation timeout in milliseconds"),
):
    """
    sshmux - SSH sessions, commands and file transfer

    Connection settings are merged from the configuration file, SSHMUX_*
    environment variables and the options above (highest priority).
    """
    try:
        merged = ConfigLoader().load(
            toml_path=config,
            cli_overrides={
                "host": host,
                "user": user,
                "port": port,
                "key_file": key,
                "password": password,
                "timeout_ms": timeout,
                "log_level": log_level,
            },
        )
    except ConfigError as e:
        stderr_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    # Setup logging
    setup_logging(level=merged.get("log_level", "INFO"), log_file=log_file)

    ctx.obj = {"config": merged, "connection": connection, "timeout_ms": merged.get("timeout_ms")}


@app.command(name="exec")
def exec_command(
    ctx: typer.Context,
    command: str = typer.Argument(..., help="Command line to run remotely"),
):
    """
    Run a command and exit with its exit status.

    Examples:
        sshmux -H build exec "uname -a"
    """
    timeout_ms = ctx.obj["timeout_ms"]
    try:
        with open_session(ctx.obj) as session:
            result = session.run(command, timeout_ms)
    except SSHMuxError as e:
        stderr_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if result.stdout:
        stdout_console.print(result.stdout, end="", markup=False, highlight=False)
    if result.stderr:
        stderr_console.print(result.stderr, end="", markup=False, highlight=False)
    raise typer.Exit(result.exit_code if result.exit_code >= 0 else 255)


@app.command(name="info")
def info_command(ctx: typer.Context):
    """Connect and show host key fingerprint, authentication and negotiated methods"""
    from rich.table import Table

    try:
        with open_session(ctx.obj) as session:
            info = session.info()
    except SSHMuxError as e:
        stderr_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title=f"{info.user}@{info.host}:{info.port}", show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Fingerprint", info.fingerprint or "-")
    table.add_row("Auth method", info.auth_method or "-")
    table.add_row("Key file", info.key_file or "-")
    for name, value in info.methods.items():
        table.add_row(name, value or "-")
    stdout_console.print(table)


@app.command(name="poll")
def poll_command(
    ctx: typer.Context,
    path: Optional[str] = typer.Argument(None, help="Remote directory (default: [poller].path)"),
    dest: Path = typer.Option(Path("."), "--dest", "-d", help="Local directory for retrieved files"),
    mask: Optional[str] = typer.Option(None, "--mask", help="Glob the file name must match"),
    after: Optional[str] = typer.Option(None, "--after", help="none, delete or move"),
    move_to: Optional[str] = typer.Option(None, "--move-to", help="Remote directory for after=move"),
    interval: Optional[float] = typer.Option(None, "--interval", help="Seconds between polls"),
    once: bool = typer.Option(False, "--once", help="Poll a single time and exit"),
):
    """
    Pick up files from a remote directory into a local one.

    Examples:
        sshmux poll /incoming --mask "*.csv" --after delete --dest ./in
    """
    section = dict(ctx.obj["config"].get("poller") or {})
    overrides = {"path": path, "mask": mask, "after": after, "move_to": move_to, "interval": interval}
    section.update({k: v for k, v in overrides.items() if v is not None})
    section["binary"] = True
    section.setdefault("timeout_ms", ctx.obj["timeout_ms"])

    try:
        config = PollerConfig.from_dict(section)
        config.validate()
    except ConfigError as e:
        stderr_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    dest.mkdir(parents=True, exist_ok=True)

    def store(polled: PolledFile) -> None:
        (dest / polled.stat.name).write_bytes(polled.data)
        stdout_console.print(f"[green]✓[/green] {polled.stat.path} ({polled.stat.size} bytes)")

    factory = RemoteConnectionFactory.from_config(ctx.obj["config"])
    name = ctx.obj["connection"]
    poller = SftpPoller(lambda: factory.get(name), config, store)

    try:
        if once:
            poller.poll_once()
        else:
            stop = threading.Event()
            try:
                poller.run(stop)
            except KeyboardInterrupt:
                stop.set()
    except SSHMuxError as e:
        stderr_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    finally:
        factory.close_all()

    stdout_console.print(f"[cyan]Polls:[/cyan] {poller.polls}  [cyan]Files:[/cyan] {poller.files_processed}")


def run():
    """CLI entry point"""
    app()


if __name__ == "__main__":
    run()
