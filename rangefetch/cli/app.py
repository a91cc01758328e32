"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
from pathlib import Path
from urllib.parse import urlsplit

import typer
from rich.console import Console
from rich.logging import RichHandler

from rangefetch import __version__
from rangefetch.core.session import FetchSession, default_output_path
from rangefetch.exceptions import ConfigurationError
from rangefetch.models.digest import ExpectedDigest
from rangefetch.storage.config_manager import ConfigManager
from rangefetch.utils.structured_logger import create_structured_logger

from .formatters import print_config, print_summary_panel, summarize_for_log
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("rangefetch")

app = typer.Typer(
    name="rangefetch",
    help=(
        "Download a blob from a server that truncates its responses, one byte"
        " range at a time, and verify it against the announced digest."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "rangefetch"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


def split_url(url: str) -> tuple[str, str]:
    """Splits a blob URL into the base URL and the resource path (with query)."""
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise typer.BadParameter(f"Expected an absolute http(s) URL, got: {url!r}")
    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    return f"{parts.scheme}://{parts.netloc}", path


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
):
    """rangefetch CLI"""
    if version:
        console.print(f"[bold]rangefetch[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "WARNING"
    if verbose == 1:
        log_level = "INFO"
    elif verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("rangefetch").setLevel(log_level)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command(name="fetch")
def fetch_command(
    url: str | None = typer.Argument(
        None,
        help=(
            "URL of the blob, e.g. http://127.0.0.1:8080/. Defaults to base_url"
            " and resource_path from the config file."
        ),
    ),
    digest: str | None = typer.Option(
        None,
        "--digest",
        "-d",
        help=(
            "Expected digest in hex, optionally prefixed with its algorithm"
            " (sha256:...). Overrides any digest the server announces."
        ),
    ),
    output: Path | None = typer.Option(  # noqa: B008
        None, "-o", "--output", help="Where to save the verified blob."
    ),
    no_save: bool = typer.Option(
        False, "--no-save", help="Verify and print the digest without saving."
    ),
    # --- Retry Policy ---
    max_attempts: int | None = typer.Option(
        None, "--max-attempts", help="Attempts per span before it counts as stalled."
    ),
    attempt_budget: int | None = typer.Option(
        None, "--attempt-budget", help="Total requests allowed in the session."
    ),
    base_delay: float | None = typer.Option(
        None, "--base-delay", help="First backoff delay in seconds (doubles per retry)."
    ),
    max_delay: float | None = typer.Option(
        None, "--max-delay", help="Upper bound on a single backoff delay."
    ),
    # --- Request Shaping ---
    chunk_size: int | None = typer.Option(
        None, "--chunk-size", help="Largest byte range asked for in one request."
    ),
    request_timeout: float | None = typer.Option(
        None, "--timeout", help="Socket read timeout per request, in seconds."
    ),
    deadline: float | None = typer.Option(
        None, "--deadline", help="Give up after this many seconds in total."
    ),
    # --- Output & Logging ---
    log_dir: Path | None = typer.Option(  # noqa: B008
        None, "--log-dir", help="Write JSONL event logs into this directory."
    ),
    json_output: bool = typer.Option(
        False, "--json", help="Print the result as JSON instead of a summary panel."
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Hide the live progress."),
):
    """Download, reassemble and verify a blob."""
    base_url, resource_path = split_url(url) if url else (None, None)
    cli_options = {
        key: value
        for key, value in {
            "base_url": base_url,
            "resource_path": resource_path,
            "max_attempts": max_attempts,
            "attempt_budget": attempt_budget,
            "base_delay": base_delay,
            "max_delay": max_delay,
            "max_request_size": chunk_size,
            "request_timeout": request_timeout,
            "deadline": deadline,
        }.items()
        if value is not None
    }

    config = ConfigManager(CONFIG_FILE).load_config(cli_options)

    expected = None
    if digest:
        try:
            expected = ExpectedDigest.from_hex(digest, config.digest_algorithm)
        except ValueError as e:
            raise typer.BadParameter(str(e), param_hint="--digest") from e

    if no_save:
        output_path = None
    else:
        output_path = output or default_output_path(config.resource_path)

    async def _fetch_async():
        base_logger, events = create_structured_logger(
            log_dir, enable_json=log_dir is not None
        )
        try:
            async with ProgressManager(
                console=console, quiet=quiet or json_output
            ) as progress_manager:
                session = FetchSession(
                    config, progress_manager=progress_manager, events=events
                )
                result = await session.run(expected, output_path)
            return result, progress_manager.get_statistics()
        finally:
            base_logger.close()

    result, progress_stats = asyncio.run(_fetch_async())

    if json_output:
        console.print_json(data=summarize_for_log(result))
        return

    print_summary_panel(result, progress_stats)
    console.print(
        f"{result.digest.algorithm.upper()} hash of downloaded data: "
        f"[bold]{result.digest.hexdigest}[/bold]"
    )


@app.command()
def init(
    base_url: str = typer.Option(
        "http://127.0.0.1:8080", "--base-url", help="Default server to fetch from."
    ),
    resource_path: str = typer.Option("/", "--path", help="Default resource path."),
    max_attempts: int = typer.Option(5, "--max-attempts"),
    attempt_budget: int = typer.Option(1000, "--attempt-budget"),
    digest_algorithm: str = typer.Option("sha256", "--algorithm"),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing file without asking."
    ),
):
    """Write a configuration file with the given defaults."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    ConfigManager(CONFIG_FILE).save_new_config(
        {
            "base_url": base_url,
            "resource_path": resource_path,
            "max_attempts": max_attempts,
            "attempt_budget": attempt_budget,
            "digest_algorithm": digest_algorithm,
        }
    )
    console.print(f"[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")


@app.command(name="show-config")
def show_config():
    """Display the active configuration."""
    try:
        config = ConfigManager(CONFIG_FILE).load_config()
    except ConfigurationError as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        raise typer.Exit(code=1) from e
    print_config(CONFIG_FILE, config)
