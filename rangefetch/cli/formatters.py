"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from rangefetch.core.session import SessionResult
from rangefetch.models.config import FetchConfig
from rangefetch.utils.formatting import format_duration, format_size


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "StalledSpan": [
            "• The server stopped returning bytes for this part of the blob.",
            "• Raise `--max-attempts` or `--base-delay` to give it more time.",
            "• Check that the server is still running.",
        ],
        "BoundsViolation": [
            "• The server sent bytes past the size it announced.",
            "• The resource may have changed during the download; start again.",
        ],
        "DigestMismatch": [
            "• The assembled bytes do not match the announced digest.",
            "• Verify the value passed with `--digest`, if any.",
            "• The server may be serving inconsistent data.",
        ],
        "Cancelled": [
            "• The session hit its deadline or attempt budget.",
            "• Raise `--deadline` or `--attempt-budget`.",
        ],
        "HandshakeError": [
            "• Check the URL and that the server is reachable.",
            "• Pass the expected digest with `--digest` if the server does not "
            "announce one.",
        ],
        "OutputError": [
            "• Check that the output directory exists and is writable.",
            "• Choose another location with `-o`, or verify only with `--no-save`.",
        ],
        "ConfigurationError": [
            "• Run `rangefetch show-config` to inspect the active settings.",
            "• Run `rangefetch init --force` to write a fresh config file.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config: FetchConfig):
    """Displays the active configuration."""
    console = Console()
    content = ""
    for key in sorted(FetchConfig.get_ini_keys()):
        value = getattr(config, key)
        content += f"{key} = {'' if value is None else value}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_summary_panel(result: SessionResult, progress_stats: dict | None = None):
    """Displays the final summary of a successful session."""
    console = Console()
    stats = result.stats

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=16)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row("✓ Verified:", f"[bold green]{result.digest}[/bold green]")
    stats_table.add_row("Size:", format_size(result.total_length))
    stats_table.add_row("Attempts:", str(result.attempts))
    if stats.failed_attempts:
        stats_table.add_row(
            "Retried:", f"[yellow]{stats.failed_attempts}[/yellow]"
        )
    if stats.empty_responses:
        stats_table.add_row(
            "Empty bodies:", f"[yellow]{stats.empty_responses}[/yellow]"
        )
    if stats.truncated_responses:
        stats_table.add_row(
            "Cut short:", f"[yellow]{stats.truncated_responses}[/yellow]"
        )
    if stats.bytes_redundant:
        stats_table.add_row(
            "Redundant:", f"[dim]{format_size(stats.bytes_redundant)}[/dim]"
        )
    stats_table.add_row("Duration:", format_duration(result.duration_s))
    if result.duration_s > 0 and result.total_length:
        speed_mb = result.total_length / result.duration_s / (1024 * 1024)
        stats_table.add_row("Avg Speed:", f"{speed_mb:.2f} MB/s")
    if progress_stats and progress_stats.get("peak_speed"):
        peak_mb = progress_stats["peak_speed"] / (1024 * 1024)
        stats_table.add_row("Peak Speed:", f"{peak_mb:.2f} MB/s")
    if result.output_path:
        stats_table.add_row("Saved to:", f"[dim]{result.output_path}[/dim]")

    console.print()
    console.print(
        Panel(
            stats_table,
            title="[bold green]✓ Download Complete[/bold green]",
            border_style="green",
            expand=False,
            padding=(1, 2),
        )
    )


def summarize_for_log(result: SessionResult) -> dict[str, Any]:
    """Flattens a result into plain values for machine-readable output."""
    return {
        "url": result.url,
        "total_length": result.total_length,
        "algorithm": result.digest.algorithm,
        "digest": result.digest.hexdigest,
        "attempts": result.attempts,
        "failed_attempts": result.stats.failed_attempts,
        "truncated_responses": result.stats.truncated_responses,
        "bytes_redundant": result.stats.bytes_redundant,
        "duration_s": round(result.duration_s, 3),
        "output_path": str(result.output_path) if result.output_path else None,
    }
