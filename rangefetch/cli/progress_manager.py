"""
Manages a Rich Live display for a download session.
Shows coverage progress, request statistics and transfer speed.
"""

import asyncio
from datetime import datetime

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table
from rich.text import Text


class ProgressManager:
    """
    Live view of one session: a byte-coverage bar plus attempt counters.

    With ``quiet`` set every method is a no-op apart from bookkeeping, so the
    reconciler can always report to it.
    """

    def __init__(self, console: Console, quiet: bool = False):
        self.console = console
        self.quiet = quiet

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=30),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            DownloadColumn(),
            "•",
            TransferSpeedColumn(),
            "•",
            TimeRemainingColumn(),
            console=console,
            transient=False,
        )

        self._live: Live | None = None
        self._task_id: TaskID | None = None
        self._stats = {
            "url": "",
            "total_length": 0,
            "covered": 0,
            "gaps": 0,
            "attempts": 0,
            "failed": 0,
            "current_speed": 0.0,
            "peak_speed": 0.0,
            "start_time": None,
        }

    def _generate_header(self) -> Text:
        if self._stats["start_time"]:
            elapsed = int((datetime.now() - self._stats["start_time"]).total_seconds())
            elapsed_str = (
                f"{elapsed // 3600:02d}:{(elapsed % 3600) // 60:02d}:{elapsed % 60:02d}"
            )
        else:
            elapsed_str = "00:00:00"
        header_text = Text()
        header_text.append("rangefetch ", style="bold cyan")
        header_text.append("│ ", style="dim")
        header_text.append(self._stats["url"] or "-", style="white")
        header_text.append(" │ ", style="dim")
        header_text.append(f"Session: {elapsed_str}", style="yellow")
        return header_text

    def _generate_stats_table(self) -> Table:
        stats_table = Table.grid(padding=(0, 2))
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        stats_table.add_row(
            "Attempts:",
            f"[green]{self._stats['attempts']}[/green]",
            "Failed:",
            f"[red]{self._stats['failed']}[/red]",
        )
        stats_table.add_row(
            "Covered:",
            f"[cyan]{self._stats['covered']}/{self._stats['total_length']}[/cyan]",
            "Gaps:",
            f"[yellow]{self._stats['gaps']}[/yellow]",
        )
        if self._stats["peak_speed"] > 0:
            stats_table.add_row(
                "Speed:",
                f"[blue]{self._stats['current_speed'] / (1024 * 1024):.1f} MB/s[/blue]",
                "Peak:",
                f"[magenta]{self._stats['peak_speed'] / (1024 * 1024):.1f} MB/s[/magenta]",
            )
        return stats_table

    def _render(self) -> Panel:
        return Panel(
            Group(self._generate_stats_table(), self.progress),
            title=self._generate_header(),
            border_style="cyan",
        )

    def _update_display(self) -> None:
        if self._live is not None:
            self._live.update(self._render())

    def initialize_session(self, url: str, total_length: int) -> None:
        self._stats["url"] = url
        self._stats["total_length"] = total_length
        self._stats["gaps"] = 1 if total_length else 0
        self._stats["start_time"] = datetime.now()
        if not self.quiet:
            self._task_id = self.progress.add_task(
                "Reconciling", total=total_length, start=True
            )
        self._update_display()

    def update_coverage(self, covered: int, gaps: int) -> None:
        self._stats["covered"] = covered
        self._stats["gaps"] = gaps
        if self._task_id is not None:
            self.progress.update(self._task_id, completed=covered)
        self._update_display()

    def record_attempt(self, success: bool) -> None:
        self._stats["attempts"] += 1
        if not success:
            self._stats["failed"] += 1
        self._update_display()

    def update_speed_stats(self, current_speed: float, peak_speed: float) -> None:
        self._stats["current_speed"] = current_speed
        self._stats["peak_speed"] = peak_speed

    def get_statistics(self) -> dict:
        return self._stats.copy()

    async def __aenter__(self):
        if self.quiet:
            return self
        self._live = Live(
            self._render(),
            console=self.console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._live:
            await asyncio.sleep(0.1)
            self._live.stop()
            self._live = None
