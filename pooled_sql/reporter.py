from __future__ import annotations

from typing import Any, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from pooled_sql.domain.models import ExecResult, PoolStats, Row


def _cell(value: Any) -> str:
    if value is None:
        return "[dim]NULL[/dim]"
    return str(value)


def print_rows(
    columns: Sequence[str],
    rows: Sequence[Row],
    console: Optional[Console] = None,
    title: Optional[str] = None,
) -> None:
    """
    Render query results as a rich table.
    """
    console = console or Console()

    if not rows:
        console.print("[yellow]No rows.[/yellow]")
        return

    table = Table(title=title, box=box.ROUNDED, caption=f"{len(rows)} row(s)")
    for name in columns or [f"col{i}" for i in range(len(rows[0]))]:
        table.add_column(str(name), style="cyan", overflow="fold")
    for row in rows:
        table.add_row(*(_cell(value) for value in row))

    console.print(table)


def print_exec_result(result: ExecResult, console: Optional[Console] = None) -> None:
    console = console or Console()
    last_id = "n/a" if result.last_insert_id is None else str(result.last_insert_id)
    console.print(
        f"[green]ok[/green] affected_rows={result.affected_rows} last_insert_id={last_id}"
    )


def print_stats(stats: PoolStats, console: Optional[Console] = None) -> None:
    """
    Render a pool stats snapshot as a two-column table.
    """
    console = console or Console()

    table = Table(title="Connection Pool", box=box.ROUNDED)
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right", style="magenta")

    table.add_row("Max open", str(stats.max_open))
    table.add_row("Open connections", str(stats.open_connections))
    table.add_row("Idle", str(stats.idle))
    table.add_row("In use", str(stats.in_use))
    table.add_row("Waits", str(stats.wait_count))
    table.add_row("Wait time (s)", f"{stats.wait_duration:.3f}")
    table.add_row("Exhausted", str(stats.exhausted_count))
    table.add_row("Closed: max idle", str(stats.max_idle_closed))
    table.add_row("Closed: idle time", str(stats.max_idle_time_closed))
    table.add_row("Closed: lifetime", str(stats.max_lifetime_closed))

    console.print(table)


__all__ = ["print_exec_result", "print_rows", "print_stats"]
