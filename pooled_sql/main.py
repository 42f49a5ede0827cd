from __future__ import annotations

import sys
from typing import List, Optional

import typer
from rich.console import Console

from pooled_sql.config import get_settings
from pooled_sql.domain.errors import PooledSqlError
from pooled_sql.executor import open_executor
from pooled_sql.reporter import print_exec_result, print_rows, print_stats
from pooled_sql.utils.logging import configure_logging

app = typer.Typer(help="pooled-sql CLI.")

ArgOption = typer.Option(
    None,
    "--arg",
    "-a",
    help="Positional argument bound to the next placeholder (repeatable).",
)


def _setup() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)


def _fail(exc: PooledSqlError) -> None:
    Console(stderr=True).print(f"[red]{type(exc).__name__}[/red]: {exc}")
    raise typer.Exit(code=1)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    params = settings.connection_params()
    typer.echo(
        f"DB={params.driver}://{params.user}@{params.host}:{params.port}/{params.database} | "
        f"max_open={params.max_open} max_idle={params.max_idle} "
        f"max_idle_time={params.max_idle_time} max_lifetime={params.max_lifetime} "
        f"acquire_timeout={params.acquire_timeout}"
    )


@app.command()
def ping() -> None:
    """
    Open the pool, ping the database and show pool counters.
    """
    _setup()
    try:
        with open_executor() as executor:
            executor.ping()
            typer.echo("connect to db success")
            print_stats(executor.stats())
    except PooledSqlError as exc:
        _fail(exc)


@app.command()
def query(
    sql: str = typer.Argument(..., help="Row-returning statement with positional placeholders."),
    args: Optional[List[str]] = ArgOption,
    limit: int = typer.Option(100, "--limit", "-n", help="Maximum rows to display."),
) -> None:
    """
    Run a query and print the rows.
    """
    _setup()
    try:
        with open_executor() as executor:
            with executor.query_many(sql, tuple(args or ())) as rows:
                fetched = rows.fetchmany(limit)
                columns = rows.columns
        print_rows(columns, fetched)
    except PooledSqlError as exc:
        _fail(exc)


@app.command("exec")
def exec_(
    sql: str = typer.Argument(..., help="Mutation with positional placeholders."),
    args: Optional[List[str]] = ArgOption,
) -> None:
    """
    Run an INSERT, UPDATE, DELETE or DDL statement.
    """
    _setup()
    try:
        with open_executor() as executor:
            result = executor.execute(sql, tuple(args or ()))
        print_exec_result(result)
    except PooledSqlError as exc:
        _fail(exc)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
