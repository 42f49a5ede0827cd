"""
Demo schema and data loader for pooled-sql.

Creates the `demo_user` table and inserts a fixed set of users through the
Executor, inside one transaction, using the configured driver. Used by the
test suite and handy for trying the CLI:

    python -m scripts.seed_demo --reset
    pooled-sql query "select id, name, age from demo_user where id > ?" -a 0
"""

from __future__ import annotations

import sys
import time
from typing import Dict, List, Sequence, Tuple

import typer

from pooled_sql.executor import Executor, open_executor
from pooled_sql.transaction import Transaction
from pooled_sql.utils.logging import configure_logging

app = typer.Typer(help="Create and fill the demo_user table.")

DEMO_USERS: List[Tuple[str, int]] = [
    ("xiaoli", 22),
    ("xiaohu", 20),
    ("panghu", 10),
    ("lily", 25),
    ("bob", 31),
]

_DDL: Dict[str, str] = {
    "sqlite": (
        "CREATE TABLE IF NOT EXISTS demo_user ("
        " id INTEGER PRIMARY KEY AUTOINCREMENT,"
        " name TEXT NOT NULL,"
        " age INTEGER NOT NULL)"
    ),
    "postgres": (
        "CREATE TABLE IF NOT EXISTS demo_user ("
        " id BIGSERIAL PRIMARY KEY,"
        " name VARCHAR(64) NOT NULL,"
        " age INTEGER NOT NULL)"
    ),
}


def _dialect(executor: Executor) -> str:
    return "postgres" if executor.placeholder == "%s" else "sqlite"


def create_schema(executor: Executor, reset: bool = False) -> None:
    if reset:
        executor.execute("DROP TABLE IF EXISTS demo_user")
    executor.execute(_DDL[_dialect(executor)])


def insert_sql(executor: Executor) -> str:
    p = executor.placeholder
    sql = f"INSERT INTO demo_user (name, age) VALUES ({p}, {p})"
    if _dialect(executor) == "postgres":
        sql += " RETURNING id"
    return sql


def seed_users(executor: Executor, users: Sequence[Tuple[str, int]] = DEMO_USERS) -> List[int]:
    """
    Insert `users` in one transaction using a prepared statement.

    Returns the generated ids in insertion order.
    """

    def load(tx: Transaction) -> List[int]:
        ids: List[int] = []
        with tx.prepare(insert_sql(executor)) as stmt:
            for name, age in users:
                result = stmt.execute((name, age))
                tx.require(result.affected_rows == 1, f"insert of {name!r} changed no rows")
                if result.last_insert_id is not None:
                    ids.append(result.last_insert_id)
        return ids

    return executor.transact(load)


@app.command()
def main(
    reset: bool = typer.Option(False, "--reset", help="Drop demo_user before creating it."),
) -> None:
    """
    Create demo_user and insert the demo rows.
    """
    configure_logging(level="INFO")
    start = time.perf_counter()
    with open_executor() as executor:
        create_schema(executor, reset=reset)
        ids = seed_users(executor)
    typer.echo(f"Inserted {len(ids)} users (ids={ids}) in {time.perf_counter() - start:.3f}s")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
