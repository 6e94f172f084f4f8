import asyncio
import logging
import random
import typing as t
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from coalescer.batch_utils import settle_from_mapping
from coalescer.cancellation import CancellationToken
from coalescer.config import BatcherConfig, BatcherSettings
from coalescer.core import Batcher, PendingRequest
from coalescer.utils.logging import logging_context, setup_logging

app = typer.Typer(no_args_is_help=True)

# in-memory stand-in for a users table
DEMO_USERS: list[dict[str, str]] = [
    {"id": "u1", "name": "Aisha Khan", "email": "aisha.khan@example.com"},
    {"id": "u2", "name": "Liam Carter", "email": "liam.carter@example.org"},
    {"id": "u3", "name": "Sofia Martinez", "email": "sofia.martinez@example.net"},
    {"id": "u4", "name": "Noah Schmidt", "email": "noah.schmidt@example.com"},
    {"id": "u5", "name": "Maya Patel", "email": "maya.patel@example.org"},
    {"id": "u6", "name": "Ethan Brown", "email": "ethan.brown@example.io"},
]


def select_users_many(ids: list[str]) -> dict[str, dict[str, str]]:
    """Fetch every user of ``ids`` in one query, keyed by id."""
    wanted = set(ids)
    return {user["id"]: user for user in DEMO_USERS if user["id"] in wanted}


async def run_demo(
    config: BatcherConfig, user_ids: list[str]
) -> tuple[list[dict[str, str] | BaseException], list[int]]:
    """
    Look up ``user_ids`` concurrently through a batcher.

    Returns
    -------
    tuple[list[dict[str, str] | BaseException], list[int]]
        Outcome of each lookup, in submission order, and the size of every batch
        the executor received.
    """
    batch_sizes: list[int] = []

    def load_users(
        batch: list[PendingRequest[str, dict[str, str]]], token: CancellationToken
    ) -> None:
        batch_sizes.append(len(batch))
        users = select_users_many(ids=[request.content for request in batch])
        settle_from_mapping(
            batch,
            users,
            missing=lambda user_id: LookupError(f"user {user_id} not found"),
        )

    async with Batcher.from_config(load_users, config) as batcher:
        outcomes = await asyncio.gather(
            *(batcher.run(user_id) for user_id in user_ids),
            return_exceptions=True,
        )
    return list(outcomes), batch_sizes


@app.command(name="demo")
def demo(
    requests: Annotated[
        int, typer.Option("-n", "--requests", min=1, help="Number of concurrent lookups")
    ] = 20,
    period: Annotated[
        t.Optional[float],
        typer.Option(help="Batch window in seconds, defaults to $COALESCER_PERIOD_SECONDS"),
    ] = None,
    timeout: Annotated[
        t.Optional[float],
        typer.Option(help="Flush timeout in seconds, defaults to $COALESCER_TIMEOUT_SECONDS"),
    ] = None,
    name: Annotated[t.Optional[str], typer.Option(help="Batcher name used in logs")] = "demo",
    seed: Annotated[t.Optional[int], typer.Option(help="Seed of the random user ids")] = None,
    verbose: Annotated[bool, typer.Option("-v", "--verbose", help="Enable debug logs")] = False,
    json_logs: Annotated[
        bool, typer.Option("--json-logs", help="Render logs as JSON lines")
    ] = False,
):
    """Coalesce concurrent user lookups into batched queries"""
    setup_logging(level=logging.DEBUG if verbose else logging.WARNING, json_logs=json_logs)
    try:
        overrides = {"period_seconds": period, "timeout_seconds": timeout, "name": name}
        config = BatcherSettings(
            **{key: value for key, value in overrides.items() if value is not None}
        )
    except ValidationError as error:
        raise typer.BadParameter(message=str(error), param_hint="--period, --timeout") from error

    rng = random.Random(seed)
    user_ids = [f"u{rng.randint(1, 10)}" for _ in range(requests)]
    with logging_context(command="demo"):
        outcomes, batch_sizes = asyncio.run(run_demo(config=config, user_ids=user_ids))

    table = Table("Request", "User ID", "Outcome", title="Lookups")
    for index, (user_id, outcome) in enumerate(zip(user_ids, outcomes), start=1):
        if isinstance(outcome, BaseException):
            table.add_row(str(index), user_id, f"[red]{outcome}[/red]")
        else:
            table.add_row(str(index), user_id, f"[green]{outcome['name']}[/green]")
    console = Console()
    console.print(table)
    console.print(
        f"{len(user_ids)} requests coalesced into {len(batch_sizes)} executor invocation(s)"
    )


@app.callback()
def main():
    """Coalesce asynchronous requests into periodic batches"""
