"""
CLI: ``cronspine queue`` — look at what has been enqueued and claimed.
"""

from __future__ import annotations

import json

import typer

from cronspine.cli.utils import (
    console,
    err_console,
    fail,
    load_settings,
    output_item,
    output_rows,
)
from cronspine.core.errors import CronSpineError
from cronspine.core.scheduling.dedup import DedupKey
from cronspine.core.scheduling.store import create_store

app = typer.Typer(no_args_is_help=True)


@app.command("length")
def queue_length(
    queue: str = typer.Argument(..., help="Queue name"),
) -> None:
    """Number of job instructions waiting on a queue."""
    store = create_store(load_settings())
    try:
        console.print(store.queue_length(queue))
    except CronSpineError as e:
        fail(e)
    finally:
        store.close()


@app.command("peek")
def queue_peek(
    queue: str = typer.Argument(..., help="Queue name"),
    count: int = typer.Option(10, "--count", "-n", min=1),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the oldest job instructions on a queue without removing them."""
    store = create_store(load_settings())
    try:
        payloads = store.peek_queue(queue, count)
    except CronSpineError as e:
        fail(e)
    finally:
        store.close()

    rows = []
    for raw in payloads:
        try:
            job = json.loads(raw)
        except json.JSONDecodeError:
            rows.append({"jid": "?", "class": "?", "schedule": "?", "scheduled_at": raw})
            continue
        rows.append(
            {
                "jid": job.get("jid"),
                "class": job.get("class"),
                "schedule": job.get("schedule"),
                "scheduled_at": job.get("scheduled_at"),
            }
        )
    output_rows(rows, as_json=json_out, title=f"Queue: {queue}")


@app.command("claim")
def queue_claim(
    key: str = typer.Argument(..., help="Claim key, e.g. cronspine:claim:nightly:1767225600"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Decode a claim key and show whether the store still holds it."""
    try:
        dedup_key = DedupKey.parse(key)
    except ValueError as e:
        err_console.print(f"[bold red]Error[/bold red]: {e}")
        raise typer.Exit(code=2) from e

    store = create_store(load_settings())
    try:
        claimed = store.claim_exists(dedup_key.value)
    except CronSpineError as e:
        fail(e)
    finally:
        store.close()

    output_item(
        {
            "namespace": dedup_key.namespace,
            "schedule": dedup_key.schedule_name,
            "scheduled_at": dedup_key.instant.isoformat(),
            "jid": dedup_key.job_id,
            "claimed": claimed,
        },
        as_json=json_out,
        title=f"Claim {dedup_key.value}",
    )
