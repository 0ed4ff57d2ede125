import importlib
import json
import logging

import click

from jobrow.config import Settings, get_settings
from jobrow.core import Queue, Worker
from jobrow.registry import HandlerRegistry
from jobrow.storage import Storage


def build_queue(settings: Settings) -> Queue:
    storage = Storage(
        settings.database_url,
        max_retries=settings.db_max_retries,
        retry_delay=settings.db_retry_delay,
    )
    return Queue(storage)


def load_registry(path: str) -> HandlerRegistry:
    """Import a ``HandlerRegistry`` given as ``package.module:attribute``."""
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise click.BadParameter(
            f"Expected 'module:attribute', got {path!r}", param_hint="--app"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise click.BadParameter(
            f"Cannot import {module_name!r}: {e}", param_hint="--app"
        ) from e

    registry = getattr(module, attribute, None)
    if not isinstance(registry, HandlerRegistry):
        raise click.BadParameter(
            f"{path!r} is not a HandlerRegistry", param_hint="--app"
        )
    return registry


@click.group(help="jobrow - database backed job queue")
@click.option("--database-url", default=None, help="SQLAlchemy database URL")
@click.option("--log-level", default=None, help="Logging level, e.g. DEBUG")
@click.pass_context
def cli(ctx: click.Context, database_url: str | None, log_level: str | None) -> None:
    settings = get_settings()
    updates = {}
    if database_url:
        updates["database_url"] = database_url
    if log_level:
        updates["log_level"] = log_level
    if updates:
        settings = settings.model_copy(update=updates)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    ctx.obj = settings


def _queue(ctx: click.Context) -> Queue:
    queue = ctx.meta.get("jobrow.queue")
    if queue is None:
        queue = build_queue(ctx.obj)
        ctx.meta["jobrow.queue"] = queue
        ctx.call_on_close(queue.storage.close)
    return queue


@cli.command("init-db", help="Create the jobs and failed_jobs tables")
@click.pass_context
def init_db_cmd(ctx: click.Context) -> None:
    _queue(ctx).create_all()
    click.secho("Tables are ready.", fg="green")


@cli.command("push", help="Push a job to a queue")
@click.argument("job")
@click.option("--data", "data_json", default=None, help="Job data as a JSON object")
@click.option("--queue", "queue_name", default=None, help="Queue name")
@click.option("--delay", type=click.IntRange(min=0), default=0, show_default=True,
              help="Seconds before the job becomes available")
@click.pass_context
def push_cmd(
    ctx: click.Context,
    job: str,
    data_json: str | None,
    queue_name: str | None,
    delay: int,
) -> None:
    data = {}
    if data_json:
        try:
            data = json.loads(data_json)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"Invalid JSON: {e}", param_hint="--data") from e
        if not isinstance(data, dict):
            raise click.BadParameter("Must be a JSON object", param_hint="--data")

    queue_name = queue_name or ctx.obj.queue
    job_id = _queue(ctx).push(job, data, queue_name, delay)
    click.secho(f"Pushed job {job_id} ({job}) to queue {queue_name}", fg="green")


@cli.command("size", help="Number of jobs ready to be processed")
@click.option("--queue", "queue_name", default=None, help="Queue name")
@click.pass_context
def size_cmd(ctx: click.Context, queue_name: str | None) -> None:
    click.echo(_queue(ctx).size(queue_name or ctx.obj.queue))


@cli.command("stats", help="Ready, delayed and reserved jobs per queue")
@click.pass_context
def stats_cmd(ctx: click.Context) -> None:
    stats = _queue(ctx).stats()
    if not stats:
        click.echo("No jobs.")
        return
    for name, s in sorted(stats.items()):
        click.echo(
            f"{name:<20} | total={s.total} ready={s.ready} "
            f"delayed={s.delayed} reserved={s.reserved}"
        )


@cli.command("clear", help="Delete every job in a queue")
@click.option("--queue", "queue_name", default=None, help="Queue name")
@click.confirmation_option(prompt="Delete all jobs in the queue, including reserved ones?")
@click.pass_context
def clear_cmd(ctx: click.Context, queue_name: str | None) -> None:
    queue_name = queue_name or ctx.obj.queue
    deleted = _queue(ctx).clear(queue_name)
    click.secho(f"Deleted {deleted} jobs from queue {queue_name}", fg="yellow")


@cli.command("failed", help="List failed jobs")
@click.option("--queue", "queue_name", default=None, help="Queue name")
@click.pass_context
def failed_cmd(ctx: click.Context, queue_name: str | None) -> None:
    failed_jobs = _queue(ctx).failed(queue_name)
    if not failed_jobs:
        click.echo("No failed jobs.")
        return
    for f in failed_jobs:
        error = f.exception.strip().splitlines()[-1] if f.exception.strip() else ""
        click.echo(
            f"{f.id:>6} | {f.queue:<15} | {f.failed_at} | {f.payload.job} | {error}"
        )


@cli.command("reclaim", help="Return stale reservations to their queue")
@click.option("--older-than", type=click.IntRange(min=0), required=True,
              help="Reservation age in seconds")
@click.option("--queue", "queue_name", default=None, help="Queue name (default: all)")
@click.pass_context
def reclaim_cmd(ctx: click.Context, older_than: int, queue_name: str | None) -> None:
    reclaimed = _queue(ctx).reclaim(older_than, queue_name)
    click.echo(f"Reclaimed {reclaimed} jobs")


@cli.command("work", help="Process jobs from a queue")
@click.option("--app", "app_path", required=True,
              help="HandlerRegistry to use, as 'module:attribute'")
@click.option("--queue", "queue_name", default=None, help="Queue name")
@click.option("--max-jobs", type=click.IntRange(min=0), default=None,
              help="Stop after this many jobs (0 = forever)")
@click.option("--sleep", type=click.FloatRange(min=0), default=None,
              help="Seconds to wait when the queue is empty")
@click.pass_context
def work_cmd(
    ctx: click.Context,
    app_path: str,
    queue_name: str | None,
    max_jobs: int | None,
    sleep: float | None,
) -> None:
    settings: Settings = ctx.obj
    registry = load_registry(app_path)
    worker = Worker(
        _queue(ctx),
        registry,
        queue_name=queue_name or settings.queue,
        max_jobs=settings.max_jobs if max_jobs is None else max_jobs,
        sleep=settings.sleep if sleep is None else sleep,
        max_attempts=settings.max_attempts,
        backoff=settings.backoff,
        reclaim_after=settings.reclaim_after,
    )
    processed = worker.run()
    click.secho(f"Processed {processed} jobs", fg="cyan")
