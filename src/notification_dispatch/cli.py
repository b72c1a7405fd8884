"""Command line interface: run workers and administer the dispatch queue."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import json
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import click
from pydantic import TypeAdapter, ValidationError

from .bootstrap import build_dispatcher, build_queue
from .config import DispatchSettings
from .domain.job import JobState
from .domain.template import Template
from .logging_config import configure_logging
from .rendering.jinja import JinjaTemplateRenderer

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

    from .ports.queue import IDispatchQueue

T = TypeVar("T")

_templates_adapter = TypeAdapter(list[Template])


def coro(f: Callable[..., Coroutine[Any, Any, T]]) -> Callable[..., T]:
    """Run an async click command with ``asyncio.run``."""

    @functools.wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        return asyncio.run(f(*args, **kwargs))

    return wrapper


def _settings(ctx: click.Context) -> DispatchSettings:
    return ctx.find_root().obj["settings"]


@click.group()
@click.version_option(version="0.1.0", prog_name="notification-dispatch")
@click.option(
    "--backend",
    type=click.Choice(["memory", "redis"]),
    default=None,
    help="Queue backend (overrides DISPATCH_BACKEND).",
)
@click.option("--redis-url", default=None, help="Redis URL (overrides DISPATCH_REDIS_URL).")
@click.option("--log-level", default="INFO", show_default=True)
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines.")
@click.pass_context
def cli(
    ctx: click.Context,
    backend: str | None,
    redis_url: str | None,
    log_level: str,
    json_logs: bool,
) -> None:
    """Notification dispatch: workers and queue administration."""
    overrides: dict[str, Any] = {}
    if backend:
        overrides["backend"] = backend
    if redis_url:
        overrides["redis_url"] = redis_url
    configure_logging(log_level, json_logs)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = DispatchSettings(**overrides)


# ── worker ──────────────────────────────────────────────────────────


@cli.command()
@click.option("--concurrency", type=int, default=None, help="Number of executors.")
@click.option(
    "--templates",
    "templates_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON file with a list of templates to load into the template store.",
)
@click.pass_context
@coro
async def worker(
    ctx: click.Context, concurrency: int | None, templates_file: Path | None
) -> None:
    """Run the worker pool until SIGINT/SIGTERM."""
    settings = _settings(ctx)
    if concurrency is not None:
        settings = settings.model_copy(update={"concurrency": concurrency})

    dispatcher = build_dispatcher(settings)
    if templates_file is not None:
        try:
            templates = _templates_adapter.validate_json(templates_file.read_bytes())
        except ValidationError as exc:
            raise click.ClickException(f"Invalid templates file: {exc}") from exc
        save = getattr(dispatcher.templates, "save", None)
        if save is None:
            raise click.ClickException("The configured template store is read-only")
        for template in templates:
            await save(template)
        click.echo(f"Loaded {len(templates)} template(s)")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    click.echo(
        f"Channels: {', '.join(dispatcher.registry.list()) or '(none)'}; "
        f"backend={settings.backend}, concurrency={settings.concurrency}"
    )
    await dispatcher.workers.start()
    try:
        await stop.wait()
    finally:
        click.echo("Stopping workers...")
        await dispatcher.close()


# ── queue ───────────────────────────────────────────────────────────


@cli.group()
def queue() -> None:
    """Dispatch queue administration."""


async def _with_queue(
    ctx: click.Context,
    action: Callable[[IDispatchQueue], Coroutine[Any, Any, T]],
) -> T:
    settings = _settings(ctx)
    if settings.backend != "redis":
        # A memory queue lives only inside the worker process that owns it.
        raise click.ClickException(
            "Queue administration needs a shared backend; use --backend redis"
        )
    q = build_queue(settings)
    try:
        return await action(q)
    finally:
        await q.close()


@queue.command()
@click.option("--json", "as_json", is_flag=True, help="Print as JSON.")
@click.pass_context
@coro
async def stats(ctx: click.Context, as_json: bool) -> None:
    """Show job counts per state."""

    async def _stats(q: IDispatchQueue) -> dict[str, int | bool]:
        return (await q.stats()).as_dict()

    counts = await _with_queue(ctx, _stats)
    if as_json:
        click.echo(json.dumps(counts))
        return
    for key, value in counts.items():
        click.echo(f"{key:<10} {value}")


@queue.command()
@click.pass_context
@coro
async def pause(ctx: click.Context) -> None:
    """Stop workers from leasing new jobs."""

    async def _pause(q: IDispatchQueue) -> None:
        await q.pause()

    await _with_queue(ctx, _pause)
    click.echo("Queue paused")


@queue.command()
@click.pass_context
@coro
async def resume(ctx: click.Context) -> None:
    """Let workers lease jobs again."""

    async def _resume(q: IDispatchQueue) -> None:
        await q.resume()

    await _with_queue(ctx, _resume)
    click.echo("Queue resumed")


@queue.command()
@click.option(
    "--grace",
    type=float,
    default=86400.0,
    show_default=True,
    help="Only purge jobs finished more than this many seconds ago.",
)
@click.option(
    "--state",
    type=click.Choice([JobState.COMPLETED.value, JobState.FAILED.value]),
    default=None,
    help="Restrict the purge to one terminal state.",
)
@click.pass_context
@coro
async def clean(ctx: click.Context, grace: float, state: str | None) -> None:
    """Purge finished jobs."""

    async def _clean(q: IDispatchQueue) -> int:
        return await q.clean(grace, JobState(state) if state else None)

    purged = await _with_queue(ctx, _clean)
    click.echo(f"Purged {purged} job(s)")


# ── templates ───────────────────────────────────────────────────────


@cli.command("check-template")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--subject", default=None, help="Subject line to check along with the body.")
def check_template(path: Path, subject: str | None) -> None:
    """Check the syntax of a template body and list its variables."""
    renderer = JinjaTemplateRenderer()
    body = path.read_text(encoding="utf-8")
    failed = False
    for label, text in (("body", body), ("subject", subject)):
        if text is None:
            continue
        error = renderer.check_syntax(text)
        if error:
            click.echo(f"{label}: invalid ({error})", err=True)
            failed = True
    if failed:
        sys.exit(1)

    variables = renderer.extract_variables(body)
    if subject:
        variables += [v for v in renderer.extract_variables(subject) if v not in variables]
    click.echo("OK")
    click.echo(f"Variables: {', '.join(variables) if variables else '(none)'}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
