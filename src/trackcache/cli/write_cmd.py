"""CLI command that writes keys without caching.

Usage:
    trackcache write user:1 Alice
    trackcache write --incr counter
    trackcache write --delete user:1

Every write makes Redis push an invalidation to clients tracking the key.
"""

from __future__ import annotations

import asyncio

import redis.asyncio as redis
import typer

from trackcache.config import settings
from trackcache.observability.logging import configure_logging

app = typer.Typer(help="Write keys to trigger invalidations")


@app.callback(invoke_without_command=True)
def write(
    key: str = typer.Argument(..., help="Key to modify"),
    value: str = typer.Argument(None, help="Value to SET"),
    incr: bool = typer.Option(False, "--incr", help="INCR the key instead of SET"),
    delete: bool = typer.Option(False, "--delete", help="DEL the key instead of SET"),
    redis_url: str = typer.Option(
        None,
        "--redis-url",
        "-u",
        help="Redis URL (default: TRACKCACHE_REDIS_URL / REDIS_URL)",
    ),
    log_level: str = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level: debug, info, warning, error",
    ),
) -> None:
    """Modify KEY with SET, INCR or DEL."""
    if incr and delete:
        typer.echo("--incr and --delete are mutually exclusive", err=True)
        raise typer.Exit(code=2)
    if not (incr or delete) and value is None:
        typer.echo("VALUE is required unless --incr or --delete is given", err=True)
        raise typer.Exit(code=2)

    configure_logging(json_format=settings.log_json, level=log_level or settings.log_level)

    result = asyncio.run(_write(redis_url or settings.redis_url, key, value, incr, delete))
    typer.echo(result)


async def _write(url: str, key: str, value: str | None, incr: bool, delete: bool) -> str:
    client = redis.from_url(url, decode_responses=True)
    try:
        if incr:
            return f"{key} = {await client.incr(key)}"
        if delete:
            return f"deleted {await client.delete(key)} key(s)"
        await client.set(key, value)
        return f"{key} = {value}"
    finally:
        await client.aclose()
