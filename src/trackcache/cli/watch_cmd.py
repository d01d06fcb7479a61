"""CLI command that reads keys through the client-side cache.

Usage:
    trackcache watch user:1 user:2
    trackcache watch --interval 0.5 --rounds 20 counter
    trackcache watch --format json user:1

Run `trackcache write` in another terminal to watch entries get
invalidated and re-read.
"""

from __future__ import annotations

import asyncio
from typing import Any

import orjson
import typer

from trackcache.cache.keys import ResultKeys
from trackcache.cache.provider import ClientSideCache
from trackcache.cache.stats import CacheStats
from trackcache.client import TrackingRedisClient
from trackcache.config import settings
from trackcache.observability.logging import configure_logging

app = typer.Typer(help="Read keys through the client-side cache")


@app.callback(invoke_without_command=True)
def watch(
    keys: list[str] = typer.Argument(
        ...,
        help="Keys to read every round",
    ),
    interval: float = typer.Option(
        1.0,
        "--interval",
        "-i",
        help="Seconds between rounds",
    ),
    rounds: int = typer.Option(
        5,
        "--rounds",
        "-n",
        help="Number of rounds; 0 runs until interrupted",
    ),
    redis_url: str = typer.Option(
        None,
        "--redis-url",
        "-u",
        help="Redis URL (default: TRACKCACHE_REDIS_URL / REDIS_URL)",
    ),
    output_format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Statistics output format: text, json",
    ),
    log_level: str = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level: debug, info, warning, error",
    ),
) -> None:
    """Read KEYS repeatedly, reporting cache hits, misses and invalidations."""
    if output_format not in ("text", "json"):
        typer.echo(f"Unknown format: {output_format}", err=True)
        raise typer.Exit(code=2)

    configure_logging(json_format=settings.log_json, level=log_level or settings.log_level)

    try:
        stats, size, entries, problems = asyncio.run(
            _watch(keys, interval, rounds, redis_url or settings.redis_url)
        )
    except KeyboardInterrupt:
        raise typer.Exit(code=130)

    typer.echo(format_stats(stats, size, output_format, entries, problems))


async def _watch(
    keys: list[str],
    interval: float,
    rounds: int,
    redis_url: str,
) -> tuple[CacheStats, int, list[str], list[str]]:
    cache = ClientSideCache(enable_statistics=True)
    cache.on("invalidate", _echo_invalidation)

    client = TrackingRedisClient.from_url(
        redis_url,
        cache,
        client_name=settings.client_name,
        channel=settings.invalidation_channel,
        poll_timeout=settings.listener_poll_timeout,
    )

    completed = 0
    async with client:
        while rounds == 0 or completed < rounds:
            if completed:
                await asyncio.sleep(interval)
            completed += 1
            typer.echo(f"--- round {completed} ---")
            for key in keys:
                hits_before = cache.stats().hits
                value = await client.get(key)
                source = "hit " if cache.stats().hits > hits_before else "miss"
                typer.echo(f"[{source}] {key} = {_render(value)}")

        # Snapshot before close() resets the cache
        return (
            cache.stats(),
            cache.size(),
            describe_entries(cache),
            cache.store.check_consistency(),
        )


def _echo_invalidation(key: Any) -> None:
    if key is None:
        typer.echo("[invalidate] * (flush)")
    else:
        typer.echo(f"[invalidate] {_render(key)}")


def _render(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", "backslashreplace")
    return repr(value) if value is None else str(value)


def describe_entries(cache: ClientSideCache) -> list[str]:
    """Cached reads as commands, e.g. "MGET user:1 user:2"."""
    entries = []
    for result_id in cache.store:
        args = ResultKeys.parse(result_id)
        entries.append(" ".join(args) if args is not None else result_id)
    return entries


def format_stats(
    stats: CacheStats,
    size: int,
    output_format: str = "text",
    entries: list[str] | None = None,
    problems: list[str] | None = None,
) -> str:
    """Render a statistics snapshot for the terminal."""
    entries = entries or []
    problems = problems or []

    if output_format == "json":
        data = {
            **stats.as_dict(),
            "size": size,
            "entries": entries,
            "consistency_problems": problems,
        }
        return orjson.dumps(data, option=orjson.OPT_INDENT_2).decode()

    lines = [
        "Statistics:",
        f"  Hits: {stats.hits}",
        f"  Misses: {stats.misses}",
        f"  Hit rate: {stats.hit_rate * 100:.2f}%",
        f"  Load successes: {stats.load_successes}",
        f"  Load failures: {stats.load_failures}",
        f"  Average load: {stats.average_load_penalty_ms:.3f} ms",
        f"  Evictions: {stats.evictions}",
        f"  Cache size: {size} entries",
        f"  Consistency problems: {len(problems)}",
    ]
    lines.extend(f"    {problem}" for problem in problems)
    if entries:
        lines.append("Cached reads:")
        lines.extend(f"  {entry}" for entry in entries)
    return "\n".join(lines)
