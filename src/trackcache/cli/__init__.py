"""CLI commands for trackcache.

Provides command-line interface using Typer:
- trackcache watch: Read keys through the client-side cache and report hits,
  misses and invalidations
- trackcache write: Write keys without caching, to trigger invalidations

Usage:
    trackcache --help
    trackcache watch --interval 2 user:1 user:2
    trackcache write user:1 Alice
    trackcache write --incr counter
"""

import typer

from trackcache.cli.watch_cmd import app as watch_app
from trackcache.cli.write_cmd import app as write_app

app = typer.Typer(
    name="trackcache",
    help="trackcache: Redis client-side caching with server-assisted invalidation",
    no_args_is_help=True,
)

app.add_typer(watch_app, name="watch")
app.add_typer(write_app, name="write")


@app.callback()
def callback() -> None:
    """trackcache: Redis client-side caching with server-assisted invalidation."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
