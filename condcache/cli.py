"""Command line entry point.

Every sub-command reads its configuration from the environment
(``CACHE_DIR`` is required), runs one engine operation and maps the
outcome to the process status: 0 on success, 1 for a quiet failure,
2 for a usage error and 3 or more for an operational failure. Quiet
failures write nothing to stdout.
"""

from __future__ import annotations

import typing as tp
from pathlib import Path
from typing import Optional

import typer

from condcache._config import Config
from condcache._engine import CacheEngine
from condcache._exceptions import CondCacheError, ExitCode, UsageError
from condcache._logging import configure_logging
from condcache._stats import StatsRecorder
from condcache._tools import check_cache, diff_cache, list_cache_files
from condcache._version import __version__
from condcache.models import QuietFailure, RequestMode

app = typer.Typer(
    name="condcache",
    help="Fetch web resources through a conditional-request cache.",
    no_args_is_help=True,
    add_completion=False,
)

URL_ARGUMENT = typer.Argument(..., help="The HTTP location of the resource.")
COMPRESSED_OPTION = typer.Option(False, "--compressed", "-z", help="Request a compressed response.")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"condcache {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit."
    ),
    debug: bool = typer.Option(False, "--debug", "-D", help="Log at DEBUG level."),
    warn: bool = typer.Option(False, "--warn", "-W", help="Log at WARN level."),
) -> None:
    """Options given here apply to every sub-command."""
    ctx.ensure_object(dict)
    log_level = None
    if debug:
        log_level = 4
    elif warn:
        log_level = 2
    ctx.obj["log_level"] = log_level


def _run(ctx: typer.Context, action: tp.Callable[[CacheEngine], int]) -> None:
    try:
        config = Config.from_env(log_level=ctx.obj.get("log_level"))
        configure_logging(config)
        with CacheEngine(config) as engine:
            code = action(engine)
    except CondCacheError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(code=int(exc.exit_code))
    raise typer.Exit(code=code)


def _emit(content: bytes) -> None:
    typer.echo(content, nl=False)


@app.command("get")
def get_command(
    ctx: typer.Context,
    url: str = URL_ARGUMENT,
    force_refresh: bool = typer.Option(
        False, "--force-refresh", "-F", help="Fail quietly unless the origin sends a fresh copy."
    ),
    check_cache_mode: bool = typer.Option(
        False, "--check-cache", "-C", help="Fail quietly unless the cached copy is up-to-date."
    ),
    compressed: bool = COMPRESSED_OPTION,
    do_not_cache: bool = typer.Option(False, "--do-not-cache", "-x", help="Never write to the cache."),
) -> None:
    """Conditional GET; writes the resource body to stdout."""

    def action(engine: CacheEngine) -> int:
        if force_refresh and check_cache_mode:
            raise UsageError("Options -F and -C are mutually exclusive")
        mode = RequestMode.CONDITIONAL
        if force_refresh:
            mode = RequestMode.FORCE_REFRESH
        elif check_cache_mode:
            mode = RequestMode.CHECK_CACHE
        result = engine.http_conditional_get(url, mode=mode, compressed=compressed, do_not_cache=do_not_cache)
        if isinstance(result, QuietFailure):
            return int(result.exit_code)
        _emit(result.content)
        return int(ExitCode.SUCCESS)

    _run(ctx, action)


@app.command("head")
def head_command(
    ctx: typer.Context,
    url: str = URL_ARGUMENT,
    compressed: bool = COMPRESSED_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print the request and response headers."),
) -> None:
    """Conditional HEAD; writes the response headers to stdout. Never writes to the cache."""

    def action(engine: CacheEngine) -> int:
        result = engine.http_conditional_head(url, compressed=compressed, verbose=verbose)
        if isinstance(result, QuietFailure):
            return int(result.exit_code)
        _emit(result.content)
        return int(ExitCode.SUCCESS)

    _run(ctx, action)


@app.command("check")
def check_command(ctx: typer.Context, url: str = URL_ARGUMENT, compressed: bool = COMPRESSED_OPTION) -> None:
    """Exit 0 if the cached copy is up-to-date, 1 if it is not."""

    def action(engine: CacheEngine) -> int:
        check = check_cache(engine, url, compressed)
        return int(ExitCode.SUCCESS if check.up_to_date else ExitCode.QUIET)

    _run(ctx, action)


@app.command("file")
def file_command(
    ctx: typer.Context,
    url: str = URL_ARGUMENT,
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only set the exit status."),
    compressed: bool = COMPRESSED_OPTION,
) -> None:
    """Print the path of the cached body; exit 1 if it does not exist."""

    def action(engine: CacheEngine) -> int:
        path, exists = engine.cache_response_body_file(url, compressed)
        if not quiet:
            typer.echo(str(path))
        return int(ExitCode.SUCCESS if exists else ExitCode.QUIET)

    _run(ctx, action)


@app.command("diff")
def diff_command(
    ctx: typer.Context,
    url: str = URL_ARGUMENT,
    compressed: bool = COMPRESSED_OPTION,
    ignore_space_change: bool = typer.Option(
        False, "--ignore-space-change", "-b", help="Ignore changes in the amount of white space."
    ),
    context: bool = typer.Option(False, "--context", "-c", help="Output a context diff instead of a unified one."),
) -> None:
    """Compare the cached body with the origin's current body."""

    def action(engine: CacheEngine) -> int:
        result = diff_cache(engine, url, compressed, ignore_space_change=ignore_space_change, context=context)
        if result.diff:
            typer.echo(result.diff, nl=False)
        return result.exit_code

    _run(ctx, action)


@app.command("ls")
def ls_command(ctx: typer.Context, url: str = URL_ARGUMENT) -> None:
    """List every file cached for the resource."""

    def action(engine: CacheEngine) -> int:
        files = list_cache_files(engine, url)
        for path in files:
            typer.echo(str(path))
        return int(ExitCode.SUCCESS if files else ExitCode.QUIET)

    _run(ctx, action)


@app.command("response-stats")
def response_stats_command(
    ctx: typer.Context,
    url: str = URL_ARGUMENT,
    compressed: bool = COMPRESSED_OPTION,
    num_objects: int = typer.Option(10, "--num-objects", "-n", help="Number of records to render."),
    out_dir: Optional[Path] = typer.Option(None, "--out-dir", "-d", help="Write the JSON output to this directory."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only update the log."),
) -> None:
    """Fetch the resource once and report its transfer statistics as JSON."""

    def action(engine: CacheEngine) -> int:
        report = StatsRecorder(engine).response_stats(
            url, compressed=compressed, n=num_objects, out_dir=out_dir, quiet=quiet
        )
        if not quiet and out_dir is None:
            typer.echo(report.to_json())
        return int(ExitCode.SUCCESS)

    _run(ctx, action)


@app.command("compression-stats")
def compression_stats_command(
    ctx: typer.Context,
    url: str = URL_ARGUMENT,
    num_objects: int = typer.Option(10, "--num-objects", "-n", help="Number of records to render."),
    out_dir: Optional[Path] = typer.Option(None, "--out-dir", "-d", help="Write the JSON output to this directory."),
    all_timings: bool = typer.Option(False, "--all", "-a", help="Include every timing in the records."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only update the logs."),
) -> None:
    """Fetch the resource with and without compression and compare the bodies."""

    def action(engine: CacheEngine) -> int:
        report = StatsRecorder(engine).compression_stats(
            url, n=num_objects, out_dir=out_dir, all_timings=all_timings, quiet=quiet
        )
        if not quiet and out_dir is None:
            typer.echo(report.to_json())
        return int(ExitCode.SUCCESS)

    _run(ctx, action)


def main() -> None:
    app()
