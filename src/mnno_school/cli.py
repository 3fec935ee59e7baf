"""Unified CLI for mnno-school.

Provides two subcommands:
    mnno-school web              – run the API server (FastAPI + uvicorn)
    mnno-school purge-snapshots  – drop expired local snapshots

Running ``mnno-school`` without a subcommand defaults to ``web``.
"""

import click

from mnno_school import __version__


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="mnno-school")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """MNNO School data-access API and snapshot maintenance."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(web)


def _describe_upstream() -> str:
    from mnno_school.settings import settings

    if settings.supabase_enabled:
        return click.style(settings.supabase_url, fg="green")
    return click.style("not configured (set MNNO_SUPABASE_URL / MNNO_SUPABASE_KEY)", fg="red")


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface the API binds to.")
@click.option("--port", default=5001, show_default=True, help="TCP port of the API.")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Log each cache and request-gate decision at DEBUG.",
)
@click.option(
    "--reload",
    is_flag=True,
    default=False,
    help="Restart the server when package sources change (development only).",
)
@click.option(
    "--proxy-headers",
    is_flag=True,
    default=False,
    help="Honour X-Forwarded-* headers when the API sits behind a reverse proxy.",
)
def web(host: str, port: int, verbose: bool, reload: bool, proxy_headers: bool) -> None:
    """Serve the coordinated company, team and notification API (default)."""
    import logging

    import uvicorn

    from mnno_school.app import _PKG_DIR, _setup_logging, app
    from mnno_school.settings import settings

    _setup_logging(level=logging.DEBUG if verbose else logging.WARNING)

    base = f"http://{host}:{port}"
    click.echo(f"✦ mnno-school API {__version__} on {click.style(base, fg='cyan', bold=True)}")
    click.echo(f"  docs       {base}/docs")
    click.echo(f"  supabase   {_describe_upstream()}")
    click.echo(f"  snapshots  {settings.snapshot_db_path}")
    click.echo(
        f"  cache      ttl {settings.cache_ttl_seconds:g}s, "
        f"throttle {settings.throttle_window_seconds:g}s"
    )
    if reload:
        click.echo(f"  {click.style('watching sources for changes', fg='yellow')}")

    options: dict[str, object] = {"log_level": "info" if verbose else "warning"}
    if proxy_headers:
        options.update(proxy_headers=True, forwarded_allow_ips="*")
    if reload:
        # uvicorn can only reload an app given as an import string.
        options.update(reload=True, reload_dirs=[str(_PKG_DIR)])
        target: object = "mnno_school.app:app"
    else:
        target = app
    uvicorn.run(target, host=host, port=port, **options)  # type: ignore[arg-type]


@cli.command("purge-snapshots")
@click.option(
    "--max-age-minutes",
    type=float,
    default=None,
    help="Drop snapshots older than this (default: MNNO_SNAPSHOT_MAX_AGE_MINUTES).",
)
@click.option(
    "--all",
    "purge_all",
    is_flag=True,
    default=False,
    help="Drop every snapshot regardless of age.",
)
def purge_snapshots(max_age_minutes: float | None, purge_all: bool) -> None:
    """Remove expired (or all) snapshots from the local store."""
    from mnno_school.coordination import LocalPersistence
    from mnno_school.settings import settings

    store = LocalPersistence(
        settings.snapshot_db_path,
        version=settings.snapshot_version,
        max_entry_bytes=settings.snapshot_max_entry_bytes,
    )
    try:
        if purge_all:
            count = len(store.keys())
            store.clear_all()
        else:
            max_age = settings.snapshot_max_age_minutes if max_age_minutes is None else max_age_minutes
            count = store.purge_expired(max_age)
    finally:
        store.close()
    click.echo(f"Removed {count} snapshot(s) from {settings.snapshot_db_path}")
