"""Command line entry point for cli-hub.

The CLI is a thin host around :class:`clihub.core.store.ProfileStore`: each
command maps onto one engine operation and engine errors are reported as
click errors.
"""

from __future__ import annotations

import functools
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from clihub import __version__
from clihub.core.apps import AppType
from clihub.core.bundle import ImportExportCoordinator, ImportResult
from clihub.core.errors import ClihubError, CorruptConfigError, PartialSyncError
from clihub.core.store import ProfileStore
from clihub.utils.log import enable_file_logging, get_logger

console = Console()
err_console = Console(stderr=True)
logger = get_logger()

F = TypeVar("F", bound=Callable[..., Any])


def _app_argument(name: str = "app") -> Callable[[F], F]:
    def _convert(ctx: click.Context, param: click.Parameter, value: Optional[str]) -> Optional[AppType]:
        if value is None:
            return None
        try:
            return AppType.parse(value)
        except ClihubError as exc:
            raise click.BadParameter(str(exc)) from exc

    return click.argument(name, metavar="APP", callback=_convert)


def _store(ctx: click.Context) -> ProfileStore:
    return ctx.find_object(ProfileStore)  # type: ignore[return-value]


def _warn_partial(exc: PartialSyncError) -> None:
    err_console.print(f"[yellow]Warning: {escape(str(exc))}[/yellow]")
    for app, message in sorted(exc.failures.items()):
        err_console.print(f"  [yellow]{escape(app)}[/yellow]: {escape(message)}")


def engine_command(fn: F) -> F:
    """Turn engine errors into click errors; partial sync is only a warning."""

    @functools.wraps(fn)
    def _wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except PartialSyncError as exc:
            _warn_partial(exc)
            return None
        except ClihubError as exc:
            logger.debug("[cli] Command failed: %s", exc, extra={"code": exc.error_code})
            message = str(exc)
            if exc.path is not None and str(exc.path) not in message:
                message = f"{message} ({exc.path})"
            raise click.ClickException(message) from exc

    return _wrapper  # type: ignore[return-value]


def _report_import(result: ImportResult, action: str) -> None:
    console.print(f"[green]{action} complete.[/green] Previous configuration saved as {result.backup_id}")
    if result.render_failures:
        err_console.print(
            "[yellow]Some live files could not be updated; select the current provider again:[/yellow]"
        )
        for app, message in sorted(result.render_failures.items()):
            err_console.print(f"  [yellow]{escape(app)}[/yellow]: {escape(message)}")


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False),
    envvar="CLI_HUB_CONFIG_DIR",
    help="Directory holding config.json (default: ~/.cli-hub)",
)
@click.option("--verbose", is_flag=True, help="Verbose output")
@click.pass_context
def cli(ctx: click.Context, config_dir: Optional[str], verbose: bool) -> None:
    """cli-hub - switch provider profiles for Claude Code, Codex and Gemini CLI"""
    if verbose:
        logger.set_console_level(logging.DEBUG)
    try:
        store = ProfileStore.open(config_dir)
    except CorruptConfigError as exc:
        err_console.print(f"[red]Configuration is corrupt: {escape(str(exc))}[/red]")
        if exc.path is not None:
            err_console.print(f"  Path: {escape(str(exc.path))}")
        if exc.detail:
            err_console.print(f"  Detail: {escape(exc.detail)}")
        sys.exit(1)
    except ClihubError as exc:
        raise click.ClickException(str(exc)) from exc

    log_file = enable_file_logging(store.paths.app_config_dir)
    logger.debug(
        "[cli] Starting CLI invocation",
        extra={"config_path": str(store.config_path), "log_file": str(log_file)},
    )
    if store.load_result is not None and store.load_result.migrated:
        err_console.print(
            f"[dim]Configuration upgraded from version {store.load_result.from_version}.[/dim]"
        )
    ctx.obj = store


# Providers


@cli.command(name="list")
@_app_argument()
@click.option("--json", "json_output", is_flag=True, help="Output machine-readable JSON.")
@click.pass_context
@engine_command
def list_cmd(ctx: click.Context, app: AppType, json_output: bool) -> None:
    """List providers of APP in display order"""
    store = _store(ctx)
    providers = store.get(app)
    current = store.get_current(app)
    if json_output:
        records = [
            dict(p.model_dump(mode="json", by_alias=True, exclude_none=True), current=p.id == current)
            for p in providers
        ]
        click.echo(json.dumps(records, indent=2, ensure_ascii=False))
        return
    if not providers:
        click.echo(f"No providers configured for {app.display_name}.")
        return

    table = Table(title=f"{app.display_name} providers")
    table.add_column("", width=1)
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Website")
    for provider in providers:
        table.add_row(
            "*" if provider.id == current else "",
            escape(provider.id),
            escape(provider.name),
            provider.category.value if provider.category else "",
            escape(provider.website_url or ""),
        )
    console.print(table)


@cli.command(name="current")
@_app_argument()
@click.pass_context
@engine_command
def current_cmd(ctx: click.Context, app: AppType) -> None:
    """Print the id of the current provider of APP"""
    current = _store(ctx).get_current(app)
    if current is None:
        raise click.ClickException(f"No current provider for {app.display_name}.")
    click.echo(current)


@cli.command(name="show")
@_app_argument()
@click.argument("provider_id")
@click.pass_context
@engine_command
def show_cmd(ctx: click.Context, app: AppType, provider_id: str) -> None:
    """Show a provider; the current one reflects its live files"""
    provider = _store(ctx).get_for_edit(app, provider_id)
    payload = provider.model_dump(mode="json", by_alias=True, exclude_none=True)
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@cli.command(name="add")
@_app_argument()
@click.option("--name", required=True, help="Display name.")
@click.option("--id", "provider_id", default=None, help="Explicit id (default: generated).")
@click.option("--settings", "settings_json", default=None, help="Settings as a JSON object.")
@click.option(
    "--settings-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read settings from a JSON file.",
)
@click.option("--website", default=None, help="Provider website URL.")
@click.option("--category", default=None, help="official, regional_official, aggregator, third_party or custom.")
@click.pass_context
@engine_command
def add_cmd(
    ctx: click.Context,
    app: AppType,
    name: str,
    provider_id: Optional[str],
    settings_json: Optional[str],
    settings_file: Optional[Path],
    website: Optional[str],
    category: Optional[str],
) -> None:
    """Add a provider to APP"""
    if settings_json is not None and settings_file is not None:
        raise click.UsageError("Use either --settings or --settings-file, not both.")
    raw = settings_file.read_text(encoding="utf-8") if settings_file is not None else settings_json
    try:
        settings = json.loads(raw) if raw else {}
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"Settings are not valid JSON: {exc}") from exc
    if not isinstance(settings, dict):
        raise click.ClickException("Settings must be a JSON object.")

    payload: dict[str, Any] = {"name": name, "settingsConfig": settings}
    if provider_id:
        payload["id"] = provider_id
    if website:
        payload["websiteUrl"] = website
    if category:
        payload["category"] = category
    new_id = _store(ctx).add(app, payload)
    click.echo(new_id)


@cli.command(name="switch")
@_app_argument()
@click.argument("provider_id")
@click.pass_context
@engine_command
def switch_cmd(ctx: click.Context, app: AppType, provider_id: str) -> None:
    """Make PROVIDER_ID the current provider of APP and write its live files"""
    _store(ctx).switch(app, provider_id)
    console.print(f"[green]Switched {app.display_name} to {escape(provider_id)}.[/green]")


@cli.command(name="delete")
@_app_argument()
@click.argument("provider_id")
@click.pass_context
@engine_command
def delete_cmd(ctx: click.Context, app: AppType, provider_id: str) -> None:
    """Delete a provider that is not current"""
    _store(ctx).delete(app, provider_id)
    console.print(f"Deleted {escape(provider_id)}.")


@cli.command(name="reorder")
@_app_argument()
@click.argument("entries", nargs=-1, required=True)
@click.pass_context
@engine_command
def reorder_cmd(ctx: click.Context, app: AppType, entries: tuple[str, ...]) -> None:
    """Set sort indexes, given as ID=INDEX pairs"""
    updates = []
    for entry in entries:
        provider_id, sep, index = entry.partition("=")
        if not sep or not provider_id:
            raise click.BadParameter(f"Invalid entry '{entry}'. Expected ID=INDEX.")
        try:
            sort_index = int(index)
        except ValueError:
            raise click.BadParameter(f"Sort index must be an integer: '{entry}'") from None
        updates.append({"id": provider_id, "sortIndex": sort_index})
    _store(ctx).reorder(app, updates)
    console.print(f"Updated order of {len(updates)} provider(s).")


@cli.command(name="sync")
@click.argument("app", required=False, metavar="[APP]")
@click.pass_context
@engine_command
def sync_cmd(ctx: click.Context, app: Optional[str]) -> None:
    """Re-write live files from the current providers"""
    target = AppType.parse(app) if app else None
    failures = _store(ctx).sync_current_to_live(target)
    if failures:
        raise PartialSyncError(failures)
    console.print("[green]Live configuration is in sync.[/green]")


@cli.command(name="seed")
@_app_argument()
@click.pass_context
@engine_command
def seed_cmd(ctx: click.Context, app: AppType) -> None:
    """Create a 'default' provider from APP's existing live files"""
    seeded = _store(ctx).import_from_live(app)
    if seeded is None:
        click.echo(f"{app.display_name} already has providers; nothing imported.")
        return
    console.print(f"[green]Imported live configuration as '{escape(seeded)}'.[/green]")


@cli.command(name="set-dir")
@_app_argument()
@click.argument("directory", required=False)
@click.pass_context
@engine_command
def set_dir_cmd(ctx: click.Context, app: AppType, directory: Optional[str]) -> None:
    """Use DIRECTORY for APP's live files (omit to restore the default)"""
    store = _store(ctx)
    store.change_app_config_dir(app, directory)
    console.print(f"{app.display_name} config directory: {escape(str(store.paths.app_dir(app)))}")


# Common snippet


@cli.group(name="snippet")
def snippet_group() -> None:
    """Manage the common config snippet of a target"""


@snippet_group.command(name="show")
@_app_argument()
@click.pass_context
@engine_command
def snippet_show(ctx: click.Context, app: AppType) -> None:
    snippet = _store(ctx).get_common_snippet(app)
    if snippet is None:
        click.echo(f"No common config snippet for {app.display_name}.")
        return
    click.echo(snippet)


@snippet_group.command(name="set")
@_app_argument()
@click.argument("source", type=click.File("r"), default="-")
@click.pass_context
@engine_command
def snippet_set(ctx: click.Context, app: AppType, source: Any) -> None:
    """Replace the snippet with the contents of SOURCE (default: stdin)"""
    text = source.read()
    _store(ctx).set_common_snippet(app, text)
    if text.strip():
        console.print(f"[green]Common config snippet for {app.display_name} updated.[/green]")
    else:
        console.print(f"Common config snippet for {app.display_name} cleared.")


@snippet_group.command(name="enable")
@_app_argument()
@click.argument("provider_id")
@click.pass_context
@engine_command
def snippet_enable(ctx: click.Context, app: AppType, provider_id: str) -> None:
    _store(ctx).toggle_common_snippet(app, provider_id, True)
    console.print(f"Common config enabled for {escape(provider_id)}.")


@snippet_group.command(name="disable")
@_app_argument()
@click.argument("provider_id")
@click.pass_context
@engine_command
def snippet_disable(ctx: click.Context, app: AppType, provider_id: str) -> None:
    _store(ctx).toggle_common_snippet(app, provider_id, False)
    console.print(f"Common config disabled for {escape(provider_id)}.")


# Bundles and backups


@cli.command(name="export")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
@engine_command
def export_cmd(ctx: click.Context, path: Path) -> None:
    """Export the configuration to a bundle file"""
    target = ImportExportCoordinator(_store(ctx)).export_to_file(path)
    console.print(f"[green]Exported configuration to {escape(str(target))}.[/green]")


@cli.command(name="import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
@engine_command
def import_cmd(ctx: click.Context, path: Path) -> None:
    """Replace the configuration with a bundle file"""
    result = ImportExportCoordinator(_store(ctx)).import_from_file(path)
    _report_import(result, "Import")


@cli.command(name="backups")
@click.option("--json", "json_output", is_flag=True, help="Output machine-readable JSON.")
@click.pass_context
@engine_command
def backups_cmd(ctx: click.Context, json_output: bool) -> None:
    """List configuration backups, newest first"""
    snapshots = _store(ctx).backups.list()
    if json_output:
        click.echo(json.dumps([s.to_dict() for s in snapshots], indent=2, ensure_ascii=False))
        return
    if not snapshots:
        click.echo("No backups.")
        return
    table = Table(title="Backups")
    table.add_column("ID")
    table.add_column("Created")
    table.add_column("Schema")
    for snapshot in snapshots:
        table.add_row(
            snapshot.backup_id,
            snapshot.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            "" if snapshot.source_version is None else str(snapshot.source_version),
        )
    console.print(table)


@cli.command(name="restore")
@click.argument("backup_id")
@click.pass_context
@engine_command
def restore_cmd(ctx: click.Context, backup_id: str) -> None:
    """Restore the configuration from a backup"""
    result = ImportExportCoordinator(_store(ctx)).restore_backup(backup_id)
    _report_import(result, "Restore")


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except (RuntimeError, ValueError, TypeError, OSError) as e:
        err_console.print(f"[red]Fatal error: {escape(str(e))}[/red]")
        logger.warning(
            "[cli] Fatal error in main CLI entrypoint: %s: %s",
            type(e).__name__,
            e,
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
