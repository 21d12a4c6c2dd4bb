"""Command line interface for Fieldbook."""

from __future__ import annotations

import asyncio
import difflib
import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.syntax import Syntax
from rich.table import Table

from fieldbook.api import RpcClient
from fieldbook.assets import AssetCache, HttpDownloader
from fieldbook.config import (
    ConfigError,
    ConfigManager,
    FieldbookConfig,
    LoggingSettings,
    assign_dotted,
    resolve_with_precedence,
)
from fieldbook.errors import StorageError
from fieldbook.grouping import group_runs, key_by
from fieldbook.paging import (
    Collection,
    CollectionStore,
    MergeOutcome,
    MergeStatus,
    PageFetcher,
    PageQuery,
    id_of,
)

console = Console()
LOGGER = logging.getLogger("fieldbook")


def configure_logging(settings: LoggingSettings, *, level_override: str | None = None) -> None:
    """Attach Rich console logging and, when configured, a rotating log file.

    Args:
        settings: Logging section of the configuration.
        level_override: Level passed on the command line, if any.
    """
    level = (level_override or settings.level).upper()
    for handler in list(LOGGER.handlers):
        LOGGER.removeHandler(handler)
        handler.close()

    LOGGER.setLevel(level)
    LOGGER.addHandler(
        RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=False)
    )
    if settings.file:
        log_path = Path(settings.file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=settings.max_size_mb * 1024 * 1024,
            backupCount=settings.backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        LOGGER.addHandler(file_handler)


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    original: Exception | None = None,
) -> None:
    """Report an error as JSON or as a ClickException.

    Raises:
        SystemExit: When emitting JSON output.
        click.ClickException: Otherwise.
    """
    if json_output:
        console.print_json(data={"error": {"code": code, "message": message}})
        raise SystemExit(1)
    raise click.ClickException(message) from original


def _manager(ctx: click.Context) -> ConfigManager:
    return ConfigManager(config_path=ctx.obj.get("config_path"))


def _load_config(ctx: click.Context) -> FieldbookConfig:
    try:
        config = _manager(ctx).load()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    configure_logging(config.logging, level_override=ctx.obj.get("log_level"))
    return config


def _parse_filters(pairs: tuple[str, ...]) -> dict[str, Any]:
    filters: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"Expected KEY=VALUE, got {pair!r}", param_hint="--filter")
        filters[key.strip()] = value
    return filters


def _build_cache(config: FieldbookConfig) -> tuple[AssetCache, HttpDownloader]:
    downloader = HttpDownloader(timeout=config.cache.download_timeout_seconds)
    cache = AssetCache(
        Path(config.cache.directory),
        downloader,
        owner_markers=config.cache.owner_markers,
    )
    return cache, downloader


async def _load_pages(
    config: FieldbookConfig,
    query: PageQuery,
    filters: dict[str, Any],
    pages: int,
) -> MergeOutcome:
    async with RpcClient(config.api) as client:
        store = CollectionStore(
            PageFetcher(client, query),
            filters=filters,
            id_fields=config.paging.id_fields,
        )
        outcome = MergeOutcome(MergeStatus.EXHAUSTED, store.collection)
        for _ in range(pages):
            outcome = await store.merge_from_server()
            if outcome.status is not MergeStatus.MERGED or not outcome.collection.has_more:
                break
        return outcome


def _render_items(collection: Collection, config: FieldbookConfig) -> Table:
    table = Table(title=f"{len(collection)} records")
    table.add_column("#", justify="right")
    table.add_column("ID")
    table.add_column(config.paging.status_field.capitalize())
    for position, item in enumerate(collection.items):
        table.add_row(
            str(position),
            str(id_of(item, config.paging.id_fields)),
            str(item.get(config.paging.status_field, "")),
        )
    return table


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="fieldbook")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Configuration file to use instead of ~/.fieldbook/config.yaml.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Override the configured logging level.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str | None) -> None:
    """Fieldbook reconciles paginated back-office data and caches field images."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


@cli.command()
@click.argument("endpoint")
@click.option("--filter", "filters", multiple=True, metavar="KEY=VALUE", help="Query filter.")
@click.option("--limit", type=click.IntRange(min=1), help="Page size to request.")
@click.option("--pages", type=click.IntRange(min=1), default=1, show_default=True)
@click.option("--items-key", help="Key holding the records when data is an object.")
@click.option("--group-by", help="Collapse adjacent records sharing this field.")
@click.option("--json", "json_output", is_flag=True, help="Emit JSON instead of tables.")
@click.pass_context
def fetch(
    ctx: click.Context,
    endpoint: str,
    filters: tuple[str, ...],
    limit: int | None,
    pages: int,
    items_key: str | None,
    group_by: str | None,
    json_output: bool,
) -> None:
    """Load up to PAGES pages of ENDPOINT into one deduplicated list."""
    config = _load_config(ctx)
    query = PageQuery(
        endpoint=endpoint,
        limit=limit or config.api.default_limit,
        items_key=items_key,
    )
    outcome = asyncio.run(_load_pages(config, query, _parse_filters(filters), pages))

    if outcome.terminal:
        _handle_cli_error(
            f"Could not load {endpoint}: {outcome.error}",
            code="fetch_failed",
            json_output=json_output,
            original=outcome.error,
        )
    if outcome.status is MergeStatus.FAILED and not json_output:
        console.print(f"[yellow]Stopped early: {outcome.error}[/yellow]")

    collection = outcome.collection
    groups = group_runs(collection.items, key_by(group_by)) if group_by else []

    if json_output:
        payload: dict[str, Any] = {
            "items": list(collection.items),
            "has_more": collection.has_more,
            "next_page": collection.next_page,
        }
        if group_by:
            payload["groups"] = [
                {"key": group.key, "count": group.count, "indices": list(group.indices)}
                for group in groups
            ]
        console.print_json(json.dumps(payload, default=str))
        return

    if group_by:
        table = Table(title=f"{len(groups)} runs of {group_by}")
        table.add_column(group_by.capitalize())
        table.add_column("Count", justify="right")
        table.add_column("Rows")
        for group in groups:
            if group.spans_range:
                rows = f"{group.indices[0]}-{group.indices[-1]}"
            else:
                rows = str(group.indices[0])
            table.add_row(str(group.key), str(group.count), rows)
        console.print(table)
    else:
        console.print(_render_items(collection, config))

    more = "more available" if collection.has_more else "no more pages"
    console.print(f"[green]Loaded {len(collection)} records; {more}.[/green]")


@cli.group()
def cache() -> None:
    """Inspect and manage the local image cache."""


@cache.command("key")
@click.argument("url")
@click.pass_context
def cache_key(ctx: click.Context, url: str) -> None:
    """Print the cache key derived from URL."""
    config = _load_config(ctx)
    cache_, _ = _build_cache(config)
    key = cache_.key_for(url)
    if key is None:
        raise click.ClickException(f"No cache key can be derived from {url}")
    console.print(key)


@cache.command("resolve")
@click.argument("url")
@click.pass_context
def cache_resolve(ctx: click.Context, url: str) -> None:
    """Download URL into the cache if needed and print the URI to render."""
    config = _load_config(ctx)
    cache_, downloader = _build_cache(config)

    async def _resolve() -> str:
        try:
            return await cache_.resolve(url)
        finally:
            await downloader.aclose()

    console.print(asyncio.run(_resolve()), soft_wrap=True)


@cache.command("discard")
@click.argument("url")
@click.pass_context
def cache_discard(ctx: click.Context, url: str) -> None:
    """Remove the cached copy of URL."""
    config = _load_config(ctx)
    cache_, _ = _build_cache(config)
    try:
        removed = cache_.discard(url)
    except StorageError as exc:
        raise click.ClickException(str(exc)) from exc
    if removed:
        console.print("[green]Removed cached image.[/green]")
    else:
        console.print("[yellow]Nothing cached for that URL.[/yellow]")


@cache.command("clear")
@click.confirmation_option(prompt="Delete every cached image?")
@click.pass_context
def cache_clear(ctx: click.Context) -> None:
    """Delete every cached image."""
    config = _load_config(ctx)
    cache_, _ = _build_cache(config)
    try:
        removed = cache_.clear()
    except StorageError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Removed {removed} cached images.[/green]")


@cli.group()
def config() -> None:
    """View and update Fieldbook configuration."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
@click.pass_context
def config_view(ctx: click.Context, no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules."""
    try:
        effective = _manager(ctx).load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    yaml_text = yaml.safe_dump(effective.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="YAML literal to assign to KEY.")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Persist a configuration value addressed by a dotted KEY such as api.token."""
    manager = _manager(ctx)
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException("KEY must be a dotted path such as 'api.base_url'.")

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    try:
        manager.ensure_exists()
        before = manager.read_text().splitlines()
        file_data = manager.load_file_overrides()
        assign_dotted(file_data, segments, parsed_value)
        resolve_with_precedence(defaults=FieldbookConfig(), file_overrides=file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(file_data)
    diff = [
        line
        for line in difflib.unified_diff(
            before,
            manager.read_text().splitlines(),
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
        if not line.startswith(("+# Last updated", "-# Last updated"))
    ]
    if len(diff) > 2 and any(line.startswith(("+", "-")) for line in diff[2:]):
        console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    else:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


def main() -> None:
    """Console script entry point."""
    cli()


if __name__ == "__main__":
    main()
