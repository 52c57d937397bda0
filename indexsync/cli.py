"""
CLI commands for indexsync.

Provides the `indexsync` command-line interface for index setup, status
checks, clearing, schedule inspection and running the crawler.
"""

import asyncio
import importlib
import logging
import sys
from datetime import datetime
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from config.loader import ConfigurationLoader
from indexsync import __version__
from indexsync.errors import ConfigurationError
from indexsync.indexer.scheduler import compute_next_run
from indexsync.models.config import GlobalSettings, SyncConfig
from indexsync.service import IndexSyncService, SyncSources
from indexsync.storage.factory import create_connector
from indexsync.storage.mappings import MappingLoader

console = Console()


def _setup_logging(level: str, log_format: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=log_format)


def _load_config(ctx: click.Context) -> SyncConfig:
    """Load the configuration once per invocation, exiting on errors"""
    if ctx.obj.get("config") is None:
        try:
            loader = ConfigurationLoader(ctx.obj["settings"])
            ctx.obj["config"] = loader.load(ctx.obj.get("config_file"))
        except ConfigurationError as e:
            console.print(f"[red]❌ Invalid configuration: {e}[/red]")
            sys.exit(2)
    return ctx.obj["config"]


def _load_sources_factory(spec: str):
    """Resolve a 'module:callable' reference"""
    module_name, _, attr = spec.partition(':')
    if not module_name or not attr:
        raise click.BadParameter("expected 'module:callable'", param_hint="--source")
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise click.BadParameter(f"cannot load {spec}: {e}", param_hint="--source")


@click.group()
@click.version_option(version=__version__, prog_name="indexsync")
@click.option(
    '--config', '-c', 'config_file',
    type=click.Path(dir_okay=False),
    help='JSON configuration file (default: $INDEXSYNC_CONFIG_FILE)'
)
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], case_sensitive=False),
    help='Override the configured log level'
)
@click.pass_context
def main(ctx: click.Context, config_file: Optional[str], log_level: Optional[str]):
    """
    indexsync CLI.

    Keep a search index synchronized with the social system-of-record.
    """
    settings = GlobalSettings()
    _setup_logging(log_level or settings.log_level, settings.log_format)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["config_file"] = config_file


@main.command()
@click.pass_context
def status(ctx: click.Context):
    """Show index health and document counts."""
    config = _load_config(ctx)
    healthy = asyncio.run(_show_status(config))
    if not healthy:
        sys.exit(1)


async def _show_status(config: SyncConfig) -> bool:
    connector = create_connector(config.connector)
    try:
        health = await connector.health_check()

        table = Table(title="indexsync status")
        table.add_column("Component", style="cyan", no_wrap=True)
        table.add_column("Status", style="white")
        table.add_column("Details", style="dim")

        if health.get("status") != "healthy":
            table.add_row("Index server", "[red]❌ Not available[/red]", str(health.get("error", "")))
            console.print(table)
            return False

        table.add_row(
            "Index server", "[green]✅ Connected[/green]",
            f"{health.get('url')} ({health.get('response_time_ms', 0):.0f}ms)"
        )

        exists = await connector.index_exists(config.index)
        table.add_row(
            "Index", "[green]✅ Present[/green]" if exists else "[yellow]⚠️  Missing[/yellow]", config.index
        )

        for name, kind in (("Profiles", config.profiles), ("Activities", config.activities), ("Messages", config.messages)):
            if not kind.enabled:
                table.add_row(name, "[dim]disabled[/dim]", kind.doc_type)
                continue
            count = await connector.count(config.index, kind.doc_type) if exists else 0
            table.add_row(name, f"{count} documents", kind.doc_type)

        console.print(table)
        return True
    finally:
        await connector.close()


@main.command(name="init-index")
@click.pass_context
def init_index(ctx: click.Context):
    """Create the index and apply the configured mappings."""
    config = _load_config(ctx)
    try:
        applied = asyncio.run(_init_index(config))
    except Exception as e:
        console.print(f"[red]❌ Failed to initialize index: {e}[/red]")
        sys.exit(1)
    console.print(f"[green]✅ Index '{config.index}' ready, mappings applied for: {', '.join(applied) or 'none'}[/green]")


async def _init_index(config: SyncConfig):
    connector = create_connector(config.connector)
    try:
        await connector.create_index(config.index)
        loader = MappingLoader(connector, config.index, config.mapping.types, mapping_file=config.mapping.file)
        return await loader.load()
    finally:
        await connector.close()


@main.command()
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def clear(ctx: click.Context, yes: bool):
    """Delete and recreate the index (irreversible)."""
    config = _load_config(ctx)
    if not yes:
        click.confirm(f"Delete every document in index '{config.index}'?", abort=True)
    try:
        asyncio.run(_clear_index(config))
    except Exception as e:
        console.print(f"[red]❌ Failed to clear index: {e}[/red]")
        sys.exit(1)
    console.print(f"[green]✅ Cleared index '{config.index}'[/green]")


async def _clear_index(config: SyncConfig) -> None:
    connector = create_connector(config.connector)
    try:
        await connector.clear_index(config.index)
        if config.mapping.load:
            loader = MappingLoader(connector, config.index, config.mapping.types, mapping_file=config.mapping.file)
            await loader.load()
    finally:
        await connector.close()


@main.command(name="next-run")
@click.pass_context
def next_run(ctx: click.Context):
    """Print the next scheduled crawl time."""
    config = _load_config(ctx)
    if not config.crawl.enabled:
        console.print("[yellow]Full crawl is disabled[/yellow]")
        return
    when = compute_next_run(config.crawl, datetime.now())
    if when is None:
        console.print("[blue]One-shot schedule: crawls once on startup[/blue]")
    else:
        console.print(f"[blue]Next crawl: {when.isoformat(sep=' ')} ({config.crawl.mode.value})[/blue]")


@main.command()
@click.option(
    '--source', 'source_spec', required=True,
    help="Factory 'module:callable' returning SyncSources for a SyncConfig"
)
@click.option('--once', is_flag=True, help='Run a single pass and exit')
@click.pass_context
def crawl(ctx: click.Context, source_spec: str, once: bool):
    """Run the reconciliation crawler."""
    config = _load_config(ctx)
    factory = _load_sources_factory(source_spec)
    sources = factory(config)
    if not isinstance(sources, SyncSources):
        raise click.BadParameter("factory must return SyncSources", param_hint="--source")

    try:
        success = asyncio.run(_run_crawl(config, sources, once))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        return
    if not success:
        sys.exit(1)


async def _run_crawl(config: SyncConfig, sources: SyncSources, once: bool) -> bool:
    service = IndexSyncService(config, sources)
    try:
        if once:
            if config.mapping.load:
                await service.mapping_loader.load()
            result = await service.scheduler.run_pass()
            for kind_result in result["results"]:
                mark = "[green]✅[/green]" if kind_result.get("success") else "[red]❌[/red]"
                console.print(
                    f"{mark} {kind_result['kind']}: {kind_result.get('deleted', 0)} deleted, "
                    f"{kind_result.get('added', 0)} added, {kind_result.get('updated', 0)} updated"
                )
            return result["success"]

        await service.start()
        console.print(f"[blue]Crawler running ({config.crawl.mode.value}), press Ctrl+C to stop[/blue]")
        await service.scheduler.wait_closed()
        return True
    finally:
        await service.stop()


if __name__ == '__main__':
    main()
