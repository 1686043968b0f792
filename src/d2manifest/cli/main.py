"""Main CLI entry point for d2manifest.

Provides command-line access to the manifest cache for inspection and
administration.
"""

import logging
import sys
from pathlib import Path
from typing import Any

import click
import orjson
from rich.console import Console
from rich.table import Table

from d2manifest.cache import CacheConfig, ManifestCache
from d2manifest.errors import ManifestLookupError
from d2manifest.utils import thaw

# Global console for Rich output
console = Console()


def build_cache(ctx: click.Context) -> ManifestCache:
    """Create a ManifestCache from CLI options.

    Priority for each setting:
    1. Explicit command-line option
    2. --config JSON file
    3. Environment variables (BUNGIE_API_KEY, D2MANIFEST_*)

    Raises:
        ConfigurationError: If the API key is missing
    """
    opts = ctx.obj
    if opts.get("config"):
        config = CacheConfig.load(Path(opts["config"]))
    else:
        config = CacheConfig.from_env()

    if opts.get("cache_dir"):
        config.cache_dir = Path(opts["cache_dir"]).expanduser()
    if opts.get("max_age") is not None:
        config.max_age = opts["max_age"]
    if opts.get("locale"):
        config.locale = opts["locale"]

    return ManifestCache(config)


def echo_json(data: Any) -> None:
    """Print data as indented JSON."""
    click.echo(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode())


def fail(message: str) -> None:
    console.print(f"[red]✗[/red] {message}", style="red")
    sys.exit(1)


@click.group()
@click.option(
    "--cache-dir",
    type=click.Path(),
    help="Cache directory (default: ~/.d2manifest_cache or D2MANIFEST_CACHE_DIR)",
)
@click.option("--max-age", type=int, help="Cache time-to-live in seconds")
@click.option("--locale", help="Manifest locale (default: en)")
@click.option(
    "--config", type=click.Path(exists=True), help="JSON configuration file"
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, cache_dir, max_age, locale, config, verbose):
    """d2manifest CLI - Inspect and manage the Destiny 2 manifest cache.

    Requires a Bungie.net API key in the BUNGIE_API_KEY environment variable.
    """
    ctx.ensure_object(dict)
    ctx.obj.update(
        {
            "cache_dir": cache_dir,
            "max_age": max_age,
            "locale": locale,
            "config": config,
        }
    )
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("info")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def info(ctx, as_json):
    """Compare the remote manifest version with the cache.

    Example:
        d2manifest info
        d2manifest info --json
    """
    try:
        cache = build_cache(ctx)
        result = cache.get_info()

        if as_json:
            echo_json(result.to_dict())
            return

        console.print(f"\n[bold cyan]Remote version:[/bold cyan] {result.remote_version}")
        if result.cached_version is None:
            console.print("[bold]Cached version:[/bold] [yellow]none[/yellow]")
        else:
            console.print(f"[bold]Cached version:[/bold] {result.cached_version}")
            console.print(f"[bold]Fetched at:[/bold] {result.fetched_at.isoformat()}")
            state = "[green]valid[/green]" if result.cache_valid else "[yellow]stale[/yellow]"
            console.print(f"[bold]Cache:[/bold] {state}")
            if not result.version_current:
                console.print(
                    "[yellow]⚠ A newer manifest is available; "
                    "run 'd2manifest refresh --if-changed'[/yellow]"
                )
        console.print()

    except Exception as e:
        fail(f"Error: {e}")


@cli.command("status")
@click.pass_context
def status(ctx):
    """Show the local cache status without contacting Bungie.net.

    Example:
        d2manifest status
    """
    try:
        cache = build_cache(ctx)
        result = cache.get_status()

        if result is None:
            console.print("[yellow]No manifest cached[/yellow]")
            return

        table = Table(title="Manifest cache")
        table.add_column("Field", style="cyan", no_wrap=True)
        table.add_column("Value", style="white")

        table.add_row("Version", result["version"])
        table.add_row("Locale", result["locale"])
        table.add_row("Fetched", result["fetched_at"])
        table.add_row("Size", f"{result['size_bytes'] / (1024 * 1024):.2f} MB")
        table.add_row(
            "Valid", "[green]yes[/green]" if result["valid"] else "[yellow]no[/yellow]"
        )
        table.add_row("TTL remaining", str(result["ttl_remaining"]))
        table.add_row("Path", result["cache_path"])

        console.print(table)

    except Exception as e:
        fail(f"Error: {e}")


@cli.command("tables")
@click.pass_context
def tables(ctx):
    """List manifest tables and their definition counts.

    Example:
        d2manifest tables
    """
    try:
        cache = build_cache(ctx)
        document = cache.get_document()

        table = Table(title=f"Manifest tables ({len(document)})")
        table.add_column("Table", style="cyan", no_wrap=True)
        table.add_column("Definitions", justify="right", style="green")

        for name in sorted(document):
            table.add_row(name, str(len(document[name])))

        console.print(table)

    except Exception as e:
        fail(f"Error: {e}")


@cli.command("table")
@click.argument("name")
@click.option("--keys", is_flag=True, help="Only print the definition hashes")
@click.pass_context
def table_cmd(ctx, name, keys):
    """Print one manifest table as JSON.

    Example:
        d2manifest table DestinyClassDefinition
        d2manifest table DestinyInventoryItemDefinition --keys
    """
    try:
        cache = build_cache(ctx)
        body = cache.get_table(name)
        if keys:
            for key in body:
                click.echo(key)
        else:
            echo_json(thaw(body))

    except ManifestLookupError as e:
        fail(str(e))
    except Exception as e:
        fail(f"Error: {e}")


@cli.command("definition", context_settings={"ignore_unknown_options": True})
@click.argument("table")
@click.argument("hashes", nargs=-1, required=True)
@click.pass_context
def definition(ctx, table, hashes):
    """Print definitions by hash as JSON.

    With one hash, prints the definition itself. With several (up to 20),
    prints a batch result listing found and missing hashes.

    Example:
        d2manifest definition DestinyInventoryItemDefinition 1363886209
        d2manifest definition DestinyClassDefinition 671679327 3655393761
        d2manifest definition DestinyInventoryItemDefinition -1034362578
    """
    try:
        cache = build_cache(ctx)
        if len(hashes) == 1:
            echo_json(cache.get_definition(table, hashes[0]))
        else:
            echo_json(cache.get_definitions(table, hashes))

    except ManifestLookupError as e:
        fail(str(e))
    except Exception as e:
        fail(f"Error: {e}")


@cli.command("refresh")
@click.option(
    "--if-changed",
    is_flag=True,
    help="Only download if the remote version differs from the cache",
)
@click.pass_context
def refresh(ctx, if_changed):
    """Download the manifest into the cache.

    Example:
        d2manifest refresh
        d2manifest refresh --if-changed
    """
    try:
        cache = build_cache(ctx)
        if if_changed:
            metadata = cache.sync()
        else:
            metadata = cache.force_refresh()

        console.print(f"[green]✓[/green] Manifest {metadata.version} cached")
        console.print(f"  Fetched: {metadata.fetched_at.isoformat()}")
        console.print(f"  Size: {metadata.size_bytes / (1024 * 1024):.2f} MB")

    except Exception as e:
        fail(f"Error: {e}")


@cli.command("clear")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def clear(ctx, yes):
    """Delete the cached manifest.

    Example:
        d2manifest clear -y
    """
    try:
        cache = build_cache(ctx)
        if not yes and not click.confirm("Delete the cached manifest?"):
            console.print("[yellow]Cancelled[/yellow]")
            return

        cache.clear()
        console.print("[green]✓[/green] Manifest cache cleared")

    except Exception as e:
        fail(f"Error: {e}")


if __name__ == "__main__":
    cli()
