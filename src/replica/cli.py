"""
Command-line interface for the offline store.
"""

from __future__ import annotations

import asyncio
import json
import logging

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from replica.client import ReplicaClient
from replica.config import ClientSettings
from replica.errors import ReplicaError
from replica.events import SyncEvent

app = typer.Typer(
    name="replica",
    help="Replica - offline storage, synchronization and caching for the data API",
)
console = Console()


def build_client() -> ReplicaClient:
    """Client configured from REPLICA_* environment variables and .env files."""
    return ReplicaClient(ClientSettings.from_env())


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def status():
    """Show configuration and pending changes per content type."""

    async def _status():
        async with build_client() as client:
            pending = await client.get_items_for_sync()
            settings = client.settings

        console.print("\n[bold]Replica Status[/bold]\n")
        console.print(f"  Base URL: {settings.base_url}")
        console.print(f"  Offline storage: {'enabled' if settings.offline_storage.enabled else 'disabled'}")
        console.print(f"  Storage provider: {settings.offline_storage.storage.provider.value}")
        console.print(f"  Conflict strategy: {settings.offline_storage.conflicts.strategy.value}")
        console.print(f"  Caching: {'enabled' if settings.caching.enabled else 'disabled'}")

        if not pending:
            console.print("\n[green]No pending changes[/green]")
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Content Type")
        table.add_column("Created", justify="right")
        table.add_column("Modified", justify="right")
        table.add_column("Deleted", justify="right")

        for content_type, entries in sorted(pending.items()):
            actions = [entry["action"] for entry in entries]
            table.add_row(
                content_type,
                str(actions.count("create")),
                str(actions.count("update")),
                str(actions.count("delete")),
            )

        console.print()
        console.print(table)

    asyncio.run(_status())


@app.command()
def pending(
    content_type: str = typer.Argument(None, help="Only show this content type"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
):
    """List items waiting to be synchronized."""

    async def _pending():
        async with build_client() as client:
            items = await client.get_items_for_sync()

        if content_type:
            items = {content_type: items.get(content_type, [])}

        if as_json:
            console.print_json(json.dumps(items, default=str))
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Content Type")
        table.add_column("Id")
        table.add_column("Action")
        table.add_column("Modified At")

        for name, entries in sorted(items.items()):
            for entry in entries:
                item = entry["item"]
                table.add_row(name, str(item.get("Id")), entry["action"], str(item.get("ModifiedAt", "-")))

        console.print(table)

    asyncio.run(_pending())


@app.command()
def sync():
    """Synchronize pending changes with the server."""

    async def _sync():
        async with build_client() as client:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                task = progress.add_task("Synchronizing...", total=None)

                def on_item(info):
                    progress.update(task, description=f"Synchronizing {info.content_type}/{info.item_id}")

                client.on(SyncEvent.ITEM_PROCESSED, on_item)
                try:
                    result = await client.sync()
                except ReplicaError as e:
                    console.print(f"[red]Sync failed ({e.code}): {e.message}[/red]")
                    raise typer.Exit(1)

        console.print("\n[bold green]Sync Complete[/bold green]\n")

        table = Table(show_header=True)
        table.add_column("Metric")
        table.add_column("Value")
        table.add_row("Synced to server", str(result.synced_to_server))
        table.add_row("Synced to client", str(result.synced_to_client))
        table.add_row("Failed", str(sum(len(f) for f in result.failed_items.values())))
        console.print(table)

        for content_type, failures in result.failed_items.items():
            for failure in failures:
                console.print(f"[red]  {content_type}/{failure.item_id}: {failure.error}[/red]")

    asyncio.run(_sync())


@app.command()
def purge(
    content_type: str = typer.Argument(None, help="Content type to purge; all when omitted"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Remove data from the offline store, including unsynced changes."""
    target = content_type or "ALL content types"
    if not yes:
        typer.confirm(f"Purge offline data for {target}?", abort=True)

    async def _purge():
        async with build_client() as client:
            if content_type:
                await client.purge(content_type)
            else:
                await client.purge_all()
        console.print(f"[green]Purged offline data for {target}[/green]")

    asyncio.run(_purge())


@app.command("cache-clear")
def cache_clear(content_type: str = typer.Argument(None, help="Content type; all when omitted")):
    """Clear the query cache."""

    async def _clear():
        async with build_client() as client:
            if content_type:
                await client.cache.clear(content_type)
            else:
                await client.cache.clear_all()
        console.print(f"[green]Cache cleared for {content_type or 'all content types'}[/green]")

    asyncio.run(_clear())


if __name__ == "__main__":
    app()
