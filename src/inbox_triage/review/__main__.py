"""CLI entry point for reviewing the triage queue.

Allows listing and acting on triaged items via command line:
    python -m inbox_triage.review list
"""

import asyncio
import sys

import click

from inbox_triage.classifier import ConnectionTestResult, OllamaClient
from inbox_triage.config import Config, load_config
from inbox_triage.errors import InvalidTransitionError
from inbox_triage.logging import setup_logging
from inbox_triage.models import TriageCategory, TriageItem
from inbox_triage.store import PluginDataFile, TriageStore


def open_store(config: Config) -> TriageStore:
    """Create and load the triage store described by the configuration."""
    store = TriageStore(PluginDataFile(config.data_path))
    asyncio.run(store.load())
    return store


def print_item(item: TriageItem, verbose: bool = False) -> None:
    """Print a triage item."""
    suggestion = item.effective_suggestion()
    priority = suggestion.priority.value if suggestion.priority else "-"

    click.echo(
        f"\033[36m[{item.triage_time[:19]}]\033[0m \033[1m{suggestion.title}\033[0m"
    )
    click.echo(
        f"ID: {item.id} | \033[32m{suggestion.category.value}\033[0m | "
        f"priority: {priority} | confidence: {suggestion.confidence:.2f} | status: {item.status.value}"
    )
    click.echo(f"Source: {item.source_path}")
    if verbose:
        if suggestion.client:
            click.echo(f"Client: {suggestion.client}")
        if suggestion.due_date:
            click.echo(f"Due: {suggestion.due_date}")
        if suggestion.tags:
            click.echo(f"Tags: {', '.join(suggestion.tags)}")
        details = suggestion.details
        if details is not None:
            for key, value in details.to_dict().items():
                click.echo(f"  {key}: {value}")
        if suggestion.reasoning:
            click.echo(f"Reasoning: {suggestion.reasoning}")
        if item.action_taken:
            click.echo(f"Action: {item.action_taken} at {item.action_time}")
        if item.artifact_path:
            click.echo(f"Artifact: {item.artifact_path}")
    click.echo("-" * 40)


def _require(item: TriageItem | None, item_id: str) -> TriageItem:
    if item is None:
        click.echo(f"No triage item with ID {item_id}", err=True)
        sys.exit(1)
    return item


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Review triaged emails and chat messages."""
    setup_logging("review", console=False)
    ctx.obj = load_config()


@cli.command(name="list")
@click.option("--all", "show_all", is_flag=True, help="Include reviewed and dismissed items")
@click.option(
    "--category",
    type=click.Choice([c.value for c in TriageCategory], case_sensitive=False),
    help="Filter by category",
)
@click.option("--verbose", "-v", is_flag=True, help="Show more details")
@click.pass_obj
def list_items(config: Config, show_all: bool, category: str | None, verbose: bool) -> None:
    """List pending triage items."""
    store = open_store(config)

    if category:
        items = store.get_items_by_category(category.upper())
        if not show_all:
            items = [item for item in items if item.is_pending]
    elif show_all:
        items = store.get_all_items()
    else:
        items = store.get_pending_items()

    if not items:
        click.echo("No items.")
        return

    click.echo(f"{len(items)} item(s)\n")
    for item in items:
        print_item(item, verbose)


@cli.command()
@click.argument("item_id")
@click.pass_obj
def show(config: Config, item_id: str) -> None:
    """Show one triage item in full."""
    store = open_store(config)
    print_item(_require(store.get_item(item_id), item_id), verbose=True)


@cli.command()
@click.argument("item_id")
@click.argument("action")
@click.option("--artifact", help="Path of the document created for this item")
@click.pass_obj
def review(config: Config, item_id: str, action: str, artifact: str | None) -> None:
    """Mark an item reviewed with the ACTION taken (e.g. created_task)."""
    store = open_store(config)
    try:
        item = asyncio.run(store.mark_reviewed(item_id, action, artifact))
    except InvalidTransitionError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    item = _require(item, item_id)
    click.echo(f"Reviewed {item.id}: {action}")


@cli.command()
@click.argument("item_id")
@click.pass_obj
def dismiss(config: Config, item_id: str) -> None:
    """Dismiss an item that needs no action."""
    store = open_store(config)
    try:
        item = asyncio.run(store.dismiss_item(item_id))
    except InvalidTransitionError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    item = _require(item, item_id)
    click.echo(f"Dismissed {item.id}")


@cli.command()
@click.pass_obj
def purge(config: Config) -> None:
    """Remove every reviewed and dismissed item."""
    store = open_store(config)
    removed = asyncio.run(store.purge_non_pending())
    click.echo(f"Removed {removed} processed item(s)")


@cli.command()
@click.pass_obj
def stats(config: Config) -> None:
    """Show queue counts by status."""
    store = open_store(config)
    for key, value in store.get_stats().items():
        click.echo(f"{key}: {value}")


@cli.command()
@click.pass_obj
def check(config: Config) -> None:
    """Check that the classification server is reachable."""

    async def run_check() -> ConnectionTestResult:
        client = OllamaClient(
            base_url=config.classifier.base_url,
            model=config.classifier.model,
            timeout=config.classifier.timeout,
        )
        try:
            return await client.test_connection()
        finally:
            await client.aclose()

    result = asyncio.run(run_check())
    if result.success:
        click.echo(f"Connected: model={result.model}")
    else:
        click.echo(f"Connection failed: {result.error}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
