from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import click
import httpx
from rich.console import Console
from rich.table import Table

from linkgraph.links.engine import LinkGraph, connect_engine
from linkgraph.links.errors import LinkGraphError
from linkgraph.links.models import PageMeta
from linkgraph.settings import settings

console = Console()


def _configure_logging() -> None:
    level = (settings.log_level or "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _json_lines(path: str, text: str) -> list[dict[str, Any]]:
    records = []
    for n, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            records.append(json.loads(line))
        except json.JSONDecodeError as e:
            raise click.ClickException(f"{path}:{n}: invalid JSON ({e.msg})") from e
    return records


def load_records(path: str) -> list[dict[str, Any]]:
    """Read a JSON array, a `{"links": [...]}` object, or JSON lines."""
    text = Path(path).read_text(encoding="utf-8")
    stripped = text.lstrip()
    if path.endswith(".jsonl") or not stripped.startswith(("[", "{")):
        return _json_lines(path, text)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        # One object per line also starts with "{".
        return _json_lines(path, text)
    if isinstance(data, dict):
        data = data.get("links", data.get("pages", []))
    if not isinstance(data, list):
        raise click.BadParameter(f"{path}: expected a list of records")
    return data


def _run(coro_fn, *args, **kwargs):
    async def _go():
        engine = await connect_engine(settings)
        try:
            return await coro_fn(engine, *args, **kwargs)
        finally:
            await engine.close()

    try:
        return asyncio.run(_go())
    except LinkGraphError as e:
        raise click.ClickException(str(e)) from e


def _print_json(data: Any) -> None:
    console.print_json(json.dumps(data, ensure_ascii=False))


@click.group()
def cli():
    """Link graph - backlinks and related pages for the wiki"""
    _configure_logging()


@cli.command()
def version():
    """Print the package version"""
    from linkgraph import __version__

    click.echo(__version__)


@cli.command("init-db")
def init_db():
    """Create the link table and its indexes"""

    async def _go(engine: LinkGraph):
        await engine.store.ensure_schema()

    _run(_go)
    console.print(f"[green]Schema ready[/green] ({settings.backend})")


@cli.command()
@click.option("--host", default=None, help="Bind address (default: LINKGRAPH_BIND_HOST)")
@click.option("--port", type=int, default=None, help="Bind port (default: LINKGRAPH_BIND_PORT)")
def serve(host, port):
    """Run the HTTP service"""
    from linkgraph.link_service.server import main

    main(host, port)


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--replace", is_flag=True, help="Delete all links before applying the file")
def sync(path, replace):
    """Apply a link file directly to the configured store"""
    links = load_records(path)

    async def _go(engine: LinkGraph):
        return await engine.sync(links, replace=replace)

    res = _run(_go)
    console.print(f"[green]Upserted {res['upserted']} links[/green]")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--replace", is_flag=True, help="Delete all links before the first batch")
@click.option("--url", default=None, help="Service base URL (default: LINKGRAPH_SERVER_URL)")
def push(path, replace, url):
    """Publish a link file of any size to a running service"""
    from linkgraph.link_service.client import LinkGraphClient

    links = load_records(path)

    async def _go():
        async with LinkGraphClient(url or settings.server_url, api_key=settings.api_key) as client:
            return await client.push(links, replace=replace)

    try:
        total = asyncio.run(_go())
    except httpx.HTTPError as e:
        raise click.ClickException(f"push failed: {e}") from e
    console.print(f"[green]Pushed {total} links[/green]")


@cli.command("load-pages")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def load_pages(path):
    """Seed page metadata into the sqlite store"""
    if settings.backend != "sqlite":
        raise click.ClickException("load-pages only applies to the sqlite backend")
    pages = [
        PageMeta(
            id=p["id"],
            title=p.get("title"),
            entity_type=p.get("entityType", p.get("entity_type")),
            quality=p.get("quality"),
            reader_importance=p.get("readerImportance", p.get("reader_importance")),
        )
        for p in load_records(path)
    ]

    async def _go(engine: LinkGraph):
        return await engine.store.put_pages(pages)

    n = _run(_go)
    console.print(f"[green]Loaded {n} pages[/green]")


@cli.command()
@click.argument("entity_id")
@click.option("--limit", default=50, help="Number of results")
def backlinks(entity_id, limit):
    """Show pages linking to ENTITY_ID"""

    async def _go(engine: LinkGraph):
        return await engine.backlinks(entity_id, limit=limit)

    res = _run(_go)
    if not res["backlinks"]:
        console.print("[yellow]No backlinks found[/yellow]")
        return

    table = Table(title=f"Backlinks to '{entity_id}'")
    table.add_column("Weight", style="cyan", width=8)
    table.add_column("Source", style="green")
    table.add_column("Type", style="magenta", width=14)
    table.add_column("Link", style="blue", width=14)
    table.add_column("Relationship", style="white")
    for b in res["backlinks"]:
        table.add_row(
            f"{b['weight']:.2f}", b["title"], b["type"], b["linkType"], b.get("relationship", "")
        )
    console.print(table)


@cli.command()
@click.argument("entity_id")
@click.option("--limit", default=25, help="Number of results")
def related(entity_id, limit):
    """Show the ranked related pages for ENTITY_ID"""

    async def _go(engine: LinkGraph):
        return await engine.related(entity_id, limit=limit)

    res = _run(_go)
    if not res["related"]:
        console.print("[yellow]No related pages found[/yellow]")
        return

    table = Table(title=f"Related to '{entity_id}'")
    table.add_column("Score", style="cyan", width=8)
    table.add_column("Page", style="green")
    table.add_column("Type", style="magenta", width=14)
    table.add_column("Label", style="white")
    for e in res["related"]:
        table.add_row(f"{e['score']:.2f}", e["title"], e["type"], e.get("label", ""))
    console.print(table)


@cli.command()
@click.argument("entity_id")
def graph(entity_id):
    """Dump the one-hop neighborhood of ENTITY_ID as JSON"""

    async def _go(engine: LinkGraph):
        return await engine.graph(entity_id)

    _print_json(_run(_go))


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def stats(as_json):
    """Show link counts per type"""

    async def _go(engine: LinkGraph):
        return await engine.stats()

    res = _run(_go)
    if as_json:
        _print_json(res)
        return

    table = Table(title="Link statistics")
    table.add_column("Link type", style="blue")
    table.add_column("Count", style="cyan", justify="right")
    table.add_column("Avg weight", style="green", justify="right")
    for s in res["byType"]:
        table.add_row(s["linkType"], str(s["count"]), f"{s['avgWeight']:.2f}")
    console.print(table)
    console.print(
        f"Total: {res['total']}  sources: {res['uniqueSources']}  targets: {res['uniqueTargets']}"
    )


def app() -> None:
    cli()


if __name__ == "__main__":
    app()
