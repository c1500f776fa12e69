"""Command-line interface for kegdex.

Usage:
    kegdex init                     # Write config and zero node
    kegdex index [--rebuild]        # Reindex nodes and rewrite dex/
    kegdex create < note.md         # Add a node from stdin or a file
    kegdex mv 5 9                   # Move node 5 to 9, rewriting links
    kegdex rm 5 6                   # Remove nodes 5 and 6, redirecting links to 0
    kegdex tags "golang and !draft" # Nodes matching a tag query
    kegdex dex changes.md           # Print a stored index (dex/ prefix optional)
"""

from __future__ import annotations

import json
import sys
from typing import Any, NoReturn

import click

from . import __version__
from .config import get_keg_root
from .dex import custom_index_name
from .errors import BatchError, KegError
from .keg import Keg, as_node_id


def output(data: Any, as_json: bool = False) -> None:
    """Output data as JSON or formatted text."""
    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(data)


def _handle_error(ctx: click.Context, error: Exception, exit_code: int = 1) -> NoReturn:
    """Report an error on stderr and exit.

    KegError subclasses print their message (or structured JSON when
    --json-errors is set); a BatchError lists each failing node.
    """
    json_errors = ctx.obj.get("json_errors", False) if ctx.obj else False

    if isinstance(error, KegError):
        if json_errors:
            click.echo(error.to_json(), err=True)
        elif isinstance(error, BatchError):
            click.echo(f"Error: {error.operation} failed for {len(error.failures)} node(s)", err=True)
            for path, exc in error.failures.items():
                click.echo(f"  {path}: {exc}", err=True)
        else:
            click.echo(f"Error: {error.message}", err=True)
    else:
        if json_errors:
            payload = {"error": {"code": "UNKNOWN_ERROR", "message": str(error)}}
            click.echo(json.dumps(payload), err=True)
        else:
            click.echo(f"Error: {error}", err=True)

    sys.exit(exit_code)


def _keg(ctx: click.Context) -> Keg:
    """Open the keg lazily so --help works outside a keg."""
    obj = ctx.ensure_object(dict)
    if obj.get("keg_instance") is None:
        obj["keg_instance"] = Keg.open(get_keg_root(obj.get("keg_path")))
    return obj["keg_instance"]


@click.group()
@click.version_option(version=__version__, prog_name="kegdex")
@click.option(
    "--keg",
    "keg_path",
    type=click.Path(file_okay=False),
    help="Keg directory (default: $KEGDEX_ROOT or the current directory)",
)
@click.option("--json-errors", is_flag=True, help="Output errors as JSON")
@click.pass_context
def cli(ctx: click.Context, keg_path: str | None, json_errors: bool):
    """kegdex: index and query a keg of markdown nodes."""
    ctx.ensure_object(dict)
    ctx.obj["keg_path"] = keg_path
    ctx.obj["json_errors"] = json_errors


@cli.command()
@click.option("--title", default="", help="Keg title for a new config")
@click.pass_context
def init(ctx: click.Context, title: str):
    """Create the keg config and zero node if missing."""
    try:
        _keg(ctx).init(title=title)
    except KegError as e:
        _handle_error(ctx, e)
    click.echo("Initialized keg")


@cli.command()
@click.option("--rebuild", is_flag=True, help="Clear the dex and regenerate every node")
@click.option("--no-update", is_flag=True, help="Only fill in missing meta/stats")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def index(ctx: click.Context, rebuild: bool, no_update: bool, as_json: bool):
    """Reindex nodes and write the dex."""
    try:
        result = _keg(ctx).index(rebuild=rebuild, no_update=no_update)
    except KegError as e:
        _handle_error(ctx, e)

    if as_json:
        output(result.model_dump(mode="json"), as_json=True)
    else:
        click.echo(
            f"Indexed {result.nodes} nodes "
            f"({len(result.refreshed)} refreshed, {len(result.removed)} removed)"
        )


@cli.command()
@click.argument("source", type=click.File("rb"), default="-")
@click.pass_context
def create(ctx: click.Context, source):
    """Create a node from SOURCE (a file, or stdin)."""
    try:
        node_id = _keg(ctx).create(source.read())
    except KegError as e:
        _handle_error(ctx, e)
    click.echo(node_id.path)


@cli.command()
@click.argument("node")
@click.pass_context
def cat(ctx: click.Context, node: str):
    """Print a node's content."""
    try:
        data = _keg(ctx).get(node)
    except KegError as e:
        _handle_error(ctx, e)
    click.echo(data.content.raw.decode("utf-8"), nl=False)


@cli.command()
@click.argument("node")
@click.pass_context
def touch(ctx: click.Context, node: str):
    """Mark a node as updated now."""
    try:
        _keg(ctx).touch(node)
    except KegError as e:
        _handle_error(ctx, e)


@cli.command("mv")
@click.argument("src")
@click.argument("dst")
@click.pass_context
def move(ctx: click.Context, src: str, dst: str):
    """Move node SRC to DST and rewrite links to it."""
    try:
        _keg(ctx).move(src, dst)
    except KegError as e:
        _handle_error(ctx, e)
    click.echo(f"Moved {src} -> {dst}")


@cli.command("rm")
@click.argument("nodes", nargs=-1, required=True)
@click.pass_context
def remove(ctx: click.Context, nodes: tuple[str, ...]):
    """Remove NODES; links to them are redirected to node 0.

    Every id is validated before anything is removed.
    """
    try:
        ids = [as_node_id(node) for node in nodes]
        keg = _keg(ctx)
        for node_id in ids:
            keg.remove(node_id)
            click.echo(f"Removed {node_id.path}")
    except KegError as e:
        _handle_error(ctx, e)


@cli.command()
@click.argument("expression", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def tags(ctx: click.Context, expression: str | None, as_json: bool):
    """List tags, or the nodes matching a tag EXPRESSION.

    \b
    Examples:
      kegdex tags
      kegdex tags "golang and (cli or tui)"
      kegdex tags "notes && !draft"
    """
    try:
        dex = _keg(ctx).dex()
        if not expression:
            output(dex.tag_list() if as_json else "\n".join(dex.tag_list()), as_json)
            return
        matches = dex.query(expression)
    except KegError as e:
        _handle_error(ctx, e)

    rows = []
    for node_id in matches:
        entry = dex.nodes.get(node_id)
        rows.append({"id": node_id.path, "title": entry.title if entry else ""})
    if as_json:
        output(rows, as_json=True)
    else:
        for row in rows:
            click.echo(f"{row['id']}\t{row['title']}")


@cli.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_nodes(ctx: click.Context, as_json: bool):
    """List indexed nodes, newest first."""
    try:
        entries = _keg(ctx).dex().changes.entries()
    except KegError as e:
        _handle_error(ctx, e)

    if as_json:
        output([e.model_dump(mode="json") for e in entries], as_json=True)
        return
    for entry in entries:
        click.echo(f"{entry.id}\t{entry.title}")


@cli.command("dex")
@click.argument("name", required=False)
@click.pass_context
def show_dex(ctx: click.Context, name: str | None):
    """Print a stored index, or list stored index names."""
    try:
        keg = _keg(ctx)
        if not name:
            click.echo("\n".join(keg.repo.list_indexes()))
            return
        data = keg.repo.get_index(custom_index_name(name))
    except KegError as e:
        _handle_error(ctx, e)
    click.echo(data.decode("utf-8"), nl=False)


def main():
    """Entry point for the kegdex CLI."""
    from ._logging import configure_logging

    configure_logging()
    cli()


if __name__ == "__main__":
    main()
