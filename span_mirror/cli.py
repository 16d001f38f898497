# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
span-mirror command line

Reads span documents as JSON (a list of ``{"type": "text"|"block", ...}``
objects, from a file or ``-`` for stdin) and shows how they map to trees.
"""

import json
import logging
import sys

import click

from .model.basic_schema import basic_schema_adapter
from .model.spans import spans_from_json, spans_to_json
from .model.traversal import doc_from_spans, format_index_table, spans_from_node, traverse_spans
from .replica.document import LinearDocument
from .replica.snapshot import load_snapshot, save_snapshot

logger = logging.getLogger(__name__)


def _read_spans(source):
    try:
        data = json.load(source)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid JSON input: {e}")
    if not isinstance(data, list):
        raise click.ClickException("Expected a JSON list of spans")
    try:
        return spans_from_json(data)
    except ValueError as e:
        raise click.ClickException(str(e))


@click.group()
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level",
)
def main(log_level: str):
    """Map span documents to editor trees and back"""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@main.command()
@click.argument("source", type=click.File("r"), default="-")
@click.option("--indent", default=2, help="JSON indentation")
def render(source, indent: int):
    """Print the tree built from a span document"""
    spans = _read_spans(source)
    doc = doc_from_spans(basic_schema_adapter, spans)
    click.echo(json.dumps(doc.to_json(), indent=indent, ensure_ascii=False))


@main.command()
@click.argument("source", type=click.File("r"), default="-")
def roundtrip(source):
    """Check that spans survive a trip through the tree unchanged"""
    spans = _read_spans(source)
    expected = spans_to_json(spans)
    actual = spans_to_json(spans_from_node(basic_schema_adapter, doc_from_spans(basic_schema_adapter, spans)))
    if actual == expected:
        click.echo("Round trip OK")
        return
    click.echo("Round trip mismatch", err=True)
    click.echo(json.dumps({"expected": expected, "actual": actual}, indent=2, ensure_ascii=False), err=True)
    sys.exit(1)


@main.command("index-table")
@click.argument("source", type=click.File("r"), default="-")
def index_table(source):
    """Print traversal events with their linear and tree indexes"""
    spans = _read_spans(source)
    click.echo(format_index_table(basic_schema_adapter, traverse_spans(basic_schema_adapter, spans)))


@main.command()
@click.argument("source", type=click.File("r"))
@click.argument("output", type=click.Path(dir_okay=False))
def snapshot(source, output: str):
    """Store a span document in a Loro snapshot file"""
    document = LinearDocument.from_spans(_read_spans(source))
    save_snapshot(document, output)
    click.echo(f"Wrote {output}")


@main.command()
@click.argument("snapshot_path", type=click.Path(exists=True, dir_okay=False))
def inspect(snapshot_path: str):
    """Print the spans stored in a Loro snapshot file"""
    try:
        document = load_snapshot(snapshot_path)
    except ValueError as e:
        raise click.ClickException(str(e))
    result = {
        "heads": document.get_heads(),
        "texts": [
            {"path": path, "spans": spans_to_json(document.spans(path))}
            for path in document.paths()
        ],
    }
    click.echo(json.dumps(result, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
