"""Command-line interface for inspecting service contracts."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from stubwire.proto.errors import MalformedSchema
from stubwire.proto.registry import SchemaRegistry
from stubwire.proto.types import ServiceDescriptor, describe
from stubwire.schema import load_registry, parse


@click.group()
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Service contract tools."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
    )


@cli.command()
@click.option("--input", "-i", "input_file", required=True, help="Input schema file")
@click.option("--name", default=None, help="Name for an unnamed service (default: file stem)")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.option("--ast", "output_ast", is_flag=True, help="Output the parse tree as JSON")
def info(input_file: str, name: str | None, output_json: bool, output_ast: bool) -> None:
    """Validate a schema and display its services."""
    with open(input_file, encoding="utf-8") as f:
        text = f.read()

    try:
        if output_ast:
            print(parse(text).to_json(indent=2))
            return
        registry = load_registry(text, default_name=name or Path(input_file).stem)
    except MalformedSchema as e:
        print(f"Invalid schema: {e}")
        sys.exit(1)

    if output_json:
        _output_json(registry)
    else:
        _output_plain(registry)


def _service_data(service: ServiceDescriptor) -> dict:
    return {
        "methods": {
            m.name: {
                "args": [describe(t) for t in m.args],
                "results": [describe(t) for t in m.results],
                "mode": m.mode.value,
            }
            for m in service.methods
        },
        "types": {n.name: describe(n.type) for n in service.types},
    }


def _output_json(registry: SchemaRegistry) -> None:
    """Output services as JSON."""
    data = {"services": {name: _service_data(registry.service(name)) for name in registry}}
    print(json.dumps(data, indent=2))


def _output_plain(registry: SchemaRegistry) -> None:
    """Output services using rich text formatting."""
    console = Console()

    for name in registry:
        service = registry.service(name)
        console.print(f"[bold cyan]Service {name}[/bold cyan]")

        method_table = Table(show_header=True, box=None, padding=(0, 2, 0, 0))
        method_table.add_column("Method", style="white")
        method_table.add_column("Arguments", style="yellow")
        method_table.add_column("Results", style="yellow")
        method_table.add_column("Mode", style="green")

        for m in service.methods:
            method_table.add_row(
                m.name,
                f"({', '.join(describe(t) for t in m.args)})",
                f"({', '.join(describe(t) for t in m.results)})",
                m.mode.value,
            )

        console.print(method_table)
        console.print()

        if service.types:
            console.print("[bold cyan]Types[/bold cyan]")
            type_table = Table(show_header=False, box=None, padding=(0, 2, 0, 2))
            type_table.add_column("Name", style="dim")
            type_table.add_column("Definition", style="white")
            for named in service.types:
                type_table.add_row(named.name, describe(named.type))
            console.print(type_table)
            console.print()


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
