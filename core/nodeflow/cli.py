"""
Command-line interface for nodeflow.

Usage:
    nodeflow validate workflow.json
    nodeflow plan workflow.json
    nodeflow vars ~/.nodeflow/snapshot.json
"""

import argparse
import json
import sys
from pathlib import Path

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from nodeflow.graph.edge import GraphSpec
from nodeflow.graph.resolver import DependencyResolver
from nodeflow.graph.validator import GraphValidator
from nodeflow.observability import configure_logging


def _load_graph(path: str, console: Console) -> GraphSpec | None:
    try:
        with open(path, encoding="utf-8") as f:
            return GraphSpec.model_validate(json.load(f))
    except OSError as e:
        console.print(f"[red]✗ Cannot read {path}: {escape(str(e))}[/red]")
    except json.JSONDecodeError as e:
        console.print(f"[red]✗ {path} is not valid JSON: {escape(str(e))}[/red]")
    except ValidationError as e:
        console.print(f"[red]✗ {path} is not a workflow graph:[/red]\n{escape(str(e))}")
    return None


def cmd_validate(args: argparse.Namespace, console: Console) -> int:
    graph = _load_graph(args.graph, console)
    if graph is None:
        return 1

    result = GraphValidator().validate(graph)
    for warning in result.warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")
    for error in result.errors:
        console.print(f"[red]✗ {error}[/red]")

    if not result.is_valid:
        return 1
    console.print(
        f"[green]✓ {graph.name or graph.id}: {len(graph.nodes)} nodes, "
        f"start at {', '.join(result.start_nodes)}[/green]"
    )
    return 0


def cmd_plan(args: argparse.Namespace, console: Console) -> int:
    graph = _load_graph(args.graph, console)
    if graph is None:
        return 1

    resolver = DependencyResolver(graph)
    batches = resolver.get_execution_order()
    if not batches:
        console.print("[red]✗ No start node; nothing to plan[/red]")
        return 1

    table = Table(title=f"Execution plan: {graph.name or graph.id}")
    table.add_column("Batch", justify="right")
    table.add_column("Nodes")
    for index, batch in enumerate(batches):
        table.add_row(str(index), ", ".join(batch))
    console.print(table)

    placed = {node_id for batch in batches for node_id in batch}
    unplaced = [node_id for node_id in graph.node_ids if node_id not in placed]
    if unplaced:
        console.print(f"[yellow]⚠ Never ready (cycle or unreachable): {', '.join(unplaced)}[/yellow]")
    return 0


def cmd_vars(args: argparse.Namespace, console: Console) -> int:
    path = Path(args.snapshot)
    try:
        with open(path, encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]✗ Cannot read snapshot {path}: {escape(str(e))}[/red]")
        return 1

    table = Table(title=f"Variables ({document.get('timestamp', 'unknown time')})")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Tier")
    table.add_column("Size", justify="right")
    table.add_column("Value")

    for record in document.get("variables", []):
        tier = record.get("tier", "")
        if record.get("variant"):
            tier = f"{tier}/{record['variant']}"
        if "data" in record:
            preview = json.dumps(record["data"], ensure_ascii=False, default=str)
        else:
            preview = "<media>"
        if len(preview) > args.width:
            preview = preview[: args.width - 1] + "…"
        table.add_row(
            record.get("name", "?"),
            record.get("type", "?"),
            tier,
            str(record.get("size", 0)),
            escape(preview),
        )

    console.print(table)
    console.print(f"{len(document.get('bindings', []))} node bindings")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nodeflow",
        description="nodeflow - inspect workflow graphs and variable snapshots",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Check a workflow graph")
    validate.add_argument("graph", help="Path to a graph JSON file")
    validate.set_defaults(func=cmd_validate)

    plan = subparsers.add_parser("plan", help="Show nodes grouped by dependency batch")
    plan.add_argument("graph", help="Path to a graph JSON file")
    plan.set_defaults(func=cmd_plan)

    show_vars = subparsers.add_parser("vars", help="List the variables in a snapshot")
    show_vars.add_argument("snapshot", help="Path to a snapshot JSON file")
    show_vars.add_argument("--width", type=int, default=60, help="Value preview width")
    show_vars.set_defaults(func=cmd_vars)

    return parser


def main(argv: list[str] | None = None, console: Console | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level)
    return args.func(args, console or Console())


if __name__ == "__main__":
    sys.exit(main())
