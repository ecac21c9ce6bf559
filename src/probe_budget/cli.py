"""Command-line interface for probe-budget.

Renders tree or value dumps from a JSON/YAML file within the output budget:

Example:
    $ probe-budget render tree.json
    $ probe-budget render tree.json --json
    $ probe-budget render state.yaml --value -o MAX_CHARS=2000
    $ cat tree.json | probe-budget render -
    $ probe-budget info
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any

import typer
import yaml
from rich.console import Console
from rich.markup import escape

from probe_budget.core.budget import (
    BudgetContext,
    get_budget_context,
    render_tree,
    render_value,
    snapshot_tree,
    snapshot_value,
)
from probe_budget.core.exceptions import InvalidInputError

logger = logging.getLogger(__name__)

EXIT_INVALID_INPUT = 1
EXIT_INPUT_ERROR = 2

app = typer.Typer(
    name="probe-budget",
    help="Render inspection trees and values within a fixed output budget",
    no_args_is_help=True,
)

# Diagnostics go to stderr so stdout carries only the rendered output
err_console = Console(stderr=True)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure logging for all commands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _parse_overrides(entries: list[str]) -> dict[str, Any]:
    """Parse KEY=VALUE entries; values are read as YAML scalars."""
    overrides: dict[str, Any] = {}
    for entry in entries:
        key, sep, raw = entry.partition("=")
        if not sep or not key.strip():
            err_console.print(f"[red][ERR][/red] Override must be KEY=VALUE, got: {escape(entry)}")
            raise typer.Exit(code=EXIT_INPUT_ERROR)
        try:
            overrides[key.strip()] = yaml.safe_load(raw)
        except yaml.YAMLError:
            # Unusable values fall back to defaults inside BudgetLimits
            overrides[key.strip()] = raw
    return overrides


def _load_document(source: str) -> Any:
    """Load a JSON or YAML document from a path, or stdin for '-'."""
    try:
        if source == "-":
            content = sys.stdin.read()
        else:
            content = Path(source).read_text(encoding="utf-8")
    except OSError as e:
        err_console.print(f"[red][ERR][/red] Cannot read {escape(source)}: {escape(str(e))}")
        raise typer.Exit(code=EXIT_INPUT_ERROR) from None

    try:
        return yaml.safe_load(content)
    except yaml.YAMLError as e:
        err_console.print(f"[red][ERR][/red] Malformed document {escape(source)}: {escape(str(e))}")
        raise typer.Exit(code=EXIT_INPUT_ERROR) from None


@app.command(name="render")
def render_command(
    source: str = typer.Argument(..., help="JSON/YAML file to render, or '-' for stdin"),
    as_json: bool = typer.Option(
        False, "--json", "-j", help="Emit a {data, meta} envelope instead of text"
    ),
    as_value: bool = typer.Option(
        False, "--value", help="Treat the document as a raw value, not a node tree"
    ),
    override: list[str] = typer.Option(
        [], "--override", "-o", help="Budget override KEY=VALUE (repeatable)"
    ),
) -> None:
    """Render a node tree (or raw value) within the output budget.

    Exits with code 0 on success, 1 if the document is not a valid node
    tree, 2 if the file cannot be read or parsed.
    """
    context = BudgetContext(_parse_overrides(override)) if override else get_budget_context()
    document = _load_document(source)

    try:
        if as_value:
            output = (snapshot_value if as_json else render_value)(document, context=context)
        else:
            output = (snapshot_tree if as_json else render_tree)(document, context=context)
    except InvalidInputError as e:
        err_console.print(f"[red][ERR][/red] Invalid node tree: {escape(str(e))}")
        raise typer.Exit(code=EXIT_INVALID_INPUT) from None

    typer.echo(output)
    stats = context.last_run_stats
    if stats is not None:
        logger.info(
            "%s: %d chars, truncated=%s, omitted=%s",
            stats.api,
            stats.char_count,
            stats.truncated,
            stats.omitted,
        )


@app.command(name="info")
def info_command(
    override: list[str] = typer.Option(
        [], "--override", "-o", help="Budget override KEY=VALUE (repeatable)"
    ),
) -> None:
    """Print the effective budget, its source and the last run stats."""
    context = BudgetContext(_parse_overrides(override)) if override else get_budget_context()
    typer.echo(json.dumps(context.info(), indent=2))


if __name__ == "__main__":
    app()
