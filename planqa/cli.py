"""
PlanQA CLI

Command-line access to the guardrails without running the API.

Usage:
    planqa validate "SELECT * FROM publish.DASHt_Planning"   # Shape-validate and cap SQL
    planqa classify "Show jobs on hold" --mode production-planning
    planqa check-columns "SELECT JobName FROM publish.DASHt_Planning"
    planqa self-check                                         # Run validator fixtures
    planqa analytics --minutes 1440                           # Query log summary
    planqa serve --port 8000                                  # Start the API server
"""

import logging
import sys
from typing import Any

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from planqa import __version__
from planqa.catalog import SchemaCatalog
from planqa.config import get_settings
from planqa.guardrails import ColumnReferenceValidator, SqlShapeValidator
from planqa.initialization import build_guardrails
from planqa.stores import QueryLogger

console = Console()


def configure_cli_logging(verbose: bool = False) -> None:
    if verbose:
        logging.disable(logging.NOTSET)
        logging.getLogger("planqa").setLevel(logging.DEBUG)
        return
    logging.disable(logging.WARNING)


def _load_guardrails() -> dict[str, Any]:
    try:
        return build_guardrails(get_settings())
    except (OSError, ValueError) as e:
        console.print(f"[red]Failed to load configuration: {e}[/red]")
        sys.exit(1)


def _print_sql(sql: str) -> None:
    console.print(Syntax(sql, "sql", word_wrap=True))


# ============================================================================
# Commands
# ============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="PlanQA")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def cli(verbose: bool):
    """PlanQA - guarded natural-language questions over planning data."""
    configure_cli_logging(verbose)


@cli.command()
@click.argument("sql")
def validate(sql: str):
    """Run the shape validator on SQL and print the capped statement."""
    validator = SqlShapeValidator.from_settings(get_settings().guardrails)
    result = validator.validate(sql)
    if not result.valid:
        console.print(f"[red]✗ Rejected:[/red] {escape(result.error or '')}")
        sys.exit(1)
    console.print("[green]✓ Valid[/green]")
    _print_sql(result.modified_sql or sql)


@cli.command()
@click.argument("question")
@click.option("--mode", default=None, help="Semantic mode id to scope the candidate tables")
def classify(question: str, mode: str | None):
    """Show which tables the classifier selects for a question."""
    services = _load_guardrails()
    catalog: SchemaCatalog = services["catalog"]
    candidates = None
    if mode is not None:
        try:
            candidates = catalog.tables_for_mode(mode)
        except KeyError as e:
            console.print(f"[red]{escape(e.args[0])}[/red]")
            sys.exit(1)

    result = services["classifier"].classify(question, candidates)
    table = Table(title="Classification", show_header=True, header_style="bold cyan")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Confidence", result.confidence)
    table.add_row("Tables", "\n".join(result.selected_tables) or "-")
    table.add_row("Keywords", ", ".join(result.matched_keywords) or "-")
    table.add_row("Business terms", ", ".join(result.matched_terms) or "-")
    table.add_row("Override", "yes" if result.is_override else "no")
    table.add_row("Default tables", "yes" if result.used_default_tables else "no")
    console.print(table)
    for hint in result.context_hints:
        console.print(f"[dim]hint:[/dim] {escape(hint)}")
    if result.declined:
        console.print("[yellow]Question would be declined (out of scope).[/yellow]")


@cli.command("check-columns")
@click.argument("sql")
def check_columns(sql: str):
    """Check every column reference in SQL against the schema snapshot."""
    settings = get_settings()
    catalog = SchemaCatalog.from_settings(settings)
    result = ColumnReferenceValidator(catalog).validate(sql)

    if result.outcome == "skipped":
        console.print(f"[yellow]⚠ Skipped:[/yellow] {escape(result.skip_reason or '')}")
        return
    if result.outcome == "passed":
        console.print(
            f"[green]✓ {len(result.checked_columns)} column reference(s) resolved[/green] "
            f"in {', '.join(result.tables)}"
        )
        return

    table = Table(title="Unknown columns", show_header=True, header_style="bold red")
    table.add_column("Column", style="red")
    table.add_column("Clause")
    table.add_column("Table")
    table.add_column("Did you mean")
    for error in result.errors:
        table.add_row(error.column, error.context, error.table or "-", ", ".join(error.available_columns))
    console.print(table)
    sys.exit(1)


@cli.command("self-check")
def self_check():
    """Run the shape validator's fixture battery."""
    validator = SqlShapeValidator.from_settings(get_settings().guardrails)
    report = validator.run_self_check()
    table = Table(title="Validator self-check", show_header=True, header_style="bold cyan")
    table.add_column("Case", style="cyan")
    table.add_column("Result")
    table.add_column("Expected")
    table.add_column("Actual")
    for case in report.results:
        table.add_row(
            case.name,
            "[green]PASS[/green]" if case.passed else "[red]FAIL[/red]",
            escape(case.expected),
            escape(case.actual),
        )
    console.print(table)
    if not report.passed:
        console.print("[red]✗ Validator self-check failed[/red]")
        sys.exit(1)
    console.print("[green]✓ Validator self-check passed[/green]")


@cli.command()
@click.option("--minutes", default=1440, show_default=True, type=int, help="Time window in minutes")
def analytics(minutes: int):
    """Summarize the query log."""
    report = QueryLogger.from_settings(get_settings()).analytics(minutes)
    summary = report.summary
    console.print(
        Panel(
            f"Total: {summary.total_queries}   Success: {summary.successful_queries}   "
            f"Failed: {summary.failed_queries}\n"
            f"Avg LLM: {summary.average_llm_ms} ms   Avg SQL: {summary.average_sql_ms} ms   "
            f"Avg total: {summary.average_latency} ms",
            title=f"Last {minutes} minutes",
        )
    )
    if report.error_breakdown:
        table = Table(title="Errors by stage", show_header=True, header_style="bold cyan")
        table.add_column("Stage", style="cyan")
        table.add_column("Count", justify="right")
        for item in report.error_breakdown:
            table.add_row(item.stage, str(item.count))
        console.print(table)
    if report.top_errors:
        table = Table(title="Top errors", show_header=True, header_style="bold cyan")
        table.add_column("Message")
        table.add_column("Count", justify="right")
        for error in report.top_errors:
            table.add_row(escape(error.message), str(error.count))
        console.print(table)


@cli.command()
@click.option("--host", default=None, help="Bind host (default: API_HOST)")
@click.option("--port", default=None, type=int, help="Bind port (default: API_PORT)")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host: str | None, port: int | None, reload: bool):
    """Start the API server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "planqa.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
    )


# ============================================================================
# Entry Point
# ============================================================================


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
