"""
CLI Interface
=============
Command-line interface for the question bank.

Usage:
    python -m qbank ingest <source_root> [options]
    python -m qbank verify
    python -m qbank add-category <name> --start 1 --end 100
    python -m qbank publish <question_id> [--unpublish]
    python -m qbank serve
"""

from __future__ import annotations

import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from . import __version__
from . import crud
from . import database as db
from .engine import IngestConfig, IngestEngine
from .errors import NotFound, RangeConflict
from .models import Difficulty, IngestSummary

console = Console()

LOG_LEVELS = click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"])


@click.group()
@click.version_option(version=__version__, prog_name="qbank")
def cli():
    """Question Bank: markdown question ingestion and progress tracking."""
    pass


@cli.command()
@click.argument("source_root", type=click.Path(exists=True, file_okay=False))
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Parse and validate only; write nothing",
)
@click.option(
    "--category", "-c",
    default=None,
    help="Put every question into this category",
)
@click.option(
    "--manifest", "-m",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file mapping document paths to category names",
)
@click.option(
    "--document", "-d",
    "documents",
    multiple=True,
    help="Document path relative to SOURCE_ROOT (repeatable)",
)
@click.option(
    "--block-size",
    default=99,
    type=click.IntRange(min=0),
    help="Width of the number range given to new categories",
)
@click.option(
    "--default-difficulty",
    default=Difficulty.INTERMEDIATE.value,
    type=click.Choice([d.value for d in Difficulty]),
    help="Difficulty when a question has no explicit marker",
)
@click.option(
    "--infer-difficulty",
    is_flag=True,
    default=False,
    help="Guess difficulty from keywords when no marker is present",
)
@click.option(
    "--unpublished",
    is_flag=True,
    default=False,
    help="Import new questions as unpublished",
)
@click.option(
    "--workers", "-j",
    default=4,
    type=click.IntRange(min=1),
    help="Parallel document parse workers",
)
@click.option(
    "--timeout",
    default=10.0,
    type=float,
    help="Seconds allowed to read one document",
)
@click.option("--db", "db_path", default=None, help="SQLite database path")
@click.option("--log-level", default="INFO", type=LOG_LEVELS, help="Logging level")
@click.option("--log-file", default=None, help="Path to log file")
def ingest(
    source_root: str,
    dry_run: bool,
    category: str,
    manifest: str,
    documents: tuple,
    block_size: int,
    default_difficulty: str,
    infer_difficulty: bool,
    unpublished: bool,
    workers: int,
    timeout: float,
    db_path: str,
    log_level: str,
    log_file: str,
):
    """Ingest question documents from SOURCE_ROOT into the catalog."""

    config = IngestConfig(
        source_root=source_root,
        documents=list(documents) or None,
        manifest_path=manifest,
        category_override=category,
        block_size=block_size,
        default_difficulty=Difficulty(default_difficulty),
        infer_difficulty=infer_difficulty,
        publish_on_import=not unpublished,
        workers=workers,
        read_timeout=timeout,
        dry_run=dry_run,
        db_path=db_path,
        log_level=log_level,
        log_file=log_file,
    )

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Question Bank v{__version__}[/]\n"
            f"[dim]{'Dry run' if dry_run else 'Ingesting'}: {source_root}[/]",
            border_style="cyan",
        )
    )

    try:
        engine = IngestEngine(config)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task("Ingesting documents...", total=None)
            summary = engine.run()
    except (OSError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    _display_summary(summary)
    click.echo(summary.summary_line())

    if summary.has_fatal_errors:
        sys.exit(1)


@cli.command()
@click.option("--db", "db_path", default=None, help="SQLite database path")
def verify(db_path: str):
    """List categories with their ranges and question counts."""
    db.init_db(db_path)
    categories = crud.list_categories(db_path)

    if not categories:
        console.print("[yellow]No categories found.[/]")
        return

    table = Table(title="Catalog", border_style="cyan")
    table.add_column("Category", style="bold")
    table.add_column("Range", justify="right")
    table.add_column("Questions", justify="right")

    total = 0
    for c in categories:
        total += c["question_count"]
        table.add_row(
            c["name"],
            f"{c['number_range_start']}-{c['number_range_end']}",
            str(c["question_count"]),
        )

    console.print(table)
    click.echo(f"Total: {total} questions in {len(categories)} categories")


@cli.command("add-category")
@click.argument("name")
@click.option("--start", default=None, type=int, help="First number of the range")
@click.option("--end", default=None, type=int, help="Last number of the range")
@click.option("--icon", default="fa-question-circle", help="Icon class")
@click.option("--color", default="#6c757d", help="Display color")
@click.option("--description", default=None, help="Category description")
@click.option("--db", "db_path", default=None, help="SQLite database path")
def add_category(
    name: str,
    start: int,
    end: int,
    icon: str,
    color: str,
    description: str,
    db_path: str,
):
    """Create a category, optionally with an explicit number range."""
    db.init_db(db_path)
    try:
        category = crud.add_category(
            name, start=start, end=end, icon=icon, color=color,
            description=description, db_path=db_path,
        )
    except (RangeConflict, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    click.echo(
        f"Created {category.name!r} with range "
        f"{category.number_range_start}-{category.number_range_end}"
    )


@cli.command()
@click.argument("question_id", type=int)
@click.option("--unpublish", is_flag=True, default=False, help="Hide the question")
@click.option("--db", "db_path", default=None, help="SQLite database path")
def publish(question_id: int, unpublish: bool, db_path: str):
    """Publish (or unpublish) a question."""
    db.init_db(db_path)
    try:
        crud.set_published(question_id, not unpublish, db_path)
    except NotFound as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)
    click.echo(
        f"Question {question_id} {'unpublished' if unpublish else 'published'}"
    )


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
@click.option("--db", "db_path", default=None, help="SQLite database path")
def serve(host: str, port: int, debug: bool, db_path: str):
    """Start the HTTP server for favorites and progress."""
    from .server import run_server

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Question Bank API[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug, db_path=db_path)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_summary(summary: IngestSummary):
    """Display run counts, validation and issues as rich tables."""
    console.print()

    table = Table(
        title="Dry Run Summary" if summary.dry_run else "Ingestion Summary",
        border_style="cyan",
    )
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Documents", str(summary.documents))
    table.add_row("Parsed", str(summary.parsed))
    table.add_row("New", str(summary.new))
    table.add_row("Updated", str(summary.updated))
    table.add_row("Unchanged", str(summary.unchanged))
    table.add_row("Skipped", str(summary.skipped))
    table.add_row(
        "Errors",
        f"[red]{summary.errors}[/]" if summary.errors else "0",
    )
    console.print(table)

    validation = summary.validation
    if validation.missing_numbers or validation.duplicate_numbers:
        gaps = Table(title="Number Sequence", border_style="yellow")
        gaps.add_column("Document", style="bold")
        gaps.add_column("Missing")
        gaps.add_column("Duplicate")
        for document_id in sorted(
            set(validation.missing_numbers) | set(validation.duplicate_numbers)
        ):
            gaps.add_row(
                document_id,
                _format_numbers(validation.missing_numbers.get(document_id, [])),
                _format_numbers(validation.duplicate_numbers.get(document_id, [])),
            )
        console.print(gaps)

    if summary.issues:
        issues = Table(title="Issues", border_style="red")
        issues.add_column("Location", style="bold")
        issues.add_column("Title")
        issues.add_column("Kind")
        issues.add_column("Message")
        issues.add_column("Fatal", justify="center")
        for issue in summary.issues:
            location = issue.document_id
            if issue.line:
                location = f"{location}:{issue.line}"
            issues.add_row(
                location,
                issue.title,
                issue.kind,
                issue.message,
                "[red]✗[/]" if issue.fatal else "[yellow]⚠[/]",
            )
        console.print(issues)

    console.print()


def _format_numbers(numbers: list[int]) -> str:
    if len(numbers) > 10:
        shown = ", ".join(str(n) for n in numbers[:10])
        return f"{shown}, … (+{len(numbers) - 10})"
    return ", ".join(str(n) for n in numbers)


# ─── Entry point (for python -m qbank.cli) ────────────────────────────────────


if __name__ == "__main__":
    cli()
