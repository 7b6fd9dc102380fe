"""
CLI Interface
=============
Command-line interface for the exam archive.

Usage:
    python -m archive serve [--host 0.0.0.0] [--port 5000] [--static]
    python -m archive init-db
    python -m archive export-static [--out export/api]
    python -m archive print <course_id> -o course.pdf [--year 2023 --tag X]
    python -m archive stats
    python -m archive courses
"""

from __future__ import annotations

import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from . import __version__
from .config import ArchiveConfig, setup_logging
from .crud import ArchiveService
from .database import Database
from .errors import ArchiveError
from .storage import UploadStorage

console = Console()


def _service(config: ArchiveConfig) -> ArchiveService:
    service = ArchiveService(Database(config.db_path), UploadStorage(config.upload_dir))
    service.storage.init()
    service.db.init()
    return service


@click.group()
@click.version_option(version=__version__, prog_name="exam-archive")
@click.option("--db", "db_path", default=None, help="SQLite database file")
@click.option("--uploads", "upload_dir", default=None, help="Upload directory")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option("--log-file", default=None, help="Path to log file")
@click.pass_context
def cli(ctx, db_path, upload_dir, log_level, log_file):
    """Exam Archive: courses, exam questions and their grouped solutions."""
    config = ArchiveConfig.from_env(
        db_path=db_path,
        upload_dir=upload_dir,
        log_level=log_level,
        log_file=log_file,
    )
    setup_logging(config.log_level, config.log_file)
    ctx.obj = config


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
@click.option(
    "--static", "static_mode",
    is_flag=True,
    default=False,
    help="Read-only mode: reject all mutations",
)
@click.pass_obj
def serve(config: ArchiveConfig, host: str, port: int, debug: bool, static_mode: bool):
    """Start the HTTP API server."""
    from .server import run_server

    if static_mode:
        config.static_mode = True

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Exam Archive v{__version__}[/]\n"
            f"[dim]Starting on {host}:{port}"
            f"{' (read-only)' if config.static_mode else ''}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug, config=config)


@cli.command("init-db")
@click.pass_obj
def init_db(config: ArchiveConfig):
    """Create or upgrade the database schema."""
    database = Database(config.db_path)
    applied = database.init()
    if applied:
        console.print(
            f"[green]✓[/] Applied migrations {', '.join(f'v{v}' for v in applied)} "
            f"to {config.db_path}"
        )
    else:
        console.print(f"[green]✓[/] Schema already current (v{database.schema_version()})")


@cli.command("export-static")
@click.option(
    "--out", "-o",
    default=None,
    help="Export directory (defaults to ARCHIVE_EXPORT_DIR / export/api)",
)
@click.pass_obj
def export_static_cmd(config: ArchiveConfig, out: str):
    """Write every GET endpoint as a static .json file."""
    from .export import export_static

    export_dir = out or config.export_dir
    service = _service(config)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Exporting...", total=None)
        files = export_static(
            service,
            export_dir,
            progress_callback=lambda endpoint: progress.update(
                task, description=f"Exported {endpoint}.json"
            ),
        )

    console.print(f"[green]✓[/] {len(files)} files written to {export_dir}")


@cli.command("print")
@click.argument("course_id", type=int)
@click.option("--output", "-o", default=None, help="PDF path (default: <code>.pdf)")
@click.option("--year", "years", multiple=True, help="Only these years (repeatable)")
@click.option("--type", "types", multiple=True, help="Only these types (repeatable)")
@click.option("--tag", "tags", multiple=True, help="Require this tag (repeatable)")
@click.option(
    "--sort-by",
    default="question_number",
    type=click.Choice(["question_number", "year", "difficulty", "created_at", "title"]),
    help="Sort column",
)
@click.option("--order", default="asc", type=click.Choice(["asc", "desc"]))
@click.option("--no-solutions", is_flag=True, default=False, help="Questions only")
@click.pass_obj
def print_cmd(config, course_id, output, years, types, tags, sort_by, order, no_solutions):
    """Render a course as a printable PDF."""
    from .printing import build_print_document, write_pdf

    service = _service(config)
    try:
        document = build_print_document(
            service,
            course_id,
            years=years,
            types=types,
            tags=tags,
            sort_by=sort_by,
            order=order,
            include_solutions=not no_solutions,
        )
    except ArchiveError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    path = output or f"{document.course.get('code') or course_id}.pdf"
    write_pdf(document, service.storage, path)
    console.print(
        f"[green]✓[/] {len(document.questions)} questions, "
        f"{document.image_count} images → {path}"
    )


@cli.command()
@click.pass_obj
def stats(config: ArchiveConfig):
    """Show archive totals."""
    data = _service(config).get_stats()

    table = Table(title="Archive Stats", border_style="cyan")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Courses", str(data["courses"]))
    table.add_row("Questions", str(data["questions"]))
    table.add_row("Solved", f"[green]{data['solved']}[/]")
    table.add_row(
        "Unsolved",
        f"[yellow]{data['unsolved']}[/]" if data["unsolved"] else "0",
    )
    console.print()
    console.print(table)
    console.print()


@cli.command()
@click.pass_obj
def courses(config: ArchiveConfig):
    """List courses with their question counts."""
    service = _service(config)

    table = Table(title="Courses", border_style="cyan")
    table.add_column("ID", justify="right")
    table.add_column("Code", style="bold")
    table.add_column("Title")
    table.add_column("Questions", justify="right")
    table.add_column("Order", justify="right")

    for course in service.list_courses():
        count = len(service.list_questions(course["id"]))
        table.add_row(
            str(course["id"]),
            course["code"],
            course["title"],
            str(count),
            str(course.get("sort_order") or 0),
        )

    console.print()
    console.print(table)
    console.print()


# ─── Entry point (for python -m archive.cli) ─────────────────────────────────


if __name__ == "__main__":
    cli()
