"""
Typer CLI for quizkit.

Commands:
    quizkit db init                         - Create database tables
    quizkit structure show 12               - Show slots, pages and sections of quiz 12
    quizkit structure repaginate 12 -n 2    - Two questions per page
    quizkit stats show 12 --which first     - Statistics over first attempts
    quizkit regrade run 12 --dry-run        - Preview what a regrade would change
    quizkit regrade pending 12 --run        - Apply regrades flagged by a dry run
    quizkit info                            - Show configuration
    quizkit version                         - Show version

Usage:
    quizkit --help
    quizkit stats show 12 --student 7 --student 9 --recalculate
"""

from __future__ import annotations

import sys
from enum import Enum

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from quizkit import __version__
from quizkit.db import get_quiz, init_db, session_scope
from quizkit.exceptions import QuizError
from quizkit.grading import gradebook_from_settings
from quizkit.logging_config import configure_logging
from quizkit.progress import RichProgress
from quizkit.regrade import RegradeEngine, RegradeSummary
from quizkit.statistics import QuizStatisticsReport, WhichAttempts, using_attempts_string_id
from quizkit.structure import QuizStructure

app = typer.Typer(help="quizkit CLI: quiz structure, statistics and regrading", no_args_is_help=True)
console = Console()


class WhichOption(str, Enum):
    highest = "highest"
    average = "average"
    first = "first"
    last = "last"

    def to_policy(self) -> WhichAttempts:
        return WhichAttempts[self.name.upper()]


def _fail(error: Exception) -> None:
    rprint(f"[red]✗[/red] {error}")
    raise typer.Exit(code=1)


def _fmt(value: float | None, places: int = 2) -> str:
    return "-" if value is None else f"{value:.{places}f}"


# ========================================
# DATABASE COMMANDS
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Create all tables from the SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    init_db()
    rprint("[green]✓[/green] Database initialized!")


# ========================================
# STRUCTURE COMMANDS
# ========================================

structure_app = typer.Typer(help="Quiz layout: slots, pages and sections")
app.add_typer(structure_app, name="structure")


@structure_app.command("show")
def structure_show(quiz_id: int = typer.Argument(..., help="Quiz id")) -> None:
    """Show every slot with its page, number and section."""
    try:
        with session_scope() as session:
            structure = QuizStructure.load(session, quiz_id)

            table = Table(title=f"{structure.quiz.name} (quiz {quiz_id})")
            table.add_column("Slot", justify="right")
            table.add_column("Page", justify="right")
            table.add_column("#", justify="right")
            table.add_column("Question", style="cyan")
            table.add_column("Type", style="dim")
            table.add_column("Max mark", justify="right")
            table.add_column("Section", style="green")

            for slot in structure.get_slots():
                starts_section = slot.section is not None and slot.section.first_slot == slot.slot
                table.add_row(
                    str(slot.slot),
                    str(slot.page),
                    str(slot.displayed_number),
                    slot.question.name,
                    slot.question.qtype,
                    _fmt(slot.max_mark),
                    (slot.section.heading or "(untitled)") if starts_section else "",
                )
            console.print(table)

            editable = "[green]yes[/green]" if structure.can_be_edited() else "[yellow]no (attempts exist)[/yellow]"
            rprint(f"Sections: {structure.get_section_count()}  Editable: {editable}")
    except QuizError as e:
        _fail(e)


@structure_app.command("repaginate")
def structure_repaginate(
    quiz_id: int = typer.Argument(..., help="Quiz id"),
    per_page: int = typer.Option(1, "--per-page", "-n", help="Slots per page (0 = one page per section)"),
) -> None:
    """Lay out the quiz again with a fixed number of slots per page."""
    try:
        with session_scope() as session:
            structure = QuizStructure.load(session, quiz_id)
            slots = structure.repaginate(per_page)
            pages = max((slot.page for slot in slots), default=0)
        rprint(f"[green]✓[/green] Quiz {quiz_id}: {len(slots)} slots on {pages} pages")
    except QuizError as e:
        _fail(e)


# ========================================
# STATISTICS COMMANDS
# ========================================

stats_app = typer.Typer(help="Quiz and question statistics")
app.add_typer(stats_app, name="stats")


@stats_app.command("show")
def stats_show(
    quiz_id: int = typer.Argument(..., help="Quiz id"),
    which: WhichOption | None = typer.Option(None, "--which", "-w", help="Attempts to analyse (default: grade method)"),
    students: list[int] = typer.Option([], "--student", "-s", help="Restrict to these user ids"),
    recalculate: bool = typer.Option(False, "--recalculate", help="Ignore cached statistics"),
) -> None:
    """Show quiz statistics and per-question item analysis."""
    try:
        with session_scope() as session:
            report = QuizStatisticsReport(session, progress=RichProgress(console))
            result = report.get_statistics(
                quiz_id,
                which=which.to_policy() if which else None,
                group_students=students,
                recalculate=recalculate,
            )
            stats = result.quiz

            table = Table(title=f"Quiz {quiz_id} statistics ({using_attempts_string_id(stats.which_attempts)})")
            table.add_column("Statistic", style="cyan")
            table.add_column("Value", justify="right", style="green")
            for policy in WhichAttempts:
                prefix = using_attempts_string_id(policy).replace("attempts", "_attempts")
                table.add_row(f"{prefix} count", str(getattr(stats, f"{prefix}_count")))
                table.add_row(f"{prefix} average", _fmt(getattr(stats, f"{prefix}_avg")))
            table.add_row("Median", _fmt(stats.median))
            table.add_row("Standard deviation", _fmt(stats.standard_deviation))
            table.add_row("Skewness", _fmt(stats.skewness, 4))
            table.add_row("Kurtosis", _fmt(stats.kurtosis, 4))
            table.add_row("CIC", _fmt(stats.cic))
            table.add_row("Error ratio", _fmt(stats.error_ratio))
            table.add_row("Standard error", _fmt(stats.standard_error))
            console.print(table)

            if result.slots.slots:
                slot_table = Table(title="Questions")
                slot_table.add_column("Slot", justify="right")
                slot_table.add_column("s", justify="right")
                slot_table.add_column("Facility %", justify="right")
                slot_table.add_column("SD %", justify="right")
                slot_table.add_column("Discrimination", justify="right")
                for slot_stat in result.slots.slots:
                    slot_table.add_row(
                        str(slot_stat.slot),
                        str(slot_stat.s),
                        _fmt(None if slot_stat.facility is None else slot_stat.facility * 100),
                        _fmt(
                            None
                            if slot_stat.standard_deviation is None
                            else slot_stat.standard_deviation * 100
                        ),
                        _fmt(slot_stat.discrimination_index),
                    )
                console.print(slot_table)

            source = "cache" if result.from_cache else "fresh calculation"
            rprint(f"[dim]From {source}, calculated at {stats.time_modified or '-'}[/dim]")
    except QuizError as e:
        _fail(e)


# ========================================
# REGRADE COMMANDS
# ========================================

regrade_app = typer.Typer(help="Regrade recorded attempts")
app.add_typer(regrade_app, name="regrade")


def _print_summary(summary: RegradeSummary) -> None:
    mode = "Dry run" if summary.dry_run else "Regrade"
    rprint(
        f"[green]✓[/green] {mode}: {summary.regraded}/{summary.total} attempts, "
        f"{summary.records_written} changed slots"
    )
    for attempt_id, message in summary.failures:
        rprint(f"[red]✗[/red] Attempt {attempt_id}: {message}")
    if summary.gradebook_error:
        rprint(f"[yellow]⚠[/yellow] Gradebook not updated: {summary.gradebook_error}")


@regrade_app.command("run")
def regrade_run(
    quiz_id: int = typer.Argument(..., help="Quiz id"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Record changes without applying them"),
    students: list[int] = typer.Option([], "--student", "-s", help="Only these user ids"),
    attempts: list[int] = typer.Option([], "--attempt", "-a", help="Only these attempt ids"),
) -> None:
    """Regrade attempts (all, or a subset)."""
    dry_run = dry_run or get_settings().dry_run
    try:
        with session_scope() as session:
            quiz = get_quiz(session, quiz_id)
            engine = RegradeEngine(session, progress=RichProgress(console), gradebook=gradebook_from_settings())
            summary = engine.regrade_attempts(quiz, dry_run=dry_run, group_students=students, attempt_ids=attempts)
        _print_summary(summary)
        if summary.failures:
            raise typer.Exit(code=1)
    except QuizError as e:
        _fail(e)


@regrade_app.command("pending")
def regrade_pending(
    quiz_id: int = typer.Argument(..., help="Quiz id"),
    students: list[int] = typer.Option([], "--student", "-s", help="Only these user ids"),
    run: bool = typer.Option(False, "--run", help="Apply the pending regrades"),
) -> None:
    """Count (or apply) regrades flagged by an earlier dry run."""
    try:
        with session_scope() as session:
            quiz = get_quiz(session, quiz_id)
            engine = RegradeEngine(session, progress=RichProgress(console), gradebook=gradebook_from_settings())
            pending = engine.count_attempts_needing_regrade(quiz, students)
            rprint(f"Quiz {quiz_id}: {pending} attempts need regrading")
            summary = engine.regrade_attempts_needing_regrade(quiz, students) if run and pending else None
        if summary is not None:
            _print_summary(summary)
            if summary.failures:
                raise typer.Exit(code=1)
    except QuizError as e:
        _fail(e)


# ========================================
# INFO COMMANDS
# ========================================


@app.command("info")
def show_info() -> None:
    """Show configuration."""
    settings = get_settings()

    table = Table(title="quizkit Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Database URL", settings.database_url)
    table.add_row("Log Level", settings.log_level)
    table.add_row("Log File", settings.log_file or "-")
    table.add_row("Statistics cache TTL", f"{settings.statistics_cache_ttl}s")
    table.add_row("Gradebook", settings.gradebook_url or "Not set")
    table.add_row("DRY_RUN", str(settings.dry_run))

    console.print(table)


@app.command("version")
def show_version() -> None:
    """Show version information."""
    rprint(f"[bold]quizkit[/bold] v{__version__}")
    rprint("  Quiz structure, statistics and regrading")


def main() -> None:
    """Entry point for the CLI."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_file)
    logger.debug(f"quizkit {__version__} starting: {' '.join(sys.argv[1:])}")
    app()


if __name__ == "__main__":
    main()
