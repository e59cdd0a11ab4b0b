"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run without errors and produce output.
They don't validate correctness deeply - just that commands work.

Every test runs the CLI in a subprocess against its own SQLite file.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest tests/smoke/test_cli_commands.py -v -m smoke
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

from quizkit import __version__
from quizkit.db import build_engine, create_quiz, create_session_factory, init_db
from quizkit.db.models import Question, QuestionAttempt, QuizAttempt, QuizSlot
from quizkit.grading import update_sumgrades

# Mark all tests in this module as smoke tests
pytestmark = pytest.mark.smoke

# Project root
PROJECT_ROOT = Path(__file__).parent.parent.parent


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'quizkit.db'}"


def run_cli_command(command: str, database_url: str, timeout: int = 30) -> tuple[int, str, str]:
    """
    Run a CLI command and return exit code, stdout, stderr.

    Args:
        command: The command to run (after 'python -m quizkit.cli.main')
        database_url: SQLAlchemy URL the CLI should use
        timeout: Maximum time to wait

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    env = dict(os.environ)
    env.update(
        DATABASE_URL=database_url,
        LOG_FILE="",
        LOG_LEVEL="WARNING",
        GRADEBOOK_URL="",
        DRY_RUN="false",
        COLUMNS="200",
        PYTHONIOENCODING="utf-8",
    )
    result = subprocess.run(
        [sys.executable, "-m", "quizkit.cli.main", *command.split()],
        cwd=PROJECT_ROOT,
        env=env,
        capture_output=True,
        text=True,
        encoding="utf-8",
        timeout=timeout,
    )

    return result.returncode, result.stdout, result.stderr


def seed_quiz(database_url: str) -> int:
    """One quiz, two true/false slots, one finished attempt with a stale fraction."""
    engine = build_engine(database_url)
    init_db(engine)
    session = create_session_factory(engine)()
    try:
        quiz = create_quiz(session, "Smoke quiz", questions_per_page=1, grade=10.0)
        for slot in (1, 2):
            question = Question(qtype="truefalse", name=f"TF{slot}", answer={"correct": True})
            session.add(question)
            session.flush()
            session.add(QuizSlot(quiz_id=quiz.id, slot=slot, page=slot, question_id=question.id, max_mark=1.0))
        session.flush()
        update_sumgrades(session, quiz)

        attempt = QuizAttempt(quiz_id=quiz.id, user_id=1, state="finished", sum_grades=1.0)
        session.add(attempt)
        session.flush()
        for slot in session.query(QuizSlot).filter_by(quiz_id=quiz.id):
            session.add(
                QuestionAttempt(
                    attempt_id=attempt.id,
                    slot=slot.slot,
                    question_id=slot.question_id,
                    max_mark=1.0,
                    fraction=0.0 if slot.slot == 1 else 1.0,
                    response={"answer": True},
                )
            )
        session.commit()
        return quiz.id
    finally:
        session.close()
        engine.dispose()


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self, database_url):
        """Main help should display without errors."""
        code, stdout, stderr = run_cli_command("--help", database_url)

        assert code == 0, f"Help failed: {stderr}"
        for group in ("db", "structure", "stats", "regrade", "info", "version"):
            assert group in stdout

    @pytest.mark.parametrize("group", ["db", "structure", "stats", "regrade"])
    def test_group_help(self, database_url, group):
        code, stdout, stderr = run_cli_command(f"{group} --help", database_url)

        assert code == 0, f"{group} help failed: {stderr}"


class TestCLIInfo:
    def test_version(self, database_url):
        code, stdout, stderr = run_cli_command("version", database_url)

        assert code == 0
        assert __version__ in stdout

    def test_info_shows_settings(self, database_url):
        code, stdout, stderr = run_cli_command("info", database_url)

        assert code == 0, f"Info failed: {stderr}"
        assert "Database URL" in stdout
        assert "Statistics cache TTL" in stdout


class TestCLIDatabase:
    def test_db_init(self, database_url):
        code, stdout, stderr = run_cli_command("db init", database_url)

        assert code == 0, f"db init failed: {stderr}"
        assert "Database initialized" in stdout

    def test_unknown_quiz_fails_gracefully(self, database_url):
        run_cli_command("db init", database_url)

        code, stdout, stderr = run_cli_command("structure show 42", database_url)

        assert code == 1
        assert "does not exist" in stdout
        assert "Traceback" not in stderr


class TestCLIWorkflow:
    def test_structure_show(self, database_url):
        quiz_id = seed_quiz(database_url)

        code, stdout, stderr = run_cli_command(f"structure show {quiz_id}", database_url)

        assert code == 0, f"structure show failed: {stderr}"
        assert "TF1" in stdout and "TF2" in stdout
        assert "attempts exist" in stdout

    def test_repaginate_is_refused_once_attempted(self, database_url):
        quiz_id = seed_quiz(database_url)

        code, stdout, stderr = run_cli_command(f"structure repaginate {quiz_id} --per-page 2", database_url)

        assert code == 1
        assert "can no longer be edited" in stdout

    def test_stats_show(self, database_url):
        quiz_id = seed_quiz(database_url)

        code, stdout, stderr = run_cli_command(f"stats show {quiz_id} --which first", database_url)

        assert code == 0, f"stats show failed: {stderr}"
        assert "Median" in stdout
        assert "Discrimination" in stdout

    def test_regrade_dry_run_then_pending(self, database_url):
        quiz_id = seed_quiz(database_url)

        code, stdout, stderr = run_cli_command(f"regrade run {quiz_id} --dry-run", database_url)
        assert code == 0, f"dry run failed: {stderr}"
        assert "Dry run: 1/1 attempts, 1 changed slots" in stdout

        code, stdout, stderr = run_cli_command(f"regrade pending {quiz_id} --run", database_url)
        assert code == 0, f"pending regrade failed: {stderr}"
        assert "1 attempts need regrading" in stdout
        assert "Regrade: 1/1 attempts" in stdout

        code, stdout, stderr = run_cli_command(f"regrade pending {quiz_id}", database_url)
        assert "0 attempts need regrading" in stdout
