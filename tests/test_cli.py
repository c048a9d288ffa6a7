"""
Tests for the click CLI commands that need no API key.
"""
import pytest
from click.testing import CliRunner

from conftest import FakeOracle, make_png, response
from scangrade import main
from scangrade.database import (
    CorrectionAction,
    CorrectionRecord,
    Gradebook,
    MisconceptionDecision,
    MisconceptionFeedback,
    VerificationDecision,
    VerificationOutcome,
    get_session,
)
from scangrade.grading.grader import AUTONOMOUS
from scangrade.grading.normalization import GradePolicy


@pytest.fixture
def runner(db, monkeypatch):
    """CLI runner against the test database and default grade floors."""
    monkeypatch.setattr(main, "init_db", lambda: None)
    monkeypatch.setattr(main, "load_grade_policy", lambda: GradePolicy())
    return CliRunner()


class TestCalcGrade:

    def test_percentage(self, runner):
        result = runner.invoke(main.cli, ["calc-grade", "-p", "82"])
        assert result.exit_code == 0
        assert result.output.strip() == "90"

    def test_level(self, runner):
        result = runner.invoke(main.cli, ["calc-grade", "--level", "3"])
        assert result.output.strip() == "85"

    def test_no_work(self, runner):
        result = runner.invoke(main.cli, ["calc-grade", "--no-work", "-p", "100"])
        assert result.output.strip() == "55"

    def test_level_out_of_range(self, runner):
        result = runner.invoke(main.cli, ["calc-grade", "--level", "5"])
        assert result.exit_code != 0


class TestRoster:

    def test_add_then_list(self, runner):
        result = runner.invoke(main.cli, ["roster", "add", "S-7", "Cam Reyes", "--class", "period-2"])
        assert result.exit_code == 0
        assert "Saved Cam Reyes (S-7)" in result.output

        result = runner.invoke(main.cli, ["roster", "list"])
        assert "S-7" in result.output
        assert "[period-2]" in result.output

    def test_empty_roster(self, runner):
        result = runner.invoke(main.cli, ["roster", "list"])
        assert "No students on the roster." in result.output

    def test_history_empty(self, runner):
        result = runner.invoke(main.cli, ["history"])
        assert "No saved grades yet." in result.output


class TestScanWithoutKey:

    def test_scan_requires_api_key(self, runner, tmp_path, monkeypatch):
        monkeypatch.setattr("scangrade.config.ANTHROPIC_API_KEY", "")
        image = tmp_path / "scan.png"
        image.write_bytes(b"")
        result = runner.invoke(main.cli, ["scan", str(image)])
        assert result.exit_code != 0
        assert "ANTHROPIC_API_KEY" in result.output


class TestScanQuestions:

    def test_each_question_is_saved_with_feedback(self, runner, build, tmp_path, monkeypatch):
        oracle = FakeOracle({AUTONOMOUS: [response(82, misconceptions=["sign error"])]})
        pipeline = build(oracle)
        monkeypatch.setattr(main, "_pipeline", lambda: pipeline)
        monkeypatch.setattr(main, "_require_api", lambda: None)
        image = tmp_path / "scan.png"
        image.write_bytes(make_png())

        result = runner.invoke(
            main.cli,
            ["scan", str(image), "-s", "S-1", "-q", "Q1", "-q", "Q2", "--review"],
            input="y\nn\ny\n",
        )

        assert result.exit_code == 0, result.output
        assert "Question Q1:" in result.output
        assert "Question Q2:" in result.output
        assert [r.question_id for r in oracle.requests] == ["Q1", "Q2"]
        assert sorted(r.question_id for r in Gradebook().history("S-1")) == ["Q1", "Q2"]

        with get_session() as session:
            confirmations = session.query(CorrectionRecord).filter_by(action=CorrectionAction.CONFIRMED).count()
            decisions = [r.decision for r in session.query(MisconceptionFeedback).order_by(MisconceptionFeedback.id)]
            reading = session.query(VerificationDecision).one()
        assert confirmations == 2
        assert decisions == [MisconceptionDecision.DISMISSED, MisconceptionDecision.CONFIRMED]
        assert reading.decision is VerificationOutcome.APPROVED
        assert reading.context == "page 1"
