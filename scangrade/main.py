"""Main CLI entry point for the scan-to-grade pipeline."""

import asyncio
from pathlib import Path

import click

from .config import (
    DEFAULT_SESSION_KEY,
    GENERATED_FOLDER,
    POLICY_FILE,
    SCANS_FOLDER,
    SESSIONS_FOLDER,
    ConfigurationError,
    validate_config,
)
from .database import Gradebook, init_db
from .errors import GradingFailure, ScanGradeError
from .grading.grader import GradingMode
from .grading.normalization import GradePolicy, calculate_grade, load_grade_policy, save_grade_policy
from .grading.outcomes import OutcomeTag
from .session import ScanState


def _require_api():
    try:
        for issue in validate_config(require_api_key=True):
            click.echo(f"  Warning: {issue}", err=True)
    except ConfigurationError as e:
        raise click.ClickException(str(e))


def _pipeline():
    from .pipeline import ScanPipeline
    return ScanPipeline.from_config()


def _show_outcomes(session):
    for tag, outcome in session.outcomes.items():
        level = f", level {outcome.proficiency_level}" if outcome.proficiency_level is not None else ""
        click.echo(f"  {tag.value}: suggested {outcome.suggested_grade}{level}")
        if outcome.justification:
            click.echo(f"    {outcome.justification}")
        for m in outcome.misconceptions[:3]:
            click.echo(f"    - {m}")
    for tag, failure in session.failures.items():
        click.echo(click.style(f"  {tag.value} failed: {failure.message}", fg="red"))


async def _review_readings(pipeline, session, batch):
    """Ask the teacher whether each page was read correctly."""
    for page in batch.pages:
        if page.is_blank or page.failed:
            continue
        click.echo(f"\n  Page {page.page_number} reads as:\n    {page.text[:300]}")
        approved = click.confirm("  Is this reading correct?", default=True)
        await pipeline.record_interpretations(session, [(page.text, approved)], context=f"page {page.page_number}")


async def _review_misconceptions(pipeline, session):
    outcome = session.selected_outcome
    if outcome is None or not outcome.misconceptions:
        return
    decisions = {}
    for m in outcome.misconceptions:
        decisions[m] = click.confirm(f"  Confirm misconception '{m}'?", default=True)
    await pipeline.record_misconceptions(session, outcome.tag, decisions)


async def _finish(pipeline, session, choose=None, decline=False, override=None, report=False, review=False):
    """Carry a graded session through adjudication, normalization and saving."""
    if session.state is ScanState.ADJUDICATING:
        click.echo(click.style("The grading results disagree; a choice is required.", fg="yellow"))
        _show_outcomes(session)
        if choose is None and not decline:
            choose = click.prompt(
                "Keep which result?",
                type=click.Choice([t.value for t in session.outcomes] + ["decline"]),
            )
            if choose == "decline":
                choose, decline = None, True
        decision = await pipeline.adjudicate(session, choice=choose, declined=decline)
        click.echo(f"Kept the {decision.selected_tag.value} result ({decision.method.value}, {decision.delta} points apart)")
    elif choose:
        await pipeline.adjudicate(session, choice=choose)

    grade = await pipeline.normalize(session, override=override)

    if not session.student_id:
        code = click.prompt("Student code")
        await pipeline.select_student(session, code)

    if grade.has_work and not grade.overridden:
        await pipeline.confirm_grade(session)
    if review:
        await _review_misconceptions(pipeline, session)

    question = session.current_question_id
    record_id = await pipeline.save(session)
    if question:
        click.echo(f"Question {question}:")
    color = "green" if grade.final_grade >= 85 else "yellow" if grade.final_grade >= 70 else "red"
    click.echo(f"Final grade: {click.style(str(grade.final_grade), fg=color, bold=True)} (record {record_id})")

    if report:
        from .grading.feedback import GradeReportGenerator
        path = GradeReportGenerator().generate_report(record_id)
        if path:
            click.echo(f"Report PDF: {path}")
    return record_id


@click.group()
def cli():
    """Scan-to-grade CLI."""
    pass


@cli.command()
@click.option("--grade-floor", type=int, default=None, help="Grade when no work is detected")
@click.option("--effort-floor", type=int, default=None, help="Minimum grade when work is present")
def init(grade_floor, effort_floor):
    """Initialize the database and grade policy."""
    click.echo("Initializing scan-to-grade...")

    # Validate config
    for issue in validate_config(require_api_key=False):
        click.echo(f"  Warning: {issue}", err=True)

    init_db()
    click.echo("Database initialized.")

    policy = load_grade_policy()
    if grade_floor is not None or effort_floor is not None or not POLICY_FILE.exists():
        try:
            policy = GradePolicy(
                grade_floor if grade_floor is not None else policy.grade_floor,
                effort_floor if effort_floor is not None else policy.grade_floor_with_effort,
            )
        except ValueError as e:
            raise click.BadParameter(str(e))
        save_grade_policy(policy)
    click.echo(f"Grade policy: floor {policy.grade_floor}, with effort {policy.grade_floor_with_effort}")

    click.echo(f"\nScans folder: {SCANS_FOLDER}")
    click.echo(f"Sessions: {SESSIONS_FOLDER}")
    click.echo(f"Generated PDFs: {GENERATED_FOLDER}")


@cli.command()
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--mode", "-m", type=click.Choice([m.value for m in GradingMode]), default=GradingMode.AI.value)
@click.option("--guide", "-g", type=click.Path(exists=True, dir_okay=False, path_type=Path), help="Answer guide image")
@click.option("--score", type=float, default=None, help="Score for manual mode")
@click.option("--possible", type=float, default=100, help="Points possible for manual mode")
@click.option("--student", "-s", type=str, default=None, help="Student code (skips QR lookup)")
@click.option("--key", default=DEFAULT_SESSION_KEY, help="Session slot")
@click.option("--choose", type=click.Choice([OutcomeTag.AI.value, OutcomeTag.TEACHER_GUIDED.value]), default=None)
@click.option("--decline", is_flag=True, help="Let the tie-break pick on a major difference")
@click.option("--override", type=int, default=None, help="Teacher grade (may be 100), used for every question")
@click.option("--report", is_flag=True, help="Write a grade report PDF")
@click.option("--question", "-q", "questions", multiple=True, help="Question id to grade (repeatable)")
@click.option("--review", is_flag=True, help="Confirm the OCR reading and misconceptions")
def scan(files, mode, guide, score, possible, student, key, choose, decline, override, report, questions, review):
    """Grade scanned student work (images or PDFs, one submission)."""
    from .extraction import load_submission
    from .extraction.images import load_pages

    if mode != GradingMode.MANUAL.value:
        _require_api()
    init_db()

    async def run():
        pipeline = _pipeline()
        session = pipeline.start(key)
        for page in load_submission(files):
            pipeline.capture(session, page)
        click.echo(f"Captured {len(session.pages)} page(s)")

        if student:
            await pipeline.select_student(session, student)
        else:
            identification = await pipeline.identify(session)
            if identification:
                click.echo(f"Identified student {identification.student_id}")
            else:
                click.echo("No student code found.")
        if questions:
            await pipeline.select_questions(session, questions)

        batch = await pipeline.extract(session)
        for page in batch.pages:
            flag = " (blank)" if page.is_blank else " (OCR failed)" if page.failed else ""
            click.echo(f"  Page {page.page_number}: {page.char_count} chars{flag}")

        if not batch.has_work:
            click.echo("No student work detected.")
            await _finish(pipeline, session, report=report)
            return

        if review:
            await _review_readings(pipeline, session, batch)

        reference = load_pages(guide)[0] if guide else None
        several = len(session.selected_question_ids) > 1
        while session.state is not ScanState.SAVED:
            if several:
                click.echo(f"\nGrading question {session.current_question_id}")
            manual = score
            if mode == GradingMode.MANUAL.value and (manual is None or several):
                manual = click.prompt("Score", type=float)
            await pipeline.grade(session, mode, reference_image=reference, manual_score=manual, possible=possible)
            _show_outcomes(session)
            await _finish(pipeline, session, choose, decline, override, report, review)

    try:
        asyncio.run(run())
    except GradingFailure as e:
        raise click.ClickException(f"{e.message} Run 'scangrade resume --key {key}' to try again.")
    except ScanGradeError as e:
        raise click.ClickException(e.message)


@cli.command()
@click.option("--key", default=DEFAULT_SESSION_KEY, help="Session slot")
@click.option("--mode", "-m", type=click.Choice([m.value for m in GradingMode]), default=None)
@click.option("--score", type=float, default=None, help="Score for manual mode")
@click.option("--choose", type=click.Choice([OutcomeTag.AI.value, OutcomeTag.TEACHER_GUIDED.value]), default=None)
@click.option("--decline", is_flag=True)
@click.option("--override", type=int, default=None)
@click.option("--student", "-s", type=str, default=None, help="Student code")
@click.option("--review", is_flag=True, help="Confirm misconceptions before saving")
def resume(key, mode, score, choose, decline, override, student, review):
    """Resume an interrupted scan."""
    init_db()

    async def run():
        pipeline = _pipeline()
        session = await pipeline.resume(key)
        if session is None:
            click.echo("No scan to resume.")
            return

        click.echo(f"Resuming scan in state: {session.state.value}")
        if student:
            await pipeline.select_student(session, student)

        chosen = mode
        while session.state is not ScanState.SAVED:
            if session.state in (ScanState.CHOOSING_STRATEGY, ScanState.GRADING):
                if session.current_question_id:
                    click.echo(f"\nGrading question {session.current_question_id}")
                if chosen is None:
                    chosen = click.prompt(
                        "Grading mode", type=click.Choice([m.value for m in GradingMode]), default=GradingMode.AI.value
                    )
                if chosen != GradingMode.MANUAL.value:
                    _require_api()
                manual = score
                if chosen == GradingMode.MANUAL.value and (manual is None or session.multi_question_results):
                    manual = click.prompt("Score", type=float)
                await pipeline.grade(session, chosen, manual_score=manual)
                _show_outcomes(session)

            await _finish(pipeline, session, choose, decline, override, review=review)

    try:
        asyncio.run(run())
    except ScanGradeError as e:
        raise click.ClickException(e.message)


@cli.command()
@click.option("--key", default=DEFAULT_SESSION_KEY, help="Session slot")
def discard(key):
    """Throw away a saved scan session."""
    from .session import FileSessionStore, SessionRecoveryManager, SessionRepository

    manager = SessionRecoveryManager(SessionRepository(FileSessionStore()))
    asyncio.run(manager.discard(key))
    click.echo(f"Discarded session {key}.")


@cli.command()
def watch():
    """Watch the scans folder and grade new scans automatically."""
    from .grading.scanner import ScanWatcher

    _require_api()
    init_db()

    click.echo(f"Watching for scans in: {SCANS_FOLDER}")
    click.echo("Press Ctrl+C to stop.\n")

    def on_result(result):
        status = result["status"]
        if status == "saved":
            click.echo(f"{result['file']}: {result['student']} -> {result['grade']}")
        elif status == "failed":
            click.echo(click.style(f"{result['file']}: {result['error']}", fg="red"), err=True)
        else:
            click.echo(f"{result['file']}: {status} (scangrade resume --key {result['key']})")

    ScanWatcher(_pipeline(), on_result=on_result).run_forever()
    click.echo("\nStopped watching.")


@cli.command()
@click.option("--student", "-s", type=str, default=None, help="Student code")
@click.option("--limit", "-n", default=10, help="Number of results to show")
def history(student, limit):
    """View saved grades."""
    init_db()
    records = Gradebook().history(student, limit)

    if not records:
        click.echo("No saved grades yet.")
        return

    click.echo(f"\n=== Grade History (Last {len(records)}) ===\n")

    for r in records:
        if r.final_grade >= 85:
            status = click.style(str(r.final_grade), fg="green", bold=True)
        elif r.final_grade >= 70:
            status = click.style(str(r.final_grade), fg="yellow")
        else:
            status = click.style(str(r.final_grade), fg="red")

        source = r.source_tag or "blank"
        if r.overridden:
            source += ", override"
        click.echo(f"{r.student.name} ({r.student.code}){' Q' + r.question_id if r.question_id else ''}")
        click.echo(f"  Grade: {status} [{source}]")
        click.echo(f"  Date: {r.created_at.strftime('%Y-%m-%d %H:%M') if r.created_at else 'N/A'}")

        # Show misconceptions if any
        if r.misconceptions_json:
            click.echo(f"  Areas to review: {', '.join(r.misconceptions_json[:3])}")

        click.echo()


@cli.command()
def ledger():
    """Summarize teacher corrections and verifications."""
    from .ledger import misconception_summary, training_stats, verification_patterns

    init_db()

    stats = training_stats()
    click.echo("\n=== Grading Corrections ===")
    click.echo(f"Total: {stats['total_corrections']}")
    click.echo(f"Average adjustment: {stats['avg_adjustment']:+.1f}")
    click.echo(f"Dominant style: {stats['dominant_style'] or '-'}")

    patterns = verification_patterns()
    click.echo(f"\n=== Interpretations ({patterns['total']}) ===")
    for text, count in patterns["approved"]:
        click.echo(f"  approved x{count}: {text}")
    for text, count in patterns["rejected"]:
        click.echo(f"  rejected x{count}: {text}")

    click.echo("\n=== Misconceptions ===")
    for entry in misconception_summary():
        click.echo(f"  {entry['misconception']}: {entry['confirmed']} confirmed, {entry['dismissed']} dismissed")


@cli.group()
def roster():
    """Manage the student roster."""
    pass


@roster.command("add")
@click.argument("code")
@click.argument("name")
@click.option("--class", "class_id", default=None, help="Class id")
def roster_add(code, name, class_id):
    """Add or update a student."""
    init_db()
    try:
        student = Gradebook().add_student(code, name, class_id)
    except ScanGradeError as e:
        raise click.ClickException(e.message)
    click.echo(f"Saved {student.name} ({student.code})")


@roster.command("list")
@click.option("--class", "class_id", default=None, help="Class id")
def roster_list(class_id):
    """List students."""
    init_db()
    students = Gradebook().list_students(class_id)
    if not students:
        click.echo("No students on the roster.")
        return
    for s in students:
        click.echo(f"{s.code:<12} {s.name}{'  [' + s.class_id + ']' if s.class_id else ''}")


@cli.command()
@click.option("--class", "class_id", default=None, help="Only this class")
@click.option("--question", "-q", "questions", multiple=True, help="Question id (repeatable)")
def labels(class_id, questions):
    """Print QR code labels for the roster."""
    from .pdf.generator import LabelSheetGenerator

    init_db()
    students = Gradebook().list_students(class_id)
    path = LabelSheetGenerator().generate_labels(students, questions or (None,))
    if not path:
        click.echo("No students on the roster.")
        return
    click.echo(f"Labels PDF: {path}")


@cli.command("calc-grade")
@click.option("--percentage", "-p", type=float, default=None)
@click.option("--level", "-l", type=click.IntRange(0, 4), default=None)
@click.option("--no-work", is_flag=True)
def calc_grade(percentage, level, no_work):
    """Show the grade the normalization rules produce."""
    policy = load_grade_policy()
    grade = calculate_grade(not no_work, percentage, level, policy)
    click.echo(grade)


if __name__ == "__main__":
    cli()
