"""
Shared test fixtures for scangrade.
Points the data directory at a temp folder before the package is imported.
Zero network calls: OCR, grading and QR decoding are all fakes.
"""
import asyncio
import io
import os
import tempfile

os.environ.setdefault("SCANGRADE_DATA_DIR", tempfile.mkdtemp(prefix="scangrade-tests-"))

import pytest
from PIL import Image

from scangrade.database import Gradebook, init_db
from scangrade.errors import FailureReason, GradingFailure
from scangrade.extraction import PageImage
from scangrade.grading.grader import GradingExecutor, OracleResponse
from scangrade.grading.normalization import GradePolicy
from scangrade.grading.qr_scanner import QRResolver
from scangrade.ledger import FeedbackLedger
from scangrade.pipeline import ScanPipeline
from scangrade.session import MemorySessionStore, SessionRecoveryManager, SessionRepository


def make_png(width=400, height=400, color="white") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


WORK_TEXT = ("2x + 3 = 13 so 2x = 10 and x = 5. " * 5)[:150]


class FakeExtractor:
    """Returns canned text per page number; an Exception value is raised."""

    def __init__(self, texts=None, default=WORK_TEXT):
        self.texts = texts or {}
        self.default = default
        self.calls = []

    async def extract_page(self, page):
        self.calls.append(page.page_number)
        value = self.texts.get(page.page_number, self.default)
        if isinstance(value, Exception):
            raise value
        return value


class FakeOracle:
    """Plays back responses per task. Each entry is an OracleResponse or an exception."""

    def __init__(self, responses=None, delay=0):
        self.responses = {task: list(items) for task, items in (responses or {}).items()}
        self.delay = delay
        self.requests = []

    def calls_for(self, task):
        return sum(1 for r in self.requests if r.task == task)

    async def grade(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        queue = self.responses.get(request.task) or [OracleResponse(raw_percentage=82.0, grade=82)]
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item


def response(grade, percentage=None, level=None, misconceptions=()):
    return OracleResponse(
        raw_percentage=float(grade if percentage is None else percentage),
        grade=grade,
        proficiency_level=level,
        misconceptions=tuple(misconceptions),
        justification=f"graded {grade}",
        raw_text=f'{{"grade": {grade}}}',
    )


def failure(reason=FailureReason.RATE_LIMITED):
    return GradingFailure(reason, "test")


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def page(png_bytes):
    return PageImage(1, png_bytes, "image/png")


@pytest.fixture
def db(tmp_path):
    """A fresh SQLite database for each test."""
    return init_db(f"sqlite:///{tmp_path / 'test.db'}")


@pytest.fixture
def policy():
    return GradePolicy(grade_floor=55, grade_floor_with_effort=65)


@pytest.fixture
def store():
    return MemorySessionStore()


@pytest.fixture
def recovery(store):
    return SessionRecoveryManager(SessionRepository(store))


@pytest.fixture
def no_qr_resolver():
    """Resolver whose decoder never finds anything."""
    return QRResolver(decoder=lambda img: [], timeout=1.0)


@pytest.fixture
def make_executor():
    def _make(oracle, timeout=5.0):
        return GradingExecutor(oracle, timeout=timeout, max_retries=1, retry_delay=0)
    return _make


@pytest.fixture
def roster(db):
    """A gradebook with one student, S-1."""
    gradebook = Gradebook()
    gradebook.add_student("S-1", "Ada Park", "period-3")
    return gradebook


@pytest.fixture
def build(roster, recovery, policy, no_qr_resolver, make_executor):
    """Factory for a pipeline wired to fakes and the test database."""
    def _build(oracle=None, extractor=None, resolver=None, recovery_manager=None):
        return ScanPipeline(
            extractor=extractor or FakeExtractor(),
            executor=make_executor(oracle or FakeOracle()),
            resolver=resolver or no_qr_resolver,
            recovery=recovery_manager or recovery,
            gradebook=roster,
            ledger=FeedbackLedger(),
            policy=policy,
        )
    return _build
