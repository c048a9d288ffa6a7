"""
Tests for the scans-folder watcher.
"""
import asyncio

from watchdog.events import FileCreatedEvent

from conftest import FakeExtractor, make_png
from scangrade.grading import scanner
from scangrade.grading.qr_scanner import QRResolver, encode_student_code
from scangrade.grading.scanner import ScanHandler, ScanWatcher, process_scan_file, session_key_for


def _scan_file(tmp_path, name="quiz-ada.png"):
    path = tmp_path / name
    path.write_bytes(make_png())
    return path


def _qr_resolver(student="S-1"):
    payload = encode_student_code(student)
    return QRResolver(decoder=lambda img: [payload], timeout=1.0)


class TestProcessScanFile:

    def test_identified_scan_is_graded_and_saved(self, build, tmp_path, store):
        pipeline = build(resolver=_qr_resolver())
        result = asyncio.run(process_scan_file(pipeline, _scan_file(tmp_path)))

        assert result["status"] == "saved"
        assert result["student"] == "S-1"
        assert result["grade"] == 90
        assert result["key"] == "scan-quiz-ada"
        assert store.slots == {}

    def test_unidentified_scan_waits_for_a_teacher(self, build, tmp_path, store):
        pipeline = build()
        result = asyncio.run(process_scan_file(pipeline, _scan_file(tmp_path)))

        assert result["status"] == "needs-student"
        assert "scan-quiz-ada" in store.slots

        session = asyncio.run(pipeline.resume("scan-quiz-ada"))
        assert session.state.value == "choosing-strategy"

    def test_blank_unidentified_scan_is_dropped(self, build, tmp_path, store):
        pipeline = build(extractor=FakeExtractor(default=""))
        result = asyncio.run(process_scan_file(pipeline, _scan_file(tmp_path)))

        assert result["status"] == "blank-unidentified"
        assert store.slots == {}

    def test_blank_identified_scan_saves_the_floor(self, build, tmp_path):
        pipeline = build(extractor=FakeExtractor(default=""), resolver=_qr_resolver())
        result = asyncio.run(process_scan_file(pipeline, _scan_file(tmp_path)))

        assert result["status"] == "saved"
        assert result["grade"] == 55


class TestScanWatcher:

    def test_errors_become_failed_results(self, build, tmp_path):
        results = []
        watcher = ScanWatcher(build(), on_result=results.append)
        bad = tmp_path / "broken.png"
        bad.write_bytes(b"not an image")

        result = asyncio.run(watcher.process(bad))
        assert result["status"] == "failed"
        assert results == [result]

    def test_session_key(self, tmp_path):
        assert session_key_for(tmp_path / "period3 q1.jpg") == "scan-period3 q1"


class TestScanHandler:

    def test_only_supported_files_are_reported(self, tmp_path, monkeypatch):
        monkeypatch.setattr(scanner.time, "sleep", lambda seconds: None)
        seen = []
        handler = ScanHandler(seen.append)

        for name in ("scan.jpg", ".scan.jpg.tmp", "notes.txt", "scan.pdf"):
            handler.on_created(FileCreatedEvent(str(tmp_path / name)))

        assert [p.name for p in seen] == ["scan.jpg", "scan.pdf"]
