"""
Tests for QR payload parsing and the region-by-region resolver.
"""
import asyncio
import threading
import time

from conftest import make_png
from scangrade.grading.qr_scanner import (
    MAX_SCAN_SIDE,
    SCAN_REGIONS,
    STUDENT_ONLY,
    STUDENT_QUESTION,
    Identification,
    QRResolver,
    encode_student_code,
    parse_student_code,
)

STUDENT_CODE = '{"v":2,"type":"student","s":"S-104"}'
QUESTION_CODE = '{"v":1,"s":"S-104","q":"Q3"}'


class TestParseStudentCode:

    def test_student_only(self):
        ident = parse_student_code(STUDENT_CODE)
        assert ident == Identification("S-104", None, STUDENT_ONLY)

    def test_student_and_question(self):
        ident = parse_student_code(QUESTION_CODE)
        assert ident == Identification("S-104", "Q3", STUDENT_QUESTION)

    def test_foreign_payloads(self):
        assert parse_student_code("https://example.com") is None
        assert parse_student_code("[1, 2]") is None
        assert parse_student_code('{"v":1,"s":"S-104"}') is None
        assert parse_student_code('{"v":3,"s":"S-104"}') is None
        assert parse_student_code('{"v":2,"type":"student"}') is None

    def test_encode_matches_parse(self):
        assert parse_student_code(encode_student_code("S-1")) == Identification("S-1")
        assert parse_student_code(encode_student_code("S-1", "Q2")).question_id == "Q2"

    def test_identification_dict(self):
        ident = Identification("S-104", "Q3", STUDENT_QUESTION)
        assert Identification.from_dict(ident.to_dict()) == ident
        assert Identification.from_dict({}) is None


class TestScanRegions:

    def test_corners_before_edges_before_full_page(self):
        assert [r.name for r in SCAN_REGIONS] == [
            "top-left", "top-right", "bottom-left", "bottom-right",
            "left-edge", "top-edge", "full",
        ]

    def test_region_boxes(self):
        boxes = {r.name: r.box(1200, 1500) for r in SCAN_REGIONS}
        assert boxes["top-left"] == (0, 0, 300, 300)
        assert boxes["bottom-right"] == (900, 1200, 1200, 1500)
        assert boxes["left-edge"] == (0, 0, 150, 1500)
        assert boxes["top-edge"] == (0, 0, 1200, 150)
        assert boxes["full"] == (0, 0, 1200, 1500)

    def test_small_page_corners_scale_down(self):
        top_left = SCAN_REGIONS[0]
        assert top_left.box(600, 300) == (0, 0, 200, 100)


class TestQRResolver:

    def test_stops_at_first_region_with_a_code(self):
        seen = []

        def decoder(img):
            seen.append(img.size)
            return [STUDENT_CODE]

        resolver = QRResolver(decoder=decoder)
        ident = asyncio.run(resolver.resolve(make_png(900, 900)))
        assert ident.student_id == "S-104"
        assert seen == [(300, 300)]

    def test_falls_back_to_full_page(self):
        seen = []

        def decoder(img):
            seen.append(img.size)
            return [QUESTION_CODE] if img.size == (900, 900) else []

        resolver = QRResolver(decoder=decoder)
        ident = asyncio.run(resolver.resolve(make_png(900, 900)))
        assert ident.question_id == "Q3"
        assert len(seen) == len(SCAN_REGIONS)
        assert seen[-1] == (900, 900)

    def test_ignores_unrecognized_payloads(self):
        resolver = QRResolver(decoder=lambda img: ["not ours"])
        assert asyncio.run(resolver.resolve(make_png())) is None

    def test_timeout_means_no_identification(self):
        release = threading.Event()

        def slow_decoder(img):
            release.wait(5)
            return [STUDENT_CODE]

        resolver = QRResolver(decoder=slow_decoder, timeout=0.05)

        async def scenario():
            try:
                return await resolver.resolve(make_png())
            finally:
                release.set()

        assert asyncio.run(scenario()) is None

    def test_timed_out_scan_stops_after_the_current_region(self):
        release = threading.Event()
        seen = []

        def slow_decoder(img):
            seen.append(img.size)
            release.wait(5)
            return []

        resolver = QRResolver(decoder=slow_decoder, timeout=0.05)

        async def scenario():
            try:
                return await resolver.resolve(make_png())
            finally:
                release.set()

        assert asyncio.run(scenario()) is None
        assert len(seen) == 1

    def test_past_deadline_scans_nothing(self):
        seen = []
        resolver = QRResolver(decoder=lambda img: seen.append(img) or [STUDENT_CODE])
        assert resolver.scan(make_png(), deadline=time.monotonic() - 1) is None
        assert seen == []

    def test_large_pages_are_scaled_down(self):
        seen = []

        def decoder(img):
            seen.append(img.size)
            return []

        resolver = QRResolver(decoder=decoder)
        assert resolver.scan(make_png(4000, 3000)) is None
        assert seen[-1] == (MAX_SCAN_SIDE, 1500)
        assert seen[0] == (300, 300)

    def test_decoder_error_means_no_identification(self):
        def broken(img):
            raise RuntimeError("zbar crashed")

        resolver = QRResolver(decoder=broken)
        assert asyncio.run(resolver.resolve(make_png())) is None

    def test_unreadable_image(self):
        resolver = QRResolver(decoder=lambda img: [STUDENT_CODE])
        assert asyncio.run(resolver.resolve(b"not an image")) is None

    def test_no_decoder_available(self, monkeypatch):
        monkeypatch.setattr("scangrade.grading.qr_scanner.PYZBAR_AVAILABLE", False)
        resolver = QRResolver()
        assert resolver.decoder is None
        assert asyncio.run(resolver.resolve(make_png())) is None
