"""
Tests for page loading and per-page text extraction.
"""
import asyncio

import pytest

from conftest import FakeExtractor, WORK_TEXT, make_png
from scangrade.errors import InputError
from scangrade.extraction import ExtractionBatch, PageImage, extract_pages, load_pages, load_submission
from scangrade.extraction.extractor import FAILED_PAGE_MARKER
from scangrade.extraction.images import page_from_bytes


def _pages(count):
    return [PageImage(n, make_png(), "image/png") for n in range(1, count + 1)]


class TestPageLoading:

    def test_load_png(self, tmp_path):
        path = tmp_path / "scan.png"
        path.write_bytes(make_png())
        pages = load_pages(path)
        assert len(pages) == 1
        assert pages[0].page_number == 1
        assert pages[0].media_type == "image/png"

    def test_missing_file(self, tmp_path):
        with pytest.raises(InputError):
            load_pages(tmp_path / "nope.png")

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("not an image")
        with pytest.raises(InputError):
            load_pages(path)

    def test_empty_bytes(self):
        with pytest.raises(InputError, match="No image was captured"):
            page_from_bytes(b"")

    def test_garbage_bytes(self):
        with pytest.raises(InputError):
            page_from_bytes(b"definitely not an image")

    def test_submission_numbers_pages_consecutively(self, tmp_path):
        paths = []
        for name in ("a.png", "b.png", "c.png"):
            path = tmp_path / name
            path.write_bytes(make_png())
            paths.append(path)
        pages = load_submission(paths)
        assert [p.page_number for p in pages] == [1, 2, 3]

    def test_data_url(self, png_bytes):
        page = PageImage(1, png_bytes, "image/png")
        restored = PageImage.from_data_url(page.to_data_url(), page_number=2)
        assert restored.data == png_bytes
        assert restored.media_type == "image/png"
        assert restored.page_number == 2


class TestExtractPages:

    def test_one_failed_page_does_not_block_others(self):
        extractor = FakeExtractor({2: RuntimeError("vision API down")})
        batch = asyncio.run(extract_pages(_pages(3), extractor))

        assert [p.page_number for p in batch.pages] == [1, 2, 3]
        assert batch.failed_pages == [2]
        failed = batch.pages[1]
        assert failed.text == FAILED_PAGE_MARKER.format(page=2)
        assert not failed.is_blank
        assert batch.pages[0].text == WORK_TEXT
        assert batch.pages[2].text == WORK_TEXT

    def test_failed_page_still_counts_as_work(self):
        extractor = FakeExtractor({1: RuntimeError("boom")})
        batch = asyncio.run(extract_pages(_pages(1), extractor))
        assert batch.has_work
        assert batch.gradable_text == "[OCR FAILED FOR PAGE 1]"

    def test_blank_pages_are_excluded_from_gradable_text(self):
        extractor = FakeExtractor({2: "Name:\nDate:\n"})
        batch = asyncio.run(extract_pages(_pages(2), extractor))

        assert batch.pages[1].is_blank
        assert [p.page_number for p in batch.gradable_pages] == [1]
        # A single gradable page is sent without page markers
        assert batch.gradable_text == WORK_TEXT
        assert "--- PAGE 1 ---" in batch.combined_text
        assert "--- PAGE 2 ---" in batch.combined_text

    def test_all_blank(self):
        extractor = FakeExtractor(default="")
        batch = asyncio.run(extract_pages(_pages(2), extractor))
        assert not batch.has_work
        assert batch.gradable_text == ""

    def test_char_count_is_meaningful_length(self):
        batch = asyncio.run(extract_pages(_pages(1), FakeExtractor()))
        assert batch.pages[0].char_count == 150

    def test_batch_dict_round_trip(self):
        batch = asyncio.run(extract_pages(_pages(2), FakeExtractor({2: ""})))
        restored = ExtractionBatch.from_dict(batch.to_dict())
        assert restored.pages == batch.pages
        assert ExtractionBatch.from_dict(None) is None
