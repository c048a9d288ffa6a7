"""
Tests for blank page detection.
"""
from scangrade.extraction.blank_page import detect_blank_page, normalize_page_text


class TestNormalizePageText:

    def test_empty_and_none(self):
        assert normalize_page_text(None) == ""
        assert normalize_page_text("") == ""

    def test_strips_worksheet_header(self):
        text = "Name:\nDate:\nPeriod 3\nQuestion 1\n______\n"
        assert normalize_page_text(text) == ""

    def test_collapses_whitespace(self):
        assert normalize_page_text("x  +\n\n  y") == "x + y"

    def test_keeps_student_work(self):
        text = "Question 1\n2x + 3 = 13\n2x = 10\nx = 5"
        assert normalize_page_text(text) == "2x + 3 = 13 2x = 10 x = 5"


class TestDetectBlankPage:

    def test_nineteen_characters_is_blank(self):
        result = detect_blank_page("a" * 19)
        assert result.is_blank
        assert result.normalized_length == 19
        assert result.detection_reason == "TEXT_LENGTH"

    def test_twenty_characters_is_not_blank(self):
        result = detect_blank_page("a" * 20)
        assert not result.is_blank
        assert result.detection_reason == "NOT_BLANK"

    def test_boilerplate_only_is_blank(self):
        text = "Name:\nDate:\nPage 1\nShow your work\nAnswer:\n-----\n"
        assert detect_blank_page(text).is_blank

    def test_real_work_is_not_blank(self):
        text = "Question 1\n2x + 3 = 13\n2x = 10\nx = 5"
        result = detect_blank_page(text)
        assert not result.is_blank
        assert result.normalized_length == 25

    def test_custom_threshold(self):
        assert not detect_blank_page("x = 5", threshold=5).is_blank
        assert detect_blank_page("x = 5", threshold=6).is_blank
