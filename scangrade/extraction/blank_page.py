"""Blank page detection for extracted page text.

Strips worksheet boilerplate (name/date headers, page numbers, bare question
labels, ruled lines) from OCR text, collapses whitespace, and compares what is
left against a character threshold. A page whose meaningful content is shorter
than the threshold is blank and never goes to a grading strategy.
"""

import re
from dataclasses import dataclass
from typing import Optional

from ..config import BLANK_PAGE_THRESHOLD

_FLAGS = re.IGNORECASE | re.MULTILINE

# Patterns that are considered boilerplate, not student work
BOILERPLATE_PATTERNS = [
    re.compile(r"^name\s*[:.]?\s*", _FLAGS),
    re.compile(r"^date\s*[:.]?\s*", _FLAGS),
    re.compile(r"^period\s*[:.]?\s*", _FLAGS),
    re.compile(r"^class\s*[:.]?\s*", _FLAGS),
    re.compile(r"^page\s*\d+", _FLAGS),
    re.compile(r"^side\s*[ab]\b", _FLAGS),
    re.compile(r"^#?\s*\d+\s*$", re.MULTILINE),  # standalone page/question numbers
    re.compile(r"^question\s*\d*\s*[:.]?\s*$", _FLAGS),
    re.compile(r"^q\d+\s*[:.]?\s*$", _FLAGS),
    re.compile(r"^problem\s*\d*\s*[:.]?\s*$", _FLAGS),
    re.compile(r"^directions?\s*[:.]?\s*", _FLAGS),
    re.compile(r"^instructions?\s*[:.]?\s*", _FLAGS),
    re.compile(r"^show\s+your\s+work", _FLAGS),
    re.compile(r"^answer\s*[:.]?\s*$", _FLAGS),
    re.compile(r"^work\s*[:.]?\s*$", _FLAGS),
    re.compile(r"^\s*[-–—_]{3,}\s*$", re.MULTILINE),  # horizontal rules
]

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class BlankPageResult:
    is_blank: bool
    normalized_length: int
    normalized_text: str

    @property
    def detection_reason(self) -> str:
        return "TEXT_LENGTH" if self.is_blank else "NOT_BLANK"


def normalize_page_text(raw_text: Optional[str]) -> str:
    """Remove boilerplate and collapse whitespace."""
    if not raw_text:
        return ""

    text = raw_text
    for pattern in BOILERPLATE_PATTERNS:
        text = pattern.sub("", text)

    return _WHITESPACE.sub(" ", text).strip()


def detect_blank_page(raw_text: Optional[str], threshold: int = BLANK_PAGE_THRESHOLD) -> BlankPageResult:
    """Decide whether OCR text represents a blank / no-response page.

    Args:
        raw_text: The OCR-extracted text for a single page.
        threshold: Minimum meaningful character count.
    """
    normalized = normalize_page_text(raw_text)
    return BlankPageResult(
        is_blank=len(normalized) < threshold,
        normalized_length=len(normalized),
        normalized_text=normalized,
    )
