"""Text extraction: page loading, OCR and blank page detection."""

from .blank_page import detect_blank_page, BlankPageResult
from .images import PageImage, load_pages, load_submission
from .extractor import (
    ClaudeTextExtractor,
    ExtractionBatch,
    ExtractionResult,
    TextExtractor,
    extract_pages,
)

__all__ = [
    "detect_blank_page",
    "BlankPageResult",
    "PageImage",
    "load_pages",
    "load_submission",
    "ClaudeTextExtractor",
    "ExtractionBatch",
    "ExtractionResult",
    "TextExtractor",
    "extract_pages",
]
