"""Turn captured page images into plain text, one page at a time."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence

from anthropic import AsyncAnthropic

from ..config import ANTHROPIC_API_KEY, CLAUDE_VISION_MODEL, BLANK_PAGE_THRESHOLD
from .blank_page import detect_blank_page
from .images import PageImage

logger = logging.getLogger("scangrade.extraction")

FAILED_PAGE_MARKER = "[OCR FAILED FOR PAGE {page}]"

TRANSCRIPTION_PROMPT = """Transcribe ALL text visible on this scanned page of student work.

Rules:
1. Include handwritten work, printed question text, numbers, equations and labels.
2. Preserve line breaks. Write math in plain text (e.g. x^2 + 3x = 10, 3/4).
3. Do NOT solve, correct, summarize or comment on the work.
4. If the page has no writing at all, respond with an empty line.

Respond with the transcription only."""


class TextExtractor(Protocol):
    """The OCR service boundary: one page in, its text out."""

    async def extract_page(self, page: PageImage) -> str: ...


@dataclass(frozen=True)
class ExtractionResult:
    page_number: int
    text: str
    char_count: int
    is_blank: bool
    failed: bool = False

    def to_dict(self) -> dict:
        return {
            "pageNumber": self.page_number,
            "text": self.text,
            "charCount": self.char_count,
            "isBlank": self.is_blank,
            "failed": self.failed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExtractionResult":
        return cls(
            page_number=int(data.get("pageNumber", 1)),
            text=data.get("text", ""),
            char_count=int(data.get("charCount", 0)),
            is_blank=bool(data.get("isBlank", False)),
            failed=bool(data.get("failed", False)),
        )


def _combine(results: Sequence[ExtractionResult]) -> str:
    """Join pages, with page markers when there is more than one."""
    if len(results) == 1:
        return results[0].text
    return "\n\n".join(f"--- PAGE {r.page_number} ---\n{r.text}" for r in results)


@dataclass
class ExtractionBatch:
    """Per-page results for one submission."""
    pages: list[ExtractionResult] = field(default_factory=list)

    @property
    def combined_text(self) -> str:
        return _combine(self.pages) if self.pages else ""

    @property
    def gradable_pages(self) -> list[ExtractionResult]:
        return [p for p in self.pages if not p.is_blank]

    @property
    def gradable_text(self) -> str:
        gradable = self.gradable_pages
        return _combine(gradable) if gradable else ""

    @property
    def has_work(self) -> bool:
        return bool(self.gradable_pages)

    @property
    def failed_pages(self) -> list[int]:
        return [p.page_number for p in self.pages if p.failed]

    def to_dict(self) -> dict:
        return {"pages": [p.to_dict() for p in self.pages]}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["ExtractionBatch"]:
        if not data:
            return None
        return cls(pages=[ExtractionResult.from_dict(p) for p in data.get("pages", [])])


def build_result(page_number: int, text: Optional[str], threshold: int = BLANK_PAGE_THRESHOLD) -> ExtractionResult:
    blank = detect_blank_page(text, threshold)
    return ExtractionResult(
        page_number=page_number,
        text=(text or "").strip(),
        char_count=blank.normalized_length,
        is_blank=blank.is_blank,
    )


def failed_result(page_number: int) -> ExtractionResult:
    """Sentinel for a page whose extraction failed; it still goes on to grading."""
    marker = FAILED_PAGE_MARKER.format(page=page_number)
    return ExtractionResult(
        page_number=page_number,
        text=marker,
        char_count=len(marker),
        is_blank=False,
        failed=True,
    )


async def _extract_one(extractor: TextExtractor, page: PageImage, threshold: int) -> ExtractionResult:
    try:
        text = await extractor.extract_page(page)
    except Exception as e:
        logger.error("Page %d extraction failed: %s", page.page_number, e)
        return failed_result(page.page_number)

    result = build_result(page.page_number, text, threshold)
    logger.info(
        "Page %d: %d chars extracted (%d meaningful)%s",
        page.page_number, len(result.text), result.char_count,
        " - blank" if result.is_blank else "",
    )
    return result


async def extract_pages(
    pages: Sequence[PageImage],
    extractor: TextExtractor,
    threshold: int = BLANK_PAGE_THRESHOLD,
) -> ExtractionBatch:
    """Extract every page independently; one failed page never blocks the others."""
    start = time.monotonic()
    results = await asyncio.gather(*(_extract_one(extractor, p, threshold) for p in pages))
    batch = ExtractionBatch(pages=sorted(results, key=lambda r: r.page_number))
    logger.info(
        "Extraction complete: %d page(s), %d blank, %d failed in %.0fms",
        len(batch.pages),
        len(batch.pages) - len(batch.gradable_pages),
        len(batch.failed_pages),
        (time.monotonic() - start) * 1000,
    )
    return batch


class ClaudeTextExtractor:
    """Transcribe pages with Claude Vision."""

    def __init__(self, client: Optional[AsyncAnthropic] = None, model: str = CLAUDE_VISION_MODEL):
        self.client = client or AsyncAnthropic(api_key=ANTHROPIC_API_KEY)
        self.model = model

    async def extract_page(self, page: PageImage) -> str:
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=4000,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": page.media_type,
                                "data": page.to_base64(),
                            },
                        },
                        {"type": "text", "text": TRANSCRIPTION_PROMPT},
                    ],
                }
            ],
        )
        return "".join(block.text for block in response.content if block.type == "text").strip()
