"""Loading captured page images from files and data URLs."""

import base64
import io
import logging
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from ..errors import InputError

logger = logging.getLogger("scangrade.extraction")

MAX_IMAGE_BYTES = 4_500_000
MAX_IMAGE_DIMENSION = 7500

IMAGE_MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}
# Formats the vision API cannot take directly; converted to JPEG on load.
CONVERTED_SUFFIXES = {".bmp", ".tif", ".tiff"}
SUPPORTED_EXTENSIONS = set(IMAGE_MEDIA_TYPES) | CONVERTED_SUFFIXES | {".pdf"}


@dataclass(frozen=True)
class PageImage:
    """One captured page of a submission."""
    page_number: int
    data: bytes
    media_type: str = "image/jpeg"

    def to_base64(self) -> str:
        return base64.standard_b64encode(self.data).decode("utf-8")

    def to_data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.to_base64()}"

    @classmethod
    def from_data_url(cls, data_url: str, page_number: int = 1) -> "PageImage":
        """Rebuild a page from a `data:` URL (or bare base64, assumed JPEG)."""
        media_type = "image/jpeg"
        payload = data_url
        if data_url.startswith("data:"):
            header, _, payload = data_url.partition(",")
            media_type = header[5:].split(";")[0] or media_type
        try:
            data = base64.standard_b64decode(payload)
        except (ValueError, TypeError) as e:
            raise InputError(f"Could not decode stored image: {e}")
        return cls(page_number=page_number, data=data, media_type=media_type)


def compress_image_to_limit(img, max_bytes=MAX_IMAGE_BYTES, max_dimension=MAX_IMAGE_DIMENSION) -> bytes:
    """Compress a PIL Image to fit within size and dimension limits, returns JPEG bytes."""
    # Convert to RGB if needed
    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")

    # First, resize if any dimension exceeds max
    width, height = img.size
    if width > max_dimension or height > max_dimension:
        scale = min(max_dimension / width, max_dimension / height)
        img = img.resize((int(width * scale), int(height * scale)), Image.LANCZOS)

    # Try different quality levels
    for quality in [85, 70, 55, 40, 25]:
        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=quality, optimize=True)
        if buffer.tell() <= max_bytes:
            return buffer.getvalue()

    # If still too large, resize further
    while True:
        width, height = img.size
        img = img.resize((max(1, int(width * 0.8)), max(1, int(height * 0.8))), Image.LANCZOS)
        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=40, optimize=True)
        if buffer.tell() <= max_bytes:
            return buffer.getvalue()


def page_from_bytes(data: bytes, page_number: int = 1, suffix: str = "") -> PageImage:
    """Validate raw image bytes and wrap them as a page.

    Raises:
        InputError: If the bytes are empty or not an image.
    """
    if not data:
        raise InputError("No image was captured.")

    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise InputError(f"Could not read image: {e}")

    media_type = IMAGE_MEDIA_TYPES.get(suffix.lower()) or Image.MIME.get(img.format or "")
    if len(data) > MAX_IMAGE_BYTES or media_type not in IMAGE_MEDIA_TYPES.values():
        return PageImage(page_number, compress_image_to_limit(img), "image/jpeg")

    return PageImage(page_number, data, media_type)


def _load_pdf_pages(path: Path) -> list[PageImage]:
    import fitz  # PyMuPDF

    try:
        doc = fitz.open(path)
    except (RuntimeError, ValueError) as e:
        raise InputError(f"Could not open PDF {path.name}: {e}")

    pages = []
    try:
        for index, page in enumerate(doc):
            # Render at 1.5x resolution (good balance of quality/size)
            pix = page.get_pixmap(matrix=fitz.Matrix(1.5, 1.5))
            img = Image.frombytes("RGB", [pix.width, pix.height], pix.samples)
            pages.append(PageImage(index + 1, compress_image_to_limit(img), "image/jpeg"))
    finally:
        doc.close()

    if not pages:
        raise InputError(f"PDF {path.name} has no pages.")
    return pages


def load_pages(path, first_page_number: int = 1) -> list[PageImage]:
    """Load one file as one or more pages. PDFs yield one page per PDF page."""
    path = Path(path)
    if not path.is_file():
        raise InputError(f"No image found at {path}")

    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise InputError(f"Unsupported file type: {suffix or path.name}")

    if suffix == ".pdf":
        pages = _load_pdf_pages(path)
        offset = first_page_number - 1
        return [PageImage(p.page_number + offset, p.data, p.media_type) for p in pages]

    return [page_from_bytes(path.read_bytes(), first_page_number, suffix)]


def load_submission(paths) -> list[PageImage]:
    """Load several files as consecutive pages of a single submission."""
    paths = list(paths)
    pages: list[PageImage] = []
    for path in paths:
        pages.extend(load_pages(path, first_page_number=len(pages) + 1))
    if not pages:
        raise InputError("No image was captured.")
    logger.debug("Loaded %d page(s) from %d file(s)", len(pages), len(paths))
    return pages
