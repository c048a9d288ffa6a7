"""QR code scanning for automatic student identification.

Printed worksheets carry a small QR code, usually in a corner, encoding either
the student alone or the student plus the question:

    {"v": 2, "type": "student", "s": "<student id>"}
    {"v": 1, "s": "<student id>", "q": "<question id>"}

The resolver crops likely regions first (corners, then edges) and only then
tries the whole page, returning on the first code it can parse. A scan that
finds nothing within the timeout simply means the teacher picks the student.
"""

import asyncio
import io
import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from PIL import Image

from ..config import IDENTIFICATION_TIMEOUT

logger = logging.getLogger("scangrade.identification")

# Phone photos are decoded at this size at most
MAX_SCAN_SIDE = 2000

# Try to import pyzbar, but don't fail if zbar library isn't installed
PYZBAR_AVAILABLE = False
pyzbar = None

try:
    from pyzbar import pyzbar as _pyzbar
    pyzbar = _pyzbar
    PYZBAR_AVAILABLE = True
except (ImportError, OSError):
    # pyzbar requires libzbar0 system library
    # If not installed, identification always falls back to manual selection
    pass

STUDENT_ONLY = "student-only"
STUDENT_QUESTION = "student-question"

Decoder = Callable[[Image.Image], list[str]]


def is_qr_scanning_available() -> bool:
    """Check if QR scanning is available."""
    return PYZBAR_AVAILABLE


@dataclass(frozen=True)
class Identification:
    student_id: str
    question_id: Optional[str] = None
    kind: str = STUDENT_ONLY

    def to_dict(self) -> dict:
        return {"studentId": self.student_id, "questionId": self.question_id, "type": self.kind}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Identification"]:
        if not data or not data.get("studentId"):
            return None
        return cls(data["studentId"], data.get("questionId"), data.get("type", STUDENT_ONLY))


def parse_student_code(payload: str) -> Optional[Identification]:
    """Parse a decoded QR payload. Returns None for anything that isn't ours."""
    try:
        data = json.loads(payload)
    except (TypeError, ValueError):
        return None

    if not isinstance(data, dict) or not data.get("s"):
        return None

    # Version 2: student-only codes
    if data.get("v") == 2 and data.get("type") == "student":
        return Identification(str(data["s"]), None, STUDENT_ONLY)

    # Version 1: student + question codes
    if data.get("v") == 1 and data.get("q"):
        return Identification(str(data["s"]), str(data["q"]), STUDENT_QUESTION)

    return None


def encode_student_code(student_id: str, question_id: Optional[str] = None) -> str:
    """Build the QR payload printed on a worksheet."""
    if question_id:
        return json.dumps({"v": 1, "s": student_id, "q": question_id}, separators=(",", ":"))
    return json.dumps({"v": 2, "type": "student", "s": student_id}, separators=(",", ":"))


@dataclass(frozen=True)
class Region:
    """A named crop box, computed from the page size."""
    name: str
    box: Callable[[int, int], tuple[int, int, int, int]]

    def crop(self, img: Image.Image) -> Image.Image:
        width, height = img.size
        left, top, right, bottom = self.box(width, height)
        return img.crop((max(0, left), max(0, top), min(width, right), min(height, bottom)))


def _corner(w: int, h: int) -> tuple[int, int]:
    return int(min(300, w / 3)), int(min(300, h / 3))


# Scanned in order; the first region with a readable code wins.
SCAN_REGIONS: list[Region] = [
    Region("top-left", lambda w, h: (0, 0, *_corner(w, h))),
    Region("top-right", lambda w, h: (max(0, w - _corner(w, h)[0]), 0, w, _corner(w, h)[1])),
    Region("bottom-left", lambda w, h: (0, max(0, h - _corner(w, h)[1]), _corner(w, h)[0], h)),
    Region("bottom-right", lambda w, h: (max(0, w - _corner(w, h)[0]), max(0, h - _corner(w, h)[1]), w, h)),
    Region("left-edge", lambda w, h: (0, 0, int(min(150, w / 4)), h)),
    Region("top-edge", lambda w, h: (0, 0, w, int(min(150, h / 4)))),
    Region("full", lambda w, h: (0, 0, w, h)),
]


def _pyzbar_decode(img: Image.Image) -> list[str]:
    return [
        obj.data.decode("utf-8", errors="replace")
        for obj in pyzbar.decode(img)
        if obj.type == "QRCODE"
    ]


class QRResolver:
    """Find a student code on a captured page, within a hard time budget."""

    def __init__(
        self,
        decoder: Optional[Decoder] = None,
        timeout: float = IDENTIFICATION_TIMEOUT,
        regions: Sequence[Region] = SCAN_REGIONS,
    ):
        if decoder is None and PYZBAR_AVAILABLE:
            decoder = _pyzbar_decode
        self.decoder = decoder
        self.timeout = timeout
        self.regions = list(regions)

    def scan(self, image_bytes: bytes, deadline: Optional[float] = None) -> Optional[Identification]:
        """Blocking scan over the regions in order.

        `deadline` is a `time.monotonic()` value; once it passes, the scan stops
        before the next region.
        """
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
        img = img.convert("L")
        if max(img.size) > MAX_SCAN_SIDE:
            img.thumbnail((MAX_SCAN_SIDE, MAX_SCAN_SIDE))

        for region in self.regions:
            if deadline is not None and time.monotonic() > deadline:
                logger.debug("QR scan out of time before the %s region", region.name)
                return None
            for payload in self.decoder(region.crop(img)):
                identification = parse_student_code(payload)
                if identification:
                    logger.info(
                        "QR code found in %s region: student %s%s",
                        region.name,
                        identification.student_id,
                        f", question {identification.question_id}" if identification.question_id else "",
                    )
                    return identification
                logger.debug("Ignoring unrecognized QR payload in %s region", region.name)

        return None

    async def resolve(self, image_bytes: bytes) -> Optional[Identification]:
        """Scan off the event loop. Returns None when nothing is found in time."""
        if self.decoder is None:
            logger.info("QR scanning not available (install libzbar0); manual selection required")
            return None

        deadline = time.monotonic() + self.timeout
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.scan, image_bytes, deadline), self.timeout)
        except asyncio.TimeoutError:
            logger.info("QR scan timed out after %.1fs - proceeding without QR", self.timeout)
            return None
        except Exception as e:
            logger.warning("QR scan failed: %s", e)
            return None
