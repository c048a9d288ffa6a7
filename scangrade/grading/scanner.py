"""Folder watcher for scanned student work.

Every image or PDF dropped into the scans folder runs through the pipeline
with the autonomous strategy. Scans whose student code was read are graded
and saved; the rest stop before grading and stay checkpointed under
`scan-<file name>` until a teacher resumes them and picks the student.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileCreatedEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..config import SCANS_FOLDER
from ..errors import ScanGradeError
from ..extraction.images import SUPPORTED_EXTENSIONS, load_pages
from .grader import GradingMode

logger = logging.getLogger("scangrade.pipeline")


def session_key_for(path: Path) -> str:
    return f"scan-{Path(path).stem}"


async def process_scan_file(pipeline, path: Path, key: Optional[str] = None) -> dict:
    """Run one scanned file through the pipeline as far as it can go unattended."""
    path = Path(path)
    key = key or session_key_for(path)

    session = pipeline.start(key)
    for page in load_pages(path):
        pipeline.capture(session, page)

    await pipeline.identify(session)
    batch = await pipeline.extract(session)

    if session.needs_manual_selection:
        if not batch.has_work:
            logger.warning("%s: blank and unidentified, nothing to resume", path.name)
            await pipeline.abandon(session)
            return {"file": path.name, "key": key, "status": "blank-unidentified"}
        logger.info("%s: no student code found, waiting for a teacher (resume %s)", path.name, key)
        return {"file": path.name, "key": key, "status": "needs-student"}

    if batch.has_work:
        await pipeline.grade(session, GradingMode.AI)
        if session.adjudication is None:
            return {"file": path.name, "key": key, "status": "needs-adjudication"}

    grade = await pipeline.normalize(session)
    record_id = await pipeline.save(session)
    return {
        "file": path.name,
        "key": key,
        "status": "saved",
        "student": session.student_id,
        "grade": grade.final_grade,
        "record_id": record_id,
    }


class ScanHandler(FileSystemEventHandler):
    """Handle new scan files in the watched folder."""

    def __init__(self, on_scan_detected: Callable[[Path], None]):
        """
        Initialize the handler.

        Args:
            on_scan_detected: Called with the path of each new scan file
        """
        self.on_scan_detected = on_scan_detected

    def on_created(self, event: FileCreatedEvent):
        """Handle file creation event."""
        if event.is_directory:
            return

        file_path = Path(event.src_path)

        # Skip partial/temporary files and anything we can't grade
        if file_path.name.startswith(".") or file_path.suffix.lower() not in SUPPORTED_EXTENSIONS:
            return

        # Wait a moment for file to be fully written
        time.sleep(1)

        logger.info("Scan detected: %s", file_path.name)
        self.on_scan_detected(file_path)


class ScanWatcher:
    """Watch a folder for new scans and process them one at a time."""

    def __init__(self, pipeline, on_result: Optional[Callable[[dict], None]] = None):
        self.pipeline = pipeline
        self.on_result = on_result

    async def process(self, path: Path) -> dict:
        try:
            result = await process_scan_file(self.pipeline, path)
        except ScanGradeError as e:
            logger.error("Could not process %s: %s", Path(path).name, e)
            result = {"file": Path(path).name, "status": "failed", "error": e.message}

        if self.on_result:
            self.on_result(result)
        return result

    async def watch(self, folder: Optional[Path] = None):
        """Watch until cancelled. Files are processed in arrival order."""
        folder = Path(folder or SCANS_FOLDER)
        folder.mkdir(parents=True, exist_ok=True)

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        handler = ScanHandler(lambda path: loop.call_soon_threadsafe(queue.put_nowait, path))

        observer = Observer()
        observer.schedule(handler, str(folder), recursive=False)
        observer.start()
        logger.info("Watching for scans in: %s", folder)

        try:
            while True:
                path = await queue.get()
                await self.process(path)
        finally:
            observer.stop()
            observer.join()

    def run_forever(self, folder: Optional[Path] = None):
        """Run the watcher until interrupted."""
        try:
            asyncio.run(self.watch(folder))
        except KeyboardInterrupt:
            logger.info("Stopped watching")
