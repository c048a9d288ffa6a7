"""Configuration management for the scan-to-grade pipeline."""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


# --- Logging Setup ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("scangrade")

# Base paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("SCANGRADE_DATA_DIR", BASE_DIR / "data"))

# Database (gradebook, roster and feedback ledger)
DATABASE_PATH = Path(os.getenv("DATABASE_PATH", DATA_DIR / "scangrade.db"))

# Folders
SCANS_FOLDER = Path(os.getenv("SCANS_FOLDER", DATA_DIR / "scans"))
SESSIONS_FOLDER = Path(os.getenv("SESSIONS_FOLDER", DATA_DIR / "sessions"))
GENERATED_FOLDER = Path(os.getenv("GENERATED_FOLDER", DATA_DIR / "generated"))

# Per-user grade floor policy ({"gradeFloor": .., "gradeFloorWithEffort": ..})
POLICY_FILE = Path(os.getenv("POLICY_FILE", DATA_DIR / "grade_policy.json"))

# Ensure folders exist
SCANS_FOLDER.mkdir(parents=True, exist_ok=True)
SESSIONS_FOLDER.mkdir(parents=True, exist_ok=True)
GENERATED_FOLDER.mkdir(parents=True, exist_ok=True)

# API Keys
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")

# Claude model settings
CLAUDE_MODEL = os.getenv("CLAUDE_MODEL", "claude-sonnet-4-20250514")
CLAUDE_VISION_MODEL = os.getenv("CLAUDE_VISION_MODEL", "claude-sonnet-4-20250514")

# Grade policy fallbacks (used when POLICY_FILE is missing or incomplete)
DEFAULT_GRADE_FLOOR = int(os.getenv("DEFAULT_GRADE_FLOOR", "55"))
DEFAULT_GRADE_FLOOR_WITH_EFFORT = int(os.getenv("DEFAULT_GRADE_FLOOR_WITH_EFFORT", "65"))

# Extraction settings
BLANK_PAGE_THRESHOLD = 20  # Meaningful characters below this = blank page

# Identification settings
IDENTIFICATION_TIMEOUT = 3.0  # seconds; no code found in time = manual selection

# Grading settings
GRADING_TIMEOUT = float(os.getenv("GRADING_TIMEOUT", "120"))  # seconds per oracle call
MAJOR_DIFFERENCE_THRESHOLD = 10  # Points between strategies that force adjudication
MAX_CALCULATED_GRADE = 95  # 100 is reserved for explicit overrides

# API retry settings
API_MAX_RETRIES = 1  # A second failure surfaces to the teacher
API_RETRY_DELAY = 2  # seconds

# Session recovery
SESSION_MAX_AGE_HOURS = 4
DEFAULT_SESSION_KEY = os.getenv("SCANGRADE_SESSION_KEY", "default")

# Feedback ledger
STRICTNESS_TOLERANCE = 5  # Corrections within +/- this are "as expected"


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(require_api_key: bool = True) -> list[str]:
    """Validate configuration and return list of issues.

    Args:
        require_api_key: If True, treat missing API key as an error rather than a warning.

    Returns:
        List of warning strings for non-critical issues.

    Raises:
        ConfigurationError: If require_api_key is True and the key is missing.
    """
    issues = []

    if not ANTHROPIC_API_KEY:
        msg = "ANTHROPIC_API_KEY not set in environment"
        if require_api_key:
            raise ConfigurationError(
                f"{msg}. Copy .env.example to .env and add your API key."
            )
        issues.append(msg)

    if not SESSIONS_FOLDER.exists():
        issues.append(f"Sessions folder does not exist: {SESSIONS_FOLDER}")

    if not SCANS_FOLDER.exists():
        issues.append(f"Scans folder does not exist: {SCANS_FOLDER}")

    if not POLICY_FILE.exists():
        issues.append(
            f"No grade policy at {POLICY_FILE}; using floors "
            f"{DEFAULT_GRADE_FLOOR}/{DEFAULT_GRADE_FLOOR_WITH_EFFORT}"
        )

    return issues


def get_database_url() -> str:
    """Get SQLAlchemy database URL."""
    return f"sqlite:///{DATABASE_PATH}"
