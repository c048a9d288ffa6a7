#!/usr/bin/env python3
"""
Diagnostic script for scangrade.
Run this to check if everything is set up correctly.
"""

import sys
import os
from pathlib import Path

def check(name, condition, fix=""):
    if condition:
        print(f"  [OK] {name}")
        return True
    else:
        print(f"  [FAIL] {name}")
        if fix:
            print(f"         Fix: {fix}")
        return False

def main():
    print("=" * 50)
    print("  scangrade Diagnostic Check")
    print("=" * 50)
    print()

    script_dir = Path(__file__).parent.resolve()
    os.chdir(script_dir)

    all_ok = True

    # Python version
    print("Python:")
    py_version = sys.version_info
    all_ok &= check(f"Python {py_version.major}.{py_version.minor}.{py_version.micro}",
                    py_version >= (3, 10),
                    "Need Python 3.10+")
    print()

    # Project structure
    print("Project Structure:")
    all_ok &= check("scangrade package exists", (script_dir / "scangrade").is_dir())
    all_ok &= check("pyproject.toml exists", (script_dir / "pyproject.toml").is_file())
    all_ok &= check(".env exists", (script_dir / ".env").is_file(),
                    "Copy .env.example to .env and add your API key")
    print()

    # Module imports
    print("Module Imports:")
    sys.path.insert(0, str(script_dir))

    try:
        from scangrade.config import ANTHROPIC_API_KEY, DATABASE_PATH, POLICY_FILE
        all_ok &= check("scangrade.config imports OK", True)
        all_ok &= check("API key configured", bool(ANTHROPIC_API_KEY),
                        "Set ANTHROPIC_API_KEY in .env file")
        check(f"Grade policy at {POLICY_FILE}", POLICY_FILE.exists(),
              "Run: scangrade init (defaults are used until then)")
    except ImportError as e:
        all_ok &= check(f"scangrade.config import FAILED: {e}", False)

    try:
        from scangrade.database import init_db
        all_ok &= check("scangrade.database imports OK", True)
    except ImportError as e:
        all_ok &= check(f"scangrade.database import FAILED: {e}", False,
                        "pip install -e .")

    try:
        from scangrade.grading.qr_scanner import is_qr_scanning_available
        # Not fatal: without zbar every scan falls back to manual student selection
        check("QR scanning available (libzbar0)", is_qr_scanning_available(),
              "Install the zbar system library (apt install libzbar0 / brew install zbar)")
    except ImportError as e:
        all_ok &= check(f"scangrade.grading import FAILED: {e}", False)

    try:
        import fitz  # noqa: F401
        all_ok &= check("PyMuPDF imports OK", True)
    except ImportError:
        all_ok &= check("PyMuPDF import FAILED", False, "pip install PyMuPDF")

    print()
    print("=" * 50)
    if all_ok:
        print("  All checks passed! Try running:")
        print("    scangrade init")
        print("    scangrade scan path/to/scan.jpg")
    else:
        print("  Some checks failed. Fix the issues above.")
    print("=" * 50)

if __name__ == "__main__":
    main()
