"""Scan-to-grade: turn photographed student work into bounded, reviewable grades."""

__version__ = "0.1.0"
