"""Feedback ledger: teacher confirmations, overrides and verifications."""

from .ledger import FeedbackLedger, strictness_for
from .reports import training_stats, verification_patterns, misconception_summary

__all__ = [
    "FeedbackLedger",
    "strictness_for",
    "training_stats",
    "verification_patterns",
    "misconception_summary",
]
