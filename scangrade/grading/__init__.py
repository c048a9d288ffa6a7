"""Grading: identification, strategies, adjudication and normalization."""

from .outcomes import GradingOutcome, NormalizedGrade, OutcomeTag, RubricScore
from .grader import (
    ClaudeGradingOracle,
    GradingExecutor,
    GradingMode,
    GradingOracle,
    GradingRequest,
    OracleResponse,
    StrategyResults,
    manual_outcome,
)
from .adjudicator import AdjudicationDecision, Comparison, SelectionMethod
from .normalization import GradePolicy, calculate_grade, load_grade_policy, normalize_outcome
from .qr_scanner import Identification, QRResolver, parse_student_code

__all__ = [
    "GradingOutcome",
    "NormalizedGrade",
    "OutcomeTag",
    "RubricScore",
    "ClaudeGradingOracle",
    "GradingExecutor",
    "GradingMode",
    "GradingOracle",
    "GradingRequest",
    "OracleResponse",
    "StrategyResults",
    "manual_outcome",
    "AdjudicationDecision",
    "Comparison",
    "SelectionMethod",
    "GradePolicy",
    "calculate_grade",
    "load_grade_policy",
    "normalize_outcome",
    "Identification",
    "QRResolver",
    "parse_student_code",
]
