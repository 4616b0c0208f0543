"""Profile completeness, document validity and eligibility evaluation."""

from .completeness import CompletenessCalculator, compute_completeness
from .documents import DocumentVerificationTracker
from .evaluator import EligibilityEvaluator

__all__ = [
    "CompletenessCalculator",
    "compute_completeness",
    "DocumentVerificationTracker",
    "EligibilityEvaluator",
]
