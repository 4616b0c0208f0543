"""Profile completeness scoring."""

import math
from typing import Any, Dict, List, Mapping, Optional, Sequence

from thiqax_engine.core.models import CompletenessReport, Profile
from thiqax_engine.utils.logging import get_logger

logger = get_logger(__name__)


def is_populated(value: Any) -> bool:
    """Whether a profile field counts as filled in."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


class CompletenessCalculator:
    """Scores a profile against a weighted schedule of required fields."""

    def __init__(self, fields: Sequence[str], weights: Optional[Mapping[str, float]] = None):
        unknown = [f for f in fields if f not in Profile.model_fields]
        if unknown:
            raise ValueError(f"Unknown profile fields in completeness schedule: {unknown}")

        weights = weights or {}
        negative = [f for f, w in weights.items() if w < 0]
        if negative:
            raise ValueError(f"Completeness weights must be non-negative: {negative}")

        self.fields: List[str] = list(dict.fromkeys(fields))
        self.weights: Dict[str, float] = {f: float(weights.get(f, 1.0)) for f in self.fields}
        self.logger = logger.bind(component="completeness_calculator")

    def compute(self, profile: Profile) -> CompletenessReport:
        """
        Compute the completion percentage and the ordered missing field codes.

        A profile with every tracked field populated scores exactly 100; any gap
        caps the score at 99 so the percentage and the missing list always agree.
        """
        total = sum(self.weights.values())
        missing = [f for f in self.fields if not is_populated(getattr(profile, f))]

        if not missing or total <= 0:
            percentage = 100 if not missing else 0
        else:
            populated = total - sum(self.weights[f] for f in missing)
            percentage = math.floor(100 * populated / total + 0.5)
            percentage = max(0, min(99, percentage))

        self.logger.debug(
            "Profile completeness computed",
            job_seeker_id=profile.job_seeker_id,
            completion_percentage=percentage,
            missing_count=len(missing)
        )
        return CompletenessReport(completion_percentage=percentage, missing_fields=missing)


def compute_completeness(
    profile: Profile,
    fields: Sequence[str],
    weights: Optional[Mapping[str, float]] = None
) -> CompletenessReport:
    """Score ``profile`` against ``fields`` without keeping a calculator around."""
    return CompletenessCalculator(fields, weights).compute(profile)
