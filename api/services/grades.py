"""Grade tiers for certificate final scores.

Pure functions only; no database access.
"""

import math
from enum import StrEnum


class Grade(StrEnum):
    DISTINCTION = "Distinction"
    MERIT = "Merit"
    CREDIT = "Credit"
    PASS = "Pass"


MIN_SCORE = 0.0
MAX_SCORE = 100.0

# Lower bound (inclusive) of each tier, highest first
GRADE_THRESHOLDS: tuple[tuple[float, Grade], ...] = (
    (90.0, Grade.DISTINCTION),
    (80.0, Grade.MERIT),
    (70.0, Grade.CREDIT),
)


class InvalidScoreError(ValueError):
    """Raised when a final score is not a finite number in [0, 100]."""

    def __init__(self, score: object):
        self.score = score
        super().__init__(
            f"Final score must be a finite number between {MIN_SCORE:g} "
            f"and {MAX_SCORE:g}, got {score!r}"
        )


def validate_score(score: object) -> float:
    """Return ``score`` as a float, or raise InvalidScoreError.

    Scores are never clamped; out-of-range input is the caller's bug.
    """
    if isinstance(score, bool) or not isinstance(score, int | float):
        raise InvalidScoreError(score)
    value = float(score)
    if not math.isfinite(value) or not MIN_SCORE <= value <= MAX_SCORE:
        raise InvalidScoreError(score)
    return value


def compute_grade(score: float) -> Grade:
    """Map a final score to its grade tier.

    >= 90 Distinction, >= 80 Merit, >= 70 Credit, otherwise Pass.
    """
    value = validate_score(score)
    for threshold, grade in GRADE_THRESHOLDS:
        if value >= threshold:
            return grade
    return Grade.PASS
