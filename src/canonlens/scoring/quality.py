"""Completeness scoring and quality grading."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from canonlens.records import is_populated

EXCELLENT = "EXCELLENT"
GOOD = "GOOD"
FAIR = "FAIR"
POOR = "POOR"

# Worst to best.
QUALITY_ORDER: tuple[str, ...] = (POOR, FAIR, GOOD, EXCELLENT)


def completeness_score(fields: Mapping[str, Any], required: Sequence[str]) -> float:
    """Percentage of *required* fields that are populated, rounded to 2 dp."""
    if not required:
        return 100.0
    populated = sum(1 for name in required if is_populated(fields.get(name)))
    return round(100.0 * populated / len(required), 2)


@dataclass(frozen=True)
class QualityStep:
    rating: str
    min_completeness: float
    confidences: frozenset[str] | None = None  # None accepts any confidence


@dataclass(frozen=True)
class QualityTable:
    """Step function of (confidence, completeness) onto a quality rating.

    Steps must be ordered best rating first with non-increasing thresholds,
    which keeps the rating monotone in completeness for a fixed confidence.
    """

    steps: tuple[QualityStep, ...]
    default: str = POOR

    def __post_init__(self) -> None:
        ranks = [QUALITY_ORDER.index(s.rating) for s in self.steps]
        if ranks != sorted(ranks, reverse=True):
            raise ValueError("Quality steps must be ordered from best to worst rating")

    def rate(self, confidence: str, completeness: float) -> str:
        for step in self.steps:
            if completeness < step.min_completeness:
                continue
            if step.confidences is not None and confidence not in step.confidences:
                continue
            return step.rating
        return self.default


STANDARD_QUALITY = QualityTable(
    (
        QualityStep(EXCELLENT, 90, frozenset({"HIGH"})),
        QualityStep(GOOD, 70, frozenset({"HIGH", "MEDIUM"})),
        QualityStep(FAIR, 50),
    )
)

# For entity types keyed without a cross-reference mapping.
UNMAPPED_QUALITY = QualityTable(
    (
        QualityStep(EXCELLENT, 85),
        QualityStep(GOOD, 65),
        QualityStep(FAIR, 50),
    )
)
