"""Rule tables, composite scores, quality grading and content fingerprints."""

from __future__ import annotations

from canonlens.scoring.fingerprint import canonical_json, content_hash
from canonlens.scoring.quality import (
    QUALITY_ORDER,
    STANDARD_QUALITY,
    UNMAPPED_QUALITY,
    QualityStep,
    QualityTable,
    completeness_score,
)
from canonlens.scoring.thresholds import (
    CompositeScore,
    RuleTable,
    composite,
    lookup_table,
    rule_table,
    safe_ratio,
    threshold_table,
)

__all__ = [
    "QUALITY_ORDER",
    "STANDARD_QUALITY",
    "UNMAPPED_QUALITY",
    "CompositeScore",
    "QualityStep",
    "QualityTable",
    "RuleTable",
    "canonical_json",
    "completeness_score",
    "composite",
    "content_hash",
    "lookup_table",
    "rule_table",
    "safe_ratio",
    "threshold_table",
]
