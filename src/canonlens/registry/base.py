"""Entity-type strategy definitions consumed by the consolidation engine."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from canonlens.consolidation.rules import DerivedField, FieldRule
from canonlens.records import SourceRecord
from canonlens.resolution.placeholders import placeholder_for_record
from canonlens.scoring.quality import STANDARD_QUALITY, QualityTable
from canonlens.scoring.thresholds import RuleTable
from canonlens.validation import FormatCheck, VarianceCheck


@dataclass(frozen=True)
class EntityTypeSpec:
    entity_type: str
    source_order: tuple[str, ...]
    rules: tuple[FieldRule, ...]
    required_fields: tuple[str, ...]
    derived: tuple[DerivedField, ...] = ()
    assessments: tuple[DerivedField, ...] = ()  # may read completeness_score / quality_rating
    quality: QualityTable = STANDARD_QUALITY
    format_checks: tuple[FormatCheck, ...] = ()
    variance_checks: tuple[VarianceCheck, ...] = ()
    uses_cross_reference: bool = True
    derive_id: Callable[[SourceRecord], str | None] = placeholder_for_record

    def __post_init__(self) -> None:
        names = [r.field for r in self.rules] + [d.field for d in self.derived + self.assessments]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"{self.entity_type}: fields declared twice: {duplicates}")

    @property
    def output_fields(self) -> list[str]:
        return (
            ["id"]
            + [r.field for r in self.rules]
            + ["created_at", "updated_at"]
            + [d.field for d in self.derived]
            + [a.field for a in self.assessments]
        )


def classified(table: RuleTable) -> DerivedField:
    """Derived field named after *table* whose value is the table's category."""
    return DerivedField(table.name, lambda fields, ctx: table.classify(fields))
