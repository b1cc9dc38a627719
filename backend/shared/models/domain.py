"""
Pydantic v2 domain models shared across the verification services.
These are the canonical wire/internal representations handed between the
fetcher, the consensus builder and the report generator.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import (
    ActionType,
    AgreementLevel,
    DiscrepancyClass,
    QualityGrade,
    ResolutionMethod,
    Severity,
    SourceStatus,
)


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class FrozenModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True, frozen=True)


# ── Records ─────────────────────────────────────────────────────────────
class RecordRef(FrozenModel):
    """A record to verify plus the lookup hints catalog adapters search with."""
    record_id: str
    title: Optional[str] = None
    year: Optional[int] = None
    imdb_id: Optional[str] = None

    @classmethod
    def coerce(cls, record: "RecordRef | str") -> "RecordRef":
        if isinstance(record, RecordRef):
            return record
        return cls(record_id=str(record))


# ── Source observations ─────────────────────────────────────────────────
class SourceValue(FrozenModel):
    """One observation of one field from one source."""
    source: str
    field: str
    raw_value: Any = None
    normalized_value: Any = None
    fetched_at: datetime


class SourceOutcome(FrozenModel):
    """How one source fared for one record."""
    source: str
    status: SourceStatus
    attempts: int = 0
    error_kind: Optional[str] = None
    error: Optional[str] = None


class SourceData(FrozenModel):
    """
    All observations gathered for one record.
    Owned by a single fetch task until handed to the consensus builder;
    frozen so nothing downstream can mutate it.
    """
    record_id: str
    values: tuple[SourceValue, ...] = ()
    outcomes: tuple[SourceOutcome, ...] = ()

    @property
    def sources_attempted(self) -> list[str]:
        return sorted({o.source for o in self.outcomes} | {v.source for v in self.values})

    @property
    def sources_succeeded(self) -> list[str]:
        return sorted({v.source for v in self.values})

    def fields(self) -> list[str]:
        return sorted({v.field for v in self.values})

    def values_for(self, field: str) -> list[SourceValue]:
        return [v for v in self.values if v.field == field]


# ── Resolution ──────────────────────────────────────────────────────────
class ResolvedField(DomainModel):
    field: str
    value: Any = None
    method: ResolutionMethod
    agreement_level: AgreementLevel
    confidence: float = Field(ge=0.0, le=1.0)
    contributing_sources: list[str] = Field(default_factory=list)
    supporting_sources: list[str] = Field(default_factory=list)


class ConflictingValue(DomainModel):
    source: str
    raw_value: Any = None
    normalized_value: Any = None
    trust_weight: float = 0.0


class Discrepancy(DomainModel):
    field: str
    conflicting_values: list[ConflictingValue]
    classification: DiscrepancyClass
    severity: Severity
    auto_resolved: bool
    resolved_value: Any = None
    reason: str = ""


class ConsensusResult(DomainModel):
    """Per-record outcome; contains no timestamps so it serializes identically for identical input."""
    record_id: str
    resolved_fields: list[ResolvedField]
    discrepancies: list[Discrepancy] = Field(default_factory=list)
    overall_confidence: float = Field(ge=0.0, le=1.0)
    needs_review: bool
    sources_attempted: list[str] = Field(default_factory=list)
    sources_succeeded: list[str] = Field(default_factory=list)

    def field(self, name: str) -> Optional[ResolvedField]:
        return next((f for f in self.resolved_fields if f.field == name), None)


# ── Batch progress / checkpoint ─────────────────────────────────────────
class Checkpoint(DomainModel):
    batch_id: str
    processed_ids: list[str] = Field(default_factory=list)
    timestamp: datetime


class BatchProgress(DomainModel):
    batch_id: str
    total: int
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    checkpoint: Optional[Checkpoint] = None
    elapsed_s: float = 0.0
    estimated_remaining_s: float = 0.0

    @property
    def remaining(self) -> int:
        return max(0, self.total - self.completed - self.skipped)


# ── Reports ─────────────────────────────────────────────────────────────
class UnverifiableRecord(DomainModel):
    record_id: str
    reason: str
    errors: list[str] = Field(default_factory=list)


class ReviewQueueEntry(DomainModel):
    record_id: str
    field: str
    classification: DiscrepancyClass
    severity: Severity
    auto_resolved: bool
    resolved_value: Any = None
    conflicting_values: list[ConflictingValue]
    reason: str = ""


class DiscrepancyReport(DomainModel):
    total_records: int
    total_discrepancies: int
    surfaced: int
    auto_resolved: int
    by_severity: dict[str, dict[str, list[ReviewQueueEntry]]] = Field(default_factory=dict)
    counts: dict[str, dict[str, int]] = Field(default_factory=dict)
    unverifiable: list[UnverifiableRecord] = Field(default_factory=list)


class VerifiedFact(DomainModel):
    value: Any = None
    confidence: float
    method: ResolutionMethod
    sources: list[str] = Field(default_factory=list)


class ReportAction(DomainModel):
    type: ActionType
    field: str
    reason: str
    suggested_value: Any = None


class CommonIssue(DomainModel):
    field: str
    count: int
    severity: Severity


class RecordsByStatus(DomainModel):
    verified: list[str] = Field(default_factory=list)
    auto_applicable: list[str] = Field(default_factory=list)
    needs_review: list[str] = Field(default_factory=list)
    low_quality: list[str] = Field(default_factory=list)
    unverifiable: list[str] = Field(default_factory=list)


class BatchReport(DomainModel):
    total_records: int
    verified_records: int
    avg_confidence: float
    avg_quality_score: float
    records_needing_review: int
    auto_applicable: int
    grade_distribution: dict[QualityGrade, int] = Field(default_factory=dict)
    common_issues: list[CommonIssue] = Field(default_factory=list)
    records_by_status: RecordsByStatus = Field(default_factory=RecordsByStatus)
