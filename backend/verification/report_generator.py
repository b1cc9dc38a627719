"""
Reports over consensus results: review queue, verified facts, quality scores
and batch summaries. All functions are pure and never mutate their input.
"""
from __future__ import annotations

import json
from collections import Counter
from typing import Iterable, Optional, Sequence, Union

from shared.models.domain import (
    BatchReport,
    CommonIssue,
    ConsensusResult,
    DiscrepancyReport,
    RecordsByStatus,
    ReportAction,
    ReviewQueueEntry,
    UnverifiableRecord,
    VerifiedFact,
)
from shared.models.enums import ActionType, QualityGrade, ResolutionMethod, Severity
from shared.utils.logging import get_logger

from verification.errors import AllSourcesFailed

logger = get_logger(__name__)

GRADE_THRESHOLDS: tuple[tuple[float, QualityGrade], ...] = (
    (90.0, QualityGrade.A),
    (80.0, QualityGrade.B),
    (70.0, QualityGrade.C),
    (60.0, QualityGrade.D),
)

AUTO_APPLY_MIN_CONFIDENCE = 0.9
MIN_SOURCES_FOR_TRUST = 2
COMMON_ISSUES_LIMIT = 15

_SEVERITY_ORDER = (Severity.CRITICAL, Severity.WARNING, Severity.INFO)

Unverifiable = Union[AllSourcesFailed, UnverifiableRecord]


def _unverifiable_records(items: Iterable[Unverifiable]) -> list[UnverifiableRecord]:
    records: list[UnverifiableRecord] = []
    for item in items:
        if isinstance(item, UnverifiableRecord):
            records.append(item.model_copy(deep=True))
        else:
            records.append(UnverifiableRecord(record_id=item.record_id, reason=item.reason, errors=list(item.errors)))
    return sorted(records, key=lambda r: r.record_id)


# ── Discrepancy report ──────────────────────────────────────────────────

def generate_discrepancy_report(
    results: Sequence[ConsensusResult],
    unverifiable: Iterable[Unverifiable] = (),
    include_auto_resolved: bool = False,
) -> DiscrepancyReport:
    """Group discrepancies across a batch by severity, then classification."""
    by_severity: dict[str, dict[str, list[ReviewQueueEntry]]] = {}
    total = 0
    auto_resolved = 0
    surfaced = 0

    for result in sorted(results, key=lambda r: r.record_id):
        for d in result.discrepancies:
            total += 1
            if d.auto_resolved:
                auto_resolved += 1
                if not include_auto_resolved:
                    continue
            surfaced += 1
            entry = ReviewQueueEntry(
                record_id=result.record_id,
                field=d.field,
                classification=d.classification,
                severity=d.severity,
                auto_resolved=d.auto_resolved,
                resolved_value=d.resolved_value,
                conflicting_values=[cv.model_copy(deep=True) for cv in d.conflicting_values],
                reason=d.reason,
            )
            by_severity.setdefault(d.severity.value, {}).setdefault(d.classification.value, []).append(entry)

    ordered: dict[str, dict[str, list[ReviewQueueEntry]]] = {}
    for severity in _SEVERITY_ORDER:
        groups = by_severity.get(severity.value)
        if groups:
            ordered[severity.value] = {cls: groups[cls] for cls in sorted(groups)}

    return DiscrepancyReport(
        total_records=len(results),
        total_discrepancies=total,
        surfaced=surfaced,
        auto_resolved=auto_resolved,
        by_severity=ordered,
        counts={sev: {cls: len(entries) for cls, entries in groups.items()} for sev, groups in ordered.items()},
        unverifiable=_unverifiable_records(unverifiable),
    )


# ── Per-record summaries ────────────────────────────────────────────────

def generate_verified_facts_summary(result: ConsensusResult) -> dict[str, VerifiedFact]:
    """Field -> verified fact for every field that resolved to a value."""
    return {
        f.field: VerifiedFact(
            value=f.value,
            confidence=f.confidence,
            method=f.method,
            sources=list(f.supporting_sources),
        )
        for f in result.resolved_fields
        if f.method.emits_value
    }


def compute_data_quality_score(result: ConsensusResult, coverage_weight: float = 0.5) -> float:
    """
    0-100 score mixing field coverage and mean confidence of covered fields.

    Coverage is the fraction of resolved fields with any source data.
    """
    if not 0.0 <= coverage_weight <= 1.0:
        raise ValueError(f"coverage_weight must be in [0, 1], got {coverage_weight}")
    fields = result.resolved_fields
    if not fields:
        return 0.0
    covered = [f for f in fields if f.method != ResolutionMethod.NO_DATA]
    coverage = len(covered) / len(fields)
    mean_confidence = sum(f.confidence for f in covered) / len(covered) if covered else 0.0
    score = 100.0 * (coverage_weight * coverage + (1.0 - coverage_weight) * mean_confidence)
    return round(score, 2)


def quality_grade(score: float) -> QualityGrade:
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return QualityGrade.F


def generate_actions(result: ConsensusResult) -> list[ReportAction]:
    """Suggested follow-ups for one record: apply, review or re-fetch."""
    actions: list[ReportAction] = []
    applied: set[str] = set()

    for f in result.resolved_fields:
        if f.method == ResolutionMethod.UNANIMOUS and f.confidence >= AUTO_APPLY_MIN_CONFIDENCE:
            actions.append(ReportAction(
                type=ActionType.AUTO_APPLY,
                field=f.field,
                reason="High confidence unanimous agreement",
                suggested_value=f.value,
            ))
            applied.add(f.field)

    for d in result.discrepancies:
        if not d.auto_resolved:
            actions.append(ReportAction(
                type=ActionType.MANUAL_REVIEW,
                field=d.field,
                reason=f"{d.severity.value} {d.classification.value} discrepancy between {len(d.conflicting_values)} sources",
                suggested_value=d.resolved_value,
            ))
        elif d.field not in applied:
            actions.append(ReportAction(
                type=ActionType.AUTO_APPLY,
                field=d.field,
                reason=d.reason or f"auto-resolved {d.classification.value} variant",
                suggested_value=d.resolved_value,
            ))
            applied.add(d.field)

    if len(result.sources_succeeded) < MIN_SOURCES_FOR_TRUST:
        actions.append(ReportAction(
            type=ActionType.RE_FETCH,
            field="*",
            reason="Insufficient sources; fetch additional data",
        ))
    return actions


def _short(value: object, limit: int) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text if len(text) <= limit else text[:limit] + "..."


def render_text_summary(result: ConsensusResult, title: Optional[str] = None, max_facts: int = 10) -> str:
    """Plain-text summary of one record for logs and review tooling."""
    score = compute_data_quality_score(result)
    grade = quality_grade(score)
    heading = title or result.record_id
    lines = [
        f"{heading} - Verification Summary",
        "=" * 50,
        "",
        f"Quality Grade: {grade.value} (score {score:.0f}, {result.overall_confidence * 100:.0f}% confidence)",
        f"Sources: {len(result.sources_succeeded)} of {len(result.sources_attempted)} returned data",
        "",
    ]

    facts = generate_verified_facts_summary(result)
    if facts:
        lines.append("VERIFIED FACTS:")
        for name in sorted(facts)[:max_facts]:
            fact = facts[name]
            lines.append(f"   {name}: {_short(fact.value, 50)}")
            lines.append(f"      [{', '.join(fact.sources)}] ({fact.confidence * 100:.0f}%, {fact.method.value})")
        lines.append("")

    if result.discrepancies:
        lines.append("DISCREPANCIES:")
        for d in result.discrepancies:
            lines.append(f"   [{d.severity.value}] {d.field} ({d.classification.value}):")
            for cv in d.conflicting_values:
                lines.append(f"      - {cv.source}: {_short(cv.raw_value, 40)}")
            if d.auto_resolved:
                lines.append(f"      Auto-resolved: {_short(d.resolved_value, 40)}")
            else:
                lines.append("      Requires manual review")
        lines.append("")

    if result.needs_review:
        lines.append("ACTION NEEDED: Manual review required")
    elif grade in (QualityGrade.A, QualityGrade.B):
        lines.append("STATUS: Ready to use")
    else:
        lines.append("ACTION: Consider additional data sources")
    return "\n".join(lines)


# ── Batch report ────────────────────────────────────────────────────────

def generate_batch_report(
    results: Sequence[ConsensusResult],
    unverifiable: Iterable[Unverifiable] = (),
    coverage_weight: float = 0.5,
) -> BatchReport:
    """Totals, grade distribution, most common issues and record ids by status."""
    grades: Counter[QualityGrade] = Counter()
    status = RecordsByStatus()
    issue_counts: Counter[str] = Counter()
    worst: dict[str, Severity] = {}
    scores: list[float] = []

    for result in sorted(results, key=lambda r: r.record_id):
        score = compute_data_quality_score(result, coverage_weight)
        scores.append(score)
        grade = quality_grade(score)
        grades[grade] += 1

        if result.needs_review:
            status.needs_review.append(result.record_id)
        elif grade in (QualityGrade.A, QualityGrade.B):
            status.verified.append(result.record_id)
        elif grade == QualityGrade.F:
            status.low_quality.append(result.record_id)

        if not result.needs_review and any(a.type == ActionType.AUTO_APPLY for a in generate_actions(result)):
            status.auto_applicable.append(result.record_id)

        for d in result.discrepancies:
            issue_counts[d.field] += 1
            if d.field not in worst or d.severity.rank > worst[d.field].rank:
                worst[d.field] = d.severity

    status.unverifiable = [r.record_id for r in _unverifiable_records(unverifiable)]
    common = sorted(issue_counts.items(), key=lambda kv: (-kv[1], kv[0]))[:COMMON_ISSUES_LIMIT]
    n = len(results)

    return BatchReport(
        total_records=n + len(status.unverifiable),
        verified_records=len(status.verified),
        avg_confidence=round(sum(r.overall_confidence for r in results) / n, 4) if n else 0.0,
        avg_quality_score=round(sum(scores) / n, 2) if n else 0.0,
        records_needing_review=len(status.needs_review),
        auto_applicable=len(status.auto_applicable),
        grade_distribution={g: grades.get(g, 0) for g in QualityGrade},
        common_issues=[CommonIssue(field=f, count=c, severity=worst[f]) for f, c in common],
        records_by_status=status,
    )
