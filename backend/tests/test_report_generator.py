"""
Tests for discrepancy reports, quality scores, actions and batch summaries.

Run: pytest backend/tests/test_report_generator.py -v
"""
from __future__ import annotations

import pytest

from shared.models.domain import ConflictingValue, ConsensusResult, Discrepancy, ResolvedField, UnverifiableRecord
from shared.models.enums import (
    ActionType,
    AgreementLevel,
    DiscrepancyClass,
    QualityGrade,
    ResolutionMethod,
    Severity,
)
from verification.errors import AllSourcesFailed
from verification.report_generator import (
    compute_data_quality_score,
    generate_actions,
    generate_batch_report,
    generate_discrepancy_report,
    generate_verified_facts_summary,
    quality_grade,
    render_text_summary,
)

_LEVELS = {
    ResolutionMethod.UNANIMOUS: AgreementLevel.UNANIMOUS,
    ResolutionMethod.MAJORITY: AgreementLevel.MAJORITY,
    ResolutionMethod.TRUST_WEIGHTED: AgreementLevel.SPLIT,
    ResolutionMethod.MANUAL_REQUIRED: AgreementLevel.SPLIT,
    ResolutionMethod.SINGLE_SOURCE: AgreementLevel.SINGLE_SOURCE,
    ResolutionMethod.NO_DATA: AgreementLevel.NO_DATA,
}


def rf(field: str, value: object, method: ResolutionMethod, confidence: float, sources=("omdb", "tmdb")) -> ResolvedField:
    emits = method.emits_value
    return ResolvedField(
        field=field,
        value=value if emits else None,
        method=method,
        agreement_level=_LEVELS[method],
        confidence=confidence,
        contributing_sources=list(sources) if method != ResolutionMethod.NO_DATA else [],
        supporting_sources=list(sources) if emits else [],
    )


def disc(
    field: str,
    classification: DiscrepancyClass,
    severity: Severity,
    auto_resolved: bool,
    resolved_value: object = None,
) -> Discrepancy:
    return Discrepancy(
        field=field,
        conflicting_values=[
            ConflictingValue(source="omdb", raw_value="a", normalized_value="a", trust_weight=0.85),
            ConflictingValue(source="tmdb", raw_value="b", normalized_value="b", trust_weight=0.9),
        ],
        classification=classification,
        severity=severity,
        auto_resolved=auto_resolved,
        resolved_value=resolved_value,
        reason="test",
    )


def result(
    record_id: str,
    fields: list[ResolvedField],
    discrepancies: list[Discrepancy] = (),
    needs_review: bool = False,
    confidence: float = 0.9,
    succeeded=("omdb", "tmdb"),
) -> ConsensusResult:
    return ConsensusResult(
        record_id=record_id,
        resolved_fields=fields,
        discrepancies=list(discrepancies),
        overall_confidence=confidence,
        needs_review=needs_review,
        sources_attempted=sorted(set(succeeded) | {"wikipedia"}),
        sources_succeeded=list(succeeded),
    )


@pytest.fixture
def clean() -> ConsensusResult:
    return result("m1", [
        rf("director", "S. S. Rajamouli", ResolutionMethod.UNANIMOUS, 1.0),
        rf("title", "Eega", ResolutionMethod.UNANIMOUS, 1.0),
        rf("release_date", "2012-07-06", ResolutionMethod.UNANIMOUS, 1.0),
        rf("runtime", 134, ResolutionMethod.UNANIMOUS, 1.0),
    ], [disc("title", DiscrepancyClass.ALIAS, Severity.INFO, True, "Eega")], confidence=1.0)


@pytest.fixture
def conflicted() -> ConsensusResult:
    return result("m2", [
        rf("release_year", None, ResolutionMethod.MANUAL_REQUIRED, 0.0),
        rf("title", "Magadheera", ResolutionMethod.UNANIMOUS, 1.0),
        rf("runtime", 166, ResolutionMethod.MAJORITY, 0.67, ("omdb", "tmdb", "wikidata")),
        rf("synopsis", None, ResolutionMethod.NO_DATA, 0.0),
    ], [
        disc("release_year", DiscrepancyClass.FACTUAL, Severity.CRITICAL, False),
        disc("runtime", DiscrepancyClass.FACTUAL, Severity.WARNING, False, 166),
        disc("rating", DiscrepancyClass.UNIT, Severity.INFO, True, 7.7),
    ], needs_review=True, confidence=0.55)


# ── Discrepancy report ──────────────────────────────────────────────────

def test_discrepancy_report_hides_auto_resolved_by_default(clean, conflicted) -> None:
    report = generate_discrepancy_report([conflicted, clean])
    assert report.total_records == 2
    assert report.total_discrepancies == 4
    assert report.auto_resolved == 2
    assert report.surfaced == 2
    assert list(report.by_severity) == ["critical", "warning"]
    assert report.counts == {"critical": {"factual": 1}, "warning": {"factual": 1}}
    entry = report.by_severity["critical"]["factual"][0]
    assert entry.record_id == "m2"
    assert entry.field == "release_year"
    assert len(entry.conflicting_values) == 2


def test_discrepancy_report_can_include_auto_resolved(clean, conflicted) -> None:
    report = generate_discrepancy_report([clean, conflicted], include_auto_resolved=True)
    assert report.surfaced == 4
    assert list(report.by_severity) == ["critical", "warning", "info"]
    assert sorted(report.by_severity["info"]) == ["alias", "unit"]
    assert [e.record_id for e in report.by_severity["info"]["alias"]] == ["m1"]


def test_discrepancy_report_lists_unverifiable(clean) -> None:
    failures = [
        AllSourcesFailed("m9", ["tmdb: not_found", "omdb: network"]),
        UnverifiableRecord(record_id="m3", reason="AllSourcesFailed"),
    ]
    report = generate_discrepancy_report([clean], unverifiable=failures)
    assert [u.record_id for u in report.unverifiable] == ["m3", "m9"]
    assert report.unverifiable[1].reason == "AllSourcesFailed"
    assert report.unverifiable[1].errors == ["tmdb: not_found", "omdb: network"]


def test_reports_do_not_mutate_results(clean, conflicted) -> None:
    before = [r.model_dump() for r in (clean, conflicted)]
    generate_discrepancy_report([clean, conflicted], include_auto_resolved=True)
    generate_batch_report([clean, conflicted])
    for r in (clean, conflicted):
        generate_actions(r)
        render_text_summary(r)
    assert [r.model_dump() for r in (clean, conflicted)] == before


# ── Per-record summaries ────────────────────────────────────────────────

def test_verified_facts_skip_manual_and_missing(conflicted) -> None:
    facts = generate_verified_facts_summary(conflicted)
    assert sorted(facts) == ["runtime", "title"]
    assert facts["runtime"].value == 166
    assert facts["runtime"].method == ResolutionMethod.MAJORITY
    assert facts["runtime"].sources == ["omdb", "tmdb", "wikidata"]


def test_quality_score_mixes_coverage_and_confidence() -> None:
    r = result("m4", [
        rf("title", "Eega", ResolutionMethod.UNANIMOUS, 1.0),
        rf("director", "Rajamouli", ResolutionMethod.TRUST_WEIGHTED, 0.75),
        rf("runtime", 134, ResolutionMethod.TRUST_WEIGHTED, 0.75),
        rf("synopsis", None, ResolutionMethod.NO_DATA, 0.0),
    ])
    assert compute_data_quality_score(r) == pytest.approx(79.17, abs=0.01)
    assert compute_data_quality_score(r, coverage_weight=1.0) == 75.0
    assert compute_data_quality_score(r, coverage_weight=0.0) == pytest.approx(83.33, abs=0.01)


def test_quality_score_of_empty_result_is_zero() -> None:
    assert compute_data_quality_score(result("m5", [], confidence=0.0)) == 0.0


@pytest.mark.parametrize("weight", [-0.1, 1.5])
def test_quality_score_rejects_bad_weight(clean, weight: float) -> None:
    with pytest.raises(ValueError):
        compute_data_quality_score(clean, coverage_weight=weight)


@pytest.mark.parametrize("score,grade", [
    (100.0, QualityGrade.A),
    (90.0, QualityGrade.A),
    (89.99, QualityGrade.B),
    (70.0, QualityGrade.C),
    (65.0, QualityGrade.D),
    (59.9, QualityGrade.F),
    (0.0, QualityGrade.F),
])
def test_quality_grade_thresholds(score: float, grade: QualityGrade) -> None:
    assert quality_grade(score) == grade


def test_actions_for_clean_record(clean) -> None:
    actions = generate_actions(clean)
    assert all(a.type == ActionType.AUTO_APPLY for a in actions)
    # title is both unanimous and alias-resolved; applied once
    assert sorted(a.field for a in actions) == ["director", "release_date", "runtime", "title"]


def test_actions_for_conflicted_record(conflicted) -> None:
    actions = generate_actions(conflicted)
    by_type = {}
    for a in actions:
        by_type.setdefault(a.type, []).append(a.field)
    assert by_type[ActionType.MANUAL_REVIEW] == ["release_year", "runtime"]
    assert sorted(by_type[ActionType.AUTO_APPLY]) == ["rating", "title"]
    assert ActionType.RE_FETCH not in by_type


def test_single_source_record_suggests_refetch() -> None:
    r = result("m6", [rf("title", "Eega", ResolutionMethod.SINGLE_SOURCE, 0.9, ("tmdb",))], succeeded=("tmdb",))
    refetch = [a for a in generate_actions(r) if a.type == ActionType.RE_FETCH]
    assert len(refetch) == 1
    assert refetch[0].field == "*"


def test_text_summary_sections(clean, conflicted) -> None:
    text = render_text_summary(conflicted, title="Magadheera (2009)")
    assert text.startswith("Magadheera (2009) - Verification Summary")
    assert "VERIFIED FACTS:" in text
    assert "DISCREPANCIES:" in text
    assert "[critical] release_year (factual):" in text
    assert "Requires manual review" in text
    assert text.endswith("ACTION NEEDED: Manual review required")

    ready = render_text_summary(clean)
    assert ready.startswith("m1 - Verification Summary")
    assert "Auto-resolved: Eega" in ready
    assert ready.endswith("STATUS: Ready to use")


# ── Batch report ────────────────────────────────────────────────────────

def test_batch_report(clean, conflicted) -> None:
    report = generate_batch_report([conflicted, clean], unverifiable=[AllSourcesFailed("m9")])
    assert report.total_records == 3
    assert report.verified_records == 1
    assert report.records_needing_review == 1
    assert report.avg_confidence == pytest.approx(0.775)
    assert report.records_by_status.verified == ["m1"]
    assert report.records_by_status.needs_review == ["m2"]
    assert report.records_by_status.unverifiable == ["m9"]
    assert report.records_by_status.auto_applicable == ["m1"]
    assert report.auto_applicable == 1
    assert set(report.grade_distribution) == set(QualityGrade)
    assert sum(report.grade_distribution.values()) == 2
    assert report.grade_distribution[QualityGrade.A] == 1


def test_common_issues_sorted_by_count_then_field() -> None:
    results = [
        result(f"m{i}", [rf("title", "X", ResolutionMethod.UNANIMOUS, 1.0)], [
            disc("runtime", DiscrepancyClass.FACTUAL, Severity.WARNING, False),
            disc("director", DiscrepancyClass.ALIAS, Severity.INFO, True),
        ] + ([disc("director", DiscrepancyClass.FACTUAL, Severity.CRITICAL, False)] if i == 0 else []))
        for i in range(2)
    ]
    report = generate_batch_report(results)
    issues = [(i.field, i.count, i.severity) for i in report.common_issues]
    assert issues == [("director", 3, Severity.CRITICAL), ("runtime", 2, Severity.WARNING)]


def test_empty_batch_report() -> None:
    report = generate_batch_report([])
    assert report.total_records == 0
    assert report.avg_confidence == 0.0
    assert report.common_issues == []
