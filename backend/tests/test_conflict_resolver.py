"""
Unit tests for per-field conflict resolution.

Run: pytest backend/tests/test_conflict_resolver.py -v
"""
from __future__ import annotations

import itertools

import pytest

from shared.models.domain import SourceValue
from shared.models.enums import AgreementLevel, ResolutionMethod
from verification.config import VerificationConfig
from verification.conflict_resolver import ConflictResolver, group_field, resolve_field

from conftest import FIXED_TIME


def sv(source: str, field: str, raw: object) -> SourceValue:
    return SourceValue(source=source, field=field, raw_value=raw, fetched_at=FIXED_TIME)


def weighted_config(**weights: float) -> VerificationConfig:
    return VerificationConfig(
        trust_weights=weights,
        field_trust_weights={},
        source_priority=sorted(weights),
    )


# ── Agreement levels ────────────────────────────────────────────────────

def test_identical_values_are_unanimous() -> None:
    resolved = resolve_field("title", [
        sv("tmdb", "title", "The Dark Knight"),
        sv("omdb", "title", "the  dark knight"),
    ])
    assert resolved.method == ResolutionMethod.UNANIMOUS
    assert resolved.agreement_level == AgreementLevel.UNANIMOUS
    assert resolved.confidence == 1.0
    assert resolved.value == "The Dark Knight"
    assert resolved.supporting_sources == ["omdb", "tmdb"]


def test_higher_trust_wins_split() -> None:
    config = weighted_config(a=0.9, b=0.3)
    resolved = resolve_field("language", [sv("a", "language", "X"), sv("b", "language", "Y")], config)
    assert resolved.method == ResolutionMethod.TRUST_WEIGHTED
    assert resolved.agreement_level == AgreementLevel.SPLIT
    assert resolved.value == "X"
    assert resolved.confidence == pytest.approx(0.75)


def test_majority_year() -> None:
    config = weighted_config(a=0.8, b=0.8, c=0.8)
    resolved = resolve_field(
        "release_year",
        [sv("a", "release_year", 1999), sv("b", "release_year", 1999), sv("c", "release_year", 2000)],
        config,
    )
    assert resolved.method == ResolutionMethod.MAJORITY
    assert resolved.value == 1999
    assert resolved.confidence == pytest.approx(0.67, abs=0.01)
    assert resolved.supporting_sources == ["a", "b"]
    assert resolved.contributing_sources == ["a", "b", "c"]


def test_single_source_confidence_is_trust_weight() -> None:
    resolved = resolve_field("title", [sv("tmdb", "title", "Baahubali")])
    assert resolved.method == ResolutionMethod.SINGLE_SOURCE
    assert resolved.agreement_level == AgreementLevel.SINGLE_SOURCE
    assert resolved.confidence == pytest.approx(0.9)


def test_no_data() -> None:
    resolved = resolve_field("title", [])
    assert resolved.method == ResolutionMethod.NO_DATA
    assert resolved.value is None
    assert resolved.confidence == 0.0
    assert resolved.contributing_sources == []


def test_per_field_trust_override_applies() -> None:
    config = VerificationConfig(
        trust_weights={"tmdb": 0.4, "omdb": 0.3},
        field_trust_weights={"rating": {"omdb": 0.95}},
    )
    resolved = resolve_field("rating", [sv("tmdb", "rating", 7.1), sv("omdb", "rating", "8.0/10")], config)
    assert resolved.value == 8
    assert resolved.method == ResolutionMethod.TRUST_WEIGHTED


# ── Ties ────────────────────────────────────────────────────────────────

def test_close_factual_split_requires_manual_review() -> None:
    resolved = resolve_field("release_year", [sv("tmdb", "release_year", 1998), sv("omdb", "release_year", 2001)])
    assert resolved.method == ResolutionMethod.MANUAL_REQUIRED
    assert resolved.value is None
    assert resolved.confidence == 0.0
    assert resolved.supporting_sources == []


def test_close_variants_resolve_by_priority() -> None:
    config = VerificationConfig(
        trust_weights={"a": 0.8, "b": 0.8},
        field_trust_weights={},
        source_priority=["b", "a"],
    )
    resolved = resolve_field(
        "director",
        [sv("a", "director", "Christopher Nolan"), sv("b", "director", "Nolan Christopher")],
        config,
    )
    assert resolved.method == ResolutionMethod.TRUST_WEIGHTED
    assert resolved.value == "Nolan Christopher"


def test_exact_tie_uses_source_priority_when_epsilon_disabled() -> None:
    config = VerificationConfig(
        trust_weights={"a": 0.8, "b": 0.8},
        field_trust_weights={},
        source_priority=["b", "a"],
        tie_epsilon=0.0,
    )
    resolved = resolve_field("release_year", [sv("a", "release_year", 1998), sv("b", "release_year", 2001)], config)
    assert resolved.method == ResolutionMethod.TRUST_WEIGHTED
    assert resolved.value == 2001
    assert resolved.confidence == pytest.approx(0.5)


def test_unlisted_sources_break_ties_by_name() -> None:
    config = VerificationConfig(
        trust_weights={"zeta": 0.5, "alpha": 0.5},
        field_trust_weights={},
        source_priority=[],
        tie_epsilon=0.0,
    )
    resolved = resolve_field("language", [sv("zeta", "language", "te"), sv("alpha", "language", "ta")], config)
    assert resolved.value == "ta"


# ── Purity ──────────────────────────────────────────────────────────────

def test_resolution_ignores_input_order() -> None:
    values = [
        sv("tmdb", "runtime", 152),
        sv("omdb", "runtime", "152 min"),
        sv("wikidata", "runtime", 150),
        sv("internal", "runtime", "2h 30min"),
    ]
    outputs = {
        resolve_field("runtime", list(p)).model_dump_json()
        for p in itertools.permutations(values)
    }
    assert len(outputs) == 1


def test_input_values_are_not_mutated() -> None:
    values = [sv("tmdb", "rating", "78%"), sv("omdb", "rating", 7.8)]
    before = [v.model_dump() for v in values]
    resolve_field("rating", values)
    assert [v.model_dump() for v in values] == before
    assert all(v.normalized_value is None for v in values)


def test_group_field_exposes_normalized_copies() -> None:
    values = [sv("tmdb", "rating", "78%"), sv("omdb", "rating", 7.8)]
    grouping = group_field("rating", values)
    assert len(grouping.buckets) == 1
    assert grouping.has_disagreement
    copy = grouping.observations[0].as_source_value(values[0])
    assert copy.normalized_value == pytest.approx(7.8)
    assert values[0].normalized_value is None


def test_resolver_instance_matches_function() -> None:
    values = [sv("tmdb", "title", "Eega"), sv("omdb", "title", "Eega")]
    assert ConflictResolver().resolve_field("title", values) == resolve_field("title", values)
