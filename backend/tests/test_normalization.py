"""
Unit tests for field-kind normalization and variant detection.

Run: pytest backend/tests/test_normalization.py -v
"""
from __future__ import annotations

from datetime import date

import pytest

from shared.models.enums import DiscrepancyClass, FieldKind
from verification.normalization import (
    PRECISION_YEAR,
    STEP_ALIAS,
    STEP_FORMAT,
    STEP_UNIT,
    STEP_UNPARSED,
    fold_text,
    is_missing,
    normalize_person_name,
    normalize_value,
    parse_date,
    parse_rating,
    parse_runtime,
    strip_title_suffix,
    near_duplicate,
    variant_class,
)

VARIANT_KW = {"scale_factors": (10.0, 60.0, 100.0, 1000.0), "ratio_tolerance": 0.02}


# ── Folding ─────────────────────────────────────────────────────────────

def test_fold_text_case_and_whitespace() -> None:
    assert fold_text("  The   Dark\tKnight ") == "the dark knight"


def test_case_only_difference_folds_equal() -> None:
    a = normalize_value(FieldKind.PERSON, "Christopher Nolan")
    b = normalize_value(FieldKind.PERSON, "christopher  NOLAN")
    assert a.folded == b.folded
    assert a.value == b.value


def test_is_missing() -> None:
    assert is_missing(None)
    assert is_missing("   ")
    assert is_missing([])
    assert not is_missing(0)
    assert not is_missing("x")


# ── Strings ─────────────────────────────────────────────────────────────

@pytest.mark.parametrize("raw", ["The Dark Knight (2008 film)", "The Dark Knight (film)", "The Dark Knight (2008)"])
def test_strip_title_suffix(raw: str) -> None:
    assert strip_title_suffix(raw) == "The Dark Knight"


def test_title_suffix_is_format_step() -> None:
    n = normalize_value(FieldKind.TITLE, "The Dark Knight (2008 film)")
    assert n.value == "the dark knight"
    assert n.display == "The Dark Knight"
    assert STEP_FORMAT in n.steps


def test_person_name_honorifics_and_suffixes() -> None:
    assert normalize_person_name("Dr. Rajamouli") == "Rajamouli"
    assert normalize_person_name("Robert Downey Jr.") == "Robert Downey"
    assert normalize_person_name("S.S. Rajamouli") == "SS Rajamouli"


def test_alias_table_maps_variant_to_canonical() -> None:
    aliases = {"dark knight, the": "The Dark Knight"}
    n = normalize_value(FieldKind.TITLE, "Dark Knight, The", aliases)
    assert n.value == "the dark knight"
    assert n.display == "The Dark Knight"
    assert STEP_ALIAS in n.steps


def test_alias_to_same_key_is_not_an_alias_step() -> None:
    n = normalize_value(FieldKind.TEXT, "Telugu", {"telugu": "Telugu"})
    assert STEP_ALIAS not in n.steps


# ── Dates and years ─────────────────────────────────────────────────────

@pytest.mark.parametrize("raw", [
    "2008-07-18",
    "2008-07-18T00:00:00Z",
    "18 July 2008",
    "July 18, 2008",
    "18 Jul 2008",
    "2008/07/18",
    date(2008, 7, 18),
])
def test_parse_date_formats(raw: object) -> None:
    parsed = parse_date(raw)
    assert parsed is not None
    assert parsed[0] == date(2008, 7, 18)


def test_bare_year_has_year_precision() -> None:
    n = normalize_value(FieldKind.DATE, "2008")
    assert n.precision == PRECISION_YEAR
    assert n.value == "2008"


def test_iso_date_needs_no_format_step() -> None:
    n = normalize_value(FieldKind.DATE, "2008-07-18")
    assert n.value == "2008-07-18"
    assert n.steps == frozenset()


def test_long_date_is_format_step() -> None:
    n = normalize_value(FieldKind.DATE, "18 Jul 2008")
    assert n.value == "2008-07-18"
    assert STEP_FORMAT in n.steps


def test_unparseable_date_is_marked() -> None:
    n = normalize_value(FieldKind.DATE, "sometime in summer")
    assert STEP_UNPARSED in n.steps
    assert n.value == "sometime in summer"


@pytest.mark.parametrize("raw,expected", [(1999, 1999), ("1999", 1999), ("1999-05-01", 1999), (1999.0, 1999)])
def test_year_values(raw: object, expected: int) -> None:
    assert normalize_value(FieldKind.YEAR, raw).value == expected


# ── Ratings and runtimes ────────────────────────────────────────────────

@pytest.mark.parametrize("raw,expected,step", [
    ("7.8/10", 7.8, STEP_FORMAT),
    ("78%", 7.8, STEP_UNIT),
    ("78/100", 7.8, STEP_UNIT),
    ("3.9/5", 7.8, STEP_UNIT),
    (78, 7.8, STEP_UNIT),
])
def test_rating_scales(raw: object, expected: float, step: str) -> None:
    n = normalize_value(FieldKind.RATING, raw)
    assert n.value == pytest.approx(expected)
    assert step in n.steps


def test_plain_rating_has_no_steps() -> None:
    n = normalize_value(FieldKind.RATING, 7.8)
    assert n.value == pytest.approx(7.8)
    assert n.steps == frozenset()


def test_parse_rating_rejects_out_of_scale() -> None:
    assert parse_rating("11/10") is None
    assert parse_rating("great") is None


@pytest.mark.parametrize("raw", ["142 min", "2h 22min", "2 hr 22 min", "PT2H22M", 142, "142"])
def test_runtime_formats(raw: object) -> None:
    assert parse_runtime(raw) == 142


def test_runtime_string_is_format_step() -> None:
    n = normalize_value(FieldKind.RUNTIME, "142 min")
    assert n.value == 142
    assert STEP_FORMAT in n.steps


# ── Lists ───────────────────────────────────────────────────────────────

def test_list_is_sorted_and_alias_mapped() -> None:
    n = normalize_value(FieldKind.LIST, ["Sci-Fi", "Action"], {"sci-fi": "Science Fiction"})
    assert n.value == ("action", "science fiction")
    assert n.display == ["Action", "Science Fiction"]
    assert STEP_ALIAS in n.steps


def test_list_order_and_string_form_agree() -> None:
    a = normalize_value(FieldKind.LIST, ["Action", "Crime"])
    b = normalize_value(FieldKind.LIST, "Crime, Action")
    assert a.value == b.value


# ── Variants ────────────────────────────────────────────────────────────

def test_reordered_names_are_near_duplicates_but_not_aliases() -> None:
    a = normalize_value(FieldKind.PERSON, "Christopher Nolan")
    b = normalize_value(FieldKind.PERSON, "Nolan Christopher")
    assert near_duplicate(FieldKind.PERSON, a, b, similarity=85.0)
    assert variant_class(FieldKind.PERSON, a, b, **VARIANT_KW) is None


def test_sequel_titles_are_near_duplicates_but_not_aliases() -> None:
    a = normalize_value(FieldKind.TITLE, "Toy Story 3")
    b = normalize_value(FieldKind.TITLE, "Toy Story 4")
    assert near_duplicate(FieldKind.TITLE, a, b, similarity=85.0)
    assert variant_class(FieldKind.TITLE, a, b, **VARIANT_KW) is None


def test_near_duplicate_ignores_non_string_kinds() -> None:
    a = normalize_value(FieldKind.YEAR, 2010)
    b = normalize_value(FieldKind.YEAR, 2011)
    assert not near_duplicate(FieldKind.YEAR, a, b, similarity=0.0)


def test_different_names_are_not_variants() -> None:
    a = normalize_value(FieldKind.PERSON, "Christopher Nolan")
    b = normalize_value(FieldKind.PERSON, "Steven Spielberg")
    assert variant_class(FieldKind.PERSON, a, b, **VARIANT_KW) is None


def test_year_precision_date_is_format_variant() -> None:
    a = normalize_value(FieldKind.DATE, "2008-07-18")
    b = normalize_value(FieldKind.DATE, "2008")
    assert variant_class(FieldKind.DATE, a, b, **VARIANT_KW) == DiscrepancyClass.FORMAT


def test_dates_in_different_years_are_not_variants() -> None:
    a = normalize_value(FieldKind.DATE, "2008-07-18")
    b = normalize_value(FieldKind.DATE, "2009")
    assert variant_class(FieldKind.DATE, a, b, **VARIANT_KW) is None


def test_runtime_scale_factor_is_unit_variant() -> None:
    a = normalize_value(FieldKind.RUNTIME, 142)
    b = normalize_value(FieldKind.RUNTIME, 8520)
    assert variant_class(FieldKind.RUNTIME, a, b, **VARIANT_KW) == DiscrepancyClass.UNIT


def test_doubled_runtime_is_not_a_unit_variant() -> None:
    a = normalize_value(FieldKind.RUNTIME, 90)
    b = normalize_value(FieldKind.RUNTIME, "180 min")
    assert variant_class(FieldKind.RUNTIME, a, b, **VARIANT_KW) is None


def test_runtimes_with_declared_units_are_never_unit_variants() -> None:
    a = normalize_value(FieldKind.RUNTIME, "10 min")
    b = normalize_value(FieldKind.RUNTIME, "1h 40m")
    assert variant_class(FieldKind.RUNTIME, a, b, **VARIANT_KW) is None


def test_different_ratings_are_never_unit_variants() -> None:
    a = normalize_value(FieldKind.RATING, 4.0)
    b = normalize_value(FieldKind.RATING, 8.0)
    assert variant_class(FieldKind.RATING, a, b, scale_factors=(2.0, 10.0), ratio_tolerance=0.02) is None


def test_years_are_never_variants() -> None:
    a = normalize_value(FieldKind.YEAR, 1998)
    b = normalize_value(FieldKind.YEAR, 2001)
    assert variant_class(FieldKind.YEAR, a, b, **VARIANT_KW) is None
