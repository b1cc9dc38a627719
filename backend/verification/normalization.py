"""
Field-type-aware normalization of catalog values.

Every value is reduced to two comparison keys:
  folded  - case/whitespace folding only; differences here are real disagreements
  value   - full canonical form (alias table, date parsing, unit scaling)
plus the set of normalization steps that took it from one to the other, which
the consensus builder uses to classify discrepancies.
"""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional, Sequence

from rapidfuzz import fuzz

from shared.models.enums import DiscrepancyClass, FieldKind

STEP_ALIAS = "alias"
STEP_FORMAT = "format"
STEP_UNIT = "unit"
STEP_UNPARSED = "unparsed"

PRECISION_DAY = "day"
PRECISION_YEAR = "year"

_WS_RE = re.compile(r"\s+")
_NUMBER_RE = re.compile(r"^[+-]?\d+(?:[.,]\d+)?$")
_TITLE_SUFFIX_RE = re.compile(
    r"\s*\((?:\d{4}\s*)?(?:[a-z]+\s+)?(?:film|movie)\)\s*$|\s*\(\d{4}\)\s*$",
    re.IGNORECASE,
)
_HONORIFIC_RE = re.compile(r"^(?:dr|mr|mrs|ms|shri|sri|smt)\.?\s+", re.IGNORECASE)
_GENERATION_RE = re.compile(r",?\s+(?:jr|sr|ii|iii|iv)\.?$", re.IGNORECASE)
_NAME_PUNCT_RE = re.compile(r"[.'`’]")
_RATING_RE = re.compile(r"^\s*(\d+(?:[.,]\d+)?)\s*(?:/\s*(\d+(?:[.,]\d+)?)|(%))?\s*$")
_RUNTIME_HM_RE = re.compile(r"^\s*(?:(\d+)\s*h(?:ours?|rs?)?)?\s*(?:(\d+)\s*m(?:in(?:utes?|s)?)?)?\s*$", re.IGNORECASE)
_RUNTIME_ISO_RE = re.compile(r"^PT(?:(\d+)H)?(?:(\d+)M)?(?:\d+S)?$", re.IGNORECASE)
_YEAR_RE = re.compile(r"^\d{4}$")

_DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%d-%m-%Y",
    "%d/%m/%Y",
)


@dataclass(frozen=True)
class Normalized:
    """A raw value reduced to comparison keys plus the steps applied."""
    raw: Any
    folded: Any
    value: Any
    display: Any
    steps: frozenset[str] = field(default_factory=frozenset)
    precision: str = PRECISION_DAY

    @property
    def unparsed(self) -> bool:
        return STEP_UNPARSED in self.steps


# ── Primitive folding ───────────────────────────────────────────────────

def collapse_ws(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def fold_text(text: Any) -> str:
    """Unicode-normalize, case-fold and collapse whitespace."""
    return collapse_ws(unicodedata.normalize("NFKC", str(text)).casefold())


def _number(value: float) -> float | int:
    return int(value) if float(value).is_integer() else value


def fold_raw(raw: Any) -> Any:
    """Case/whitespace folding only, shared by every field kind."""
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)):
        return _number(raw)
    if isinstance(raw, datetime):
        return raw.isoformat()
    if isinstance(raw, date):
        return raw.isoformat()
    if isinstance(raw, (list, tuple, set, frozenset)):
        return tuple(sorted({fold_text(item) for item in raw if item is not None and str(item).strip()}))
    text = fold_text(raw)
    if _NUMBER_RE.match(text):
        return _number(float(text.replace(",", ".")))
    return text


def is_missing(raw: Any) -> bool:
    if raw is None:
        return True
    if isinstance(raw, str) and not raw.strip():
        return True
    if isinstance(raw, (list, tuple, set, frozenset)) and not any(
        item is not None and str(item).strip() for item in raw
    ):
        return True
    return False


# ── String families ─────────────────────────────────────────────────────

def strip_title_suffix(title: str) -> str:
    """Remove disambiguation suffixes such as "(2008 film)" or "(film)"."""
    return _TITLE_SUFFIX_RE.sub("", title).strip()


def normalize_person_name(name: str) -> str:
    text = _HONORIFIC_RE.sub("", name.strip())
    text = _GENERATION_RE.sub("", text)
    text = _NAME_PUNCT_RE.sub("", text)
    return collapse_ws(text)


def _apply_alias(folded: str, display: str, aliases: Mapping[str, str], steps: set[str]) -> tuple[str, str]:
    canonical = aliases.get(folded)
    if canonical is None:
        return folded, display
    canonical_key = fold_text(canonical)
    if canonical_key != folded:
        steps.add(STEP_ALIAS)
    return canonical_key, canonical


def _normalize_string(kind: FieldKind, raw: Any, aliases: Mapping[str, str]) -> Normalized:
    text = collapse_ws(str(raw))
    folded = fold_text(text)
    steps: set[str] = set()
    display = text
    key = folded
    if kind == FieldKind.TITLE:
        display = strip_title_suffix(text)
    elif kind == FieldKind.PERSON:
        display = normalize_person_name(text)
    if display != text:
        key = fold_text(display)
        if key != folded:
            steps.add(STEP_FORMAT)
    # Aliases may be keyed on either the raw folded form or the cleaned one
    if folded in aliases and key not in aliases:
        key = folded
        steps.discard(STEP_FORMAT)
    key, display = _apply_alias(key, display, aliases, steps)
    return Normalized(raw=raw, folded=fold_raw(raw), value=key, display=display, steps=frozenset(steps))


# ── Dates and years ─────────────────────────────────────────────────────

def parse_date(raw: Any) -> Optional[tuple[date, str]]:
    """Parse a date-ish value. Returns (date, precision) or None."""
    if isinstance(raw, datetime):
        return raw.date(), PRECISION_DAY
    if isinstance(raw, date):
        return raw, PRECISION_DAY
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return (date(raw, 1, 1), PRECISION_YEAR) if 1800 <= raw <= 2200 else None
    text = collapse_ws(str(raw))
    if not text:
        return None
    if _YEAR_RE.match(text):
        return date(int(text), 1, 1), PRECISION_YEAR
    if "T" in text:
        head = text.split("T", 1)[0]
        try:
            return date.fromisoformat(head), PRECISION_DAY
        except ValueError:
            pass
    candidates = (text, text.lstrip("+"))
    for candidate in candidates:
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(candidate, fmt).date(), PRECISION_DAY
            except ValueError:
                continue
    return None


def _unparsed(raw: Any) -> Normalized:
    folded = fold_raw(raw)
    return Normalized(raw=raw, folded=folded, value=folded, display=raw, steps=frozenset({STEP_UNPARSED}))


def _normalize_date(raw: Any) -> Normalized:
    parsed = parse_date(raw)
    if parsed is None:
        return _unparsed(raw)
    day, precision = parsed
    canonical = str(day.year) if precision == PRECISION_YEAR else day.isoformat()
    folded = fold_raw(raw)
    steps = frozenset({STEP_FORMAT}) if str(folded) != canonical else frozenset()
    return Normalized(raw=raw, folded=folded, value=canonical, display=canonical, steps=steps, precision=precision)


def _normalize_year(raw: Any) -> Normalized:
    folded = fold_raw(raw)
    year: Optional[int] = None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool) and float(raw).is_integer():
        year = int(raw)
    else:
        parsed = parse_date(raw)
        if parsed is not None:
            year = parsed[0].year
    if year is None or not 1800 <= year <= 2200:
        return _unparsed(raw)
    steps = frozenset({STEP_FORMAT}) if folded != year else frozenset()
    return Normalized(raw=raw, folded=folded, value=year, display=year, steps=steps)


# ── Numbers ─────────────────────────────────────────────────────────────

def _to_float(raw: Any) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    text = fold_text(raw).replace(",", "")
    try:
        return float(text)
    except ValueError:
        return None


def _normalize_number(raw: Any) -> Normalized:
    number = _to_float(raw)
    if number is None:
        return _unparsed(raw)
    value = _number(round(number, 2))
    folded = fold_raw(raw)
    steps = frozenset({STEP_FORMAT}) if folded != value else frozenset()
    return Normalized(raw=raw, folded=folded, value=value, display=value, steps=steps)


def parse_rating(raw: Any) -> Optional[tuple[float, set[str]]]:
    """Parse a rating onto a 0-10 scale. Returns (rating, steps) or None."""
    steps: set[str] = set()
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value, scale = float(raw), None
    else:
        match = _RATING_RE.match(str(raw))
        if not match:
            return None
        value = float(match.group(1).replace(",", "."))
        if match.group(3):
            scale = 100.0
        elif match.group(2):
            scale = float(match.group(2).replace(",", "."))
            steps.add(STEP_FORMAT)
        else:
            scale = None
    if scale is None:
        scale = 100.0 if 10.0 < value <= 100.0 else 10.0
    if scale <= 0 or value < 0 or value > scale:
        return None
    if scale != 10.0:
        steps.add(STEP_UNIT)
        steps.discard(STEP_FORMAT)
        value = value * 10.0 / scale
    return round(value, 1), steps


def _normalize_rating(raw: Any) -> Normalized:
    parsed = parse_rating(raw)
    if parsed is None:
        return _unparsed(raw)
    value, steps = parsed
    shown = _number(value)
    return Normalized(raw=raw, folded=fold_raw(raw), value=shown, display=shown, steps=frozenset(steps))


def parse_runtime(raw: Any) -> Optional[int]:
    """Parse a runtime into whole minutes."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return int(round(raw)) if raw > 0 else None
    text = collapse_ws(str(raw))
    if not text or text.upper() == "N/A":
        return None
    if _NUMBER_RE.match(text):
        minutes = float(text.replace(",", "."))
        return int(round(minutes)) if minutes > 0 else None
    iso = _RUNTIME_ISO_RE.match(text)
    if iso and (iso.group(1) or iso.group(2)):
        return int(iso.group(1) or 0) * 60 + int(iso.group(2) or 0)
    hm = _RUNTIME_HM_RE.match(text)
    if hm and (hm.group(1) or hm.group(2)):
        return int(hm.group(1) or 0) * 60 + int(hm.group(2) or 0)
    return None


def _normalize_runtime(raw: Any) -> Normalized:
    minutes = parse_runtime(raw)
    if minutes is None:
        return _unparsed(raw)
    folded = fold_raw(raw)
    steps = frozenset({STEP_FORMAT}) if folded != minutes else frozenset()
    return Normalized(raw=raw, folded=folded, value=minutes, display=minutes, steps=steps)


# ── Lists ───────────────────────────────────────────────────────────────

def _split_items(raw: Any) -> tuple[list[str], bool]:
    if isinstance(raw, (list, tuple, set, frozenset)):
        return [collapse_ws(str(item)) for item in raw if item is not None and str(item).strip()], False
    parts = re.split(r"[,/|;]", str(raw))
    return [collapse_ws(p) for p in parts if p.strip()], True


def _normalize_list(raw: Any, aliases: Mapping[str, str]) -> Normalized:
    items, was_split = _split_items(raw)
    steps: set[str] = set()
    if was_split and len(items) > 1:
        steps.add(STEP_FORMAT)
    keyed: dict[str, str] = {}
    for item in items:
        key, shown = _apply_alias(fold_text(item), item, aliases, steps)
        keyed.setdefault(key, shown)
    keys = tuple(sorted(keyed))
    folded = fold_raw(items) if was_split else fold_raw(raw)
    return Normalized(
        raw=raw,
        folded=folded,
        value=keys,
        display=[keyed[k] for k in keys],
        steps=frozenset(steps),
    )


# ── Dispatch ────────────────────────────────────────────────────────────

def normalize_value(kind: FieldKind, raw: Any, aliases: Optional[Mapping[str, str]] = None) -> Normalized:
    """Normalize one raw value for comparison according to its field kind."""
    aliases = aliases or {}
    if kind in (FieldKind.TEXT, FieldKind.TITLE, FieldKind.PERSON):
        if isinstance(raw, (list, tuple)):
            raw = ", ".join(str(item) for item in raw)
        return _normalize_string(kind, raw, aliases)
    if kind == FieldKind.DATE:
        return _normalize_date(raw)
    if kind == FieldKind.YEAR:
        return _normalize_year(raw)
    if kind == FieldKind.NUMBER:
        return _normalize_number(raw)
    if kind == FieldKind.RATING:
        return _normalize_rating(raw)
    if kind == FieldKind.RUNTIME:
        return _normalize_runtime(raw)
    if kind == FieldKind.LIST:
        return _normalize_list(raw, aliases)
    raise ValueError(f"unsupported field kind: {kind}")


# ── Variant detection ───────────────────────────────────────────────────

def string_similarity(a: str, b: str) -> float:
    """0-100 similarity that ignores word order."""
    return max(fuzz.token_sort_ratio(a, b), fuzz.ratio(a, b))


def matches_scale_factor(a: float, b: float, factors: Iterable[float], tolerance: float) -> bool:
    """True when the larger value is the smaller one times a known scale factor."""
    lo, hi = sorted((abs(float(a)), abs(float(b))))
    if lo == 0 or hi == lo:
        return False
    ratio = hi / lo
    return any(abs(ratio - f) / f <= tolerance for f in factors)


def _declares_unit(norm: Normalized) -> bool:
    """True when the raw runtime spelled out its unit ("134 min", "2h 14m", "PT2H14M")."""
    if not isinstance(norm.raw, str):
        return False
    return not _NUMBER_RE.match(collapse_ws(norm.raw))


def variant_class(
    kind: FieldKind,
    a: Normalized,
    b: Normalized,
    *,
    scale_factors: Sequence[float],
    ratio_tolerance: float,
) -> Optional[DiscrepancyClass]:
    """
    Classify two distinct normalized values that describe the same fact
    differently. Returns None when they genuinely disagree.

    Strings are never variants here: only the alias table reconciles them,
    and it does so by merging them into one value during normalization.
    Ratings are already rescaled to 0-10, so two different ratings disagree.
    A unit variant needs an undeclared scale on at least one side.
    """
    if a.unparsed or b.unparsed:
        return None
    if kind == FieldKind.DATE:
        if PRECISION_YEAR in (a.precision, b.precision) and str(a.value)[:4] == str(b.value)[:4]:
            return DiscrepancyClass.FORMAT
        return None
    if kind == FieldKind.RUNTIME and _declares_unit(a) and _declares_unit(b):
        return None
    if kind in (FieldKind.NUMBER, FieldKind.RUNTIME):
        if matches_scale_factor(a.value, b.value, scale_factors, ratio_tolerance):
            return DiscrepancyClass.UNIT
        return None
    return None


def near_duplicate(kind: FieldKind, a: Normalized, b: Normalized, *, similarity: float) -> bool:
    """Fuzzy string closeness, used only to break near-ties by priority."""
    if a.unparsed or b.unparsed:
        return False
    if kind not in (FieldKind.TEXT, FieldKind.TITLE, FieldKind.PERSON):
        return False
    return string_similarity(str(a.value), str(b.value)) >= similarity
