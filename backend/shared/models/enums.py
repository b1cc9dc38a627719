"""Domain enumerations for movie metadata verification."""
from __future__ import annotations

from enum import Enum


class Source(str, Enum):
    """Catalogs that contribute field observations."""
    TMDB = "tmdb"
    OMDB = "omdb"
    WIKIPEDIA = "wikipedia"
    WIKIDATA = "wikidata"
    INTERNAL = "internal"


class FieldKind(str, Enum):
    """Normalization family of a movie field."""
    TEXT = "text"
    TITLE = "title"
    PERSON = "person"
    DATE = "date"
    YEAR = "year"
    NUMBER = "number"
    RATING = "rating"
    RUNTIME = "runtime"
    LIST = "list"


class AgreementLevel(str, Enum):
    UNANIMOUS = "unanimous"
    MAJORITY = "majority"
    SPLIT = "split"
    SINGLE_SOURCE = "single_source"
    NO_DATA = "no_data"


class ResolutionMethod(str, Enum):
    UNANIMOUS = "unanimous"
    MAJORITY = "majority"
    SINGLE_SOURCE = "single_source"
    TRUST_WEIGHTED = "trust_weighted"
    MANUAL_REQUIRED = "manual_required"
    NO_DATA = "no_data"

    @property
    def emits_value(self) -> bool:
        return self not in (ResolutionMethod.MANUAL_REQUIRED, ResolutionMethod.NO_DATA)


class DiscrepancyClass(str, Enum):
    ALIAS = "alias"
    FORMAT = "format"
    UNIT = "unit"
    FACTUAL = "factual"
    UNKNOWN = "unknown"

    @property
    def is_benign(self) -> bool:
        """Variants of one value rather than a disagreement about the fact."""
        return self in (DiscrepancyClass.ALIAS, DiscrepancyClass.FORMAT, DiscrepancyClass.UNIT)


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def at_least(self, other: "Severity") -> bool:
        return self.rank >= other.rank


_SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.CRITICAL: 2}


class SourceStatus(str, Enum):
    """Outcome of one source fetch for one record."""
    SUCCESS = "success"
    ABSENT = "absent"
    FAILED = "failed"
    SKIPPED = "skipped"


class QualityGrade(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"


class ActionType(str, Enum):
    AUTO_APPLY = "auto_apply"
    MANUAL_REVIEW = "manual_review"
    RE_FETCH = "re_fetch"
