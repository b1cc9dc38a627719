"""
Per-field conflict resolution.

Values are normalized by field kind, bucketed by normalized equality, and a
method is chosen in order: unanimous, majority, single source, trust weighted,
falling back to manual_required when the top two weighted buckets are too
close and are not variants of one value. Every ordering is decided by weight
and the configured source priority, never by input order.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from shared.models.domain import ResolvedField, SourceValue
from shared.models.enums import AgreementLevel, DiscrepancyClass, FieldKind, ResolutionMethod
from shared.utils.logging import get_logger

from verification.config import VerificationConfig
from verification.normalization import Normalized, is_missing, near_duplicate, normalize_value, variant_class

logger = get_logger(__name__)

# Float slack for weight and share comparisons
_EPS = 1e-9


@dataclass(frozen=True)
class Observation:
    """One source's value for a field, normalized and weighted."""
    source: str
    raw: Any
    norm: Normalized
    weight: float
    priority: tuple[int, str]

    def as_source_value(self, value: SourceValue) -> SourceValue:
        return value.model_copy(update={"normalized_value": self.norm.value})


@dataclass
class Bucket:
    key: Any
    members: list[Observation] = field(default_factory=list)

    @property
    def weight(self) -> float:
        return sum(m.weight for m in self.members)

    @property
    def sources(self) -> list[str]:
        return sorted(m.source for m in self.members)

    @property
    def best(self) -> Observation:
        return min(self.members, key=lambda m: (-m.weight, m.priority))

    def sort_key(self) -> tuple[float, tuple[int, str]]:
        return (-round(self.weight, 9), self.best.priority)


@dataclass
class FieldGrouping:
    """Normalization and bucketing metadata for one field of one record."""
    field: str
    kind: FieldKind
    observations: list[Observation]
    buckets: list[Bucket]

    @property
    def source_count(self) -> int:
        return len(self.observations)

    @property
    def total_weight(self) -> float:
        return sum(o.weight for o in self.observations)

    @property
    def folded_keys(self) -> set[Any]:
        return {o.norm.folded for o in self.observations}

    @property
    def has_disagreement(self) -> bool:
        """True when sources differ beyond case and whitespace."""
        return self.source_count >= 2 and len(self.folded_keys) >= 2

    @property
    def has_unparsed(self) -> bool:
        return any(o.norm.unparsed for o in self.observations)

    def steps(self) -> set[str]:
        return set().union(*(o.norm.steps for o in self.observations)) if self.observations else set()

    def largest_bucket(self) -> Optional[Bucket]:
        if not self.buckets:
            return None
        return min(self.buckets, key=lambda b: (-len(b.members), *b.sort_key()))


class ConflictResolver:
    """Resolves one field at a time under a VerificationConfig. Stateless."""

    def __init__(self, config: Optional[VerificationConfig] = None) -> None:
        self._config = config or VerificationConfig()

    @property
    def config(self) -> VerificationConfig:
        return self._config

    # ── Grouping ────────────────────────────────────────────────────────
    def group(self, field_name: str, values: Sequence[SourceValue]) -> FieldGrouping:
        cfg = self._config
        kind = cfg.kind_for(field_name)
        aliases = cfg.aliases_for(field_name)

        observations: list[Observation] = []
        seen: set[str] = set()
        for value in sorted(values, key=lambda v: cfg.priority_key(v.source)):
            if value.source in seen or is_missing(value.raw_value):
                continue
            seen.add(value.source)
            observations.append(Observation(
                source=value.source,
                raw=value.raw_value,
                norm=normalize_value(kind, value.raw_value, aliases),
                weight=cfg.trust_weight(value.source, field_name),
                priority=cfg.priority_key(value.source),
            ))

        by_key: dict[Any, Bucket] = {}
        for obs in observations:
            by_key.setdefault(obs.norm.value, Bucket(key=obs.norm.value)).members.append(obs)
        buckets = sorted(by_key.values(), key=Bucket.sort_key)
        return FieldGrouping(field=field_name, kind=kind, observations=observations, buckets=buckets)

    def variant_class(self, grouping: FieldGrouping, a: Observation, b: Observation) -> Optional[DiscrepancyClass]:
        cfg = self._config
        return variant_class(
            grouping.kind,
            a.norm,
            b.norm,
            scale_factors=cfg.unit_scale_factors,
            ratio_tolerance=cfg.unit_ratio_tolerance,
        )

    def are_variants(self, grouping: FieldGrouping, a: Observation, b: Observation) -> bool:
        """Variants, or strings close enough that a near-tie may fall to priority."""
        if self.variant_class(grouping, a, b) is not None:
            return True
        return near_duplicate(grouping.kind, a.norm, b.norm, similarity=self._config.variant_similarity)

    # ── Resolution ──────────────────────────────────────────────────────
    def agreement_level(self, grouping: FieldGrouping) -> AgreementLevel:
        n = grouping.source_count
        if n == 0:
            return AgreementLevel.NO_DATA
        if len(grouping.buckets) == 1:
            return AgreementLevel.UNANIMOUS if n >= 2 else AgreementLevel.SINGLE_SOURCE
        largest = grouping.largest_bucket()
        if largest is not None and len(largest.members) / n + _EPS >= self._config.consensus_threshold:
            return AgreementLevel.MAJORITY
        return AgreementLevel.SPLIT

    def resolve_grouping(self, grouping: FieldGrouping) -> ResolvedField:
        level = self.agreement_level(grouping)
        contributing = sorted(o.source for o in grouping.observations)

        if level == AgreementLevel.NO_DATA:
            return ResolvedField(
                field=grouping.field,
                value=None,
                method=ResolutionMethod.NO_DATA,
                agreement_level=level,
                confidence=0.0,
            )

        if level in (AgreementLevel.UNANIMOUS, AgreementLevel.SINGLE_SOURCE):
            bucket = grouping.buckets[0]
            if level == AgreementLevel.UNANIMOUS:
                method, confidence = ResolutionMethod.UNANIMOUS, 1.0
            else:
                method, confidence = ResolutionMethod.SINGLE_SOURCE, bucket.best.weight
            return self._resolved(grouping, bucket, method, level, confidence, contributing)

        if level == AgreementLevel.MAJORITY:
            bucket = grouping.largest_bucket()
            share = len(bucket.members) / grouping.source_count
            return self._resolved(grouping, bucket, ResolutionMethod.MAJORITY, level, share, contributing)

        total = grouping.total_weight
        top = grouping.buckets[0]
        runner_up = grouping.buckets[1]
        if total <= 0:
            gap = 0.0
            confidence = 0.0
        else:
            gap = (top.weight - runner_up.weight) / total
            confidence = top.weight / total
        # epsilon 0 disables manual review; exact ties then fall to source priority
        epsilon = self._config.tie_epsilon
        too_close = epsilon > 0 and gap <= epsilon + _EPS
        if too_close and not self.are_variants(grouping, top.best, runner_up.best):
            logger.debug(
                "field_manual_required",
                field=grouping.field,
                top=top.key,
                runner_up=runner_up.key,
                gap=round(gap, 4),
            )
            return ResolvedField(
                field=grouping.field,
                value=None,
                method=ResolutionMethod.MANUAL_REQUIRED,
                agreement_level=level,
                confidence=0.0,
                contributing_sources=contributing,
                supporting_sources=[],
            )
        return self._resolved(grouping, top, ResolutionMethod.TRUST_WEIGHTED, level, confidence, contributing)

    def _resolved(
        self,
        grouping: FieldGrouping,
        bucket: Bucket,
        method: ResolutionMethod,
        level: AgreementLevel,
        confidence: float,
        contributing: list[str],
    ) -> ResolvedField:
        return ResolvedField(
            field=grouping.field,
            value=bucket.best.norm.display,
            method=method,
            agreement_level=level,
            confidence=round(min(1.0, max(0.0, confidence)), 4),
            contributing_sources=contributing,
            supporting_sources=bucket.sources,
        )

    def resolve_field(self, field_name: str, values: Sequence[SourceValue]) -> ResolvedField:
        return self.resolve_grouping(self.group(field_name, values))


def group_field(field_name: str, values: Sequence[SourceValue], config: Optional[VerificationConfig] = None) -> FieldGrouping:
    return ConflictResolver(config).group(field_name, values)


def resolve_field(
    field_name: str,
    values: Sequence[SourceValue],
    config: Optional[VerificationConfig] = None,
) -> ResolvedField:
    """Resolve one field from every source's value for it. Pure."""
    return ConflictResolver(config).resolve_field(field_name, values)
