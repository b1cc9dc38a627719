"""
Per-record consensus.

Resolves every known field, then records a discrepancy wherever sources
disagree beyond case/whitespace folding. Disagreements that normalization
reconciles are auto-resolved; the rest are classified and ranked by severity.
Output is a pure function of the SourceData and the config.
"""
from __future__ import annotations

from typing import Optional

from shared.models.domain import ConflictingValue, ConsensusResult, Discrepancy, ResolvedField, SourceData
from shared.models.enums import DiscrepancyClass, ResolutionMethod, Severity
from shared.utils.logging import get_logger

from verification.config import VerificationConfig
from verification.conflict_resolver import Bucket, ConflictResolver, FieldGrouping
from verification.normalization import STEP_ALIAS, STEP_UNIT

logger = get_logger(__name__)


def _key_family(key: object) -> str:
    if isinstance(key, (int, float)) and not isinstance(key, bool):
        return "number"
    return type(key).__name__


class ConsensusBuilder:
    """Builds a ConsensusResult for one record at a time."""

    def __init__(self, config: Optional[VerificationConfig] = None) -> None:
        self._config = config or VerificationConfig()
        self._resolver = ConflictResolver(self._config)

    @property
    def config(self) -> VerificationConfig:
        return self._config

    def build_consensus(self, source_data: SourceData) -> ConsensusResult:
        cfg = self._config
        field_names = sorted(set(cfg.known_fields()) | set(source_data.fields()))

        resolved: list[ResolvedField] = []
        discrepancies: list[Discrepancy] = []
        for name in field_names:
            grouping = self._resolver.group(name, source_data.values_for(name))
            field = self._resolver.resolve_grouping(grouping)
            resolved.append(field)
            if grouping.has_disagreement:
                discrepancy = self._discrepancy(grouping, field)
                discrepancies.append(discrepancy)
                if discrepancy.auto_resolved:
                    logger.debug(
                        "discrepancy_auto_resolved",
                        record_id=source_data.record_id,
                        field=name,
                        classification=discrepancy.classification.value,
                        resolved_value=discrepancy.resolved_value,
                    )

        return ConsensusResult(
            record_id=source_data.record_id,
            resolved_fields=resolved,
            discrepancies=discrepancies,
            overall_confidence=self._overall_confidence(resolved),
            needs_review=self._needs_review(resolved, discrepancies),
            sources_attempted=source_data.sources_attempted,
            sources_succeeded=source_data.sources_succeeded,
        )

    # ── Discrepancies ───────────────────────────────────────────────────
    def _winning_bucket(self, grouping: FieldGrouping, field: ResolvedField) -> Bucket:
        if field.method == ResolutionMethod.MAJORITY:
            return grouping.largest_bucket()
        return grouping.buckets[0]

    def classify(self, grouping: FieldGrouping, field: ResolvedField) -> DiscrepancyClass:
        """Classify a disagreement between sources for one field."""
        if len(grouping.buckets) == 1:
            steps = grouping.steps()
            if STEP_ALIAS in steps:
                return DiscrepancyClass.ALIAS
            if STEP_UNIT in steps:
                return DiscrepancyClass.UNIT
            return DiscrepancyClass.FORMAT
        if grouping.has_unparsed or len({_key_family(b.key) for b in grouping.buckets}) > 1:
            return DiscrepancyClass.UNKNOWN
        winner = self._winning_bucket(grouping, field)
        classes = [
            self._resolver.variant_class(grouping, winner.best, other.best)
            for other in grouping.buckets
            if other is not winner
        ]
        if any(c is None for c in classes):
            return DiscrepancyClass.FACTUAL
        return classes[0]

    def _discrepancy(self, grouping: FieldGrouping, field: ResolvedField) -> Discrepancy:
        cfg = self._config
        classification = self.classify(grouping, field)
        auto_resolved = classification.is_benign and field.method.emits_value
        if auto_resolved:
            severity = Severity.INFO
        elif cfg.is_critical(grouping.field):
            severity = Severity.CRITICAL
        else:
            severity = Severity.WARNING

        conflicting = [
            ConflictingValue(
                source=o.source,
                raw_value=o.raw,
                normalized_value=list(o.norm.value) if isinstance(o.norm.value, tuple) else o.norm.value,
                trust_weight=o.weight,
            )
            for o in grouping.observations
        ]
        return Discrepancy(
            field=grouping.field,
            conflicting_values=conflicting,
            classification=classification,
            severity=severity,
            auto_resolved=auto_resolved,
            resolved_value=field.value if field.method.emits_value else None,
            reason=self._reason(grouping, field, classification, auto_resolved),
        )

    def _reason(
        self,
        grouping: FieldGrouping,
        field: ResolvedField,
        classification: DiscrepancyClass,
        auto_resolved: bool,
    ) -> str:
        n_values = len(grouping.buckets)
        if n_values == 1:
            return f"{grouping.source_count} sources agree after {classification.value} normalization"
        if field.method == ResolutionMethod.MANUAL_REQUIRED:
            return f"{n_values} distinct values with no clear winner; manual review required"
        verb = "variants reconciled" if auto_resolved else "sources disagree"
        return f"{classification.value}: {verb}, {field.method.value} chose value from {', '.join(field.supporting_sources)}"

    # ── Record outcome ──────────────────────────────────────────────────
    def _needs_review(self, resolved: list[ResolvedField], discrepancies: list[Discrepancy]) -> bool:
        threshold = self._config.review_severity
        if any(f.method == ResolutionMethod.MANUAL_REQUIRED for f in resolved):
            return True
        return any(
            not d.auto_resolved
            and (d.classification == DiscrepancyClass.FACTUAL or d.severity.at_least(threshold))
            for d in discrepancies
        )

    def _overall_confidence(self, resolved: list[ResolvedField]) -> float:
        weighted = 0.0
        total = 0.0
        for field in resolved:
            if field.method == ResolutionMethod.NO_DATA:
                continue
            importance = self._config.importance(field.field)
            weighted += importance * field.confidence
            total += importance
        return round(weighted / total, 4) if total > 0 else 0.0


def build_consensus(source_data: SourceData, config: Optional[VerificationConfig] = None) -> ConsensusResult:
    """Build the consensus for one record. Deterministic and side-effect free."""
    return ConsensusBuilder(config).build_consensus(source_data)
