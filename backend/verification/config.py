"""
Verification service configuration.
Uses MV_VERIFIER_ prefix; builds the runtime FetchConfig and VerificationConfig
models that the fetcher and the consensus engine consume.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.models.enums import FieldKind, Severity, Source
from shared.utils.logging import get_logger

from verification.errors import ConfigError
from verification.normalization import fold_text

logger = get_logger(__name__)

DEFAULT_SOURCE_PRIORITY: list[str] = [
    Source.INTERNAL.value,
    Source.TMDB.value,
    Source.OMDB.value,
    Source.WIKIPEDIA.value,
    Source.WIKIDATA.value,
]

DEFAULT_TRUST_WEIGHTS: dict[str, float] = {
    Source.TMDB.value: 0.9,
    Source.OMDB.value: 0.85,
    Source.WIKIDATA.value: 0.85,
    Source.WIKIPEDIA.value: 0.8,
    Source.INTERNAL.value: 0.7,
}

# Per-field overrides where one catalog is known to be stronger than its global weight
DEFAULT_FIELD_TRUST_WEIGHTS: dict[str, dict[str, float]] = {
    "synopsis": {Source.WIKIPEDIA.value: 0.9, Source.TMDB.value: 0.75, Source.OMDB.value: 0.7},
    "rating": {Source.OMDB.value: 0.9, Source.TMDB.value: 0.75, Source.INTERNAL.value: 0.5},
    "certification": {Source.OMDB.value: 0.9},
}

# Requests per second per catalog (burst is shared unless overridden)
DEFAULT_SOURCE_RPS: dict[str, float] = {
    Source.TMDB.value: 40.0,
    Source.OMDB.value: 10.0,
    Source.WIKIPEDIA.value: 100.0,
    Source.WIKIDATA.value: 50.0,
    Source.INTERNAL.value: 100.0,
}

DEFAULT_FIELD_KINDS: dict[str, FieldKind] = {
    "title": FieldKind.TITLE,
    "release_date": FieldKind.DATE,
    "release_year": FieldKind.YEAR,
    "director": FieldKind.PERSON,
    "hero": FieldKind.PERSON,
    "heroine": FieldKind.PERSON,
    "music_director": FieldKind.PERSON,
    "runtime": FieldKind.RUNTIME,
    "rating": FieldKind.RATING,
    "genres": FieldKind.LIST,
    "language": FieldKind.TEXT,
    "certification": FieldKind.TEXT,
    "synopsis": FieldKind.TEXT,
}

DEFAULT_FIELD_IMPORTANCE: dict[str, float] = {
    "title": 3.0,
    "release_date": 2.0,
    "release_year": 2.0,
    "director": 2.0,
    "hero": 1.5,
    "heroine": 1.0,
    "music_director": 1.0,
    "runtime": 1.0,
    "rating": 1.0,
    "genres": 1.0,
    "language": 1.0,
    "certification": 0.5,
    "synopsis": 0.5,
}

DEFAULT_CRITICAL_FIELDS: list[str] = ["title", "release_date", "release_year", "director"]


class FetchConfig(BaseModel):
    """Runtime limits for the batch fetcher."""

    concurrency: int = 8
    per_source_rps: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_SOURCE_RPS))
    default_rps: float = 10.0
    burst: int = 5
    per_source_burst: dict[str, int] = Field(default_factory=dict)
    max_retries: int = 3
    backoff_base_ms: float = 500.0
    backoff_max_ms: float = 30_000.0
    jitter_ratio: float = 0.2
    timeout_ms: float = 10_000.0
    circuit_failure_threshold: int = 5
    circuit_recovery_s: float = 120.0

    def rps_for(self, source: str) -> float:
        return self.per_source_rps.get(source, self.default_rps)

    def burst_for(self, source: str) -> int:
        return self.per_source_burst.get(source, self.burst)

    def ensure_valid(self) -> None:
        """Raise ConfigError on limits that would stall or break a batch."""
        if self.concurrency < 1:
            raise ConfigError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.default_rps <= 0:
            raise ConfigError(f"default_rps must be > 0, got {self.default_rps}")
        for source, rps in sorted(self.per_source_rps.items()):
            if rps <= 0:
                raise ConfigError(f"rps for source '{source}' must be > 0, got {rps}")
        if self.burst < 1 or any(b < 1 for b in self.per_source_burst.values()):
            raise ConfigError("burst must be >= 1")
        if self.max_retries < 0:
            raise ConfigError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.backoff_base_ms < 0:
            raise ConfigError(f"backoff_base_ms must be >= 0, got {self.backoff_base_ms}")
        if not 0 <= self.jitter_ratio < 1:
            raise ConfigError(f"jitter_ratio must be in [0, 1), got {self.jitter_ratio}")
        if self.timeout_ms <= 0:
            raise ConfigError(f"timeout_ms must be > 0, got {self.timeout_ms}")
        if self.circuit_failure_threshold < 1:
            raise ConfigError("circuit_failure_threshold must be >= 1")


class VerificationConfig(BaseModel):
    """Consensus rules: thresholds, trust, aliases and field registry."""

    consensus_threshold: float = 0.6
    trust_weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_TRUST_WEIGHTS))
    field_trust_weights: dict[str, dict[str, float]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_FIELD_TRUST_WEIGHTS.items()}
    )
    default_trust_weight: float = 0.5
    source_priority: list[str] = Field(default_factory=lambda: list(DEFAULT_SOURCE_PRIORITY))
    alias_tables: dict[str, dict[str, str]] = Field(default_factory=dict)
    critical_fields: list[str] = Field(default_factory=lambda: list(DEFAULT_CRITICAL_FIELDS))
    field_importance: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_FIELD_IMPORTANCE))
    field_kinds: dict[str, FieldKind] = Field(default_factory=lambda: dict(DEFAULT_FIELD_KINDS))
    tie_epsilon: float = 0.05
    variant_similarity: float = 85.0
    unit_scale_factors: tuple[float, ...] = (10.0, 60.0, 100.0, 1000.0)
    unit_ratio_tolerance: float = 0.02
    review_severity: Severity = Severity.CRITICAL

    _folded_aliases: dict[str, dict[str, str]] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: object) -> None:
        self._folded_aliases = {
            field: {fold_text(variant): canonical for variant, canonical in table.items()}
            for field, table in self.alias_tables.items()
        }

    def ensure_valid(self) -> None:
        if not 0 < self.consensus_threshold <= 1:
            raise ConfigError(f"consensus_threshold must be in (0, 1], got {self.consensus_threshold}")
        if self.tie_epsilon < 0:
            raise ConfigError(f"tie_epsilon must be >= 0, got {self.tie_epsilon}")
        weights = list(self.trust_weights.items()) + [
            (f"{field}.{source}", w)
            for field, table in self.field_trust_weights.items()
            for source, w in table.items()
        ]
        for name, weight in weights + [("default", self.default_trust_weight)]:
            if not 0 <= weight <= 1:
                raise ConfigError(f"trust weight '{name}' must be in [0, 1], got {weight}")
        if len(set(self.source_priority)) != len(self.source_priority):
            raise ConfigError("source_priority contains duplicates")

    # ── Lookups ─────────────────────────────────────────────────────────
    def kind_for(self, field: str) -> FieldKind:
        return self.field_kinds.get(field, FieldKind.TEXT)

    def aliases_for(self, field: str) -> dict[str, str]:
        """Alias table for a field keyed by folded variant."""
        return self._folded_aliases.get(field, {})

    def trust_weight(self, source: str, field: Optional[str] = None) -> float:
        if field is not None:
            override = self.field_trust_weights.get(field, {})
            if source in override:
                return override[source]
        return self.trust_weights.get(source, self.default_trust_weight)

    def priority_key(self, source: str) -> tuple[int, str]:
        """Sort key: configured priority first, then unlisted sources by name."""
        try:
            return (self.source_priority.index(source), source)
        except ValueError:
            return (len(self.source_priority), source)

    def importance(self, field: str) -> float:
        return self.field_importance.get(field, 1.0)

    def is_critical(self, field: str) -> bool:
        return field in self.critical_fields

    def known_fields(self) -> list[str]:
        return sorted(self.field_kinds)


class VerifierSettings(BaseSettings):
    """Verifier-specific settings; use get_settings() for Redis/metrics."""

    model_config = SettingsConfigDict(
        env_prefix="MV_VERIFIER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Concurrency and limits
    concurrency: int = Field(default=8, description="Max records fetched concurrently")
    default_rps: float = Field(default=10.0, description="Requests per second for sources without an override")
    per_source_rps: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_SOURCE_RPS))
    burst: int = Field(default=5, description="Token bucket burst size per source")

    # Timeouts and retries
    timeout_ms: float = Field(default=10_000.0, description="Timeout per catalog request")
    max_retries: int = Field(default=3, description="Max retries on retryable failure")
    backoff_base_ms: float = Field(default=500.0, description="Base delay for exponential backoff")
    jitter_ratio: float = Field(default=0.2, description="Jitter as fraction of delay (0.2 = ±20%)")

    # Circuit breaker
    circuit_failure_threshold: int = Field(default=5, description="Consecutive failures before opening a source circuit")
    circuit_recovery_s: float = Field(default=120.0, description="Seconds before half-open")

    # Consensus
    consensus_threshold: float = Field(default=0.6, description="Bucket share needed for a majority")
    tie_epsilon: float = Field(default=0.05, description="Weighted share gap treated as a tie")
    trust_weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_TRUST_WEIGHTS))
    source_priority: list[str] = Field(default_factory=lambda: list(DEFAULT_SOURCE_PRIORITY))
    critical_fields: list[str] = Field(default_factory=lambda: list(DEFAULT_CRITICAL_FIELDS))
    alias_table_path: Optional[Path] = Field(default=None, description="JSON file: {field: {variant: canonical}}")

    # Checkpoints
    checkpoint_backend: Literal["file", "redis"] = "file"
    checkpoint_dir: Path = Field(default=Path(".verification/checkpoints"))
    checkpoint_ttl_s: int = Field(default=86400 * 7, description="TTL for Redis checkpoints")

    def to_fetch_config(self) -> FetchConfig:
        return FetchConfig(
            concurrency=self.concurrency,
            per_source_rps=dict(self.per_source_rps),
            default_rps=self.default_rps,
            burst=self.burst,
            max_retries=self.max_retries,
            backoff_base_ms=self.backoff_base_ms,
            jitter_ratio=self.jitter_ratio,
            timeout_ms=self.timeout_ms,
            circuit_failure_threshold=self.circuit_failure_threshold,
            circuit_recovery_s=self.circuit_recovery_s,
        )

    def to_verification_config(self) -> VerificationConfig:
        return VerificationConfig(
            consensus_threshold=self.consensus_threshold,
            tie_epsilon=self.tie_epsilon,
            trust_weights=dict(self.trust_weights),
            source_priority=list(self.source_priority),
            critical_fields=list(self.critical_fields),
            alias_tables=load_alias_tables(self.alias_table_path) if self.alias_table_path else {},
        )


def load_alias_tables(path: Path) -> dict[str, dict[str, str]]:
    """Read {field: {variant: canonical}} from a JSON file."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"cannot load alias tables from {path}: {exc}") from exc
    if not isinstance(data, dict) or not all(isinstance(v, dict) for v in data.values()):
        raise ConfigError(f"alias tables in {path} must be an object of objects")
    logger.info("alias_tables_loaded", path=str(path), fields=sorted(data))
    return {str(field): {str(k): str(v) for k, v in table.items()} for field, table in data.items()}


def get_verifier_settings() -> VerifierSettings:
    """Load verifier settings. Call get_settings() before run if using shared Redis."""
    return VerifierSettings()
