"""Data model shared by the router, orchestrator and job."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from utils.text import extract_placeholders


@dataclass(frozen=True, slots=True)
class TranslationRequest:
    key: str
    source_text: str
    source_lang: str
    target_lang: str
    placeholder_tokens: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        # None means derive the tokens from the source text
        tokens = self.placeholder_tokens
        if tokens is None:
            tokens = extract_placeholders(self.source_text)
        object.__setattr__(self, "placeholder_tokens", tuple(tokens))

    @classmethod
    def create(
        cls,
        key: str,
        source_text: str,
        *,
        source_lang: str,
        target_lang: str,
        placeholder_tokens: Sequence[str] | None = None,
    ) -> "TranslationRequest":
        """Build a request, extracting placeholder tokens from the source when none are given."""
        return cls(
            key=key,
            source_text=source_text,
            source_lang=source_lang,
            target_lang=target_lang,
            placeholder_tokens=tuple(placeholder_tokens) if placeholder_tokens is not None else None,
        )

    @property
    def char_count(self) -> int:
        return len(self.source_text)


@dataclass(frozen=True, slots=True)
class ProviderTranslation:
    key: str
    translated_text: str


class OutcomeStatus(str, Enum):
    CACHED = "cached"
    TRANSLATED = "translated"
    FAILED = "failed"


class FailureReason(str, Enum):
    PLACEHOLDER_MISMATCH = "placeholder_mismatch"
    ALL_PROVIDERS_EXHAUSTED = "all_providers_exhausted"
    UNSUPPORTED_LANGUAGE_PAIR = "unsupported_language_pair"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class TranslationOutcome:
    key: str
    status: OutcomeStatus
    translated_text: Optional[str] = None
    provider_used: Optional[str] = None
    attempts: int = 0
    cache_hit: bool = False
    failure_reason: Optional[FailureReason] = None
    detail: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.status is not OutcomeStatus.FAILED

    @classmethod
    def failed(
        cls,
        key: str,
        reason: FailureReason,
        *,
        attempts: int = 0,
        detail: str | None = None,
    ) -> "TranslationOutcome":
        return cls(
            key=key,
            status=OutcomeStatus.FAILED,
            attempts=attempts,
            failure_reason=reason,
            detail=detail,
        )


@dataclass(frozen=True, slots=True)
class JobFailure:
    key: str
    reason: FailureReason
    detail: Optional[str] = None


@dataclass(slots=True)
class JobResult:
    outcomes: List[TranslationOutcome]
    coverage_pct: float
    provider_usage: Dict[str, int] = field(default_factory=dict)
    provider_calls: Dict[str, int] = field(default_factory=dict)
    failures: List[JobFailure] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    cancelled: bool = False

    def outcome_for(self, key: str) -> TranslationOutcome:
        for outcome in self.outcomes:
            if outcome.key == key:
                return outcome
        raise KeyError(key)

    def to_dict(self) -> dict:
        return {
            "outcomes": [
                {
                    "key": item.key,
                    "status": item.status.value,
                    "translated_text": item.translated_text,
                    "provider_used": item.provider_used,
                    "attempts": item.attempts,
                    "cache_hit": item.cache_hit,
                }
                for item in self.outcomes
            ],
            "coverage_pct": self.coverage_pct,
            "provider_usage": dict(self.provider_usage),
            "provider_calls": dict(self.provider_calls),
            "failures": [
                {"key": item.key, "reason": item.reason.value, "detail": item.detail}
                for item in self.failures
            ],
            "warnings": list(self.warnings),
            "cancelled": self.cancelled,
        }


@dataclass(slots=True)
class JobEstimate:
    """Dry-run answer: cache hits resolved, misses priced against their first eligible tier."""

    cached: List[TranslationOutcome]
    pending_keys: List[str]
    estimated_chars: Dict[str, int] = field(default_factory=dict)
    estimated_requests: Dict[str, int] = field(default_factory=dict)
    estimated_cost: Dict[str, float] = field(default_factory=dict)
    unroutable_keys: List[str] = field(default_factory=list)

    @property
    def total_chars(self) -> int:
        return sum(self.estimated_chars.values())

    @property
    def total_cost(self) -> float:
        return sum(self.estimated_cost.values())

    def to_dict(self) -> dict:
        return {
            "cached": [item.key for item in self.cached],
            "pending_keys": list(self.pending_keys),
            "estimated_chars": dict(self.estimated_chars),
            "estimated_requests": dict(self.estimated_requests),
            "estimated_cost": dict(self.estimated_cost),
            "unroutable_keys": list(self.unroutable_keys),
        }


class BillingUnit(str, Enum):
    REQUESTS = "requests"
    CHARACTERS = "characters"


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    requests_per_sec: float = 5.0
    burst: int = 5


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    tier: int
    name: str
    engine: str = ""
    supported_lang_pairs: Optional[frozenset] = None  # None means any pair
    max_batch_size: int = 50
    max_chars_per_request: int = 5000
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    billing_unit: BillingUnit = BillingUnit.REQUESTS
    max_concurrent_requests: int = 4
    timeout: float = 30.0
    max_retries: int = 3
    credentials_env: Optional[str] = None
    cost_per_million_chars: float = 0.0
    enabled: bool = True
    options: Tuple[Tuple[str, str], ...] = ()

    def supports(self, source_lang: str, target_lang: str) -> bool:
        if self.supported_lang_pairs is None:
            return True
        source = source_lang.lower()
        target = target_lang.lower()
        for pair_source, pair_target in self.supported_lang_pairs:
            if pair_source in ("*", source) and pair_target in ("*", target):
                return True
        return False

    def supports_target(self, target_lang: str) -> bool:
        if self.supported_lang_pairs is None:
            return True
        target = target_lang.lower()
        return any(pair_target in ("*", target) for _, pair_target in self.supported_lang_pairs)

    def option(self, name: str, default: str | None = None) -> str | None:
        return dict(self.options).get(name, default)

    def weight_for(self, chars: int) -> int:
        return chars if self.billing_unit is BillingUnit.CHARACTERS else 1
