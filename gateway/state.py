from __future__ import annotations

from collections import Counter
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .models import FailureReason, OutcomeStatus, TranslationOutcome, TranslationRequest

# Higher wins when several tiers reject the same key.
_REASON_PRIORITY = {
    FailureReason.ALL_PROVIDERS_EXHAUSTED: 0,
    FailureReason.UNSUPPORTED_LANGUAGE_PAIR: 1,
    FailureReason.PLACEHOLDER_MISMATCH: 2,
    FailureReason.CANCELLED: 3,
}


class KeyState(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    FAILED = "failed"


class FallbackChainState:
    """Per-job bookkeeping: tier cursor per key, outcomes, usage and dead tiers.

    The cursor only moves forward. Outcomes are write-once.
    """

    def __init__(self, requests: Sequence[TranslationRequest]) -> None:
        self.requests: Dict[str, TranslationRequest] = {}
        for request in requests:
            if request.key in self.requests:
                raise ValueError(f"Duplicate request key: {request.key!r}")
            self.requests[request.key] = request
        self.status: Dict[str, KeyState] = {key: KeyState.PENDING for key in self.requests}
        self.cursor: Dict[str, int] = {}
        self.outcomes: Dict[str, TranslationOutcome] = {}
        self.attempts: Counter[str] = Counter()
        self.provider_usage: Counter[str] = Counter()
        self.provider_calls: Counter[str] = Counter()
        self.dead_tiers: Set[int] = set()
        self.warnings: List[str] = []
        self._notes: Dict[str, Tuple[FailureReason, Optional[str]]] = {}

    def attempting(self, keys: Iterable[str], tier: int) -> None:
        for key in keys:
            current = self.cursor.get(key)
            if current is not None and tier < current:
                raise ValueError(f"{key}: cannot return to tier {tier} after tier {current}")
            self.cursor[key] = tier
            self.status[key] = KeyState.ATTEMPTING

    def escalate(self, keys: Iterable[str]) -> None:
        for key in keys:
            if key not in self.outcomes:
                self.status[key] = KeyState.ESCALATED

    def resolve(self, outcome: TranslationOutcome) -> bool:
        if outcome.key in self.outcomes:
            return False
        self.outcomes[outcome.key] = outcome
        self.status[outcome.key] = (
            KeyState.FAILED if outcome.status is OutcomeStatus.FAILED else KeyState.RESOLVED
        )
        return True

    def note_failure(self, key: str, reason: FailureReason, detail: str | None = None) -> None:
        current = self._notes.get(key)
        if current is None or _REASON_PRIORITY[reason] >= _REASON_PRIORITY[current[0]]:
            self._notes[key] = (reason, detail)

    def failure_for(self, key: str) -> Tuple[FailureReason, Optional[str]]:
        return self._notes.get(key, (FailureReason.ALL_PROVIDERS_EXHAUSTED, None))

    def fail_remaining(self, reason: FailureReason | None = None, detail: str | None = None) -> None:
        for key in self.unresolved_keys():
            if reason is not None:
                self.note_failure(key, reason, detail)
            final_reason, final_detail = self.failure_for(key)
            self.resolve(
                TranslationOutcome.failed(
                    key, final_reason, attempts=self.attempts[key], detail=final_detail
                )
            )

    def unresolved_keys(self) -> List[str]:
        return [key for key in self.requests if key not in self.outcomes]

    def unresolved(self) -> List[TranslationRequest]:
        return [self.requests[key] for key in self.unresolved_keys()]

    def mark_dead(self, tier: int) -> None:
        self.dead_tiers.add(tier)

    def is_dead(self, tier: int) -> bool:
        return tier in self.dead_tiers

    def record_call(self, provider: str, chars: int) -> None:
        self.provider_calls[provider] += 1
        self.provider_usage[provider] += chars

    def add_warning(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)

    def ordered_outcomes(self) -> List[TranslationOutcome]:
        return [self.outcomes[key] for key in self.requests if key in self.outcomes]
