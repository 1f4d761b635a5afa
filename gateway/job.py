from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import List, Sequence, Union

from loguru import logger

from .context import CancellationToken
from .models import (
    FailureReason,
    JobEstimate,
    JobFailure,
    JobResult,
    OutcomeStatus,
    TranslationOutcome,
    TranslationRequest,
)
from .router import FallbackRouter
from .state import FallbackChainState


@dataclass
class TranslationJob:
    """One submission: a target language plus the requests to translate into it.

    ``run`` never raises for partial failure; every key gets exactly one
    outcome. Configuration problems (no provider for the language) and caller
    bugs (duplicate keys, mixed targets) do raise.
    """

    router: FallbackRouter
    target_lang: str
    requests: Sequence[TranslationRequest]
    dry_run: bool = False
    token: CancellationToken = field(default_factory=CancellationToken)
    grace_period: float | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.token.cancel(reason)

    async def run(self) -> Union[JobResult, JobEstimate]:
        if self.dry_run:
            return self.estimate()
        return await self.execute()

    def estimate(self) -> JobEstimate:
        estimate = self.router.estimate(self.requests, self.target_lang)
        logger.info(
            "Dry run for {}: {} cached, {} pending, ~{} chars",
            self.target_lang,
            len(estimate.cached),
            len(estimate.pending_keys),
            estimate.total_chars,
        )
        return estimate

    async def execute(self) -> JobResult:
        state = FallbackChainState(self.requests)
        if not self.requests:
            return self._aggregate(state)
        grace = self.grace_period
        if grace is None:
            grace = self.router.context.cancel_grace_period

        router_task = asyncio.create_task(
            self.router.translate(self.requests, self.target_lang, token=self.token, state=state)
        )
        cancel_task = asyncio.create_task(self.token.wait())
        try:
            await asyncio.wait({router_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
            if not router_task.done():
                logger.info("Job for {} cancelled; waiting up to {:.1f}s for in-flight chunks", self.target_lang, grace)
                await asyncio.wait({router_task}, timeout=grace)
            if not router_task.done():
                logger.warning("Grace period elapsed; abandoning in-flight chunks")
                router_task.cancel()
                await asyncio.gather(router_task, return_exceptions=True)
        finally:
            for task in (router_task, cancel_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(router_task, cancel_task, return_exceptions=True)

        if not router_task.cancelled():
            exc = router_task.exception()
            if exc is not None:
                raise exc
        if self.token.cancelled:
            state.fail_remaining(FailureReason.CANCELLED, self.token.reason)
        return self._aggregate(state)

    def _aggregate(self, state: FallbackChainState) -> JobResult:
        outcomes: List[TranslationOutcome] = []
        for request in self.requests:
            outcome = state.outcomes.get(request.key)
            if outcome is None:
                outcome = TranslationOutcome.failed(
                    request.key, FailureReason.ALL_PROVIDERS_EXHAUSTED, attempts=state.attempts[request.key]
                )
            outcomes.append(outcome)
        accepted = sum(1 for outcome in outcomes if outcome.status is not OutcomeStatus.FAILED)
        coverage = round(100.0 * accepted / len(outcomes), 2) if outcomes else 100.0
        failures = [
            JobFailure(key=outcome.key, reason=outcome.failure_reason, detail=outcome.detail)
            for outcome in outcomes
            if outcome.status is OutcomeStatus.FAILED and outcome.failure_reason is not None
        ]
        result = JobResult(
            outcomes=outcomes,
            coverage_pct=coverage,
            provider_usage=dict(state.provider_usage),
            provider_calls=dict(state.provider_calls),
            failures=failures,
            warnings=list(state.warnings),
            cancelled=self.token.cancelled,
        )
        logger.info(
            "Job for {} finished: {:.1f}% coverage, {} failed",
            self.target_lang,
            result.coverage_pct,
            len(failures),
        )
        return result
