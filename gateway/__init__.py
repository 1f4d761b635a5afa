"""
Translation gateway

Batch translation across an ordered chain of providers with caching,
rate limiting and tiered fallback.

Supported providers:
- Systran
- DeepL API (Free and Pro plans)
- Google Cloud Translation
- OpenAI chat completions
"""
from .base import HTTPProviderAdapter, ProviderAdapter
from .cache import CacheEntry, TranslationCache, make_cache_key
from .context import CancellationToken, GatewayContext
from .deepl_api import DeepLAPITranslator
from .errors import (
    CacheError,
    ConfigurationError,
    GatewayError,
    PermanentProviderError,
    PlaceholderMismatch,
    ProviderError,
    RateLimitExceeded,
    TransientProviderError,
)
from .factory import AVAILABLE_ENGINES, build_adapter, build_provider_tiers, build_router, get_available_engines
from .google import GoogleTranslator
from .job import TranslationJob
from .models import (
    BillingUnit,
    FailureReason,
    JobEstimate,
    JobFailure,
    JobResult,
    OutcomeStatus,
    ProviderConfig,
    ProviderTranslation,
    RateLimitConfig,
    TranslationOutcome,
    TranslationRequest,
)
from .openai_api import OpenAITranslator
from .orchestrator import BatchOrchestrator, ProviderTier, TierRunResult
from .rate_limit import RateLimiter
from .retry import ErrorClass, Escalate, RetryAfter, RetryPolicy, ShrinkAndRetry
from .router import FallbackRouter
from .state import FallbackChainState
from .systran import SystranTranslator

__all__ = [
    "ProviderAdapter",
    "HTTPProviderAdapter",
    "CacheEntry",
    "TranslationCache",
    "make_cache_key",
    "CancellationToken",
    "GatewayContext",
    "DeepLAPITranslator",
    "GoogleTranslator",
    "OpenAITranslator",
    "SystranTranslator",
    "GatewayError",
    "ConfigurationError",
    "ProviderError",
    "TransientProviderError",
    "PermanentProviderError",
    "RateLimitExceeded",
    "PlaceholderMismatch",
    "CacheError",
    "AVAILABLE_ENGINES",
    "build_adapter",
    "build_provider_tiers",
    "build_router",
    "get_available_engines",
    "TranslationJob",
    "BillingUnit",
    "FailureReason",
    "JobEstimate",
    "JobFailure",
    "JobResult",
    "OutcomeStatus",
    "ProviderConfig",
    "ProviderTranslation",
    "RateLimitConfig",
    "TranslationOutcome",
    "TranslationRequest",
    "BatchOrchestrator",
    "ProviderTier",
    "TierRunResult",
    "RateLimiter",
    "ErrorClass",
    "Escalate",
    "RetryAfter",
    "RetryPolicy",
    "ShrinkAndRetry",
    "FallbackRouter",
    "FallbackChainState",
]
