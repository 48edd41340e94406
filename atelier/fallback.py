import logging
from enum import Enum

from atelier.models import GenerationResult
from atelier.providers import ProviderOutcome, ProviderResult

logger = logging.getLogger(__name__)

DEMO_RESULTS_PREFIX = "/demo-results"

FASHION_RESULT_1 = f"{DEMO_RESULTS_PREFIX}/fashion-result-1.jpg"
FASHION_RESULT_2 = f"{DEMO_RESULTS_PREFIX}/fashion-result-2.jpg"
FASHION_RESULT_3 = f"{DEMO_RESULTS_PREFIX}/fashion-result-3.jpg"
INSPIRATION_RESULT = f"{DEMO_RESULTS_PREFIX}/inspiration-result.jpg"
CATALOGUE_RESULT = f"{DEMO_RESULTS_PREFIX}/catalogue-result.jpg"
VIDEO_RESULT = f"{DEMO_RESULTS_PREFIX}/video-result.mp4"

class FallbackReason(str, Enum):
    MOCK_MODE = "mock-mode"
    RATE_LIMITED = "rate-limited"
    PROVIDER_ERROR = "provider-error"
    UNRECOGNIZED_SHAPE = "unrecognized-shape"
    TRANSPORT_ERROR = "transport-error"
    UNEXPECTED = "unexpected"


PLACEHOLDERS: dict[FallbackReason, str] = {
    FallbackReason.MOCK_MODE: FASHION_RESULT_1,
    FallbackReason.RATE_LIMITED: FASHION_RESULT_1,
    FallbackReason.PROVIDER_ERROR: FASHION_RESULT_2,
    FallbackReason.UNRECOGNIZED_SHAPE: FASHION_RESULT_2,
    FallbackReason.TRANSPORT_ERROR: FASHION_RESULT_2,
    FallbackReason.UNEXPECTED: FASHION_RESULT_3,
}

_OUTCOME_REASONS: dict[ProviderOutcome, FallbackReason] = {
    ProviderOutcome.RATE_LIMITED: FallbackReason.RATE_LIMITED,
    ProviderOutcome.PROVIDER_ERROR: FallbackReason.PROVIDER_ERROR,
    ProviderOutcome.UNRECOGNIZED_SHAPE: FallbackReason.UNRECOGNIZED_SHAPE,
    ProviderOutcome.TRANSPORT_ERROR: FallbackReason.TRANSPORT_ERROR,
}


def mock_result(original_image: str, reason: FallbackReason, error: str | None = None) -> GenerationResult:
    result = GenerationResult(
        original_image=original_image,
        result_image=PLACEHOLDERS[reason],
        mock_data=True,
    )
    if reason is FallbackReason.RATE_LIMITED:
        result.rate_limited = True
    if reason is FallbackReason.TRANSPORT_ERROR and error:
        result.error = error
    return result


def resolve(original_image: str, provider_result: ProviderResult) -> GenerationResult:
    if provider_result.ok:
        raise ValueError("resolve() needs a failed provider result")
    reason = _OUTCOME_REASONS[provider_result.outcome]
    logger.info("Falling back to %s (%s)", PLACEHOLDERS[reason], reason.value)
    return mock_result(original_image, reason, provider_result.error)
