import logging
from collections.abc import Awaitable, Callable

from atelier import fallback
from atelier.config import Settings
from atelier.fallback import FallbackReason
from atelier.models import GenerationRequest, GenerationResult, OperationType
from atelier.providers import TogetherImageProvider

logger = logging.getLogger(__name__)

OperationHandler = Callable[[GenerationRequest, Settings, TogetherImageProvider], Awaitable[GenerationResult]]


async def process_sketch_to_product(
    request: GenerationRequest,
    settings: Settings,
    provider: TogetherImageProvider,
) -> GenerationResult:
    original_image = request.source.public_path
    if settings.use_mock_data:
        return fallback.mock_result(original_image, FallbackReason.MOCK_MODE)

    try:
        provider_result = await provider.generate_for(request.source)
        if not provider_result.ok:
            return fallback.resolve(original_image, provider_result)
        return GenerationResult(original_image=original_image, result_image=provider_result.result_path)
    except Exception:
        logger.exception("Error in sketch-to-product for %s", request.source.filename)
        return fallback.mock_result(original_image, FallbackReason.UNEXPECTED)


async def process_inspiration_to_product(
    request: GenerationRequest,
    settings: Settings,
    provider: TogetherImageProvider,
) -> GenerationResult:
    return GenerationResult(
        original_image=request.source.public_path,
        result_image=fallback.INSPIRATION_RESULT,
        mock_data=True,
    )


async def process_product_to_catalogue(
    request: GenerationRequest,
    settings: Settings,
    provider: TogetherImageProvider,
) -> GenerationResult:
    return GenerationResult(
        original_image=request.source.public_path,
        result_image=fallback.CATALOGUE_RESULT,
        mock_data=True,
        with_model=request.with_model,
    )


async def process_catalogue_to_video(
    request: GenerationRequest,
    settings: Settings,
    provider: TogetherImageProvider,
) -> GenerationResult:
    # Video generation is not implemented; every request gets the demo clip.
    return GenerationResult(
        original_image=request.source.public_path,
        video_url=fallback.VIDEO_RESULT,
        mock_data=True,
    )


OPERATION_HANDLERS: dict[OperationType, OperationHandler] = {
    OperationType.SKETCH_TO_PRODUCT: process_sketch_to_product,
    OperationType.INSPIRATION_TO_PRODUCT: process_inspiration_to_product,
    OperationType.PRODUCT_TO_CATALOGUE: process_product_to_catalogue,
    OperationType.CATALOGUE_TO_VIDEO: process_catalogue_to_video,
}


async def dispatch(
    request: GenerationRequest,
    settings: Settings,
    provider: TogetherImageProvider,
) -> GenerationResult:
    handler = OPERATION_HANDLERS[request.operation]
    logger.info("Running %s for %s", request.operation.value, request.source.filename)
    return await handler(request, settings, provider)
