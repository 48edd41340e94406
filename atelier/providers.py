import base64
import binascii
import logging
from enum import Enum
from typing import Any

import httpx
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from atelier.config import Settings
from atelier.models import StoredAsset
from atelier.storage import save_result

logger = logging.getLogger(__name__)

TOGETHER_MODEL = "black-forest-labs/FLUX.1-schnell-Free"
HUGGINGFACE_MODEL = "prompthero/openjourney"

PRODUCT_PROMPT = (
    "A high-quality fashion product image of a stylish summer dress, "
    "detailed fabric texture, professional photography"
)
TOGETHER_PROBE_PROMPT = "A fashion sketch of a summer dress, detailed design"
HUGGINGFACE_PROBE_PROMPT = "mdjrny-v4 style a fashion sketch of a summer dress, detailed design"


class ProviderOutcome(str, Enum):
    SUCCESS = "success"
    RATE_LIMITED = "rate-limited"
    PROVIDER_ERROR = "provider-error"
    UNRECOGNIZED_SHAPE = "unrecognized-shape"
    TRANSPORT_ERROR = "transport-error"


class ProviderResult(BaseModel):
    outcome: ProviderOutcome
    image: bytes | None = None
    status_code: int | None = None
    reason: str = ""
    body: str = ""
    error: str | None = None
    result_path: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is ProviderOutcome.SUCCESS


class ProbeResult(BaseModel):
    ok: bool
    status_code: int
    reason: str = ""
    body: str = ""
    image: bytes | None = None


def _first_choice(container: Any) -> dict[str, Any] | None:
    if not isinstance(container, dict):
        return None
    choices = container.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    return choices[0]


def _extract_image_b64(payload: Any) -> str | None:
    """Find the base64 image in either known completions response layout.

    Newer responses nest it as ``output.choices[0].image_base64``; older ones
    return ``choices[0].image`` at the top level.
    """
    if not isinstance(payload, dict):
        return None
    nested = _first_choice(payload.get("output"))
    if nested and nested.get("image_base64"):
        return nested["image_base64"]
    flat = _first_choice(payload)
    if flat and flat.get("image"):
        return flat["image"]
    return None


def _error_message(exc: Exception) -> str:
    return str(exc) or exc.__class__.__name__


def describe_api_key(api_key: str) -> str:
    return f"length={len(api_key)}"


class TogetherImageProvider:
    def __init__(self, settings: Settings, client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._client = client

    async def request_image(self, prompt: str) -> ProviderResult:
        logger.info("Calling Together.ai API with %s model", TOGETHER_MODEL)
        if not self._settings.together_api_key:
            logger.warning("TOGETHER_API_KEY is not set; the request will likely be rejected")
        try:
            response = await self._client.post(
                self._settings.together_api_url,
                headers={
                    "Authorization": f"Bearer {self._settings.together_api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": TOGETHER_MODEL,
                    "prompt": prompt,
                    "max_tokens": 1024,
                    "temperature": 0.7,
                    "response_format": "image",
                },
            )
        except httpx.HTTPError as exc:
            logger.error("Together.ai request failed: %s", _error_message(exc))
            return ProviderResult(outcome=ProviderOutcome.TRANSPORT_ERROR, error=_error_message(exc))

        logger.info("Together.ai API response status: %s", response.status_code)

        if response.status_code == 429:
            logger.info("Rate limit reached, using mock data instead")
            return ProviderResult(
                outcome=ProviderOutcome.RATE_LIMITED,
                status_code=response.status_code,
                reason=response.reason_phrase,
            )

        if not response.is_success:
            logger.warning("Together.ai API error: %s - %s", response.status_code, response.text)
            return ProviderResult(
                outcome=ProviderOutcome.PROVIDER_ERROR,
                status_code=response.status_code,
                reason=response.reason_phrase,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("Together.ai returned a body that is not JSON: %s", _error_message(exc))
            return ProviderResult(
                outcome=ProviderOutcome.TRANSPORT_ERROR,
                status_code=response.status_code,
                error=_error_message(exc),
            )

        image_b64 = _extract_image_b64(payload)
        if image_b64 is None:
            logger.error("Unexpected response format from Together.ai API")
            logger.debug("Response data: %.500s", response.text)
            return ProviderResult(
                outcome=ProviderOutcome.UNRECOGNIZED_SHAPE,
                status_code=response.status_code,
                body=response.text,
            )

        try:
            image = base64.b64decode(image_b64)
        except (binascii.Error, ValueError, TypeError) as exc:
            logger.error("Together.ai image payload could not be decoded: %s", _error_message(exc))
            return ProviderResult(
                outcome=ProviderOutcome.TRANSPORT_ERROR,
                status_code=response.status_code,
                error=_error_message(exc),
            )

        return ProviderResult(outcome=ProviderOutcome.SUCCESS, status_code=response.status_code, image=image)

    async def generate_for(self, asset: StoredAsset) -> ProviderResult:
        # The uploaded image only feeds the preview; the provider sees the fixed prompt.
        result = await self.request_image(PRODUCT_PROMPT)
        if not result.ok:
            return result
        try:
            result_path = await run_in_threadpool(
                save_result, self._settings.upload_dir, asset, result.image or b""
            )
        except OSError as exc:
            logger.error("Could not store generated image for %s: %s", asset.filename, exc)
            return ProviderResult(outcome=ProviderOutcome.TRANSPORT_ERROR, error=_error_message(exc))
        return result.model_copy(update={"result_path": result_path})


class HuggingFaceProbe:
    def __init__(self, settings: Settings, client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._client = client

    async def run(self) -> ProbeResult:
        api_key = self._settings.huggingface_api_key
        logger.info("Probing Hugging Face inference API (key %s)", describe_api_key(api_key))
        response = await self._client.post(
            self._settings.huggingface_api_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            json={"inputs": HUGGINGFACE_PROBE_PROMPT},
        )
        if not response.is_success:
            return ProbeResult(
                ok=False,
                status_code=response.status_code,
                reason=response.reason_phrase,
                body=response.text,
            )
        return ProbeResult(ok=True, status_code=response.status_code, image=response.content)
