import asyncio
import base64
import json

import httpx
import pytest

from atelier import providers
from atelier.providers import (
    PRODUCT_PROMPT,
    TOGETHER_MODEL,
    HuggingFaceProbe,
    ProviderOutcome,
    TogetherImageProvider,
)
from atelier.storage import save_upload

IMAGE_BYTES = b"\x89PNG\r\n\x1a\ngenerated"
IMAGE_B64 = base64.b64encode(IMAGE_BYTES).decode("ascii")


async def _request(settings, handler) -> tuple:
    calls: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return handler(request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(recording)) as client:
        result = await TogetherImageProvider(settings, client).request_image("a prompt")
    return result, calls


@pytest.mark.anyio
async def test_nested_output_shape_is_success(settings) -> None:
    result, calls = await _request(
        settings,
        lambda request: httpx.Response(200, json={"output": {"choices": [{"image_base64": IMAGE_B64}]}}),
    )

    assert result.outcome is ProviderOutcome.SUCCESS
    assert result.image == IMAGE_BYTES
    assert len(calls) == 1


@pytest.mark.anyio
async def test_flat_choices_shape_is_success(settings) -> None:
    result, _ = await _request(settings, lambda request: httpx.Response(200, json={"choices": [{"image": IMAGE_B64}]}))

    assert result.ok
    assert result.image == IMAGE_BYTES


@pytest.mark.anyio
async def test_request_carries_credential_and_fixed_parameters(settings) -> None:
    _, calls = await _request(settings, lambda request: httpx.Response(200, json={"choices": [{"image": IMAGE_B64}]}))

    request = calls[0]
    assert str(request.url) == settings.together_api_url
    assert request.headers["Authorization"] == "Bearer together-test-key"
    body = json.loads(request.content)
    assert body == {
        "model": TOGETHER_MODEL,
        "prompt": "a prompt",
        "max_tokens": 1024,
        "temperature": 0.7,
        "response_format": "image",
    }


@pytest.mark.anyio
async def test_429_is_rate_limited_without_retry(settings) -> None:
    result, calls = await _request(settings, lambda request: httpx.Response(429, text="slow down"))

    assert result.outcome is ProviderOutcome.RATE_LIMITED
    assert len(calls) == 1


@pytest.mark.anyio
async def test_other_error_status_keeps_body(settings) -> None:
    result, calls = await _request(settings, lambda request: httpx.Response(503, text="overloaded"))

    assert result.outcome is ProviderOutcome.PROVIDER_ERROR
    assert result.status_code == 503
    assert result.body == "overloaded"
    assert len(calls) == 1


@pytest.mark.anyio
@pytest.mark.parametrize(
    "payload",
    [
        {"data": [{"b64_json": IMAGE_B64}]},
        {"choices": []},
        {"choices": [{"text": "no image here"}]},
        {"output": {"choices": "nope"}},
        ["not", "an", "object"],
    ],
)
async def test_unknown_shapes_are_unrecognized(settings, payload) -> None:
    result, _ = await _request(settings, lambda request: httpx.Response(200, json=payload))

    assert result.outcome is ProviderOutcome.UNRECOGNIZED_SHAPE
    assert result.image is None


@pytest.mark.anyio
async def test_connection_failure_is_transport_error(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result, _ = await _request(settings, handler)

    assert result.outcome is ProviderOutcome.TRANSPORT_ERROR
    assert result.error == "connection refused"


@pytest.mark.anyio
async def test_non_json_body_is_transport_error(settings) -> None:
    result, _ = await _request(settings, lambda request: httpx.Response(200, text="<html>oops</html>"))

    assert result.outcome is ProviderOutcome.TRANSPORT_ERROR
    assert result.error


@pytest.mark.anyio
async def test_undecodable_image_is_transport_error(settings) -> None:
    result, _ = await _request(settings, lambda request: httpx.Response(200, json={"choices": [{"image": "abc"}]}))

    assert result.outcome is ProviderOutcome.TRANSPORT_ERROR


@pytest.mark.anyio
async def test_generate_for_writes_result_asset(settings) -> None:
    asset = save_upload(settings.upload_dir, "dress.png", b"sketch")
    prompts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        prompts.append(json.loads(request.content)["prompt"])
        return httpx.Response(200, json={"output": {"choices": [{"image_base64": IMAGE_B64}]}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await TogetherImageProvider(settings, client).generate_for(asset)

    assert result.ok
    assert result.result_path == f"/uploads/result-{asset.filename}"
    assert (settings.upload_dir / f"result-{asset.filename}").read_bytes() == IMAGE_BYTES
    assert prompts == [PRODUCT_PROMPT]


@pytest.mark.anyio
async def test_generate_for_leaves_no_file_on_failure(settings) -> None:
    asset = save_upload(settings.upload_dir, "dress.png", b"sketch")

    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(429))) as client:
        result = await TogetherImageProvider(settings, client).generate_for(asset)

    assert result.outcome is ProviderOutcome.RATE_LIMITED
    assert result.result_path is None
    assert not (settings.upload_dir / f"result-{asset.filename}").exists()


@pytest.mark.anyio
async def test_huggingface_probe_returns_raw_image(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer hf-test-key"
        assert "inputs" in json.loads(request.content)
        return httpx.Response(200, content=IMAGE_BYTES, headers={"content-type": "image/jpeg"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await HuggingFaceProbe(settings, client).run()

    assert result.ok
    assert result.image == IMAGE_BYTES


@pytest.mark.anyio
async def test_huggingface_probe_reports_error_status(settings) -> None:
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(lambda r: httpx.Response(503, text="model loading"))
    ) as client:
        result = await HuggingFaceProbe(settings, client).run()

    assert not result.ok
    assert result.status_code == 503
    assert result.body == "model loading"


@pytest.mark.anyio
async def test_generate_for_writes_off_the_event_loop(settings, monkeypatch) -> None:
    asset = save_upload(settings.upload_dir, "dress.png", b"sketch")
    loop_running_during_save = []
    real_save_result = providers.save_result

    def recording_save(*args, **kwargs):
        try:
            asyncio.get_running_loop()
            loop_running_during_save.append(True)
        except RuntimeError:
            loop_running_during_save.append(False)
        return real_save_result(*args, **kwargs)

    monkeypatch.setattr(providers, "save_result", recording_save)

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"choices": [{"image": IMAGE_B64}]}))
    ) as client:
        result = await TogetherImageProvider(settings, client).generate_for(asset)

    assert result.ok
    assert loop_running_during_save == [False]
