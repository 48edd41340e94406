import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
import httpx
from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from atelier import operations
from atelier.config import Settings, get_settings
from atelier.fallback import FASHION_RESULT_1
from atelier.models import (
    GenerationRequest,
    GenerationResult,
    OperationType,
    ProbeResponse,
    StatusResponse,
    UploadEchoResponse,
)
from atelier.providers import (
    HUGGINGFACE_MODEL,
    TOGETHER_MODEL,
    TOGETHER_PROBE_PROMPT,
    HuggingFaceProbe,
    ProviderOutcome,
    TogetherImageProvider,
    describe_api_key,
)
from atelier.storage import resolve_public_file, save_probe_image, save_upload

logger = logging.getLogger(__name__)

TOGETHER_MOCK_URL = "/api/test-together?mock=true"


@asynccontextmanager
async def lifespan(_: FastAPI):
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    yield


app = FastAPI(title="Atelier", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_exception_handler(_, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


async def get_http_client(settings: Settings = Depends(get_settings)) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as client:
        yield client


@app.post("/api/generate", response_model=GenerationResult, response_model_exclude_none=True)
async def generate(
    file: UploadFile | None = File(default=None),
    operation_type: str | None = Form(default=None, alias="type"),
    with_model: str | None = Form(default=None, alias="withModel"),
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> GenerationResult:
    if file is None or not operation_type:
        raise HTTPException(status_code=400, detail="File and type are required")

    operation = OperationType.parse(operation_type)
    if operation is None:
        raise HTTPException(status_code=400, detail="Invalid type")

    try:
        content = await file.read()
        asset = await run_in_threadpool(save_upload, settings.upload_dir, file.filename or "upload", content)
        request = GenerationRequest(
            source=asset,
            operation=operation,
            with_model=with_model == "true",
        )
        provider = TogetherImageProvider(settings, client)
        return await operations.dispatch(request, settings, provider)
    except Exception as exc:
        logger.exception("Error processing image")
        raise HTTPException(status_code=500, detail="Failed to process image") from exc


@app.get("/api/status", response_model=StatusResponse)
async def get_status(prediction_id: str | None = Query(default=None, alias="id")) -> StatusResponse:
    if not prediction_id:
        raise HTTPException(status_code=400, detail="Prediction ID is required")

    # No job tracking exists yet; every prediction reports the demo result.
    return StatusResponse(status="succeeded", result_image=FASHION_RESULT_1)


@app.post("/api/upload", response_model=UploadEchoResponse)
async def upload_file(
    file: UploadFile | None = File(default=None),
    settings: Settings = Depends(get_settings),
) -> UploadEchoResponse:
    if file is None:
        raise HTTPException(status_code=400, detail="No file provided")

    try:
        content = await file.read()
    except Exception as exc:
        logger.exception("Error handling file upload")
        raise HTTPException(status_code=500, detail="Failed to upload file") from exc

    name = file.filename or "upload"
    return UploadEchoResponse(
        file_url=f"{settings.upload_echo_base_url}/{name}",
        file_name=name,
        file_size=len(content),
        file_type=file.content_type or "",
    )


def _mock_probe(was_rate_limited: bool) -> ProbeResponse:
    return ProbeResponse(
        success=True,
        message=(
            "Rate limit reached, using mock data instead"
            if was_rate_limited
            else "Using mock data as requested"
        ),
        mock_data=True,
        test_image=FASHION_RESULT_1,
    )


@app.get("/api/test-together", response_model=ProbeResponse, response_model_exclude_none=True)
async def probe_together(
    mock: str | None = None,
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> ProbeResponse:
    if mock == "true":
        return _mock_probe(False)

    api_key = settings.together_api_key
    logger.info("Together.ai API key %s", describe_api_key(api_key))

    result = await TogetherImageProvider(settings, client).request_image(TOGETHER_PROBE_PROMPT)

    if result.outcome in (ProviderOutcome.RATE_LIMITED, ProviderOutcome.TRANSPORT_ERROR):
        return _mock_probe(True)
    if result.outcome is ProviderOutcome.UNRECOGNIZED_SHAPE:
        return _mock_probe(False)
    if result.outcome is ProviderOutcome.PROVIDER_ERROR:
        return ProbeResponse(
            success=False,
            error=f"API error: {result.status_code} - {result.reason}",
            details=result.body,
            api_key_provided=bool(api_key),
            mock_available=True,
            mock_url=TOGETHER_MOCK_URL,
        )

    try:
        test_image = await run_in_threadpool(save_probe_image, settings.test_results_dir, result.image or b"")
    except OSError as exc:
        return ProbeResponse(
            success=True,
            message="Together.ai image generation is working but could not save the test image",
            model=TOGETHER_MODEL,
            save_error=str(exc),
        )

    return ProbeResponse(
        success=True,
        message="Together.ai image generation is working",
        model=TOGETHER_MODEL,
        test_image=test_image,
    )


@app.get("/api/test-huggingface", response_model=ProbeResponse, response_model_exclude_none=True)
async def probe_huggingface(
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> ProbeResponse:
    api_key = settings.huggingface_api_key
    try:
        result = await HuggingFaceProbe(settings, client).run()
    except httpx.HTTPError as exc:
        logger.exception("Error testing Hugging Face API")
        return ProbeResponse(success=False, error="Failed to test Hugging Face API", details=str(exc))

    if not result.ok:
        return ProbeResponse(
            success=False,
            error=f"API error: {result.status_code} - {result.reason}",
            details=result.body,
            model=HUGGINGFACE_MODEL,
            api_key_provided=bool(api_key),
        )

    try:
        test_image = await run_in_threadpool(save_probe_image, settings.test_results_dir, result.image or b"")
    except OSError as exc:
        return ProbeResponse(
            success=True,
            message="Free image generation model is working but could not save the test image",
            model=HUGGINGFACE_MODEL,
            save_error=str(exc),
        )

    return ProbeResponse(
        success=True,
        message="Free image generation model is working",
        model=HUGGINGFACE_MODEL,
        test_image=test_image,
    )


def _serve_public_file(root: Path, name: str) -> FileResponse:
    path = resolve_public_file(root, name)
    if path is None:
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path)


@app.get("/uploads/{name}")
async def uploaded_file(name: str, settings: Settings = Depends(get_settings)) -> FileResponse:
    return _serve_public_file(settings.upload_dir, name)


@app.get("/demo-results/{name}")
async def demo_result_file(name: str, settings: Settings = Depends(get_settings)) -> FileResponse:
    return _serve_public_file(settings.demo_results_dir, name)


@app.get("/test-results/{name}")
async def test_result_file(name: str, settings: Settings = Depends(get_settings)) -> FileResponse:
    return _serve_public_file(settings.test_results_dir, name)
