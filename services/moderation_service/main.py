"""
Photo Moderation Handler

Stateless FastAPI endpoint that analyzes one stored photo with Gemini. The
Gemini key is read from the backend's admin_config records (environment
fallback) and the photo bytes from the backend's storage bucket, both with
the caller's anon key.
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from pydantic import ValidationError

from eventsnaps.config import Settings, get_config
from eventsnaps.credentials import CredentialResolver, RestConfigStore
from eventsnaps.gemini import GeminiModerationClient
from eventsnaps.logging import get_logger, setup_logging
from eventsnaps.middleware import CorrelationMiddleware
from eventsnaps.schemas import AnalysisResult, ModeratePhotoRequest
from eventsnaps.storage import BucketStorageProvider

logger = get_logger(__name__)

# Prometheus metrics
REQUEST_COUNT = Counter('moderation_handler_requests_total', 'Total requests', ['status'])
REQUEST_DURATION = Histogram('moderation_handler_request_duration_seconds', 'Request duration')
ANALYSIS_RESULTS = Counter('moderation_handler_results_total', 'Analysis results', ['outcome'])


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    settings = get_config()
    setup_logging()
    app.state.settings = settings
    app.state.http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    logger.info("Moderation handler initialized")
    yield

    await app.state.http_client.aclose()
    logger.info("Moderation handler shutdown complete")


app = FastAPI(
    title="Photo Moderation Handler",
    description="Gemini-backed moderation suggestion for a stored photo",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(CorrelationMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


def get_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_config()


def get_http_client(request: Request) -> httpx.AsyncClient:
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return client


def build_client(body: ModeratePhotoRequest, settings: Settings, http_client: httpx.AsyncClient) -> GeminiModerationClient:
    """Per-request client bound to the caller's backend and anon key"""
    credentials = CredentialResolver(
        RestConfigStore(body.insforge_url, body.anon_key, http_client=http_client),
        settings,
    )
    storage = BucketStorageProvider(
        body.insforge_url, body.anon_key, http_client=http_client, max_retries=settings.http_max_retries
    )
    return GeminiModerationClient(
        credentials,
        storage,
        http_client=http_client,
        model=settings.gemini_model,
        timeout=settings.http_timeout_seconds,
        max_retries=settings.http_max_retries,
        fallback_policy=settings.moderation_fallback_policy,
    )


def failure_payload(message: str) -> dict:
    return {"suggestion": None, "confidence": 0.0, "errorMessage": message}


def result_payload(result: AnalysisResult) -> dict:
    if not result.succeeded:
        return failure_payload(result.error_message or "Analysis failed")
    return {
        "suggestion": result.suggestion.value,
        "confidence": result.confidence,
        "reason": result.reason,
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "moderation-handler"}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/")
async def moderate_photo(
    request: Request,
    settings: Settings = Depends(get_settings),
    http_client: httpx.AsyncClient = Depends(get_http_client),
):
    """Return an approve/reject suggestion for a stored photo.

    Missing fields are a 400; every other failure is reported as a 200 with
    ``suggestion: null`` and an ``errorMessage`` so callers can flag the
    photo for manual review.
    """
    start_time = time.time()
    try:
        try:
            raw = await request.json()
            body = ModeratePhotoRequest.model_validate(raw if isinstance(raw, dict) else {})
        except (ValueError, ValidationError) as e:
            logger.warning(f"Unreadable moderation request: {e}")
            REQUEST_COUNT.labels(status="error").inc()
            ANALYSIS_RESULTS.labels(outcome="error").inc()
            return JSONResponse(status_code=200, content=failure_payload(f"Analysis error: {e}"))

        if not body.storage_path or not body.insforge_url or not body.anon_key:
            REQUEST_COUNT.labels(status="bad_request").inc()
            return JSONResponse(status_code=400, content={"error": "Missing required fields"})

        try:
            result = await build_client(body, settings, http_client).analyze(body.storage_path)
        except Exception as e:
            logger.error(f"Moderation handler failed: {e}", exc_info=True)
            result = AnalysisResult(suggestion=None, confidence=0.0, error_message=f"Analysis error: {e}")

        ANALYSIS_RESULTS.labels(outcome=result.suggestion.value if result.succeeded else "error").inc()
        REQUEST_COUNT.labels(status="ok").inc()
        return JSONResponse(status_code=200, content=result_payload(result))
    finally:
        REQUEST_DURATION.observe(time.time() - start_time)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
