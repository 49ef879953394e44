import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import httpx
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.v1.api import api_router
from core.config import Settings, get_settings
from core.error_handler import (
    ExceptionNormalizationMiddleware,
    global_exception_handler,
    setup_logging,
)
from core.middleware import CorrelationIdMiddleware
from services.gateway.admission import AdmissionController
from services.gateway.exceptions import GatewayError
from services.gateway.orchestrator import PipelineOrchestrator
from services.gateway.upstream import UpstreamStreamingClient
from services.market_context import MarketContextService
from services.prompts import SYSTEM_MESSAGE, build_recommendation_prompt
from services.social_posts import social_posts_enrichment


logger = logging.getLogger(__name__)


def validate_cors_origins(origins: list[str]) -> list[str]:
    """Drop CORS origins that are not absolute http(s) URLs."""

    def is_valid_url(url: str) -> bool:
        parsed = urlparse(url)
        return bool(parsed.scheme in {"http", "https"} and parsed.netloc)

    validated_origins = []
    for origin in origins:
        if is_valid_url(origin):
            validated_origins.append(origin)
        else:
            logger.warning(f"Invalid CORS origin '{origin}' ignored")
    return validated_origins


def build_orchestrator(
    settings: Settings,
    http_client: httpx.AsyncClient,
    admission: AdmissionController,
) -> PipelineOrchestrator:
    market_context = MarketContextService(settings, http_client=http_client)
    return PipelineOrchestrator(
        admission=admission,
        upstream=UpstreamStreamingClient.from_settings(settings, http_client=http_client),
        settings=settings,
        prompt_builder=build_recommendation_prompt,
        system_message=SYSTEM_MESSAGE,
        context_sources=market_context.sources(),
        enrichment=social_posts_enrichment,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    setup_logging()

    admission = AdmissionController(
        capacity=settings.MAX_CONCURRENT_GENERATIONS,
        estimated_seconds_per_request=settings.ESTIMATED_SECONDS_PER_REQUEST,
    )
    # read=None: the generation deadline is enforced by the orchestrator.
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=settings.UPSTREAM_CONNECT_TIMEOUT_SECONDS,
            read=None,
            write=10.0,
            pool=10.0,
        )
    )
    app.state.admission = admission
    app.state.orchestrator = build_orchestrator(settings, http_client, admission)
    logger.info(
        "Gateway ready: %d generation slots, model %s",
        admission.capacity,
        settings.XAI_MODEL,
    )
    try:
        yield
    finally:
        await http_client.aclose()


settings = get_settings()

app = FastAPI(
    title="Portfolio Stream Gateway API",
    description="Streams AI portfolio recommendations behind an admission queue",
    version="0.1.0",
    docs_url=None,  # We'll mount docs under /api/v1/docs
    redoc_url=None,
    lifespan=lifespan,
)

app.add_middleware(ExceptionNormalizationMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=validate_cors_origins(list(settings.CORS_ORIGINS)),
    allow_credentials=settings.ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID", "X-Job-ID", "Retry-After"],
)

app.add_exception_handler(GatewayError, global_exception_handler)
app.add_exception_handler(StarletteHTTPException, global_exception_handler)
app.add_exception_handler(RequestValidationError, global_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

app.include_router(api_router, prefix="/api/v1")


@app.get("/api/v1/docs", include_in_schema=False)
def custom_swagger_ui_html():
    return get_swagger_ui_html(
        openapi_url="/openapi.json", title="Portfolio Stream Gateway Docs"
    )


@app.get("/api/v1/redoc", include_in_schema=False)
def redoc_html():
    return get_redoc_html(
        openapi_url="/openapi.json", title="Portfolio Stream Gateway Redoc"
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
