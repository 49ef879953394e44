"""Shared test fixtures for pytest.

ENVIRONMENT is forced to ``test`` before anything imports settings so no
``.env`` file is read and no upstream API key is required.
"""

import json
import os
from collections.abc import AsyncGenerator, Callable, Generator
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient


os.environ["ENVIRONMENT"] = "test"

from core.config import Settings, get_settings
from dependencies.gateway import get_admission_controller, get_orchestrator
from main import app
from services.gateway.admission import AdmissionController
from services.gateway.orchestrator import PipelineOrchestrator
from services.gateway.upstream import UpstreamStreamingClient
from services.prompts import build_recommendation_prompt


Handler = Callable[[httpx.Request], httpx.Response]


def _sse_body(*contents: str, done: bool = True) -> str:
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": c}}]}) + "\n\n"
        for c in contents
    ]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines)


def _make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "ENVIRONMENT": "test",
        "XAI_API_KEY": "test-key",
        "XAI_BASE_URL": "https://upstream.test/v1",
        "CONTEXT_FETCH_TIMEOUT_SECONDS": 1.0,
        "GENERATION_TIMEOUT_SECONDS": 5.0,
        "ENRICHMENT_TIMEOUT_SECONDS": 1.0,
        "DISCONNECT_GRACE_SECONDS": 1.0,
        "QUEUE_WAIT_TIMEOUT_SECONDS": 5.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)  # type: ignore[call-arg]


@pytest.fixture
def sse_body() -> Callable[..., str]:
    """Render chat-completion deltas the way the upstream streams them."""
    return _sse_body


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    return _make_settings


@pytest.fixture
def make_upstream() -> Callable[..., UpstreamStreamingClient]:
    def factory(
        handler: Handler, settings: Settings | None = None
    ) -> UpstreamStreamingClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return UpstreamStreamingClient.from_settings(
            settings or _make_settings(), http_client=client
        )

    return factory


@pytest.fixture
def make_orchestrator(
    make_upstream: Callable[..., UpstreamStreamingClient],
) -> Callable[..., PipelineOrchestrator]:
    def factory(
        handler: Handler,
        *,
        admission: AdmissionController | None = None,
        settings: Settings | None = None,
        **kwargs: Any,
    ) -> PipelineOrchestrator:
        settings = settings or _make_settings()
        kwargs.setdefault("prompt_builder", build_recommendation_prompt)
        return PipelineOrchestrator(
            admission=admission or AdmissionController(capacity=3),
            upstream=make_upstream(handler, settings),
            settings=settings,
            **kwargs,
        )

    return factory


@pytest.fixture
def recommendation_payload() -> dict[str, Any]:
    return {
        "portfolio": [
            {"name": "Equities", "value": 60, "color": "#A78BFA"},
            {"name": "Bonds", "value": 30},
            {"name": "Cash", "value": 10},
        ],
        "formData": {
            "age": "34",
            "risk": 65,
            "horizon": "10+ years",
            "capital": "50000",
            "goal": "Growth",
            "sectors": ["Technology"],
        },
    }


@pytest.fixture
def admission() -> AdmissionController:
    return AdmissionController(capacity=1, estimated_seconds_per_request=30)


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Synchronous client; runs the real lifespan."""
    get_settings.cache_clear()
    with TestClient(app) as client:
        yield client


@pytest_asyncio.fixture
async def gateway_client(
    admission: AdmissionController,
) -> AsyncGenerator[tuple[AsyncClient, dict[str, Any]], None]:
    """Async client whose gateway dependencies are swapped per test.

    ASGITransport does not run the lifespan, so the admission controller and
    orchestrator come from dependency overrides. Tests put their orchestrator
    into the returned dict under ``"orchestrator"``.
    """
    state: dict[str, Any] = {"admission": admission}
    app.dependency_overrides[get_admission_controller] = lambda: state["admission"]
    app.dependency_overrides[get_orchestrator] = lambda: state["orchestrator"]
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client, state
    app.dependency_overrides.pop(get_admission_controller, None)
    app.dependency_overrides.pop(get_orchestrator, None)
