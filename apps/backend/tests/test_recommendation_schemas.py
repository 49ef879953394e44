"""Tests for request validation and SSE envelopes."""

import json

import pytest
from pydantic import ValidationError

from schemas.recommendations import (
    MAX_SSE_EVENT_BYTES,
    PipelineSseEvent,
    QueuedResponse,
    RecommendationRequest,
)


class TestRecommendationRequest:
    def test_accepts_camel_case_payload(self, recommendation_payload) -> None:
        request = RecommendationRequest.model_validate(recommendation_payload)

        assert request.form_data.risk == 65
        assert request.portfolio[0].color == "#A78BFA"
        assert request.market_context is None

    def test_rejects_empty_portfolio(self, recommendation_payload) -> None:
        recommendation_payload["portfolio"] = []

        with pytest.raises(ValidationError):
            RecommendationRequest.model_validate(recommendation_payload)

    @pytest.mark.parametrize("risk", [-1, 101])
    def test_rejects_out_of_range_risk(self, recommendation_payload, risk: int) -> None:
        recommendation_payload["formData"]["risk"] = risk

        with pytest.raises(ValidationError):
            RecommendationRequest.model_validate(recommendation_payload)

    def test_ignores_unknown_fields(self, recommendation_payload) -> None:
        recommendation_payload["sessionToken"] = "ignored"

        request = RecommendationRequest.model_validate(recommendation_payload)

        assert not hasattr(request, "sessionToken")


class TestPipelineSseEvent:
    def test_serializes_with_camel_case_job_id(self) -> None:
        event = PipelineSseEvent(event="stage", job_id="abc", data={"stage": "done"})

        frame = event.to_sse()

        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame[len("data: ") :]) == {
            "event": "stage",
            "jobId": "abc",
            "data": {"stage": "done"},
        }

    def test_rejects_oversized_payload(self) -> None:
        event = PipelineSseEvent(
            event="delta", job_id="abc", data={"text": "x" * MAX_SSE_EVENT_BYTES}
        )

        with pytest.raises(ValueError):
            event.to_sse()


def test_queued_response_wire_format() -> None:
    response = QueuedResponse(position=2, estimated_wait=60, message="wait")

    assert response.model_dump(by_alias=True) == {
        "queued": True,
        "position": 2,
        "estimatedWait": 60,
        "message": "wait",
    }
