"""Tests for the admission controller.

Tests cover:
- Capacity bound and FIFO grant order
- Cancel-while-queued leaves no phantom queue entry
- Timeout and cancellation while waiting never consume a slot
- Wait estimates and queue messages
"""

from __future__ import annotations

import asyncio

import pytest

from services.gateway.admission import AdmissionController, format_wait
from services.gateway.exceptions import AdmissionTimeout


class TestRequestAndRelease:
    def test_grants_until_capacity_then_queues(self) -> None:
        controller = AdmissionController(capacity=2)

        assert controller.request_slot("a").granted
        assert controller.request_slot("b").granted
        decision = controller.request_slot("c")

        assert not decision.granted
        assert decision.position == 1
        status = controller.status()
        assert (status.active_count, status.queue_length) == (2, 1)
        assert status.available_slots == 0

    def test_basic_queuing_scenario(self) -> None:
        """Capacity 2: A, B granted; C queued at 1; A releases -> C granted."""
        controller = AdmissionController(capacity=2)
        controller.request_slot("A")
        controller.request_slot("B")
        assert controller.request_slot("C").position == 1

        controller.release_slot("A")

        assert controller.is_active("C")
        status = controller.status()
        assert status.active_count == 2
        assert status.queue_length == 0

    def test_fifo_grant_order(self) -> None:
        controller = AdmissionController(capacity=1)
        controller.request_slot("running")
        for job in ("first", "second", "third"):
            controller.request_slot(job)

        controller.release_slot("running")
        assert controller.is_active("first")
        assert controller.position("second") == 1

        controller.release_slot("first")
        assert controller.is_active("second")
        assert not controller.is_active("third")

    def test_release_of_unknown_job_is_noop(self) -> None:
        controller = AdmissionController(capacity=1)
        controller.request_slot("a")

        controller.release_slot("never-seen")
        controller.release_slot("a")
        controller.release_slot("a")

        assert controller.status().active_count == 0

    def test_request_slot_is_idempotent(self) -> None:
        controller = AdmissionController(capacity=1)
        controller.request_slot("a")
        controller.request_slot("b")

        assert controller.request_slot("a").granted
        assert controller.request_slot("b").position == 1
        assert controller.status().queue_length == 1

    def test_positions_follow_queue_mutations(self) -> None:
        controller = AdmissionController(capacity=1)
        controller.request_slot("running")
        for job in ("x", "y", "z"):
            controller.request_slot(job)

        controller.cancel_wait("x")

        assert controller.position("y") == 1
        assert controller.position("z") == 2
        assert controller.position("x") is None

    def test_capacity_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            AdmissionController(capacity=0)


class TestCancelWait:
    def test_cancel_while_queued_leaves_no_phantom(self) -> None:
        """Capacity 1: A granted, B queued then cancelled; C granted after A."""
        controller = AdmissionController(capacity=1)
        controller.request_slot("A")
        controller.request_slot("B")

        assert controller.cancel_wait("B") is True
        assert controller.status().queue_length == 0

        controller.release_slot("A")
        assert controller.request_slot("C").granted

    def test_cancel_of_granted_or_unknown_job_returns_false(self) -> None:
        controller = AdmissionController(capacity=1)
        controller.request_slot("A")

        assert controller.cancel_wait("A") is False
        assert controller.cancel_wait("ghost") is False
        assert controller.is_active("A")


class TestAcquire:
    @pytest.mark.asyncio
    async def test_waiter_is_woken_when_slot_frees(self) -> None:
        controller = AdmissionController(capacity=1)
        await controller.acquire("A")

        waiter = asyncio.create_task(controller.acquire("B", timeout=2))
        await asyncio.sleep(0)
        assert controller.position("B") == 1

        controller.release_slot("A")
        await asyncio.wait_for(waiter, 1)

        assert controller.is_active("B")

    @pytest.mark.asyncio
    async def test_waiters_are_granted_in_arrival_order(self) -> None:
        controller = AdmissionController(capacity=1)
        await controller.acquire("holder")
        order: list[str] = []

        async def wait_then_record(job_id: str) -> None:
            await controller.acquire(job_id, timeout=2)
            order.append(job_id)

        tasks = [asyncio.create_task(wait_then_record(j)) for j in ("a", "b", "c")]
        await asyncio.sleep(0)

        for previous in ("holder", "a", "b"):
            controller.release_slot(previous)
            await asyncio.sleep(0.01)

        await asyncio.gather(*tasks)
        assert order == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_timeout_while_queued_removes_job(self) -> None:
        controller = AdmissionController(capacity=1, estimated_seconds_per_request=12)
        await controller.acquire("A")

        with pytest.raises(AdmissionTimeout) as exc_info:
            await controller.acquire("B", timeout=0.05)

        assert exc_info.value.error_code == "admission_timeout"
        assert exc_info.value.retry_after_seconds == 12
        assert controller.status().queue_length == 0

        controller.release_slot("A")
        assert controller.status().active_count == 0

    @pytest.mark.asyncio
    async def test_cancellation_while_queued_removes_job(self) -> None:
        controller = AdmissionController(capacity=1)
        await controller.acquire("A")

        waiter = asyncio.create_task(controller.acquire("B"))
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert controller.status().queue_length == 0
        controller.release_slot("A")
        assert controller.status().active_count == 0

    @pytest.mark.asyncio
    async def test_grant_racing_with_cancellation_is_handed_back(self) -> None:
        controller = AdmissionController(capacity=1)
        await controller.acquire("A")

        waiter = asyncio.create_task(controller.acquire("B"))
        await asyncio.sleep(0)
        # B is granted, but its task is cancelled before it observes the grant.
        controller.release_slot("A")
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert not controller.is_active("B")
        assert controller.status().active_count == 0

    @pytest.mark.asyncio
    async def test_slot_context_manager_releases_on_error(self) -> None:
        controller = AdmissionController(capacity=1)

        with pytest.raises(RuntimeError):
            async with controller.slot("A"):
                assert controller.is_active("A")
                raise RuntimeError("boom")

        assert controller.status().active_count == 0

    @pytest.mark.asyncio
    async def test_active_count_never_exceeds_capacity(self) -> None:
        controller = AdmissionController(capacity=2)
        peak = 0

        async def job(job_id: str) -> None:
            nonlocal peak
            async with controller.slot(job_id, timeout=5):
                peak = max(peak, controller.status().active_count)
                await asyncio.sleep(0.01)

        await asyncio.gather(*(job(f"job-{i}") for i in range(8)))

        assert peak == 2
        assert controller.status().active_count == 0


class TestWaitEstimates:
    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [
            (30, "30 seconds"),
            (60, "1 minute"),
            (120, "2 minutes"),
            (90, "1m 30s"),
        ],
    )
    def test_format_wait(self, seconds: int, expected: str) -> None:
        assert format_wait(seconds) == expected

    def test_queue_message_uses_position_estimate(self) -> None:
        controller = AdmissionController(capacity=1, estimated_seconds_per_request=30)

        assert controller.estimated_wait_seconds(2) == 60
        assert controller.queue_message(2) == (
            "You're in position 2. Estimated wait: 1 minute"
        )
