"""Read-only view of generation slot usage, polled by queued clients."""

from __future__ import annotations

from fastapi import APIRouter

from dependencies.gateway import Admission
from schemas.recommendations import QueueStatusResponse


router = APIRouter(tags=["queue"])


@router.get("/queue-status", response_model=QueueStatusResponse)
def get_queue_status(admission: Admission) -> QueueStatusResponse:
    status = admission.status()
    return QueueStatusResponse(
        processing=status.active_count,
        queued=status.queue_length,
        capacity=status.capacity,
        available_slots=status.available_slots,
    )
