"""FastAPI dependencies exposing the gateway objects built at startup.

`main.lifespan` creates exactly one admission controller and orchestrator
per process and stores them on ``app.state``. Tests replace these
dependencies through ``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from services.gateway.admission import AdmissionController
from services.gateway.orchestrator import PipelineOrchestrator


def get_admission_controller(request: Request) -> AdmissionController:
    return request.app.state.admission


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    return request.app.state.orchestrator


Admission = Annotated[AdmissionController, Depends(get_admission_controller)]
Orchestrator = Annotated[PipelineOrchestrator, Depends(get_orchestrator)]
