from typing import Optional

from fastapi import APIRouter, Depends, status

from pairwatch.dependencies import get_manager
from pairwatch.engine.session_manager import PresenceSessionManager, StepResult
from pairwatch.schemas.session import (
    CheckInRead,
    EmergencyRequest,
    EndRequest,
    EvidenceIn,
    LocationIn,
    SessionRead,
    StartRequest,
    StepRead,
    SummaryRead,
)

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _step(result: StepResult) -> StepRead:
    return StepRead(
        complete=result.complete,
        next_factor=result.next_factor,
        session=SessionRead.model_validate(result.session) if result.session else None,
        check_in=CheckInRead.model_validate(result.check_in) if result.check_in else None,
        new_alerts=len(result.alerts),
    )


@router.post("/start", response_model=StepRead)
async def start_day(request: StartRequest, manager: PresenceSessionManager = Depends(get_manager)):
    """
    Start the day: location, then face, then security question.

    The factors may be sent one request at a time; `next_factor` says what is
    still missing. The session exists once `complete` is true.
    """
    result = await manager.start(
        request.employee_id,
        request.site_id,
        location_consent=request.location_consent,
        evidence=request.to_evidence(),
    )
    return _step(result)


@router.get("/current/{employee_id}", response_model=Optional[SessionRead])
async def current_session(employee_id: str, manager: PresenceSessionManager = Depends(get_manager)):
    return await manager.current_session(employee_id)


@router.post("/{employee_id}/check-in", response_model=StepRead)
async def periodic_check_in(
    employee_id: str,
    evidence: EvidenceIn,
    manager: PresenceSessionManager = Depends(get_manager),
):
    """Answer the periodic re-verification (face, or `camera_unavailable`, then question)."""
    return _step(await manager.submit_periodic_check_in(employee_id, evidence.to_evidence()))


@router.post("/{employee_id}/pause", response_model=SessionRead)
async def pause(employee_id: str, manager: PresenceSessionManager = Depends(get_manager)):
    return await manager.pause(employee_id)


@router.post("/{employee_id}/resume", response_model=SessionRead)
async def resume(employee_id: str, manager: PresenceSessionManager = Depends(get_manager)):
    return await manager.resume(employee_id)


@router.post("/{employee_id}/emergency", response_model=SessionRead)
async def emergency(
    employee_id: str,
    body: EmergencyRequest,
    manager: PresenceSessionManager = Depends(get_manager),
):
    return await manager.emergency_suspend(employee_id, body.reason)


@router.post("/{employee_id}/end", response_model=SummaryRead)
async def end_day(
    employee_id: str,
    body: Optional[EndRequest] = None,
    manager: PresenceSessionManager = Depends(get_manager),
):
    evidence = body.evidence.to_evidence() if body and body.evidence else None
    return await manager.end(employee_id, evidence)


@router.post("/{employee_id}/location", status_code=status.HTTP_204_NO_CONTENT)
async def record_location(
    employee_id: str,
    location: LocationIn,
    manager: PresenceSessionManager = Depends(get_manager),
):
    await manager.record_location(
        employee_id, location.latitude, location.longitude, location.timestamp
    )


@router.get("/{session_id}/summary", response_model=SummaryRead)
async def session_summary(session_id: str, manager: PresenceSessionManager = Depends(get_manager)):
    return await manager.summary(session_id)
