from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from pairwatch.dependencies import get_manager, get_repository
from pairwatch.engine.session_manager import PresenceSessionManager
from pairwatch.repository import PresenceRepository
from pairwatch.schemas.alert import AlertRead, AlertResolve

router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.get("/", response_model=List[AlertRead])
async def list_alerts(
    employee_id: Optional[str] = Query(None, description="Only this employee's alerts"),
    unresolved_only: bool = False,
    repository: PresenceRepository = Depends(get_repository),
):
    """Supervisor view of integrity alerts, newest first."""
    return await repository.list_alerts(employee_id, unresolved_only=unresolved_only)


@router.post("/{alert_id}/resolve", response_model=AlertRead)
async def resolve_alert(
    alert_id: str,
    body: AlertResolve,
    manager: PresenceSessionManager = Depends(get_manager),
):
    return await manager.resolve_alert(alert_id, body.resolved_by)
