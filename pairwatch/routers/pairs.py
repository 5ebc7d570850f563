from fastapi import APIRouter, Depends, status

from pairwatch.dependencies import get_manager, get_roster
from pairwatch.engine.session_manager import PresenceSessionManager
from pairwatch.engine.verification import Evidence
from pairwatch.schemas.pair_code import PairCodeRead, PairValidateRequest
from pairwatch.schemas.roster import PairCreate, PairRead
from pairwatch.schemas.session import SessionRead
from pairwatch.services.roster import RosterService

router = APIRouter(prefix="/pairs", tags=["pairs"])


@router.post("/", response_model=PairRead, status_code=status.HTTP_201_CREATED)
async def create_pair(pair_in: PairCreate, roster: RosterService = Depends(get_roster)):
    """Assign two distinct employees to work together at a site."""
    return await roster.create_pair(pair_in.employee_a_id, pair_in.employee_b_id, pair_in.site_id)


@router.post("/{pair_id}/deactivate", response_model=PairRead)
async def deactivate_pair(pair_id: str, roster: RosterService = Depends(get_roster)):
    return await roster.deactivate_pair(pair_id)


@router.post("/codes/{employee_id}", response_model=PairCodeRead)
async def generate_pair_code(
    employee_id: str, manager: PresenceSessionManager = Depends(get_manager)
):
    """Issue a single-use code (valid PAIR_CODE_TTL_SECONDS) for the partner to scan."""
    return await manager.generate_pair_code(employee_id)


@router.post("/validate/{employee_id}", response_model=SessionRead)
async def validate_pair(
    employee_id: str,
    request: PairValidateRequest,
    manager: PresenceSessionManager = Depends(get_manager),
):
    """Scanning side: consume the partner's code and mark the pair as together."""
    result = await manager.validate_pair(
        employee_id, Evidence(pair_code=request.code, pair_confirmed=request.confirmed)
    )
    return result.session
