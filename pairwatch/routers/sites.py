from typing import List

from fastapi import APIRouter, Depends, status

from pairwatch.dependencies import get_repository, get_roster
from pairwatch.repository import PresenceRepository
from pairwatch.schemas.roster import SiteCreate, SiteRead
from pairwatch.services.roster import RosterService

router = APIRouter(prefix="/sites", tags=["sites"])


@router.post("/", response_model=SiteRead, status_code=status.HTTP_201_CREATED)
async def create_site(site_in: SiteCreate, roster: RosterService = Depends(get_roster)):
    """Create a geofenced work site. Radius defaults to DEFAULT_SITE_RADIUS_M."""
    return await roster.create_site(
        site_in.name,
        site_in.latitude,
        site_in.longitude,
        site_in.radius_m,
        address=site_in.address,
        city=site_in.city,
    )


@router.get("/", response_model=List[SiteRead])
async def list_sites(repository: PresenceRepository = Depends(get_repository)):
    return await repository.list_sites()
