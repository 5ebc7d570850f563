"""
FastAPI dependencies and the wiring of the presence engine.
"""
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from pairwatch.cache import CacheClient
from pairwatch.engine.anomaly import AnomalyDetector
from pairwatch.engine.biometrics import EmbeddingFaceComparator, FaceComparator
from pairwatch.engine.config import EngineConfig
from pairwatch.engine.domain import utcnow
from pairwatch.engine.pair_codes import PairCodeRegistry
from pairwatch.engine.scheduler import AsyncioScheduler, Scheduler
from pairwatch.engine.session_manager import PresenceSessionManager
from pairwatch.engine.verification import VerificationGate
from pairwatch.repository import PresenceRepository
from pairwatch.services.roster import RosterService


@dataclass
class Services:
    repository: PresenceRepository
    roster: RosterService
    manager: PresenceSessionManager
    config: EngineConfig


def build_services(
    repository: PresenceRepository,
    cache: CacheClient,
    *,
    config: Optional[EngineConfig] = None,
    scheduler: Optional[Scheduler] = None,
    comparator: Optional[FaceComparator] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    config = config or EngineConfig.from_settings()
    pair_codes = PairCodeRegistry(cache, ttl_seconds=config.pair_code_ttl_seconds, clock=clock)
    gate = VerificationGate(comparator or EmbeddingFaceComparator(), pair_codes)
    manager = PresenceSessionManager(
        repository,
        gate,
        scheduler or AsyncioScheduler(),
        config=config,
        detector=AnomalyDetector(config),
        clock=clock,
    )
    return Services(
        repository=repository,
        roster=RosterService(repository, config),
        manager=manager,
        config=config,
    )


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Presence engine is not initialised",
        )
    return services


def get_manager(services: Services = Depends(get_services)) -> PresenceSessionManager:
    return services.manager


def get_roster(services: Services = Depends(get_services)) -> RosterService:
    return services.roster


def get_repository(services: Services = Depends(get_services)) -> PresenceRepository:
    return services.repository
