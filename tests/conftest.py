from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from pairwatch.cache import MemoryCache
from pairwatch.dependencies import build_services
from pairwatch.engine.biometrics import EmbeddingFaceComparator
from pairwatch.engine.config import EngineConfig
from pairwatch.engine.domain import Consents, Employee, Pair, Site
from pairwatch.engine.geo import EARTH_RADIUS_KM
from pairwatch.engine.verification import Evidence
from pairwatch.repository import InMemoryRepository

SITE_LAT = 48.8566
SITE_LON = 2.3522

REF_A = [1.0, 0.0, 0.0, 0.0]
REF_B = [0.0, 1.0, 0.0, 0.0]


def north_of(lat: float, lon: float, meters: float) -> tuple[float, float]:
    """Point `meters` due north; along a meridian the Haversine distance is the arc length."""
    return lat + math.degrees(meters / (EARTH_RADIUS_KM * 1000.0)), lon


def face(reference: list[float], jitter: float = 0.01) -> list[float]:
    """A fresh capture of the same face: close to the reference, never byte-identical."""
    sample = list(reference)
    sample[-1] += jitter
    return sample


class Clock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class ManualScheduler:
    """Collects timers instead of running them; tests fire them explicitly."""

    def __init__(self):
        self.pending: dict[int, tuple[float, object]] = {}
        self._next = 0

    def schedule(self, delay_seconds, callback):
        self._next += 1
        self.pending[self._next] = (delay_seconds, callback)
        return self._next

    def cancel(self, handle):
        self.pending.pop(handle, None)

    @property
    def delays(self) -> list[float]:
        return [delay for delay, _ in self.pending.values()]

    async def fire_all(self) -> None:
        due = list(self.pending.values())
        self.pending.clear()
        for _, callback in due:
            await callback()


@dataclass
class World:
    site: Site
    alice: Employee
    bob: Employee
    pair: Pair

    def start_evidence(self, employee: Employee, jitter: float = 0.01, **overrides) -> Evidence:
        reference = REF_A if employee.id == self.alice.id else REF_B
        answer = "Blue" if employee.id == self.alice.id else "Paris"
        values = dict(
            latitude=SITE_LAT,
            longitude=SITE_LON,
            face_sample=face(reference, jitter),
            answer=answer,
        )
        values.update(overrides)
        return Evidence(**values)

    def periodic_evidence(self, employee: Employee, jitter: float = 0.02, **overrides) -> Evidence:
        evidence = self.start_evidence(employee, jitter, **overrides)
        if "latitude" not in overrides:
            evidence.latitude = evidence.longitude = None
        return evidence


@pytest.fixture
def clock():
    # 08:00 UTC on a Monday, before the late-authentication hour.
    return Clock(datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def services(repository, cache, config, scheduler, clock):
    return build_services(
        repository,
        cache,
        config=config,
        scheduler=scheduler,
        comparator=EmbeddingFaceComparator(threshold=0.5, confidence_floor=85.0),
        clock=clock,
    )


@pytest.fixture
def manager(services):
    return services.manager


@pytest.fixture
async def world(services) -> World:
    roster = services.roster
    consents = Consents(geolocation=True, biometric=True, privacy=True)
    site = await roster.create_site("Louvre gate", SITE_LAT, SITE_LON)
    alice = await roster.register_employee(
        "Alice",
        "Martin",
        security_question="Favourite colour?",
        security_answer="Blue",
        biometric_reference=REF_A,
        consents=consents,
        employee_id="alice",
    )
    bob = await roster.register_employee(
        "Bob",
        "Durand",
        security_question="Home town?",
        security_answer="Paris",
        biometric_reference=REF_B,
        consents=consents,
        employee_id="bob",
    )
    pair = await roster.create_pair(alice.id, bob.id, site.id)
    return World(site=site, alice=alice, bob=bob, pair=pair)
