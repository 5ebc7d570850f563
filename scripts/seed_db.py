import asyncio
import os
import random
import sys

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pairwatch.config import settings
from pairwatch.database import AsyncSessionLocal
from pairwatch.engine.config import EngineConfig
from pairwatch.engine.domain import Consents
from pairwatch.services.roster import RosterService
from pairwatch.services.storage import SqlPresenceRepository


def _fake_embedding() -> list[float]:
    return [random.uniform(-1.0, 1.0) for _ in range(settings.FACE_EMBEDDING_DIM)]


async def seed():
    repository = SqlPresenceRepository(AsyncSessionLocal)
    roster = RosterService(repository, EngineConfig.from_settings())

    # Check if DB is already seeded
    if await repository.list_sites():
        print("Database already contains sites. Skipping seed.")
        return

    print("Seeding database with a demo site and one pair...")

    site = await roster.create_site(
        "Dakar Plateau depot", 14.6928, -17.4467, address="Avenue Pompidou", city="Dakar"
    )
    consents = Consents(geolocation=True, biometric=True, privacy=True)
    first = await roster.register_employee(
        "Awa",
        "Diallo",
        security_question="Name of your first school?",
        security_answer="Mermoz",
        biometric_reference=_fake_embedding(),
        consents=consents,
        employee_id="EMP-001",
    )
    second = await roster.register_employee(
        "Moussa",
        "Ndiaye",
        security_question="City you were born in?",
        security_answer="Thies",
        biometric_reference=_fake_embedding(),
        consents=consents,
        employee_id="EMP-002",
    )
    pair = await roster.create_pair(first.id, second.id, site.id)

    print(f"Added site: {site.name} ({site.radius_m:.0f}m) id={site.id}")
    print(f"Added pair {pair.id}: {first.full_name} + {second.full_name}")


if __name__ == "__main__":
    asyncio.run(seed())
