from pairwatch.engine.answers import hash_answer
from pairwatch.engine.config import EngineConfig
from pairwatch.engine.domain import Consents, Employee, Pair, Site, new_id
from pairwatch.errors import NotFoundError, ValidationError
from pairwatch.repository import PresenceRepository
from pairwatch.utils.logging import get_logger

logger = get_logger(__name__)


class RosterService:
    """Employees, sites and pair assignments; everything the engine reads but never writes."""

    def __init__(self, repository: PresenceRepository, config: EngineConfig | None = None):
        self.repository = repository
        self.config = config or EngineConfig()

    async def register_employee(
        self,
        first_name: str,
        last_name: str,
        *,
        security_question: str | None = None,
        security_answer: str | None = None,
        biometric_reference: list[float] | None = None,
        consents: Consents | None = None,
        employee_id: str | None = None,
    ) -> Employee:
        if not first_name.strip():
            raise ValidationError("First name is required")
        if security_question and not security_answer:
            raise ValidationError("A security question needs an answer")

        employee = Employee(
            id=employee_id or new_id(),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            biometric_reference=list(biometric_reference) if biometric_reference else None,
            security_question=security_question,
            # Only the hash is stored; the plaintext answer never leaves this call.
            security_answer_hash=hash_answer(security_answer) if security_answer else None,
            consents=consents or Consents(),
        )
        await self.repository.add_employee(employee)
        logger.info(f"Registered employee {employee.full_name} ({employee.id})")
        return employee

    async def create_site(
        self,
        name: str,
        latitude: float,
        longitude: float,
        radius_m: float | None = None,
        *,
        address: str = "",
        city: str = "",
    ) -> Site:
        site = Site(
            id=new_id(),
            name=name,
            latitude=latitude,
            longitude=longitude,
            radius_m=self.config.default_site_radius_m if radius_m is None else radius_m,
            address=address,
            city=city,
        )
        await self.repository.add_site(site)
        logger.info(f"Created site {site.name} ({site.radius_m:.0f}m radius)")
        return site

    async def create_pair(self, employee_a_id: str, employee_b_id: str, site_id: str) -> Pair:
        pair = Pair(new_id(), employee_a_id, employee_b_id, site_id)

        for employee_id in (employee_a_id, employee_b_id):
            if await self.repository.get_employee(employee_id) is None:
                raise NotFoundError(f"Employee {employee_id} not found")
        if await self.repository.get_site(site_id) is None:
            raise NotFoundError(f"Site {site_id} not found")

        for employee_id in (employee_a_id, employee_b_id):
            for existing in await self.repository.active_pairs_for(employee_id):
                if existing.site_id == site_id:
                    raise ValidationError(
                        f"Employee {employee_id} already has an active pair at this site"
                    )

        await self.repository.add_pair(pair)
        logger.info(f"Paired {employee_a_id} with {employee_b_id} at site {site_id}")
        return pair

    async def deactivate_pair(self, pair_id: str) -> Pair:
        pair = await self.repository.set_pair_active(pair_id, False)
        logger.info(f"Pair {pair_id} deactivated")
        return pair
