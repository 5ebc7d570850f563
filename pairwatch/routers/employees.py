from fastapi import APIRouter, Depends, status

from pairwatch.dependencies import get_repository, get_roster
from pairwatch.engine.domain import Consents, Employee
from pairwatch.errors import NotFoundError
from pairwatch.repository import PresenceRepository
from pairwatch.schemas.roster import ConsentsSchema, EmployeeCreate, EmployeeRead
from pairwatch.services.roster import RosterService

router = APIRouter(prefix="/employees", tags=["employees"])


def _read(employee: Employee) -> EmployeeRead:
    return EmployeeRead(
        id=employee.id,
        first_name=employee.first_name,
        last_name=employee.last_name,
        security_question=employee.security_question,
        consents=ConsentsSchema.model_validate(employee.consents),
        enrolled=employee.biometric_reference is not None,
    )


@router.post("/register", response_model=EmployeeRead, status_code=status.HTTP_201_CREATED)
async def register_employee(
    employee_in: EmployeeCreate, roster: RosterService = Depends(get_roster)
):
    """Register an employee. The security answer is hashed before storage."""
    employee = await roster.register_employee(
        employee_in.first_name,
        employee_in.last_name,
        security_question=employee_in.security_question,
        security_answer=employee_in.security_answer,
        biometric_reference=employee_in.biometric_reference,
        consents=Consents(**employee_in.consents.model_dump()),
        employee_id=employee_in.id,
    )
    return _read(employee)


@router.get("/{employee_id}", response_model=EmployeeRead)
async def get_employee(
    employee_id: str, repository: PresenceRepository = Depends(get_repository)
):
    employee = await repository.get_employee(employee_id)
    if employee is None:
        raise NotFoundError(f"Employee {employee_id} not found")
    return _read(employee)
