"""
PostgreSQL implementation of `PresenceRepository`.

Every call opens its own AsyncSession from the factory, so one repository
instance is shared by the whole process (timers fire outside any request).
ORM rows never leave this module; callers get engine records.
"""
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pairwatch import models
from pairwatch.engine.domain import (
    AIAlert,
    AlertType,
    CheckIn,
    CheckInStatus,
    CheckInType,
    Consents,
    Employee,
    LocationSample,
    Pair,
    PresenceSession,
    SessionStatus,
    Severity,
    Site,
    VerificationMethod,
)
from pairwatch.errors import NotFoundError, PreconditionError, ValidationError
from pairwatch.utils.logging import get_logger

logger = get_logger(__name__)


# --- row -> record ---

def _employee(row: models.Employee) -> Employee:
    reference = row.biometric_reference
    return Employee(
        id=row.id,
        first_name=row.first_name,
        last_name=row.last_name,
        biometric_reference=[float(x) for x in reference] if reference is not None else None,
        security_question=row.security_question,
        security_answer_hash=row.security_answer_hash,
        consents=Consents(
            geolocation=row.geolocation_consent,
            biometric=row.biometric_consent,
            privacy=row.privacy_consent,
        ),
    )


def _site(row: models.Site) -> Site:
    return Site(
        id=row.id,
        name=row.name,
        latitude=row.latitude,
        longitude=row.longitude,
        radius_m=row.radius_m,
        address=row.address or "",
        city=row.city or "",
    )


def _pair(row: models.Pair) -> Pair:
    return Pair(row.id, row.employee_a_id, row.employee_b_id, row.site_id, row.active)


def _check_in(row: models.CheckIn) -> CheckIn:
    return CheckIn(
        id=row.id,
        employee_id=row.employee_id,
        site_id=row.site_id,
        timestamp=row.timestamp,
        type=CheckInType(row.type),
        verification_method=VerificationMethod(row.verification_method),
        latitude=row.latitude,
        longitude=row.longitude,
        status=CheckInStatus(row.status),
        ai_confidence_score=row.ai_confidence_score,
        pair_present=row.pair_present,
        distance_to_pair=row.distance_to_pair,
        capture_digest=row.capture_digest,
    )


def _session(row: models.PresenceSession) -> PresenceSession:
    return PresenceSession(
        id=row.id,
        employee_id=row.employee_id,
        site_id=row.site_id,
        pair_id=row.pair_id,
        start_time=row.start_time,
        location_tracking_consented=row.location_tracking_consented,
        status=SessionStatus(row.status),
        end_time=row.end_time,
        check_ins=[_check_in(c) for c in row.check_ins],
        total_minutes=row.total_minutes,
        time_with_pair_minutes=row.time_with_pair_minutes,
        reliability_score=row.reliability_score,
        next_check_in_at=row.next_check_in_at,
        reverification_due=row.reverification_due,
        pair_present=row.pair_present,
        last_pair_validation_at=row.last_pair_validation_at,
        emergency_flag=row.emergency_flag,
        emergency_reason=row.emergency_reason,
        last_accrual_at=row.last_accrual_at,
    )


def _alert(row: models.AIAlert) -> AIAlert:
    return AIAlert(
        id=row.id,
        employee_id=row.employee_id,
        type=AlertType(row.type),
        severity=Severity(row.severity),
        timestamp=row.timestamp,
        details=row.details,
        confidence_score=row.confidence_score,
        resolved=row.resolved,
        resolved_by=row.resolved_by,
        resolved_at=row.resolved_at,
    )


# --- record -> row ---

def _check_in_row(session_id: str, c: CheckIn) -> models.CheckIn:
    return models.CheckIn(
        id=c.id,
        session_id=session_id,
        employee_id=c.employee_id,
        site_id=c.site_id,
        timestamp=c.timestamp,
        type=c.type.value,
        verification_method=c.verification_method.value,
        status=c.status.value,
        latitude=c.latitude,
        longitude=c.longitude,
        ai_confidence_score=c.ai_confidence_score,
        pair_present=c.pair_present,
        distance_to_pair=c.distance_to_pair,
        capture_digest=c.capture_digest,
    )


def _copy_session_fields(row: models.PresenceSession, s: PresenceSession) -> None:
    row.employee_id = s.employee_id
    row.site_id = s.site_id
    row.pair_id = s.pair_id
    row.status = s.status.value
    row.start_time = s.start_time
    row.end_time = s.end_time
    row.location_tracking_consented = s.location_tracking_consented
    row.total_minutes = s.total_minutes
    row.time_with_pair_minutes = s.time_with_pair_minutes
    row.reliability_score = s.reliability_score
    row.next_check_in_at = s.next_check_in_at
    row.reverification_due = s.reverification_due
    row.pair_present = s.pair_present
    row.last_pair_validation_at = s.last_pair_validation_at
    row.emergency_flag = s.emergency_flag
    row.emergency_reason = s.emergency_reason
    row.last_accrual_at = s.last_accrual_at


class SqlPresenceRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # --- roster ---

    async def get_employee(self, employee_id: str) -> Employee | None:
        async with self.session_factory() as db:
            row = await db.get(models.Employee, employee_id)
            return _employee(row) if row else None

    async def add_employee(self, employee: Employee) -> Employee:
        async with self.session_factory() as db:
            db.add(
                models.Employee(
                    id=employee.id,
                    first_name=employee.first_name,
                    last_name=employee.last_name,
                    biometric_reference=employee.biometric_reference,
                    security_question=employee.security_question,
                    security_answer_hash=employee.security_answer_hash,
                    geolocation_consent=employee.consents.geolocation,
                    biometric_consent=employee.consents.biometric,
                    privacy_consent=employee.consents.privacy,
                )
            )
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise ValidationError(f"Employee {employee.id} already exists")
        return employee

    async def get_site(self, site_id: str) -> Site | None:
        async with self.session_factory() as db:
            row = await db.get(models.Site, site_id)
            return _site(row) if row else None

    async def add_site(self, site: Site) -> Site:
        async with self.session_factory() as db:
            db.add(
                models.Site(
                    id=site.id,
                    name=site.name,
                    address=site.address,
                    city=site.city,
                    latitude=site.latitude,
                    longitude=site.longitude,
                    radius_m=site.radius_m,
                )
            )
            await db.commit()
        return site

    async def list_sites(self) -> list[Site]:
        async with self.session_factory() as db:
            result = await db.execute(select(models.Site).order_by(models.Site.name))
            return [_site(row) for row in result.scalars()]

    async def get_pair(self, pair_id: str) -> Pair | None:
        async with self.session_factory() as db:
            row = await db.get(models.Pair, pair_id)
            return _pair(row) if row else None

    async def add_pair(self, pair: Pair) -> Pair:
        async with self.session_factory() as db:
            db.add(
                models.Pair(
                    id=pair.id,
                    employee_a_id=pair.employee_a_id,
                    employee_b_id=pair.employee_b_id,
                    site_id=pair.site_id,
                    active=pair.active,
                )
            )
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise ValidationError("Pair references unknown employees or site")
        return pair

    async def set_pair_active(self, pair_id: str, active: bool) -> Pair:
        async with self.session_factory() as db:
            row = await db.get(models.Pair, pair_id)
            if row is None:
                raise NotFoundError(f"Pair {pair_id} not found")
            row.active = active
            await db.commit()
            return _pair(row)

    async def active_pairs_for(self, employee_id: str) -> list[Pair]:
        query = select(models.Pair).where(
            models.Pair.active.is_(True),
            or_(
                models.Pair.employee_a_id == employee_id,
                models.Pair.employee_b_id == employee_id,
            ),
        )
        async with self.session_factory() as db:
            result = await db.execute(query)
            return [_pair(row) for row in result.scalars()]

    # --- sessions ---

    async def get_session(self, session_id: str) -> PresenceSession | None:
        async with self.session_factory() as db:
            row = await db.get(models.PresenceSession, session_id)
            return _session(row) if row else None

    async def get_open_session(self, employee_id: str) -> PresenceSession | None:
        query = (
            select(models.PresenceSession)
            .where(
                models.PresenceSession.employee_id == employee_id,
                models.PresenceSession.status != SessionStatus.ENDED.value,
            )
            .order_by(models.PresenceSession.start_time.desc())
            .limit(1)
        )
        async with self.session_factory() as db:
            result = await db.execute(query)
            row = result.scalar_one_or_none()
            return _session(row) if row else None

    async def list_open_sessions(self) -> list[PresenceSession]:
        query = select(models.PresenceSession).where(
            models.PresenceSession.status != SessionStatus.ENDED.value
        )
        async with self.session_factory() as db:
            result = await db.execute(query)
            return [_session(row) for row in result.scalars()]

    async def list_sessions(self, limit: int = 20) -> list[PresenceSession]:
        query = (
            select(models.PresenceSession)
            .order_by(models.PresenceSession.start_time.desc())
            .limit(limit)
        )
        async with self.session_factory() as db:
            result = await db.execute(query)
            return [_session(row) for row in result.scalars()]

    async def save_session(self, session: PresenceSession) -> PresenceSession:
        """Upsert the session row; check-ins are append-only, so only new ids are inserted."""
        async with self.session_factory() as db:
            row = await db.get(models.PresenceSession, session.id)
            if row is None:
                row = models.PresenceSession(id=session.id)
                db.add(row)
                known: set[str] = set()
            else:
                known = {c.id for c in row.check_ins}

            _copy_session_fields(row, session)
            for check_in in session.check_ins:
                if check_in.id not in known:
                    db.add(_check_in_row(session.id, check_in))

            try:
                await db.commit()
            except IntegrityError:
                # The partial unique index allows one open session per employee.
                await db.rollback()
                raise PreconditionError(
                    f"Employee {session.employee_id} already has an active session"
                )
        return session

    # --- locations and check-ins ---

    async def add_location(self, employee_id: str, sample: LocationSample) -> None:
        async with self.session_factory() as db:
            db.add(
                models.LocationSample(
                    employee_id=employee_id,
                    latitude=sample.latitude,
                    longitude=sample.longitude,
                    timestamp=sample.timestamp,
                )
            )
            await db.commit()

    async def recent_locations(self, employee_id: str, limit: int) -> list[LocationSample]:
        query = (
            select(models.LocationSample)
            .where(models.LocationSample.employee_id == employee_id)
            .order_by(models.LocationSample.timestamp.desc())
            .limit(limit)
        )
        async with self.session_factory() as db:
            result = await db.execute(query)
            rows = list(result.scalars())
        return [LocationSample(r.latitude, r.longitude, r.timestamp) for r in reversed(rows)]

    async def recent_check_ins(self, employee_id: str, limit: int) -> list[CheckIn]:
        query = (
            select(models.CheckIn)
            .where(models.CheckIn.employee_id == employee_id)
            .order_by(models.CheckIn.timestamp.desc())
            .limit(limit)
        )
        async with self.session_factory() as db:
            result = await db.execute(query)
            rows = list(result.scalars())
        return [_check_in(r) for r in reversed(rows)]

    # --- alerts ---

    async def add_alerts(self, alerts: list[AIAlert]) -> list[AIAlert]:
        async with self.session_factory() as db:
            for a in alerts:
                db.add(
                    models.AIAlert(
                        id=a.id,
                        employee_id=a.employee_id,
                        type=a.type.value,
                        severity=a.severity.value,
                        timestamp=a.timestamp,
                        details=a.details,
                        confidence_score=a.confidence_score,
                        resolved=a.resolved,
                        resolved_by=a.resolved_by,
                        resolved_at=a.resolved_at,
                    )
                )
            await db.commit()
        return alerts

    async def list_alerts(
        self, employee_id: str | None = None, unresolved_only: bool = False
    ) -> list[AIAlert]:
        query = select(models.AIAlert).order_by(models.AIAlert.timestamp.desc())
        if employee_id is not None:
            query = query.where(models.AIAlert.employee_id == employee_id)
        if unresolved_only:
            query = query.where(models.AIAlert.resolved.is_(False))
        async with self.session_factory() as db:
            result = await db.execute(query)
            return [_alert(row) for row in result.scalars()]

    async def resolve_alert(self, alert_id: str, resolved_by: str, at: datetime) -> AIAlert:
        async with self.session_factory() as db:
            result = await db.execute(
                update(models.AIAlert)
                .where(models.AIAlert.id == alert_id)
                .values(resolved=True, resolved_by=resolved_by, resolved_at=at)
                .returning(models.AIAlert)
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise NotFoundError(f"Alert {alert_id} not found")
            await db.commit()
            return _alert(row)
