"""
Presence session state machine.

    (no open session) -> present <-> paused
                         present  -> suspended          (emergency)
    present | paused | suspended -> ended                (terminal, read-only)

An employee who has not started the day simply has no open session.

The manager owns the single re-verification timer of every open session,
runs the verification gate on each check-in, and refreshes alerts and the
reliability score afterwards. Verification failures never move a session to
another state; only explicit actions (pause, resume, emergency, end) or a
successful verification do.
"""
from __future__ import annotations

import functools
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from pairwatch.engine.anomaly import AnomalyDetector
from pairwatch.engine.config import EngineConfig
from pairwatch.engine.domain import (
    AIAlert,
    AlertType,
    CheckIn,
    CheckInStatus,
    CheckInType,
    Employee,
    LocationSample,
    Pair,
    PresenceSession,
    SessionStatus,
    Site,
    VerificationMethod,
    new_id,
    utcnow,
)
from pairwatch.engine.geo import distance_m, is_within_geofence
from pairwatch.engine.pair_codes import PairCode
from pairwatch.engine.reliability import calculate_reliability_score
from pairwatch.engine.scheduler import Scheduler, draw_interval_seconds
from pairwatch.engine.verification import (
    Challenge,
    ChallengeKind,
    Evidence,
    Factor,
    VerificationGate,
)
from pairwatch.errors import (
    NotFoundError,
    PreconditionError,
    ValidationError,
    VerificationFailure,
)
from pairwatch.repository import PresenceRepository
from pairwatch.utils.logging import get_logger

logger = get_logger(__name__)

ReverificationHook = Callable[[PresenceSession], Awaitable[None]]


def _dedup_key(kind: AlertType, details: str) -> tuple:
    # Movement alerts are per location pair; the other rules describe a
    # pattern, so one unresolved alert per type is enough.
    if kind == AlertType.UNREALISTIC_MOVEMENT:
        return kind, details
    return (kind,)


@dataclass
class StepResult:
    """Outcome of one verification attempt; `session` is set once something changed."""

    challenge: Challenge
    session: PresenceSession | None = None
    check_in: CheckIn | None = None
    alerts: list[AIAlert] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.challenge.is_complete

    @property
    def next_factor(self) -> Factor | None:
        return self.challenge.current


@dataclass(frozen=True)
class SessionSummary:
    session_id: str
    employee_id: str
    site_id: str
    status: SessionStatus
    start_time: datetime
    end_time: datetime | None
    total_minutes: int
    time_with_pair_minutes: int
    check_ins: int
    verified_check_ins: int
    failed_check_ins: int
    reliability_score: int
    emergency_flag: bool

    @classmethod
    def of(cls, session: PresenceSession) -> "SessionSummary":
        return cls(
            session_id=session.id,
            employee_id=session.employee_id,
            site_id=session.site_id,
            status=session.status,
            start_time=session.start_time,
            end_time=session.end_time,
            total_minutes=round(session.total_minutes),
            time_with_pair_minutes=round(session.time_with_pair_minutes),
            check_ins=len(session.check_ins),
            verified_check_ins=len(session.check_ins) - session.failed_check_ins,
            failed_check_ins=session.failed_check_ins,
            reliability_score=session.reliability_score,
            emergency_flag=session.emergency_flag,
        )


class PresenceSessionManager:
    def __init__(
        self,
        repository: PresenceRepository,
        gate: VerificationGate,
        scheduler: Scheduler,
        *,
        config: EngineConfig | None = None,
        detector: AnomalyDetector | None = None,
        clock: Callable[[], datetime] = utcnow,
        rng: random.Random | None = None,
        on_reverification_due: ReverificationHook | None = None,
    ):
        self.repository = repository
        self.gate = gate
        self.scheduler = scheduler
        self.config = config or EngineConfig()
        self.detector = detector or AnomalyDetector(self.config)
        self.clock = clock
        self.rng = rng or random.Random()
        self.on_reverification_due = on_reverification_due

        self._timers: dict[str, Any] = {}
        self._challenges: dict[tuple[str, ChallengeKind], Challenge] = {}

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------

    async def _employee(self, employee_id: str) -> Employee:
        employee = await self.repository.get_employee(employee_id)
        if employee is None:
            raise NotFoundError(f"Employee {employee_id} not found")
        return employee

    async def _site(self, site_id: str) -> Site:
        site = await self.repository.get_site(site_id)
        if site is None:
            raise NotFoundError(f"Site {site_id} not found")
        return site

    async def _pair(self, pair_id: str) -> Pair:
        pair = await self.repository.get_pair(pair_id)
        if pair is None:
            raise NotFoundError(f"Pair {pair_id} not found")
        return pair

    async def _active_pair(self, employee_id: str, site_id: str) -> Pair:
        for pair in await self.repository.active_pairs_for(employee_id):
            if pair.site_id == site_id:
                return pair
        raise PreconditionError("No active pair is assigned to you at this site")

    async def _open_session(self, employee_id: str) -> PresenceSession:
        session = await self.repository.get_open_session(employee_id)
        if session is None:
            raise PreconditionError(f"Employee {employee_id} has no active session")
        return session

    def _challenge(self, employee_id: str, kind: ChallengeKind) -> Challenge:
        key = (employee_id, kind)
        if key not in self._challenges:
            self._challenges[key] = Challenge.for_kind(kind)
        return self._challenges[key]

    def _start_challenge(self, employee_id: str, site_id: str, now: datetime) -> Challenge:
        """Pending day-start challenge, restarted when the site changes or it went stale."""
        key = (employee_id, ChallengeKind.INITIAL)
        challenge = self._challenges.get(key)
        if challenge is not None:
            age = (now - challenge.created_at).total_seconds()
            if challenge.site_id != site_id or age > self.config.start_challenge_ttl_seconds:
                logger.info(f"Discarding pending day-start challenge for {employee_id}")
                challenge = None
        if challenge is None:
            challenge = Challenge.for_kind(ChallengeKind.INITIAL)
            challenge.site_id = site_id
            challenge.created_at = now
            self._challenges[key] = challenge
        return challenge

    def _drop_challenges(self, employee_id: str) -> None:
        for kind in ChallengeKind:
            self._challenges.pop((employee_id, kind), None)

    # ------------------------------------------------------------------
    # timer
    # ------------------------------------------------------------------

    def _arm(self, employee_id: str, delay_seconds: float) -> None:
        self._cancel_timer(employee_id)
        self._timers[employee_id] = self.scheduler.schedule(
            delay_seconds, functools.partial(self.periodic_timer_fired, employee_id)
        )

    def _cancel_timer(self, employee_id: str) -> None:
        handle = self._timers.pop(employee_id, None)
        if handle is not None:
            self.scheduler.cancel(handle)

    def _schedule_next(self, session: PresenceSession, now: datetime) -> None:
        delay = draw_interval_seconds(self.config, self.rng)
        session.next_check_in_at = now + timedelta(seconds=delay)
        self._arm(session.employee_id, delay)
        logger.info(
            f"Next re-verification for {session.employee_id} in {delay / 60:.1f} min "
            f"(at {session.next_check_in_at.isoformat()})"
        )

    def has_pending_timer(self, employee_id: str) -> bool:
        return employee_id in self._timers

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _resolve_position(
        self, session: PresenceSession | None, evidence: Evidence | None
    ) -> tuple[float, float]:
        if evidence is not None and evidence.has_location:
            return evidence.latitude, evidence.longitude
        if session is not None:
            samples = await self.repository.recent_locations(session.employee_id, 1)
            if samples:
                return samples[-1].latitude, samples[-1].longitude
            if session.check_ins:
                last = session.check_ins[-1]
                return last.latitude, last.longitude
        raise ValidationError("A location fix is required for this check-in")

    async def _pair_presence(
        self, employee_id: str, pair: Pair, site: Site, latitude: float, longitude: float
    ) -> tuple[bool, float | None]:
        partner_id = pair.partner_of(employee_id)
        partner_session = await self.repository.get_open_session(partner_id)
        if partner_session is None or partner_session.status != SessionStatus.PRESENT:
            return False, None

        samples = await self.repository.recent_locations(partner_id, 1)
        if not samples:
            return False, None

        partner = samples[-1]
        distance = distance_m(latitude, longitude, partner.latitude, partner.longitude)
        present = is_within_geofence(
            partner.latitude, partner.longitude, site.latitude, site.longitude, site.radius_m
        )
        return present, round(distance, 1)

    async def _verified_check_in(
        self,
        session: PresenceSession,
        pair: Pair,
        site: Site,
        kind: CheckInType,
        challenge: Challenge,
        latitude: float,
        longitude: float,
        now: datetime,
    ) -> CheckIn:
        pair_present, distance_to_pair = await self._pair_presence(
            session.employee_id, pair, site, latitude, longitude
        )
        return CheckIn(
            employee_id=session.employee_id,
            site_id=session.site_id,
            timestamp=now,
            type=kind,
            verification_method=challenge.verification_method,
            latitude=latitude,
            longitude=longitude,
            status=CheckInStatus.VERIFIED,
            ai_confidence_score=challenge.confidence_score,
            pair_present=pair_present,
            distance_to_pair=distance_to_pair,
            capture_digest=challenge.capture_digest,
        )

    async def _refresh_integrity(self, session: PresenceSession, now: datetime) -> list[AIAlert]:
        """Re-run anomaly detection for the employee and recompute the session score."""
        window = self.config.anomaly_window_size
        check_ins = await self.repository.recent_check_ins(session.employee_id, window)
        locations = await self.repository.recent_locations(session.employee_id, window)
        drafts = self.detector.detect(session.employee_id, check_ins, locations, now=now)

        unresolved = await self.repository.list_alerts(session.employee_id, unresolved_only=True)
        seen = {_dedup_key(a.type, a.details) for a in unresolved}
        fresh: list[AIAlert] = []
        for draft in drafts:
            key = _dedup_key(draft.type, draft.details)
            if key in seen:
                continue
            seen.add(key)
            fresh.append(AIAlert.from_draft(draft))

        if fresh:
            await self.repository.add_alerts(fresh)

        session.reliability_score = calculate_reliability_score(
            session.check_ins, unresolved + fresh, self.config.weights
        )
        return fresh

    async def _commit(self, session: PresenceSession, now: datetime) -> list[AIAlert]:
        await self.repository.save_session(session)
        alerts = await self._refresh_integrity(session, now)
        await self.repository.save_session(session)
        return alerts

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------

    async def start(
        self,
        employee_id: str,
        site_id: str,
        *,
        location_consent: bool,
        evidence: Evidence,
    ) -> StepResult:
        """
        Start the day: location -> facial -> question, then open a Present session.

        May be called several times with partial evidence; the challenge keeps
        its position between calls. The session only exists once every factor
        has passed.
        """
        if not location_consent:
            raise PreconditionError("Location consent is required to start your day")

        employee = await self._employee(employee_id)
        site = await self._site(site_id)
        pair = await self._active_pair(employee_id, site_id)
        if await self.repository.get_open_session(employee_id) is not None:
            raise PreconditionError("A presence session is already active")

        challenge = self._start_challenge(employee_id, site_id, self.clock())
        try:
            await self.gate.advance(challenge, evidence, employee=employee, site=site)
        except VerificationFailure as failure:
            logger.warning(f"Day start verification failed for {employee_id}: {failure.reason}")
            raise

        if not challenge.is_complete:
            return StepResult(challenge)

        self._challenges.pop((employee_id, ChallengeKind.INITIAL), None)
        now = self.clock()
        session = PresenceSession(
            id=new_id(),
            employee_id=employee_id,
            site_id=site_id,
            pair_id=pair.id,
            start_time=now,
            location_tracking_consented=True,
            status=SessionStatus.PRESENT,
            last_accrual_at=now,
        )

        # The location factor may have been submitted in an earlier call.
        latitude, longitude = challenge.latitude, challenge.longitude
        await self.repository.add_location(employee_id, LocationSample(latitude, longitude, now))
        check_in = await self._verified_check_in(
            session, pair, site, CheckInType.START, challenge, latitude, longitude, now
        )
        session.append_check_in(check_in)
        session.pair_present = check_in.pair_present
        self._schedule_next(session, now)

        alerts = await self._commit(session, now)
        logger.info(f"Session {session.id} started for {employee_id} at {site.name}")
        return StepResult(challenge, session, check_in, alerts)

    async def periodic_timer_fired(self, employee_id: str) -> PresenceSession | None:
        """Timer callback: flag a re-verification as due if the session is still Present."""
        self._timers.pop(employee_id, None)

        session = await self.repository.get_open_session(employee_id)
        if session is None or session.status != SessionStatus.PRESENT:
            logger.info(f"Re-verification timer for {employee_id} ignored, no present session")
            return None

        session.reverification_due = True
        self._challenges[(employee_id, ChallengeKind.PERIODIC)] = Challenge.for_kind(
            ChallengeKind.PERIODIC
        )
        await self.repository.save_session(session)
        logger.info(f"Re-verification due for {employee_id} (session {session.id})")

        if self.on_reverification_due is not None:
            await self.on_reverification_due(session)
        return session

    async def submit_periodic_check_in(self, employee_id: str, evidence: Evidence) -> StepResult:
        session = await self._open_session(employee_id)
        if session.status != SessionStatus.PRESENT:
            raise PreconditionError(f"Cannot check in while the session is {session.status.value}")

        employee = await self._employee(employee_id)
        site = await self._site(session.site_id)
        pair = await self._pair(session.pair_id)
        challenge = self._challenge(employee_id, ChallengeKind.PERIODIC)

        try:
            await self.gate.advance(challenge, evidence, employee=employee, site=site)
        except VerificationFailure as failure:
            await self._record_failed_attempt(session, evidence, failure)
            logger.warning(f"Periodic check-in failed for {employee_id}: {failure.reason}")
            raise

        if not challenge.is_complete:
            return StepResult(challenge, session)

        self._challenges.pop((employee_id, ChallengeKind.PERIODIC), None)
        now = self.clock()
        latitude, longitude = await self._resolve_position(session, evidence)
        if evidence.has_location:
            await self.repository.add_location(
                employee_id, LocationSample(latitude, longitude, now)
            )

        session.accrue(now)
        check_in = await self._verified_check_in(
            session, pair, site, CheckInType.PERIODIC, challenge, latitude, longitude, now
        )
        session.append_check_in(check_in)
        session.pair_present = check_in.pair_present
        session.reverification_due = False
        self._schedule_next(session, now)

        alerts = await self._commit(session, now)
        return StepResult(challenge, session, check_in, alerts)

    async def _record_failed_attempt(
        self, session: PresenceSession, evidence: Evidence, failure: VerificationFailure
    ) -> None:
        """
        Keep a failed attempt in the history so scoring and anomaly rules see it.

        This is the only change a failure makes: status, timer, counters and
        the pending challenge stay as they were. A failed day start records
        nothing because there is no session yet.
        """
        now = self.clock()
        latitude, longitude = await self._resolve_position(session, evidence)
        if evidence.has_location:
            await self.repository.add_location(
                session.employee_id, LocationSample(latitude, longitude, now)
            )

        method = (
            VerificationMethod.FACIAL
            if failure.factor == Factor.FACIAL.value
            else VerificationMethod.QUESTION
        )
        session.append_check_in(
            CheckIn(
                employee_id=session.employee_id,
                site_id=session.site_id,
                timestamp=now,
                type=CheckInType.PERIODIC,
                verification_method=method,
                latitude=latitude,
                longitude=longitude,
                status=CheckInStatus.FAILED,
                ai_confidence_score=failure.confidence or 0.0,
                pair_present=False,
            )
        )
        await self._commit(session, now)

    async def pause(self, employee_id: str) -> PresenceSession:
        session = await self._open_session(employee_id)
        if session.status != SessionStatus.PRESENT:
            raise PreconditionError(f"Cannot pause a session that is {session.status.value}")

        now = self.clock()
        session.accrue(now)
        session.status = SessionStatus.PAUSED
        session.next_check_in_at = None
        session.reverification_due = False
        self._cancel_timer(employee_id)
        self._challenges.pop((employee_id, ChallengeKind.PERIODIC), None)

        await self.repository.save_session(session)
        logger.info(f"Session {session.id} paused")
        return session

    async def resume(self, employee_id: str) -> PresenceSession:
        session = await self._open_session(employee_id)
        if session.status != SessionStatus.PAUSED:
            raise PreconditionError(f"Cannot resume a session that is {session.status.value}")

        now = self.clock()
        session.status = SessionStatus.PRESENT
        session.last_accrual_at = now
        self._schedule_next(session, now)

        await self.repository.save_session(session)
        logger.info(f"Session {session.id} resumed")
        return session

    async def emergency_suspend(self, employee_id: str, reason: str | None = None) -> PresenceSession:
        session = await self._open_session(employee_id)
        if session.status != SessionStatus.PRESENT:
            raise PreconditionError(
                f"Emergency suspension requires a present session, not {session.status.value}"
            )

        now = self.clock()
        session.accrue(now)
        session.status = SessionStatus.SUSPENDED
        session.emergency_flag = True
        session.emergency_reason = reason
        session.next_check_in_at = None
        session.reverification_due = False
        self._cancel_timer(employee_id)
        self._challenges.pop((employee_id, ChallengeKind.PERIODIC), None)

        await self.repository.save_session(session)
        logger.warning(f"EMERGENCY: session {session.id} of {employee_id} suspended ({reason or 'no reason'})")
        return session

    async def end(self, employee_id: str, evidence: Evidence | None = None) -> SessionSummary:
        """
        End the day from any non-terminal state.

        With `evidence`, the employee first passes the facial/question factors
        and an `end` check-in is recorded; a failure raises and the session
        stays open. Without evidence the session simply closes.
        """
        session = await self._open_session(employee_id)
        end_check_in: CheckIn | None = None

        if evidence is not None:
            employee = await self._employee(employee_id)
            site = await self._site(session.site_id)
            pair = await self._pair(session.pair_id)
            challenge = Challenge.for_kind(ChallengeKind.PERIODIC)
            await self.gate.advance(challenge, evidence, employee=employee, site=site)
            if not challenge.is_complete:
                raise VerificationFailure(
                    challenge.current.value, "incomplete", "End-of-day verification is incomplete"
                )
            latitude, longitude = await self._resolve_position(session, evidence)
            end_check_in = await self._verified_check_in(
                session, pair, site, CheckInType.END, challenge, latitude, longitude, self.clock()
            )

        now = self.clock()
        session.accrue(now)
        if end_check_in is not None:
            session.append_check_in(end_check_in)

        self._cancel_timer(employee_id)
        self._drop_challenges(employee_id)
        session.next_check_in_at = None
        session.reverification_due = False

        # Score against the full history before the session turns read-only.
        await self.repository.save_session(session)
        await self._refresh_integrity(session, now)
        session.status = SessionStatus.ENDED
        session.end_time = now
        await self.repository.save_session(session)

        logger.info(
            f"Session {session.id} ended: {session.total_minutes:.0f} min total, "
            f"{session.time_with_pair_minutes:.0f} min with pair, score {session.reliability_score}"
        )
        return SessionSummary.of(session)

    # ------------------------------------------------------------------
    # location, pair validation, recovery
    # ------------------------------------------------------------------

    async def record_location(
        self,
        employee_id: str,
        latitude: float,
        longitude: float,
        timestamp: datetime | None = None,
    ) -> LocationSample:
        session = await self._open_session(employee_id)
        if not session.location_tracking_consented:
            raise PreconditionError("Location tracking was not consented for this session")
        if not -90.0 <= latitude <= 90.0 or not -180.0 <= longitude <= 180.0:
            raise ValidationError("Coordinates are out of range")

        sample = LocationSample(latitude, longitude, timestamp or self.clock())
        await self.repository.add_location(employee_id, sample)
        return sample

    async def generate_pair_code(self, employee_id: str) -> PairCode:
        session = await self._open_session(employee_id)
        if session.status != SessionStatus.PRESENT:
            raise PreconditionError("Pair codes can only be generated while present")
        if self.gate.pair_codes is None:
            raise PreconditionError("Pair code validation is not configured")
        return await self.gate.pair_codes.generate(employee_id, session.pair_id)

    async def validate_pair(self, employee_id: str, evidence: Evidence) -> StepResult:
        """Scanning side of the pair-code exchange; marks both partners as together."""
        session = await self._open_session(employee_id)
        if session.status != SessionStatus.PRESENT:
            raise PreconditionError("Pair validation requires a present session")

        employee = await self._employee(employee_id)
        pair = await self._pair(session.pair_id)
        challenge = Challenge.for_kind(ChallengeKind.PAIR)
        try:
            await self.gate.advance(challenge, evidence, employee=employee, pair=pair)
        except VerificationFailure as failure:
            logger.warning(f"Pair validation failed for {employee_id}: {failure.reason}")
            raise

        if not challenge.is_complete:
            return StepResult(challenge, session)

        now = self.clock()
        partner_session = await self.repository.get_open_session(pair.partner_of(employee_id))
        for s in (session, partner_session):
            if s is None or s.is_ended:
                continue
            s.accrue(now)
            s.pair_present = True
            s.last_pair_validation_at = now
            await self.repository.save_session(s)

        logger.info(f"Pair {pair.id} validated in person at {now.isoformat()}")
        return StepResult(challenge, session)

    async def recover(self) -> int:
        """Re-arm timers from persisted deadlines after a restart. Returns timers armed."""
        now = self.clock()
        armed = 0
        for session in await self.repository.list_open_sessions():
            if session.status != SessionStatus.PRESENT or session.reverification_due:
                continue
            if session.next_check_in_at is None:
                self._schedule_next(session, now)
                await self.repository.save_session(session)
            else:
                # Overdue deadlines fire right away.
                delay = (session.next_check_in_at - now).total_seconds()
                self._arm(session.employee_id, max(delay, 0.0))
            armed += 1
        logger.info(f"Recovered {armed} re-verification timer(s)")
        return armed

    async def shutdown(self) -> None:
        for employee_id in list(self._timers):
            self._cancel_timer(employee_id)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    async def current_session(self, employee_id: str) -> PresenceSession | None:
        return await self.repository.get_open_session(employee_id)

    async def summary(self, session_id: str) -> SessionSummary:
        session = await self.repository.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return SessionSummary.of(session)

    async def resolve_alert(self, alert_id: str, resolved_by: str) -> AIAlert:
        alert = await self.repository.resolve_alert(alert_id, resolved_by, self.clock())
        logger.info(f"Alert {alert_id} resolved by {resolved_by}")
        return alert
