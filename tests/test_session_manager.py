from datetime import timedelta

import pytest

from pairwatch.dependencies import build_services
from pairwatch.engine.biometrics import EmbeddingFaceComparator
from pairwatch.engine.domain import (
    AlertType,
    CheckIn,
    CheckInStatus,
    CheckInType,
    SessionStatus,
    VerificationMethod,
)
from pairwatch.engine.verification import Evidence, Factor
from pairwatch.errors import PreconditionError, VerificationFailure

from conftest import REF_A, REF_B, SITE_LAT, SITE_LON, ManualScheduler, face, north_of

MIN_DELAY = 45 * 60
MAX_DELAY = 120 * 60


async def _start(manager, world, employee, **overrides):
    return await manager.start(
        employee.id,
        world.site.id,
        location_consent=True,
        evidence=world.start_evidence(employee, **overrides),
    )


# --- start ---

async def test_start_opens_present_session(manager, world, scheduler, clock, repository):
    result = await _start(manager, world, world.alice)

    assert result.complete
    session = result.session
    assert session.status == SessionStatus.PRESENT
    assert session.start_time == clock.now
    assert session.reliability_score == 100

    [check_in] = session.check_ins
    assert check_in.type == CheckInType.START
    assert check_in.status == CheckInStatus.VERIFIED
    assert check_in.verification_method == VerificationMethod.FACIAL
    assert check_in.ai_confidence_score >= 85.0
    assert check_in.pair_present is False

    [delay] = scheduler.delays
    assert MIN_DELAY <= delay <= MAX_DELAY
    assert session.next_check_in_at == clock.now + timedelta(seconds=delay)

    stored = await repository.get_open_session(world.alice.id)
    assert stored.id == session.id


async def test_start_requires_location_consent(manager, world, scheduler, repository):
    with pytest.raises(PreconditionError):
        await manager.start(
            world.alice.id,
            world.site.id,
            location_consent=False,
            evidence=world.start_evidence(world.alice),
        )
    assert await repository.get_open_session(world.alice.id) is None
    assert scheduler.delays == []


async def test_start_requires_pair_at_site(manager, world, services):
    other = await services.roster.create_site("Depot", SITE_LAT + 1, SITE_LON)
    with pytest.raises(PreconditionError):
        await manager.start(
            world.alice.id,
            other.id,
            location_consent=True,
            evidence=world.start_evidence(world.alice),
        )


async def test_start_requires_an_active_pair(manager, world, services):
    await services.roster.deactivate_pair(world.pair.id)
    with pytest.raises(PreconditionError):
        await _start(manager, world, world.alice)


async def test_only_one_open_session(manager, world):
    await _start(manager, world, world.alice)
    with pytest.raises(PreconditionError):
        await _start(manager, world, world.alice, jitter=0.05)


async def test_start_factor_by_factor(manager, world, repository):
    site = world.site.id
    alice = world.alice.id

    step = await manager.start(
        alice, site, location_consent=True, evidence=Evidence(SITE_LAT, SITE_LON)
    )
    assert not step.complete
    assert step.next_factor == Factor.FACIAL
    assert step.session is None

    step = await manager.start(
        alice, site, location_consent=True, evidence=Evidence(face_sample=[1.0, 0.0, 0.0, 0.01])
    )
    assert step.next_factor == Factor.QUESTION
    assert await repository.get_open_session(alice) is None

    step = await manager.start(alice, site, location_consent=True, evidence=Evidence(answer="blue"))
    assert step.complete
    assert step.check_in.latitude == SITE_LAT
    assert step.session.status == SessionStatus.PRESENT


async def test_start_outside_geofence_fails_without_session(manager, world, repository):
    lat, lon = north_of(SITE_LAT, SITE_LON, 100.1)

    with pytest.raises(VerificationFailure) as exc:
        await _start(manager, world, world.alice, latitude=lat, longitude=lon)
    assert exc.value.reason == "outside_geofence"
    assert await repository.get_open_session(world.alice.id) is None

    # Walking back inside the fence is enough to retry.
    assert (await _start(manager, world, world.alice)).complete


async def test_location_checked_at_one_site_does_not_open_another(
    manager, world, services, repository
):
    far_lat, far_lon = north_of(SITE_LAT, SITE_LON, 50_000)
    depot = await services.roster.create_site("Far depot", far_lat, far_lon)
    carol = await services.roster.register_employee("Carol", "Petit", employee_id="carol")
    await services.roster.create_pair(world.alice.id, carol.id, depot.id)

    step = await manager.start(
        world.alice.id, world.site.id, location_consent=True, evidence=Evidence(SITE_LAT, SITE_LON)
    )
    assert step.next_factor == Factor.FACIAL

    step = await manager.start(
        world.alice.id,
        depot.id,
        location_consent=True,
        evidence=Evidence(face_sample=face(REF_A), answer="Blue"),
    )
    assert not step.complete
    assert step.next_factor == Factor.LOCATION
    assert await repository.get_open_session(world.alice.id) is None

    # The Louvre coordinates are 50 km outside the depot fence.
    with pytest.raises(VerificationFailure) as exc:
        await manager.start(
            world.alice.id,
            depot.id,
            location_consent=True,
            evidence=world.start_evidence(world.alice),
        )
    assert exc.value.reason == "outside_geofence"


async def test_stale_start_challenge_asks_for_location_again(manager, world, clock, repository):
    await manager.start(
        world.alice.id, world.site.id, location_consent=True, evidence=Evidence(SITE_LAT, SITE_LON)
    )
    clock.advance(seconds=manager.config.start_challenge_ttl_seconds + 1)

    step = await manager.start(
        world.alice.id,
        world.site.id,
        location_consent=True,
        evidence=Evidence(face_sample=face(REF_A), answer="Blue"),
    )
    assert step.next_factor == Factor.LOCATION
    assert await repository.get_open_session(world.alice.id) is None


async def test_not_started_employee_has_no_session(manager, world):
    assert await manager.current_session(world.alice.id) is None
    assert {s.value for s in SessionStatus} == {"present", "paused", "suspended", "ended"}


# --- periodic re-verification ---

async def test_timer_marks_reverification_due(manager, world, scheduler, repository):
    notified = []

    async def hook(session):
        notified.append(session.employee_id)

    manager.on_reverification_due = hook
    await _start(manager, world, world.alice)

    await scheduler.fire_all()

    session = await repository.get_open_session(world.alice.id)
    assert session.reverification_due
    assert notified == ["alice"]
    assert not manager.has_pending_timer(world.alice.id)


async def test_periodic_check_in_reschedules(manager, world, scheduler, clock):
    await _start(manager, world, world.alice)
    await scheduler.fire_all()
    clock.advance(minutes=50)

    result = await manager.submit_periodic_check_in(
        world.alice.id, world.periodic_evidence(world.alice)
    )

    assert result.complete
    session = result.session
    assert result.check_in.type == CheckInType.PERIODIC
    assert len(session.check_ins) == 2
    assert not session.reverification_due
    assert session.total_minutes == pytest.approx(50)
    [delay] = scheduler.delays
    assert MIN_DELAY <= delay <= MAX_DELAY
    assert session.next_check_in_at == clock.now + timedelta(seconds=delay)


async def test_intervals_are_drawn_fresh(manager, world, scheduler, clock):
    await _start(manager, world, world.alice)
    delays = []
    for i in range(5):
        delays.extend(scheduler.delays)
        clock.advance(minutes=1)
        await manager.submit_periodic_check_in(
            world.alice.id, world.periodic_evidence(world.alice, jitter=0.1 + i / 10)
        )
    assert all(MIN_DELAY <= d <= MAX_DELAY for d in delays)
    assert len(set(delays)) > 1


async def test_failed_periodic_check_in_is_recorded(manager, world, scheduler, clock, repository):
    started = (await _start(manager, world, world.alice)).session
    timers_before = dict(scheduler.pending)
    clock.advance(minutes=50)

    with pytest.raises(VerificationFailure) as exc:
        await manager.submit_periodic_check_in(
            world.alice.id, world.periodic_evidence(world.alice, answer="Green")
        )
    assert exc.value.reason == "wrong_answer"

    session = await repository.get_open_session(world.alice.id)
    assert session.status == SessionStatus.PRESENT
    assert session.total_minutes == started.total_minutes
    assert session.last_accrual_at == started.last_accrual_at
    assert session.check_ins[-1].status == CheckInStatus.FAILED
    assert session.check_ins[-1].verification_method == VerificationMethod.QUESTION
    assert session.reliability_score == 95
    assert scheduler.pending == timers_before

    # The face already passed; the answer alone completes the challenge.
    result = await manager.submit_periodic_check_in(world.alice.id, Evidence(answer="BLUE"))
    assert result.complete
    assert result.check_in.verification_method == VerificationMethod.FACIAL


async def test_face_mismatch_is_recorded_with_confidence(manager, world, clock, repository):
    await _start(manager, world, world.alice)
    clock.advance(minutes=50)

    with pytest.raises(VerificationFailure):
        await manager.submit_periodic_check_in(
            world.alice.id, world.periodic_evidence(world.alice, face_sample=REF_B)
        )

    failed = (await repository.get_open_session(world.alice.id)).check_ins[-1]
    assert failed.verification_method == VerificationMethod.FACIAL
    assert failed.status == CheckInStatus.FAILED
    assert failed.ai_confidence_score < 85.0


async def test_camera_fallback_check_in(manager, world, clock):
    await _start(manager, world, world.alice)
    clock.advance(minutes=50)

    result = await manager.submit_periodic_check_in(
        world.alice.id, Evidence(camera_unavailable=True, answer="Blue")
    )
    assert result.check_in.verification_method == VerificationMethod.QUESTION
    assert result.check_in.ai_confidence_score == 100.0


async def test_periodic_check_in_needs_present_session(manager, world):
    with pytest.raises(PreconditionError):
        await manager.submit_periodic_check_in(world.alice.id, world.periodic_evidence(world.alice))

    await _start(manager, world, world.alice)
    await manager.pause(world.alice.id)
    with pytest.raises(PreconditionError):
        await manager.submit_periodic_check_in(world.alice.id, world.periodic_evidence(world.alice))


async def test_stale_timer_is_ignored_after_pause(manager, world, scheduler, repository):
    await _start(manager, world, world.alice)
    [(_, callback)] = scheduler.pending.values()

    await manager.pause(world.alice.id)
    assert await callback() is None
    assert not (await repository.get_open_session(world.alice.id)).reverification_due


# --- pause / resume / emergency / end ---

async def test_pause_cancels_and_resume_rearms(manager, world, scheduler):
    await _start(manager, world, world.alice)

    paused = await manager.pause(world.alice.id)
    assert paused.status == SessionStatus.PAUSED
    assert paused.next_check_in_at is None
    assert scheduler.pending == {}

    resumed = await manager.resume(world.alice.id)
    assert resumed.status == SessionStatus.PRESENT
    [delay] = scheduler.delays
    assert MIN_DELAY <= delay <= MAX_DELAY


async def test_invalid_transitions_leave_state_unchanged(manager, world, repository):
    await _start(manager, world, world.alice)
    with pytest.raises(PreconditionError):
        await manager.resume(world.alice.id)

    await manager.pause(world.alice.id)
    with pytest.raises(PreconditionError):
        await manager.pause(world.alice.id)
    with pytest.raises(PreconditionError):
        await manager.emergency_suspend(world.alice.id, "fall")

    assert (await repository.get_open_session(world.alice.id)).status == SessionStatus.PAUSED


async def test_emergency_suspends_and_flags(manager, world, scheduler):
    await _start(manager, world, world.alice)

    session = await manager.emergency_suspend(world.alice.id, "medical")

    assert session.status == SessionStatus.SUSPENDED
    assert session.emergency_flag
    assert session.emergency_reason == "medical"
    assert scheduler.pending == {}
    with pytest.raises(PreconditionError):
        await manager.resume(world.alice.id)


@pytest.mark.parametrize("state", ["present", "paused", "suspended"])
async def test_end_from_any_open_state(manager, world, scheduler, clock, repository, state):
    started = await _start(manager, world, world.alice)
    if state == "paused":
        await manager.pause(world.alice.id)
    elif state == "suspended":
        await manager.emergency_suspend(world.alice.id)
    clock.advance(minutes=5)

    summary = await manager.end(world.alice.id)

    assert summary.status == SessionStatus.ENDED
    assert summary.end_time == clock.now
    assert scheduler.pending == {}
    stored = await repository.get_session(started.session.id)
    assert stored.status == SessionStatus.ENDED
    assert stored.next_check_in_at is None


async def test_ended_session_is_read_only(manager, world, clock, repository):
    started = await _start(manager, world, world.alice)
    await manager.end(world.alice.id)

    with pytest.raises(PreconditionError):
        await manager.end(world.alice.id)
    with pytest.raises(PreconditionError):
        await manager.pause(world.alice.id)

    session = await repository.get_session(started.session.id)
    with pytest.raises(PreconditionError):
        session.append_check_in(
            CheckIn(
                employee_id=world.alice.id,
                site_id=world.site.id,
                timestamp=clock.now,
                type=CheckInType.PERIODIC,
                verification_method=VerificationMethod.QUESTION,
                latitude=SITE_LAT,
                longitude=SITE_LON,
                status=CheckInStatus.VERIFIED,
                ai_confidence_score=100.0,
                pair_present=False,
            )
        )


async def test_end_with_verification_adds_end_check_in(manager, world, clock):
    await _start(manager, world, world.alice)
    clock.advance(minutes=60)

    summary = await manager.end(world.alice.id, world.periodic_evidence(world.alice))

    assert summary.check_ins == 2
    session = await manager.repository.get_session(summary.session_id)
    assert session.check_ins[-1].type == CheckInType.END


async def test_failed_end_verification_keeps_session_open(manager, world, repository):
    await _start(manager, world, world.alice)

    with pytest.raises(VerificationFailure):
        await manager.end(world.alice.id, world.periodic_evidence(world.alice, answer="nope"))

    assert (await repository.get_open_session(world.alice.id)).status == SessionStatus.PRESENT


async def test_minutes_count_present_time_only(manager, world, clock):
    await _start(manager, world, world.alice)
    clock.advance(minutes=30)
    await manager.pause(world.alice.id)
    clock.advance(minutes=20)
    await manager.resume(world.alice.id)
    clock.advance(minutes=10)

    summary = await manager.end(world.alice.id)

    assert summary.total_minutes == 40
    assert summary.time_with_pair_minutes == 0
    assert summary.verified_check_ins == 1
    assert await manager.summary(summary.session_id) == summary


# --- pair validation ---

async def test_partner_presence_on_check_in(manager, world):
    await _start(manager, world, world.alice)
    result = await _start(manager, world, world.bob)

    assert result.check_in.pair_present
    assert result.check_in.distance_to_pair == pytest.approx(0.0)


async def test_pair_code_exchange_marks_both_present(manager, world, clock, repository):
    await _start(manager, world, world.alice)
    await _start(manager, world, world.bob)

    code = await manager.generate_pair_code(world.alice.id)
    result = await manager.validate_pair(
        world.bob.id, Evidence(pair_code=code.code, pair_confirmed=True)
    )
    assert result.complete

    for employee in (world.alice, world.bob):
        session = await repository.get_open_session(employee.id)
        assert session.pair_present
        assert session.last_pair_validation_at == clock.now

    clock.advance(minutes=60)
    summary = await manager.end(world.alice.id)
    assert summary.time_with_pair_minutes == 60


async def test_pair_code_is_single_use(manager, world):
    await _start(manager, world, world.alice)
    await _start(manager, world, world.bob)
    code = await manager.generate_pair_code(world.alice.id)
    evidence = Evidence(pair_code=code.code, pair_confirmed=True)

    await manager.validate_pair(world.bob.id, evidence)
    with pytest.raises(VerificationFailure) as exc:
        await manager.validate_pair(world.bob.id, evidence)
    assert exc.value.reason == "already_used"


async def test_own_pair_code_is_rejected(manager, world):
    await _start(manager, world, world.alice)
    code = await manager.generate_pair_code(world.alice.id)

    with pytest.raises(VerificationFailure) as exc:
        await manager.validate_pair(
            world.alice.id, Evidence(pair_code=code.code, pair_confirmed=True)
        )
    assert exc.value.reason == "own_code"


async def test_pair_code_needs_present_session(manager, world):
    with pytest.raises(PreconditionError):
        await manager.generate_pair_code(world.alice.id)


# --- alerts and scoring ---

async def test_stable_gps_raises_one_alert(manager, world, clock, repository):
    await _start(manager, world, world.alice)
    for _ in range(10):
        clock.advance(minutes=1)
        await manager.record_location(world.alice.id, SITE_LAT, SITE_LON)

    result = await manager.submit_periodic_check_in(
        world.alice.id, world.periodic_evidence(world.alice, jitter=0.02)
    )
    assert [a.type for a in result.alerts] == [AlertType.GPS_STABLE]
    assert result.session.reliability_score == 90

    clock.advance(minutes=5)
    result = await manager.submit_periodic_check_in(
        world.alice.id, world.periodic_evidence(world.alice, jitter=0.03)
    )
    assert result.alerts == []
    assert len(await repository.list_alerts(world.alice.id)) == 1
    assert result.session.reliability_score == 90


async def test_impossible_movement_raises_high_alert(manager, world, clock):
    await _start(manager, world, world.alice)
    clock.advance(minutes=2)
    await manager.record_location(world.alice.id, *north_of(SITE_LAT, SITE_LON, 20_000))

    result = await manager.submit_periodic_check_in(
        world.alice.id, Evidence(camera_unavailable=True, answer="Blue")
    )
    [alert] = result.alerts
    assert alert.type == AlertType.UNREALISTIC_MOVEMENT
    assert alert.details == "Moved 20.0km in 2 minutes"
    assert result.session.reliability_score == 85


async def test_resubmitted_selfie_raises_alert(manager, world, clock):
    await _start(manager, world, world.alice, jitter=0.01)
    for _ in range(2):
        clock.advance(minutes=10)
        result = await manager.submit_periodic_check_in(
            world.alice.id, world.periodic_evidence(world.alice, jitter=0.01)
        )

    assert [a.type for a in result.alerts] == [AlertType.IDENTICAL_SELFIES]
    assert result.session.reliability_score == 85


async def test_resolving_an_alert(manager, world, clock, repository):
    await _start(manager, world, world.alice)
    clock.advance(minutes=2)
    await manager.record_location(world.alice.id, *north_of(SITE_LAT, SITE_LON, 20_000))
    await manager.submit_periodic_check_in(
        world.alice.id, Evidence(camera_unavailable=True, answer="Blue")
    )
    [alert] = await repository.list_alerts(world.alice.id)

    resolved = await manager.resolve_alert(alert.id, "supervisor-1")

    assert resolved.resolved
    assert resolved.resolved_by == "supervisor-1"
    assert resolved.resolved_at == clock.now
    assert await repository.list_alerts(world.alice.id, unresolved_only=True) == []


async def test_record_location_needs_open_session(manager, world):
    with pytest.raises(PreconditionError):
        await manager.record_location(world.alice.id, SITE_LAT, SITE_LON)


# --- restart ---

async def _restarted(repository, cache, config, clock):
    scheduler = ManualScheduler()
    services = build_services(
        repository,
        cache,
        config=config,
        scheduler=scheduler,
        comparator=EmbeddingFaceComparator(),
        clock=clock,
    )
    return services.manager, scheduler


async def test_recover_rearms_from_persisted_deadline(manager, world, repository, cache, config, clock):
    started = await _start(manager, world, world.alice)
    deadline = started.session.next_check_in_at
    clock.advance(minutes=10)

    restarted, scheduler = await _restarted(repository, cache, config, clock)
    assert await restarted.recover() == 1
    [delay] = scheduler.delays
    assert delay == pytest.approx((deadline - clock.now).total_seconds())


async def test_recover_fires_overdue_deadline_immediately(manager, world, repository, cache, config, clock):
    await _start(manager, world, world.alice)
    clock.advance(minutes=180)

    restarted, scheduler = await _restarted(repository, cache, config, clock)
    await restarted.recover()
    assert scheduler.delays == [0.0]


async def test_recover_skips_paused_sessions(manager, world, repository, cache, config, clock):
    await _start(manager, world, world.alice)
    await manager.pause(world.alice.id)

    restarted, scheduler = await _restarted(repository, cache, config, clock)
    assert await restarted.recover() == 0
    assert scheduler.delays == []
