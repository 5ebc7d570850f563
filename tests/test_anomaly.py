from datetime import datetime, timedelta, timezone

from pairwatch.engine.anomaly import (
    AnomalyDetector,
    check_gps_stable,
    check_identical_selfies,
    check_late_auth,
    check_unrealistic_movement,
    detect_anomalies,
)
from pairwatch.engine.config import EngineConfig
from pairwatch.engine.domain import (
    ALERT_SEVERITY,
    AlertType,
    CheckIn,
    CheckInStatus,
    CheckInType,
    LocationSample,
    Severity,
    VerificationMethod,
)

from conftest import SITE_LAT, SITE_LON, north_of

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def _samples(points, step_minutes=5):
    return [
        LocationSample(lat, lon, T0 + timedelta(minutes=step_minutes * i))
        for i, (lat, lon) in enumerate(points)
    ]


def _check_in(ts, method=VerificationMethod.FACIAL, digest=None):
    return CheckIn(
        employee_id="e1",
        site_id="s1",
        timestamp=ts,
        type=CheckInType.PERIODIC,
        verification_method=method,
        latitude=SITE_LAT,
        longitude=SITE_LON,
        status=CheckInStatus.VERIFIED,
        ai_confidence_score=90.0,
        pair_present=False,
        capture_digest=digest,
    )


def _at(hour, minute=0):
    return T0.replace(hour=hour, minute=minute)


# --- gpsStable ---

def test_gps_stable_after_eleven_identical_readings():
    alerts = check_gps_stable("e1", _samples([(SITE_LAT, SITE_LON)] * 11), T0)
    assert len(alerts) == 1
    assert alerts[0].type == AlertType.GPS_STABLE
    assert alerts[0].severity == Severity.MEDIUM
    assert alerts[0].confidence_score == 75


def test_gps_stable_needs_more_than_ten_readings():
    assert check_gps_stable("e1", _samples([(SITE_LAT, SITE_LON)] * 10), T0) == []


def test_gps_stable_ignores_jitter_below_four_decimals():
    points = [(SITE_LAT + 0.00001 * (i % 2), SITE_LON) for i in range(12)]
    assert len(check_gps_stable("e1", _samples(points), T0)) == 1


def test_gps_moving_is_not_stable():
    points = [(SITE_LAT + 0.001 * i, SITE_LON) for i in range(12)]
    assert check_gps_stable("e1", _samples(points), T0) == []


def test_gps_stable_needs_five_samples():
    assert check_gps_stable("e1", _samples([(SITE_LAT, SITE_LON)] * 4), T0) == []


# --- identicalSelfies ---

def test_identical_selfies_with_repeated_capture():
    check_ins = [_check_in(_at(8 + i), digest="same") for i in range(3)]
    alerts = check_identical_selfies("e1", check_ins, T0)
    assert len(alerts) == 1
    assert alerts[0].severity == Severity.HIGH
    assert alerts[0].confidence_score == 85


def test_identical_selfies_need_three_facial_check_ins():
    check_ins = [
        _check_in(_at(8), digest="same"),
        _check_in(_at(9), digest="same"),
        _check_in(_at(10), method=VerificationMethod.QUESTION),
    ]
    assert check_identical_selfies("e1", check_ins, T0) == []


def test_distinct_captures_are_not_flagged():
    check_ins = [_check_in(_at(8 + i), digest=f"d{i}") for i in range(4)]
    assert check_identical_selfies("e1", check_ins, T0) == []


def test_identical_selfies_uses_similarity_collaborator():
    check_ins = [_check_in(_at(8 + i), digest=f"d{i}") for i in range(3)]
    alerts = check_identical_selfies("e1", check_ins, T0, similarity=lambda a, b: True)
    assert len(alerts) == 1


# --- unrealisticMovement ---

def test_twenty_km_in_two_minutes():
    far = north_of(SITE_LAT, SITE_LON, 20_000)
    alerts = check_unrealistic_movement(
        "e1", _samples([(SITE_LAT, SITE_LON), far], step_minutes=2), T0
    )
    assert len(alerts) == 1
    assert alerts[0].severity == Severity.HIGH
    assert alerts[0].confidence_score == 90
    assert alerts[0].details == "Moved 20.0km in 2 minutes"


def test_one_alert_per_offending_pair():
    far = north_of(SITE_LAT, SITE_LON, 20_000)
    samples = _samples([(SITE_LAT, SITE_LON), far, (SITE_LAT, SITE_LON)], step_minutes=2)
    assert len(check_unrealistic_movement("e1", samples, T0)) == 2


def test_fast_but_slow_enough_is_fine():
    far = north_of(SITE_LAT, SITE_LON, 20_000)
    samples = _samples([(SITE_LAT, SITE_LON), far], step_minutes=10)
    assert check_unrealistic_movement("e1", samples, T0) == []


def test_short_hop_is_fine():
    near = north_of(SITE_LAT, SITE_LON, 5_000)
    samples = _samples([(SITE_LAT, SITE_LON), near], step_minutes=1)
    assert check_unrealistic_movement("e1", samples, T0) == []


def test_movement_is_checked_in_time_order():
    far = north_of(SITE_LAT, SITE_LON, 20_000)
    samples = _samples([(SITE_LAT, SITE_LON), far], step_minutes=2)
    assert len(check_unrealistic_movement("e1", list(reversed(samples)), T0)) == 1


# --- lateAuth ---

def test_late_auth_majority_after_nine():
    check_ins = [_check_in(_at(8)), _check_in(_at(10)), _check_in(_at(11)), _check_in(_at(12))]
    alerts = check_late_auth("e1", check_ins, T0)
    assert len(alerts) == 1
    assert alerts[0].severity == Severity.LOW
    assert alerts[0].confidence_score == 70
    assert alerts[0].details == "3 out of 4 check-ins were late"


def test_late_auth_needs_more_than_half():
    check_ins = [_check_in(_at(h)) for h in (7, 8, 8, 10, 11, 12)]
    assert check_late_auth("e1", check_ins, T0) == []


def test_late_auth_needs_three_late():
    check_ins = [_check_in(_at(10)), _check_in(_at(11))]
    assert check_late_auth("e1", check_ins, T0) == []


def test_nine_something_is_not_late():
    check_ins = [_check_in(_at(9, 59)) for _ in range(4)]
    assert check_late_auth("e1", check_ins, T0) == []


def test_late_auth_uses_local_timezone():
    # 09:30 UTC is 10:30 in Paris in March.
    check_ins = [_check_in(_at(9, 30)) for _ in range(3)]
    assert check_late_auth("e1", check_ins, T0) == []
    assert len(check_late_auth("e1", check_ins, T0, local_timezone="Europe/Paris")) == 1


# --- detector ---

def test_rules_compose_in_one_pass():
    locations = _samples([(SITE_LAT, SITE_LON)] * 11)
    check_ins = [_check_in(_at(10 + i), digest="same") for i in range(3)]

    kinds = {a.type for a in detect_anomalies("e1", check_ins, locations)}
    assert kinds == {
        AlertType.GPS_STABLE,
        AlertType.IDENTICAL_SELFIES,
        AlertType.LATE_AUTH,
    }


def test_confidence_threshold_filters_drafts():
    far = north_of(SITE_LAT, SITE_LON, 20_000)
    locations = _samples([(SITE_LAT, SITE_LON)] * 11 + [far], step_minutes=1)
    check_ins = [_check_in(_at(10 + i)) for i in range(3)]

    drafts = detect_anomalies("e1", check_ins, locations, confidence_threshold=80)
    assert {a.type for a in drafts} == {AlertType.UNREALISTIC_MOVEMENT}


def test_threshold_is_inclusive():
    check_ins = [_check_in(_at(10 + i)) for i in range(3)]
    drafts = detect_anomalies("e1", check_ins, [], confidence_threshold=70)
    assert [a.type for a in drafts] == [AlertType.LATE_AUTH]


def test_detection_is_deterministic():
    locations = _samples([(SITE_LAT, SITE_LON)] * 12)
    check_ins = [_check_in(_at(10 + i), digest="same") for i in range(3)]

    first = detect_anomalies("e1", check_ins, locations)
    second = detect_anomalies("e1", check_ins, locations)
    assert first == second
    # Stamped with the newest timestamp of the window.
    assert {a.timestamp for a in first} == {_at(12)}


def test_detector_only_looks_at_recent_window():
    detector = AnomalyDetector(EngineConfig(anomaly_window_size=5))
    locations = _samples([(SITE_LAT, SITE_LON)] * 11)
    assert detector.detect("e1", [], locations) == []


def test_detector_applies_configured_threshold():
    detector = AnomalyDetector(EngineConfig(ai_confidence_threshold=76))
    locations = _samples([(SITE_LAT, SITE_LON)] * 11)
    assert detector.detect("e1", [], locations) == []


def test_every_alert_type_has_one_severity():
    assert set(ALERT_SEVERITY) == set(AlertType)
