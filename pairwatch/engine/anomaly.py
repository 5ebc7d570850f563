"""
Anomaly detection over an employee's recent check-ins and location samples.

Four independent rules run over the same window and their alerts are
concatenated, so one pass can raise several alert types:

- gpsStable: the GPS feed never moves (spoofed / fixed location)
- identicalSelfies: the same face capture is submitted again and again
- unrealisticMovement: two consecutive samples imply an impossible speed
- lateAuth: most check-ins happen after the start of the working day

Every rule is a pure function of its input; nothing here reads the clock,
the database or the network.
"""
from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from itertools import combinations
from zoneinfo import ZoneInfo

from pairwatch.engine.config import EngineConfig
from pairwatch.engine.domain import (
    ALERT_SEVERITY,
    AlertDraft,
    AlertType,
    CheckIn,
    LocationSample,
    VerificationMethod,
)
from pairwatch.engine.geo import distance_km
from pairwatch.utils.logging import get_logger

logger = get_logger(__name__)

THRESHOLDS = {
    # ~11m precision
    "gps_round_decimals": 4,
    "gps_min_samples": 5,
    "gps_stable_samples": 10,  # strictly more than
    "selfie_min_facial_check_ins": 3,
    "movement_max_km": 10.0,
    "movement_min_seconds": 300,
    "late_after_hour": 9,
    "late_min_count": 3,
    "late_min_share": 0.5,  # strictly more than
}

CONFIDENCE = {
    AlertType.GPS_STABLE: 75,
    AlertType.IDENTICAL_SELFIES: 85,
    AlertType.UNREALISTIC_MOVEMENT: 90,
    AlertType.LATE_AUTH: 70,
}

SelfieSimilarity = Callable[[CheckIn, CheckIn], bool]


def same_capture(first: CheckIn, second: CheckIn) -> bool:
    """Default similarity: both check-ins carry the exact same capture digest."""
    return first.capture_digest is not None and first.capture_digest == second.capture_digest


def _as_aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def _draft(employee_id: str, kind: AlertType, ts: datetime, details: str) -> AlertDraft:
    return AlertDraft(
        employee_id=employee_id,
        type=kind,
        severity=ALERT_SEVERITY[kind],
        timestamp=ts,
        details=details,
        confidence_score=CONFIDENCE[kind],
    )


def check_gps_stable(
    employee_id: str, locations: Sequence[LocationSample], ts: datetime
) -> list[AlertDraft]:
    if len(locations) < THRESHOLDS["gps_min_samples"]:
        return []

    decimals = THRESHOLDS["gps_round_decimals"]
    unique = {(round(l.latitude, decimals), round(l.longitude, decimals)) for l in locations}

    if len(unique) == 1 and len(locations) > THRESHOLDS["gps_stable_samples"]:
        return [
            _draft(
                employee_id,
                AlertType.GPS_STABLE,
                ts,
                f"GPS coordinates have not changed in {len(locations)} readings",
            )
        ]
    return []


def check_identical_selfies(
    employee_id: str,
    check_ins: Sequence[CheckIn],
    ts: datetime,
    similarity: SelfieSimilarity = same_capture,
) -> list[AlertDraft]:
    facial = [c for c in check_ins if c.verification_method == VerificationMethod.FACIAL]
    if len(facial) < THRESHOLDS["selfie_min_facial_check_ins"]:
        return []

    duplicates = sum(1 for a, b in combinations(facial, 2) if similarity(a, b))
    if not duplicates:
        return []

    return [
        _draft(
            employee_id,
            AlertType.IDENTICAL_SELFIES,
            ts,
            f"Multiple check-ins appear to use identical or very similar photos "
            f"({duplicates} matching pair(s) across {len(facial)} facial check-ins)",
        )
    ]


def check_unrealistic_movement(
    employee_id: str, locations: Sequence[LocationSample], ts: datetime
) -> list[AlertDraft]:
    alerts: list[AlertDraft] = []
    ordered = sorted(locations, key=lambda l: _as_aware(l.timestamp))

    for prev, curr in zip(ordered, ordered[1:]):
        elapsed = (_as_aware(curr.timestamp) - _as_aware(prev.timestamp)).total_seconds()
        distance = distance_km(prev.latitude, prev.longitude, curr.latitude, curr.longitude)

        if distance > THRESHOLDS["movement_max_km"] and elapsed < THRESHOLDS["movement_min_seconds"]:
            alerts.append(
                _draft(
                    employee_id,
                    AlertType.UNREALISTIC_MOVEMENT,
                    ts,
                    f"Moved {distance:.1f}km in {round(elapsed / 60)} minutes",
                )
            )
    return alerts


def check_late_auth(
    employee_id: str,
    check_ins: Sequence[CheckIn],
    ts: datetime,
    local_timezone: str = "UTC",
) -> list[AlertDraft]:
    if not check_ins:
        return []

    tz = ZoneInfo(local_timezone)
    late = [
        c
        for c in check_ins
        if _as_aware(c.timestamp).astimezone(tz).hour > THRESHOLDS["late_after_hour"]
    ]

    if (
        len(late) >= THRESHOLDS["late_min_count"]
        and len(late) / len(check_ins) > THRESHOLDS["late_min_share"]
    ):
        return [
            _draft(
                employee_id,
                AlertType.LATE_AUTH,
                ts,
                f"{len(late)} out of {len(check_ins)} check-ins were late",
            )
        ]
    return []


def _window_end(check_ins: Sequence[CheckIn], locations: Sequence[LocationSample]) -> datetime:
    stamps = [_as_aware(c.timestamp) for c in check_ins] + [
        _as_aware(l.timestamp) for l in locations
    ]
    return max(stamps) if stamps else datetime.fromtimestamp(0, timezone.utc)


def detect_anomalies(
    employee_id: str,
    check_ins: Sequence[CheckIn],
    locations: Sequence[LocationSample],
    *,
    similarity: SelfieSimilarity = same_capture,
    local_timezone: str = "UTC",
    confidence_threshold: float = 0.0,
    now: datetime | None = None,
) -> list[AlertDraft]:
    """
    Run every rule over the window and return the alert drafts.

    Drafts are stamped with `now` when given, otherwise with the newest
    timestamp in the window, so identical input always yields identical output.
    Drafts below `confidence_threshold` are dropped.
    """
    ts = now or _window_end(check_ins, locations)

    alerts: list[AlertDraft] = []
    alerts += check_gps_stable(employee_id, locations, ts)
    alerts += check_identical_selfies(employee_id, check_ins, ts, similarity)
    alerts += check_unrealistic_movement(employee_id, locations, ts)
    alerts += check_late_auth(employee_id, check_ins, ts, local_timezone)

    return [a for a in alerts if a.confidence_score >= confidence_threshold]


class AnomalyDetector:
    def __init__(self, config: EngineConfig | None = None, similarity: SelfieSimilarity = same_capture):
        self.config = config or EngineConfig()
        self.similarity = similarity

    def detect(
        self,
        employee_id: str,
        check_ins: Sequence[CheckIn],
        locations: Sequence[LocationSample],
        now: datetime | None = None,
    ) -> list[AlertDraft]:
        window = self.config.anomaly_window_size
        drafts = detect_anomalies(
            employee_id,
            list(check_ins)[-window:],
            list(locations)[-window:],
            similarity=self.similarity,
            local_timezone=self.config.local_timezone,
            confidence_threshold=self.config.ai_confidence_threshold,
            now=now,
        )
        for d in drafts:
            logger.info(f"Anomaly {d.type.value} ({d.severity.value}) for {employee_id}: {d.details}")
        return drafts
