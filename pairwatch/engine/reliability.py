from __future__ import annotations

from collections.abc import Iterable, Sequence

from pairwatch.engine.config import ScoringWeights
from pairwatch.engine.domain import AIAlert, CheckIn, CheckInStatus, Severity

MAX_SCORE = 100
MIN_SCORE = 0


def calculate_reliability_score(
    check_ins: Sequence[CheckIn],
    alerts: Iterable[AIAlert],
    weights: ScoringWeights | None = None,
) -> int:
    """
    Heuristic 0-100 trust score from a check-in history and the employee's alerts.

    Starts from 100, deducts per failed check-in and per unresolved alert
    (weighted by severity), adds a small bonus for a long clean streak, and
    clamps the result. Resolved alerts no longer count against the employee.
    """
    w = weights or ScoringWeights()
    score = MAX_SCORE

    failed = sum(1 for c in check_ins if c.status == CheckInStatus.FAILED)
    score -= failed * w.failed_check_in

    penalty = {
        Severity.HIGH: w.high_alert,
        Severity.MEDIUM: w.medium_alert,
        Severity.LOW: w.low_alert,
    }
    for alert in alerts:
        if alert.resolved:
            continue
        score -= penalty[alert.severity]

    if len(check_ins) > w.consistency_min_check_ins and failed == 0:
        score += w.consistency_bonus

    return max(MIN_SCORE, min(MAX_SCORE, score))
