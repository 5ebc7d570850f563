from __future__ import annotations

from dataclasses import dataclass, field

from pairwatch.config import Settings, settings as app_settings
from pairwatch.errors import ValidationError


@dataclass(frozen=True)
class ScoringWeights:
    failed_check_in: int = 5
    high_alert: int = 15
    medium_alert: int = 10
    low_alert: int = 5
    consistency_bonus: int = 5
    # Bonus applies strictly above this many check-ins, all verified.
    consistency_min_check_ins: int = 10


@dataclass(frozen=True)
class EngineConfig:
    verification_min_minutes: float = 45.0
    verification_max_minutes: float = 120.0
    default_site_radius_m: float = 100.0
    ai_confidence_threshold: float = 70.0
    pair_code_ttl_seconds: int = 120
    # A partly answered day-start challenge is discarded after this long.
    start_challenge_ttl_seconds: int = 300
    local_timezone: str = "UTC"
    anomaly_window_size: int = 50
    weights: ScoringWeights = field(default_factory=ScoringWeights)

    def __post_init__(self):
        if not 0 < self.verification_min_minutes <= self.verification_max_minutes:
            raise ValidationError("Verification interval bounds must satisfy 0 < min <= max")
        if self.pair_code_ttl_seconds <= 0 or self.start_challenge_ttl_seconds <= 0:
            raise ValidationError("TTLs must be positive")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "EngineConfig":
        s = settings or app_settings
        return cls(
            verification_min_minutes=s.VERIFICATION_MIN_MINUTES,
            verification_max_minutes=s.VERIFICATION_MAX_MINUTES,
            default_site_radius_m=s.DEFAULT_SITE_RADIUS_M,
            ai_confidence_threshold=s.AI_CONFIDENCE_THRESHOLD,
            pair_code_ttl_seconds=s.PAIR_CODE_TTL_SECONDS,
            start_challenge_ttl_seconds=s.START_CHALLENGE_TTL_SECONDS,
            local_timezone=s.LOCAL_TIMEZONE,
            anomaly_window_size=s.ANOMALY_WINDOW_SIZE,
            weights=ScoringWeights(
                failed_check_in=s.SCORE_FAILED_CHECK_IN,
                high_alert=s.SCORE_HIGH_ALERT,
                medium_alert=s.SCORE_MEDIUM_ALERT,
                low_alert=s.SCORE_LOW_ALERT,
                consistency_bonus=s.SCORE_CONSISTENCY_BONUS,
            ),
        )
