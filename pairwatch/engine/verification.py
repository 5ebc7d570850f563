"""
Identity verification for check-ins.

A challenge is an ordered list of factors plus a cursor. Each call to
`VerificationGate.advance` checks the factors starting at the cursor, for as
long as the submitted evidence covers them, and moves the cursor past every
factor that passes. A failing factor raises `VerificationFailure` and leaves
the cursor where it was, so the caller can retry just that factor.

    initial day start:  location -> facial -> question
    periodic:           facial (or explicit fallback) -> question
    pair validation:    pair code exchange
"""
from __future__ import annotations

import enum
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from pairwatch.engine.answers import verify_answer
from pairwatch.engine.biometrics import FaceComparator, FaceMatch, capture_digest
from pairwatch.engine.domain import Employee, Pair, Site, VerificationMethod, new_id, utcnow
from pairwatch.engine.geo import distance_m, is_within_geofence
from pairwatch.engine.pair_codes import PairCode, PairCodeRegistry
from pairwatch.errors import PreconditionError, VerificationFailure
from pairwatch.utils.logging import get_logger

logger = get_logger(__name__)

QUESTION_ONLY_CONFIDENCE = 100.0


class Factor(str, enum.Enum):
    LOCATION = "location"
    FACIAL = "facial"
    QUESTION = "question"
    PAIR_CODE = "pair_code"


class ChallengeKind(str, enum.Enum):
    INITIAL = "initial"
    PERIODIC = "periodic"
    PAIR = "pair"


CHALLENGE_FACTORS: dict[ChallengeKind, tuple[Factor, ...]] = {
    ChallengeKind.INITIAL: (Factor.LOCATION, Factor.FACIAL, Factor.QUESTION),
    ChallengeKind.PERIODIC: (Factor.FACIAL, Factor.QUESTION),
    ChallengeKind.PAIR: (Factor.PAIR_CODE,),
}


@dataclass
class Evidence:
    """Whatever the capture layer collected for this attempt; missing parts are None."""

    latitude: float | None = None
    longitude: float | None = None
    face_sample: Sequence[float] | None = None
    camera_unavailable: bool = False
    answer: str | None = None
    pair_code: str | None = None
    pair_confirmed: bool = False

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class Challenge:
    kind: ChallengeKind
    factors: tuple[Factor, ...]
    cursor: int = 0
    facial_confidence: float | None = None
    facial_skipped: bool = False
    capture_digest: str | None = None
    distance_to_site_m: float | None = None
    latitude: float | None = None
    longitude: float | None = None
    claimed_code: PairCode | None = None
    # Site the location factor was checked against (day-start only).
    site_id: str | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def for_kind(cls, kind: ChallengeKind) -> "Challenge":
        return cls(kind=kind, factors=CHALLENGE_FACTORS[kind])

    @property
    def current(self) -> Factor | None:
        return self.factors[self.cursor] if self.cursor < len(self.factors) else None

    @property
    def is_complete(self) -> bool:
        return self.cursor >= len(self.factors)

    @property
    def verification_method(self) -> VerificationMethod:
        if self.facial_confidence is not None and not self.facial_skipped:
            return VerificationMethod.FACIAL
        return VerificationMethod.QUESTION

    @property
    def confidence_score(self) -> float:
        if self.verification_method == VerificationMethod.FACIAL:
            return self.facial_confidence
        return QUESTION_ONLY_CONFIDENCE

    def advance_cursor(self) -> None:
        self.cursor += 1


class VerificationGate:
    def __init__(self, comparator: FaceComparator, pair_codes: PairCodeRegistry | None = None):
        self.comparator = comparator
        self.pair_codes = pair_codes

    def check_location(self, latitude: float, longitude: float, site: Site) -> float:
        distance = distance_m(latitude, longitude, site.latitude, site.longitude)
        if not is_within_geofence(latitude, longitude, site.latitude, site.longitude, site.radius_m):
            raise VerificationFailure(
                Factor.LOCATION.value,
                "outside_geofence",
                f"You are {distance:.0f}m from {site.name}, outside its {site.radius_m:.0f}m radius",
            )
        return distance

    async def check_face(self, sample: Sequence[float], employee: Employee) -> FaceMatch:
        if not employee.consents.biometric:
            raise VerificationFailure(
                Factor.FACIAL.value, "no_biometric_consent", "Biometric consent has not been given"
            )
        if not employee.biometric_reference:
            raise VerificationFailure(
                Factor.FACIAL.value, "not_enrolled", "No biometric reference enrolled for this employee"
            )

        result = await self.comparator.compare_face(sample, employee.biometric_reference)
        if not result.verified:
            raise VerificationFailure(
                Factor.FACIAL.value,
                "face_mismatch",
                result.message or "Face recognition failed",
                confidence=result.confidence_score,
            )
        return result

    def check_answer(self, answer: str, employee: Employee) -> None:
        if not employee.security_answer_hash:
            raise VerificationFailure(
                Factor.QUESTION.value, "not_enrolled", "No security question configured"
            )
        if not verify_answer(answer, employee.security_answer_hash):
            raise VerificationFailure(Factor.QUESTION.value, "wrong_answer", "Incorrect answer")

    async def check_pair_code(
        self, code: str, confirmed: bool, claimant: Employee, pair: Pair
    ) -> PairCode:
        if self.pair_codes is None:
            raise PreconditionError("Pair code validation is not configured")
        claimed = await self.pair_codes.claim(code, claimant.id, confirmed=confirmed, pair_id=pair.id)
        if claimed.employee_id != pair.partner_of(claimant.id):
            raise VerificationFailure(
                Factor.PAIR_CODE.value, "wrong_pair", "This pair code was not issued by your partner"
            )
        return claimed

    @staticmethod
    def _covers(factor: Factor, evidence: Evidence) -> bool:
        if factor == Factor.LOCATION:
            return evidence.has_location
        if factor == Factor.FACIAL:
            return evidence.face_sample is not None or evidence.camera_unavailable
        if factor == Factor.QUESTION:
            return evidence.answer is not None
        if factor == Factor.PAIR_CODE:
            return evidence.pair_code is not None
        raise ValueError(f"Unhandled factor {factor!r}")

    async def advance(
        self,
        challenge: Challenge,
        evidence: Evidence,
        *,
        employee: Employee,
        site: Site | None = None,
        pair: Pair | None = None,
    ) -> Challenge:
        while not challenge.is_complete:
            factor = challenge.current
            if not self._covers(factor, evidence):
                break

            if factor == Factor.LOCATION:
                if site is None:
                    raise PreconditionError("A site is required for the location factor")
                challenge.distance_to_site_m = self.check_location(
                    evidence.latitude, evidence.longitude, site
                )
                challenge.latitude, challenge.longitude = evidence.latitude, evidence.longitude

            elif factor == Factor.FACIAL:
                if evidence.face_sample is not None and not evidence.camera_unavailable:
                    match = await self.check_face(evidence.face_sample, employee)
                    challenge.facial_confidence = match.confidence_score
                    challenge.capture_digest = capture_digest(evidence.face_sample)
                else:
                    # "Camera not working": the question factor carries the identity proof.
                    challenge.facial_skipped = True
                    logger.info(f"Facial factor skipped by {employee.id}, falling back to question")

            elif factor == Factor.QUESTION:
                self.check_answer(evidence.answer, employee)

            elif factor == Factor.PAIR_CODE:
                if pair is None:
                    raise PreconditionError("A pair is required for the pair code factor")
                challenge.claimed_code = await self.check_pair_code(
                    evidence.pair_code, evidence.pair_confirmed, employee, pair
                )

            challenge.advance_cursor()

        return challenge
