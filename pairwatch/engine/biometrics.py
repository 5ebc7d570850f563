from __future__ import annotations

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from pairwatch.config import settings


@dataclass(frozen=True)
class FaceMatch:
    verified: bool
    confidence_score: float
    message: str = ""


class FaceComparator(Protocol):
    async def compare_face(
        self, sample: Sequence[float], reference: Sequence[float]
    ) -> FaceMatch: ...


def capture_digest(sample: Sequence[float]) -> str:
    """Stable fingerprint of a face sample, used to spot re-submitted captures."""
    data = np.asarray(sample, dtype=np.float32).tobytes()
    return hashlib.sha256(data).hexdigest()


class EmbeddingFaceComparator:
    """
    Compares a captured face embedding with the employee's enrolled one.

    The capture device extracts the embedding (the same 512-dim vectors the
    enrolment client produces), so this only does the cosine-distance check.

    Confidence is calibrated so that the acceptance boundary maps to
    `confidence_floor`: every accepted sample scores at least the floor and
    every rejected one scores at most the floor.
    """

    def __init__(
        self,
        threshold: float = settings.SIMILARITY_THRESHOLD,
        confidence_floor: float = settings.FACIAL_CONFIDENCE_FLOOR,
    ):
        if not 0 < threshold <= 1:
            raise ValueError("Cosine distance threshold must be in (0, 1]")
        self.threshold = threshold
        self.confidence_floor = confidence_floor

    def _confidence(self, similarity: float, verified: bool) -> float:
        boundary = 1.0 - self.threshold
        floor = self.confidence_floor
        if verified:
            score = floor + (100.0 - floor) * (similarity - boundary) / self.threshold
        elif boundary > 0:
            score = floor * max(similarity, 0.0) / boundary
        else:
            score = 0.0
        return float(round(max(0.0, min(100.0, score))))

    async def compare_face(
        self, sample: Sequence[float], reference: Sequence[float]
    ) -> FaceMatch:
        a = np.asarray(sample, dtype=np.float32)
        b = np.asarray(reference, dtype=np.float32)

        if a.size == 0 or a.shape != b.shape:
            return FaceMatch(False, 0.0, "Face sample does not match the enrolled format")

        norm = float(np.linalg.norm(a) * np.linalg.norm(b))
        if norm == 0.0:
            return FaceMatch(False, 0.0, "Empty face sample")

        similarity = float(np.dot(a, b) / norm)
        # distance = 0.0 (identical) -> 1.0 (orthogonal) -> 2.0 (opposite)
        verified = (1.0 - similarity) < self.threshold
        confidence = self._confidence(similarity, verified)

        return FaceMatch(
            verified=verified,
            confidence_score=confidence,
            message="Face recognition successful"
            if verified
            else "Face recognition failed - please try again",
        )
