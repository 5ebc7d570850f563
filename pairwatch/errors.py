from typing import Optional


class PairwatchError(Exception):
    """Base class for every recoverable error raised by the presence engine."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PairwatchError):
    """Input rejected before any state was touched (self-pairing, bad radius...)."""


class PreconditionError(PairwatchError):
    """Operation not allowed from the current state, session left unchanged."""


class NotFoundError(PairwatchError):
    pass


class VerificationFailure(PairwatchError):
    """A verification factor did not pass.

    `factor` names the failing factor ("location", "facial", "question",
    "pair_code") and `reason` is a short machine-readable code the caller can
    branch on. The message is meant for humans.
    """

    def __init__(
        self,
        factor: str,
        reason: str,
        message: str,
        confidence: Optional[float] = None,
    ):
        super().__init__(message)
        self.factor = factor
        self.reason = reason
        self.confidence = confidence
