"""
Single-use, time-boxed codes for mutual pair validation.

One pair member generates a code and shows it (as a QR code), the other scans
it and confirms. The code lives in the shared cache under its own value, so
both employees' flows see it. A claim removes the code atomically: with
concurrent claims exactly one caller wins, the others get `already_used`.
"""
from __future__ import annotations

import json
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from pairwatch.cache import CacheClient
from pairwatch.engine.domain import utcnow
from pairwatch.errors import VerificationFailure
from pairwatch.utils.logging import get_logger

logger = get_logger(__name__)

CODE_KEY = "pair_code:{code}"
USED_KEY = "pair_code:used:{code}"
FACTOR = "pair_code"


@dataclass(frozen=True)
class PairCode:
    code: str
    employee_id: str
    pair_id: str
    issued_at: datetime
    expires_at: datetime

    def to_json(self) -> str:
        return json.dumps(
            {
                "code": self.code,
                "employee_id": self.employee_id,
                "pair_id": self.pair_id,
                "issued_at": self.issued_at.isoformat(),
                "expires_at": self.expires_at.isoformat(),
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "PairCode":
        data = json.loads(raw)
        return cls(
            code=data["code"],
            employee_id=data["employee_id"],
            pair_id=data["pair_id"],
            issued_at=datetime.fromisoformat(data["issued_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


class PairCodeRegistry:
    def __init__(
        self,
        cache: CacheClient,
        ttl_seconds: int = 120,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    async def generate(self, employee_id: str, pair_id: str) -> PairCode:
        issued_at = self.clock()
        nonce = secrets.token_hex(6)
        code = f"PAIR-{employee_id}-{int(issued_at.timestamp() * 1000)}-{nonce}"
        pair_code = PairCode(
            code=code,
            employee_id=employee_id,
            pair_id=pair_id,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=self.ttl_seconds),
        )
        stored = await self.cache.set_if_absent(
            CODE_KEY.format(code=code), self.ttl_seconds, pair_code.to_json()
        )
        if not stored:
            # Nonce collision, practically impossible; try again with a fresh one.
            return await self.generate(employee_id, pair_id)

        logger.info(f"Pair code issued by {employee_id} for pair {pair_id}")
        return pair_code

    async def peek(self, code: str) -> PairCode | None:
        raw = await self.cache.get(CODE_KEY.format(code=code))
        return PairCode.from_json(raw) if raw else None

    async def _reject_unavailable(self, code: str) -> VerificationFailure:
        if await self.cache.get(USED_KEY.format(code=code)):
            return VerificationFailure(FACTOR, "already_used", "This pair code has already been used")
        return VerificationFailure(FACTOR, "expired", "Pair code is unknown or has expired")

    async def claim(
        self,
        code: str,
        claimant_id: str,
        *,
        confirmed: bool,
        pair_id: str | None = None,
    ) -> PairCode:
        """
        Consume `code` on behalf of `claimant_id`.

        Nothing is consumed unless the claimant explicitly confirmed, is not
        the issuer, and (when given) the code belongs to `pair_id`.
        """
        if not confirmed:
            raise VerificationFailure(FACTOR, "not_confirmed", "Pair presence must be explicitly confirmed")

        current = await self.peek(code)
        if current is None:
            raise await self._reject_unavailable(code)
        if current.employee_id == claimant_id:
            raise VerificationFailure(FACTOR, "own_code", "A pair code must be scanned by the partner")
        if pair_id is not None and current.pair_id != pair_id:
            raise VerificationFailure(FACTOR, "wrong_pair", "This pair code belongs to another pair")

        raw = await self.cache.pop(CODE_KEY.format(code=code))
        if raw is None:
            raise await self._reject_unavailable(code)

        claimed = PairCode.from_json(raw)
        await self.cache.setex(USED_KEY.format(code=code), self.ttl_seconds, claimant_id)

        if self.clock() >= claimed.expires_at:
            raise VerificationFailure(FACTOR, "expired", "Pair code has expired")

        logger.info(f"Pair code from {claimed.employee_id} claimed by {claimant_id}")
        return claimed
