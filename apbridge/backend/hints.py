"""Spend tokens on hints for locations that are not hinted yet."""

from __future__ import annotations

import random
from dataclasses import dataclass, field

from .logging_config import get_logger
from .session import SessionManager

logger = get_logger(__name__)

TOKENS_PER_HINT = 1000

UNAVAILABLE_REASON = "Hint purchase unavailable"
NO_CANDIDATES_REASON = "No unhinted locations left"
REQUEST_FAILED_REASON = "Hint request failed"


@dataclass(frozen=True)
class HintAttempt:
    location_id: int | None = None
    reason: str | None = None

    @property
    def purchased(self) -> bool:
        return self.location_id is not None


@dataclass
class HintPurchaseCoordinator:
    session: SessionManager
    hint_cost: int = TOKENS_PER_HINT
    rng: random.Random = field(default_factory=random.Random)

    def can_purchase(self) -> bool:
        return self.session.is_connected and self.session.balance >= self.hint_cost

    def candidate_locations(self) -> frozenset[int]:
        return self.session.missing_locations() - self.session.known_hints

    async def attempt(self) -> HintAttempt:
        """Request one hint for a random unhinted location.

        The location is not marked as known here; that only happens when the
        server's hint feed confirms it.
        """
        if not self.can_purchase():
            return HintAttempt(reason=UNAVAILABLE_REASON)

        candidates = sorted(self.candidate_locations())
        if not candidates:
            logger.info("No unhinted locations left")
            return HintAttempt(reason=NO_CANDIDATES_REASON)

        location_id = self.rng.choice(candidates)
        if await self.session.purchase_hint(location_id, self.hint_cost):
            return HintAttempt(location_id=location_id)
        # Balance or connection changed while the request was waiting.
        if not self.can_purchase():
            return HintAttempt(reason=UNAVAILABLE_REASON)
        return HintAttempt(reason=REQUEST_FAILED_REASON)

    async def purchase(self) -> int | None:
        """Return the requested location id, or None when nothing was sent."""
        return (await self.attempt()).location_id
