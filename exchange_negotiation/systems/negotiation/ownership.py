"""
Exchange Negotiation: Ownership Verification

A participant may only put service offerings it provides into a
negotiation. The check is all-or-nothing and runs before any negotiation
state is written.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from exchange_negotiation.primitives.errors import OwnershipViolation
from exchange_negotiation.primitives.policies import (
    PolicyConfiguration,
    PricingConfiguration,
    referenced_offerings,
)

if TYPE_CHECKING:
    from exchange_negotiation.systems.negotiation.repository import ServiceOfferingRepository

logger = structlog.get_logger("exchange_negotiation.systems.negotiation.ownership")


class OwnershipVerifier:
    """Confirms every offering referenced by a proposal is ``providedBy`` the participant."""

    def __init__(self, offerings: ServiceOfferingRepository) -> None:
        self._offerings = offerings

    async def verify(
        self,
        participant_id: str,
        policies: list[PolicyConfiguration],
        pricings: list[PricingConfiguration],
    ) -> bool:
        unowned: list[str] = []
        for offering_id in referenced_offerings(policies, pricings):
            if await self._offerings.owned_by(offering_id, participant_id) is None:
                unowned.append(offering_id)

        if unowned:
            logger.warning(
                "ownership_violation",
                participant=participant_id,
                unowned=sorted(set(unowned)),
            )
            raise OwnershipViolation(participant_id, sorted(set(unowned)))
        return True
