"""
Exchange Negotiation: Ecosystem Negotiation State Machine

A participant's negotiation to join an orchestrated ecosystem:

  Requested → Negotiation ⇄ Negotiation → Accepted
  any state → Terminated (absorbing)

Offers strictly alternate: the latest negotiator cannot counter its own
offer, except on an Accepted negotiation, which either side may re-open.
Nobody accepts their own offer.

The machine only moves the negotiation record. Folding an accepted
negotiation into the ecosystem roster and contract is the reconciler's job.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from exchange_negotiation.primitives.errors import (
    Conflict,
    InvalidTransition,
    NegotiationTerminated,
    NotFound,
    PreconditionFailed,
)
from exchange_negotiation.systems.negotiation.populations import (
    PopulationProfile,
    negotiations_references,
    resolve_profile,
    shape_negotiation,
)
from exchange_negotiation.systems.negotiation.types import (
    EcosystemNegotiation,
    EcosystemNegotiationStatus,
)

if TYPE_CHECKING:
    from exchange_negotiation.primitives.policies import (
        PolicyConfiguration,
        PricingConfiguration,
    )
    from exchange_negotiation.systems.negotiation.ownership import OwnershipVerifier
    from exchange_negotiation.systems.negotiation.repository import Repositories

logger = structlog.get_logger("exchange_negotiation.systems.negotiation.ecosystem")


def _require_negotiator(actor_id: str) -> None:
    if not actor_id:
        raise PreconditionFailed("Negotiator ID not set")


class EcosystemNegotiationStateMachine:
    def __init__(self, repos: Repositories, verifier: OwnershipVerifier) -> None:
        self._repos = repos
        self._negotiations = repos.ecosystem_negotiations
        self._verifier = verifier
        self._logger = logger.bind(component="ecosystem")

    # ─── Create ───────────────────────────────────────────────────

    async def create(
        self,
        actor_id: str,
        ecosystem_id: str,
        participant_id: str,
        policies: list[PolicyConfiguration],
        roles: list[str],
        pricings: list[PricingConfiguration],
    ) -> EcosystemNegotiation:
        """
        Open a negotiation for ``participant_id`` in ``ecosystem_id``.

        Doubles as an invitation: the ecosystem gets a pending invitation
        for the participant with ``roles`` before the negotiation is stored.
        """
        _require_negotiator(actor_id)
        async with self._negotiations.lock_pair(ecosystem_id, participant_id):
            existing = await self._negotiations.find_for_pair(ecosystem_id, participant_id)
            if existing is not None:
                raise Conflict("Negotiation already exists", existing_id=existing.id)

            await self._repos.participants.require(participant_id)

            async with self._repos.ecosystems.lock(ecosystem_id):
                ecosystem = await self._repos.ecosystems.require(ecosystem_id)
                await self._verifier.verify(participant_id, policies, pricings)

                ecosystem.invite(participant_id, roles)
                await self._repos.ecosystems.save(ecosystem)

            negotiation = EcosystemNegotiation(
                ecosystem=ecosystem_id,
                participant=participant_id,
                policies=list(policies),
                pricings=list(pricings),
                status=EcosystemNegotiationStatus.REQUESTED,
                latest_negotiator=actor_id,
            )
            await self._negotiations.save(negotiation)

        self._logger.info(
            "ecosystem_negotiation_created",
            negotiation_id=negotiation.id,
            ecosystem=ecosystem_id,
            participant=participant_id,
            actor=actor_id,
        )
        return negotiation

    # ─── Negotiate ────────────────────────────────────────────────

    async def negotiate(
        self,
        actor_id: str,
        negotiation_id: str,
        policies: list[PolicyConfiguration],
        pricings: list[PricingConfiguration],
    ) -> EcosystemNegotiation:
        _require_negotiator(actor_id)
        async with self._negotiations.lock(negotiation_id):
            negotiation = await self._negotiations.require(negotiation_id)

            if (
                negotiation.latest_negotiator == actor_id
                and negotiation.status != EcosystemNegotiationStatus.ACCEPTED
            ):
                raise InvalidTransition("Negotiator has already negotiated")
            if negotiation.status == EcosystemNegotiationStatus.TERMINATED:
                raise NegotiationTerminated()

            # Offerings always belong to the joining participant, whoever proposes.
            await self._verifier.verify(negotiation.participant, policies, pricings)

            negotiation.policies = list(policies)
            negotiation.pricings = list(pricings)
            negotiation.latest_negotiator = actor_id
            negotiation.status = EcosystemNegotiationStatus.NEGOTIATION
            await self._negotiations.save(negotiation)

        self._logger.info(
            "ecosystem_negotiation_countered",
            negotiation_id=negotiation.id,
            actor=actor_id,
            status=negotiation.status.value,
        )
        return negotiation

    # ─── Accept / Terminate ───────────────────────────────────────

    async def accept(self, actor_id: str, negotiation_id: str) -> EcosystemNegotiation:
        _require_negotiator(actor_id)
        async with self._negotiations.lock(negotiation_id):
            negotiation = await self._negotiations.require(negotiation_id)
            self.check_acceptable(actor_id, negotiation)

            negotiation.status = EcosystemNegotiationStatus.ACCEPTED
            negotiation.latest_negotiator = actor_id
            await self._negotiations.save(negotiation)

        self._logger.info(
            "ecosystem_negotiation_accepted",
            negotiation_id=negotiation.id,
            actor=actor_id,
        )
        return negotiation

    @staticmethod
    def check_acceptable(actor_id: str, negotiation: EcosystemNegotiation) -> None:
        """Guards of ``accept``, usable before committing to side effects."""
        if negotiation.latest_negotiator == actor_id:
            raise InvalidTransition("Negotiator cannot accept their own negotiation")
        if negotiation.status == EcosystemNegotiationStatus.TERMINATED:
            raise NegotiationTerminated()

    async def terminate(self, actor_id: str, negotiation_id: str) -> EcosystemNegotiation:
        _require_negotiator(actor_id)
        async with self._negotiations.lock(negotiation_id):
            negotiation = await self._negotiations.require(negotiation_id)
            negotiation.status = EcosystemNegotiationStatus.TERMINATED
            negotiation.latest_negotiator = actor_id
            await self._negotiations.save(negotiation)

        self._logger.info(
            "ecosystem_negotiation_terminated",
            negotiation_id=negotiation.id,
            actor=actor_id,
        )
        return negotiation

    # ─── Reads ────────────────────────────────────────────────────

    async def get(self, negotiation_id: str, populate: str | None = None) -> dict[str, Any]:
        negotiation = await self._negotiations.require(negotiation_id)
        return (await self._shape([negotiation], resolve_profile(populate)))[0]

    async def find_for_participant_in_ecosystem(
        self,
        participant_id: str,
        ecosystem_id: str,
        populate: str | None = None,
        raise_on_missing: bool = True,
    ) -> dict[str, Any] | None:
        negotiation = await self._negotiations.find_for_pair(ecosystem_id, participant_id)
        if negotiation is None:
            if raise_on_missing:
                raise NotFound(
                    "Negotiation not found",
                    ecosystem=ecosystem_id,
                    participant=participant_id,
                )
            return None
        return (await self._shape([negotiation], resolve_profile(populate)))[0]

    async def list_for_participant(
        self, participant_id: str, populate: str | None = None
    ) -> list[dict[str, Any]]:
        """Negotiations the participant orchestrates, joins, or last acted on."""
        _require_negotiator(participant_id)
        orchestrated = {e.id for e in await self._repos.ecosystems.orchestrated_by(participant_id)}
        negotiations = await self._negotiations.list_involving(participant_id, orchestrated)
        return await self._shape(negotiations, resolve_profile(populate))

    async def _shape(
        self, negotiations: list[EcosystemNegotiation], profile: PopulationProfile
    ) -> list[dict[str, Any]]:
        documents = [n.to_document() for n in negotiations]
        refs = negotiations_references(documents, profile)
        ctx = await self._repos.population_context(refs)
        return [shape_negotiation(doc, profile, ctx) for doc in documents]

