"""
Exchange Negotiation: Negotiation Service

The single entry point the API talks to. It wires the two state machines,
the ownership verifier and the reconciler over one set of repositories,
resolves ecosystem negotiations by (ecosystem, participant) the way the
HTTP surface addresses them, and shapes records for output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from exchange_negotiation.primitives.errors import NotFound, PreconditionFailed
from exchange_negotiation.systems.negotiation.bilateral import BilateralNegotiationStateMachine
from exchange_negotiation.systems.negotiation.ecosystem import EcosystemNegotiationStateMachine
from exchange_negotiation.systems.negotiation.ownership import OwnershipVerifier
from exchange_negotiation.systems.negotiation.populations import (
    exchange_configuration_references,
    shape_exchange_configuration,
)
from exchange_negotiation.systems.negotiation.reconciler import EcosystemMembershipReconciler
from exchange_negotiation.systems.negotiation.repository import Repositories
from exchange_negotiation.systems.negotiation.types import (
    EcosystemNegotiation,
    EcosystemNegotiationStatus,
    ExchangeConfiguration,
)

if TYPE_CHECKING:
    from exchange_negotiation.clients.contract_service import (
        ContractGateway,
        PolicyInjectionGateway,
    )
    from exchange_negotiation.clients.document_store import DocumentStore
    from exchange_negotiation.config import NegotiationConfig
    from exchange_negotiation.primitives.policies import (
        PolicyConfiguration,
        PolicyRule,
        PricingConfiguration,
    )

logger = structlog.get_logger("exchange_negotiation.systems.negotiation.service")


class NegotiationService:
    def __init__(
        self,
        config: NegotiationConfig,
        store: DocumentStore,
        contracts: ContractGateway,
        policies: PolicyInjectionGateway,
    ) -> None:
        self._config = config
        self.repos = Repositories.over(store)
        self.verifier = OwnershipVerifier(self.repos.service_offerings)
        self.bilateral = BilateralNegotiationStateMachine(
            self.repos.exchange_configurations, contracts, policies
        )
        self.ecosystem = EcosystemNegotiationStateMachine(self.repos, self.verifier)
        self.reconciler = EcosystemMembershipReconciler(
            self.repos, policies, config.catalog, config.reconciliation
        )
        self._logger = logger.bind(instance_id=config.instance_id)

    # ─── Bilateral ────────────────────────────────────────────────

    async def list_exchange_configurations(self, actor_id: str) -> list[dict[str, Any]]:
        records = await self.bilateral.list_for_participant(actor_id)
        return [await self.shape_exchange_configuration(r) for r in records]

    async def get_exchange_configuration(self, record_id: str) -> dict[str, Any]:
        return await self.shape_exchange_configuration(await self.bilateral.get(record_id))

    async def request_exchange(
        self,
        actor_id: str,
        provider: str,
        consumer: str,
        provider_service_offering: str,
        consumer_service_offering: str,
    ) -> ExchangeConfiguration:
        return await self.bilateral.request(
            actor_id, provider, consumer, provider_service_offering, consumer_service_offering
        )

    async def authorize_exchange(
        self, actor_id: str, record_id: str, policy: list[PolicyRule]
    ) -> ExchangeConfiguration:
        return await self.bilateral.authorize(actor_id, record_id, policy)

    async def negotiate_exchange(
        self, actor_id: str, record_id: str, policy: list[PolicyRule]
    ) -> ExchangeConfiguration:
        return await self.bilateral.negotiate(actor_id, record_id, policy)

    async def accept_exchange(self, actor_id: str, record_id: str) -> ExchangeConfiguration:
        return await self.bilateral.accept(actor_id, record_id)

    async def sign_exchange(
        self, actor_id: str, record_id: str, signature: str
    ) -> tuple[ExchangeConfiguration, dict[str, Any]]:
        return await self.bilateral.sign(actor_id, record_id, signature)

    async def shape_exchange_configuration(self, record: ExchangeConfiguration) -> dict[str, Any]:
        document = record.to_document()
        ctx = await self.repos.population_context(exchange_configuration_references(document))
        return shape_exchange_configuration(document, ctx)

    # ─── Ecosystem ────────────────────────────────────────────────

    async def create_ecosystem_negotiation(
        self,
        actor_id: str,
        ecosystem_id: str,
        participant_id: str,
        policies: list[PolicyConfiguration],
        roles: list[str],
        pricings: list[PricingConfiguration],
    ) -> EcosystemNegotiation:
        return await self.ecosystem.create(
            actor_id, ecosystem_id, participant_id, policies, roles, pricings
        )

    async def negotiate_ecosystem_negotiation(
        self,
        actor_id: str,
        ecosystem_id: str,
        participant_id: str,
        policies: list[PolicyConfiguration],
        pricings: list[PricingConfiguration],
    ) -> EcosystemNegotiation:
        negotiation = await self._negotiation_for_pair(actor_id, ecosystem_id, participant_id)
        return await self.ecosystem.negotiate(actor_id, negotiation.id, policies, pricings)

    async def accept_ecosystem_negotiation(
        self, actor_id: str, ecosystem_id: str, participant_id: str
    ) -> EcosystemNegotiation:
        """
        Accept the negotiation, then reconcile it into the ecosystem.

        Preconditions of the reconciliation are checked before the
        negotiation changes state. If a previous accept by the same actor
        left a reconciliation journal behind, this call resumes that
        reconciliation instead of rejecting a second acceptance.
        """
        negotiation = await self._negotiation_for_pair(actor_id, ecosystem_id, participant_id)
        ecosystem = await self.repos.ecosystems.require(ecosystem_id)

        if not await self._is_pending_reconciliation(actor_id, negotiation):
            self.ecosystem.check_acceptable(actor_id, negotiation)
            self.reconciler.check_preconditions(ecosystem, negotiation)
            negotiation = await self.ecosystem.accept(actor_id, negotiation.id)
        else:
            self._logger.info(
                "ecosystem_acceptance_resumed",
                negotiation_id=negotiation.id,
                actor=actor_id,
            )

        async with self.repos.ecosystems.lock(ecosystem_id):
            ecosystem = await self.repos.ecosystems.require(ecosystem_id)
            await self.reconciler.reconcile(ecosystem, negotiation)

        return negotiation

    async def terminate_ecosystem_negotiation(
        self, actor_id: str, ecosystem_id: str, participant_id: str
    ) -> EcosystemNegotiation:
        negotiation = await self._negotiation_for_pair(actor_id, ecosystem_id, participant_id)
        return await self.ecosystem.terminate(actor_id, negotiation.id)

    async def get_ecosystem_negotiation(
        self, negotiation_id: str, populate: str | None = None
    ) -> dict[str, Any]:
        return await self.ecosystem.get(negotiation_id, populate)

    async def find_ecosystem_negotiation(
        self, participant_id: str, ecosystem_id: str, populate: str | None = None
    ) -> dict[str, Any] | None:
        return await self.ecosystem.find_for_participant_in_ecosystem(
            participant_id, ecosystem_id, populate
        )

    async def list_ecosystem_negotiations(
        self, actor_id: str, populate: str | None = None
    ) -> list[dict[str, Any]]:
        return await self.ecosystem.list_for_participant(actor_id, populate)

    async def _negotiation_for_pair(
        self, actor_id: str, ecosystem_id: str, participant_id: str
    ) -> EcosystemNegotiation:
        if not actor_id:
            raise PreconditionFailed("Negotiator ID not set")
        negotiation = await self.repos.ecosystem_negotiations.find_for_pair(ecosystem_id, participant_id)
        if negotiation is None:
            raise NotFound("Negotiation not found", ecosystem=ecosystem_id, participant=participant_id)
        return negotiation

    async def _is_pending_reconciliation(self, actor_id: str, negotiation: EcosystemNegotiation) -> bool:
        if negotiation.status != EcosystemNegotiationStatus.ACCEPTED:
            return False
        if negotiation.latest_negotiator != actor_id:
            return False
        journal = await self.repos.reconciliation_journals.pending_for_negotiation(negotiation.id)
        return journal is not None

    # ─── Health ───────────────────────────────────────────────────

    async def health(self) -> dict[str, Any]:
        return await self.repos.store.health_check()
