"""
Exchange Negotiation: Repositories

Typed collection access over a DocumentStore. Query criteria are given as
snake_case field names and matched against the stored camelCase documents.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import structlog
from pydantic.alias_generators import to_camel

from exchange_negotiation.primitives.common import Document
from exchange_negotiation.primitives.errors import NotFound
from exchange_negotiation.systems.negotiation.populations import (
    PopulationContext,
    References,
    ecosystem_participant_references,
    offering_participant_references,
)
from exchange_negotiation.systems.negotiation.types import (
    Ecosystem,
    EcosystemNegotiation,
    ExchangeConfiguration,
    Participant,
    ReconciliationJournal,
    ServiceOffering,
    exchange_tuple_key,
)

if TYPE_CHECKING:
    from exchange_negotiation.clients.document_store import DocumentStore
    from exchange_negotiation.config import CatalogSeed

logger = structlog.get_logger("exchange_negotiation.systems.negotiation.repository")

ModelT = TypeVar("ModelT", bound=Document)


class Repository(Generic[ModelT]):
    collection: str = ""
    model: type[ModelT]
    label: str = "Document"

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def _load(self, raw: dict[str, Any] | None) -> ModelT | None:
        return self.model.model_validate(raw) if raw is not None else None

    async def get(self, doc_id: str) -> ModelT | None:
        if not doc_id:
            return None
        return self._load(await self._store.get(self.collection, doc_id))

    async def require(self, doc_id: str) -> ModelT:
        doc = await self.get(doc_id)
        if doc is None:
            raise NotFound(f"{self.label} not found", id=doc_id)
        return doc

    async def save(self, doc: ModelT) -> ModelT:
        doc.touch()
        await self._store.put(self.collection, doc.id, doc.to_document())
        return doc

    async def insert(self, doc: ModelT) -> ModelT:
        """Store a document as-is, keeping its timestamps (catalog loading)."""
        await self._store.put(self.collection, doc.id, doc.to_document())
        return doc

    async def find(self, **criteria: Any) -> list[ModelT]:
        wire = {to_camel(field): value for field, value in criteria.items()}
        return [self.model.model_validate(raw) for raw in await self._store.find(self.collection, **wire)]

    async def find_one(self, **criteria: Any) -> ModelT | None:
        matches = await self.find(**criteria)
        return matches[0] if matches else None

    async def all(self) -> list[ModelT]:
        return [self.model.model_validate(raw) for raw in await self._store.all(self.collection)]

    def lock(self, doc_id: str) -> Any:
        """Per-record lock used around every read-modify-write."""
        return self._store.lock(f"{self.collection}:{doc_id}")


class ExchangeConfigurationRepository(Repository[ExchangeConfiguration]):
    collection = "exchange_configurations"
    model = ExchangeConfiguration
    label = "Exchange Configuration"

    async def find_by_tuple(
        self,
        provider: str,
        consumer: str,
        provider_service_offering: str,
        consumer_service_offering: str,
    ) -> ExchangeConfiguration | None:
        return await self.find_one(
            provider=provider,
            consumer=consumer,
            provider_service_offering=provider_service_offering,
            consumer_service_offering=consumer_service_offering,
        )

    def lock_tuple(
        self,
        provider: str,
        consumer: str,
        provider_service_offering: str,
        consumer_service_offering: str,
    ) -> Any:
        key = exchange_tuple_key(provider, consumer, provider_service_offering, consumer_service_offering)
        return self._store.lock(f"{self.collection}:tuple:{key}")

    async def list_for_participant(self, participant_id: str) -> list[ExchangeConfiguration]:
        return [
            ec
            for ec in await self.all()
            if participant_id in (ec.provider, ec.consumer)
        ]


class EcosystemNegotiationRepository(Repository[EcosystemNegotiation]):
    collection = "ecosystem_negotiations"
    model = EcosystemNegotiation
    label = "Negotiation"

    async def find_for_pair(self, ecosystem_id: str, participant_id: str) -> EcosystemNegotiation | None:
        return await self.find_one(ecosystem=ecosystem_id, participant=participant_id)

    def lock_pair(self, ecosystem_id: str, participant_id: str) -> Any:
        return self._store.lock(f"{self.collection}:pair:{ecosystem_id}:{participant_id}")

    async def list_involving(
        self, participant_id: str, orchestrated_ecosystems: set[str]
    ) -> list[EcosystemNegotiation]:
        return [
            nego
            for nego in await self.all()
            if nego.ecosystem in orchestrated_ecosystems
            or nego.participant == participant_id
            or nego.latest_negotiator == participant_id
        ]


class EcosystemRepository(Repository[Ecosystem]):
    collection = "ecosystems"
    model = Ecosystem
    label = "Ecosystem"

    async def orchestrated_by(self, participant_id: str) -> list[Ecosystem]:
        return await self.find(orchestrator=participant_id)


class ParticipantRepository(Repository[Participant]):
    collection = "participants"
    model = Participant
    label = "Participant"


class ServiceOfferingRepository(Repository[ServiceOffering]):
    collection = "service_offerings"
    model = ServiceOffering
    label = "Service offering"

    async def owned_by(self, offering_id: str, participant_id: str) -> ServiceOffering | None:
        offering = await self.get(offering_id)
        if offering is None or offering.provided_by != participant_id:
            return None
        return offering


class ReconciliationJournalRepository(Repository[ReconciliationJournal]):
    collection = "reconciliation_journals"
    model = ReconciliationJournal
    label = "Reconciliation journal"

    async def for_participant(self, contract: str, participant: str) -> ReconciliationJournal | None:
        return await self.get(ReconciliationJournal.key(contract, participant))

    async def pending_for_negotiation(self, negotiation_id: str) -> ReconciliationJournal | None:
        return await self.find_one(negotiation=negotiation_id)

    async def discard(self, journal: ReconciliationJournal) -> None:
        await self._store.delete(self.collection, journal.id)


@dataclass
class Repositories:
    """Every repository over one store."""

    store: DocumentStore
    exchange_configurations: ExchangeConfigurationRepository
    ecosystem_negotiations: EcosystemNegotiationRepository
    ecosystems: EcosystemRepository
    participants: ParticipantRepository
    service_offerings: ServiceOfferingRepository
    reconciliation_journals: ReconciliationJournalRepository

    @classmethod
    def over(cls, store: DocumentStore) -> Repositories:
        return cls(
            store=store,
            exchange_configurations=ExchangeConfigurationRepository(store),
            ecosystem_negotiations=EcosystemNegotiationRepository(store),
            ecosystems=EcosystemRepository(store),
            participants=ParticipantRepository(store),
            service_offerings=ServiceOfferingRepository(store),
            reconciliation_journals=ReconciliationJournalRepository(store),
        )

    async def seed_catalog(self, seed: CatalogSeed) -> None:
        """Load a catalog fixture. Existing documents with the same id are replaced."""
        for raw in seed.participants:
            await self.participants.insert(Participant.model_validate(raw))
        for raw in seed.service_offerings:
            await self.service_offerings.insert(ServiceOffering.model_validate(raw))
        for raw in seed.ecosystems:
            await self.ecosystems.insert(Ecosystem.model_validate(raw))
        logger.info(
            "catalog_seeded",
            participants=len(seed.participants),
            service_offerings=len(seed.service_offerings),
            ecosystems=len(seed.ecosystems),
        )

    async def population_context(self, refs: References) -> PopulationContext:
        """Fetch every document a population needs, including second-level participants."""
        ctx = PopulationContext()
        for ecosystem_id in refs.ecosystems:
            ecosystem = await self.ecosystems.get(ecosystem_id)
            if ecosystem is not None:
                ctx.ecosystems[ecosystem_id] = ecosystem.to_document()
        for offering_id in refs.service_offerings:
            offering = await self.service_offerings.get(offering_id)
            if offering is not None:
                ctx.service_offerings[offering_id] = offering.to_document()

        participant_ids = set(refs.participants)
        for ecosystem in ctx.ecosystems.values():
            participant_ids |= ecosystem_participant_references(ecosystem)
        participant_ids |= offering_participant_references(ctx.service_offerings)
        for participant_id in participant_ids:
            participant = await self.participants.get(participant_id)
            if participant is not None:
                ctx.participants[participant_id] = participant.to_document()
        return ctx
