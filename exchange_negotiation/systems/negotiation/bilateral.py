"""
Exchange Negotiation: Bilateral Negotiation State Machine

Drives an exchange configuration between one provider and one consumer:

  Requested → Authorized → Negotiation ⇄ Negotiation → SignatureReady → Signed

  request()    create the record; one per (provider, consumer, offerings) tuple
  authorize()  provider only; generates the bilateral contract
  negotiate()  either party overwrites the policy proposal, no turn order
  accept()     moves to SignatureReady, which gates signing
  sign()       records a party's signature; the second signature injects the
               accumulated policies into the contract exactly once, then the
               signature goes to the contract service

The machine is stateless. Every operation takes the acting participant id
and runs its read-modify-write under the record's lock. A gateway failure
aborts the step before the local status change is persisted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from exchange_negotiation.primitives.errors import (
    Conflict,
    GatewayFailure,
    InvalidTransition,
    PreconditionFailed,
    Unauthorized,
)
from exchange_negotiation.primitives.policies import PolicyRule
from exchange_negotiation.systems.negotiation.types import (
    ExchangeConfiguration,
    ExchangeStatus,
)

if TYPE_CHECKING:
    from exchange_negotiation.clients.contract_service import (
        ContractGateway,
        PolicyInjectionGateway,
    )
    from exchange_negotiation.systems.negotiation.repository import (
        ExchangeConfigurationRepository,
    )

logger = structlog.get_logger("exchange_negotiation.systems.negotiation.bilateral")

CONTRACT_SIGNED = "signed"


def _require_actor(actor_id: str) -> None:
    if not actor_id:
        raise PreconditionFailed("Negotiator ID not set")


class BilateralNegotiationStateMachine:
    """Exchange configuration lifecycle, from access request to dual signature."""

    def __init__(
        self,
        records: ExchangeConfigurationRepository,
        contracts: ContractGateway,
        policies: PolicyInjectionGateway,
    ) -> None:
        self._records = records
        self._contracts = contracts
        self._policies = policies
        self._logger = logger.bind(component="bilateral")

    # ─── Request ──────────────────────────────────────────────────

    async def request(
        self,
        actor_id: str,
        provider: str,
        consumer: str,
        provider_service_offering: str,
        consumer_service_offering: str,
    ) -> ExchangeConfiguration:
        _require_actor(actor_id)
        async with self._records.lock_tuple(
            provider, consumer, provider_service_offering, consumer_service_offering
        ):
            existing = await self._records.find_by_tuple(
                provider, consumer, provider_service_offering, consumer_service_offering
            )
            if existing is not None:
                raise Conflict(
                    "An access request for this configuration already exists with id: "
                    + existing.id,
                    existing_id=existing.id,
                )

            record = ExchangeConfiguration(
                provider=provider,
                consumer=consumer,
                provider_service_offering=provider_service_offering,
                consumer_service_offering=consumer_service_offering,
                latest_negotiator=actor_id,
            )
            await self._records.save(record)

        self._logger.info("exchange_requested", record_id=record.id, actor=actor_id)
        return record

    # ─── Authorize ────────────────────────────────────────────────

    async def authorize(
        self, actor_id: str, record_id: str, policy: list[PolicyRule]
    ) -> ExchangeConfiguration:
        _require_actor(actor_id)
        async with self._records.lock(record_id):
            record = await self._records.require(record_id)

            if record.provider != actor_id:
                raise InvalidTransition("Exchange Configuration could not be authorized", record_id=record_id)
            # Only a fresh request gets a contract; later states keep theirs.
            if record.negotiation_status != ExchangeStatus.REQUESTED:
                raise InvalidTransition(
                    "Exchange configuration has already been authorized",
                    status=record.negotiation_status.value,
                )

            try:
                contract = await self._contracts.generate_bilateral_contract(
                    consumer=record.consumer,
                    provider=record.provider,
                    service_offering=record.provider_service_offering,
                )
            except GatewayFailure as exc:
                self._logger.warning("contract_generation_failed", record_id=record_id, error=exc.message)
                raise GatewayFailure(
                    "Failed to generate contract",
                    downstream_status=exc.downstream_status,
                    downstream_message=exc.message,
                ) from exc

            record.contract = _contract_id(contract)
            if not record.contract:
                raise GatewayFailure("Failed to generate contract: Contract was not returned by Contract Service")

            record.provider_policies = list(policy)
            record.negotiation_status = ExchangeStatus.AUTHORIZED
            record.latest_negotiator = actor_id
            await self._records.save(record)

        self._logger.info(
            "exchange_authorized",
            record_id=record.id,
            actor=actor_id,
            contract=record.contract,
        )
        return record

    # ─── Negotiate ────────────────────────────────────────────────

    async def negotiate(
        self, actor_id: str, record_id: str, policy: list[PolicyRule]
    ) -> ExchangeConfiguration:
        _require_actor(actor_id)
        async with self._records.lock(record_id):
            record = await self._records.require(record_id)
            if not record.is_party(actor_id):
                raise Unauthorized("Only the provider or the consumer can negotiate", record_id=record_id)
            if record.negotiation_status == ExchangeStatus.SIGNED:
                raise InvalidTransition("Exchange configuration has already been signed")

            record.provider_policies = list(policy)
            record.negotiation_status = ExchangeStatus.NEGOTIATION
            record.latest_negotiator = actor_id
            await self._records.save(record)

        self._logger.info("exchange_negotiated", record_id=record.id, actor=actor_id)
        return record

    # ─── Accept ───────────────────────────────────────────────────

    async def accept(self, actor_id: str, record_id: str) -> ExchangeConfiguration:
        _require_actor(actor_id)
        async with self._records.lock(record_id):
            record = await self._records.require(record_id)
            if not record.is_party(actor_id):
                raise Unauthorized("Only the provider or the consumer can accept", record_id=record_id)
            if record.negotiation_status == ExchangeStatus.SIGNATURE_READY:
                raise InvalidTransition(
                    "Exchange configuration has already been validated and is pending signatures"
                )
            if record.negotiation_status == ExchangeStatus.SIGNED:
                raise InvalidTransition("Exchange configuration has already been signed")

            record.negotiation_status = ExchangeStatus.SIGNATURE_READY
            await self._records.save(record)

        self._logger.info("exchange_signature_ready", record_id=record.id, actor=actor_id)
        return record

    # ─── Sign ─────────────────────────────────────────────────────

    async def sign(
        self, actor_id: str, record_id: str, signature: str
    ) -> tuple[ExchangeConfiguration, dict[str, Any]]:
        """
        Record ``actor_id``'s signature and forward it to the contract service.

        The policy injection fires at most once per record: only when this
        call completes the signature quorum and ``policies_injected`` is
        still false. The signature and the flag are persisted together
        before the signature is submitted, so a retried sign after a failed
        contract call never injects twice.
        """
        _require_actor(actor_id)
        async with self._records.lock(record_id):
            record = await self._records.require(record_id)

            if record.negotiation_status != ExchangeStatus.SIGNATURE_READY:
                raise InvalidTransition("Exchange configuration is not ready for signature")
            if not record.is_party(actor_id):
                raise Unauthorized("Only the provider or the consumer can sign", record_id=record_id)
            if not record.contract:
                raise InvalidTransition("Exchange configuration has no contract to sign")

            party = record.signing_party(actor_id)
            record.signatures.record(party, signature)

            if record.signatures.complete and not record.policies_injected:
                try:
                    await self._policies.inject_bilateral_policies(
                        record.contract, record.provider_policies
                    )
                except GatewayFailure as exc:
                    self._logger.warning(
                        "bilateral_policy_injection_failed",
                        record_id=record_id,
                        error=exc.message,
                    )
                    raise GatewayFailure(
                        "Failed to inject policies in bilateral contract",
                        downstream_status=exc.downstream_status,
                        downstream_message=exc.message,
                    ) from exc
                record.policies_injected = True
                self._logger.info(
                    "bilateral_policies_injected",
                    record_id=record_id,
                    contract=record.contract,
                    rules=len(record.provider_policies),
                )

            await self._records.save(record)

            try:
                contract = await self._contracts.sign_bilateral_contract(
                    record.contract,
                    {"did": actor_id, "party": actor_id, "value": signature},
                )
            except GatewayFailure as exc:
                self._logger.warning("contract_signature_failed", record_id=record_id, error=exc.message)
                raise GatewayFailure(
                    "Failed to sign contract",
                    downstream_status=exc.downstream_status,
                    downstream_message=exc.message,
                ) from exc

            if contract.get("status") == CONTRACT_SIGNED:
                record.negotiation_status = ExchangeStatus.SIGNED
                await self._records.save(record)

        self._logger.info(
            "exchange_signed_by",
            record_id=record.id,
            actor=actor_id,
            party=party.value,
            status=record.negotiation_status.value,
        )
        return record, contract

    # ─── Reads ────────────────────────────────────────────────────

    async def get(self, record_id: str) -> ExchangeConfiguration:
        return await self._records.require(record_id)

    async def list_for_participant(self, actor_id: str) -> list[ExchangeConfiguration]:
        _require_actor(actor_id)
        return await self._records.list_for_participant(actor_id)


def _contract_id(contract: Any) -> str:
    if not contract:
        return ""
    if isinstance(contract, dict):
        return str(contract.get("_id") or contract.get("id") or "")
    return str(contract)
