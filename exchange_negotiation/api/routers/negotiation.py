"""
Exchange Negotiation: Negotiation REST Router

Every route requires the authenticated participant header.

Ecosystem negotiations:
  POST /api/v1/negotiation/ecosystem                         : open (and invite)
  GET  /api/v1/negotiation/ecosystem/me                      : mine
  GET  /api/v1/negotiation/ecosystem/{id}                    : by id
  GET  /api/v1/negotiation/ecosystem/{participantId}/{ecosystemId}
  PUT  /api/v1/negotiation/ecosystem/{ecosystemId}           : counter-offer
  PUT  /api/v1/negotiation/ecosystem/{ecosystemId}/accept    : accept + reconcile
  PUT  /api/v1/negotiation/ecosystem/{ecosystemId}/terminate : terminate

Exchange configurations:
  GET  /api/v1/negotiation/               : mine
  GET  /api/v1/negotiation/{id}           : by id
  POST /api/v1/negotiation/               : access request
  PUT  /api/v1/negotiation/{id}           : authorize (provider)
  PUT  /api/v1/negotiation/{id}/negotiate : counter-propose policy
  PUT  /api/v1/negotiation/{id}/accept    : ready for signature
  PUT  /api/v1/negotiation/{id}/sign      : sign

Reads accept ``?populate=all|participant|ecosystem``; anything else is ``all``.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import Field, field_validator

from exchange_negotiation.api.dependencies import get_actor_id, get_negotiation_service
from exchange_negotiation.primitives.common import NegotiationBaseModel, document_id
from exchange_negotiation.primitives.policies import (
    PolicyConfiguration,
    PolicyRule,
    PricingConfiguration,
)
from exchange_negotiation.systems.negotiation.service import NegotiationService

router = APIRouter(prefix="/api/v1/negotiation", tags=["negotiation"])


# ─── Request bodies ───────────────────────────────────────────────


class ExchangeRequestBody(NegotiationBaseModel):
    provider: str = Field(min_length=1)
    consumer: str = Field(min_length=1)
    provider_service_offering: str = Field(min_length=1)
    consumer_service_offering: str = Field(min_length=1)

    @field_validator("*", mode="before")
    @classmethod
    def _trimmed_ids(cls, value: Any) -> str:
        return document_id(value).strip()


class PolicyBody(NegotiationBaseModel):
    policy: list[PolicyRule]


class SignatureBody(NegotiationBaseModel):
    signature: str = Field(min_length=1)


class EcosystemNegotiationCreateBody(NegotiationBaseModel):
    ecosystem: str = Field(min_length=1)
    participant: str = Field(min_length=1)
    policies: list[PolicyConfiguration]
    pricings: list[PricingConfiguration]
    roles: list[str]


class EcosystemNegotiationBody(NegotiationBaseModel):
    participant: str = Field(min_length=1)
    policies: list[PolicyConfiguration]
    pricings: list[PricingConfiguration]


class EcosystemParticipantBody(NegotiationBaseModel):
    participant: str = Field(min_length=1)


# ─── Ecosystem negotiations ───────────────────────────────────────


@router.post("/ecosystem", status_code=201)
async def create_ecosystem_negotiation(
    body: EcosystemNegotiationCreateBody,
    actor_id: str = Depends(get_actor_id),
    service: NegotiationService = Depends(get_negotiation_service),
) -> dict[str, Any]:
    negotiation = await service.create_ecosystem_negotiation(
        actor_id,
        ecosystem_id=body.ecosystem,
        participant_id=body.participant,
        policies=body.policies,
        roles=body.roles,
        pricings=body.pricings,
    )
    return negotiation.to_document()


@router.get("/ecosystem/me")
async def get_my_ecosystem_negotiations(
    populate: str | None = Query(default=None),
    actor_id: str = Depends(get_actor_id),
    service: NegotiationService = Depends(get_negotiation_service),
) -> list[dict[str, Any]]:
    return await service.list_ecosystem_negotiations(actor_id, populate)


@router.get("/ecosystem/{negotiation_id}")
async def get_ecosystem_negotiation(
    negotiation_id: str,
    populate: str | None = Query(default=None),
    actor_id: str = Depends(get_actor_id),
    service: NegotiationService = Depends(get_negotiation_service),
) -> dict[str, Any]:
    return await service.get_ecosystem_negotiation(negotiation_id, populate)


@router.get("/ecosystem/{participant_id}/{ecosystem_id}")
async def get_ecosystem_negotiation_for_participant(
    participant_id: str,
    ecosystem_id: str,
    populate: str | None = Query(default=None),
    actor_id: str = Depends(get_actor_id),
    service: NegotiationService = Depends(get_negotiation_service),
) -> dict[str, Any] | None:
    return await service.find_ecosystem_negotiation(participant_id, ecosystem_id, populate)


@router.put("/ecosystem/{ecosystem_id}")
async def negotiate_ecosystem_negotiation(
    ecosystem_id: str,
    body: EcosystemNegotiationBody,
    actor_id: str = Depends(get_actor_id),
    service: NegotiationService = Depends(get_negotiation_service),
) -> dict[str, Any]:
    negotiation = await service.negotiate_ecosystem_negotiation(
        actor_id,
        ecosystem_id=ecosystem_id,
        participant_id=body.participant,
        policies=body.policies,
        pricings=body.pricings,
    )
    return negotiation.to_document()


@router.put("/ecosystem/{ecosystem_id}/accept")
async def accept_ecosystem_negotiation(
    ecosystem_id: str,
    body: EcosystemParticipantBody,
    actor_id: str = Depends(get_actor_id),
    service: NegotiationService = Depends(get_negotiation_service),
) -> dict[str, Any]:
    negotiation = await service.accept_ecosystem_negotiation(actor_id, ecosystem_id, body.participant)
    return {
        "message": "successfully accepted negotiation",
        "negotiation": negotiation.to_document(),
    }


@router.put("/ecosystem/{ecosystem_id}/terminate")
async def terminate_ecosystem_negotiation(
    ecosystem_id: str,
    body: EcosystemParticipantBody,
    actor_id: str = Depends(get_actor_id),
    service: NegotiationService = Depends(get_negotiation_service),
) -> dict[str, Any]:
    negotiation = await service.terminate_ecosystem_negotiation(actor_id, ecosystem_id, body.participant)
    return negotiation.to_document()


# ─── Exchange configurations ──────────────────────────────────────


@router.get("/")
async def get_my_exchange_configurations(
    actor_id: str = Depends(get_actor_id),
    service: NegotiationService = Depends(get_negotiation_service),
) -> list[dict[str, Any]]:
    return await service.list_exchange_configurations(actor_id)


@router.get("/{record_id}")
async def get_exchange_configuration(
    record_id: str,
    actor_id: str = Depends(get_actor_id),
    service: NegotiationService = Depends(get_negotiation_service),
) -> dict[str, Any]:
    return await service.get_exchange_configuration(record_id)


@router.post("/")
async def request_exchange_configuration(
    body: ExchangeRequestBody,
    actor_id: str = Depends(get_actor_id),
    service: NegotiationService = Depends(get_negotiation_service),
) -> dict[str, Any]:
    record = await service.request_exchange(
        actor_id,
        provider=body.provider,
        consumer=body.consumer,
        provider_service_offering=body.provider_service_offering,
        consumer_service_offering=body.consumer_service_offering,
    )
    return record.to_document()


@router.put("/{record_id}")
async def authorize_exchange_configuration(
    record_id: str,
    body: PolicyBody,
    actor_id: str = Depends(get_actor_id),
    service: NegotiationService = Depends(get_negotiation_service),
) -> dict[str, Any]:
    record = await service.authorize_exchange(actor_id, record_id, body.policy)
    return record.to_document()


@router.put("/{record_id}/negotiate")
async def negotiate_exchange_configuration(
    record_id: str,
    body: PolicyBody,
    actor_id: str = Depends(get_actor_id),
    service: NegotiationService = Depends(get_negotiation_service),
) -> dict[str, Any]:
    record = await service.negotiate_exchange(actor_id, record_id, body.policy)
    return record.to_document()


@router.put("/{record_id}/accept")
async def accept_exchange_configuration(
    record_id: str,
    actor_id: str = Depends(get_actor_id),
    service: NegotiationService = Depends(get_negotiation_service),
) -> dict[str, Any]:
    record = await service.accept_exchange(actor_id, record_id)
    return record.to_document()


@router.put("/{record_id}/sign")
async def sign_exchange_configuration(
    record_id: str,
    body: SignatureBody,
    actor_id: str = Depends(get_actor_id),
    service: NegotiationService = Depends(get_negotiation_service),
) -> dict[str, Any]:
    record, contract = await service.sign_exchange(actor_id, record_id, body.signature)
    return {
        "code": 200,
        "data": {
            "exchangeConfiguration": record.to_document(),
            "contract": contract,
        },
        "message": "Successfully signed exchange configuration",
    }
