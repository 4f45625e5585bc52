"""
Exchange Negotiation: Negotiation Types

Records driven by the state machines (ExchangeConfiguration,
EcosystemNegotiation) and the external entities they read or mutate
(Ecosystem, Participant, ServiceOffering).

Records are never physically deleted. Signed, Accepted and Terminated
records stay as history.
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import ConfigDict, Field, field_validator

from exchange_negotiation.primitives.common import (
    Document,
    NegotiationBaseModel,
    document_id,
)
from exchange_negotiation.primitives.policies import (
    MemberOffering,
    PolicyConfiguration,
    PolicyRule,
    PricingConfiguration,
)

# ─── Statuses ─────────────────────────────────────────────────────


class ExchangeStatus(enum.StrEnum):
    """Bilateral lifecycle: Requested → Authorized → Negotiation ⇄ → SignatureReady → Signed."""

    REQUESTED = "Requested"
    AUTHORIZED = "Authorized"
    NEGOTIATION = "Negotiation"
    SIGNATURE_READY = "SignatureReady"
    SIGNED = "Signed"


class EcosystemNegotiationStatus(enum.StrEnum):
    """Group-join lifecycle. Terminated is absorbing."""

    REQUESTED = "Requested"
    NEGOTIATION = "Negotiation"
    ACCEPTED = "Accepted"
    TERMINATED = "Terminated"


class MembershipStatus(enum.StrEnum):
    PENDING = "Pending"
    AUTHORIZED = "Authorized"
    REJECTED = "Rejected"


class SigningParty(enum.StrEnum):
    PROVIDER = "provider"
    CONSUMER = "consumer"


# ─── Bilateral ────────────────────────────────────────────────────


class Signatures(NegotiationBaseModel):
    provider: str | None = None
    consumer: str | None = None

    @property
    def complete(self) -> bool:
        return bool(self.provider) and bool(self.consumer)

    def record(self, party: SigningParty, signature: str) -> None:
        setattr(self, party.value, signature)


class ExchangeConfiguration(Document):
    """A bilateral data-access negotiation over one offering pair."""

    provider: str
    consumer: str
    provider_service_offering: str
    consumer_service_offering: str
    negotiation_status: ExchangeStatus = ExchangeStatus.REQUESTED
    provider_policies: list[PolicyRule] = Field(default_factory=list)
    contract: str | None = None
    signatures: Signatures = Field(default_factory=Signatures)
    latest_negotiator: str | None = None
    # Set in the same write as the second signature once the bilateral
    # policies reached the contract. Guards against a second injection.
    policies_injected: bool = False

    @field_validator(
        "provider",
        "consumer",
        "provider_service_offering",
        "consumer_service_offering",
        mode="before",
    )
    @classmethod
    def _bare_ids(cls, value: Any) -> str:
        return document_id(value)

    @property
    def tuple_key(self) -> str:
        return exchange_tuple_key(
            self.provider,
            self.consumer,
            self.provider_service_offering,
            self.consumer_service_offering,
        )

    def is_party(self, actor_id: str) -> bool:
        return actor_id in (self.provider, self.consumer)

    def signing_party(self, actor_id: str) -> SigningParty:
        return SigningParty.PROVIDER if actor_id == self.provider else SigningParty.CONSUMER


def exchange_tuple_key(
    provider: str,
    consumer: str,
    provider_service_offering: str,
    consumer_service_offering: str,
) -> str:
    return ":".join((provider, consumer, provider_service_offering, consumer_service_offering))


# ─── Ecosystem ────────────────────────────────────────────────────


class EcosystemNegotiation(Document):
    """A participant's negotiation to join (or renegotiate within) an ecosystem."""

    ecosystem: str
    participant: str
    policies: list[PolicyConfiguration] = Field(default_factory=list)
    pricings: list[PricingConfiguration] = Field(default_factory=list)
    status: EcosystemNegotiationStatus = EcosystemNegotiationStatus.REQUESTED
    latest_negotiator: str

    @field_validator("ecosystem", "participant", mode="before")
    @classmethod
    def _bare_ids(cls, value: Any) -> str:
        return document_id(value)


class EcosystemMember(NegotiationBaseModel):
    participant: str
    offerings: list[MemberOffering] = Field(default_factory=list)
    roles: list[str] = Field(default_factory=list)

    @field_validator("participant", mode="before")
    @classmethod
    def _bare_id(cls, value: Any) -> str:
        return document_id(value)


class MembershipRequest(NegotiationBaseModel):
    """An invitation issued by the orchestrator, or a join request from a participant."""

    participant: str
    roles: list[str] = Field(default_factory=list)
    status: MembershipStatus = MembershipStatus.PENDING
    offerings: list[MemberOffering] = Field(default_factory=list)

    @field_validator("participant", mode="before")
    @classmethod
    def _bare_id(cls, value: Any) -> str:
        return document_id(value)

    def authorize(self, offerings: list[MemberOffering]) -> None:
        self.offerings = offerings
        self.status = MembershipStatus.AUTHORIZED


class Ecosystem(Document):
    model_config = ConfigDict(extra="allow")

    name: str = ""
    orchestrator: str = ""
    participants: list[EcosystemMember] = Field(default_factory=list)
    invitations: list[MembershipRequest] = Field(default_factory=list)
    join_requests: list[MembershipRequest] = Field(default_factory=list)
    contract: str | None = None

    def invite(self, participant: str, roles: list[str]) -> MembershipRequest:
        """Issue a pending invitation, refreshing the roles of one already pending."""
        invitation = self.pending_invitation(participant)
        if invitation is not None:
            invitation.roles = list(roles)
            return invitation
        invitation = MembershipRequest(participant=participant, roles=list(roles))
        self.invitations.append(invitation)
        return invitation

    def pending_invitation(self, participant: str) -> MembershipRequest | None:
        return _first_pending(self.invitations, participant)

    def pending_join_request(self, participant: str) -> MembershipRequest | None:
        return _first_pending(self.join_requests, participant)

    def member(self, participant: str) -> EcosystemMember | None:
        for member in self.participants:
            if member.participant == participant:
                return member
        return None


def _first_pending(requests: list[MembershipRequest], participant: str) -> MembershipRequest | None:
    for request in requests:
        if request.participant == participant and request.status == MembershipStatus.PENDING:
            return request
    return None


# ─── Catalog (read-only here) ─────────────────────────────────────


class Participant(Document):
    model_config = ConfigDict(extra="allow")

    legal_name: str = ""
    associated_organisation: str | None = None


class ServiceOffering(Document):
    model_config = ConfigDict(extra="allow")

    name: str = ""
    provided_by: str
    data_resources: list[str] = Field(default_factory=list)
    software_resources: list[str] = Field(default_factory=list)

    @field_validator("provided_by", mode="before")
    @classmethod
    def _bare_id(cls, value: Any) -> str:
        return document_id(value)


# ─── Reconciliation ───────────────────────────────────────────────


class ReconciliationJournal(Document):
    """
    Progress of one contract reconciliation for a participant. Keyed by
    contract and participant; removed once the run completes.
    """

    contract: str
    participant: str
    negotiation: str
    fingerprint: str
    completed_steps: list[str] = Field(default_factory=list)

    @staticmethod
    def key(contract: str, participant: str) -> str:
        return f"{contract}:{participant}"

    def restart(self, fingerprint: str) -> None:
        self.fingerprint = fingerprint
        self.completed_steps = []

    def is_done(self, step: str) -> bool:
        return step in self.completed_steps

    def mark_done(self, step: str) -> None:
        if step not in self.completed_steps:
            self.completed_steps.append(step)
