"""
Exchange Negotiation: Policy and Pricing Primitives

Policy configurations and pricing configurations are two independent lists
that refer to service offerings by id. They are never assumed to be aligned
by position; ``pricing_index`` builds the join keyed by offering id.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator

from exchange_negotiation.primitives.common import NegotiationBaseModel, document_id


class PolicyRule(NegotiationBaseModel):
    """A registry rule id plus the values for its requested fields."""

    rule_id: str
    values: dict[str, Any] = Field(default_factory=dict)


class PolicyConfiguration(NegotiationBaseModel):
    """Configured policies for one service offering."""

    service_offering: str
    policy: list[PolicyRule] = Field(default_factory=list)

    @field_validator("service_offering", mode="before")
    @classmethod
    def _bare_offering_id(cls, value: Any) -> str:
        return document_id(value)


class PricingConfiguration(NegotiationBaseModel):
    """Commercial terms for one service offering."""

    service_offering: str
    pricing_model: list[str] | None = None
    pricing_description: str = ""
    pricing: float = 0
    currency: str | None = None
    billing_period: str | None = None
    cost_per_api_call: float | None = Field(default=None, alias="costPerAPICall")
    setup_fee: float | None = None

    @field_validator("service_offering", mode="before")
    @classmethod
    def _bare_offering_id(cls, value: Any) -> str:
        return document_id(value)


class PricingTerms(NegotiationBaseModel):
    """Pricing sub-object of a member offering. Absent fields are zero / empty."""

    pricing: float = 0
    pricing_model: list[str] = Field(default_factory=list)
    pricing_description: str = ""
    currency: str = ""
    billing_period: str = ""
    cost_per_api_call: float = Field(default=0, alias="costPerAPICall")
    setup_fee: float = 0

    @classmethod
    def from_configuration(cls, config: PricingConfiguration | None) -> PricingTerms:
        if config is None:
            return cls()
        return cls(
            pricing=config.pricing or 0,
            pricing_model=config.pricing_model or [],
            pricing_description=config.pricing_description or "",
            currency=config.currency or "",
            billing_period=config.billing_period or "",
            cost_per_api_call=config.cost_per_api_call or 0,
            setup_fee=config.setup_fee or 0,
        )


class MemberOffering(NegotiationBaseModel):
    """An offering as recorded on an ecosystem member, invitation or join request."""

    service_offering: str
    policy: list[PolicyRule] = Field(default_factory=list)
    pricing: PricingTerms | None = None

    @field_validator("service_offering", mode="before")
    @classmethod
    def _bare_offering_id(cls, value: Any) -> str:
        return document_id(value)


def referenced_offerings(
    policies: list[PolicyConfiguration],
    pricings: list[PricingConfiguration],
) -> list[str]:
    """Every offering id referenced by a proposal, policies first, in order."""
    return [p.service_offering for p in policies] + [p.service_offering for p in pricings]


def pricing_index(pricings: list[PricingConfiguration]) -> dict[str, PricingConfiguration]:
    """Join key for policy/pricing correlation. The first entry for an offering wins."""
    index: dict[str, PricingConfiguration] = {}
    for pricing in pricings:
        index.setdefault(pricing.service_offering, pricing)
    return index
