"""
Exchange Negotiation: Population Profiles

Which related documents to expand when a negotiation is read. Each named
profile is a fixed field set; shaping is a pure transformation of plain
dicts over a PopulationContext, so it does not depend on the store.

Profiles for ecosystem negotiations:
  all          participant, ecosystem, policies[].serviceOffering,
               pricings[].serviceOffering
  participant  participant only
  ecosystem    ecosystem only

Unknown profile names resolve to ``all``.
"""

from __future__ import annotations

import copy
import enum
from dataclasses import dataclass, field
from typing import Any


class PopulationProfile(enum.StrEnum):
    ALL = "all"
    PARTICIPANT = "participant"
    ECOSYSTEM = "ecosystem"


def resolve_profile(name: str | None) -> PopulationProfile:
    try:
        return PopulationProfile(name or PopulationProfile.ALL)
    except ValueError:
        return PopulationProfile.ALL


@dataclass(frozen=True)
class FieldSet:
    participant: bool = False
    ecosystem: bool = False
    policy_offerings: bool = False
    pricing_offerings: bool = False


PROFILE_FIELDS: dict[PopulationProfile, FieldSet] = {
    PopulationProfile.ALL: FieldSet(
        participant=True,
        ecosystem=True,
        policy_offerings=True,
        pricing_offerings=True,
    ),
    PopulationProfile.PARTICIPANT: FieldSet(participant=True),
    PopulationProfile.ECOSYSTEM: FieldSet(ecosystem=True),
}


@dataclass
class PopulationContext:
    """Related documents, keyed by id, in wire (camelCase) form."""

    participants: dict[str, dict[str, Any]] = field(default_factory=dict)
    ecosystems: dict[str, dict[str, Any]] = field(default_factory=dict)
    service_offerings: dict[str, dict[str, Any]] = field(default_factory=dict)


# ─── Reference collection ─────────────────────────────────────────


@dataclass
class References:
    participants: set[str] = field(default_factory=set)
    ecosystems: set[str] = field(default_factory=set)
    service_offerings: set[str] = field(default_factory=set)

    def update(self, other: References) -> None:
        self.participants |= other.participants
        self.ecosystems |= other.ecosystems
        self.service_offerings |= other.service_offerings


def negotiation_references(negotiation: dict[str, Any], profile: PopulationProfile) -> References:
    """Ids a shaped negotiation needs, before the ecosystem itself is known."""
    fields = PROFILE_FIELDS[profile]
    refs = References()
    if fields.participant:
        refs.participants.add(negotiation["participant"])
    if fields.ecosystem:
        refs.ecosystems.add(negotiation["ecosystem"])
    if fields.policy_offerings:
        refs.service_offerings.update(p["serviceOffering"] for p in negotiation.get("policies", []))
    if fields.pricing_offerings:
        refs.service_offerings.update(p["serviceOffering"] for p in negotiation.get("pricings", []))
    return refs


def negotiations_references(negotiations: list[dict[str, Any]], profile: PopulationProfile) -> References:
    refs = References()
    for negotiation in negotiations:
        refs.update(negotiation_references(negotiation, profile))
    return refs


def ecosystem_participant_references(ecosystem: dict[str, Any]) -> set[str]:
    ids = {ecosystem.get("orchestrator", "")}
    for key in ("participants", "invitations", "joinRequests"):
        ids.update(entry["participant"] for entry in ecosystem.get(key, []))
    ids.discard("")
    return ids


def offering_participant_references(offerings: dict[str, dict[str, Any]]) -> set[str]:
    return {o["providedBy"] for o in offerings.values() if o.get("providedBy")}


def exchange_configuration_references(ec: dict[str, Any]) -> References:
    return References(
        participants={ec["provider"], ec["consumer"]},
        service_offerings={ec["providerServiceOffering"], ec["consumerServiceOffering"]},
    )


# ─── Expansion ────────────────────────────────────────────────────


def _participant(ctx: PopulationContext, participant_id: str) -> Any:
    return copy.deepcopy(ctx.participants.get(participant_id, participant_id))


def _offering(ctx: PopulationContext, offering_id: str) -> Any:
    offering = ctx.service_offerings.get(offering_id)
    if offering is None:
        return offering_id
    expanded = copy.deepcopy(offering)
    expanded["providedBy"] = _participant(ctx, offering.get("providedBy", ""))
    return expanded


def _ecosystem(ctx: PopulationContext, ecosystem_id: str) -> Any:
    ecosystem = ctx.ecosystems.get(ecosystem_id)
    if ecosystem is None:
        return ecosystem_id
    expanded = copy.deepcopy(ecosystem)
    expanded["orchestrator"] = _participant(ctx, ecosystem.get("orchestrator", ""))
    for key in ("participants", "invitations", "joinRequests"):
        for entry in expanded.get(key, []):
            entry["participant"] = _participant(ctx, entry["participant"])
    return expanded


def shape_negotiation(
    negotiation: dict[str, Any],
    profile: PopulationProfile,
    ctx: PopulationContext,
) -> dict[str, Any]:
    """Return a copy of ``negotiation`` with the profile's fields expanded."""
    fields = PROFILE_FIELDS[profile]
    shaped = copy.deepcopy(negotiation)
    if fields.participant:
        shaped["participant"] = _participant(ctx, negotiation["participant"])
    if fields.ecosystem:
        shaped["ecosystem"] = _ecosystem(ctx, negotiation["ecosystem"])
    if fields.policy_offerings:
        for entry in shaped.get("policies", []):
            entry["serviceOffering"] = _offering(ctx, entry["serviceOffering"])
    if fields.pricing_offerings:
        for entry in shaped.get("pricings", []):
            entry["serviceOffering"] = _offering(ctx, entry["serviceOffering"])
    return shaped


def shape_exchange_configuration(ec: dict[str, Any], ctx: PopulationContext) -> dict[str, Any]:
    shaped = copy.deepcopy(ec)
    shaped["provider"] = _participant(ctx, ec["provider"])
    shaped["consumer"] = _participant(ctx, ec["consumer"])
    shaped["providerServiceOffering"] = _offering(ctx, ec["providerServiceOffering"])
    shaped["consumerServiceOffering"] = _offering(ctx, ec["consumerServiceOffering"])
    return shaped
