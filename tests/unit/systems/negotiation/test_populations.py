"""Tests for population profiles: pure shaping over a PopulationContext."""

from __future__ import annotations

from exchange_negotiation.systems.negotiation.populations import (
    PopulationContext,
    PopulationProfile,
    exchange_configuration_references,
    negotiation_references,
    negotiations_references,
    resolve_profile,
    shape_exchange_configuration,
    shape_negotiation,
)


def _negotiation() -> dict:
    return {
        "id": "nego-1",
        "ecosystem": "eco-1",
        "participant": "p-x",
        "policies": [{"serviceOffering": "so-1", "policy": []}],
        "pricings": [{"serviceOffering": "so-2", "pricing": 4}],
        "status": "Requested",
        "latestNegotiator": "p-orch",
    }


def _context() -> PopulationContext:
    return PopulationContext(
        participants={
            "p-x": {"id": "p-x", "legalName": "Provider X"},
            "p-orch": {"id": "p-orch", "legalName": "Orchestrator"},
        },
        ecosystems={
            "eco-1": {
                "id": "eco-1",
                "orchestrator": "p-orch",
                "participants": [{"participant": "p-x", "offerings": [], "roles": []}],
                "invitations": [],
                "joinRequests": [],
            }
        },
        service_offerings={
            "so-1": {"id": "so-1", "name": "Dataset", "providedBy": "p-x"},
        },
    )


class TestResolveProfile:
    def test_known_names(self):
        assert resolve_profile("participant") == PopulationProfile.PARTICIPANT
        assert resolve_profile("ecosystem") == PopulationProfile.ECOSYSTEM
        assert resolve_profile("all") == PopulationProfile.ALL

    def test_unknown_and_missing_fall_back_to_all(self):
        assert resolve_profile("everything") == PopulationProfile.ALL
        assert resolve_profile("") == PopulationProfile.ALL
        assert resolve_profile(None) == PopulationProfile.ALL


class TestReferences:
    def test_all_profile(self):
        refs = negotiation_references(_negotiation(), PopulationProfile.ALL)
        assert refs.participants == {"p-x"}
        assert refs.ecosystems == {"eco-1"}
        assert refs.service_offerings == {"so-1", "so-2"}

    def test_participant_profile(self):
        refs = negotiation_references(_negotiation(), PopulationProfile.PARTICIPANT)
        assert refs.participants == {"p-x"}
        assert refs.ecosystems == set()
        assert refs.service_offerings == set()

    def test_merged_over_several_negotiations(self):
        other = _negotiation() | {"participant": "p-y", "ecosystem": "eco-2"}
        refs = negotiations_references([_negotiation(), other], PopulationProfile.ECOSYSTEM)
        assert refs.ecosystems == {"eco-1", "eco-2"}
        assert refs.participants == set()

    def test_exchange_configuration(self):
        refs = exchange_configuration_references(
            {
                "provider": "p-a",
                "consumer": "p-b",
                "providerServiceOffering": "so-a",
                "consumerServiceOffering": "so-b",
            }
        )
        assert refs.participants == {"p-a", "p-b"}
        assert refs.service_offerings == {"so-a", "so-b"}


class TestShapeNegotiation:
    def test_all_expands_everything_resolvable(self):
        shaped = shape_negotiation(_negotiation(), PopulationProfile.ALL, _context())

        assert shaped["participant"]["legalName"] == "Provider X"
        assert shaped["ecosystem"]["orchestrator"]["legalName"] == "Orchestrator"
        assert shaped["ecosystem"]["participants"][0]["participant"]["id"] == "p-x"
        assert shaped["policies"][0]["serviceOffering"]["providedBy"]["legalName"] == "Provider X"
        # so-2 is not in the context and stays a bare id
        assert shaped["pricings"][0]["serviceOffering"] == "so-2"

    def test_ecosystem_profile_leaves_other_fields(self):
        shaped = shape_negotiation(_negotiation(), PopulationProfile.ECOSYSTEM, _context())
        assert shaped["ecosystem"]["id"] == "eco-1"
        assert shaped["participant"] == "p-x"
        assert shaped["policies"][0]["serviceOffering"] == "so-1"

    def test_input_is_not_mutated(self):
        negotiation = _negotiation()
        ctx = _context()
        shape_negotiation(negotiation, PopulationProfile.ALL, ctx)
        assert negotiation == _negotiation()
        assert ctx.ecosystems["eco-1"]["orchestrator"] == "p-orch"


class TestShapeExchangeConfiguration:
    def test_expands_parties_and_offerings(self):
        ec = {
            "id": "ec-1",
            "provider": "p-x",
            "consumer": "p-unknown",
            "providerServiceOffering": "so-1",
            "consumerServiceOffering": "so-missing",
        }
        shaped = shape_exchange_configuration(ec, _context())
        assert shaped["provider"]["legalName"] == "Provider X"
        assert shaped["consumer"] == "p-unknown"
        assert shaped["providerServiceOffering"]["name"] == "Dataset"
        assert shaped["consumerServiceOffering"] == "so-missing"
