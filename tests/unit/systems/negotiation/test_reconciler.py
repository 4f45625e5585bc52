"""Tests for EcosystemMembershipReconciler: roster merge and contract policy sync."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from exchange_negotiation.clients.document_store import InMemoryDocumentStore
from exchange_negotiation.config import CatalogConfig, ReconciliationConfig
from exchange_negotiation.primitives.errors import Conflict, GatewayFailure
from exchange_negotiation.primitives.policies import (
    MemberOffering,
    PolicyConfiguration,
    PolicyRule,
    PricingConfiguration,
)
from exchange_negotiation.systems.negotiation.reconciler import (
    EcosystemMembershipReconciler,
    build_offering_bundle,
)
from exchange_negotiation.systems.negotiation.repository import Repositories
from exchange_negotiation.systems.negotiation.types import (
    Ecosystem,
    EcosystemMember,
    EcosystemNegotiation,
    EcosystemNegotiationStatus,
    MembershipRequest,
    MembershipStatus,
)

CATALOG = "https://catalog.test/v1"
PARTICIPANT = "p-x"


def _make_reconciler(max_attempts: int = 3):
    repos = Repositories.over(InMemoryDocumentStore())
    gateway = AsyncMock()
    reconciler = EcosystemMembershipReconciler(
        repos,
        gateway,
        CatalogConfig(api_url=CATALOG),
        ReconciliationConfig(max_attempts=max_attempts, base_delay_s=0),
    )
    return reconciler, repos, gateway


def _ecosystem(**overrides) -> Ecosystem:
    fields = {"id": "eco-1", "name": "Health", "orchestrator": "p-orch", "contract": "contract-eco"}
    fields.update(overrides)
    return Ecosystem(**fields)


def _policy(offering_id: str, target: str | None = None) -> PolicyConfiguration:
    values = {"target": target if target is not None else offering_id}
    return PolicyConfiguration(
        service_offering=offering_id,
        policy=[PolicyRule(rule_id="rule-access", values=values)],
    )


def _negotiation(
    policies: list[PolicyConfiguration],
    pricings: list[PricingConfiguration] | None = None,
) -> EcosystemNegotiation:
    return EcosystemNegotiation(
        id="nego-1",
        ecosystem="eco-1",
        participant=PARTICIPANT,
        policies=policies,
        pricings=pricings or [],
        status=EcosystemNegotiationStatus.ACCEPTED,
        latest_negotiator="p-orch",
    )


class TestBundle:
    def test_pricing_joined_by_offering_with_defaults(self):
        policies = [_policy("so-1"), _policy("so-2")]
        pricings = [
            PricingConfiguration(
                service_offering="so-2",
                pricing=99,
                currency="EUR",
                pricing_model=["subscription"],
                billing_period="monthly",
                cost_per_api_call=0.1,
                setup_fee=5,
            )
        ]

        bundle = build_offering_bundle(policies, pricings)

        assert [o.service_offering for o in bundle] == ["so-1", "so-2"]
        unmatched = bundle[0].pricing
        assert unmatched.pricing == 0
        assert unmatched.currency == ""
        assert unmatched.pricing_model == []
        assert unmatched.pricing_description == ""
        assert unmatched.billing_period == ""
        assert unmatched.cost_per_api_call == 0
        assert unmatched.setup_fee == 0
        matched = bundle[1].pricing
        assert matched.pricing == 99
        assert matched.currency == "EUR"
        assert matched.pricing_model == ["subscription"]
        assert matched.cost_per_api_call == 0.1

    def test_one_entry_per_policy_entry(self):
        policies = [_policy("so-1"), _policy("so-2"), _policy("so-3")]
        pricings = [
            PricingConfiguration(service_offering="so-3", pricing=3),
            PricingConfiguration(service_offering="so-9", pricing=9),
        ]
        bundle = build_offering_bundle(policies, pricings)
        assert len(bundle) == 3
        assert [o.pricing.pricing for o in bundle] == [0, 0, 3]

    def test_no_pricing_list_means_policies_alone(self):
        bundle = build_offering_bundle([_policy("so-1")], [])
        assert bundle[0].pricing is None
        assert bundle[0].to_document()["pricing"] is None

    def test_wire_names(self):
        bundle = build_offering_bundle([_policy("so-1")], [PricingConfiguration(service_offering="so-1")])
        document = bundle[0].to_document()
        assert document["serviceOffering"] == "so-1"
        assert "costPerAPICall" in document["pricing"]


class TestPreconditions:
    @pytest.mark.asyncio
    async def test_ecosystem_without_contract(self):
        reconciler, _, gateway = _make_reconciler()
        with pytest.raises(Conflict) as exc_info:
            await reconciler.reconcile(_ecosystem(contract=None), _negotiation([_policy("so-1")]))
        assert "No contract available" in exc_info.value.message
        gateway.delete_offering_policies.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_negotiation_without_policies(self):
        reconciler, _, _ = _make_reconciler()
        with pytest.raises(Conflict):
            await reconciler.reconcile(_ecosystem(), _negotiation([]))


class TestRoster:
    @pytest.mark.asyncio
    async def test_pending_invitation_is_authorized_and_member_added(self):
        reconciler, repos, _ = _make_reconciler()
        ecosystem = _ecosystem(invitations=[MembershipRequest(participant=PARTICIPANT, roles=["provider"])])
        pricings = [PricingConfiguration(service_offering="so-1", pricing=10)]

        await reconciler.reconcile(ecosystem, _negotiation([_policy("so-1")], pricings))

        stored = await repos.ecosystems.get("eco-1")
        invitation = stored.invitations[0]
        assert invitation.status == MembershipStatus.AUTHORIZED
        assert [o.service_offering for o in invitation.offerings] == ["so-1"]
        member = stored.member(PARTICIPANT)
        assert member is not None
        assert member.roles == ["provider"]
        assert member.offerings[0].pricing.pricing == 10

    @pytest.mark.asyncio
    async def test_pending_join_request_used_without_invitation(self):
        reconciler, repos, _ = _make_reconciler()
        ecosystem = _ecosystem(join_requests=[MembershipRequest(participant=PARTICIPANT, roles=["consumer"])])

        await reconciler.reconcile(ecosystem, _negotiation([_policy("so-1")]))

        stored = await repos.ecosystems.get("eco-1")
        assert stored.join_requests[0].status == MembershipStatus.AUTHORIZED
        assert stored.member(PARTICIPANT).roles == ["consumer"]

    @pytest.mark.asyncio
    async def test_invitation_takes_priority_over_join_request(self):
        reconciler, repos, _ = _make_reconciler()
        ecosystem = _ecosystem(
            invitations=[MembershipRequest(participant=PARTICIPANT, roles=["provider"])],
            join_requests=[MembershipRequest(participant=PARTICIPANT, roles=["consumer"])],
        )

        await reconciler.reconcile(ecosystem, _negotiation([_policy("so-1")]))

        stored = await repos.ecosystems.get("eco-1")
        assert stored.invitations[0].status == MembershipStatus.AUTHORIZED
        assert stored.join_requests[0].status == MembershipStatus.PENDING
        assert stored.member(PARTICIPANT).roles == ["provider"]

    @pytest.mark.asyncio
    async def test_renegotiation_replaces_member_offerings_without_duplicate_row(self):
        reconciler, repos, _ = _make_reconciler()
        ecosystem = _ecosystem(
            participants=[
                EcosystemMember(
                    participant=PARTICIPANT,
                    offerings=[MemberOffering(service_offering="so-old")],
                    roles=["provider"],
                )
            ]
        )
        policies = [_policy("so-1"), _policy("so-2")]
        pricings = [PricingConfiguration(service_offering="so-2", pricing=7)]

        await reconciler.reconcile(ecosystem, _negotiation(policies, pricings))

        stored = await repos.ecosystems.get("eco-1")
        assert len(stored.participants) == 1
        member = stored.participants[0]
        assert member.roles == ["provider"]
        assert [o.service_offering for o in member.offerings] == ["so-1", "so-2"]
        assert [o.pricing.pricing for o in member.offerings] == [0, 7]

    @pytest.mark.asyncio
    async def test_expanded_offering_references_are_stored_bare(self):
        reconciler, repos, _ = _make_reconciler()
        policy = PolicyConfiguration.model_validate(
            {"serviceOffering": {"_id": "so-1", "name": "Dataset"}, "policy": []}
        )

        await reconciler.reconcile(_ecosystem(), _negotiation([policy]))

        stored = await repos.ecosystems.get("eco-1")
        assert stored.member(PARTICIPANT).offerings[0].service_offering == "so-1"


class TestContractSync:
    @pytest.mark.asyncio
    async def test_deletes_every_offering_then_injects_each(self):
        reconciler, _, gateway = _make_reconciler()
        calls: list[tuple[str, str]] = []
        gateway.delete_offering_policies.side_effect = (
            lambda contract, offering, participant, idempotency_key=None: calls.append(("delete", offering))
        )
        gateway.inject_offering_policies.side_effect = (
            lambda contract, injection, idempotency_key=None: calls.append(("inject", injection.service_offering))
        )

        await reconciler.reconcile(_ecosystem(), _negotiation([_policy("so-1"), _policy("so-2")]))

        assert calls == [
            ("delete", "so-1"),
            ("delete", "so-2"),
            ("inject", f"{CATALOG}/catalog/serviceofferings/so-1"),
            ("inject", f"{CATALOG}/catalog/serviceofferings/so-2"),
        ]
        for call in gateway.delete_offering_policies.await_args_list:
            assert call.args[0] == "contract-eco"
            assert call.args[2] == PARTICIPANT

    @pytest.mark.asyncio
    async def test_injection_uses_resource_urls(self):
        reconciler, _, gateway = _make_reconciler()

        await reconciler.reconcile(
            _ecosystem(),
            _negotiation([_policy("so-1"), _policy("so-2", target=f"{CATALOG}/catalog/serviceofferings/so-2")]),
        )

        first = gateway.inject_offering_policies.await_args_list[0].args[1]
        second = gateway.inject_offering_policies.await_args_list[1].args[1]
        assert first.participant == f"{CATALOG}/catalog/participants/{PARTICIPANT}"
        assert first.policies[0].values["target"] == f"{CATALOG}/catalog/serviceofferings/so-1"
        assert second.policies[0].values["target"] == f"{CATALOG}/catalog/serviceofferings/so-2"

    @pytest.mark.asyncio
    async def test_stored_member_policy_keeps_bare_target(self):
        reconciler, repos, _ = _make_reconciler()

        await reconciler.reconcile(_ecosystem(), _negotiation([_policy("so-1")]))

        stored = await repos.ecosystems.get("eco-1")
        assert stored.member(PARTICIPANT).offerings[0].policy[0].values["target"] == "so-1"

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried_with_same_idempotency_key(self):
        reconciler, _, gateway = _make_reconciler()
        gateway.inject_offering_policies.side_effect = [
            GatewayFailure("Contract service replied 503", downstream_status=503),
            {"ok": True},
        ]

        await reconciler.reconcile(_ecosystem(), _negotiation([_policy("so-1")]))

        attempts = gateway.inject_offering_policies.await_args_list
        assert len(attempts) == 2
        assert attempts[0].kwargs["idempotency_key"] == attempts[1].kwargs["idempotency_key"]
        assert attempts[0].kwargs["idempotency_key"]

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self):
        reconciler, _, gateway = _make_reconciler(max_attempts=2)
        gateway.delete_offering_policies.side_effect = GatewayFailure(
            "Contract service unreachable", downstream_message="timeout"
        )

        with pytest.raises(GatewayFailure):
            await reconciler.reconcile(_ecosystem(), _negotiation([_policy("so-1")]))
        assert gateway.delete_offering_policies.await_count == 2

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        reconciler, _, gateway = _make_reconciler()
        gateway.inject_offering_policies.side_effect = GatewayFailure(
            "Contract service replied 400", downstream_status=400
        )

        with pytest.raises(GatewayFailure) as exc_info:
            await reconciler.reconcile(_ecosystem(), _negotiation([_policy("so-1")]))
        assert exc_info.value.message.startswith("Failed to inject policies in ecosystem contract")
        assert gateway.inject_offering_policies.await_count == 1

    @pytest.mark.asyncio
    async def test_failure_leaves_ecosystem_unpersisted_and_journal_pending(self):
        reconciler, repos, gateway = _make_reconciler()
        await repos.ecosystems.insert(_ecosystem())
        gateway.inject_offering_policies.side_effect = GatewayFailure(
            "Contract service replied 400", downstream_status=400
        )

        ecosystem = await repos.ecosystems.get("eco-1")
        with pytest.raises(GatewayFailure):
            await reconciler.reconcile(ecosystem, _negotiation([_policy("so-1")]))

        stored = await repos.ecosystems.get("eco-1")
        assert stored.participants == []
        journal = await repos.reconciliation_journals.for_participant("contract-eco", PARTICIPANT)
        assert journal is not None
        assert journal.negotiation == "nego-1"
        assert journal.completed_steps == ["delete:so-1"]

    @pytest.mark.asyncio
    async def test_resume_skips_completed_steps(self):
        reconciler, repos, gateway = _make_reconciler()
        await repos.ecosystems.insert(_ecosystem())
        negotiation = _negotiation([_policy("so-1"), _policy("so-2")])
        gateway.inject_offering_policies.side_effect = [
            {"ok": True},
            GatewayFailure("Contract service replied 400", downstream_status=400),
        ]

        with pytest.raises(GatewayFailure):
            await reconciler.reconcile(await repos.ecosystems.get("eco-1"), negotiation)
        assert gateway.delete_offering_policies.await_count == 2
        assert gateway.inject_offering_policies.await_count == 2

        gateway.inject_offering_policies.side_effect = None
        await reconciler.reconcile(await repos.ecosystems.get("eco-1"), negotiation)

        assert gateway.delete_offering_policies.await_count == 2
        assert gateway.inject_offering_policies.await_count == 3
        last = gateway.inject_offering_policies.await_args_list[-1].args[1]
        assert last.service_offering == f"{CATALOG}/catalog/serviceofferings/so-2"
        assert await repos.reconciliation_journals.for_participant("contract-eco", PARTICIPANT) is None
        assert (await repos.ecosystems.get("eco-1")).member(PARTICIPANT) is not None

    @pytest.mark.asyncio
    async def test_changed_bundle_restarts_the_journal(self):
        reconciler, repos, gateway = _make_reconciler()
        gateway.inject_offering_policies.side_effect = GatewayFailure(
            "Contract service replied 400", downstream_status=400
        )
        with pytest.raises(GatewayFailure):
            await reconciler.reconcile(_ecosystem(), _negotiation([_policy("so-1")]))

        gateway.inject_offering_policies.side_effect = None
        await reconciler.reconcile(_ecosystem(), _negotiation([_policy("so-1"), _policy("so-2")]))

        deleted = [call.args[1] for call in gateway.delete_offering_policies.await_args_list]
        assert deleted == ["so-1", "so-1", "so-2"]

    @pytest.mark.asyncio
    async def test_journal_removed_on_success(self):
        reconciler, repos, _ = _make_reconciler()
        await reconciler.reconcile(_ecosystem(), _negotiation([_policy("so-1")]))
        assert await repos.reconciliation_journals.all() == []
