"""
Exchange Negotiation: Ecosystem Membership Reconciler

Folds an accepted ecosystem negotiation into the ecosystem:

  1. the ecosystem must carry a contract
  2. the negotiation must carry at least one policy entry
  3. offerings are reduced to bare ids
  4. the pending invitation (else pending join request) is authorized
  5. a first-time participant gets a membership row
  6. the member's offerings become the policy/pricing bundle
  7. the contract's offering policies for the participant are replaced
  8. the ecosystem is persisted once, after everything above succeeded

Step 7 runs against a contract service without upsert, so it deletes every
offering in the bundle and then injects each one. Every call goes through a
bounded retry with an idempotency key, and progress is journaled so an
interrupted run resumes where it stopped instead of starting over.
"""

from __future__ import annotations

import asyncio
import hashlib
from typing import TYPE_CHECKING, Any

import orjson
import structlog

from exchange_negotiation.clients.contract_service import OfferingPolicyInjection
from exchange_negotiation.primitives.errors import Conflict, GatewayFailure
from exchange_negotiation.primitives.policies import (
    MemberOffering,
    PolicyConfiguration,
    PolicyRule,
    PricingConfiguration,
    PricingTerms,
    pricing_index,
)
from exchange_negotiation.systems.negotiation.types import (
    Ecosystem,
    EcosystemMember,
    EcosystemNegotiation,
    ReconciliationJournal,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from exchange_negotiation.clients.contract_service import PolicyInjectionGateway
    from exchange_negotiation.config import CatalogConfig, ReconciliationConfig
    from exchange_negotiation.systems.negotiation.repository import Repositories

logger = structlog.get_logger("exchange_negotiation.systems.negotiation.reconciler")

# Downstream statuses worth another attempt. None is a transport error.
_RETRYABLE_STATUS_CODES = {None, 408, 425, 429, 500, 502, 503, 504}


# ─── Bundle ───────────────────────────────────────────────────────


def normalized_offerings(policies: list[PolicyConfiguration]) -> list[MemberOffering]:
    """Policy entries as member offerings, without pricing."""
    return [
        MemberOffering(service_offering=p.service_offering, policy=list(p.policy))
        for p in policies
    ]


def build_offering_bundle(
    policies: list[PolicyConfiguration],
    pricings: list[PricingConfiguration],
) -> list[MemberOffering]:
    """
    One entry per policy entry, joined with its pricing on ``serviceOffering``.

    Without any pricing list the bundle is the policies alone. With one,
    every entry carries a pricing sub-object, zeroed when nothing matches.
    """
    if not pricings:
        return normalized_offerings(policies)

    index = pricing_index(pricings)
    return [
        MemberOffering(
            service_offering=p.service_offering,
            policy=list(p.policy),
            pricing=PricingTerms.from_configuration(index.get(p.service_offering)),
        )
        for p in policies
    ]


def bundle_fingerprint(contract: str, participant: str, bundle: list[MemberOffering]) -> str:
    payload = {
        "contract": contract,
        "participant": participant,
        "offerings": [o.to_document() for o in bundle],
    }
    return hashlib.sha256(orjson.dumps(payload, option=orjson.OPT_SORT_KEYS)).hexdigest()


def idempotency_key(fingerprint: str, step: str, contract: str, offering: str, participant: str) -> str:
    raw = ":".join((fingerprint, step, contract, offering, participant))
    return hashlib.sha256(raw.encode()).hexdigest()


# ─── Reconciler ───────────────────────────────────────────────────


class EcosystemMembershipReconciler:
    def __init__(
        self,
        repos: Repositories,
        policies: PolicyInjectionGateway,
        catalog: CatalogConfig,
        config: ReconciliationConfig,
    ) -> None:
        self._repos = repos
        self._policies = policies
        self._catalog = catalog
        self._config = config
        self._logger = logger.bind(component="reconciler")

    @staticmethod
    def check_preconditions(ecosystem: Ecosystem, negotiation: EcosystemNegotiation) -> None:
        if not ecosystem.contract:
            raise Conflict(
                f"Failed retrieving contract: No contract available on ecosystem {ecosystem.id}",
                ecosystem=ecosystem.id,
            )
        if not negotiation.policies:
            raise Conflict(
                "Failed to inject policies in ecosystem contract: No offering found, can't inject policies",
                negotiation=negotiation.id,
            )

    async def reconcile(self, ecosystem: Ecosystem, negotiation: EcosystemNegotiation) -> Ecosystem:
        """
        Merge ``negotiation`` into ``ecosystem`` and its contract.

        The caller holds the ecosystem lock. Nothing is persisted on the
        ecosystem unless the contract reconciliation succeeds.
        """
        self.check_preconditions(ecosystem, negotiation)
        participant = negotiation.participant
        log = self._logger.bind(ecosystem=ecosystem.id, participant=participant, negotiation=negotiation.id)

        offerings = normalized_offerings(negotiation.policies)

        request = ecosystem.pending_invitation(participant) or ecosystem.pending_join_request(participant)
        roles: list[str] = []
        if request is not None:
            request.authorize([o.model_copy(deep=True) for o in offerings])
            roles = list(request.roles)
            log.info("membership_request_authorized", roles=roles)

        if ecosystem.member(participant) is None:
            ecosystem.participants.append(
                EcosystemMember(participant=participant, offerings=offerings, roles=roles)
            )
            log.info("member_added")

        member = ecosystem.member(participant)
        bundle = build_offering_bundle(negotiation.policies, negotiation.pricings)
        member.offerings = bundle

        await self._sync_contract(ecosystem.contract, participant, negotiation.id, bundle)

        await self._repos.ecosystems.save(ecosystem)
        log.info("ecosystem_reconciled", offerings=len(bundle))
        return ecosystem

    # ─── Contract sync ────────────────────────────────────────────

    async def _sync_contract(
        self,
        contract: str,
        participant: str,
        negotiation_id: str,
        bundle: list[MemberOffering],
    ) -> None:
        journals = self._repos.reconciliation_journals
        fingerprint = bundle_fingerprint(contract, participant, bundle)

        journal = await journals.for_participant(contract, participant)
        if journal is None:
            journal = ReconciliationJournal(
                id=ReconciliationJournal.key(contract, participant),
                contract=contract,
                participant=participant,
                negotiation=negotiation_id,
                fingerprint=fingerprint,
            )
        elif journal.fingerprint != fingerprint:
            # The bundle changed since the interrupted run; its steps no longer apply.
            journal.restart(fingerprint)
            journal.negotiation = negotiation_id
        else:
            self._logger.info(
                "reconciliation_resumed",
                contract=contract,
                participant=participant,
                completed=len(journal.completed_steps),
            )
        await journals.save(journal)

        for offering in bundle:
            step = f"delete:{offering.service_offering}"
            if journal.is_done(step):
                continue
            key = idempotency_key(fingerprint, "delete", contract, offering.service_offering, participant)
            await self._with_retry(
                step,
                lambda o=offering, k=key: self._policies.delete_offering_policies(
                    contract, o.service_offering, participant, idempotency_key=k
                ),
            )
            journal.mark_done(step)
            await journals.save(journal)

        participant_url = self._catalog.participant_url(participant)
        for offering in bundle:
            step = f"inject:{offering.service_offering}"
            if journal.is_done(step):
                continue
            injection = OfferingPolicyInjection(
                participant=participant_url,
                service_offering=self._catalog.offering_url(offering.service_offering),
                policies=[self._with_target_url(rule) for rule in offering.policy],
            )
            key = idempotency_key(fingerprint, "inject", contract, offering.service_offering, participant)
            await self._with_retry(
                step,
                lambda i=injection, k=key: self._policies.inject_offering_policies(
                    contract, i, idempotency_key=k
                ),
            )
            journal.mark_done(step)
            await journals.save(journal)

        await journals.discard(journal)
        self._logger.info(
            "contract_policies_replaced",
            contract=contract,
            participant=participant,
            offerings=len(bundle),
        )

    def _with_target_url(self, rule: PolicyRule) -> PolicyRule:
        target = rule.values.get("target")
        if not isinstance(target, str) or not target or "://" in target:
            return rule
        values = dict(rule.values)
        values["target"] = self._catalog.offering_url(target)
        return PolicyRule(rule_id=rule.rule_id, values=values)

    async def _with_retry(self, step: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """Run a gateway call with exponential backoff on retryable failures."""
        attempts = max(1, self._config.max_attempts)
        for attempt in range(attempts):
            try:
                return await call()
            except GatewayFailure as exc:
                retryable = exc.downstream_status in _RETRYABLE_STATUS_CODES
                if not retryable or attempt + 1 >= attempts:
                    self._logger.error(
                        "reconciliation_step_failed",
                        step=step,
                        attempt=attempt + 1,
                        status=exc.downstream_status,
                        error=exc.message,
                    )
                    raise GatewayFailure(
                        "Failed to inject policies in ecosystem contract",
                        downstream_status=exc.downstream_status,
                        downstream_message=exc.message,
                        step=step,
                    ) from exc
                delay = self._config.base_delay_s * (2 ** attempt)
                self._logger.warning(
                    "reconciliation_step_retrying",
                    step=step,
                    attempt=attempt + 1,
                    delay_s=round(delay, 2),
                )
                await asyncio.sleep(delay)
        return None
