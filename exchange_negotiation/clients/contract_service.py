"""
Exchange Negotiation: Contract Service Client

HTTP client for the external contract service. It plays two roles:

  ContractGateway          generate and sign bilateral contracts
  PolicyInjectionGateway   inject / delete policy rules on a contract

Every call is addressed at ``contract_service.base_url`` with bearer service
headers. Transport errors and non-2xx replies surface as GatewayFailure
carrying the downstream status and message; nothing is retried here.
"""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any, Protocol

import httpx
import structlog

from exchange_negotiation.primitives.common import NegotiationBaseModel, document_id
from exchange_negotiation.primitives.errors import GatewayFailure
from exchange_negotiation.primitives.policies import PolicyRule

if TYPE_CHECKING:
    from exchange_negotiation.config import ContractServiceConfig

logger = structlog.get_logger("exchange_negotiation.clients.contract_service")


class OfferingPolicyInjection(NegotiationBaseModel):
    """Offering-level injection payload, with resource-URL identifiers."""

    participant: str
    service_offering: str
    policies: list[PolicyRule]


class RoleObligation(NegotiationBaseModel):
    role: str
    rule_id: str
    values: dict[str, Any]


class ContractGateway(Protocol):
    async def generate_bilateral_contract(
        self, consumer: str, provider: str, service_offering: str
    ) -> dict[str, Any]: ...

    async def sign_bilateral_contract(
        self, contract_id: str, signature: dict[str, str]
    ) -> dict[str, Any]: ...


class PolicyInjectionGateway(Protocol):
    async def inject_bilateral_policies(
        self, contract_id: str, rules: list[PolicyRule]
    ) -> Any: ...

    async def inject_offering_policies(
        self,
        contract_id: str,
        injection: OfferingPolicyInjection,
        idempotency_key: str | None = None,
    ) -> Any: ...

    async def delete_offering_policies(
        self,
        contract_id: str,
        offering_id: str,
        participant_id: str,
        idempotency_key: str | None = None,
    ) -> Any: ...


class ContractServiceClient:
    """httpx implementation of both gateways."""

    def __init__(
        self,
        config: ContractServiceConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        headers = {"content-type": "application/json"}
        if config.api_key:
            headers["authorization"] = f"Bearer {config.api_key}"
            headers["x-ptx-service-api-key"] = config.api_key
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            headers=headers,
            timeout=config.timeout_s,
        )
        if client is not None:
            self._client.headers.update(headers)

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        idempotency_key: str | None = None,
        missing_ok: bool = False,
    ) -> Any:
        headers = {"idempotency-key": idempotency_key} if idempotency_key else None
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("contract_service_unreachable", method=method, path=path, error=str(exc))
            raise GatewayFailure(
                "Contract service unreachable",
                downstream_message=str(exc) or exc.__class__.__name__,
            ) from exc

        if missing_ok and response.status_code == 404:
            return None

        if response.is_error:
            body = ""
            with contextlib.suppress(Exception):
                body = response.text[:500]
            logger.warning(
                "contract_service_error",
                method=method,
                path=path,
                status=response.status_code,
            )
            raise GatewayFailure(
                f"Contract service replied {response.status_code}",
                downstream_status=response.status_code,
                downstream_message=body,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    # ─── ContractGateway ──────────────────────────────────────────

    async def generate_bilateral_contract(
        self, consumer: str, provider: str, service_offering: str
    ) -> dict[str, Any]:
        data = await self._request(
            "POST",
            "/bilaterals",
            json={
                "dataConsumer": consumer,
                "dataProvider": provider,
                "serviceOffering": service_offering,
            },
        )
        if not data or not document_id(data):
            raise GatewayFailure("Contract was not returned by Contract Service")
        return data

    async def sign_bilateral_contract(
        self, contract_id: str, signature: dict[str, str]
    ) -> dict[str, Any]:
        data = await self._request("PUT", f"/bilaterals/sign/{contract_id}", json=signature)
        return data or {}

    # ─── PolicyInjectionGateway ───────────────────────────────────

    async def inject_bilateral_policies(self, contract_id: str, rules: list[PolicyRule]) -> Any:
        return await self._request(
            "PUT",
            f"/bilaterals/policies/{contract_id}",
            json=[rule.to_document() for rule in rules],
        )

    async def inject_bilateral_policy(
        self, contract_id: str, policy_id: str, values: dict[str, Any]
    ) -> Any:
        return await self._request(
            "PUT",
            f"/contracts/policy/{contract_id}",
            json={"policyId": policy_id, "contractId": contract_id, "values": values},
        )

    async def inject_offering_policies(
        self,
        contract_id: str,
        injection: OfferingPolicyInjection,
        idempotency_key: str | None = None,
    ) -> Any:
        return await self._request(
            "PUT",
            f"/contracts/policies/offering/{contract_id}",
            json=injection.to_document(),
            idempotency_key=idempotency_key,
        )

    async def delete_offering_policies(
        self,
        contract_id: str,
        offering_id: str,
        participant_id: str,
        idempotency_key: str | None = None,
    ) -> Any:
        # A 404 means nothing was injected for this triple yet.
        return await self._request(
            "DELETE",
            f"/contracts/policies/offering/{contract_id}/{offering_id}/{participant_id}",
            idempotency_key=idempotency_key,
            missing_ok=True,
        )

    async def inject_roles_and_obligations(
        self, contract_id: str, items: list[RoleObligation]
    ) -> Any:
        return await self._request(
            "PUT",
            f"/contracts/policies/{contract_id}",
            json=[item.to_document() for item in items],
        )
