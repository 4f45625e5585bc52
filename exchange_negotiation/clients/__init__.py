"""
Exchange Negotiation: External Service Clients

Connection management for Redis, the document store and the contract service.
"""

from exchange_negotiation.clients.contract_service import (
    ContractGateway,
    ContractServiceClient,
    OfferingPolicyInjection,
    PolicyInjectionGateway,
    RoleObligation,
)
from exchange_negotiation.clients.document_store import (
    DocumentStore,
    InMemoryDocumentStore,
    RedisDocumentStore,
    create_document_store,
)
from exchange_negotiation.clients.redis import RedisClient

__all__ = [
    "ContractGateway",
    "ContractServiceClient",
    "DocumentStore",
    "InMemoryDocumentStore",
    "OfferingPolicyInjection",
    "PolicyInjectionGateway",
    "RedisClient",
    "RedisDocumentStore",
    "RoleObligation",
    "create_document_store",
]
