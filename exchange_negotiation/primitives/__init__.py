"""
Exchange Negotiation: Shared Primitives

Every system communicates through these types.
"""

from exchange_negotiation.primitives.common import (
    Document,
    Identified,
    NegotiationBaseModel,
    Timestamped,
    document_id,
    new_id,
    utc_now,
)
from exchange_negotiation.primitives.errors import (
    Conflict,
    Forbidden,
    GatewayFailure,
    InvalidTransition,
    NegotiationError,
    NegotiationTerminated,
    NotFound,
    OwnershipViolation,
    PreconditionFailed,
    Unauthorized,
)
from exchange_negotiation.primitives.policies import (
    MemberOffering,
    PolicyConfiguration,
    PolicyRule,
    PricingConfiguration,
    PricingTerms,
    pricing_index,
    referenced_offerings,
)

__all__ = [
    "Conflict",
    "Document",
    "Forbidden",
    "GatewayFailure",
    "Identified",
    "InvalidTransition",
    "MemberOffering",
    "NegotiationBaseModel",
    "NegotiationError",
    "NegotiationTerminated",
    "NotFound",
    "OwnershipViolation",
    "PolicyConfiguration",
    "PolicyRule",
    "PreconditionFailed",
    "PricingConfiguration",
    "PricingTerms",
    "Timestamped",
    "Unauthorized",
    "document_id",
    "new_id",
    "pricing_index",
    "referenced_offerings",
    "utc_now",
]
