"""Exchange Negotiation: bilateral and ecosystem negotiation."""

from exchange_negotiation.systems.negotiation.bilateral import BilateralNegotiationStateMachine
from exchange_negotiation.systems.negotiation.ecosystem import EcosystemNegotiationStateMachine
from exchange_negotiation.systems.negotiation.ownership import OwnershipVerifier
from exchange_negotiation.systems.negotiation.reconciler import EcosystemMembershipReconciler
from exchange_negotiation.systems.negotiation.service import NegotiationService

__all__ = [
    "BilateralNegotiationStateMachine",
    "EcosystemMembershipReconciler",
    "EcosystemNegotiationStateMachine",
    "NegotiationService",
    "OwnershipVerifier",
]
