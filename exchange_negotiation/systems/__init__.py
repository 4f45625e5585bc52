"""Exchange Negotiation: negotiation systems."""
