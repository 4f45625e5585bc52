"""Exchange Negotiation: HTTP API."""
