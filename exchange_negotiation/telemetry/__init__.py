"""
Exchange Negotiation: Observability Infrastructure

Structured logging.
"""

from exchange_negotiation.telemetry.logging import setup_logging

__all__ = ["setup_logging"]
