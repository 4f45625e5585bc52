"""
Exchange Negotiation: Request Dependencies

The authenticated participant id is set on every request by the identity
gateway in front of the service (``server.actor_header``). It is resolved
here and passed explicitly into every negotiation operation.
"""

from __future__ import annotations

from fastapi import Request

from exchange_negotiation.primitives.errors import Unauthorized
from exchange_negotiation.systems.negotiation.service import NegotiationService

_DEFAULT_ACTOR_HEADER = "X-Participant-Id"


def get_actor_id(request: Request) -> str:
    config = getattr(request.app.state, "config", None)
    header = config.server.actor_header if config is not None else _DEFAULT_ACTOR_HEADER
    actor_id = request.headers.get(header, "").strip()
    if not actor_id:
        raise Unauthorized("Missing authenticated participant")
    return actor_id


def get_negotiation_service(request: Request) -> NegotiationService:
    return request.app.state.negotiation  # type: ignore[no-any-return]
