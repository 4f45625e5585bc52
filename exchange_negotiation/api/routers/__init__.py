from exchange_negotiation.api.routers.negotiation import router as negotiation_router

__all__ = ["negotiation_router"]
