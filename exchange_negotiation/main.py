"""
Exchange Negotiation: Application Entry Point

FastAPI application. Startup loads configuration, configures logging,
connects the document store and the contract service, and optionally seeds
the catalog.

`exchange-negotiation` (or `uvicorn exchange_negotiation.main:app`)
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

# Load .env file before any configuration is loaded
load_dotenv()

from exchange_negotiation import __version__
from exchange_negotiation.api.routers import negotiation_router
from exchange_negotiation.clients.contract_service import ContractServiceClient
from exchange_negotiation.clients.document_store import create_document_store
from exchange_negotiation.clients.redis import RedisClient
from exchange_negotiation.config import load_catalog_seed, load_config
from exchange_negotiation.primitives.errors import NegotiationError
from exchange_negotiation.systems.negotiation.service import NegotiationService
from exchange_negotiation.telemetry.logging import setup_logging

if TYPE_CHECKING:
    from starlette.requests import Request

logger = structlog.get_logger("exchange_negotiation.main")


# ─── Application State ───────────────────────────────────────────
# These are set during startup and accessible via app.state


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown sequence."""
    # ── 1. Load configuration ─────────────────────────────────
    config = load_config(_config_path())
    app.state.config = config

    # ── 2. Logging ────────────────────────────────────────────
    setup_logging(config.logging, instance_id=config.instance_id)
    logger.info("negotiation_starting", instance_id=config.instance_id, version=__version__)

    # ── 3. Document store ─────────────────────────────────────
    redis_client: RedisClient | None = None
    if config.storage.backend == "redis":
        redis_client = RedisClient(config.redis)
        await redis_client.connect()
    store = create_document_store(config.storage, redis_client)
    app.state.store = store

    # ── 4. Contract service ───────────────────────────────────
    contracts = ContractServiceClient(config.contract_service)
    app.state.contracts = contracts

    # ── 5. Negotiation service ────────────────────────────────
    negotiation = NegotiationService(config, store, contracts, contracts)
    app.state.negotiation = negotiation

    # ── 6. Catalog seed (dev / demo) ──────────────────────────
    seed_path = config.catalog.seed_path or os.environ.get("NEGOTIATION_CATALOG_SEED_PATH")
    if seed_path:
        await negotiation.repos.seed_catalog(load_catalog_seed(seed_path))

    logger.info(
        "negotiation_ready",
        storage=config.storage.backend,
        contract_service=config.contract_service.base_url,
    )

    yield

    # ── Shutdown ──────────────────────────────────────────────
    logger.info("negotiation_shutting_down")
    await contracts.close()
    await store.close()


# ─── FastAPI Application ─────────────────────────────────────────

app = FastAPI(
    title="Exchange Negotiation",
    description="Negotiation of exchange configurations and ecosystem memberships",
    version=__version__,
    lifespan=lifespan,
)

_cors_origins = ["http://localhost:3000"]
# Allow additional origins via env var (comma-separated)
_extra_origins = os.environ.get("NEGOTIATION_CORS_ALLOWED_ORIGINS", "")
if _extra_origins:
    _cors_origins.extend(o.strip() for o in _extra_origins.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(negotiation_router)


# ─── Error Handlers ───────────────────────────────────────────────


@app.exception_handler(NegotiationError)
async def negotiation_error_handler(request: Request, exc: NegotiationError) -> JSONResponse:
    logger.info(
        "negotiation_request_rejected",
        path=request.url.path,
        status=exc.status_code,
        error=exc.error,
        message=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("negotiation_request_failed", path=request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"code": 500, "errorMsg": "Internal error", "message": "An unexpected error occurred"},
    )


# ─── API Key Authentication Middleware ─────────────────────────────
# Protects all /api/v1/* endpoints. /health is always public.
# When no API keys are configured (dev mode), all requests pass through.


class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Validates the service API key from the configured header or an
    Authorization Bearer token.

    Protected paths: /api/v1/*
    Public paths: /health, /docs, /openapi.json, /redoc
    """

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if path in ("/health", "/docs", "/openapi.json", "/redoc"):
            return await call_next(request)

        if not path.startswith("/api/v1/"):
            return await call_next(request)

        config = getattr(request.app.state, "config", None)
        if config is None or not config.server.api_keys:
            return await call_next(request)

        api_key = request.headers.get(config.server.api_key_header, "")
        if not api_key:
            auth_header = request.headers.get("authorization", "")
            if auth_header.startswith("Bearer "):
                api_key = auth_header[7:]

        if not api_key or api_key not in config.server.api_keys:
            return JSONResponse(
                status_code=401,
                content={"code": 401, "errorMsg": "Unauthorized operation", "message": "Invalid or missing API key"},
            )

        return await call_next(request)


app.add_middleware(APIKeyMiddleware)


# ─── Health ───────────────────────────────────────────────────────


@app.get("/health")
async def health() -> dict[str, Any]:
    """Service health check."""
    negotiation: NegotiationService | None = getattr(app.state, "negotiation", None)
    if negotiation is None:
        return {"status": "starting", "version": __version__}

    store_health = await negotiation.health()
    overall = "healthy" if store_health.get("status") == "connected" else "degraded"
    return {
        "status": overall,
        "instance_id": app.state.config.instance_id,
        "version": __version__,
        "store": store_health,
    }


# ─── Entry Point ──────────────────────────────────────────────────


def _config_path() -> str:
    return os.environ.get("NEGOTIATION_CONFIG_PATH", "config/default.yaml")


def run() -> None:
    """Serve the app on the configured ``server.host`` / ``server.port``."""
    import uvicorn

    config = load_config(_config_path())
    uvicorn.run(
        "exchange_negotiation.main:app",
        host=config.server.host,
        port=config.server.port,
    )
