"""
Exchange Negotiation: Configuration System

All configuration is Pydantic-validated and loaded from:
1. default.yaml (defaults)
2. Environment variables (overrides)
3. Catalog seed (optional participants / offerings / ecosystems fixture)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ─── Sub-configs ──────────────────────────────────────────────────


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000
    api_key_header: str = "X-Negotiation-API-Key"
    # When empty, API key auth is disabled (dev mode).
    api_keys: list[str] = Field(default_factory=list)
    # Header carrying the authenticated participant id, set by the gateway in front of us.
    actor_header: str = "X-Participant-Id"


class RedisConfig(BaseModel):
    url: str = "redis://redis:6379/0"
    prefix: str = "negotiation"
    password: str = ""

    @property
    def full_url(self) -> str:
        """Build URL with password injected."""
        clean_pw = self.password.strip() if self.password else ""
        if clean_pw and "://" in self.url:
            scheme, rest = self.url.split("://", 1)
            return f"{scheme}://:{clean_pw}@{rest}"
        return self.url


class StorageConfig(BaseModel):
    backend: str = "redis"  # "redis" | "memory"
    lock_timeout_s: float = 30.0
    lock_blocking_timeout_s: float = 10.0


class ContractServiceConfig(BaseModel):
    base_url: str = "http://contract:8888"
    api_key: str = ""
    timeout_s: float = 10.0

    @model_validator(mode="after")
    def _strip(self) -> ContractServiceConfig:
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        if self.api_key:
            object.__setattr__(self, "api_key", self.api_key.strip())
        return self


class CatalogConfig(BaseModel):
    # Public catalog URL used to build participant / offering resource URLs.
    api_url: str = "http://localhost:4040/v1"
    seed_path: str | None = None

    def participant_url(self, participant_id: str) -> str:
        return f"{self.api_url.rstrip('/')}/catalog/participants/{participant_id}"

    def offering_url(self, offering_id: str) -> str:
        return f"{self.api_url.rstrip('/')}/catalog/serviceofferings/{offering_id}"


class ReconciliationConfig(BaseModel):
    max_attempts: int = 3
    base_delay_s: float = 0.5


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # "console" | "json"


class CatalogSeed(BaseModel):
    """Raw catalog fixture. Entries are validated by the repositories on load."""

    participants: list[dict[str, Any]] = Field(default_factory=list)
    service_offerings: list[dict[str, Any]] = Field(default_factory=list, alias="serviceOfferings")
    ecosystems: list[dict[str, Any]] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class NegotiationConfig(BaseSettings):
    """
    Root configuration. Loads from YAML, overridable by env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="NEGOTIATION_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    instance_id: str = "negotiation-default"

    server: ServerConfig = Field(default_factory=ServerConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    contract_service: ContractServiceConfig = Field(default_factory=ContractServiceConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> NegotiationConfig:
    """
    Load configuration from YAML file, then apply environment variable overrides.
    """
    raw: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}

    # Inject secrets from environment
    import os

    if redis_url := os.environ.get("NEGOTIATION_REDIS__URL"):
        raw.setdefault("redis", {})["url"] = redis_url
    if redis_pw := os.environ.get("NEGOTIATION_REDIS_PASSWORD"):
        raw.setdefault("redis", {})["password"] = redis_pw
    if contract_url := os.environ.get("NEGOTIATION_CONTRACT_SERVICE__BASE_URL"):
        raw.setdefault("contract_service", {})["base_url"] = contract_url
    if contract_key := os.environ.get("NEGOTIATION_CONTRACT_SERVICE_API_KEY"):
        raw.setdefault("contract_service", {})["api_key"] = contract_key
    if catalog_url := os.environ.get("NEGOTIATION_CATALOG__API_URL"):
        raw.setdefault("catalog", {})["api_url"] = catalog_url
    if storage_backend := os.environ.get("NEGOTIATION_STORAGE__BACKEND"):
        raw.setdefault("storage", {})["backend"] = storage_backend
    if instance_id := os.environ.get("NEGOTIATION_INSTANCE_ID"):
        raw["instance_id"] = instance_id

    if overrides:
        raw = _deep_merge(raw, overrides)

    return NegotiationConfig(**raw)


def load_catalog_seed(seed_path: str | Path) -> CatalogSeed:
    """Load a catalog fixture (participants, service offerings, ecosystems)."""
    path = Path(seed_path)
    if not path.exists():
        raise FileNotFoundError(f"Catalog seed not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return CatalogSeed(**raw)
