"""
Exchange Negotiation: Common Primitives

Shared base classes and utilities used across all systems.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from ulid import ULID


def new_id() -> str:
    """Generate a new ULID string. Time-sortable, globally unique."""
    return str(ULID())


def utc_now() -> datetime:
    """Current UTC time, timezone-aware."""
    return datetime.now(timezone.utc)


def document_id(value: Any) -> str:
    """
    Reduce a reference to its bare identifier.

    References arrive either as plain ids or as expanded documents
    (``{"id": ...}``, ``{"_id": ...}`` or a model with an ``id`` attribute).
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        ref = value.get("id", value.get("_id", ""))
        return str(ref) if ref is not None else ""
    ref = getattr(value, "id", None)
    if ref is not None:
        return str(ref)
    return str(value)


# ─── Base Models ──────────────────────────────────────────────────


class NegotiationBaseModel(BaseModel):
    """
    Base model for all primitives. Fields are snake_case in Python and
    camelCase on the wire.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        from_attributes=True,
        alias_generator=to_camel,
    )

    def to_document(self) -> dict[str, Any]:
        """JSON-ready dict using wire (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True)


class Timestamped(NegotiationBaseModel):
    """Mixin for models with creation / update timestamps."""

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def touch(self) -> None:
        self.updated_at = utc_now()


class Identified(NegotiationBaseModel):
    """Mixin for models with ULID IDs."""

    id: str = Field(default_factory=new_id)


class Document(Identified, Timestamped):
    """A persisted, versioned record."""

    schema_version: str = "1"
