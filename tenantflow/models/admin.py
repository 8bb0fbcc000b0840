"""Response models for the administration API."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class PoolStatsOut(BaseModel):
    """Counters for one schema pool."""

    schema_name: str
    total_count: int
    idle_count: int
    waiting_count: int
    max_connections: int


class PoolHealthOut(BaseModel):
    """Outcome of probing every live pool."""

    healthy: bool
    issues: list[str]
    checked: int


class ProvisionResultOut(BaseModel):
    """Provisioning result as returned to an administrator."""

    success: bool
    schema_name: str
    changes: list[str]
    errors: list[str]
    summary: dict[str, Any]
    duration_ms: int


class ProvisionResponse(BaseModel):
    """Response of the provision endpoint; ``result`` is absent in async mode."""

    audit_id: str | None
    mode: str
    result: ProvisionResultOut | None = None


class ProvisioningStatusOut(BaseModel):
    """Latest provisioning attempt for an organization."""

    id: str
    org_id: str
    org_slug: str
    mode: str
    status: str
    summary: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: int | None = None
    user_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
