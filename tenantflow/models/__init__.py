"""Models package - re-exports for convenience."""

from tenantflow.models.admin import (
    PoolHealthOut,
    PoolStatsOut,
    ProvisioningStatusOut,
    ProvisionResponse,
    ProvisionResultOut,
)
from tenantflow.models.entities import Advertiser, Campaign, Episode, Show, TenantEntity

__all__ = [
    # Tenant entities
    "TenantEntity",
    "Campaign",
    "Show",
    "Episode",
    "Advertiser",
    # Admin API
    "PoolStatsOut",
    "PoolHealthOut",
    "ProvisionResultOut",
    "ProvisionResponse",
    "ProvisioningStatusOut",
]
