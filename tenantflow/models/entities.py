"""Tenant entities read through the generic repository.

Column names inside tenant schemas are camelCase; fields are snake_case with
the column name as alias.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class TenantEntity(BaseModel):
    """Common columns of every tenant table."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    organization_id: str = Field(..., alias="organizationId")
    created_at: datetime | None = Field(None, alias="createdAt")
    updated_at: datetime | None = Field(None, alias="updatedAt")


class Campaign(TenantEntity):
    """Advertising campaign."""

    name: str
    advertiser_id: str = Field(..., alias="advertiserId")
    agency_id: str | None = Field(None, alias="agencyId")
    start_date: datetime = Field(..., alias="startDate")
    end_date: datetime = Field(..., alias="endDate")
    budget: float | None = None
    spent: float = 0
    impressions: int = 0
    probability: int = 10
    status: str = "draft"


class Show(TenantEntity):
    """Podcast show."""

    name: str
    description: str | None = None
    host: str | None = None
    category: str | None = None
    is_active: bool = Field(True, alias="isActive")


class Episode(TenantEntity):
    """Episode of a show."""

    show_id: str = Field(..., alias="showId")
    title: str
    episode_number: int = Field(0, alias="episodeNumber")
    air_date: datetime | None = Field(None, alias="airDate")
    status: str = "draft"


class Advertiser(TenantEntity):
    """Advertiser account."""

    name: str
    agency_id: str | None = Field(None, alias="agencyId")
    contact_email: str | None = Field(None, alias="contactEmail")
    industry: str | None = None
    is_active: bool = Field(True, alias="isActive")
    seller_id: str | None = Field(None, alias="sellerId")
