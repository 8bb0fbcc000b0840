"""Request context for tenancy enforcement."""

from dataclasses import dataclass

from tenantflow.tenancy.schema_names import SchemaIdentifier


@dataclass(frozen=True)
class TenantContext:
    """Who is acting, for which organization, against which schema.

    ``schema_name`` is always derived from ``organization_slug`` by
    ``resolve_schema_name``; it is never taken from the request.
    """

    user_id: str
    organization_id: str
    organization_slug: str
    schema_name: SchemaIdentifier
    role: str
    is_master: bool = False
