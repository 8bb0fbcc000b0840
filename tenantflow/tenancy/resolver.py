"""Request -> TenantContext resolution."""

import logging

from fastapi import Request

from tenantflow.db.context import TenantContext
from tenantflow.db.repositories import IdentityService, OrganizationDirectory
from tenantflow.tenancy.errors import InvalidSlugError
from tenantflow.tenancy.schema_names import resolve_schema_name

logger = logging.getLogger(__name__)


class TenantContextResolver:
    """Derives who is acting and against which schema.

    ``resolve`` returns None for unauthenticated requests; turning that into a
    401 is the HTTP layer's job.
    """

    def __init__(
        self,
        identity: IdentityService,
        directory: OrganizationDirectory,
        *,
        master_role: str = "master",
        cookie_name: str = "auth-token",
    ) -> None:
        self._identity = identity
        self._directory = directory
        self._master_role = master_role
        self._cookie_name = cookie_name

    def extract_token(self, request: Request) -> str | None:
        """Session cookie first, then ``Authorization: Bearer``."""
        token = request.cookies.get(self._cookie_name)
        if token:
            return token

        authorization = request.headers.get("authorization")
        if authorization and authorization.startswith("Bearer "):
            return authorization[7:].strip() or None
        return None

    async def resolve(self, request: Request) -> TenantContext | None:
        token = self.extract_token(request)
        if token is None:
            return None
        return await self.resolve_token(token)

    async def resolve_token(self, token: str) -> TenantContext | None:
        """Resolve a raw session token.

        The schema comes from the directory's slug for the user's organization,
        never from anything the request supplies.
        """
        identity = await self._identity.resolve_token(token)
        if identity is None:
            return None

        org = await self._directory.get_organization(identity.organization_id)
        if org is None or not org.is_active:
            logger.info(
                f"No active organization for user {identity.user_id}",
                extra={"structured": {"organization_id": identity.organization_id}},
            )
            return None

        try:
            schema = resolve_schema_name(org.slug)
        except InvalidSlugError as e:
            logger.warning(f"Organization {org.id} has an unusable slug: {e}")
            return None

        return TenantContext(
            user_id=identity.user_id,
            organization_id=org.id,
            organization_slug=org.slug,
            schema_name=schema,
            role=identity.role,
            is_master=identity.role == self._master_role,
        )
