"""Tenancy error taxonomy.

Read paths (``safe_query``) hand these back inside a result object; write paths
and authorization checks raise them.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Classification of a failed tenant query."""

    relation_missing = "relation_missing"
    permission_denied = "permission_denied"
    connection_error = "connection_error"
    timeout = "timeout"
    other = "other"


class TenancyError(Exception):
    """Base class for all tenancy errors."""

    pass


class InvalidSlugError(TenancyError):
    """Organization slug cannot be turned into a schema identifier."""

    def __init__(self, slug: str, reason: str = "invalid characters") -> None:
        super().__init__(f"Invalid organization slug {slug!r}: {reason}")
        self.slug = slug
        self.reason = reason


class QueryError(TenancyError):
    """A query against a tenant schema failed."""

    kind: ErrorKind = ErrorKind.other

    def __init__(self, message: str, *, schema: str, elapsed_ms: float = 0.0) -> None:
        super().__init__(message)
        self.schema = schema
        self.elapsed_ms = elapsed_ms


class SchemaNotFoundError(QueryError):
    """Tenant schema does not exist yet (not provisioned)."""

    kind = ErrorKind.relation_missing


class TableMissingError(QueryError):
    """Target relation or column is absent from the tenant schema."""

    kind = ErrorKind.relation_missing


class PermissionDeniedError(QueryError):
    """Database role lacks privileges on the tenant schema."""

    kind = ErrorKind.permission_denied


class PoolConnectionError(QueryError):
    """Connection to the database failed; the schema pool gets evicted."""

    kind = ErrorKind.connection_error


class QueryTimeoutError(QueryError):
    """Query or connection acquisition exceeded its time limit."""

    kind = ErrorKind.timeout


class UnauthorizedCrossTenantAccess(TenancyError):
    """A non-master context tried to act on a foreign organization."""

    def __init__(self, user_id: str, target_org_id: str, reason: str) -> None:
        super().__init__(reason)
        self.user_id = user_id
        self.target_org_id = target_org_id
        self.reason = reason


class ProvisioningError(TenancyError):
    """Schema could not be converged; carries the individual step errors."""

    def __init__(self, schema: str, errors: list[str]) -> None:
        super().__init__(f"Provisioning {schema} failed: {'; '.join(errors)}")
        self.schema = schema
        self.errors = errors
