"""Organization slug to schema identifier mapping.

This is the only place tenant-controlled input becomes a SQL identifier.
Identifiers cannot be bound as query parameters, so every schema name that is
interpolated into SQL must be a ``SchemaIdentifier`` produced here.
"""

import re
from dataclasses import dataclass

from tenantflow.tenancy.errors import InvalidSlugError

SCHEMA_PREFIX = "org_"
SCHEMA_PATTERN = re.compile(r"org_[a-z0-9_]+")
IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# PostgreSQL silently truncates longer identifiers (NAMEDATALEN - 1)
MAX_IDENTIFIER_LENGTH = 63


@dataclass(frozen=True)
class SchemaIdentifier:
    """Validated tenant schema name (``org_[a-z0-9_]+``)."""

    value: str

    def __post_init__(self) -> None:
        if not SCHEMA_PATTERN.fullmatch(self.value):
            raise InvalidSlugError(self.value, "schema name must match org_[a-z0-9_]+")
        if len(self.value) > MAX_IDENTIFIER_LENGTH:
            raise InvalidSlugError(
                self.value, f"schema name longer than {MAX_IDENTIFIER_LENGTH} characters"
            )

    @property
    def quoted(self) -> str:
        """Double-quoted form for DDL/DML interpolation."""
        return f'"{self.value}"'

    def __str__(self) -> str:
        return self.value


def resolve_schema_name(slug: str) -> SchemaIdentifier:
    """Map an organization slug to its schema identifier.

    Lower-cases the slug, replaces hyphens with underscores and prefixes
    ``org_``. Pure and deterministic.

    Raises:
        InvalidSlugError: If the normalized name contains anything outside
            ``[a-z0-9_]`` or is empty.
    """
    if not isinstance(slug, str) or not slug:
        raise InvalidSlugError(str(slug), "slug is empty")

    normalized = slug.lower().replace("-", "_")
    candidate = f"{SCHEMA_PREFIX}{normalized}"

    if not SCHEMA_PATTERN.fullmatch(candidate):
        raise InvalidSlugError(slug)

    return SchemaIdentifier(candidate)


def quote_identifier(name: str) -> str:
    """Quote a table, column or index name after validating it.

    Only names from static catalogs and entity mappings reach this function.
    """
    if not IDENTIFIER_PATTERN.fullmatch(name) or len(name) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(f"Unsafe SQL identifier: {name!r}")
    return f'"{name}"'


def qualified(schema: SchemaIdentifier, table: str) -> str:
    """Render ``"org_x"."Table"``."""
    return f"{schema.quoted}.{quote_identifier(table)}"
