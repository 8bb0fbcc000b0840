"""Generic CRUD over tenant tables.

SQL is assembled from three things only: the validated schema identifier,
table and column names from a static ``EntityMapping``, and named bind
parameters for every value.
"""

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from tenantflow.db.context import TenantContext
from tenantflow.db.executor import QueryExecutor
from tenantflow.models.entities import Advertiser, Campaign, Episode, Show
from tenantflow.tenancy.schema_names import SchemaIdentifier, qualified, quote_identifier

T = TypeVar("T", bound=BaseModel)

_COMMON_COLUMNS = ("id", "organizationId", "createdAt", "updatedAt")


@dataclass(frozen=True)
class EntityMapping(Generic[T]):
    """Table, allowed columns and row factory for one entity type."""

    table: str
    model: type[T]
    columns: tuple[str, ...]
    default_order: str = "createdAt"

    def __post_init__(self) -> None:
        quote_identifier(self.table)
        for column in self.columns:
            quote_identifier(column)
        if self.default_order not in self.columns:
            raise ValueError(f"Order column {self.default_order} not mapped for {self.table}")

    def column(self, name: str) -> str:
        """Quoted column name; rejects anything not in the mapping."""
        if name not in self.columns:
            raise ValueError(f"Unknown column {name!r} for {self.table}")
        return quote_identifier(name)

    def to_entity(self, row: Mapping[str, Any]) -> T:
        return self.model.model_validate(dict(row))


def build_where(
    mapping: EntityMapping[Any], where: Mapping[str, Any] | None, start: int = 0
) -> tuple[str, dict[str, Any]]:
    """Render a WHERE clause with ``:pN`` binds.

    ``None`` becomes ``IS NULL``; lists and tuples become ``IN`` (an empty one
    matches nothing); everything else is equality.
    """
    if not where:
        return "", {}

    clauses: list[str] = []
    params: dict[str, Any] = {}
    n = start
    for name, value in where.items():
        column = mapping.column(name)
        if value is None:
            clauses.append(f"{column} IS NULL")
        elif isinstance(value, (list, tuple, set, frozenset)):
            if not value:
                clauses.append("FALSE")
                continue
            binds = []
            for item in value:
                params[f"p{n}"] = item
                binds.append(f":p{n}")
                n += 1
            clauses.append(f"{column} IN ({', '.join(binds)})")
        else:
            params[f"p{n}"] = value
            clauses.append(f"{column} = :p{n}")
            n += 1

    return " WHERE " + " AND ".join(clauses), params


class TenantRepository(Generic[T]):
    """CRUD for one entity type inside one tenant schema.

    Reads go through ``safe_query`` and degrade to empty results; writes go
    through ``query`` and raise typed errors.
    """

    def __init__(
        self, executor: QueryExecutor, mapping: EntityMapping[T], schema: SchemaIdentifier
    ) -> None:
        self._executor = executor
        self._mapping = mapping
        self._schema = schema
        self._table = qualified(schema, mapping.table)

    @classmethod
    def for_context(
        cls, executor: QueryExecutor, mapping: EntityMapping[T], context: TenantContext
    ) -> "TenantRepository[T]":
        return cls(executor, mapping, context.schema_name)

    @property
    def schema(self) -> SchemaIdentifier:
        return self._schema

    async def find_many(
        self,
        where: Mapping[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[T]:
        clause, params = build_where(self._mapping, where)
        order = self._mapping.column(order_by or self._mapping.default_order)
        sql = f"SELECT * FROM {self._table}{clause} ORDER BY {order} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = int(limit)
        if offset is not None:
            sql += " OFFSET :offset"
            params["offset"] = int(offset)

        result = await self._executor.safe_query(self._schema, sql, params)
        return [self._mapping.to_entity(row) for row in result.data]

    async def find_unique(self, entity_id: str) -> T | None:
        result = await self._executor.safe_query(
            self._schema, f'SELECT * FROM {self._table} WHERE "id" = :id LIMIT 1', {"id": entity_id}
        )
        return self._mapping.to_entity(result.data[0]) if result.data else None

    async def count(self, where: Mapping[str, Any] | None = None) -> int:
        clause, params = build_where(self._mapping, where)
        result = await self._executor.safe_query(
            self._schema, f"SELECT COUNT(*) AS count FROM {self._table}{clause}", params
        )
        return int(result.data[0]["count"]) if result.data else 0

    async def create(self, data: Mapping[str, Any]) -> T:
        values = dict(data)
        values.setdefault("id", uuid.uuid4().hex)
        columns, binds, params = self._values(values)
        rows = await self._executor.query(
            self._schema,
            f"INSERT INTO {self._table} ({', '.join(columns)}) "
            f"VALUES ({', '.join(binds)}) RETURNING *",
            params,
        )
        return self._mapping.to_entity(rows[0])

    async def update(self, entity_id: str, data: Mapping[str, Any]) -> T | None:
        values = {k: v for k, v in data.items() if k not in ("id", "updatedAt")}
        if not values:
            return await self.find_unique(entity_id)

        columns, binds, params = self._values(values)
        assignments = [f"{c} = {b}" for c, b in zip(columns, binds, strict=True)]
        assignments.append('"updatedAt" = CURRENT_TIMESTAMP')
        params["id"] = entity_id
        rows = await self._executor.query(
            self._schema,
            f"UPDATE {self._table} SET {', '.join(assignments)} WHERE \"id\" = :id RETURNING *",
            params,
        )
        return self._mapping.to_entity(rows[0]) if rows else None

    async def delete(self, entity_id: str) -> bool:
        rows = await self._executor.query(
            self._schema,
            f'DELETE FROM {self._table} WHERE "id" = :id RETURNING "id"',
            {"id": entity_id},
        )
        return bool(rows)

    def _values(self, values: Mapping[str, Any]) -> tuple[list[str], list[str], dict[str, Any]]:
        columns: list[str] = []
        binds: list[str] = []
        params: dict[str, Any] = {}
        for n, (name, value) in enumerate(values.items()):
            columns.append(self._mapping.column(name))
            binds.append(f":p{n}")
            params[f"p{n}"] = value
        return columns, binds, params


def _mapping(table: str, model: type[T], columns: Sequence[str]) -> EntityMapping[T]:
    return EntityMapping(table=table, model=model, columns=(*_COMMON_COLUMNS, *columns))


CAMPAIGNS = _mapping(
    "Campaign",
    Campaign,
    (
        "name",
        "advertiserId",
        "agencyId",
        "startDate",
        "endDate",
        "budget",
        "spent",
        "impressions",
        "probability",
        "status",
    ),
)
SHOWS = _mapping("Show", Show, ("name", "description", "host", "category", "isActive"))
EPISODES = _mapping(
    "Episode", Episode, ("showId", "title", "episodeNumber", "airDate", "status")
)
ADVERTISERS = _mapping(
    "Advertiser",
    Advertiser,
    ("name", "agencyId", "contactEmail", "industry", "isActive", "sellerId"),
)
