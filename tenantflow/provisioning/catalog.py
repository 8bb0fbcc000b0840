"""Expected structure of every tenant schema.

The catalog is independent of any tenant. Provisioning makes each ``org_*``
schema converge toward it, additively: tables, columns, indexes and
organization-scoped default rows. Entries are only ever appended here; nothing
is renamed or dropped, because convergence never removes anything.
"""

import uuid
from dataclasses import dataclass, field

from tenantflow.tenancy.schema_names import SchemaIdentifier, qualified, quote_identifier

CATALOG_VERSION = "2025.08"

TEXT = "TEXT"
TEXT_NN = "TEXT NOT NULL"
INT = "INTEGER"
INT0 = "INTEGER NOT NULL DEFAULT 0"
FLOAT = "DOUBLE PRECISION"
FLOAT0 = "DOUBLE PRECISION NOT NULL DEFAULT 0"
BOOL_TRUE = "BOOLEAN NOT NULL DEFAULT true"
BOOL_FALSE = "BOOLEAN NOT NULL DEFAULT false"
TS = "TIMESTAMP(3)"
TS_NN = "TIMESTAMP(3) NOT NULL"
TS_NOW = "TIMESTAMP(3) NOT NULL DEFAULT CURRENT_TIMESTAMP"
JSON = "JSONB"
JSON_OBJ = "JSONB NOT NULL DEFAULT '{}'::jsonb"


@dataclass(frozen=True)
class ColumnSpec:
    """Column name plus its DDL type/constraint fragment."""

    name: str
    ddl: str

    def render(self) -> str:
        return f"{quote_identifier(self.name)} {self.ddl}"


@dataclass(frozen=True)
class TableSpec:
    """Expected table."""

    name: str
    columns: tuple[ColumnSpec, ...]
    primary_key: str = "id"

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    def create_sql(self, schema: SchemaIdentifier) -> str:
        body = [c.render() for c in self.columns]
        body.append(
            f"CONSTRAINT {quote_identifier(self.name + '_pkey')} "
            f"PRIMARY KEY ({quote_identifier(self.primary_key)})"
        )
        joined = ",\n    ".join(body)
        return f"CREATE TABLE IF NOT EXISTS {qualified(schema, self.name)} (\n    {joined}\n)"

    def add_column_sql(self, schema: SchemaIdentifier, column: ColumnSpec) -> str:
        return (
            f"ALTER TABLE {qualified(schema, self.name)} "
            f"ADD COLUMN IF NOT EXISTS {column.render()}"
        )


@dataclass(frozen=True)
class IndexSpec:
    """Expected secondary index."""

    name: str
    table: str
    columns: tuple[str, ...]
    unique: bool = False

    def create_sql(self, schema: SchemaIdentifier) -> str:
        unique = "UNIQUE " if self.unique else ""
        cols = ", ".join(quote_identifier(c) for c in self.columns)
        return (
            f"CREATE {unique}INDEX IF NOT EXISTS {quote_identifier(self.name)} "
            f"ON {qualified(schema, self.table)} ({cols})"
        )


@dataclass(frozen=True)
class SeedSpec:
    """Organization-scoped default row, inserted once per organization.

    ``values`` must only target text columns; everything else comes from the
    column defaults.
    """

    table: str
    id_prefix: str
    values: tuple[tuple[str, str], ...] = ()

    def insert_sql(self, schema: SchemaIdentifier) -> str:
        target = qualified(schema, self.table)
        columns = ["id", "organizationId", *(name for name, _ in self.values)]
        binds = [":id", ":organization_id", *(f":v{i}" for i in range(len(self.values)))]
        return (
            f"INSERT INTO {target} ({', '.join(quote_identifier(c) for c in columns)}) "
            f"SELECT {', '.join(binds)} "
            f"WHERE NOT EXISTS (SELECT 1 FROM {target} WHERE \"organizationId\" = :organization_id) "
            'RETURNING "id"'
        )

    def exists_sql(self, schema: SchemaIdentifier) -> str:
        return (
            f"SELECT 1 FROM {qualified(schema, self.table)} "
            f'WHERE "organizationId" = :organization_id LIMIT 1'
        )

    def new_id(self) -> str:
        return f"{self.id_prefix}-{uuid.uuid4().hex}"

    def params(self, row_id: str, org_id: str) -> dict[str, str]:
        params = {"id": row_id, "organization_id": org_id}
        params.update({f"v{i}": value for i, (_, value) in enumerate(self.values)})
        return params


@dataclass(frozen=True)
class SchemaCatalog:
    """Full expected tenant schema for one product version."""

    version: str
    tables: tuple[TableSpec, ...]
    indexes: tuple[IndexSpec, ...] = ()
    seeds: tuple[SeedSpec, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        names = [t.name for t in self.tables]
        if len(names) != len(set(names)):
            raise ValueError("Duplicate table in schema catalog")
        for index in self.indexes:
            if index.table not in names:
                raise ValueError(f"Index {index.name} targets unknown table {index.table}")
        for seed in self.seeds:
            if seed.table not in names:
                raise ValueError(f"Seed targets unknown table {seed.table}")

    @property
    def table_names(self) -> tuple[str, ...]:
        return tuple(t.name for t in self.tables)

    def table(self, name: str) -> TableSpec:
        for spec in self.tables:
            if spec.name == name:
                return spec
        raise KeyError(name)

    def __len__(self) -> int:
        return len(self.tables)


def _table(name: str, *columns: tuple[str, str], org_scoped: bool = True) -> TableSpec:
    cols = [ColumnSpec("id", TEXT_NN)]
    cols.extend(ColumnSpec(col, ddl) for col, ddl in columns)
    if org_scoped:
        cols.append(ColumnSpec("organizationId", TEXT_NN))
    cols.append(ColumnSpec("createdAt", TS_NOW))
    cols.append(ColumnSpec("updatedAt", TS_NOW))
    return TableSpec(name=name, columns=tuple(cols))


_TABLES = (
    # Core business
    _table(
        "Campaign",
        ("name", TEXT_NN),
        ("advertiserId", TEXT_NN),
        ("agencyId", TEXT),
        ("startDate", TS_NN),
        ("endDate", TS_NN),
        ("budget", FLOAT),
        ("spent", FLOAT0),
        ("impressions", INT0),
        ("targetImpressions", INT0),
        ("probability", "INTEGER NOT NULL DEFAULT 10"),
        ("status", "TEXT NOT NULL DEFAULT 'draft'"),
        ("createdBy", TEXT),
        ("updatedBy", TEXT),
    ),
    _table(
        "Show",
        ("name", TEXT_NN),
        ("description", TEXT),
        ("host", TEXT),
        ("category", TEXT),
        ("releaseFrequency", TEXT),
        ("isActive", BOOL_TRUE),
        ("megaphonePodcastId", TEXT),
        ("revenueSharingType", TEXT),
        ("revenueSharingPercentage", FLOAT),
        ("createdBy", TEXT),
    ),
    _table(
        "Episode",
        ("showId", TEXT_NN),
        ("title", TEXT_NN),
        ("episodeNumber", INT0),
        ("airDate", TS),
        ("duration", INT),
        ("status", "TEXT NOT NULL DEFAULT 'draft'"),
        ("publishUrl", TEXT),
        ("createdBy", TEXT),
    ),
    _table(
        "Agency",
        ("name", TEXT_NN),
        ("contactEmail", TEXT),
        ("contactPhone", TEXT),
        ("website", TEXT),
        ("isActive", BOOL_TRUE),
        ("sellerId", TEXT),
    ),
    _table(
        "Advertiser",
        ("name", TEXT_NN),
        ("agencyId", TEXT),
        ("contactEmail", TEXT),
        ("industry", TEXT),
        ("isActive", BOOL_TRUE),
        ("sellerId", TEXT),
    ),
    _table(
        "AdApproval",
        ("campaignId", TEXT_NN),
        ("showId", TEXT_NN),
        ("status", "TEXT NOT NULL DEFAULT 'pending'"),
        ("submittedBy", TEXT),
        ("approvedBy", TEXT),
        ("feedback", TEXT),
    ),
    _table(
        "AdCreative",
        ("name", TEXT_NN),
        ("advertiserId", TEXT),
        ("campaignId", TEXT),
        ("type", TEXT_NN),
        ("format", TEXT),
        ("duration", INT),
        ("status", "TEXT NOT NULL DEFAULT 'active'"),
    ),
    _table(
        "AnalyticsEvent",
        ("eventType", TEXT_NN),
        ("entityType", TEXT),
        ("entityId", TEXT),
        ("payload", JSON_OBJ),
    ),
    _table(
        "BlockedSpot",
        ("showId", TEXT_NN),
        ("episodeId", TEXT),
        ("placementType", TEXT_NN),
        ("advertiserId", TEXT),
        ("reason", TEXT),
    ),
    _table(
        "BudgetCategory",
        ("name", TEXT_NN),
        ("type", TEXT_NN),
        ("parentCategoryId", TEXT),
        ("isActive", BOOL_TRUE),
    ),
    _table(
        "BudgetEntry",
        ("categoryId", TEXT_NN),
        ("year", INT0),
        ("month", INT0),
        ("budgetAmount", FLOAT0),
        ("actualAmount", FLOAT0),
        ("notes", TEXT),
    ),
    _table(
        "CampaignAnalytics",
        ("campaignId", TEXT_NN),
        ("date", TS_NN),
        ("impressions", INT0),
        ("clicks", INT0),
        ("conversions", INT0),
        ("spent", FLOAT0),
    ),
    _table(
        "CampaignSchedule",
        ("campaignId", TEXT_NN),
        ("name", TEXT_NN),
        ("status", "TEXT NOT NULL DEFAULT 'draft'"),
        ("version", "INTEGER NOT NULL DEFAULT 1"),
        ("totalValue", FLOAT0),
    ),
    _table(
        "Comment",
        ("entityType", TEXT_NN),
        ("entityId", TEXT_NN),
        ("userId", TEXT_NN),
        ("body", TEXT_NN),
    ),
    _table(
        "Contract",
        ("contractNumber", TEXT_NN),
        ("campaignId", TEXT),
        ("advertiserId", TEXT_NN),
        ("status", "TEXT NOT NULL DEFAULT 'draft'"),
        ("totalAmount", FLOAT0),
        ("signedAt", TS),
    ),
    _table(
        "ContractLineItem",
        ("contractId", TEXT_NN),
        ("description", TEXT_NN),
        ("quantity", INT0),
        ("unitPrice", FLOAT0),
    ),
    _table(
        "CreativeUsage",
        ("creativeId", TEXT_NN),
        ("entityType", TEXT_NN),
        ("entityId", TEXT_NN),
        ("impressions", INT0),
    ),
    _table(
        "DeletionRequest",
        ("entityType", TEXT_NN),
        ("entityId", TEXT_NN),
        ("requestedBy", TEXT_NN),
        ("status", "TEXT NOT NULL DEFAULT 'pending'"),
        ("reviewedBy", TEXT),
    ),
    _table(
        "EpisodeAnalytics",
        ("episodeId", TEXT_NN),
        ("date", TS_NN),
        ("downloads", INT0),
        ("listeners", INT0),
        ("completionRate", FLOAT),
    ),
    _table(
        "EpisodeSpot",
        ("episodeId", TEXT_NN),
        ("placementType", TEXT_NN),
        ("campaignId", TEXT),
        ("price", FLOAT),
        ("status", "TEXT NOT NULL DEFAULT 'available'"),
    ),
    _table(
        "Expense",
        ("description", TEXT_NN),
        ("amount", FLOAT0),
        ("category", TEXT),
        ("vendor", TEXT),
        ("status", "TEXT NOT NULL DEFAULT 'pending'"),
    ),
    _table(
        "FinancialData",
        ("year", INT0),
        ("month", INT0),
        ("revenue", FLOAT0),
        ("expenses", FLOAT0),
    ),
    _table(
        "Inventory",
        ("episodeId", TEXT_NN),
        ("showId", TEXT_NN),
        ("preRollSlots", INT0),
        ("midRollSlots", INT0),
        ("postRollSlots", INT0),
        ("preRollAvailable", INT0),
        ("midRollAvailable", INT0),
        ("postRollAvailable", INT0),
    ),
    _table(
        "Invoice",
        ("invoiceNumber", TEXT_NN),
        ("advertiserId", TEXT),
        ("campaignId", TEXT),
        ("amount", FLOAT0),
        ("status", "TEXT NOT NULL DEFAULT 'draft'"),
        ("dueDate", TS),
        ("type", "TEXT NOT NULL DEFAULT 'incoming'"),
    ),
    _table(
        "InvoiceItem",
        ("invoiceId", TEXT_NN),
        ("description", TEXT_NN),
        ("quantity", INT0),
        ("unitPrice", FLOAT0),
        ("amount", FLOAT0),
    ),
    _table(
        "MegaphoneIntegration",
        ("apiToken", TEXT),
        ("networkId", TEXT),
        ("isActive", BOOL_FALSE),
        ("lastSyncAt", TS),
    ),
    _table(
        "Order",
        ("orderNumber", TEXT_NN),
        ("campaignId", TEXT_NN),
        ("advertiserId", TEXT_NN),
        ("status", "TEXT NOT NULL DEFAULT 'draft'"),
        ("totalAmount", FLOAT0),
        ("netAmount", FLOAT0),
    ),
    _table(
        "OrderItem",
        ("orderId", TEXT_NN),
        ("showId", TEXT_NN),
        ("episodeId", TEXT),
        ("placementType", TEXT_NN),
        ("airDate", TS),
        ("rate", FLOAT0),
    ),
    _table(
        "Payment",
        ("invoiceId", TEXT_NN),
        ("amount", FLOAT0),
        ("paymentMethod", TEXT),
        ("paymentDate", TS_NOW),
        ("reference", TEXT),
    ),
    _table(
        "QuickBooksIntegration",
        ("realmId", TEXT),
        ("accessToken", TEXT),
        ("refreshToken", TEXT),
        ("isActive", BOOL_FALSE),
    ),
    _table(
        "QuickBooksSync",
        ("syncType", TEXT_NN),
        ("status", "TEXT NOT NULL DEFAULT 'pending'"),
        ("recordsProcessed", INT0),
        ("errorMessage", TEXT),
    ),
    _table(
        "Reservation",
        ("reservationNumber", TEXT_NN),
        ("campaignId", TEXT),
        ("advertiserId", TEXT_NN),
        ("status", "TEXT NOT NULL DEFAULT 'held'"),
        ("holdDuration", "INTEGER NOT NULL DEFAULT 48"),
        ("expiresAt", TS),
        ("totalAmount", FLOAT0),
    ),
    _table(
        "ReservationItem",
        ("reservationId", TEXT_NN),
        ("showId", TEXT_NN),
        ("episodeId", TEXT),
        ("placementType", TEXT_NN),
        ("rate", FLOAT0),
    ),
    _table(
        "ReservationStatusHistory",
        ("reservationId", TEXT_NN),
        ("fromStatus", TEXT),
        ("toStatus", TEXT_NN),
        ("changedBy", TEXT),
    ),
    _table(
        "ScheduleItem",
        ("scheduleId", TEXT_NN),
        ("showId", TEXT_NN),
        ("episodeId", TEXT),
        ("airDate", TS_NN),
        ("placementType", TEXT_NN),
        ("negotiatedPrice", FLOAT),
    ),
    _table(
        "ShowAnalytics",
        ("showId", TEXT_NN),
        ("date", TS_NN),
        ("downloads", INT0),
        ("subscribers", INT0),
    ),
    _table(
        "ShowMetrics",
        ("showId", TEXT_NN),
        ("totalEpisodes", INT0),
        ("averageListeners", INT0),
        ("monthlyDownloads", INT0),
    ),
    _table(
        "ShowPlacement",
        ("showId", TEXT_NN),
        ("placementType", TEXT_NN),
        ("totalSpots", "INTEGER NOT NULL DEFAULT 1"),
        ("baseRate", FLOAT0),
        ("isActive", BOOL_TRUE),
    ),
    _table(
        "SpotSubmission",
        ("showId", TEXT_NN),
        ("campaignId", TEXT),
        ("submittedBy", TEXT_NN),
        ("status", "TEXT NOT NULL DEFAULT 'pending'"),
        ("audioUrl", TEXT),
    ),
    _table(
        "UploadedFile",
        ("originalName", TEXT_NN),
        ("fileName", TEXT_NN),
        ("fileSize", INT0),
        ("mimeType", TEXT),
        ("s3Key", TEXT_NN),
        ("uploadedById", TEXT),
    ),
    _table(
        "UsageRecord",
        ("metric", TEXT_NN),
        ("quantity", FLOAT0),
        ("periodStart", TS_NOW),
    ),
    # Added after the original bootstrap routine
    _table(
        "workflow_settings",
        (
            "stages",
            "JSONB NOT NULL DEFAULT '["
            '{"key": "planning", "label": "Planning", "threshold": 65}, '
            '{"key": "reservation", "label": "Reservation", "threshold": 90}, '
            '{"key": "order", "label": "Order", "threshold": 100}'
            "]'::jsonb",
        ),
        ("approval_threshold", "INTEGER NOT NULL DEFAULT 90"),
        ("rejection_fallback", "INTEGER NOT NULL DEFAULT 65"),
        ("auto_reserve_at_90", BOOL_TRUE),
        ("require_admin_approval_at_90", BOOL_TRUE),
        ("auto_create_order_on_approval", BOOL_TRUE),
        ("email_notifications_enabled", BOOL_TRUE),
    ),
    _table(
        "WorkflowTrigger",
        ("name", TEXT_NN),
        ("description", TEXT),
        ("triggerType", TEXT_NN),
        ("conditions", JSON_OBJ),
        ("actions", "JSONB NOT NULL DEFAULT '[]'::jsonb"),
        ("isActive", BOOL_TRUE),
        ("createdBy", TEXT),
    ),
    _table(
        "HierarchicalBudget",
        ("year", INT0),
        ("month", INT0),
        ("entityType", TEXT_NN),
        ("entityId", TEXT_NN),
        ("entityName", TEXT_NN),
        ("sellerId", TEXT),
        ("budgetAmount", FLOAT0),
        ("actualAmount", FLOAT0),
        ("isActive", BOOL_TRUE),
        ("notes", TEXT),
    ),
    _table(
        "Notification",
        ("userId", TEXT_NN),
        ("type", TEXT_NN),
        ("title", TEXT_NN),
        ("message", TEXT_NN),
        ("data", JSON),
        ("isRead", BOOL_FALSE),
        ("readAt", TS),
    ),
    _table(
        "BillingSettings",
        ("invoicePrefix", TEXT),
        ("invoiceStartNumber", "INTEGER NOT NULL DEFAULT 1000"),
        ("defaultPaymentTerms", "INTEGER NOT NULL DEFAULT 30"),
        ("taxRate", FLOAT0),
        ("currency", "TEXT NOT NULL DEFAULT 'USD'"),
    ),
)

_INDEXES = (
    IndexSpec("Invoice_type_idx", "Invoice", ("type",)),
    IndexSpec("Advertiser_sellerId_idx", "Advertiser", ("sellerId",)),
    IndexSpec("Agency_sellerId_idx", "Agency", ("sellerId",)),
    IndexSpec("idx_campaign_status_date", "Campaign", ("status", "startDate")),
    IndexSpec("Episode_showId_idx", "Episode", ("showId",)),
    IndexSpec("Reservation_campaignId_idx", "Reservation", ("campaignId",)),
    IndexSpec("Reservation_status_idx", "Reservation", ("status",)),
    IndexSpec("idx_show_megaphone_podcast_id", "Show", ("megaphonePodcastId",)),
    IndexSpec("HierarchicalBudget_period_idx", "HierarchicalBudget", ("year", "month")),
    IndexSpec("Notification_userId_idx", "Notification", ("userId", "isRead")),
    IndexSpec("Invoice_invoiceNumber_key", "Invoice", ("invoiceNumber",), unique=True),
)

_SEEDS = (
    SeedSpec("workflow_settings", id_prefix="ws"),
    SeedSpec("BillingSettings", id_prefix="bs", values=(("invoicePrefix", "INV"),)),
)

EXPECTED_CATALOG = SchemaCatalog(
    version=CATALOG_VERSION,
    tables=_TABLES,
    indexes=_INDEXES,
    seeds=_SEEDS,
)
