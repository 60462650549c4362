"""SQLAlchemy models for the county roll store.

Data Architecture Overview:
- properties: current authoritative state, one row per account_number
- staging_properties: one feed's normalized rows, scoped by batch_id
- property_history: append-only change events written during reconciliation
- owner_portfolio / market_analytics: derived, replaced on every batch
- import_batches: the ledger of reconciliation runs

Key Concepts:
- account_number is the immutable business key; rows are never deleted
- is_active=False means "absent from the most recent feed"
- Valuation columns are nullable: NULL means not yet appraised
- estimated_value / confidence_score are written only by the value estimator
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base
from .schemas import BatchStatus, ChangeType, OwnerType


class SnapshotColumns:
    """Columns shared by the authoritative and staging property tables."""

    owner_name: Mapped[str | None] = mapped_column(
        String(255), index=True,
        doc="Upper-cased owner name as listed on the roll"
    )
    property_address: Mapped[str | None] = mapped_column(Text)
    city: Mapped[str | None] = mapped_column(String(100))
    state: Mapped[str | None] = mapped_column(String(20))
    zip: Mapped[str | None] = mapped_column(String(10), index=True)
    mail_address: Mapped[str | None] = mapped_column(Text)
    mail_city: Mapped[str | None] = mapped_column(String(100))
    mail_state: Mapped[str | None] = mapped_column(String(20))
    mail_zip: Mapped[str | None] = mapped_column(String(10))

    property_type: Mapped[str | None] = mapped_column(String(50))

    # Valuation (NULL = not yet appraised)
    land_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    improvement_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    total_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    assessed_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    # Physical
    area_sqft: Mapped[float | None] = mapped_column(Float)
    area_acres: Mapped[float | None] = mapped_column(Float)
    year_built: Mapped[int | None] = mapped_column(Integer)
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)

    extension: Mapped[dict | None] = mapped_column(
        JSON(none_as_null=True),
        doc="PropertyExtension dump: property_class, legal_description, neighborhood, ..."
    )


# Every snapshot column, in table order. Reconciliation overwrites all of
# them from the feed for accounts present in it.
SNAPSHOT_FIELDS = (
    "owner_name",
    "property_address",
    "city",
    "state",
    "zip",
    "mail_address",
    "mail_city",
    "mail_state",
    "mail_zip",
    "property_type",
    "land_value",
    "improvement_value",
    "total_value",
    "assessed_value",
    "area_sqft",
    "area_acres",
    "year_built",
    "latitude",
    "longitude",
    "extension",
)


class Property(SnapshotColumns, Base):
    """Authoritative current state of one account on the county roll."""

    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_number: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True,
        doc="Appraisal district account number - immutable business key"
    )

    # Estimator output
    estimated_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    confidence_score: Mapped[Decimal | None] = mapped_column(Numeric(5, 2))
    investment_score: Mapped[int | None] = mapped_column(Integer)

    # Import provenance
    first_seen_date: Mapped[date | None] = mapped_column(Date)
    last_updated_date: Mapped[date | None] = mapped_column(Date)
    last_modified_date: Mapped[date | None] = mapped_column(
        Date,
        doc="Last run that detected an owner or value change"
    )
    owner_changed_date: Mapped[date | None] = mapped_column(Date)
    value_changed_date: Mapped[date | None] = mapped_column(Date)
    import_batch_id: Mapped[str | None] = mapped_column(
        String(36),
        doc="Batch that last synced this row"
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False, index=True,
        doc="False if the account was absent from the most recent feed"
    )

    def __repr__(self) -> str:
        return f"<Property {self.account_number}: {self.owner_name}>"


class StagingProperty(SnapshotColumns, Base):
    """A normalized feed row awaiting reconciliation."""

    __tablename__ = "staging_properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    row_number: Mapped[int] = mapped_column(
        Integer, nullable=False,
        doc="1-based position in the feed; the highest wins for duplicate accounts"
    )
    account_number: Mapped[str] = mapped_column(String(50), nullable=False)

    __table_args__ = (
        Index("ix_staging_batch_account", "batch_id", "account_number"),
    )

    def __repr__(self) -> str:
        return f"<StagingProperty {self.batch_id}#{self.row_number} {self.account_number}>"


class PropertyHistory(Base):
    """Append-only change event for one field of one account.

    Written only by reconciliation. Multiple events per account across
    batches form the property's history.
    """

    __tablename__ = "property_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    field_name: Mapped[str] = mapped_column(String(50), nullable=False)
    old_value: Mapped[str | None] = mapped_column(Text)
    new_value: Mapped[str | None] = mapped_column(Text)
    change_type: Mapped[ChangeType] = mapped_column(SQLEnum(ChangeType), nullable=False)
    batch_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    change_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<PropertyHistory {self.change_type} {self.account_number}.{self.field_name}>"


class OwnerPortfolio(Base):
    """Derived rollup of every property held under one owner name."""

    __tablename__ = "owner_portfolio"

    owner_name: Mapped[str] = mapped_column(String(255), primary_key=True)
    total_properties: Mapped[int] = mapped_column(Integer, nullable=False)
    total_acres: Mapped[float | None] = mapped_column(Float)
    total_portfolio_value: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))
    avg_property_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    owner_type: Mapped[OwnerType] = mapped_column(SQLEnum(OwnerType), nullable=False)
    is_institutional: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_active_date: Mapped[date | None] = mapped_column(Date)

    def __repr__(self) -> str:
        return f"<OwnerPortfolio {self.owner_name}: {self.total_properties}>"


class MarketAnalytics(Base):
    """Monthly valuation statistics per ZIP code."""

    __tablename__ = "market_analytics"

    zip: Mapped[str] = mapped_column(String(10), primary_key=True)
    month: Mapped[date] = mapped_column(Date, primary_key=True, doc="First day of the month")
    total_properties: Mapped[int] = mapped_column(Integer, nullable=False)
    avg_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    median_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    def __repr__(self) -> str:
        return f"<MarketAnalytics {self.zip} {self.month}>"


class ImportBatch(Base):
    """Ledger entry for one reconciliation run."""

    __tablename__ = "import_batches"

    batch_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    source_ref: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[BatchStatus] = mapped_column(
        SQLEnum(BatchStatus), nullable=False, default=BatchStatus.PROCESSING, index=True
    )

    total_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    new_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime)
    processing_time_ms: Mapped[int | None] = mapped_column(Integer)
    error_message: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<ImportBatch {self.batch_id} {self.status}>"
