"""Pydantic schemas for the county roll pipeline.

Schema Engineering Philosophy:
- Field descriptions document the transformation each value went through
- Validators normalize feed values at the boundary so downstream code
  compares like with like (upper-cased names, Decimal money, None for blanks)
- These schemas are the contract between the raw feed, staging, and the
  authoritative store
"""

import math
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# ENUMS: Canonical value sets
# =============================================================================


class BatchStatus(str, Enum):
    """Lifecycle of one import run. PROCESSING transitions exactly once."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ChangeType(str, Enum):
    """Kind of field-level change recorded in property history."""

    OWNER_CHANGE = "owner_change"
    VALUE_CHANGE = "value_change"


class OwnerType(str, Enum):
    """Owner classification derived from the owner name."""

    INDIVIDUAL = "individual"
    LLC = "llc"
    TRUST = "trust"
    CORPORATE = "corporate"
    PARTNERSHIP = "partnership"


# =============================================================================
# Value parsing
# =============================================================================

_STRIP_CHARS = str.maketrans("", "", "$,")

# Valuation columns are Numeric(14, 2)
MAX_MONEY = Decimal(10) ** 12

# Plausible construction years; anything else is a data-entry error
MIN_YEAR_BUILT = 1700
MAX_YEAR_BUILT = 2100


def parse_numeric(value: object) -> Decimal | None:
    """Parse a feed value permissively.

    Currency symbols, thousands separators and surrounding whitespace are
    ignored. Anything unparseable becomes None instead of raising.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str):
        return None
    clean = value.translate(_STRIP_CHARS).strip()
    if not clean:
        return None
    try:
        number = Decimal(clean)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number


def clean_text(value: object) -> str | None:
    """Strip and upper-case a text value; blanks become None."""
    if value is None:
        return None
    text = str(value).strip()
    return text.upper() or None


# =============================================================================
# Property snapshot
# =============================================================================


class PropertyExtension(BaseModel):
    """Optional per-record attributes beyond the core snapshot.

    Every key is explicit and optional; unknown keys are dropped.
    """

    model_config = ConfigDict(extra="ignore")

    property_class: str | None = Field(default=None, description="Appraisal district class code")
    property_class_desc: str | None = Field(default=None, description="Class code description")
    legal_description: str | None = Field(default=None)
    neighborhood: str | None = Field(default=None)
    school_district: str | None = Field(default=None)
    is_owner_occupied: bool | None = Field(
        default=None,
        description="True when the mailing address matches the property address",
    )

    def is_empty(self) -> bool:
        return all(v is None for v in self.model_dump().values())


class PropertySnapshot(BaseModel):
    """One normalized feed row, shaped like the authoritative Property row."""

    account_number: str = Field(min_length=1, description="Immutable business key")
    owner_name: str | None = Field(default=None, description="Upper-cased owner name")
    property_address: str | None = Field(default=None, description="Upper-cased situs address")
    city: str | None = Field(default=None)
    state: str | None = Field(default=None)
    zip: str | None = Field(default=None)
    mail_address: str | None = Field(default=None, description="Upper-cased mailing address")
    mail_city: str | None = Field(default=None)
    mail_state: str | None = Field(default=None)
    mail_zip: str | None = Field(default=None)

    property_type: str | None = Field(default=None)

    land_value: Decimal | None = Field(default=None)
    improvement_value: Decimal | None = Field(default=None)
    total_value: Decimal | None = Field(default=None, description="None means not yet appraised")
    assessed_value: Decimal | None = Field(default=None)

    area_sqft: float | None = Field(default=None)
    area_acres: float | None = Field(default=None)
    year_built: int | None = Field(default=None)
    latitude: float | None = Field(default=None, description="Centroid latitude, None if out of range")
    longitude: float | None = Field(default=None, description="Centroid longitude, None if out of range")

    extension: PropertyExtension | None = Field(default=None)

    @field_validator("account_number", mode="before")
    @classmethod
    def strip_account(cls, v):
        return str(v).strip() if v is not None else v

    @field_validator(
        "owner_name", "property_address", "city", "mail_address", "mail_city",
        "state", "mail_state",
        mode="before",
    )
    @classmethod
    def upper_text(cls, v):
        """Upper-case names and addresses for consistent matching."""
        return clean_text(v)

    @field_validator("zip", "mail_zip", "property_type", mode="before")
    @classmethod
    def strip_text(cls, v):
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @field_validator("land_value", "improvement_value", "total_value", "assessed_value", mode="before")
    @classmethod
    def money(cls, v):
        """Values the valuation columns cannot hold become None."""
        number = parse_numeric(v)
        if number is None or abs(number) >= MAX_MONEY:
            return None
        return number

    @field_validator("area_sqft", "area_acres", mode="before")
    @classmethod
    def measure(cls, v):
        number = parse_numeric(v)
        if number is None:
            return None
        # Huge decimals overflow to inf as floats
        value = float(number)
        return value if math.isfinite(value) else None

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def coordinate(cls, v, info):
        number = parse_numeric(v)
        if number is None:
            return None
        limit = 90 if info.field_name == "latitude" else 180
        return float(number) if abs(number) <= limit else None

    @field_validator("year_built", mode="before")
    @classmethod
    def year(cls, v):
        number = parse_numeric(v)
        if number is None or not MIN_YEAR_BUILT <= number <= MAX_YEAR_BUILT:
            return None
        return int(number)


# =============================================================================
# Run statistics
# =============================================================================


class StagingStats(BaseModel):
    """Result of loading one feed into staging."""

    staged: int = 0
    errors: int = 0


class ReconcileStats(BaseModel):
    """Counts produced by one reconciliation pass."""

    new_records: int = 0
    updated_records: int = 0
    owner_changes: int = 0
    value_changes: int = 0
    deactivated_records: int = 0


class BatchResult(BaseModel):
    """Structured outcome of run_batch; returned on success and on failure."""

    batch_id: str
    status: BatchStatus
    total_records: int = 0
    new_records: int = 0
    updated_records: int = 0
    owner_changes: int = 0
    value_changes: int = 0
    deactivated_records: int = 0
    errors: int = 0
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == BatchStatus.COMPLETED


# =============================================================================
# Value estimation
# =============================================================================


class FeatureVector(BaseModel):
    """Query features for value estimation.

    Location and area are required for a meaningful estimate; the estimator
    answers with a zero-confidence result when they are missing.
    """

    latitude: float | None = None
    longitude: float | None = None
    area_acres: float | None = None
    year_built: int | None = None
    property_type: str | None = None
    zip: str | None = None

    def is_complete(self) -> bool:
        return (
            self.latitude is not None
            and self.longitude is not None
            and self.area_acres is not None
            and self.area_acres > 0
        )


class TrainingSample(FeatureVector):
    """A record with a known appraisal, used as a potential comparable."""

    account_number: str | None = None
    total_value: float = Field(gt=0)


class Comparable(BaseModel):
    """One of the closest training samples backing an estimate."""

    account_number: str | None = None
    location: str = Field(description="'lat, lon' to four decimals")
    value: float
    acres: float | None = None
    year_built: int | None = None
    distance_miles: float
    score: float


class Estimate(BaseModel):
    """Estimator answer. estimated_value is None when no estimate is possible."""

    estimated_value: int | None = None
    confidence: float = Field(default=0.0, ge=0, le=100)
    comparables: list[Comparable] = Field(default_factory=list)


class Prediction(BaseModel):
    """An accepted estimate for a record lacking an appraisal."""

    account_number: str
    estimated_value: int = Field(gt=0)
    confidence: float = Field(ge=0, le=100)


# =============================================================================
# Reporting
# =============================================================================


class ValueGainer(BaseModel):
    account_number: str
    property_address: str | None = None
    old_value: Decimal
    new_value: Decimal

    @property
    def gain(self) -> Decimal:
        return self.new_value - self.old_value


class ChangeReport(BaseModel):
    """Summary of property history since a given date."""

    since: date
    properties_changed: int = 0
    owner_changes: int = 0
    value_changes: int = 0
    top_gainers: list[ValueGainer] = Field(default_factory=list)


class MonthlyUpdateResult(BaseModel):
    """Outcome of one scheduled update: import, estimation, report."""

    batch: BatchResult
    predictions_saved: int = 0
    report: ChangeReport | None = None
