"""Owner portfolio rollups, rebuilt from properties after every batch."""

import logging
import re
from datetime import date
from decimal import Decimal

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .exceptions import AggregationError
from .models import OwnerPortfolio, Property
from .schemas import OwnerType

logger = logging.getLogger(__name__)

# Owners holding more than this many properties are institutional regardless of type
INSTITUTIONAL_PROPERTY_COUNT = 10

# Patterns for detecting organizations, checked in priority order
OWNER_TYPE_PATTERNS: tuple[tuple[OwnerType, re.Pattern], ...] = (
    (OwnerType.LLC, re.compile(r"\bLLC\b|\bL\.L\.C\b", re.IGNORECASE)),
    (OwnerType.TRUST, re.compile(r"\bTRUST\b|\bTRUSTEES?\b|\bTR\b", re.IGNORECASE)),
    (OwnerType.CORPORATE, re.compile(r"\bCORP\b|\bCORPORATION\b|\bINC\b|\bINCORPORATED\b", re.IGNORECASE)),
    (OwnerType.PARTNERSHIP, re.compile(r"\bLP\b|\bL\.P\b|\bLTD\b|\bLLP\b", re.IGNORECASE)),
)

_CENTS = Decimal("0.01")


def classify_owner_type(owner_name: str | None) -> OwnerType:
    """Classify an owner name: LLC > TRUST > CORP/INC > LP/LTD > individual.

    Examples:
    - "MAD RIVER LLC"                  → llc
    - "SMITH FAMILY TRUST"             → trust
    - "ACME HOLDINGS INC"              → corporate
    - "BAYOU PROPERTIES LTD"           → partnership
    - "ACME TRUST LLC"                 → llc (LLC outranks TRUST)
    - "ALPINE JOHN"                    → individual (LP must be a whole token)
    """
    if not owner_name:
        return OwnerType.INDIVIDUAL
    for owner_type, pattern in OWNER_TYPE_PATTERNS:
        if pattern.search(owner_name):
            return owner_type
    return OwnerType.INDIVIDUAL


def is_institutional(owner_type: OwnerType, total_properties: int) -> bool:
    return owner_type != OwnerType.INDIVIDUAL or total_properties > INSTITUTIONAL_PROPERTY_COUNT


class PortfolioAggregator:
    """Full replace of owner_portfolio from the reconciled properties table.

    Inactive properties (absent from the latest feed) are excluded unless
    include_inactive is set. Output depends only on properties and as_of, so
    two consecutive rebuilds produce identical rows.
    """

    def __init__(self, session: Session, as_of: date | None = None, include_inactive: bool = False):
        self.session = session
        self.as_of = as_of or date.today()
        self.include_inactive = include_inactive

    def rebuild(self) -> int:
        try:
            rows = self._compute()
            self.session.execute(delete(OwnerPortfolio))
            if rows:
                self.session.execute(insert(OwnerPortfolio), rows)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise AggregationError(f"Owner portfolio rebuild failed: {exc}") from exc

        logger.info("Rebuilt owner portfolio: %d owners", len(rows))
        return len(rows)

    def _compute(self) -> list[dict]:
        stmt = (
            select(
                Property.owner_name,
                func.count(Property.id),
                func.sum(Property.area_acres),
                func.sum(Property.total_value),
                func.count(Property.total_value),
            )
            .where(Property.owner_name.is_not(None))
            .group_by(Property.owner_name)
            .order_by(Property.owner_name)
        )
        if not self.include_inactive:
            stmt = stmt.where(Property.is_active.is_(True))

        rows = []
        for owner_name, count, acres, total_value, valued_count in self.session.execute(stmt):
            owner_type = classify_owner_type(owner_name)
            total = Decimal(total_value).quantize(_CENTS) if total_value is not None else None
            avg = (total / valued_count).quantize(_CENTS) if total is not None and valued_count else None
            rows.append({
                "owner_name": owner_name,
                "total_properties": count,
                "total_acres": round(float(acres), 4) if acres is not None else None,
                "total_portfolio_value": total,
                "avg_property_value": avg,
                "owner_type": owner_type,
                "is_institutional": is_institutional(owner_type, count),
                "last_active_date": self.as_of,
            })
        return rows
