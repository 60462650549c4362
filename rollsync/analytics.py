"""Monthly market statistics per ZIP, rebuilt after each completed batch."""

import logging
import statistics
from datetime import date
from decimal import Decimal
from itertools import groupby

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .exceptions import AggregationError
from .models import MarketAnalytics, Property

logger = logging.getLogger(__name__)

_CENTS = Decimal("0.01")


class MarketAnalyticsBuilder:
    """Replaces the current month's market_analytics rows.

    Only appraised (total_value > 0) properties count. Inactive properties
    are excluded unless include_inactive is set, matching the portfolio policy.
    """

    def __init__(self, session: Session, as_of: date | None = None, include_inactive: bool = False):
        self.session = session
        self.month = (as_of or date.today()).replace(day=1)
        self.include_inactive = include_inactive

    def rebuild(self) -> int:
        try:
            rows = self._compute()
            self.session.execute(delete(MarketAnalytics).where(MarketAnalytics.month == self.month))
            if rows:
                self.session.execute(insert(MarketAnalytics), rows)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise AggregationError(f"Market analytics rebuild failed: {exc}") from exc

        logger.info("Rebuilt market analytics for %s: %d ZIPs", self.month, len(rows))
        return len(rows)

    def _compute(self) -> list[dict]:
        stmt = (
            select(Property.zip, Property.total_value)
            .where(Property.zip.is_not(None), Property.total_value > 0)
            .order_by(Property.zip, Property.total_value)
        )
        if not self.include_inactive:
            stmt = stmt.where(Property.is_active.is_(True))

        rows = []
        for zip_code, group in groupby(self.session.execute(stmt), key=lambda r: r[0]):
            values = [Decimal(r[1]) for r in group]
            rows.append({
                "zip": zip_code,
                "month": self.month,
                "total_properties": len(values),
                "avg_value": (sum(values) / len(values)).quantize(_CENTS),
                "median_value": Decimal(statistics.median(values)).quantize(_CENTS),
            })
        return rows
