"""Change summaries over the property history ledger."""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session

from .models import Property, PropertyHistory
from .schemas import ChangeReport, ChangeType, ValueGainer, parse_numeric

logger = logging.getLogger(__name__)


def _distinct_accounts(session: Session, since: date, change_type: ChangeType | None = None) -> int:
    stmt = select(func.count(distinct(PropertyHistory.account_number))).where(
        PropertyHistory.change_date >= since
    )
    if change_type is not None:
        stmt = stmt.where(PropertyHistory.change_type == change_type)
    return session.scalar(stmt) or 0


def top_value_gainers(session: Session, since: date, limit: int = 10) -> list[ValueGainer]:
    """Largest total_value increases recorded since a date."""
    stmt = (
        select(
            PropertyHistory.account_number,
            PropertyHistory.old_value,
            PropertyHistory.new_value,
            Property.property_address,
        )
        .outerjoin(Property, Property.account_number == PropertyHistory.account_number)
        .where(
            PropertyHistory.change_type == ChangeType.VALUE_CHANGE,
            PropertyHistory.change_date >= since,
        )
        .order_by(PropertyHistory.id)
    )

    gainers = []
    for account_number, old_raw, new_raw, address in session.execute(stmt):
        old_value = parse_numeric(old_raw)
        new_value = parse_numeric(new_raw)
        # Only appraisals that existed before and went up
        if old_value is None or new_value is None or old_value <= 0 or new_value <= old_value:
            continue
        gainers.append(ValueGainer(
            account_number=account_number,
            property_address=address,
            old_value=old_value,
            new_value=new_value,
        ))

    gainers.sort(key=lambda g: g.gain, reverse=True)
    return gainers[:limit]


def build_change_report(session: Session, since: date, top_n: int = 10) -> ChangeReport:
    report = ChangeReport(
        since=since,
        properties_changed=_distinct_accounts(session, since),
        owner_changes=_distinct_accounts(session, since, ChangeType.OWNER_CHANGE),
        value_changes=_distinct_accounts(session, since, ChangeType.VALUE_CHANGE),
        top_gainers=top_value_gainers(session, since, top_n),
    )
    logger.info(
        "Change report since %s: %d properties, %d owner changes, %d value changes",
        since, report.properties_changed, report.owner_changes, report.value_changes,
    )
    return report


def total_gain(gainers: list[ValueGainer]) -> Decimal:
    return sum((g.gain for g in gainers), Decimal(0))
