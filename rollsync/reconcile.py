"""Staging → authoritative store reconciliation.

For one batch, every staged account is classified and applied in this order:

  1. new        - absent from properties: inserted, no change event
  2. owner      - owner_name differs: owner_change event
  3. value      - total_value differs (NULL compared as 0): value_change event
  4. sync       - all snapshot columns overwritten from the feed
  5. missing    - active properties absent from the batch: is_active = False

Duplicate accounts within one feed resolve to the highest row_number.
The reconciler never commits; the caller commits the whole batch or rolls
it back.
"""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import DEFAULT_CHUNK_SIZE
from .exceptions import ReconciliationError
from .models import SNAPSHOT_FIELDS, Property, PropertyHistory, StagingProperty
from .schemas import ChangeType, ReconcileStats

logger = logging.getLogger(__name__)

_CENTS = Decimal("0.01")


def format_value(value: Decimal | None) -> str | None:
    """Text form of a valuation for the history ledger."""
    if value is None:
        return None
    return str(Decimal(value).quantize(_CENTS))


def values_differ(old: Decimal | None, new: Decimal | None) -> bool:
    """Compare valuations with NULL treated as 0."""
    return (old or Decimal(0)) != (new or Decimal(0))


class ChangeReconciler:
    """Diffs one batch's staging rows against properties and applies the result."""

    def __init__(
        self,
        session: Session,
        batch_id: str,
        run_date: date | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.session = session
        self.batch_id = batch_id
        self.run_date = run_date or date.today()
        self.chunk_size = chunk_size
        self.stats = ReconcileStats()

    def reconcile(self) -> ReconcileStats:
        try:
            for chunk in self._staged_chunks():
                self._apply_chunk(chunk)
            self.stats.deactivated_records = self._deactivate_missing()
        except SQLAlchemyError as exc:
            raise ReconciliationError(
                f"Reconciliation of batch {self.batch_id} failed: {exc}",
                {"batch_id": self.batch_id, **self.stats.model_dump()},
            ) from exc

        logger.info(
            "Reconciled batch %s: %d new, %d updated, %d owner changes, "
            "%d value changes, %d deactivated",
            self.batch_id,
            self.stats.new_records,
            self.stats.updated_records,
            self.stats.owner_changes,
            self.stats.value_changes,
            self.stats.deactivated_records,
        )
        return self.stats

    # =========================================================================
    # Staging scan
    # =========================================================================

    def _staged_chunks(self):
        """Yield the last staged row per account, in feed order, chunk by chunk."""
        latest = (
            select(
                StagingProperty.account_number,
                func.max(StagingProperty.row_number).label("row_number"),
            )
            .where(StagingProperty.batch_id == self.batch_id)
            .group_by(StagingProperty.account_number)
            .subquery()
        )
        base = (
            select(StagingProperty)
            .join(
                latest,
                and_(
                    StagingProperty.account_number == latest.c.account_number,
                    StagingProperty.row_number == latest.c.row_number,
                ),
            )
            .where(StagingProperty.batch_id == self.batch_id)
            .order_by(StagingProperty.row_number)
            .limit(self.chunk_size)
        )

        last_row = 0
        while True:
            chunk = list(self.session.scalars(base.where(StagingProperty.row_number > last_row)))
            if not chunk:
                return
            yield chunk
            last_row = chunk[-1].row_number

    # =========================================================================
    # Apply
    # =========================================================================

    def _apply_chunk(self, chunk: list[StagingProperty]) -> None:
        keys = [staged.account_number for staged in chunk]
        existing = {
            prop.account_number: prop
            for prop in self.session.scalars(
                select(Property).where(Property.account_number.in_(keys))
            )
        }

        for staged in chunk:
            current = existing.get(staged.account_number)
            if current is None:
                self._insert(staged)
            else:
                self._update(current, staged)

        self.session.flush()
        # Keep the identity map bounded to one chunk
        self.session.expunge_all()

    def _insert(self, staged: StagingProperty) -> None:
        prop = Property(
            account_number=staged.account_number,
            first_seen_date=self.run_date,
            last_updated_date=self.run_date,
            import_batch_id=self.batch_id,
            is_active=True,
            **{field: getattr(staged, field) for field in SNAPSHOT_FIELDS},
        )
        self.session.add(prop)
        self.stats.new_records += 1

    def _update(self, current: Property, staged: StagingProperty) -> None:
        owner_changed = current.owner_name != staged.owner_name
        value_changed = values_differ(current.total_value, staged.total_value)

        if owner_changed:
            self._record(
                current.account_number, "owner_name",
                current.owner_name, staged.owner_name, ChangeType.OWNER_CHANGE,
            )
            current.owner_changed_date = self.run_date
            self.stats.owner_changes += 1

        if value_changed:
            self._record(
                current.account_number, "total_value",
                format_value(current.total_value), format_value(staged.total_value),
                ChangeType.VALUE_CHANGE,
            )
            current.value_changed_date = self.run_date
            self.stats.value_changes += 1

        if owner_changed or value_changed:
            current.last_modified_date = self.run_date

        # The feed is authoritative for current state, change or not
        modified = not current.is_active
        for field in SNAPSHOT_FIELDS:
            new_value = getattr(staged, field)
            if getattr(current, field) != new_value:
                setattr(current, field, new_value)
                modified = True

        current.is_active = True
        current.last_updated_date = self.run_date
        current.import_batch_id = self.batch_id
        if modified:
            self.stats.updated_records += 1

    def _record(
        self,
        account_number: str,
        field_name: str,
        old_value: str | None,
        new_value: str | None,
        change_type: ChangeType,
    ) -> None:
        self.session.add(PropertyHistory(
            account_number=account_number,
            field_name=field_name,
            old_value=old_value,
            new_value=new_value,
            change_type=change_type,
            batch_id=self.batch_id,
            change_date=self.run_date,
        ))

    # =========================================================================
    # Missing from feed
    # =========================================================================

    def _deactivate_missing(self) -> int:
        """Flag active accounts the feed no longer lists. Data stays untouched."""
        in_feed = select(StagingProperty.account_number).where(
            StagingProperty.batch_id == self.batch_id
        )
        result = self.session.execute(
            update(Property)
            .where(Property.is_active.is_(True), Property.account_number.not_in(in_feed))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
