"""Load one feed into the batch-scoped staging table."""

import logging
from collections.abc import Iterable, Mapping

from pydantic import ValidationError
from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import DEFAULT_CHUNK_SIZE
from .exceptions import StagingError
from .models import SNAPSHOT_FIELDS, StagingProperty
from .normalize import normalize_row
from .schemas import PropertySnapshot, StagingStats

logger = logging.getLogger(__name__)


def snapshot_values(snapshot: PropertySnapshot) -> dict:
    """Column values for a snapshot, with the extension dumped to JSON-safe form."""
    values = {field: getattr(snapshot, field) for field in SNAPSHOT_FIELDS}
    if snapshot.extension is not None:
        values["extension"] = snapshot.extension.model_dump(exclude_none=True)
    return values


class StagingLoader:
    """Streams normalized rows into staging_properties in fixed-size chunks.

    Rows that fail to normalize are skipped and counted; a failed write is a
    batch-level error.
    """

    def __init__(
        self,
        session: Session,
        batch_id: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        default_state: str | None = "TX",
    ):
        self.session = session
        self.batch_id = batch_id
        self.chunk_size = chunk_size
        self.default_state = default_state
        self.stats = StagingStats()

    def load(self, rows: Iterable[Mapping[str, object]]) -> StagingStats:
        chunk: list[dict] = []

        for row_number, raw in enumerate(rows, start=1):
            try:
                snapshot = normalize_row(raw, default_state=self.default_state)
            except ValidationError as exc:
                logger.warning("Row %d rejected: %s", row_number, exc.errors()[0]["msg"])
                self.stats.errors += 1
                continue

            if snapshot is None:
                logger.debug("Row %d rejected: no account number", row_number)
                self.stats.errors += 1
                continue

            chunk.append({
                "batch_id": self.batch_id,
                "row_number": row_number,
                "account_number": snapshot.account_number,
                **snapshot_values(snapshot),
            })

            if len(chunk) >= self.chunk_size:
                self._write(chunk)
                chunk = []

        if chunk:
            self._write(chunk)

        logger.info(
            "Staged %d rows for batch %s (%d errors)",
            self.stats.staged, self.batch_id, self.stats.errors,
        )
        return self.stats

    def _write(self, chunk: list[dict]) -> None:
        try:
            self.session.execute(insert(StagingProperty), chunk)
            self.session.commit()
        # Some drivers raise OverflowError unwrapped for out-of-range integers
        except (SQLAlchemyError, OverflowError) as exc:
            self.session.rollback()
            raise StagingError(
                f"Staging write failed after {self.stats.staged} rows: {exc}",
                {"batch_id": self.batch_id, "staged": self.stats.staged},
            ) from exc

        self.stats.staged += len(chunk)
        logger.debug("  Staged %d rows...", self.stats.staged)

    def count(self) -> int:
        return self.session.scalar(
            select(func.count(StagingProperty.id)).where(StagingProperty.batch_id == self.batch_id)
        ) or 0

    def clear(self) -> int:
        """Delete this batch's staging rows."""
        result = self.session.execute(
            delete(StagingProperty).where(StagingProperty.batch_id == self.batch_id)
        )
        self.session.commit()
        return result.rowcount or 0
