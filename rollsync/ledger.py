"""Import batch ledger: processing → completed | failed, exactly once."""

import logging
import uuid
from datetime import datetime

from sqlalchemy.orm import Session, sessionmaker

from .exceptions import BatchStateError
from .models import ImportBatch
from .schemas import BatchStatus

logger = logging.getLogger(__name__)


class BatchLedger:
    """Records the lifecycle of reconciliation runs.

    Every write commits in its own session, so a batch's status survives a
    rollback of the reconciliation transaction it describes.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def open(self, source_ref: str, batch_id: str | None = None) -> str:
        batch_id = batch_id or str(uuid.uuid4())
        with self.session_factory() as session:
            session.add(ImportBatch(
                batch_id=batch_id,
                source_ref=source_ref,
                status=BatchStatus.PROCESSING,
                started_at=datetime.utcnow(),
            ))
            session.commit()
        logger.info("Opened import batch %s for %s", batch_id, source_ref)
        return batch_id

    def complete(
        self,
        batch_id: str,
        total_records: int,
        new_records: int,
        updated_records: int,
        error_records: int,
    ) -> ImportBatch:
        with self.session_factory(expire_on_commit=False) as session:
            batch = self._processing(session, batch_id)
            now = datetime.utcnow()
            batch.status = BatchStatus.COMPLETED
            batch.total_records = total_records
            batch.new_records = new_records
            batch.updated_records = updated_records
            batch.error_records = error_records
            batch.completed_at = now
            batch.processing_time_ms = int((now - batch.started_at).total_seconds() * 1000)
            session.commit()
        logger.info("Completed import batch %s in %d ms", batch_id, batch.processing_time_ms)
        return batch

    def fail(self, batch_id: str, error: BaseException | str, error_records: int = 0) -> ImportBatch:
        with self.session_factory(expire_on_commit=False) as session:
            batch = self._processing(session, batch_id)
            batch.status = BatchStatus.FAILED
            batch.error_records = error_records
            batch.error_message = str(error)
            batch.failed_at = datetime.utcnow()
            session.commit()
        logger.error("Import batch %s failed: %s", batch_id, error)
        return batch

    def get(self, batch_id: str) -> ImportBatch | None:
        with self.session_factory(expire_on_commit=False) as session:
            return session.get(ImportBatch, batch_id)

    def _processing(self, session: Session, batch_id: str) -> ImportBatch:
        batch = session.get(ImportBatch, batch_id)
        if batch is None:
            raise BatchStateError(f"Unknown import batch {batch_id}", {"batch_id": batch_id})
        if batch.status != BatchStatus.PROCESSING:
            raise BatchStateError(
                f"Import batch {batch_id} is already {batch.status.value}",
                {"batch_id": batch_id, "status": batch.status.value},
            )
        return batch
