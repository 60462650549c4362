"""Pipeline entry points.

Flow:
  ┌──────────┐
  │   Feed   │
  └────┬─────┘
       │
  ┌────▼─────┐
  │  Ledger  │   ← batch opened in `processing`
  └────┬─────┘
       │
  ┌────▼─────┐
  │ Staging  │   ← normalize + chunked load, bad rows counted
  └────┬─────┘
       │
  ┌────▼──────────┐
  │ Reconciliation│   ← one transaction: new / changed / synced / missing
  └────┬──────────┘
       │
  ┌────▼─────┐
  │Aggregates│   ← owner portfolios + ZIP analytics, full replace
  └────┬─────┘
       │
  ┌────▼─────┐
  │  Ledger  │   ← completed | failed
  └──────────┘

Value estimation is separate and can run at any time against the store.

Design principles:
  - run_batch always returns a BatchResult; callers check `status`.
  - Reconciliation commits as a unit or not at all.
  - A failure after reconciliation committed leaves the batch `failed`
    with the reconciled data in place; aggregates keep their previous rows.
  - Every component receives its session explicitly; nothing here holds a
    process-wide connection.
"""

import logging
import tempfile
import uuid
from collections.abc import Mapping
from datetime import date, timedelta
from pathlib import Path

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .analytics import MarketAnalyticsBuilder
from .config import Settings
from .estimator import ValueEstimator
from .exceptions import BatchStateError
from .feed import download_feed, is_remote, iter_feed_rows
from .ledger import BatchLedger
from .models import Property
from .portfolio import PortfolioAggregator
from .predictions import PredictionWriter
from .reconcile import ChangeReconciler
from .reports import build_change_report
from .schemas import (
    BatchResult,
    BatchStatus,
    Estimate,
    FeatureVector,
    MonthlyUpdateResult,
    Prediction,
)
from .staging import StagingLoader

logger = logging.getLogger(__name__)


class ImportPipeline:
    """Runs one feed through staging, reconciliation and aggregation.

    Usage:
        pipeline = ImportPipeline(session_factory)
        result = pipeline.run_batch("/data/roll_2024_06.csv")
        if result.status != BatchStatus.COMPLETED:
            # batch failed - inspect result.error_message
            ...
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: Settings | None = None,
        run_date: date | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or Settings()
        self.run_date = run_date
        self.ledger = BatchLedger(session_factory)

    def run_batch(self, feed_ref: str | Path) -> BatchResult:
        run_date = self.run_date or date.today()
        batch_id = str(uuid.uuid4())
        result = BatchResult(batch_id=batch_id, status=BatchStatus.PROCESSING)
        download_path = self._download_path(batch_id) if is_remote(feed_ref) else None
        opened = False

        try:
            self.ledger.open(str(feed_ref), batch_id=batch_id)
            opened = True
            logger.info("Starting import batch %s", batch_id)

            if download_path is not None:
                feed_path = download_feed(str(feed_ref), download_path)
            else:
                feed_path = Path(feed_ref)

            with self.session_factory() as session:
                # Step 1: Stage the feed
                loader = StagingLoader(
                    session,
                    batch_id,
                    chunk_size=self.settings.chunk_size,
                    default_state=self.settings.default_state,
                )
                try:
                    loader.load(iter_feed_rows(feed_path, delimiter=self.settings.feed_delimiter))
                finally:
                    result.total_records = loader.stats.staged
                    result.errors = loader.stats.errors

                # Step 2: Reconcile (single transaction)
                reconciler = ChangeReconciler(
                    session, batch_id, run_date=run_date, chunk_size=self.settings.chunk_size
                )
                try:
                    stats = reconciler.reconcile()
                    session.commit()
                except Exception:
                    session.rollback()
                    raise
                result = result.model_copy(update=stats.model_dump())

                # Step 3: Rebuild aggregates (single transaction)
                try:
                    PortfolioAggregator(
                        session, as_of=run_date,
                        include_inactive=self.settings.include_inactive_owners,
                    ).rebuild()
                    MarketAnalyticsBuilder(
                        session, as_of=run_date,
                        include_inactive=self.settings.include_inactive_owners,
                    ).rebuild()
                    session.commit()
                except Exception:
                    session.rollback()
                    raise

                # Step 4: Drop this batch's staging rows
                loader.clear()

            self.ledger.complete(
                batch_id,
                total_records=result.total_records,
                new_records=result.new_records,
                updated_records=result.updated_records,
                error_records=result.errors,
            )
            result.status = BatchStatus.COMPLETED
            logger.info("Import batch %s completed: %s", batch_id, result.model_dump())

        except Exception as exc:
            logger.exception("Import batch %s failed", batch_id)
            result.status = BatchStatus.FAILED
            result.error_message = str(exc)
            if opened:
                try:
                    self.ledger.fail(batch_id, exc, error_records=result.errors)
                except (SQLAlchemyError, BatchStateError):
                    logger.exception("Could not record failure of import batch %s", batch_id)

        finally:
            if download_path is not None:
                download_path.unlink(missing_ok=True)

        return result

    @staticmethod
    def _download_path(batch_id: str) -> Path:
        return Path(tempfile.gettempdir()) / f"rollsync-{batch_id}.csv"


class ValuePredictionPipeline:
    """Estimates values for properties that have no appraisal."""

    def __init__(self, session_factory: sessionmaker[Session], settings: Settings | None = None):
        self.session_factory = session_factory
        self.settings = settings or Settings()

    def _estimator(self, session: Session) -> ValueEstimator:
        return ValueEstimator.from_store(session, limit=self.settings.training_limit)

    def estimate_value(self, features: FeatureVector | Mapping) -> Estimate:
        """Point estimate for one feature vector. Never raises on bad input."""
        if not isinstance(features, FeatureVector):
            try:
                features = FeatureVector.model_validate(features)
            except ValidationError as exc:
                logger.warning("Unusable feature vector: %s", exc.errors()[0]["msg"])
                return Estimate()

        with self.session_factory() as session:
            return self._estimator(session).estimate(features)

    def run_batch_estimation(self, limit: int = 1000) -> list[Prediction]:
        """Estimate every unappraised property (up to limit) and save the confident ones."""
        with self.session_factory() as session:
            estimator = self._estimator(session)

            targets = session.execute(
                select(
                    Property.account_number,
                    Property.latitude,
                    Property.longitude,
                    Property.area_acres,
                    Property.year_built,
                    Property.property_type,
                    Property.zip,
                )
                .where(
                    Property.total_value.is_(None),
                    Property.latitude.is_not(None),
                    Property.longitude.is_not(None),
                    Property.area_acres > 0,
                )
                .order_by(Property.id)
                .limit(limit)
            ).all()

            predictions: list[Prediction] = []
            for row in targets:
                estimate = estimator.estimate(FeatureVector(
                    latitude=row.latitude,
                    longitude=row.longitude,
                    area_acres=row.area_acres,
                    year_built=row.year_built,
                    property_type=row.property_type,
                    zip=row.zip,
                ))
                if not estimate.estimated_value or estimate.estimated_value <= 0:
                    continue
                if estimate.confidence <= self.settings.min_confidence:
                    continue
                predictions.append(Prediction(
                    account_number=row.account_number,
                    estimated_value=estimate.estimated_value,
                    confidence=estimate.confidence,
                ))

            logger.info(
                "Estimated %d of %d unappraised properties above %.0f confidence",
                len(predictions), len(targets), self.settings.min_confidence,
            )
            if predictions:
                PredictionWriter(session, chunk_size=self.settings.chunk_size).write(predictions)

        return predictions


class MonthlyUpdate:
    """One scheduled update: import the feed, estimate values, summarize changes.

    Holds no timer; a scheduler (cron, a job runner, the CLI) calls run().
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: Settings | None = None,
        run_date: date | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or Settings()
        self.run_date = run_date

    def run(
        self,
        feed_ref: str | Path,
        estimation_limit: int = 5000,
        report_days: int = 30,
    ) -> MonthlyUpdateResult:
        batch = ImportPipeline(self.session_factory, self.settings, self.run_date).run_batch(feed_ref)
        if batch.status != BatchStatus.COMPLETED:
            logger.error("Monthly update stopped: batch %s failed", batch.batch_id)
            return MonthlyUpdateResult(batch=batch)

        predictions = ValuePredictionPipeline(
            self.session_factory, self.settings
        ).run_batch_estimation(estimation_limit)

        since = (self.run_date or date.today()) - timedelta(days=report_days)
        with self.session_factory() as session:
            report = build_change_report(session, since)

        return MonthlyUpdateResult(batch=batch, predictions_saved=len(predictions), report=report)


# =============================================================================
# Function entry points
# =============================================================================


def run_batch(
    session_factory: sessionmaker[Session],
    feed_ref: str | Path,
    settings: Settings | None = None,
) -> BatchResult:
    return ImportPipeline(session_factory, settings).run_batch(feed_ref)


def estimate_value(
    session_factory: sessionmaker[Session],
    features: FeatureVector | Mapping,
    settings: Settings | None = None,
) -> Estimate:
    return ValuePredictionPipeline(session_factory, settings).estimate_value(features)


def run_batch_estimation(
    session_factory: sessionmaker[Session],
    limit: int = 1000,
    settings: Settings | None = None,
) -> list[Prediction]:
    return ValuePredictionPipeline(session_factory, settings).run_batch_estimation(limit)
