"""End-to-end tests for batch import, failure handling and the monthly update."""

from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from rollsync import pipeline
from rollsync.database import create_store_engine, make_session_factory
from rollsync.exceptions import AggregationError, FeedError, ReconciliationError
from rollsync.ledger import BatchLedger
from rollsync.models import (
    ImportBatch,
    MarketAnalytics,
    OwnerPortfolio,
    Property,
    PropertyHistory,
    StagingProperty,
)
from rollsync.pipeline import ImportPipeline, MonthlyUpdate, run_batch
from rollsync.portfolio import PortfolioAggregator
from rollsync.reconcile import ChangeReconciler
from rollsync.schemas import BatchStatus, ChangeType
from tests.conftest import RUN_DATE_1, RUN_DATE_2, feed_row

FEED_1 = [
    feed_row("A", "smith john", "100000"),
    feed_row("B", "jones mary", "200000"),
]
FEED_2 = [
    feed_row("A", "doe jane", "100000"),
    feed_row("C", "lee sam"),
]


def _import(session_factory, settings, feed: Path, run_date):
    return ImportPipeline(session_factory, settings, run_date=run_date).run_batch(feed)


def _props(session) -> dict[str, Property]:
    session.expire_all()
    return {p.account_number: p for p in session.scalars(select(Property))}


def _owners(session) -> set[str]:
    session.expire_all()
    return set(session.scalars(select(OwnerPortfolio.owner_name)))


class TestRunBatch:
    def test_first_import(self, session_factory, session, settings, write_feed) -> None:
        result = _import(session_factory, settings, write_feed(FEED_1), RUN_DATE_1)

        assert result.status == BatchStatus.COMPLETED
        assert result.succeeded
        assert result.total_records == 2
        assert result.new_records == 2
        assert result.owner_changes == 0
        assert result.errors == 0
        assert result.error_message is None

        props = _props(session)
        assert props["A"].owner_name == "SMITH JOHN"
        assert props["A"].city == "HOUSTON"
        assert props["A"].state == "TX"
        assert props["A"].extension == {"is_owner_occupied": True}
        assert session.scalar(select(func.count(PropertyHistory.id))) == 0
        assert _owners(session) == {"SMITH JOHN", "JONES MARY"}

    def test_second_import_scenario(self, session_factory, session, settings, write_feed) -> None:
        _import(session_factory, settings, write_feed(FEED_1), RUN_DATE_1)
        result = _import(session_factory, settings, write_feed(FEED_2), RUN_DATE_2)

        assert result.status == BatchStatus.COMPLETED
        assert result.new_records == 1
        assert result.owner_changes == 1
        assert result.value_changes == 0
        assert result.deactivated_records == 1

        events = session.scalars(select(PropertyHistory)).all()
        assert [(e.account_number, e.change_type) for e in events] == [("A", ChangeType.OWNER_CHANGE)]
        assert (events[0].old_value, events[0].new_value) == ("SMITH JOHN", "DOE JANE")
        assert events[0].batch_id == result.batch_id

        props = _props(session)
        assert props["A"].owner_name == "DOE JANE"
        assert props["A"].owner_changed_date == RUN_DATE_2
        assert props["B"].is_active is False
        assert props["B"].owner_name == "JONES MARY"
        assert props["B"].total_value == Decimal("200000")
        assert props["C"].first_seen_date == RUN_DATE_2
        assert props["C"].total_value is None

        assert _owners(session) == {"DOE JANE", "LEE SAM"}

    def test_rerun_is_idempotent(self, session_factory, session, settings, write_feed) -> None:
        _import(session_factory, settings, write_feed(FEED_1), RUN_DATE_1)
        _import(session_factory, settings, write_feed(FEED_2), RUN_DATE_2)
        events = session.scalar(select(func.count(PropertyHistory.id)))
        owners = _owners(session)

        result = _import(session_factory, settings, write_feed(FEED_2), RUN_DATE_2)

        assert result.status == BatchStatus.COMPLETED
        assert result.new_records == 0
        assert result.owner_changes == 0
        assert result.value_changes == 0
        assert session.scalar(select(func.count(PropertyHistory.id))) == events
        assert _owners(session) == owners

    def test_bad_rows_are_counted_not_fatal(self, session_factory, session, settings, write_feed) -> None:
        rows = FEED_1 + [feed_row("", "nobody", "5"), feed_row("   ", "blank", "1")]
        result = _import(session_factory, settings, write_feed(rows), RUN_DATE_1)

        assert result.status == BatchStatus.COMPLETED
        assert result.total_records == 2
        assert result.errors == 2
        assert BatchLedger(session_factory).get(result.batch_id).error_records == 2

    def test_out_of_range_numbers_do_not_fail_batch(
        self, session_factory, session, settings, write_feed
    ) -> None:
        rows = [
            feed_row("A", "smith john", "100000"),
            feed_row("B", "jones mary", "1e20", year_built="99999999999999999999999"),
        ]
        result = _import(session_factory, settings, write_feed(rows), RUN_DATE_1)

        assert result.status == BatchStatus.COMPLETED
        assert result.new_records == 2
        props = _props(session)
        assert props["A"].year_built == 1995
        assert props["B"].year_built is None
        assert props["B"].total_value is None

    def test_ledger_and_staging_after_success(self, session_factory, session, settings, write_feed) -> None:
        result = _import(session_factory, settings, write_feed(FEED_1), RUN_DATE_1)

        batch = BatchLedger(session_factory).get(result.batch_id)
        assert batch.status == BatchStatus.COMPLETED
        assert batch.total_records == 2
        assert batch.new_records == 2
        assert session.scalar(select(func.count(StagingProperty.id))) == 0

    def test_analytics_built(self, session_factory, session, settings, write_feed) -> None:
        _import(session_factory, settings, write_feed(FEED_1), RUN_DATE_1)

        row = session.scalars(select(MarketAnalytics)).one()
        assert row.zip == "77002"
        assert row.total_properties == 2
        assert row.avg_value == Decimal("150000.00")

    def test_semicolon_delimited_feed(self, session_factory, session, write_feed) -> None:
        from rollsync.config import Settings

        settings = Settings(database_url="sqlite://", feed_delimiter=";")
        result = _import(session_factory, settings, write_feed(FEED_1, delimiter=";"), RUN_DATE_1)
        assert result.new_records == 2

    def test_function_entry_point(self, session_factory, settings, write_feed) -> None:
        result = run_batch(session_factory, write_feed(FEED_1), settings)
        assert result.status == BatchStatus.COMPLETED


class TestFailures:
    def test_missing_feed(self, session_factory, session, settings, tmp_path) -> None:
        result = _import(session_factory, settings, tmp_path / "nope.csv", RUN_DATE_1)

        assert result.status == BatchStatus.FAILED
        assert "nope.csv" in result.error_message
        batch = session.get(ImportBatch, result.batch_id)
        assert batch.status == BatchStatus.FAILED
        assert batch.failed_at is not None

    def test_reconciliation_failure_rolls_back(
        self, session_factory, session, settings, write_feed, monkeypatch
    ) -> None:
        _import(session_factory, settings, write_feed(FEED_1), RUN_DATE_1)
        real_reconcile = ChangeReconciler.reconcile

        def reconcile_then_fail(self):
            real_reconcile(self)
            raise ReconciliationError("simulated failure")

        monkeypatch.setattr(ChangeReconciler, "reconcile", reconcile_then_fail)
        result = _import(session_factory, settings, write_feed(FEED_2), RUN_DATE_2)

        assert result.status == BatchStatus.FAILED
        assert result.error_message == "simulated failure"
        props = _props(session)
        assert set(props) == {"A", "B"}
        assert props["A"].owner_name == "SMITH JOHN"
        assert props["B"].is_active is True
        assert session.scalar(select(func.count(PropertyHistory.id))) == 0
        assert _owners(session) == {"SMITH JOHN", "JONES MARY"}

        assert BatchLedger(session_factory).get(result.batch_id).status == BatchStatus.FAILED
        staged = session.scalar(
            select(func.count(StagingProperty.id)).where(StagingProperty.batch_id == result.batch_id)
        )
        assert staged == 2

    def test_aggregation_failure_keeps_reconciled_data(
        self, session_factory, session, settings, write_feed, monkeypatch
    ) -> None:
        _import(session_factory, settings, write_feed(FEED_1), RUN_DATE_1)

        def fail(self):
            raise AggregationError("portfolio unavailable")

        monkeypatch.setattr(PortfolioAggregator, "rebuild", fail)
        result = _import(session_factory, settings, write_feed(FEED_2), RUN_DATE_2)

        assert result.status == BatchStatus.FAILED
        assert result.owner_changes == 1
        assert _props(session)["A"].owner_name == "DOE JANE"
        assert _owners(session) == {"SMITH JOHN", "JONES MARY"}
        assert BatchLedger(session_factory).get(result.batch_id).status == BatchStatus.FAILED

    def test_remote_download_failure(self, session_factory, settings, monkeypatch) -> None:
        def refuse(url, dest, timeout=300.0):
            raise FeedError(f"Feed download failed: {url}")

        monkeypatch.setattr(pipeline, "download_feed", refuse)
        result = _import(session_factory, settings, "https://example.test/roll.csv", RUN_DATE_1)
        assert result.status == BatchStatus.FAILED
        assert "download failed" in result.error_message

    def test_downloaded_feed_is_removed(self, session_factory, settings, write_feed, monkeypatch) -> None:
        source = write_feed(FEED_1)
        saved: list[Path] = []

        def fetch(url, dest, timeout=300.0):
            dest.write_bytes(source.read_bytes())
            saved.append(dest)
            return dest

        monkeypatch.setattr(pipeline, "download_feed", fetch)
        result = _import(session_factory, settings, "https://example.test/roll.csv", RUN_DATE_1)

        assert result.status == BatchStatus.COMPLETED
        assert result.new_records == 2
        assert saved and not saved[0].exists()

    def test_partial_download_is_removed(self, session_factory, settings, monkeypatch) -> None:
        saved: list[Path] = []

        def fetch_then_drop(url, dest, timeout=300.0):
            dest.write_text("account_number,owner_name\nA,SMI")
            saved.append(dest)
            raise FeedError("connection reset")

        monkeypatch.setattr(pipeline, "download_feed", fetch_then_drop)
        result = _import(session_factory, settings, "https://example.test/roll.csv", RUN_DATE_1)

        assert result.status == BatchStatus.FAILED
        assert saved and not saved[0].exists()

    def test_unreachable_store_returns_result(self, tmp_path, settings, write_feed) -> None:
        engine = create_store_engine(f"sqlite:///{tmp_path / 'missing' / 'roll.db'}")
        try:
            result = ImportPipeline(make_session_factory(engine), settings).run_batch(write_feed(FEED_1))
        finally:
            engine.dispose()

        assert result.status == BatchStatus.FAILED
        assert result.batch_id
        assert "unable to open database file" in result.error_message

    def test_ledger_write_failure_still_returns_result(
        self, session_factory, settings, tmp_path, monkeypatch
    ) -> None:
        def store_gone(self, batch_id, error, error_records=0):
            raise OperationalError("UPDATE", {}, Exception("server closed the connection"))

        monkeypatch.setattr(BatchLedger, "fail", store_gone)
        result = _import(session_factory, settings, tmp_path / "nope.csv", RUN_DATE_1)

        assert result.status == BatchStatus.FAILED
        assert "nope.csv" in result.error_message


class TestMonthlyUpdate:
    def test_import_estimate_report(self, session_factory, session, settings, write_feed) -> None:
        _import(session_factory, settings, write_feed(FEED_1 + [feed_row("E", "ray ann", "100000")]), RUN_DATE_1)
        feed = write_feed([
            feed_row("A", "doe jane", "150000"),
            feed_row("B", "jones mary", "100000"),
            feed_row("E", "ray ann", "100000"),
            feed_row("C", "lee sam"),
        ])

        outcome = MonthlyUpdate(session_factory, settings, run_date=RUN_DATE_2).run(feed)

        assert outcome.batch.status == BatchStatus.COMPLETED
        assert outcome.predictions_saved == 1
        assert _props(session)["C"].estimated_value is not None

        report = outcome.report
        assert report.properties_changed == 2
        assert report.owner_changes == 1
        assert report.value_changes == 2
        assert [g.account_number for g in report.top_gainers] == ["A"]
        assert report.top_gainers[0].gain == Decimal("50000.00")

    def test_failed_batch_stops_update(self, session_factory, settings, tmp_path) -> None:
        outcome = MonthlyUpdate(session_factory, settings, run_date=RUN_DATE_2).run(tmp_path / "nope.csv")
        assert outcome.batch.status == BatchStatus.FAILED
        assert outcome.predictions_saved == 0
        assert outcome.report is None
