"""Command-line entry point for the county roll pipeline.

Usage:
    rollsync --init-db                      # Create tables
    rollsync --run-batch roll.csv           # Reconcile one feed
    rollsync --estimate --limit 5000        # Estimate missing values
    rollsync --monthly roll.csv             # Import + estimate + report
    rollsync --report 30                    # Change summary for the last 30 days
    rollsync --stats                        # Table counts
"""

import argparse
import logging
import sys
from datetime import date, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .config import Settings, configure_logging
from .database import create_store_engine, init_db, make_session_factory
from .models import ImportBatch, OwnerPortfolio, Property, PropertyHistory
from .pipeline import ImportPipeline, MonthlyUpdate, ValuePredictionPipeline
from .reports import build_change_report, total_gain
from .schemas import BatchResult, BatchStatus, ChangeReport

logger = logging.getLogger(__name__)


def print_batch(result: BatchResult) -> None:
    print(f"\n=== Import Batch {result.batch_id} ===")
    print(f"  Status: {result.status.value}")
    print(f"  Records staged: {result.total_records:,} ({result.errors:,} errors)")
    print(f"  New: {result.new_records:,}  Updated: {result.updated_records:,}")
    print(f"  Owner changes: {result.owner_changes:,}  Value changes: {result.value_changes:,}")
    print(f"  No longer in feed: {result.deactivated_records:,}")
    if result.error_message:
        print(f"  Error: {result.error_message}")


def print_report(report: ChangeReport) -> None:
    print(f"\n=== Changes since {report.since} ===")
    print(f"  Properties changed: {report.properties_changed:,}")
    print(f"  Owner changes: {report.owner_changes:,}")
    print(f"  Value changes: {report.value_changes:,}")
    if report.top_gainers:
        print(f"\n  --- Top gainers (total +${total_gain(report.top_gainers):,.0f}) ---")
        for g in report.top_gainers:
            print(f"    {g.account_number:<16} {g.property_address or '-':<35} "
                  f"${g.old_value:>12,.0f} → ${g.new_value:>12,.0f}")


def print_stats(session: Session) -> None:
    """Print current database statistics."""
    print("\n=== Database Statistics ===\n")

    total = session.scalar(select(func.count(Property.id))) or 0
    active = session.scalar(select(func.count(Property.id)).where(Property.is_active.is_(True))) or 0
    appraised = session.scalar(
        select(func.count(Property.id)).where(Property.total_value.is_not(None))
    ) or 0
    estimated = session.scalar(
        select(func.count(Property.id)).where(Property.estimated_value.is_not(None))
    ) or 0
    history = session.scalar(select(func.count(PropertyHistory.id))) or 0
    owners = session.scalar(select(func.count(OwnerPortfolio.owner_name))) or 0

    print(f"Properties: {total:,} ({active:,} active, {total - active:,} inactive)")
    print(f"Appraised: {appraised:,}  Estimated: {estimated:,}")
    print(f"History events: {history:,}")
    print(f"Owners: {owners:,}")

    print("\n--- Recent Batches ---")
    batches = session.scalars(
        select(ImportBatch).order_by(ImportBatch.started_at.desc()).limit(5)
    ).all()
    for b in batches:
        print(f"  {b.started_at:%Y-%m-%d %H:%M} {b.status.value:<10} "
              f"{b.total_records:>9,} rows  {b.source_ref}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="County roll reconciliation and value estimation")
    parser.add_argument("--init-db", action="store_true", help="Create tables")
    parser.add_argument("--run-batch", metavar="FEED", help="Reconcile a feed file or URL")
    parser.add_argument("--estimate", action="store_true", help="Estimate missing values")
    parser.add_argument("--limit", type=int, default=1000, help="Max properties to estimate")
    parser.add_argument("--monthly", metavar="FEED", help="Import + estimate + report")
    parser.add_argument("--report", metavar="DAYS", type=int, help="Summarize recent changes")
    parser.add_argument("--stats", action="store_true", help="Show statistics")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    if not any([args.init_db, args.run_batch, args.estimate, args.monthly,
                args.report is not None, args.stats]):
        parser.print_help()
        return 0

    settings = Settings.from_env()
    engine = create_store_engine(settings.database_url)
    configure_logging(settings, engine, level=logging.DEBUG if args.verbose else logging.INFO)
    session_factory = make_session_factory(engine)

    # Create tables
    print("Creating tables if needed...")
    init_db(engine)

    exit_code = 0

    if args.run_batch:
        result = ImportPipeline(session_factory, settings).run_batch(args.run_batch)
        print_batch(result)
        if result.status != BatchStatus.COMPLETED:
            exit_code = 1

    if args.monthly:
        outcome = MonthlyUpdate(session_factory, settings).run(args.monthly, estimation_limit=args.limit)
        print_batch(outcome.batch)
        if outcome.batch.status != BatchStatus.COMPLETED:
            exit_code = 1
        else:
            print(f"\n  Predictions saved: {outcome.predictions_saved:,}")
        if outcome.report:
            print_report(outcome.report)

    if args.estimate:
        predictions = ValuePredictionPipeline(session_factory, settings).run_batch_estimation(args.limit)
        print(f"\nPredicted values for {len(predictions):,} properties")

    if args.report is not None:
        with session_factory() as session:
            print_report(build_change_report(session, date.today() - timedelta(days=args.report)))

    if args.stats:
        with session_factory() as session:
            print_stats(session)

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
