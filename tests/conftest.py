"""Shared fixtures: a file-backed SQLite store and a CSV feed writer."""

import csv
from collections.abc import Callable
from datetime import date
from pathlib import Path

import pytest
from sqlalchemy.orm import Session, sessionmaker

from rollsync.config import Settings
from rollsync.database import create_store_engine, init_db, make_session_factory

FEED_COLUMNS = [
    "account_number",
    "owner_name",
    "property_address",
    "city",
    "zip",
    "mail_address",
    "property_type",
    "land_value",
    "improvement_value",
    "total_value",
    "assessed_value",
    "area_acres",
    "year_built",
    "latitude",
    "longitude",
]

RUN_DATE_1 = date(2024, 5, 5)
RUN_DATE_2 = date(2024, 6, 5)


def feed_row(account: str, owner: str | None, value: str | None = "", **extra: str) -> dict[str, str]:
    """One feed row with sensible defaults for everything but the key fields."""
    row = {
        "account_number": account,
        "owner_name": owner or "",
        "property_address": f"{account} MAIN ST",
        "city": "houston",
        "zip": "77002",
        "mail_address": f"{account} MAIN ST",
        "property_type": "residential",
        "land_value": "",
        "improvement_value": "",
        "total_value": value or "",
        "assessed_value": "",
        "area_acres": "0.25",
        "year_built": "1995",
        "latitude": "29.7604",
        "longitude": "-95.3698",
    }
    row.update(extra)
    return row


@pytest.fixture
def engine(tmp_path: Path):
    engine = create_store_engine(f"sqlite:///{tmp_path / 'rollsync.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return make_session_factory(engine)


@pytest.fixture
def session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url="sqlite://", chunk_size=2)


@pytest.fixture
def write_feed(tmp_path: Path) -> Callable[..., Path]:
    """Write rows to a CSV feed and return its path."""
    counter = {"n": 0}

    def _write(rows: list[dict[str, str]], name: str | None = None, delimiter: str = ",") -> Path:
        counter["n"] += 1
        path = tmp_path / (name or f"feed_{counter['n']}.csv")
        columns = list(FEED_COLUMNS)
        for row in rows:
            for key in row:
                if key not in columns:
                    columns.append(key)
        with path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=columns, delimiter=delimiter)
            writer.writeheader()
            for row in rows:
                writer.writerow(row)
        return path

    return _write
