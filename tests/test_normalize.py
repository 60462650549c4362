"""Tests for feed row normalization: pure functions, no database."""

from decimal import Decimal

import pytest

from rollsync.normalize import normalize_row
from rollsync.schemas import PropertySnapshot, parse_numeric


class TestParseNumeric:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("$1,250,000.00", Decimal("1250000.00")),
            ("  42 ", Decimal("42")),
            ("0", Decimal("0")),
            (1500, Decimal("1500")),
            ("-3.5", Decimal("-3.5")),
        ],
    )
    def test_parses_permissively(self, raw, expected) -> None:
        assert parse_numeric(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "N/A", "12abc", "$", "NaN", "Infinity", True])
    def test_unparseable_is_none(self, raw) -> None:
        assert parse_numeric(raw) is None


class TestNormalizeRow:
    def test_upper_cases_names_and_addresses(self) -> None:
        snap = normalize_row({
            "account_number": "0021170000001",
            "owner_name": "  smith john ",
            "property_address": "123 main st",
            "mail_address": "po box 9",
            "city": "houston",
        })
        assert snap is not None
        assert snap.owner_name == "SMITH JOHN"
        assert snap.property_address == "123 MAIN ST"
        assert snap.mail_address == "PO BOX 9"
        assert snap.city == "HOUSTON"

    def test_missing_account_is_rejected(self) -> None:
        assert normalize_row({"owner_name": "SMITH", "total_value": "100"}) is None
        assert normalize_row({"account_number": "   ", "owner_name": "SMITH"}) is None

    def test_malformed_numeric_does_not_abort_row(self) -> None:
        snap = normalize_row({
            "account_number": "A1",
            "total_value": "call assessor",
            "land_value": "$10,000",
            "year_built": "unknown",
            "latitude": "north",
        })
        assert snap is not None
        assert snap.total_value is None
        assert snap.land_value == Decimal("10000")
        assert snap.year_built is None
        assert snap.latitude is None

    def test_column_aliases(self) -> None:
        snap = normalize_row({
            "Acct": "A2",
            "Owner": "doe jane",
            "building_value": "90000",
            "centroid_lat": "29.7",
            "centroid_lon": "-95.3",
            "acreage": "1.5",
        })
        assert snap is not None
        assert snap.account_number == "A2"
        assert snap.owner_name == "DOE JANE"
        assert snap.improvement_value == Decimal("90000")
        assert snap.latitude == pytest.approx(29.7)
        assert snap.longitude == pytest.approx(-95.3)
        assert snap.area_acres == pytest.approx(1.5)

    def test_unknown_columns_are_ignored(self) -> None:
        snap = normalize_row({"account_number": "A3", "favorite_color": "blue"})
        assert snap is not None
        assert "favorite_color" not in snap.model_dump()

    def test_default_state_applied(self) -> None:
        snap = normalize_row({"account_number": "A4"}, default_state="TX")
        assert snap.state == "TX"
        assert snap.mail_state == "TX"

        snap = normalize_row({"account_number": "A4", "state": "la"}, default_state="TX")
        assert snap.state == "LA"

    def test_acres_derived_from_sqft(self) -> None:
        snap = normalize_row({"account_number": "A5", "area_sqft": "43,560"})
        assert snap.area_acres == pytest.approx(1.0)

    def test_out_of_range_coordinates_become_none(self) -> None:
        snap = normalize_row({"account_number": "A6", "latitude": "129.1", "longitude": "-95.3"})
        assert snap.latitude is None
        assert snap.longitude == pytest.approx(-95.3)

    def test_extension_record(self) -> None:
        snap = normalize_row({
            "account_number": "A7",
            "property_address": "1 ELM",
            "mail_address": "1 elm",
            "neighborhood": "8014.01",
            "school_district": "HISD",
        })
        assert snap.extension is not None
        assert snap.extension.neighborhood == "8014.01"
        assert snap.extension.school_district == "HISD"
        assert snap.extension.is_owner_occupied is True
        assert snap.extension.legal_description is None

    def test_no_extension_when_nothing_known(self) -> None:
        snap = normalize_row({"account_number": "A8"})
        assert snap.extension is None

    def test_blank_strings_become_none(self) -> None:
        snap = normalize_row({"account_number": "A9", "owner_name": "  ", "zip": ""})
        assert snap.owner_name is None
        assert snap.zip is None

    def test_returns_snapshot_model(self) -> None:
        assert isinstance(normalize_row({"account_number": "A10"}), PropertySnapshot)

    @pytest.mark.parametrize(
        "year,expected",
        [("1995", 1995), ("1700", 1700), ("2100", 2100), ("1699", None),
         ("2101", None), ("0", None), ("99999999999999999999999", None)],
    )
    def test_year_built_range(self, year, expected) -> None:
        assert normalize_row({"account_number": "A11", "year_built": year}).year_built == expected

    def test_money_beyond_column_precision_is_none(self) -> None:
        snap = normalize_row({
            "account_number": "A12",
            "total_value": "1e20",
            "land_value": "999,999,999,999.99",
        })
        assert snap.total_value is None
        assert snap.land_value == Decimal("999999999999.99")

    def test_non_finite_area_is_none(self) -> None:
        snap = normalize_row({"account_number": "A13", "area_sqft": "1e400", "acreage": "1e400"})
        assert snap.area_sqft is None
        assert snap.area_acres is None
