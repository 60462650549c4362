"""Raw feed row → PropertySnapshot.

Pure functions, no I/O. Appraisal district exports name the same column
several ways across years, so each snapshot field is looked up through a
list of aliases; the first non-blank value wins. Unknown columns are ignored.
"""

from collections.abc import Mapping

from .schemas import PropertyExtension, PropertySnapshot

# =============================================================================
# Column aliases
# =============================================================================

COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "account_number": ("account_number", "acct", "account", "parcel_id"),
    "owner_name": ("owner_name", "owner", "mailto"),
    "property_address": ("property_address", "site_address", "situs_address"),
    "city": ("city", "site_city"),
    "state": ("state", "site_state"),
    "zip": ("zip", "site_zip", "zip_code"),
    "mail_address": ("mail_address", "mailing_address", "mail_addr_1"),
    "mail_city": ("mail_city",),
    "mail_state": ("mail_state",),
    "mail_zip": ("mail_zip",),
    "property_type": ("property_type", "state_class", "use_code"),
    "land_value": ("land_value", "land_val"),
    "improvement_value": ("improvement_value", "building_value", "bld_val"),
    "total_value": ("total_value", "tot_mkt_val", "market_value"),
    "assessed_value": ("assessed_value", "tot_appr_val", "appraised_value"),
    "area_sqft": ("area_sqft", "land_ar", "sqft"),
    "area_acres": ("area_acres", "acreage", "acres"),
    "year_built": ("year_built", "yr_impr"),
    "latitude": ("latitude", "centroid_lat", "lat"),
    "longitude": ("longitude", "centroid_lon", "lon", "lng"),
}

EXTENSION_ALIASES: dict[str, tuple[str, ...]] = {
    "property_class": ("property_class", "state_class_code"),
    "property_class_desc": ("property_class_desc", "state_class_desc"),
    "legal_description": ("legal_description", "lgl_1"),
    "neighborhood": ("neighborhood", "neighborhood_code"),
    "school_district": ("school_district", "school_dist"),
}

SQFT_PER_ACRE = 43_560


def _lookup(raw: Mapping[str, object], aliases: tuple[str, ...]) -> object | None:
    for name in aliases:
        value = raw.get(name)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _fold_keys(raw: Mapping[str, object]) -> dict[str, object]:
    """Lower-case and trim header names so 'Account_Number ' matches."""
    return {str(k).strip().lower(): v for k, v in raw.items() if k is not None}


def normalize_row(
    raw: Mapping[str, object],
    default_state: str | None = "TX",
) -> PropertySnapshot | None:
    """Normalize one feed row.

    Returns None when the row has no account identifier; such rows never
    reach staging. Malformed numeric fields become None rather than failing
    the row.
    """
    row = _fold_keys(raw)

    values = {field: _lookup(row, aliases) for field, aliases in COLUMN_ALIASES.items()}
    if values["account_number"] is None:
        return None

    values["state"] = values["state"] or default_state
    values["mail_state"] = values["mail_state"] or default_state

    extension = PropertyExtension(
        **{field: _lookup(row, aliases) for field, aliases in EXTENSION_ALIASES.items()}
    )
    snapshot = PropertySnapshot(**values)

    # Derive acreage from square footage when only one is present
    if snapshot.area_acres is None and snapshot.area_sqft:
        snapshot.area_acres = round(snapshot.area_sqft / SQFT_PER_ACRE, 4)

    if snapshot.property_address and snapshot.mail_address:
        extension.is_owner_occupied = snapshot.property_address == snapshot.mail_address

    if not extension.is_empty():
        snapshot.extension = extension
    return snapshot
