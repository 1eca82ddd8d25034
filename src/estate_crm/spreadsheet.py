"""Inventory and broker spreadsheets: templates, row validation, parsing.

Row problems never raise. A failing row is left out of the parsed data and
reported with its worksheet row number; only an unreadable workbook raises
(see :func:`estate_crm.excel_reader.read_rows`).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple

from estate_crm.dates import iso_timestamp
from estate_crm.excel_reader import SheetRow, WorkbookSource, read_rows
from estate_crm.excel_writer import build_workbook
from estate_crm.model import ParseResult, Record, RowError, generate_id
from estate_crm.normalize import split_tags, to_number

INVENTORY_REQUIRED_COLUMNS = ["Project Name", "Block", "Unit/Shop#", "Total Value"]
INVENTORY_OPTIONAL_COLUMNS = ["Unit Type", "Marlas", "Rate per Marla", "Plot Features"]
INVENTORY_COLUMNS = [
    "Project Name", "Block", "Unit/Shop#", "Unit Type", "Marlas",
    "Rate per Marla", "Total Value", "Plot Features",
]
INVENTORY_EXAMPLE = [
    "Example Project", "A", "101", "Residential", 5, 500000, 2500000, "Corner, Park View",
]
UNIT_TYPES = ("Residential", "Commercial", "Apartment", "Other")

BROKER_COLUMNS = [
    "Name", "Phone", "CNIC", "Email", "Address", "Company",
    "Commission Rate %", "Bank Details", "Status", "Notes",
]
BROKER_EXAMPLE = [
    "John Doe", "0321-1234567", "35201-1234567-1", "john@example.com",
    "123 Street, City", "ABC Associates", 1, "HBL - Account: 12345678",
    "active", "Sample broker",
]


# ---------------------------------------------------------------------------
# Cell helpers shared with the transaction importer
# ---------------------------------------------------------------------------


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def cell(row: SheetRow, *columns: str) -> Any:
    """First non-blank value among ``columns`` (accepts alternative header spellings)."""
    for column in columns:
        value = row.get(column)
        if not is_blank(value):
            return value.strip() if isinstance(value, str) else value
    return None


def text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def as_number(value: Any) -> Optional[float]:
    """Return ``value`` as a number, ``None`` when it is not numeric."""
    number = to_number(value)
    if isinstance(number, bool) or not isinstance(number, (int, float)):
        return None
    return number


def check_positive(
    row: SheetRow, errors: List[str], label: str, *columns: str, required: bool = False
) -> Optional[float]:
    """Validate a positive numeric cell, appending a message to ``errors`` on failure."""
    value = cell(row, *columns)
    if value is None:
        if required:
            errors.append(f"{label} is required")
        return None
    number = as_number(value)
    if number is None or number <= 0:
        errors.append(f"{label} must be a positive number")
        return None
    return number


def check_required(row: SheetRow, errors: List[str], label: str, *columns: str) -> str:
    value = cell(row, *columns)
    if value is None:
        errors.append(f"{label} is required")
        return ""
    return text(value)


def check_choice(
    row: SheetRow,
    errors: List[str],
    label: str,
    choices: Iterable[str],
    *columns: str,
) -> Optional[str]:
    """Case-insensitive enum check returning the canonical spelling."""
    value = cell(row, *columns)
    if value is None:
        return None
    choices = tuple(choices)
    wanted = text(value).lower().replace(" ", "_")
    for choice in choices:
        if choice.lower().replace(" ", "_") == wanted:
            return choice
    errors.append(f"{label} must be one of: {', '.join(choices)}")
    return None


def parse_sheet(source: WorkbookSource, validator) -> ParseResult:
    """Run ``validator`` over every data row of the first sheet."""
    result = ParseResult()
    for row in read_rows(source):
        record, errors = validator(row)
        if errors:
            result.errors.append(RowError(row=row.row, errors=errors))
        else:
            result.data.append(record)
    return result


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


def generate_inventory_template(output_path: Optional[Path] = None) -> bytes:
    return build_workbook("Inventory Template", INVENTORY_COLUMNS, [INVENTORY_EXAMPLE], output_path)


def validate_inventory_row(row: SheetRow) -> Tuple[Record, List[str]]:
    """Return the inventory partial for ``row`` and its validation errors."""
    errors: List[str] = []
    project_name = check_required(row, errors, "Project Name", "Project Name")
    block = check_required(row, errors, "Block", "Block")
    unit = check_required(row, errors, "Unit/Shop#", "Unit/Shop#", "Unit/Shop Number", "Unit")
    total_value = check_positive(row, errors, "Total Value", "Total Value", required=True)
    marlas = check_positive(row, errors, "Marlas", "Marlas")
    rate = check_positive(row, errors, "Rate per Marla", "Rate per Marla", "Rate Per Marla")
    unit_type = check_choice(row, errors, "Unit Type", UNIT_TYPES, "Unit Type")

    record: Record = {
        "projectName": project_name,
        "block": block,
        "unitShopNumber": unit,
        "unit": unit,
        "totalValue": total_value,
        "saleValue": total_value,
        "status": "available",
    }
    if unit_type:
        record["unitType"] = unit_type
    if marlas is not None:
        record["marlas"] = marlas
    if rate is not None:
        record["ratePerMarla"] = rate
    features = cell(row, "Plot Features")
    record["plotFeatures"] = split_tags(features)
    if record["plotFeatures"]:
        record["plotFeature"] = record["plotFeatures"][0]
    return record, errors


def parse_inventory_rows(source: WorkbookSource) -> ParseResult:
    """Parse an inventory workbook into validated item partials."""
    return parse_sheet(source, validate_inventory_row)


def to_inventory_records(partials: Iterable[Record]) -> List[Record]:
    """Give parsed inventory partials an id and timestamps."""
    now = iso_timestamp()
    records = []
    for partial in partials:
        record = dict(partial)
        record.setdefault("id", generate_id("inv"))
        record.setdefault("createdAt", now)
        record.setdefault("updatedAt", now)
        records.append(record)
    return records


# ---------------------------------------------------------------------------
# Brokers
# ---------------------------------------------------------------------------


def generate_broker_template(output_path: Optional[Path] = None) -> bytes:
    return build_workbook("Brokers", BROKER_COLUMNS, [BROKER_EXAMPLE], output_path)


def validate_broker_row(row: SheetRow) -> Tuple[Record, List[str]]:
    errors: List[str] = []
    name = check_required(row, errors, "Name", "Name", "name")
    rate = 1.0
    raw_rate = cell(row, "Commission Rate %", "commission")
    if raw_rate is not None:
        number = as_number(raw_rate)
        if number is None or not 0 <= number <= 100:
            errors.append("Commission Rate % must be between 0 and 100")
        else:
            rate = number or 1.0
    status = check_choice(row, errors, "Status", ("active", "inactive"), "Status", "status")

    now = iso_timestamp()
    record: Record = {
        "id": generate_id("broker"),
        "name": name,
        "phone": text(cell(row, "Phone", "phone")),
        "cnic": text(cell(row, "CNIC", "cnic")),
        "commissionRate": rate,
        "status": status or "active",
        "createdAt": now,
        "updatedAt": now,
    }
    for column, key in (
        ("Email", "email"),
        ("Address", "address"),
        ("Company", "company"),
        ("Bank Details", "bankDetails"),
        ("Notes", "notes"),
    ):
        value = cell(row, column)
        if value is not None:
            record[key] = text(value)
    return record, errors


def parse_broker_rows(source: WorkbookSource, existing_brokers: Iterable[Record] = ()) -> ParseResult:
    """Parse a broker workbook, skipping rows whose CNIC is already registered."""
    known_cnics = {b.get("cnic") for b in existing_brokers if b.get("cnic")}
    parsed = parse_sheet(source, validate_broker_row)
    kept: List[Record] = []
    for broker in parsed.data:
        if broker["cnic"] and broker["cnic"] in known_cnics:
            parsed.skipped += 1
            continue
        if broker["cnic"]:
            known_cnics.add(broker["cnic"])
        kept.append(broker)
    parsed.data = kept
    return parsed


__all__ = [
    "BROKER_COLUMNS",
    "INVENTORY_COLUMNS",
    "INVENTORY_OPTIONAL_COLUMNS",
    "INVENTORY_REQUIRED_COLUMNS",
    "UNIT_TYPES",
    "generate_broker_template",
    "generate_inventory_template",
    "parse_broker_rows",
    "parse_inventory_rows",
    "to_inventory_records",
    "validate_inventory_row",
]
