"""Bulk transaction upload: template, row validation and reference resolution.

Rows name their customer, broker and company rep by name or phone number.
Unknown references create new Customer or Broker records on the fly; those
are returned alongside the projects so the caller can persist them together.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from estate_crm.dates import add_months, iso_timestamp, parse_date
from estate_crm.excel_reader import SheetRow, WorkbookSource, read_rows
from estate_crm.excel_writer import build_workbook
from estate_crm.model import DEFAULT_COMMISSION_RATE, Record, RowError, Settings, generate_id
from estate_crm.spreadsheet import (
    as_number,
    cell,
    check_choice,
    check_positive,
    check_required,
    text,
)

logger = logging.getLogger(__name__)

TRANSACTION_COLUMNS = [
    "Customer Name/Phone", "Project Name", "Unit/Shop Number", "Sale Value",
    "Received Amount", "Installments", "First Due Date", "Broker Name/Phone",
    "Broker Commission %", "Company Rep Name/Phone", "Company Rep Commission %",
    "Marlas", "Rate Per Marla", "Payment Cycle", "Status", "Notes",
]
TRANSACTION_EXAMPLE = [
    "Ahmed Khan", "RUJ", "A-101", 9500000, 2000000, 12, "2025-02-01", "John Doe", 1,
    "", 1, 10, 950000, "quarterly", "active", "Sample",
]

MAX_INSTALLMENTS = 36
CYCLE_MONTHS = {"monthly": 1, "quarterly": 3, "bi_annual": 6, "annual": 12}
PROJECT_STATUSES = ("active", "completed", "overdue", "cancelled")


@dataclass(slots=True)
class BulkTransactionResult:
    projects: List[Record] = field(default_factory=list)
    customers_created: List[Record] = field(default_factory=list)
    brokers_created: List[Record] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)

    @property
    def imported(self) -> int:
        return len(self.projects)

    @property
    def skipped(self) -> int:
        return len(self.errors)


def generate_transaction_template(output_path: Optional[Path] = None) -> bytes:
    return build_workbook("Transactions", TRANSACTION_COLUMNS, [TRANSACTION_EXAMPLE], output_path)


def phone_digits(value: object) -> str:
    return re.sub(r"\D", "", text(value))


def _looks_like_phone(reference: str) -> bool:
    digits = phone_digits(reference)
    return len(digits) >= 7 and not re.search(r"[A-Za-z]", reference)


class ReferenceIndex:
    """Case-insensitive name and phone lookup over a mutable record list."""

    def __init__(self, records: Iterable[Record]) -> None:
        self._by_name: Dict[str, Record] = {}
        self._by_phone: Dict[str, Record] = {}
        for record in records:
            self.add(record)

    def add(self, record: Record) -> None:
        name = text(record.get("name")).lower()
        if name:
            self._by_name.setdefault(name, record)
        digits = phone_digits(record.get("phone"))
        if digits:
            self._by_phone.setdefault(digits, record)

    def find(self, reference: str) -> Optional[Record]:
        digits = phone_digits(reference)
        if digits and _looks_like_phone(reference) and digits in self._by_phone:
            return self._by_phone[digits]
        return self._by_name.get(reference.strip().lower())


def _contact_fields(reference: str) -> Tuple[str, str]:
    """Split a free-text reference into ``(name, phone)`` for an auto-created record."""
    if _looks_like_phone(reference):
        return reference, reference
    return reference, ""


def new_customer(reference: str, now: str) -> Record:
    name, phone = _contact_fields(reference)
    return {
        "id": generate_id("cust"),
        "name": name,
        "phone": phone,
        "cnic": "",
        "type": "customer",
        "status": "active",
        "createdAt": now,
        "updatedAt": now,
    }


def new_broker(reference: str, now: str, commission_rate: float) -> Record:
    name, phone = _contact_fields(reference)
    return {
        "id": generate_id("broker"),
        "name": name,
        "phone": phone,
        "cnic": "",
        "commissionRate": commission_rate,
        "status": "active",
        "createdAt": now,
        "updatedAt": now,
    }


def build_installments(
    total: float, count: int, first_due: date, cycle: str
) -> List[Record]:
    """``count`` equal installments of ``total``, due dates stepped by ``cycle``."""
    step = CYCLE_MONTHS.get(cycle, CYCLE_MONTHS["quarterly"])
    amount = total / count
    return [
        {
            "id": f"inst_{i + 1}",
            "number": i + 1,
            "amount": amount,
            "dueDate": add_months(first_due, i * step).isoformat(),
            "paid": False,
            "partialPaid": 0,
        }
        for i in range(count)
    ]


def _check_rate(row: SheetRow, errors: List[str], label: str) -> Optional[float]:
    value = cell(row, label)
    if value is None:
        return None
    number = as_number(value)
    if number is None or not 0 <= number <= 100:
        errors.append(f"{label} must be between 0 and 100")
        return None
    return number


def _check_received(row: SheetRow, errors: List[str], sale: Optional[float]) -> float:
    value = cell(row, "Received Amount")
    if value is None:
        return 0
    number = as_number(value)
    if number is None or number < 0:
        errors.append("Received Amount must be zero or a positive number")
        return 0
    if sale is not None and number > sale:
        errors.append("Received Amount cannot exceed Sale Value")
        return 0
    return number


def validate_transaction_row(row: SheetRow) -> Tuple[Record, List[str]]:
    """Check one row and return its raw fields plus validation errors."""
    errors: List[str] = []
    parsed: Record = {
        "customer": check_required(
            row, errors, "Customer Name/Phone",
            "Customer Name/Phone", "Customer Name", "Customer Phone",
        ),
        "name": check_required(row, errors, "Project Name", "Project Name"),
        "unit": check_required(row, errors, "Unit/Shop Number", "Unit/Shop Number", "Unit/Shop#", "Unit"),
        "sale": check_positive(row, errors, "Sale Value", "Sale Value", required=True),
        "marlas": check_positive(row, errors, "Marlas", "Marlas"),
        "rate": check_positive(row, errors, "Rate Per Marla", "Rate Per Marla", "Rate per Marla"),
        "broker": text(cell(row, "Broker Name/Phone", "Broker Name")),
        "brokerRate": _check_rate(row, errors, "Broker Commission %"),
        "companyRep": text(cell(row, "Company Rep Name/Phone", "Company Rep Name")),
        "companyRepRate": _check_rate(row, errors, "Company Rep Commission %"),
        "cycle": check_choice(row, errors, "Payment Cycle", CYCLE_MONTHS, "Payment Cycle"),
        "status": check_choice(row, errors, "Status", PROJECT_STATUSES, "Status"),
        "notes": text(cell(row, "Notes")),
    }
    parsed["received"] = _check_received(row, errors, parsed["sale"])

    raw_count = cell(row, "Installments", "Number of Installments")
    count = as_number(raw_count)
    if raw_count is None:
        errors.append("Installments is required")
    elif count is None or count != int(count) or not 1 <= count <= MAX_INSTALLMENTS:
        errors.append(f"Installments must be a whole number between 1 and {MAX_INSTALLMENTS}")
    else:
        parsed["installments"] = int(count)

    raw_due = cell(row, "First Due Date")
    due = parse_date(raw_due)
    if raw_due is None:
        errors.append("First Due Date is required")
    elif due is None:
        errors.append("First Due Date is not a valid date")
    else:
        parsed["firstDue"] = due.date()
    return parsed, errors


def import_transaction_rows(
    source: WorkbookSource,
    customers: Iterable[Record] = (),
    brokers: Iterable[Record] = (),
    settings: Optional[Settings] = None,
) -> BulkTransactionResult:
    """Turn transaction rows into projects, creating missing customers and brokers.

    A row commission rate applies to that project only; without one the
    referenced broker's own rate is used, then the settings default.
    """
    settings = settings or Settings()
    now = iso_timestamp()
    result = BulkTransactionResult()
    customer_index = ReferenceIndex(customers)
    broker_index = ReferenceIndex(brokers)

    def resolve_broker(reference: str) -> Record:
        broker = broker_index.find(reference)
        if broker is None:
            broker = new_broker(reference, now, settings.defaultBrokerCommission or DEFAULT_COMMISSION_RATE)
            broker_index.add(broker)
            result.brokers_created.append(broker)
        return broker

    for row in read_rows(source):
        parsed, errors = validate_transaction_row(row)
        if errors:
            result.errors.append(RowError(row=row.row, errors=errors))
            continue

        customer = customer_index.find(parsed["customer"])
        if customer is None:
            customer = new_customer(parsed["customer"], now)
            customer_index.add(customer)
            result.customers_created.append(customer)

        project: Record = {
            "id": generate_id("proj"),
            "customerId": customer["id"],
            "name": parsed["name"],
            "unit": parsed["unit"],
            "sale": parsed["sale"],
            "received": parsed["received"],
            "balance": parsed["sale"] - parsed["received"],
            "status": parsed["status"] or "active",
            "cycle": parsed["cycle"] or "quarterly",
            "createdAt": now,
            "updatedAt": now,
        }
        if parsed["broker"]:
            broker = resolve_broker(parsed["broker"])
            project["brokerId"] = broker["id"]
            project["brokerCommissionRate"] = (
                parsed["brokerRate"]
                or broker.get("commissionRate")
                or settings.defaultBrokerCommission
                or DEFAULT_COMMISSION_RATE
            )
        if parsed["companyRep"]:
            rep = resolve_broker(parsed["companyRep"])
            project["companyRepId"] = rep["id"]
            project["companyRepCommissionRate"] = (
                parsed["companyRepRate"]
                or rep.get("commissionRate")
                or settings.defaultCompanyRepCommission
                or DEFAULT_COMMISSION_RATE
            )
        for key in ("marlas", "rate"):
            if parsed[key] is not None:
                project[key] = parsed[key]
        if parsed["notes"]:
            project["notes"] = parsed["notes"]
        project["installments"] = build_installments(
            project["sale"] - project["received"],
            parsed["installments"],
            parsed["firstDue"],
            project["cycle"],
        )
        result.projects.append(project)

    logger.info(
        "Parsed %d transaction(s): %d customer(s) and %d broker(s) created, %d row error(s)",
        result.imported,
        len(result.customers_created),
        len(result.brokers_created),
        len(result.errors),
    )
    return result


__all__ = [
    "BulkTransactionResult",
    "CYCLE_MONTHS",
    "MAX_INSTALLMENTS",
    "TRANSACTION_COLUMNS",
    "build_installments",
    "generate_transaction_template",
    "import_transaction_rows",
    "validate_transaction_row",
]
