"""Workbook output: import templates and data exports."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence

from openpyxl import Workbook
from openpyxl.utils import get_column_letter

from estate_crm.commission import commission_summary
from estate_crm.enrich import index_by_id, lookup_by_id
from estate_crm.model import Record


def build_workbook(
    sheet_title: str,
    headers: Sequence[str],
    rows: Iterable[Sequence[Any]] = (),
    output_path: Optional[Path] = None,
) -> bytes:
    """Return an .xlsx file with one sheet; also written to ``output_path`` when given."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_title[:31]  # Excel limit
    sheet.append(list(headers))
    widths = [len(str(h)) for h in headers]
    for row in rows:
        values = list(row)
        sheet.append(values)
        for idx, value in enumerate(values[: len(widths)]):
            widths[idx] = max(widths[idx], len(str(value)) if value is not None else 0)
    for idx, width in enumerate(widths, start=1):
        sheet.column_dimensions[get_column_letter(idx)].width = min(width + 2, 60)

    buffer = io.BytesIO()
    workbook.save(buffer)
    content = buffer.getvalue()
    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(content)
    return content


COMMISSION_PAYMENT_COLUMNS = [
    "Payment ID", "Project ID", "Recipient", "Type", "Total Amount",
    "Paid Amount", "Remaining", "Status", "Payment Date", "Payment Method",
    "Reference", "Notes", "Created",
]


def export_commission_payments(
    payments: Iterable[Record], output_path: Optional[Path] = None
) -> bytes:
    rows: List[list] = []
    for p in payments:
        rows.append(
            [
                p.get("id"),
                p.get("projectId"),
                p.get("recipientName"),
                "Broker" if p.get("recipientType") == "broker" else "Company Rep",
                p.get("amount"),
                p.get("paidAmount"),
                p.get("remainingAmount"),
                p.get("status"),
                p.get("paymentDate") or "N/A",
                p.get("paymentMethod") or "N/A",
                p.get("paymentReference") or "N/A",
                p.get("notes") or "",
                p.get("createdAt"),
            ]
        )
    return build_workbook("Commission Payments", COMMISSION_PAYMENT_COLUMNS, rows, output_path)


PROJECT_COMMISSION_COLUMNS = [
    "Project Name", "Unit", "Customer", "Customer CNIC", "Marlas",
    "Rate per Marla", "Sale Value", "Received", "Balance", "Broker",
    "Broker Commission %", "Broker Commission Owed", "Broker Commission Paid",
    "Broker Commission Pending", "Company Rep", "Company Rep Commission %",
    "Company Rep Commission Owed", "Company Rep Commission Paid",
    "Company Rep Commission Pending", "Status", "Payment Cycle", "Created",
]


def export_projects_with_commission(
    projects: Iterable[Record],
    customers: Iterable[Record],
    brokers: Iterable[Record],
    payments: Iterable[Record],
    output_path: Optional[Path] = None,
) -> bytes:
    """One row per project with broker and company-rep commission owed/paid/pending."""
    customers_by_id = index_by_id(customers)
    brokers_by_id = index_by_id(brokers)
    payments = list(payments)

    rows: List[list] = []
    for p in projects:
        customer = lookup_by_id(customers_by_id, p.get("customerId")) or {}
        broker = lookup_by_id(brokers_by_id, p.get("brokerId"))
        rep = lookup_by_id(brokers_by_id, p.get("companyRepId"))
        sale = float(p.get("sale") or 0)
        received = float(p.get("received") or 0)
        broker_summary = commission_summary(p, payments, "broker")
        rep_summary = commission_summary(p, payments, "companyRep")
        rows.append(
            [
                p.get("name"),
                p.get("unit"),
                customer.get("name") or "N/A",
                customer.get("cnic") or "N/A",
                p.get("marlas"),
                p.get("rate"),
                sale,
                received,
                sale - received,
                broker.get("name") if broker else "N/A",
                p.get("brokerCommissionRate") or 0,
                broker_summary.total if broker else 0,
                broker_summary.paid if broker else 0,
                broker_summary.accrued if broker else 0,
                rep.get("name") if rep else "N/A",
                p.get("companyRepCommissionRate") or 0,
                rep_summary.total if rep else 0,
                rep_summary.paid if rep else 0,
                rep_summary.accrued if rep else 0,
                p.get("status"),
                p.get("cycle"),
                p.get("createdAt"),
            ]
        )
    return build_workbook("Projects", PROJECT_COMMISSION_COLUMNS, rows, output_path)


__all__ = [
    "build_workbook",
    "export_commission_payments",
    "export_projects_with_commission",
]
