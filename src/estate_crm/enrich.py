"""Fill denormalized display fields on receipts from their referenced records."""

from __future__ import annotations

import time
from typing import Any, Dict, Iterable, List, Optional

from estate_crm.dates import parse_date
from estate_crm.model import Record, is_record_id


def generate_receipt_number(date_value: Any, index: int) -> str:
    """Return ``RCP-{yyyyMM}-{index+1:04}``, or ``RCP-{epochMillis}-{index+1}`` for bad dates."""
    parsed = parse_date(date_value)
    if parsed is None:
        return f"RCP-{int(time.time() * 1000)}-{index + 1}"
    return f"RCP-{parsed.year}{parsed.month:02d}-{index + 1:04d}"


def index_by_id(records: Iterable[Record]) -> Dict[Any, Record]:
    index: Dict[Any, Record] = {}
    for record in records:
        if is_record_id(record.get("id")):
            index.setdefault(record["id"], record)
    return index


def lookup_by_id(index: Dict[Any, Record], reference: Any) -> Optional[Record]:
    return index.get(reference) if is_record_id(reference) else None


def project_display_name(project: Record) -> str:
    return f"{project.get('name') or ''} - {project.get('unit') or ''}"


def enrich_receipts(
    receipts: Iterable[Record],
    customers: Iterable[Record],
    projects: Iterable[Record],
) -> List[Record]:
    """Return receipts with ``customerName``, ``projectName`` and ``receiptNumber`` filled.

    Only falsy fields are filled, so running this on its own output is a no-op.
    Unknown references yield empty strings.
    """
    customers_by_id = index_by_id(customers)
    projects_by_id = index_by_id(projects)

    enriched: List[Record] = []
    for index, receipt in enumerate(receipts):
        record = dict(receipt)
        if not record.get("customerName"):
            customer = lookup_by_id(customers_by_id, record.get("customerId"))
            record["customerName"] = (customer or {}).get("name") or ""
        if not record.get("projectName"):
            project = lookup_by_id(projects_by_id, record.get("projectId"))
            record["projectName"] = project_display_name(project) if project else ""
        if not record.get("receiptNumber"):
            record["receiptNumber"] = generate_receipt_number(
                record.get("createdAt") or record.get("date"), index
            )
        enriched.append(record)
    return enriched


__all__ = [
    "enrich_receipts",
    "generate_receipt_number",
    "index_by_id",
    "lookup_by_id",
    "project_display_name",
]
