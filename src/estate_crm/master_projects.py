"""On-demand aggregation of projects sharing a project name."""

from __future__ import annotations

from datetime import date
from typing import Dict, Iterable, List, Optional

from estate_crm.commission import commission_summary
from estate_crm.dates import iso_timestamp, parse_date
from estate_crm.model import Record


def project_overdue(project: Record, today: Optional[date] = None) -> float:
    """Unpaid amount of installments whose due date has passed."""
    today = today or date.today()
    overdue = 0.0
    for installment in project.get("installments") or []:
        if installment.get("paid"):
            continue
        due = parse_date(installment.get("dueDate"))
        if due is not None and due.date() < today:
            overdue += float(installment.get("amount") or 0) - float(
                installment.get("partialPaid") or 0
            )
    return overdue


def _master_key(name: str) -> str:
    return " ".join(name.split()).lower()


def build_master_projects(
    projects: Iterable[Record],
    inventory: Iterable[Record] = (),
    commission_payments: Iterable[Record] = (),
    *,
    today: Optional[date] = None,
) -> List[Record]:
    """Group ``projects`` by name into MasterProject records.

    Unit counts come from inventory items with the same project name; ids are
    derived from the name so repeated builds are stable.
    """
    payments = list(commission_payments)
    now = iso_timestamp()
    groups: Dict[str, Record] = {}

    def group_for(name: str) -> Record:
        key = _master_key(name)
        if key not in groups:
            groups[key] = {
                "id": "mproj_" + key.replace(" ", "_"),
                "name": name.strip(),
                "totalUnits": 0,
                "availableUnits": 0,
                "soldUnits": 0,
                "reservedUnits": 0,
                "blockedUnits": 0,
                "totalSaleValue": 0.0,
                "totalReceived": 0.0,
                "totalReceivable": 0.0,
                "totalOverdue": 0.0,
                "totalBrokerCommission": 0.0,
                "totalBrokerCommissionPaid": 0.0,
                "totalCompanyRepCommission": 0.0,
                "totalCompanyRepCommissionPaid": 0.0,
                "createdAt": now,
                "updatedAt": now,
            }
        return groups[key]

    for project in projects:
        name = str(project.get("name") or "").strip()
        if not name:
            continue
        group = group_for(name)
        sale = float(project.get("sale") or 0)
        received = float(project.get("received") or 0)
        group["totalSaleValue"] += sale
        group["totalReceived"] += received
        group["totalReceivable"] += sale - received
        group["totalOverdue"] += project_overdue(project, today)
        if project.get("brokerId"):
            summary = commission_summary(project, payments, "broker")
            group["totalBrokerCommission"] += summary.total
            group["totalBrokerCommissionPaid"] += summary.paid
        if project.get("companyRepId"):
            summary = commission_summary(project, payments, "companyRep")
            group["totalCompanyRepCommission"] += summary.total
            group["totalCompanyRepCommissionPaid"] += summary.paid

    for item in inventory:
        name = str(item.get("projectName") or "").strip()
        if not name:
            continue
        group = group_for(name)
        group["totalUnits"] += 1
        status_key = f"{item.get('status') or 'available'}Units"
        if status_key in group:
            group[status_key] += 1

    return list(groups.values())


__all__ = ["build_master_projects", "project_overdue"]
