"""Commission totals and settlement of commission-payment rows."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from estate_crm.dates import iso_timestamp
from estate_crm.model import DEFAULT_COMMISSION_RATE, Record, RecipientType, generate_id

_RATE_FIELD = {"broker": "brokerCommissionRate", "companyRep": "companyRepCommissionRate"}
_RECIPIENT_FIELD = {"broker": "brokerId", "companyRep": "companyRepId"}


@dataclass(slots=True)
class CommissionSummary:
    total: float = 0.0
    paid: float = 0.0

    @property
    def accrued(self) -> float:
        """Owed but unpaid, never negative."""
        return max(0.0, self.total - self.paid)


def commission_total(project: Record, recipient_type: RecipientType) -> float:
    rate = project.get(_RATE_FIELD[recipient_type]) or DEFAULT_COMMISSION_RATE
    return float(project.get("sale") or 0) * float(rate) / 100


def commission_summary(
    project: Record,
    payments: Iterable[Record],
    recipient_type: RecipientType = "broker",
) -> CommissionSummary:
    """Total owed to the project's broker or company rep and the amount already paid."""
    recipient_id = project.get(_RECIPIENT_FIELD[recipient_type])
    paid = sum(
        float(p.get("paidAmount") or 0)
        for p in payments
        if p.get("projectId") == project.get("id")
        and p.get("recipientType") == recipient_type
        and p.get("recipientId") == recipient_id
    )
    return CommissionSummary(total=commission_total(project, recipient_type), paid=paid)


def all_commissions(projects: Iterable[Record], payments: Iterable[Record]) -> dict:
    """Aggregate broker and company-rep commissions over ``projects``."""
    payments = list(payments)
    broker = CommissionSummary()
    company_rep = CommissionSummary()
    for project in projects:
        if project.get("brokerId"):
            summary = commission_summary(project, payments, "broker")
            broker.total += summary.total
            broker.paid += summary.paid
        if project.get("companyRepId"):
            summary = commission_summary(project, payments, "companyRep")
            company_rep.total += summary.total
            company_rep.paid += summary.paid
    return {"broker": broker, "companyRep": company_rep}


def payment_status(amount: float, paid: float) -> str:
    if paid <= 0:
        return "pending"
    if paid >= amount:
        return "paid"
    return "partial"


def new_commission_payment(
    project: Record,
    recipient_type: RecipientType,
    recipient_name: str,
    amount: Optional[float] = None,
) -> Record:
    """Build a pending commission-payment row for ``project``."""
    now = iso_timestamp()
    total = commission_total(project, recipient_type) if amount is None else amount
    return {
        "id": generate_id("cpay"),
        "projectId": project.get("id"),
        "recipientId": project.get(_RECIPIENT_FIELD[recipient_type]),
        "recipientType": recipient_type,
        "recipientName": recipient_name,
        "amount": total,
        "paidAmount": 0,
        "remainingAmount": total,
        "status": "pending",
        "createdAt": now,
        "updatedAt": now,
    }


def apply_commission_payment(
    payment: Record,
    amount: float,
    *,
    method: Optional[str] = None,
    reference: Optional[str] = None,
    paid_on: Optional[str] = None,
) -> Record:
    """Return ``payment`` with ``amount`` settled against it."""
    if amount <= 0:
        raise ValueError("Payment amount must be positive")
    total = float(payment.get("amount") or 0)
    paid = float(payment.get("paidAmount") or 0) + amount
    updated = dict(payment)
    updated["paidAmount"] = paid
    updated["remainingAmount"] = max(0.0, total - paid)
    updated["status"] = payment_status(total, paid)
    updated["paymentDate"] = paid_on or iso_timestamp()
    if method:
        updated["paymentMethod"] = method
    if reference:
        updated["paymentReference"] = reference
    updated["updatedAt"] = iso_timestamp()
    return updated


__all__ = [
    "CommissionSummary",
    "all_commissions",
    "apply_commission_payment",
    "commission_summary",
    "commission_total",
    "new_commission_payment",
    "payment_status",
]
