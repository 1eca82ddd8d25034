"""Upgrade older persisted-data shapes to the current dataset version.

A payload whose ``version`` equals :data:`CURRENT_VERSION` is passed through
untouched. Anything else, including a payload without a ``version`` field (the
oldest browser backups), is rebuilt field by field:

* every record gets explicit defaults for the fields the current shape needs;
* commission rates equal to the old 2.5% default become 1%, and missing rates
  become 1% rather than 0;
* customers still tagged ``type='broker'`` are split into Broker records and
  references to them are remapped;
* a pending commission-payment row is back-filled for every project that has a
  broker;
* receipts are enriched once against the migrated customers and projects.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from estate_crm.dates import iso_timestamp
from estate_crm.enrich import enrich_receipts, index_by_id
from estate_crm.model import (
    CURRENT_VERSION,
    DEFAULT_COMMISSION_RATE,
    ID_PREFIXES,
    LEGACY_COMMISSION_RATE,
    CRMData,
    EntityType,
    Record,
    Settings,
    generate_id,
    is_record_id,
)
from estate_crm.normalize import normalize_payload, to_number

logger = logging.getLogger(__name__)

LEGACY_VERSION = "legacy"  # Reported for payloads without a version field
MIGRATION_PAYMENT_PREFIX = "cpay_migration"


def detect_version(raw: Dict[str, Any]) -> str:
    """Return the payload's version tag, or :data:`LEGACY_VERSION` when absent."""
    version = raw.get("version")
    if version in (None, ""):
        return LEGACY_VERSION
    return str(version)


def needs_migration(raw: Dict[str, Any]) -> bool:
    return detect_version(raw) != CURRENT_VERSION


def migrate_rate(value: Any) -> float:
    """Coerce a stored commission rate to the current default rules."""
    rate = to_number(value)
    if not isinstance(rate, (int, float)) or isinstance(rate, bool) or not rate:
        return DEFAULT_COMMISSION_RATE
    if rate == LEGACY_COMMISSION_RATE:
        return DEFAULT_COMMISSION_RATE
    return rate


def _number(value: Any, default: float = 0) -> Any:
    number = to_number(value)
    if isinstance(number, (int, float)) and not isinstance(number, bool):
        return number
    return default


def _new_id(entity_type: EntityType) -> str:
    return generate_id(ID_PREFIXES[entity_type])


def _with_optional(record: Record, source: Record, *names: str) -> Record:
    for name in names:
        if source.get(name) is not None:
            record[name] = source[name]
    return record


def _timestamps(source: Record, now: str) -> Dict[str, str]:
    created = source.get("createdAt") or now
    return {"createdAt": created, "updatedAt": source.get("updatedAt") or created}


# ---------------------------------------------------------------------------
# Per-entity reconstruction
# ---------------------------------------------------------------------------


def _migrate_customer(source: Record, now: str) -> Record:
    record = {
        "id": source.get("id") or _new_id(EntityType.CUSTOMERS),
        "name": source.get("name") or "",
        "cnic": source.get("cnic") or "",
        "phone": source.get("phone") or "",
        "email": source.get("email") or "",
        "company": source.get("company") or "",
        "address": source.get("address") or "",
        "type": source.get("type") or "customer",
        "status": source.get("status") or "active",
    }
    _with_optional(record, source, "linkedBrokerId")
    record.update(_timestamps(source, now))
    return record


def _migrate_broker(source: Record, now: str) -> Record:
    record = {
        "id": source.get("id") or _new_id(EntityType.BROKERS),
        "name": source.get("name") or "",
        "phone": source.get("phone") or "",
        "cnic": source.get("cnic") or "",
        "commissionRate": migrate_rate(source.get("commissionRate")),
        "status": source.get("status") or "active",
    }
    _with_optional(
        record, source, "email", "address", "company", "bankDetails", "notes",
        "linkedCustomerId",
    )
    record.update(_timestamps(source, now))
    return record


def _migrate_project(source: Record, now: str) -> Record:
    sale = _number(source.get("sale"))
    received = _number(source.get("received"))
    record = {
        "id": source.get("id") or _new_id(EntityType.PROJECTS),
        "customerId": source.get("customerId") or "",
        "brokerCommissionRate": migrate_rate(source.get("brokerCommissionRate")),
        "companyRepCommissionRate": migrate_rate(source.get("companyRepCommissionRate")),
        "name": source.get("name") or "",
        "unit": source.get("unit") or "",
        "marlas": _number(source.get("marlas")),
        "rate": _number(source.get("rate")),
        "sale": sale,
        "received": received,
        "balance": sale - received,
        "status": source.get("status") or "active",
        "cycle": source.get("cycle") or "bi_annual",
        "notes": source.get("notes") or "",
        "installments": source.get("installments") or [],
    }
    _with_optional(record, source, "brokerId", "companyRepId", "overdue")
    record.update(_timestamps(source, now))
    return record


def _migrate_receipt(source: Record, now: str) -> Record:
    record = {
        "id": source.get("id") or _new_id(EntityType.RECEIPTS),
        "customerId": source.get("customerId") or "",
        "projectId": source.get("projectId") or "",
        "amount": _number(source.get("amount")),
        "date": source.get("date") or now,
        "method": source.get("method") or "cash",
        "reference": source.get("reference") or "",
        "notes": source.get("notes") or "",
    }
    _with_optional(
        record, source, "installmentId", "receiptNumber", "customerName", "projectName"
    )
    record.update(_timestamps(source, now))
    return record


def _migrate_interaction(source: Record, now: str) -> Record:
    record = {
        "id": source.get("id") or _new_id(EntityType.INTERACTIONS),
        "contactType": source.get("contactType") or "customer",
        "type": source.get("type") or "call",
        "status": source.get("status") or "follow_up",
        "priority": source.get("priority") or "medium",
        "date": source.get("date") or now,
        "notes": source.get("notes") or "",
    }
    _with_optional(
        record, source, "customerId", "brokerId", "nextFollowUp", "contacts", "attachments"
    )
    record.update(_timestamps(source, now))
    return record


def _migrate_inventory_item(source: Record, now: str) -> Record:
    record = dict(source)
    record["id"] = source.get("id") or _new_id(EntityType.INVENTORY)
    record["projectName"] = source.get("projectName") or ""
    record["status"] = source.get("status") or "available"
    if not record.get("totalValue"):
        marlas, rate = _number(source.get("marlas")), _number(source.get("ratePerMarla"))
        if marlas and rate:
            record["totalValue"] = marlas * rate
    record.update(_timestamps(source, now))
    return record


def _migrate_commission_payment(source: Record, now: str) -> Record:
    record = dict(source)
    record["id"] = source.get("id") or _new_id(EntityType.COMMISSION_PAYMENTS)
    amount = _number(source.get("amount"))
    paid = _number(source.get("paidAmount"))
    record["amount"] = amount
    record["paidAmount"] = paid
    if record.get("remainingAmount") is None:
        record["remainingAmount"] = amount - paid
    if not record.get("status"):
        record["status"] = "paid" if paid >= amount > 0 else ("partial" if paid else "pending")
    record.setdefault("recipientType", "broker")
    record.setdefault("recipientName", "")
    record.update(_timestamps(source, now))
    return record


def _migrate_settings(raw: Any) -> Settings:
    settings = Settings.from_dict(raw)
    settings.commissionRate = migrate_rate(settings.commissionRate)
    settings.defaultBrokerCommission = migrate_rate(settings.defaultBrokerCommission)
    settings.defaultCompanyRepCommission = migrate_rate(settings.defaultCompanyRepCommission)
    return settings


# ---------------------------------------------------------------------------
# Cross-entity steps
# ---------------------------------------------------------------------------


def split_broker_customers(data: CRMData, now: Optional[str] = None) -> int:
    """Give every ``type='broker'`` customer a Broker record and remap references.

    Returns the number of Broker records created.
    """
    now = now or iso_timestamp()
    broker_ids = {b["id"] for b in data.brokers if is_record_id(b.get("id"))}
    remap: Dict[str, str] = {}
    created = 0

    for customer in data.customers:
        if customer.get("type") != "broker" or not is_record_id(customer.get("id")):
            continue
        phone = customer.get("phone")
        broker = next(
            (
                b
                for b in data.brokers
                if b.get("linkedCustomerId") == customer["id"]
                or (phone and b.get("phone") == phone)
            ),
            None,
        )
        if broker is None:
            broker_id = f"broker_{str(customer['id']).replace('cust_', '', 1)}"
            if broker_id in broker_ids:
                broker_id = _new_id(EntityType.BROKERS)
            broker = {
                "id": broker_id,
                "name": customer.get("name") or "",
                "phone": phone or "",
                "cnic": customer.get("cnic") or "",
                "email": customer.get("email") or "",
                "address": customer.get("address") or "",
                "company": customer.get("company") or "",
                "commissionRate": DEFAULT_COMMISSION_RATE,
                "status": customer.get("status") if customer.get("status") in ("active", "inactive") else "active",
                "linkedCustomerId": customer["id"],
                "createdAt": customer.get("createdAt") or now,
                "updatedAt": now,
            }
            data.brokers.append(broker)
            broker_ids.add(broker_id)
            created += 1
        else:
            broker.setdefault("linkedCustomerId", customer["id"])

        customer["type"] = "both"
        customer["linkedBrokerId"] = broker["id"]
        remap[customer["id"]] = broker["id"]

    if remap:
        for project in data.projects:
            for key in ("brokerId", "companyRepId"):
                if is_record_id(project.get(key)) and project[key] in remap:
                    project[key] = remap[project[key]]
        for interaction in data.interactions:
            ref = interaction.get("brokerId")
            if is_record_id(ref) and ref in remap:
                interaction["brokerId"] = remap[interaction["brokerId"]]
        logger.info("Split %d broker customer(s), created %d broker record(s)", len(remap), created)
    return created


def backfill_commission_payments(data: CRMData, now: Optional[str] = None) -> List[Record]:
    """Add a pending broker commission row for each project with a broker and rate.

    Company-rep commissions are not back-filled. Projects that already have a
    broker row for the same recipient are left alone. The row id is
    ``cpay_migration_{projectId}``, or ``cpay_migration_{projectId}_{brokerId}``
    when a row for an earlier broker already holds that id.
    """
    now = now or iso_timestamp()
    tracked = {
        (p.get("projectId"), p.get("recipientId"))
        for p in data.commissionPayments
        if p.get("recipientType") == "broker"
        and is_record_id(p.get("projectId"))
        and is_record_id(p.get("recipientId"))
    }
    taken_ids = {p["id"] for p in data.commissionPayments if is_record_id(p.get("id"))}
    brokers_by_id = index_by_id(data.brokers)
    added: List[Record] = []
    for project in data.projects:
        project_id = project.get("id")
        broker_id = project.get("brokerId")
        rate = project.get("brokerCommissionRate")
        if not broker_id or not rate or not is_record_id(project_id) or not is_record_id(broker_id):
            continue
        if (project_id, broker_id) in tracked:
            continue
        payment_id = f"{MIGRATION_PAYMENT_PREFIX}_{project_id}"
        if payment_id in taken_ids:
            payment_id = f"{payment_id}_{broker_id}"
        if payment_id in taken_ids:
            continue
        taken_ids.add(payment_id)
        total = _number(project.get("sale")) * rate / 100
        broker = brokers_by_id.get(broker_id)
        added.append(
            {
                "id": payment_id,
                "projectId": project_id,
                "recipientId": broker_id,
                "recipientType": "broker",
                "recipientName": (broker or {}).get("name") or "Unknown Broker",
                "amount": total,
                "paidAmount": 0,
                "remainingAmount": total,
                "status": "pending",
                "createdAt": now,
                "updatedAt": now,
            }
        )
    data.commissionPayments.extend(added)
    return added


def migrate(raw: Dict[str, Any]) -> CRMData:
    """Return ``raw`` as a current-version :class:`CRMData`."""
    version = detect_version(raw)
    if version == CURRENT_VERSION:
        return CRMData.from_dict(raw)

    logger.info("Migrating data from version %s to %s", version, CURRENT_VERSION)
    payload = normalize_payload(raw)
    now = iso_timestamp()

    def items(entity_type: EntityType) -> List[Record]:
        value = payload.get(entity_type.value)
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    data = CRMData(lastUpdated=raw.get("lastUpdated"))
    data.customers = [_migrate_customer(c, now) for c in items(EntityType.CUSTOMERS)]
    data.brokers = [_migrate_broker(b, now) for b in items(EntityType.BROKERS)]
    data.projects = [_migrate_project(p, now) for p in items(EntityType.PROJECTS)]
    data.receipts = [_migrate_receipt(r, now) for r in items(EntityType.RECEIPTS)]
    data.interactions = [_migrate_interaction(i, now) for i in items(EntityType.INTERACTIONS)]
    data.inventory = [_migrate_inventory_item(i, now) for i in items(EntityType.INVENTORY)]
    data.masterProjects = [dict(m) for m in items(EntityType.MASTER_PROJECTS)]
    data.commissionPayments = [
        _migrate_commission_payment(p, now) for p in items(EntityType.COMMISSION_PAYMENTS)
    ]
    data.settings = _migrate_settings(payload.get("settings"))

    split_broker_customers(data, now)
    backfill_commission_payments(data, now)
    data.receipts = enrich_receipts(data.receipts, data.customers, data.projects)

    logger.info("Migration complete: %s", data.counts())
    return data


__all__ = [
    "LEGACY_VERSION",
    "backfill_commission_payments",
    "detect_version",
    "migrate",
    "migrate_rate",
    "needs_migration",
    "split_broker_customers",
]
