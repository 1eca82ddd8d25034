"""Field registry for every persisted entity type.

Each entry lists the fields a record must carry, the fields it may carry, and
the nested structures that are copied through whole by the field filter.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

from estate_crm.model import EntityType


@dataclass(frozen=True, slots=True)
class EntitySchema:
    required: Tuple[str, ...]
    optional: Tuple[str, ...]
    nested: Tuple[str, ...] = ()  # Non-scalar sub-structures preserved verbatim

    @property
    def allowed(self) -> FrozenSet[str]:
        return frozenset(self.required) | frozenset(self.optional) | frozenset(self.nested)


SCHEMAS: Dict[EntityType, EntitySchema] = {
    EntityType.CUSTOMERS: EntitySchema(
        required=("id", "name", "type", "status", "createdAt"),
        optional=(
            "cnic", "phone", "email", "company", "address", "updatedAt",
            "linkedBrokerId",
        ),
    ),
    EntityType.PROJECTS: EntitySchema(
        required=(
            "id", "customerId", "name", "unit", "sale", "received", "status",
            "createdAt",
        ),
        optional=(
            "brokerId", "brokerCommissionRate", "companyRepId",
            "companyRepCommissionRate", "marlas", "rate", "cycle", "notes",
            "updatedAt", "balance", "overdue",
        ),
        nested=("installments",),
    ),
    EntityType.RECEIPTS: EntitySchema(
        required=("id", "customerId", "projectId", "amount", "date", "method", "createdAt"),
        optional=(
            "installmentId", "reference", "notes", "receiptNumber",
            "customerName", "projectName", "updatedAt",
        ),
    ),
    EntityType.INTERACTIONS: EntitySchema(
        required=("id", "contactType", "type", "status", "priority", "date", "createdAt"),
        optional=("customerId", "brokerId", "notes", "nextFollowUp", "updatedAt"),
        nested=("contacts", "attachments"),
    ),
    EntityType.INVENTORY: EntitySchema(
        required=("id", "projectName", "status", "createdAt"),
        optional=(
            "block", "unitShopNumber", "unit", "unitType", "marlas",
            "ratePerMarla", "totalValue", "saleValue", "plotFeature",
            "otherFeatures", "notes", "transactionId", "customerId", "updatedAt",
        ),
        nested=("plotFeatures",),
    ),
    EntityType.MASTER_PROJECTS: EntitySchema(
        required=("id", "name", "createdAt"),
        optional=(
            "description", "location", "totalUnits", "availableUnits",
            "soldUnits", "reservedUnits", "blockedUnits", "totalSaleValue",
            "totalReceived", "totalReceivable", "totalOverdue",
            "totalBrokerCommission", "totalBrokerCommissionPaid",
            "totalCompanyRepCommission", "totalCompanyRepCommissionPaid",
            "updatedAt",
        ),
    ),
    EntityType.BROKERS: EntitySchema(
        required=("id", "name", "phone", "cnic", "status", "createdAt"),
        optional=(
            "email", "address", "company", "commissionRate", "bankDetails",
            "notes", "linkedCustomerId", "updatedAt",
        ),
    ),
    EntityType.COMMISSION_PAYMENTS: EntitySchema(
        required=(
            "id", "projectId", "recipientId", "recipientType", "recipientName",
            "amount", "paidAmount", "remainingAmount", "status", "createdAt",
        ),
        optional=(
            "paymentDate", "paymentMethod", "paymentReference", "notes",
            "updatedAt",
        ),
    ),
}


def fields(entity_type: EntityType | str) -> Optional[EntitySchema]:
    """Return the schema for ``entity_type``; ``None`` means "do not filter"."""
    member = EntityType.lookup(entity_type)
    if member is None:
        return None
    return SCHEMAS.get(member)


__all__ = ["EntitySchema", "SCHEMAS", "fields"]
