"""Resolve historical field aliases into the canonical record shape.

Records reach us from three places: old browser backups (``saleValue`` on
projects, ``unit`` on inventory, ...), REST exports (snake_case column names,
numbers serialised as strings) and current backups. Each entity type has one
alias function here; it fills a canonical field only when that field is absent,
so running it twice changes nothing.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from estate_crm.model import EntityType, Record

_SNAKE_RE = re.compile(r"_([a-z0-9])")

# Numeric columns per entity (Postgres NUMERIC arrives as text)
_NUMERIC_FIELDS: Dict[EntityType, Tuple[str, ...]] = {
    EntityType.PROJECTS: (
        "sale", "received", "marlas", "rate", "balance", "overdue",
        "brokerCommissionRate", "companyRepCommissionRate",
    ),
    EntityType.RECEIPTS: ("amount",),
    EntityType.INVENTORY: ("marlas", "ratePerMarla", "totalValue", "saleValue"),
    EntityType.BROKERS: ("commissionRate",),
    EntityType.COMMISSION_PAYMENTS: ("amount", "paidAmount", "remainingAmount"),
}


def snake_to_camel(name: str) -> str:
    return _SNAKE_RE.sub(lambda m: m.group(1).upper(), name)


def to_number(value: Any) -> Any:
    """Return ``value`` as int/float when it is a numeric string, otherwise unchanged."""
    if not isinstance(value, str):
        return value
    text = value.strip().replace(",", "")
    if not text:
        return value
    try:
        number = float(text)
    except ValueError:
        return value
    return int(number) if number.is_integer() and "." not in text else number


def split_tags(value: Any) -> list:
    """Split a comma/semicolon separated string into trimmed, non-empty tags."""
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(tag).strip() for tag in value if str(tag).strip()]
    return [tag.strip() for tag in re.split(r"[,;]", str(value)) if tag.strip()]


def _camelise_keys(record: Record) -> Record:
    result: Record = {}
    for key, value in record.items():
        if "_" in key:
            canonical = snake_to_camel(key)
            if canonical in record:
                continue  # Canonical spelling wins
            result[canonical] = value
        else:
            result[key] = value
    return result


def _first_present(record: Record, *names: str) -> Optional[str]:
    for name in names:
        if record.get(name) not in (None, ""):
            return name
    return None


def _normalize_project(record: Record) -> Record:
    if "sale" not in record:
        alias = _first_present(record, "saleValue", "totalSale")
        if alias:
            record["sale"] = record[alias]
    if "rate" not in record and "ratePerMarla" in record:
        record["rate"] = record["ratePerMarla"]
    return record


def _normalize_inventory(record: Record) -> Record:
    if "unitShopNumber" not in record and "unit" in record:
        record["unitShopNumber"] = record["unit"]
    if "unit" not in record and "unitShopNumber" in record:
        record["unit"] = record["unitShopNumber"]
    if "totalValue" not in record and "saleValue" in record:
        record["totalValue"] = record["saleValue"]
    if "saleValue" not in record and "totalValue" in record:
        record["saleValue"] = record["totalValue"]
    features = record.get("plotFeatures")
    if features is None and record.get("plotFeature"):
        record["plotFeatures"] = split_tags(record["plotFeature"])
    elif isinstance(features, str):
        record["plotFeatures"] = split_tags(features)
    return record


def _passthrough(record: Record) -> Record:
    return record


_NORMALIZERS: Dict[EntityType, Callable[[Record], Record]] = {
    EntityType.CUSTOMERS: _passthrough,
    EntityType.BROKERS: _passthrough,
    EntityType.PROJECTS: _normalize_project,
    EntityType.RECEIPTS: _passthrough,
    EntityType.INTERACTIONS: _passthrough,
    EntityType.INVENTORY: _normalize_inventory,
    EntityType.MASTER_PROJECTS: _passthrough,
    EntityType.COMMISSION_PAYMENTS: _passthrough,
}


def normalize_record(record: Record, entity_type: EntityType | str) -> Record:
    """Return a copy of ``record`` with aliases resolved for ``entity_type``."""
    member = EntityType.lookup(entity_type)
    if member is None:
        return dict(record)
    normalized = _NORMALIZERS[member](_camelise_keys(record))
    for name in _NUMERIC_FIELDS.get(member, ()):
        if name in normalized:
            normalized[name] = to_number(normalized[name])
    return normalized


def normalize_records(records: Iterable[Any], entity_type: EntityType | str) -> list:
    return [normalize_record(r, entity_type) for r in records if isinstance(r, dict)]


def normalize_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Apply :func:`normalize_record` to every entity array of a backup payload."""
    result = dict(payload)
    for entity_type in EntityType:
        items = payload.get(entity_type.value)
        if isinstance(items, list):
            result[entity_type.value] = normalize_records(items, entity_type)
    return result


__all__ = [
    "normalize_payload",
    "normalize_record",
    "normalize_records",
    "snake_to_camel",
    "split_tags",
    "to_number",
]
