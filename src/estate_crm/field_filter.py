"""Strip records down to their registered fields."""

from __future__ import annotations

import copy
from typing import List, Optional

from estate_crm.model import EntityType, Record, is_record_id
from estate_crm.schema import fields


def missing_fields(record: Record, entity_type: EntityType | str) -> List[str]:
    """Return the required fields absent from ``record`` (a ``None`` value counts as present)."""
    schema = fields(entity_type)
    if schema is None:
        return []
    return [name for name in schema.required if name not in record]


def invalid_fields(record: Record, entity_type: EntityType | str) -> List[str]:
    """Return present fields whose value cannot be used, currently only a non-scalar ``id``."""
    if fields(entity_type) is None:
        return []
    if "id" in record and not is_record_id(record["id"]):
        return ["id"]
    return []


def rejection_reason(record: Record, entity_type: EntityType | str) -> Optional[str]:
    missing = missing_fields(record, entity_type)
    if missing:
        return f"missing required field(s): {', '.join(missing)}"
    invalid = invalid_fields(record, entity_type)
    if invalid:
        return f"invalid field(s): {', '.join(invalid)}"
    return None


def filter_record(record: Record, entity_type: EntityType | str) -> Optional[Record]:
    """Return a copy of ``record`` holding only known fields, or ``None`` if it is unusable.

    A record is unusable when a required field is absent or its id is not a
    string or integer. Unregistered entity types pass through unchanged.
    """
    schema = fields(entity_type)
    if schema is None:
        return record
    if rejection_reason(record, entity_type) is not None:
        return None

    filtered: Record = {}
    for name in schema.required + schema.optional:
        if name in record:
            filtered[name] = record[name]
    for name in schema.nested:
        if name in record and record[name] is not None:
            filtered[name] = copy.deepcopy(record[name])
    return filtered


__all__ = ["filter_record", "invalid_fields", "missing_fields", "rejection_reason"]
