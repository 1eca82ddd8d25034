from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from estate_crm.field_filter import filter_record
from estate_crm.model import EntityType, ImportMode, Record, ReconcileResult, is_record_id


def reconcile(
    incoming: Iterable[Record],
    existing: Iterable[Record],
    mode: ImportMode = "merge",
    skip_duplicates: bool = False,
    *,
    entity_type: Optional[EntityType | str] = None,
) -> ReconcileResult:
    """Combine ``incoming`` records with ``existing`` ones by id.

    ``merge`` starts from the existing records, ``replace`` from nothing.
    A record whose id is already in the result is skipped when
    ``skip_duplicates`` is set, otherwise it replaces the earlier record at
    its original position. New ids are appended. When ``entity_type`` is
    given each incoming record goes through the field filter first and
    rejected ones count as skipped.
    """

    result: List[Record] = list(existing) if mode == "merge" else []
    # id -> position in result, so updates keep the first-occurrence slot
    index_by_id: Dict[object, int] = {}
    for position, record in enumerate(result):
        if is_record_id(record.get("id")):
            index_by_id.setdefault(record["id"], position)

    outcome = ReconcileResult(records=result)
    for position, raw in enumerate(incoming):
        record = filter_record(raw, entity_type) if entity_type is not None else raw
        if record is None:
            outcome.skipped += 1
            outcome.rejected.append(position)
            continue

        record_id = record.get("id")
        slot = index_by_id.get(record_id) if is_record_id(record_id) else None
        if slot is not None and skip_duplicates:
            outcome.skipped += 1
        elif slot is not None:
            result[slot] = record  # Update in place
            outcome.imported += 1
        else:
            if is_record_id(record_id):
                index_by_id[record_id] = len(result)
            result.append(record)
            outcome.imported += 1

    return outcome


__all__ = ["reconcile"]
