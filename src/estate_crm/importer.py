"""Import pipeline: migrate, normalize, filter, reconcile, enrich.

Everything here is pure and in-memory. Only :func:`parse_backup` can raise,
and only for payloads that are not a JSON object.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, Tuple

from estate_crm.dates import iso_timestamp
from estate_crm.enrich import enrich_receipts
from estate_crm.field_filter import rejection_reason
from estate_crm.migrate import migrate
from estate_crm.model import (
    CRMData,
    EntityStats,
    EntityType,
    ImportMode,
    ImportResult,
    Record,
    ReconcileResult,
)
from estate_crm.normalize import normalize_records
from estate_crm.reconcile import reconcile

logger = logging.getLogger(__name__)


class BackupFormatError(ValueError):
    """Raised when a backup payload cannot be read as a JSON object."""


def parse_backup(text: str | bytes) -> Dict[str, Any]:
    """Decode backup JSON, raising :class:`BackupFormatError` on anything but an object."""
    try:
        payload = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise BackupFormatError(f"Invalid JSON backup: {exc}") from exc
    if not isinstance(payload, dict):
        raise BackupFormatError("Backup must be a JSON object")
    return payload


def _rejection_messages(
    entity_type: EntityType, incoming: list, outcome: ReconcileResult
) -> list:
    messages = []
    for position in outcome.rejected:
        reason = rejection_reason(incoming[position], entity_type)
        messages.append(f"{entity_type.value}[{position}]: {reason}")
    return messages


def import_payload(
    payload: Dict[str, Any],
    existing: CRMData,
    mode: ImportMode = "replace",
    skip_duplicates: bool = False,
) -> Tuple[CRMData, ImportResult]:
    """Reconcile every entity array of ``payload`` against ``existing``.

    ``replace`` rebuilds all entity arrays from the payload, treating absent
    arrays as empty; ``merge`` keeps existing records and upserts by id.
    Settings are taken wholesale from the payload when it carries a settings
    object; a settings value of any other type is reported and ignored.
    """
    incoming_data = migrate(payload)
    result = ImportResult()
    has_settings = isinstance(payload.get("settings"), dict)
    if payload.get("settings") is not None and not has_settings:
        logger.warning("Ignoring settings of type %s", type(payload["settings"]).__name__)
        result.errors.append("settings: expected an object, existing settings kept")
    final = CRMData(
        settings=incoming_data.settings if has_settings else existing.settings,
        lastUpdated=iso_timestamp(),
    )

    for entity_type in EntityType:
        incoming = normalize_records(incoming_data.records(entity_type), entity_type)
        outcome = reconcile(
            incoming,
            existing.records(entity_type),
            mode,
            skip_duplicates,
            entity_type=entity_type,
        )
        result.stats[entity_type.value] = EntityStats(outcome.imported, outcome.skipped)
        rejections = _rejection_messages(entity_type, incoming, outcome)
        if rejections:
            logger.warning("Rejected %d %s record(s)", len(rejections), entity_type.value)
            result.errors.extend(rejections)
        final.set_records(entity_type, outcome.records)

    final.receipts = enrich_receipts(final.receipts, final.customers, final.projects)
    result.success = True
    logger.info(
        "Import (%s) finished: %d imported, %d skipped",
        mode,
        result.total_imported,
        result.total_skipped,
    )
    return final, result


def add_records(
    data: CRMData,
    entity_type: EntityType,
    records: Iterable[Record],
    skip_duplicates: bool = False,
) -> ReconcileResult:
    """Merge ``records`` into one collection of ``data`` in place."""
    incoming = normalize_records(records, entity_type)
    outcome = reconcile(
        incoming,
        data.records(entity_type),
        "merge",
        skip_duplicates,
        entity_type=entity_type,
    )
    data.set_records(entity_type, outcome.records)
    if entity_type in (EntityType.RECEIPTS, EntityType.CUSTOMERS, EntityType.PROJECTS):
        data.receipts = enrich_receipts(data.receipts, data.customers, data.projects)
    return outcome


__all__ = ["BackupFormatError", "add_records", "import_payload", "parse_backup"]
