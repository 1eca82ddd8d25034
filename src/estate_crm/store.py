"""Persistence façade: load, save, backups, and every import entry point.

:class:`Store` keeps the dataset in a key-value storage backend (the local
mode); :class:`RestStore` talks to the REST backend instead. Both own the
current :class:`CRMData` in ``self.data`` and share the import operations of
:class:`BaseStore`, which return structured results rather than raising.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from estate_crm.bulk_transactions import import_transaction_rows
from estate_crm.dates import iso_timestamp
from estate_crm.enrich import enrich_receipts
from estate_crm.excel_reader import SpreadsheetError, WorkbookSource
from estate_crm.importer import BackupFormatError, add_records, import_payload, parse_backup
from estate_crm.master_projects import build_master_projects
from estate_crm.migrate import migrate
from estate_crm.model import (
    CURRENT_VERSION,
    CRMData,
    EntityStats,
    EntityType,
    ID_PREFIXES,
    ImportMode,
    ImportResult,
    Record,
    RowError,
    generate_id,
)
from estate_crm.normalize import normalize_payload
from estate_crm.rest_client import RestClient
from estate_crm.spreadsheet import parse_broker_rows, parse_inventory_rows, to_inventory_records
from estate_crm.storage import KeyValueStorage, MemoryStorage, StorageError

logger = logging.getLogger(__name__)

STORAGE_KEY = "sitara_crm_data"
AUTO_BACKUP_KEY = "sitara_crm_auto_backup"
BACKUP_PREFIX = "sitara_crm_backup_"
PRE_CLEAR_BACKUP = "pre_clear_backup"
STORAGE_QUOTA = 5 * 1024 * 1024  # Bytes, browser local-storage budget

# Failures that abort one import call and become ImportResult.errors
_IMPORT_FAILURES = (BackupFormatError, SpreadsheetError, FileNotFoundError, StorageError)


@dataclass(slots=True)
class BackupInfo:
    key: str
    name: str
    date: str


@dataclass(slots=True)
class StorageStats:
    used: int
    available: int

    @property
    def percentage(self) -> float:
        return self.used / self.available * 100 if self.available else 0.0


def row_error_messages(errors: Iterable[RowError]) -> List[str]:
    return [f"Row {e.row}: {'; '.join(e.errors)}" for e in errors]


def _failed(message: str) -> ImportResult:
    return ImportResult(success=False, errors=[message])


def _stamp(data: CRMData) -> Dict[str, Any]:
    data.version = CURRENT_VERSION
    data.lastUpdated = iso_timestamp()
    return data.to_dict()


class BaseStore:
    """Import operations shared by the local and REST-backed stores."""

    def __init__(self) -> None:
        self.data = CRMData()

    def load(self) -> CRMData:  # pragma: no cover - overridden
        raise NotImplementedError

    def save(self, data: Optional[CRMData] = None) -> bool:  # pragma: no cover - overridden
        raise NotImplementedError

    def _commit(self, data: CRMData, result: ImportResult) -> ImportResult:
        if not self.save(data):
            result.success = False
            result.errors.append("Failed to save imported data")
        return result

    # ------------------------------------------------------------------
    # JSON backups
    # ------------------------------------------------------------------

    def export_json(self) -> str:
        """Current data plus export metadata, pretty-printed."""
        payload = self.load().to_dict()
        payload["exportDate"] = iso_timestamp()
        payload["exportVersion"] = CURRENT_VERSION
        return json.dumps(payload, indent=2, ensure_ascii=False)

    def import_json(
        self,
        text: str | bytes,
        mode: ImportMode = "replace",
        skip_duplicates: bool = False,
    ) -> ImportResult:
        """Reconcile a JSON backup into the stored dataset and save it."""
        try:
            payload = parse_backup(text)
        except BackupFormatError as exc:
            logger.warning("Import failed: %s", exc)
            return _failed(f"Import failed: {exc}")

        existing = self.load()
        final, result = import_payload(payload, existing, mode, skip_duplicates)
        return self._commit(final, result)

    def import_backup_file(self, text: str | bytes) -> bool:
        """Migrate a backup and substitute it for the whole dataset."""
        try:
            payload = parse_backup(text)
        except BackupFormatError as exc:
            logger.warning("Backup import failed: %s", exc)
            return False
        data = migrate(payload)
        saved = self.save(data)
        if saved:
            logger.info("Backup imported: %s", data.counts())
        return saved

    # ------------------------------------------------------------------
    # Workbook imports
    # ------------------------------------------------------------------

    def import_inventory_workbook(self, source: WorkbookSource) -> ImportResult:
        try:
            parsed = parse_inventory_rows(source)
        except _IMPORT_FAILURES as exc:
            return _failed(str(exc))

        data = self.load()
        outcome = add_records(data, EntityType.INVENTORY, to_inventory_records(parsed.data))
        result = ImportResult(success=True, errors=row_error_messages(parsed.errors))
        result.stats[EntityType.INVENTORY.value] = EntityStats(
            outcome.imported, outcome.skipped + len(parsed.errors)
        )
        return self._commit(data, result)

    def import_brokers_workbook(self, source: WorkbookSource) -> ImportResult:
        data = self.load()
        try:
            parsed = parse_broker_rows(source, data.brokers)
        except _IMPORT_FAILURES as exc:
            return _failed(str(exc))

        outcome = add_records(data, EntityType.BROKERS, parsed.data)
        result = ImportResult(success=True, errors=row_error_messages(parsed.errors))
        result.stats[EntityType.BROKERS.value] = EntityStats(
            outcome.imported, outcome.skipped + parsed.skipped + len(parsed.errors)
        )
        return self._commit(data, result)

    def import_transactions_workbook(self, source: WorkbookSource) -> ImportResult:
        """Create projects from transaction rows, with any customers/brokers they need."""
        data = self.load()
        try:
            parsed = import_transaction_rows(source, data.customers, data.brokers, data.settings)
        except _IMPORT_FAILURES as exc:
            return _failed(str(exc))

        result = ImportResult(success=True, errors=row_error_messages(parsed.errors))
        for entity_type, records in (
            (EntityType.CUSTOMERS, parsed.customers_created),
            (EntityType.BROKERS, parsed.brokers_created),
            (EntityType.PROJECTS, parsed.projects),
        ):
            outcome = add_records(data, entity_type, records)
            result.stats[entity_type.value] = EntityStats(outcome.imported, outcome.skipped)
        result.stats[EntityType.PROJECTS.value].skipped += parsed.skipped
        return self._commit(data, result)

    # ------------------------------------------------------------------
    # Single records and derived data
    # ------------------------------------------------------------------

    def add_entity(self, entity_type: EntityType | str, record: Record) -> Optional[Record]:
        """Add or update one record through the same filter as imports.

        Returns the stored record, or ``None`` when it was rejected or could
        not be saved.
        """
        member = EntityType(entity_type)
        now = iso_timestamp()
        record = dict(record)
        record.setdefault("id", generate_id(ID_PREFIXES[member]))
        record.setdefault("createdAt", now)
        record["updatedAt"] = now

        data = self.load()
        outcome = add_records(data, member, [record])
        if outcome.rejected:
            logger.warning("Rejected %s record %s", member.value, record["id"])
            return None
        if not self.save(data):
            return None
        return next(r for r in data.records(member) if r.get("id") == record["id"])

    def refresh_master_projects(self) -> List[Record]:
        """Rebuild and persist the cached MasterProject aggregation."""
        data = self.load()
        data.masterProjects = build_master_projects(
            data.projects, data.inventory, data.commissionPayments
        )
        self.save(data)
        return data.masterProjects


class Store(BaseStore):
    """Dataset kept as JSON under fixed keys of a key-value storage."""

    def __init__(self, storage: Optional[KeyValueStorage] = None) -> None:
        super().__init__()
        self.storage = storage if storage is not None else MemoryStorage()

    def _read_json(self, key: str) -> Optional[Dict[str, Any]]:
        text = self.storage.get(key)
        if text is None:
            return None
        try:
            return parse_backup(text)
        except BackupFormatError as exc:
            logger.warning("Ignoring unreadable value under %s: %s", key, exc)
            return None

    def load(self) -> CRMData:
        """Read the stored dataset, migrating older versions on the way in."""
        try:
            raw = self._read_json(STORAGE_KEY)
        except StorageError as exc:
            logger.error("Error loading data: %s", exc)
            raw = None
        if raw is None:
            logger.debug("No stored data found, using defaults")
            self.data = CRMData()
            return self.data

        data = migrate(raw)
        data.receipts = enrich_receipts(data.receipts, data.customers, data.projects)
        logger.info(
            "Loaded CRM data: %d customers, %d projects", len(data.customers), len(data.projects)
        )
        self.data = data
        return data

    def save(self, data: Optional[CRMData] = None) -> bool:
        """Write ``data`` (default: the in-memory dataset) plus the rolling auto-backup."""
        data = data if data is not None else self.data
        payload = _stamp(data)
        try:
            self.storage.set(STORAGE_KEY, json.dumps(payload))
            backup = dict(payload, backupDate=iso_timestamp())
            self.storage.set(AUTO_BACKUP_KEY, json.dumps(backup))
        except (StorageError, TypeError, ValueError) as exc:
            logger.error("Error saving data: %s", exc)
            return False
        self.data = data
        logger.info(
            "Saved CRM data: %d customers, %d projects", len(data.customers), len(data.projects)
        )
        return True

    # ------------------------------------------------------------------
    # Named backups
    # ------------------------------------------------------------------

    def create_backup(self, name: Optional[str] = None) -> str:
        """Snapshot the stored dataset under a named key and return the name.

        Raises :class:`StorageError` when the name cannot be used as a key or
        the snapshot cannot be written.
        """
        backup_name = name or f"backup_{iso_timestamp()[:10]}"
        payload = self.load().to_dict()
        payload.update(backupDate=iso_timestamp(), backupName=backup_name)
        self.storage.set(f"{BACKUP_PREFIX}{backup_name}", json.dumps(payload))
        logger.info("Created backup %s", backup_name)
        return backup_name

    def list_backups(self) -> List[BackupInfo]:
        """Named backups, newest first."""
        backups: List[BackupInfo] = []
        for key in self.storage.keys():
            if not key.startswith(BACKUP_PREFIX):
                continue
            payload = self._read_json(key)
            if payload is None:
                continue
            backups.append(
                BackupInfo(
                    key=key,
                    name=payload.get("backupName") or key[len(BACKUP_PREFIX):],
                    date=payload.get("backupDate") or "Unknown",
                )
            )
        backups.sort(key=lambda b: b.date, reverse=True)
        return backups

    def restore_backup(self, key: str) -> bool:
        """Make the backup stored under ``key`` the current dataset."""
        if not key.startswith(BACKUP_PREFIX) and key != AUTO_BACKUP_KEY:
            key = f"{BACKUP_PREFIX}{key}"
        try:
            payload = self._read_json(key)
        except StorageError as exc:
            logger.error("Error restoring backup %s: %s", key, exc)
            return False
        if payload is None:
            logger.error("Backup not found: %s", key)
            return False
        return self.save(migrate(payload))

    def clear_all_data(self) -> bool:
        """Remove the dataset after snapshotting it to ``pre_clear_backup``."""
        try:
            self.create_backup(PRE_CLEAR_BACKUP)
            self.storage.remove(STORAGE_KEY)
        except StorageError as exc:
            logger.error("Error clearing data: %s", exc)
            return False
        self.data = CRMData()
        logger.info("All data cleared (backup created)")
        return True

    def storage_stats(self) -> StorageStats:
        """Approximate bytes used by every key, counted as UTF-16."""
        used = sum(len(self.storage.get(key) or "") * 2 for key in self.storage.keys())
        return StorageStats(used=used, available=STORAGE_QUOTA)


class RestStore(BaseStore):
    """Dataset held by the REST backend, read and written as whole backups."""

    def __init__(
        self,
        client: RestClient,
        snapshots: Optional[KeyValueStorage] = None,
    ) -> None:
        super().__init__()
        self.client = client
        self.snapshots = snapshots if snapshots is not None else MemoryStorage()
        self.last_error: Optional[str] = None

    def load(self) -> CRMData:
        response = self.client.export_backup()
        if not response.success or not isinstance(response.data, dict):
            self.last_error = response.error or "Backup export returned no data"
            logger.error("Error loading data from backend: %s", self.last_error)
            return self.data

        data = migrate(normalize_payload(response.data))
        data.receipts = enrich_receipts(data.receipts, data.customers, data.projects)
        self.last_error = None
        self.data = data
        return data

    def save(self, data: Optional[CRMData] = None) -> bool:
        data = data if data is not None else self.data
        response = self.client.import_backup(_stamp(data))
        if not response.success:
            self.last_error = response.error
            logger.error("Error saving data to backend: %s", response.error)
            return False
        self.last_error = None
        self.data = data
        return True

    def clear_all_data(self) -> bool:
        """Clear the backend after keeping a local ``pre_clear_backup`` snapshot."""
        response = self.client.export_backup()
        if not response.success:
            self.last_error = response.error
            logger.error("Not clearing: snapshot failed: %s", response.error)
            return False
        snapshot = dict(response.data or {}, backupDate=iso_timestamp(), backupName=PRE_CLEAR_BACKUP)
        self.snapshots.set(f"{BACKUP_PREFIX}{PRE_CLEAR_BACKUP}", json.dumps(snapshot))

        response = self.client.clear_backup()
        if not response.success:
            self.last_error = response.error
            logger.error("Error clearing backend data: %s", response.error)
            return False
        self.data = CRMData()
        return True


__all__ = [
    "AUTO_BACKUP_KEY",
    "BACKUP_PREFIX",
    "BackupInfo",
    "BaseStore",
    "PRE_CLEAR_BACKUP",
    "RestStore",
    "STORAGE_KEY",
    "STORAGE_QUOTA",
    "StorageStats",
    "Store",
    "row_error_messages",
]
