import json
from unittest.mock import MagicMock

import pytest
from openpyxl import Workbook

from estate_crm.model import CURRENT_VERSION, CRMData, EntityType
from estate_crm.rest_client import ApiResponse
from estate_crm.bulk_transactions import TRANSACTION_COLUMNS
from estate_crm.spreadsheet import BROKER_COLUMNS, INVENTORY_COLUMNS
from estate_crm.storage import FileStorage, MemoryStorage, StorageError
from estate_crm.store import (
    AUTO_BACKUP_KEY,
    BACKUP_PREFIX,
    STORAGE_KEY,
    STORAGE_QUOTA,
    RestStore,
    Store,
)

NOW = "2024-05-01T00:00:00.000Z"


def _customer(cid, name="Customer"):
    return {"id": cid, "name": name, "type": "customer", "status": "active", "createdAt": NOW}


@pytest.fixture
def store():
    return Store(MemoryStorage())


@pytest.fixture
def seeded(store):
    store.save(CRMData(customers=[_customer("cust_1", "Ali")]))
    return store


# --------------------------------------------------------------------
# STORAGE BACKENDS
# --------------------------------------------------------------------
def test_file_storage_round_trip(tmp_path):
    storage = FileStorage(tmp_path / "data")

    storage.set("alpha", '{"a": 1}')

    assert storage.get("alpha") == '{"a": 1}'
    assert storage.keys() == ["alpha"]
    storage.remove("alpha")
    assert storage.get("alpha") is None
    assert storage.keys() == []


def test_file_storage_rejects_path_keys(tmp_path):
    with pytest.raises(StorageError):
        FileStorage(tmp_path).set("../escape", "{}")


# --------------------------------------------------------------------
# LOAD / SAVE
# --------------------------------------------------------------------
def test_load_without_data_returns_defaults(store):
    data = store.load()
    assert data.counts() == CRMData().counts()
    assert data.settings.currency == "PKR"


def test_load_ignores_unreadable_payload():
    store = Store(MemoryStorage({STORAGE_KEY: "{broken"}))
    assert store.load().customers == []


def test_save_stamps_version_and_writes_auto_backup(store):
    """Every save refreshes the auto-backup with the same data."""
    data = CRMData(version="3.0", customers=[_customer("cust_1")])

    assert store.save(data)

    primary = json.loads(store.storage.get(STORAGE_KEY))
    backup = json.loads(store.storage.get(AUTO_BACKUP_KEY))
    assert primary["version"] == CURRENT_VERSION
    assert primary["lastUpdated"]
    assert backup["customers"] == primary["customers"]
    assert "backupDate" in backup


def test_save_reports_storage_failure():
    storage = MagicMock()
    storage.set.side_effect = StorageError("disk full")

    assert Store(storage).save(CRMData()) is False


def test_load_migrates_legacy_payload():
    """Stored legacy data is upgraded on load."""
    legacy = {"customers": [{"id": "c1", "type": "broker", "name": "Ali", "phone": "0300"}]}
    store = Store(MemoryStorage({STORAGE_KEY: json.dumps(legacy)}))

    data = store.load()

    assert data.version == CURRENT_VERSION
    assert data.brokers[0]["name"] == "Ali"
    assert store.data is data


def test_file_backed_store_persists_between_instances(tmp_path):
    Store(FileStorage(tmp_path)).save(CRMData(customers=[_customer("cust_1")]))
    assert Store(FileStorage(tmp_path)).load().customers[0]["id"] == "cust_1"


# --------------------------------------------------------------------
# BACKUPS
# --------------------------------------------------------------------
def test_named_backups_are_listed_newest_first(seeded):
    seeded.create_backup("first")
    seeded.storage.set(
        f"{BACKUP_PREFIX}older", json.dumps({"backupName": "older", "backupDate": "2000-01-01"})
    )

    backups = seeded.list_backups()

    assert [b.name for b in backups] == ["first", "older"]
    assert backups[0].key == f"{BACKUP_PREFIX}first"


def test_restore_backup_by_name(seeded):
    seeded.create_backup("snapshot")
    seeded.save(CRMData())

    assert seeded.restore_backup("snapshot")
    assert seeded.load().customers[0]["name"] == "Ali"


def test_restore_missing_backup(store):
    assert store.restore_backup("nope") is False


def test_clear_all_data_keeps_pre_clear_snapshot(seeded):
    """Cleared data can be restored from the automatic snapshot."""
    assert seeded.clear_all_data()

    assert seeded.load().customers == []
    assert seeded.restore_backup("pre_clear_backup")
    assert seeded.load().customers[0]["id"] == "cust_1"


def test_storage_stats(seeded):
    stats = seeded.storage_stats()
    expected = sum(len(seeded.storage.get(k)) * 2 for k in seeded.storage.keys())
    assert stats.used == expected
    assert stats.available == STORAGE_QUOTA
    assert 0 < stats.percentage < 100


# --------------------------------------------------------------------
# IMPORT / EXPORT
# --------------------------------------------------------------------
def test_export_includes_metadata(seeded):
    exported = json.loads(seeded.export_json())

    assert exported["exportVersion"] == CURRENT_VERSION
    assert exported["exportDate"]
    assert exported["customers"][0]["name"] == "Ali"


def test_import_json_merge_and_persist(seeded):
    payload = {"version": CURRENT_VERSION, "customers": [_customer("cust_2", "Sara")]}

    result = seeded.import_json(json.dumps(payload), mode="merge")

    assert result.success
    assert [c["id"] for c in seeded.load().customers] == ["cust_1", "cust_2"]


def test_import_json_parse_failure_is_structured(seeded):
    result = seeded.import_json("not json at all")

    assert not result.success
    assert result.errors[0].startswith("Import failed:")
    assert seeded.load().customers[0]["id"] == "cust_1"


def test_export_then_import_is_stable(seeded):
    exported = seeded.export_json()

    result = seeded.import_json(exported, mode="merge", skip_duplicates=True)

    assert result.total_imported == 0
    assert result.skipped["customers"] == 1


def test_import_backup_file_replaces_everything(seeded):
    legacy = {"customers": [{"id": "c9", "name": "Zed", "type": "customer"}]}

    assert seeded.import_backup_file(json.dumps(legacy))
    assert [c["id"] for c in seeded.load().customers] == ["c9"]


def test_import_inventory_workbook(store, tmp_path):
    """Row errors are reported and counted as skipped while valid rows import."""
    path = tmp_path / "inventory.xlsx"
    wb = Workbook()
    ws = wb.active
    ws.append(INVENTORY_COLUMNS)
    ws.append(["Tower", "A", "1", None, "abc", None, 100, None])
    ws.append(["Tower", "A", "2", None, None, None, 200, None])
    wb.save(path)

    result = store.import_inventory_workbook(path)

    assert result.success
    assert result.imported["inventory"] == 1
    assert result.skipped["inventory"] == 1
    assert result.errors == ["Row 2: Marlas must be a positive number"]
    assert store.load().inventory[0]["unitShopNumber"] == "2"


def test_import_workbook_file_errors_are_structured(store, tmp_path):
    result = store.import_inventory_workbook(tmp_path / "missing.xlsx")
    assert not result.success
    assert result.errors


def test_import_json_ignores_settings_that_are_not_an_object(seeded):
    """A backup whose settings is a list still imports and keeps the stored settings."""
    seeded.import_json(json.dumps({"settings": {"currency": "USD"}, "version": CURRENT_VERSION}), "merge")

    result = seeded.import_json('{"version": "4.0", "settings": ["x"]}', "merge")

    assert result.success
    assert result.errors == ["settings: expected an object, existing settings kept"]
    assert seeded.load().settings.currency == "USD"


def test_import_json_skips_records_with_list_ids(seeded):
    payload = {"version": CURRENT_VERSION, "customers": [dict(_customer("x"), id=["cust_1"])]}

    result = seeded.import_json(json.dumps(payload), "merge")

    assert result.success
    assert result.skipped["customers"] == 1
    assert [c["id"] for c in seeded.load().customers] == ["cust_1"]


def _transaction_row(**values):
    defaults = {
        "Customer Name/Phone": "Ali",
        "Project Name": "Tower",
        "Unit/Shop Number": "A-1",
        "Sale Value": 1000000,
        "Installments": 3,
        "First Due Date": "2025-01-31",
    }
    defaults.update(values)
    return [defaults.get(column) for column in TRANSACTION_COLUMNS]


def _sheet(path, headers, *rows):
    wb = Workbook()
    ws = wb.active
    ws.append(list(headers))
    for row in rows:
        ws.append(list(row))
    wb.save(path)
    return path


def test_import_transactions_workbook_saves_created_references(seeded, tmp_path):
    """Projects are stored together with the customers and brokers they created."""
    path = _sheet(
        tmp_path / "transactions.xlsx",
        TRANSACTION_COLUMNS,
        _transaction_row(**{"Broker Name/Phone": "New Broker", "Received Amount": 400000}),
        _transaction_row(
            **{"Customer Name/Phone": "Sara Malik", "Unit/Shop Number": "A-2", "Broker Name/Phone": "new broker"}
        ),
        _transaction_row(**{"Unit/Shop Number": "A-3", "Installments": 0}),
    )

    result = seeded.import_transactions_workbook(path)

    assert result.success
    assert result.imported["customers"] == 1
    assert result.imported["brokers"] == 1
    assert result.imported["projects"] == 2
    assert result.skipped["projects"] == 1
    assert result.errors == ["Row 4: Installments must be a whole number between 1 and 36"]

    data = seeded.load()
    [broker] = data.brokers
    assert [c["name"] for c in data.customers] == ["Ali", "Sara Malik"]
    assert [p["customerId"] for p in data.projects] == ["cust_1", data.customers[1]["id"]]
    assert {p["brokerId"] for p in data.projects} == {broker["id"]}
    assert data.projects[0]["balance"] == 600000
    assert [i["amount"] for i in data.projects[0]["installments"]] == [200000] * 3


def test_import_brokers_workbook_counts_duplicates_and_row_errors(store, tmp_path):
    store.save(
        CRMData(
            brokers=[
                {"id": "b1", "name": "Known", "phone": "0300", "cnic": "35201-1", "status": "active", "createdAt": NOW}
            ]
        )
    )
    path = _sheet(
        tmp_path / "brokers.xlsx",
        BROKER_COLUMNS,
        ["Known Again", "0300", "35201-1", None, None, None, None, None, None, None],
        ["Bilal", "0311", "35201-2", None, None, None, 2, None, None, None],
        ["Bilal Twice", "0311", "35201-2", None, None, None, None, None, None, None],
        ["Too Greedy", "0322", "35201-3", None, None, None, 150, None, None, None],
    )

    result = store.import_brokers_workbook(path)

    assert result.success
    assert result.imported["brokers"] == 1
    assert result.skipped["brokers"] == 3
    assert result.errors == ["Row 5: Commission Rate % must be between 0 and 100"]
    assert [b["name"] for b in store.load().brokers] == ["Known", "Bilal"]


def test_add_entity_generates_id_and_filters(store):
    record = store.add_entity(
        EntityType.CUSTOMERS,
        {"name": "Ali", "type": "customer", "status": "active", "secret": True},
    )

    assert record["id"].startswith("cust_")
    assert "secret" not in record
    assert store.load().customers == [record]


def test_add_entity_rejects_incomplete_record(store):
    assert store.add_entity("receipts", {"amount": 5}) is None
    assert store.load().receipts == []


def test_refresh_master_projects(store):
    store.save(
        CRMData(
            projects=[
                {"id": "p1", "name": "Tower", "sale": 100, "received": 40},
                {"id": "p2", "name": "tower ", "sale": 50, "received": 50},
            ]
        )
    )

    [master] = store.refresh_master_projects()

    assert master["totalSaleValue"] == 150
    assert store.load().masterProjects == [master]


# --------------------------------------------------------------------
# REST-BACKED STORE
# --------------------------------------------------------------------
def test_rest_store_load_normalizes_backend_rows():
    client = MagicMock()
    client.export_backup.return_value = ApiResponse(
        True,
        data={
            "version": "4.0",
            "customers": [
                {"id": "cust_1", "name": "Ali", "type": "customer", "status": "active", "created_at": NOW}
            ],
            "projects": [
                {"id": "p1", "customer_id": "cust_1", "name": "Tower", "unit": "1", "sale": "1000.00", "received": "0"}
            ],
            "receipts": [
                {"id": "r1", "customer_id": "cust_1", "project_id": "p1", "amount": "10", "date": "2024-01-02", "created_at": NOW}
            ],
        },
    )

    data = RestStore(client).load()

    assert data.customers[0]["createdAt"] == NOW
    assert data.projects[0]["sale"] == 1000
    assert data.receipts[0]["customerName"] == "Ali"


def test_rest_store_load_failure_keeps_previous_data():
    client = MagicMock()
    client.export_backup.return_value = ApiResponse(False, error="down", error_kind="network")
    store = RestStore(client)

    assert store.load().customers == []
    assert store.last_error == "down"


def test_rest_store_save_posts_backup():
    client = MagicMock()
    client.import_backup.return_value = ApiResponse(True, data={})

    assert RestStore(client).save(CRMData(customers=[_customer("cust_1")]))

    [payload] = client.import_backup.call_args.args
    assert payload["version"] == CURRENT_VERSION
    assert payload["customers"][0]["id"] == "cust_1"


def test_rest_store_clear_snapshots_first():
    """The backend is only cleared after a local snapshot is written."""
    client = MagicMock()
    client.export_backup.return_value = ApiResponse(True, data={"customers": [_customer("c1")]})
    client.clear_backup.return_value = ApiResponse(True, data={})
    snapshots = MemoryStorage()

    assert RestStore(client, snapshots).clear_all_data()

    saved = json.loads(snapshots.get(f"{BACKUP_PREFIX}pre_clear_backup"))
    assert saved["customers"][0]["id"] == "c1"
    client.clear_backup.assert_called_once()


def test_rest_store_does_not_clear_without_snapshot():
    client = MagicMock()
    client.export_backup.return_value = ApiResponse(False, error="timeout", error_kind="timeout")

    assert RestStore(client).clear_all_data() is False
    client.clear_backup.assert_not_called()
