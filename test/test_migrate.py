import pytest

from estate_crm.migrate import (
    LEGACY_VERSION,
    backfill_commission_payments,
    detect_version,
    migrate,
    migrate_rate,
    needs_migration,
    split_broker_customers,
)
from estate_crm.model import CURRENT_VERSION, CRMData


@pytest.fixture
def legacy_backup():
    """An early browser backup: no version, brokers stored as customers."""
    return {
        "customers": [
            {
                "id": "c1",
                "type": "broker",
                "name": "Ali",
                "phone": "0300",
                "createdAt": "2023-01-01",
            },
            {
                "id": "cust_2",
                "type": "customer",
                "name": "Sara",
                "phone": "0311",
                "createdAt": "2023-01-02",
            },
        ],
        "projects": [
            {
                "id": "proj_1",
                "customerId": "cust_2",
                "brokerId": "c1",
                "name": "Sitara Heights",
                "unit": "A-12",
                "sale": 1000000,
                "received": 250000,
                "createdAt": "2023-01-03",
            }
        ],
        "receipts": [
            {
                "id": "rcpt_1",
                "customerId": "cust_2",
                "projectId": "proj_1",
                "amount": 250000,
                "date": "2023-02-10",
                "createdAt": "2023-02-10",
            }
        ],
        "interactions": [
            {"id": "int_1", "brokerId": "c1", "contactType": "broker", "date": "2023-03-01"}
        ],
    }


# --------------------------------------------------------------------
# VERSION DETECTION
# --------------------------------------------------------------------
def test_missing_version_is_legacy():
    """Payloads without a version field are the oldest backups."""
    assert detect_version({}) == LEGACY_VERSION
    assert needs_migration({"customers": []})


def test_current_version_needs_no_migration():
    assert not needs_migration({"version": CURRENT_VERSION})


def test_current_version_passes_through():
    payload = {
        "version": CURRENT_VERSION,
        "brokers": [{"id": "b1", "commissionRate": 2.5}],
        "settings": {"currency": "USD"},
    }

    data = migrate(payload)

    assert data.brokers == [{"id": "b1", "commissionRate": 2.5}]  # No rate coercion
    assert data.commissionPayments == []
    assert data.settings.currency == "USD"


# --------------------------------------------------------------------
# RATES
# --------------------------------------------------------------------
@pytest.mark.parametrize(
    "stored, expected",
    [(2.5, 1), ("2.5", 1), (3.0, 3.0), (None, 1), (0, 1), ("", 1), ("n/a", 1), (1.5, 1.5)],
)
def test_migrate_rate(stored, expected):
    assert migrate_rate(stored) == expected


def test_legacy_broker_rate_is_coerced():
    """The old 2.5% default becomes 1%."""
    data = migrate({"brokers": [{"id": "b1", "name": "Old", "commissionRate": 2.5}]})
    assert data.brokers[0]["commissionRate"] == 1


def test_non_default_project_rate_is_kept():
    data = migrate(
        {"projects": [{"id": "p1", "brokerId": "b1", "brokerCommissionRate": 3.0, "sale": 100}]}
    )
    assert data.projects[0]["brokerCommissionRate"] == 3.0


def test_missing_project_rate_defaults_to_one():
    data = migrate({"projects": [{"id": "p1", "brokerId": "b1", "sale": 100}]})

    project = data.projects[0]
    assert project["brokerCommissionRate"] == 1
    assert project["companyRepCommissionRate"] == 1


def test_settings_rates_are_migrated():
    data = migrate({"settings": {"defaultBrokerCommission": 2.5, "followUpDays": [2]}})

    assert data.settings.defaultBrokerCommission == 1
    assert data.settings.followUpDays == [2]
    assert data.settings.currency == "PKR"


# --------------------------------------------------------------------
# BROKER SPLIT
# --------------------------------------------------------------------
def test_broker_customer_becomes_broker_record(legacy_backup):
    """Customers tagged as brokers get a linked Broker record."""
    data = migrate(legacy_backup)

    [broker] = data.brokers
    assert broker["name"] == "Ali"
    assert broker["commissionRate"] == 1
    assert broker["linkedCustomerId"] == "c1"
    assert broker["id"] == "broker_c1"

    ali = next(c for c in data.customers if c["id"] == "c1")
    assert ali["type"] == "both"
    assert ali["linkedBrokerId"] == broker["id"]


def test_references_are_remapped_to_broker(legacy_backup):
    """Project and interaction references follow the customer to its broker id."""
    data = migrate(legacy_backup)

    assert data.projects[0]["brokerId"] == "broker_c1"
    assert data.interactions[0]["brokerId"] == "broker_c1"


def test_existing_broker_matched_by_phone_is_reused():
    data = CRMData(
        customers=[{"id": "cust_9", "type": "broker", "name": "Ali", "phone": "0300"}],
        brokers=[{"id": "broker_existing", "name": "Ali R.", "phone": "0300"}],
    )

    created = split_broker_customers(data)

    assert created == 0
    assert len(data.brokers) == 1
    assert data.customers[0]["linkedBrokerId"] == "broker_existing"
    assert data.brokers[0]["linkedCustomerId"] == "cust_9"


def test_cust_prefix_is_dropped_from_derived_broker_id():
    data = CRMData(customers=[{"id": "cust_123_abc", "type": "broker", "name": "Zed"}])
    split_broker_customers(data)
    assert data.brokers[0]["id"] == "broker_123_abc"


# --------------------------------------------------------------------
# COMMISSION BACK-FILL
# --------------------------------------------------------------------
def test_pending_commission_row_for_broker_projects(legacy_backup):
    data = migrate(legacy_backup)

    [payment] = data.commissionPayments
    assert payment["projectId"] == "proj_1"
    assert payment["recipientId"] == "broker_c1"
    assert payment["recipientName"] == "Ali"
    assert payment["recipientType"] == "broker"
    assert payment["amount"] == pytest.approx(10000)
    assert payment["paidAmount"] == 0
    assert payment["remainingAmount"] == pytest.approx(10000)
    assert payment["status"] == "pending"


def test_company_rep_commission_is_not_backfilled():
    data = migrate(
        {"projects": [{"id": "p1", "companyRepId": "rep_1", "sale": 100000, "received": 0}]}
    )
    assert data.commissionPayments == []


def test_backfill_skips_already_tracked_projects():
    """An existing row for the same project and broker suppresses the back-fill."""
    data = CRMData(
        projects=[{"id": "p1", "brokerId": "b1", "brokerCommissionRate": 1, "sale": 1000}],
        commissionPayments=[
            {"id": "cpay_1", "projectId": "p1", "recipientId": "b1", "recipientType": "broker"}
        ],
    )

    assert backfill_commission_payments(data) == []
    assert len(data.commissionPayments) == 1


def test_backfill_ids_are_stable(legacy_backup):
    first = migrate(legacy_backup)
    second = migrate(legacy_backup)
    assert [p["id"] for p in first.commissionPayments] == [
        p["id"] for p in second.commissionPayments
    ]


def test_backfill_does_not_reuse_an_id_held_by_a_previous_broker():
    """The project changed broker; the old broker's row keeps its id and history."""
    legacy = {
        "projects": [
            {"id": "p1", "brokerId": "b_new", "brokerCommissionRate": 2, "sale": 100000, "received": 0}
        ],
        "brokers": [{"id": "b_new", "name": "New"}, {"id": "b_old", "name": "Old"}],
        "commissionPayments": [
            {
                "id": "cpay_migration_p1",
                "projectId": "p1",
                "recipientId": "b_old",
                "recipientType": "broker",
                "amount": 1000,
                "paidAmount": 400,
            }
        ],
    }

    data = migrate(legacy)

    ids = [p["id"] for p in data.commissionPayments]
    assert ids == ["cpay_migration_p1", "cpay_migration_p1_b_new"]
    assert data.commissionPayments[0]["paidAmount"] == 400
    assert data.commissionPayments[1]["recipientId"] == "b_new"


def test_backfill_skips_when_both_ids_are_taken():
    """No row is added when neither candidate id is free."""
    data = CRMData(
        projects=[{"id": "p1", "brokerId": "b2", "brokerCommissionRate": 1, "sale": 1000}],
        commissionPayments=[
            {"id": "cpay_migration_p1", "projectId": "p1", "recipientId": "b0", "recipientType": "broker"},
            {"id": "cpay_migration_p1_b2", "projectId": "p9", "recipientId": "b2", "recipientType": "broker"},
        ],
    )

    assert backfill_commission_payments(data) == []
    assert len({p["id"] for p in data.commissionPayments}) == 2


def test_unusable_ids_do_not_break_migration():
    """Non-scalar ids survive migration untouched for the field filter to reject."""
    legacy = {
        "customers": [
            {"id": ["c1"], "type": "broker", "name": "List id"},
            {"id": "c2", "type": "broker", "name": "Ali"},
        ],
        "projects": [
            {"id": {"x": 1}, "brokerId": "c2", "sale": 1000, "received": 0},
            {"id": "p2", "brokerId": ["c2"], "customerId": {"y": 2}, "sale": 1000, "received": 0},
        ],
        "receipts": [{"id": "r1", "customerId": ["c2"], "projectId": "p2", "amount": 1}],
        "interactions": [{"id": "i1", "brokerId": {"z": 3}}],
    }

    data = migrate(legacy)

    assert [b["id"] for b in data.brokers] == ["broker_c2"]
    assert data.customers[0]["type"] == "broker"
    assert data.projects[1]["brokerId"] == ["c2"]
    assert data.commissionPayments == []
    assert data.receipts[0]["customerName"] == ""


# --------------------------------------------------------------------
# DEFAULTS AND ENRICHMENT
# --------------------------------------------------------------------
def test_project_balance_is_derived(legacy_backup):
    data = migrate(legacy_backup)
    assert data.projects[0]["balance"] == 750000


def test_receipts_are_enriched_once(legacy_backup):
    data = migrate(legacy_backup)

    receipt = data.receipts[0]
    assert receipt["customerName"] == "Sara"
    assert receipt["projectName"] == "Sitara Heights - A-12"
    assert receipt["receiptNumber"] == "RCP-202302-0001"
    assert receipt["method"] == "cash"


def test_legacy_aliases_are_resolved():
    data = migrate(
        {
            "projects": [{"id": "p1", "saleValue": "500000", "received": "0"}],
            "inventory": [{"id": "i1", "project_name": "Tower", "unit": "7", "marlas": 5, "ratePerMarla": 100}],
        }
    )

    assert data.projects[0]["sale"] == 500000
    item = data.inventory[0]
    assert item["projectName"] == "Tower"
    assert item["unitShopNumber"] == "7"
    assert item["totalValue"] == 500


def test_migrated_data_is_stamped_current():
    assert migrate({}).version == CURRENT_VERSION
