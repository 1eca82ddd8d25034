"""Domain models for the CRM data engine.

Entity records travel through the import pipeline as plain JSON dictionaries
(the persisted backup shape). The dataclasses here describe the containers
around them: the unified dataset, the settings singleton, and the result
objects returned by the filter/reconcile/import steps.
"""

from __future__ import annotations  # Postponed evaluation of annotations (PEP 563)

import random  # Random suffix for generated identifiers
import string
import time
from dataclasses import dataclass, field  # Dataclass utilities
from enum import Enum
from typing import Any, Dict, List, Literal, Optional  # Constrained string types for clarity

CURRENT_VERSION = "4.0"  # Data version stamped on every save
DEFAULT_COMMISSION_RATE = 1.0  # Percent
LEGACY_COMMISSION_RATE = 2.5  # Pre-4.0 default, coerced to DEFAULT_COMMISSION_RATE

Record = Dict[str, Any]  # One entity as it appears in the JSON backup

ImportMode = Literal["replace", "merge"]
CustomerType = Literal[
    "customer", "broker", "both", "individual", "corporate", "government"
]
CustomerStatus = Literal["active", "inactive", "lead"]
ProjectStatus = Literal["active", "completed", "overdue", "cancelled"]
PaymentMethod = Literal["cash", "bank_transfer", "cheque", "online"]
InventoryStatus = Literal["available", "reserved", "blocked", "sold"]
RecipientType = Literal["broker", "companyRep"]
CommissionStatus = Literal["pending", "partial", "paid"]
PaymentCycle = Literal["monthly", "quarterly", "bi_annual", "annual", "custom"]


class EntityType(str, Enum):
    """Entity collections of the dataset, valued by their backup key."""

    CUSTOMERS = "customers"
    BROKERS = "brokers"
    PROJECTS = "projects"
    RECEIPTS = "receipts"
    INTERACTIONS = "interactions"
    INVENTORY = "inventory"
    MASTER_PROJECTS = "masterProjects"
    COMMISSION_PAYMENTS = "commissionPayments"

    @classmethod
    def lookup(cls, value: "EntityType | str") -> Optional["EntityType"]:
        """Return the member for ``value`` or ``None`` when it is not known."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


# Prefixes used when an entity needs a generated id
ID_PREFIXES: Dict[EntityType, str] = {
    EntityType.CUSTOMERS: "cust",
    EntityType.BROKERS: "broker",
    EntityType.PROJECTS: "proj",
    EntityType.RECEIPTS: "rcpt",
    EntityType.INTERACTIONS: "int",
    EntityType.INVENTORY: "inv",
    EntityType.MASTER_PROJECTS: "mproj",
    EntityType.COMMISSION_PAYMENTS: "cpay",
}


def generate_id(prefix: str) -> str:
    """Return an identifier shaped ``{prefix}_{timestamp}_{random}``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def is_record_id(value: Any) -> bool:
    """Ids are strings or integers; anything else cannot key a lookup."""
    return isinstance(value, (str, int)) and not isinstance(value, bool)


@dataclass(slots=True)
class Settings:
    """Process-wide configuration persisted alongside the entities."""

    currency: str = "PKR"
    defaultCycle: str = "quarterly"
    followUpDays: List[int] = field(default_factory=lambda: [1, 3, 7, 14, 30])
    commissionRate: float = DEFAULT_COMMISSION_RATE
    defaultBrokerCommission: float = DEFAULT_COMMISSION_RATE
    defaultCompanyRepCommission: float = DEFAULT_COMMISSION_RATE
    extra: Dict[str, Any] = field(default_factory=dict)  # Keys this version does not model

    @classmethod
    def from_dict(cls, raw: Any) -> "Settings":
        """Merge ``raw`` over the defaults, keeping unknown keys in ``extra``.

        Anything other than a mapping yields the defaults.
        """
        settings = cls()
        if not isinstance(raw, dict):
            return settings
        for key, value in raw.items():
            if key == "extra":
                continue
            if key in cls.__dataclass_fields__:
                setattr(settings, key, value)
            else:
                settings.extra[key] = value
        return settings

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.extra)
        payload.update(
            {
                "currency": self.currency,
                "defaultCycle": self.defaultCycle,
                "followUpDays": list(self.followUpDays),
                "commissionRate": self.commissionRate,
                "defaultBrokerCommission": self.defaultBrokerCommission,
                "defaultCompanyRepCommission": self.defaultCompanyRepCommission,
            }
        )
        return payload


@dataclass(slots=True)
class CRMData:
    """The unified dataset in its current-version shape."""

    version: str = CURRENT_VERSION
    customers: List[Record] = field(default_factory=list)
    brokers: List[Record] = field(default_factory=list)
    projects: List[Record] = field(default_factory=list)
    receipts: List[Record] = field(default_factory=list)
    interactions: List[Record] = field(default_factory=list)
    inventory: List[Record] = field(default_factory=list)
    masterProjects: List[Record] = field(default_factory=list)
    commissionPayments: List[Record] = field(default_factory=list)
    settings: Settings = field(default_factory=Settings)
    lastUpdated: Optional[str] = None

    def records(self, entity_type: EntityType) -> List[Record]:
        return getattr(self, entity_type.value)

    def set_records(self, entity_type: EntityType, records: List[Record]) -> None:
        setattr(self, entity_type.value, records)

    def counts(self) -> Dict[str, int]:
        return {et.value: len(self.records(et)) for et in EntityType}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "CRMData":
        """Build a dataset from a payload, treating missing arrays as empty."""
        data = cls(
            version=str(raw.get("version") or CURRENT_VERSION),
            settings=Settings.from_dict(raw.get("settings")),
            lastUpdated=raw.get("lastUpdated"),
        )
        for entity_type in EntityType:
            items = raw.get(entity_type.value)
            if isinstance(items, list):
                data.set_records(
                    entity_type, [dict(item) for item in items if isinstance(item, dict)]
                )
        return data

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"version": self.version}
        for entity_type in EntityType:
            payload[entity_type.value] = list(self.records(entity_type))
        payload["settings"] = self.settings.to_dict()
        payload["lastUpdated"] = self.lastUpdated
        return payload


@dataclass(slots=True)
class ReconcileResult:
    """Outcome of reconciling one entity collection."""

    records: List[Record] = field(default_factory=list)
    imported: int = 0
    skipped: int = 0
    rejected: List[int] = field(default_factory=list)  # Incoming positions failing the filter


@dataclass(slots=True)
class EntityStats:
    imported: int = 0
    skipped: int = 0


@dataclass(slots=True)
class ImportResult:
    """Summary of one import call, reported to the user instead of a traceback."""

    success: bool = False
    stats: Dict[str, EntityStats] = field(
        default_factory=lambda: {et.value: EntityStats() for et in EntityType}
    )
    errors: List[str] = field(default_factory=list)

    @property
    def imported(self) -> Dict[str, int]:
        return {key: s.imported for key, s in self.stats.items()}

    @property
    def skipped(self) -> Dict[str, int]:
        return {key: s.skipped for key, s in self.stats.items()}

    @property
    def total_imported(self) -> int:
        return sum(s.imported for s in self.stats.values())

    @property
    def total_skipped(self) -> int:
        return sum(s.skipped for s in self.stats.values())


@dataclass(slots=True)
class RowError:
    """Validation failures for one spreadsheet row (header row is 1)."""

    row: int
    errors: List[str]


@dataclass(slots=True)
class ParseResult:
    """Rows that passed validation plus the per-row failures."""

    data: List[Record] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)
    skipped: int = 0  # Valid rows left out as duplicates of existing records

    @property
    def success(self) -> bool:
        return not self.errors


__all__ = [
    "CURRENT_VERSION",
    "DEFAULT_COMMISSION_RATE",
    "LEGACY_COMMISSION_RATE",
    "CRMData",
    "EntityStats",
    "EntityType",
    "ID_PREFIXES",
    "ImportMode",
    "ImportResult",
    "ParseResult",
    "Record",
    "ReconcileResult",
    "RowError",
    "Settings",
    "generate_id",
    "is_record_id",
]
