"""Real-estate CRM data engine.

Exposes the import pipeline and the persistence façade for programmatic use.
"""

from .importer import import_payload  # Pure reconcile of a backup payload
from .migrate import migrate
from .model import CRMData, EntityType, ImportResult, Settings
from .store import RestStore, Store

__all__ = [
    "CRMData",
    "EntityType",
    "ImportResult",
    "RestStore",
    "Settings",
    "Store",
    "import_payload",
    "migrate",
]  # Re-exported symbols.
