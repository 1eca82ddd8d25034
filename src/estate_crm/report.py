from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from estate_crm.dates import iso_timestamp
from estate_crm.model import ImportResult


def build_report_payload(
    operation: str,
    result: Optional[ImportResult] = None,
    *,
    error: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build the JSON summary of one CLI operation."""

    ok = error is None and (result is None or result.success)
    payload: Dict[str, Any] = {
        "status": "success" if ok else "error",
        "operation": operation,
        "timestamp": iso_timestamp(),
        "imported": result.imported if result else {},
        "skipped": result.skipped if result else {},
        "total_imported": result.total_imported if result else 0,
        "total_skipped": result.total_skipped if result else 0,
        "errors": list(result.errors) if result else [],
        "error": error,
    }
    if details:
        payload.update(details)
    return payload


def write_report_to_json(payload: Dict[str, Any], output_path: Path) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)

    return output_path


__all__ = ["build_report_payload", "write_report_to_json"]
