"""Command-line interface for the CRM data engine."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import os
import sys
from pathlib import Path
from typing import Callable, Dict, Optional

from .bulk_transactions import generate_transaction_template
from .config import load_config, open_store
from .excel_writer import export_commission_payments, export_projects_with_commission
from .model import ImportResult
from .report import build_report_payload, write_report_to_json
from .rest_client import RestClient
from .spreadsheet import generate_broker_template, generate_inventory_template
from .storage import StorageError
from .store import BaseStore, RestStore, Store

TEMPLATES: Dict[str, Callable[[Optional[Path]], bytes]] = {
    "inventory": generate_inventory_template,
    "transactions": generate_transaction_template,
    "brokers": generate_broker_template,
}


class CommandError(Exception):
    """A command could not run; reported to the user without a traceback."""


def _print_result(result: ImportResult) -> None:
    for entity, count in result.imported.items():
        skipped = result.skipped[entity]
        if count or skipped:
            print(f"  {entity}: {count} imported, {skipped} skipped")
    for message in result.errors:
        print(f"  ! {message}")
    print("Import succeeded" if result.success else "Import failed")


def _local(store: BaseStore) -> Store:
    if not isinstance(store, Store):
        raise CommandError("This command needs local storage (CRM_STORAGE=local)")
    return store


def _read_text(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise CommandError(f"Cannot read {path}: {exc}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="estate-crm",
        description="Import, reconcile and back up real-estate CRM data",
    )
    parser.add_argument("--data-dir", help="Directory for local storage (overrides CRM_DATA_DIR)")
    parser.add_argument("--storage", choices=["local", "rest"], help="Overrides CRM_STORAGE")
    parser.add_argument("--api-url", help="REST backend URL (overrides CRM_API_URL)")
    parser.add_argument("--report", help="Optional JSON summary output path")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("import", help="Import a JSON backup with field filtering")
    p.add_argument("file")
    p.add_argument("--mode", choices=["replace", "merge"], default="replace")
    p.add_argument("--skip-duplicates", action="store_true")

    p = sub.add_parser("restore-file", help="Replace all data with a (legacy) backup file")
    p.add_argument("file")

    p = sub.add_parser("export", help="Export all data as JSON")
    p.add_argument("--output", help="Write to this file instead of stdout")

    for name, label in (
        ("import-inventory", "inventory"),
        ("import-transactions", "transactions"),
        ("import-brokers", "brokers"),
    ):
        p = sub.add_parser(name, help=f"Import {label} from an Excel workbook")
        p.add_argument("workbook")

    p = sub.add_parser("template", help="Write an Excel import template")
    p.add_argument("kind", choices=sorted(TEMPLATES))
    p.add_argument("output")

    p = sub.add_parser("export-excel", help="Export commission data as an Excel workbook")
    p.add_argument("kind", choices=["commissions", "projects"])
    p.add_argument("output")

    sub.add_parser("master-projects", help="Rebuild and print project aggregates")

    p = sub.add_parser("backup", help="Create a named backup")
    p.add_argument("--name")

    sub.add_parser("list-backups", help="List named backups, newest first")

    p = sub.add_parser("restore", help="Restore a named backup")
    p.add_argument("key", help="Backup key or name")

    p = sub.add_parser("clear", help="Delete all data (a backup is taken first)")
    p.add_argument("--yes", action="store_true", help="Confirm the deletion")

    sub.add_parser("stats", help="Show storage usage")
    sub.add_parser("health", help="Check the REST backend")
    return parser


def run_command(args: argparse.Namespace, store: BaseStore) -> dict:
    """Execute one parsed command and return its report payload."""
    command = args.command

    if command == "import":
        result = store.import_json(_read_text(args.file), args.mode, args.skip_duplicates)
        _print_result(result)
        return build_report_payload(command, result)

    if command in ("import-inventory", "import-transactions", "import-brokers"):
        handler = {
            "import-inventory": store.import_inventory_workbook,
            "import-transactions": store.import_transactions_workbook,
            "import-brokers": store.import_brokers_workbook,
        }[command]
        result = handler(args.workbook)
        _print_result(result)
        return build_report_payload(command, result)

    if command == "restore-file":
        if not store.import_backup_file(_read_text(args.file)):
            raise CommandError(f"Could not restore {args.file}")
        counts = store.data.counts()
        print(f"Restored {args.file}: {counts}")
        return build_report_payload(command, details={"counts": counts})

    if command == "export":
        text = store.export_json()
        if args.output:
            Path(args.output).write_text(text, encoding="utf-8")
            print(f"Exported to {args.output}")
        else:
            print(text)
        return build_report_payload(command)

    if command == "template":
        TEMPLATES[args.kind](Path(args.output))
        print(f"Template written to {args.output}")
        return build_report_payload(command, details={"output": args.output})

    if command == "export-excel":
        data = store.load()
        if args.kind == "commissions":
            export_commission_payments(data.commissionPayments, Path(args.output))
        else:
            export_projects_with_commission(
                data.projects, data.customers, data.brokers, data.commissionPayments,
                Path(args.output),
            )
        print(f"Workbook written to {args.output}")
        return build_report_payload(command, details={"output": args.output})

    if command == "master-projects":
        masters = store.refresh_master_projects()
        print(json.dumps(masters, indent=2))
        return build_report_payload(command, details={"master_projects": len(masters)})

    if command == "backup":
        name = _local(store).create_backup(args.name)
        print(f"Backup created: {name}")
        return build_report_payload(command, details={"backup": name})

    if command == "list-backups":
        backups = _local(store).list_backups()
        for backup in backups:
            print(f"{backup.date}  {backup.name}  ({backup.key})")
        if not backups:
            print("No backups found")
        return build_report_payload(
            command, details={"backups": [dataclasses.asdict(b) for b in backups]}
        )

    if command == "restore":
        if not _local(store).restore_backup(args.key):
            raise CommandError(f"Could not restore backup {args.key}")
        print(f"Restored backup {args.key}")
        return build_report_payload(command)

    if command == "clear":
        if not args.yes:
            raise CommandError("Refusing to clear data without --yes")
        if not store.clear_all_data():
            raise CommandError("Could not clear data")
        print("All data cleared (pre_clear_backup created)")
        return build_report_payload(command)

    if command == "stats":
        stats = _local(store).storage_stats()
        print(f"Used {stats.used} of {stats.available} bytes ({stats.percentage:.1f}%)")
        return build_report_payload(
            command,
            details={"used": stats.used, "available": stats.available},
        )

    if command == "health":
        if not isinstance(store, RestStore):
            raise CommandError("This command needs the REST backend (CRM_STORAGE=rest)")
        client: RestClient = store.client
        response = client.health()
        if not response.success:
            raise CommandError(f"Backend unhealthy: {response.error}")
        print("Backend is healthy")
        return build_report_payload(command)

    raise CommandError(f"Unknown command: {command}")  # pragma: no cover - argparse guards


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    # Command-line options win over the environment
    environ = dict(os.environ)
    for key, value in (
        ("CRM_DATA_DIR", args.data_dir),
        ("CRM_STORAGE", args.storage),
        ("CRM_API_URL", args.api_url),
    ):
        if value:
            environ[key] = value

    exit_code = 0
    try:
        config = load_config(environ)
        payload = run_command(args, open_store(config))
        if payload["status"] != "success":
            exit_code = 1
    except (CommandError, StorageError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        payload = build_report_payload(args.command, error=str(exc))
        exit_code = 1

    if args.report:
        path = write_report_to_json(payload, Path(args.report))
        print(f"Report written to {path}")
    return exit_code


if __name__ == "__main__":  # pragma: no cover - manual invocation
    sys.exit(main())
