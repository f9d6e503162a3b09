"""Re-insert rows from a JSON backup into the current schema.

Tables are restored in foreign-key order.  Each table is its own transaction,
so one bad table is rolled back and reported while the rest still restore.
The default mode upserts by primary key, which makes a restore safe to re-run
against a partially restored database.
"""
from __future__ import annotations

import argparse
import enum
import json
import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from data_paths import resolve_backups_root
from database import run_script, table_columns, table_exists, write_row
from services.backup import BackupPayload, BackupShape, load_backup
from services.legacy_conversion import LegacyCustomer, convert_legacy_customer

__all__ = [
    "RESTORE_ORDER",
    "RestoreError",
    "RestoreMode",
    "RestoreReport",
    "resolve_backup_source",
    "restore_backup",
    "restore_payload",
    "restore_customer_form",
    "restore_rows",
    "restore_tables",
]

LOGGER = logging.getLogger(__name__)

RESTORE_ORDER: tuple[str, ...] = (
    "employees",
    "customers",
    "companies",
    "offices",
    "plants",
    "locations",
    "contact_persons",
    "contacts",
    "enquiries",
    "quotations",
    "quotation_items",
    "communications",
    "documents",
)

BACKUP_DIR_PREFIX = "backup-"

_EMPLOYEE_REFERENCES = ("created_by_id", "marketing_person_id", "employee_id")


class RestoreError(RuntimeError):
    """Raised when a restore cannot start, e.g. no backup can be located."""


class RestoreMode(enum.Enum):
    UPSERT = "upsert"
    INSERT = "insert"


@dataclass
class RestoreReport:
    source: Optional[Path] = None
    shape: Optional[BackupShape] = None
    restored: Dict[str, int] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


def resolve_backup_source(
    argument: Optional[str] = None,
    backups_root: Optional[Path] = None,
    *,
    cwd: Optional[Path] = None,
) -> Path:
    """Return the backup to restore from.

    An explicit argument wins (relative paths resolve against ``cwd``);
    otherwise the newest ``backup-*`` directory under the backups root is used.
    """

    if argument:
        candidate = Path(argument).expanduser()
        if not candidate.is_absolute():
            candidate = (cwd or Path.cwd()) / candidate
        if not candidate.exists():
            raise RestoreError(f"Backup not found: {candidate}")
        return candidate

    root = Path(backups_root) if backups_root is not None else resolve_backups_root()
    if not root.is_dir():
        raise RestoreError(f"No backups directory found at {root}")
    candidates = sorted(
        (entry for entry in root.iterdir() if entry.is_dir() and entry.name.startswith(BACKUP_DIR_PREFIX)),
        key=lambda entry: entry.name,
        reverse=True,
    )
    if not candidates:
        raise RestoreError(f"No backups found in {root}")
    return candidates[0]


def restore_rows(
    conn: sqlite3.Connection,
    table: str,
    rows: Iterable[Mapping[str, Any]],
    *,
    mode: RestoreMode = RestoreMode.UPSERT,
) -> int:
    """Write ``rows`` into ``table`` inside a single transaction and return the count."""

    columns = set(table_columns(conn, table))
    ignored: Set[str] = set()
    count = 0
    with conn:
        cursor = conn.cursor()
        for row in rows:
            values = {}
            for key, value in row.items():
                if key not in columns:
                    ignored.add(key)
                    continue
                if isinstance(value, (dict, list)):
                    value = json.dumps(value)
                values[key] = value
            write_row(cursor, table, values, upsert=mode is RestoreMode.UPSERT)
            count += 1
    if ignored:
        LOGGER.debug("Ignored fields not present in %s: %s", table, ", ".join(sorted(ignored)))
    return count


def restore_tables(
    conn: sqlite3.Connection,
    tables: Mapping[str, Sequence[Mapping[str, Any]]],
    *,
    mode: RestoreMode = RestoreMode.UPSERT,
    report: Optional[RestoreReport] = None,
) -> RestoreReport:
    """Restore every known table present in ``tables`` in foreign-key order."""

    report = report or RestoreReport()
    for name in tables:
        if name not in RESTORE_ORDER:
            LOGGER.warning("Unknown table %s in backup; skipping", name)
            report.skipped.append(name)

    for table in RESTORE_ORDER:
        if table not in tables:
            LOGGER.warning("%s: no backup data found, skipping", table)
            report.skipped.append(table)
            continue
        if not table_exists(conn, table):
            LOGGER.warning("%s: table not present in target database, skipping", table)
            report.skipped.append(table)
            continue
        print(f"  Restoring {table}...")
        try:
            report.restored[table] = restore_rows(conn, table, tables[table], mode=mode)
        except sqlite3.Error as exc:
            LOGGER.error("Error restoring %s: %s", table, exc)
            report.failures[table] = str(exc)
            continue
        print(f"  {table}: {report.restored[table]} records restored")
    return report


def restore_customer_form(
    conn: sqlite3.Connection,
    payload: BackupPayload,
    *,
    mode: RestoreMode = RestoreMode.UPSERT,
    report: Optional[RestoreReport] = None,
) -> RestoreReport:
    """Rebuild companies and their children from a nested customer-form backup."""

    report = report or RestoreReport()
    data = payload.customer_form
    upsert = mode is RestoreMode.UPSERT
    known_employees = _known_ids(conn, "employees")

    company_ids: Dict[str, str] = {}
    for customer in _assemble_customers(data):
        try:
            converted = convert_legacy_customer(customer, preserve_ids=True)
            _clear_missing_employees(converted.company, known_employees)
            with conn:
                cursor = conn.cursor()
                write_row(cursor, "companies", converted.company, upsert=upsert)
                for office in converted.offices:
                    write_row(cursor, "offices", office, upsert=upsert)
                for plant in converted.plants:
                    write_row(cursor, "plants", plant, upsert=upsert)
                for person in converted.contact_persons:
                    write_row(cursor, "contact_persons", person, upsert=upsert)
        except (sqlite3.Error, RuntimeError) as exc:
            LOGGER.error("Error restoring customer %r (%s): %s", customer.name, customer.id, exc)
            report.failures[f"customer:{customer.id}"] = str(exc)
            continue
        company_ids[customer.id] = converted.company_id
        for table, rows in (
            ("companies", [converted.company]),
            ("offices", converted.offices),
            ("plants", converted.plants),
            ("contact_persons", converted.contact_persons),
        ):
            report.restored[table] = report.restored.get(table, 0) + len(rows)

    dependents = {
        "enquiries": _repoint(_dedupe(data, "enquiries"), company_ids, known_employees),
        "communications": _repoint(_dedupe(data, "communications"), company_ids, known_employees),
    }
    for table, rows in dependents.items():
        try:
            report.restored[table] = restore_rows(conn, table, rows, mode=mode)
        except sqlite3.Error as exc:
            LOGGER.error("Error restoring %s: %s", table, exc)
            report.failures[table] = str(exc)
    return report


def restore_payload(
    conn: sqlite3.Connection,
    payload: BackupPayload,
    *,
    mode: RestoreMode = RestoreMode.UPSERT,
) -> RestoreReport:
    """Restore an already loaded backup according to its shape."""

    report = RestoreReport(source=payload.source, shape=payload.shape)
    if payload.shape is BackupShape.CUSTOMER_FORM:
        return restore_customer_form(conn, payload, mode=mode, report=report)
    return restore_tables(conn, payload.tables, mode=mode, report=report)


def restore_backup(
    conn: sqlite3.Connection,
    source: Path,
    *,
    mode: RestoreMode = RestoreMode.UPSERT,
) -> RestoreReport:
    return restore_payload(conn, load_backup(source), mode=mode)


def _assemble_customers(data: Mapping[str, List[Dict[str, Any]]]) -> List[LegacyCustomer]:
    top_locations = data.get("locations", [])
    top_contacts = data.get("contacts", [])

    customers = []
    for row in data.get("customers", []):
        customer_id = str(row.get("id"))
        locations: Dict[str, Dict[str, Any]] = {}
        for location in row.get("locations") or []:
            locations.setdefault(str(location.get("id")), location)
        for location in top_locations:
            owner = location.get("customer_id", location.get("customerId"))
            if str(owner) == customer_id:
                locations.setdefault(str(location.get("id")), location)

        contacts: List[Dict[str, Any]] = list(row.get("contacts") or [])
        for location in locations.values():
            contacts.extend(
                contact
                for contact in location.get("contacts") or []
                if _contact_belongs_to(contact, customer_id, locations)
            )
        contacts.extend(
            contact for contact in top_contacts if _contact_belongs_to(contact, customer_id, locations)
        )

        customers.append(LegacyCustomer.from_rows(row, locations.values(), contacts))
    return customers


def _contact_belongs_to(
    contact: Mapping[str, Any], customer_id: str, locations: Mapping[str, Any]
) -> bool:
    # The owner column decides; the location is consulted only when it is unset.
    owner = contact.get("customer_id", contact.get("customerId"))
    if owner is not None:
        return str(owner) == customer_id
    location_id = contact.get("location_id", contact.get("locationId"))
    return location_id is not None and str(location_id) in locations


def _dedupe(data: Mapping[str, List[Dict[str, Any]]], key: str) -> List[Dict[str, Any]]:
    seen: Dict[Any, Dict[str, Any]] = {}
    for customer in data.get("customers", []):
        for row in customer.get(key) or []:
            seen.setdefault(row.get("id"), row)
    for row in data.get(key, []):
        seen.setdefault(row.get("id"), row)
    return list(seen.values())


def _repoint(
    rows: Iterable[Dict[str, Any]],
    company_ids: Mapping[str, str],
    known_employees: Set[str],
) -> List[Dict[str, Any]]:
    repointed = []
    for row in rows:
        updated = dict(row)
        customer_id = updated.pop("customerId", None) or updated.get("customer_id")
        if customer_id is not None and str(customer_id) in company_ids:
            updated["company_id"] = company_ids[str(customer_id)]
        updated["customer_id"] = None
        _clear_missing_employees(updated, known_employees)
        repointed.append(updated)
    return repointed


def _known_ids(conn: sqlite3.Connection, table: str) -> Set[str]:
    if not table_exists(conn, table):
        return set()
    return {str(row[0]) for row in conn.execute(f'SELECT id FROM "{table}"').fetchall()}


def _clear_missing_employees(row: Dict[str, Any], known_employees: Set[str]) -> None:
    for column in _EMPLOYEE_REFERENCES:
        value = row.get(column)
        if value is not None and str(value) not in known_employees:
            LOGGER.warning(
                "Clearing %s=%s on row %s; employee not found", column, value, row.get("id")
            )
            row[column] = None


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry-point used by ``scripts/restore_database.py``."""

    parser = argparse.ArgumentParser(description="Restore CRM data from a JSON backup.")
    parser.add_argument(
        "source",
        nargs="?",
        default=None,
        help="Backup directory or file (default: newest backups/backup-* directory)",
    )
    parser.add_argument(
        "--insert-only",
        action="store_true",
        help="Insert without upserting; only safe against empty tables",
    )
    args = parser.parse_args(argv)
    mode = RestoreMode.INSERT if args.insert_only else RestoreMode.UPSERT

    def _procedure(conn: sqlite3.Connection) -> int:
        try:
            source = resolve_backup_source(args.source)
        except RestoreError as exc:
            print(f"Restore failed: {exc}")
            return 1

        print("Starting database restore...")
        print(f"Backup: {source}\n")
        print("WARNING: This will restore data to your current database!")
        payload = load_backup(source)
        if payload.summary:
            print(f"Backup Date: {payload.summary.get('backupDate')}")
            print(f"Tables: {', '.join(payload.summary.get('tables', []))}\n")
        elif payload.created_at is not None:
            print(f"Backup Date: {payload.created_at.isoformat()}\n")

        report = restore_payload(conn, payload, mode=mode)
        if report.skipped:
            print(f"\nSkipped: {', '.join(report.skipped)}")
        if report.failures:
            print("\nFailed:")
            for name, error in report.failures.items():
                print(f"  {name}: {error}")
        print("\nDatabase restore completed.")
        return 0

    return run_script(_procedure, description="Restore")


if __name__ == "__main__":  # pragma: no cover - CLI behavior
    raise SystemExit(main())
