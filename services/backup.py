"""Helpers for exporting CRM tables to JSON backups and reading them back."""
from __future__ import annotations

import enum
import json
import logging
import os
import shutil
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import pytz
from dateutil.parser import isoparse

from data_paths import ensure_backups_root
from database import (
    SchemaState,
    detect_schema_state,
    rows_to_dicts,
    run_script,
    table_columns,
    table_exists,
)

__all__ = [
    "BACKUP_TABLES",
    "BackupError",
    "BackupPayload",
    "BackupShape",
    "create_backup",
    "create_customer_form_backup",
    "create_table_backup",
    "fetch_table_rows",
    "load_backup",
    "snapshot_tables",
]

LOGGER = logging.getLogger(__name__)

BACKUP_VERSION = "1.0"
SUMMARY_FILE = "backup-summary.json"
QUERY_DELAY_ENV = "CRM_QUERY_DELAY_MS"
DEFAULT_QUERY_DELAY_MS = 500

BACKUP_TABLES: tuple[str, ...] = (
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

# Columns whose stored values may not match the declared type.
TEXT_CAST_COLUMNS: Dict[str, tuple[str, ...]] = {
    "enquiries": ("number_of_blocks",),
}

_NESTED_KEYS = ("customers", "locations", "contacts", "enquiries", "communications")


class BackupError(RuntimeError):
    """Raised when a backup cannot be written or read."""


class BackupShape(enum.Enum):
    TABLES = "tables"
    CUSTOMER_FORM = "customer-form"


@dataclass
class BackupPayload:
    """A backup loaded from disk, normalised to one of the two known shapes."""

    source: Path
    shape: BackupShape
    timestamp: Optional[str] = None
    created_at: Optional[datetime] = None
    version: Optional[str] = None
    tables: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    customer_form: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    summary: Dict[str, Any] = field(default_factory=dict)


def query_delay_seconds() -> float:
    raw = os.environ.get(QUERY_DELAY_ENV)
    if raw is None or not raw.strip():
        return DEFAULT_QUERY_DELAY_MS / 1000.0
    try:
        value = float(raw)
    except ValueError:
        LOGGER.warning(
            "Ignoring invalid %s=%r; using %sms", QUERY_DELAY_ENV, raw, DEFAULT_QUERY_DELAY_MS
        )
        return DEFAULT_QUERY_DELAY_MS / 1000.0
    return max(value, 0.0) / 1000.0


def fetch_table_rows(conn: sqlite3.Connection, table: str) -> List[Dict[str, Any]]:
    """Return every row of ``table`` ordered by id, or ``[]`` if it is missing."""

    if not table_exists(conn, table):
        LOGGER.info("Table %s not found, skipping", table)
        return []
    cast_columns = TEXT_CAST_COLUMNS.get(table, ())
    if cast_columns:
        selected = ", ".join(
            f'CAST("{column}" AS TEXT) AS "{column}"' if column in cast_columns else f'"{column}"'
            for column in table_columns(conn, table)
        )
        query = f'SELECT {selected} FROM "{table}" ORDER BY id'
    else:
        query = f'SELECT * FROM "{table}" ORDER BY id'
    cursor = conn.execute(query)
    return rows_to_dicts(cursor.fetchall())


def snapshot_tables(
    conn: sqlite3.Connection,
    tables: Sequence[str] = BACKUP_TABLES,
    *,
    delay: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, List[Dict[str, Any]]]:
    """Read ``tables`` one after another, pausing ``delay`` seconds between reads."""

    if delay is None:
        delay = query_delay_seconds()
    snapshot: Dict[str, List[Dict[str, Any]]] = {}
    for index, table in enumerate(tables):
        if index and delay > 0:
            sleep(delay)
        print(f"  -> Fetching {table}...")
        snapshot[table] = fetch_table_rows(conn, table)
    return snapshot


def create_backup(
    conn: sqlite3.Connection,
    destination_dir: Optional[Path] = None,
    *,
    tables: Sequence[str] = BACKUP_TABLES,
    delay: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    now: Optional[datetime] = None,
) -> Path:
    """Write a single table-keyed JSON backup and return its path."""

    destination_dir = ensure_backups_root(destination_dir)
    moment = now or datetime.now(pytz.utc)
    backup_path = destination_dir / f"database-backup-{_file_stamp(moment)}.json"
    if backup_path.exists():
        raise BackupError(f"Refusing to overwrite existing backup {backup_path}")

    schema = snapshot_tables(conn, tables, delay=delay, sleep=sleep)
    payload = {
        "timestamp": moment.isoformat(),
        "version": BACKUP_VERSION,
        "schema": schema,
    }
    _write_json(backup_path, payload)
    LOGGER.info("Created backup %s", backup_path)
    return backup_path


def create_table_backup(
    conn: sqlite3.Connection,
    destination_dir: Optional[Path] = None,
    *,
    tables: Sequence[str] = BACKUP_TABLES,
    delay: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    now: Optional[datetime] = None,
) -> Path:
    """Write a ``backup-<stamp>/`` directory holding one JSON file per table."""

    destination_dir = ensure_backups_root(destination_dir)
    moment = now or datetime.now(pytz.utc)
    backup_dir = destination_dir / f"backup-{_file_stamp(moment)}"
    if backup_dir.exists():
        raise BackupError(f"Refusing to overwrite existing backup {backup_dir}")

    schema = snapshot_tables(conn, tables, delay=delay, sleep=sleep)
    summary = {
        "backupDate": moment.isoformat(),
        "version": BACKUP_VERSION,
        "tables": list(schema.keys()),
        "counts": {table: len(rows) for table, rows in schema.items()},
    }

    # Written under a dot-prefixed staging name and renamed once complete;
    # restore only considers ``backup-*`` directories.
    staging_dir = destination_dir / f".{backup_dir.name}.partial"
    _ensure_deleted(staging_dir)
    staging_dir.mkdir(parents=True)
    try:
        for table, rows in schema.items():
            _write_json(staging_dir / f"{table}.json", rows)
        _write_json(staging_dir / SUMMARY_FILE, summary)
        staging_dir.rename(backup_dir)
    except OSError as exc:
        _ensure_deleted(staging_dir)
        raise BackupError(f"Could not write backup {backup_dir}: {exc}") from exc
    LOGGER.info("Created table backup %s", backup_dir)
    return backup_dir


def create_customer_form_backup(
    conn: sqlite3.Connection,
    destination_dir: Optional[Path] = None,
    *,
    now: Optional[datetime] = None,
) -> Path:
    """Write the nested customer-centric backup used before the company split."""

    if detect_schema_state(conn) is not SchemaState.LEGACY:
        raise BackupError("Legacy customer tables are not present; nothing to back up.")

    destination_dir = ensure_backups_root(destination_dir)
    moment = now or datetime.now(pytz.utc)
    backup_path = destination_dir / f"customer-form-backup-{_file_stamp(moment)}.json"
    if backup_path.exists():
        raise BackupError(f"Refusing to overwrite existing backup {backup_path}")

    customers = fetch_table_rows(conn, "customers")
    locations = fetch_table_rows(conn, "locations")
    contacts = fetch_table_rows(conn, "contacts")
    enquiries = fetch_table_rows(conn, "enquiries")
    communications = fetch_table_rows(conn, "communications")

    contacts_by_location = _group_by(contacts, "location_id")
    nested_locations = [
        dict(location, contacts=contacts_by_location.get(location["id"], []))
        for location in locations
    ]
    locations_by_customer = _group_by(nested_locations, "customer_id")
    contacts_by_customer = _group_by(contacts, "customer_id")
    enquiries_by_customer = _group_by(enquiries, "customer_id")
    communications_by_customer = _group_by(communications, "customer_id")

    nested_customers = []
    for customer in customers:
        customer_id = customer["id"]
        nested_customers.append(
            dict(
                customer,
                locations=locations_by_customer.get(customer_id, []),
                contacts=contacts_by_customer.get(customer_id, []),
                enquiries=enquiries_by_customer.get(customer_id, []),
                communications=communications_by_customer.get(customer_id, []),
            )
        )

    payload = {
        "timestamp": moment.isoformat(),
        "customers": nested_customers,
        "locations": nested_locations,
        "contacts": contacts,
        "enquiries": enquiries,
        "communications": communications,
    }
    _write_json(backup_path, payload)
    LOGGER.info("Created customer form backup %s", backup_path)
    return backup_path


def load_backup(source: Path) -> BackupPayload:
    """Read a backup file or directory and classify its shape."""

    source = Path(source)
    if not source.exists():
        raise BackupError(f"Backup not found: {source}")

    if source.is_dir():
        return _load_backup_directory(source)

    data = _read_json(source)
    if not isinstance(data, Mapping):
        raise BackupError(f"{source.name} does not contain a JSON object.")

    timestamp = data.get("timestamp")
    if isinstance(data.get("schema"), Mapping):
        tables = {
            str(name): _ensure_rows(rows, f"{source.name}:{name}")
            for name, rows in data["schema"].items()
        }
        return BackupPayload(
            source=source,
            shape=BackupShape.TABLES,
            timestamp=timestamp,
            created_at=_parse_timestamp(timestamp),
            version=data.get("version"),
            tables=tables,
        )
    if isinstance(data.get("customers"), list):
        customer_form = {
            key: _ensure_rows(data.get(key), f"{source.name}:{key}") for key in _NESTED_KEYS
        }
        return BackupPayload(
            source=source,
            shape=BackupShape.CUSTOMER_FORM,
            timestamp=timestamp,
            created_at=_parse_timestamp(timestamp),
            customer_form=customer_form,
        )
    raise BackupError(f"{source.name} is not a recognised backup format.")


def _load_backup_directory(directory: Path) -> BackupPayload:
    summary: Dict[str, Any] = {}
    summary_path = directory / SUMMARY_FILE
    if summary_path.exists():
        loaded = _read_json(summary_path)
        if isinstance(loaded, Mapping):
            summary = dict(loaded)

    tables: Dict[str, List[Dict[str, Any]]] = {}
    for entry in sorted(directory.glob("*.json")):
        if entry.name == SUMMARY_FILE:
            continue
        tables[entry.stem] = _ensure_rows(_read_json(entry), entry.name)

    timestamp = summary.get("backupDate")
    return BackupPayload(
        source=directory,
        shape=BackupShape.TABLES,
        timestamp=timestamp,
        created_at=_parse_timestamp(timestamp),
        version=summary.get("version"),
        tables=tables,
        summary=summary,
    )


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise BackupError(f"Could not decode {path.name}: {exc}") from exc
    except OSError as exc:
        raise BackupError(f"Could not read {path}: {exc}") from exc


def _write_json(path: Path, payload: Any) -> None:
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False, default=str), encoding="utf-8")


def _ensure_deleted(path: Path) -> None:
    if not path.exists():
        return
    if path.is_dir():
        shutil.rmtree(path)
    else:
        path.unlink()


def _ensure_rows(value: Any, label: str) -> List[Dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(entry, Mapping) for entry in value):
        raise BackupError(f"{label} must be a list of row objects.")
    return [dict(entry) for entry in value]


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return isoparse(value)
    except ValueError:
        LOGGER.warning("Backup timestamp %r could not be parsed", value)
        return None


def _file_stamp(moment: datetime) -> str:
    return moment.astimezone(pytz.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


def _group_by(rows: Iterable[Dict[str, Any]], key: str) -> Dict[Any, List[Dict[str, Any]]]:
    grouped: Dict[Any, List[Dict[str, Any]]] = {}
    for row in rows:
        value = row.get(key)
        if value is None:
            continue
        grouped.setdefault(value, []).append(row)
    return grouped


def _print_counts(counts: Mapping[str, int]) -> None:
    print("\nBackup contains:")
    for table, count in counts.items():
        print(f"   - {count} {table}")


def _print_location(path: Path) -> None:
    if path.is_dir():
        size = sum(entry.stat().st_size for entry in path.iterdir() if entry.is_file())
    else:
        size = path.stat().st_size
    print(f"\nBackup created successfully: {path}")
    print(f"Size: {size / (1024 * 1024):.2f} MB")


def main() -> int:
    """Entry-point for ``scripts/backup_database.py``."""

    def _procedure(conn: sqlite3.Connection) -> int:
        print("Creating full database backup...")
        path = create_backup(conn)
        payload = load_backup(path)
        _print_location(path)
        _print_counts({table: len(rows) for table, rows in payload.tables.items()})
        print(f"\nBackup timestamp: {payload.timestamp}")
        return 0

    return run_script(_procedure, description="Backup")


def main_tables() -> int:
    """Entry-point for ``scripts/backup_tables.py``."""

    def _procedure(conn: sqlite3.Connection) -> int:
        print("Creating per-table database backup...")
        path = create_table_backup(conn)
        payload = load_backup(path)
        _print_location(path)
        _print_counts(payload.summary.get("counts", {}))
        return 0

    return run_script(_procedure, description="Backup")


def main_customer_form() -> int:
    """Entry-point for ``scripts/backup_customer_form.py``."""

    def _procedure(conn: sqlite3.Connection) -> int:
        print("Creating backup of current customer form data...")
        path = create_customer_form_backup(conn)
        payload = load_backup(path)
        _print_location(path)
        _print_counts({key: len(rows) for key, rows in payload.customer_form.items()})
        return 0

    return run_script(_procedure, description="Customer form backup")


if __name__ == "__main__":  # pragma: no cover - CLI behavior
    raise SystemExit(main())
