"""Move legacy customers onto the company/office/plant/contact-person schema."""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from database import SchemaState, detect_schema_state, rows_to_dicts, run_script, write_row
from services.legacy_conversion import LegacyCustomer, MigrationError, convert_legacy_customer
from services.verification import MIGRATION_COUNT_TABLES, collect_counts

__all__ = [
    "MigrationError",
    "MigrationFailure",
    "MigrationReport",
    "load_legacy_customers",
    "migrate_legacy_customers",
]

LOGGER = logging.getLogger(__name__)

STATUS_COMPLETED = "completed"
STATUS_ALREADY_MIGRATED = "already-migrated"
STATUS_LEGACY_MISSING = "legacy-schema-missing"


@dataclass(frozen=True)
class MigrationFailure:
    customer_id: str
    customer_name: str
    error: str


@dataclass
class MigrationReport:
    """Outcome of one migrator run."""

    status: str = STATUS_COMPLETED
    processed: int = 0
    migrated: int = 0
    skipped: int = 0
    repointed_enquiries: int = 0
    repointed_communications: int = 0
    company_ids: Dict[str, str] = field(default_factory=dict)
    failures: List[MigrationFailure] = field(default_factory=list)
    totals: Dict[str, int] = field(default_factory=dict)


def load_legacy_customers(conn: sqlite3.Connection) -> List[LegacyCustomer]:
    """Read every legacy customer together with its locations and contacts."""

    customers = rows_to_dicts(conn.execute("SELECT * FROM customers ORDER BY id").fetchall())
    locations = rows_to_dicts(conn.execute("SELECT * FROM locations ORDER BY id").fetchall())
    contacts = rows_to_dicts(conn.execute("SELECT * FROM contacts ORDER BY id").fetchall())

    locations_by_customer: Dict[str, List[dict]] = {}
    for location in locations:
        locations_by_customer.setdefault(location["customer_id"], []).append(location)

    location_owner = {location["id"]: location["customer_id"] for location in locations}
    contacts_by_customer: Dict[str, List[dict]] = {}
    for contact in contacts:
        owner = contact.get("customer_id") or location_owner.get(contact.get("location_id"))
        if owner is None:
            LOGGER.warning("Contact %s has no customer or location; ignoring", contact["id"])
            continue
        contacts_by_customer.setdefault(owner, []).append(contact)

    return [
        LegacyCustomer.from_rows(
            customer,
            locations_by_customer.get(customer["id"], []),
            contacts_by_customer.get(customer["id"], []),
        )
        for customer in customers
    ]


def migrate_legacy_customers(
    conn: sqlite3.Connection,
    *,
    schema_state: Optional[SchemaState] = None,
    id_factory: Optional[Callable[[], str]] = None,
) -> MigrationReport:
    """Convert every legacy customer, one transaction per customer.

    The run is skipped entirely when the legacy tables are gone or when any
    company already exists.
    """

    report = MigrationReport()
    schema_state = schema_state or detect_schema_state(conn)
    if schema_state is not SchemaState.LEGACY:
        LOGGER.info("Legacy customer tables not found; nothing to migrate")
        report.status = STATUS_LEGACY_MISSING
        report.totals = collect_counts(conn, MIGRATION_COUNT_TABLES)
        return report

    existing = conn.execute("SELECT COUNT(*) FROM companies").fetchone()[0]
    if existing:
        LOGGER.info("%s companies already exist; skipping conversion", existing)
        report.status = STATUS_ALREADY_MIGRATED
        report.totals = collect_counts(conn, MIGRATION_COUNT_TABLES)
        return report

    customers = load_legacy_customers(conn)
    print(f"Found {len(customers)} customers to migrate")

    for customer in customers:
        report.processed += 1
        try:
            with conn:
                migrated = _migrate_customer(conn, customer, report, id_factory)
        except Exception as exc:
            LOGGER.error(
                "Error migrating customer %r (%s): %s", customer.name, customer.id, exc
            )
            report.failures.append(MigrationFailure(customer.id, customer.name, str(exc)))
            continue
        if migrated:
            report.migrated += 1
            print(f"Migrated customer {customer.name!r} to company")
        else:
            report.skipped += 1

    report.totals = collect_counts(conn, MIGRATION_COUNT_TABLES)
    return report


def _migrate_customer(
    conn: sqlite3.Connection,
    customer: LegacyCustomer,
    report: MigrationReport,
    id_factory: Optional[Callable[[], str]],
) -> bool:
    cursor = conn.cursor()
    cursor.execute("SELECT id FROM companies WHERE name = ? LIMIT 1", (customer.name,))
    if cursor.fetchone() is not None:
        LOGGER.info("Skipping customer %r - company already exists", customer.name)
        return False

    converted = convert_legacy_customer(customer, id_factory=id_factory)
    write_row(cursor, "companies", converted.company)
    for office in converted.offices:
        write_row(cursor, "offices", office)
    for plant in converted.plants:
        write_row(cursor, "plants", plant)
    for person in converted.contact_persons:
        write_row(cursor, "contact_persons", person)

    cursor.execute(
        "UPDATE enquiries SET company_id = ?, customer_id = NULL WHERE customer_id = ?",
        (converted.company_id, customer.id),
    )
    report.repointed_enquiries += cursor.rowcount
    cursor.execute(
        "UPDATE communications SET company_id = ?, customer_id = NULL WHERE customer_id = ?",
        (converted.company_id, customer.id),
    )
    report.repointed_communications += cursor.rowcount

    report.company_ids[customer.id] = converted.company_id
    return True


def main() -> int:
    """Entry-point for ``scripts/migrate_customers_to_companies.py``."""

    def _procedure(conn: sqlite3.Connection) -> int:
        print("Starting migration of customers to companies...")
        report = migrate_legacy_customers(conn)
        if report.status == STATUS_LEGACY_MISSING:
            print("Legacy customer tables are not present; nothing to migrate.")
        elif report.status == STATUS_ALREADY_MIGRATED:
            print("Companies already exist, skipping conversion.")
        else:
            print("\nMigration Summary:")
            print(f"  Successfully migrated: {report.migrated} customers")
            print(f"  Skipped (already exists): {report.skipped} customers")
            print(f"  Failed: {len(report.failures)} customers")
            print(f"  Total processed: {report.processed} customers")
            print(f"  Enquiries repointed: {report.repointed_enquiries}")
            print(f"  Communications repointed: {report.repointed_communications}")
        print("\nVerification:")
        for table, count in report.totals.items():
            print(f"  {table}: {count}")
        print("\nPlease verify the data before running scripts/cleanup_legacy_customers.py")
        return 0

    return run_script(_procedure, description="Migration")


if __name__ == "__main__":  # pragma: no cover - CLI behavior
    raise SystemExit(main())
