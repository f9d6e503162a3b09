"""Read-only checks an operator runs to eyeball the data before and after a migration."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from database import rows_to_dicts, run_script, table_exists
from services.backup import BACKUP_TABLES

LOGGER = logging.getLogger(__name__)

MIGRATION_COUNT_TABLES = ("companies", "offices", "plants", "contact_persons")


@dataclass(frozen=True)
class NamedEntity:
    kind: str
    id: str
    name: str


@dataclass
class DuplicateReport:
    exact: List[tuple[NamedEntity, NamedEntity]] = field(default_factory=list)
    similar: List[tuple[NamedEntity, NamedEntity]] = field(default_factory=list)


@dataclass
class LinkReport:
    processed: int = 0
    updated: int = 0
    skipped: int = 0
    links: List[tuple[Any, str]] = field(default_factory=list)


def collect_counts(
    conn: sqlite3.Connection, tables: Optional[Sequence[str]] = None
) -> Dict[str, int]:
    """Return row counts per table; missing tables count as zero."""

    if tables is None:
        tables = BACKUP_TABLES
    counts: Dict[str, int] = {}
    for table in tables:
        if not table_exists(conn, table):
            counts[table] = 0
            continue
        counts[table] = conn.execute(f'SELECT COUNT(*) FROM "{table}"').fetchone()[0]
    return counts


def sample_rows(
    conn: sqlite3.Connection,
    table: str,
    columns: Sequence[str] = ("*",),
    *,
    where: Optional[str] = None,
    limit: int = 5,
) -> List[Dict[str, Any]]:
    if not table_exists(conn, table):
        return []
    selected = ", ".join(column if column == "*" else f'"{column}"' for column in columns)
    query = f'SELECT {selected} FROM "{table}"'
    if where:
        query += f" WHERE {where}"
    query += " ORDER BY id LIMIT ?"
    return rows_to_dicts(conn.execute(query, (limit,)).fetchall())


def describe_column(conn: sqlite3.Connection, table: str, column: str) -> Optional[str]:
    """Return the declared type of ``table.column`` or ``None`` if it does not exist."""

    for row in conn.execute(f'PRAGMA table_info("{table}")').fetchall():
        if row[1] == column:
            return row[2] or ""
    return None


def find_duplicate_company_names(conn: sqlite3.Connection) -> DuplicateReport:
    """Compare company and legacy customer names for exact and containment matches."""

    entities: List[NamedEntity] = []
    for table, kind in (("customers", "customer"), ("companies", "company")):
        if not table_exists(conn, table):
            continue
        for row in conn.execute(f'SELECT id, name FROM "{table}" ORDER BY id').fetchall():
            entities.append(NamedEntity(kind, str(row["id"]), row["name"] or ""))

    report = DuplicateReport()
    for index, first in enumerate(entities):
        first_name = first.name.strip().lower()
        for second in entities[index + 1:]:
            second_name = second.name.strip().lower()
            if not first_name or not second_name:
                continue
            if first_name == second_name:
                report.exact.append((first, second))
            elif first_name in second_name or second_name in first_name:
                report.similar.append((first, second))
    return report


def link_enquiries_to_companies(conn: sqlite3.Connection) -> LinkReport:
    """Attach enquiries still pointing at a legacy customer to the same-named company."""

    report = LinkReport()
    if not table_exists(conn, "customers"):
        LOGGER.info("Legacy customers table not found; no enquiries to link")
        return report

    pending = conn.execute(
        """
        SELECT e.id AS enquiry_id, c.name AS customer_name
        FROM enquiries e
        LEFT JOIN customers c ON c.id = e.customer_id
        WHERE e.customer_id IS NOT NULL AND e.company_id IS NULL
        ORDER BY e.id
        """
    ).fetchall()

    with conn:
        for row in pending:
            report.processed += 1
            customer_name = row["customer_name"]
            if not customer_name:
                LOGGER.warning("Enquiry %s references a missing customer", row["enquiry_id"])
                report.skipped += 1
                continue
            match = conn.execute(
                "SELECT id, name FROM companies WHERE lower(name) = lower(?) ORDER BY id LIMIT 1",
                (customer_name,),
            ).fetchone()
            if match is None:
                LOGGER.warning(
                    "No matching company found for enquiry %s: %r", row["enquiry_id"], customer_name
                )
                report.skipped += 1
                continue
            conn.execute(
                "UPDATE enquiries SET company_id = ? WHERE id = ?",
                (match["id"], row["enquiry_id"]),
            )
            report.updated += 1
            report.links.append((row["enquiry_id"], match["name"]))
    return report


def main_verify() -> int:
    """Entry-point for ``scripts/verify_migration.py``."""

    def _procedure(conn: sqlite3.Connection) -> int:
        print("Row counts:")
        for table, count in collect_counts(conn).items():
            print(f"  {table}: {count}")

        declared = describe_column(conn, "enquiries", "number_of_blocks")
        if declared is None:
            print("\nColumn enquiries.number_of_blocks not found")
        else:
            print(f"\nenquiries.number_of_blocks declared as {declared or 'untyped'}")
            if declared.upper() != "TEXT":
                print("Warning: column type is not TEXT yet")

        samples = sample_rows(
            conn, "enquiries", ("id", "number_of_blocks"), where="number_of_blocks IS NOT NULL", limit=3
        )
        print("\nSample data (first 3 records with number_of_blocks):")
        for index, row in enumerate(samples, start=1):
            print(f"  {index}. Enquiry ID {row['id']}: number_of_blocks = {row['number_of_blocks']!r}")
        return 0

    return run_script(_procedure, description="Verification")


def main_duplicates() -> int:
    """Entry-point for ``scripts/check_duplicates.py``."""

    def _procedure(conn: sqlite3.Connection) -> int:
        report = find_duplicate_company_names(conn)
        if not report.exact:
            print("No duplicate names found")
        for first, second in report.exact:
            print(f"Exact match: {first.name!r} ({first.kind}) and {second.name!r} ({second.kind})")
        for first, second in report.similar:
            print(f"Similar names: {first.name!r} ({first.kind}) and {second.name!r} ({second.kind})")
        return 0

    return run_script(_procedure, description="Duplicate check")


def main_link() -> int:
    """Entry-point for ``scripts/link_enquiries_to_companies.py``."""

    def _procedure(conn: sqlite3.Connection) -> int:
        report = link_enquiries_to_companies(conn)
        for enquiry_id, company_name in report.links:
            print(f"Updated enquiry {enquiry_id} -> company {company_name!r}")
        print("\nSummary:")
        print(f"  Updated: {report.updated} enquiries")
        print(f"  Skipped: {report.skipped} enquiries")
        print(f"  Total processed: {report.processed} enquiries")
        return 0

    return run_script(_procedure, description="Enquiry linking")
