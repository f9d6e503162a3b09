"""Delete the legacy customer tables' rows once the migration has been checked."""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Dict, Optional

from database import SchemaState, detect_schema_state, run_script

LOGGER = logging.getLogger(__name__)

# Children before parents so no foreign key is left dangling.
CLEANUP_STATEMENTS = (
    ("communications", "DELETE FROM communications WHERE customer_id IS NOT NULL"),
    ("contacts", "DELETE FROM contacts"),
    ("locations", "DELETE FROM locations"),
    ("customers", "DELETE FROM customers"),
)


@dataclass
class CleanupReport:
    performed: bool = False
    deleted: Dict[str, int] = field(default_factory=dict)


def cleanup_legacy_data(
    conn: sqlite3.Connection, *, schema_state: Optional[SchemaState] = None
) -> CleanupReport:
    """Remove every legacy row in one transaction; irreversible except by restore."""

    report = CleanupReport()
    schema_state = schema_state or detect_schema_state(conn)
    if schema_state is not SchemaState.LEGACY:
        LOGGER.info("Legacy customer tables not found; nothing to clean up")
        return report

    with conn:
        for table, statement in CLEANUP_STATEMENTS:
            cursor = conn.execute(statement)
            report.deleted[table] = cursor.rowcount
            LOGGER.info("Deleted %s rows from %s", cursor.rowcount, table)
    report.performed = True
    return report


def main() -> int:
    """Entry-point for ``scripts/cleanup_legacy_customers.py``."""

    def _procedure(conn: sqlite3.Connection) -> int:
        print("Cleaning up old customer data...")
        report = cleanup_legacy_data(conn)
        if not report.performed:
            print("Legacy customer tables are not present; nothing to clean up.")
            return 0
        for table, count in report.deleted.items():
            print(f"  {table}: {count} rows deleted")
        print("Old customer data cleaned up successfully")
        return 0

    return run_script(_procedure, description="Cleanup")


if __name__ == "__main__":  # pragma: no cover - CLI behavior
    raise SystemExit(main())
