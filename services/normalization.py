"""Collapse decimal-formatted numbers stored as text into their shortest form.

``enquiries.number_of_blocks`` was once a numeric column, and values copied out
of it look like ``"4.000000000000000000000000000000"``.  The rewrite works on
the text with regular expressions only, so no precision is lost.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from database import run_script, table_exists

LOGGER = logging.getLogger(__name__)

_ZERO = re.compile(r"^-?0+(\.0+)?$")
_WHOLE = re.compile(r"^(-?)0*(\d+)\.0+$")
_DECIMAL = re.compile(r"^(-?)0*(\d+)\.(\d*[1-9])0*$")


@dataclass
class NormalizationReport:
    examined: int = 0
    updated: int = 0
    before: List[Tuple[Any, Any]] = field(default_factory=list)
    after: List[Tuple[Any, Any]] = field(default_factory=list)


def normalize_decimal_text(value: Optional[str]) -> Optional[str]:
    """Return the shortest text for a decimal string; blank becomes ``None``.

    Values that do not look like a plain decimal are returned untouched.
    """

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if _ZERO.match(text):
        return "0"
    match = _WHOLE.match(text)
    if match:
        sign, digits = match.groups()
        return f"{sign}{digits}"
    match = _DECIMAL.match(text)
    if match:
        sign, digits, fraction = match.groups()
        return f"{sign}{digits}.{fraction}"
    return text


def normalize_number_of_blocks(
    conn: sqlite3.Connection, *, sample_size: int = 5
) -> NormalizationReport:
    """Rewrite every ``enquiries.number_of_blocks`` value in one transaction."""

    report = NormalizationReport()
    if not table_exists(conn, "enquiries"):
        LOGGER.warning("enquiries table not found; nothing to normalize")
        return report

    rows = conn.execute(
        'SELECT id, CAST(number_of_blocks AS TEXT) AS number_of_blocks '
        'FROM enquiries WHERE number_of_blocks IS NOT NULL ORDER BY id'
    ).fetchall()
    report.examined = len(rows)
    report.before = [(row["id"], row["number_of_blocks"]) for row in rows[:sample_size]]

    with conn:
        for row in rows:
            current = row["number_of_blocks"]
            normalized = normalize_decimal_text(current)
            if normalized == current:
                continue
            conn.execute(
                "UPDATE enquiries SET number_of_blocks = ? WHERE id = ?",
                (normalized, row["id"]),
            )
            report.updated += 1

    after = conn.execute(
        "SELECT id, number_of_blocks FROM enquiries WHERE number_of_blocks IS NOT NULL "
        "ORDER BY id LIMIT ?",
        (sample_size,),
    ).fetchall()
    report.after = [(row["id"], row["number_of_blocks"]) for row in after]
    return report


def main() -> int:
    """Entry-point for ``scripts/normalize_number_of_blocks.py``."""

    def _procedure(conn: sqlite3.Connection) -> int:
        print("Normalizing number_of_blocks values...")
        report = normalize_number_of_blocks(conn)
        print(f"  Found {report.examined} enquiries with number_of_blocks values")
        if not report.examined:
            print("No values to normalize.")
            return 0
        print("\nSample values before normalization:")
        for index, (enquiry_id, value) in enumerate(report.before, start=1):
            print(f"  {index}. Enquiry ID {enquiry_id}: {value!r}")
        print(f"\nUpdated {report.updated} records")
        print("\nSample values after normalization:")
        for index, (enquiry_id, value) in enumerate(report.after, start=1):
            print(f"  {index}. Enquiry ID {enquiry_id}: {value!r}")
        return 0

    return run_script(_procedure, description="Normalization")


if __name__ == "__main__":  # pragma: no cover - CLI behavior
    raise SystemExit(main())
