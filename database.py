import contextlib
import enum
import logging
import os
import re
import sqlite3
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DATABASE_URL_ENV = "DATABASE_URL"
ENV_FILES = (".env.local", ".env")

LEGACY_TABLES = ("customers", "locations", "contacts")

_QUOTE_PATTERN = re.compile(r"^[\"']|[\"']$")


class ConfigurationError(RuntimeError):
    """Raised when the database connection settings are missing or unusable."""


class SchemaState(enum.Enum):
    """Whether the legacy customer tables are still present in the database."""

    LEGACY = "legacy"
    MIGRATED = "migrated"


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def load_environment(base_dir: Optional[Path] = None) -> None:
    """Load ``.env.local`` then ``.env`` without overriding the real environment."""
    base_dir = Path(base_dir) if base_dir is not None else Path.cwd()
    for name in ENV_FILES:
        env_file = base_dir / name
        if env_file.exists():
            load_dotenv(env_file, override=False)


def resolve_database_url(value: Optional[str] = None) -> str:
    """Return the configured database URL with surrounding quotes removed."""
    if value is None:
        load_environment()
        value = os.environ.get(DATABASE_URL_ENV)
    if value is None or not value.strip():
        raise ConfigurationError(
            f"{DATABASE_URL_ENV} environment variable is not set. "
            "Add it to your .env or .env.local file."
        )
    return _QUOTE_PATTERN.sub("", value.strip())


def _sqlite_target(url: str):
    """Translate a database URL into ``sqlite3.connect`` arguments."""
    if url.startswith("sqlite:///"):
        target = url[len("sqlite:///"):]
        if target in ("", ":memory:"):
            return ":memory:", False
        return target, False
    if url.startswith("file:"):
        return url, True
    if "://" in url:
        scheme = url.split("://", 1)[0]
        raise ConfigurationError(
            f"Unsupported database scheme '{scheme}'; only SQLite URLs are supported."
        )
    return url, False


def get_db_connection(url: str) -> sqlite3.Connection:
    """Establishes a connection to the SQLite database named by ``url``."""
    target, uri = _sqlite_target(url)
    try:
        conn = sqlite3.connect(target, timeout=30.0, isolation_level='DEFERRED', uri=uri)
    except sqlite3.Error as exc:
        raise ConfigurationError(f"Could not connect to database: {exc}") from exc
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
    except sqlite3.Error as e:
        logger.warning(f"Could not set PRAGMA settings: {e}")
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.row_factory = sqlite3.Row
    return conn


@contextlib.contextmanager
def database_session(url: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Open one connection for the lifetime of a script run and always close it."""
    conn = get_db_connection(resolve_database_url(url))
    try:
        yield conn
    finally:
        conn.close()


def run_script(
    procedure: Callable[[sqlite3.Connection], int],
    *,
    description: str,
    url: Optional[str] = None,
) -> int:
    """Run ``procedure`` against a fresh session and map failures to exit code 1."""
    configure_logging()
    try:
        with database_session(url) as conn:
            return procedure(conn)
    except ConfigurationError as exc:
        print(f"Error: {exc}")
        return 1
    except Exception as exc:
        logger.exception("%s failed", description)
        print(f"{description} failed: {exc}")
        return 1


def list_tables(conn: sqlite3.Connection) -> List[str]:
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
    )
    return sorted(row[0] for row in cursor.fetchall())


def table_exists(conn: sqlite3.Connection, table_name: str) -> bool:
    """Return ``True`` if the table exists in the connected database."""
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table_name,),
    )
    return cursor.fetchone() is not None


def table_columns(conn: sqlite3.Connection, table_name: str) -> List[str]:
    cursor = conn.execute(f'PRAGMA table_info("{table_name}")')
    return [row[1] for row in cursor.fetchall()]


def detect_schema_state(conn: sqlite3.Connection) -> SchemaState:
    if all(table_exists(conn, name) for name in LEGACY_TABLES):
        return SchemaState.LEGACY
    return SchemaState.MIGRATED


def rows_to_dicts(rows: Iterable[sqlite3.Row]) -> List[Dict[str, object]]:
    return [{key: row[key] for key in row.keys()} for row in rows]


TIMESTAMP_COLUMNS = ("created_at", "updated_at")


def write_row(
    cursor: sqlite3.Cursor,
    table: str,
    row: Dict[str, object],
    *,
    upsert: bool = False,
) -> None:
    """Insert ``row`` into ``table``; with ``upsert`` overwrite an existing id.

    Missing timestamps are left to the column defaults.
    """
    values = {
        key: value
        for key, value in row.items()
        if not (key in TIMESTAMP_COLUMNS and value is None)
    }
    columns = list(values.keys())
    quoted = ", ".join(f'"{column}"' for column in columns)
    placeholders = ", ".join("?" for _ in columns)
    sql = f'INSERT INTO "{table}" ({quoted}) VALUES ({placeholders})'
    updates = [column for column in columns if column != "id"]
    if upsert and updates:
        assignments = ", ".join(f'"{column}" = excluded."{column}"' for column in updates)
        sql += f" ON CONFLICT(id) DO UPDATE SET {assignments}"
    elif upsert:
        sql += " ON CONFLICT(id) DO NOTHING"
    cursor.execute(sql, [values[column] for column in columns])


_EMPLOYEES_SQL = """
    CREATE TABLE IF NOT EXISTS employees (
        id TEXT PRIMARY KEY NOT NULL,
        name TEXT NOT NULL,
        email TEXT UNIQUE,
        role TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    );
"""

_LEGACY_SQL = """
    CREATE TABLE IF NOT EXISTS customers (
        id TEXT PRIMARY KEY NOT NULL,
        name TEXT NOT NULL,
        designation TEXT,
        phone_number TEXT,
        email_id TEXT,
        is_new INTEGER NOT NULL DEFAULT 0,
        created_by_id TEXT,
        po_rupture_discs INTEGER NOT NULL DEFAULT 0,
        po_thermowells INTEGER NOT NULL DEFAULT 0,
        po_heat_exchanger INTEGER NOT NULL DEFAULT 0,
        po_miscellaneous INTEGER NOT NULL DEFAULT 0,
        po_water_jet_steam_jet INTEGER NOT NULL DEFAULT 0,
        existing_graphite_suppliers TEXT,
        problems_faced TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (created_by_id) REFERENCES employees (id)
    );
    CREATE TABLE IF NOT EXISTS locations (
        id TEXT PRIMARY KEY NOT NULL,
        customer_id TEXT NOT NULL,
        name TEXT,
        type TEXT NOT NULL CHECK (type IN ('OFFICE', 'PLANT')),
        address TEXT,
        city TEXT,
        state TEXT,
        country TEXT,
        reception_number TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (customer_id) REFERENCES customers (id)
    );
    CREATE TABLE IF NOT EXISTS contacts (
        id TEXT PRIMARY KEY NOT NULL,
        customer_id TEXT,
        location_id TEXT,
        name TEXT NOT NULL,
        designation TEXT,
        official_cell_number TEXT,
        personal_cell_number TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (customer_id) REFERENCES customers (id),
        FOREIGN KEY (location_id) REFERENCES locations (id)
    );
"""

_COMPANY_SQL = """
    CREATE TABLE IF NOT EXISTS companies (
        id TEXT PRIMARY KEY NOT NULL,
        name TEXT NOT NULL,
        website TEXT,
        industry TEXT,
        created_by_id TEXT,
        po_rupture_discs INTEGER NOT NULL DEFAULT 0,
        po_thermowells INTEGER NOT NULL DEFAULT 0,
        po_heat_exchanger INTEGER NOT NULL DEFAULT 0,
        po_miscellaneous INTEGER NOT NULL DEFAULT 0,
        po_water_jet_steam_jet INTEGER NOT NULL DEFAULT 0,
        existing_graphite_suppliers TEXT,
        problems_faced TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (created_by_id) REFERENCES employees (id)
    );
    CREATE TABLE IF NOT EXISTS offices (
        id TEXT PRIMARY KEY NOT NULL,
        company_id TEXT NOT NULL,
        name TEXT,
        address TEXT,
        area TEXT,
        city TEXT,
        state TEXT,
        country TEXT,
        pincode TEXT,
        is_head_office INTEGER NOT NULL DEFAULT 0,
        reception_number TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (company_id) REFERENCES companies (id)
    );
    CREATE TABLE IF NOT EXISTS plants (
        id TEXT PRIMARY KEY NOT NULL,
        company_id TEXT NOT NULL,
        name TEXT,
        address TEXT,
        area TEXT,
        city TEXT,
        state TEXT,
        country TEXT,
        pincode TEXT,
        plant_type TEXT,
        reception_number TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (company_id) REFERENCES companies (id)
    );
    CREATE TABLE IF NOT EXISTS contact_persons (
        id TEXT PRIMARY KEY NOT NULL,
        name TEXT NOT NULL,
        designation TEXT,
        phone_number TEXT,
        email_id TEXT,
        is_primary INTEGER NOT NULL DEFAULT 0,
        office_id TEXT,
        plant_id TEXT,
        company_id TEXT NOT NULL,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        CHECK (office_id IS NULL OR plant_id IS NULL),
        FOREIGN KEY (office_id) REFERENCES offices (id),
        FOREIGN KEY (plant_id) REFERENCES plants (id),
        FOREIGN KEY (company_id) REFERENCES companies (id)
    );
"""

_DEPENDENT_SQL = """
    CREATE TABLE IF NOT EXISTS enquiries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        subject TEXT,
        description TEXT,
        enquiry_date TEXT,
        priority TEXT,
        source TEXT,
        status TEXT,
        number_of_blocks TEXT,
        quotation_number TEXT,
        customer_id TEXT,
        company_id TEXT,
        office_id TEXT,
        plant_id TEXT,
        marketing_person_id TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        {enquiries_customer_fk}
        FOREIGN KEY (company_id) REFERENCES companies (id),
        FOREIGN KEY (office_id) REFERENCES offices (id),
        FOREIGN KEY (plant_id) REFERENCES plants (id),
        FOREIGN KEY (marketing_person_id) REFERENCES employees (id)
    );
    CREATE TABLE IF NOT EXISTS quotations (
        id TEXT PRIMARY KEY NOT NULL,
        enquiry_id INTEGER,
        quotation_number TEXT,
        revision_number INTEGER NOT NULL DEFAULT 0,
        quotation_date TEXT,
        delivery_schedule TEXT,
        currency TEXT DEFAULT 'INR',
        status TEXT,
        total_value REAL,
        created_by_id TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (enquiry_id) REFERENCES enquiries (id),
        FOREIGN KEY (created_by_id) REFERENCES employees (id)
    );
    CREATE TABLE IF NOT EXISTS quotation_items (
        id TEXT PRIMARY KEY NOT NULL,
        quotation_id TEXT NOT NULL,
        material_description TEXT,
        specifications TEXT,
        quantity INTEGER NOT NULL DEFAULT 1,
        price_per_unit REAL,
        total_value REAL,
        FOREIGN KEY (quotation_id) REFERENCES quotations (id) ON DELETE CASCADE
    );
    CREATE TABLE IF NOT EXISTS communications (
        id TEXT PRIMARY KEY NOT NULL,
        subject TEXT,
        description TEXT,
        type TEXT,
        status TEXT,
        next_communication_date TEXT,
        customer_id TEXT,
        company_id TEXT,
        enquiry_id INTEGER,
        contact_person_id TEXT,
        employee_id TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        {communications_customer_fk}
        FOREIGN KEY (company_id) REFERENCES companies (id),
        FOREIGN KEY (enquiry_id) REFERENCES enquiries (id),
        FOREIGN KEY (contact_person_id) REFERENCES contact_persons (id),
        FOREIGN KEY (employee_id) REFERENCES employees (id)
    );
    CREATE TABLE IF NOT EXISTS documents (
        id TEXT PRIMARY KEY NOT NULL,
        enquiry_id INTEGER,
        quotation_id TEXT,
        file_name TEXT,
        file_url TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (enquiry_id) REFERENCES enquiries (id),
        FOREIGN KEY (quotation_id) REFERENCES quotations (id)
    );
"""


def init_db(conn: sqlite3.Connection, include_legacy: bool = True) -> None:
    """Initializes the CRM schema, optionally with the legacy customer tables."""
    cursor = conn.cursor()
    cursor.executescript(_EMPLOYEES_SQL)
    if include_legacy:
        cursor.executescript(_LEGACY_SQL)
    cursor.executescript(_COMPANY_SQL)
    # SQLite rejects writes to a child table whose parent table is missing.
    if include_legacy:
        references = {
            "enquiries_customer_fk": "FOREIGN KEY (customer_id) REFERENCES customers (id) ON DELETE SET NULL,",
            "communications_customer_fk": "FOREIGN KEY (customer_id) REFERENCES customers (id),",
        }
    else:
        references = {"enquiries_customer_fk": "", "communications_customer_fk": ""}
    cursor.executescript(_DEPENDENT_SQL.format(**references))
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_enquiries_company ON enquiries(company_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_communications_company ON communications(company_id)")
    conn.commit()
    logger.info("Database initialized.")


if __name__ == '__main__':
    configure_logging()
    with database_session() as connection:
        init_db(connection)
