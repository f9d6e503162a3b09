import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from database import get_db_connection, init_db, write_row


LEGACY_ROWS = {
    "employees": [
        {"id": "E1", "name": "Asha Rao", "email": "asha@example.com", "role": "MARKETING"},
    ],
    "customers": [
        {
            "id": "C1",
            "name": "Acme Chemicals",
            "created_by_id": "E1",
            "po_rupture_discs": 1,
            "po_thermowells": 0,
            "po_heat_exchanger": 1,
            "existing_graphite_suppliers": "Carbon Co",
            "problems_faced": "Slow deliveries",
            "created_at": "2024-01-05T09:00:00Z",
            "updated_at": "2024-02-01T09:00:00Z",
        },
        {"id": "C2", "name": "Borealis Pharma", "po_miscellaneous": 1},
        {"id": "C3", "name": "Cobalt Metals"},
    ],
    "locations": [
        {"id": "L1", "customer_id": "C1", "name": "Mumbai HQ", "type": "OFFICE", "city": "Mumbai", "reception_number": "022-1"},
        {"id": "L2", "customer_id": "C1", "name": "Thane Works", "type": "PLANT", "city": "Thane"},
        {"id": "L3", "customer_id": "C1", "name": "Pune Branch", "type": "OFFICE", "city": "Pune"},
        {"id": "L4", "customer_id": "C2", "name": "Vapi Plant", "type": "PLANT", "city": "Vapi"},
    ],
    "contacts": [
        {"id": "K1", "customer_id": "C1", "location_id": "L1", "name": "Ravi", "designation": "Buyer",
         "official_cell_number": "111", "personal_cell_number": "222"},
        {"id": "K2", "customer_id": "C1", "location_id": "L2", "name": "Meena",
         "official_cell_number": None, "personal_cell_number": "333"},
        {"id": "K3", "customer_id": "C1", "location_id": None, "name": "Sunil",
         "official_cell_number": "", "personal_cell_number": "444"},
        {"id": "K4", "customer_id": "C2", "location_id": "L4", "name": "Farah", "official_cell_number": "555"},
        {"id": "K5", "customer_id": "C2", "location_id": None, "name": "Gopal", "personal_cell_number": "666"},
    ],
    "enquiries": [
        {"id": 1, "subject": "Rupture discs", "customer_id": "C1", "number_of_blocks": "4.000000000000000000000000000000",
         "marketing_person_id": "E1"},
        {"id": 2, "subject": "Heat exchanger", "customer_id": "C2", "number_of_blocks": "9.50"},
        {"id": 3, "subject": "Thermowells", "customer_id": "C1", "number_of_blocks": "0.00"},
    ],
    "quotations": [
        {"id": "Q1", "enquiry_id": 1, "quotation_number": "Q-001", "revision_number": 0, "total_value": 1500.5},
    ],
    "quotation_items": [
        {"id": "QI1", "quotation_id": "Q1", "material_description": "Graphite disc", "quantity": 3, "price_per_unit": 500.0},
    ],
    "communications": [
        {"id": "M1", "subject": "Follow up", "customer_id": "C1", "enquiry_id": 1, "employee_id": "E1"},
        {"id": "M2", "subject": "Intro call", "customer_id": "C2"},
    ],
}


def seed_rows(conn, rows_by_table):
    with conn:
        cursor = conn.cursor()
        for table, rows in rows_by_table.items():
            for row in rows:
                write_row(cursor, table, dict(row))


@pytest.fixture()
def db_path(tmp_path):
    return tmp_path / "crm.db"


@pytest.fixture()
def conn(db_path):
    connection = get_db_connection(str(db_path))
    init_db(connection)
    try:
        yield connection
    finally:
        connection.close()


@pytest.fixture()
def legacy_conn(conn):
    seed_rows(conn, LEGACY_ROWS)
    return conn


@pytest.fixture()
def make_database(tmp_path):
    """Return a factory that opens extra empty databases under ``tmp_path``."""
    opened = []

    def _factory(name="target.db", include_legacy=True):
        connection = get_db_connection(str(tmp_path / name))
        init_db(connection, include_legacy=include_legacy)
        opened.append(connection)
        return connection

    yield _factory
    for connection in opened:
        connection.close()
