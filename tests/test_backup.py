import json
from datetime import datetime

import pytest
import pytz

from services import backup as backup_service
from services.backup import BackupError, BackupShape
from services.restore import RestoreError, resolve_backup_source


BACKUP_MOMENT = datetime(2024, 3, 1, 12, 30, tzinfo=pytz.utc)


@pytest.fixture()
def backups_dir(tmp_path):
    return tmp_path / 'backups'


def test_fetch_table_rows_returns_ordered_dicts(legacy_conn):
    rows = backup_service.fetch_table_rows(legacy_conn, 'customers')

    assert [row['id'] for row in rows] == ['C1', 'C2', 'C3']
    assert rows[0]['name'] == 'Acme Chemicals'
    assert rows[0]['po_heat_exchanger'] == 1


def test_fetch_table_rows_missing_table_is_empty(make_database):
    conn = make_database('migrated.db', include_legacy=False)

    assert backup_service.fetch_table_rows(conn, 'customers') == []


def test_number_of_blocks_is_exported_as_text(legacy_conn):
    rows = backup_service.fetch_table_rows(legacy_conn, 'enquiries')

    assert rows[0]['number_of_blocks'] == '4.000000000000000000000000000000'
    assert all(isinstance(row['number_of_blocks'], str) for row in rows)


def test_snapshot_sleeps_between_tables_only(legacy_conn):
    pauses = []

    snapshot = backup_service.snapshot_tables(
        legacy_conn, ('employees', 'customers', 'locations'), delay=0.25, sleep=pauses.append
    )

    assert list(snapshot) == ['employees', 'customers', 'locations']
    assert pauses == [0.25, 0.25]


def test_query_delay_reads_environment(monkeypatch):
    monkeypatch.delenv('CRM_QUERY_DELAY_MS', raising=False)
    assert backup_service.query_delay_seconds() == 0.5

    monkeypatch.setenv('CRM_QUERY_DELAY_MS', '250')
    assert backup_service.query_delay_seconds() == 0.25

    monkeypatch.setenv('CRM_QUERY_DELAY_MS', 'soon')
    assert backup_service.query_delay_seconds() == 0.5


def test_create_backup_writes_table_keyed_file(legacy_conn, backups_dir):
    path = backup_service.create_backup(legacy_conn, backups_dir, delay=0, now=BACKUP_MOMENT)

    assert path.name == 'database-backup-2024-03-01T12-30-00-000000Z.json'
    payload = json.loads(path.read_text(encoding='utf-8'))
    assert payload['version'] == '1.0'
    assert payload['timestamp'] == '2024-03-01T12:30:00+00:00'
    assert set(payload['schema']) == set(backup_service.BACKUP_TABLES)
    assert len(payload['schema']['contacts']) == 5
    assert payload['schema']['companies'] == []


def test_create_backup_refuses_to_overwrite(legacy_conn, backups_dir):
    backup_service.create_backup(legacy_conn, backups_dir, delay=0, now=BACKUP_MOMENT)

    with pytest.raises(BackupError):
        backup_service.create_backup(legacy_conn, backups_dir, delay=0, now=BACKUP_MOMENT)


def test_backup_root_can_be_overridden(legacy_conn, tmp_path, monkeypatch):
    monkeypatch.setenv('CRM_BACKUP_ROOT', str(tmp_path / 'elsewhere'))

    path = backup_service.create_backup(legacy_conn, delay=0, now=BACKUP_MOMENT)

    assert path.parent == tmp_path / 'elsewhere'


def test_create_table_backup_writes_directory_and_summary(legacy_conn, backups_dir):
    path = backup_service.create_table_backup(
        legacy_conn, backups_dir, tables=('employees', 'customers', 'enquiries'), delay=0, now=BACKUP_MOMENT
    )

    assert path.name == 'backup-2024-03-01T12-30-00-000000Z'
    assert sorted(entry.name for entry in path.iterdir()) == [
        'backup-summary.json',
        'customers.json',
        'employees.json',
        'enquiries.json',
    ]
    summary = json.loads((path / 'backup-summary.json').read_text(encoding='utf-8'))
    assert summary['backupDate'] == '2024-03-01T12:30:00+00:00'
    assert summary['tables'] == ['employees', 'customers', 'enquiries']
    assert summary['counts'] == {'employees': 1, 'customers': 3, 'enquiries': 3}


def test_customer_form_backup_nests_children(legacy_conn, backups_dir):
    path = backup_service.create_customer_form_backup(legacy_conn, backups_dir, now=BACKUP_MOMENT)

    payload = json.loads(path.read_text(encoding='utf-8'))
    acme = payload['customers'][0]
    assert acme['id'] == 'C1'
    assert [location['id'] for location in acme['locations']] == ['L1', 'L2', 'L3']
    assert [contact['id'] for contact in acme['locations'][0]['contacts']] == ['K1']
    assert sorted(contact['id'] for contact in acme['contacts']) == ['K1', 'K2', 'K3']
    assert [enquiry['id'] for enquiry in acme['enquiries']] == [1, 3]
    assert [communication['id'] for communication in acme['communications']] == ['M1']
    assert payload['customers'][2]['locations'] == []
    assert len(payload['locations']) == 4
    assert len(payload['contacts']) == 5


def test_customer_form_backup_requires_legacy_tables(make_database, backups_dir):
    conn = make_database('migrated.db', include_legacy=False)

    with pytest.raises(BackupError):
        backup_service.create_customer_form_backup(conn, backups_dir)


def test_load_backup_classifies_each_shape(legacy_conn, backups_dir):
    single = backup_service.create_backup(legacy_conn, backups_dir, delay=0, now=BACKUP_MOMENT)
    directory = backup_service.create_table_backup(legacy_conn, backups_dir, delay=0, now=BACKUP_MOMENT)
    nested = backup_service.create_customer_form_backup(legacy_conn, backups_dir, now=BACKUP_MOMENT)

    single_payload = backup_service.load_backup(single)
    assert single_payload.shape is BackupShape.TABLES
    assert single_payload.created_at == BACKUP_MOMENT
    assert len(single_payload.tables['customers']) == 3

    directory_payload = backup_service.load_backup(directory)
    assert directory_payload.shape is BackupShape.TABLES
    assert directory_payload.summary['counts']['contacts'] == 5
    assert 'backup-summary' not in directory_payload.tables

    nested_payload = backup_service.load_backup(nested)
    assert nested_payload.shape is BackupShape.CUSTOMER_FORM
    assert len(nested_payload.customer_form['customers']) == 3


@pytest.mark.parametrize(
    'content',
    [
        '{"unexpected": true}',
        '[1, 2, 3]',
        '{"schema": {"customers": "not rows"}}',
        '{not json',
    ],
)
def test_load_backup_rejects_unknown_formats(tmp_path, content):
    path = tmp_path / 'broken.json'
    path.write_text(content, encoding='utf-8')

    with pytest.raises(BackupError):
        backup_service.load_backup(path)


def test_load_backup_missing_source(tmp_path):
    with pytest.raises(BackupError):
        backup_service.load_backup(tmp_path / 'nowhere.json')


def test_load_backup_tolerates_bad_timestamp(tmp_path):
    path = tmp_path / 'odd.json'
    path.write_text(json.dumps({'timestamp': 'yesterday', 'schema': {}}), encoding='utf-8')

    payload = backup_service.load_backup(path)

    assert payload.timestamp == 'yesterday'
    assert payload.created_at is None


def test_main_writes_backup(legacy_conn, db_path, tmp_path, monkeypatch, capsys):
    monkeypatch.setenv('DATABASE_URL', f'sqlite:///{db_path}')
    monkeypatch.setenv('CRM_BACKUP_ROOT', str(tmp_path / 'out'))
    monkeypatch.setenv('CRM_QUERY_DELAY_MS', '0')

    assert backup_service.main() == 0

    written = list((tmp_path / 'out').glob('database-backup-*.json'))
    assert len(written) == 1
    assert 'Backup created successfully' in capsys.readouterr().out


def test_failed_table_backup_leaves_nothing_behind(legacy_conn, backups_dir, monkeypatch):
    original = backup_service._write_json

    def failing_write_json(path, payload):
        if path.name == 'customers.json':
            raise OSError('disk full')
        return original(path, payload)

    monkeypatch.setattr(backup_service, '_write_json', failing_write_json)

    with pytest.raises(BackupError, match='disk full'):
        backup_service.create_table_backup(legacy_conn, backups_dir, delay=0, now=BACKUP_MOMENT)

    assert list(backups_dir.iterdir()) == []
    with pytest.raises(RestoreError):
        resolve_backup_source(backups_root=backups_dir)


def test_table_backup_leaves_no_staging_directory(legacy_conn, backups_dir):
    path = backup_service.create_table_backup(legacy_conn, backups_dir, delay=0, now=BACKUP_MOMENT)

    assert [entry.name for entry in backups_dir.iterdir()] == [path.name]
    assert (path / backup_service.SUMMARY_FILE).exists()
