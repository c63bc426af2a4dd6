"""Shared fixtures: a temporary SQLite database per test."""

import pytest

from recordkit.diagnostics import DiagnosticLog
from recordkit.migrations.versions import v003_add_tracking_columns
from recordkit.schema import CORE_TABLES, DETAIL_TABLES, install_legacy_tables
from recordkit.store.client import SqlClient
from recordkit.store.schema_store import SchemaStore


JOB_DEFAULTS = {
    "job_number": "JOB-1",
    "line_number": "1",
    "part_number": "P-100",
    "revision": "A",
    "part_description": "Bracket",
    "customer_name": "Acme Corp",
    "customer_contact": "Jane Roe",
    "po_number": "PO-1",
    "oe_number": "38848",
    "job_quantity": "5",
    "unit_price": "$10.00",
    "delivery_required_date": "21-Mar-25",
    "create_timestamp": "2025-03-01 08:00:00",
}


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "record.db"


@pytest.fixture
def idle_client(db_path):
    """Client with no open transaction (the runner manages its own)."""
    client = SqlClient(db_path=str(db_path))
    yield client
    client.close()


@pytest.fixture
def client(db_path):
    """Client inside an open transaction, rolled back after the test."""
    client = SqlClient(db_path=str(db_path))
    client.begin_transaction()
    yield client
    client.close()


@pytest.fixture
def diagnostics():
    return DiagnosticLog()


@pytest.fixture
def store(client, diagnostics):
    return SchemaStore(client, diagnostics)


@pytest.fixture
def schema(store):
    """Legacy tables plus the normalized and detail tables, tracking columns added."""
    install_legacy_tables(store)
    for name, ddl in CORE_TABLES + DETAIL_TABLES:
        store.create_table(name, ddl)
    v003_add_tracking_columns.up(store)
    return store


@pytest.fixture
def add_job(client):
    """Insert a legacy jobs row; keyword arguments override JOB_DEFAULTS."""
    def _add(**values):
        row = dict(JOB_DEFAULTS)
        row.update(values)
        return client.insert("jobs", row, returning="job_id")
    return _add


@pytest.fixture
def add_assembly(client):
    def _add(part_number, drawing_number, quantity="1", description=None):
        client.insert("assemblies", {
            "part_number": part_number,
            "drawing_number": drawing_number,
            "description": description,
            "quantity": quantity,
        }, returning=None)
    return _add


@pytest.fixture
def add_drawing(client):
    def _add(drawing_number, drawing_name, file_location):
        client.insert("drawings", {
            "drawing_number": drawing_number,
            "drawing_name": drawing_name,
            "file_location": file_location,
        }, returning=None)
    return _add
