import pytest
from fastapi.testclient import TestClient

from sheet_ingest.api import app, get_ingestor
from sheet_ingest.generic_methods import DatabaseConnector
from sheet_ingest.ingestor import SheetIngestor


@pytest.fixture()
def db_connector(tmp_path):
    conn = DatabaseConnector(connection_string=f"sqlite:///{tmp_path / 'sheets.db'}")
    try:
        yield conn
    finally:
        conn.get_engine().dispose()


@pytest.fixture()
def ingestor(db_connector):
    ingestor = SheetIngestor(db_connector=db_connector, provision_retries=1, provision_delay=0)
    ingestor.provision_tables()
    return ingestor


@pytest.fixture()
def client(ingestor):
    app.dependency_overrides[get_ingestor] = lambda: ingestor
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def cnc_rows():
    return [{"Part Name": "Bolt", "Qty": 12}]
