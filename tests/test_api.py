import io

import pandas as pd
import pytest

from sheet_ingest.config import EnvVariables

ROUTE = "/create-and-insert-spare-parts"


def _payload(name="CNC Tools March", rows=None):
    return {"sheetDisplayName": name, "jsonData": rows if rows is not None else [{"Part Name": "Bolt", "Qty": 12}]}


# ============================================================
# CORS + method handling
# ============================================================

def test_preflight_returns_ok_with_cors_headers(client):
    response = client.options(ROUTE)

    assert response.status_code == 200
    assert response.text == "ok"
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-methods"] == "POST"
    assert "content-type" in response.headers["access-control-allow-headers"]


@pytest.mark.parametrize("method", ["get", "head", "put", "patch", "delete"])
def test_other_methods_are_not_allowed(client, method):
    response = client.request(method.upper(), ROUTE)

    assert response.status_code == 405
    assert response.headers["access-control-allow-origin"] == "*"
    if method != "head":
        assert response.json() == {"error": "Method Not Allowed"}


# ============================================================
# Import contract
# ============================================================

def test_import_succeeds(client, ingestor):
    response = client.post(ROUTE, json=_payload())

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.json() == {
        "message": "Spare parts list created and data imported successfully.",
        "tableName": "cnc_tools_march",
    }
    [entry] = ingestor.list_sheets()
    assert entry["display_name"] == "CNC Tools March"


@pytest.mark.parametrize(
    "body",
    [
        {"jsonData": [{"Qty": 1}]},
        {"sheetDisplayName": "Sheet"},
        {"sheetDisplayName": "   ", "jsonData": [{"Qty": 1}]},
        {"sheetDisplayName": "Sheet", "jsonData": []},
        {"sheetDisplayName": "Sheet", "jsonData": {"Qty": 1}},
        {"sheetDisplayName": "Sheet", "jsonData": [[1, 2]]},
        {"sheetDisplayName": "Sheet", "jsonData": [{"Qty": {"nested": 1}}]},
        {"sheetDisplayName": "Sheet", "jsonData": [{"Part Name": "Bolt"}, {"Part Name": "Nut", "ID": "P-2"}]},
        {"sheetDisplayName": "Sheet", "jsonData": [{"Part Name": "Bolt"}, {"Part Name": "Nut", "Created At": "2001-01-01"}]},
        [],
    ],
)
def test_invalid_input_returns_400(client, db_connector, body):
    before = set(db_connector.get_table_names())

    response = client.post(ROUTE, json=body)

    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid input")
    assert response.headers["access-control-allow-origin"] == "*"
    assert set(db_connector.get_table_names()) == before


def test_malformed_json_returns_400(client):
    response = client.post(ROUTE, content=b"{not json", headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid input")


def test_conflicting_headers_return_400(client):
    response = client.post(ROUTE, json=_payload(rows=[{"Qty": 1, "Quantity": 2}]))

    assert response.status_code == 400
    assert "quantity" in response.json()["error"]


def test_duplicate_import_returns_500_with_details(client, ingestor):
    assert client.post(ROUTE, json=_payload()).status_code == 200

    response = client.post(ROUTE, json=_payload())

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Failed to create table in database."
    assert "already exists" in body["details"]
    assert len(ingestor.list_sheets()) == 1


def test_insert_failure_returns_500_and_drops_table(client, ingestor, db_connector):
    rows = [{"Part Name": "Bolt", "Qty": 12}, {"Part Name": "Nut", "Qty": "twelve"}]

    response = client.post(ROUTE, json=_payload(name="Bad Sheet", rows=rows))

    assert response.status_code == 500
    assert response.json()["error"] == "Failed to insert data into new table."
    assert "bad_sheet" not in db_connector.get_table_names()
    assert ingestor.list_sheets() == []


def test_registry_failure_returns_500_and_drops_table(client, ingestor, db_connector):
    ingestor.registry.table.drop(db_connector.get_engine())

    response = client.post(ROUTE, json=_payload())

    assert response.status_code == 500
    assert response.json()["error"] == "Failed to save sheet metadata."
    assert "details" in response.json()
    assert "cnc_tools_march" not in db_connector.get_table_names()


def test_unexpected_error_returns_generic_500(client, ingestor, monkeypatch):
    def boom(display_name, rows):
        raise RuntimeError("boom")

    monkeypatch.setattr(ingestor, "ingest", boom)

    response = client.post(ROUTE, json=_payload())

    assert response.status_code == 500
    assert response.json() == {"error": "An unexpected error occurred.", "details": "boom"}


# ============================================================
# Upload + registry discovery
# ============================================================

def test_upload_csv_then_read_rows_back(client):
    df = pd.DataFrame({"Part Name": ["Bolt", "Nut"], "Qty": [12, 40], "Supplier": ["Acme", None]})
    buffer = io.BytesIO()
    df.to_csv(buffer, index=False)

    response = client.post(
        "/sheets/upload",
        files={"file": ("parts.csv", buffer.getvalue(), "text/csv")},
        data={"display_name": "Uploaded Parts"},
    )

    assert response.status_code == 200
    assert response.json()["tableName"] == "uploaded_parts"

    rows = client.get("/sheets/uploaded_parts/rows").json()["rows"]
    by_name = {row["name"]: row for row in rows}
    assert by_name["Bolt"]["quantity"] == 12
    assert by_name["Nut"]["supplier"] is None


def test_upload_rejects_unsupported_files(client):
    response = client.post(
        "/sheets/upload",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        data={"display_name": "Notes"},
    )

    assert response.status_code == 400
    assert "Unsupported spreadsheet type" in response.json()["details"]


def test_upload_rejects_files_over_the_size_limit(client, monkeypatch):
    monkeypatch.setattr(EnvVariables, "MAX_UPLOAD_BYTES", 10)

    response = client.post(
        "/sheets/upload",
        files={"file": ("parts.csv", b"Part Name,Qty\nBolt,12\n", "text/csv")},
        data={"display_name": "Too Big"},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid input: file too large (22 bytes)."


def test_upload_validation_errors_carry_cors(client):
    response = client.post(
        "/sheets/upload",
        data={"display_name": "No File"},
        headers={"Origin": "https://dashboard.example"},
    )

    assert response.status_code == 422
    assert response.headers["access-control-allow-origin"] == "*"


def test_sheet_routes_answer_cors_preflight(client):
    response = client.options(
        "/sheets",
        headers={"Origin": "https://dashboard.example", "Access-Control-Request-Method": "GET"},
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


def test_ingest_preflight_keeps_its_own_headers(client):
    response = client.options(
        ROUTE,
        headers={"Origin": "https://dashboard.example", "Access-Control-Request-Method": "POST"},
    )

    assert response.status_code == 200
    assert response.text == "ok"
    assert response.headers["access-control-allow-methods"] == "POST"


def test_list_sheets(client):
    client.post(ROUTE, json=_payload())

    response = client.get("/sheets")

    assert response.status_code == 200
    [sheet] = response.json()["sheets"]
    assert sheet["displayName"] == "CNC Tools March"
    assert sheet["tableName"] == "cnc_tools_march"
    assert sheet["createdAt"]


def test_rows_of_unknown_sheet_is_404(client):
    response = client.get("/sheets/logs/rows")

    assert response.status_code == 404
    assert response.json()["error"] == "Unknown sheet table: logs"


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
