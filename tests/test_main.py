import pandas as pd

from sheet_ingest import main as cli
from sheet_ingest.ingestor import SheetIngestor


def test_cli_imports_csv(tmp_path, ingestor, monkeypatch):
    path = tmp_path / "cli parts.csv"
    pd.DataFrame({"Part Name": ["Bolt"], "Qty": [5]}).to_csv(path, index=False)
    monkeypatch.setattr(SheetIngestor, "from_env", classmethod(lambda cls: ingestor))

    assert cli.main([str(path)]) == 0

    [entry] = ingestor.list_sheets()
    assert entry["display_name"] == "cli parts"
    assert entry["table_name"] == "cli_parts"


def test_cli_reports_failed_import(tmp_path, ingestor, monkeypatch):
    path = tmp_path / "parts.csv"
    pd.DataFrame({"Part Name": ["Bolt"], "Qty": ["many"]}).to_csv(path, index=False)
    monkeypatch.setattr(SheetIngestor, "from_env", classmethod(lambda cls: ingestor))

    assert cli.main([str(path), "--name", "Broken Parts"]) == 1
    assert ingestor.list_sheets() == []
