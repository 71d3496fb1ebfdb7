# src/sheet_ingest/main.py
import argparse
import sys
from pathlib import Path
from typing import List, Optional

from sheet_ingest.errors import IngestError
from sheet_ingest.generic_methods import DataReader
from sheet_ingest.ingestor import SheetIngestor
from sheet_ingest.logger import get_logger

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sheet-ingest",
        description="Create a table from a spreadsheet and register it.",
    )
    parser.add_argument("path", help="Spreadsheet to import (.xlsx, .xls or .csv)")
    parser.add_argument("--name", help="Display name for the sheet (default: file name)")
    parser.add_argument("--sheet", default="0", help="Workbook sheet name or index (default: 0)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    display_name = args.name or Path(args.path).stem
    sheet_name = int(args.sheet) if args.sheet.isdigit() else args.sheet

    ingestor = SheetIngestor.from_env()
    ingestor.provision_tables()
    rows = DataReader().read_rows(args.path, filename=args.path, sheet_name=sheet_name)
    if not rows:
        logger.warning(f"No rows found in {args.path}. Nothing to import.")
        return 1

    try:
        result = ingestor.ingest(display_name, rows)
    except IngestError as exc:
        logger.error(f"{exc.message} {exc.details or ''}".strip())
        return 1
    logger.info(f"Created table {result.table_name} with {result.row_count} rows")
    return 0


# Main Ingestion Logic
if __name__ == "__main__":
    sys.exit(main())
